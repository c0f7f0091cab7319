from __future__ import annotations

from typing import Annotated
from typing import Any
from typing import Iterable
from typing import Literal
from typing import TypeAlias
from typing import Union

import pydantic
from pydantic import Field

from .formula import FormulaEvaluator
from .models import BaseModel
from .models import Identifier
from .models import Replenish
from .models import ResourceKind
from .models import ToggleReplenish


class SlotsConfig(BaseModel):
    """A fixed or computed number of uses (Bardic Inspiration, Divine Sense...).

    Attributes:
        uses_formula: Formula for the maximum number of uses.
        die_type: Optional die progression by level, index 0 being level 1,
            e.g. ["d6", "d6", "d6", "d6", "d8", ...].
        override: Free-form values that take priority over the rest of the
            config when describing the feature. May contain `level_scaling`,
            a map of class level to further overrides.
    """

    uses_formula: str = ""
    die_type: list[str] | None = None
    replenish_on: Replenish | None = None
    display_style: Literal["circles", "checkboxes", "counter"] = "circles"
    base_dice: str | None = None
    override: dict[str, Any] | None = None


class PointsPoolConfig(BaseModel):
    """A pool spent in variable amounts (Lay on Hands, Ki, Sorcery Points)."""

    total_formula: str = ""
    can_spend_partial: bool = True
    replenish_on: Replenish | None = None
    display_style: Literal["slider", "input", "increment_decrement"] = "slider"
    min_spend: int = 1
    max_spend: int | None = None


class OptionsFilter(BaseModel):
    level: int | None = None
    prerequisite: str | None = None


class OptionsListConfig(BaseModel):
    """Selections from a list (Eldritch Invocations, Infusions, Metamagic).

    Attributes:
        options_source: "database" options come from the catalog named by
            `database_table`; "custom" options are entered ad hoc.
    """

    max_selections_formula: str = ""
    options_source: Literal["database", "custom"] | None = None
    database_table: str | None = None
    filter_by: OptionsFilter | None = None
    allow_duplicates: bool = False
    display_style: Literal["grid", "list", "dropdown"] = "grid"
    can_swap_on_level_up: bool = False


class SpecialUXConfig(BaseModel):
    """A bespoke module (Eldritch Cannon, Song of Rest...).

    `custom_config` belongs to the module named by `component_id`. The engine
    reads `replenish_on` from it when resting, and its values are available
    to description tokens.
    """

    component_id: str = ""
    custom_config: dict[str, Any] = Field(default_factory=dict)


class ModifierCondition(BaseModel):
    type: Literal["proficient", "not_proficient", "always"] = "always"
    description: str | None = None


class SkillModifierConfig(BaseModel):
    modifier_type: Literal[
        "skill", "saving_throw", "ability_check", "attack_roll", "damage_roll"
    ] = "skill"
    target_skills: list[str] = Field(default_factory=list)
    target_abilities: list[str] = Field(default_factory=list)
    modifier_formula: str = ""
    condition: ModifierCondition | None = None
    stackable: bool = False
    display_style: Literal["badge", "highlight", "tooltip"] = "badge"


class AvailabilityToggleConfig(BaseModel):
    default_available: bool = True
    replenish_on: ToggleReplenish = "long_rest"
    display_style: Literal["badge", "toggle", "button"] = "toggle"
    available_text: str = "Available"
    used_text: str = "Used"


class BaseTemplate(BaseModel):
    """Static description of one trackable resource.

    Attributes:
        id: Stable identifier, also the key of the feature's usage record.
        version: Template schema version, for future data migrations.
        enabled_at_level: Class level at which the feature activates.
        enabled_by_subclass: If set, only characters with this subclass get
            the feature.
        class_name: The class the feature belongs to. Formulas are evaluated
            with the character's level in this class.
        description: Ability text, possibly with `{token}` placeholders.
        def_path: Where the template was loaded from, if from a file.
    """

    id: Identifier
    version: int = 1
    title: str
    subtitle: str | None = None
    custom_description: str | None = None
    description: str | None = None
    feature_type: ResourceKind
    enabled_at_level: int = 1
    enabled_by_subclass: str | None = None
    class_name: str | None = None
    display_location: list[Literal["spellcasting", "combat"]] = Field(
        default_factory=list
    )
    def_path: str | None = None

    @property
    def replenish_on(self) -> str | None:
        return getattr(self.config, "replenish_on", None)


class SlotsTemplate(BaseTemplate):
    feature_type: Literal["slots"] = "slots"
    config: SlotsConfig = Field(default_factory=SlotsConfig)


class PointsPoolTemplate(BaseTemplate):
    feature_type: Literal["points_pool"] = "points_pool"
    config: PointsPoolConfig = Field(default_factory=PointsPoolConfig)


class OptionsListTemplate(BaseTemplate):
    feature_type: Literal["options_list"] = "options_list"
    config: OptionsListConfig = Field(default_factory=OptionsListConfig)


class SpecialUXTemplate(BaseTemplate):
    feature_type: Literal["special_ux"] = "special_ux"
    config: SpecialUXConfig = Field(default_factory=SpecialUXConfig)

    @property
    def replenish_on(self) -> str | None:
        config = self.config.custom_config
        return config.get("replenish_on", config.get("replenishOn"))


class SkillModifierTemplate(BaseTemplate):
    feature_type: Literal["skill_modifier"] = "skill_modifier"
    config: SkillModifierConfig = Field(default_factory=SkillModifierConfig)


class AvailabilityToggleTemplate(BaseTemplate):
    feature_type: Literal["availability_toggle"] = "availability_toggle"
    config: AvailabilityToggleConfig = Field(default_factory=AvailabilityToggleConfig)


FeatureTemplate: TypeAlias = Annotated[
    Union[
        SlotsTemplate,
        PointsPoolTemplate,
        OptionsListTemplate,
        SpecialUXTemplate,
        SkillModifierTemplate,
        AvailabilityToggleTemplate,
    ],
    Field(discriminator="feature_type"),
]
template_adapter: pydantic.TypeAdapter[FeatureTemplate] = pydantic.TypeAdapter(
    FeatureTemplate
)


def parse_template(data: dict) -> FeatureTemplate:
    return template_adapter.validate_python(data)


class ValidationResult(BaseModel):
    """
    Attributes:
        valid: True if the template has no errors. Warnings don't count.
        errors: Problems that should block saving the template.
        warnings: Problems worth surfacing that don't.

    Note that this object's truthiness is tied to its valid attribute.
    """

    valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    def __bool__(self) -> bool:
        return self.valid


def validate_template(
    template: BaseTemplate, evaluator: FormulaEvaluator | None = None
) -> ValidationResult:
    """Check a template's configuration against the rules for its kind.

    Never raises; callers decide whether errors should block a save. If an
    evaluator is given, formulas it can't parse are reported as warnings.
    """
    errors: list[str] = []
    warnings: list[str] = []
    formulas: list[tuple[str, str]] = []

    if not (template.id or "").strip():
        errors.append("Feature ID is required")
    if not (template.title or "").strip():
        errors.append("Feature title is required")
    if not 1 <= template.enabled_at_level <= 20:
        errors.append("Enabled at level must be between 1 and 20")

    match template:
        case SlotsTemplate(config=config):
            if not config.uses_formula.strip():
                errors.append("Uses formula is required for slots features")
            else:
                formulas.append(("Uses formula", config.uses_formula))
            if not config.replenish_on:
                errors.append("Replenish timing is required for slots features")
            if config.die_type is not None and len(config.die_type) != 20:
                warnings.append(
                    f"Die progression has {len(config.die_type)} entries, expected 20"
                )
        case PointsPoolTemplate(config=config):
            if not config.total_formula.strip():
                errors.append("Total formula is required for points pool features")
            else:
                formulas.append(("Total formula", config.total_formula))
            if not config.replenish_on:
                errors.append(
                    "Replenish timing is required for points pool features"
                )
            if config.max_spend is not None and config.max_spend < config.min_spend:
                warnings.append("Maximum spend is lower than minimum spend")
        case OptionsListTemplate(config=config):
            if not config.max_selections_formula.strip():
                errors.append(
                    "Max selections formula is required for options list features"
                )
            else:
                formulas.append(("Max selections formula", config.max_selections_formula))
            if not config.options_source:
                errors.append("Options source is required for options list features")
            if config.options_source == "database" and not config.database_table:
                errors.append(
                    "Database table is required when using database options source"
                )
        case SpecialUXTemplate(config=config):
            if not config.component_id.strip():
                errors.append("Component ID is required for special UX features")
        case SkillModifierTemplate(config=config):
            if config.modifier_formula.strip():
                formulas.append(("Modifier formula", config.modifier_formula))

    if evaluator:
        for label, formula in formulas:
            if problem := evaluator.check(formula):
                warnings.append(f"{label} '{formula}' is not recognized: {problem}")

    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


class TemplateRegistry:
    """Read-only catalog of feature templates, keyed by id."""

    def __init__(
        self,
        templates: Iterable[BaseTemplate] = (),
        evaluator: FormulaEvaluator | None = None,
    ):
        self._templates: dict[Identifier, BaseTemplate] = {}
        self._evaluator = evaluator
        for template in templates:
            self.register(template)

    def register(self, template: BaseTemplate) -> None:
        if template.id in self._templates:
            raise ValueError(f"Non-unique template ID {template.id}")
        self._templates[template.id] = template

    def get(self, id: Identifier) -> BaseTemplate | None:
        return self._templates.get(id)

    def __contains__(self, id: object) -> bool:
        return id in self._templates

    def __len__(self) -> int:
        return len(self._templates)

    def list(self) -> list[BaseTemplate]:
        return list(self._templates.values())

    def by_kind(self, kind: ResourceKind) -> list[BaseTemplate]:
        return [t for t in self._templates.values() if t.feature_type == kind]

    def validate(self, template: BaseTemplate) -> ValidationResult:
        return validate_template(template, self._evaluator)

    def validate_all(self) -> dict[Identifier, ValidationResult]:
        """Validation results for every template that has errors or warnings."""
        results = {}
        for id, template in self._templates.items():
            result = self.validate(template)
            if result.errors or result.warnings:
                results[id] = result
        return results
