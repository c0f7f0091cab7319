"""Live resource state for tracked features.

Every operation takes a character snapshot and returns a new usage map; the
character and its map are never modified. Callers persist the returned map.
Calls that don't apply (unknown feature, wrong kind of feature, non-positive
amounts) return the character's map unchanged.
"""

from __future__ import annotations

from datetime import datetime
from datetime import timezone
from typing import Any
from typing import Callable
from typing import Iterable
from typing import Mapping

import pydantic

from .character import Character
from .decision import Decision
from .formula import FormulaEvaluator
from .logging import get_logger
from .mapping import FeatureMapping
from .models import Identifier
from .records import AvailabilityToggleRecord
from .records import OptionRecord
from .records import OptionsListRecord
from .records import PointsPoolRecord
from .records import SkillModifierRecord
from .records import SlotsRecord
from .records import SpecialUXRecord
from .records import UsageMap
from .records import UsageRecord
from .records import option_id
from .templates import AvailabilityToggleTemplate
from .templates import BaseTemplate
from .templates import OptionsListTemplate
from .templates import PointsPoolTemplate
from .templates import SkillModifierTemplate
from .templates import SlotsTemplate
from .templates import SpecialUXTemplate
from .templates import TemplateRegistry

logger = get_logger(__name__)

Clock = Callable[[], datetime]

record_adapter: pydantic.TypeAdapter[UsageRecord] = pydantic.TypeAdapter(UsageRecord)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def check_spend(template: BaseTemplate, amount: int) -> Decision:
    """Whether spending `amount` from a pool respects its spend limits.

    The store doesn't enforce these; this is for callers that want to.
    """
    if not isinstance(template, PointsPoolTemplate):
        return Decision(success=False, reason=f"{template.title} is not a pool")
    config = template.config
    if amount < config.min_spend:
        return Decision(
            success=False,
            reason=f"Must spend at least {config.min_spend}",
            amount=config.min_spend,
        )
    if config.max_spend is not None and amount > config.max_spend:
        return Decision(
            success=False,
            reason=f"Can't spend more than {config.max_spend} at once",
            amount=config.max_spend,
        )
    return Decision(success=True, amount=amount)


class UsageStore:
    """Operations on a character's usage map.

    Args:
        registry: Templates for every feature the store may be asked about.
        evaluator: Evaluates the templates' max formulas.
        mapping: Built-in features. Used to decide which class a feature's
            formulas are scoped to, and whether an absent record may be
            created on first use.
        clock: Source of `last_updated` timestamps.
    """

    def __init__(
        self,
        registry: TemplateRegistry,
        evaluator: FormulaEvaluator,
        mapping: FeatureMapping | None = None,
        clock: Clock = utc_now,
    ):
        self.registry = registry
        self.evaluator = evaluator
        self.mapping = mapping or FeatureMapping()
        self.clock = clock

    # Maxima and seeds

    def class_for(self, character: Character, template: BaseTemplate) -> str | None:
        """The class whose level scopes this feature's formulas."""
        if entry := self.mapping.entry_for(character, template.id):
            return entry.class_name
        return template.class_name

    def maximum(
        self,
        character: Character,
        template: BaseTemplate,
        class_name: str | None = None,
    ) -> int | None:
        """Current maximum uses, points or selections. None for other kinds."""
        class_name = class_name or self.class_for(character, template)
        match template:
            case SlotsTemplate(config=config):
                formula, at_least_one = config.uses_formula, True
            case PointsPoolTemplate(config=config):
                formula, at_least_one = config.total_formula, False
            case OptionsListTemplate(config=config):
                formula, at_least_one = config.max_selections_formula, True
            case _:
                return None
        return self.evaluator.evaluate_for(
            formula, character, class_name, at_least_one=at_least_one
        )

    def seed_for(
        self,
        character: Character,
        template: BaseTemplate,
        class_name: str | None = None,
    ) -> UsageRecord:
        """A fresh record for `template`, full and unselected."""
        common: dict[str, Any] = {
            "feature_name": template.title,
            "enabled_at_level": template.enabled_at_level,
            "last_updated": self.clock(),
        }
        maximum = self.maximum(character, template, class_name) or 0
        match template:
            case SlotsTemplate():
                return SlotsRecord(current_uses=maximum, max_uses=maximum, **common)
            case PointsPoolTemplate():
                return PointsPoolRecord(
                    current_points=maximum, max_points=maximum, **common
                )
            case OptionsListTemplate():
                return OptionsListRecord(max_selections=maximum, **common)
            case AvailabilityToggleTemplate(config=config):
                return AvailabilityToggleRecord(
                    is_available=config.default_available, **common
                )
            case SpecialUXTemplate():
                return SpecialUXRecord(**common)
            case SkillModifierTemplate():
                return SkillModifierRecord(**common)
        raise ValueError(f"Unsupported feature type {template.feature_type}")

    # Record lifecycle

    def initialize(
        self,
        character: Character,
        feature_id: Identifier,
        seed: UsageRecord | Mapping[str, Any] | None = None,
    ) -> UsageMap:
        """Create the feature's record, unless it already exists."""
        usage = character.feature_usage
        if feature_id in usage:
            return usage
        if seed is None:
            template = self.registry.get(feature_id)
            if template is None:
                logger.debug("Unknown feature", feature_id=feature_id)
                return usage
            record = self.seed_for(character, template)
        elif isinstance(seed, Mapping):
            record = record_adapter.validate_python(dict(seed))
        else:
            record = seed
        return usage | {feature_id: record}

    def prune(
        self, character: Character, available_ids: Iterable[Identifier]
    ) -> UsageMap:
        """Drop records for features the character no longer has."""
        keep = set(available_ids)
        usage = character.feature_usage
        dropped = [id for id in usage if id not in keep]
        if not dropped:
            return usage
        logger.info("Pruning feature usage", character=character.id, features=dropped)
        return {id: record for id, record in usage.items() if id in keep}

    def refresh(self, character: Character, feature_id: Identifier) -> UsageMap:
        """Recompute a record's maximum after a level or ability change.

        A slot or pool whose maximum changed is refilled to the new maximum.
        An options list only has its cap updated; existing selections stay.
        """
        usage = character.feature_usage
        record = usage.get(feature_id)
        template = self.registry.get(feature_id)
        if record is None or template is None:
            return usage
        if record.feature_type != template.feature_type:
            return usage
        maximum = self.maximum(character, template)
        match record:
            case SlotsRecord() if maximum != record.max_uses:
                update = {"current_uses": maximum, "max_uses": maximum}
            case PointsPoolRecord() if maximum != record.max_points:
                update = {"current_points": maximum, "max_points": maximum}
            case OptionsListRecord() if maximum != record.max_selections:
                update = {"max_selections": maximum}
            case _:
                return usage
        return self._replace(usage, feature_id, record, **update)

    def refresh_all(self, character: Character) -> UsageMap:
        for feature_id in list(character.feature_usage):
            character = character.with_usage(self.refresh(character, feature_id))
        return character.feature_usage

    # Slots

    def use_slot(
        self, character: Character, feature_id: Identifier, amount: int = 1
    ) -> UsageMap:
        usage, record = self._get(character, feature_id, SlotsRecord)
        if record is None or amount <= 0:
            return character.feature_usage
        current = max(0, record.current_uses - amount)
        return self._replace(usage, feature_id, record, current_uses=current)

    def restore_slot(
        self, character: Character, feature_id: Identifier, amount: int = 1
    ) -> UsageMap:
        usage, record = self._get(character, feature_id, SlotsRecord)
        if record is None or amount <= 0:
            return character.feature_usage
        current = min(record.max_uses, record.current_uses + amount)
        return self._replace(usage, feature_id, record, current_uses=current)

    # Points pools

    def spend_points(
        self, character: Character, feature_id: Identifier, amount: int
    ) -> UsageMap:
        usage, record = self._get(character, feature_id, PointsPoolRecord)
        if record is None or amount <= 0:
            return character.feature_usage
        template = self.registry.get(feature_id)
        if (
            isinstance(template, PointsPoolTemplate)
            and not template.config.can_spend_partial
            and amount > record.current_points
        ):
            logger.debug(
                "Spend exceeds remaining points",
                feature_id=feature_id,
                amount=amount,
                remaining=record.current_points,
            )
            return character.feature_usage
        current = max(0, record.current_points - amount)
        return self._replace(usage, feature_id, record, current_points=current)

    def restore_points(
        self, character: Character, feature_id: Identifier, amount: int
    ) -> UsageMap:
        usage, record = self._get(character, feature_id, PointsPoolRecord)
        if record is None or amount <= 0:
            return character.feature_usage
        current = min(record.max_points, record.current_points + amount)
        return self._replace(usage, feature_id, record, current_points=current)

    # Options lists

    def add_option(
        self,
        character: Character,
        feature_id: Identifier,
        option: str | OptionRecord | Mapping[str, Any],
    ) -> UsageMap:
        usage, record = self._get(character, feature_id, OptionsListRecord)
        if record is None:
            return character.feature_usage
        if isinstance(option, Mapping):
            option = OptionRecord.model_validate(dict(option))
        if record.has_option(option_id(option)):
            return character.feature_usage
        if len(record.selected_options) >= record.max_selections:
            logger.debug(
                "Options list is full",
                feature_id=feature_id,
                max_selections=record.max_selections,
            )
            return character.feature_usage
        selected = [*record.selected_options, option]
        return self._replace(usage, feature_id, record, selected_options=selected)

    def remove_option(
        self, character: Character, feature_id: Identifier, option: str
    ) -> UsageMap:
        usage, record = self._get(character, feature_id, OptionsListRecord)
        if record is None or not record.has_option(option):
            return character.feature_usage
        selected = [o for o in record.selected_options if option_id(o) != option]
        return self._replace(usage, feature_id, record, selected_options=selected)

    # Special UX and toggles

    def update_custom_state(
        self, character: Character, feature_id: Identifier, patch: Mapping[str, Any]
    ) -> UsageMap:
        usage, record = self._get(character, feature_id, SpecialUXRecord)
        if record is None:
            return character.feature_usage
        state = record.custom_state | dict(patch)
        return self._replace(usage, feature_id, record, custom_state=state)

    def toggle_availability(
        self, character: Character, feature_id: Identifier
    ) -> UsageMap:
        usage, record = self._get(
            character, feature_id, (AvailabilityToggleRecord, SpecialUXRecord)
        )
        match record:
            case AvailabilityToggleRecord():
                return self._replace(
                    usage, feature_id, record, is_available=not record.available
                )
            case SpecialUXRecord():
                state = record.custom_state | {
                    "available": not record.custom_state.get("available", True)
                }
                return self._replace(usage, feature_id, record, custom_state=state)
        return character.feature_usage

    def update_notes(
        self, character: Character, feature_id: Identifier, notes: str
    ) -> UsageMap:
        usage = self.initialize(character, feature_id)
        record = usage.get(feature_id)
        if record is None:
            return character.feature_usage
        return self._replace(usage, feature_id, record, notes=notes)

    # Helpers

    def _get(
        self,
        character: Character,
        feature_id: Identifier,
        kind: type | tuple[type, ...],
    ) -> tuple[UsageMap, Any]:
        """Find the feature's record if it's of the given kind.

        An absent record is created first if the feature is a built-in the
        character is eligible for.
        """
        usage = character.feature_usage
        if feature_id not in usage and self.mapping.is_eligible(character, feature_id):
            usage = self.initialize(character, feature_id)
        record = usage.get(feature_id)
        if record is None:
            logger.debug("No usage record", feature_id=feature_id)
            return usage, None
        if not isinstance(record, kind):
            logger.debug(
                "Wrong feature type",
                feature_id=feature_id,
                feature_type=record.feature_type,
            )
            return usage, None
        return usage, record

    def _replace(
        self,
        usage: UsageMap,
        feature_id: Identifier,
        record: UsageRecord,
        **changes: Any,
    ) -> UsageMap:
        updated = record.model_copy(update=changes | {"last_updated": self.clock()})
        return usage | {feature_id: updated}
