from __future__ import annotations

from functools import cached_property
from typing import Any
from typing import Iterable
from typing import Mapping

from . import descriptions
from .character import Character
from .formula import FormulaEvaluator
from .loader import Catalog
from .loader import load_catalog
from .logging import get_logger
from .mapping import FeatureMapping
from .migration import Migrator
from .models import Identifier
from .models import RestType
from .modifiers import ModifierCalculator
from .records import UsageMap
from .replenish import Replenisher
from .settings import EngineSettings
from .settings import get_settings
from .templates import BaseTemplate
from .templates import TemplateRegistry
from .templates import ValidationResult
from .usage import Clock
from .usage import UsageStore
from .usage import utc_now

logger = get_logger(__name__)


class FeatureEngine:
    """Class feature tracking for one catalog.

    Wires the catalog's templates, built-in feature mapping and lookup tables
    into the usage store, rest handling, migration and description text.
    Every method is pure: it returns a new usage map or character and leaves
    its inputs alone.
    """

    def __init__(
        self,
        catalog: Catalog,
        strict: bool = False,
        clock: Clock = utc_now,
    ):
        self._catalog = catalog
        self._strict = strict
        self._clock = clock

    @property
    def catalog(self) -> Catalog:
        return self._catalog

    @cached_property
    def evaluator(self) -> FormulaEvaluator:
        return FormulaEvaluator(self.catalog.lookups, strict=self._strict)

    @cached_property
    def registry(self) -> TemplateRegistry:
        return TemplateRegistry(self.catalog.templates.values(), self.evaluator)

    @cached_property
    def mapping(self) -> FeatureMapping:
        return FeatureMapping(self.catalog.builtin_features)

    @cached_property
    def store(self) -> UsageStore:
        return UsageStore(self.registry, self.evaluator, self.mapping, self._clock)

    @cached_property
    def replenisher(self) -> Replenisher:
        return Replenisher(self.registry, self._clock)

    @cached_property
    def migrator(self) -> Migrator:
        return Migrator(self.registry, self.mapping, self.store)

    @cached_property
    def modifiers(self) -> ModifierCalculator:
        return ModifierCalculator(self.registry, self.evaluator, self.mapping)

    # Characters

    def load_character(self, data: Mapping[str, Any]) -> Character:
        """Parse a stored character, migrating legacy fields if it needs it."""
        character = Character.model_validate(data)
        if self.migrator.needs_migration(character):
            character = self.migrator.migrate(character)
        return character

    def available_features(self, character: Character) -> list[BaseTemplate]:
        return [
            self.registry.get(id)
            for id in sorted(self.mapping.available_feature_ids(character))
        ]

    def cleanup(self, character: Character) -> UsageMap:
        """Drop usage records for features the character no longer has.

        Records for features outside the built-in mapping are kept.
        """
        available = self.mapping.available_feature_ids(character)
        mapped = {entry.feature_id for entry in self.mapping}
        keep = available | (set(character.feature_usage) - mapped)
        return self.store.prune(character, keep)

    # Templates and formulas

    def template(self, feature_id: Identifier) -> BaseTemplate | None:
        return self.registry.get(feature_id)

    def validate(self, template: BaseTemplate) -> ValidationResult:
        return self.registry.validate(template)

    def evaluate(
        self,
        formula: str,
        character: Character,
        class_name: str | None = None,
        at_least_one: bool = True,
    ) -> int:
        return self.evaluator.evaluate_for(
            formula, character, class_name, at_least_one=at_least_one
        )

    def describe(self, character: Character, feature_id: Identifier) -> str | None:
        """The feature's description with its values filled in."""
        template = self.registry.get(feature_id)
        if template is None:
            return None
        text = template.custom_description or template.description
        if not text:
            return None
        class_name = self.store.class_for(character, template)
        return descriptions.resolve(text, character, template.config, class_name)

    # Usage

    def initialize(
        self, character: Character, feature_id: Identifier, seed=None
    ) -> UsageMap:
        return self.store.initialize(character, feature_id, seed)

    def initialize_all(self, character: Character) -> UsageMap:
        """Create records for every built-in feature the character has."""
        for feature_id in sorted(self.mapping.available_feature_ids(character)):
            character = character.with_usage(self.store.initialize(character, feature_id))
        return character.feature_usage

    def use_slot(self, character: Character, feature_id: Identifier, amount: int = 1):
        return self.store.use_slot(character, feature_id, amount)

    def restore_slot(
        self, character: Character, feature_id: Identifier, amount: int = 1
    ):
        return self.store.restore_slot(character, feature_id, amount)

    def spend_points(self, character: Character, feature_id: Identifier, amount: int):
        return self.store.spend_points(character, feature_id, amount)

    def restore_points(
        self, character: Character, feature_id: Identifier, amount: int
    ):
        return self.store.restore_points(character, feature_id, amount)

    def add_option(self, character: Character, feature_id: Identifier, option):
        return self.store.add_option(character, feature_id, option)

    def remove_option(self, character: Character, feature_id: Identifier, option: str):
        return self.store.remove_option(character, feature_id, option)

    def update_custom_state(
        self, character: Character, feature_id: Identifier, patch: Mapping[str, Any]
    ):
        return self.store.update_custom_state(character, feature_id, patch)

    def toggle_availability(self, character: Character, feature_id: Identifier):
        return self.store.toggle_availability(character, feature_id)

    def update_notes(self, character: Character, feature_id: Identifier, notes: str):
        return self.store.update_notes(character, feature_id, notes)

    def refresh_all(self, character: Character) -> UsageMap:
        return self.store.refresh_all(character)

    # Rests

    def rest(self, character: Character, rest_type: RestType) -> UsageMap:
        return self.replenisher.reset_all(character, rest_type)

    def features_for_reset(
        self, character: Character, rest_type: RestType
    ) -> list[Identifier]:
        return self.replenisher.features_for_reset(character, rest_type)

    def reset_feature(
        self, character: Character, feature_id: Identifier, rest_type: RestType
    ) -> UsageMap:
        return self.replenisher.reset_feature(character, feature_id, rest_type)

    # Migration

    def needs_migration(self, character: Character) -> bool:
        return self.migrator.needs_migration(character)

    def migrate(self, character: Character) -> Character:
        return self.migrator.migrate(character)

    def migration_summary(self, character: Character) -> list[str]:
        return self.migrator.migration_summary(character)

    def migrate_all(
        self, characters: Iterable[Character]
    ) -> tuple[list[Character], int]:
        return self.migrator.migrate_all(characters)

    def cleanup_legacy_fields(self, character: Character) -> Character:
        return self.migrator.cleanup_legacy_fields(character)

    # Modifiers

    def skill_bonus(
        self,
        character: Character,
        skill: str | None,
        modifier_type: str = "skill",
        is_proficient: bool = False,
        ability: str | None = None,
    ) -> int:
        return self.modifiers.skill_bonus(
            character, skill, modifier_type, is_proficient, ability
        )


def default_engine(settings: EngineSettings | None = None) -> FeatureEngine:
    """An engine over the configured catalog (the bundled one by default)."""
    settings = settings or get_settings()
    catalog = load_catalog(settings.catalog_path)
    logger.info(
        "Feature engine ready",
        catalog=catalog.id,
        templates=len(catalog.templates),
        strict=settings.formula_strict,
    )
    return FeatureEngine(catalog, strict=settings.formula_strict)
