"""Migration of legacy per-ability character fields into the usage map.

Characters saved before the usage map existed track each ability in its own
field (`bardic_inspiration_used`, `infusions`, ...). Migration builds usage
records for them once. A feature that already has a record is never
touched, so migrating twice is the same as migrating once.
"""

from __future__ import annotations

from typing import Any
from typing import Iterable

from .character import Character
from .logging import get_logger
from .mapping import BuiltinFeature
from .mapping import FeatureMapping
from .records import AvailabilityToggleRecord
from .records import OptionRecord
from .records import OptionsListRecord
from .records import PointsPoolRecord
from .records import SlotsRecord
from .records import SpecialUXRecord
from .records import UsageRecord
from .templates import TemplateRegistry
from .usage import UsageStore

logger = get_logger(__name__)


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def normalize_option(value: Any, fallback_id: str) -> str | OptionRecord:
    """Turn a legacy selection (a name, or a dict in one of several shapes)
    into a selected option."""
    if isinstance(value, OptionRecord):
        return value
    if not isinstance(value, dict):
        text = str(value)
        return OptionRecord(id=text, title=text)
    data = {k: v for k, v in value.items() if k not in ("name", "needsAttunement")}
    name = value.get("name")
    data["id"] = str(value.get("id") or name or fallback_id)
    data["title"] = value.get("title") or name or "Untitled"
    data["description"] = value.get("description") or ""
    data["needs_attunement"] = bool(
        value.get("needs_attunement", value.get("needsAttunement", False))
    )
    return OptionRecord.model_validate(data)


class Migrator:
    def __init__(
        self,
        registry: TemplateRegistry,
        mapping: FeatureMapping,
        store: UsageStore,
    ):
        self.registry = registry
        self.mapping = mapping
        self.store = store

    def _pending(self, character: Character) -> list[BuiltinFeature]:
        """Eligible legacy-backed built-ins without a usage record, one per
        feature."""
        pending: dict[str, BuiltinFeature] = {}
        for entry in self.mapping.eligible(character):
            if entry.legacy is None or entry.feature_id not in self.registry:
                continue
            if entry.feature_id in character.feature_usage:
                continue
            pending.setdefault(entry.feature_id, entry)
        return list(pending.values())

    def needs_migration(self, character: Character) -> bool:
        if character.feature_usage:
            return False
        return any(
            entry.legacy is not None and entry.feature_id in self.registry
            for entry in self.mapping.eligible(character)
        )

    def migration_summary(self, character: Character) -> list[str]:
        """Names of the features `migrate` would add."""
        return [
            self.registry.get(entry.feature_id).title
            for entry in self._pending(character)
        ]

    def migrate(self, character: Character) -> Character:
        pending = self._pending(character)
        if not pending:
            return character
        usage = dict(character.feature_usage)
        for entry in pending:
            usage[entry.feature_id] = self._record(character, entry)
        logger.info(
            "Migrated legacy features",
            character=character.id,
            features=[entry.feature_id for entry in pending],
        )
        return character.with_usage(usage)

    def migrate_all(
        self, characters: Iterable[Character]
    ) -> tuple[list[Character], int]:
        """Migrate every character that needs it.

        Returns:
            All characters (migrated or not) in their original order, and
            how many were changed.
        """
        results: list[Character] = []
        count = 0
        for character in characters:
            if self.needs_migration(character):
                migrated = self.migrate(character)
                if migrated is not character:
                    count += 1
                character = migrated
            results.append(character)
        return results, count

    def cleanup_legacy_fields(self, character: Character) -> Character:
        """Clear legacy selection and notes fields already held in the usage map.

        Only fields whose feature has at least one selected option are
        cleared; anything else may still be needed by a later migration.
        """
        legacy = dict(character.legacy)
        changed = False
        for entry in self.mapping:
            binding = entry.legacy
            if binding is None or not (binding.selections or binding.notes):
                continue
            record = character.feature_usage.get(entry.feature_id)
            if not isinstance(record, OptionsListRecord) or not record.selected_options:
                continue
            if binding.selections and legacy.get(binding.selections):
                legacy[binding.selections] = []
                changed = True
            if binding.notes and legacy.get(binding.notes):
                legacy[binding.notes] = ""
                changed = True
        return character.with_legacy(legacy) if changed else character

    def _record(self, character: Character, entry: BuiltinFeature) -> UsageRecord:
        template = self.registry.get(entry.feature_id)
        record = self.store.seed_for(character, template, entry.class_name)
        binding = entry.legacy
        legacy = character.legacy
        changes: dict[str, Any] = {}
        match record:
            case SlotsRecord() if binding.consumed:
                consumed = _as_int(legacy.get(binding.consumed))
                changes["current_uses"] = min(
                    record.max_uses, max(0, record.max_uses - consumed)
                )
            case PointsPoolRecord() if binding.consumed:
                consumed = _as_int(legacy.get(binding.consumed))
                changes["current_points"] = min(
                    record.max_points, max(0, record.max_points - consumed)
                )
            case AvailabilityToggleRecord() if binding.available:
                value = legacy.get(binding.available)
                if value is not None:
                    changes["is_available"] = bool(value)
            case OptionsListRecord():
                if binding.selections:
                    # Kept even past max_selections; the cap only stops new picks.
                    changes["selected_options"] = [
                        normalize_option(value, f"{entry.feature_id}-{i}")
                        for i, value in enumerate(
                            legacy.get(binding.selections) or []
                        )
                    ]
                if binding.notes and legacy.get(binding.notes):
                    changes["notes"] = str(legacy[binding.notes])
            case SpecialUXRecord():
                state = dict(entry.seed_state or {})
                if binding.available and binding.available in legacy:
                    state["available"] = bool(legacy[binding.available])
                changes["custom_state"] = state
        if not changes:
            return record
        return record.model_copy(update=changes)
