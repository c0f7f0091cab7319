"""Built-in features: which class grants which template, and from which
legacy fields its state can be recovered."""

from __future__ import annotations

from typing import Any
from typing import Iterable

from .character import Character
from .models import BaseModel
from .models import Identifier
from .utils import normalize_name


class LegacyBinding(BaseModel):
    """Legacy character fields backing a built-in feature.

    Attributes:
        consumed: Field holding the number of uses/points consumed.
        available: Field holding an availability flag.
        selections: Field holding a list of selected options.
        notes: Field holding free-form notes about the selections.
    """

    consumed: str | None = None
    available: str | None = None
    selections: str | None = None
    notes: str | None = None


class BuiltinFeature(BaseModel):
    """A catalog entry granting a template to a class at a level.

    The same template may be granted by several entries (Channel Divinity is
    both a Cleric and a Paladin feature).
    """

    key: str
    feature_id: Identifier
    class_name: str
    subclass: str | None = None
    level: int = 1
    legacy: LegacyBinding | None = None
    seed_state: dict[str, Any] | None = None

    def applies_to(self, character: Character) -> bool:
        if not character.has_class(self.class_name, self.level):
            return False
        if self.subclass:
            return character.has_subclass(self.class_name, self.subclass)
        return True


class FeatureMapping:
    def __init__(self, entries: Iterable[BuiltinFeature] = ()):
        self.entries: list[BuiltinFeature] = list(entries)

    def __iter__(self):
        return iter(self.entries)

    def eligible(self, character: Character) -> list[BuiltinFeature]:
        return [e for e in self.entries if e.applies_to(character)]

    def entry_for(
        self, character: Character, feature_id: Identifier
    ) -> BuiltinFeature | None:
        """The first entry granting `feature_id` that applies to the character."""
        for entry in self.entries:
            if entry.feature_id == feature_id and entry.applies_to(character):
                return entry
        return None

    def is_eligible(self, character: Character, feature_id: Identifier) -> bool:
        return self.entry_for(character, feature_id) is not None

    def available_feature_ids(self, character: Character) -> set[Identifier]:
        return {e.feature_id for e in self.eligible(character)}
