from __future__ import annotations

from typing import Any

import pydantic
from pydantic import Field

from .models import BaseModel
from .records import UsageMap
from .utils import normalize_name


class CharacterClass(BaseModel):
    model_config = pydantic.ConfigDict(extra="ignore", frozen=True)

    name: str
    level: int = 1
    subclass: str | None = None


class Character(BaseModel):
    """The parts of a character record the feature engine reads.

    Character records come from the persistence layer with many more keys than
    these; the rest are ignored. Single-class characters may leave `classes`
    empty and use `class_name`/`subclass`/`level` instead. A record with
    `classes` but no `level` gets the sum of its class levels.

    Attributes:
        feature_usage: The usage map, keyed by feature id. Stored on the
            character document as `classFeatureSkillsUsage`.
        legacy: Per-ability legacy fields (`bardic_inspiration_used`, ...)
            from before the usage map existed.
    """

    model_config = pydantic.ConfigDict(extra="ignore", frozen=True)

    id: str | None = None
    name: str | None = None
    class_name: str | None = Field(default=None, alias="class")
    subclass: str | None = None
    level: int = 1
    classes: list[CharacterClass] = Field(default_factory=list)

    strength: int = 10
    dexterity: int = 10
    constitution: int = 10
    intelligence: int = 10
    wisdom: int = 10
    charisma: int = 10

    feature_usage: UsageMap = Field(
        default_factory=dict, alias="classFeatureSkillsUsage"
    )
    legacy: dict[str, Any] = Field(default_factory=dict)

    @pydantic.model_validator(mode="before")
    @classmethod
    def _total_level(cls, data: Any) -> Any:
        if isinstance(data, dict) and "level" not in data and data.get("classes"):
            levels = [
                c.get("level", 1) if isinstance(c, dict) else c.level
                for c in data["classes"]
            ]
            data = data | {"level": sum(levels)}
        return data

    @property
    def is_multiclass(self) -> bool:
        return len(self.classes) > 1

    def all_classes(self) -> list[CharacterClass]:
        if self.classes:
            return self.classes
        if self.class_name:
            return [
                CharacterClass(
                    name=self.class_name, level=self.level, subclass=self.subclass
                )
            ]
        return []

    def find_class(self, name: str | None) -> CharacterClass | None:
        wanted = normalize_name(name)
        for c in self.all_classes():
            if normalize_name(c.name) == wanted:
                return c
        return None

    def class_level(self, name: str | None) -> int:
        """The character's level in the named class, or 0 if they lack it."""
        if c := self.find_class(name):
            return c.level
        return 0

    def has_class(self, name: str, min_level: int = 1) -> bool:
        return self.class_level(name) >= max(1, min_level)

    def has_subclass(self, class_name: str | None, subclass: str) -> bool:
        """Whether the character has `subclass`.

        If `class_name` is given, the subclass must be on that class.
        """
        wanted = normalize_name(subclass)
        if class_name:
            c = self.find_class(class_name)
            return bool(c) and normalize_name(c.subclass) == wanted
        return any(normalize_name(c.subclass) == wanted for c in self.all_classes())

    def with_usage(self, usage: UsageMap) -> Character:
        return self.model_copy(update={"feature_usage": usage})

    def with_legacy(self, legacy: dict[str, Any]) -> Character:
        return self.model_copy(update={"legacy": legacy})
