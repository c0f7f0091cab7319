"""Usage records: the live state of one tracked feature on one character.

A character's usage map is `dict[feature_id, UsageRecord]`. Records are
immutable; the usage store replaces them wholesale.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated
from typing import Any
from typing import Literal
from typing import TypeAlias
from typing import Union

import pydantic
from pydantic import Field

from .models import BaseModel
from .models import Identifier


class OptionRecord(BaseModel):
    """A selected option. Catalog rows may carry extra keys, which are kept."""

    model_config = pydantic.ConfigDict(extra="allow", frozen=True)

    id: str
    title: str | None = None
    description: str | None = None
    needs_attunement: bool | None = None


Option: TypeAlias = Union[str, OptionRecord]


def option_id(option: Option | dict) -> str:
    if isinstance(option, str):
        return option
    if isinstance(option, dict):
        return str(option.get("id", ""))
    return option.id


class BaseRecord(BaseModel):
    model_config = pydantic.ConfigDict(extra="ignore", frozen=True)

    feature_name: str
    feature_type: str
    enabled_at_level: int = 1
    notes: str | None = None
    last_updated: datetime | None = None
    last_reset: datetime | None = None


class SlotsRecord(BaseRecord):
    feature_type: Literal["slots"] = "slots"
    current_uses: int = 0
    max_uses: int = 0


class PointsPoolRecord(BaseRecord):
    feature_type: Literal["points_pool"] = "points_pool"
    current_points: int = 0
    max_points: int = 0


class OptionsListRecord(BaseRecord):
    feature_type: Literal["options_list"] = "options_list"
    selected_options: list[Option] = Field(default_factory=list)
    max_selections: int = 0

    def has_option(self, id: str) -> bool:
        return any(option_id(o) == id for o in self.selected_options)


class SpecialUXRecord(BaseRecord):
    feature_type: Literal["special_ux"] = "special_ux"
    custom_state: dict[str, Any] = Field(default_factory=dict)


class SkillModifierRecord(BaseRecord):
    feature_type: Literal["skill_modifier"] = "skill_modifier"


class AvailabilityToggleRecord(BaseRecord):
    feature_type: Literal["availability_toggle"] = "availability_toggle"
    is_available: bool | None = None

    @property
    def available(self) -> bool:
        return self.is_available is not False


UsageRecord: TypeAlias = Annotated[
    Union[
        SlotsRecord,
        PointsPoolRecord,
        OptionsListRecord,
        SpecialUXRecord,
        SkillModifierRecord,
        AvailabilityToggleRecord,
    ],
    Field(discriminator="feature_type"),
]
UsageMap: TypeAlias = dict[Identifier, UsageRecord]

usage_map_adapter: pydantic.TypeAdapter[UsageMap] = pydantic.TypeAdapter(UsageMap)


def load_usage(data: dict | None) -> UsageMap:
    """Parse a stored usage map (camelCase or snake_case keys)."""
    return usage_map_adapter.validate_python(data or {})


def dump_usage(usage: UsageMap) -> dict:
    """JSON-ready form of a usage map, camelCase keys and ISO timestamps."""
    return usage_map_adapter.dump_python(
        usage, mode="json", by_alias=True, exclude_none=True
    )
