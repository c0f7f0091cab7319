from __future__ import annotations

from typing import Any
from typing import Literal
from typing import TypeAlias

import pydantic
from pydantic.alias_generators import to_camel

Identifier: TypeAlias = str
ResourceKind: TypeAlias = Literal[
    "slots",
    "points_pool",
    "options_list",
    "special_ux",
    "skill_modifier",
    "availability_toggle",
]
RestType: TypeAlias = Literal["short_rest", "long_rest", "dawn"]
Replenish: TypeAlias = Literal["short_rest", "long_rest", "dawn"]
ToggleReplenish: TypeAlias = Literal["short_rest", "long_rest", "dawn", "manual"]

ABILITIES: tuple[str, ...] = (
    "strength",
    "dexterity",
    "constitution",
    "intelligence",
    "wisdom",
    "charisma",
)


class BaseModel(pydantic.BaseModel):
    """Common base for catalog and sheet data.

    Fields are written in snake_case in Python and in catalog files, but are
    also accepted (and dumped) in the camelCase form the sheet documents use.
    """

    model_config = pydantic.ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class BadDefinition(BaseModel):
    """Represents a catalog entry that could not be parsed.

    Attributes:
        path: The path of the definition file.
        data: Data as parsed from the json/yaml/toml file with defaults applied.
        raw_data: Same data, but without the defaults.
        exception_type: Type of the exception raised by the model parser.
        exception_message: Its message.
    """

    path: str | None = None
    data: Any = None
    raw_data: Any = None
    exception_type: str
    exception_message: str
