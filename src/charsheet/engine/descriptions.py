"""Substitution of computed values into ability text.

Descriptions may contain `{token}` placeholders, resolved in this order:

- ability modifiers: `charisma_modifier`, `charisma_mod`, `cha_mod`, ...
- proficiency bonus: `proficiency_bonus`, `proficiency`, `prof_bonus`
- `level`: the level in the feature's class
- any string or number in the feature's effective config
- `dice`: the config's `dice`, else `base_dice`, else the die for the
  current level from `die_type`

Tokens that don't resolve are left as they are, braces included.
"""

from __future__ import annotations

import re
from typing import Any
from typing import Literal
from typing import Mapping

import pydantic

from .character import Character
from .formula import FormulaContext
from .models import ABILITIES
from .models import BaseModel

_TOKEN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")
_PROFICIENCY_TOKENS = frozenset({"proficiency_bonus", "proficiency", "prof_bonus"})


def _ability_tokens() -> dict[str, str]:
    tokens = {}
    for ability in ABILITIES:
        tokens[f"{ability}_modifier"] = ability
        tokens[f"{ability}_mod"] = ability
        tokens[f"{ability[:3]}_mod"] = ability
    return tokens


_ABILITY_TOKENS = _ability_tokens()


class Segment(BaseModel):
    """A piece of resolved description text.

    `value` segments carry the token they replaced, so a UI can highlight
    computed numbers.
    """

    model_config = pydantic.ConfigDict(frozen=True)

    kind: Literal["text", "value"]
    text: str
    token: str | None = None


def effective_config(
    config: BaseModel | Mapping[str, Any] | None, class_level: int
) -> dict[str, Any]:
    """Flatten a feature config for lookups.

    The config's `override` blob is merged over the rest, then each
    `level_scaling` entry of the override whose level has been reached is
    merged in, lowest level first. A special UX `custom_config` is merged in
    as well.
    """
    if config is None:
        return {}
    if isinstance(config, pydantic.BaseModel):
        base = config.model_dump(exclude_none=True)
    else:
        base = dict(config)
    base |= base.pop("custom_config", None) or {}
    override = dict(base.pop("override", None) or {})
    scaling = override.pop("level_scaling", None) or override.pop("levelScaling", None)
    effective = base | override
    for threshold in sorted(scaling or {}, key=int):
        if class_level >= int(threshold):
            effective |= scaling[threshold]
    return effective


def _dice(effective: Mapping[str, Any], class_level: int) -> str | None:
    # Override blobs come from sheet documents, so keys may be camelCase.
    for key in ("dice", "base_dice", "baseDice"):
        if effective.get(key):
            return str(effective[key])
    progression = effective.get("die_type") or effective.get("dieType")
    if progression:
        index = min(max(class_level, 1), len(progression)) - 1
        return str(progression[index])
    return None


def _lookup(
    token: str, context: FormulaContext, effective: Mapping[str, Any]
) -> str | None:
    if ability := _ABILITY_TOKENS.get(token):
        return str(context.modifier(ability))
    if token in _PROFICIENCY_TOKENS:
        return str(context.proficiency_bonus)
    if token == "level":
        return str(context.level)
    value = effective.get(token)
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return str(value)
    if token == "dice":
        return _dice(effective, context.level)
    return None


def segments(
    text: str,
    character: Character,
    config: BaseModel | Mapping[str, Any] | None = None,
    class_name: str | None = None,
) -> list[Segment]:
    """Split `text` into literal and resolved pieces."""
    context = FormulaContext.for_character(character, class_name)
    effective = effective_config(config, context.level)
    result: list[Segment] = []
    pos = 0
    for match in _TOKEN.finditer(text or ""):
        value = _lookup(match[1], context, effective)
        if value is None:
            continue
        if match.start() > pos:
            result.append(Segment(kind="text", text=text[pos : match.start()]))
        result.append(Segment(kind="value", text=value, token=match[1]))
        pos = match.end()
    if pos < len(text or ""):
        result.append(Segment(kind="text", text=text[pos:]))
    return result


def resolve(
    text: str,
    character: Character,
    config: BaseModel | Mapping[str, Any] | None = None,
    class_name: str | None = None,
) -> str:
    """Replace every resolvable `{token}` in `text`."""
    return "".join(s.text for s in segments(text, character, config, class_name))
