"""Formula evaluation for feature resources.

Formulas are short strings stored on feature templates, such as
`charisma_modifier`, `fixed:3`, `level * 5` or `1 + wisdom_modifier`. They
are evaluated against a `FormulaContext` built from a character snapshot.

Arithmetic is handled by a deliberately tiny recursive-descent parser:

    expr   := term (('+' | '-') term)*
    term   := factor (('*' | '/') factor)*
    factor := ('+' | '-') factor | INTEGER | NAME | '(' expr ')'

NAME must come from the context's symbol table. Division is exact (rational)
and the final value is floored, so `level / 2` at level 5 is 2 and
`-3 / 2` is -2.
"""

from __future__ import annotations

import math
import re
from fractions import Fraction
from typing import TYPE_CHECKING
from typing import Mapping

import pydantic
from pydantic import Field

from .logging import get_logger
from .models import ABILITIES
from .models import BaseModel
from .utils import table_lookup

if TYPE_CHECKING:
    from .character import Character

logger = get_logger(__name__)

# Parser limits. Deeper nesting or longer literals are formula errors.
_MAX_DEPTH = 32
_MAX_DIGITS = 18
_INTEGER = re.compile(rf"[+-]?\d{{1,{_MAX_DIGITS}}}")
_MODIFIER = re.compile(r"(?P<ability>[a-z]+)_modifier")
_TOKEN = re.compile(
    r"""\s*(?:
        (?P<number>\d+)
        |(?P<name>[A-Za-z_][A-Za-z0-9_]*)
        |(?P<op>[-+*/()])
    )""",
    re.VERBOSE,
)
_PROFICIENCY_NAMES = frozenset({"proficiency_bonus", "proficiency"})


class FormulaError(ValueError):
    """Raised for malformed or unrecognized formulas in strict mode."""

    def __init__(self, message: str, formula: str | None = None):
        super().__init__(message)
        self.formula = formula


def proficiency_bonus_for(level: int) -> int:
    if level >= 17:
        return 6
    if level >= 13:
        return 5
    if level >= 9:
        return 4
    if level >= 5:
        return 3
    return 2


def ability_modifier(score: int) -> int:
    return math.floor((score - 10) / 2)


class FormulaContext(BaseModel):
    """The numbers a formula may reference.

    Attributes:
        level: Character level, or the level in one class when the formula
            is scoped to that class.
        proficiency_bonus: Derived from the total character level, even when
            `level` is class-scoped.
    """

    model_config = pydantic.ConfigDict(frozen=True)

    level: int = 1
    strength: int = 10
    dexterity: int = 10
    constitution: int = 10
    intelligence: int = 10
    wisdom: int = 10
    charisma: int = 10
    proficiency_bonus: int = 2

    @classmethod
    def for_character(
        cls, character: Character, class_name: str | None = None
    ) -> FormulaContext:
        level = character.level
        if class_name and character.is_multiclass:
            level = character.class_level(class_name) or character.level
        return cls(
            level=level,
            strength=character.strength,
            dexterity=character.dexterity,
            constitution=character.constitution,
            intelligence=character.intelligence,
            wisdom=character.wisdom,
            charisma=character.charisma,
            proficiency_bonus=proficiency_bonus_for(character.level),
        )

    def score(self, ability: str) -> int:
        return getattr(self, ability)

    def modifier(self, ability: str) -> int:
        return ability_modifier(self.score(ability))

    def symbols(self) -> dict[str, int]:
        table = {
            "level": self.level,
            "proficiency_bonus": self.proficiency_bonus,
            "proficiency": self.proficiency_bonus,
            "half_proficiency_bonus": self.proficiency_bonus // 2,
        }
        for ability in ABILITIES:
            table[ability] = self.score(ability)
            table[f"{ability}_modifier"] = self.modifier(ability)
        return table


class LookupTables(BaseModel):
    """Class progressions that aren't simple arithmetic of the context.

    Each table is sparse and level-keyed (see `utils.table_lookup`), e.g.
    `warlock_invocations_known: {2: 2, 5: 3, 7: 4, ...}`.
    """

    model_config = pydantic.ConfigDict(frozen=True)

    tables: dict[str, dict[int, int]] = Field(default_factory=dict)

    def __contains__(self, name: object) -> bool:
        return name in self.tables

    def names(self) -> list[str]:
        return sorted(self.tables)

    def value(self, name: str, level: int) -> int:
        return table_lookup(self.tables[name], level)


class _Parser:
    def __init__(self, formula: str, symbols: Mapping[str, int]):
        self.formula = formula
        self.symbols = symbols
        self.tokens = self._tokenize(formula)
        self.pos = 0
        self.depth = 0

    def _tokenize(self, formula: str) -> list[tuple[str, str]]:
        tokens: list[tuple[str, str]] = []
        pos = 0
        end = len(formula.rstrip())
        while pos < end:
            match = _TOKEN.match(formula, pos)
            if not match:
                raise FormulaError(
                    f"Unexpected character {formula[pos]!r} in formula", formula
                )
            kind = match.lastgroup
            tokens.append((kind, match.group(kind)))
            pos = match.end()
        return tokens

    def parse(self) -> Fraction:
        if not self.tokens:
            raise FormulaError("Empty formula", self.formula)
        value = self._expr()
        if self.pos != len(self.tokens):
            raise FormulaError(
                f"Unexpected {self.tokens[self.pos][1]!r} in formula", self.formula
            )
        return value

    def _peek(self) -> str | None:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos][1]
        return None

    def _next(self) -> tuple[str, str]:
        if self.pos >= len(self.tokens):
            raise FormulaError("Formula ended unexpectedly", self.formula)
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def _expr(self) -> Fraction:
        value = self._term()
        while self._peek() in ("+", "-"):
            _, op = self._next()
            rhs = self._term()
            value = value + rhs if op == "+" else value - rhs
        return value

    def _term(self) -> Fraction:
        value = self._factor()
        while self._peek() in ("*", "/"):
            _, op = self._next()
            rhs = self._factor()
            if op == "*":
                value = value * rhs
            elif rhs == 0:
                raise FormulaError("Division by zero", self.formula)
            else:
                value = value / rhs
        return value

    def _factor(self) -> Fraction:
        self.depth += 1
        if self.depth > _MAX_DEPTH:
            raise FormulaError("Formula is nested too deeply", self.formula)
        try:
            return self._primary()
        finally:
            self.depth -= 1

    def _primary(self) -> Fraction:
        kind, text = self._next()
        match kind, text:
            case "op", "+":
                return self._factor()
            case "op", "-":
                return -self._factor()
            case "op", "(":
                value = self._expr()
                if self._peek() != ")":
                    raise FormulaError("Unbalanced parentheses", self.formula)
                self._next()
                return value
            case "number", _:
                if len(text) > _MAX_DIGITS:
                    raise FormulaError(
                        f"Number {text[:10]}... is too long", self.formula
                    )
                return Fraction(int(text))
            case "name", _:
                if text not in self.symbols:
                    raise FormulaError(f"Unknown identifier {text!r}", self.formula)
                return Fraction(self.symbols[text])
        raise FormulaError(f"Unexpected {text!r} in formula", self.formula)


class FormulaEvaluator:
    """Evaluates formula strings into integers.

    Args:
        lookups: Named class progressions. Injected rather than global so the
            evaluator stays a pure function of its inputs.
        strict: If True, malformed or unknown formulas raise `FormulaError`.
            Otherwise (the default) they are logged and evaluate to 0, which
            can under-grant a resource but never over-grant one.
    """

    def __init__(self, lookups: LookupTables | None = None, strict: bool = False):
        self.lookups = lookups or LookupTables()
        self.strict = strict

    def evaluate(
        self, formula: str, context: FormulaContext, at_least_one: bool = True
    ) -> int:
        """Evaluate `formula` against `context`.

        Args:
            at_least_one: A formula consisting of a single ability modifier
                is raised to at least 1. Use this for resource counts; pass
                False for pools, armor class and modifier formulas.
        """
        try:
            return self._evaluate(formula, context, at_least_one)
        except FormulaError as exc:
            if self.strict:
                raise
            logger.warning(
                "Formula evaluated to 0", formula=formula, error=str(exc)
            )
            return 0

    def check(self, formula: str) -> str | None:
        """Return why `formula` can't be evaluated, or None if it can."""
        try:
            self._evaluate(formula, FormulaContext(), True)
        except FormulaError as exc:
            return str(exc)
        return None

    def evaluate_for(
        self,
        formula: str,
        character: Character,
        class_name: str | None = None,
        at_least_one: bool = True,
    ) -> int:
        context = FormulaContext.for_character(character, class_name)
        return self.evaluate(formula, context, at_least_one=at_least_one)

    def _evaluate(
        self, formula: str, context: FormulaContext, at_least_one: bool
    ) -> int:
        if not isinstance(formula, str):
            raise FormulaError(f"Formula must be a string, got {formula!r}")
        formula = formula.strip()
        if not formula:
            raise FormulaError("Empty formula", formula)

        if formula.startswith("fixed:"):
            constant = formula.removeprefix("fixed:").strip()
            if not _INTEGER.fullmatch(constant):
                raise FormulaError(f"Bad constant {constant!r}", formula)
            return int(constant)

        # Checked before the modifier pattern so "proficiency_bonus" is never
        # mistaken for an ability.
        if formula in _PROFICIENCY_NAMES:
            return context.proficiency_bonus

        if (match := _MODIFIER.fullmatch(formula)) and match["ability"] in ABILITIES:
            modifier = context.modifier(match["ability"])
            return max(1, modifier) if at_least_one else modifier

        if _INTEGER.fullmatch(formula):
            return int(formula)

        if formula == "level":
            return context.level

        if formula in self.lookups:
            return self.lookups.value(formula, context.level)

        symbols = context.symbols()
        for name in self.lookups.names():
            symbols[name] = self.lookups.value(name, context.level)
        return math.floor(_Parser(formula, symbols).parse())
