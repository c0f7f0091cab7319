from __future__ import annotations

from .character import Character
from .formula import FormulaEvaluator
from .mapping import FeatureMapping
from .templates import SkillModifierConfig
from .templates import SkillModifierTemplate
from .templates import TemplateRegistry
from .utils import normalize_name


def _targets(config: SkillModifierConfig, skill: str | None, ability: str | None) -> bool:
    if config.target_skills and normalize_name(skill) not in {
        normalize_name(s) for s in config.target_skills
    }:
        return False
    if config.target_abilities and normalize_name(ability) not in {
        normalize_name(a) for a in config.target_abilities
    }:
        return False
    return True


def _condition_holds(config: SkillModifierConfig, is_proficient: bool) -> bool:
    match config.condition.type if config.condition else "always":
        case "proficient":
            return is_proficient
        case "not_proficient":
            return not is_proficient
    return True


class ModifierCalculator:
    """Totals the bonuses granted by `skill_modifier` features.

    Stackable modifiers all add up. Of the non-stackable ones (Jack of All
    Trades, Remarkable Athlete...), only the largest applies.
    """

    def __init__(
        self,
        registry: TemplateRegistry,
        evaluator: FormulaEvaluator,
        mapping: FeatureMapping,
    ):
        self.registry = registry
        self.evaluator = evaluator
        self.mapping = mapping

    def active(self, character: Character) -> list[tuple[SkillModifierTemplate, str]]:
        """Skill modifier templates the character has, with the class granting each."""
        found: dict[str, tuple[SkillModifierTemplate, str]] = {}
        for entry in self.mapping.eligible(character):
            template = self.registry.get(entry.feature_id)
            if isinstance(template, SkillModifierTemplate):
                found.setdefault(template.id, (template, entry.class_name))
        return list(found.values())

    def skill_bonus(
        self,
        character: Character,
        skill: str | None,
        modifier_type: str = "skill",
        is_proficient: bool = False,
        ability: str | None = None,
    ) -> int:
        stacked = 0
        best: int | None = None
        for template, class_name in self.active(character):
            config = template.config
            if config.modifier_type != modifier_type:
                continue
            if not _targets(config, skill, ability):
                continue
            if not _condition_holds(config, is_proficient):
                continue
            value = self.evaluator.evaluate_for(
                config.modifier_formula, character, class_name, at_least_one=False
            )
            if config.stackable:
                stacked += value
            elif best is None or value > best:
                best = value
        return stacked + (best or 0)
