from __future__ import annotations

import pytest

from charsheet.engine import descriptions
from charsheet.engine.descriptions import Segment
from charsheet.engine.descriptions import effective_config
from charsheet.engine.engine import FeatureEngine


def test_ability_and_proficiency_tokens(make_character):
    character = make_character(level=5, charisma=16, wisdom=8)
    text = (
        "{charisma_modifier} {charisma_mod} {cha_mod} {wis_mod} "
        "{proficiency_bonus} {prof_bonus} {proficiency}"
    )
    assert descriptions.resolve(text, character) == "3 3 3 -1 3 3 3"


def test_unresolved_tokens_stay(make_character):
    character = make_character(level=4)
    assert (
        descriptions.resolve("{mystery} at {level}, {dice}", character)
        == "{mystery} at 4, {dice}"
    )


def test_config_values(make_character):
    character = make_character(level=3)
    config = {"range": 30, "shape": "cone", "enabled": True, "tags": ["a"]}
    assert (
        descriptions.resolve("{range} ft {shape} {enabled} {tags}", character, config)
        == "30 ft cone {enabled} {tags}"
    )


@pytest.mark.parametrize(
    "config,dice",
    [
        ({"dice": "2d6", "base_dice": "1d4", "die_type": ["d8"] * 20}, "2d6"),
        ({"base_dice": "1d4", "die_type": ["d8"] * 20}, "1d4"),
        ({"die_type": ["d6"] * 4 + ["d8"] * 16}, "d8"),
        ({"die_type": ["d6", "d8"]}, "d8"),
    ],
)
def test_dice(make_character, config, dice):
    assert descriptions.resolve("{dice}", make_character(level=5), config) == dice


@pytest.mark.parametrize(
    "config,level,dice",
    [
        ({"override": {"baseDice": "1d6", "levelScaling": {"5": {"dice": "1d8"}}}}, 1, "1d6"),
        ({"override": {"baseDice": "1d6", "levelScaling": {"5": {"dice": "1d8"}}}}, 5, "1d8"),
        ({"dieType": ["d6"] * 4 + ["d8"] * 16}, 1, "d6"),
        ({"dieType": ["d6"] * 4 + ["d8"] * 16}, 5, "d8"),
    ],
)
def test_dice_camel_case_keys(make_character, config, level, dice):
    character = make_character(class_name="Bard", level=level)
    assert descriptions.resolve("roll {dice}", character, config) == f"roll {dice}"


def test_effective_config():
    config = {
        "range": 10,
        "override": {
            "range": 20,
            "level_scaling": {3: {"range": 30}, 5: {"range": 50, "extra": 1}},
        },
    }
    assert effective_config(config, 1) == {"range": 20}
    assert effective_config(config, 4) == {"range": 30}
    assert effective_config(config, 7) == {"range": 50, "extra": 1}
    assert effective_config(None, 7) == {}


def test_segments(make_character):
    character = make_character(level=2, charisma=14)
    assert descriptions.segments("Add {charisma_modifier}, {nope}.", character) == [
        Segment(kind="text", text="Add "),
        Segment(kind="value", text="2", token="charisma_modifier"),
        Segment(kind="text", text=", {nope}."),
    ]
    assert descriptions.segments("", character) == []


@pytest.mark.parametrize("level,die", [(1, "d6"), (5, "d8"), (10, "d10"), (15, "d12")])
def test_bardic_inspiration(engine: FeatureEngine, make_character, level, die):
    bard = make_character(class_name="Bard", level=level, charisma=14)
    text = engine.describe(bard, "bardic-inspiration")
    assert f"add one {die} to" in text
    assert "do this 2 times" in text


@pytest.mark.parametrize("level,damage", [(1, 2), (8, 2), (9, 3), (15, 3), (16, 4), (20, 4)])
def test_rage_level_scaling(engine: FeatureEngine, make_character, level, damage):
    barbarian = make_character(class_name="Barbarian", level=level)
    text = engine.describe(barbarian, "rage")
    assert f"extra {damage} damage" in text


def test_class_scoped_level(engine: FeatureEngine, make_character):
    character = make_character(
        level=7,
        classes=[{"name": "Paladin", "level": 3}, {"name": "Wizard", "level": 4}],
    )
    assert "equal to 3 times 5" in engine.describe(character, "lay-on-hands")
    assert "up to 2." in engine.describe(character, "arcane-recovery")


def test_special_ux_custom_config(engine: FeatureEngine, make_character):
    bard = make_character(class_name="Bard", level=2)
    assert "an extra d6 hit points" in engine.describe(bard, "song-of-rest")


def test_describe_without_text(engine: FeatureEngine, make_character):
    monk = make_character(class_name="Monk", level=2)
    assert engine.describe(monk, "ki-points") is None
    assert engine.describe(monk, "nope") is None
