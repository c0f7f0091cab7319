from __future__ import annotations

import json
import logging
import pathlib

import pytest
import structlog
from structlog.testing import capture_logs

from charsheet.engine import loader
from charsheet.engine.engine import FeatureEngine
from charsheet.engine.engine import default_engine
from charsheet.engine.formula import FormulaError
from charsheet.engine.logging import configure_from_settings
from charsheet.engine.logging import configure_logging
from charsheet.engine.logging import get_logger
from charsheet.engine.records import SlotsRecord
from charsheet.engine.settings import EngineSettings

BROKEN_CATALOG = pathlib.Path(__file__).parent.parent / "catalogs" / "broken"


def test_load_character_migrates(engine: FeatureEngine):
    character = engine.load_character(
        {
            "id": "abc",
            "name": "Lyra",
            "class": "Paladin",
            "level": 2,
            "charisma": 14,
            "hitPoints": 18,
            "legacy": {"divine_sense_used": 2},
        }
    )
    assert character.class_name == "Paladin"
    record = character.feature_usage["divine-sense"]
    assert record.max_uses == 3
    assert record.current_uses == 1


def test_load_character_keeps_stored_usage(engine: FeatureEngine):
    stored = {
        "class": "Paladin",
        "level": 2,
        "legacy": {"divine_sense_used": 2},
        "classFeatureSkillsUsage": {
            "divine-sense": {
                "featureName": "Divine Sense",
                "featureType": "slots",
                "currentUses": 3,
                "maxUses": 3,
            }
        },
    }
    character = engine.load_character(stored)
    assert list(character.feature_usage) == ["divine-sense"]
    assert character.feature_usage["divine-sense"].current_uses == 3


def test_available_features(engine: FeatureEngine, make_character):
    character = make_character(
        level=4,
        classes=[{"name": "Paladin", "level": 2}, {"name": "Cleric", "level": 2}],
    )
    assert [t.id for t in engine.available_features(character)] == [
        "channel-divinity",
        "divine-sense",
        "lay-on-hands",
    ]


def test_initialize_all(engine: FeatureEngine, make_character):
    warlock = make_character(class_name="Warlock", subclass="The Genie", level=2)
    usage = engine.initialize_all(warlock)
    assert set(usage) == {"eldritch-invocations", "genies-wrath"}
    assert usage["genies-wrath"].is_available is True
    assert usage["eldritch-invocations"].max_selections == 2
    assert warlock.feature_usage == {}


def test_cleanup(engine: FeatureEngine, make_character):
    bard = make_character(class_name="Bard", level=2)
    usage = engine.initialize_all(bard)
    custom = SlotsRecord(feature_name="Homebrew", current_uses=1, max_uses=1)
    respecced = make_character(class_name="Bard", level=1).with_usage(
        usage | {"homebrew": custom}
    )
    pruned = engine.cleanup(respecced)
    assert set(pruned) == {"bardic-inspiration", "homebrew"}
    assert engine.cleanup(bard.with_usage(usage)) is usage


def test_refresh_after_level_up(engine: FeatureEngine, make_character):
    paladin = make_character(class_name="Paladin", level=2)
    paladin = paladin.with_usage(engine.initialize_all(paladin))
    leveled = paladin.model_copy(update={"level": 3})
    usage = engine.refresh_all(leveled)
    assert usage["lay-on-hands"].max_points == 15
    assert usage["divine-sense"] is paladin.feature_usage["divine-sense"]


def test_evaluate_and_validate(engine: FeatureEngine, make_character):
    paladin = make_character(class_name="Paladin", level=6)
    assert engine.evaluate("channel_divinity_uses", paladin) == 2
    assert engine.validate(engine.template("rage"))


def test_level_from_classes(engine: FeatureEngine, make_character):
    paladin = make_character(classes=[{"name": "Paladin", "level": 5}])
    assert engine.evaluate("proficiency_bonus", paladin) == 3
    usage = engine.initialize_all(paladin)
    assert usage["lay-on-hands"].max_points == 25


def test_strict_engine(catalog: loader.Catalog, make_character):
    strict = FeatureEngine(catalog, strict=True)
    with pytest.raises(FormulaError):
        strict.evaluate("level +", make_character())


def test_default_engine(monkeypatch):
    monkeypatch.setenv("CHARSHEET_FORMULA_STRICT", "true")
    monkeypatch.setenv("CHARSHEET_CATALOG_PATH", str(BROKEN_CATALOG))
    settings = EngineSettings(_env_file=None)
    assert settings.formula_strict
    engine = default_engine(settings)
    assert engine.catalog.id == "broken"
    assert engine.evaluator.strict


def test_default_engine_bundled():
    engine = default_engine(EngineSettings(_env_file=None))
    assert engine.catalog.id == "dnd5e"
    assert not engine.evaluator.strict


def test_rest_is_logged(engine: FeatureEngine, bard):
    bard = bard.with_usage(engine.use_slot(bard, "bardic-inspiration"))
    with capture_logs() as logs:
        engine.rest(bard, "short_rest")
    assert logs == [
        {
            "event": "Rest taken",
            "log_level": "info",
            "character": "c1",
            "rest_type": "short_rest",
            "features": ["bardic-inspiration"],
        }
    ]


def test_configure_logging_json(capsys):
    try:
        configure_logging(level="DEBUG", json_format=True)
        get_logger("test").info("Hello", feature_id="rage")
        line = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    finally:
        structlog.reset_defaults()
    assert line["event"] == "Hello"
    assert line["feature_id"] == "rage"
    assert line["level"] == "info"
    assert line["app"] == "charsheet"


def test_configure_from_settings(monkeypatch, capsys):
    monkeypatch.setenv("CHARSHEET_LOG_LEVEL", "WARNING")
    try:
        configure_from_settings(EngineSettings(_env_file=None))
        logger = get_logger("test")
        logger.info("Quiet")
        logger.warning("Loud")
        out = capsys.readouterr().out
    finally:
        structlog.reset_defaults()
    assert "Loud" in out
    assert "Quiet" not in out


def test_configure_logging_leaves_stdlib_alone():
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    try:
        configure_logging(level="DEBUG", json_format=True)
        assert root.handlers == handlers
        assert root.level == level
    finally:
        structlog.reset_defaults()
