from __future__ import annotations

import pydantic
import pytest

from charsheet.engine.formula import FormulaEvaluator
from charsheet.engine.templates import OptionsListTemplate
from charsheet.engine.templates import PointsPoolTemplate
from charsheet.engine.templates import SlotsTemplate
from charsheet.engine.templates import SpecialUXTemplate
from charsheet.engine.templates import TemplateRegistry
from charsheet.engine.templates import parse_template
from charsheet.engine.templates import validate_template


def test_parse_snake_and_camel_case():
    snake = parse_template(
        {
            "id": "ki-points",
            "title": "Ki Points",
            "feature_type": "points_pool",
            "config": {"total_formula": "level", "replenish_on": "short_rest"},
        }
    )
    camel = parse_template(
        {
            "id": "ki-points",
            "title": "Ki Points",
            "featureType": "points_pool",
            "config": {"totalFormula": "level", "replenishOn": "short_rest"},
        }
    )
    assert isinstance(snake, PointsPoolTemplate)
    assert snake == camel
    assert snake.config.min_spend == 1


def test_parse_rejects_unknown_kind():
    with pytest.raises(pydantic.ValidationError):
        parse_template({"id": "x", "title": "X", "feature_type": "spell_slots"})


def test_parse_rejects_unknown_config_keys():
    with pytest.raises(pydantic.ValidationError):
        parse_template(
            {
                "id": "x",
                "title": "X",
                "feature_type": "slots",
                "config": {"uses_formula": "1", "uses": 3},
            }
        )


def test_valid_template():
    template = SlotsTemplate(
        id="rage",
        title="Rage",
        config={"uses_formula": "fixed:2", "replenish_on": "long_rest"},
    )
    result = validate_template(template)
    assert result
    assert result.errors == []


@pytest.mark.parametrize(
    "template,error",
    [
        (
            SlotsTemplate(id=" ", title="T", config={"uses_formula": "1", "replenish_on": "dawn"}),
            "Feature ID is required",
        ),
        (
            SlotsTemplate(id="t", title="", config={"uses_formula": "1", "replenish_on": "dawn"}),
            "Feature title is required",
        ),
        (
            SlotsTemplate(
                id="t",
                title="T",
                enabled_at_level=21,
                config={"uses_formula": "1", "replenish_on": "dawn"},
            ),
            "Enabled at level must be between 1 and 20",
        ),
        (
            SlotsTemplate(id="t", title="T", config={"replenish_on": "dawn"}),
            "Uses formula is required for slots features",
        ),
        (
            SlotsTemplate(id="t", title="T", config={"uses_formula": "1"}),
            "Replenish timing is required for slots features",
        ),
        (
            PointsPoolTemplate(id="t", title="T", config={"replenish_on": "long_rest"}),
            "Total formula is required for points pool features",
        ),
        (
            PointsPoolTemplate(id="t", title="T", config={"total_formula": "level"}),
            "Replenish timing is required for points pool features",
        ),
        (
            OptionsListTemplate(id="t", title="T", config={"options_source": "custom"}),
            "Max selections formula is required for options list features",
        ),
        (
            OptionsListTemplate(id="t", title="T", config={"max_selections_formula": "2"}),
            "Options source is required for options list features",
        ),
        (
            OptionsListTemplate(
                id="t",
                title="T",
                config={"max_selections_formula": "2", "options_source": "database"},
            ),
            "Database table is required when using database options source",
        ),
        (
            SpecialUXTemplate(id="t", title="T"),
            "Component ID is required for special UX features",
        ),
    ],
)
def test_invalid_templates(template, error):
    result = validate_template(template)
    assert not result
    assert error in result.errors


def test_validation_warnings():
    template = PointsPoolTemplate(
        id="t",
        title="T",
        config={
            "total_formula": "level *",
            "replenish_on": "long_rest",
            "min_spend": 5,
            "max_spend": 2,
        },
    )
    result = validate_template(template, FormulaEvaluator())
    assert result.valid
    assert len(result.warnings) == 2
    assert "Maximum spend is lower than minimum spend" in result.warnings


def test_die_progression_length_warning():
    template = SlotsTemplate(
        id="t",
        title="T",
        config={"uses_formula": "1", "replenish_on": "dawn", "die_type": ["d6"] * 5},
    )
    result = validate_template(template)
    assert result.valid
    assert result.warnings == ["Die progression has 5 entries, expected 20"]


def test_registry(engine):
    registry = engine.registry
    assert registry.get("bardic-inspiration").title == "Bardic Inspiration"
    assert registry.get("nope") is None
    assert "lay-on-hands" in registry
    assert {t.id for t in registry.by_kind("points_pool")} == {
        "lay-on-hands",
        "ki-points",
        "sorcery-points",
    }
    assert len(registry.list()) == len(registry)
    assert registry.validate_all() == {}


def test_registry_register():
    registry = TemplateRegistry()
    template = SpecialUXTemplate(id="x", title="X", config={"component_id": "x"})
    registry.register(template)
    assert registry.get("x") is template
    with pytest.raises(ValueError):
        registry.register(template)


def test_class_name_from_directory_defaults(engine):
    assert engine.template("bardic-inspiration").class_name == "Bard"
    assert engine.template("channel-divinity").class_name is None
    assert engine.template("bardic-inspiration").version == 1
