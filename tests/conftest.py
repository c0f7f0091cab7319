"""Shared fixtures for feature engine tests."""

from __future__ import annotations

from datetime import datetime
from datetime import timezone

import pytest

from charsheet.engine import loader
from charsheet.engine.character import Character
from charsheet.engine.engine import FeatureEngine
from charsheet.engine.formula import FormulaEvaluator

NOW = datetime(2024, 5, 4, 12, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return NOW


@pytest.fixture(scope="session")
def catalog() -> loader.Catalog:
    catalog = loader.load_catalog()
    assert catalog.bad_defs == []
    return catalog


@pytest.fixture
def engine(catalog: loader.Catalog) -> FeatureEngine:
    return FeatureEngine(catalog, clock=fixed_clock)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def evaluator(catalog: loader.Catalog) -> FormulaEvaluator:
    return FormulaEvaluator(catalog.lookups)


@pytest.fixture
def make_character():
    """Build a character from keyword arguments.

    `class_name` and `level` describe a single-class character; pass
    `classes` for a multiclass one.
    """

    def _make(**data) -> Character:
        data.setdefault("id", "c1")
        data.setdefault("name", "Test Character")
        return Character.model_validate(data)

    return _make


@pytest.fixture
def bard(make_character) -> Character:
    return make_character(class_name="Bard", level=1, charisma=14)
