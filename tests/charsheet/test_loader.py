from __future__ import annotations

import pathlib
import shutil

import pydantic
import pytest

from charsheet.engine import loader
from charsheet.engine.templates import AvailabilityToggleTemplate
from charsheet.engine.templates import PointsPoolTemplate

BROKEN = pathlib.Path(__file__).parent.parent / "catalogs" / "broken"


def test_load_bundled_catalog(catalog: loader.Catalog):
    assert catalog.id == "dnd5e"
    assert "bardic-inspiration" in catalog.templates
    assert catalog.lookup_tables["channel_divinity_uses"] == {2: 1, 6: 2, 18: 3}
    assert {entry.feature_id for entry in catalog.builtin_features} <= set(
        catalog.templates
    )


def test_load_catalog_from_zip(tmp_path, catalog: loader.Catalog):
    archive = shutil.make_archive(
        str(tmp_path / "catalog"), "zip", root_dir=loader.BUNDLED_CATALOG
    )
    zipped = loader.load_catalog(archive)
    assert zipped.bad_defs == []
    assert zipped.templates.keys() == catalog.templates.keys()


def test_deserialize_catalog(catalog: loader.Catalog):
    restored = loader.deserialize_catalog(catalog.model_dump_json())
    assert restored.templates == catalog.templates
    assert restored.lookup_tables == catalog.lookup_tables


def test_broken_catalog_collects_bad_defs():
    catalog = loader.load_catalog(BROKEN)
    assert set(catalog.templates) == {"ki-points", "patient-defense"}
    kinds = [bad.exception_type for bad in catalog.bad_defs]
    assert len(kinds) == 4
    assert "ValidationError" in kinds[0]
    assert kinds[1:] == ["NonUniqueId", "InvalidTemplate", "UnknownTemplate"]
    assert [entry.key for entry in catalog.builtin_features] == ["ki"]


def test_defaults_are_applied():
    catalog = loader.load_catalog(BROKEN)
    ki = catalog.templates["ki-points"]
    assert isinstance(ki, PointsPoolTemplate)
    assert ki.version == 2
    assert ki.class_name == "Monk"
    assert ki.enabled_at_level == 2
    assert ki.def_path.endswith("ki.yaml")

    toggle = catalog.templates["patient-defense"]
    assert isinstance(toggle, AvailabilityToggleTemplate)
    # Embedded defaults only apply within their own file.
    assert toggle.enabled_at_level == 1
    assert toggle.config.replenish_on == "manual"


def test_id_defaults_to_file_stem():
    catalog = loader.load_catalog(BROKEN)
    invalid = next(b for b in catalog.bad_defs if b.exception_type == "InvalidTemplate")
    assert invalid.data["id"] == "stunning-strike"
    assert "Uses formula is required" in invalid.exception_message


def test_without_bad_defs_raises():
    with pytest.raises(pydantic.ValidationError):
        loader.load_catalog(BROKEN, with_bad_defs=False)


def test_missing_catalog_file(tmp_path):
    with pytest.raises(ValueError, match="No catalog file"):
        loader.load_catalog(tmp_path)


def test_invalid_catalog_file(tmp_path):
    (tmp_path / "catalog.yaml").write_text("id: x\nname: X\nlookup_tables: 3\n")
    with pytest.raises(ValueError, match="Invalid catalog definition"):
        loader.load_catalog(tmp_path)
