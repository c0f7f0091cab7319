import json
import pathlib
import tomllib
import typing
import zipfile
from copy import deepcopy

import pydantic
import yaml
from pydantic import Field

from . import models
from . import utils
from .formula import FormulaEvaluator
from .formula import LookupTables
from .logging import get_logger
from .mapping import BuiltinFeature
from .templates import FeatureTemplate
from .templates import template_adapter
from .templates import validate_template

logger = get_logger(__name__)

# Generator of parsed templates or BadDefinitions.
ModelGenerator = typing.Generator[FeatureTemplate | models.BadDefinition, None, None]

PathLike = pathlib.Path | zipfile.Path

BUNDLED_CATALOG = pathlib.Path(__file__).parent / "catalog"


class Catalog(models.BaseModel):
    """Everything the engine needs to know that isn't on the character.

    Attributes:
        lookup_tables: Named sparse level tables, for formulas like
            `warlock_invocations_known`.
        builtin_features: Which classes are granted which templates, and
            from which legacy fields their state can be migrated.
        templates: Feature templates by id. Loaded from the files in the
            catalog's subdirectories rather than the catalog file itself.
        bad_defs: Template files (or entries) that couldn't be loaded.
    """

    id: str
    name: str
    version: str = "0.1"
    lookup_tables: dict[str, dict[int, int]] = Field(default_factory=dict)
    builtin_features: list[BuiltinFeature] = Field(default_factory=list)
    templates: dict[models.Identifier, FeatureTemplate] = Field(default_factory=dict)
    bad_defs: list[models.BadDefinition] = Field(default_factory=list)

    @property
    def lookups(self) -> LookupTables:
        return LookupTables(tables=self.lookup_tables)


def load_catalog(
    path: str | PathLike | None = None, with_bad_defs: bool = True
) -> Catalog:
    """Load a feature catalog from disk by path.

    The catalog path must be a directory containing a file named
    "catalog" with a json, toml, or yaml/yml extension. Every subdirectory
    holds template definitions.

    Args:
        path: Path to a directory that contains a catalog file.
            Alternatively, a path to a zipfile that contains one.
            Defaults to the catalog bundled with the package.
        with_bad_defs: If true (the default), will not raise an exception
            if a template file has a bad definition. Instead,
            the returned catalog will have its `bad_defs` property populated
            with BadDefinition models.
    """
    if path is None:
        path = BUNDLED_CATALOG
    if isinstance(path, str):
        path = pathlib.Path(path)
    if isinstance(path, pathlib.Path) and path.suffix == ".zip":
        path = zipfile.Path(zipfile.ZipFile(path))
    catalog_path = _find_file(path, stem="catalog", depth=1)
    if not catalog_path:
        raise ValueError(f"No catalog file found within {path}")
    catalog = _parse_catalog(catalog_path)

    templates: dict[str, FeatureTemplate] = {}
    bad_defs: list[models.BadDefinition] = []
    for subpath in _iter_dirs(path):
        for model in _parse_directory(subpath, with_bad_defs=with_bad_defs):
            if isinstance(model, models.BadDefinition):
                bad_defs.append(model)
            elif model.id in templates:
                bad_defs.append(
                    models.BadDefinition(
                        path=model.def_path,
                        data=model.model_dump(mode="json"),
                        raw_data=None,
                        exception_type="NonUniqueId",
                        exception_message=f"Non-unique ID {model.id}",
                    )
                )
            else:
                templates[model.id] = model

    catalog = catalog.model_copy(update={"templates": templates, "bad_defs": bad_defs})
    _post_validate(catalog)
    for bad in catalog.bad_defs:
        logger.warning(
            "Bad catalog definition",
            path=bad.path,
            exception_type=bad.exception_type,
            message=bad.exception_message,
        )
    logger.debug(
        "Catalog loaded",
        catalog=catalog.id,
        templates=len(catalog.templates),
        builtin_features=len(catalog.builtin_features),
    )
    return catalog


def deserialize_catalog(json_data: str) -> Catalog:
    return Catalog.model_validate(json.loads(json_data))


def _post_validate(catalog: Catalog) -> None:
    """Drop templates with configuration errors, and mapping entries that
    point at templates that don't exist."""
    evaluator = FormulaEvaluator(catalog.lookups)
    broken: set[str] = set()
    for id, template in catalog.templates.items():
        result = validate_template(template, evaluator)
        for warning in result.warnings:
            logger.warning("Template warning", template=id, warning=warning)
        if not result.valid:
            catalog.bad_defs.append(
                models.BadDefinition(
                    path=template.def_path,
                    data=template.model_dump(mode="json"),
                    raw_data=None,
                    exception_type="InvalidTemplate",
                    exception_message="; ".join(result.errors),
                )
            )
            broken.add(id)
    for id in broken:
        del catalog.templates[id]

    mapped: list[BuiltinFeature] = []
    for entry in catalog.builtin_features:
        if entry.feature_id in catalog.templates:
            mapped.append(entry)
            continue
        catalog.bad_defs.append(
            models.BadDefinition(
                path=None,
                data=entry.model_dump(mode="json"),
                raw_data=None,
                exception_type="UnknownTemplate",
                exception_message=(
                    f"Built-in feature {entry.key} refers to unknown "
                    f"template {entry.feature_id}"
                ),
            )
        )
    catalog.builtin_features[:] = mapped


def _parse_catalog(path: PathLike) -> Catalog:
    """Parse a catalog from its catalog.(toml|json|ya?ml) file."""
    catalog_dict = next(iter(_parse_raw(path)), None)
    if not catalog_dict:
        raise ValueError(f"Path {path} does not contain a catalog definition.")
    try:
        return Catalog.model_validate(catalog_dict)
    except pydantic.ValidationError as exc:
        raise ValueError(f"Invalid catalog definition in {path}: {exc}") from exc


def _parse_directory(
    path: PathLike, with_bad_defs: bool = True, defaults=None
) -> ModelGenerator:
    defaults = defaults.copy() if defaults else {}
    for subpath in _iter_files(path, stem="__defaults__"):
        for raw_defaults in _parse_raw(subpath):
            defaults.update(raw_defaults or {})
    for subpath in sorted(_iter_files(path), key=_stem):
        stem = _stem(subpath)
        if stem.startswith("_") or stem.startswith("."):
            # Ignore any other "special" files.
            continue
        yield from _parse(subpath, with_bad_defs=with_bad_defs, defaults=defaults)
    # Subdirectories inherit our defaults.
    for subpath in _iter_dirs(path):
        yield from _parse_directory(
            subpath, with_bad_defs=with_bad_defs, defaults=defaults
        )


def _iter_dirs(path: PathLike) -> typing.Generator[PathLike, None, None]:
    for subpath in (p for p in path.iterdir() if p.is_dir()):
        if _stem(subpath).startswith("_"):
            continue
        yield subpath


def _iter_files(path: PathLike, stem=None) -> typing.Generator[PathLike, None, None]:
    for subpath in (p for p in path.iterdir() if p.is_file()):
        if stem and _stem(subpath) != stem:
            continue
        yield subpath


def _find_file(path: PathLike, stem=None, depth=0) -> PathLike | None:
    for subpath in _iter_files(path, stem=stem):
        return subpath

    if depth >= 1:
        for subpath in _iter_dirs(path):
            recur_path = _find_file(subpath, stem=stem, depth=depth - 1)
            if recur_path:
                return recur_path
    return None


def _stem(path: PathLike) -> str:
    if isinstance(path, zipfile.Path):
        return pathlib.PurePath(path.name).stem
    return path.stem


def _suffix(path: PathLike) -> str:
    if isinstance(path, zipfile.Path):
        return pathlib.PurePath(path.name).suffix
    return path.suffix


def _parse(
    path: PathLike, with_bad_defs: bool = True, defaults=None
) -> ModelGenerator:
    count = 0
    for raw_data in _parse_raw(path):
        if not raw_data:
            continue
        if "id" not in raw_data:
            raw_data["id"] = _stem(path) + (f"[{count}]" if count else "")
        if raw_data["id"] == "__defaults__":
            # A YAML stream might have embedded defaults.
            # These only apply to the rest of this file.
            del raw_data["id"]
            defaults = utils.deep_merge(defaults, raw_data)
            continue
        count += 1
        data = deepcopy(utils.deep_merge(defaults, raw_data))
        data["def_path"] = str(path)
        try:
            yield template_adapter.validate_python(data)
        except pydantic.ValidationError as exc:
            if with_bad_defs:
                yield models.BadDefinition(
                    path=str(path),
                    data=data,
                    raw_data=raw_data,
                    exception_type=repr(type(exc)),
                    exception_message=str(exc),
                )
            else:
                raise


def _parse_raw(path: PathLike) -> typing.Generator[dict, None, None]:
    match _suffix(path):
        case ".toml":
            parser = _parse_toml
        case ".json":
            parser = _parse_json
        case ".yaml" | ".yml":
            parser = _parse_yaml
        case _:
            return
    yield from parser(path)


def _parse_toml(path: PathLike) -> typing.Generator[dict, None, None]:
    with path.open("rb") as toml_file:
        yield tomllib.load(toml_file)


def _parse_json(path: PathLike) -> typing.Generator[dict, None, None]:
    with path.open("rb") as json_file:
        yield json.load(json_file)


def _parse_yaml(path: PathLike) -> typing.Generator[dict, None, None]:
    with path.open("rb") as yaml_file:
        yield from yaml.safe_load_all(yaml_file)
