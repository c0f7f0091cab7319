"""Engine configuration.

Settings come from the environment (or a `.env` file) with the
`CHARSHEET_` prefix:

    CHARSHEET_FORMULA_STRICT: Raise on malformed formulas instead of
        evaluating them to 0. Meant for catalog authoring and CI.
    CHARSHEET_LOG_LEVEL: Logging level for `configure_logging`.
    CHARSHEET_LOG_JSON: Emit JSON log lines.
    CHARSHEET_CATALOG_PATH: Directory (or .zip) holding a catalog to use
        instead of the bundled one.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict


class EngineSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CHARSHEET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    formula_strict: bool = Field(
        default=False,
        description="Raise FormulaError on malformed formulas",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_json: bool = Field(default=False, description="Render logs as JSON")
    catalog_path: Path | None = Field(
        default=None,
        description="Catalog directory overriding the bundled catalog",
    )


@lru_cache
def get_settings() -> EngineSettings:
    return EngineSettings()
