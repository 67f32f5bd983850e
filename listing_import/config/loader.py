from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import DatabaseConfig, ImportConfig, ImportSettings, NormalizationConfig

"""Config loader.

Responsibilities:
- Load YAML config (config/import.yml by default)
- Validate it against config_schema.json (unknown keys are rejected)
- Apply defaults for every omitted setting
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "load_config",
    "config_from_dict",
]

DEFAULT_CONFIG_PATH = Path("config/import.yml")
SCHEMA_PATH = Path(__file__).with_name("config_schema.json")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing or invalid, or the data violates it
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def config_from_dict(data: dict[str, Any]) -> ImportConfig:
    """Build an ImportConfig from already-parsed config data."""
    _validate_config_schema(data)

    imp = data.get("import") or {}
    settings = ImportSettings(
        **{k: v for k, v in imp.items() if k in ImportSettings.__dataclass_fields__}
    )
    norm = data.get("normalization") or {}
    normalization = NormalizationConfig(
        casefold=norm.get("casefold", True),
        collapse_whitespace=norm.get("collapse_whitespace", True),
        strip_punctuation=norm.get("strip_punctuation", True),
        abbreviations=dict(norm.get("abbreviations") or {}),
    )
    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
        table=db_raw.get("table", "businesses"),
    )
    return ImportConfig(
        settings=settings,
        normalization=normalization,
        database=db,
        placeid_required=imp.get("placeid_required", True),
    )


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config validation failed: top level must be a mapping")
    return config_from_dict(data)
