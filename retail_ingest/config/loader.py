from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..errors import IngestError
from ..models.config_models import (
    ColumnInsert,
    DatabaseConfig,
    FormatConfig,
    IngestConfig,
)
from ..models.records import UploadType

"""Config loader.

Responsibilities:
- Load YAML (default config/ingest.yml)
- Validate against ingest_schema.json (shipped next to this module)
- Apply defaults for every missing key and turn the result into frozen
  dataclasses (IngestConfig / FormatConfig / DatabaseConfig)
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "load_config",
    "config_from_dict",
]

DEFAULT_CONFIG_PATH = Path("config/ingest.yml")
SCHEMA_PATH = Path(__file__).with_name("ingest_schema.json")


class ConfigError(IngestError):
    """Config file missing, unparsable or failing schema validation."""


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing or broken, or the data violates it.
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path)
        where = f" at '{location}'" if location else ""
        raise ConfigError(f"config validation failed{where}: {e.message}") from e


def _format_from_dict(upload_type: UploadType, raw: dict[str, Any]) -> FormatConfig:
    expected = raw.get("expected_columns")
    return FormatConfig(
        upload_type=upload_type,
        sheet_pattern=raw.get("sheet_pattern"),
        banner_rows=raw.get("banner_rows", 0),
        footer_rows=raw.get("footer_rows", 0),
        auto_detect_header=raw.get("auto_detect_header", False),
        drop_columns=frozenset(raw.get("drop_columns", [])),
        insert_columns=tuple(
            ColumnInsert(index=ins["index"], headers=tuple(ins["headers"]))
            for ins in raw.get("insert_columns", [])
        ),
        header_overrides=dict(raw.get("header_overrides", {})),
        expected_columns=frozenset(expected) if expected is not None else None,
        keep_na_strings=tuple(raw.get("keep_na_strings", [])),
    )


def config_from_dict(data: dict[str, Any]) -> IngestConfig:
    """Validate an already-parsed mapping and build IngestConfig from it."""
    _validate_config_schema(data)

    formats_raw = data.get("formats", {})
    formats = {t: _format_from_dict(t, formats_raw.get(t.value) or {}) for t in UploadType}

    db_raw = data.get("database", {})
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    defaults = IngestConfig.defaults()
    return IngestConfig(
        formats=formats,
        database=db,
        batch_size=data.get("batch_size", defaults.batch_size),
        existence_chunk_size=data.get("existence_chunk_size", defaults.existence_chunk_size),
        error_sample_size=data.get("error_sample_size", defaults.error_sample_size),
        manifest_error_limit=data.get("manifest_error_limit", defaults.manifest_error_limit),
        duplicate_sample_size=data.get("duplicate_sample_size", defaults.duplicate_sample_size),
        message_max_length=data.get("message_max_length", defaults.message_max_length),
    )


def load_config(path: Path) -> IngestConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping: {path}")
    return config_from_dict(data)
