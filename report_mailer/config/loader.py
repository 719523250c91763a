from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft7Validator

from report_mailer.models.config_models import (
    BatchConfig,
    DispatchConfig,
    GenerationConfig,
    MailerConfig,
)

"""Config loader.

Responsibilities:
- Load YAML config/mailer.yml
- Validate against the packaged JSON schema (config_schema.json)
- Apply defaults for every omitted key
"""

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/mailer.yml")


class ConfigError(Exception):
    pass


@lru_cache(maxsize=1)
def _schema_validator() -> Draft7Validator:
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"config schema not readable: {SCHEMA_PATH} ({e})") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    return Draft7Validator(schema)


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Reject unknown keys, wrong types and out-of-range values.

    The first error (by key path) is reported as ``batch.chunk_size: 0 is less
    than the minimum of 1``.
    """
    errors = sorted(_schema_validator().iter_errors(data), key=lambda err: list(map(str, err.absolute_path)))
    if errors:
        first = errors[0]
        where = ".".join(str(p) for p in first.absolute_path) or "<root>"
        raise ConfigError(f"config validation failed: {where}: {first.message}")


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> MailerConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config validation failed: top level must be a mapping, got {type(data).__name__}")

    _validate_config_schema(data)

    defaults = MailerConfig()
    batch_raw = data.get("batch", {})
    gen_raw = data.get("generation", {})
    disp_raw = data.get("dispatch", {})
    return MailerConfig(
        batch=BatchConfig(
            chunk_size=batch_raw.get("chunk_size", defaults.batch.chunk_size),
            delay_seconds=float(batch_raw.get("delay_seconds", defaults.batch.delay_seconds)),
        ),
        generation=GenerationConfig(
            model=gen_raw.get("model", defaults.generation.model),
            api_key_env=gen_raw.get("api_key_env", defaults.generation.api_key_env),
        ),
        dispatch=DispatchConfig(
            from_address=disp_raw.get("from_address", defaults.dispatch.from_address),
            api_url=disp_raw.get("api_url", defaults.dispatch.api_url),
            api_key_env=disp_raw.get("api_key_env", defaults.dispatch.api_key_env),
            timeout_seconds=float(disp_raw.get("timeout_seconds", defaults.dispatch.timeout_seconds)),
        ),
        recipients_file=data.get("recipients_file", defaults.recipients_file),
        export_directory=data.get("export_directory", defaults.export_directory),
    )
