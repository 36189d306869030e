"""Executor configuration loader."""

from __future__ import annotations

import codecs
import logging
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, fields
from pathlib import Path
from typing import cast

logger = logging.getLogger(__name__)

CONFIG_RELATIVE_PATH = Path(".cmdexec") / "config.toml"


@dataclass(frozen=True, slots=True)
class ExecutorConfig:
    """Resolved execution engine configuration."""

    default_timeout_seconds: float = 60.0
    kill_grace_seconds: float = 2.0
    read_chunk_size: int = 65536
    encoding: str = "utf-8"


_SECTION_KEY_MAP: dict[str, dict[str, str]] = {
    "timeouts": {
        "default_seconds": "default_timeout_seconds",
        "default_timeout_seconds": "default_timeout_seconds",
        "kill_grace_seconds": "kill_grace_seconds",
    },
    "output": {
        "read_chunk_size": "read_chunk_size",
        "encoding": "encoding",
    },
}

_TOP_LEVEL_KEY_MAP: dict[str, str] = {
    "default_timeout_seconds": "default_timeout_seconds",
    "kill_grace_seconds": "kill_grace_seconds",
    "read_chunk_size": "read_chunk_size",
    "encoding": "encoding",
}

_ENV_OVERRIDE_MAP: dict[str, str] = {
    "CMDEXEC_DEFAULT_TIMEOUT_SECONDS": "default_timeout_seconds",
    "CMDEXEC_KILL_GRACE_SECONDS": "kill_grace_seconds",
    "CMDEXEC_READ_CHUNK_SIZE": "read_chunk_size",
    "CMDEXEC_ENCODING": "encoding",
}


def _expected_type_name(field_name: str) -> str:
    if field_name == "read_chunk_size":
        return "int"
    if field_name in {"default_timeout_seconds", "kill_grace_seconds"}:
        return "float"
    return "str"


def _coerce_file_value(*, field_name: str, raw_value: object, source: str) -> object:
    expected = _expected_type_name(field_name)
    if expected == "int":
        if isinstance(raw_value, bool) or not isinstance(raw_value, int):
            raise ValueError(
                f"Invalid value for '{source}': expected int, got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        return raw_value

    if expected == "float":
        if isinstance(raw_value, bool) or not isinstance(raw_value, int | float):
            raise ValueError(
                f"Invalid value for '{source}': expected float, got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        return float(raw_value)

    if not isinstance(raw_value, str):
        raise ValueError(
            f"Invalid value for '{source}': expected str, got "
            f"{type(raw_value).__name__} ({raw_value!r})."
        )
    normalized = raw_value.strip()
    if not normalized:
        raise ValueError(f"Invalid value for '{source}': expected non-empty string.")
    return normalized


def _coerce_env_value(*, field_name: str, raw_value: str, env_name: str) -> object:
    expected = _expected_type_name(field_name)
    if expected == "int":
        try:
            return int(raw_value.strip())
        except ValueError as error:
            raise ValueError(
                f"Invalid environment override '{env_name}': expected int, got {raw_value!r}."
            ) from error

    if expected == "float":
        try:
            return float(raw_value.strip())
        except ValueError as error:
            raise ValueError(
                f"Invalid environment override '{env_name}': expected float, got {raw_value!r}."
            ) from error

    normalized = raw_value.strip()
    if not normalized:
        raise ValueError(
            f"Invalid environment override '{env_name}': expected non-empty string."
        )
    return normalized


def _default_values() -> dict[str, object]:
    defaults = ExecutorConfig()
    return {field.name: getattr(defaults, field.name) for field in fields(ExecutorConfig)}


def _apply_toml_payload(
    *,
    values: dict[str, object],
    payload: dict[str, object],
    path: Path,
) -> None:
    for key, raw_value in payload.items():
        section_map = _SECTION_KEY_MAP.get(key)
        if section_map is not None:
            if not isinstance(raw_value, dict):
                raise ValueError(f"Invalid value for '{key}' in '{path}': expected table.")
            for section_key, section_value in cast("dict[str, object]", raw_value).items():
                field_name = section_map.get(section_key)
                if field_name is None:
                    logger.warning(
                        "Ignoring unknown cmdexec config key '%s.%s'.",
                        key,
                        section_key,
                    )
                    continue
                values[field_name] = _coerce_file_value(
                    field_name=field_name,
                    raw_value=section_value,
                    source=f"{key}.{section_key}",
                )
            continue

        field_name = _TOP_LEVEL_KEY_MAP.get(key)
        if field_name is None:
            logger.warning("Ignoring unknown cmdexec config key '%s'.", key)
            continue
        values[field_name] = _coerce_file_value(
            field_name=field_name,
            raw_value=raw_value,
            source=key,
        )


def _apply_env_overrides(*, values: dict[str, object], environ: Mapping[str, str]) -> None:
    for env_name, field_name in _ENV_OVERRIDE_MAP.items():
        raw_value = environ.get(env_name)
        if raw_value is None:
            continue
        values[field_name] = _coerce_env_value(
            field_name=field_name,
            raw_value=raw_value,
            env_name=env_name,
        )


def _validate(config: ExecutorConfig) -> ExecutorConfig:
    if config.default_timeout_seconds <= 0:
        raise ValueError("default_timeout_seconds must be > 0.")
    if config.kill_grace_seconds <= 0:
        raise ValueError("kill_grace_seconds must be > 0.")
    if config.read_chunk_size <= 0:
        raise ValueError("read_chunk_size must be > 0.")
    try:
        codecs.lookup(config.encoding)
    except LookupError as error:
        raise ValueError(f"Unknown output encoding {config.encoding!r}.") from error
    return config


def config_path_for(repo_root: Path) -> Path:
    return repo_root / CONFIG_RELATIVE_PATH


def load_config(
    repo_root: Path | None = None,
    *,
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> ExecutorConfig:
    """Resolve defaults, then the TOML file if present, then env overrides."""

    values = _default_values()

    path = config_path
    if path is None and repo_root is not None:
        path = config_path_for(repo_root)
    if path is not None and path.is_file():
        with path.open("rb") as handle:
            payload = tomllib.load(handle)
        _apply_toml_payload(values=values, payload=payload, path=path)

    _apply_env_overrides(values=values, environ=os.environ if environ is None else environ)

    return _validate(
        ExecutorConfig(
            default_timeout_seconds=cast("float", values["default_timeout_seconds"]),
            kill_grace_seconds=cast("float", values["kill_grace_seconds"]),
            read_chunk_size=cast("int", values["read_chunk_size"]),
            encoding=cast("str", values["encoding"]),
        )
    )
