"""Operational config loader."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import cast

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "DOCKWRIGHT_CONFIG"
DEFAULT_CONFIG_RELATIVE_PATH = Path(".dockwright") / "config.toml"


@dataclass(frozen=True, slots=True)
class LifecycleConfig:
    """Session cleanup behavior at process shutdown."""

    enable_shutdown_hook: bool = True
    shutdown_timeout_seconds: float = 30.0
    cleanup_on_shutdown: bool = True


@dataclass(frozen=True, slots=True)
class DockwrightConfig:
    """Resolved operational configuration for dockwright."""

    binary: str = "docker"
    default_timeout_seconds: float = 30.0
    kill_grace_seconds: float = 2.0
    # Appended to the built-in transient marker list, never replacing it.
    transient_markers: tuple[str, ...] = ()
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)


_EXECUTOR_KEY_MAP: dict[str, str] = {
    "binary": "binary",
    "timeout_seconds": "default_timeout_seconds",
    "default_timeout_seconds": "default_timeout_seconds",
    "kill_grace_seconds": "kill_grace_seconds",
    "transient_markers": "transient_markers",
}

_LIFECYCLE_KEY_MAP: dict[str, str] = {
    "enable_shutdown_hook": "enable_shutdown_hook",
    "shutdown_timeout_seconds": "shutdown_timeout_seconds",
    "shutdown_timeout": "shutdown_timeout_seconds",
    "cleanup_on_shutdown": "cleanup_on_shutdown",
}

_ENV_OVERRIDE_MAP: dict[str, str] = {
    "DOCKWRIGHT_BINARY": "binary",
    "DOCKWRIGHT_TIMEOUT_SECONDS": "default_timeout_seconds",
    "DOCKWRIGHT_KILL_GRACE_SECONDS": "kill_grace_seconds",
}

_LIFECYCLE_ENV_OVERRIDE_MAP: dict[str, str] = {
    "DOCKWRIGHT_ENABLE_SHUTDOWN_HOOK": "enable_shutdown_hook",
    "DOCKWRIGHT_SHUTDOWN_TIMEOUT_SECONDS": "shutdown_timeout_seconds",
    "DOCKWRIGHT_CLEANUP_ON_SHUTDOWN": "cleanup_on_shutdown",
}

_TRUE_STRINGS = frozenset({"1", "true", "yes", "on"})
_FALSE_STRINGS = frozenset({"0", "false", "no", "off"})


def _expected_type_name(field_name: str) -> str:
    if field_name in {"enable_shutdown_hook", "cleanup_on_shutdown"}:
        return "bool"
    if field_name in {
        "default_timeout_seconds",
        "kill_grace_seconds",
        "shutdown_timeout_seconds",
    }:
        return "float"
    if field_name == "transient_markers":
        return "str_list"
    return "str"


def _coerce_file_value(*, field_name: str, raw_value: object, source: str) -> object:
    expected = _expected_type_name(field_name)
    if expected == "bool":
        if not isinstance(raw_value, bool):
            raise ValueError(
                f"Invalid value for '{source}': expected bool, got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        return raw_value

    if expected == "float":
        if isinstance(raw_value, bool) or not isinstance(raw_value, int | float):
            raise ValueError(
                f"Invalid value for '{source}': expected float, got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        if raw_value <= 0:
            raise ValueError(f"Invalid value for '{source}': expected a positive number.")
        return float(raw_value)

    if expected == "str_list":
        if not isinstance(raw_value, list):
            raise ValueError(
                f"Invalid value for '{source}': expected array[str], got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        parsed: list[str] = []
        for item in cast("list[object]", raw_value):
            if not isinstance(item, str) or not item.strip():
                raise ValueError(
                    f"Invalid value for '{source}': expected non-empty strings, got {item!r}."
                )
            parsed.append(item.strip())
        return tuple(parsed)

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
    normalized = raw_value.strip()
    if expected == "bool":
        lowered = normalized.lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
        raise ValueError(
            f"Invalid environment override '{env_name}': expected bool, got {raw_value!r}."
        )

    if expected == "float":
        try:
            value = float(normalized)
        except ValueError as error:
            raise ValueError(
                f"Invalid environment override '{env_name}': expected float, got {raw_value!r}."
            ) from error
        if value <= 0:
            raise ValueError(
                f"Invalid environment override '{env_name}': expected a positive number."
            )
        return value

    if not normalized:
        raise ValueError(
            f"Invalid environment override '{env_name}': expected non-empty string."
        )
    return normalized


def _default_values() -> tuple[dict[str, object], dict[str, object]]:
    defaults = DockwrightConfig()
    top = {item.name: getattr(defaults, item.name) for item in fields(DockwrightConfig)}
    lifecycle = {
        item.name: getattr(defaults.lifecycle, item.name) for item in fields(LifecycleConfig)
    }
    return top, lifecycle


def _apply_section(
    *,
    values: dict[str, object],
    key_map: dict[str, str],
    section: str,
    raw_value: object,
    path: Path,
) -> None:
    if not isinstance(raw_value, dict):
        raise ValueError(f"Invalid value for '{section}' in '{path}': expected table.")
    for key, value in cast("dict[str, object]", raw_value).items():
        field_name = key_map.get(key)
        if field_name is None:
            logger.warning("Ignoring unknown dockwright config key '%s.%s'.", section, key)
            continue
        values[field_name] = _coerce_file_value(
            field_name=field_name,
            raw_value=value,
            source=f"{section}.{key}",
        )


def _apply_toml_payload(
    *,
    values: dict[str, object],
    lifecycle_values: dict[str, object],
    payload: dict[str, object],
    path: Path,
) -> None:
    for key, raw_value in payload.items():
        if key == "executor":
            _apply_section(
                values=values,
                key_map=_EXECUTOR_KEY_MAP,
                section=key,
                raw_value=raw_value,
                path=path,
            )
            continue
        if key == "lifecycle":
            _apply_section(
                values=lifecycle_values,
                key_map=_LIFECYCLE_KEY_MAP,
                section=key,
                raw_value=raw_value,
                path=path,
            )
            continue
        logger.warning("Ignoring unknown dockwright config key '%s'.", key)


def _apply_env_overrides(
    values: dict[str, object],
    lifecycle_values: dict[str, object],
) -> None:
    for env_map, target in (
        (_ENV_OVERRIDE_MAP, values),
        (_LIFECYCLE_ENV_OVERRIDE_MAP, lifecycle_values),
    ):
        for env_name, field_name in env_map.items():
            raw_value = os.getenv(env_name)
            if raw_value is None:
                continue
            target[field_name] = _coerce_env_value(
                field_name=field_name,
                raw_value=raw_value,
                env_name=env_name,
            )


def resolve_config_path(explicit: Path | None = None) -> Path:
    """Resolve the config file path.

    Precedence:
    1. Explicit function argument.
    2. `DOCKWRIGHT_CONFIG` environment variable.
    3. `.dockwright/config.toml` under the current working directory.
    """

    if explicit is not None:
        return explicit.expanduser()
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return Path.cwd() / DEFAULT_CONFIG_RELATIVE_PATH


def load_config(path: Path | None = None) -> DockwrightConfig:
    """Load the TOML config file (when present) and apply environment overrides."""

    values, lifecycle_values = _default_values()
    config_path = resolve_config_path(path)
    if config_path.is_file():
        payload_obj = tomllib.loads(config_path.read_text(encoding="utf-8"))
        payload = cast("dict[str, object]", payload_obj)
        _apply_toml_payload(
            values=values,
            lifecycle_values=lifecycle_values,
            payload=payload,
            path=config_path,
        )

    _apply_env_overrides(values, lifecycle_values)

    lifecycle = LifecycleConfig(
        enable_shutdown_hook=cast("bool", lifecycle_values["enable_shutdown_hook"]),
        shutdown_timeout_seconds=cast("float", lifecycle_values["shutdown_timeout_seconds"]),
        cleanup_on_shutdown=cast("bool", lifecycle_values["cleanup_on_shutdown"]),
    )
    return replace(
        DockwrightConfig(),
        binary=cast("str", values["binary"]),
        default_timeout_seconds=cast("float", values["default_timeout_seconds"]),
        kill_grace_seconds=cast("float", values["kill_grace_seconds"]),
        transient_markers=cast("tuple[str, ...]", values["transient_markers"]),
        lifecycle=lifecycle,
    )
