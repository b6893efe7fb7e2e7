from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from pathlib import Path
from typing import Mapping, TypeAlias
import logging
import tomllib

from kindls.debounce import DEFAULT_DELAY_MS, DebounceScope
from kindls.diagnostics import DEFAULT_SOURCE
from kindls.exceptions import ConfigError

DEFAULT_CONFIG_NAME = "kindls.toml"
DEFAULT_EXTENSIONS = (".kind", ".fm")
DEFAULT_ENGINE_TIMEOUT_MS = 30_000

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]

logger = logging.getLogger(__name__)


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return {}
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        logger.warning("ignoring invalid config %s: %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    if config_path is None:
        base = root if root is not None else Path.cwd()
        config_path = base / DEFAULT_CONFIG_NAME
    return _load_toml(config_path)


def _normalize_name_list(value: TomlValue) -> list[str]:
    items: list[str] = []
    if value is None:
        return items
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",") if part.strip()]
    elif isinstance(value, (list, tuple, set)):
        for item in value:
            if isinstance(item, str):
                items.extend([part.strip() for part in item.split(",") if part.strip()])
    return [item for item in items if item]


def _as_bool(value: TomlValue) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


def _as_int(value: TomlValue, *, key: str, minimum: int = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ConfigError(f"{key} must be an integer, got {value!r}")
    try:
        number = int(value)
    except ValueError as exc:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from exc
    if number < minimum:
        raise ConfigError(f"{key} must be >= {minimum}, got {number}")
    return number


def merge_payload(payload: Mapping[str, TomlValue], defaults: TomlTable) -> TomlTable:
    merged = dict(defaults)
    for key, value in payload.items():
        if value is None:
            continue
        merged[key] = value
    return merged


@dataclass(frozen=True)
class EngineConfig:
    factory: str | None = None
    command: tuple[str, ...] = ()
    timeout_ms: int = DEFAULT_ENGINE_TIMEOUT_MS


@dataclass(frozen=True)
class ServerConfig:
    debounce_ms: int = DEFAULT_DELAY_MS
    debounce_scope: DebounceScope = DebounceScope.PER_FILE
    extensions: tuple[str, ...] = DEFAULT_EXTENSIONS
    exclude: tuple[str, ...] = ()
    source: str = DEFAULT_SOURCE
    log_level: str | None = None
    engine_thread: bool = True
    engine: EngineConfig = field(default_factory=EngineConfig)


def _engine_config(section: TomlTable) -> EngineConfig:
    factory = section.get("factory")
    if factory is not None and not isinstance(factory, str):
        raise ConfigError(f"engine.factory must be a string, got {factory!r}")
    raw_command = section.get("command")
    if raw_command is None:
        command: tuple[str, ...] = ()
    elif isinstance(raw_command, str):
        command = tuple(raw_command.split())
    elif isinstance(raw_command, list) and all(isinstance(part, str) for part in raw_command):
        command = tuple(raw_command)
    else:
        raise ConfigError(f"engine.command must be a string or list of strings, got {raw_command!r}")
    timeout_ms = DEFAULT_ENGINE_TIMEOUT_MS
    if "timeout_ms" in section:
        timeout_ms = _as_int(section["timeout_ms"], key="engine.timeout_ms", minimum=1)
    return EngineConfig(factory=factory or None, command=command, timeout_ms=timeout_ms)


def build_server_config(section: TomlTable, engine_section: TomlTable | None = None) -> ServerConfig:
    debounce_ms = DEFAULT_DELAY_MS
    if "debounce_ms" in section:
        debounce_ms = _as_int(section["debounce_ms"], key="debounce_ms")
    raw_scope = section.get("debounce_scope", DebounceScope.PER_FILE.value)
    try:
        scope = DebounceScope(str(raw_scope))
    except ValueError as exc:
        choices = ", ".join(item.value for item in DebounceScope)
        raise ConfigError(f"debounce_scope must be one of {choices}, got {raw_scope!r}") from exc
    extensions = tuple(
        ext if ext.startswith(".") else f".{ext}"
        for ext in _normalize_name_list(section.get("extensions"))
    ) or DEFAULT_EXTENSIONS
    source = section.get("source") or DEFAULT_SOURCE
    log_level = section.get("log_level")
    engine_thread = True
    if "engine_thread" in section:
        engine_thread = _as_bool(section["engine_thread"])
    return ServerConfig(
        debounce_ms=debounce_ms,
        debounce_scope=scope,
        extensions=extensions,
        exclude=tuple(_normalize_name_list(section.get("exclude"))),
        source=str(source),
        log_level=str(log_level) if log_level else None,
        engine_thread=engine_thread,
        engine=_engine_config(engine_section or {}),
    )


_OPTION_KEYS = {
    "debounceMs": "debounce_ms",
    "debounceScope": "debounce_scope",
    "logLevel": "log_level",
    "engineThread": "engine_thread",
}


def options_payload(options: object) -> TomlTable:
    """Normalize LSP ``initializationOptions`` to config keys.

    Clients send camelCase; snake_case keys are accepted as well.
    """
    if not isinstance(options, Mapping):
        return {}
    payload: TomlTable = {}
    for key, value in options.items():
        payload[_OPTION_KEYS.get(str(key), str(key))] = value
    return payload


def resolve_config(
    root: Path | None = None,
    *,
    config_path: Path | None = None,
    options: object = None,
) -> ServerConfig:
    data = load_config(root=root, config_path=config_path)
    server_section = data.get("server", {})
    engine_section = data.get("engine", {})
    server_section = server_section if isinstance(server_section, dict) else {}
    engine_section = engine_section if isinstance(engine_section, dict) else {}
    payload = options_payload(options)
    engine_payload = payload.pop("engine", None)
    merged_server = merge_payload(payload, server_section)
    merged_engine = (
        merge_payload(engine_payload, engine_section)
        if isinstance(engine_payload, Mapping)
        else engine_section
    )
    return build_server_config(merged_server, merged_engine)
