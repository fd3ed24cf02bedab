from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
import logging
import os
from pathlib import Path
from typing import TypeAlias
import tomllib

from shrimpl_client.host import ConfigurationListener, Disposable

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "shrimpl.toml"
CONFIG_SECTION = "shrimpl"

SERVER_PATH_KEY = "shrimpl.lsp.path"
DEBUG_KEY = "shrimpl.lsp.debug"
HANDSHAKE_TIMEOUT_KEY = "shrimpl.lsp.handshake_timeout_seconds"

DEBUG_ENV = "SHRIMPL_LSP_DEBUG"
HANDSHAKE_TIMEOUT_ENV = "SHRIMPL_LSP_TIMEOUT_SECONDS"

DEFAULT_HANDSHAKE_TIMEOUT_SECONDS = 30.0

_TRUTHY_VALUES = {"1", "true", "yes", "on"}

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]


def _read_toml(path: Path) -> TomlTable | None:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError:
        return None
    try:
        data = tomllib.loads(raw)
    except Exception:
        return None
    return data if isinstance(data, dict) else None


def config_file(root: Path | None = None, config_path: Path | None = None) -> Path:
    if config_path is not None:
        return config_path
    base = root if root is not None else Path.cwd()
    return base / DEFAULT_CONFIG_NAME


def _flatten(table: TomlTable, prefix: str) -> dict[str, TomlValue]:
    flat: dict[str, TomlValue] = {}
    for key, value in table.items():
        dotted = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            flat.update(_flatten(value, dotted))
        else:
            flat[dotted] = value
    return flat


def _as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY_VALUES
    return False


def _as_positive_float(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if number > 0 else None


@dataclass(frozen=True)
class ConfigurationChange:
    changed_keys: frozenset[str]

    def affects(self, key: str) -> bool:
        for changed in self.changed_keys:
            if changed == key:
                return True
            if changed.startswith(key + ".") or key.startswith(changed + "."):
                return True
        return False


class TomlConfigurationStore:
    """Configuration store backed by a ``shrimpl.toml`` file.

    Keys are dotted and carry the ``shrimpl`` section prefix, so
    ``shrimpl.lsp.path`` reads ``path`` from the ``[lsp]`` table. Call
    ``reload()`` to pick up edits; listeners receive one event per reload
    that changed at least one key. A file that cannot be parsed keeps the
    previously loaded values.
    """

    def __init__(self, path: Path, *, section: str = CONFIG_SECTION) -> None:
        self.path = path
        self.section = section
        self._values = self._read() or {}
        self._listeners: list[ConfigurationListener] = []

    def _read(self) -> dict[str, object] | None:
        data = _read_toml(self.path)
        if data is None:
            logger.warning("Ignoring unreadable configuration file %s", self.path)
            return None
        return _flatten(data, self.section)

    def get(self, key: str) -> object | None:
        return self._values.get(key)

    def get_string(self, key: str) -> str | None:
        value = self._values.get(key)
        return value if isinstance(value, str) else None

    def on_did_change(self, listener: ConfigurationListener) -> Disposable:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Disposable(_remove)

    def reload(self) -> ConfigurationChange | None:
        current = self._read()
        if current is None:
            return None
        keys = set(self._values) | set(current)
        changed = {key for key in keys if self._values.get(key) != current.get(key)}
        self._values = current
        if not changed:
            return None
        event = ConfigurationChange(frozenset(changed))
        for listener in list(self._listeners):
            listener(event)
        return event


def _setting(store: object, key: str) -> object | None:
    getter = getattr(store, "get", None)
    if getter is None:
        return None
    return getter(key)


def debug_enabled(store: object) -> bool:
    raw = os.getenv(DEBUG_ENV, "").strip()
    if raw:
        return _as_bool(raw)
    return _as_bool(_setting(store, DEBUG_KEY))


def handshake_timeout_seconds(store: object) -> float:
    raw = os.getenv(HANDSHAKE_TIMEOUT_ENV, "").strip()
    if raw:
        seconds = _as_positive_float(raw)
        if seconds is not None:
            return seconds
        logger.warning("Ignoring invalid %s=%r", HANDSHAKE_TIMEOUT_ENV, raw)
    value = _setting(store, HANDSHAKE_TIMEOUT_KEY)
    if value is None:
        return DEFAULT_HANDSHAKE_TIMEOUT_SECONDS
    seconds = _as_positive_float(value)
    if seconds is None:
        logger.warning("Ignoring invalid %s=%r", HANDSHAKE_TIMEOUT_KEY, value)
        return DEFAULT_HANDSHAKE_TIMEOUT_SECONDS
    return seconds
