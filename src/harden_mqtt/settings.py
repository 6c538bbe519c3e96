"""
Persistent key-value settings: device identity, keys, pairing and broker details.

Values are primitives (str, int, bool). Reads take a typed default: a value
stored with the wrong type is treated as absent and the default is returned.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T", str, int, bool)

_TRUE = ("true", "yes", "1")
_FALSE = ("false", "no", "0")


def _coerce(value: Any, default: T) -> T:
    """Return value as the type of default, or default if it does not fit."""
    if value is None:
        return default
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            if value.strip().lower() in _TRUE:
                return True
            if value.strip().lower() in _FALSE:
                return False
        return default
    if isinstance(default, int):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            try:
                return int(value)
            except ValueError:
                return default
        return default
    return value if isinstance(value, str) else default


class Settings(ABC):
    """Abstract settings store.  Core logic depends only on this interface."""

    @abstractmethod
    def _get_raw(self, key: str) -> Any:
        """Return the stored value for key, or None."""

    @abstractmethod
    def set_many(self, values: dict[str, Any]) -> None:
        """Store all values in one write; readers never see only part of them."""

    def get(self, key: str, default: T) -> T:
        return _coerce(self._get_raw(key), default)

    def set(self, key: str, value: Any) -> None:
        self.set_many({key: value})

    def flush(self) -> None:
        """Make sure everything written so far is on durable storage."""


class JsonFileSettings(Settings):
    """Settings kept in a JSON file, rewritten on every change."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._values: dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load settings from {self.path}: {e}")
            return
        if isinstance(data, dict):
            self._values = data
        else:
            logger.error(f"Ignoring settings file {self.path}: not a JSON object")

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self._values, f, indent=2, sort_keys=True)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)

    def _get_raw(self, key: str) -> Any:
        with self._lock:
            return self._values.get(key)

    def set_many(self, values: dict[str, Any]) -> None:
        with self._lock:
            self._values.update(values)
            self._save()

    def flush(self) -> None:
        with self._lock:
            self._save()
