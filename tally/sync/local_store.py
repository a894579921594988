"""
Local persistence - a small key-value store on the participant's device.

The store pattern lets the participant keep its session across restarts
without caring where the data lives (a JSON file on a laptop, memory in tests).
Values must be JSON-serializable.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from tally.reconcile.errors import CapabilityUnavailable

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Abstract interface for on-device persistence."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove every key."""
        pass


class InMemoryKeyValueStore(KeyValueStore):
    """Test implementation; forgets everything when the process exits."""

    def __init__(self):
        self._data: dict[str, Any] = {}

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        # Round-trip through JSON so callers never share mutable state with the store
        return json.loads(json.dumps(self._data[key]))

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.loads(json.dumps(value, default=str))

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()


class JsonFileStore(KeyValueStore):
    """
    All keys in one JSON file, rewritten atomically on every change.

    A corrupt file is logged and treated as empty; an unwritable location
    raises CapabilityUnavailable("storage").
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._data: dict[str, Any] = self._load()

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable local store {self._path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _flush(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".tally-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, default=str, ensure_ascii=False)
            os.replace(tmp, self._path)
        except OSError as e:
            raise CapabilityUnavailable("storage", f"Cannot write {self._path}: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.loads(json.dumps(value, default=str))
        self._flush()

    def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._flush()

    def clear(self) -> None:
        self._data = {}
        self._flush()


def open_store(path: Optional[str | Path] = None) -> KeyValueStore:
    """File store at `path`, memory store when no path is given."""
    if path is None:
        return InMemoryKeyValueStore()
    return JsonFileStore(path)
