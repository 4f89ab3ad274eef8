"""Script-accessible key/value stores backing the client-side credential cache."""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

ACCESS_TOKEN_KEY = "auth_access_token"
REFRESH_TOKEN_KEY = "auth_refresh_token"
USER_KEY = "auth_user"

TOKEN_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_KEY)


class ClientStorage(ABC):
    """
    Minimal localStorage-like interface.

    Values are JSON-serializable and stored serialized, so a stored value
    is never aliased by the caller's object.
    """

    @abstractmethod
    def get_raw(self, key: str) -> str | None:
        pass

    @abstractmethod
    def set_raw(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        pass

    def get(self, key: str) -> Any | None:
        raw = self.get_raw(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("client_storage.corrupt_value", key=key)
            return None

    def set(self, key: str, value: Any) -> None:
        self.set_raw(key, json.dumps(value))

    def clear_auth_data(self) -> None:
        for key in TOKEN_KEYS:
            self.remove(key)


class MemoryStorage(ClientStorage):
    """In-process store (one browser tab)."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get_raw(self, key: str) -> str | None:
        return self._items.get(key)

    def set_raw(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)


class JsonFileStorage(ClientStorage):
    """
    Store persisted to a JSON file, surviving process restarts.

    Every write rewrites the whole file.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._items: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("client_storage.load_failed", path=str(self.path), error=str(e))
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._items, indent=2), encoding="utf-8")

    def get_raw(self, key: str) -> str | None:
        return self._items.get(key)

    def set_raw(self, key: str, value: str) -> None:
        self._items[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        if self._items.pop(key, None) is not None:
            self._flush()
