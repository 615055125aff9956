"""
Client-side session storage: access token, refresh token, user profile.

Values live in a small key/value ``Storage``.  ``FileStorage`` keeps them in
a JSON file so a session survives process restarts; ``MemoryStorage`` is for
short-lived scripts and tests.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "accessToken"
REFRESH_TOKEN_KEY = "refreshToken"
USER_KEY = "user"


class Storage(Protocol):
    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class FileStorage:
    """String values in a JSON object on disk, rewritten atomically."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _load(self) -> dict[str, str]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable session file %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _dump(self, items: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".session-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(items, fh)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def get_item(self, key: str) -> str | None:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        items = self._load()
        items[key] = value
        self._dump(items)

    def remove_item(self, key: str) -> None:
        items = self._load()
        if items.pop(key, None) is not None:
            self._dump(items)


class SessionManager:
    def __init__(self, storage: Storage | None = None) -> None:
        self.storage = storage if storage is not None else MemoryStorage()

    def _put(self, key: str, value: str | None) -> None:
        # None removes the entry rather than storing a marker.
        if value is None:
            self.storage.remove_item(key)
        else:
            self.storage.set_item(key, value)

    def get_access_token(self) -> str | None:
        return self.storage.get_item(ACCESS_TOKEN_KEY)

    def set_access_token(self, token: str | None) -> None:
        self._put(ACCESS_TOKEN_KEY, token)

    def get_refresh_token(self) -> str | None:
        return self.storage.get_item(REFRESH_TOKEN_KEY)

    def set_refresh_token(self, token: str | None) -> None:
        self._put(REFRESH_TOKEN_KEY, token)

    def get_user(self) -> dict[str, Any] | None:
        raw = self.storage.get_item(USER_KEY)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Stored user profile is not valid JSON; ignoring it")
            return None

    def set_user(self, user: Mapping[str, Any] | None) -> None:
        self._put(USER_KEY, None if user is None else json.dumps(dict(user)))

    def post_login_actions(self, data: Mapping[str, Any]) -> None:
        """Persist the user and both tokens from a login / refresh response."""
        if not isinstance(data, Mapping):
            raise ValueError("The login response is not a JSON object")
        access_token = data.get("accessToken")
        refresh_token = data.get("refreshToken")
        if not access_token or not refresh_token:
            raise ValueError("The login response does not contain refresh or access token")
        user = data.get("user")
        if user is not None and not isinstance(user, Mapping):
            raise ValueError("The login response user is not a JSON object")

        if user is not None:
            self.set_user(user)
        self.set_access_token(access_token)
        self.set_refresh_token(refresh_token)

    def clear(self) -> None:
        self.set_access_token(None)
        self.set_refresh_token(None)
        self.set_user(None)
