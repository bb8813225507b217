"""
storage.py — Durable Local Storage
===================================
Key/value store that survives process restarts. Everything the client
remembers between runs lives here: the current game id, the server session
id, auth tokens, the pending-score queue, the remember-me preference and
user settings.

With no path it behaves as a plain in-memory store.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


# ── Key names (constants) ────────────────────────────

GAME_ID = "uncrypt-game-id"
SESSION_ID = "uncrypt-session-id"
AUTH_TOKEN = "uncrypt-token"
REFRESH_TOKEN = "refresh_token"
USER_ID = "uncrypt-user-id"
PENDING_SCORES = "uncrypt-pending-scores"
REMEMBER_ME = "uncrypt-remember-me"
SETTINGS = "uncrypt-settings"

# Cleared on logout; everything else outlives the account session.
SESSION_KEYS = (AUTH_TOKEN, REFRESH_TOKEN, USER_ID, SESSION_ID, GAME_ID)


class LocalStorage:
    """Thread-safe key/value store, mirrored to a JSON file when a path is set."""

    def __init__(self, path: str | Path | None = None):
        self._lock = threading.Lock()
        self._path = Path(path) if path else None
        self._data: dict[str, Any] = {}
        if self._path and self._path.exists():
            self._data = self._read()

    # ── Persistence ──────────────────────────────────

    def _read(self) -> dict[str, Any]:
        try:
            with self._path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Could not read storage file {self._path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.error(f"Storage file {self._path} is not a JSON object, ignoring it")
            return {}
        return data

    def _flush(self) -> None:
        """Write the whole store to disk, replacing the file atomically."""
        if not self._path:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".storage-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, ensure_ascii=False, indent=2)
            os.replace(tmp, self._path)
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    # ── CRUD ─────────────────────────────────────────

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value
            self._flush()

    def remove(self, *keys: str) -> None:
        with self._lock:
            changed = False
            for key in keys:
                if key in self._data:
                    del self._data[key]
                    changed = True
            if changed:
                self._flush()

    def has(self, key: str) -> bool:
        with self._lock:
            return self._data.get(key) is not None

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self._flush()

    # ── Convenience accessors ───────────────────────

    @property
    def game_id(self) -> str | None:
        return self.get(GAME_ID)

    @game_id.setter
    def game_id(self, value: str | None) -> None:
        if value:
            self.set(GAME_ID, value)
        else:
            self.remove(GAME_ID)

    @property
    def auth_token(self) -> str | None:
        return self.get(AUTH_TOKEN)

    @property
    def refresh_token(self) -> str | None:
        return self.get(REFRESH_TOKEN)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.auth_token)

    def clear_session(self) -> None:
        """Forget the account session and the current game."""
        self.remove(*SESSION_KEYS)
