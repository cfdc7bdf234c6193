"""Persistent key/value storage for login state."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

# Keys shared by the OAuth flow and the session glue.
OAUTH_STATE_KEY = "oauthState"
OAUTH_TYPE_KEY = "oauthType"


class LocalStorage:
    """String key/value store backed by a JSON file.

    With no path the values only live in memory.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self._values: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        if self._path is None or not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable state file %s: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed state file %s", self._path)
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _flush(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(self._values, indent=2), encoding="utf-8")

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        if self._values.pop(key, None) is not None:
            self._flush()

    def __contains__(self, key: object) -> bool:
        return key in self._values
