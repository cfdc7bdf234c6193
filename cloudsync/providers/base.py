"""Base protocol and data classes for cloud storage providers."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

# Reserved content key carrying the serialized project header.
HEADER_JSON = ".header.json"


def bundle_name(files: dict[str, str], default: str = "") -> str:
    """Read the project name from a content bundle's embedded header."""
    raw = files.get(HEADER_JSON)
    if not raw:
        return default
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("Content bundle carries malformed %s", HEADER_JSON)
        return default
    name = data.get("name") if isinstance(data, dict) else None
    return name if isinstance(name, str) and name else default


@dataclass
class FileInfo:
    """A remote entry describing one cloud-stored project version."""

    id: str
    name: str
    version: str
    updated_at: int
    content: dict[str, str] | None = None


@runtime_checkable
class CloudProvider(Protocol):
    """Protocol for backend-specific cloud storage implementations."""

    name: str

    async def list_files(self) -> list[FileInfo]:
        """List all project entries for the authenticated account."""
        ...

    async def download(self, remote_id: str) -> FileInfo:
        """Fetch an entry with its content populated."""
        ...

    async def upload(
        self, remote_id: str | None, base_version: str | None, files: dict[str, str]
    ) -> FileInfo:
        """Store a content bundle.

        A ``None`` remote_id creates a new entry.  Raises ConflictError when
        base_version no longer matches the server.
        """
        ...

    async def delete(self, remote_id: str) -> None:
        """Delete an entry."""
        ...

    def login_check(self) -> bool:
        """Return True when the provider holds usable credentials."""
        ...

    def login(self) -> str:
        """Start an interactive login and return the URL to visit."""
        ...

    def login_callback(self, params: dict[str, str]) -> None:
        """Complete a login from the parameters of the OAuth redirect."""
        ...
