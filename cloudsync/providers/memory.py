"""In-process cloud provider.

Keeps entries in memory with the same version semantics as a real backend:
every successful upload issues a fresh version token, and an upload against a
stale base version is rejected with a conflict.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import uuid
from typing import TYPE_CHECKING

from cloudsync.exceptions import ConflictError, NetworkError
from cloudsync.providers.base import FileInfo, bundle_name
from cloudsync.services.datetime_service import unix_now

if TYPE_CHECKING:
    from cloudsync.config import Settings
    from cloudsync.filesystem.local_storage import LocalStorage

logger = logging.getLogger(__name__)


class InMemoryProvider:
    """Cloud provider holding all entries in process memory."""

    name: str = "memory"

    def __init__(
        self,
        settings: Settings | None = None,
        storage: LocalStorage | None = None,
        latency: float = 0.0,
    ) -> None:
        self._latency = latency
        self._entries: dict[str, FileInfo] = {}
        self._versions = itertools.count(1)
        self._authenticated = True

    async def _network(self) -> None:
        # Every call yields to the event loop like a real round trip.
        await asyncio.sleep(self._latency)

    def _get(self, remote_id: str) -> FileInfo:
        entry = self._entries.get(remote_id)
        if entry is None:
            raise NetworkError(f"No such entry: {remote_id}", status_code=404)
        return entry

    async def list_files(self) -> list[FileInfo]:
        await self._network()
        return [
            FileInfo(id=e.id, name=e.name, version=e.version, updated_at=e.updated_at)
            for e in self._entries.values()
        ]

    async def download(self, remote_id: str) -> FileInfo:
        await self._network()
        entry = self._get(remote_id)
        return FileInfo(
            id=entry.id,
            name=entry.name,
            version=entry.version,
            updated_at=entry.updated_at,
            content=dict(entry.content or {}),
        )

    async def upload(
        self, remote_id: str | None, base_version: str | None, files: dict[str, str]
    ) -> FileInfo:
        await self._network()
        if remote_id is None:
            remote_id = uuid.uuid4().hex
        else:
            existing = self._get(remote_id)
            if existing.version != base_version:
                msg = f"Base version {base_version} is stale; server has {existing.version}"
                raise ConflictError(msg)

        entry = FileInfo(
            id=remote_id,
            name=bundle_name(files, remote_id),
            version=f"v{next(self._versions)}",
            updated_at=unix_now(),
            content=dict(files),
        )
        self._entries[remote_id] = entry
        logger.debug("Stored %s at %s", remote_id, entry.version)
        return FileInfo(
            id=entry.id, name=entry.name, version=entry.version, updated_at=entry.updated_at
        )

    async def delete(self, remote_id: str) -> None:
        await self._network()
        self._get(remote_id)
        del self._entries[remote_id]

    def login_check(self) -> bool:
        return self._authenticated

    def login(self) -> str:
        self._authenticated = True
        return "memory://login"

    def login_callback(self, params: dict[str, str]) -> None:
        self._authenticated = True
