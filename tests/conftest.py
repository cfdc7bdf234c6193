"""Shared test fixtures for cloudsync."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from cloudsync.exceptions import NetworkError
from cloudsync.filesystem.local_storage import LocalStorage
from cloudsync.filesystem.workspace_store import FileWorkspaceStore
from cloudsync.providers.memory import InMemoryProvider
from cloudsync.services.session_service import SyncSession

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from cloudsync.providers.base import FileInfo


class RecordingNotifier:
    """Notifier that keeps everything it was told."""

    def __init__(self) -> None:
        self.infos: list[str] = []
        self.warnings: list[str] = []
        self.errors: list[Exception] = []

    def info(self, message: str) -> None:
        self.infos.append(message)

    def warning(self, message: str) -> None:
        self.warnings.append(message)

    def network_error(self, exc: Exception) -> None:
        self.errors.append(exc)


class RecordingProvider(InMemoryProvider):
    """In-memory provider that records its remote calls and can be told to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[tuple[str, str | None]] = []
        self.fail_list = False
        self.fail_ids: set[str] = set()
        self.on_upload: Callable[[], None] | None = None

    def network_calls(self) -> list[tuple[str, str | None]]:
        """Calls other than listing."""
        return [call for call in self.calls if call[0] != "list_files"]

    async def list_files(self) -> list[FileInfo]:
        self.calls.append(("list_files", None))
        if self.fail_list:
            raise NetworkError("Listing failed", status_code=503)
        return await super().list_files()

    async def download(self, remote_id: str) -> FileInfo:
        self.calls.append(("download", remote_id))
        if remote_id in self.fail_ids:
            raise NetworkError(f"Download of {remote_id} failed", status_code=500)
        return await super().download(remote_id)

    async def upload(
        self, remote_id: str | None, base_version: str | None, files: dict[str, str]
    ) -> FileInfo:
        self.calls.append(("upload", remote_id))
        info = await super().upload(remote_id, base_version, files)
        if self.on_upload is not None:
            self.on_upload()
        return info

    async def delete(self, remote_id: str) -> None:
        self.calls.append(("delete", remote_id))
        await super().delete(remote_id)


def _session(
    store: FileWorkspaceStore, provider: InMemoryProvider, notifier: RecordingNotifier
) -> SyncSession:
    return SyncSession(
        store=store,
        storage=LocalStorage(),
        notifier=notifier,
        providers={provider.name: provider},
        target="test",
        provider=provider,
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def store(tmp_path: Path) -> FileWorkspaceStore:
    return FileWorkspaceStore(tmp_path / "workspace")


@pytest.fixture
def provider() -> RecordingProvider:
    return RecordingProvider()


@pytest.fixture
def session(
    store: FileWorkspaceStore, provider: RecordingProvider, notifier: RecordingNotifier
) -> SyncSession:
    return _session(store, provider, notifier)


@pytest.fixture
def make_device(
    tmp_path: Path, provider: RecordingProvider
) -> Callable[[str], SyncSession]:
    """Build further sessions on their own workspaces, sharing the same provider."""

    def factory(name: str) -> SyncSession:
        return _session(FileWorkspaceStore(tmp_path / name), provider, RecordingNotifier())

    return factory
