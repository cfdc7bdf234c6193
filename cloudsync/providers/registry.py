"""Provider registry for cloud sync backends."""

from __future__ import annotations

from typing import TYPE_CHECKING

from cloudsync.providers.memory import InMemoryProvider
from cloudsync.providers.onedrive import OneDriveProvider

if TYPE_CHECKING:
    from cloudsync.config import Settings
    from cloudsync.filesystem.local_storage import LocalStorage
    from cloudsync.providers.base import CloudProvider

PROVIDERS: dict[str, type[InMemoryProvider] | type[OneDriveProvider]] = {
    "memory": InMemoryProvider,
    "onedrive": OneDriveProvider,
}


def create_provider(name: str, settings: Settings, storage: LocalStorage) -> CloudProvider:
    """Instantiate the provider registered under name.

    Raises ValueError if the provider is unknown.
    """
    provider_cls = PROVIDERS.get(name)
    if provider_cls is None:
        msg = f"Unknown provider: {name!r}. Available: {list(PROVIDERS)}"
        raise ValueError(msg)
    return provider_cls(settings, storage)


def create_providers(settings: Settings, storage: LocalStorage) -> dict[str, CloudProvider]:
    """Instantiate every configured provider, keyed by name, in configuration order."""
    return {name: create_provider(name, settings, storage) for name in settings.cloud_providers}


def list_providers() -> list[str]:
    """Return the list of supported provider names."""
    return list(PROVIDERS.keys())
