"""Tests for the provider registry."""

from __future__ import annotations

import pytest

from cloudsync.config import Settings
from cloudsync.filesystem.local_storage import LocalStorage
from cloudsync.providers.memory import InMemoryProvider
from cloudsync.providers.onedrive import OneDriveProvider
from cloudsync.providers.registry import create_provider, create_providers, list_providers


class TestRegistry:
    def test_list_providers(self) -> None:
        assert list_providers() == ["memory", "onedrive"]

    def test_create_provider(self) -> None:
        provider = create_provider("onedrive", Settings(_env_file=None), LocalStorage())
        assert isinstance(provider, OneDriveProvider)

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValueError, match="Unknown provider"):
            create_provider("dropbox", Settings(_env_file=None), LocalStorage())

    def test_create_providers_keeps_configured_order(self) -> None:
        settings = Settings(_env_file=None, cloud_providers=["onedrive", "memory"])
        providers = create_providers(settings, LocalStorage())
        assert list(providers) == ["onedrive", "memory"]
        assert isinstance(providers["memory"], InMemoryProvider)
