"""Tests for the persistent login-state store."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from cloudsync.filesystem.local_storage import LocalStorage

if TYPE_CHECKING:
    from pathlib import Path


class TestLocalStorage:
    def test_memory_only(self) -> None:
        storage = LocalStorage()
        storage.set("k", "v")
        assert storage.get("k") == "v"
        assert "k" in storage
        storage.remove("k")
        assert storage.get("k") is None
        assert "k" not in storage

    def test_values_persist(self, tmp_path: Path) -> None:
        path = tmp_path / "state" / "state.json"
        LocalStorage(path).set("oauthState", "abc")

        assert LocalStorage(path).get("oauthState") == "abc"
        assert json.loads(path.read_text()) == {"oauthState": "abc"}

    def test_remove_missing_key_is_noop(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        LocalStorage(path).remove("absent")
        assert not path.exists()

    def test_malformed_file_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text("[1, 2]")
        assert LocalStorage(path).get("anything") is None

    def test_unparseable_file_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text("{oops")
        storage = LocalStorage(path)
        storage.set("k", "v")
        assert json.loads(path.read_text()) == {"k": "v"}
