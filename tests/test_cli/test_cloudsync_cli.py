"""Tests for the cloudsync command-line client."""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest

from cli.sync_client import CONFIG_FILE, load_config, main, make_settings, save_config
from cloudsync.filesystem.workspace_store import FileWorkspaceStore
from cloudsync.services.sync_service import DELETED_VERSION

if TYPE_CHECKING:
    from pathlib import Path


def _run(workspace: Path, *args: str) -> None:
    with patch("sys.argv", ["cloudsync", "--dir", str(workspace), *args]):
        main()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    path = tmp_path / "ws"
    _run(path, "init", "--provider", "memory")
    return path


class TestConfig:
    def test_save_and_load(self, tmp_path: Path) -> None:
        save_config(tmp_path, {"cloud_providers": ["memory"]})
        assert load_config(tmp_path) == {"cloud_providers": ["memory"]}

    def test_missing_config(self, tmp_path: Path) -> None:
        assert load_config(tmp_path) == {}

    def test_settings_overlay(self, tmp_path: Path) -> None:
        settings = make_settings(tmp_path, {"target": "cli"}, debug=True)
        assert settings.workspace_dir == tmp_path
        assert settings.state_file.parent == tmp_path
        assert settings.target == "cli"
        assert settings.debug is True


class TestCommands:
    def test_init_writes_config(self, workspace: Path) -> None:
        config = json.loads((workspace / CONFIG_FILE).read_text())
        assert config == {"cloud_providers": ["memory"]}

    def test_new_and_list(
        self, workspace: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        source = tmp_path / "main.ts"
        source.write_text("basic.showNumber(1)")

        _run(workspace, "new", "Demo", str(source))
        _run(workspace, "list")

        out = capsys.readouterr().out
        assert "Created project" in out
        assert "Demo  [never synced]" in out
        (header,) = FileWorkspaceStore(workspace).get_headers()
        assert FileWorkspaceStore(workspace).get_text(header.id) == {
            "main.ts": "basic.showNumber(1)"
        }

    def test_status_and_sync(self, workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
        _run(workspace, "new", "Demo")
        capsys.readouterr()

        _run(workspace, "status")
        out = capsys.readouterr().out
        assert "To upload:        1" in out
        assert "+ Demo (upload)" in out

        _run(workspace, "sync")
        out = capsys.readouterr().out
        assert "Sync complete. 1 action(s), 0 updated, 0 skipped, 0 failed." in out
        assert "Syncing done" in out

        _run(workspace, "list")
        assert "Demo  [synced]" in capsys.readouterr().out

    def test_delete_never_synced_project(
        self, workspace: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        _run(workspace, "new", "Demo")
        (header,) = FileWorkspaceStore(workspace).get_headers()

        _run(workspace, "delete", header.id)
        _run(workspace, "sync")

        out = capsys.readouterr().out
        assert "will be deleted on next sync" in out
        assert "0 failed" in out
        reloaded = FileWorkspaceStore(workspace).get_header(header.id)
        assert reloaded is not None
        assert reloaded.is_deleted is True
        assert reloaded.blob_version == DELETED_VERSION

    def test_delete_unknown_project(
        self, workspace: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with pytest.raises(SystemExit) as exc_info:
            _run(workspace, "delete", "nope")
        assert exc_info.value.code == 1
        assert "Unknown project nope" in capsys.readouterr().out

    def test_no_command_prints_help(
        self, workspace: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        _run(workspace)
        assert "usage: cloudsync" in capsys.readouterr().out


class TestOneDriveLogin:
    def test_missing_client_id_reported(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        workspace = tmp_path / "ws"
        _run(workspace, "init", "--provider", "onedrive")

        with pytest.raises(SystemExit) as exc_info:
            _run(workspace, "list")

        assert exc_info.value.code == 1
        assert "Invalid cloud configuration" in capsys.readouterr().out

    def test_login_then_callback(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        workspace = tmp_path / "ws"
        _run(workspace, "init", "--provider", "onedrive", "--client-id", "client")
        capsys.readouterr()

        _run(workspace, "login", "onedrive")
        out = capsys.readouterr().out
        match = re.search(r"state=([A-Za-z0-9_-]+)", out)
        assert match is not None

        _run(
            workspace,
            "callback",
            f"http://localhost:8765/#access_token=tok&expires_in=3600&state={match.group(1)}",
        )

        assert "Logged in to onedrive" in capsys.readouterr().out

    def test_callback_with_bad_state_fails(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        workspace = tmp_path / "ws"
        _run(workspace, "init", "--provider", "onedrive", "--client-id", "client")
        _run(workspace, "login", "onedrive")

        with pytest.raises(SystemExit) as exc_info:
            _run(workspace, "callback", "http://localhost:8765/#access_token=tok&state=forged")

        assert exc_info.value.code == 1
        assert "Login failed" in capsys.readouterr().out
