"""CLI client for syncing a local workspace with a cloud provider."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from cloudsync.config import Settings
from cloudsync.exceptions import InvariantViolation, NetworkError
from cloudsync.providers.registry import list_providers
from cloudsync.services.session_service import SyncSession, build_session, login_check
from cloudsync.services.sync_service import DELETED_VERSION, SyncAction, SyncService

CONFIG_FILE = ".cloudsync.json"
STATE_FILE = ".cloudsync-state.json"


class ConsoleNotifier:
    """Notifier that prints to the terminal."""

    def info(self, message: str) -> None:
        print(f"  {message}")

    def warning(self, message: str) -> None:
        print(f"  Warning: {message}")

    def network_error(self, exc: Exception) -> None:
        kind = "Network error" if isinstance(exc, NetworkError) else "Sync error"
        print(f"  {kind}: {exc}")


def _configure_logging(debug: bool) -> None:
    """Configure CLI logging."""
    level = logging.DEBUG if debug else logging.WARNING
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(level=level, format=fmt, stream=sys.stderr, force=True)
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def load_config(dir_path: Path) -> dict[str, Any]:
    """Load CLI config from file."""
    config_path = dir_path / CONFIG_FILE
    if not config_path.exists():
        return {}
    config: dict[str, Any] = json.loads(config_path.read_text())
    return config


def save_config(dir_path: Path, config: dict[str, Any]) -> None:
    """Save CLI config to file."""
    dir_path.mkdir(parents=True, exist_ok=True)
    config_path = dir_path / CONFIG_FILE
    config_path.write_text(json.dumps(config, indent=2))


def make_settings(workspace_dir: Path, config: dict[str, Any], debug: bool = False) -> Settings:
    """Build settings from the environment overlaid with the workspace config."""
    overrides: dict[str, Any] = {
        "workspace_dir": workspace_dir,
        "state_file": workspace_dir / STATE_FILE,
        **config,
    }
    if debug:
        overrides["debug"] = True
    return Settings(**overrides)


def _project_status(session: SyncSession) -> list[tuple[str, str, str]]:
    rows: list[tuple[str, str, str]] = []
    for header in session.store.get_headers():
        if header.is_deleted:
            state = "deleted"
        elif header.blob_id is None:
            state = "never synced"
        elif header.blob_current:
            state = "synced"
        else:
            state = "modified"
        rows.append((header.id, header.name, state))
    return rows


def _read_files(paths: list[str]) -> dict[str, str]:
    files: dict[str, str] = {}
    for raw in paths:
        path = Path(raw)
        files[path.name] = path.read_text(encoding="utf-8")
    return files


def _require_provider(session: SyncSession) -> None:
    login_check(session)
    if session.provider is None:
        print("Error: Not logged in. Run 'cloudsync login <provider>' first.")
        sys.exit(1)


def _print_plan(service: SyncService) -> None:
    plan = asyncio.run(service.plan())
    if plan is None:
        return
    counts = plan.counts()
    print("Sync Status:")
    print(f"  To upload:        {counts[SyncAction.UPLOAD]}")
    print(f"  To download:      {counts[SyncAction.DOWNLOAD] + counts[SyncAction.IMPORT]}")
    print(f"  To delete remote: {counts[SyncAction.DELETE_REMOTE]}")
    print(f"  To uninstall:     {counts[SyncAction.UNINSTALL]}")
    print(f"  Conflicts:        {counts[SyncAction.CONFLICT]}")

    for item in plan.of(SyncAction.UPLOAD):
        assert item.header is not None
        print(f"    + {item.header.name} (upload)")
    for item in plan.of(SyncAction.DOWNLOAD) + plan.of(SyncAction.IMPORT):
        assert item.remote is not None
        print(f"    < {item.remote.name} (download)")
    for item in plan.of(SyncAction.CONFLICT):
        assert item.header is not None
        print(f"    ! {item.header.name} (conflict)")


def _run_sync(service: SyncService) -> None:
    try:
        report = asyncio.run(service.sync())
    except InvariantViolation as exc:
        print(f"Error: {exc}")
        sys.exit(2)
    if report is None:
        print("Sync failed.")
        sys.exit(1)
    total = len(report.results)
    print(
        f"Sync complete. {total} action(s), {len(report.updated)} updated, "
        f"{len(report.skipped)} skipped, {len(report.failed)} failed."
    )


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="cloudsync",
        description="Sync a local project workspace with a cloud provider",
    )
    parser.add_argument("--dir", "-d", default=".", help="Workspace directory (default: current)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command")
    init_parser = subparsers.add_parser("init", help="Initialize workspace configuration")
    init_parser.add_argument("--provider", "-p", required=True, choices=list_providers())
    init_parser.add_argument("--client-id", help="OAuth client id for the provider")

    new_parser = subparsers.add_parser("new", help="Create a project from files")
    new_parser.add_argument("name")
    new_parser.add_argument("files", nargs="*", help="Files to add to the project")

    delete_parser = subparsers.add_parser("delete", help="Delete a project on next sync")
    delete_parser.add_argument("project_id")

    login_parser = subparsers.add_parser("login", help="Start provider login")
    login_parser.add_argument("provider", choices=list_providers())

    callback_parser = subparsers.add_parser("callback", help="Finish login from redirect URL")
    callback_parser.add_argument("url")

    subparsers.add_parser("list", help="List local projects")
    subparsers.add_parser("status", help="Show what would change")
    subparsers.add_parser("sync", help="Bidirectional sync")

    args = parser.parse_args()
    _configure_logging(args.debug)
    workspace_dir = Path(args.dir).resolve()

    if args.command == "init":
        config = load_config(workspace_dir)
        config["cloud_providers"] = [args.provider]
        if args.client_id:
            config[f"{args.provider}_client_id"] = args.client_id
        save_config(workspace_dir, config)
        print(f"Initialized sync config in {workspace_dir / CONFIG_FILE}")
        return

    try:
        settings = make_settings(workspace_dir, load_config(workspace_dir), args.debug)
        session = build_session(settings, notifier=ConsoleNotifier())
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    if args.command == "new":
        header = session.store.create(args.name, _read_files(args.files))
        print(f"Created project {header.id} ({header.name})")

    elif args.command == "delete":
        header = session.store.get_header(args.project_id)
        if header is None:
            print(f"Error: Unknown project {args.project_id}")
            sys.exit(1)
        header.is_deleted = True
        if header.blob_id is None:
            # Nothing remote to delete
            header.blob_version = DELETED_VERSION
        session.store.save(header)
        print(f"Project {header.id} will be deleted on next sync")

    elif args.command == "list":
        for project_id, name, state in _project_status(session):
            print(f"  {project_id}  {name}  [{state}]")

    elif args.command == "login":
        provider = session.providers.get(args.provider)
        if provider is None:
            print(f"Error: Provider {args.provider} is not configured. Run 'cloudsync init'.")
            sys.exit(1)
        try:
            url = provider.login()
        except ValueError as exc:
            print(f"Error: {exc}")
            sys.exit(1)
        print("Open this URL to log in, then run 'cloudsync callback <redirect url>':")
        print(url)

    elif args.command == "callback":
        fragment = urlparse(args.url).fragment
        login_check(session, f"#{fragment}")
        if session.provider is None:
            print("Error: Login failed")
            sys.exit(1)
        print(f"Logged in to {session.provider.name}")

    elif args.command in ("status", "sync"):
        _require_provider(session)
        service = SyncService(session)
        try:
            if args.command == "status":
                _print_plan(service)
            else:
                _run_sync(service)
        except NetworkError as exc:
            print(f"Error: {exc}")
            sys.exit(1)

    else:
        parser.print_help()


if __name__ == "__main__":
    main()
