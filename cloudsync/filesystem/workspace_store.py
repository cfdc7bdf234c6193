"""Local workspace store: project headers and their text files on disk.

Layout of a workspace directory::

    <workspace>/<project id>/header.json     serialized Header
    <workspace>/<project id>/.manifest.json  content hash at last save
    <workspace>/<project id>/files/...       project text files

Files edited on disk outside the store are detected by comparing the content
hash with the manifest; such projects lose ``blob_current`` so the next sync
pass uploads them.
"""

from __future__ import annotations

import hashlib
import json
import logging
import shutil
import uuid
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from cloudsync.schemas.workspace import Header
from cloudsync.services.datetime_service import unix_now

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

HEADER_FILE = "header.json"
MANIFEST_FILE = ".manifest.json"
FILES_DIR = "files"


@runtime_checkable
class WorkspaceStore(Protocol):
    """Capabilities the sync engine needs from local storage."""

    def get_headers(self) -> list[Header]:
        """Return every local project header, including deleted ones."""
        ...

    def get_text(self, header_id: str) -> dict[str, str]:
        """Return the project's files as a path to text mapping."""
        ...

    def save(self, header: Header, files: dict[str, str] | None = None) -> None:
        """Persist a header and, when given, replace its files."""
        ...

    def duplicate(self, header: Header, files: dict[str, str]) -> Header:
        """Copy a project into a new local record and return its header."""
        ...

    def import_project(self, header: Header, files: dict[str, str]) -> None:
        """Store a project that did not exist locally."""
        ...

    def create(self, name: str, files: dict[str, str]) -> Header:
        """Create a new, never-synced project."""
        ...

    def get_header(self, header_id: str) -> Header | None:
        """Return the header for an id, or None."""
        ...

    def has_project(self, header_id: str) -> bool:
        """Whether anything, readable or not, is stored under this id."""
        ...

    def check_files(self, files: dict[str, str]) -> None:
        """Raise ValueError if the files cannot be stored as a project."""
        ...


def new_project_id() -> str:
    """Generate a fresh local project id."""
    return uuid.uuid4().hex


def hash_files(files: dict[str, str]) -> str:
    """Compute a SHA-256 hash over a path to text mapping."""
    sha = hashlib.sha256()
    for path in sorted(files):
        sha.update(path.encode("utf-8"))
        sha.update(b"\0")
        sha.update(files[path].encode("utf-8"))
        sha.update(b"\0")
    return sha.hexdigest()


class FileWorkspaceStore:
    """WorkspaceStore implementation over a directory tree.

    Header objects are cached, so every caller holding a header for a given
    id sees the same instance.  The upload save-token check relies on this.
    """

    def __init__(self, workspace_dir: Path) -> None:
        self.workspace_dir = workspace_dir
        self._headers: dict[str, Header] = {}

    def _project_dir(self, header_id: str) -> Path:
        if not header_id or "/" in header_id or "\\" in header_id or header_id.startswith("."):
            raise ValueError(f"Invalid project id: {header_id!r}")
        return self.workspace_dir / header_id

    def _validate_path(self, files_dir: Path, rel_path: str) -> Path:
        """Validate that a relative path stays within the project's files directory.

        Raises ValueError if the resolved path escapes files_dir.
        """
        full_path = (files_dir / rel_path).resolve()
        if not full_path.is_relative_to(files_dir.resolve()):
            raise ValueError(f"Path traversal detected: {rel_path}")
        return full_path

    def _read_files(self, project_dir: Path) -> dict[str, str]:
        files_dir = project_dir / FILES_DIR
        files: dict[str, str] = {}
        if not files_dir.is_dir():
            return files
        for path in sorted(files_dir.rglob("*")):
            if path.is_file():
                rel = path.relative_to(files_dir).as_posix()
                files[rel] = path.read_bytes().decode("utf-8")
        return files

    def _write_files(self, project_dir: Path, files: dict[str, str]) -> None:
        files_dir = project_dir / FILES_DIR
        targets = {rel: self._validate_path(files_dir, rel) for rel in files}
        if files_dir.exists():
            shutil.rmtree(files_dir)
        files_dir.mkdir(parents=True)
        for rel, full_path in targets.items():
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_bytes(files[rel].encode("utf-8"))
        self._write_manifest(project_dir, hash_files(files))

    def _read_manifest(self, project_dir: Path) -> str | None:
        manifest_path = project_dir / MANIFEST_FILE
        if not manifest_path.exists():
            return None
        data = json.loads(manifest_path.read_text(encoding="utf-8"))
        content_hash: str | None = data.get("content_hash")
        return content_hash

    def _write_manifest(self, project_dir: Path, content_hash: str) -> None:
        manifest_path = project_dir / MANIFEST_FILE
        manifest_path.write_text(json.dumps({"content_hash": content_hash}, indent=2))

    def _write_header(self, header: Header) -> None:
        project_dir = self._project_dir(header.id)
        project_dir.mkdir(parents=True, exist_ok=True)
        (project_dir / HEADER_FILE).write_text(header.to_json(), encoding="utf-8")
        self._headers[header.id] = header

    def _load_header(self, project_dir: Path) -> Header | None:
        header_path = project_dir / HEADER_FILE
        if not header_path.is_file():
            return None
        try:
            header = Header.from_json(header_path.read_text(encoding="utf-8"))
        except ValueError:
            logger.exception("Skipping project %s due to unreadable header", project_dir.name)
            return None
        if header.id != project_dir.name:
            logger.warning(
                "Project directory %s holds header for %s; using directory name",
                project_dir.name,
                header.id,
            )
            header.id = project_dir.name
        return header

    def _detect_edit(self, header: Header, project_dir: Path) -> None:
        """Mark a header as edited when its files changed behind the store's back."""
        current = hash_files(self._read_files(project_dir))
        recorded = self._read_manifest(project_dir)
        if recorded == current:
            return
        if recorded is not None and not header.is_deleted:
            logger.info("Detected local edit in %s", header.id)
            header.blob_current = False
            header.save_id = None
            header.modification_time = unix_now()
            (project_dir / HEADER_FILE).write_text(header.to_json(), encoding="utf-8")
        self._write_manifest(project_dir, current)

    def get_headers(self) -> list[Header]:
        if not self.workspace_dir.is_dir():
            return []
        headers: list[Header] = []
        for project_dir in sorted(self.workspace_dir.iterdir()):
            if not project_dir.is_dir() or project_dir.name.startswith("."):
                continue
            header = self._headers.get(project_dir.name)
            if header is None:
                header = self._load_header(project_dir)
                if header is None:
                    continue
                self._headers[header.id] = header
            self._detect_edit(header, project_dir)
            headers.append(header)
        return headers

    def get_header(self, header_id: str) -> Header | None:
        """Return the cached header for an id, loading it from disk if needed."""
        header = self._headers.get(header_id)
        if header is not None:
            return header
        project_dir = self._project_dir(header_id)
        if not project_dir.is_dir():
            return None
        header = self._load_header(project_dir)
        if header is not None:
            self._headers[header.id] = header
        return header

    def get_text(self, header_id: str) -> dict[str, str]:
        project_dir = self._project_dir(header_id)
        if not project_dir.is_dir():
            raise KeyError(f"Unknown project: {header_id}")
        return self._read_files(project_dir)

    def has_project(self, header_id: str) -> bool:
        return self._project_dir(header_id).exists()

    def check_files(self, files: dict[str, str]) -> None:
        files_dir = self.workspace_dir / FILES_DIR
        for rel_path in files:
            self._validate_path(files_dir, rel_path)

    def save(self, header: Header, files: dict[str, str] | None = None) -> None:
        # Files first: a rejected or failed write leaves the stored header as it was.
        if files is not None:
            self._write_files(self._project_dir(header.id), files)
        self._write_header(header)

    def duplicate(self, header: Header, files: dict[str, str]) -> Header:
        copy = header.model_copy(
            update={
                "id": new_project_id(),
                "blob_id": None,
                "blob_version": None,
                "blob_current": False,
                "is_deleted": False,
                "save_id": None,
                "modification_time": unix_now(),
            }
        )
        self.save(copy, files)
        return copy

    def import_project(self, header: Header, files: dict[str, str]) -> None:
        if self.has_project(header.id):
            raise FileExistsError(f"Project already exists: {header.id}")
        self.save(header, files)

    def create(self, name: str, files: dict[str, str]) -> Header:
        """Create a brand new, never-synced project."""
        header = Header(id=new_project_id(), name=name, modification_time=unix_now())
        self.save(header, files)
        return header

    def record_edit(self, header: Header, files: dict[str, str]) -> None:
        """Save a user edit, invalidating any in-flight upload's save token."""
        header.blob_current = False
        header.save_id = None
        header.modification_time = unix_now()
        self.save(header, files)
