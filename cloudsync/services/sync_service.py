"""Sync service: pass classification, per-item transfers, and the reconciliation driver."""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import TYPE_CHECKING

from cloudsync.exceptions import ConflictError, InvariantViolation, NetworkError
from cloudsync.filesystem.workspace_store import new_project_id
from cloudsync.providers.base import HEADER_JSON
from cloudsync.schemas.workspace import Header
from cloudsync.services.progress_service import ProgressReporter

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Coroutine
    from typing import Any

    from cloudsync.providers.base import CloudProvider, FileInfo
    from cloudsync.services.session_service import SyncSession

# Terminal blob_version of a project whose remote copy is gone.
DELETED_VERSION = "DELETED"
CONFLICT_PREFIX = "# "
UNNAMED = "???"
SYNC_DONE = "Syncing done"

_PROJECT_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

# Local storage failures a single action reports instead of raising.
_STORE_ERRORS = (KeyError, OSError, ValueError)


class SyncAction(StrEnum):
    """Action chosen for one local/remote pairing."""

    NO_CHANGE = "no_change"
    UPLOAD = "upload"
    DOWNLOAD = "download"
    CONFLICT = "conflict"
    DELETE_REMOTE = "delete_remote"
    UNINSTALL = "uninstall"
    IMPORT = "import"


class ResultKind(StrEnum):
    """Outcome of a single action."""

    OK = "ok"
    SKIPPED = "skipped"  # upload baseline was stale
    FAILED = "failed"


@dataclass
class PlannedAction:
    """A single classified pairing in the sync plan."""

    action: SyncAction
    header: Header | None = None
    remote: FileInfo | None = None


@dataclass
class SyncPlan:
    """The computed sync plan for one pass."""

    actions: list[PlannedAction] = field(default_factory=list)

    def of(self, action: SyncAction) -> list[PlannedAction]:
        return [item for item in self.actions if item.action == action]

    def counts(self) -> dict[SyncAction, int]:
        counts = dict.fromkeys(SyncAction, 0)
        for item in self.actions:
            counts[item.action] += 1
        return counts


@dataclass
class ActionResult:
    """Result of running one planned action."""

    action: SyncAction
    kind: ResultKind
    header_id: str | None = None
    remote_id: str | None = None
    error: Exception | None = None


@dataclass
class SyncReport:
    """Everything a completed pass produced."""

    updated: dict[str, int] = field(default_factory=dict)
    results: list[ActionResult] = field(default_factory=list)

    @property
    def failed(self) -> list[ActionResult]:
        return [r for r in self.results if r.kind == ResultKind.FAILED]

    @property
    def skipped(self) -> list[ActionResult]:
        return [r for r in self.results if r.kind == ResultKind.SKIPPED]


def classify(header: Header, remote: FileInfo | None) -> SyncAction:
    """Choose the action for a local header and its matching remote entry, if any."""
    if remote is None:
        if header.blob_version:
            # Pushed once before and now gone remotely: uninstall wins.
            return SyncAction.UNINSTALL
        return SyncAction.UPLOAD

    if header.is_deleted:
        return SyncAction.DELETE_REMOTE

    if remote.version == header.blob_version:
        return SyncAction.NO_CHANGE if header.blob_current else SyncAction.UPLOAD
    return SyncAction.DOWNLOAD if header.blob_current else SyncAction.CONFLICT


def compute_sync_plan(headers: list[Header], entries: list[FileInfo]) -> SyncPlan:
    """Classify every local header and every remote entry with no local match.

    Local headers are matched to remote entries by ``blob_id``.  Each header
    and each remote entry ends up in exactly one planned action.
    """
    plan = SyncPlan()
    remote_by_id = {entry.id: entry for entry in entries}
    local_blob_ids = {h.blob_id for h in headers if h.blob_id is not None}

    for header in headers:
        remote = remote_by_id.get(header.blob_id) if header.blob_id is not None else None
        plan.actions.append(PlannedAction(classify(header, remote), header, remote))

    for entry in entries:
        if entry.id not in local_blob_ids:
            plan.actions.append(PlannedAction(SyncAction.IMPORT, None, entry))

    return plan


def _is_terminal(header: Header) -> bool:
    return header.is_deleted and header.blob_version == DELETED_VERSION


def _restore(header: Header, snapshot: Header) -> None:
    """Put back every field of a header mutated in place."""
    for name in Header.model_fields:
        setattr(header, name, getattr(snapshot, name))


def _failed(item: PlannedAction, exc: Exception) -> ActionResult:
    header_id = item.header.id if item.header is not None else None
    remote_id = item.remote.id if item.remote is not None else None
    return ActionResult(item.action, ResultKind.FAILED, header_id, remote_id, exc)


class SyncPass:
    """State shared by the actions of one pass against one provider."""

    def __init__(self, session: SyncSession, provider: CloudProvider) -> None:
        self.provider = provider
        self.store = session.store
        self.notifier = session.notifier
        self.target = session.target
        self.progress = ProgressReporter(session.notifier)
        self.updated: dict[str, int] = {}
        self.local_ids: set[str] = set()

    async def upload(self, header: Header) -> ActionResult:
        """Push a header's current content, guarding against concurrent re-saves."""
        save_id = uuid.uuid4().hex
        header.save_id = save_id
        first_time = header.blob_id is None
        try:
            files = dict(self.store.get_text(header.id))
        except _STORE_ERRORS as exc:
            logger.warning("Cannot read %s for upload: %s", header.id, exc)
            return ActionResult(
                SyncAction.UPLOAD, ResultKind.FAILED, header.id, header.blob_id, exc
            )
        files[HEADER_JSON] = header.to_json()

        try:
            info = await self.provider.upload(header.blob_id, header.blob_version, files)
        except ConflictError as exc:
            self.notifier.warning(f"Conflict saving {header.name}; please do a full cloud sync")
            return ActionResult(
                SyncAction.UPLOAD, ResultKind.SKIPPED, header.id, header.blob_id, exc
            )
        except NetworkError as exc:
            logger.warning("Upload of %s failed: %s", header.id, exc)
            return ActionResult(
                SyncAction.UPLOAD, ResultKind.FAILED, header.id, header.blob_id, exc
            )
        logger.debug("synced up %s", info.id)

        if first_time:
            header.blob_id = info.id
        elif header.blob_id != info.id:
            msg = f"Remote id changed on upload of {header.id}: {header.blob_id} -> {info.id}"
            raise InvariantViolation(msg)
        header.blob_version = info.version
        if header.save_id == save_id:
            header.blob_current = True
        try:
            self.store.save(header)
        except _STORE_ERRORS as exc:
            logger.warning("Uploaded %s but could not save its header: %s", header.id, exc)
            return ActionResult(
                SyncAction.UPLOAD, ResultKind.FAILED, header.id, header.blob_id, exc
            )
        return ActionResult(SyncAction.UPLOAD, ResultKind.OK, header.id, header.blob_id)

    async def download(self, entry: FileInfo, existing: Header | None = None) -> ActionResult:
        """Fetch a remote entry into an existing header, or into a new local project."""
        header = existing if existing is not None else Header(blob_id=entry.id)
        action = SyncAction.IMPORT if existing is None else SyncAction.DOWNLOAD
        try:
            resp = await self._fetch(entry, header)
        except NetworkError as exc:
            logger.warning("Download of %s failed: %s", entry.id, exc)
            return ActionResult(action, ResultKind.FAILED, header.id or None, entry.id, exc)
        return self._apply(action, header, resp, imported=existing is None)

    async def resolve_conflict(self, header: Header, entry: FileInfo) -> ActionResult:
        """Keep local edits as a detached copy, then mirror the remote version.

        The copy is only made once the remote version is in hand and storable,
        so a failed attempt leaves nothing behind for the next pass to repeat.
        """
        try:
            resp = await self._fetch(entry, header)
            self.store.check_files(resp.content or {})
        except NetworkError as exc:
            logger.warning("Download of %s failed: %s", entry.id, exc)
            return ActionResult(SyncAction.CONFLICT, ResultKind.FAILED, header.id, entry.id, exc)
        except ValueError as exc:
            logger.warning("Cannot store remote version of %s: %s", entry.id, exc)
            return ActionResult(SyncAction.CONFLICT, ResultKind.FAILED, header.id, entry.id, exc)

        try:
            duplicate = self.store.duplicate(header, self.store.get_text(header.id))
            duplicate.name = CONFLICT_PREFIX + header.name
            self.store.save(duplicate)
        except _STORE_ERRORS as exc:
            logger.warning("Cannot copy local edits of %s: %s", header.id, exc)
            return ActionResult(SyncAction.CONFLICT, ResultKind.FAILED, header.id, entry.id, exc)
        self.local_ids.add(duplicate.id)
        logger.info("Conflict on %s; local edits kept as %s", header.id, duplicate.id)

        return self._apply(SyncAction.CONFLICT, header, resp, imported=False)

    async def delete_remote(self, header: Header) -> ActionResult:
        """Delete the remote copy of a locally deleted project."""
        assert header.blob_id is not None
        try:
            await self.provider.delete(header.blob_id)
        except NetworkError as exc:
            logger.warning("Delete of %s failed: %s", header.blob_id, exc)
            return ActionResult(
                SyncAction.DELETE_REMOTE, ResultKind.FAILED, header.id, header.blob_id, exc
            )
        result = await self.uninstall(header)
        return replace(result, action=SyncAction.DELETE_REMOTE)

    async def uninstall(self, header: Header) -> ActionResult:
        """Mark a project deleted with a terminal version; its files stay on disk."""
        result = ActionResult(SyncAction.UNINSTALL, ResultKind.OK, header.id, header.blob_id)
        if _is_terminal(header):
            return result
        logger.debug("uninstall local %s", header.blob_id)
        before = header.model_copy()
        header.is_deleted = True
        header.blob_version = DELETED_VERSION
        try:
            self.store.save(header)
        except _STORE_ERRORS as exc:
            logger.warning("Cannot save uninstalled %s: %s", header.id, exc)
            _restore(header, before)
            return replace(result, kind=ResultKind.FAILED, error=exc)
        return result

    async def _fetch(self, entry: FileInfo, header: Header) -> FileInfo:
        if header.blob_id != entry.id:
            msg = f"Cannot download {entry.id} into header bound to {header.blob_id}"
            raise InvariantViolation(msg)
        logger.debug("sync down %s - %s", header.blob_id, entry.version)
        resp = await self.provider.download(entry.id)
        if resp.id != header.blob_id:
            msg = f"Provider returned {resp.id} when downloading {header.blob_id}"
            raise InvariantViolation(msg)
        return resp

    def _apply(
        self, action: SyncAction, header: Header, resp: FileInfo, *, imported: bool
    ) -> ActionResult:
        """Merge a downloaded entry into the header and store it."""
        files = dict(resp.content or {})
        embedded = self._embedded_header(resp.id, files.pop(HEADER_JSON, None))
        before = header.model_copy()

        header.blob_current = True
        header.blob_version = resp.version
        header.modification_time = resp.updated_at
        header.name = embedded.name or header.name or UNNAMED
        if imported:
            header.id = self._local_id_for(embedded.id)
        header.pub_id = embedded.pub_id
        header.pub_current = embedded.pub_current
        header.is_deleted = False
        header.save_id = None
        header.target = self.target

        try:
            if imported:
                self.store.import_project(header, files)
            else:
                self.store.save(header, files)
        except _STORE_ERRORS as exc:
            logger.warning("Cannot store download of %s: %s", resp.id, exc)
            if imported:
                return ActionResult(action, ResultKind.FAILED, None, resp.id, exc)
            _restore(header, before)
            return ActionResult(action, ResultKind.FAILED, header.id, resp.id, exc)

        if imported:
            self.local_ids.add(header.id)
        self.updated[resp.id] = 1
        return ActionResult(action, ResultKind.OK, header.id, resp.id)

    def _embedded_header(self, remote_id: str, raw: str | None) -> Header:
        try:
            return Header.from_json(raw)
        except ValueError:
            logger.warning("Ignoring malformed %s in %s", HEADER_JSON, remote_id)
            return Header()

    def _local_id_for(self, embedded_id: str) -> str:
        if (
            embedded_id
            and _PROJECT_ID_RE.match(embedded_id)
            and embedded_id not in self.local_ids
            and not self.store.has_project(embedded_id)
        ):
            return embedded_id
        return new_project_id()

    async def _counted(
        self, coro: Coroutine[Any, Any, ActionResult], *, upload: bool
    ) -> ActionResult:
        try:
            return await coro
        finally:
            if upload:
                self.progress.upload_finished()
            else:
                self.progress.download_finished()

    def _schedule(self, item: PlannedAction) -> Coroutine[Any, Any, ActionResult]:
        header, remote = item.header, item.remote
        if item.action == SyncAction.UPLOAD:
            assert header is not None
            self.progress.upload_started()
            return self._counted(self.upload(header), upload=True)
        if item.action in (SyncAction.DOWNLOAD, SyncAction.IMPORT):
            assert remote is not None
            self.progress.download_started()
            return self._counted(self.download(remote, header), upload=False)
        if item.action == SyncAction.CONFLICT:
            assert header is not None and remote is not None
            self.progress.download_started()
            return self._counted(self.resolve_conflict(header, remote), upload=False)
        if item.action == SyncAction.DELETE_REMOTE:
            assert header is not None
            self.progress.upload_started()
            return self._counted(self.delete_remote(header), upload=True)
        if item.action == SyncAction.UNINSTALL:
            assert header is not None
            if _is_terminal(header):
                return self.uninstall(header)
            self.progress.download_started()
            return self._counted(self.uninstall(header), upload=False)
        raise ValueError(f"Nothing to schedule for {item.action}")

    async def run(self) -> SyncReport:
        """Classify, dispatch every action concurrently, and join on the full set."""
        entries = await self.provider.list_files()
        headers = self.store.get_headers()
        self.local_ids = {h.id for h in headers}
        plan = compute_sync_plan(headers, entries)

        scheduled = [item for item in plan.actions if item.action != SyncAction.NO_CHANGE]
        pending = [self._schedule(item) for item in scheduled]
        self.progress.report()
        outcomes = await asyncio.gather(*pending, return_exceptions=True)

        report = SyncReport(updated=self.updated)
        fatal: BaseException | None = None
        for item, outcome in zip(scheduled, outcomes, strict=True):
            if isinstance(outcome, ActionResult):
                result = outcome
            elif isinstance(outcome, Exception) and not isinstance(outcome, InvariantViolation):
                logger.warning("Sync action %s failed: %r", item.action, outcome)
                result = _failed(item, outcome)
            else:
                logger.error("Sync action crashed: %r", outcome)
                fatal = fatal or outcome
                continue
            report.results.append(result)
            if result.kind == ResultKind.FAILED and result.error is not None:
                self.notifier.network_error(result.error)
        if fatal is not None:
            raise fatal

        self.notifier.info(SYNC_DONE)
        return report


class SyncService:
    """Runs sync passes for a session."""

    def __init__(self, session: SyncSession) -> None:
        self.session = session

    async def plan(self) -> SyncPlan | None:
        """Compute what a pass would do without transferring anything."""
        provider = self.session.provider
        if provider is None:
            return None
        entries = await provider.list_files()
        return compute_sync_plan(self.session.store.get_headers(), entries)

    async def sync(self) -> SyncReport | None:
        """Run one reconciliation pass.

        Returns None when no provider is active or the remote listing failed.
        """
        provider = self.session.provider
        if provider is None:
            return None

        try:
            report = await SyncPass(self.session, provider).run()
        except NetworkError as exc:
            self.session.notifier.network_error(exc)
            return None

        if self.session.on_sync_done is not None:
            self.session.on_sync_done(report.updated)
        return report

    async def save_to_cloud(self, header: Header) -> ActionResult | None:
        """Upload a single project outside a pass."""
        provider = self.session.provider
        if provider is None:
            return None
        result = await SyncPass(self.session, provider).upload(header)
        if result.kind == ResultKind.FAILED and result.error is not None:
            self.session.notifier.network_error(result.error)
        return result
