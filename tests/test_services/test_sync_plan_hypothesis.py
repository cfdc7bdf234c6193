"""Property-based tests for sync planning invariants."""

from __future__ import annotations

import string

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from cloudsync.providers.base import FileInfo
from cloudsync.schemas.workspace import Header
from cloudsync.services.sync_service import SyncAction, compute_sync_plan

PROPERTY_SETTINGS = settings(
    max_examples=200,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

_REMOTE_ID = st.text(alphabet=string.ascii_lowercase, min_size=1, max_size=4)
_VERSION = st.sampled_from(["v1", "v2", "v3"])


@st.composite
def _workspace(draw: st.DrawFn) -> tuple[list[Header], list[FileInfo]]:
    remote_ids = draw(st.lists(_REMOTE_ID, unique=True, max_size=8))
    entries = [
        FileInfo(id=rid, name=rid, version=draw(_VERSION), updated_at=0) for rid in remote_ids
    ]
    bound_ids = draw(st.lists(_REMOTE_ID, unique=True, max_size=8))
    headers: list[Header] = []
    for index, blob_id in enumerate(bound_ids):
        headers.append(
            Header(
                id=f"p{index}",
                blob_id=blob_id,
                blob_version=draw(_VERSION),
                blob_current=draw(st.booleans()),
                is_deleted=draw(st.booleans()),
            )
        )
    for index in range(draw(st.integers(min_value=0, max_value=3))):
        headers.append(Header(id=f"new{index}", blob_current=False))
    return headers, entries


class TestSyncPlanProperties:
    @PROPERTY_SETTINGS
    @given(workspace=_workspace())
    def test_each_item_classified_exactly_once(
        self, workspace: tuple[list[Header], list[FileInfo]]
    ) -> None:
        headers, entries = workspace
        plan = compute_sync_plan(headers, entries)

        header_ids = [item.header.id for item in plan.actions if item.header is not None]
        assert sorted(header_ids) == sorted(h.id for h in headers)

        bound = {h.blob_id for h in headers}
        imported = [item.remote.id for item in plan.of(SyncAction.IMPORT) if item.remote]
        assert sorted(imported) == sorted(e.id for e in entries if e.id not in bound)

    @PROPERTY_SETTINGS
    @given(workspace=_workspace())
    def test_remote_pairing_matches_blob_id(
        self, workspace: tuple[list[Header], list[FileInfo]]
    ) -> None:
        headers, entries = workspace
        plan = compute_sync_plan(headers, entries)
        for item in plan.actions:
            if item.header is not None and item.remote is not None:
                assert item.header.blob_id == item.remote.id

    @PROPERTY_SETTINGS
    @given(workspace=_workspace())
    def test_deleted_header_never_uploads_or_downloads(
        self, workspace: tuple[list[Header], list[FileInfo]]
    ) -> None:
        headers, entries = workspace
        plan = compute_sync_plan(headers, entries)
        for item in plan.actions:
            if item.header is not None and item.header.is_deleted and item.remote is not None:
                assert item.action == SyncAction.DELETE_REMOTE

    @PROPERTY_SETTINGS
    @given(workspace=_workspace())
    def test_plan_is_deterministic(self, workspace: tuple[list[Header], list[FileInfo]]) -> None:
        headers, entries = workspace
        first = compute_sync_plan(headers, entries)
        second = compute_sync_plan(headers, entries)
        assert [(i.action, i.header, i.remote) for i in first.actions] == [
            (i.action, i.header, i.remote) for i in second.actions
        ]
