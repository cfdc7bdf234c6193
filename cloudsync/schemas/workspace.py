"""Workspace project header schema."""

from __future__ import annotations

from pydantic import BaseModel, Field


class Header(BaseModel):
    """Local record of a project plus its last-known remote sync state.

    ``blob_id``, ``blob_version`` and ``blob_current`` belong to the sync
    engine.  ``save_id`` is an in-memory race guard and is never serialized.
    """

    id: str = ""
    name: str = ""
    blob_id: str | None = None
    blob_version: str | None = None
    blob_current: bool = False
    is_deleted: bool = False
    save_id: str | None = Field(default=None, exclude=True)
    modification_time: int = 0
    pub_id: str = ""
    pub_current: bool = False
    target: str = ""

    def to_json(self) -> str:
        """Serialize for embedding in a content bundle."""
        return self.model_dump_json(indent=4)

    @classmethod
    def from_json(cls, raw: str | None) -> Header:
        """Parse an embedded header, tolerating a missing or empty payload."""
        if not raw:
            return cls()
        return cls.model_validate_json(raw)
