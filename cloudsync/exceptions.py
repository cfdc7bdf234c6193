"""Sync error taxonomy.

Convention:
- ``NetworkError``: transient, provider-originated failures (HTTP errors,
  transport failures).  A failure while listing remote entries ends the pass;
  a failure on a single item is reported and the pass carries on.
- ``ConflictError``: the upload baseline no longer matches the server.  It is
  handled where it happens: the item is skipped with a warning.
- ``InvariantViolation``: programmer errors such as a remote id drifting
  away from an already-assigned ``blob_id``.  Never caught by the engine.
"""

from __future__ import annotations


class NetworkError(Exception):
    """Raised by providers when a remote call fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConflictError(NetworkError):
    """Raised when an upload's base version no longer matches server state."""

    def __init__(self, message: str = "Version conflict", status_code: int | None = 409) -> None:
        super().__init__(message, status_code)


class InvariantViolation(Exception):
    """Raised when the sync engine detects an impossible state."""
