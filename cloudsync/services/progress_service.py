"""In-flight transfer counters rendered as status messages."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cloudsync.services.notification_service import Notifier

ALL_SYNCED = "All synced"


def format_progress(num_down: int, num_up: int) -> str:
    """Build the status line for the given pending counts."""
    if num_down == 0 and num_up == 0:
        return ALL_SYNCED
    parts: list[str] = []
    if num_down:
        parts.append(f"{num_down} down")
    if num_up:
        parts.append(f"{num_up} up")
    return f"Syncing ({', '.join(parts)})"


class ProgressReporter:
    """Count pending uploads and downloads and report every change.

    Purely observational: nothing in the sync engine reads these counters.
    """

    def __init__(self, notifier: Notifier) -> None:
        self._notifier = notifier
        self.num_up = 0
        self.num_down = 0

    @property
    def message(self) -> str:
        return format_progress(self.num_down, self.num_up)

    def report(self) -> None:
        self._notifier.info(self.message)

    def upload_started(self) -> None:
        self.num_up += 1
        self.report()

    def upload_finished(self) -> None:
        self.num_up -= 1
        self.report()

    def download_started(self) -> None:
        self.num_down += 1
        self.report()

    def download_finished(self) -> None:
        self.num_down -= 1
        self.report()
