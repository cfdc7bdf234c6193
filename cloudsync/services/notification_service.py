"""User-visible notifications emitted during sync."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from cloudsync.exceptions import NetworkError

logger = logging.getLogger(__name__)


@runtime_checkable
class Notifier(Protocol):
    """Protocol for the surface that shows sync status to the user."""

    def info(self, message: str) -> None: ...

    def warning(self, message: str) -> None: ...

    def network_error(self, exc: Exception) -> None:
        """Report a failed pass or item: provider errors and local storage errors alike."""
        ...


class LoggingNotifier:
    """Notifier that writes notifications to the log."""

    def __init__(self, name: str = "cloudsync.notifications") -> None:
        self._logger = logging.getLogger(name)

    def info(self, message: str) -> None:
        self._logger.info("%s", message)

    def warning(self, message: str) -> None:
        self._logger.warning("%s", message)

    def network_error(self, exc: Exception) -> None:
        status_code = getattr(exc, "status_code", None)
        if status_code is not None:
            self._logger.error("Network error (%s): %s", status_code, exc)
        elif isinstance(exc, NetworkError):
            self._logger.error("Network error: %s", exc)
        else:
            self._logger.error("Sync error: %s", exc)
