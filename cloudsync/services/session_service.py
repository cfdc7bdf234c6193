"""Sync session: the active provider binding and OAuth callback detection."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from urllib.parse import parse_qsl

from cloudsync.filesystem.local_storage import OAUTH_STATE_KEY, OAUTH_TYPE_KEY, LocalStorage
from cloudsync.filesystem.workspace_store import FileWorkspaceStore
from cloudsync.providers.registry import create_providers
from cloudsync.services.notification_service import LoggingNotifier

if TYPE_CHECKING:
    from collections.abc import Callable

    from cloudsync.config import Settings
    from cloudsync.filesystem.workspace_store import WorkspaceStore
    from cloudsync.providers.base import CloudProvider
    from cloudsync.services.notification_service import Notifier

logger = logging.getLogger(__name__)

_ACCESS_TOKEN_RE = re.compile(r"(%23)?[#&?]*access_token.*")


@dataclass
class SyncSession:
    """Everything a sync pass needs, bound once at startup.

    ``provider`` is the active backend; it is rebound when the user switches
    backends and cleared on sign-out.
    """

    store: WorkspaceStore
    storage: LocalStorage
    notifier: Notifier = field(default_factory=LoggingNotifier)
    providers: dict[str, CloudProvider] = field(default_factory=dict)
    target: str = ""
    on_sync_done: Callable[[dict[str, int]], None] | None = None
    provider: CloudProvider | None = None

    def set_provider(self, provider: CloudProvider) -> None:
        if self.provider is not provider:
            logger.info("Using cloud provider %s", provider.name)
        self.provider = provider

    def sign_out(self) -> None:
        if self.provider is not None:
            logger.info("Signed out of cloud provider %s", self.provider.name)
        self.provider = None


def build_session(
    settings: Settings,
    notifier: Notifier | None = None,
    on_sync_done: Callable[[dict[str, int]], None] | None = None,
) -> SyncSession:
    """Construct a session from configuration.

    Raises ValueError for invalid provider configuration.
    """
    settings.validate_runtime()
    storage = LocalStorage(settings.state_file)
    return SyncSession(
        store=FileWorkspaceStore(settings.workspace_dir),
        storage=storage,
        notifier=notifier or LoggingNotifier(),
        providers=create_providers(settings, storage),
        target=settings.target,
        on_sync_done=on_sync_done,
    )


def parse_query_string(query: str) -> dict[str, str]:
    """Parse ``a=1&b=2`` into a dict, keeping the last value of repeated keys."""
    return dict(parse_qsl(query, keep_blank_values=True))


def login_check(session: SyncSession, location_hash: str = "") -> str:
    """Complete a pending OAuth redirect, then let each provider check its login.

    location_hash is the fragment of the URL the OAuth flow redirected to.
    Returns it with any access token stripped.
    """
    providers = list(session.providers.values())
    if not providers:
        return location_hash

    fragment = location_hash[1:] if location_hash.startswith("#") else location_hash
    params = parse_query_string(fragment.replace("%23access_token", "access_token"))
    if params.get("access_token"):
        expected = session.storage.get(OAUTH_STATE_KEY)
        if expected and expected == params.get("state"):
            provider_name = session.storage.get(OAUTH_TYPE_KEY)
            for impl in providers:
                if impl.name == provider_name:
                    session.storage.remove(OAUTH_STATE_KEY)
                    location_hash = _ACCESS_TOKEN_RE.sub("", location_hash)
                    impl.login_callback(params)
                    break
        else:
            logger.warning("Ignoring OAuth redirect with unexpected state")

    for impl in providers:
        if impl.login_check():
            session.set_provider(impl)

    return location_hash
