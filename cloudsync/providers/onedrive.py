"""OneDrive provider using the Microsoft Graph API.

Each project is stored as one JSON document (the content bundle) in the
application's special ``approot`` folder.  The item's eTag is used as the
version token, so uploads against a stale eTag fail with 412 and surface as
ConflictError.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
import uuid
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, urlencode

import httpx

from cloudsync.exceptions import ConflictError, NetworkError
from cloudsync.filesystem.local_storage import OAUTH_STATE_KEY, OAUTH_TYPE_KEY
from cloudsync.providers.base import FileInfo, bundle_name
from cloudsync.services.datetime_service import parse_datetime, to_unix, unix_now

if TYPE_CHECKING:
    from cloudsync.config import Settings
    from cloudsync.filesystem.local_storage import LocalStorage

logger = logging.getLogger(__name__)

ONEDRIVE_SCOPES = "Files.ReadWrite.AppFolder User.Read"
TOKEN_KEY = "onedrive_access_token"
TOKEN_EXPIRES_KEY = "onedrive_token_expires"
_BUNDLE_SUFFIX = ".json"
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]+")


def _file_name_for(project_name: str) -> str:
    """Build a unique, URL-safe file name for a new bundle."""
    stem = _UNSAFE_NAME_CHARS.sub("-", project_name).strip("-")[:40] or "project"
    return f"{stem}-{uuid.uuid4().hex[:8]}{_BUNDLE_SUFFIX}"


def _file_info(item: dict[str, Any], content: dict[str, str] | None = None) -> FileInfo:
    """Convert a Graph driveItem into a FileInfo."""
    try:
        modified = item.get("lastModifiedDateTime")
        updated_at = to_unix(parse_datetime(modified)) if modified else 0
        return FileInfo(
            id=item["id"],
            name=bundle_name(content or {}, item.get("name", "").removesuffix(_BUNDLE_SUFFIX)),
            version=item["eTag"],
            updated_at=updated_at,
            content=content,
        )
    except (KeyError, ValueError) as exc:
        msg = f"Malformed driveItem from OneDrive: {exc}"
        raise NetworkError(msg) from exc


def _parse_bundle(raw: bytes, remote_id: str) -> dict[str, str]:
    try:
        data = json.loads(raw)
    except ValueError as exc:
        msg = f"OneDrive item {remote_id} is not a JSON bundle"
        raise NetworkError(msg) from exc
    if not isinstance(data, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in data.items()
    ):
        msg = f"OneDrive item {remote_id} is not a path to text mapping"
        raise NetworkError(msg)
    return data


class OneDriveProvider:
    """Cloud provider for OneDrive personal and business accounts."""

    name: str = "onedrive"

    def __init__(
        self,
        settings: Settings,
        storage: LocalStorage,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._storage = storage
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        token = self._storage.get(TOKEN_KEY) or ""
        return httpx.AsyncClient(
            base_url=self._settings.onedrive_api_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=self._settings.http_timeout,
            transport=self._transport,
        )

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        async with self._client() as client:
            try:
                resp = await client.request(method, url, **kwargs)
            except httpx.HTTPError as exc:
                msg = f"OneDrive request failed: {type(exc).__name__}: {exc}"
                raise NetworkError(msg) from exc

        if resp.status_code in (409, 412):
            msg = f"OneDrive version conflict: {resp.status_code}"
            raise ConflictError(msg, status_code=resp.status_code)
        if resp.status_code >= 400:
            msg = f"OneDrive API error: {resp.status_code} - {resp.text[:200]}"
            raise NetworkError(msg, status_code=resp.status_code)
        return resp

    async def list_files(self) -> list[FileInfo]:
        entries: list[FileInfo] = []
        url: str | None = "/me/drive/special/approot/children"
        params: dict[str, str] | None = {
            "$select": "id,name,eTag,lastModifiedDateTime,file",
            "$top": "200",
        }
        while url:
            resp = await self._request("GET", url, params=params)
            data = resp.json()
            for item in data.get("value", []):
                if "file" not in item or not item.get("name", "").endswith(_BUNDLE_SUFFIX):
                    continue
                entries.append(_file_info(item))
            # nextLink already carries the query string
            url = data.get("@odata.nextLink")
            params = None
        return entries

    async def download(self, remote_id: str) -> FileInfo:
        meta = await self._request("GET", f"/me/drive/items/{quote(remote_id)}")
        body = await self._request(
            "GET", f"/me/drive/items/{quote(remote_id)}/content", follow_redirects=True
        )
        return _file_info(meta.json(), _parse_bundle(body.content, remote_id))

    async def upload(
        self, remote_id: str | None, base_version: str | None, files: dict[str, str]
    ) -> FileInfo:
        payload = json.dumps(files, indent=1).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if remote_id is None:
            file_name = _file_name_for(bundle_name(files, "project"))
            resp = await self._request(
                "PUT",
                f"/me/drive/special/approot:/{quote(file_name)}:/content",
                params={"@microsoft.graph.conflictBehavior": "fail"},
                content=payload,
                headers=headers,
            )
        else:
            if base_version:
                headers["If-Match"] = base_version
            resp = await self._request(
                "PUT",
                f"/me/drive/items/{quote(remote_id)}/content",
                content=payload,
                headers=headers,
            )
        info = _file_info(resp.json())
        logger.debug("Uploaded %s (%d bytes) as %s", info.id, len(payload), info.version)
        return info

    async def delete(self, remote_id: str) -> None:
        try:
            await self._request("DELETE", f"/me/drive/items/{quote(remote_id)}")
        except NetworkError as exc:
            if exc.status_code != 404:
                raise
            logger.info("OneDrive item %s already deleted", remote_id)

    def login_check(self) -> bool:
        token = self._storage.get(TOKEN_KEY)
        if not token:
            return False
        expires = self._storage.get(TOKEN_EXPIRES_KEY)
        if expires is not None and int(expires) <= unix_now():
            logger.info("OneDrive access token expired; login required")
            self._storage.remove(TOKEN_KEY)
            self._storage.remove(TOKEN_EXPIRES_KEY)
            return False
        return True

    def login(self) -> str:
        if not self._settings.onedrive_client_id:
            raise ValueError("OneDrive client id is not configured")

        state = secrets.token_urlsafe(32)
        self._storage.set(OAUTH_STATE_KEY, state)
        self._storage.set(OAUTH_TYPE_KEY, self.name)

        params = {
            "client_id": self._settings.onedrive_client_id,
            "response_type": "token",
            "redirect_uri": self._settings.onedrive_redirect_uri,
            "scope": ONEDRIVE_SCOPES,
            "state": state,
        }
        return f"{self._settings.onedrive_auth_url}?{urlencode(params)}"

    def login_callback(self, params: dict[str, str]) -> None:
        token = params.get("access_token")
        if not token:
            logger.warning("OneDrive login callback without access_token")
            return
        try:
            expires_in = int(params.get("expires_in", "3600"))
        except ValueError:
            expires_in = 3600
        self._storage.set(TOKEN_KEY, token)
        self._storage.set(TOKEN_EXPIRES_KEY, str(unix_now() + expires_in))
        logger.info("Logged in to OneDrive")
