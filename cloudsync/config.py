"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path
from urllib.parse import urlparse

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}


def validate_api_url(api_url: str, allow_insecure_http: bool = False) -> str:
    """Validate an API URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = api_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("API URL must include scheme and host (e.g. https://example.com)")

    hostname = parsed.hostname
    if parsed.scheme == "http" and not allow_insecure_http and hostname not in _LOCALHOST_HOSTS:
        raise ValueError(f"HTTPS is required for non-localhost API URLs: {normalized}")

    return normalized


class Settings(BaseSettings):
    """cloudsync settings."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUDSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    target: str = "cloudsync"

    # Paths
    workspace_dir: Path = Path("./workspace")
    state_file: Path = Path("./.cloudsync-state.json")

    # Providers, in login-check order
    cloud_providers: list[str] = Field(default_factory=list)
    http_timeout: float = Field(default=30.0, gt=0)

    # OneDrive
    onedrive_client_id: str = ""
    onedrive_redirect_uri: str = "http://localhost:8765/"
    onedrive_api_url: str = "https://graph.microsoft.com/v1.0"
    onedrive_auth_url: str = "https://login.microsoftonline.com/common/oauth2/v2.0/authorize"

    def validate_runtime(self) -> None:
        """Validate provider settings before a session is built."""
        violations: list[str] = []
        if "onedrive" in self.cloud_providers:
            if not self.onedrive_client_id:
                violations.append(
                    "CLOUDSYNC_ONEDRIVE_CLIENT_ID must be set to use the onedrive provider"
                )
            try:
                validate_api_url(self.onedrive_api_url)
            except ValueError as exc:
                violations.append(str(exc))

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Invalid cloud configuration: {joined}")
