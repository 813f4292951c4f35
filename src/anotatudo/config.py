"""Process configuration loaded from environment variables.

Settings are read at call time (not import time) so tests can override them
with monkeypatch and a restarted worker picks up new values.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

DEFAULT_GRAPH_API_VERSION = "v21.0"
DEFAULT_TIMEZONE = "America/Sao_Paulo"


class ConfigError(RuntimeError):
    """Raised when a required setting is missing or malformed."""


@dataclass(frozen=True)
class WhatsAppCredentials:
    """Meta Cloud API credentials for outbound calls."""

    access_token: str
    phone_number_id: str
    api_version: str = DEFAULT_GRAPH_API_VERSION

    @property
    def base_url(self) -> str:
        return f"https://graph.facebook.com/{self.api_version}"


@dataclass(frozen=True)
class Settings:
    """Snapshot of every tunable the webhook pipeline reads.

    Attributes:
        verify_token: Shared secret for the GET verification handshake.
        app_secret: Meta App Secret. When set, POST bodies must carry a valid
            X-Hub-Signature-256 header.
        access_token: Bearer token for Graph API calls.
        phone_number_id: Sender phone number id for outbound messages.
        graph_api_version: Graph API version segment (e.g. "v21.0").
        rate_limit_max_requests: Messages allowed per sender per window.
        rate_limit_window_seconds: Fixed window length.
        media_scratch_dir: Where downloaded media is written.
        media_timeout_seconds: Per-request timeout for media calls.
        assistant_backend: "rules" (local deterministic) or "http".
        assistant_url: Base URL of the external assistant service.
        assistant_timeout_seconds: Upper bound on any assistant call.
        tasks_backend: "pool" (background threads) or "inline" (tests/dev).
        tasks_max_workers: Worker threads processing webhook batches.
        tasks_max_pending: Batches allowed in flight before rejecting.
        identity_max_attempts: Invalid identity replies answered per session.
        timezone: IANA zone used to resolve "today" for transactions.
    """

    verify_token: str = ""
    app_secret: str = ""
    access_token: str = ""
    phone_number_id: str = ""
    graph_api_version: str = DEFAULT_GRAPH_API_VERSION
    rate_limit_max_requests: int = 10
    rate_limit_window_seconds: float = 60.0
    media_scratch_dir: Path = Path(tempfile.gettempdir()) / "anotatudo-media"
    media_timeout_seconds: float = 30.0
    assistant_backend: Literal["rules", "http"] = "rules"
    assistant_url: str = ""
    assistant_timeout_seconds: float = 20.0
    tasks_backend: Literal["pool", "inline"] = "pool"
    tasks_max_workers: int = 4
    tasks_max_pending: int = 100
    identity_max_attempts: int = 5
    timezone: str = DEFAULT_TIMEZONE

    def whatsapp_credentials(self) -> WhatsAppCredentials:
        """Return outbound credentials.

        Raises:
            ConfigError: If token or phone number id is missing.
        """
        if not self.access_token or not self.phone_number_id:
            raise ConfigError(
                "Missing WhatsApp config: WHATSAPP_TOKEN and WHATSAPP_PHONE_NUMBER_ID required"
            )
        return WhatsAppCredentials(
            access_token=self.access_token,
            phone_number_id=self.phone_number_id,
            api_version=self.graph_api_version,
        )


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer") from e


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number") from e


def _choice_env(name: str, default: str, choices: tuple[str, ...]) -> str:
    value = os.environ.get(name, default) or default
    if value not in choices:
        raise ConfigError(f"Unknown {name}: {value}")
    return value


def load_settings() -> Settings:
    """Build Settings from the current environment.

    Raises:
        ConfigError: If a numeric or enum variable is malformed.
    """
    scratch = os.environ.get("MEDIA_SCRATCH_DIR", "")

    return Settings(
        verify_token=os.environ.get("WHATSAPP_VERIFY_TOKEN", ""),
        app_secret=os.environ.get("WHATSAPP_APP_SECRET", ""),
        access_token=os.environ.get("WHATSAPP_TOKEN", ""),
        phone_number_id=os.environ.get("WHATSAPP_PHONE_NUMBER_ID", ""),
        graph_api_version=os.environ.get(
            "WHATSAPP_GRAPH_API_VERSION", DEFAULT_GRAPH_API_VERSION
        ),
        rate_limit_max_requests=_int_env("RATE_LIMIT_MAX_REQUESTS", 10),
        rate_limit_window_seconds=_float_env("RATE_LIMIT_WINDOW_SECONDS", 60.0),
        media_scratch_dir=Path(scratch) if scratch else Settings.media_scratch_dir,
        media_timeout_seconds=_float_env("MEDIA_TIMEOUT_SECONDS", 30.0),
        assistant_backend=_choice_env("ASSISTANT_BACKEND", "rules", ("rules", "http")),  # type: ignore[arg-type]
        assistant_url=os.environ.get("ASSISTANT_URL", ""),
        assistant_timeout_seconds=_float_env("ASSISTANT_TIMEOUT_SECONDS", 20.0),
        tasks_backend=_choice_env("TASKS_BACKEND", "pool", ("pool", "inline")),  # type: ignore[arg-type]
        tasks_max_workers=_int_env("TASKS_MAX_WORKERS", 4),
        tasks_max_pending=_int_env("TASKS_MAX_PENDING", 100),
        identity_max_attempts=_int_env("IDENTITY_MAX_ATTEMPTS", 5),
        timezone=os.environ.get("APP_TIMEZONE", DEFAULT_TIMEZONE),
    )
