"""
StripScan Client — Configuration
===================================

What:  Settings for the capture-side client, loaded with pydantic-settings.
How:   Every field can be overridden by an environment variable prefixed with
       STRIPSCAN_CLIENT_ (e.g. STRIPSCAN_CLIENT_BASE_URL).

Unlike the server's module-level `settings`, client settings are built by the
caller and handed to StripScanClient / HealthMonitor, so one process can talk
to several servers (and tests can shorten every wait).
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class ClientSettings(BaseSettings):
    """Client settings; defaults match a development server on localhost."""

    # ── Server ────────────────────────────────────────────────────────────
    base_url: str = Field(default="http://localhost:3000")

    # Bounds every request; a timeout counts as a connectivity failure
    request_timeout: float = Field(default=15.0, gt=0, le=300)

    # ── Health Polling ────────────────────────────────────────────────────
    # Polling continues while the server is down so recovery is noticed
    health_poll_interval: float = Field(default=30.0, gt=0)

    # ── Offline Queue ─────────────────────────────────────────────────────
    queue_path: str = Field(default="./offline_queue_v1.json")

    # ── Transport Retry ───────────────────────────────────────────────────
    # Attempts per request before a transport failure is reported
    retry_max_attempts: int = Field(default=2, ge=1, le=10)
    retry_min_wait: float = Field(default=1.0, ge=0)
    retry_max_wait: float = Field(default=4.0, ge=0)

    # ── Photo Preparation ─────────────────────────────────────────────────
    compress_max_width: int = Field(default=1200, ge=100, le=10_000)
    compress_quality: int = Field(default=80, ge=1, le=95)

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    model_config = {
        "env_prefix": "STRIPSCAN_CLIENT_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }
