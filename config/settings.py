"""Application configuration using pydantic-settings."""

from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration loaded from environment / .env file."""

    # ── Backend services ──────────────────────────────────────────────────────
    # Base URLs only; each client appends its own /api/v1/... path.
    auth_service_url: str = Field(default="", description="Token exchange / refresh service")
    queue_service_url: str = Field(default="", description="Payment queue (long-poll) service")
    payment_service_url: str = Field(default="", description="Payment detail service")
    portal_learning_service_url: str = Field(default="", description="Portal template service")
    exception_service_url: str = Field(default="", description="Exception (parking) service")
    evidence_service_url: str = Field(default="", description="Evidence upload-target service")
    telemetry_service_url: str = Field(default="", description="Telemetry sink; empty disables shipping")

    request_timeout_seconds: float = Field(default=30.0, gt=0)
    queue_poll_timeout_seconds: float = Field(default=30.0, gt=0)
    queue_poll_max_seconds: float = Field(default=60.0, gt=0)

    # ── Retry policy ──────────────────────────────────────────────────────────
    retry_max_retries: int = Field(default=3, ge=0)
    retry_initial_delay_seconds: float = Field(default=1.0, ge=0)
    retry_max_delay_seconds: float = Field(default=16.0, ge=0)
    retry_jitter: float = Field(default=0.2, ge=0, le=1)
    queue_retry_max_delay_seconds: float = Field(default=4.0, ge=0)
    evidence_upload_max_retries: int = Field(default=3, ge=0)

    # ── Templates ─────────────────────────────────────────────────────────────
    template_confidence_threshold: float = Field(default=0.7, ge=0, le=1)
    # PEM encoded Ed25519 or RSA key.  Empty = signatures are not checked.
    template_signing_public_key: str = Field(default="")

    # ── Telemetry ─────────────────────────────────────────────────────────────
    telemetry_batch_size: int = Field(default=10, ge=1)
    telemetry_flush_interval_seconds: float = Field(default=30.0, gt=0)
    telemetry_max_buffer: int = Field(default=1000, ge=1)

    # ── Auth ──────────────────────────────────────────────────────────────────
    token_refresh_interval_seconds: float = Field(default=900.0, gt=0)
    token_refresh_margin_seconds: float = Field(default=900.0, ge=0)
    # Identity token handed to the auth exchange when running headless
    operator_identity_token: str = Field(default="")

    # ── Evidence ──────────────────────────────────────────────────────────────
    organization_id: str = Field(default="default")

    # ── Storage ───────────────────────────────────────────────────────────────
    state_dir: str = Field(default="data/state")
    session_slot: str = Field(default="stateContext")

    # ── Workflow ──────────────────────────────────────────────────────────────
    auto_fetch_enabled: bool = Field(default=True)

    # ── Logging ───────────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default="logs/payment-autopilot.log")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
