"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings

LookbackPolicy = Literal["all_time", "per_sti", "fixed"]


class Settings(BaseSettings):
    """Contact-tracing server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default: there is no auth layer in front of these tools.
    tracing_host: str = "127.0.0.1"
    tracing_port: int = 8011
    tracing_log_level: str = "info"
    tracing_allow_insecure_bind: bool = False

    # Storage
    db_path: str = "~/.anontrace/tracing.db"
    encryption_key: str = ""

    # Exposure window used when the reporter has no earlier screening.
    #   all_time -> every encounter ever logged
    #   per_sti  -> longest lookback among the positive STI types
    #   fixed    -> first_screen_lookback_days
    first_screen_lookback: LookbackPolicy = "per_sti"
    first_screen_lookback_days: int = 90

    # Dispatch fan-out
    dispatch_max_concurrency: int = 8
    channel_send_timeout_s: float = 10.0
    # An unfinished run older than this may be taken over by another dispatcher.
    dispatch_run_lease_s: float = 300.0

    # SMS channel
    sms_provider: Literal["twilio", "mock"] = "mock"
    sms_brand: str = "Health Alert"
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_messaging_service_sid: str = ""


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
