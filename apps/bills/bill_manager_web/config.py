"""Configuration helpers for the Utility Bill Manager web application."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from secrets import token_urlsafe
from typing import Optional

from dotenv import load_dotenv

TRUE_VALUES = {"1", "true", "t", "yes", "y", "on"}


@dataclass(slots=True)
class AppConfig:
    """Settings loaded from environment variables."""

    database_url: str
    secret_key: str
    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: Optional[str] = None
    oauth_insecure_transport: bool = False
    mail_rate_limit_per_user_per_hour: int = 20
    mail_rate_limit_per_recipient_per_day: int = 5
    ratelimit_storage_uri: str = "memory://"
    ratelimit_enabled: bool = True
    csrf_enabled: bool = True
    log_level: str = "INFO"


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in TRUE_VALUES


def _resolve_secret_key() -> str:
    """Return the configured session key or generate a one-time key."""

    configured = os.getenv("BILLS_SECRET_KEY")
    if configured:
        return configured

    logging.getLogger("bill_manager.config").warning(
        "BILLS_SECRET_KEY environment variable is not set; generated a one-time key."
    )
    return token_urlsafe(32)


def load_config(env_file: Optional[str] = None) -> AppConfig:
    """Create an :class:`AppConfig` instance from environment variables.

    Values from ``env_file`` (or a ``.env`` in the working directory) are
    loaded first without overriding variables already set in the process.
    """

    load_dotenv(env_file)
    default_db = Path("instance/bills.db")
    default_db.parent.mkdir(parents=True, exist_ok=True)
    database = os.getenv("BILLS_DATABASE", "sqlite:///" + str(default_db))
    return AppConfig(
        database_url=database,
        secret_key=_resolve_secret_key(),
        google_client_id=os.getenv("GOOGLE_CLIENT_ID", ""),
        google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET", ""),
        google_redirect_uri=os.getenv("GOOGLE_REDIRECT_URI") or None,
        oauth_insecure_transport=_env_flag("OAUTHLIB_INSECURE_TRANSPORT", "false"),
        mail_rate_limit_per_user_per_hour=int(
            os.getenv("BILLS_MAIL_RATE_LIMIT_PER_USER_PER_HOUR", "20")
        ),
        mail_rate_limit_per_recipient_per_day=int(
            os.getenv("BILLS_MAIL_RATE_LIMIT_PER_RECIPIENT_PER_DAY", "5")
        ),
        ratelimit_storage_uri=os.getenv("BILLS_RATELIMIT_STORAGE_URI", "memory://"),
        ratelimit_enabled=_env_flag("BILLS_RATELIMIT_ENABLED", "true"),
        csrf_enabled=_env_flag("BILLS_CSRF_ENABLED", "true"),
        log_level=os.getenv("BILLS_LOG_LEVEL", "INFO").upper(),
    )
