from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from broker.errors import ConfigError
from broker.signed_token import MIN_SECRET_BYTES
from broker.urls import is_allowed_redirect_uri

from .constants import (
    DEFAULT_CSRF_COOKIE_NAME,
    DEFAULT_SESSION_COOKIE_NAME,
    LOGGER,
)

REQUIRED_ENV = (
    "BACKLOG_CLIENT_ID",
    "BACKLOG_CLIENT_SECRET",
    "BACKLOG_REDIRECT_URI",
    "OAUTH_STATE_SECRET",
    "ALLOWED_ORIGINS",
)


@dataclass(frozen=True)
class BrokerConfig:
    client_id: str
    client_secret: str
    redirect_uri: str
    state_secret: str
    allowed_origins: frozenset[str]
    session_cookie_name: str = DEFAULT_SESSION_COOKIE_NAME
    csrf_cookie_name: str = DEFAULT_CSRF_COOKIE_NAME
    secure_cookies: bool = False
    api_timeout: float = 20.0

    @property
    def oauth_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_csv_env(key: str) -> frozenset[str]:
    raw = os.getenv(key, "")
    if not raw.strip():
        return frozenset()
    return frozenset(item.strip() for item in raw.split(",") if item.strip())


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number.")
    if value <= 0:
        raise ConfigError(f"{key} must be positive.")
    return value


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=False)


def load_config() -> BrokerConfig:
    """Read and validate the broker configuration once, at startup."""
    missing = [key for key in REQUIRED_ENV if not os.getenv(key, "").strip()]
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    state_secret = os.getenv("OAUTH_STATE_SECRET", "").strip()
    if len(state_secret.encode()) < MIN_SECRET_BYTES:
        raise ConfigError(f"OAUTH_STATE_SECRET must be at least {MIN_SECRET_BYTES} bytes.")

    redirect_uri = os.getenv("BACKLOG_REDIRECT_URI", "").strip()
    if not is_allowed_redirect_uri(redirect_uri):
        raise ConfigError(
            "BACKLOG_REDIRECT_URI must be an https URL (or http://localhost during development)."
        )

    allowed_origins = parse_csv_env("ALLOWED_ORIGINS")
    if not allowed_origins:
        raise ConfigError("ALLOWED_ORIGINS must list at least one origin.")

    secure_cookies = os.getenv("BAKLOGMD_ENV", "development").strip().lower() == "production"
    if not secure_cookies:
        LOGGER.warning("BAKLOGMD_ENV is not production; cookies are issued without Secure.")

    return BrokerConfig(
        client_id=os.getenv("BACKLOG_CLIENT_ID", "").strip(),
        client_secret=os.getenv("BACKLOG_CLIENT_SECRET", "").strip(),
        redirect_uri=redirect_uri,
        state_secret=state_secret,
        allowed_origins=allowed_origins,
        session_cookie_name=os.getenv("SESSION_COOKIE_NAME", "").strip()
        or DEFAULT_SESSION_COOKIE_NAME,
        csrf_cookie_name=os.getenv("CSRF_COOKIE_NAME", "").strip() or DEFAULT_CSRF_COOKIE_NAME,
        secure_cookies=secure_cookies,
        api_timeout=_get_env_float("BACKLOG_API_TIMEOUT", 20.0),
    )


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("BAKLOGMD_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        logging.getLogger("baklogmd").setLevel(logging.INFO)
    return debug_enabled
