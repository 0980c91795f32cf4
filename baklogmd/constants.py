from __future__ import annotations

import logging

LOGGER = logging.getLogger("baklogmd.broker")
APP_NAME = "BaklogMD"
APP_VERSION = "0.1.0"
SERVICE_NAME = "oauth-broker-api"

PROVIDER = "backlog"
DEFAULT_SESSION_COOKIE_NAME = "baklogmd_sid"
DEFAULT_CSRF_COOKIE_NAME = "baklogmd_csrf"
COOKIE_MAX_AGE_SECONDS = 60 * 60
MAX_JSON_BODY_BYTES = 1024 * 1024

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 43100
