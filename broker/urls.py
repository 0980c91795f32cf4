from __future__ import annotations

import re
import urllib.parse
from dataclasses import dataclass

from broker.errors import ValidationError

SPACE_DOMAIN_SUFFIXES = (".backlog.com", ".backlog.jp", ".backlogtool.com")
BARE_SPACE_HOSTS = frozenset({"backlog.com", "backlog.jp", "backlogtool.com"})
HOST_LABEL = re.compile(r"[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?")

INVALID_SPACE_URL = "Invalid or missing spaceUrl query."
SPACE_SUBDOMAIN_REQUIRED = (
    "spaceUrl must include your space name, for example https://your-space.backlog.com."
)


@dataclass(frozen=True)
class SpaceUrlResult:
    url: str | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.url is not None


def validate_space_url(raw: str | None) -> SpaceUrlResult:
    if not isinstance(raw, str) or not raw.strip():
        return SpaceUrlResult(reason=INVALID_SPACE_URL)

    try:
        parsed = urllib.parse.urlsplit(raw.strip())
        port = parsed.port
    except ValueError:
        return SpaceUrlResult(reason=INVALID_SPACE_URL)

    if parsed.scheme.lower() != "https":
        return SpaceUrlResult(reason="spaceUrl must use https.")
    if parsed.username is not None or parsed.password is not None or "@" in parsed.netloc:
        return SpaceUrlResult(reason="spaceUrl must not contain credentials.")
    if port is not None:
        return SpaceUrlResult(reason=INVALID_SPACE_URL)

    host = (parsed.hostname or "").lower()
    if not host:
        return SpaceUrlResult(reason=INVALID_SPACE_URL)
    if host in BARE_SPACE_HOSTS:
        return SpaceUrlResult(reason=SPACE_SUBDOMAIN_REQUIRED)
    if not host.endswith(SPACE_DOMAIN_SUFFIXES):
        return SpaceUrlResult(reason="spaceUrl must be a Backlog space URL.")
    if not all(HOST_LABEL.fullmatch(label) for label in host.split(".")):
        return SpaceUrlResult(reason=INVALID_SPACE_URL)

    return SpaceUrlResult(url=f"https://{host}")


def normalize_space_url(raw: str | None) -> str:
    result = validate_space_url(raw)
    if not result.ok:
        raise ValidationError(result.reason)
    return result.url


def is_allowed_redirect_uri(uri: str) -> bool:
    parsed = urllib.parse.urlparse(uri)
    if parsed.scheme == "https":
        return bool(parsed.netloc)
    return parsed.scheme == "http" and parsed.hostname in {"localhost", "127.0.0.1"}
