from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time

from broker.errors import ConfigError
from broker.schemas import StatePayload, parse_model

MIN_SECRET_BYTES = 32


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def _b64decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def _signature(body: str, key: bytes) -> str:
    return _b64encode(hmac.new(key, body.encode(), hashlib.sha256).digest())


def encode(payload: dict, key: bytes) -> str:
    data = json.dumps(payload, separators=(",", ":")).encode()
    body = _b64encode(data)
    return f"{body}.{_signature(body, key)}"


def decode(token: str, key: bytes) -> dict:
    """Return the payload of a token signed with ``key``.

    The signature covers the encoded body, so the body is only decoded after it
    has been authenticated.
    """
    if not token.isascii():
        raise RuntimeError("Invalid token format.")
    body, sep, signature = token.rpartition(".")
    if not sep or not body or not signature:
        raise RuntimeError("Invalid token format.")

    expected = _signature(body, key)
    if not hmac.compare_digest(expected.encode(), signature.encode()):
        raise RuntimeError("Token signature verification failed.")

    try:
        payload = json.loads(_b64decode(body))
    except (binascii.Error, ValueError) as error:
        raise RuntimeError("Token body is not valid JSON.") from error
    if not isinstance(payload, dict):
        raise RuntimeError("Token body must be a JSON object.")
    return payload


class StateCodec:
    """Signs and verifies the OAuth ``state`` value round-tripped through the browser."""

    def __init__(self, secret: str) -> None:
        key = (secret or "").encode()
        if len(key) < MIN_SECRET_BYTES:
            raise ConfigError(f"OAUTH_STATE_SECRET must be at least {MIN_SECRET_BYTES} bytes.")
        self._key = key

    def sign(self, *, id: str, space_url: str, exp: float) -> str:
        return encode({"id": id, "spaceUrl": space_url, "exp": exp}, self._key)

    def verify(self, token: str, *, now: float | None = None) -> StatePayload | None:
        try:
            raw = decode(token, self._key)
        except RuntimeError:
            return None

        parsed = parse_model(StatePayload, raw)
        if not parsed.ok:
            return None

        current = time.time() if now is None else now
        if parsed.value.exp <= current:
            return None
        return parsed.value
