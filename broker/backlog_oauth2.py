from __future__ import annotations

import logging
import time
import urllib.parse
from dataclasses import dataclass

import httpx

from broker.errors import UpstreamError
from broker.models import BacklogUser
from broker.schemas import TokenPayload, UserPayload, parse_model

LOGGER = logging.getLogger("baklogmd.oauth")

AUTHORIZE_PATH = "/OAuth2AccessRequest.action"
TOKEN_PATH = "/api/v2/oauth2/token"
MYSELF_PATH = "/api/v2/users/myself"
DEFAULT_TIMEOUT_SECONDS = 20.0
MAX_LOGGED_BODY = 1000


@dataclass
class TokenResponse:
    access_token: str
    expires_in: int
    expires_at: float
    refresh_token: str | None = None

    def is_expired(self) -> bool:
        return time.time() >= self.expires_at

    @classmethod
    def from_payload(cls, payload: object) -> "TokenResponse":
        parsed = parse_model(TokenPayload, payload)
        if not parsed.ok:
            LOGGER.warning("Token response rejected: %s", parsed.error)
            raise UpstreamError("Token response failed validation.")
        token = parsed.value
        return cls(
            access_token=token.access_token,
            refresh_token=token.refresh_token,
            expires_in=token.expires_in,
            expires_at=time.time() + token.expires_in,
        )


def _truncate(text: str) -> str:
    if len(text) > MAX_LOGGED_BODY:
        return text[:MAX_LOGGED_BODY] + "...<truncated>"
    return text


def build_authorization_url(
    space_url: str,
    client_id: str,
    redirect_uri: str,
    state: str,
) -> str:
    query = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "state": state,
    }
    return f"{space_url}{AUTHORIZE_PATH}?{urllib.parse.urlencode(query)}"


async def _token_request(
    space_url: str,
    payload: dict[str, str],
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    own_client = client is None
    http_client = client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS)
    grant_type = payload.get("grant_type")

    try:
        response = await http_client.post(f"{space_url}{TOKEN_PATH}", data=payload)
        response.raise_for_status()
        return TokenResponse.from_payload(response.json())
    except httpx.HTTPStatusError as error:
        LOGGER.warning(
            "Token exchange failed status=%s grant_type=%s space=%s body=%s",
            error.response.status_code,
            grant_type,
            space_url,
            _truncate(error.response.text),
        )
        raise UpstreamError(
            "Token exchange failed.", upstream_status=error.response.status_code
        ) from error
    except (httpx.HTTPError, ValueError) as error:
        LOGGER.warning(
            "Token exchange failed grant_type=%s space=%s error=%r",
            grant_type,
            space_url,
            error,
        )
        raise UpstreamError("Token exchange failed.") from error
    finally:
        if own_client:
            await http_client.aclose()


async def exchange_token(
    grant_type: str,
    space_url: str,
    *,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
    code: str | None = None,
    refresh_token: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    payload = {
        "grant_type": grant_type,
        "client_id": client_id,
        "client_secret": client_secret,
        "redirect_uri": redirect_uri,
    }
    if grant_type == "authorization_code":
        payload["code"] = code or ""
    elif grant_type == "refresh_token":
        payload["refresh_token"] = refresh_token or ""
    else:
        raise ValueError(f"Unsupported grant_type: {grant_type}")
    return await _token_request(space_url, payload, client=client)


async def exchange_code(
    space_url: str,
    code: str,
    *,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    return await exchange_token(
        "authorization_code",
        space_url,
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
        code=code,
        client=client,
    )


async def refresh_token(
    space_url: str,
    refresh_token: str,
    *,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    return await exchange_token(
        "refresh_token",
        space_url,
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
        refresh_token=refresh_token,
        client=client,
    )


async def fetch_user(
    space_url: str,
    access_token: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> BacklogUser:
    own_client = client is None
    http_client = client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS)

    try:
        response = await http_client.get(
            f"{space_url}{MYSELF_PATH}",
            headers={"Authorization": f"Bearer {access_token}"},
        )
        response.raise_for_status()
        parsed = parse_model(UserPayload, response.json())
    except httpx.HTTPStatusError as error:
        LOGGER.warning(
            "Backlog user fetch failed status=%s space=%s body=%s",
            error.response.status_code,
            space_url,
            _truncate(error.response.text),
        )
        raise UpstreamError(
            "Backlog user fetch failed.", upstream_status=error.response.status_code
        ) from error
    except (httpx.HTTPError, ValueError) as error:
        LOGGER.warning("Backlog user fetch failed space=%s error=%r", space_url, error)
        raise UpstreamError("Backlog user fetch failed.") from error
    finally:
        if own_client:
            await http_client.aclose()

    if not parsed.ok:
        LOGGER.warning("Backlog user payload rejected space=%s: %s", space_url, parsed.error)
        raise UpstreamError("Backlog user fetch failed.")
    user = parsed.value
    return BacklogUser(id=user.id, user_id=user.user_id, name=user.name)
