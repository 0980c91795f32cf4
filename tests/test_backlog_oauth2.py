import time
import urllib.parse

import httpx
import pytest

from broker.backlog_oauth2 import (
    TokenResponse,
    build_authorization_url,
    exchange_code,
    exchange_token,
    fetch_user,
    refresh_token,
)
from broker.errors import UpstreamError

SPACE_URL = "https://acme.backlog.com"
TOKEN_URL = f"{SPACE_URL}/api/v2/oauth2/token"
CREDENTIALS = {
    "client_id": "id",
    "client_secret": "secret",
    "redirect_uri": "https://app.example.com/oauth/callback",
}


def _form(request: httpx.Request) -> dict[str, str]:
    return dict(urllib.parse.parse_qsl(request.content.decode()))


def test_build_authorization_url_contains_required_params() -> None:
    url = build_authorization_url(
        space_url=SPACE_URL,
        client_id="client123",
        redirect_uri="https://example.com/callback",
        state="state123",
    )

    parsed = urllib.parse.urlparse(url)
    query = urllib.parse.parse_qs(parsed.query)

    assert f"{parsed.scheme}://{parsed.netloc}" == SPACE_URL
    assert parsed.path == "/OAuth2AccessRequest.action"
    assert query["response_type"] == ["code"]
    assert query["client_id"] == ["client123"]
    assert query["redirect_uri"] == ["https://example.com/callback"]
    assert query["state"] == ["state123"]


@pytest.mark.asyncio
async def test_exchange_code_success(httpx_mock) -> None:
    httpx_mock.add_response(
        url=TOKEN_URL,
        method="POST",
        json={
            "access_token": "access-1",
            "token_type": "Bearer",
            "expires_in": 3600,
            "refresh_token": "refresh-1",
        },
    )

    token = await exchange_code(SPACE_URL, "code123", **CREDENTIALS)

    assert token.access_token == "access-1"
    assert token.refresh_token == "refresh-1"
    assert token.expires_in == 3600
    assert token.expires_at > time.time()

    form = _form(httpx_mock.get_request())
    assert form == {
        "grant_type": "authorization_code",
        "client_id": "id",
        "client_secret": "secret",
        "redirect_uri": "https://app.example.com/oauth/callback",
        "code": "code123",
    }


@pytest.mark.asyncio
async def test_refresh_token_success(httpx_mock) -> None:
    httpx_mock.add_response(
        url=TOKEN_URL,
        method="POST",
        json={"access_token": "access-2", "token_type": "Bearer", "expires_in": 1800},
    )

    token = await refresh_token(SPACE_URL, "refresh-1", **CREDENTIALS)

    assert token.access_token == "access-2"
    assert token.refresh_token is None
    form = _form(httpx_mock.get_request())
    assert form["grant_type"] == "refresh_token"
    assert form["refresh_token"] == "refresh-1"
    assert "code" not in form


@pytest.mark.asyncio
async def test_exchange_error_is_opaque(httpx_mock, caplog) -> None:
    httpx_mock.add_response(
        url=TOKEN_URL,
        method="POST",
        status_code=400,
        json={"errors": [{"message": "invalid_grant secret-detail"}]},
    )

    with pytest.raises(UpstreamError) as excinfo:
        await exchange_code(SPACE_URL, "bad-code", **CREDENTIALS)

    assert "secret-detail" not in excinfo.value.public_message
    assert "secret-detail" not in str(excinfo.value)
    assert excinfo.value.upstream_status == 400
    assert "secret-detail" in caplog.text


@pytest.mark.asyncio
async def test_exchange_rejects_malformed_payload(httpx_mock) -> None:
    httpx_mock.add_response(url=TOKEN_URL, method="POST", json={"token_type": "Bearer"})

    with pytest.raises(UpstreamError):
        await exchange_code(SPACE_URL, "code123", **CREDENTIALS)


@pytest.mark.asyncio
async def test_exchange_rejects_non_json_body(httpx_mock) -> None:
    httpx_mock.add_response(url=TOKEN_URL, method="POST", text="<html>oops</html>")

    with pytest.raises(UpstreamError):
        await exchange_code(SPACE_URL, "code123", **CREDENTIALS)


@pytest.mark.asyncio
async def test_exchange_transport_error(httpx_mock) -> None:
    httpx_mock.add_exception(httpx.ConnectTimeout("timed out"), url=TOKEN_URL)

    with pytest.raises(UpstreamError):
        await exchange_code(SPACE_URL, "code123", **CREDENTIALS)


@pytest.mark.asyncio
async def test_exchange_token_rejects_unknown_grant() -> None:
    with pytest.raises(ValueError):
        await exchange_token("password", SPACE_URL, **CREDENTIALS)


@pytest.mark.asyncio
async def test_fetch_user_success(httpx_mock) -> None:
    httpx_mock.add_response(
        url=f"{SPACE_URL}/api/v2/users/myself",
        method="GET",
        json={"id": 42, "userId": "alice", "name": "Alice", "roleType": 1},
    )

    user = await fetch_user(SPACE_URL, "access-1")

    assert user.id == 42
    assert user.user_id == "alice"
    assert user.name == "Alice"
    assert httpx_mock.get_request().headers["authorization"] == "Bearer access-1"


@pytest.mark.asyncio
async def test_fetch_user_error(httpx_mock) -> None:
    httpx_mock.add_response(
        url=f"{SPACE_URL}/api/v2/users/myself", method="GET", status_code=401, text="expired"
    )

    with pytest.raises(UpstreamError):
        await fetch_user(SPACE_URL, "access-1")


@pytest.mark.asyncio
async def test_fetch_user_rejects_malformed_payload(httpx_mock) -> None:
    httpx_mock.add_response(
        url=f"{SPACE_URL}/api/v2/users/myself", method="GET", json={"id": "not-a-number"}
    )

    with pytest.raises(UpstreamError):
        await fetch_user(SPACE_URL, "access-1")


def test_is_expired_true() -> None:
    token = TokenResponse(access_token="a", expires_in=10, expires_at=time.time() - 1)

    assert token.is_expired() is True


def test_is_expired_false() -> None:
    token = TokenResponse(access_token="a", expires_in=10, expires_at=time.time() + 3600)

    assert token.is_expired() is False
