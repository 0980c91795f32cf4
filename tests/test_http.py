import logging

import httpx
import pytest

from baklogmd.http import build_http_client


def _handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/fail":
        return httpx.Response(500, text="broken upstream")
    return httpx.Response(200, json={})


@pytest.mark.asyncio
async def test_debug_client_logs_without_secrets(caplog) -> None:
    caplog.set_level(logging.INFO, logger="baklogmd.backlog_api")
    client = build_http_client(
        timeout=5, debug_enabled=True, transport=httpx.MockTransport(_handler)
    )

    async with client:
        await client.post(
            "https://acme.backlog.com/ok",
            data={"client_secret": "top-secret"},
            headers={"Authorization": "Bearer token-123"},
        )
        await client.get("https://acme.backlog.com/fail")

    assert "acme.backlog.com/ok" in caplog.text
    assert "-> 500" in caplog.text
    assert "broken upstream" in caplog.text
    assert "top-secret" not in caplog.text
    assert "token-123" not in caplog.text


@pytest.mark.asyncio
async def test_quiet_client_has_no_hooks(caplog) -> None:
    caplog.set_level(logging.INFO, logger="baklogmd.backlog_api")
    client = build_http_client(timeout=5, transport=httpx.MockTransport(_handler))

    async with client:
        await client.get("https://acme.backlog.com/ok")

    assert "Backlog" not in caplog.text
    assert client.follow_redirects is False
