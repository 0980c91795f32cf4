from __future__ import annotations

import logging

import httpx

LOGGER = logging.getLogger("baklogmd.backlog_api")
MAX_LOGGED_BODY = 1000


async def log_request(request: httpx.Request) -> None:
    # Only method and URL; headers and form bodies carry tokens and secrets.
    LOGGER.info("Backlog request %s %s%s", request.method, request.url.host, request.url.path)


async def log_response(response: httpx.Response) -> None:
    request = response.request
    LOGGER.info(
        "Backlog response %s %s%s -> %s",
        request.method,
        request.url.host,
        request.url.path,
        response.status_code,
    )
    if response.status_code >= 400:
        body = await response.aread()
        text = body.decode("utf-8", errors="replace")
        if len(text) > MAX_LOGGED_BODY:
            text = text[:MAX_LOGGED_BODY] + "...<truncated>"
        LOGGER.warning("Backlog error body: %s", text)


def build_http_client(
    *,
    timeout: float,
    debug_enabled: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Shared outbound client for token exchange, user lookup and the resource proxy."""
    event_hooks: dict[str, list] = {"request": [], "response": []}
    if debug_enabled:
        event_hooks["request"].append(log_request)
        event_hooks["response"].append(log_response)

    return httpx.AsyncClient(
        timeout=timeout,
        transport=transport,
        event_hooks=event_hooks,
        follow_redirects=False,
    )
