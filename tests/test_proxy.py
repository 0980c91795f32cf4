import time

import httpx
import pytest

from broker.errors import UpstreamError, ValidationError
from broker.models import BacklogUser, Session
from broker.proxy import ResourceProxy


def _session() -> Session:
    return Session(
        id="sid-1",
        space_url="https://acme.backlog.jp",
        access_token="access-1",
        expires_at=time.time() + 3600,
        csrf_token="csrf-1",
        user=BacklogUser(id=1, user_id="alice", name="Alice"),
    )


def _proxy(handler) -> ResourceProxy:
    return ResourceProxy(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.mark.asyncio
async def test_issue_key_is_path_encoded() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"issueKey": "FOO-1", "summary": "s", "description": None, "updated": "u"},
        )

    issue = await _proxy(handler).get_issue(_session(), "FOO/../1")

    assert seen[0].url.raw_path == b"/api/v2/issues/FOO%2F..%2F1"
    assert seen[0].url.host == "acme.backlog.jp"
    assert issue["descriptionRaw"] == ""


@pytest.mark.asyncio
async def test_get_issue_requires_key() -> None:
    proxy = _proxy(lambda request: httpx.Response(200, json={}))

    with pytest.raises(ValidationError):
        await proxy.get_issue(_session(), "  ")


@pytest.mark.asyncio
async def test_search_key_mode_propagates_non_404_errors() -> None:
    proxy = _proxy(lambda request: httpx.Response(500, text="boom"))

    with pytest.raises(UpstreamError) as excinfo:
        await proxy.search_issues(_session(), "key", "FOO-1")

    assert excinfo.value.upstream_status == 500


@pytest.mark.asyncio
async def test_search_rejects_unknown_mode() -> None:
    proxy = _proxy(lambda request: httpx.Response(200, json=[]))

    with pytest.raises(ValidationError):
        await proxy.search_issues(_session(), None, "x")


@pytest.mark.asyncio
async def test_list_projects_rejects_non_list_payload() -> None:
    proxy = _proxy(lambda request: httpx.Response(200, json={"projects": []}))

    with pytest.raises(UpstreamError):
        await proxy.list_projects(_session())


@pytest.mark.asyncio
async def test_transport_error_becomes_upstream_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(UpstreamError) as excinfo:
        await _proxy(handler).list_projects(_session())

    assert excinfo.value.upstream_status is None
