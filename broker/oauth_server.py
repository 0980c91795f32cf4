from __future__ import annotations

import asyncio
import contextlib
import hmac
import json
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable

import httpx
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from baklogmd.constants import COOKIE_MAX_AGE_SECONDS, MAX_JSON_BODY_BYTES, PROVIDER
from baklogmd.env import BrokerConfig
from baklogmd.http import build_http_client
from broker import backlog_oauth2
from broker.cors import (
    apply_cors_response,
    check_origin,
    cors_error_response,
    cors_preflight_response,
)
from broker.csrf import CsrfGuard
from broker.errors import (
    AuthError,
    BrokerError,
    ConfigError,
    NotFoundError,
    PayloadTooLargeError,
    UpstreamError,
    ValidationError,
)
from broker.models import Session
from broker.pending_store import MemoryPendingAuthStore, PendingAuthStore
from broker.proxy import ResourceProxy
from broker.schemas import CallbackRequest, parse_model
from broker.session_store import MemorySessionStore, SessionStore
from broker.signed_token import StateCodec
from broker.sweeper import DEFAULT_SWEEP_INTERVAL_SECONDS, run_sweeper
from broker.urls import validate_space_url

LOGGER = logging.getLogger("baklogmd.broker")

Handler = Callable[[Request], Awaitable[Response]]


def iso_timestamp(epoch_seconds: float) -> str:
    moment = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


async def read_json_body(request: Request, limit: int = MAX_JSON_BODY_BYTES):
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > limit:
        raise PayloadTooLargeError()

    # Content-Length may be absent (chunked) or wrong, so count while reading.
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise PayloadTooLargeError()
    return json.loads(body)


def session_payload(session: Session | None) -> dict:
    if session is None:
        return {"authenticated": False}
    return {
        "authenticated": True,
        "spaceUrl": session.space_url,
        "expiresAt": iso_timestamp(session.expires_at),
        "user": session.user.to_json(),
    }


class OAuthBroker:
    def __init__(
        self,
        *,
        config: BrokerConfig,
        http_client: httpx.AsyncClient | None = None,
        pending_store: PendingAuthStore | None = None,
        session_store: SessionStore | None = None,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        debug_enabled: bool = False,
        exchange_code_fn=backlog_oauth2.exchange_code,
        refresh_token_fn=backlog_oauth2.refresh_token,
        fetch_user_fn=backlog_oauth2.fetch_user,
    ) -> None:
        self.config = config
        self.codec = StateCodec(config.state_secret)
        self.cors_origins = frozenset(config.allowed_origins)
        self.csrf = CsrfGuard(config.csrf_cookie_name)

        self._owns_http_client = http_client is None
        self.http_client = http_client or build_http_client(
            timeout=config.api_timeout, debug_enabled=debug_enabled
        )
        self.proxy = ResourceProxy(self.http_client)

        self.pending_store = pending_store or MemoryPendingAuthStore()
        self.session_store = session_store or MemorySessionStore(self._refresh_access_token)
        self.sweep_interval_seconds = sweep_interval_seconds

        self._exchange_code_fn = exchange_code_fn
        self._refresh_token_fn = refresh_token_fn
        self._fetch_user_fn = fetch_user_fn

    # -- upstream calls --------------------------------------------------------

    async def _refresh_access_token(self, space_url: str, refresh_token: str):
        return await self._refresh_token_fn(
            space_url=space_url,
            refresh_token=refresh_token,
            client_id=self.config.client_id,
            client_secret=self.config.client_secret,
            redirect_uri=self.config.redirect_uri,
            client=self.http_client,
        )

    async def _establish_session(
        self, session_id: str, space_url: str, code: str, csrf_token: str
    ) -> Session:
        exchanged = await self._exchange_code_fn(
            space_url=space_url,
            code=code,
            client_id=self.config.client_id,
            client_secret=self.config.client_secret,
            redirect_uri=self.config.redirect_uri,
            client=self.http_client,
        )
        user = await self._fetch_user_fn(
            space_url=space_url,
            access_token=exchanged.access_token,
            client=self.http_client,
        )
        return Session(
            id=session_id,
            space_url=space_url,
            access_token=exchanged.access_token,
            refresh_token=exchanged.refresh_token,
            expires_at=exchanged.expires_at,
            csrf_token=csrf_token,
            user=user,
        )

    # -- lifecycle -------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def lifespan(self, app):
        del app
        stop = asyncio.Event()
        task = asyncio.create_task(
            run_sweeper(
                self.pending_store,
                self.session_store,
                interval_seconds=self.sweep_interval_seconds,
                stop_event=stop,
            )
        )
        try:
            yield
        finally:
            stop.set()
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            if self._owns_http_client:
                await self.http_client.aclose()

    # -- routes ----------------------------------------------------------------

    def routes(self) -> list[Route]:
        endpoints = [
            ("/oauth/{provider}/start", ["GET"], self._handle_start),
            ("/oauth/{provider}/callback", ["POST"], self._handle_callback),
            ("/auth/session", ["GET"], self._handle_session),
            ("/auth/logout", ["POST"], self._handle_logout),
            ("/backlog/projects", ["GET"], self._handle_projects),
            ("/backlog/issues/search", ["GET"], self._handle_issue_search),
            ("/backlog/issues/{issue_key}", ["GET"], self._handle_issue_detail),
        ]
        routes = [
            Route(path, self._guarded(handler), methods=methods)
            for path, methods, handler in endpoints
        ]
        routes.extend(
            Route(path, self._preflight, methods=["OPTIONS"]) for path, _, _ in endpoints
        )
        return routes

    def _guarded(self, handler: Handler) -> Handler:
        async def endpoint(request: Request) -> Response:
            try:
                check_origin(request, self.cors_origins)
                response = await handler(request)
            except BrokerError as error:
                return self._error(request, error)
            return apply_cors_response(request, response, self.cors_origins)

        endpoint.__name__ = handler.__name__
        return endpoint

    async def _preflight(self, request: Request) -> Response:
        return cors_preflight_response(request, self.cors_origins)

    # -- handlers --------------------------------------------------------------

    def _require_provider(self, request: Request) -> None:
        if request.path_params.get("provider") != PROVIDER:
            raise NotFoundError("Unknown OAuth provider.")

    async def _handle_start(self, request: Request) -> Response:
        self._require_provider(request)
        if not self.config.oauth_configured:
            raise ConfigError("Backlog OAuth env is not configured.")

        result = validate_space_url(request.query_params.get("spaceUrl"))
        if not result.ok:
            raise ValidationError(result.reason)

        previous_id = request.cookies.get(self.config.session_cookie_name)
        if previous_id:
            self.pending_store.delete(previous_id)
            self.session_store.delete(previous_id)

        pending = self.pending_store.begin(result.url)
        state = self.codec.sign(id=pending.id, space_url=pending.space_url, exp=pending.expires_at)
        authorization_url = backlog_oauth2.build_authorization_url(
            space_url=pending.space_url,
            client_id=self.config.client_id,
            redirect_uri=self.config.redirect_uri,
            state=state,
        )

        response = JSONResponse({"authorizationUrl": authorization_url})
        self._set_cookies(response, session_id=pending.id, csrf_token=pending.csrf_token)
        return response

    async def _handle_callback(self, request: Request) -> Response:
        self._require_provider(request)
        try:
            body = await read_json_body(request)
        except ValueError:
            raise ValidationError("Invalid callback payload.")
        parsed = parse_model(CallbackRequest, body)
        if not parsed.ok:
            raise ValidationError("Invalid callback payload.")

        state = self.codec.verify(parsed.value.state)
        if state is None:
            raise AuthError("Invalid state.")

        cookie_id = request.cookies.get(self.config.session_cookie_name)
        if not cookie_id or not hmac.compare_digest(cookie_id.encode(), state.id.encode()):
            raise AuthError("Session cookie mismatch.")

        pending = self.pending_store.get(state.id)
        if pending is None or pending.space_url != state.space_url:
            raise AuthError("OAuth session expired.")

        self.csrf.verify(request, pending.csrf_token)

        pending = self.pending_store.consume(state.id)
        if pending is None:
            raise AuthError("OAuth session expired.")

        try:
            session = await self._establish_session(
                pending.id, pending.space_url, parsed.value.code, pending.csrf_token
            )
        except Exception as error:
            LOGGER.warning(
                "OAuth callback failed for space %s (%s)", pending.space_url, type(error).__name__
            )
            raise AuthError("OAuth callback failed.") from error

        self.session_store.create(session)
        LOGGER.info("Session established for space %s", session.space_url)
        return JSONResponse(session_payload(session))

    async def _handle_session(self, request: Request) -> Response:
        session_id = request.cookies.get(self.config.session_cookie_name)
        session = await self.session_store.get_active(session_id) if session_id else None
        return JSONResponse(session_payload(session))

    async def _handle_logout(self, request: Request) -> Response:
        session_id = request.cookies.get(self.config.session_cookie_name)
        session = self.session_store.get(session_id) if session_id else None
        pending = self.pending_store.get(session_id) if session_id else None

        stored = session.csrf_token if session else pending.csrf_token if pending else None
        if stored is None:
            self.csrf.verify_submitted(request)
        else:
            self.csrf.verify(request, stored)

        if session_id:
            self.session_store.delete(session_id)
            self.pending_store.delete(session_id)

        response = Response(status_code=204)
        self._clear_cookies(response)
        return response

    async def _require_session(self, request: Request) -> Session:
        session_id = request.cookies.get(self.config.session_cookie_name)
        session = await self.session_store.get_active(session_id) if session_id else None
        if session is None:
            raise AuthError()
        return session

    async def _handle_projects(self, request: Request) -> Response:
        session = await self._require_session(request)
        return JSONResponse({"projects": await self.proxy.list_projects(session)})

    async def _handle_issue_search(self, request: Request) -> Response:
        session = await self._require_session(request)
        issues = await self.proxy.search_issues(
            session,
            request.query_params.get("mode"),
            request.query_params.get("q"),
        )
        return JSONResponse({"issues": issues})

    async def _handle_issue_detail(self, request: Request) -> Response:
        session = await self._require_session(request)
        try:
            issue = await self.proxy.get_issue(session, request.path_params["issue_key"])
        except UpstreamError as error:
            if error.upstream_status == 404:
                raise NotFoundError("Issue not found.")
            raise
        return JSONResponse(issue)

    # -- helpers ---------------------------------------------------------------

    def _set_cookies(self, response: Response, *, session_id: str, csrf_token: str) -> None:
        response.set_cookie(
            self.config.session_cookie_name,
            session_id,
            max_age=COOKIE_MAX_AGE_SECONDS,
            path="/",
            secure=self.config.secure_cookies,
            httponly=True,
            samesite="lax",
        )
        response.set_cookie(
            self.config.csrf_cookie_name,
            csrf_token,
            max_age=COOKIE_MAX_AGE_SECONDS,
            path="/",
            secure=self.config.secure_cookies,
            httponly=False,
            samesite="lax",
        )

    def _clear_cookies(self, response: Response) -> None:
        response.delete_cookie(
            self.config.session_cookie_name,
            path="/",
            secure=self.config.secure_cookies,
            httponly=True,
            samesite="lax",
        )
        response.delete_cookie(
            self.config.csrf_cookie_name,
            path="/",
            secure=self.config.secure_cookies,
            httponly=False,
            samesite="lax",
        )

    def _error(self, request: Request, error: BrokerError) -> Response:
        if error.status_code in {401, 403}:
            LOGGER.warning(
                "Rejected %s %s: %s", request.method, request.url.path, type(error).__name__
            )
        elif error.status_code >= 500:
            LOGGER.error("%s %s failed: %s", request.method, request.url.path, error)
        return cors_error_response(
            request=request,
            allowed_origins=self.cors_origins,
            message=error.public_message,
            status_code=error.status_code,
        )
