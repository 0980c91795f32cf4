from __future__ import annotations

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from broker.errors import OriginError

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
ALLOWED_METHODS = "GET, POST, OPTIONS"
ALLOWED_HEADERS = "Content-Type, X-CSRF-Token"


def _is_allowed_origin(origin: str | None, allowed_origins: frozenset[str]) -> bool:
    return bool(origin and origin in allowed_origins)


def check_origin(request: Request, allowed_origins: frozenset[str]) -> None:
    """Fail closed for state-changing requests without an allow-listed Origin."""
    if request.method.upper() in SAFE_METHODS:
        return
    if not _is_allowed_origin(request.headers.get("origin"), allowed_origins):
        raise OriginError()


def apply_cors_response(
    request: Request,
    response: Response,
    allowed_origins: frozenset[str],
) -> Response:
    origin = request.headers.get("origin")
    if _is_allowed_origin(origin, allowed_origins):
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Access-Control-Allow-Methods"] = ALLOWED_METHODS
        response.headers["Access-Control-Allow-Headers"] = ALLOWED_HEADERS
        response.headers["Vary"] = "Origin"
    return response


def cors_preflight_response(request: Request, allowed_origins: frozenset[str]) -> Response:
    return apply_cors_response(request, Response(status_code=204), allowed_origins)


def cors_error_response(
    request: Request,
    allowed_origins: frozenset[str],
    message: str,
    status_code: int,
) -> Response:
    return apply_cors_response(
        request,
        JSONResponse({"message": message}, status_code=status_code),
        allowed_origins,
    )
