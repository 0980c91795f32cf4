from __future__ import annotations

import hmac

from starlette.requests import Request

from broker.errors import CsrfError

CSRF_HEADER = "x-csrf-token"


def _same(left: str, right: str) -> bool:
    return hmac.compare_digest(left.encode(), right.encode())


def tokens_match(cookie: str | None, header: str | None, stored: str | None) -> bool:
    """Double-submit check: cookie, header and server-side record must all agree."""
    if not cookie or not header or not stored:
        return False
    # Both comparisons always run.
    cookie_matches_header = _same(cookie, header)
    cookie_matches_stored = _same(cookie, stored)
    return cookie_matches_header and cookie_matches_stored


class CsrfGuard:
    def __init__(self, cookie_name: str, header_name: str = CSRF_HEADER) -> None:
        self.cookie_name = cookie_name
        self.header_name = header_name

    def submitted(self, request: Request) -> tuple[str | None, str | None]:
        return request.cookies.get(self.cookie_name), request.headers.get(self.header_name)

    def verify(self, request: Request, stored: str | None) -> None:
        cookie, header = self.submitted(request)
        if not tokens_match(cookie, header, stored):
            raise CsrfError()

    def verify_submitted(self, request: Request) -> None:
        """Cookie/header check for requests that have no server-side record left."""
        cookie, header = self.submitted(request)
        if not cookie or not header or not _same(cookie, header):
            raise CsrfError()
