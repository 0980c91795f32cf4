from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from broker.backlog_oauth2 import TokenResponse
from broker.models import Session

LOGGER = logging.getLogger("baklogmd.sessions")

REFRESH_MARGIN_SECONDS = 5
SESSION_GRACE_SECONDS = 24 * 60 * 60

RefreshFn = Callable[[str, str], Awaitable[TokenResponse]]


class SessionStore(ABC):
    """Authenticated sessions holding Backlog tokens on behalf of a browser.

    ``get_active`` is the read path for request handlers: it refreshes an access
    token that is about to expire and drops the session when that is not
    possible, so callers only ever see usable sessions.
    """

    def __init__(
        self,
        refresh_fn: RefreshFn,
        *,
        refresh_margin_seconds: int = REFRESH_MARGIN_SECONDS,
        grace_seconds: int = SESSION_GRACE_SECONDS,
    ) -> None:
        self._refresh_fn = refresh_fn
        self.refresh_margin_seconds = refresh_margin_seconds
        self.grace_seconds = grace_seconds
        self._refresh_locks: dict[str, asyncio.Lock] = {}
        self._refresh_lock_users: dict[str, int] = {}

    @abstractmethod
    def create(self, session: Session) -> None:
        raise NotImplementedError

    @abstractmethod
    def get(self, session_id: str) -> Session | None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, session_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def sweep(self, *, now: float | None = None) -> int:
        raise NotImplementedError

    def needs_refresh(self, session: Session, *, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return session.expires_at <= current + self.refresh_margin_seconds

    async def get_active(self, session_id: str) -> Session | None:
        session = self.get(session_id)
        if session is None:
            return None
        if not self.needs_refresh(session):
            return session

        lock = self._refresh_locks.setdefault(session_id, asyncio.Lock())
        # The lock stays registered until every holder and waiter has left.
        self._refresh_lock_users[session_id] = self._refresh_lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                # Another request may have refreshed (or dropped) it while we waited.
                session = self.get(session_id)
                if session is None:
                    return None
                if not self.needs_refresh(session):
                    return session
                return await self._refresh(session)
        finally:
            remaining = self._refresh_lock_users[session_id] - 1
            if remaining:
                self._refresh_lock_users[session_id] = remaining
            else:
                del self._refresh_lock_users[session_id]
                del self._refresh_locks[session_id]

    async def _refresh(self, session: Session) -> Session | None:
        if not session.refresh_token:
            LOGGER.info("Session %s expired without refresh token; dropping", session.id[:8])
            self.delete(session.id)
            return None

        try:
            refreshed = await self._refresh_fn(session.space_url, session.refresh_token)
        except Exception as error:
            LOGGER.warning(
                "Token refresh failed for session %s (%s); dropping",
                session.id[:8],
                type(error).__name__,
            )
            self.delete(session.id)
            return None

        session.access_token = refreshed.access_token
        session.refresh_token = refreshed.refresh_token or session.refresh_token
        session.expires_at = refreshed.expires_at
        return session


class MemorySessionStore(SessionStore):
    def __init__(self, refresh_fn: RefreshFn, **kwargs) -> None:
        super().__init__(refresh_fn, **kwargs)
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def create(self, session: Session) -> None:
        self._sessions[session.id] = session

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def sweep(self, *, now: float | None = None) -> int:
        current = time.time() if now is None else now
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if session.expires_at + self.grace_seconds < current
        ]
        for session_id in expired:
            del self._sessions[session_id]
        return len(expired)
