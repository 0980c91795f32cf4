from __future__ import annotations

import secrets
import time
from abc import ABC, abstractmethod

from broker.models import PendingAuthorization

PENDING_AUTH_TTL_SECONDS = 5 * 60


def generate_id() -> str:
    return secrets.token_hex(24)


def generate_csrf_token() -> str:
    return secrets.token_urlsafe(32)


class PendingAuthStore(ABC):
    """In-flight login attempts, keyed by the id shared with the session cookie."""

    def __init__(self, ttl_seconds: int = PENDING_AUTH_TTL_SECONDS) -> None:
        self.ttl_seconds = ttl_seconds

    def begin(self, space_url: str, *, now: float | None = None) -> PendingAuthorization:
        current = time.time() if now is None else now
        record = PendingAuthorization(
            id=generate_id(),
            space_url=space_url,
            expires_at=current + self.ttl_seconds,
            csrf_token=generate_csrf_token(),
        )
        self.put(record)
        return record

    @abstractmethod
    def put(self, record: PendingAuthorization) -> None:
        raise NotImplementedError

    @abstractmethod
    def get(self, pending_id: str, *, now: float | None = None) -> PendingAuthorization | None:
        raise NotImplementedError

    @abstractmethod
    def consume(self, pending_id: str, *, now: float | None = None) -> PendingAuthorization | None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, pending_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def sweep(self, *, now: float | None = None) -> int:
        raise NotImplementedError


class MemoryPendingAuthStore(PendingAuthStore):
    def __init__(self, ttl_seconds: int = PENDING_AUTH_TTL_SECONDS) -> None:
        super().__init__(ttl_seconds)
        self._records: dict[str, PendingAuthorization] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, pending_id: object) -> bool:
        return pending_id in self._records

    def put(self, record: PendingAuthorization) -> None:
        if record.id in self._records:
            raise RuntimeError("Pending authorization id already in use.")
        self._records[record.id] = record

    def get(self, pending_id: str, *, now: float | None = None) -> PendingAuthorization | None:
        record = self._records.get(pending_id)
        if record is None:
            return None
        current = time.time() if now is None else now
        if record.expires_at < current:
            return None
        return record

    def consume(self, pending_id: str, *, now: float | None = None) -> PendingAuthorization | None:
        # No await between lookup and pop: atomic on the event loop.
        record = self._records.pop(pending_id, None)
        if record is None:
            return None
        current = time.time() if now is None else now
        if record.expires_at < current:
            return None
        return record

    def delete(self, pending_id: str) -> None:
        self._records.pop(pending_id, None)

    def sweep(self, *, now: float | None = None) -> int:
        current = time.time() if now is None else now
        expired = [
            pending_id
            for pending_id, record in self._records.items()
            if record.expires_at < current
        ]
        for pending_id in expired:
            del self._records[pending_id]
        return len(expired)
