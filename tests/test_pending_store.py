import time

import pytest

from broker.models import PendingAuthorization
from broker.pending_store import PENDING_AUTH_TTL_SECONDS, MemoryPendingAuthStore


def test_begin_creates_record_with_five_minute_expiry() -> None:
    store = MemoryPendingAuthStore()

    record = store.begin("https://acme.backlog.com", now=1000.0)

    assert record.space_url == "https://acme.backlog.com"
    assert record.expires_at == 1000.0 + PENDING_AUTH_TTL_SECONDS
    assert PENDING_AUTH_TTL_SECONDS == 300
    assert record.id in store


def test_begin_generates_unique_ids_and_csrf_tokens() -> None:
    store = MemoryPendingAuthStore()

    records = [store.begin("https://acme.backlog.com") for _ in range(50)]

    assert len({record.id for record in records}) == 50
    assert len({record.csrf_token for record in records}) == 50
    assert all(len(record.id) == 48 for record in records)


def test_consume_returns_record_once() -> None:
    store = MemoryPendingAuthStore()
    record = store.begin("https://acme.backlog.com")

    assert store.consume(record.id) == record
    assert store.consume(record.id) is None
    assert record.id not in store


def test_consume_unknown_id() -> None:
    store = MemoryPendingAuthStore()

    assert store.consume("missing") is None


def test_consume_expired_record_returns_none_and_discards() -> None:
    store = MemoryPendingAuthStore()
    record = store.begin("https://acme.backlog.com", now=time.time() - 600)

    assert store.consume(record.id) is None
    assert record.id not in store


def test_get_does_not_consume() -> None:
    store = MemoryPendingAuthStore()
    record = store.begin("https://acme.backlog.com")

    assert store.get(record.id) == record
    assert store.get(record.id) == record
    assert store.consume(record.id) == record


def test_get_hides_expired_record() -> None:
    store = MemoryPendingAuthStore()
    record = store.begin("https://acme.backlog.com", now=1000.0)

    assert store.get(record.id, now=1000.0 + PENDING_AUTH_TTL_SECONDS + 1) is None


def test_put_refuses_reused_id() -> None:
    store = MemoryPendingAuthStore()
    record = PendingAuthorization("fixed", "https://acme.backlog.com", time.time() + 60, "csrf")
    store.put(record)

    with pytest.raises(RuntimeError):
        store.put(record)


def test_delete_is_idempotent() -> None:
    store = MemoryPendingAuthStore()
    record = store.begin("https://acme.backlog.com")

    store.delete(record.id)
    store.delete(record.id)

    assert len(store) == 0


def test_sweep_removes_only_expired() -> None:
    store = MemoryPendingAuthStore()
    stale = store.begin("https://acme.backlog.com", now=1000.0)
    fresh = store.begin("https://acme.backlog.com", now=2000.0)

    removed = store.sweep(now=1000.0 + PENDING_AUTH_TTL_SECONDS + 1)

    assert removed == 1
    assert stale.id not in store
    assert fresh.id in store
