"""Periodic expiry of pending authorizations and sessions.

Runs as a single asyncio task owned by the application lifespan. Sweeps are
plain synchronous passes over the stores, so nothing is held across an await.
"""

from __future__ import annotations

import asyncio
import logging
import time

from broker.pending_store import PendingAuthStore
from broker.session_store import SessionStore

LOGGER = logging.getLogger("baklogmd.sweeper")

DEFAULT_SWEEP_INTERVAL_SECONDS = 60


def sweep_once(
    pending_store: PendingAuthStore,
    session_store: SessionStore,
    *,
    now: float | None = None,
) -> tuple[int, int]:
    current = time.time() if now is None else now
    pending_removed = pending_store.sweep(now=current)
    sessions_removed = session_store.sweep(now=current)
    if pending_removed or sessions_removed:
        LOGGER.info(
            "Swept %d expired pending authorization(s) and %d session(s)",
            pending_removed,
            sessions_removed,
        )
    else:
        LOGGER.debug("Nothing to sweep")
    return pending_removed, sessions_removed


async def run_sweeper(
    pending_store: PendingAuthStore,
    session_store: SessionStore,
    *,
    interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    stop_event: asyncio.Event | None = None,
) -> None:
    LOGGER.info("Sweeper started (interval: %s seconds)", interval_seconds)
    stop = stop_event or asyncio.Event()

    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
            break
        except asyncio.TimeoutError:
            pass

        try:
            sweep_once(pending_store, session_store)
        except Exception:
            LOGGER.exception("Error in sweeper pass")

    LOGGER.info("Sweeper stopped")
