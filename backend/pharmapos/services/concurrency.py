# Overview: Locking and retry primitives for stock mutation.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Iterable, Iterator

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrentStockConflict
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    populate_existing() makes the session re-read rows it already holds.
    """
    return query.with_for_update().populate_existing()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Each attempt re-reads state from scratch.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


class StockLockRegistry:
    """
    Per-product mutual exclusion for stock writes within this process.

    Locks are created on demand and kept per application. Callers that need
    several products acquire them in ascending id order, so two checkouts
    sharing products can never deadlock.
    """

    EXTENSION_KEY = "pharmapos.stock_locks"

    def __init__(self, app=None):
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        app.extensions[self.EXTENSION_KEY] = {"guard": threading.Lock(), "locks": {}}

    def _state(self) -> dict:
        return current_app.extensions[self.EXTENSION_KEY]

    def _lock_for(self, product_id: int) -> threading.Lock:
        state = self._state()
        with state["guard"]:
            lock = state["locks"].get(product_id)
            if lock is None:
                lock = threading.Lock()
                state["locks"][product_id] = lock
            return lock

    @contextmanager
    def hold(self, product_ids: Iterable[int], timeout: float | None = None) -> Iterator[list[int]]:
        """
        Hold the locks of every given product for the duration of the block.

        Raises ConcurrentStockConflict when a lock cannot be acquired within
        ``timeout`` seconds (STOCK_LOCK_TIMEOUT_SECONDS by default).
        """
        if timeout is None:
            timeout = current_app.config.get("STOCK_LOCK_TIMEOUT_SECONDS", 5)

        ordered = sorted(set(product_ids))
        acquired: list[threading.Lock] = []
        try:
            for product_id in ordered:
                lock = self._lock_for(product_id)
                if not lock.acquire(timeout=timeout):
                    raise ConcurrentStockConflict(
                        "Timed out waiting for stock lock",
                        details={"product_id": product_id},
                    )
                acquired.append(lock)
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()


stock_locks = StockLockRegistry()
