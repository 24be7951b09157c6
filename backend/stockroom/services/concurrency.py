# Overview: Locking, atomic units of work and transient-failure retry for stock operations.

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Hashable, Iterable

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import LockTimeout
from ..extensions import db

logger = logging.getLogger(__name__)

CATALOG_KEY = ("catalog", 0)


def product_key(product_id: int) -> tuple:
    return ("product", int(product_id))


def sale_key(sale_id: int) -> tuple:
    return ("sale", int(sale_id))


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


class KeyedLockRegistry:
    """
    In-process locks keyed by aggregate identity, e.g. ("product", 7).

    hold() acquires every requested key in sorted order so two operations
    touching overlapping sets of products cannot deadlock each other.

    An entry lives only while some thread holds or waits on its key; the
    last one out removes it, so the registry stays as small as the set of
    keys currently in use.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, number of threads holding or waiting]
        self._locks: dict[Hashable, list] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: Hashable) -> threading.RLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._locks[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, keys: Iterable[Hashable], timeout: float | None = None):
        ordered = sorted(set(keys))
        acquired: list[tuple[Hashable, threading.RLock]] = []
        wait = -1 if timeout is None else timeout
        try:
            for key in ordered:
                lock = self._checkout(key)
                if not lock.acquire(timeout=wait):
                    self._checkin(key)
                    raise LockTimeout(
                        f"Timed out waiting for {key[0]} {key[1]}",
                        details={"key": list(key), "timeout_seconds": timeout},
                    )
                acquired.append((key, lock))
            yield ordered
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)


@contextmanager
def atomic():
    """
    Commit everything done inside the block as one unit, or nothing.

    Any exception rolls the session back and propagates unchanged.
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Used by the HTTP layer only; the stock
    core itself never retries.
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
            logger.warning("Retrying after transient failure (attempt %d): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
