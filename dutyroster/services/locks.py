"""Lock managers serializing overlapping date ranges and per-worker mutations."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import date
from typing import Dict, Iterable, Iterator, List, Tuple


class DateRangeLocks:
    """
    Exclusive locks over inclusive date ranges.

    Holders of overlapping ranges are serialized; disjoint ranges proceed
    concurrently.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._held: List[Tuple[date, date]] = []

    def _overlaps(self, start: date, end: date) -> bool:
        return any(s <= end and start <= e for s, e in self._held)

    @contextmanager
    def hold(self, start: date, end: date) -> Iterator[None]:
        if end < start:
            raise ValueError(f"Invalid date range {start}..{end}")
        with self._cond:
            while self._overlaps(start, end):
                self._cond.wait()
            self._held.append((start, end))
        try:
            yield
        finally:
            with self._cond:
                self._held.remove((start, end))
                self._cond.notify_all()


class WorkerLocks:
    """One lock per worker, acquired in ascending worker id order."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.RLock] = {}

    def _lock_for(self, worker_id: int) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(worker_id)
            if lock is None:
                lock = self._locks[worker_id] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, worker_ids: Iterable[int]) -> Iterator[None]:
        ordered = sorted({w for w in worker_ids if w is not None})
        locks = [self._lock_for(w) for w in ordered]
        acquired = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
