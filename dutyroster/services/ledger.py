"""Roster book: the assignment store and its transactional unit of work.

An assignment is never visible without its equity and comp time deltas (and
vice versa): every mutation goes through a UnitOfWork that records a
compensating action per step and replays them in reverse on failure.
"""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from dutyroster.domain.models import Assignment, AssignmentType, CompTimeEntry, utcnow
from dutyroster.errors import ValidationError
from dutyroster.services.comp_time import CompTimeLedger
from dutyroster.services.equity import EquityDelta, EquityTracker

logger = logging.getLogger(__name__)

SlotKey = Tuple[date, str, int]


class RosterBook:
    """In-memory assignment store keyed by (date, type, slot)."""

    def __init__(self):
        self._by_uid: Dict[str, Assignment] = {}
        self._active: Dict[SlotKey, Assignment] = {}
        self._worker_day: Dict[Tuple[int, date], str] = {}
        self.lock = threading.RLock()

    def load_existing(self, assignments: Iterable[Assignment]) -> List[Assignment]:
        """
        Load previously committed assignments (active and superseded).

        Raises:
            ValidationError: If two active assignments share a slot or a worker-day
        """
        loaded = []
        with self.lock:
            for a in sorted(assignments, key=lambda x: (x.key, x.is_active)):
                if a.uid in self._by_uid:
                    raise ValidationError(f"Duplicate assignment uid {a.uid}")
                if a.is_active:
                    if a.key in self._active:
                        raise ValidationError(f"Two active assignments for slot {a.key}")
                    if a.is_filled and (a.worker_id, a.date) in self._worker_day:
                        raise ValidationError(f"Worker {a.worker_id} is double-booked on {a.date}")
                    self._index(a)
                else:
                    self._by_uid[a.uid] = a
                loaded.append(a)
        return loaded

    # Queries

    def get(self, uid: str) -> Optional[Assignment]:
        return self._by_uid.get(uid)

    def active(self, key: SlotKey) -> Optional[Assignment]:
        return self._active.get(key)

    def assignment_of_worker_on(self, worker_id: int, day: date, ignoring: Set[str] = frozenset()) -> Optional[Assignment]:
        uid = self._worker_day.get((worker_id, day))
        if uid is None or uid in ignoring:
            return None
        return self._by_uid[uid]

    def active_assignments(self, start: Optional[date] = None, end: Optional[date] = None) -> List[Assignment]:
        with self.lock:
            rows = [
                a for a in self._active.values()
                if (start is None or a.date >= start) and (end is None or a.date <= end)
            ]
        return sorted(rows, key=lambda a: a.key)

    def all_assignments(self) -> List[Assignment]:
        with self.lock:
            return sorted(self._by_uid.values(), key=lambda a: (a.key, a.is_active))

    # Low-level mutations, only called from UnitOfWork

    def _index(self, a: Assignment) -> None:
        self._by_uid[a.uid] = a
        self._active[a.key] = a
        if a.is_filled:
            self._worker_day[(a.worker_id, a.date)] = a.uid

    def _unindex(self, a: Assignment) -> None:
        self._active.pop(a.key, None)
        if a.is_filled and self._worker_day.get((a.worker_id, a.date)) == a.uid:
            del self._worker_day[(a.worker_id, a.date)]

    def _insert(self, a: Assignment) -> None:
        if a.key in self._active:
            raise ValueError(f"Slot {a.key} already has an active assignment")
        if a.is_filled and (a.worker_id, a.date) in self._worker_day:
            raise ValueError(f"Worker {a.worker_id} already assigned on {a.date}")
        self._index(a)

    def _remove(self, a: Assignment) -> None:
        self._unindex(a)
        del self._by_uid[a.uid]

    def transaction(self, equity: EquityTracker, comp_time: CompTimeLedger) -> "UnitOfWork":
        return UnitOfWork(self, equity, comp_time)


class UnitOfWork:
    """
    One atomic mutation of the roster book, equity tracker and comp time ledger.

    Use as a context manager. If the block raises, every step already taken is
    compensated in reverse order and the exception propagates.
    """

    def __init__(self, book: RosterBook, equity: EquityTracker, comp_time: CompTimeLedger):
        self.book = book
        self.equity = equity
        self.comp_time = comp_time
        self.committed: List[Assignment] = []
        self.superseded: List[Assignment] = []
        self.reinstated: List[Assignment] = []
        self.equity_deltas: List[EquityDelta] = []
        self.comp_time_deltas: List[CompTimeEntry] = []
        self._undo: List[Callable[[], None]] = []

    def __enter__(self) -> "UnitOfWork":
        self.book.lock.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc_type is not None:
                logger.warning("Rolling back unit of work after %s: %s", exc_type.__name__, exc)
                self.rollback()
        finally:
            self.book.lock.release()
        return False

    def rollback(self) -> None:
        while self._undo:
            self._undo.pop()()
        self.committed.clear()
        self.superseded.clear()
        self.reinstated.clear()
        self.equity_deltas.clear()
        self.comp_time_deltas.clear()

    def commit(self, assignment: Assignment, assignment_type: AssignmentType) -> Assignment:
        """Insert a new assignment with its +1 equity delta and any comp time accrual."""
        self.book._insert(assignment)
        self._undo.append(lambda: self.book._remove(assignment))
        self.committed.append(assignment)
        self._count(assignment, assignment_type, reason="commit")
        return assignment

    def supersede(self, assignment: Assignment, by_uid: Optional[str] = None, reason: str = "superseded") -> Assignment:
        """Mark an active assignment superseded and reverse its deltas."""
        if not assignment.is_active:
            raise ValueError(f"Assignment {assignment.uid} is already superseded")
        self.book._unindex(assignment)
        assignment.superseded_at = utcnow()
        assignment.superseded_by = by_uid

        def _restore(a=assignment):
            a.superseded_at = None
            a.superseded_by = None
            self.book._index(a)

        self._undo.append(_restore)
        self.superseded.append(assignment)

        if assignment.is_filled:
            delta = self.equity.reverse_assignment(assignment, reason=reason)
            self._track_equity(delta)
            entry = self.comp_time.reverse_for(assignment, reason=reason)
            if entry is not None:
                self._track_comp(entry)
        return assignment

    def reinstate(self, assignment: Assignment, assignment_type: AssignmentType) -> Assignment:
        """Make a superseded assignment active again and re-apply its deltas."""
        if assignment.is_active:
            raise ValueError(f"Assignment {assignment.uid} is already active")
        previous: Tuple[Optional[datetime], Optional[str]] = (assignment.superseded_at, assignment.superseded_by)
        assignment.superseded_at = None
        assignment.superseded_by = None
        try:
            self.book._insert(assignment)
        except ValueError:
            assignment.superseded_at, assignment.superseded_by = previous
            raise

        def _resupersede(a=assignment, prev=previous):
            self.book._unindex(a)
            a.superseded_at, a.superseded_by = prev

        self._undo.append(_resupersede)
        self.reinstated.append(assignment)
        self._count(assignment, assignment_type, reason="reinstated")
        return assignment

    def _count(self, assignment: Assignment, assignment_type: AssignmentType, reason: str) -> None:
        if not assignment.is_filled:
            return
        self._track_equity(self.equity.record_assignment(assignment, reason=reason))
        entry = self.comp_time.accrue_for(assignment, assignment_type)
        if entry is not None:
            self._track_comp(entry)

    def _track_equity(self, delta: EquityDelta) -> None:
        self.equity_deltas.append(delta)
        self._undo.append(lambda: self.equity.discard(delta))

    def _track_comp(self, entry: CompTimeEntry) -> None:
        self.comp_time_deltas.append(entry)
        self._undo.append(lambda: self.comp_time.discard(entry))
