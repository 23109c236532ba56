"""Comp time ledger: accrual on qualifying assignments, debit on usage."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from datetime import date
from typing import Dict, List, Mapping, Optional

from dutyroster.config import CompTimeConfig
from dutyroster.domain.models import Assignment, AssignmentType, CompTimeEntry
from dutyroster.errors import InsufficientCompTime

logger = logging.getLogger(__name__)

EPSILON = 1e-9


class CompTimeLedger:
    """
    Per-worker comp time balance that never goes negative.

    Every debit (usage or reversal of an earlier accrual) is a check-then-act
    under one lock: a debit that would overdraw raises InsufficientCompTime
    and leaves the ledger untouched.
    """

    def __init__(self, cfg: Optional[CompTimeConfig] = None, opening_balances: Optional[Mapping[int, float]] = None):
        self.cfg = cfg or CompTimeConfig()
        self._entries: List[CompTimeEntry] = []
        self._balances: Dict[int, float] = defaultdict(float)
        self._accrued_for: Dict[str, CompTimeEntry] = {}
        # Reversal entry -> the accrual it consumed, until the reversal is discarded
        self._reversed: Dict[CompTimeEntry, CompTimeEntry] = {}
        self._lock = threading.RLock()
        for worker_id, hours in (opening_balances or {}).items():
            if hours < 0:
                raise ValueError(f"Opening comp time balance for worker {worker_id} is negative")
            if hours:
                self._append(CompTimeEntry(worker_id=worker_id, earned_hours=float(hours), reason="opening"))

    def balance(self, worker_id: int) -> float:
        with self._lock:
            return self._balances.get(worker_id, 0.0)

    def balances(self) -> Dict[int, float]:
        with self._lock:
            return dict(self._balances)

    @property
    def entries(self) -> List[CompTimeEntry]:
        with self._lock:
            return list(self._entries)

    def qualifies(self, assignment_type: AssignmentType, day: date) -> bool:
        """Whether an assignment of this type on this day earns comp time."""
        return bool(assignment_type.comp_time_qualifying) and day.weekday() in self.cfg.qualifying_weekdays

    def accrue(self, worker_id: int, hours: float, assignment_uid: Optional[str] = None, reason: str = "accrual") -> CompTimeEntry:
        if hours <= 0:
            raise ValueError(f"Accrual must be positive, got {hours}")
        with self._lock:
            entry = self._append(
                CompTimeEntry(worker_id=worker_id, earned_hours=float(hours), assignment_uid=assignment_uid, reason=reason)
            )
            if assignment_uid is not None:
                self._accrued_for[assignment_uid] = entry
            return entry

    def use(self, worker_id: int, hours: float, reason: str = "usage") -> CompTimeEntry:
        """
        Debit comp time.

        Raises:
            InsufficientCompTime: If the balance is smaller than the request
        """
        if hours <= 0:
            raise ValueError(f"Usage must be positive, got {hours}")
        with self._lock:
            self._check_funds(worker_id, hours)
            return self._append(CompTimeEntry(worker_id=worker_id, used_hours=float(hours), reason=reason))

    def accrue_for(self, assignment: Assignment, assignment_type: AssignmentType) -> Optional[CompTimeEntry]:
        """Accrue the configured hours if the assignment qualifies."""
        if assignment.worker_id is None or not self.qualifies(assignment_type, assignment.date):
            return None
        hours = self.cfg.hours_per_assignment
        if hours <= 0:
            return None
        return self.accrue(assignment.worker_id, hours, assignment_uid=assignment.uid)

    def carry_accrual(self, assignment: Assignment, assignment_type: AssignmentType) -> None:
        """
        Remember the accrual of an assignment committed in an earlier session.

        Its hours are already part of the opening balance, so the balance is left
        alone; a later reversal still debits them.
        """
        if assignment.worker_id is None or not self.qualifies(assignment_type, assignment.date):
            return
        with self._lock:
            self._accrued_for[assignment.uid] = CompTimeEntry(
                worker_id=assignment.worker_id,
                earned_hours=self.cfg.hours_per_assignment,
                assignment_uid=assignment.uid,
                reason="carried",
            )

    def reverse_for(self, assignment: Assignment, reason: str = "reversal") -> Optional[CompTimeEntry]:
        """Debit whatever the assignment accrued. No-op when it accrued nothing."""
        with self._lock:
            accrual = self._accrued_for.get(assignment.uid)
            if accrual is None:
                return None
            self._check_funds(accrual.worker_id, accrual.earned_hours)
            entry = self._append(
                CompTimeEntry(
                    worker_id=accrual.worker_id,
                    used_hours=accrual.earned_hours,
                    assignment_uid=assignment.uid,
                    reason=reason,
                )
            )
            self._reversed[entry] = self._accrued_for.pop(assignment.uid)
            return entry

    def discard(self, entry: CompTimeEntry) -> None:
        """Remove an entry written inside a unit of work that is rolling back."""
        with self._lock:
            self._entries.remove(entry)
            self._balances[entry.worker_id] -= entry.net_hours
            if entry.assignment_uid is None:
                return
            if entry.earned_hours > 0:
                self._accrued_for.pop(entry.assignment_uid, None)
            else:
                accrual = self._reversed.pop(entry, None)
                if accrual is not None:
                    self._accrued_for[entry.assignment_uid] = accrual

    def _check_funds(self, worker_id: int, hours: float) -> None:
        current = self._balances.get(worker_id, 0.0)
        if current - hours < -EPSILON:
            raise InsufficientCompTime(worker_id, hours, current)

    def _append(self, entry: CompTimeEntry) -> CompTimeEntry:
        self._entries.append(entry)
        self._balances[entry.worker_id] += entry.net_hours
        return entry
