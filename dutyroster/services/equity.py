"""Equity tracking: year-to-date workload per worker and assignment type."""

from __future__ import annotations

import logging
import random
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from dutyroster.config import EquityConfig
from dutyroster.domain.models import Assignment, Worker
from dutyroster.errors import InconsistentEquityState

logger = logging.getLogger(__name__)

EquityKey = Tuple[int, str, int]  # (worker_id, assignment_type_code, year)


@dataclass(frozen=True)
class EquityDelta:
    worker_id: int
    assignment_type_code: str
    year: int
    delta: int
    assignment_uid: str
    reason: str

    @property
    def key(self) -> EquityKey:
        return (self.worker_id, self.assignment_type_code, self.year)


def employment_fraction(worker: Worker, as_of: date) -> float:
    """
    Fraction of the year-to-date the worker has been employed.

    Workers without a hire date, or hired before January 1st, count as employed
    all year. A hire date after `as_of` yields the smallest positive fraction.
    """
    year_start = date(as_of.year, 1, 1)
    elapsed = (as_of - year_start).days + 1
    start = year_start
    if worker.hire_date is not None and worker.hire_date > year_start:
        start = worker.hire_date
    employed = (as_of - start).days + 1
    employed = min(max(employed, 1), elapsed)
    return employed / elapsed


class EquityTracker:
    """
    Tracks assignment counts per (worker, type, year) as a baseline plus deltas.

    The baseline holds counts from before the assignments this tracker owns.
    Every owned assignment contributes exactly one open +1 delta; reversing it
    emits the matching -1. Reversing an assignment without an open delta means
    the bookkeeping is corrupt and raises InconsistentEquityState.
    """

    def __init__(self, cfg: Optional[EquityConfig] = None, baseline: Optional[Mapping[EquityKey, int]] = None):
        self.cfg = cfg or EquityConfig()
        self._baseline: Dict[EquityKey, int] = defaultdict(int)
        self._net: Dict[EquityKey, int] = defaultdict(int)
        self._open: Dict[str, EquityDelta] = {}
        self._closed: Dict[str, EquityDelta] = {}
        self._history: List[EquityDelta] = []
        self._lock = threading.RLock()
        for key, count in (baseline or {}).items():
            self._baseline[key] += int(count)

    # Counts

    def count(self, worker_id: int, type_code: str, year: int) -> int:
        key = (worker_id, type_code, year)
        with self._lock:
            return self._baseline.get(key, 0) + self._net.get(key, 0)

    def counts(self) -> Dict[EquityKey, int]:
        """Snapshot of every non-zero count (baseline plus deltas)."""
        with self._lock:
            keys = set(self._baseline) | set(self._net)
            out = {}
            for key in keys:
                total = self._baseline.get(key, 0) + self._net.get(key, 0)
                if total:
                    out[key] = total
            return out

    def net_deltas(self) -> Dict[EquityKey, int]:
        with self._lock:
            return {k: v for k, v in self._net.items() if v}

    @property
    def history(self) -> List[EquityDelta]:
        with self._lock:
            return list(self._history)

    def score(self, worker: Worker, type_code: str, as_of: date) -> float:
        """YTD count pro-rated by the fraction of the year the worker has been employed."""
        count = self.count(worker.worker_id, type_code, as_of.year)
        return count / employment_fraction(worker, as_of)

    def weight(self, score: float) -> float:
        return 1.0 / (self.cfg.smoothing + score) ** self.cfg.exponent

    # Selection

    def select(
        self,
        candidates: Sequence[Worker],
        type_code: str,
        as_of: date,
        rng: Optional[random.Random] = None,
    ) -> Worker:
        """
        Pick one worker among candidates, favouring the least loaded.

        Args:
            candidates: Non-empty candidate list from the rule engine
            type_code: Assignment type being filled
            as_of: Date of the slot (selects the equity year)
            rng: Explicit random source, required in weighted mode

        Returns:
            The selected worker
        """
        if not candidates:
            raise ValueError("Cannot select from an empty candidate list")

        ordered = sorted(candidates, key=lambda w: w.worker_id)
        if len(ordered) == 1:
            return ordered[0]

        scores = {w.worker_id: self.score(w, type_code, as_of) for w in ordered}

        if self.cfg.mode == "least_loaded":
            return min(ordered, key=lambda w: (scores[w.worker_id], w.worker_id))

        if rng is None:
            raise ValueError("Weighted selection requires an explicit random source")
        weights = [self.weight(scores[w.worker_id]) for w in ordered]
        chosen = rng.choices(ordered, weights=weights, k=1)[0]
        logger.debug(
            "Equity select %s on %s: %s -> %s",
            type_code,
            as_of,
            {w.worker_id: round(scores[w.worker_id], 2) for w in ordered},
            chosen.worker_id,
        )
        return chosen

    # Bookkeeping

    def record_assignment(self, assignment: Assignment, reason: str = "commit") -> EquityDelta:
        """Emit the +1 delta for a filled assignment."""
        if assignment.worker_id is None:
            raise ValueError("Unfilled assignments carry no equity")
        with self._lock:
            if assignment.uid in self._open:
                raise InconsistentEquityState(f"Assignment {assignment.uid} already counted")
            delta = EquityDelta(
                worker_id=assignment.worker_id,
                assignment_type_code=assignment.assignment_type_code,
                year=assignment.date.year,
                delta=1,
                assignment_uid=assignment.uid,
                reason=reason,
            )
            self._apply(delta)
            self._open[assignment.uid] = delta
            return delta

    def reverse_assignment(self, assignment: Assignment, reason: str = "reversal") -> EquityDelta:
        """Emit the -1 delta matching the assignment's prior +1."""
        with self._lock:
            prior = self._open.get(assignment.uid)
            if prior is None:
                raise InconsistentEquityState(
                    f"No prior equity delta for assignment {assignment.uid} "
                    f"({assignment.date} {assignment.assignment_type_code}#{assignment.slot})"
                )
            if prior.worker_id != assignment.worker_id:
                raise InconsistentEquityState(
                    f"Assignment {assignment.uid} was counted for worker {prior.worker_id}, "
                    f"not {assignment.worker_id}"
                )
            delta = EquityDelta(
                worker_id=prior.worker_id,
                assignment_type_code=prior.assignment_type_code,
                year=prior.year,
                delta=-1,
                assignment_uid=assignment.uid,
                reason=reason,
            )
            self._apply(delta)
            self._closed[assignment.uid] = self._open.pop(assignment.uid)
            return delta

    def discard(self, delta: EquityDelta) -> None:
        """Undo a delta emitted inside a unit of work that is rolling back."""
        with self._lock:
            self._net[delta.key] -= delta.delta
            if delta.delta > 0:
                self._open.pop(delta.assignment_uid, None)
            else:
                self._open[delta.assignment_uid] = self._closed.pop(delta.assignment_uid)
            self._history.remove(delta)

    def _apply(self, delta: EquityDelta) -> None:
        self._net[delta.key] += delta.delta
        self._history.append(delta)

    def check_invariant(self, assignments: Iterable[Assignment]) -> List[str]:
        """
        Compare net deltas against active filled assignments.

        Returns:
            List of mismatch descriptions (empty when consistent)
        """
        expected: Dict[EquityKey, int] = defaultdict(int)
        for a in assignments:
            if a.is_active and a.is_filled:
                expected[(a.worker_id, a.assignment_type_code, a.date.year)] += 1

        with self._lock:
            net = {k: v for k, v in self._net.items() if v}
        problems = []
        for key in sorted(set(expected) | set(net), key=str):
            if expected.get(key, 0) != net.get(key, 0):
                problems.append(
                    f"Equity mismatch for worker {key[0]} type {key[1]} year {key[2]}: "
                    f"deltas sum to {net.get(key, 0)}, {expected.get(key, 0)} assignments committed"
                )
        return problems
