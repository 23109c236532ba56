"""Schedule generator: fills every slot of a horizon, one slot at a time.

Slots are processed by date, then assignment type priority, then slot index.
Later decisions depend on the equity counts and availability changed by
earlier ones, so this order is part of the algorithm.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from dutyroster.domain.models import Assignment, AssignmentSource, AssignmentType, CompTimeEntry, Worker, new_uid
from dutyroster.errors import InvalidOverride, SchedulingError, UnfillableSlot
from dutyroster.services.availability import AvailabilityResolver
from dutyroster.services.comp_time import CompTimeLedger
from dutyroster.services.equity import EquityDelta, EquityTracker
from dutyroster.services.ledger import RosterBook, UnitOfWork
from dutyroster.services.locks import DateRangeLocks
from dutyroster.services.rules import RuleEngine

logger = logging.getLogger(__name__)


class RunState:
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    COMPLETED_WITH_GAPS = "COMPLETED_WITH_GAPS"
    ABORTED = "ABORTED"
    UNDONE = "UNDONE"


@dataclass
class UnfilledSlot:
    date: date
    assignment_type_code: str
    slot: int
    reasons: List[str] = field(default_factory=list)

    @property
    def key(self) -> Tuple[date, str, int]:
        return (self.date, self.assignment_type_code, self.slot)


@dataclass
class MutationResult:
    """Assignments created or reinstated and superseded by one operation, with their deltas."""

    assignments: List[Assignment] = field(default_factory=list)
    superseded: List[Assignment] = field(default_factory=list)
    equity_deltas: List[EquityDelta] = field(default_factory=list)
    comp_time_deltas: List[CompTimeEntry] = field(default_factory=list)
    unfilled: List[UnfilledSlot] = field(default_factory=list)

    @classmethod
    def from_unit(cls, uow: UnitOfWork, unfilled: Optional[List[UnfilledSlot]] = None) -> "MutationResult":
        return cls(
            assignments=list(uow.committed) + list(uow.reinstated),
            superseded=list(uow.superseded),
            equity_deltas=list(uow.equity_deltas),
            comp_time_deltas=list(uow.comp_time_deltas),
            unfilled=list(unfilled or []),
        )


@dataclass
class GenerationReport:
    """Outcome of a generation run. Always returned, gaps included."""

    run_id: str
    horizon_start: date
    horizon_end: date
    state: str = RunState.NOT_STARTED
    assignments: List[Assignment] = field(default_factory=list)
    unfilled: List[UnfilledSlot] = field(default_factory=list)
    skipped: List[Tuple[date, str, int]] = field(default_factory=list)
    superseded: List[Assignment] = field(default_factory=list)
    equity_deltas: List[EquityDelta] = field(default_factory=list)
    comp_time_deltas: List[CompTimeEntry] = field(default_factory=list)

    @property
    def committed(self) -> List[Assignment]:
        """Filled assignments committed by this run."""
        return [a for a in self.assignments if a.is_filled]

    @property
    def has_gaps(self) -> bool:
        return bool(self.unfilled)


@dataclass
class RunRecord:
    run_id: str
    horizon_start: date
    horizon_end: date
    state: str = RunState.NOT_STARTED


def horizon_dates(start: date, days: int) -> List[date]:
    if days < 1:
        raise ValueError(f"Horizon must cover at least one day, got {days}")
    return [start + timedelta(days=i) for i in range(days)]


class ScheduleGenerator:
    """Drives rule restriction, equity selection and commit for every slot."""

    def __init__(
        self,
        types: Mapping[str, AssignmentType],
        roster: Mapping[int, Worker],
        book: RosterBook,
        rules: RuleEngine,
        availability: AvailabilityResolver,
        equity: EquityTracker,
        comp_time: CompTimeLedger,
        date_locks: Optional[DateRangeLocks] = None,
    ):
        self.types = types
        self.roster = roster
        self.book = book
        self.rules = rules
        self.availability = availability
        self.equity = equity
        self.comp_time = comp_time
        self.date_locks = date_locks or DateRangeLocks()
        self.runs: Dict[str, RunRecord] = {}

    def ordered_types(self) -> List[AssignmentType]:
        return sorted(self.types.values(), key=lambda t: (t.priority, t.code))

    def transaction(self) -> UnitOfWork:
        return self.book.transaction(self.equity, self.comp_time)

    # Slot filling

    def fill_slot(
        self,
        uow: UnitOfWork,
        assignment_type: AssignmentType,
        day: date,
        slot: int,
        rng: Optional[random.Random],
        run_id: Optional[str] = None,
        exclude: Iterable[int] = (),
        source: str = AssignmentSource.RULE_ENGINE,
    ) -> Assignment:
        """
        Restrict, select and commit one slot inside a unit of work.

        Raises:
            UnfillableSlot: If no rule tier yields a candidate
        """
        candidates = self.rules.restrict_candidates(assignment_type, day, slot, exclude=exclude)
        if not candidates:
            raise UnfillableSlot(day, assignment_type.code, slot, candidates.tried)

        if candidates.ranked:
            winner = candidates.workers[0]
        else:
            winner = self.equity.select(candidates.workers, assignment_type.code, day, rng)

        assignment = Assignment(
            date=day,
            assignment_type_code=assignment_type.code,
            slot=slot,
            worker_id=winner.worker_id,
            source=source,
            rule_kind=candidates.rule_kind,
            run_id=run_id,
        )
        uow.commit(assignment, assignment_type)
        logger.debug("Assigned worker %s to %s#%d on %s (%s)", winner.worker_id, assignment_type.code, slot, day, candidates.rule_kind)
        return assignment

    def commit_gap(
        self,
        uow: UnitOfWork,
        gap: UnfillableSlot,
        run_id: Optional[str] = None,
        source: str = AssignmentSource.RULE_ENGINE,
    ) -> UnfilledSlot:
        placeholder = Assignment(
            date=gap.day,
            assignment_type_code=gap.type_code,
            slot=gap.slot,
            worker_id=None,
            source=source,
            run_id=run_id,
        )
        uow.commit(placeholder, self.types[gap.type_code])
        logger.warning("Unfilled slot %s#%d on %s: %s", gap.type_code, gap.slot, gap.day, ", ".join(gap.reasons))
        return UnfilledSlot(gap.day, gap.type_code, gap.slot, list(gap.reasons))

    # Runs

    def generate(
        self,
        horizon_start: date,
        horizon_days: int,
        rng: random.Random,
        regenerate: bool = False,
    ) -> GenerationReport:
        """
        Generate assignments for every open slot of the horizon.

        Args:
            horizon_start: First date of the horizon
            horizon_days: Number of days to schedule
            rng: Explicit random source for equity selection
            regenerate: Supersede the horizon's active assignments first,
                reversing their equity and comp time deltas

        Returns:
            GenerationReport with committed assignments and the gap report

        Raises:
            SchedulingError: Fatal errors abort the run with no commits
        """
        days = horizon_dates(horizon_start, horizon_days)
        run = RunRecord(run_id=new_uid(), horizon_start=days[0], horizon_end=days[-1])
        self.runs[run.run_id] = run
        report = GenerationReport(run.run_id, run.horizon_start, run.horizon_end)

        logger.info("Run %s: generating %s..%s (regenerate=%s)", run.run_id, run.horizon_start, run.horizon_end, regenerate)
        with self.date_locks.hold(run.horizon_start, run.horizon_end):
            run.state = report.state = RunState.IN_PROGRESS
            try:
                with self.transaction() as uow:
                    if regenerate:
                        for existing in self.book.active_assignments(run.horizon_start, run.horizon_end):
                            uow.supersede(existing, by_uid=run.run_id, reason="regenerate")

                    for day in days:
                        for assignment_type in self.ordered_types():
                            if not assignment_type.is_staffed_on(day):
                                continue
                            for slot in range(assignment_type.slots_per_day):
                                if self.book.active((day, assignment_type.code, slot)) is not None:
                                    report.skipped.append((day, assignment_type.code, slot))
                                    continue
                                try:
                                    self.fill_slot(uow, assignment_type, day, slot, rng, run_id=run.run_id)
                                except UnfillableSlot as gap:
                                    report.unfilled.append(self.commit_gap(uow, gap, run_id=run.run_id))
            except SchedulingError:
                run.state = report.state = RunState.ABORTED
                logger.error("Run %s aborted, no assignments committed", run.run_id)
                raise

        report.assignments = list(uow.committed)
        report.superseded = list(uow.superseded)
        report.equity_deltas = list(uow.equity_deltas)
        report.comp_time_deltas = list(uow.comp_time_deltas)
        run.state = report.state = RunState.COMPLETED_WITH_GAPS if report.unfilled else RunState.COMPLETED
        logger.info(
            "Run %s %s: %d assigned, %d unfilled, %d skipped",
            run.run_id, run.state, len(report.committed), len(report.unfilled), len(report.skipped),
        )
        return report

    def undo_run(self, run_id: str) -> MutationResult:
        """
        Reverse a generation run exactly.

        Assignments the run created are superseded with reversed deltas and the
        assignments it superseded are reinstated with their deltas re-applied.

        Raises:
            SchedulingError: If any assignment of the run has changed since, or a
                slot or worker-day it would reinstate is now taken
        """
        created = [a for a in self.book.all_assignments() if a.run_id == run_id]
        replaced = [a for a in self.book.all_assignments() if a.superseded_by == run_id]
        if not created and not replaced:
            raise SchedulingError(f"Unknown run {run_id}")

        changed = [a for a in created if not a.is_active]
        if changed:
            raise SchedulingError(
                f"Run {run_id} cannot be undone: {len(changed)} of its assignments were changed since"
            )

        dates = [a.date for a in created + replaced]
        with self.date_locks.hold(min(dates), max(dates)):
            leaving = {a.uid for a in created}
            for a in replaced:
                occupant = self.book.active(a.key)
                if occupant is not None and occupant.uid not in leaving:
                    raise SchedulingError(
                        f"Run {run_id} cannot be undone: {a.assignment_type_code}#{a.slot} on {a.date} is held by another assignment"
                    )
                booked = self.book.assignment_of_worker_on(a.worker_id, a.date, ignoring=leaving) if a.is_filled else None
                if booked is not None:
                    raise SchedulingError(
                        f"Run {run_id} cannot be undone: worker {a.worker_id} is now assigned to "
                        f"{booked.assignment_type_code} on {a.date}"
                    )
            with self.transaction() as uow:
                for a in created:
                    uow.supersede(a, by_uid=None, reason="undo")
                for a in replaced:
                    uow.reinstate(a, self.types[a.assignment_type_code])

        record = self.runs.get(run_id)
        if record is not None:
            record.state = RunState.UNDONE
        logger.info("Run %s undone: %d superseded, %d reinstated", run_id, len(created), len(replaced))
        return MutationResult.from_unit(uow)

    # Manual override

    def apply_manual_override(self, day: date, type_code: str, slot: int, worker_id: int) -> MutationResult:
        """
        Put a worker on a slot, bypassing rule evaluation.

        The occupant, if any, is superseded with reversed deltas. Equity and
        comp time are recorded exactly as for a normal selection.

        Raises:
            InvalidOverride: Unknown type/slot/worker, or the worker is not
                available (double-booked, on leave, inactive)
        """
        assignment_type = self.types.get(type_code)
        if assignment_type is None:
            raise InvalidOverride(f"Unknown assignment type {type_code}")
        if not 0 <= slot < assignment_type.slots_per_day:
            raise InvalidOverride(f"Type {type_code} has no slot {slot}")
        worker = self.roster.get(worker_id)
        if worker is None:
            raise InvalidOverride(f"Unknown worker {worker_id}")

        with self.date_locks.hold(day, day):
            current = self.book.active((day, type_code, slot))
            if current is not None and current.worker_id == worker_id:
                return MutationResult()

            ignoring = {current.uid} if current is not None else set()
            reasons = self.availability.reasons(worker_id, day, ignoring)
            if reasons:
                raise InvalidOverride(
                    f"Worker {worker_id} cannot take {type_code}#{slot} on {day}: {', '.join(reasons)}"
                )

            assignment = Assignment(
                date=day,
                assignment_type_code=type_code,
                slot=slot,
                worker_id=worker_id,
                source=AssignmentSource.MANUAL_OVERRIDE,
            )
            with self.transaction() as uow:
                if current is not None:
                    uow.supersede(current, by_uid=assignment.uid, reason="override")
                uow.commit(assignment, assignment_type)

        logger.info("Override: worker %s on %s#%d %s", worker_id, type_code, slot, day)
        return MutationResult.from_unit(uow)
