"""Orchestrator - the scheduling core's external interface.

SchedulingCore wires the services together from a pre-fetched snapshot and
exposes generation, manual overrides, swaps and comp time usage. The
`build_horizon_schedule` helper drives it from the database.
"""

from __future__ import annotations

import logging
import random
from collections import Counter
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Union

from sqlalchemy.orm import Session

from dutyroster.config import SchedulerConfig
from dutyroster.domain.models import (
    Assignment,
    AssignmentType,
    CompTimeEntry,
    EquityCount,
    LeaveCategory,
    LeaveRecord,
    Rule,
    SwapRequest,
    Worker,
)
from dutyroster.domain.repositories import (
    AssignmentRepository,
    AssignmentTypeRepository,
    CompTimeRepository,
    EquityRepository,
    LeaveRepository,
    RuleRepository,
    SwapRepository,
    WorkerRepository,
)
from dutyroster.errors import InconsistentEquityState, InsufficientCompTime, ValidationError
from dutyroster.services.availability import VALID_LEAVE_HOURS, AvailabilityResolver, LeaveIndex
from dutyroster.services.comp_time import CompTimeLedger
from dutyroster.services.equity import EquityKey, EquityTracker
from dutyroster.services.ledger import RosterBook
from dutyroster.services.locks import DateRangeLocks, WorkerLocks
from dutyroster.services.rules import RuleEngine, validate_rule_set

from .generator import GenerationReport, MutationResult, ScheduleGenerator
from .swaps import SwapResult, SwapWorkflow

logger = logging.getLogger(__name__)


@dataclass
class RuleSet:
    types: List[AssignmentType]
    rules: List[Rule] = field(default_factory=list)


@dataclass
class CompTimeResult:
    success: bool
    worker_id: int
    hours: float
    balance: float
    reason: Optional[str] = None
    entry: Optional[CompTimeEntry] = None
    leave: Optional[LeaveRecord] = None


def _baseline_counts(prior_counts) -> Dict[EquityKey, int]:
    if prior_counts is None:
        return {}
    if isinstance(prior_counts, Mapping):
        return {tuple(k): int(v) for k, v in prior_counts.items()}
    out: Dict[EquityKey, int] = {}
    for row in prior_counts:
        key = (row.worker_id, row.assignment_type_code, row.year)
        out[key] = out.get(key, 0) + int(row.count)
    return out


class SchedulingCore:
    """
    One scheduling core over a roster/leave/assignment snapshot.

    Construct with `from_snapshot`; configuration errors surface there,
    before anything is committed.
    """

    def __init__(
        self,
        roster: Mapping[int, Worker],
        types: Mapping[str, AssignmentType],
        rules: Iterable[Rule],
        leave: LeaveIndex,
        book: RosterBook,
        equity: EquityTracker,
        comp_time: CompTimeLedger,
        cfg: SchedulerConfig,
    ):
        self.cfg = cfg
        self.roster = dict(roster)
        self.types = dict(types)
        self.leave = leave
        self.book = book
        self.equity = equity
        self.comp_time = comp_time
        self.date_locks = DateRangeLocks()
        self.worker_locks = WorkerLocks()
        self.availability = AvailabilityResolver(self.roster, leave, book)
        self.rules = RuleEngine(self.types, rules, self.roster, self.availability.is_available)
        self.generator = ScheduleGenerator(
            self.types,
            self.roster,
            book,
            self.rules,
            self.availability,
            equity,
            comp_time,
            self.date_locks,
        )
        self.swaps = SwapWorkflow(self.generator, self.worker_locks, self.date_locks)

    @classmethod
    def from_snapshot(
        cls,
        roster: Iterable[Worker],
        leave: Iterable[LeaveRecord],
        types: Iterable[AssignmentType],
        rules: Iterable[Rule] = (),
        existing_assignments: Iterable[Assignment] = (),
        prior_counts: Union[Mapping[EquityKey, int], Iterable[EquityCount], None] = None,
        comp_time_balances: Optional[Mapping[int, float]] = None,
        cfg: Optional[SchedulerConfig] = None,
        swap_requests: Iterable[SwapRequest] = (),
    ) -> "SchedulingCore":
        """
        Build a core from pre-fetched snapshots.

        Args:
            roster: Worker snapshot from the worker directory
            leave: Leave records (unapproved ones are ignored)
            types: Assignment types
            rules: Configured rules, in insertion order
            existing_assignments: Assignments committed earlier (active and superseded)
            prior_counts: Equity counts for work not among existing_assignments
            comp_time_balances: Opening comp time balance per worker (includes
                accruals of existing_assignments)
            cfg: SchedulerConfig (defaults when omitted)
            swap_requests: Previously proposed swap requests

        Raises:
            ValidationError: Malformed rules, overlapping leave or a corrupt assignment snapshot
        """
        cfg = cfg or SchedulerConfig()
        roster_map = {w.worker_id: w for w in roster}
        type_map = {t.code: t for t in types}
        rule_list = list(rules)
        for seq, rule in enumerate(rule_list):
            if not rule.seq:
                rule.seq = seq

        validate_rule_set(type_map, rule_list, roster_map)
        leave_index = LeaveIndex(leave)

        book = RosterBook()
        loaded = book.load_existing(existing_assignments)
        unknown = {a.assignment_type_code for a in loaded} - set(type_map)
        if unknown:
            raise ValidationError(f"Existing assignments reference unknown types: {sorted(unknown)}")

        equity = EquityTracker(cfg.equity, _baseline_counts(prior_counts))
        comp_time = CompTimeLedger(cfg.comp_time, comp_time_balances)
        for a in loaded:
            if a.is_active and a.is_filled:
                equity.record_assignment(a, reason="carried")
                comp_time.carry_accrual(a, type_map[a.assignment_type_code])

        core = cls(roster_map, type_map, rule_list, leave_index, book, equity, comp_time, cfg)
        core.swaps.load(swap_requests)
        logger.info(
            "Scheduling core ready: %d workers, %d types, %d rules, %d existing assignments",
            len(roster_map), len(type_map), len(rule_list), len(loaded),
        )
        return core

    # Operations

    def generate_schedule(
        self,
        horizon_start: date,
        horizon_days: Optional[int] = None,
        random_seed: Optional[int] = None,
        regenerate: bool = False,
    ) -> GenerationReport:
        """Generate the horizon; identical seeds and snapshots give identical rosters."""
        rng = random.Random(random_seed)
        return self.generator.generate(horizon_start, horizon_days or self.cfg.horizon_days, rng, regenerate=regenerate)

    def apply_manual_override(self, day: date, type_code: str, slot: int, worker_id: int) -> MutationResult:
        return self.generator.apply_manual_override(day, type_code, slot, worker_id)

    def undo_run(self, run_id: str) -> MutationResult:
        return self.generator.undo_run(run_id)

    def propose_swap(
        self,
        requesting_worker_id: int,
        assignment_uid: str,
        target_worker_id: Optional[int] = None,
        counter_assignment_uid: Optional[str] = None,
    ) -> SwapRequest:
        return self.swaps.propose(requesting_worker_id, assignment_uid, target_worker_id, counter_assignment_uid)

    def resolve_swap(self, swap_uid: str, decision: str, random_seed: Optional[int] = None) -> SwapResult:
        rng = random.Random(random_seed) if random_seed is not None else None
        return self.swaps.resolve(swap_uid, decision, rng)

    def use_comp_time(self, worker_id: int, hours: float, on_date: Optional[date] = None) -> CompTimeResult:
        """
        Debit comp time, optionally booking it as leave on a date.

        Returns:
            CompTimeResult; success False with reason InsufficientBalance,
            OverlappingLeave or AlreadyAssigned leaves everything untouched
        """
        if worker_id not in self.roster:
            raise ValidationError(f"Unknown worker {worker_id}")
        if on_date is not None and hours not in VALID_LEAVE_HOURS:
            raise ValidationError(f"Comp time booked on a date must be 4 or 8 hours, got {hours}")

        # Serialized with any generation, override or swap touching the same day
        day_lock = self.date_locks.hold(on_date, on_date) if on_date is not None else nullcontext()
        with day_lock, self.worker_locks.hold([worker_id]):
            leave = None
            if on_date is not None:
                if self.book.assignment_of_worker_on(worker_id, on_date) is not None:
                    return CompTimeResult(False, worker_id, hours, self.comp_time.balance(worker_id), "AlreadyAssigned")
                try:
                    leave = self.leave.add(
                        LeaveRecord(
                            worker_id=worker_id,
                            category=LeaveCategory.COMP_TIME_USAGE,
                            start_date=on_date,
                            end_date=on_date,
                            hours_per_day=int(hours),
                        )
                    )
                except ValidationError as e:
                    logger.info("Comp time leave rejected for worker %s: %s", worker_id, e)
                    return CompTimeResult(False, worker_id, hours, self.comp_time.balance(worker_id), "OverlappingLeave")
            try:
                entry = self.comp_time.use(worker_id, hours)
            except InsufficientCompTime:
                if leave is not None:
                    self.leave.remove(leave)
                return CompTimeResult(False, worker_id, hours, self.comp_time.balance(worker_id), "InsufficientBalance")

        return CompTimeResult(True, worker_id, hours, self.comp_time.balance(worker_id), entry=entry, leave=leave)

    # Views

    def active_assignments(self, start: Optional[date] = None, end: Optional[date] = None) -> List[Assignment]:
        return self.book.active_assignments(start, end)

    def check_invariants(self) -> List[str]:
        """Equity sum law over every active assignment the core owns."""
        return self.equity.check_invariant(self.book.all_assignments())


def generate_schedule(
    horizon_start: date,
    horizon_days: int,
    roster_snapshot: Iterable[Worker],
    leave_snapshot: Iterable[LeaveRecord],
    existing_assignments: Iterable[Assignment],
    rule_set: RuleSet,
    random_seed: Optional[int] = None,
    prior_counts: Union[Mapping[EquityKey, int], Iterable[EquityCount], None] = None,
    cfg: Optional[SchedulerConfig] = None,
) -> GenerationReport:
    """One-shot generation over snapshots, without keeping the core around."""
    core = SchedulingCore.from_snapshot(
        roster_snapshot,
        leave_snapshot,
        rule_set.types,
        rule_set.rules,
        existing_assignments,
        prior_counts=prior_counts,
        cfg=cfg,
    )
    return core.generate_schedule(horizon_start, horizon_days, random_seed)


def load_core(session: Session, cfg: SchedulerConfig, since: Optional[date] = None) -> SchedulingCore:
    """
    Build a SchedulingCore from the database.

    Stored equity counts include the loaded assignments, so their share is
    taken out of the baseline before the assignments are carried in again.

    Args:
        session: Database session
        cfg: SchedulerConfig
        since: Only load assignments on or after this date (all when None)

    Raises:
        InconsistentEquityState: If stored counts are lower than the loaded assignments imply
    """
    workers = WorkerRepository.get_all(session)
    types = AssignmentTypeRepository.get_all(session)
    rules = RuleRepository.get_all(session)
    leave = LeaveRepository.get_approved(session)
    assignments = AssignmentRepository.get_since(session, since)

    loaded = Counter(
        (a.worker_id, a.assignment_type_code, a.date.year) for a in assignments if a.is_active and a.is_filled
    )
    baseline = _baseline_counts(EquityRepository.get_all(session))
    for key, count in loaded.items():
        remaining = baseline.get(key, 0) - count
        if remaining < 0:
            raise InconsistentEquityState(
                f"Stored equity count for {key} is {baseline.get(key, 0)}, but {count} assignments are committed"
            )
        baseline[key] = remaining

    return SchedulingCore.from_snapshot(
        workers,
        leave,
        types,
        rules,
        assignments,
        prior_counts=baseline,
        comp_time_balances=CompTimeRepository.balances(session),
        cfg=cfg,
        swap_requests=SwapRepository.get_all(session),
    )


def persist_mutation(session: Session, result: Union[GenerationReport, MutationResult]) -> None:
    """Write an operation's new rows and deltas. Superseded rows are already tracked by the session."""
    session.add_all(result.assignments)
    session.add_all(result.superseded)
    EquityRepository.apply_deltas(session, result.equity_deltas)
    CompTimeRepository.add_entries(session, result.comp_time_deltas)
    session.commit()


def build_horizon_schedule(
    session: Session,
    horizon_start: date,
    cfg: SchedulerConfig,
    horizon_days: Optional[int] = None,
    random_seed: Optional[int] = None,
    regenerate: bool = False,
    persist: bool = True,
) -> GenerationReport:
    """
    Convenience function to generate a horizon from the database.

    Args:
        session: Database session
        horizon_start: First date of the horizon
        cfg: SchedulerConfig
        horizon_days: Days to schedule (cfg.horizon_days when omitted)
        random_seed: Seed for reproducible selection
        regenerate: Replace the horizon's existing assignments
        persist: If True, save assignments and deltas to the database

    Returns:
        GenerationReport
    """
    core = load_core(session, cfg, since=date(horizon_start.year, 1, 1))
    report = core.generate_schedule(horizon_start, horizon_days, random_seed, regenerate=regenerate)

    if persist:
        persist_mutation(session, report)
        logger.info("Persisted %d assignments (%d unfilled)", len(report.assignments), len(report.unfilled))
    else:
        session.rollback()

    return report
