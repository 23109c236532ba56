"""Tests for the swap workflow."""

from datetime import date

import pytest

from dutyroster.domain.models import (
    Assignment,
    AssignmentSource,
    AssignmentType,
    Category,
    LeaveCategory,
    LeaveRecord,
    Rule,
    RuleKind,
    SwapState,
)
from dutyroster.errors import InsufficientCompTime, InvalidSwap

WEDNESDAY = date(2023, 6, 14)
THURSDAY = date(2023, 6, 15)
SATURDAY = date(2025, 3, 8)


@pytest.fixture
def remote():
    return AssignmentType(code="REM", category=Category.REMOTE, staffed_weekdays=[0, 1, 2, 3, 4])


def test_swap_keeps_equity_counts_consistent(build_core, remote):
    """A (5 Remote this year) hands a Remote day to B (3): both end at 4."""
    held = Assignment(date=WEDNESDAY, assignment_type_code="REM", slot=0, worker_id=3)
    core = build_core(
        types=[remote],
        existing=[held],
        prior_counts={(3, "REM", 2023): 4, (4, "REM", 2023): 3},
    )
    assert core.equity.count(3, "REM", 2023) == 5
    assert core.equity.count(4, "REM", 2023) == 3

    request = core.propose_swap(3, held.uid, target_worker_id=4)
    assert request.state == SwapState.PENDING
    result = core.resolve_swap(request.uid, "approve")

    assert result.request.state == SwapState.APPROVED
    assert result.request.resolved_at is not None
    assert core.equity.count(3, "REM", 2023) == 4
    assert core.equity.count(4, "REM", 2023) == 4
    assert sorted(d.delta for d in result.mutation.equity_deltas) == [-1, 1]

    new = result.mutation.assignments[0]
    assert new.worker_id == 4
    assert new.source == AssignmentSource.SWAP
    assert not held.is_active
    assert held.superseded_by == new.uid
    assert core.check_invariants() == []


def test_exchange_with_counter_assignment(build_core, remote):
    mine = Assignment(date=WEDNESDAY, assignment_type_code="REM", slot=0, worker_id=3)
    theirs = Assignment(date=THURSDAY, assignment_type_code="REM", slot=0, worker_id=4)
    core = build_core(types=[remote], existing=[mine, theirs])

    request = core.propose_swap(3, mine.uid, target_worker_id=4, counter_assignment_uid=theirs.uid)
    result = core.resolve_swap(request.uid, "approve")

    by_date = {a.date: a.worker_id for a in core.active_assignments()}
    assert by_date == {WEDNESDAY: 4, THURSDAY: 3}
    assert len(result.mutation.superseded) == 2
    assert core.equity.count(3, "REM", 2023) == 1
    assert core.equity.count(4, "REM", 2023) == 1
    assert core.check_invariants() == []


def test_swap_moves_comp_time(build_core):
    evening = AssignmentType(code="EVE", category=Category.EVENING)
    rules = [Rule(assignment_type_code="EVE", kind=RuleKind.PERMANENT, worker_id=3)]
    core = build_core(types=[evening], rules=rules)
    report = core.generate_schedule(SATURDAY, 1)
    held = report.committed[0]
    assert core.comp_time.balance(3) == 8.0

    request = core.propose_swap(3, held.uid, target_worker_id=5)
    core.resolve_swap(request.uid, "approve")

    assert core.comp_time.balance(3) == 0.0
    assert core.comp_time.balance(5) == 8.0


def test_swap_blocked_when_comp_time_already_spent(build_core):
    evening = AssignmentType(code="EVE", category=Category.EVENING)
    rules = [Rule(assignment_type_code="EVE", kind=RuleKind.PERMANENT, worker_id=3)]
    core = build_core(types=[evening], rules=rules)
    held = core.generate_schedule(SATURDAY, 1).committed[0]
    assert core.use_comp_time(3, 8).success

    request = core.propose_swap(3, held.uid, target_worker_id=5)
    with pytest.raises(InsufficientCompTime):
        core.resolve_swap(request.uid, "approve")
    assert held.is_active
    assert request.state == SwapState.PENDING
    assert core.check_invariants() == []


def test_release_reselects_another_worker(build_core, remote):
    held = Assignment(date=WEDNESDAY, assignment_type_code="REM", slot=0, worker_id=3)
    core = build_core(types=[remote], existing=[held])

    request = core.propose_swap(3, held.uid)
    assert request.is_release
    result = core.resolve_swap(request.uid, "approve", random_seed=1)

    replacement = core.book.active((WEDNESDAY, "REM", 0))
    assert replacement.worker_id not in (None, 3)
    assert replacement.source == AssignmentSource.SWAP
    assert held.superseded_by == replacement.uid
    assert result.mutation.unfilled == []
    assert core.equity.count(3, "REM", 2023) == 0
    assert core.check_invariants() == []


def test_release_without_replacement_leaves_gap(make_worker, build_core, remote):
    workers = [make_worker(3), make_worker(4)]
    held = Assignment(date=WEDNESDAY, assignment_type_code="REM", slot=0, worker_id=3)
    leave = [LeaveRecord(worker_id=4, category=LeaveCategory.SICK, start_date=WEDNESDAY, end_date=WEDNESDAY)]
    core = build_core(roster_=workers, types=[remote], existing=[held], leave=leave)

    request = core.propose_swap(3, held.uid)
    result = core.resolve_swap(request.uid, "approve")

    assert [(g.date, g.assignment_type_code) for g in result.mutation.unfilled] == [(WEDNESDAY, "REM")]
    assert core.book.active((WEDNESDAY, "REM", 0)).worker_id is None
    assert request.state == SwapState.APPROVED


@pytest.mark.parametrize("decision,state", [("reject", SwapState.REJECTED), ("cancel", SwapState.CANCELLED)])
def test_reject_and_cancel_are_terminal(build_core, remote, decision, state):
    held = Assignment(date=WEDNESDAY, assignment_type_code="REM", slot=0, worker_id=3)
    core = build_core(types=[remote], existing=[held])
    request = core.propose_swap(3, held.uid, target_worker_id=4)

    result = core.resolve_swap(request.uid, decision)
    assert result.request.state == state
    assert held.is_active
    assert result.mutation.assignments == []

    with pytest.raises(InvalidSwap, match="already"):
        core.resolve_swap(request.uid, "approve")


def test_invalid_proposals(build_core, remote, roster):
    roster[5].is_active = False
    held = Assignment(date=WEDNESDAY, assignment_type_code="REM", slot=0, worker_id=3)
    other = Assignment(date=WEDNESDAY, assignment_type_code="REM", slot=0, worker_id=5,
                       superseded_at=held.created_at)
    core = build_core(types=[remote], existing=[held, other])

    with pytest.raises(InvalidSwap, match="belongs to worker 3"):
        core.propose_swap(4, held.uid, target_worker_id=5)
    with pytest.raises(InvalidSwap, match="not an active assignment"):
        core.propose_swap(5, other.uid, target_worker_id=4)
    with pytest.raises(InvalidSwap, match="unknown or inactive"):
        core.propose_swap(3, held.uid, target_worker_id=6)
    with pytest.raises(InvalidSwap, match="themselves"):
        core.propose_swap(3, held.uid, target_worker_id=3)
    with pytest.raises(InvalidSwap, match="Unknown swap"):
        core.resolve_swap("missing", "approve")


def test_senior_only_work_cannot_go_to_junior(build_core):
    evening = AssignmentType(code="EVE", category=Category.EVENING, requires_senior=True)
    held = Assignment(date=WEDNESDAY, assignment_type_code="EVE", slot=0, worker_id=1)
    core = build_core(types=[evening], existing=[held])

    with pytest.raises(InvalidSwap, match="requires a senior"):
        core.propose_swap(1, held.uid, target_worker_id=3)
    request = core.propose_swap(1, held.uid, target_worker_id=2)
    core.resolve_swap(request.uid, "approve")
    assert core.book.active((WEDNESDAY, "EVE", 0)).worker_id == 2


def test_approval_rechecks_availability(build_core, remote):
    held = Assignment(date=WEDNESDAY, assignment_type_code="REM", slot=0, worker_id=3)
    evening = AssignmentType(code="EVE", category=Category.EVENING)
    core = build_core(types=[remote, evening], existing=[held])
    request = core.propose_swap(3, held.uid, target_worker_id=4)

    # Target picks up other work that day before approval
    core.apply_manual_override(WEDNESDAY, "EVE", 0, 4)

    with pytest.raises(InvalidSwap, match="not available"):
        core.resolve_swap(request.uid, "approve")
    assert request.state == SwapState.PENDING
    assert held.is_active
    assert core.resolve_swap(request.uid, "cancel").request.state == SwapState.CANCELLED


def test_pending_lists_open_requests(build_core, remote):
    held = Assignment(date=WEDNESDAY, assignment_type_code="REM", slot=0, worker_id=3)
    core = build_core(types=[remote], existing=[held])
    first = core.propose_swap(3, held.uid, target_worker_id=4)
    second = core.propose_swap(3, held.uid, target_worker_id=5)
    core.resolve_swap(first.uid, "reject")
    assert core.swaps.pending() == [second]
