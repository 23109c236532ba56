"""Tests for the rule engine's tiered candidate restriction."""

from datetime import date

import pytest

from dutyroster.domain.models import AssignmentType, Category, LeaveCategory, LeaveRecord, Rule, RuleKind
from dutyroster.errors import ValidationError
from dutyroster.services.availability import AvailabilityResolver, LeaveIndex
from dutyroster.services.ledger import RosterBook
from dutyroster.services.rules import IMPLIED_PRIORITY, RuleEngine, ordered_rules, validate_rule_set

DAY = date(2025, 3, 4)


def _engine(roster, types, rules=(), leave=()):
    roster_map = {w.worker_id: w for w in roster}
    availability = AvailabilityResolver(roster_map, LeaveIndex(leave), RosterBook())
    return RuleEngine({t.code: t for t in types}, rules, roster_map, availability.is_available)


def _on_leave(worker_id, day=DAY):
    return LeaveRecord(worker_id=worker_id, category=LeaveCategory.VACATION, start_date=day, end_date=day)


def _type(assignment_types, code):
    return next(t for t in assignment_types if t.code == code)


def test_ordered_rules_adds_implied_general_pool(assignment_types):
    pa = _type(assignment_types, "PA")
    rules = [
        Rule(assignment_type_code="PA", kind=RuleKind.PREFERRED_LIST, priority=5, seq=1, preferred=[3]),
        Rule(assignment_type_code="PA", kind=RuleKind.PERMANENT, priority=1, seq=0, worker_id=1),
    ]
    ordered = ordered_rules(pa, rules)
    assert [r.kind for r in ordered] == [RuleKind.PERMANENT, RuleKind.PREFERRED_LIST, RuleKind.GENERAL_POOL]
    assert ordered[-1].priority > IMPLIED_PRIORITY


def test_ordered_rules_adds_implied_senior_tier(assignment_types):
    eve = _type(assignment_types, "EVE")
    assert [r.kind for r in ordered_rules(eve, [])] == [RuleKind.SENIOR_REQUIRED]


def test_priority_ties_broken_by_insertion_order(assignment_types):
    pa = _type(assignment_types, "PA")
    first = Rule(assignment_type_code="PA", kind=RuleKind.PREFERRED_LIST, seq=0, preferred=[4])
    second = Rule(assignment_type_code="PA", kind=RuleKind.PREFERRED_LIST, seq=1, preferred=[5])
    assert ordered_rules(pa, [second, first])[:2] == [first, second]


def test_permanent_rule_wins(roster, assignment_types):
    engine = _engine(roster, assignment_types, [Rule(assignment_type_code="PA", kind=RuleKind.PERMANENT, worker_id=4)])
    candidates = engine.restrict_candidates(_type(assignment_types, "PA"), DAY, 0)
    assert [w.worker_id for w in candidates.workers] == [4]
    assert candidates.rule_kind == RuleKind.PERMANENT
    assert candidates.ranked is True


def test_permanent_holder_on_leave_falls_through_to_preferred_list(roster, assignment_types):
    rules = [
        Rule(assignment_type_code="PA", kind=RuleKind.PERMANENT, worker_id=4, seq=0),
        Rule(assignment_type_code="PA", kind=RuleKind.PREFERRED_LIST, preferred=[6, 4, 5], seq=1),
    ]
    engine = _engine(roster, assignment_types, rules, leave=[_on_leave(4)])
    candidates = engine.restrict_candidates(_type(assignment_types, "PA"), DAY, 0)
    assert candidates.rule_kind == RuleKind.PREFERRED_LIST
    # Ranked order preserved, unavailable worker dropped
    assert [w.worker_id for w in candidates.workers] == [6, 5]
    assert candidates.tried == ["PERMANENT:0", "PREFERRED_LIST:2"]


def test_permanent_holder_on_leave_falls_through_to_general_pool(roster, assignment_types):
    rules = [Rule(assignment_type_code="PA", kind=RuleKind.PERMANENT, worker_id=4)]
    engine = _engine(roster, assignment_types, rules, leave=[_on_leave(4)])
    candidates = engine.restrict_candidates(_type(assignment_types, "PA"), DAY, 0)
    assert candidates.rule_kind == RuleKind.GENERAL_POOL
    assert candidates.ranked is False
    assert [w.worker_id for w in candidates.workers] == [1, 2, 3, 5, 6]


def test_rule_outside_effective_window_is_skipped(roster, assignment_types):
    rules = [
        Rule(assignment_type_code="PA", kind=RuleKind.PERMANENT, worker_id=4,
             effective_from=date(2025, 1, 1), effective_to=date(2025, 2, 28)),
    ]
    engine = _engine(roster, assignment_types, rules)
    candidates = engine.restrict_candidates(_type(assignment_types, "PA"), DAY, 0)
    assert candidates.rule_kind == RuleKind.GENERAL_POOL


def test_senior_tier_is_terminal(roster, assignment_types):
    leave = [_on_leave(1), _on_leave(2)]
    engine = _engine(roster, assignment_types, leave=leave)
    candidates = engine.restrict_candidates(_type(assignment_types, "EVE"), DAY, 0)
    assert not candidates
    assert candidates.tried == ["SENIOR_REQUIRED:0"]


def test_senior_type_restricts_every_tier(roster, assignment_types):
    # A non-senior permanent holder is never proposed for a senior-only type
    rules = [Rule(assignment_type_code="EVE", kind=RuleKind.PERMANENT, worker_id=3)]
    engine = _engine(roster, assignment_types, rules)
    candidates = engine.restrict_candidates(_type(assignment_types, "EVE"), DAY, 0)
    assert candidates.rule_kind == RuleKind.SENIOR_REQUIRED
    assert {w.worker_id for w in candidates.workers} == {1, 2}


def test_general_pool_respects_eligibility(make_worker):
    workers = [make_worker(1, eligibilities={"REM"}), make_worker(2, eligibilities={"PA"}), make_worker(3)]
    rem = AssignmentType(code="REM", category=Category.REMOTE)
    engine = _engine(workers, [rem])
    assert [w.worker_id for w in engine.restrict_candidates(rem, DAY, 0).workers] == [1, 3]


def test_exclude_and_inactive_workers_never_proposed(roster, assignment_types):
    roster[5].is_active = False
    engine = _engine(roster, assignment_types)
    candidates = engine.restrict_candidates(_type(assignment_types, "PA"), DAY, 0, exclude={1, 2})
    assert [w.worker_id for w in candidates.workers] == [3, 4, 5]


def test_validate_rule_set_accepts_valid_configuration(roster, assignment_types):
    rules = [
        Rule(assignment_type_code="PA", kind=RuleKind.PERMANENT, worker_id=3),
        Rule(assignment_type_code="EVE", kind=RuleKind.PREFERRED_LIST, preferred=[2, 1]),
    ]
    validate_rule_set({t.code: t for t in assignment_types}, rules, {w.worker_id: w for w in roster})


def test_validate_rule_set_reports_every_problem(roster, assignment_types):
    rules = [
        Rule(assignment_type_code="PA", kind=RuleKind.PERMANENT, worker_id=99),
        Rule(assignment_type_code="NOPE", kind=RuleKind.GENERAL_POOL),
        Rule(assignment_type_code="EVE", kind=RuleKind.PREFERRED_LIST, preferred=[1, 3]),
        Rule(assignment_type_code="PA", kind="SOMETIMES"),
    ]
    with pytest.raises(ValidationError) as exc:
        validate_rule_set({t.code: t for t in assignment_types}, rules, {w.worker_id: w for w in roster})
    message = str(exc.value)
    assert "unknown worker 99" in message
    assert "unknown assignment type" in message
    assert "non-senior worker 3" in message
    assert "unknown rule kind" in message


def test_senior_type_without_senior_workers_fails_at_load(make_worker, assignment_types):
    juniors = {i: make_worker(i) for i in (3, 4)}
    with pytest.raises(ValidationError, match="requires a senior worker"):
        validate_rule_set({t.code: t for t in assignment_types}, [], juniors)
