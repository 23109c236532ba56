"""Tests for leave indexing and availability resolution."""

from datetime import date

import pytest

from dutyroster.domain.models import Assignment, LeaveCategory, LeaveRecord
from dutyroster.errors import ValidationError
from dutyroster.services.availability import AvailabilityResolver, LeaveIndex
from dutyroster.services.ledger import RosterBook

DAY = date(2025, 3, 4)


def _leave(worker_id, start, end, hours=8, category=LeaveCategory.VACATION, **kwargs):
    return LeaveRecord(worker_id=worker_id, category=category, start_date=start, end_date=end,
                       hours_per_day=hours, **kwargs)


def _resolver(roster, leave=(), existing=()):
    book = RosterBook()
    book.load_existing(existing)
    return AvailabilityResolver({w.worker_id: w for w in roster}, LeaveIndex(leave), book)


def test_overlapping_leave_rejected():
    index = LeaveIndex([_leave(1, date(2025, 3, 1), date(2025, 3, 5))])
    with pytest.raises(ValidationError, match="Overlapping"):
        index.add(_leave(1, date(2025, 3, 5), date(2025, 3, 7)))
    # Other workers are independent
    index.add(_leave(2, date(2025, 3, 5), date(2025, 3, 7)))
    assert len(index.records()) == 2


def test_malformed_leave_rejected():
    with pytest.raises(ValidationError):
        LeaveIndex([_leave(1, date(2025, 3, 5), date(2025, 3, 1))])
    with pytest.raises(ValidationError):
        LeaveIndex([_leave(1, date(2025, 3, 1), date(2025, 3, 1), hours=6)])


def test_unapproved_leave_ignored():
    index = LeaveIndex([
        _leave(1, date(2025, 3, 1), date(2025, 3, 5), approved=False),
        _leave(1, date(2025, 3, 3), date(2025, 3, 4)),
    ])
    assert len(index.records()) == 1


def test_protected_leave_flag_defaults_from_category():
    assert _leave(1, DAY, DAY, category=LeaveCategory.PROTECTED_FMLA).is_protected is True
    assert _leave(1, DAY, DAY).is_protected is False


def test_available_worker(roster):
    resolver = _resolver(roster)
    assert resolver.is_available(3, DAY) is True
    assert resolver.reasons(3, DAY) == []


def test_unknown_and_inactive_worker(roster):
    roster[2].is_active = False
    resolver = _resolver(roster)
    assert resolver.reasons(99, DAY) == ["unknown_worker"]
    assert resolver.reasons(3, DAY) == ["inactive"]


def test_half_and_full_day_leave_block(roster):
    resolver = _resolver(roster, leave=[
        _leave(3, DAY, DAY, hours=4, category=LeaveCategory.PERSONAL),
        _leave(4, date(2025, 3, 1), date(2025, 3, 10), category=LeaveCategory.SICK),
    ])
    assert resolver.reasons(3, DAY) == ["on_leave:PERSONAL"]
    assert resolver.reasons(4, DAY) == ["on_leave:SICK"]
    assert resolver.is_available(4, date(2025, 3, 11)) is True


def test_double_booking_across_types(roster):
    existing = Assignment(date=DAY, assignment_type_code="PA", slot=0, worker_id=3)
    resolver = _resolver(roster, existing=[existing])
    assert resolver.reasons(3, DAY) == ["already_assigned:PA"]
    assert resolver.is_available(3, DAY, ignoring={existing.uid}) is True
    assert resolver.is_available(3, date(2025, 3, 5)) is True


def test_superseded_assignment_does_not_block(roster):
    old = Assignment(date=DAY, assignment_type_code="PA", slot=0, worker_id=3)
    old.superseded_at = old.created_at
    resolver = _resolver(roster, existing=[old])
    assert resolver.is_available(3, DAY) is True


def test_resolver_is_side_effect_free(roster):
    resolver = _resolver(roster, leave=[_leave(3, DAY, DAY)])
    first = [resolver.is_available(w.worker_id, DAY) for w in roster]
    second = [resolver.is_available(w.worker_id, DAY) for w in roster]
    assert first == second
