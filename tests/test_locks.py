"""Tests for the date-range and worker lock managers."""

import threading
from datetime import date, timedelta

import pytest

from dutyroster.domain.models import Assignment
from dutyroster.services.locks import DateRangeLocks, WorkerLocks

MONDAY = date(2025, 3, 3)
WAIT = 0.2


def _in_thread(target):
    """Run target in a daemon thread; the returned event is set once it returns."""
    done = threading.Event()

    def run():
        target()
        done.set()

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread, done


class TestDateRangeLocks:
    def test_overlapping_range_waits_for_release(self):
        locks = DateRangeLocks()
        order = []

        def second():
            with locks.hold(MONDAY + timedelta(days=3), MONDAY + timedelta(days=9)):
                order.append("second")

        with locks.hold(MONDAY, MONDAY + timedelta(days=6)):
            thread, done = _in_thread(second)
            assert not done.wait(WAIT)
            order.append("first released")

        assert done.wait(5)
        thread.join(5)
        assert order == ["first released", "second"]

    def test_single_day_inside_range_waits(self):
        locks = DateRangeLocks()
        with locks.hold(MONDAY, MONDAY + timedelta(days=6)):
            _, done = _in_thread(lambda: locks.hold(MONDAY + timedelta(days=6), MONDAY + timedelta(days=6)).__enter__())
            assert not done.wait(WAIT)
        assert done.wait(5)

    def test_disjoint_range_does_not_wait(self):
        locks = DateRangeLocks()

        def other_week():
            with locks.hold(MONDAY + timedelta(days=7), MONDAY + timedelta(days=13)):
                pass

        with locks.hold(MONDAY, MONDAY + timedelta(days=6)):
            thread, done = _in_thread(other_week)
            assert done.wait(5)
        thread.join(5)

    def test_range_released_after_exception(self):
        locks = DateRangeLocks()
        with pytest.raises(RuntimeError):
            with locks.hold(MONDAY, MONDAY):
                raise RuntimeError("boom")

        _, done = _in_thread(lambda: locks.hold(MONDAY, MONDAY).__enter__())
        assert done.wait(5)

    def test_inverted_range_rejected(self):
        with pytest.raises(ValueError):
            with DateRangeLocks().hold(MONDAY + timedelta(days=1), MONDAY):
                pass


class TestWorkerLocks:
    def test_same_worker_waits(self):
        locks = WorkerLocks()
        with locks.hold([3]):
            _, blocked = _in_thread(lambda: locks.hold([3, 4]).__enter__())
            _, free = _in_thread(lambda: locks.hold([5]).__enter__())
            assert free.wait(5)
            assert not blocked.wait(WAIT)
        assert blocked.wait(5)

    def test_opposite_request_orders_do_not_deadlock(self):
        locks = WorkerLocks()

        def churn(ids):
            for _ in range(200):
                with locks.hold(ids):
                    pass

        threads = [_in_thread(lambda: churn([1, 2])), _in_thread(lambda: churn([2, 1]))]
        assert all(done.wait(10) for _, done in threads)

    def test_reentrant_and_ignores_missing_target(self):
        locks = WorkerLocks()
        with locks.hold([3, None]):
            with locks.hold([3]):
                pass


def test_comp_time_on_a_date_waits_for_the_day(build_core):
    core = build_core(comp_time_balances={3: 16.0})
    results = []

    with core.date_locks.hold(MONDAY, MONDAY + timedelta(days=6)):
        _, done = _in_thread(lambda: results.append(core.use_comp_time(3, 8, on_date=MONDAY)))
        assert not done.wait(WAIT)

        # Usage without a date is not tied to any day
        assert core.use_comp_time(3, 4).success

        # A generation holding the week staffs worker 3 on Monday meanwhile
        with core.generator.transaction() as uow:
            uow.commit(Assignment(date=MONDAY, assignment_type_code="PA", worker_id=3), core.types["PA"])

    assert done.wait(5)
    assert results[0].success is False
    assert results[0].reason == "AlreadyAssigned"
    assert core.availability.reasons(3, MONDAY) == ["already_assigned:PA"]
