"""Availability resolution: can a worker be assigned on a given date at all."""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional

from dutyroster.domain.models import LeaveRecord, Worker
from dutyroster.errors import ValidationError

# Leave of at least this many hours on a day blocks assignment
BLOCKING_LEAVE_HOURS = 4
VALID_LEAVE_HOURS = (4, 8)


class LeaveIndex:
    """Approved leave records per worker, with the no-overlap invariant enforced."""

    def __init__(self, records: Iterable[LeaveRecord] = ()):
        self._by_worker: Dict[int, List[LeaveRecord]] = defaultdict(list)
        for record in records:
            if record.approved:
                self.add(record)

    def add(self, record: LeaveRecord) -> LeaveRecord:
        """
        Add an approved leave record.

        Raises:
            ValidationError: If the record is malformed or overlaps another
                approved record of the same worker
        """
        if record.end_date < record.start_date:
            raise ValidationError(
                f"Leave for worker {record.worker_id} ends before it starts: {record.start_date}..{record.end_date}"
            )
        if record.hours_per_day not in VALID_LEAVE_HOURS:
            raise ValidationError(
                f"Leave for worker {record.worker_id} has {record.hours_per_day}h per day, expected 4 or 8"
            )
        for existing in self._by_worker[record.worker_id]:
            if existing.overlaps(record):
                raise ValidationError(
                    f"Overlapping leave for worker {record.worker_id}: "
                    f"{existing.start_date}..{existing.end_date} and {record.start_date}..{record.end_date}"
                )
        self._by_worker[record.worker_id].append(record)
        return record

    def remove(self, record: LeaveRecord) -> None:
        self._by_worker[record.worker_id].remove(record)

    def covering(self, worker_id: int, day: date) -> Optional[LeaveRecord]:
        for record in self._by_worker.get(worker_id, ()):
            if record.covers(day):
                return record
        return None

    def records(self) -> List[LeaveRecord]:
        return [r for records in self._by_worker.values() for r in records]


class AvailabilityResolver:
    """
    Decides whether a worker can be assigned on a date.

    A worker is unavailable when inactive or unknown, on approved leave of at
    least four hours that day, or already holding an active assignment that
    day (any type). The resolver has no side effects.
    """

    def __init__(self, roster: Mapping[int, Worker], leave: LeaveIndex, book):
        self.roster = roster
        self.leave = leave
        self.book = book

    def is_available(self, worker_id: int, day: date, ignoring: Iterable[str] = ()) -> bool:
        """
        Check availability of a worker on a date.

        Args:
            worker_id: Worker to check
            day: Date of the slot
            ignoring: Assignment uids to disregard in the double-booking check

        Returns:
            True if the worker can take an assignment that day
        """
        return not self.reasons(worker_id, day, ignoring)

    def reasons(self, worker_id: int, day: date, ignoring: Iterable[str] = ()) -> List[str]:
        """List every reason the worker is unavailable (empty when available)."""
        worker = self.roster.get(worker_id)
        if worker is None:
            return ["unknown_worker"]

        reasons = []
        if not worker.is_active:
            reasons.append("inactive")

        record = self.leave.covering(worker_id, day)
        if record is not None and record.hours_per_day >= BLOCKING_LEAVE_HOURS:
            reasons.append(f"on_leave:{record.category}")

        booked = self.book.assignment_of_worker_on(worker_id, day, ignoring=set(ignoring))
        if booked is not None:
            reasons.append(f"already_assigned:{booked.assignment_type_code}")

        return reasons
