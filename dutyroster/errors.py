"""Error taxonomy for the scheduling core."""

from __future__ import annotations

from datetime import date
from typing import List, Optional


class SchedulingError(Exception):
    """Base class for every error raised by the scheduling core."""


class ValidationError(SchedulingError):
    """Malformed configuration or snapshot, reported before any commit."""


class UnfillableSlot(SchedulingError):
    """
    No rule tier produced a candidate for a slot.

    Recoverable: the generator catches it and records the slot in the gap report.
    """

    def __init__(self, day: date, type_code: str, slot: int, reasons: Optional[List[str]] = None):
        self.day = day
        self.type_code = type_code
        self.slot = slot
        self.reasons = list(reasons or [])
        detail = "; ".join(self.reasons) if self.reasons else "no candidates"
        super().__init__(f"Slot {type_code}#{slot} on {day.isoformat()} cannot be filled: {detail}")


class InvalidOverride(SchedulingError):
    """Manual override rejected (double booking, unknown or unavailable worker)."""


class InsufficientCompTime(SchedulingError):
    """Comp time debit would drive a worker's balance below zero."""

    def __init__(self, worker_id: int, requested: float, balance: float):
        self.worker_id = worker_id
        self.requested = requested
        self.balance = balance
        super().__init__(
            f"Worker {worker_id} has {balance:.1f}h comp time, cannot debit {requested:.1f}h"
        )


class InconsistentEquityState(SchedulingError):
    """A reversal could not find the matching prior equity delta. Fatal for the run."""


class InvalidSwap(SchedulingError):
    """Swap request is malformed or no longer applicable."""
