"""SQLAlchemy models for the duty roster.

The scheduling core works on these objects without a session; the storage
adapter persists them through the repositories.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import List, Optional, Set, Tuple
from uuid import uuid4

from sqlalchemy import Boolean, Column, Date, DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uid() -> str:
    return uuid4().hex


def _split_codes(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(";") if part.strip()]


def _join_codes(values) -> str:
    return ";".join(str(v) for v in values)


class Category:
    PRIORITY_A = "PriorityA"
    PRIORITY_B = "PriorityB"
    PROCESSING_CENTER = "ProcessingCenter"
    EVENING = "Evening"
    REMOTE = "Remote"
    FRONT_DESK_AM = "FrontDeskAM"
    FRONT_DESK_PM = "FrontDeskPM"

    ALL = (PRIORITY_A, PRIORITY_B, PROCESSING_CENTER, EVENING, REMOTE, FRONT_DESK_AM, FRONT_DESK_PM)


class RuleKind:
    PERMANENT = "PERMANENT"
    PREFERRED_LIST = "PREFERRED_LIST"
    SENIOR_REQUIRED = "SENIOR_REQUIRED"
    GENERAL_POOL = "GENERAL_POOL"

    ALL = (PERMANENT, PREFERRED_LIST, SENIOR_REQUIRED, GENERAL_POOL)


class LeaveCategory:
    VACATION = "VACATION"
    SICK = "SICK"
    PERSONAL = "PERSONAL"
    WELLNESS = "WELLNESS"
    COMP_TIME_USAGE = "COMP_TIME_USAGE"
    PROTECTED_FMLA = "PROTECTED_FMLA"

    ALL = (VACATION, SICK, PERSONAL, WELLNESS, COMP_TIME_USAGE, PROTECTED_FMLA)


class AssignmentSource:
    RULE_ENGINE = "RULE_ENGINE"
    MANUAL_OVERRIDE = "MANUAL_OVERRIDE"
    SWAP = "SWAP"


class SwapState:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"

    TERMINAL = (APPROVED, REJECTED, CANCELLED)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class Worker(Base):
    """Read snapshot of a worker from the worker directory."""

    __tablename__ = "workers"

    worker_id = Column(Integer, primary_key=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    employee_code = Column(String(40), nullable=True, unique=True)
    email = Column(String(255), nullable=True, unique=True)
    is_senior = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    hire_date = Column(Date, nullable=True)
    eligible_types = Column(String(500), nullable=True)  # Semicolon-separated type codes, empty = all

    def __init__(self, **kwargs):
        kwargs.setdefault("is_senior", False)
        kwargs.setdefault("is_active", True)
        eligibilities = kwargs.pop("eligibilities", None)
        if eligibilities is not None:
            kwargs["eligible_types"] = _join_codes(sorted(eligibilities))
        super().__init__(**kwargs)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def eligibilities(self) -> Set[str]:
        return set(_split_codes(self.eligible_types))

    def is_eligible_for(self, type_code: str) -> bool:
        codes = self.eligibilities
        return not codes or type_code in codes

    def __repr__(self) -> str:
        return f"<Worker(id={self.worker_id}, name='{self.full_name}', senior={self.is_senior}, active={self.is_active})>"


class AssignmentType(Base):
    """A category of duty with its own slot count and rule set."""

    __tablename__ = "assignment_types"

    code = Column(String(40), primary_key=True)
    category = Column(String(30), nullable=False)
    requires_senior = Column(Boolean, nullable=False, default=False)
    slots_per_day = Column(Integer, nullable=False, default=1)
    priority = Column(Integer, nullable=False, default=100)  # Lower is scheduled first within a day
    weekdays = Column(String(20), nullable=False, default="0;1;2;3;4;5;6")
    comp_time_qualifying = Column(Boolean, nullable=False, default=True)

    def __init__(self, **kwargs):
        kwargs.setdefault("requires_senior", False)
        kwargs.setdefault("slots_per_day", 1)
        kwargs.setdefault("priority", 100)
        kwargs.setdefault("comp_time_qualifying", True)
        days = kwargs.pop("staffed_weekdays", None)
        if days is not None:
            kwargs["weekdays"] = _join_codes(sorted(days))
        kwargs.setdefault("weekdays", "0;1;2;3;4;5;6")
        super().__init__(**kwargs)

    @property
    def staffed_weekdays(self) -> Set[int]:
        return {int(d) for d in _split_codes(self.weekdays)}

    def is_staffed_on(self, day: date) -> bool:
        return day.weekday() in self.staffed_weekdays

    def __repr__(self) -> str:
        return f"<AssignmentType(code='{self.code}', category='{self.category}', slots={self.slots_per_day})>"


class Rule(Base):
    """One tier of an assignment type's rule hierarchy."""

    __tablename__ = "rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    assignment_type_code = Column(String(40), nullable=False, index=True)
    kind = Column(String(20), nullable=False)
    priority = Column(Integer, nullable=False, default=0)
    seq = Column(Integer, nullable=False, default=0)  # Insertion order, breaks priority ties
    worker_id = Column(Integer, nullable=True)  # PERMANENT
    worker_ids = Column(String(500), nullable=True)  # PREFERRED_LIST, ordered, semicolon-separated
    effective_from = Column(Date, nullable=True)
    effective_to = Column(Date, nullable=True)

    def __init__(self, **kwargs):
        kwargs.setdefault("priority", 0)
        kwargs.setdefault("seq", 0)
        preferred = kwargs.pop("preferred", None)
        if preferred is not None:
            kwargs["worker_ids"] = _join_codes(preferred)
        super().__init__(**kwargs)

    @property
    def preferred_ids(self) -> List[int]:
        return [int(v) for v in _split_codes(self.worker_ids)]

    def is_effective_on(self, day: date) -> bool:
        if self.effective_from is not None and day < self.effective_from:
            return False
        if self.effective_to is not None and day > self.effective_to:
            return False
        return True

    def __repr__(self) -> str:
        return f"<Rule(type='{self.assignment_type_code}', kind='{self.kind}', priority={self.priority})>"


class LeaveRecord(Base):
    """Approved (or pending) leave for a worker over an inclusive date range."""

    __tablename__ = "leave_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    worker_id = Column(Integer, nullable=False, index=True)
    category = Column(String(20), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    hours_per_day = Column(Integer, nullable=False, default=8)  # 4 = half day, 8 = full day
    is_protected = Column(Boolean, nullable=False, default=False)
    approved = Column(Boolean, nullable=False, default=True)

    def __init__(self, **kwargs):
        kwargs.setdefault("hours_per_day", 8)
        kwargs.setdefault("is_protected", kwargs.get("category") == LeaveCategory.PROTECTED_FMLA)
        kwargs.setdefault("approved", True)
        super().__init__(**kwargs)

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def overlaps(self, other: "LeaveRecord") -> bool:
        return self.start_date <= other.end_date and other.start_date <= self.end_date

    def __repr__(self) -> str:
        return (
            f"<LeaveRecord(worker={self.worker_id}, category='{self.category}', "
            f"{self.start_date}..{self.end_date}, hours={self.hours_per_day})>"
        )


class Assignment(Base):
    """One slot of an assignment type on a date. worker_id None means unfilled."""

    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    uid = Column(String(32), nullable=False, unique=True, default=new_uid)
    date = Column(Date, nullable=False, index=True)
    assignment_type_code = Column(String(40), nullable=False)
    slot = Column(Integer, nullable=False, default=0)
    worker_id = Column(Integer, nullable=True, index=True)
    source = Column(String(20), nullable=False, default=AssignmentSource.RULE_ENGINE)
    rule_kind = Column(String(20), nullable=True)  # Tier that produced the candidate set
    run_id = Column(String(32), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    superseded_at = Column(DateTime(timezone=True), nullable=True)
    superseded_by = Column(String(32), nullable=True)

    def __init__(self, **kwargs):
        kwargs.setdefault("uid", new_uid())
        kwargs.setdefault("slot", 0)
        kwargs.setdefault("source", AssignmentSource.RULE_ENGINE)
        kwargs.setdefault("created_at", utcnow())
        super().__init__(**kwargs)

    @property
    def key(self) -> Tuple[date, str, int]:
        return (self.date, self.assignment_type_code, self.slot)

    @property
    def is_active(self) -> bool:
        return self.superseded_at is None

    @property
    def is_filled(self) -> bool:
        return self.worker_id is not None

    def __repr__(self) -> str:
        return (
            f"<Assignment({self.date} {self.assignment_type_code}#{self.slot}, "
            f"worker={self.worker_id}, source={self.source}, active={self.is_active})>"
        )


class EquityCount(Base):
    """Year-to-date count of completed assignments per worker and type."""

    __tablename__ = "equity_counts"
    __table_args__ = (UniqueConstraint("worker_id", "assignment_type_code", "year", name="uq_equity_key"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    worker_id = Column(Integer, nullable=False)
    assignment_type_code = Column(String(40), nullable=False)
    year = Column(Integer, nullable=False)
    count = Column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<EquityCount(worker={self.worker_id}, type='{self.assignment_type_code}', year={self.year}, count={self.count})>"


class CompTimeEntry(Base):
    """One accrual or usage line of the comp time ledger."""

    __tablename__ = "comp_time_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    worker_id = Column(Integer, nullable=False, index=True)
    earned_hours = Column(Float, nullable=False, default=0.0)
    used_hours = Column(Float, nullable=False, default=0.0)
    assignment_uid = Column(String(32), nullable=True)
    reason = Column(String(40), nullable=False, default="accrual")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __init__(self, **kwargs):
        kwargs.setdefault("earned_hours", 0.0)
        kwargs.setdefault("used_hours", 0.0)
        kwargs.setdefault("reason", "accrual")
        kwargs.setdefault("created_at", utcnow())
        super().__init__(**kwargs)

    @property
    def net_hours(self) -> float:
        return self.earned_hours - self.used_hours

    def __repr__(self) -> str:
        return f"<CompTimeEntry(worker={self.worker_id}, earned={self.earned_hours}, used={self.used_hours}, reason='{self.reason}')>"


class SwapRequest(Base):
    """Request to hand over (or release) a committed assignment."""

    __tablename__ = "swap_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    uid = Column(String(32), nullable=False, unique=True, default=new_uid)
    requesting_worker_id = Column(Integer, nullable=False)
    assignment_uid = Column(String(32), nullable=False)
    target_worker_id = Column(Integer, nullable=True)  # None = release
    counter_assignment_uid = Column(String(32), nullable=True)
    state = Column(String(20), nullable=False, default=SwapState.PENDING)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    def __init__(self, **kwargs):
        kwargs.setdefault("uid", new_uid())
        kwargs.setdefault("state", SwapState.PENDING)
        kwargs.setdefault("created_at", utcnow())
        super().__init__(**kwargs)

    @property
    def is_release(self) -> bool:
        return self.target_worker_id is None

    def __repr__(self) -> str:
        target = "release" if self.is_release else self.target_worker_id
        return f"<SwapRequest(uid={self.uid}, from={self.requesting_worker_id}, to={target}, state={self.state})>"
