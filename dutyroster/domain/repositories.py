"""Repository classes for data access."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, sessionmaker

from .db import DEFAULT_DB_URL, create_db_engine
from .models import (
    Assignment,
    AssignmentType,
    Base,
    CompTimeEntry,
    EquityCount,
    LeaveRecord,
    Rule,
    SwapRequest,
    SwapState,
    Worker,
)

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Manages database connection and session factory."""

    def __init__(self, db_url: str = DEFAULT_DB_URL):
        self.engine = create_db_engine(db_url)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_tables(self):
        """Create all tables if they don't exist."""
        Base.metadata.create_all(self.engine)

    def drop_tables(self):
        """Drop all tables (use with caution!)."""
        Base.metadata.drop_all(self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()


class WorkerRepository:
    """Repository for the worker directory."""

    @staticmethod
    def get_all(session: Session) -> List[Worker]:
        """Get all workers, active or not."""
        return session.query(Worker).order_by(Worker.worker_id).all()

    @staticmethod
    def get_by_id(session: Session, worker_id: int) -> Optional[Worker]:
        return session.query(Worker).filter(Worker.worker_id == worker_id).first()

    @staticmethod
    def get_active(session: Session) -> List[Worker]:
        return session.query(Worker).filter(Worker.is_active.is_(True)).order_by(Worker.worker_id).all()

    @staticmethod
    def get_seniors(session: Session) -> List[Worker]:
        return (
            session.query(Worker)
            .filter(Worker.is_senior.is_(True), Worker.is_active.is_(True))
            .order_by(Worker.worker_id)
            .all()
        )

    @staticmethod
    def search_by_name(session: Session, text: str) -> List[Worker]:
        """Case-insensitive match on first name, last name or employee code."""
        pattern = f"%{text.lower()}%"
        return (
            session.query(Worker)
            .filter(
                or_(
                    func.lower(Worker.first_name).like(pattern),
                    func.lower(Worker.last_name).like(pattern),
                    func.lower(Worker.employee_code).like(pattern),
                )
            )
            .order_by(Worker.last_name, Worker.first_name)
            .all()
        )

    @staticmethod
    def create(session: Session, worker: Worker) -> Worker:
        session.add(worker)
        session.commit()
        session.refresh(worker)
        return worker

    @staticmethod
    def bulk_create(session: Session, workers: List[Worker]) -> None:
        session.add_all(workers)
        session.commit()

    @staticmethod
    def set_active(session: Session, worker_id: int, active: bool) -> Optional[Worker]:
        """Activate or deactivate a worker. Returns None if the worker is unknown."""
        worker = WorkerRepository.get_by_id(session, worker_id)
        if worker is None:
            return None
        worker.is_active = active
        session.commit()
        return worker

    @staticmethod
    def set_senior(session: Session, worker_id: int, senior: bool) -> Optional[Worker]:
        worker = WorkerRepository.get_by_id(session, worker_id)
        if worker is None:
            return None
        worker.is_senior = senior
        session.commit()
        return worker

    @staticmethod
    def statistics(session: Session) -> Dict[str, int]:
        """Directory counts: total, active, inactive and senior workers."""
        total = session.query(func.count(Worker.worker_id)).scalar() or 0
        active = session.query(func.count(Worker.worker_id)).filter(Worker.is_active.is_(True)).scalar() or 0
        senior = session.query(func.count(Worker.worker_id)).filter(Worker.is_senior.is_(True)).scalar() or 0
        return {"total": total, "active": active, "inactive": total - active, "senior": senior}


class AssignmentTypeRepository:
    """Repository for assignment types."""

    @staticmethod
    def get_all(session: Session) -> List[AssignmentType]:
        return session.query(AssignmentType).order_by(AssignmentType.priority, AssignmentType.code).all()

    @staticmethod
    def get_by_code(session: Session, code: str) -> Optional[AssignmentType]:
        return session.query(AssignmentType).filter(AssignmentType.code == code).first()

    @staticmethod
    def bulk_create(session: Session, types: List[AssignmentType]) -> None:
        session.add_all(types)
        session.commit()


class RuleRepository:
    """Repository for rule hierarchies."""

    @staticmethod
    def get_all(session: Session) -> List[Rule]:
        """Get all rules in insertion order."""
        return session.query(Rule).order_by(Rule.seq, Rule.id).all()

    @staticmethod
    def get_by_type(session: Session, type_code: str) -> List[Rule]:
        return (
            session.query(Rule)
            .filter(Rule.assignment_type_code == type_code)
            .order_by(Rule.priority, Rule.seq, Rule.id)
            .all()
        )

    @staticmethod
    def bulk_create(session: Session, rules: List[Rule]) -> None:
        start = session.query(func.max(Rule.seq)).scalar()
        start = -1 if start is None else start
        for offset, rule in enumerate(rules, start=1):
            if not rule.seq:
                rule.seq = start + offset
        session.add_all(rules)
        session.commit()


class LeaveRepository:
    """Repository for leave records."""

    @staticmethod
    def get_approved(session: Session) -> List[LeaveRecord]:
        return (
            session.query(LeaveRecord)
            .filter(LeaveRecord.approved.is_(True))
            .order_by(LeaveRecord.worker_id, LeaveRecord.start_date)
            .all()
        )

    @staticmethod
    def get_by_worker(session: Session, worker_id: int) -> List[LeaveRecord]:
        return (
            session.query(LeaveRecord)
            .filter(LeaveRecord.worker_id == worker_id)
            .order_by(LeaveRecord.start_date)
            .all()
        )

    @staticmethod
    def bulk_create(session: Session, records: List[LeaveRecord]) -> None:
        session.add_all(records)
        session.commit()


class AssignmentRepository:
    """Repository for assignments, active and superseded."""

    @staticmethod
    def get_all(session: Session) -> List[Assignment]:
        return session.query(Assignment).order_by(Assignment.date, Assignment.id).all()

    @staticmethod
    def get_since(session: Session, since: Optional[date] = None) -> List[Assignment]:
        """Get every assignment on or after a date (all of them when since is None)."""
        query = session.query(Assignment)
        if since is not None:
            query = query.filter(Assignment.date >= since)
        return query.order_by(Assignment.date, Assignment.id).all()

    @staticmethod
    def get_active_between(session: Session, start: date, end: date) -> List[Assignment]:
        """Get the active assignments of an inclusive date range."""
        return (
            session.query(Assignment)
            .filter(Assignment.date >= start, Assignment.date <= end, Assignment.superseded_at.is_(None))
            .order_by(Assignment.date, Assignment.assignment_type_code, Assignment.slot)
            .all()
        )

    @staticmethod
    def get_by_uid(session: Session, uid: str) -> Optional[Assignment]:
        return session.query(Assignment).filter(Assignment.uid == uid).first()

    @staticmethod
    def get_by_run(session: Session, run_id: str) -> List[Assignment]:
        return session.query(Assignment).filter(Assignment.run_id == run_id).all()

    @staticmethod
    def get_by_worker(session: Session, worker_id: int, active_only: bool = True) -> List[Assignment]:
        query = session.query(Assignment).filter(Assignment.worker_id == worker_id)
        if active_only:
            query = query.filter(Assignment.superseded_at.is_(None))
        return query.order_by(Assignment.date).all()

    @staticmethod
    def bulk_create(session: Session, assignments: List[Assignment]) -> None:
        session.add_all(assignments)
        session.commit()


class EquityRepository:
    """Repository for year-to-date equity counts."""

    @staticmethod
    def get_all(session: Session) -> List[EquityCount]:
        return session.query(EquityCount).all()

    @staticmethod
    def get_by_year(session: Session, year: int) -> List[EquityCount]:
        return (
            session.query(EquityCount)
            .filter(EquityCount.year == year)
            .order_by(EquityCount.worker_id, EquityCount.assignment_type_code)
            .all()
        )

    @staticmethod
    def apply_deltas(session: Session, deltas: Iterable) -> None:
        """
        Upsert counts from equity deltas. Does not commit.

        Args:
            session: Database session
            deltas: EquityDelta objects (worker_id, assignment_type_code, year, delta)
        """
        totals: Dict[tuple, int] = defaultdict(int)
        for d in deltas:
            totals[(d.worker_id, d.assignment_type_code, d.year)] += d.delta

        for (worker_id, type_code, year), delta in totals.items():
            if delta == 0:
                continue
            row = (
                session.query(EquityCount)
                .filter(
                    EquityCount.worker_id == worker_id,
                    EquityCount.assignment_type_code == type_code,
                    EquityCount.year == year,
                )
                .first()
            )
            if row is None:
                row = EquityCount(worker_id=worker_id, assignment_type_code=type_code, year=year, count=0)
                session.add(row)
            row.count = (row.count or 0) + delta
            if row.count < 0:
                logger.warning("Equity count for worker %s on %s/%s went negative", worker_id, type_code, year)


class CompTimeRepository:
    """Repository for the comp time ledger."""

    @staticmethod
    def get_by_worker(session: Session, worker_id: int) -> List[CompTimeEntry]:
        return (
            session.query(CompTimeEntry)
            .filter(CompTimeEntry.worker_id == worker_id)
            .order_by(CompTimeEntry.created_at, CompTimeEntry.id)
            .all()
        )

    @staticmethod
    def balances(session: Session) -> Dict[int, float]:
        """Net hours (earned - used) per worker."""
        rows = (
            session.query(
                CompTimeEntry.worker_id,
                func.sum(CompTimeEntry.earned_hours - CompTimeEntry.used_hours),
            )
            .group_by(CompTimeEntry.worker_id)
            .all()
        )
        return {worker_id: float(total or 0.0) for worker_id, total in rows}

    @staticmethod
    def add_entries(session: Session, entries: Iterable[CompTimeEntry]) -> None:
        """Stage ledger entries. Does not commit."""
        session.add_all(list(entries))


class SwapRepository:
    """Repository for swap requests."""

    @staticmethod
    def get_all(session: Session) -> List[SwapRequest]:
        return session.query(SwapRequest).order_by(SwapRequest.created_at, SwapRequest.id).all()

    @staticmethod
    def get_pending(session: Session) -> List[SwapRequest]:
        return session.query(SwapRequest).filter(SwapRequest.state == SwapState.PENDING).all()

    @staticmethod
    def get_by_uid(session: Session, uid: str) -> Optional[SwapRequest]:
        return session.query(SwapRequest).filter(SwapRequest.uid == uid).first()

    @staticmethod
    def create(session: Session, request: SwapRequest) -> SwapRequest:
        session.add(request)
        session.commit()
        return request
