"""CSV export utilities for rosters, gap reports and equity counts."""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Optional

import pandas as pd
from sqlalchemy.orm import Session

from dutyroster.domain.repositories import AssignmentRepository, EquityRepository, WorkerRepository

logger = logging.getLogger(__name__)

ASSIGNMENT_COLUMNS = [
    "date",
    "assignment_type_code",
    "slot",
    "worker_id",
    "worker_name",
    "source",
    "rule_kind",
    "run_id",
    "uid",
]
GAP_COLUMNS = ["date", "assignment_type_code", "slot", "reasons"]
EQUITY_COLUMNS = ["worker_id", "worker_name", "assignment_type_code", "year", "count"]


def assignments_frame(assignments, workers=()) -> pd.DataFrame:
    """Tabulate assignments, unfilled placeholders included (worker_id empty)."""
    names = {w.worker_id: w.full_name for w in workers}
    rows = [
        {
            "date": a.date.isoformat(),
            "assignment_type_code": a.assignment_type_code,
            "slot": a.slot,
            "worker_id": a.worker_id,
            "worker_name": names.get(a.worker_id, ""),
            "source": a.source,
            "rule_kind": a.rule_kind,
            "run_id": a.run_id,
            "uid": a.uid,
        }
        for a in assignments
    ]
    df = pd.DataFrame(rows, columns=ASSIGNMENT_COLUMNS)
    df["worker_id"] = df["worker_id"].astype("Int64")
    return df.sort_values(["date", "assignment_type_code", "slot"]).reset_index(drop=True)


def gaps_frame(unfilled) -> pd.DataFrame:
    rows = [
        {
            "date": gap.date.isoformat(),
            "assignment_type_code": gap.assignment_type_code,
            "slot": gap.slot,
            "reasons": "; ".join(gap.reasons),
        }
        for gap in unfilled
    ]
    return pd.DataFrame(rows, columns=GAP_COLUMNS)


def export_assignments_csv(
    session: Session,
    csv_path: str | Path,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> int:
    """
    Export active assignments to CSV.

    Args:
        session: Database session
        csv_path: Output path
        start: First date to export (all dates when both bounds are None)
        end: Last date to export (defaults to start)

    Returns:
        Number of rows exported
    """
    if start is None and end is None:
        assignments = [a for a in AssignmentRepository.get_all(session) if a.is_active]
    else:
        assignments = AssignmentRepository.get_active_between(session, start or end, end or start)

    df = assignments_frame(assignments, WorkerRepository.get_all(session))
    df.to_csv(csv_path, index=False)
    logger.info("Exported %d assignments to %s", len(df), csv_path)
    return len(df)


def export_gap_report_csv(report, csv_path: str | Path) -> int:
    """Export the unfilled slots of a generation report."""
    df = gaps_frame(report.unfilled)
    df.to_csv(csv_path, index=False)
    logger.info("Exported %d unfilled slots to %s", len(df), csv_path)
    return len(df)


def export_equity_csv(session: Session, csv_path: str | Path, year: Optional[int] = None) -> int:
    """Export year-to-date equity counts, one row per worker and type."""
    counts = EquityRepository.get_by_year(session, year) if year is not None else EquityRepository.get_all(session)
    names = {w.worker_id: w.full_name for w in WorkerRepository.get_all(session)}
    rows = [
        {
            "worker_id": c.worker_id,
            "worker_name": names.get(c.worker_id, ""),
            "assignment_type_code": c.assignment_type_code,
            "year": c.year,
            "count": c.count,
        }
        for c in counts
    ]
    df = pd.DataFrame(rows, columns=EQUITY_COLUMNS).sort_values(["year", "assignment_type_code", "worker_id"])
    df.to_csv(csv_path, index=False)
    logger.info("Exported %d equity counts to %s", len(df), csv_path)
    return len(df)


def export_workers_csv(session: Session, csv_path: str | Path) -> int:
    """Export the worker directory to CSV."""
    rows = [
        {
            "worker_id": w.worker_id,
            "first_name": w.first_name,
            "last_name": w.last_name,
            "employee_code": w.employee_code,
            "is_senior": w.is_senior,
            "is_active": w.is_active,
            "hire_date": w.hire_date.isoformat() if w.hire_date else None,
            "eligible_types": w.eligible_types,
        }
        for w in WorkerRepository.get_all(session)
    ]
    df = pd.DataFrame(rows)
    df.to_csv(csv_path, index=False)
    logger.info("Exported %d workers to %s", len(df), csv_path)
    return len(df)
