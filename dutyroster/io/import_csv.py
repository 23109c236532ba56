"""CSV import utilities to load data into database."""

from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd
from sqlalchemy.orm import Session

from dutyroster.domain.models import AssignmentType, LeaveRecord, Rule, Worker
from dutyroster.domain.repositories import RuleRepository

logger = logging.getLogger(__name__)

TRUTHY = ["TRUE", "T", "1", "YES", "Y"]

# Semicolon lists stay strings even when a single value looks numeric
LIST_COLUMNS = {"eligible_types": str, "worker_ids": str, "weekdays": str}


def _read(csv_path: str | Path) -> pd.DataFrame:
    df = pd.read_csv(csv_path, dtype=LIST_COLUMNS)
    # Normalize column names
    df.columns = df.columns.str.lower().str.strip()
    return df


def _flag(row, column: str, default: bool) -> bool:
    value = row.get(column)
    if value is None or pd.isna(value):
        return default
    return str(value).strip().upper() in TRUTHY


def _text(row, column: str) -> str | None:
    value = row.get(column)
    if value is None or pd.isna(value):
        return None
    value = str(value).strip()
    return value or None


def _int(row, column: str) -> int | None:
    value = row.get(column)
    if value is None or pd.isna(value):
        return None
    return int(value)


def _date(row, column: str):
    value = row.get(column)
    if value is None or pd.isna(value):
        return None
    return pd.to_datetime(value).date()


def import_workers_csv(session: Session, csv_path: str | Path) -> int:
    """
    Import workers from CSV into database.

    Columns: worker_id, first_name, last_name and optionally employee_code,
    email, is_senior, is_active, hire_date, eligible_types (semicolon-separated
    type codes, empty for all types).

    Args:
        session: Database session
        csv_path: Path to workers CSV

    Returns:
        Number of workers imported
    """
    df = _read(csv_path)

    workers = []
    for _, row in df.iterrows():
        worker = Worker(
            worker_id=int(row["worker_id"]),
            first_name=str(row["first_name"]).strip(),
            last_name=str(row["last_name"]).strip(),
            employee_code=_text(row, "employee_code"),
            email=_text(row, "email"),
            is_senior=_flag(row, "is_senior", False),
            is_active=_flag(row, "is_active", True),
            hire_date=_date(row, "hire_date"),
            eligible_types=_text(row, "eligible_types"),
        )
        workers.append(worker)

    session.add_all(workers)
    session.commit()

    logger.info("Imported %d workers from %s", len(workers), csv_path)
    return len(workers)


def import_assignment_types_csv(session: Session, csv_path: str | Path) -> int:
    """
    Import assignment types from CSV into database.

    Columns: code, category and optionally requires_senior, slots_per_day,
    priority, weekdays (semicolon-separated, Monday = 0), comp_time_qualifying.

    Returns:
        Number of assignment types imported
    """
    df = _read(csv_path)

    types = []
    for _, row in df.iterrows():
        kwargs = {
            "code": str(row["code"]).strip(),
            "category": str(row["category"]).strip(),
            "requires_senior": _flag(row, "requires_senior", False),
            "comp_time_qualifying": _flag(row, "comp_time_qualifying", True),
        }
        for column in ("slots_per_day", "priority"):
            value = _int(row, column)
            if value is not None:
                kwargs[column] = value
        weekdays = _text(row, "weekdays")
        if weekdays:
            kwargs["weekdays"] = weekdays
        types.append(AssignmentType(**kwargs))

    session.add_all(types)
    session.commit()

    logger.info("Imported %d assignment types from %s", len(types), csv_path)
    return len(types)


def import_rules_csv(session: Session, csv_path: str | Path) -> int:
    """
    Import rules from CSV into database, keeping file order as insertion order.

    Columns: assignment_type_code, kind and optionally priority, worker_id
    (PERMANENT), worker_ids (PREFERRED_LIST, ranked, semicolon-separated),
    effective_from, effective_to.

    Returns:
        Number of rules imported
    """
    df = _read(csv_path)
    df["kind"] = df["kind"].str.upper().str.strip()

    rules = []
    for _, row in df.iterrows():
        rule = Rule(
            assignment_type_code=str(row["assignment_type_code"]).strip(),
            kind=str(row["kind"]),
            priority=_int(row, "priority") or 0,
            worker_id=_int(row, "worker_id"),
            worker_ids=_text(row, "worker_ids"),
            effective_from=_date(row, "effective_from"),
            effective_to=_date(row, "effective_to"),
        )
        rules.append(rule)

    RuleRepository.bulk_create(session, rules)

    logger.info("Imported %d rules from %s", len(rules), csv_path)
    return len(rules)


def import_leave_csv(session: Session, csv_path: str | Path) -> int:
    """
    Import leave records from CSV into database.

    Columns: worker_id, category, start_date, end_date and optionally
    hours_per_day (4 or 8), approved.

    Returns:
        Number of leave records imported
    """
    df = _read(csv_path)
    df["category"] = df["category"].str.upper().str.strip()
    df["start_date"] = pd.to_datetime(df["start_date"]).dt.date
    df["end_date"] = pd.to_datetime(df["end_date"]).dt.date

    records = []
    for _, row in df.iterrows():
        record = LeaveRecord(
            worker_id=int(row["worker_id"]),
            category=str(row["category"]),
            start_date=row["start_date"],
            end_date=row["end_date"],
            hours_per_day=_int(row, "hours_per_day") or 8,
            approved=_flag(row, "approved", True),
        )
        records.append(record)

    session.add_all(records)
    session.commit()

    logger.info("Imported %d leave records from %s", len(records), csv_path)
    return len(records)
