from __future__ import annotations

from collections import Counter
from typing import Iterable, List, Optional

from dutyroster.domain.models import Assignment, AssignmentType, LeaveRecord, Rule, Worker
from dutyroster.io.export_csv import assignments_frame, gaps_frame
from dutyroster.services.availability import BLOCKING_LEAVE_HOURS
from dutyroster.services.rules import requires_senior


def validate_roster(
    assignments: Iterable[Assignment],
    workers: Iterable[Worker],
    types: Iterable[AssignmentType],
    tracker=None,
    rules: Iterable[Rule] = (),
    leave: Iterable[LeaveRecord] = (),
) -> List[str]:
    """
    Check a committed roster after the fact.

    Args:
        assignments: Assignments to check (superseded rows are ignored, except
            by the equity check)
        workers: Worker snapshot
        types: Assignment types
        tracker: Optional EquityTracker whose deltas must sum to the active
            filled assignments
        rules: Configured rules, used to find senior-only types
        leave: Approved leave records

    Returns:
        List of problems, empty when the roster is consistent
    """
    assignments = list(assignments)
    roster = {w.worker_id: w for w in workers}
    type_map = {t.code: t for t in types}
    rules = list(rules)
    problems = []

    active = [a for a in assignments if a.is_active]

    # Referential integrity
    for a in active:
        if a.assignment_type_code not in type_map:
            problems.append(f"{a.date} slot {a.assignment_type_code}#{a.slot}: unknown assignment type")
        elif not 0 <= a.slot < type_map[a.assignment_type_code].slots_per_day:
            problems.append(f"{a.date} slot {a.assignment_type_code}#{a.slot}: slot index out of range")
        if a.is_filled and a.worker_id not in roster:
            problems.append(f"{a.date} {a.assignment_type_code}#{a.slot}: unknown worker {a.worker_id}")

    # One active assignment per slot
    for key, n in Counter(a.key for a in active).items():
        if n > 1:
            problems.append(f"{key[0]} {key[1]}#{key[2]}: {n} active assignments")

    # One assignment per worker per day
    for (worker_id, day), n in Counter((a.worker_id, a.date) for a in active if a.is_filled).items():
        if n > 1:
            problems.append(f"Worker {worker_id} holds {n} assignments on {day}")

    # Senior-only types
    senior_types = {
        code for code, t in type_map.items()
        if requires_senior(t, [r for r in rules if r.assignment_type_code == code])
    }
    for a in active:
        worker = roster.get(a.worker_id) if a.is_filled else None
        if worker is not None and a.assignment_type_code in senior_types and not worker.is_senior:
            problems.append(
                f"{a.date} {a.assignment_type_code}#{a.slot}: requires a senior worker, worker {worker.worker_id} is not"
            )

    # Leave
    by_worker = {}
    for record in leave:
        if record.approved and record.hours_per_day >= BLOCKING_LEAVE_HOURS:
            by_worker.setdefault(record.worker_id, []).append(record)
    for a in active:
        for record in by_worker.get(a.worker_id, ()):
            if record.covers(a.date):
                problems.append(f"Worker {a.worker_id} is assigned on {a.date} while on {record.category} leave")

    if tracker is not None:
        problems.extend(tracker.check_invariant(assignments))

    return problems


def summarize_report(report, workers: Optional[Iterable[Worker]] = None) -> str:
    """Render coverage per day and type, the gap report and per-worker counts."""
    df = assignments_frame(report.assignments, workers or ())
    if df.empty:
        return "No assignments."

    filled = df[df["worker_id"].notna()]
    coverage = filled.groupby(["date", "assignment_type_code"]).size().unstack(fill_value=0)
    per_worker = filled.groupby(["worker_id", "worker_name"]).size().sort_values(ascending=False)

    lines = [f"Run {report.run_id}: {report.horizon_start}..{report.horizon_end} ({report.state})"]
    lines.append("")
    lines.append("Coverage per day per assignment type:")
    lines.append(coverage.to_string() if not coverage.empty else "(none)")
    lines.append("")
    lines.append("Assignments per worker:")
    lines.append(per_worker.to_string() if not per_worker.empty else "(none)")
    lines.append("")
    gaps = gaps_frame(report.unfilled)
    lines.append(f"Unfilled slots: {len(gaps)}")
    if not gaps.empty:
        lines.append(gaps.to_string(index=False))
    return "\n".join(lines)
