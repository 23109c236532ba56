"""Command-line interface for the duty roster scheduler."""

from __future__ import annotations

import argparse
import logging
from datetime import date
from typing import Tuple

from sqlalchemy.orm import Session

from dutyroster.config import SchedulerConfig, load_config
from dutyroster.domain.db import get_session, init_database, reset_database
from dutyroster.domain.repositories import (
    AssignmentRepository,
    CompTimeRepository,
    LeaveRepository,
    SwapRepository,
    WorkerRepository,
)
from dutyroster.engine.orchestrator import build_horizon_schedule, load_core, persist_mutation
from dutyroster.io.export_csv import (
    export_assignments_csv,
    export_equity_csv,
    export_gap_report_csv,
    export_workers_csv,
)
from dutyroster.io.import_csv import (
    import_assignment_types_csv,
    import_leave_csv,
    import_rules_csv,
    import_workers_csv,
)
from dutyroster.validator import summarize_report, validate_roster

logger = logging.getLogger(__name__)


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid date {value!r}, expected YYYY-MM-DD") from e


def _open(args: argparse.Namespace) -> Tuple[SchedulerConfig, Session]:
    """Load config, configure logging and open a session."""
    cfg = load_config(args.config)
    logging.basicConfig(level=cfg.log_level, format="%(levelname)s %(name)s: %(message)s")
    db_url = args.db or cfg.database_url
    return cfg, get_session(db_url)


def _cmd_init_db(args: argparse.Namespace) -> None:
    """Initialize the database."""
    cfg = load_config(args.config)
    db_url = args.db or cfg.database_url
    if args.reset:
        reset_database(db_url)
        print(f"[OK] Database reset: {db_url}")
    else:
        init_database(db_url)
        print(f"[OK] Database initialized: {db_url}")


def _cmd_import_csv(args: argparse.Namespace) -> None:
    """Import CSV data into database."""
    _, session = _open(args)

    try:
        if args.workers:
            count = import_workers_csv(session, args.workers)
            print(f"[OK] Imported {count} workers")

        if args.types:
            count = import_assignment_types_csv(session, args.types)
            print(f"[OK] Imported {count} assignment types")

        if args.rules:
            count = import_rules_csv(session, args.rules)
            print(f"[OK] Imported {count} rules")

        if args.leave:
            count = import_leave_csv(session, args.leave)
            print(f"[OK] Imported {count} leave records")

        session.close()
        print("[OK] CSV import complete")

    except Exception as e:
        session.rollback()
        session.close()
        print(f"[ERROR] Import failed: {e}")
        raise


def _cmd_generate(args: argparse.Namespace) -> None:
    """Generate the roster for a horizon."""
    cfg, session = _open(args)

    try:
        report = build_horizon_schedule(
            session,
            args.start,
            cfg,
            horizon_days=args.days,
            random_seed=args.seed,
            regenerate=args.regenerate,
            persist=not args.dry_run,
        )

        if args.out:
            export_assignments_csv(session, args.out, report.horizon_start, report.horizon_end)
        if args.gaps:
            export_gap_report_csv(report, args.gaps)
        if args.summary:
            print(summarize_report(report, WorkerRepository.get_all(session)))

        session.close()
        print(
            f"[OK] Run {report.run_id}: {len(report.committed)} assignments, "
            f"{len(report.unfilled)} unfilled, {len(report.skipped)} already filled "
            f"({report.horizon_start}..{report.horizon_end})"
        )

    except Exception as e:
        session.rollback()
        session.close()
        print(f"[ERROR] Generation failed: {e}")
        raise


def _cmd_override(args: argparse.Namespace) -> None:
    """Put a worker on a slot, bypassing the rules."""
    cfg, session = _open(args)

    try:
        core = load_core(session, cfg)
        result = core.apply_manual_override(args.date, args.type, args.slot, args.worker)
        persist_mutation(session, result)
        session.close()
        if result.assignments:
            print(f"[OK] Worker {args.worker} assigned to {args.type}#{args.slot} on {args.date}")
        else:
            print(f"[OK] Worker {args.worker} already holds {args.type}#{args.slot} on {args.date}")

    except Exception as e:
        session.rollback()
        session.close()
        print(f"[ERROR] Override failed: {e}")
        raise


def _cmd_undo(args: argparse.Namespace) -> None:
    """Reverse a generation run."""
    cfg, session = _open(args)

    try:
        core = load_core(session, cfg)
        result = core.undo_run(args.run)
        persist_mutation(session, result)
        session.close()
        print(f"[OK] Run {args.run} undone: {len(result.superseded)} superseded, {len(result.assignments)} reinstated")

    except Exception as e:
        session.rollback()
        session.close()
        print(f"[ERROR] Undo failed: {e}")
        raise


def _cmd_swap_propose(args: argparse.Namespace) -> None:
    """Propose handing over, exchanging or releasing an assignment."""
    cfg, session = _open(args)

    try:
        core = load_core(session, cfg)
        request = core.propose_swap(args.worker, args.assignment, args.target, args.counter)
        SwapRepository.create(session, request)
        session.close()
        print(f"[OK] Swap {request.uid} proposed ({request.state})")

    except Exception as e:
        session.rollback()
        session.close()
        print(f"[ERROR] Swap proposal failed: {e}")
        raise


def _cmd_swap_resolve(args: argparse.Namespace) -> None:
    """Approve, reject or cancel a pending swap."""
    cfg, session = _open(args)

    try:
        core = load_core(session, cfg)
        result = core.resolve_swap(args.swap, args.decision, random_seed=args.seed)
        persist_mutation(session, result.mutation)
        session.close()
        print(f"[OK] Swap {args.swap} {result.request.state}")
        for gap in result.mutation.unfilled:
            print(f"[WARN] {gap.assignment_type_code}#{gap.slot} on {gap.date} left unfilled")

    except Exception as e:
        session.rollback()
        session.close()
        print(f"[ERROR] Swap resolution failed: {e}")
        raise


def _cmd_use_comp_time(args: argparse.Namespace) -> None:
    """Debit comp time, optionally as leave on a date."""
    cfg, session = _open(args)

    try:
        core = load_core(session, cfg)
        result = core.use_comp_time(args.worker, args.hours, on_date=args.date)
        if not result.success:
            session.close()
            print(f"[ERROR] Comp time rejected: {result.reason} (balance {result.balance:.1f}h)")
            return
        session.add(result.entry)
        if result.leave is not None:
            session.add(result.leave)
        session.commit()
        session.close()
        print(f"[OK] Worker {args.worker} used {args.hours}h comp time, balance {result.balance:.1f}h")

    except Exception as e:
        session.rollback()
        session.close()
        print(f"[ERROR] Comp time usage failed: {e}")
        raise


def _cmd_export(args: argparse.Namespace) -> None:
    """Export data from database to CSV."""
    _, session = _open(args)

    try:
        if args.assignments:
            count = export_assignments_csv(session, args.assignments, start=args.start, end=args.end)
            print(f"[OK] Exported {count} assignments to {args.assignments}")

        if args.equity:
            count = export_equity_csv(session, args.equity, year=args.year)
            print(f"[OK] Exported {count} equity counts to {args.equity}")

        if args.workers:
            count = export_workers_csv(session, args.workers)
            print(f"[OK] Exported {count} workers to {args.workers}")

        session.close()

    except Exception as e:
        session.close()
        print(f"[ERROR] Export failed: {e}")
        raise


def _cmd_validate(args: argparse.Namespace) -> None:
    """Validate the committed roster."""
    cfg, session = _open(args)

    try:
        core = load_core(session, cfg, since=args.start)
        problems = validate_roster(
            core.book.all_assignments(),
            core.roster.values(),
            core.types.values(),
            tracker=core.equity,
            rules=core.rules.rules_for_all(),
            leave=LeaveRepository.get_approved(session),
        )
        session.close()

        if problems:
            for problem in problems:
                print(f"[ERROR] {problem}")
            raise SystemExit(1)
        print(f"[OK] Validation passed for {len(core.active_assignments())} active assignments")

    except SystemExit:
        raise
    except Exception as e:
        session.close()
        print(f"[ERROR] Validation failed: {e}")
        raise


def _cmd_stats(args: argparse.Namespace) -> None:
    """Print directory and roster statistics."""
    _, session = _open(args)

    try:
        stats = WorkerRepository.statistics(session)
        active = [a for a in AssignmentRepository.get_all(session) if a.is_active]
        balances = CompTimeRepository.balances(session)
        pending = SwapRepository.get_pending(session)
        session.close()

        print(f"Workers: {stats['total']} total, {stats['active']} active, "
              f"{stats['inactive']} inactive, {stats['senior']} senior")
        print(f"Assignments: {sum(1 for a in active if a.is_filled)} filled, "
              f"{sum(1 for a in active if not a.is_filled)} unfilled")
        print(f"Pending swaps: {len(pending)}")
        print(f"Comp time outstanding: {sum(balances.values()):.1f}h across {len(balances)} workers")

    except Exception as e:
        session.close()
        print(f"[ERROR] Stats failed: {e}")
        raise


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="dutyroster",
        description="Duty roster scheduling: rule-driven, equity-balanced assignment of duties",
    )

    # Global options
    parser.add_argument("--db", help="Database URL (default: database_url from config)")
    parser.add_argument("--config", help="Path to config YAML/JSON (optional)")

    sub = parser.add_subparsers(dest="command", required=True)

    # init-db command
    init = sub.add_parser("init-db", help="Initialize database")
    init.add_argument("--reset", action="store_true", help="Drop all tables first (deletes all data)")
    init.set_defaults(func=_cmd_init_db)

    # import-csv command
    imp = sub.add_parser("import-csv", help="Import CSV data into database")
    imp.add_argument("--workers", help="Path to workers CSV")
    imp.add_argument("--types", help="Path to assignment types CSV")
    imp.add_argument("--rules", help="Path to rules CSV")
    imp.add_argument("--leave", help="Path to leave records CSV")
    imp.set_defaults(func=_cmd_import_csv)

    # generate command
    gen = sub.add_parser("generate", help="Generate the roster for a horizon")
    gen.add_argument("--start", required=True, type=_parse_date, help="First date (YYYY-MM-DD)")
    gen.add_argument("--days", type=int, help="Horizon length in days (default: horizon_days from config)")
    gen.add_argument("--seed", type=int, help="Random seed for reproducible selection")
    gen.add_argument("--regenerate", action="store_true", help="Replace the horizon's existing assignments")
    gen.add_argument("--dry-run", action="store_true", help="Do not save to the database")
    gen.add_argument("--out", help="Optional: export the horizon's assignments to CSV")
    gen.add_argument("--gaps", help="Optional: export the gap report to CSV")
    gen.add_argument("--summary", action="store_true", help="Print coverage and per-worker counts")
    gen.set_defaults(func=_cmd_generate)

    # override command
    ovr = sub.add_parser("override", help="Manually assign a worker to a slot")
    ovr.add_argument("--date", required=True, type=_parse_date)
    ovr.add_argument("--type", required=True, help="Assignment type code")
    ovr.add_argument("--slot", type=int, default=0)
    ovr.add_argument("--worker", required=True, type=int)
    ovr.set_defaults(func=_cmd_override)

    # undo command
    undo = sub.add_parser("undo", help="Reverse a generation run")
    undo.add_argument("--run", required=True, help="Run id printed by generate")
    undo.set_defaults(func=_cmd_undo)

    # swap-propose command
    sp = sub.add_parser("swap-propose", help="Propose a swap or release")
    sp.add_argument("--worker", required=True, type=int, help="Worker giving up the assignment")
    sp.add_argument("--assignment", required=True, help="Assignment uid")
    sp.add_argument("--target", type=int, help="Worker taking over (omit to release)")
    sp.add_argument("--counter", help="Assignment uid of the target handed back in exchange")
    sp.set_defaults(func=_cmd_swap_propose)

    # swap-resolve command
    sr = sub.add_parser("swap-resolve", help="Approve, reject or cancel a pending swap")
    sr.add_argument("--swap", required=True, help="Swap request uid")
    sr.add_argument("--decision", required=True, choices=["approve", "reject", "cancel"])
    sr.add_argument("--seed", type=int, help="Random seed for re-selection on release")
    sr.set_defaults(func=_cmd_swap_resolve)

    # use-comp-time command
    ct = sub.add_parser("use-comp-time", help="Use comp time hours")
    ct.add_argument("--worker", required=True, type=int)
    ct.add_argument("--hours", required=True, type=float)
    ct.add_argument("--date", type=_parse_date, help="Book the hours as leave on this date")
    ct.set_defaults(func=_cmd_use_comp_time)

    # export command
    exp = sub.add_parser("export", help="Export data from database to CSV")
    exp.add_argument("--assignments", help="Path to export assignments CSV")
    exp.add_argument("--equity", help="Path to export equity counts CSV")
    exp.add_argument("--workers", help="Path to export workers CSV")
    exp.add_argument("--start", type=_parse_date, help="First date of assignments to export")
    exp.add_argument("--end", type=_parse_date, help="Last date of assignments to export")
    exp.add_argument("--year", type=int, help="Equity year to export")
    exp.set_defaults(func=_cmd_export)

    # validate command
    val = sub.add_parser("validate", help="Validate the committed roster")
    val.add_argument("--start", type=_parse_date, help="Only check assignments from this date")
    val.set_defaults(func=_cmd_validate)

    # stats command
    st = sub.add_parser("stats", help="Show worker and roster statistics")
    st.set_defaults(func=_cmd_stats)

    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
