"""End-to-end tests for the command-line interface."""

import re

import pandas as pd
import pytest

from dutyroster.cli import main
from dutyroster.domain.db import get_session
from dutyroster.domain.models import LeaveCategory, LeaveRecord

WORKERS_CSV = """worker_id,first_name,last_name,is_senior
1,Ada,Byrne,TRUE
2,Ben,Cole,TRUE
3,Cara,Diaz,FALSE
4,Dev,Egan,FALSE
5,Eli,Fox,FALSE
6,Fay,Gore,FALSE
"""

TYPES_CSV = """code,category,requires_senior,slots_per_day,priority,weekdays
PA,PriorityA,FALSE,1,10,
EVE,Evening,TRUE,1,20,
FD,FrontDeskAM,FALSE,2,30,
REM,Remote,FALSE,1,40,0;1;2;3;4
"""


@pytest.fixture
def cli(tmp_path, capsys):
    """Initialized database with workers and types; returns a runner printing nothing itself."""
    db_url = f"sqlite:///{tmp_path / 'roster.db'}"
    (tmp_path / "workers.csv").write_text(WORKERS_CSV)
    (tmp_path / "types.csv").write_text(TYPES_CSV)

    def run(*args):
        main(["--db", db_url, *[str(a) for a in args]])
        return capsys.readouterr().out

    run("init-db")
    run("import-csv", "--workers", tmp_path / "workers.csv", "--types", tmp_path / "types.csv")
    run.db_url = db_url
    return run


def _run_id(output):
    return re.search(r"\[OK\] Run (\w+):", output).group(1)


def test_import_reports_counts(tmp_path, capsys):
    db_url = f"sqlite:///{tmp_path / 'fresh.db'}"
    (tmp_path / "workers.csv").write_text(WORKERS_CSV)

    main(["--db", db_url, "init-db"])
    main(["--db", db_url, "import-csv", "--workers", str(tmp_path / "workers.csv")])

    out = capsys.readouterr().out
    assert "[OK] Database initialized" in out
    assert "[OK] Imported 6 workers" in out
    assert "[OK] CSV import complete" in out


def test_generate_validate_and_stats(cli, tmp_path):
    out = cli("generate", "--start", "2025-03-03", "--days", 7, "--seed", 1,
              "--out", tmp_path / "roster.csv", "--gaps", tmp_path / "gaps.csv", "--summary")
    assert "33 assignments, 0 unfilled, 0 already filled (2025-03-03..2025-03-09)" in out
    assert "Coverage per day per assignment type:" in out
    assert len(pd.read_csv(tmp_path / "roster.csv")) == 33

    assert "[OK] Validation passed for 33 active assignments" in cli("validate")

    stats = cli("stats")
    assert "Workers: 6 total, 6 active, 0 inactive, 2 senior" in stats
    assert "Assignments: 33 filled, 0 unfilled" in stats
    assert "Pending swaps: 0" in stats
    assert "Comp time outstanding: 64.0h" in stats


def test_rerun_skips_filled_slots(cli):
    cli("generate", "--start", "2025-03-03", "--days", 7, "--seed", 1)
    out = cli("generate", "--start", "2025-03-03", "--days", 7, "--seed", 2)
    assert "0 assignments, 0 unfilled, 33 already filled" in out


def test_dry_run_saves_nothing(cli):
    cli("generate", "--start", "2025-03-03", "--days", 7, "--dry-run")
    assert "Assignments: 0 filled, 0 unfilled" in cli("stats")


def test_undo_generation(cli):
    run_id = _run_id(cli("generate", "--start", "2025-03-03", "--days", 7, "--seed", 1))
    out = cli("undo", "--run", run_id)
    assert f"[OK] Run {run_id} undone: 33 superseded, 0 reinstated" in out
    assert "[OK] Validation passed for 0 active assignments" in cli("validate")
    assert "Comp time outstanding: 0.0h" in cli("stats")


def test_swap_via_cli(cli, tmp_path):
    cli("generate", "--start", "2025-03-03", "--days", 1, "--seed", 1, "--out", tmp_path / "monday.csv")
    monday = pd.read_csv(tmp_path / "monday.csv")
    held = monday[monday["assignment_type_code"] == "REM"].iloc[0]
    free = sorted(set(range(1, 7)) - set(monday["worker_id"]))[0]

    out = cli("swap-propose", "--worker", held["worker_id"], "--assignment", held["uid"], "--target", free)
    swap_uid = re.search(r"Swap (\w+) proposed \(PENDING\)", out).group(1)
    assert "Pending swaps: 1" in cli("stats")

    assert f"[OK] Swap {swap_uid} APPROVED" in cli("swap-resolve", "--swap", swap_uid, "--decision", "approve")
    assert "Pending swaps: 0" in cli("stats")

    cli("export", "--assignments", tmp_path / "after.csv")
    after = pd.read_csv(tmp_path / "after.csv")
    rem = after[after["assignment_type_code"] == "REM"].iloc[0]
    assert rem["worker_id"] == free
    assert rem["source"] == "SWAP"


def test_override(cli, tmp_path):
    cli("generate", "--start", "2025-03-03", "--days", 1, "--seed", 1, "--out", tmp_path / "monday.csv")
    monday = pd.read_csv(tmp_path / "monday.csv")
    free = sorted(set(range(3, 7)) - set(monday["worker_id"]))[0]

    out = cli("override", "--date", "2025-03-03", "--type", "PA", "--worker", free)
    assert f"[OK] Worker {free} assigned to PA#0 on 2025-03-03" in out
    assert "[OK] Validation passed for 5 active assignments" in cli("validate")


def test_comp_time_rejected_without_balance(cli):
    out = cli("use-comp-time", "--worker", 3, "--hours", 8)
    assert "[ERROR] Comp time rejected: InsufficientBalance (balance 0.0h)" in out


def test_comp_time_booked_as_leave(cli, tmp_path):
    cli("generate", "--start", "2025-03-08", "--days", 1, "--seed", 1, "--out", tmp_path / "saturday.csv")
    assert "Comp time outstanding: 32.0h across 4 workers" in cli("stats")
    worker_id = int(pd.read_csv(tmp_path / "saturday.csv")["worker_id"].iloc[0])

    out = cli("use-comp-time", "--worker", worker_id, "--hours", 8, "--date", "2025-03-10")
    assert f"[OK] Worker {worker_id} used 8.0h comp time, balance 0.0h" in out
    assert "Comp time outstanding: 24.0h" in cli("stats")

    cli("generate", "--start", "2025-03-10", "--days", 1, "--seed", 1, "--out", tmp_path / "monday.csv")
    assert worker_id not in set(pd.read_csv(tmp_path / "monday.csv")["worker_id"])

    again = cli("use-comp-time", "--worker", worker_id, "--hours", 4, "--date", "2025-03-11")
    assert "[ERROR] Comp time rejected: InsufficientBalance" in again


def test_validate_reports_leave_conflict(cli, tmp_path):
    cli("generate", "--start", "2025-03-03", "--days", 1, "--seed", 1, "--out", tmp_path / "monday.csv")
    worker_id = int(pd.read_csv(tmp_path / "monday.csv")["worker_id"].iloc[0])

    session = get_session(cli.db_url)
    session.add(LeaveRecord(worker_id=worker_id, category=LeaveCategory.SICK,
                            start_date=pd.Timestamp("2025-03-03").date(), end_date=pd.Timestamp("2025-03-03").date()))
    session.commit()
    session.close()

    with pytest.raises(SystemExit) as exc:
        cli("validate")
    assert exc.value.code == 1


def test_export_equity(cli, tmp_path):
    cli("generate", "--start", "2025-03-03", "--days", 7, "--seed", 1)
    out = cli("export", "--equity", tmp_path / "equity.csv", "--year", 2025, "--workers", tmp_path / "workers_out.csv")
    assert "Exported 6 workers" in out
    assert pd.read_csv(tmp_path / "equity.csv")["count"].sum() == 33


def test_reset_drops_data(cli):
    cli("generate", "--start", "2025-03-03", "--days", 1, "--seed", 1)
    assert "[OK] Database reset" in cli("init-db", "--reset")
    assert "Workers: 0 total" in cli("stats")
