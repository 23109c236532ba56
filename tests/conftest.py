"""Pytest configuration and shared fixtures."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from dutyroster.config import SchedulerConfig
from dutyroster.domain.models import AssignmentType, Base, Category, Worker
from dutyroster.engine.orchestrator import SchedulingCore


def pytest_configure(config):
    """Configure pytest."""
    # Add custom markers
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (deselect with '-m \"not integration\"')"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


@pytest.fixture
def db_session():
    """Create in-memory database session for testing."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def make_worker():
    """Factory for transient workers."""
    def _make(worker_id, senior=False, **kwargs):
        kwargs.setdefault("first_name", f"Worker{worker_id}")
        kwargs.setdefault("last_name", "Test")
        return Worker(worker_id=worker_id, is_senior=senior, **kwargs)
    return _make


@pytest.fixture
def roster(make_worker):
    """Two senior and four junior workers, all eligible for every type."""
    return [
        make_worker(1, senior=True, first_name="Ada", last_name="Byrne"),
        make_worker(2, senior=True, first_name="Ben", last_name="Cole"),
        make_worker(3, first_name="Cara", last_name="Diaz"),
        make_worker(4, first_name="Dev", last_name="Egan"),
        make_worker(5, first_name="Eli", last_name="Fox"),
        make_worker(6, first_name="Fay", last_name="Gore"),
    ]


@pytest.fixture
def assignment_types():
    """PriorityA, senior-only Evening, two-slot front desk and weekday-only Remote."""
    return [
        AssignmentType(code="PA", category=Category.PRIORITY_A, priority=10),
        AssignmentType(code="EVE", category=Category.EVENING, requires_senior=True, priority=20),
        AssignmentType(code="FD", category=Category.FRONT_DESK_AM, slots_per_day=2, priority=30),
        AssignmentType(code="REM", category=Category.REMOTE, priority=40, staffed_weekdays=[0, 1, 2, 3, 4]),
    ]


@pytest.fixture
def least_loaded_config():
    cfg = SchedulerConfig()
    cfg.equity.mode = "least_loaded"
    return cfg


@pytest.fixture
def build_core(roster, assignment_types):
    """Factory building a SchedulingCore; defaults to the shared roster and types."""
    def _build(roster_=None, types=None, rules=(), leave=(), existing=(), prior_counts=None,
               comp_time_balances=None, cfg=None):
        return SchedulingCore.from_snapshot(
            roster_ if roster_ is not None else roster,
            leave,
            types if types is not None else assignment_types,
            rules,
            existing,
            prior_counts=prior_counts,
            comp_time_balances=comp_time_balances,
            cfg=cfg,
        )
    return _build
