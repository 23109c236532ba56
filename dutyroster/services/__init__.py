"""Services for scheduling logic."""

from .availability import AvailabilityResolver, LeaveIndex
from .comp_time import CompTimeLedger
from .equity import EquityDelta, EquityTracker
from .ledger import RosterBook, UnitOfWork
from .locks import DateRangeLocks, WorkerLocks
from .rules import CandidateSet, RuleEngine, validate_rule_set

__all__ = [
    "AvailabilityResolver",
    "LeaveIndex",
    "CompTimeLedger",
    "EquityDelta",
    "EquityTracker",
    "RosterBook",
    "UnitOfWork",
    "DateRangeLocks",
    "WorkerLocks",
    "CandidateSet",
    "RuleEngine",
    "validate_rule_set",
]
