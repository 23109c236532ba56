"""Domain models and data access layer."""

from .models import (
    Assignment,
    AssignmentSource,
    AssignmentType,
    Base,
    Category,
    CompTimeEntry,
    EquityCount,
    LeaveCategory,
    LeaveRecord,
    Rule,
    RuleKind,
    SwapRequest,
    SwapState,
    Worker,
)
from .repositories import (
    AssignmentRepository,
    AssignmentTypeRepository,
    CompTimeRepository,
    EquityRepository,
    LeaveRepository,
    RuleRepository,
    SwapRepository,
    WorkerRepository,
)

__all__ = [
    "Assignment",
    "AssignmentSource",
    "AssignmentType",
    "Base",
    "Category",
    "CompTimeEntry",
    "EquityCount",
    "LeaveCategory",
    "LeaveRecord",
    "Rule",
    "RuleKind",
    "SwapRequest",
    "SwapState",
    "Worker",
    "AssignmentRepository",
    "AssignmentTypeRepository",
    "CompTimeRepository",
    "EquityRepository",
    "LeaveRepository",
    "RuleRepository",
    "SwapRepository",
    "WorkerRepository",
]
