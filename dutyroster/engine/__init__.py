"""Scheduling engine: generator, swap workflow and the scheduling core."""

from .generator import GenerationReport, MutationResult, RunState, ScheduleGenerator, UnfilledSlot
from .orchestrator import RuleSet, SchedulingCore, build_horizon_schedule, generate_schedule
from .swaps import SwapResult, SwapWorkflow

__all__ = [
    "GenerationReport",
    "MutationResult",
    "RunState",
    "ScheduleGenerator",
    "UnfilledSlot",
    "RuleSet",
    "SchedulingCore",
    "build_horizon_schedule",
    "generate_schedule",
    "SwapResult",
    "SwapWorkflow",
]
