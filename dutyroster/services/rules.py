"""Rule engine: reduce the roster to the candidate set for one slot.

Rule tiers are pure restriction functions evaluated in ascending rule
priority (ties by insertion order). The first tier yielding a non-empty
candidate list wins; an empty tier falls through to the next one. The
senior tier is terminal: when no senior worker is available the slot fails
instead of falling through to the general pool.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set

from dutyroster.domain.models import AssignmentType, Category, Rule, RuleKind, Worker
from dutyroster.errors import ValidationError

logger = logging.getLogger(__name__)

# Implied tiers sort after every configured rule
IMPLIED_PRIORITY = 10**6


@dataclass
class TierContext:
    """Everything a tier needs to restrict the roster for one slot."""

    assignment_type: AssignmentType
    day: date
    slot: int
    roster: List[Worker]
    lookup: Mapping[int, Worker]
    is_available: Callable[[int, date], bool]
    senior_only: bool
    exclude: Set[int] = field(default_factory=set)

    def admissible(self, worker: Worker, check_eligibility: bool = True) -> bool:
        if worker.worker_id in self.exclude or not worker.is_active:
            return False
        if self.senior_only and not worker.is_senior:
            return False
        if check_eligibility and not worker.is_eligible_for(self.assignment_type.code):
            return False
        return self.is_available(worker.worker_id, self.day)


@dataclass
class CandidateSet:
    workers: List[Worker]
    rule_kind: Optional[str] = None
    ranked: bool = False
    tried: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.workers)


def permanent_tier(rule: Rule, ctx: TierContext) -> List[Worker]:
    worker = ctx.lookup.get(rule.worker_id)
    if worker is None or not ctx.admissible(worker, check_eligibility=False):
        return []
    return [worker]


def preferred_list_tier(rule: Rule, ctx: TierContext) -> List[Worker]:
    out = []
    for worker_id in rule.preferred_ids:
        worker = ctx.lookup.get(worker_id)
        if worker is not None and ctx.admissible(worker, check_eligibility=False):
            out.append(worker)
    return out


def senior_required_tier(rule: Rule, ctx: TierContext) -> List[Worker]:
    return [w for w in ctx.roster if w.is_senior and ctx.admissible(w)]


def general_pool_tier(rule: Rule, ctx: TierContext) -> List[Worker]:
    return [w for w in ctx.roster if ctx.admissible(w)]


TIERS: Dict[str, Callable[[Rule, TierContext], List[Worker]]] = {
    RuleKind.PERMANENT: permanent_tier,
    RuleKind.PREFERRED_LIST: preferred_list_tier,
    RuleKind.SENIOR_REQUIRED: senior_required_tier,
    RuleKind.GENERAL_POOL: general_pool_tier,
}

RANKED_KINDS = {RuleKind.PERMANENT, RuleKind.PREFERRED_LIST}
TERMINAL_KINDS = {RuleKind.SENIOR_REQUIRED}


def requires_senior(assignment_type: AssignmentType, rules: Iterable[Rule]) -> bool:
    return bool(assignment_type.requires_senior) or any(r.kind == RuleKind.SENIOR_REQUIRED for r in rules)


def ordered_rules(assignment_type: AssignmentType, rules: Iterable[Rule], day: Optional[date] = None) -> List[Rule]:
    """
    Rules in evaluation order for a type, including implied tiers.

    Args:
        assignment_type: Type whose rules are ordered
        rules: Configured rules of this type, in insertion order
        day: If given, rules not effective on this day are dropped

    Returns:
        Rules sorted by (priority, seq), with implied SENIOR_REQUIRED and
        GENERAL_POOL tiers appended where the configuration omits them
    """
    all_rules = list(rules)
    senior = requires_senior(assignment_type, all_rules)
    effective = [r for r in all_rules if day is None or r.is_effective_on(day)]
    ordered = sorted(effective, key=lambda r: (r.priority, r.seq))

    kinds = {r.kind for r in ordered}
    if senior and RuleKind.SENIOR_REQUIRED not in kinds:
        ordered.append(Rule(assignment_type_code=assignment_type.code, kind=RuleKind.SENIOR_REQUIRED, priority=IMPLIED_PRIORITY))
    if not senior and RuleKind.GENERAL_POOL not in kinds:
        ordered.append(Rule(assignment_type_code=assignment_type.code, kind=RuleKind.GENERAL_POOL, priority=IMPLIED_PRIORITY + 1))
    return ordered


class RuleEngine:
    """Evaluates an assignment type's rule hierarchy for a slot."""

    def __init__(
        self,
        types: Mapping[str, AssignmentType],
        rules: Iterable[Rule],
        roster: Mapping[int, Worker],
        is_available: Callable[..., bool],
    ):
        self.types = types
        self.roster = roster
        self.is_available = is_available
        self._rules: Dict[str, List[Rule]] = defaultdict(list)
        for rule in rules:
            self._rules[rule.assignment_type_code].append(rule)

    def rules_for(self, type_code: str) -> List[Rule]:
        return list(self._rules.get(type_code, []))

    def rules_for_all(self) -> List[Rule]:
        return [rule for rules in self._rules.values() for rule in rules]

    def restrict_candidates(
        self,
        assignment_type: AssignmentType,
        day: date,
        slot: int,
        roster: Optional[Iterable[Worker]] = None,
        exclude: Iterable[int] = (),
    ) -> CandidateSet:
        """
        Reduce the roster to the ordered candidate list for one slot.

        Args:
            assignment_type: Type being filled
            day: Date of the slot
            slot: Slot index within the day
            roster: Roster snapshot (defaults to the engine's roster)
            exclude: Worker ids that must not be proposed (e.g. a releasing worker)

        Returns:
            CandidateSet; empty when no tier yields a candidate
        """
        workers = sorted(roster if roster is not None else self.roster.values(), key=lambda w: w.worker_id)
        type_rules = self.rules_for(assignment_type.code)
        ctx = TierContext(
            assignment_type=assignment_type,
            day=day,
            slot=slot,
            roster=workers,
            lookup={w.worker_id: w for w in workers},
            is_available=self.is_available,
            senior_only=requires_senior(assignment_type, type_rules),
            exclude=set(exclude),
        )

        tried = []
        for rule in ordered_rules(assignment_type, type_rules, day):
            candidates = TIERS[rule.kind](rule, ctx)
            tried.append(f"{rule.kind}:{len(candidates)}")
            if candidates:
                logger.debug(
                    "%s#%d on %s resolved by %s: %s",
                    assignment_type.code, slot, day, rule.kind, [w.worker_id for w in candidates],
                )
                return CandidateSet(candidates, rule.kind, rule.kind in RANKED_KINDS, tried)
            if rule.kind in TERMINAL_KINDS:
                break
        return CandidateSet([], None, False, tried)


def validate_rule_set(
    types: Mapping[str, AssignmentType],
    rules: Iterable[Rule],
    roster: Mapping[int, Worker],
) -> None:
    """
    Check the configured types and rules against the roster at load time.

    Raises:
        ValidationError: Listing every problem found
    """
    problems = []
    by_type: Dict[str, List[Rule]] = defaultdict(list)

    for code, t in types.items():
        if t.category not in Category.ALL:
            problems.append(f"Type {code}: unknown category {t.category!r}")
        if t.slots_per_day is None or t.slots_per_day < 1:
            problems.append(f"Type {code}: slots_per_day must be at least 1")
        if not t.staffed_weekdays <= set(range(7)):
            problems.append(f"Type {code}: weekdays must be within 0..6")

    for rule in rules:
        by_type[rule.assignment_type_code].append(rule)
        label = f"Rule {rule.kind} on {rule.assignment_type_code}"
        if rule.assignment_type_code not in types:
            problems.append(f"{label}: unknown assignment type")
        if rule.kind not in RuleKind.ALL:
            problems.append(f"{label}: unknown rule kind")
            continue
        if rule.effective_from and rule.effective_to and rule.effective_to < rule.effective_from:
            problems.append(f"{label}: effective_to before effective_from")
        if rule.kind == RuleKind.PERMANENT:
            if rule.worker_id is None:
                problems.append(f"{label}: no worker named")
            elif rule.worker_id not in roster:
                problems.append(f"{label}: unknown worker {rule.worker_id}")
        if rule.kind == RuleKind.PREFERRED_LIST:
            if not rule.preferred_ids:
                problems.append(f"{label}: empty preferred list")
            for worker_id in rule.preferred_ids:
                if worker_id not in roster:
                    problems.append(f"{label}: unknown worker {worker_id}")

    seniors = [w for w in roster.values() if w.is_senior and w.is_active]
    for code, t in types.items():
        type_rules = by_type.get(code, [])
        if not requires_senior(t, type_rules):
            continue
        if not any(w.is_eligible_for(code) for w in seniors):
            problems.append(f"Type {code}: requires a senior worker but no active senior worker is eligible")
        for rule in type_rules:
            named = [rule.worker_id] if rule.kind == RuleKind.PERMANENT else rule.preferred_ids
            for worker_id in named:
                worker = roster.get(worker_id) if worker_id is not None else None
                if worker is not None and not worker.is_senior:
                    problems.append(f"Type {code}: {rule.kind} names non-senior worker {worker_id}")

    if problems:
        raise ValidationError("Invalid rule configuration:\n  - " + "\n  - ".join(problems))
