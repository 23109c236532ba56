"""Swap workflow: hand over, exchange or release committed assignments."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from dutyroster.domain.models import Assignment, AssignmentSource, SwapRequest, SwapState, utcnow
from dutyroster.errors import InvalidSwap, UnfillableSlot
from dutyroster.services.locks import DateRangeLocks, WorkerLocks
from dutyroster.services.rules import requires_senior

from .generator import MutationResult, ScheduleGenerator

logger = logging.getLogger(__name__)

DECISIONS = {
    "approve": SwapState.APPROVED,
    "approved": SwapState.APPROVED,
    "reject": SwapState.REJECTED,
    "rejected": SwapState.REJECTED,
    "cancel": SwapState.CANCELLED,
    "cancelled": SwapState.CANCELLED,
}


@dataclass
class SwapResult:
    request: SwapRequest
    mutation: MutationResult = field(default_factory=MutationResult)


class SwapWorkflow:
    """
    Request/approval state machine over committed assignments.

    PENDING -> APPROVED | REJECTED | CANCELLED, all terminal. Approval
    supersedes the affected assignments with SWAP-sourced rows inside one unit
    of work, so equity deltas come in matched -1/+1 pairs and comp time moves
    with the work.
    """

    def __init__(
        self,
        generator: ScheduleGenerator,
        worker_locks: Optional[WorkerLocks] = None,
        date_locks: Optional[DateRangeLocks] = None,
    ):
        self.generator = generator
        self.book = generator.book
        self.roster = generator.roster
        self.types = generator.types
        self.worker_locks = worker_locks or WorkerLocks()
        self.date_locks = date_locks or generator.date_locks
        self.requests: Dict[str, SwapRequest] = {}

    def load(self, requests: Iterable[SwapRequest]) -> None:
        for request in requests:
            self.requests[request.uid] = request

    def pending(self) -> List[SwapRequest]:
        return [r for r in self.requests.values() if r.state == SwapState.PENDING]

    def propose(
        self,
        requesting_worker_id: int,
        assignment_uid: str,
        target_worker_id: Optional[int] = None,
        counter_assignment_uid: Optional[str] = None,
    ) -> SwapRequest:
        """
        Create a PENDING swap request.

        Args:
            requesting_worker_id: Worker giving up the assignment
            assignment_uid: Assignment being handed over
            target_worker_id: Worker taking it over, None to release the slot
            counter_assignment_uid: Assignment of the target worker handed back in exchange

        Raises:
            InvalidSwap: If the request does not match the committed roster
        """
        request = SwapRequest(
            requesting_worker_id=requesting_worker_id,
            assignment_uid=assignment_uid,
            target_worker_id=target_worker_id,
            counter_assignment_uid=counter_assignment_uid,
        )
        self._check_request(request)
        self.requests[request.uid] = request
        logger.info("Swap %s proposed by worker %s", request.uid, requesting_worker_id)
        return request

    def resolve(self, swap_uid: str, decision: str, rng: Optional[random.Random] = None) -> SwapResult:
        """
        Move a PENDING request to a terminal state.

        Args:
            swap_uid: Request to resolve
            decision: approve, reject or cancel
            rng: Random source for re-selection on release (seeded from the
                request uid when omitted)

        Raises:
            InvalidSwap: Unknown request, terminal request, or an approval that
                no longer matches the roster (the request stays PENDING)
        """
        request = self.requests.get(swap_uid)
        if request is None:
            raise InvalidSwap(f"Unknown swap request {swap_uid}")
        if request.state != SwapState.PENDING:
            raise InvalidSwap(f"Swap request {swap_uid} is already {request.state}")
        target_state = DECISIONS.get(str(decision).lower())
        if target_state is None:
            raise InvalidSwap(f"Unknown decision {decision!r}")

        if target_state != SwapState.APPROVED:
            self._finish(request, target_state)
            return SwapResult(request)

        assignment = self.book.get(request.assignment_uid)
        counter = self.book.get(request.counter_assignment_uid) if request.counter_assignment_uid else None
        dates = [a.date for a in (assignment, counter) if a is not None]
        if not dates:
            raise InvalidSwap(f"Assignment {request.assignment_uid} not found")

        with self.date_locks.hold(min(dates), max(dates)):
            with self.worker_locks.hold([request.requesting_worker_id, request.target_worker_id]):
                self._check_request(request)
                if request.is_release:
                    mutation = self._release(request, rng or random.Random(request.uid))
                else:
                    mutation = self._transfer(request)

        self._finish(request, SwapState.APPROVED)
        return SwapResult(request, mutation)

    def _finish(self, request: SwapRequest, state: str) -> None:
        request.state = state
        request.resolved_at = utcnow()
        logger.info("Swap %s %s", request.uid, state)

    def _check_request(self, request: SwapRequest) -> None:
        assignment = self.book.get(request.assignment_uid)
        if assignment is None or not assignment.is_active:
            raise InvalidSwap(f"Assignment {request.assignment_uid} is not an active assignment")
        if assignment.worker_id != request.requesting_worker_id:
            raise InvalidSwap(
                f"Assignment {request.assignment_uid} belongs to worker {assignment.worker_id}, "
                f"not {request.requesting_worker_id}"
            )

        if request.is_release:
            if request.counter_assignment_uid:
                raise InvalidSwap("A release cannot carry a counter assignment")
            return

        target = self.roster.get(request.target_worker_id)
        if target is None or not target.is_active:
            raise InvalidSwap(f"Worker {request.target_worker_id} is unknown or inactive")
        if target.worker_id == request.requesting_worker_id:
            raise InvalidSwap("A worker cannot swap with themselves")

        ignoring = {assignment.uid}
        counter = None
        if request.counter_assignment_uid:
            counter = self.book.get(request.counter_assignment_uid)
            if counter is None or not counter.is_active or counter.worker_id != target.worker_id:
                raise InvalidSwap(
                    f"Counter assignment {request.counter_assignment_uid} is not an active assignment of worker {target.worker_id}"
                )
            ignoring.add(counter.uid)

        self._check_taker(target.worker_id, assignment, ignoring)
        if counter is not None:
            self._check_taker(request.requesting_worker_id, counter, ignoring)

    def _check_taker(self, worker_id: int, assignment: Assignment, ignoring) -> None:
        worker = self.roster[worker_id]
        assignment_type = self.types[assignment.assignment_type_code]
        if requires_senior(assignment_type, self.generator.rules.rules_for(assignment_type.code)) and not worker.is_senior:
            raise InvalidSwap(f"{assignment_type.code} requires a senior worker, worker {worker_id} is not")
        if not worker.is_eligible_for(assignment_type.code):
            raise InvalidSwap(f"Worker {worker_id} is not eligible for {assignment_type.code}")
        reasons = self.generator.availability.reasons(worker_id, assignment.date, ignoring)
        if reasons:
            raise InvalidSwap(f"Worker {worker_id} is not available on {assignment.date}: {', '.join(reasons)}")

    def _handover(self, uow, assignment: Assignment, worker_id: int) -> Assignment:
        replacement = Assignment(
            date=assignment.date,
            assignment_type_code=assignment.assignment_type_code,
            slot=assignment.slot,
            worker_id=worker_id,
            source=AssignmentSource.SWAP,
            rule_kind=assignment.rule_kind,
        )
        uow.supersede(assignment, by_uid=replacement.uid, reason="swap")
        return replacement

    def _transfer(self, request: SwapRequest) -> MutationResult:
        assignment = self.book.get(request.assignment_uid)
        counter = self.book.get(request.counter_assignment_uid) if request.counter_assignment_uid else None

        with self.generator.transaction() as uow:
            outgoing = self._handover(uow, assignment, request.target_worker_id)
            incoming = self._handover(uow, counter, request.requesting_worker_id) if counter is not None else None
            uow.commit(outgoing, self.types[outgoing.assignment_type_code])
            if incoming is not None:
                uow.commit(incoming, self.types[incoming.assignment_type_code])
        return MutationResult.from_unit(uow)

    def _release(self, request: SwapRequest, rng: random.Random) -> MutationResult:
        assignment = self.book.get(request.assignment_uid)
        assignment_type = self.types[assignment.assignment_type_code]
        unfilled = []

        with self.generator.transaction() as uow:
            uow.supersede(assignment, reason="release")
            try:
                replacement = self.generator.fill_slot(
                    uow,
                    assignment_type,
                    assignment.date,
                    assignment.slot,
                    rng,
                    exclude={request.requesting_worker_id},
                    source=AssignmentSource.SWAP,
                )
                assignment.superseded_by = replacement.uid
            except UnfillableSlot as gap:
                unfilled.append(self.generator.commit_gap(uow, gap, source=AssignmentSource.SWAP))
        return MutationResult.from_unit(uow, unfilled)
