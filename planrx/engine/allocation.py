"""
Capacity-aware allocation of resources to tasks.

An allocation decision runs entirely under the target resource's lock:
availability is read and the booking is committed without another allocate
call on the same resource observing the pre-update state. Rejected requests
return a ConflictReport and leave the ledger untouched; nothing is clamped.
"""

import logging
import uuid
from collections import defaultdict
from datetime import date, timedelta
from typing import Callable, Dict, List, Optional, Union

from planrx.engine.context import ProjectContext
from planrx.engine.ledger import EPSILON, ResourceLedger, days
from planrx.models.entities import Assignment, AssignmentRequest
from planrx.models.errors import ConflictError, InvalidAmountError, InvalidIntervalError
from planrx.models.results import ConflictEntry, ConflictReport, UtilizationEntry

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


class AllocationEngine:
    def __init__(self, ledger: ResourceLedger, id_factory: Optional[Callable[[], str]] = None):
        self.ledger = ledger
        self._id_factory = id_factory or _new_id

    def _validate(self, context: ProjectContext, request: AssignmentRequest) -> None:
        if request.start > request.end:
            raise InvalidIntervalError(
                f"Interval start {request.start} is after end {request.end}",
                start=str(request.start),
                end=str(request.end),
            )
        resource = self.ledger.resource(request.resource_id)
        task = context.task(request.task_id)
        if resource.kind.is_time_based:
            if not 0 < request.amount <= 100:
                raise InvalidAmountError(
                    f"Allocation percentage {request.amount} outside (0, 100]",
                    resource_id=resource.id,
                )
        elif request.amount <= 0:
            raise InvalidAmountError(f"Material quantity {request.amount} must be positive", resource_id=resource.id)
        if task.window is None:
            raise InvalidIntervalError(f"Task {task.id} has no planned window", task_id=task.id)
        if request.end < task.start or request.start > task.end:
            raise InvalidIntervalError(
                f"Interval {request.start}..{request.end} does not overlap task {task.id} "
                f"window {task.start}..{task.end}",
                task_id=task.id,
            )

    def allocate(
        self,
        context: ProjectContext,
        request: AssignmentRequest,
        accept_overallocation: bool = False,
    ) -> Union[Assignment, ConflictReport]:
        """
        Place a resource on a task for [start, end].

        Returns the committed Assignment, or a ConflictReport naming every
        over-committed day and its overshoot. With ``accept_overallocation`` a
        time-based booking that exceeds capacity is committed and flagged
        instead; Material stock is never overdrawn.

        Raises:
            InvalidIntervalError, InvalidAmountError, NotFoundError
        """
        self._validate(context, request)
        resource = self.ledger.resource(request.resource_id)
        daily = self.ledger.daily_amount(resource, request.amount)
        span = (request.end - request.start).days + 1
        total = round(daily * span, 6) if daily is not None else request.amount

        with self.ledger.lock(resource.id):
            entries = self.ledger.shortfall(
                resource.id, request.start, request.end, daily if daily is not None else request.amount
            )
            assignment = Assignment(
                id=self._id_factory(),
                resource_id=resource.id,
                task_id=request.task_id,
                project_id=context.project_id,
                start=request.start,
                end=request.end,
                amount=request.amount,
                daily_amount=daily,
                total=total,
                cost=round(total * resource.cost_rate, 6),
                over_allocated=bool(entries) and accept_overallocation,
            )
            try:
                self.ledger.record(assignment)
            except ConflictError as exc:
                logger.info(
                    f"Allocation of {resource.id} to {request.task_id} rejected: "
                    f"{len(exc.report.entries)} over-committed day(s)"
                )
                return exc.report
        if assignment.over_allocated:
            logger.warning(f"Accepted over-allocation of {resource.id} on {[e.date for e in entries]}")
        logger.info(f"Allocated {resource.id} to {request.task_id}: {request.start}..{request.end} ({assignment.id})")
        return assignment

    def release(self, assignment_id: str) -> Assignment:
        return self.ledger.release(assignment_id)

    def project_assignments(self, context: ProjectContext) -> List[Assignment]:
        return [a for a in self.ledger.assignments() if a.project_id == context.project_id]

    def conflicts(self, context: ProjectContext) -> List[ConflictEntry]:
        """
        Every (resource, day) where committed bookings exceed declared
        capacity, for every resource the project has assignments on. Bookings
        from other projects on the same resource count toward the total.
        """
        resource_ids = sorted({a.resource_id for a in self.project_assignments(context)})
        found: List[ConflictEntry] = []
        for rid in resource_ids:
            resource = self.ledger.resource(rid)
            with self.ledger.lock(rid):
                if resource.kind.is_time_based:
                    for day, booked in sorted(self.ledger.booked_days(rid).items()):
                        limit = self.ledger.declared_capacity(rid, day)
                        if booked > limit + EPSILON:
                            found.append(
                                ConflictEntry(
                                    resource_id=rid,
                                    date=day,
                                    booked=round(booked, 6),
                                    capacity=limit,
                                    overshoot=round(booked - limit, 6),
                                    assignment_ids=self.ledger.overlapping(rid, day),
                                )
                            )
                else:
                    assignments = self.ledger.assignments(rid)
                    consumed = sum(a.amount for a in assignments)
                    stock = resource.quantity or 0.0
                    if consumed > stock + EPSILON:
                        found.append(
                            ConflictEntry(
                                resource_id=rid,
                                date=min(a.start for a in assignments),
                                booked=round(consumed, 6),
                                capacity=stock,
                                overshoot=round(consumed - stock, 6),
                                assignment_ids=tuple(a.id for a in assignments),
                            )
                        )
        if found:
            logger.warning(f"Project {context.project_id}: {len(found)} over-allocated resource-day(s)")
        return found

    def conflict_reports(self, context: ProjectContext) -> List[ConflictReport]:
        grouped: Dict[str, List[ConflictEntry]] = defaultdict(list)
        for entry in self.conflicts(context):
            grouped[entry.resource_id].append(entry)
        return [ConflictReport(resource_id=rid, entries=tuple(entries)) for rid, entries in sorted(grouped.items())]

    def misaligned(self, context: ProjectContext) -> List[Assignment]:
        """Assignments that no longer overlap their task's current window."""
        out = []
        for assignment in self.project_assignments(context):
            task = context.task(assignment.task_id)
            if task.window is None or assignment.end < task.start or assignment.start > task.end:
                out.append(assignment)
        return out

    def utilization(
        self,
        resource_id: str,
        start: date,
        end: date,
        granularity: str = "day",
    ) -> List[UtilizationEntry]:
        """
        Booked/capacity per period over [start, end]; a pure read.
        ``granularity`` is "day" or "week" (weeks are 7-day buckets from ``start``).
        """
        if start > end:
            raise InvalidIntervalError(f"Interval start {start} is after end {end}", start=str(start), end=str(end))
        if granularity not in ("day", "week"):
            raise InvalidIntervalError(f"Unknown granularity {granularity}", granularity=granularity)
        resource = self.ledger.resource(resource_id)
        step = 1 if granularity == "day" else 7
        entries: List[UtilizationEntry] = []
        with self.ledger.lock(resource_id):
            booked_days = self.ledger.booked_days(resource_id)
            period_start = start
            while period_start <= end:
                period_end = min(end, period_start + timedelta(days=step - 1))
                if resource.kind.is_time_based:
                    booked = sum(booked_days.get(d, 0.0) for d in days(period_start, period_end))
                    capacity = sum(self.ledger.declared_capacity(resource_id, d) for d in days(period_start, period_end))
                else:
                    booked = sum(
                        a.amount for a in self.ledger.assignments(resource_id) if period_start <= a.start <= period_end
                    )
                    capacity = resource.quantity or 0.0
                entries.append(
                    UtilizationEntry(
                        resource_id=resource_id,
                        period_start=period_start,
                        period_end=period_end,
                        booked=round(booked, 6),
                        capacity=round(capacity, 6),
                    )
                )
                period_start = period_end + timedelta(days=1)
        return entries
