"""
Resource ledger: capacity and committed bookings per resource.

Human and Equipment resources are rate-based: every day has a declared
capacity (hours) and a booked amount, and bookings are prorated as
allocation_percentage x capacity_per_day. Material resources hold a finite
stock that bookings deplete; the stock can never go negative.

Each resource has its own re-entrant lock. A booking is staged on a copy of
the resource's day map and swapped in only after every day has been checked,
so readers never see half an assignment.
"""

import copy
import logging
import threading
from collections import defaultdict
from contextlib import ExitStack, contextmanager
from datetime import date, timedelta
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from planrx.models.entities import Assignment, Resource
from planrx.models.errors import ConflictError, DuplicateAssignmentError, InvalidIntervalError, NotFoundError
from planrx.models.results import ConflictEntry, ConflictReport

logger = logging.getLogger(__name__)

EPSILON = 1e-9


def days(start: date, end: date) -> Iterator[date]:
    """Every day in the inclusive range [start, end]."""
    if start > end:
        raise InvalidIntervalError(f"Interval start {start} is after end {end}", start=str(start), end=str(end))
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


def _q(value: float) -> float:
    return round(value, 6)


class ResourceLedger:
    def __init__(self, resources: Iterable[Resource] = ()):
        self._resources: Dict[str, Resource] = {}
        self._assignments: Dict[str, Assignment] = {}
        self._by_resource: Dict[str, List[str]] = defaultdict(list)
        self._daily: Dict[str, Dict[date, float]] = defaultdict(dict)
        self._consumed: Dict[str, float] = defaultdict(float)
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()
        for resource in resources:
            self.register(resource)

    def register(self, resource: Resource) -> None:
        """Add or refresh a resource's reference data; bookings are kept."""
        with self._registry_lock:
            self._resources[resource.id] = resource
            self._locks.setdefault(resource.id, threading.RLock())

    def resource(self, resource_id: str) -> Resource:
        try:
            return self._resources[resource_id]
        except KeyError:
            raise NotFoundError("Resource", resource_id) from None

    def resources(self) -> List[Resource]:
        return [self._resources[rid] for rid in sorted(self._resources)]

    @contextmanager
    def lock(self, resource_id: str):
        self.resource(resource_id)
        lock = self._locks[resource_id]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()

    def declared_capacity(self, resource_id: str, day: date) -> float:
        resource = self.resource(resource_id)
        if not resource.kind.is_time_based:
            return resource.quantity or 0.0
        if day in resource.unavailable_dates:
            return 0.0
        return resource.capacity_per_day

    def booked(self, resource_id: str, day: date) -> float:
        resource = self.resource(resource_id)
        with self.lock(resource_id):
            if not resource.kind.is_time_based:
                return _q(self._consumed[resource_id])
            return _q(self._daily[resource_id].get(day, 0.0))

    def capacity(self, resource_id: str, day: date) -> float:
        """Remaining capacity on ``day`` (remaining stock for Material)."""
        with self.lock(resource_id):
            return max(0.0, _q(self.declared_capacity(resource_id, day) - self.booked(resource_id, day)))

    def booked_days(self, resource_id: str) -> Dict[date, float]:
        with self.lock(resource_id):
            return dict(self._daily[resource_id])

    def daily_amount(self, resource: Resource, amount: float) -> Optional[float]:
        if not resource.kind.is_time_based:
            return None
        return _q(amount / 100.0 * resource.capacity_per_day)

    def shortfall(self, resource_id: str, start: date, end: date, amount: float) -> List[ConflictEntry]:
        """
        Days in [start, end] that cannot absorb ``amount`` on top of existing
        bookings. ``amount`` is hours/day for rate resources and a total
        quantity for Material.
        """
        resource = self.resource(resource_id)
        with self.lock(resource_id):
            if not resource.kind.is_time_based:
                stock = resource.quantity or 0.0
                consumed = self._consumed[resource_id]
                if consumed + amount > stock + EPSILON:
                    return [
                        ConflictEntry(
                            resource_id=resource_id,
                            date=start,
                            booked=_q(consumed),
                            capacity=stock,
                            overshoot=_q(consumed + amount - stock),
                            requested=amount,
                        )
                    ]
                return []
            entries = []
            booked = self._daily[resource_id]
            for day in days(start, end):
                current = booked.get(day, 0.0)
                limit = self.declared_capacity(resource_id, day)
                if current + amount > limit + EPSILON:
                    entries.append(
                        ConflictEntry(
                            resource_id=resource_id,
                            date=day,
                            booked=_q(current),
                            capacity=limit,
                            overshoot=_q(current + amount - limit),
                            requested=amount,
                        )
                    )
            return entries

    def record(self, assignment: Assignment) -> Assignment:
        """
        Commit an assignment atomically.

        Raises ConflictError (and changes nothing) when the booking exceeds
        capacity on any day, unless the assignment is an accepted
        over-allocation. Material stock can never be overdrawn.
        """
        resource = self.resource(assignment.resource_id)
        with self.lock(resource.id):
            if assignment.id in self._assignments:
                raise DuplicateAssignmentError(
                    f"Assignment {assignment.id} already recorded", assignment_id=assignment.id
                )
            per_day = assignment.daily_amount if resource.kind.is_time_based else assignment.amount
            entries = self.shortfall(resource.id, assignment.start, assignment.end, per_day)
            if entries and (not assignment.over_allocated or not resource.kind.is_time_based):
                raise ConflictError(
                    ConflictReport(
                        resource_id=resource.id,
                        entries=tuple(entries),
                        task_id=assignment.task_id,
                        start=assignment.start,
                        end=assignment.end,
                        requested=assignment.amount,
                    )
                )
            if resource.kind.is_time_based:
                staged = dict(self._daily[resource.id])
                for day in days(assignment.start, assignment.end):
                    staged[day] = staged.get(day, 0.0) + per_day
                self._daily[resource.id] = staged
            else:
                self._consumed[resource.id] += per_day
            self._assignments[assignment.id] = assignment
            self._by_resource[resource.id].append(assignment.id)
            self._by_resource[resource.id].sort(key=lambda aid: (self._assignments[aid].start, aid))
        logger.debug(f"Recorded assignment {assignment.id} on {resource.id}: {assignment.start}..{assignment.end}")
        return assignment

    def release(self, assignment_id: str) -> Assignment:
        assignment = self.assignment(assignment_id)
        resource = self.resource(assignment.resource_id)
        with self.lock(resource.id):
            if assignment_id not in self._assignments:
                raise NotFoundError("Assignment", assignment_id)
            if resource.kind.is_time_based:
                staged = dict(self._daily[resource.id])
                for day in days(assignment.start, assignment.end):
                    remaining = _q(staged.get(day, 0.0) - assignment.daily_amount)
                    if remaining <= EPSILON:
                        staged.pop(day, None)
                    else:
                        staged[day] = remaining
                self._daily[resource.id] = staged
            else:
                self._consumed[resource.id] = max(0.0, self._consumed[resource.id] - assignment.amount)
            del self._assignments[assignment_id]
            self._by_resource[resource.id].remove(assignment_id)
        logger.debug(f"Released assignment {assignment_id} on {resource.id}")
        return assignment

    def assignment(self, assignment_id: str) -> Assignment:
        try:
            return self._assignments[assignment_id]
        except KeyError:
            raise NotFoundError("Assignment", assignment_id) from None

    def assignments(self, resource_id: Optional[str] = None) -> List[Assignment]:
        if resource_id is None:
            with self._registry_lock:
                resource_ids = sorted(self._locks)
            out: List[Assignment] = []
            for rid in resource_ids:
                out.extend(self.assignments(rid))
            return out
        with self.lock(resource_id):
            return [self._assignments[aid] for aid in self._by_resource[resource_id]]

    def overlapping(self, resource_id: str, day: date) -> Tuple[str, ...]:
        return tuple(a.id for a in self.assignments(resource_id) if a.start <= day <= a.end)

    def snapshot(self) -> Dict[str, object]:
        """Deep copy of all booking state."""
        with ExitStack() as stack:
            for rid in sorted(self._locks):
                stack.enter_context(self._locks[rid])
            return copy.deepcopy(
                {
                    "assignments": dict(self._assignments),
                    "daily": {rid: dict(d) for rid, d in self._daily.items() if d},
                    "consumed": {rid: v for rid, v in self._consumed.items() if v},
                }
            )
