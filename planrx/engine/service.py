"""
Library boundary of the scheduling engine.

Collaborators call SchedulingService with plain records and get an Outcome
back: either a value or an ErrorDetail carrying a stable error code. Engine
exceptions never cross this boundary.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, Generic, Iterable, List, Mapping, Optional, TypeVar

from planrx.engine.allocation import AllocationEngine
from planrx.engine.baseline import BaselineTracker
from planrx.engine.cancellation import Deadline
from planrx.engine.context import ProjectContext
from planrx.engine import critical_path
from planrx.engine.critical_path import DEFAULT_BATCH_SIZE
from planrx.engine.ledger import ResourceLedger
from planrx.graph.task_graph import TaskGraph
from planrx.models.entities import Assignment, AssignmentRequest, Dependency, Resource, Task, TaskStatus
from planrx.models.errors import ConflictError, NotFoundError, SchedulingError
from planrx.models.results import (
    Baseline,
    ConflictEntry,
    ConflictReport,
    CriticalPathResult,
    EarnedValue,
    UtilizationEntry,
    VarianceReport,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ErrorDetail:
    code: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: SchedulingError) -> "ErrorDetail":
        return cls(code=exc.code, message=exc.message, details=dict(exc.details))


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: Optional[T] = None
    error: Optional[ErrorDetail] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SchedulingService:
    def __init__(
        self,
        ledger: Optional[ResourceLedger] = None,
        tracker: Optional[BaselineTracker] = None,
        time_limit_seconds: Optional[float] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.ledger = ledger or ResourceLedger()
        self.allocator = AllocationEngine(self.ledger, id_factory)
        self.tracker = tracker or BaselineTracker()
        self.time_limit_seconds = time_limit_seconds
        self.batch_size = batch_size
        self._contexts: Dict[str, ProjectContext] = {}
        self._lock = threading.Lock()

    def _run(self, operation: str, fn: Callable[..., T], *args, **kwargs) -> Outcome[T]:
        try:
            return Outcome(value=fn(*args, **kwargs))
        except SchedulingError as exc:
            logger.warning(f"{operation} failed [{exc.code}]: {exc.message}")
            return Outcome(error=ErrorDetail.from_exception(exc))

    def context(self, project_id: str) -> ProjectContext:
        with self._lock:
            try:
                return self._contexts[project_id]
            except KeyError:
                raise NotFoundError("Project", project_id) from None

    def load_project(
        self, project_id: str, tasks: Iterable[Task], dependencies: Iterable[Dependency] = ()
    ) -> Outcome[ProjectContext]:
        """Build (and validate) a project context, replacing any previous one."""

        def load():
            context = ProjectContext(project_id, tasks, dependencies)
            with self._lock:
                self._contexts[project_id] = context
            logger.info(f"Loaded project {project_id}: {len(context.tasks())} tasks, {len(context.dependencies())} edges")
            return context

        return self._run("load_project", load)

    def register_resources(self, resources: Iterable[Resource]) -> Outcome[List[Resource]]:
        def register():
            registered = list(resources)
            for resource in registered:
                self.ledger.register(resource)
            return registered

        return self._run("register_resources", register)

    def tasks(self, project_id: str) -> Outcome[List[Task]]:
        return self._run("tasks", lambda: self.context(project_id).tasks())

    def set_dependencies(self, project_id: str, dependencies: Iterable[Dependency]) -> Outcome[str]:
        return self._run(
            "set_dependencies", lambda: self.context(project_id).set_dependencies(list(dependencies)).version
        )

    def critical_path(
        self,
        project_id: str,
        task_durations: Optional[Mapping[str, float]] = None,
        require_durations: bool = False,
        deadline: Optional[Deadline] = None,
    ) -> Outcome[CriticalPathResult]:
        def compute():
            return self.context(project_id).critical_path(
                task_durations,
                deadline=deadline or Deadline(self.time_limit_seconds),
                require_durations=require_durations,
                batch_size=self.batch_size,
            )

        return self._run("critical_path", compute)

    def apply_schedule(self, project_id: str, project_start: date) -> Outcome[CriticalPathResult]:
        return self._run("apply_schedule", lambda: self.context(project_id).apply_schedule(project_start))

    def reschedule(self, project_id: str, task_id: str, start: date, end: date) -> Outcome[Task]:
        return self._run("reschedule", lambda: self.context(project_id).reschedule(task_id, start, end))

    def update_progress(
        self,
        project_id: str,
        task_id: str,
        completion_percentage: float,
        status: Optional[TaskStatus] = None,
        reopen: bool = False,
    ) -> Outcome[Task]:
        return self._run(
            "update_progress",
            lambda: self.context(project_id).update_progress(task_id, completion_percentage, status, reopen),
        )

    def update_task(
        self,
        project_id: str,
        task_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        completion_percentage: Optional[float] = None,
        status: Optional[TaskStatus] = None,
        reopen: bool = False,
    ) -> Outcome[Task]:
        return self._run(
            "update_task",
            lambda: self.context(project_id).update_task(task_id, start, end, completion_percentage, status, reopen),
        )

    def allocate(
        self, project_id: str, request: AssignmentRequest, accept_overallocation: bool = False
    ) -> Outcome[Assignment]:
        """A conflict comes back as error code ``conflict`` with the report in details."""

        def allocate():
            result = self.allocator.allocate(self.context(project_id), request, accept_overallocation)
            if isinstance(result, ConflictReport):
                raise ConflictError(result)
            return result

        return self._run("allocate", allocate)

    def release(self, assignment_id: str) -> Outcome[Assignment]:
        return self._run("release", self.allocator.release, assignment_id)

    def assignments(self, project_id: str) -> Outcome[List[Assignment]]:
        return self._run("assignments", lambda: self.allocator.project_assignments(self.context(project_id)))

    def conflicts(self, project_id: str) -> Outcome[List[ConflictEntry]]:
        return self._run("conflicts", lambda: self.allocator.conflicts(self.context(project_id)))

    def misaligned(self, project_id: str) -> Outcome[List[Assignment]]:
        return self._run("misaligned", lambda: self.allocator.misaligned(self.context(project_id)))

    def utilization(
        self, resource_id: str, start: date, end: date, granularity: str = "day"
    ) -> Outcome[List[UtilizationEntry]]:
        return self._run("utilization", self.allocator.utilization, resource_id, start, end, granularity)

    def snapshot(self, project_id: str) -> Outcome[Baseline]:
        return self._run("snapshot", lambda: self.tracker.snapshot(self.context(project_id)))

    def baselines(self, project_id: str) -> Outcome[List[Baseline]]:
        return self._run("baselines", lambda: self.tracker.baselines(self.context(project_id).project_id))

    def variance(self, project_id: str, baseline_id: str, as_of: Optional[date] = None) -> Outcome[VarianceReport]:
        return self._run("variance", lambda: self.tracker.variance(self.context(project_id), baseline_id, as_of))

    def earned_value(
        self,
        project_id: str,
        baseline_id: str,
        budgets: Mapping[str, float],
        actual_costs: Mapping[str, float],
        as_of: Optional[date] = None,
    ) -> Outcome[EarnedValue]:
        return self._run(
            "earned_value",
            lambda: self.tracker.earned_value(self.context(project_id), baseline_id, budgets, actual_costs, as_of),
        )

    def validate_snapshot(
        self,
        tasks: Iterable[Task],
        dependencies: Iterable[Dependency] = (),
        task_durations: Optional[Mapping[str, float]] = None,
        require_durations: bool = False,
    ) -> Outcome[TaskGraph]:
        """Build the graph and resolve durations without running the passes."""

        def validate():
            graph = TaskGraph.build(tasks, dependencies)
            critical_path.resolve_durations(graph, task_durations, require_durations)
            return graph

        return self._run("validate_snapshot", validate)

    def compute_critical_path(
        self,
        tasks: Iterable[Task],
        dependencies: Iterable[Dependency] = (),
        task_durations: Optional[Mapping[str, float]] = None,
        require_durations: bool = False,
        graph: Optional[TaskGraph] = None,
    ) -> Outcome[CriticalPathResult]:
        """Stateless critical path over a caller-supplied snapshot (or a graph already built from one)."""

        def compute():
            built = graph if graph is not None else TaskGraph.build(tasks, dependencies)
            return critical_path.compute(
                built,
                task_durations,
                deadline=Deadline(self.time_limit_seconds),
                require_durations=require_durations,
                batch_size=self.batch_size,
            )

        return self._run("compute_critical_path", compute)
