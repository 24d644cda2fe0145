import dataclasses
import logging
import threading
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional

from planrx.engine import critical_path
from planrx.engine.cancellation import Deadline
from planrx.graph.task_graph import TaskGraph, version_token
from planrx.models.entities import Dependency, Task, TaskStatus
from planrx.models.errors import (
    DuplicateTaskError,
    InvalidDependencyError,
    InvalidIntervalError,
    InvalidProgressError,
    NotFoundError,
)
from planrx.models.results import CriticalPathResult

logger = logging.getLogger(__name__)


class ProjectContext:
    """
    Per-project scheduling state: the caller's task and dependency snapshot
    plus the graph derived from it. Every engine call takes a context
    explicitly; nothing here is process-wide.
    """

    def __init__(self, project_id: str, tasks: Iterable[Task], dependencies: Iterable[Dependency] = ()):
        self.project_id = project_id
        self._tasks: Dict[str, Task] = {}
        for task in tasks:
            if task.project_id != project_id:
                raise InvalidDependencyError(
                    f"Task {task.id} belongs to project {task.project_id}, not {project_id}",
                    task_id=task.id,
                )
            if task.id in self._tasks:
                raise DuplicateTaskError(f"Duplicate task id {task.id}", task_id=task.id)
            self._tasks[task.id] = task
        deps = list(dependencies)
        # validate eagerly so a bad snapshot never becomes a context
        self._graph: Optional[TaskGraph] = TaskGraph.build(self._tasks.values(), deps)
        self._dependencies: Dict[tuple, Dependency] = {d.key: d for d in deps}
        self._lock = threading.RLock()

    @property
    def version(self) -> str:
        """Token of the current task/edge set, compared against graph versions."""
        with self._lock:
            return version_token(self._tasks, self._dependencies.values())

    def graph(self) -> TaskGraph:
        with self._lock:
            if self._graph is None:
                self._graph = TaskGraph.build(self._tasks.values(), self._dependencies.values())
            return self._graph

    def task(self, task_id: str) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise NotFoundError("Task", task_id) from None

    def tasks(self) -> List[Task]:
        with self._lock:
            return [self._tasks[tid] for tid in sorted(self._tasks)]

    def dependencies(self) -> List[Dependency]:
        with self._lock:
            return [self._dependencies[k] for k in sorted(self._dependencies)]

    def set_dependencies(self, dependencies: Iterable[Dependency]) -> TaskGraph:
        """Replace the edge set; the new graph is built before anything is swapped."""
        edges = list(dependencies)
        graph = TaskGraph.build(self._tasks.values(), edges)
        deps = {d.key: d for d in edges}
        with self._lock:
            self._dependencies = deps
            self._graph = graph
        logger.info(f"Project {self.project_id}: dependencies replaced ({len(deps)} edges)")
        return graph

    def add_dependency(self, dependency: Dependency) -> TaskGraph:
        with self._lock:
            return self.set_dependencies(list(self._dependencies.values()) + [dependency])

    def remove_dependency(self, predecessor_id: str, successor_id: str) -> TaskGraph:
        with self._lock:
            if (predecessor_id, successor_id) not in self._dependencies:
                raise NotFoundError("Dependency", f"{predecessor_id}->{successor_id}")
            remaining = [d for k, d in self._dependencies.items() if k != (predecessor_id, successor_id)]
            return self.set_dependencies(remaining)

    def critical_path(
        self,
        task_durations: Optional[Mapping[str, float]] = None,
        deadline: Optional[Deadline] = None,
        require_durations: bool = False,
        batch_size: int = critical_path.DEFAULT_BATCH_SIZE,
        graph: Optional[TaskGraph] = None,
    ) -> CriticalPathResult:
        """
        Compute CPM timings. An explicitly supplied ``graph`` is checked
        against the current edge set and refused if it is stale.
        """
        with self._lock:
            graph = graph if graph is not None else self.graph()
            expected = self.version
            durations = {tid: t.duration for tid, t in self._tasks.items()}
        durations.update(task_durations or {})
        return critical_path.compute(
            graph,
            durations,
            expected_version=expected,
            deadline=deadline,
            require_durations=require_durations,
            batch_size=batch_size,
        )

    def _replace(self, task_id: str, **changes) -> Task:
        with self._lock:
            task = dataclasses.replace(self.task(task_id), **changes)
            self._tasks[task_id] = task
            self._graph = None
            return task

    def reschedule(self, task_id: str, start: date, end: date) -> Task:
        if start > end:
            raise InvalidIntervalError(f"Task {task_id}: start {start} is after end {end}", task_id=task_id)
        task = self._replace(task_id, start=start, end=end)
        logger.info(f"Project {self.project_id}: task {task_id} rescheduled to {start}..{end}")
        return task

    def set_duration(self, task_id: str, duration: Optional[float]) -> Task:
        return self._replace(task_id, duration=duration)

    def _progress_changes(
        self,
        current: Task,
        completion_percentage: float,
        status: Optional[TaskStatus],
        reopen: bool,
    ) -> Dict[str, object]:
        if not 0 <= completion_percentage <= 100:
            raise InvalidProgressError(
                f"Task {current.id}: completion {completion_percentage} outside [0, 100]",
                task_id=current.id,
            )
        if completion_percentage < current.completion_percentage and not reopen:
            raise InvalidProgressError(
                f"Task {current.id}: completion cannot drop from "
                f"{current.completion_percentage} to {completion_percentage} without reopening",
                task_id=current.id,
            )
        if status is None:
            if completion_percentage >= 100:
                status = TaskStatus.COMPLETED
            elif completion_percentage > 0:
                status = TaskStatus.IN_PROGRESS
            elif reopen:
                status = TaskStatus.NOT_STARTED
            else:
                status = current.status
        return {"completion_percentage": completion_percentage, "status": status}

    def update_progress(
        self,
        task_id: str,
        completion_percentage: float,
        status: Optional[TaskStatus] = None,
        reopen: bool = False,
    ) -> Task:
        """
        Record progress. Completion stays in [0, 100] and never decreases
        unless the task is explicitly reopened.
        """
        with self._lock:
            changes = self._progress_changes(self.task(task_id), completion_percentage, status, reopen)
            return self._replace(task_id, **changes)

    def update_task(
        self,
        task_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        completion_percentage: Optional[float] = None,
        status: Optional[TaskStatus] = None,
        reopen: bool = False,
    ) -> Task:
        """Apply a window change and a progress update together, or neither."""
        if (start is None) != (end is None):
            raise InvalidIntervalError(f"Task {task_id}: start and end must be given together", task_id=task_id)
        if start is not None and start > end:
            raise InvalidIntervalError(f"Task {task_id}: start {start} is after end {end}", task_id=task_id)
        with self._lock:
            current = self.task(task_id)
            changes: Dict[str, object] = {}
            if completion_percentage is not None:
                changes.update(self._progress_changes(current, completion_percentage, status, reopen))
            elif status is not None:
                changes["status"] = status
            if start is not None:
                changes.update(start=start, end=end)
            if not changes:
                raise InvalidProgressError(f"Task {task_id}: nothing to update", task_id=task_id)
            task = self._replace(task_id, **changes)
        logger.info(f"Project {self.project_id}: task {task_id} updated ({', '.join(sorted(changes))})")
        return task

    def apply_schedule(self, project_start: date, result: Optional[CriticalPathResult] = None) -> CriticalPathResult:
        """Write the early-schedule CPM windows onto the task records."""
        result = result or self.critical_path()
        windows = critical_path.schedule_dates(result, project_start)
        with self._lock:
            for tid, (start, end) in windows.items():
                self._tasks[tid] = dataclasses.replace(self._tasks[tid], start=start, end=end)
            self._graph = None
        logger.info(f"Project {self.project_id}: applied schedule from {project_start} ({len(windows)} tasks)")
        return result
