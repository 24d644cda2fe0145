"""
Engine error taxonomy.

Input errors are rejected before any computation, resource errors are
business outcomes that leave state untouched, and consistency errors ask the
caller to rebuild. Every error carries a stable ``code`` used by the service
facade to build typed results.
"""

from typing import Any, Dict, List, Optional


class SchedulingError(Exception):
    code = "scheduling_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details


class InputError(SchedulingError):
    code = "invalid_input"


class CycleError(InputError):
    code = "cycle"

    def __init__(self, path: List[str], kind: str = "dependency"):
        super().__init__(f"Cyclic {kind} relation: {' -> '.join(path + path[:1])}", path=list(path), kind=kind)
        self.path = list(path)


class MissingDurationError(InputError):
    code = "missing_duration"

    def __init__(self, task_id: str, reason: str = "no duration estimate"):
        super().__init__(f"Task {task_id}: {reason}", task_id=task_id)
        self.task_id = task_id


class InvalidIntervalError(InputError):
    code = "invalid_interval"


class InvalidAmountError(InputError):
    code = "invalid_amount"


class InvalidDependencyError(InputError):
    code = "invalid_dependency"


class InvalidProgressError(InputError):
    code = "invalid_progress"


class DuplicateTaskError(InputError):
    code = "duplicate_task"


class DuplicateAssignmentError(InputError):
    code = "duplicate_assignment"


class NotFoundError(SchedulingError):
    code = "not_found"

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} {identifier} not found", kind=kind, id=identifier)


class ResourceError(SchedulingError):
    code = "resource_error"


class ConflictError(ResourceError):
    code = "conflict"

    def __init__(self, report):
        super().__init__(
            f"Resource {report.resource_id} over-committed on {len(report.entries)} day(s)",
            report=report,
        )
        self.report = report


class ConsistencyError(SchedulingError):
    code = "consistency_error"


class StaleGraphError(ConsistencyError):
    code = "stale_graph"

    def __init__(self, graph_version: str, expected_version: Optional[str]):
        super().__init__(
            "Task graph is stale; rebuild it from the current dependency set",
            graph_version=graph_version,
            expected_version=expected_version,
        )


class ComputationCancelled(SchedulingError):
    code = "cancelled"
