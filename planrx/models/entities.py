from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import FrozenSet, Optional


class TaskStatus(str, Enum):
    NOT_STARTED = "NotStarted"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    BLOCKED = "Blocked"


class DependencyType(str, Enum):
    FINISH_TO_START = "FinishToStart"
    START_TO_START = "StartToStart"
    FINISH_TO_FINISH = "FinishToFinish"
    START_TO_FINISH = "StartToFinish"


class ResourceKind(str, Enum):
    HUMAN = "Human"
    EQUIPMENT = "Equipment"
    MATERIAL = "Material"

    @property
    def is_time_based(self) -> bool:
        return self is not ResourceKind.MATERIAL


@dataclass(frozen=True)
class Task:
    id: str
    project_id: str
    duration: Optional[float] = None  # days; None = milestone unless durations are required
    status: TaskStatus = TaskStatus.NOT_STARTED
    phase_id: Optional[str] = None
    parent_id: Optional[str] = None
    completion_percentage: float = 0.0
    start: Optional[date] = None  # planned window, inclusive
    end: Optional[date] = None
    milestone: bool = False

    @property
    def window(self):
        if self.start is None or self.end is None:
            return None
        return self.start, self.end


@dataclass(frozen=True)
class Dependency:
    predecessor_id: str
    successor_id: str
    type: DependencyType = DependencyType.FINISH_TO_START
    lag_days: float = 0

    @property
    def key(self):
        return self.predecessor_id, self.successor_id


@dataclass(frozen=True)
class Resource:
    id: str
    kind: ResourceKind = ResourceKind.HUMAN
    capacity_per_day: float = 8.0  # hours/day for Human and Equipment
    quantity: Optional[float] = None  # depletable stock for Material
    cost_rate: float = 0.0  # per hour, or per unit for Material
    unavailable_dates: FrozenSet[date] = field(default_factory=frozenset)


@dataclass(frozen=True)
class AssignmentRequest:
    resource_id: str
    task_id: str
    start: date
    end: date
    amount: float  # allocation percentage, or quantity for Material


@dataclass(frozen=True)
class Assignment:
    id: str
    resource_id: str
    task_id: str
    project_id: str
    start: date
    end: date
    amount: float
    daily_amount: Optional[float]  # hours booked per day; None for Material
    total: float  # hours, or units for Material
    cost: float = 0.0
    over_allocated: bool = False

    @property
    def units(self) -> str:
        return "hours" if self.daily_amount is not None else "units"
