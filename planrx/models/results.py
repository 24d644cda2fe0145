from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple


@dataclass(frozen=True)
class TaskTiming:
    task_id: str
    duration: float
    earliest_start: float
    earliest_finish: float
    latest_start: float
    latest_finish: float
    slack: float

    @property
    def critical(self) -> bool:
        return self.slack == 0


@dataclass(frozen=True)
class CriticalPathResult:
    graph_version: str
    timings: Mapping[str, TaskTiming]
    critical_path: Tuple[str, ...]
    project_duration: float
    order: Tuple[str, ...]
    summaries: Mapping[str, Tuple[float, float]] = field(default_factory=dict)

    def critical_tasks(self) -> List[str]:
        return [tid for tid in self.order if self.timings[tid].critical]


@dataclass(frozen=True)
class ConflictEntry:
    resource_id: str
    date: date
    booked: float
    capacity: float
    overshoot: float
    requested: float = 0.0
    assignment_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ConflictReport:
    resource_id: str
    entries: Tuple[ConflictEntry, ...]
    task_id: Optional[str] = None
    start: Optional[date] = None
    end: Optional[date] = None
    requested: Optional[float] = None

    @property
    def dates(self) -> List[date]:
        return [e.date for e in self.entries]

    def intervals(self) -> List[Tuple[date, date]]:
        """Merge consecutive conflicting days into inclusive (start, end) spans."""
        spans: List[Tuple[date, date]] = []
        for day in sorted(set(self.dates)):
            if spans and spans[-1][1] + timedelta(days=1) == day:
                spans[-1] = (spans[-1][0], day)
            else:
                spans.append((day, day))
        return spans


@dataclass(frozen=True)
class UtilizationEntry:
    resource_id: str
    period_start: date
    period_end: date
    booked: float
    capacity: float

    @property
    def ratio(self) -> Optional[float]:
        if self.capacity <= 0:
            return None
        return round(self.booked / self.capacity, 6)


@dataclass(frozen=True)
class BaselineTask:
    task_id: str
    start: Optional[date]
    end: Optional[date]
    sequence: int
    duration: float


@dataclass(frozen=True)
class Baseline:
    id: str
    project_id: str
    version: int
    created_at: datetime
    tasks: Mapping[str, BaselineTask]

    @classmethod
    def create(cls, project_id: str, version: int, tasks: Dict[str, BaselineTask], created_at: datetime) -> "Baseline":
        return cls(
            id=f"{project_id}@v{version}",
            project_id=project_id,
            version=version,
            created_at=created_at,
            tasks=MappingProxyType(dict(tasks)),
        )


@dataclass(frozen=True)
class TaskVariance:
    task_id: str
    baseline_start: Optional[date]
    baseline_end: Optional[date]
    current_start: Optional[date]
    current_end: Optional[date]
    start_delta: Optional[int]
    finish_delta: Optional[int]


@dataclass(frozen=True)
class VarianceReport:
    project_id: str
    baseline_id: str
    as_of: Optional[date]
    tasks: Mapping[str, TaskVariance]
    added: Tuple[str, ...]
    removed: Tuple[str, ...]
    earned_duration: float
    planned_duration: float
    schedule_performance_index: Optional[float]


@dataclass(frozen=True)
class EarnedValue:
    planned_value: float
    earned_value: float
    actual_cost: float

    @property
    def cost_variance(self) -> float:
        return round(self.earned_value - self.actual_cost, 6)

    @property
    def schedule_variance(self) -> float:
        return round(self.earned_value - self.planned_value, 6)

    @property
    def cost_performance_index(self) -> Optional[float]:
        if not self.actual_cost:
            return None
        return round(self.earned_value / self.actual_cost, 6)

    @property
    def schedule_performance_index(self) -> Optional[float]:
        if not self.planned_value:
            return None
        return round(self.earned_value / self.planned_value, 6)
