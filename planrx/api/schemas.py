from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from planrx.models.entities import (
    Assignment,
    AssignmentRequest,
    Dependency,
    DependencyType,
    Resource,
    ResourceKind,
    Task,
    TaskStatus,
)
from planrx.models.results import (
    Baseline,
    ConflictEntry,
    ConflictReport,
    CriticalPathResult,
    EarnedValue,
    UtilizationEntry,
    VarianceReport,
)


class TaskDTO(BaseModel):
    id: str
    project_id: Optional[str] = None
    phase_id: Optional[str] = None
    parent_id: Optional[str] = None
    duration: Optional[float] = Field(None, ge=0)
    status: TaskStatus = TaskStatus.NOT_STARTED
    completion_percentage: float = Field(0.0, ge=0, le=100)
    start: Optional[date] = None
    end: Optional[date] = None
    milestone: bool = False

    @model_validator(mode="after")
    def validate_window(self):
        """Planned window must be [start, end] with start <= end."""
        if self.start and self.end and self.start > self.end:
            raise ValueError("task window must have start <= end")
        return self

    @classmethod
    def from_domain(cls, t: Task) -> "TaskDTO":
        return cls(
            id=t.id,
            project_id=t.project_id,
            phase_id=t.phase_id,
            parent_id=t.parent_id,
            duration=t.duration,
            status=t.status,
            completion_percentage=t.completion_percentage,
            start=t.start,
            end=t.end,
            milestone=t.milestone,
        )

    def to_domain(self, project_id: str) -> Task:
        return Task(
            id=self.id,
            project_id=self.project_id or project_id,
            duration=self.duration,
            status=self.status,
            phase_id=self.phase_id,
            parent_id=self.parent_id,
            completion_percentage=self.completion_percentage,
            start=self.start,
            end=self.end,
            milestone=self.milestone,
        )


class DependencyDTO(BaseModel):
    task_id: str
    dependency_task_id: str
    type: DependencyType = DependencyType.FINISH_TO_START
    lag_days: float = 0

    def to_domain(self) -> Dependency:
        return Dependency(
            predecessor_id=self.dependency_task_id,
            successor_id=self.task_id,
            type=self.type,
            lag_days=self.lag_days,
        )


class ResourceDTO(BaseModel):
    id: str
    kind: ResourceKind = ResourceKind.HUMAN
    capacity_per_day: float = Field(8.0, ge=0)
    quantity: Optional[float] = Field(None, ge=0)
    cost_rate: float = Field(0.0, ge=0)
    unavailable_dates: List[date] = []

    @model_validator(mode="after")
    def validate_kind(self):
        """Material resources are a depletable stock and need a quantity."""
        if self.kind is ResourceKind.MATERIAL and self.quantity is None:
            raise ValueError("material resources require a quantity")
        return self

    def to_domain(self) -> Resource:
        return Resource(
            id=self.id,
            kind=self.kind,
            capacity_per_day=self.capacity_per_day,
            quantity=self.quantity,
            cost_rate=self.cost_rate,
            unavailable_dates=frozenset(self.unavailable_dates),
        )


class AssignmentRequestDTO(BaseModel):
    resource_id: str
    task_id: str
    start: date
    end: date
    allocation_percentage: Optional[float] = None
    quantity: Optional[float] = None
    accept_overallocation: bool = False

    @model_validator(mode="after")
    def validate_amount(self):
        if (self.allocation_percentage is None) == (self.quantity is None):
            raise ValueError("exactly one of allocation_percentage or quantity is required")
        return self

    def to_domain(self) -> AssignmentRequest:
        amount = self.allocation_percentage if self.allocation_percentage is not None else self.quantity
        return AssignmentRequest(
            resource_id=self.resource_id,
            task_id=self.task_id,
            start=self.start,
            end=self.end,
            amount=amount,
        )


class LoadProjectRequest(BaseModel):
    tasks: List[TaskDTO]
    dependencies: List[DependencyDTO] = []


class CriticalPathRequest(BaseModel):
    tasks: List[TaskDTO] = Field(..., min_length=1)
    dependencies: List[DependencyDTO] = []
    task_durations: Optional[Dict[str, float]] = None
    require_durations: bool = False


class TaskUpdateRequest(BaseModel):
    start: Optional[date] = None
    end: Optional[date] = None
    completion_percentage: Optional[float] = None
    status: Optional[TaskStatus] = None
    reopen: bool = False

    @model_validator(mode="after")
    def validate_window(self):
        if (self.start is None) != (self.end is None):
            raise ValueError("start and end must be given together")
        return self


class ScheduleRequest(BaseModel):
    project_start: date


class EarnedValueRequest(BaseModel):
    budgets: Dict[str, float]
    actual_costs: Dict[str, float] = {}
    as_of: Optional[date] = None

    @field_validator("budgets", "actual_costs")
    def validate_amounts(cls, v: Dict[str, float]):
        if any(amount < 0 for amount in v.values()):
            raise ValueError("amounts must be non-negative")
        return v


class TaskTimingDTO(BaseModel):
    task_id: str
    duration: float
    earliest_start: float
    earliest_finish: float
    latest_start: float
    latest_finish: float
    slack: float
    critical: bool


class CriticalPathResponse(BaseModel):
    graph_version: str
    project_duration: float
    critical_path: List[str]
    timings: List[TaskTimingDTO]
    summaries: Dict[str, List[float]] = {}
    cached: bool = False

    @classmethod
    def from_domain(cls, result: CriticalPathResult, cached: bool = False) -> "CriticalPathResponse":
        return cls(
            graph_version=result.graph_version,
            project_duration=result.project_duration,
            critical_path=list(result.critical_path),
            timings=[
                TaskTimingDTO(
                    task_id=t.task_id,
                    duration=t.duration,
                    earliest_start=t.earliest_start,
                    earliest_finish=t.earliest_finish,
                    latest_start=t.latest_start,
                    latest_finish=t.latest_finish,
                    slack=t.slack,
                    critical=t.critical,
                )
                for t in (result.timings[tid] for tid in result.order)
            ],
            summaries={k: list(v) for k, v in result.summaries.items()},
            cached=cached,
        )


class AssignmentDTO(BaseModel):
    id: str
    resource_id: str
    task_id: str
    project_id: str
    start: date
    end: date
    amount: float
    daily_amount: Optional[float]
    total: float
    units: str
    cost: float
    over_allocated: bool

    @classmethod
    def from_domain(cls, a: Assignment) -> "AssignmentDTO":
        return cls(
            id=a.id,
            resource_id=a.resource_id,
            task_id=a.task_id,
            project_id=a.project_id,
            start=a.start,
            end=a.end,
            amount=a.amount,
            daily_amount=a.daily_amount,
            total=a.total,
            units=a.units,
            cost=a.cost,
            over_allocated=a.over_allocated,
        )


class ConflictEntryDTO(BaseModel):
    resource_id: str
    date: date
    booked: float
    capacity: float
    overshoot: float
    requested: float = 0.0
    assignment_ids: List[str] = []

    @classmethod
    def from_domain(cls, e: ConflictEntry) -> "ConflictEntryDTO":
        return cls(
            resource_id=e.resource_id,
            date=e.date,
            booked=e.booked,
            capacity=e.capacity,
            overshoot=e.overshoot,
            requested=e.requested,
            assignment_ids=list(e.assignment_ids),
        )


class ConflictReportDTO(BaseModel):
    resource_id: str
    task_id: Optional[str] = None
    entries: List[ConflictEntryDTO]

    @classmethod
    def from_domain(cls, report: ConflictReport) -> "ConflictReportDTO":
        return cls(
            resource_id=report.resource_id,
            task_id=report.task_id,
            entries=[ConflictEntryDTO.from_domain(e) for e in report.entries],
        )


class UtilizationDTO(BaseModel):
    resource_id: str
    period_start: date
    period_end: date
    booked: float
    capacity: float
    ratio: Optional[float]

    @classmethod
    def from_domain(cls, u: UtilizationEntry) -> "UtilizationDTO":
        return cls(
            resource_id=u.resource_id,
            period_start=u.period_start,
            period_end=u.period_end,
            booked=u.booked,
            capacity=u.capacity,
            ratio=u.ratio,
        )


class BaselineTaskDTO(BaseModel):
    task_id: str
    start: Optional[date]
    end: Optional[date]
    sequence: int
    duration: float


class BaselineDTO(BaseModel):
    id: str
    project_id: str
    version: int
    created_at: datetime
    tasks: List[BaselineTaskDTO]

    @classmethod
    def from_domain(cls, b: Baseline) -> "BaselineDTO":
        return cls(
            id=b.id,
            project_id=b.project_id,
            version=b.version,
            created_at=b.created_at,
            tasks=[
                BaselineTaskDTO(
                    task_id=e.task_id, start=e.start, end=e.end, sequence=e.sequence, duration=e.duration
                )
                for e in sorted(b.tasks.values(), key=lambda e: e.sequence)
            ],
        )


class TaskVarianceDTO(BaseModel):
    task_id: str
    baseline_start: Optional[date]
    baseline_end: Optional[date]
    current_start: Optional[date]
    current_end: Optional[date]
    start_delta: Optional[int]
    finish_delta: Optional[int]


class VarianceResponse(BaseModel):
    project_id: str
    baseline_id: str
    as_of: Optional[date]
    tasks: List[TaskVarianceDTO]
    added: List[str]
    removed: List[str]
    earned_duration: float
    planned_duration: float
    schedule_performance_index: Optional[float]

    @classmethod
    def from_domain(cls, r: VarianceReport) -> "VarianceResponse":
        return cls(
            project_id=r.project_id,
            baseline_id=r.baseline_id,
            as_of=r.as_of,
            tasks=[
                TaskVarianceDTO(
                    task_id=v.task_id,
                    baseline_start=v.baseline_start,
                    baseline_end=v.baseline_end,
                    current_start=v.current_start,
                    current_end=v.current_end,
                    start_delta=v.start_delta,
                    finish_delta=v.finish_delta,
                )
                for v in r.tasks.values()
            ],
            added=list(r.added),
            removed=list(r.removed),
            earned_duration=r.earned_duration,
            planned_duration=r.planned_duration,
            schedule_performance_index=r.schedule_performance_index,
        )


class EarnedValueResponse(BaseModel):
    planned_value: float
    earned_value: float
    actual_cost: float
    cost_variance: float
    schedule_variance: float
    cost_performance_index: Optional[float]
    schedule_performance_index: Optional[float]

    @classmethod
    def from_domain(cls, ev: EarnedValue) -> "EarnedValueResponse":
        return cls(
            planned_value=ev.planned_value,
            earned_value=ev.earned_value,
            actual_cost=ev.actual_cost,
            cost_variance=ev.cost_variance,
            schedule_variance=ev.schedule_variance,
            cost_performance_index=ev.cost_performance_index,
            schedule_performance_index=ev.schedule_performance_index,
        )
