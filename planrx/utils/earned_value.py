from datetime import date
from typing import Mapping, Optional

from planrx.models.entities import Task
from planrx.models.results import Baseline, EarnedValue


def planned_fraction(start: Optional[date], end: Optional[date], as_of: Optional[date]) -> Optional[float]:
    """Share of an inclusive [start, end] window planned to be done by ``as_of``."""
    if start is None or end is None:
        return None
    if as_of is None or as_of >= end:
        return 1.0
    if as_of < start:
        return 0.0
    return ((as_of - start).days + 1) / ((end - start).days + 1)


def earned_duration(duration: float, completion_percentage: float) -> float:
    return duration * completion_percentage / 100.0


def schedule_performance_index(earned: float, planned: float) -> Optional[float]:
    if planned <= 0:
        return None
    return round(earned / planned, 6)


def earned_value(
    baseline: Baseline,
    tasks: Mapping[str, Task],
    budgets: Mapping[str, float],
    actual_costs: Mapping[str, float],
    as_of: Optional[date] = None,
) -> EarnedValue:
    """
    PV/EV/AC over the baselined tasks. Budgets and actual costs come from the
    budget collaborator; tasks without baseline dates or a budget add only to
    actual cost.
    """
    planned = earned = 0.0
    for tid, entry in baseline.tasks.items():
        budget = budgets.get(tid)
        fraction = planned_fraction(entry.start, entry.end, as_of)
        if budget is None or fraction is None:
            continue
        planned += budget * fraction
        task = tasks.get(tid)
        if task is not None:
            earned += budget * task.completion_percentage / 100.0
    return EarnedValue(
        planned_value=round(planned, 6),
        earned_value=round(earned, 6),
        actual_cost=round(sum(actual_costs.values()), 6),
    )
