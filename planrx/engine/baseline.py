import logging
import threading
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Dict, List, Mapping, Optional

from planrx.engine.context import ProjectContext
from planrx.models.errors import NotFoundError
from planrx.models.results import Baseline, BaselineTask, EarnedValue, TaskVariance, VarianceReport
from planrx.utils.earned_value import (
    earned_duration,
    earned_value,
    planned_fraction,
    schedule_performance_index,
)

logger = logging.getLogger(__name__)


def _delta(current: Optional[date], baseline: Optional[date]) -> Optional[int]:
    if current is None or baseline is None:
        return None
    return (current - baseline).days


class BaselineTracker:
    """
    Immutable, per-project versioned schedule snapshots and variance against
    the live schedule. Variance is date arithmetic on the task windows; it
    never re-runs the critical path.
    """

    def __init__(self):
        self._baselines: Dict[str, List[Baseline]] = defaultdict(list)
        self._lock = threading.Lock()

    def snapshot(self, context: ProjectContext) -> Baseline:
        sequence = {tid: i for i, tid in enumerate(context.graph().topological_order())}
        entries = {
            task.id: BaselineTask(
                task_id=task.id,
                start=task.start,
                end=task.end,
                sequence=sequence[task.id],
                duration=task.duration or 0,
            )
            for task in context.tasks()
        }
        with self._lock:
            history = self._baselines[context.project_id]
            baseline = Baseline.create(
                context.project_id,
                len(history) + 1,
                entries,
                created_at=datetime.now(timezone.utc),
            )
            history.append(baseline)
        logger.info(f"Baseline {baseline.id} captured ({len(entries)} tasks)")
        return baseline

    def baselines(self, project_id: str) -> List[Baseline]:
        with self._lock:
            return list(self._baselines.get(project_id, ()))

    def get(self, project_id: str, baseline_id: str) -> Baseline:
        for baseline in self.baselines(project_id):
            if baseline.id == baseline_id:
                return baseline
        raise NotFoundError("Baseline", baseline_id)

    def variance(self, context: ProjectContext, baseline_id: str, as_of: Optional[date] = None) -> VarianceReport:
        """
        Per-task start/finish deltas (current - baseline, in days) and the
        schedule performance index: earned duration over planned duration as
        of ``as_of`` (the whole baseline duration when ``as_of`` is None).
        """
        baseline = self.get(context.project_id, baseline_id)
        current = {task.id: task for task in context.tasks()}

        rows: Dict[str, TaskVariance] = {}
        earned = planned = 0.0
        for tid, entry in sorted(baseline.tasks.items()):
            task = current.get(tid)
            if task is None:
                continue
            rows[tid] = TaskVariance(
                task_id=tid,
                baseline_start=entry.start,
                baseline_end=entry.end,
                current_start=task.start,
                current_end=task.end,
                start_delta=_delta(task.start, entry.start),
                finish_delta=_delta(task.end, entry.end),
            )
            fraction = planned_fraction(entry.start, entry.end, as_of)
            if fraction is None:
                continue
            planned += entry.duration * fraction
            earned += earned_duration(entry.duration, task.completion_percentage)

        report = VarianceReport(
            project_id=context.project_id,
            baseline_id=baseline.id,
            as_of=as_of,
            tasks=rows,
            added=tuple(sorted(set(current) - set(baseline.tasks))),
            removed=tuple(sorted(set(baseline.tasks) - set(current))),
            earned_duration=round(earned, 6),
            planned_duration=round(planned, 6),
            schedule_performance_index=schedule_performance_index(earned, planned),
        )
        logger.debug(f"Variance vs {baseline.id}: SPI={report.schedule_performance_index}")
        return report

    def earned_value(
        self,
        context: ProjectContext,
        baseline_id: str,
        budgets: Mapping[str, float],
        actual_costs: Mapping[str, float],
        as_of: Optional[date] = None,
    ) -> EarnedValue:
        baseline = self.get(context.project_id, baseline_id)
        return earned_value(baseline, {t.id: t for t in context.tasks()}, budgets, actual_costs, as_of)
