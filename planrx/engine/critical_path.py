"""
Critical Path Method (CPM) calculator.

Forward and backward passes over a validated TaskGraph, honoring all four
dependency types and their lags (in days). All offsets are measured in days
from project start (0).

Forward pass (max over incoming edges, never before 0):
    FS: ES(s) >= EF(p) + lag
    SS: ES(s) >= ES(p) + lag
    FF: EF(s) >= EF(p) + lag
    SF: EF(s) >= ES(p) + lag

Backward pass (min over outgoing edges, seeded with the project finish):
    FS: LF(p) <= LS(s) - lag
    SS: LS(p) <= LS(s) - lag
    FF: LF(p) <= LF(s) - lag
    SF: LS(p) <= LF(s) - lag

Slack = LS - ES. Every forward constraint is satisfied by the ES values, so the
backward pass always yields LF >= EF and slack is never negative. The task
that sets the project finish always has zero slack, so the critical path of a
non-empty graph is never empty.

Complexity: O((V + E) log V), dominated by the topological sort.

Cancellation: both passes walk the topological order in batches and check the
deadline between batches. A cancelled computation raises and returns nothing.
"""

import logging
import math
from datetime import date, timedelta
from typing import Dict, List, Mapping, Optional, Tuple

from planrx.engine.cancellation import Deadline
from planrx.graph.task_graph import TaskGraph
from planrx.models.entities import Dependency, DependencyType
from planrx.models.errors import MissingDurationError, StaleGraphError
from planrx.models.results import CriticalPathResult, TaskTiming

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 256

Lags = Mapping[Tuple[str, str], float]


def _r(value: float) -> float:
    return round(value, 6)


def resolve_durations(
    graph: TaskGraph,
    task_durations: Optional[Mapping[str, float]] = None,
    require_durations: bool = False,
) -> Dict[str, float]:
    """
    Resolve the duration of every task: explicit override first, then the
    task record. Missing estimates become zero-duration milestones unless
    ``require_durations`` is set and the task is not flagged as a milestone.
    """
    overrides = task_durations or {}
    out: Dict[str, float] = {}
    for task in graph.tasks():
        duration = overrides.get(task.id, task.duration)
        if duration is None:
            if require_durations and not task.milestone:
                raise MissingDurationError(task.id)
            duration = 0
        if duration < 0:
            raise MissingDurationError(task.id, reason=f"negative duration {duration}")
        out[task.id] = duration
    return out


def _lag(edge: Dependency, dependency_lags: Optional[Lags]) -> float:
    if dependency_lags and edge.key in dependency_lags:
        return dependency_lags[edge.key]
    return edge.lag_days


def forward_bound(edge: Dependency, es_p: float, ef_p: float, dur_s: float, lag: float) -> float:
    """Earliest start the edge allows for its successor."""
    if edge.type is DependencyType.FINISH_TO_START:
        return ef_p + lag
    if edge.type is DependencyType.START_TO_START:
        return es_p + lag
    if edge.type is DependencyType.FINISH_TO_FINISH:
        return ef_p + lag - dur_s
    return es_p + lag - dur_s  # START_TO_FINISH


def backward_bound(edge: Dependency, ls_s: float, lf_s: float, dur_p: float, lag: float) -> float:
    """Latest finish the edge allows for its predecessor."""
    if edge.type is DependencyType.FINISH_TO_START:
        return ls_s - lag
    if edge.type is DependencyType.START_TO_START:
        return ls_s - lag + dur_p
    if edge.type is DependencyType.FINISH_TO_FINISH:
        return lf_s - lag
    return lf_s - lag + dur_p  # START_TO_FINISH


def compute(
    graph: TaskGraph,
    task_durations: Optional[Mapping[str, float]] = None,
    dependency_lags: Optional[Lags] = None,
    *,
    expected_version: Optional[str] = None,
    deadline: Optional[Deadline] = None,
    require_durations: bool = False,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> CriticalPathResult:
    """
    Run the forward and backward passes and report timings and the critical path.

    Args:
        graph: Acyclic task graph
        task_durations: Optional per-task duration overrides (days)
        dependency_lags: Optional lag overrides keyed by (predecessor, successor)
        expected_version: Version token of the caller's current edge set; a
            mismatch means the graph is stale and is refused
        deadline: Cooperative cancellation token checked between batches
        require_durations: Reject tasks without an estimate instead of
            treating them as milestones
        batch_size: Number of tasks processed between deadline checks

    Raises:
        StaleGraphError, MissingDurationError, ComputationCancelled
    """
    if expected_version is not None and expected_version != graph.version:
        raise StaleGraphError(graph.version, expected_version)
    deadline = deadline or Deadline.never()
    durations = resolve_durations(graph, task_durations, require_durations)
    batches = list(graph.batches(batch_size))
    order = [tid for batch in batches for tid in batch]

    es: Dict[str, float] = {}
    ef: Dict[str, float] = {}
    for batch in batches:
        deadline.check()
        for tid in batch:
            start = 0
            for edge in graph.predecessors(tid):
                p = edge.predecessor_id
                start = max(start, forward_bound(edge, es[p], ef[p], durations[tid], _lag(edge, dependency_lags)))
            es[tid] = _r(start)
            ef[tid] = _r(start + durations[tid])

    project_finish = max(ef.values()) if ef else 0

    ls: Dict[str, float] = {}
    lf: Dict[str, float] = {}
    for batch in reversed(batches):
        deadline.check()
        for tid in reversed(batch):
            finish = project_finish
            for edge in graph.successors(tid):
                s = edge.successor_id
                finish = min(finish, backward_bound(edge, ls[s], lf[s], durations[tid], _lag(edge, dependency_lags)))
            lf[tid] = _r(finish)
            ls[tid] = _r(finish - durations[tid])
    deadline.check()

    timings = {
        tid: TaskTiming(
            task_id=tid,
            duration=durations[tid],
            earliest_start=es[tid],
            earliest_finish=ef[tid],
            latest_start=ls[tid],
            latest_finish=lf[tid],
            slack=_r(ls[tid] - es[tid]),
        )
        for tid in order
    }
    path = trace_critical_path(graph, timings, order, project_finish, dependency_lags)
    summaries = {}
    for parent in graph.parents():
        spans = [timings[tid] for tid in graph.descendants(parent)]
        summaries[parent] = (min(t.earliest_start for t in spans), max(t.earliest_finish for t in spans))

    logger.debug(f"Critical path over {len(order)} tasks: duration={project_finish}, path={path}")
    return CriticalPathResult(
        graph_version=graph.version,
        timings=timings,
        critical_path=tuple(path),
        project_duration=project_finish,
        order=tuple(order),
        summaries=summaries,
    )


def _is_driving(edge: Dependency, timings: Mapping[str, TaskTiming], dependency_lags: Optional[Lags]) -> bool:
    p, s = timings[edge.predecessor_id], timings[edge.successor_id]
    if not (p.critical and s.critical):
        return False
    bound = forward_bound(edge, p.earliest_start, p.earliest_finish, s.duration, _lag(edge, dependency_lags))
    return _r(bound) == s.earliest_start


def trace_critical_path(
    graph: TaskGraph,
    timings: Mapping[str, TaskTiming],
    order: List[str],
    project_finish: float,
    dependency_lags: Optional[Lags] = None,
) -> List[str]:
    """
    Pick one zero-slack chain that reaches the project finish.

    Chains follow driving edges (the edge that sets the successor's earliest
    start). At every branch the smallest id that can still reach the project
    finish wins, so the same graph always reports the same path.
    """
    reaches: Dict[str, bool] = {}
    for tid in reversed(order):
        timing = timings[tid]
        reaches[tid] = timing.critical and (
            timing.earliest_finish == project_finish
            or any(
                reaches[e.successor_id] and _is_driving(e, timings, dependency_lags)
                for e in graph.successors(tid)
            )
        )

    starts = sorted(
        tid
        for tid in order
        if reaches[tid] and not any(_is_driving(e, timings, dependency_lags) for e in graph.predecessors(tid))
    )
    if not starts:
        return []

    path = [starts[0]]
    while True:
        nexts = sorted(
            e.successor_id
            for e in graph.successors(path[-1])
            if reaches[e.successor_id] and _is_driving(e, timings, dependency_lags)
        )
        if not nexts:
            return path
        path.append(nexts[0])


def schedule_dates(result: CriticalPathResult, project_start: date) -> Dict[str, Tuple[date, date]]:
    """Map day offsets to inclusive calendar windows (early schedule)."""
    dates: Dict[str, Tuple[date, date]] = {}
    for tid, timing in result.timings.items():
        start = project_start + timedelta(days=math.floor(timing.earliest_start))
        end = project_start + timedelta(days=math.ceil(timing.earliest_finish) - 1)
        dates[tid] = (start, max(start, end))
    return dates
