from datetime import date

import pytest

from planrx.engine.baseline import BaselineTracker
from planrx.engine.context import ProjectContext
from planrx.models.entities import Dependency, Task, TaskStatus
from planrx.models.errors import InvalidProgressError, NotFoundError
from planrx.utils.earned_value import planned_fraction


@pytest.fixture
def tracker():
    return BaselineTracker()


@pytest.fixture
def build_context():
    """Foundation (A) then framing (B), ten days each from 1 Jan 2024."""
    tasks = [
        Task(id="A", project_id="site", duration=10, start=date(2024, 1, 1), end=date(2024, 1, 10)),
        Task(id="B", project_id="site", duration=10, start=date(2024, 1, 11), end=date(2024, 1, 20)),
    ]
    return ProjectContext("site", tasks, [Dependency("A", "B")])


class TestSnapshot:
    def test_versions_increase(self, tracker, build_context):
        first = tracker.snapshot(build_context)
        second = tracker.snapshot(build_context)

        assert (first.version, second.version) == (1, 2)
        assert first.id == "site@v1"
        assert [b.id for b in tracker.baselines("site")] == ["site@v1", "site@v2"]

    def test_snapshot_records_sequence(self, tracker, build_context):
        baseline = tracker.snapshot(build_context)

        assert baseline.tasks["A"].sequence == 0
        assert baseline.tasks["B"].sequence == 1
        assert baseline.tasks["B"].start == date(2024, 1, 11)

    def test_baseline_is_immutable(self, tracker, build_context):
        baseline = tracker.snapshot(build_context)

        build_context.reschedule("A", date(2024, 1, 3), date(2024, 1, 12))

        assert baseline.tasks["A"].start == date(2024, 1, 1)
        with pytest.raises(TypeError):
            baseline.tasks["A"] = None

    def test_unknown_baseline(self, tracker, build_context):
        with pytest.raises(NotFoundError):
            tracker.variance(build_context, "site@v9")


class TestVariance:
    """Date deltas and schedule performance against a baseline."""

    def test_slipped_start_reports_delta(self, tracker):
        """Task Z baselined at day 10 and moved to day 15 slips five days."""
        project_start = date(2024, 1, 1)
        context = ProjectContext(
            "site",
            [Task(id="Z", project_id="site", duration=5, start=date(2024, 1, 11), end=date(2024, 1, 15))],
        )
        baseline = tracker.snapshot(context)

        context.reschedule("Z", date(2024, 1, 16), date(2024, 1, 20))
        report = tracker.variance(context, baseline.id)

        assert (context.task("Z").start - project_start).days == 15
        assert report.tasks["Z"].start_delta == 5
        assert report.tasks["Z"].finish_delta == 5

    def test_unchanged_schedule_has_zero_delta(self, tracker, build_context):
        baseline = tracker.snapshot(build_context)

        report = tracker.variance(build_context, baseline.id)

        assert all(v.start_delta == 0 and v.finish_delta == 0 for v in report.tasks.values())

    def test_schedule_performance_index(self, tracker, build_context):
        baseline = tracker.snapshot(build_context)
        build_context.update_progress("A", 50)

        behind = tracker.variance(build_context, baseline.id, as_of=date(2024, 1, 10))
        on_track = tracker.variance(build_context, baseline.id, as_of=date(2024, 1, 5))

        assert behind.planned_duration == 10
        assert behind.earned_duration == 5
        assert behind.schedule_performance_index == 0.5
        assert on_track.schedule_performance_index == 1.0

    def test_nothing_planned_has_no_index(self, tracker, build_context):
        baseline = tracker.snapshot(build_context)

        report = tracker.variance(build_context, baseline.id, as_of=date(2023, 12, 1))

        assert report.schedule_performance_index is None

    def test_added_and_removed_tasks(self, tracker, build_context):
        baseline = tracker.snapshot(build_context)
        replanned = ProjectContext(
            "site",
            [
                Task(id="A", project_id="site", duration=10, start=date(2024, 1, 1), end=date(2024, 1, 10)),
                Task(id="C", project_id="site", duration=4),
            ],
        )

        report = tracker.variance(replanned, baseline.id)

        assert report.added == ("C",)
        assert report.removed == ("B",)
        assert list(report.tasks) == ["A"]

    def test_undated_tasks_excluded_from_index(self, tracker):
        context = ProjectContext(
            "site",
            [
                Task(id="A", project_id="site", duration=4, start=date(2024, 1, 1), end=date(2024, 1, 4)),
                Task(id="U", project_id="site", duration=6),
            ],
        )
        baseline = tracker.snapshot(context)
        context.update_progress("A", 100)
        context.update_progress("U", 100)

        report = tracker.variance(context, baseline.id)

        assert report.planned_duration == 4
        assert report.schedule_performance_index == 1.0
        assert report.tasks["U"].start_delta is None


class TestEarnedValue:
    def test_cost_and_schedule_indices(self, tracker, build_context):
        baseline = tracker.snapshot(build_context)
        build_context.update_progress("A", 50)

        ev = tracker.earned_value(
            build_context,
            baseline.id,
            budgets={"A": 1000, "B": 2000},
            actual_costs={"A": 600},
            as_of=date(2024, 1, 10),
        )

        assert ev.planned_value == 1000
        assert ev.earned_value == 500
        assert ev.actual_cost == 600
        assert ev.cost_variance == -100
        assert ev.schedule_variance == -500
        assert ev.cost_performance_index == 0.833333
        assert ev.schedule_performance_index == 0.5

    def test_no_actual_cost_has_no_cpi(self, tracker, build_context):
        baseline = tracker.snapshot(build_context)

        ev = tracker.earned_value(build_context, baseline.id, budgets={"A": 1000}, actual_costs={})

        assert ev.cost_performance_index is None
        assert ev.planned_value == 1000


class TestProgress:
    def test_status_follows_completion(self, build_context):
        assert build_context.update_progress("A", 30).status is TaskStatus.IN_PROGRESS
        assert build_context.update_progress("A", 100).status is TaskStatus.COMPLETED

    def test_completion_never_drops_without_reopen(self, build_context):
        build_context.update_progress("A", 60)

        with pytest.raises(InvalidProgressError):
            build_context.update_progress("A", 40)

        reopened = build_context.update_progress("A", 0, reopen=True)
        assert reopened.status is TaskStatus.NOT_STARTED

    @pytest.mark.parametrize("value", [-1, 101])
    def test_completion_range(self, build_context, value):
        with pytest.raises(InvalidProgressError):
            build_context.update_progress("A", value)

    def test_window_and_progress_applied_together(self, build_context):
        task = build_context.update_task("A", date(2024, 1, 3), date(2024, 1, 12), completion_percentage=20)

        assert (task.start, task.end) == (date(2024, 1, 3), date(2024, 1, 12))
        assert task.status is TaskStatus.IN_PROGRESS

    def test_rejected_progress_keeps_window(self, build_context):
        """A bad completion value must not leave the new window behind."""
        with pytest.raises(InvalidProgressError):
            build_context.update_task("A", date(2024, 2, 1), date(2024, 2, 10), completion_percentage=150)

        task = build_context.task("A")
        assert (task.start, task.end) == (date(2024, 1, 1), date(2024, 1, 10))
        assert task.completion_percentage == 0

    def test_empty_update_is_rejected(self, build_context):
        with pytest.raises(InvalidProgressError):
            build_context.update_task("A")


@pytest.mark.parametrize(
    "as_of, expected",
    [
        (None, 1.0),
        (date(2023, 12, 31), 0.0),
        (date(2024, 1, 1), 0.1),
        (date(2024, 1, 10), 1.0),
    ],
)
def test_planned_fraction(as_of, expected):
    assert planned_fraction(date(2024, 1, 1), date(2024, 1, 10), as_of) == expected
