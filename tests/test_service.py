from datetime import date

import pytest

from planrx.engine.cancellation import Deadline
from planrx.engine.service import SchedulingService
from planrx.models.entities import AssignmentRequest, Dependency, Task
from planrx.models.results import ConflictReport


@pytest.fixture
def loaded(service):
    tasks = [
        Task(id="T1", project_id="site", duration=5),
        Task(id="T2", project_id="site", duration=5),
    ]
    outcome = service.load_project("site", tasks, [Dependency("T1", "T2")])
    assert outcome.ok
    service.apply_schedule("site", date(2024, 1, 1))
    return service


class TestOutcomes:
    """Engine errors come back as typed results with stable codes."""

    def test_cycle_on_load(self, service):
        tasks = [Task(id="A", project_id="p1", duration=1)]

        outcome = service.load_project("p1", tasks, [Dependency("A", "A")])

        assert not outcome.ok
        assert outcome.value is None
        assert outcome.error.code == "cycle"
        assert outcome.error.details["path"] == ["A"]

    def test_unknown_project(self, service):
        outcome = service.critical_path("nowhere")

        assert outcome.error.code == "not_found"
        assert outcome.error.details == {"kind": "Project", "id": "nowhere"}

    def test_missing_duration(self, service):
        service.load_project("p1", [Task(id="A", project_id="p1")])

        assert service.critical_path("p1").ok
        assert service.critical_path("p1", require_durations=True).error.code == "missing_duration"

    def test_cancelled(self, loaded):
        deadline = Deadline()
        deadline.cancel()

        outcome = loaded.critical_path("site", deadline=deadline)

        assert outcome.error.code == "cancelled"

    def test_invalid_progress(self, loaded):
        assert loaded.update_progress("site", "T1", 150).error.code == "invalid_progress"

    def test_conflict_carries_report(self, loaded):
        first = loaded.allocate("site", AssignmentRequest("R", "T1", date(2024, 1, 1), date(2024, 1, 5), 60))
        second = loaded.allocate("site", AssignmentRequest("R", "T1", date(2024, 1, 4), date(2024, 1, 5), 50))

        assert first.ok
        assert second.error.code == "conflict"
        report = second.error.details["report"]
        assert isinstance(report, ConflictReport)
        assert report.dates == [date(2024, 1, 4), date(2024, 1, 5)]

    def test_duplicate_assignment_id(self, crew):
        svc = SchedulingService(id_factory=lambda: "same")
        svc.register_resources([crew])
        svc.load_project("site", [Task(id="T1", project_id="site", duration=5)])
        svc.apply_schedule("site", date(2024, 1, 1))
        request = AssignmentRequest("R", "T1", date(2024, 1, 1), date(2024, 1, 1), 25)

        assert svc.allocate("site", request).ok
        outcome = svc.allocate("site", request)

        assert outcome.error.code == "duplicate_assignment"
        assert len(svc.assignments("site").value) == 1

    def test_update_task_is_all_or_nothing(self, loaded):
        outcome = loaded.update_task("site", "T1", date(2024, 2, 1), date(2024, 2, 5), completion_percentage=150)

        assert outcome.error.code == "invalid_progress"
        assert loaded.tasks("site").value[0].window == (date(2024, 1, 1), date(2024, 1, 5))

    def test_snapshot_validation(self, service):
        tasks = [Task(id="X", project_id="adhoc"), Task(id="Y", project_id="adhoc", milestone=True)]

        assert service.validate_snapshot(tasks, require_durations=True).error.code == "missing_duration"
        graph = service.validate_snapshot(tasks[1:], require_durations=True).value
        assert service.compute_critical_path([], graph=graph).value.critical_path == ("Y",)

    def test_baselines_for_unknown_project(self, service):
        assert service.baselines("nowhere").error.code == "not_found"


class TestWorkflow:
    def test_schedule_allocate_and_track(self, loaded):
        """Schedule, book a crew, baseline, slip a task and read the variance."""
        assert loaded.tasks("site").value[1].window == (date(2024, 1, 6), date(2024, 1, 10))

        assignment = loaded.allocate(
            "site", AssignmentRequest("R", "T2", date(2024, 1, 6), date(2024, 1, 10), 50)
        ).value
        assert loaded.assignments("site").value == [assignment]

        baseline = loaded.snapshot("site").value
        loaded.reschedule("site", "T2", date(2024, 1, 8), date(2024, 1, 12))

        assert loaded.variance("site", baseline.id).value.tasks["T2"].start_delta == 2
        assert loaded.misaligned("site").value == []
        assert loaded.release(assignment.id).ok
        assert loaded.assignments("site").value == []

    def test_dependency_replacement_changes_version(self, loaded):
        before = loaded.context("site").version

        after = loaded.set_dependencies("site", [Dependency("T1", "T2", lag_days=2)])

        assert after.ok
        assert after.value != before
        assert loaded.critical_path("site").value.project_duration == 12

    def test_stateless_critical_path(self, service):
        tasks = [Task(id="X", project_id="adhoc", duration=5), Task(id="Y", project_id="adhoc", duration=3)]

        outcome = service.compute_critical_path(tasks, [Dependency("X", "Y")])

        assert outcome.value.critical_path == ("X", "Y")

    def test_utilization_outcome(self, loaded):
        loaded.allocate("site", AssignmentRequest("R", "T1", date(2024, 1, 1), date(2024, 1, 2), 25))

        rows = loaded.utilization("R", date(2024, 1, 1), date(2024, 1, 2)).value

        assert [r.booked for r in rows] == [2.0, 2.0]
        assert loaded.utilization("R", date(2024, 1, 2), date(2024, 1, 1)).error.code == "invalid_interval"
