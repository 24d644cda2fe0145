import pytest

from planrx.graph.task_graph import TaskGraph, find_cycle, version_token
from planrx.models.entities import Dependency, DependencyType, Task
from planrx.models.errors import (
    CycleError,
    DuplicateTaskError,
    InvalidDependencyError,
    NotFoundError,
)


def _tasks(*ids, project_id="p1"):
    return [Task(id=tid, project_id=project_id, duration=1) for tid in ids]


class TestBuild:
    """Validation performed while building the graph."""

    def test_builds_adjacency(self, diamond_tasks):
        tasks, deps = diamond_tasks
        graph = TaskGraph.build(tasks, deps)

        assert len(graph) == 4
        assert "A" in graph
        assert [e.successor_id for e in graph.successors("A")] == ["B", "C"]
        assert [e.predecessor_id for e in graph.predecessors("D")] == ["B", "C"]
        assert graph.roots() == ["A"]
        assert graph.terminals() == ["D"]
        assert graph.dependency("A", "B").type is DependencyType.FINISH_TO_START
        assert graph.dependency("B", "A") is None

    def test_self_loop_reports_single_task(self):
        """A task depending on itself is a cycle of length one."""
        with pytest.raises(CycleError) as exc_info:
            TaskGraph.build(_tasks("A"), [Dependency("A", "A")])

        assert exc_info.value.path == ["A"]
        assert exc_info.value.details["kind"] == "dependency"

    def test_three_cycle_reports_path(self):
        deps = [Dependency("A", "B"), Dependency("B", "C"), Dependency("C", "A")]

        with pytest.raises(CycleError) as exc_info:
            TaskGraph.build(_tasks("A", "B", "C", "D"), deps)

        assert exc_info.value.path == ["A", "B", "C"]
        assert "A -> B -> C -> A" in exc_info.value.message

    def test_cycle_behind_acyclic_prefix(self):
        """Only the tasks on the cycle are reported, not the path leading to it."""
        deps = [Dependency("A", "B"), Dependency("B", "C"), Dependency("C", "B")]

        with pytest.raises(CycleError) as exc_info:
            TaskGraph.build(_tasks("A", "B", "C"), deps)

        assert exc_info.value.path == ["B", "C"]

    def test_parent_cycle_rejected(self):
        tasks = [
            Task(id="A", project_id="p1", parent_id="B"),
            Task(id="B", project_id="p1", parent_id="A"),
        ]

        with pytest.raises(CycleError) as exc_info:
            TaskGraph.build(tasks, [])

        assert exc_info.value.details["kind"] == "parent"
        assert sorted(exc_info.value.path) == ["A", "B"]

    def test_unknown_parent_rejected(self):
        with pytest.raises(NotFoundError):
            TaskGraph.build([Task(id="A", project_id="p1", parent_id="ghost")], [])

    def test_duplicate_task_id_rejected(self):
        with pytest.raises(DuplicateTaskError):
            TaskGraph.build(_tasks("A", "A"), [])

    def test_unknown_endpoint_rejected(self):
        with pytest.raises(NotFoundError) as exc_info:
            TaskGraph.build(_tasks("A"), [Dependency("A", "missing")])

        assert exc_info.value.details["id"] == "missing"

    def test_duplicate_edge_rejected(self):
        deps = [Dependency("A", "B"), Dependency("A", "B", DependencyType.START_TO_START)]

        with pytest.raises(InvalidDependencyError):
            TaskGraph.build(_tasks("A", "B"), deps)

    def test_cross_project_edge_rejected(self):
        tasks = _tasks("A") + _tasks("B", project_id="p2")

        with pytest.raises(InvalidDependencyError):
            TaskGraph.build(tasks, [Dependency("A", "B")])


class TestTraversal:
    """Deterministic traversal order."""

    def test_topological_order_breaks_ties_by_id(self):
        graph = TaskGraph.build(_tasks("C", "A", "B"), [Dependency("B", "A")])

        assert graph.topological_order() == ["B", "A", "C"]

    def test_topological_order_respects_every_edge(self, diamond_tasks):
        tasks, deps = diamond_tasks
        order = TaskGraph.build(tasks, deps).topological_order()
        position = {tid: i for i, tid in enumerate(order)}

        for dep in deps:
            assert position[dep.predecessor_id] < position[dep.successor_id]

    def test_batches_split_order(self, diamond_tasks):
        tasks, deps = diamond_tasks
        graph = TaskGraph.build(tasks, deps)

        batches = list(graph.batches(3))

        assert batches == [["A", "B", "C"], ["D"]]

    def test_descendants_follow_parent_links(self):
        tasks = [
            Task(id="phase", project_id="p1"),
            Task(id="frame", project_id="p1", parent_id="phase"),
            Task(id="wall", project_id="p1", parent_id="frame"),
            Task(id="roof", project_id="p1", parent_id="phase"),
        ]
        graph = TaskGraph.build(tasks, [])

        assert graph.children("phase") == ("frame", "roof")
        assert graph.descendants("phase") == ["frame", "wall", "roof"]
        assert graph.parents() == ["frame", "phase"]

    def test_unknown_task_lookup(self):
        graph = TaskGraph.build(_tasks("A"), [])

        with pytest.raises(NotFoundError):
            graph.task("B")


class TestVersionToken:
    def test_token_ignores_input_order(self):
        deps = [Dependency("A", "B"), Dependency("B", "C")]

        assert version_token(["A", "B", "C"], deps) == version_token(["C", "B", "A"], list(reversed(deps)))

    def test_token_changes_with_edges(self):
        before = version_token(["A", "B"], [Dependency("A", "B")])
        after = version_token(["A", "B"], [Dependency("A", "B", lag_days=2)])

        assert before != after

    def test_graph_carries_token(self, chain_tasks):
        tasks, deps = chain_tasks

        assert TaskGraph.build(tasks, deps).version == version_token(["X", "Y"], deps)


def test_find_cycle_on_acyclic_input():
    assert find_cycle(["A", "B"], {"A": ["B"]}) is None
