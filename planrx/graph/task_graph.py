"""
Task dependency graph.

Tasks are held in an arena keyed by id; predecessor and successor adjacency
lists index into it. A graph is only ever returned from ``build`` once every
validation step (ids, edge endpoints, parent links, acyclicity) has passed, so
callers never observe a partially constructed graph.

Complexity:
- build: O(V log V + E log E) (sorting keeps traversal deterministic)
- detect_cycle: O(V + E)
- topological_order: O((V + E) log V) with a min-heap on ids
"""

import hashlib
import heapq
import json
import logging
from collections import defaultdict
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from planrx.models.entities import Dependency, Task
from planrx.models.errors import (
    CycleError,
    DuplicateTaskError,
    InvalidDependencyError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


def version_token(task_ids: Iterable[str], edges: Iterable[Dependency]) -> str:
    """Stable token over the task id set and the edge set."""
    data = json.dumps(
        {
            "tasks": sorted(task_ids),
            "edges": sorted(
                [e.predecessor_id, e.successor_id, e.type.value, e.lag_days] for e in edges
            ),
        },
        sort_keys=True,
    )
    return hashlib.sha256(data.encode()).hexdigest()[:16]


def find_cycle(nodes: Iterable[str], successors: Dict[str, List[str]]) -> Optional[List[str]]:
    """
    Iterative DFS with an in-progress path.

    Returns the first cycle found (in traversal order, starting at the node
    that was re-entered) or None. Roots and successors are visited in sorted
    order so the reported cycle is deterministic.
    """
    done = set()
    for root in sorted(nodes):
        if root in done:
            continue
        path: List[str] = [root]
        on_path = {root: 0}
        stack: List[Iterator[str]] = [iter(sorted(successors.get(root, ())))]
        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                node = path.pop()
                del on_path[node]
                done.add(node)
                stack.pop()
                continue
            if nxt in on_path:
                return path[on_path[nxt]:]
            if nxt in done:
                continue
            on_path[nxt] = len(path)
            path.append(nxt)
            stack.append(iter(sorted(successors.get(nxt, ()))))
    return None


class TaskGraph:
    def __init__(
        self,
        tasks: Dict[str, Task],
        predecessors: Dict[str, Tuple[Dependency, ...]],
        successors: Dict[str, Tuple[Dependency, ...]],
        children: Dict[str, Tuple[str, ...]],
        version: str,
    ):
        self._tasks = tasks
        self._predecessors = predecessors
        self._successors = successors
        self._children = children
        self._edges = {e.key: e for deps in successors.values() for e in deps}
        self.version = version

    @classmethod
    def build(cls, tasks: Iterable[Task], edges: Iterable[Dependency]) -> "TaskGraph":
        """
        Validate the records and build the graph.

        Raises:
            DuplicateTaskError: two records share an id, or an edge is repeated
            NotFoundError: an edge or parent link names an unknown task
            InvalidDependencyError: an edge crosses projects
            CycleError: dependency or parent relation is cyclic
        """
        arena: Dict[str, Task] = {}
        for task in tasks:
            if task.id in arena:
                raise DuplicateTaskError(f"Duplicate task id {task.id}", task_id=task.id)
            arena[task.id] = task

        edge_list = list(edges)
        preds: Dict[str, List[Dependency]] = defaultdict(list)
        succs: Dict[str, List[Dependency]] = defaultdict(list)
        seen = set()
        for edge in edge_list:
            for tid in edge.key:
                if tid not in arena:
                    raise NotFoundError("Task", tid)
            if edge.key in seen:
                raise InvalidDependencyError(
                    f"Duplicate dependency {edge.predecessor_id} -> {edge.successor_id}",
                    predecessor_id=edge.predecessor_id,
                    successor_id=edge.successor_id,
                )
            pred, succ = arena[edge.predecessor_id], arena[edge.successor_id]
            if pred.project_id != succ.project_id:
                raise InvalidDependencyError(
                    f"Dependency {pred.id} -> {succ.id} crosses projects",
                    predecessor_id=pred.id,
                    successor_id=succ.id,
                )
            seen.add(edge.key)
            preds[edge.successor_id].append(edge)
            succs[edge.predecessor_id].append(edge)

        cycle = find_cycle(arena, {tid: [e.successor_id for e in deps] for tid, deps in succs.items()})
        if cycle:
            logger.warning(f"Rejected dependency cycle: {cycle}")
            raise CycleError(cycle)

        children: Dict[str, List[str]] = defaultdict(list)
        for task in arena.values():
            if task.parent_id is None:
                continue
            if task.parent_id not in arena:
                raise NotFoundError("Parent task", task.parent_id)
            children[task.parent_id].append(task.id)
        cycle = find_cycle(arena, children)
        if cycle:
            logger.warning(f"Rejected parent cycle: {cycle}")
            raise CycleError(cycle, kind="parent")

        return cls(
            tasks=arena,
            predecessors={tid: tuple(sorted(preds[tid], key=lambda e: e.predecessor_id)) for tid in arena},
            successors={tid: tuple(sorted(succs[tid], key=lambda e: e.successor_id)) for tid in arena},
            children={tid: tuple(sorted(kids)) for tid, kids in children.items()},
            version=version_token(arena, edge_list),
        )

    def detect_cycle(self) -> None:
        """Re-validate acyclicity; raises CycleError with the offending path."""
        cycle = find_cycle(self._tasks, {tid: [e.successor_id for e in deps] for tid, deps in self._successors.items()})
        if cycle:
            raise CycleError(cycle)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._tasks

    @property
    def task_ids(self) -> List[str]:
        return sorted(self._tasks)

    def task(self, task_id: str) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise NotFoundError("Task", task_id) from None

    def tasks(self) -> List[Task]:
        return [self._tasks[tid] for tid in self.task_ids]

    def edges(self) -> List[Dependency]:
        return [self._edges[k] for k in sorted(self._edges)]

    def dependency(self, predecessor_id: str, successor_id: str) -> Optional[Dependency]:
        return self._edges.get((predecessor_id, successor_id))

    def predecessors(self, task_id: str) -> Tuple[Dependency, ...]:
        return self._predecessors[task_id]

    def successors(self, task_id: str) -> Tuple[Dependency, ...]:
        return self._successors[task_id]

    def children(self, task_id: str) -> Tuple[str, ...]:
        return self._children.get(task_id, ())

    def descendants(self, task_id: str) -> List[str]:
        out: List[str] = []
        stack = list(reversed(self.children(task_id)))
        while stack:
            tid = stack.pop()
            out.append(tid)
            stack.extend(reversed(self.children(tid)))
        return out

    def parents(self) -> List[str]:
        return sorted(self._children)

    def roots(self) -> List[str]:
        return [tid for tid in self.task_ids if not self._predecessors[tid]]

    def terminals(self) -> List[str]:
        return [tid for tid in self.task_ids if not self._successors[tid]]

    def topological_order(self) -> List[str]:
        """Kahn's algorithm; ties broken by smallest id."""
        indegree = {tid: len(deps) for tid, deps in self._predecessors.items()}
        heap = [tid for tid, n in indegree.items() if n == 0]
        heapq.heapify(heap)
        order: List[str] = []
        while heap:
            tid = heapq.heappop(heap)
            order.append(tid)
            for edge in self._successors[tid]:
                indegree[edge.successor_id] -= 1
                if indegree[edge.successor_id] == 0:
                    heapq.heappush(heap, edge.successor_id)
        if len(order) != len(self._tasks):
            # unreachable for a graph produced by build()
            self.detect_cycle()
        return order

    def batches(self, size: int) -> Iterator[List[str]]:
        order = self.topological_order()
        size = max(1, size)
        for i in range(0, len(order), size):
            yield order[i:i + size]
