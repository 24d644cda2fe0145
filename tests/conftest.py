import itertools
from datetime import date

import pytest

from planrx.engine.context import ProjectContext
from planrx.engine.ledger import ResourceLedger
from planrx.engine.service import SchedulingService
from planrx.models.entities import Dependency, Resource, ResourceKind, Task


@pytest.fixture
def id_factory():
    """Deterministic assignment ids: a1, a2, ..."""
    counter = itertools.count(1)
    return lambda: f"a{next(counter)}"


@pytest.fixture
def chain_tasks():
    """Task X (5 days) finish-to-start into Task Y (3 days)."""
    tasks = [
        Task(id="X", project_id="p1", duration=5),
        Task(id="Y", project_id="p1", duration=3),
    ]
    dependencies = [Dependency(predecessor_id="X", successor_id="Y")]
    return tasks, dependencies


@pytest.fixture
def diamond_tasks():
    """
    A -> B -> D and A -> C -> D; B is the long branch.

    A=2, B=4, C=1, D=3: project duration 9, C has 3 days of slack.
    """
    tasks = [
        Task(id="A", project_id="p1", duration=2),
        Task(id="B", project_id="p1", duration=4),
        Task(id="C", project_id="p1", duration=1),
        Task(id="D", project_id="p1", duration=3),
    ]
    dependencies = [
        Dependency("A", "B"),
        Dependency("A", "C"),
        Dependency("B", "D"),
        Dependency("C", "D"),
    ]
    return tasks, dependencies


@pytest.fixture
def site_context():
    """Two framing tasks with planned windows in January 2024."""
    tasks = [
        Task(id="T1", project_id="site", duration=10, start=date(2024, 1, 1), end=date(2024, 1, 10)),
        Task(id="T2", project_id="site", duration=10, start=date(2024, 1, 1), end=date(2024, 1, 10)),
        Task(id="T3", project_id="site", duration=5),
    ]
    return ProjectContext("site", tasks)


@pytest.fixture
def crew():
    """Human resource with an 8 hour day."""
    return Resource(id="R", kind=ResourceKind.HUMAN, capacity_per_day=8.0, cost_rate=50.0)


@pytest.fixture
def concrete():
    """Material stock of 100 units."""
    return Resource(id="concrete", kind=ResourceKind.MATERIAL, quantity=100.0, cost_rate=2.0)


@pytest.fixture
def ledger(crew, concrete):
    return ResourceLedger([crew, concrete])


@pytest.fixture
def service(crew, concrete, id_factory):
    svc = SchedulingService(id_factory=id_factory)
    svc.register_resources([crew, concrete])
    return svc
