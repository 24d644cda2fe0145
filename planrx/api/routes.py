from datetime import date
from typing import List, Optional
import logging

import redis
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from planrx.api.schemas import (
    AssignmentDTO,
    AssignmentRequestDTO,
    BaselineDTO,
    ConflictEntryDTO,
    ConflictReportDTO,
    CriticalPathRequest,
    CriticalPathResponse,
    EarnedValueRequest,
    EarnedValueResponse,
    LoadProjectRequest,
    ResourceDTO,
    ScheduleRequest,
    TaskDTO,
    TaskUpdateRequest,
    UtilizationDTO,
    VarianceResponse,
)
from planrx.engine.service import Outcome, SchedulingService
from planrx.storage.cache import CriticalPathCache
from planrx.storage.database import get_db
from planrx.storage.repositories import AssignmentRepository, BaselineRepository

router = APIRouter()
cache = CriticalPathCache()
logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    "not_found": 404,
    "conflict": 409,
    "stale_graph": 409,
    "cancelled": 503,
}


def get_service(request: Request) -> SchedulingService:
    return request.app.state.service


def get_cache() -> CriticalPathCache:
    return cache


def unwrap(outcome: Outcome):
    """Return the outcome's value or raise the matching HTTP error."""
    if outcome.ok:
        return outcome.value
    error = outcome.error
    details = dict(error.details)
    if error.code == "conflict":
        details["report"] = ConflictReportDTO.from_domain(details["report"]).model_dump(mode="json")
    raise HTTPException(
        status_code=STATUS_BY_CODE.get(error.code, 400),
        detail={"code": error.code, "message": error.message, "details": jsonable_encoder(details)},
    )


@router.post("/schedule/critical-path", response_model=CriticalPathResponse, summary="Critical path for a task snapshot")
def critical_path_snapshot(
    req: CriticalPathRequest,
    service: SchedulingService = Depends(get_service),
    result_cache: CriticalPathCache = Depends(get_cache),
):
    """
    Stateless CPM over the supplied tasks and dependencies.

    **Error Handling:**
    - 400: Cycle, missing duration, unknown or duplicate ids
    - 503: Computation exceeded its time limit

    Results are cached by graph version and every task field. A snapshot is
    validated before the cache is consulted.
    """
    logger.info(f"Critical path request: {len(req.tasks)} tasks, {len(req.dependencies)} dependencies")
    tasks = [t.to_domain("adhoc") for t in req.tasks]
    dependencies = [d.to_domain() for d in req.dependencies]
    graph = unwrap(service.validate_snapshot(tasks, dependencies, req.task_durations, req.require_durations))

    key = CriticalPathCache.hash_inputs(
        graph.version,
        [t.model_dump(mode="json") for t in req.tasks],
        req.task_durations,
        req.require_durations,
    )
    try:
        cached = result_cache.get(key)
    except redis.RedisError as exc:
        logger.warning(f"Cache unavailable: {exc}")
        cached = None
    if cached:
        logger.info("Cache hit")
        return {**cached, "cached": True}

    result = unwrap(
        service.compute_critical_path(tasks, dependencies, req.task_durations, req.require_durations, graph=graph)
    )
    response = CriticalPathResponse.from_domain(result)
    try:
        result_cache.set(key, response.model_dump(mode="json"))
    except redis.RedisError as exc:
        logger.warning(f"Cache unavailable: {exc}")
    return response


@router.put("/projects/{project_id}", summary="Load a project snapshot")
def load_project(project_id: str, req: LoadProjectRequest, service: SchedulingService = Depends(get_service)):
    context = unwrap(
        service.load_project(
            project_id,
            [t.to_domain(project_id) for t in req.tasks],
            [d.to_domain() for d in req.dependencies],
        )
    )
    return {"project_id": project_id, "tasks": len(context.tasks()), "version": context.version}


@router.get("/projects/{project_id}/tasks", response_model=List[TaskDTO])
def list_tasks(project_id: str, service: SchedulingService = Depends(get_service)):
    return [TaskDTO.from_domain(t) for t in unwrap(service.tasks(project_id))]


@router.put("/projects/{project_id}/dependencies", summary="Replace a project's dependency set")
def set_dependencies(project_id: str, req: LoadProjectRequest, service: SchedulingService = Depends(get_service)):
    version = unwrap(service.set_dependencies(project_id, [d.to_domain() for d in req.dependencies]))
    return {"project_id": project_id, "version": version}


@router.post("/resources", response_model=List[ResourceDTO], summary="Register resources")
def register_resources(resources: List[ResourceDTO], service: SchedulingService = Depends(get_service)):
    unwrap(service.register_resources([r.to_domain() for r in resources]))
    logger.info(f"Registered {len(resources)} resources")
    return resources


@router.get("/projects/{project_id}/critical-path", response_model=CriticalPathResponse)
def project_critical_path(
    project_id: str,
    require_durations: bool = Query(False, description="Reject tasks without a duration estimate"),
    service: SchedulingService = Depends(get_service),
):
    result = unwrap(service.critical_path(project_id, require_durations=require_durations))
    return CriticalPathResponse.from_domain(result)


@router.post("/projects/{project_id}/schedule", response_model=CriticalPathResponse, summary="Apply the CPM schedule")
def apply_schedule(project_id: str, req: ScheduleRequest, service: SchedulingService = Depends(get_service)):
    """Write early-start CPM windows onto the project's tasks, starting at `project_start`."""
    result = unwrap(service.apply_schedule(project_id, req.project_start))
    return CriticalPathResponse.from_domain(result)


@router.patch("/projects/{project_id}/tasks/{task_id}", response_model=TaskDTO)
def update_task(
    project_id: str,
    task_id: str,
    req: TaskUpdateRequest,
    service: SchedulingService = Depends(get_service),
):
    """Window and progress changes are applied together; a rejected request changes nothing."""
    task = unwrap(
        service.update_task(
            project_id, task_id, req.start, req.end, req.completion_percentage, req.status, req.reopen
        )
    )
    return TaskDTO.from_domain(task)


@router.post("/projects/{project_id}/allocations", response_model=AssignmentDTO, status_code=201)
def allocate(
    project_id: str,
    req: AssignmentRequestDTO,
    service: SchedulingService = Depends(get_service),
    db: Session = Depends(get_db),
):
    """
    Allocate a resource to a task over [start, end].

    **Error Handling:**
    - 400: Malformed interval or amount, interval outside the task window
    - 404: Unknown project, task or resource
    - 409: Capacity conflict; `details.report` lists each over-committed date
    """
    logger.info(f"Allocate {req.resource_id} -> {req.task_id} ({req.start}..{req.end})")
    assignment = unwrap(service.allocate(project_id, req.to_domain(), req.accept_overallocation))
    try:
        AssignmentRepository(db).save(assignment)
    except SQLAlchemyError as exc:
        db.rollback()
        service.release(assignment.id)
        logger.error(f"Assignment {assignment.id} not persisted, booking released: {exc}")
        raise
    return AssignmentDTO.from_domain(assignment)


@router.get("/projects/{project_id}/allocations", response_model=List[AssignmentDTO])
def list_allocations(project_id: str, service: SchedulingService = Depends(get_service)):
    return [AssignmentDTO.from_domain(a) for a in unwrap(service.assignments(project_id))]


@router.delete("/allocations/{assignment_id}", response_model=AssignmentDTO)
def release(assignment_id: str, service: SchedulingService = Depends(get_service), db: Session = Depends(get_db)):
    assignment = unwrap(service.release(assignment_id))
    AssignmentRepository(db).delete(assignment_id)
    return AssignmentDTO.from_domain(assignment)


@router.get("/projects/{project_id}/conflicts", response_model=List[ConflictEntryDTO])
def conflicts(project_id: str, service: SchedulingService = Depends(get_service)):
    return [ConflictEntryDTO.from_domain(e) for e in unwrap(service.conflicts(project_id))]


@router.get("/projects/{project_id}/misaligned", response_model=List[AssignmentDTO])
def misaligned(project_id: str, service: SchedulingService = Depends(get_service)):
    return [AssignmentDTO.from_domain(a) for a in unwrap(service.misaligned(project_id))]


@router.get("/resources/{resource_id}/utilization", response_model=List[UtilizationDTO])
def utilization(
    resource_id: str,
    start: date,
    end: date,
    granularity: str = Query("day", pattern="^(day|week)$"),
    service: SchedulingService = Depends(get_service),
):
    return [UtilizationDTO.from_domain(u) for u in unwrap(service.utilization(resource_id, start, end, granularity))]


@router.post("/projects/{project_id}/baselines", response_model=BaselineDTO, status_code=201)
def snapshot(project_id: str, service: SchedulingService = Depends(get_service), db: Session = Depends(get_db)):
    baseline = unwrap(service.snapshot(project_id))
    BaselineRepository(db).save(baseline)
    return BaselineDTO.from_domain(baseline)


@router.get("/projects/{project_id}/baselines", response_model=List[BaselineDTO])
def list_baselines(project_id: str, service: SchedulingService = Depends(get_service)):
    return [BaselineDTO.from_domain(b) for b in unwrap(service.baselines(project_id))]


@router.get("/projects/{project_id}/baselines/{baseline_id}/variance", response_model=VarianceResponse)
def variance(
    project_id: str,
    baseline_id: str,
    as_of: Optional[date] = None,
    service: SchedulingService = Depends(get_service),
):
    return VarianceResponse.from_domain(unwrap(service.variance(project_id, baseline_id, as_of)))


@router.post("/projects/{project_id}/baselines/{baseline_id}/earned-value", response_model=EarnedValueResponse)
def earned_value(
    project_id: str,
    baseline_id: str,
    req: EarnedValueRequest,
    service: SchedulingService = Depends(get_service),
):
    ev = unwrap(service.earned_value(project_id, baseline_id, req.budgets, req.actual_costs, req.as_of))
    return EarnedValueResponse.from_domain(ev)
