from __future__ import annotations

import datetime as dt
import logging
from dataclasses import asdict
from typing import Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import analytics, estimates, health, models, productivity, services, status as task_states
from .aggregator import SubtaskAggregator
from .archive import validate_archive
from .config import settings
from .consistency import consistency_warnings
from .database import engine, get_db
from .errors import (
    ArchiveRejectedError,
    CrewTrackError,
    CyclicRelationshipError,
    InvalidTimeRangeError,
    NotFoundError,
    PersistenceError,
    TaskStateError,
)
from .logging_setup import configure_logging
from .models import Task
from .schemas import (
    ArchiveValidationResponse,
    AttentionResponse,
    DateFixResponse,
    DependencyRequest,
    KPIResponse,
    ManualEntryRequest,
    PaceResponse,
    PersonnelRequest,
    ProjectCreateRequest,
    ProjectHealthResponse,
    ProjectIssueResponse,
    ProjectResponse,
    QuantityRequest,
    TaskCreateRequest,
    TaskInsightsResponse,
    TaskResponse,
    TaskSummary,
    TaskTypeAnalyticsResponse,
    TimeEntryResponse,
    TimeEntryUpdateRequest,
)
from .utils import UTC, as_utc

logger = logging.getLogger(__name__)

configure_logging()
models.Base.metadata.create_all(bind=engine)

app = FastAPI(title=settings.app_name)
app.state.aggregator = SubtaskAggregator()
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://127.0.0.1:5173", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _status_code_for(exc: CrewTrackError) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (TaskStateError, CyclicRelationshipError)):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, PersistenceError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_400_BAD_REQUEST


@app.exception_handler(CrewTrackError)
async def crewtrack_error_handler(request: Request, exc: CrewTrackError) -> JSONResponse:
    content = {"detail": exc.detail}
    if isinstance(exc, ArchiveRejectedError):
        content["issues"] = exc.issues
    return JSONResponse(status_code=_status_code_for(exc), content=content)


def get_aggregator(request: Request) -> SubtaskAggregator:
    return request.app.state.aggregator


def _now(at: Optional[dt.datetime]) -> dt.datetime:
    return as_utc(at) if at is not None else dt.datetime.now(UTC)


def _task_insights(task: Task, now: dt.datetime, aggregator: SubtaskAggregator) -> TaskInsightsResponse:
    pace = productivity.pace_status(task, now, aggregator)
    estimate_state = estimates.estimate_status(task, now, aggregator)
    return TaskInsightsResponse(
        task=TaskResponse.model_validate(task),
        status=task_states.task_status(task).value,
        can_complete=task_states.can_complete(task),
        can_start_work=task_states.can_start_work(task),
        blocking_reasons=task_states.blocking_reasons(task),
        effective_estimate=aggregator.effective_estimate(task),
        estimate_source=estimates.estimate_source(task).value,
        time_progress=aggregator.time_progress(task, now),
        estimate_status=estimate_state.value if estimate_state else None,
        total_time_spent=aggregator.total_time_spent(task, now),
        total_person_hours=aggregator.total_person_hours(task),
        subtree_person_hours=aggregator.subtree_person_hours(task),
        live_productivity_rate=productivity.live_productivity_rate(task, aggregator),
        required_productivity_rate=productivity.required_productivity_rate(task, now, aggregator),
        pace=PaceResponse(kind=pace.kind.value, percentage=pace.percentage, label=pace.label) if pace else None,
        quantity_progress=productivity.quantity_progress(task),
        quantity_remaining=productivity.quantity_remaining(task),
        warnings=[warning.message for warning in consistency_warnings(task)],
    )


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/projects", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
def create_project(payload: ProjectCreateRequest, db: Session = Depends(get_db)) -> ProjectResponse:
    project = services.create_project(db, **payload.model_dump())
    return ProjectResponse.model_validate(project)


@app.post("/tasks", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
def create_task(
    payload: TaskCreateRequest,
    db: Session = Depends(get_db),
    aggregator: SubtaskAggregator = Depends(get_aggregator),
) -> TaskResponse:
    fields = payload.model_dump(exclude={"title", "project_id", "parent_id"})
    for key in ("due_date", "start_date", "end_date"):
        if fields[key] is not None:
            fields[key] = as_utc(fields[key])
    project = services.get_project(db, payload.project_id) if payload.project_id else None
    parent = services.get_task(db, payload.parent_id) if payload.parent_id else None
    task = services.create_task(db, payload.title, project=project, parent=parent, aggregator=aggregator, **fields)
    return TaskResponse.model_validate(task)


@app.get("/tasks/{task_id}", response_model=TaskInsightsResponse)
def task_detail(
    task_id: str,
    at: Optional[dt.datetime] = None,
    db: Session = Depends(get_db),
    aggregator: SubtaskAggregator = Depends(get_aggregator),
) -> TaskInsightsResponse:
    task = services.get_task(db, task_id)
    return _task_insights(task, _now(at), aggregator)


@app.post("/tasks/{task_id}/timer/start", response_model=TimeEntryResponse, status_code=status.HTTP_201_CREATED)
def start_timer(
    task_id: str,
    at: Optional[dt.datetime] = None,
    db: Session = Depends(get_db),
    aggregator: SubtaskAggregator = Depends(get_aggregator),
) -> TimeEntryResponse:
    task = services.get_task(db, task_id)
    entry = services.start_timer(db, task, _now(at), aggregator)
    return TimeEntryResponse.model_validate(entry)


@app.post("/tasks/{task_id}/timer/stop", response_model=list[TimeEntryResponse])
def stop_timer(
    task_id: str,
    at: Optional[dt.datetime] = None,
    db: Session = Depends(get_db),
    aggregator: SubtaskAggregator = Depends(get_aggregator),
) -> list[TimeEntryResponse]:
    task = services.get_task(db, task_id)
    closed = services.stop_timer(db, task, _now(at), aggregator)
    return [TimeEntryResponse.model_validate(entry) for entry in closed]


@app.post("/tasks/{task_id}/entries", response_model=TimeEntryResponse, status_code=status.HTTP_201_CREATED)
def add_manual_entry(
    task_id: str,
    payload: ManualEntryRequest,
    db: Session = Depends(get_db),
    aggregator: SubtaskAggregator = Depends(get_aggregator),
) -> TimeEntryResponse:
    task = services.get_task(db, task_id)
    entry = services.add_manual_entry(
        db, task, payload.start_time, payload.end_time, payload.personnel_count, aggregator
    )
    return TimeEntryResponse.model_validate(entry)


@app.patch("/entries/{entry_id}", response_model=TimeEntryResponse)
def update_time_entry(
    entry_id: str,
    payload: TimeEntryUpdateRequest,
    db: Session = Depends(get_db),
    aggregator: SubtaskAggregator = Depends(get_aggregator),
) -> TimeEntryResponse:
    entry = services.get_time_entry(db, entry_id)
    services.update_time_entry(
        db, entry, payload.start_time, payload.end_time, payload.personnel_count, aggregator
    )
    return TimeEntryResponse.model_validate(entry)


@app.delete("/entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_time_entry(
    entry_id: str,
    db: Session = Depends(get_db),
    aggregator: SubtaskAggregator = Depends(get_aggregator),
) -> None:
    entry = services.get_time_entry(db, entry_id)
    services.delete_time_entry(db, entry, aggregator)


@app.post("/tasks/{task_id}/complete", response_model=TaskResponse)
def complete_task(
    task_id: str,
    at: Optional[dt.datetime] = None,
    db: Session = Depends(get_db),
    aggregator: SubtaskAggregator = Depends(get_aggregator),
) -> TaskResponse:
    task = services.get_task(db, task_id)
    services.complete_task(db, task, _now(at), aggregator)
    return TaskResponse.model_validate(task)


@app.post("/tasks/{task_id}/uncomplete", response_model=TaskResponse)
def uncomplete_task(
    task_id: str,
    db: Session = Depends(get_db),
    aggregator: SubtaskAggregator = Depends(get_aggregator),
) -> TaskResponse:
    task = services.get_task(db, task_id)
    services.uncomplete_task(db, task, aggregator)
    return TaskResponse.model_validate(task)


@app.put("/tasks/{task_id}/personnel", response_model=TaskResponse)
def set_personnel(
    task_id: str,
    payload: PersonnelRequest,
    db: Session = Depends(get_db),
    aggregator: SubtaskAggregator = Depends(get_aggregator),
) -> TaskResponse:
    task = services.get_task(db, task_id)
    services.set_personnel_count(db, task, payload.expected_personnel_count, aggregator)
    return TaskResponse.model_validate(task)


@app.put("/tasks/{task_id}/quantity", response_model=TaskResponse)
def set_quantity(task_id: str, payload: QuantityRequest, db: Session = Depends(get_db)) -> TaskResponse:
    task = services.get_task(db, task_id)
    services.set_quantity(db, task, payload.quantity, payload.expected_quantity, payload.unit)
    return TaskResponse.model_validate(task)


@app.post("/tasks/{task_id}/dependencies", response_model=TaskResponse)
def add_dependency(task_id: str, payload: DependencyRequest, db: Session = Depends(get_db)) -> TaskResponse:
    task = services.get_task(db, task_id)
    dependency = services.get_task(db, payload.depends_on_id)
    services.add_dependency(db, task, dependency)
    return TaskResponse.model_validate(task)


@app.get("/tasks/{task_id}/archive-validation", response_model=ArchiveValidationResponse)
def archive_validation(task_id: str, db: Session = Depends(get_db)) -> ArchiveValidationResponse:
    task = services.get_task(db, task_id)
    validation = validate_archive(task, services.list_tasks(db))
    return ArchiveValidationResponse.model_validate(validation)


@app.post("/tasks/{task_id}/archive", response_model=TaskResponse)
def archive_task(task_id: str, at: Optional[dt.datetime] = None, db: Session = Depends(get_db)) -> TaskResponse:
    task = services.get_task(db, task_id)
    services.archive_task(db, task, _now(at))
    return TaskResponse.model_validate(task)


@app.get("/projects/{project_id}/health", response_model=ProjectHealthResponse)
def project_health(
    project_id: str,
    at: Optional[dt.datetime] = None,
    db: Session = Depends(get_db),
    aggregator: SubtaskAggregator = Depends(get_aggregator),
) -> ProjectHealthResponse:
    project = services.get_project(db, project_id)
    report = health.evaluate_project(project, _now(at), aggregator)
    return ProjectHealthResponse(
        **{key: value for key, value in asdict(report).items() if key != "status"},
        status=report.status.value,
        planning_variance=report.planning_variance,
    )


def _project_task(db: Session, project_id: str, task_id: str) -> Task:
    task = services.get_task(db, task_id)
    if task.project_id != project_id:
        raise NotFoundError("Task not found in project")
    return task


@app.post("/projects/{project_id}/tasks/{task_id}/fit", response_model=DateFixResponse)
def fit_task(project_id: str, task_id: str, db: Session = Depends(get_db)) -> DateFixResponse:
    task = _project_task(db, project_id, task_id)
    changed = services.fit_task_to_project(db, task)
    return DateFixResponse(
        changed=changed,
        task=TaskResponse.model_validate(task),
        project=ProjectResponse.model_validate(task.project),
    )


@app.post("/projects/{project_id}/tasks/{task_id}/expand", response_model=DateFixResponse)
def expand_project(project_id: str, task_id: str, db: Session = Depends(get_db)) -> DateFixResponse:
    task = _project_task(db, project_id, task_id)
    changed = services.expand_project_to_task(db, task)
    return DateFixResponse(
        changed=changed,
        task=TaskResponse.model_validate(task),
        project=ProjectResponse.model_validate(task.project),
    )


@app.get("/attention", response_model=AttentionResponse)
def attention(
    at: Optional[dt.datetime] = None,
    db: Session = Depends(get_db),
    aggregator: SubtaskAggregator = Depends(get_aggregator),
) -> AttentionResponse:
    now = _now(at)
    needed = health.attention_needed(services.list_tasks(db), now, aggregator)
    issues = health.projects_needing_attention(services.list_projects(db), now, aggregator)

    def summaries(tasks: list[Task]) -> list[TaskSummary]:
        return [TaskSummary.model_validate(task) for task in tasks]

    return AttentionResponse(
        overdue_tasks=summaries(needed.overdue_tasks),
        blocked_tasks=summaries(needed.blocked_tasks),
        tasks_without_estimates=summaries(needed.tasks_without_estimates),
        tasks_nearing_estimate=summaries(needed.tasks_nearing_estimate),
        projects=[
            ProjectIssueResponse(
                project_id=issue.project.id,
                title=issue.project.title,
                health=issue.health.value,
                issues=issue.issue_descriptions,
                total_issues=issue.total_issues,
            )
            for issue in issues
        ],
    )


@app.get("/kpis", response_model=KPIResponse)
def kpis(
    start: Optional[dt.datetime] = None,
    end: Optional[dt.datetime] = None,
    at: Optional[dt.datetime] = None,
    db: Session = Depends(get_db),
    aggregator: SubtaskAggregator = Depends(get_aggregator),
) -> KPIResponse:
    now = _now(at)
    if (start is None) != (end is None):
        raise InvalidTimeRangeError("Both start and end are required for a custom range")
    if start is not None and end is not None:
        if as_utc(end) < as_utc(start):
            raise InvalidTimeRangeError("Invalid range")
        date_range = analytics.KPIDateRange.custom(start, end)
    else:
        date_range = analytics.KPIDateRange.this_week(now)
    result = analytics.calculate_kpis(
        services.list_tasks(db, include_archived=True),
        services.list_time_entries(db),
        date_range,
        now,
        aggregator=aggregator,
    )
    return KPIResponse(
        start=date_range.start,
        end=date_range.end,
        efficiency_score=result.efficiency.efficiency_score,
        accuracy_score=result.accuracy.accuracy_score,
        utilization_percentage=result.utilization.utilization_percentage,
        overall_health_score=result.overall_health_score,
        health_status=result.health_status.value,
        total_tasks=result.total_tasks,
        total_completed_tasks=result.total_completed_tasks,
        efficiency=asdict(result.efficiency),
        accuracy=asdict(result.accuracy),
        utilization=asdict(result.utilization),
    )


@app.get("/analytics/task-types/{task_type}", response_model=TaskTypeAnalyticsResponse)
def task_type_analytics(
    task_type: str,
    at: Optional[dt.datetime] = None,
    db: Session = Depends(get_db),
    aggregator: SubtaskAggregator = Depends(get_aggregator),
) -> TaskTypeAnalyticsResponse:
    result = analytics.TaskTypeAnalytics.calculate(
        task_type, services.list_tasks(db, include_archived=True), _now(at), aggregator
    )
    if result is None:
        raise NotFoundError("Not enough completed tasks of this type")
    return TaskTypeAnalyticsResponse(
        task_type=result.task_type,
        sample_size=result.sample_size,
        avg_accuracy=result.avg_accuracy,
        avg_productivity_rate=result.avg_productivity_rate,
        typical_overrun_percentage=result.typical_overrun_percentage,
        variance_description=result.variance_description,
        is_significant=result.is_significant,
    )


@app.get("/activity/today")
def activity_today(at: Optional[dt.datetime] = None, db: Session = Depends(get_db)) -> dict:
    activity = health.todays_activity(services.list_tasks(db), _now(at))
    return asdict(activity)
