from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from .config import settings
from .models import ProjectStatus, UnitType


def _serialize_datetime(value: Optional[dt.datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    else:
        value = value.astimezone(dt.timezone.utc)
    return value.isoformat()


class ProjectCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    color: str = "blue"
    start_date: Optional[dt.datetime] = None
    due_date: Optional[dt.datetime] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    status: ProjectStatus = ProjectStatus.PLANNING


class ProjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    title: str
    color: str
    start_date: Optional[dt.datetime]
    due_date: Optional[dt.datetime]
    estimated_hours: Optional[float]
    status: ProjectStatus

    @field_serializer("start_date", "due_date", when_used="json")
    def _serialize_dates(self, value: Optional[dt.datetime]) -> Optional[str]:
        return _serialize_datetime(value)


class TaskCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    project_id: Optional[str] = None
    parent_id: Optional[str] = None
    notes: Optional[str] = None
    priority: int = Field(default=2, ge=0, le=3)
    due_date: Optional[dt.datetime] = None
    start_date: Optional[dt.datetime] = None
    end_date: Optional[dt.datetime] = None
    estimated_seconds: Optional[int] = Field(default=None, ge=0)
    has_custom_estimate: bool = False
    expected_personnel_count: Optional[int] = Field(default=None, ge=1)
    expected_quantity: Optional[float] = Field(default=None, ge=0)
    quantity: Optional[float] = Field(default=None, ge=0)
    unit: UnitType = UnitType.NONE
    task_type: Optional[str] = None
    custom_productivity_rate: Optional[float] = Field(default=None, gt=0)

    @field_validator("expected_personnel_count")
    @classmethod
    def _limit_personnel(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value > settings.max_personnel:
            raise ValueError(f"Personnel cannot exceed {settings.max_personnel}")
        return value

    @field_validator("estimated_seconds")
    @classmethod
    def _limit_duration(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value > settings.max_duration_hours * 3600:
            raise ValueError(f"Duration cannot exceed {settings.max_duration_hours} hours")
        return value


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    title: str
    project_id: Optional[str]
    parent_id: Optional[str]
    priority: int
    due_date: Optional[dt.datetime]
    start_date: Optional[dt.datetime]
    end_date: Optional[dt.datetime]
    completed_date: Optional[dt.datetime]
    is_archived: bool
    estimated_seconds: Optional[int]
    has_custom_estimate: bool
    expected_personnel_count: Optional[int]
    expected_quantity: Optional[float]
    quantity: Optional[float]
    unit: UnitType
    task_type: Optional[str]

    @field_serializer("due_date", "start_date", "end_date", "completed_date", when_used="json")
    def _serialize_dates(self, value: Optional[dt.datetime]) -> Optional[str]:
        return _serialize_datetime(value)


class TimeEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    task_id: Optional[str]
    start_time: dt.datetime
    end_time: Optional[dt.datetime]
    personnel_count: int

    @field_serializer("start_time", "end_time", when_used="json")
    def _serialize_times(self, value: Optional[dt.datetime]) -> Optional[str]:
        return _serialize_datetime(value)


class ManualEntryRequest(BaseModel):
    start_time: dt.datetime
    end_time: dt.datetime
    personnel_count: int = Field(default=1, ge=1, le=100)


class TimeEntryUpdateRequest(BaseModel):
    start_time: Optional[dt.datetime] = None
    end_time: Optional[dt.datetime] = None
    personnel_count: Optional[int] = Field(default=None, ge=1, le=100)


class DependencyRequest(BaseModel):
    depends_on_id: str


class PersonnelRequest(BaseModel):
    expected_personnel_count: Optional[int] = Field(default=None, ge=1, le=100)


class QuantityRequest(BaseModel):
    quantity: Optional[float] = Field(default=None, ge=0)
    expected_quantity: Optional[float] = Field(default=None, ge=0)
    unit: Optional[UnitType] = None


class PaceResponse(BaseModel):
    kind: str
    percentage: int
    label: str


class TaskInsightsResponse(BaseModel):
    task: TaskResponse
    status: str
    can_complete: bool
    can_start_work: bool
    blocking_reasons: List[str]
    effective_estimate: Optional[int]
    estimate_source: str
    time_progress: Optional[float]
    estimate_status: Optional[str]
    total_time_spent: float
    total_person_hours: Optional[float]
    subtree_person_hours: Optional[float]
    live_productivity_rate: Optional[float]
    required_productivity_rate: Optional[float]
    pace: Optional[PaceResponse]
    quantity_progress: Optional[float]
    quantity_remaining: Optional[float]
    warnings: List[str] = Field(default_factory=list)
    refresh_seconds: int = settings.live_refresh_seconds


class ArchiveValidationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    can_archive: bool
    warnings: List[str]
    blocking_issues: List[str]


class ProjectHealthResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    project_id: str
    status: str
    actual_hours: float
    planned_hours: float
    budget_hours: Optional[float]
    time_progress: Optional[float]
    planning_progress: Optional[float]
    planning_variance: Optional[float]
    completion_ratio: Optional[float]
    completed_count: int
    incomplete_count: int
    blocked_count: int
    overdue_count: int
    missing_estimate_count: int
    date_conflict_count: int


class DateFixResponse(BaseModel):
    changed: bool
    task: TaskResponse
    project: ProjectResponse


class TaskSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    title: str


class ProjectIssueResponse(BaseModel):
    project_id: str
    title: str
    health: str
    issues: List[str]
    total_issues: int


class AttentionResponse(BaseModel):
    overdue_tasks: List[TaskSummary]
    blocked_tasks: List[TaskSummary]
    tasks_without_estimates: List[TaskSummary]
    tasks_nearing_estimate: List[TaskSummary]
    projects: List[ProjectIssueResponse]


class KPIResponse(BaseModel):
    start: dt.datetime
    end: dt.datetime
    efficiency_score: float
    accuracy_score: float
    utilization_percentage: float
    overall_health_score: float
    health_status: str
    total_tasks: int
    total_completed_tasks: int
    efficiency: Dict[str, Any]
    accuracy: Dict[str, Any]
    utilization: Dict[str, Any]

    @field_serializer("start", "end", when_used="json")
    def _serialize_bounds(self, value: dt.datetime) -> Optional[str]:
        return _serialize_datetime(value)


class TaskTypeAnalyticsResponse(BaseModel):
    task_type: str
    sample_size: int
    avg_accuracy: float
    avg_productivity_rate: Optional[float]
    typical_overrun_percentage: int
    variance_description: str
    is_significant: bool
