from __future__ import annotations

import datetime as dt
import enum
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, Column, DateTime, Enum, Float, ForeignKey, Integer, String, Table, Text
from sqlalchemy.orm import declarative_base, relationship

from .utils import UTC, as_utc

Base = declarative_base()


def utcnow() -> dt.datetime:
    return dt.datetime.now(UTC)


def new_id() -> str:
    return str(uuid.uuid4())


def _enum_values(enum_cls: type[enum.Enum]) -> List[str]:
    return [member.value for member in enum_cls]


class TaskStatus(str, enum.Enum):
    BLOCKED = "blocked"
    READY = "ready"
    IN_PROGRESS = "inProgress"
    COMPLETED = "completed"


class ProjectStatus(str, enum.Enum):
    PLANNING = "planning"
    IN_PROGRESS = "inProgress"
    COMPLETED = "completed"
    ON_HOLD = "onHold"


class Priority(enum.IntEnum):
    URGENT = 0
    HIGH = 1
    MEDIUM = 2
    LOW = 3


class UnitType(str, enum.Enum):
    NONE = "None"
    SQUARE_METERS = "m²"
    METERS = "m"
    PIECES = "pcs"
    KILOGRAMS = "kg"
    LITERS = "L"

    @property
    def is_quantifiable(self) -> bool:
        return self is not UnitType.NONE

    @property
    def default_productivity_rate(self) -> Optional[float]:
        """Fallback units per person-hour when no historical data exists."""
        return _DEFAULT_PRODUCTIVITY_RATES.get(self)


_DEFAULT_PRODUCTIVITY_RATES: Dict[UnitType, float] = {
    UnitType.SQUARE_METERS: 10.0,
    UnitType.METERS: 5.0,
    UnitType.PIECES: 2.0,
    UnitType.KILOGRAMS: 50.0,
    UnitType.LITERS: 100.0,
}


class TagCategory(str, enum.Enum):
    RESOURCE = "Resource"
    PHASE = "Phase"
    LOCATION = "Location"
    TEAM = "Team"
    VENDOR = "Vendor"
    CUSTOM = "Custom"


class _ConstructionDefaults:
    """Apply identity and column defaults when an entity is built in memory.

    Column ``default=`` values only fire on flush; the derived-state functions
    read transient objects, so the same values are filled in at construction.
    """

    _construction_defaults: Dict[str, Any] = {}

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("id", new_id())
        for key, value in self._construction_defaults.items():
            kwargs.setdefault(key, value() if callable(value) else value)
        super().__init__(**kwargs)


task_dependencies = Table(
    "task_dependencies",
    Base.metadata,
    Column("task_id", String(36), ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True),
    Column("depends_on_id", String(36), ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True),
)


task_tags = Table(
    "task_tags",
    Base.metadata,
    Column("task_id", String(36), ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", String(36), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class Project(_ConstructionDefaults, Base):
    __tablename__ = "projects"

    _construction_defaults = {
        "color": "blue",
        "status": ProjectStatus.PLANNING,
        "sort_index": 0,
        "created_date": utcnow,
    }

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(200), nullable=False)
    color = Column(String(30), nullable=False, default="blue")
    start_date = Column(DateTime(timezone=True), nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    estimated_hours = Column(Float, nullable=True)
    status = Column(
        Enum(ProjectStatus, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False,
        default=ProjectStatus.PLANNING,
        index=True,
    )
    sort_index = Column(Integer, nullable=False, default=0)
    created_date = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    tasks = relationship("Task", back_populates="project", cascade="all, delete")

    def expand_to_include(self, task: "Task") -> bool:
        """Widen the schedule window so the task's dates fit; returns True when changed."""
        changed = False
        if task.start_date is not None:
            task_start = as_utc(task.start_date)
            if self.start_date is None or task_start < as_utc(self.start_date):
                self.start_date = task_start
                changed = True
        if task.end_date is not None:
            task_end = as_utc(task.end_date)
            if self.due_date is None or task_end > as_utc(self.due_date):
                self.due_date = task_end
                changed = True
        return changed


class Task(_ConstructionDefaults, Base):
    __tablename__ = "tasks"

    _construction_defaults = {
        "priority": int(Priority.MEDIUM),
        "has_custom_estimate": False,
        "is_archived": False,
        "unit": UnitType.NONE,
        "sort_index": 0,
        "created_date": utcnow,
    }

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(200), nullable=False)
    notes = Column(Text, nullable=True)
    priority = Column(Integer, nullable=False, default=int(Priority.MEDIUM))
    sort_index = Column(Integer, nullable=False, default=0)

    due_date = Column(DateTime(timezone=True), nullable=True)
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    completed_date = Column(DateTime(timezone=True), nullable=True, index=True)
    created_date = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    is_archived = Column(Boolean, nullable=False, default=False, index=True)
    archived_date = Column(DateTime(timezone=True), nullable=True)

    estimated_seconds = Column(Integer, nullable=True)
    has_custom_estimate = Column(Boolean, nullable=False, default=False)
    expected_personnel_count = Column(Integer, nullable=True)
    effort_hours = Column(Float, nullable=True)

    expected_quantity = Column(Float, nullable=True)
    quantity = Column(Float, nullable=True)
    unit = Column(
        Enum(UnitType, values_callable=_enum_values, native_enum=False, length=10),
        nullable=False,
        default=UnitType.NONE,
    )
    task_type = Column(String(120), nullable=True, index=True)
    custom_productivity_rate = Column(Float, nullable=True)

    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True)
    parent_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True, index=True)

    project = relationship("Project", back_populates="tasks")
    parent_task = relationship("Task", remote_side=[id], back_populates="subtasks")
    subtasks = relationship(
        "Task",
        back_populates="parent_task",
        cascade="all, delete",
        order_by="Task.sort_index",
    )
    time_entries = relationship(
        "TimeEntry",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TimeEntry.start_time",
    )
    depends_on = relationship(
        "Task",
        secondary=task_dependencies,
        primaryjoin=lambda: Task.id == task_dependencies.c.task_id,
        secondaryjoin=lambda: Task.id == task_dependencies.c.depends_on_id,
        back_populates="blocked_by",
    )
    blocked_by = relationship(
        "Task",
        secondary=task_dependencies,
        primaryjoin=lambda: Task.id == task_dependencies.c.depends_on_id,
        secondaryjoin=lambda: Task.id == task_dependencies.c.task_id,
        back_populates="depends_on",
    )
    tags = relationship("Tag", secondary=task_tags, back_populates="tasks")

    @property
    def is_completed(self) -> bool:
        return self.completed_date is not None

    @property
    def open_entries(self) -> List["TimeEntry"]:
        return [entry for entry in (self.time_entries or []) if entry.is_open]

    @property
    def has_active_timer(self) -> bool:
        return any(entry.is_open for entry in (self.time_entries or []))

    @property
    def unit_type(self) -> UnitType:
        if self.unit is None:
            return UnitType.NONE
        return UnitType(self.unit)

    def close_open_entries(self, now: dt.datetime) -> List["TimeEntry"]:
        closed = []
        for entry in self.open_entries:
            entry.close(now)
            closed.append(entry)
        return closed

    def mark_completed(self, now: dt.datetime) -> None:
        if self.completed_date is not None:
            return
        normalized_now = as_utc(now)
        self.completed_date = normalized_now
        self.close_open_entries(normalized_now)

    def mark_uncompleted(self) -> None:
        self.completed_date = None

    def fit_to_project(self) -> bool:
        """Clamp the task's dates into the project window; returns True when changed."""
        project = self.project
        if project is None:
            return False
        window_start = as_utc(project.start_date) if project.start_date else None
        window_end = as_utc(project.due_date) if project.due_date else None
        changed = False
        for attribute in ("start_date", "end_date", "due_date"):
            current = getattr(self, attribute)
            if current is None:
                continue
            clamped = as_utc(current)
            if window_start is not None and clamped < window_start:
                clamped = window_start
            if window_end is not None and clamped > window_end:
                clamped = window_end
            if clamped != as_utc(current):
                setattr(self, attribute, clamped)
                changed = True
        return changed

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"<Task {self.title!r} {self.id}>"


class TimeEntry(_ConstructionDefaults, Base):
    __tablename__ = "time_entries"

    _construction_defaults = {
        "personnel_count": 1,
        "created_date": utcnow,
    }

    id = Column(String(36), primary_key=True, default=new_id)
    task_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True, index=True)
    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    end_time = Column(DateTime(timezone=True), nullable=True, index=True)
    personnel_count = Column(Integer, nullable=False, default=1)
    created_date = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    task = relationship("Task", back_populates="time_entries")

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def close(self, now: dt.datetime) -> None:
        if self.end_time is not None:
            return
        self.end_time = as_utc(now)


class Tag(_ConstructionDefaults, Base):
    __tablename__ = "tags"

    _construction_defaults = {
        "icon": "tag.fill",
        "color": "gray",
        "category": TagCategory.CUSTOM,
        "is_system": False,
        "sort_index": 0,
        "created_date": utcnow,
    }

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False, index=True)
    icon = Column(String(60), nullable=False, default="tag.fill")
    color = Column(String(30), nullable=False, default="gray")
    category = Column(
        Enum(TagCategory, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False,
        default=TagCategory.CUSTOM,
    )
    is_system = Column(Boolean, nullable=False, default=False)
    sort_index = Column(Integer, nullable=False, default=0)
    created_date = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    tasks = relationship("Task", secondary=task_tags, back_populates="tags")
