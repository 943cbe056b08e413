from __future__ import annotations

import datetime as dt
import enum
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .config import settings
from .models import Task
from .utils import SECONDS_PER_HOUR, as_utc, local_day, optional_utc, workday_bounds

SIGNIFICANT_DIFFERENCE = 0.15
MINIMUM_AVAILABLE_HOURS = 1.0


@dataclass(frozen=True)
class EstimateResult:
    estimated_seconds: Optional[int]
    has_custom_estimate: bool
    effort_hours: Optional[float] = None
    expected_personnel_count: Optional[int] = None


def effort_based_estimate(effort_hours: float, personnel: Optional[int] = None) -> EstimateResult:
    """Turn person-hours of effort into a wall-clock duration for the given crew."""
    crew = personnel or 1
    duration_hours = effort_hours / crew
    return EstimateResult(
        estimated_seconds=int(duration_hours * SECONDS_PER_HOUR),
        has_custom_estimate=True,
        effort_hours=effort_hours,
        expected_personnel_count=personnel,
    )


def duration_based_estimate(
    hours: int,
    minutes: int = 0,
    custom: bool = True,
    personnel: Optional[int] = None,
) -> EstimateResult:
    total_seconds = (hours * 60 + minutes) * 60
    seconds = total_seconds if total_seconds > 0 else None
    return EstimateResult(
        estimated_seconds=seconds,
        has_custom_estimate=custom and seconds is not None,
        expected_personnel_count=personnel,
    )


def productivity_duration_seconds(quantity: float, rate: float, personnel: int) -> Optional[int]:
    if quantity <= 0 or rate <= 0 or personnel <= 0:
        return None
    hours = (quantity / rate) / personnel
    return int(hours * SECONDS_PER_HOUR)


def productivity_personnel(quantity: float, rate: float, duration_seconds: int) -> Optional[int]:
    if quantity <= 0 or rate <= 0 or duration_seconds <= 0:
        return None
    hours = duration_seconds / SECONDS_PER_HOUR
    return max(1, math.ceil((quantity / rate) / hours))


def quantity_to_effort_hours(quantity: float, rate: float) -> Optional[float]:
    if quantity <= 0 or rate <= 0:
        return None
    return quantity / rate


def effort_hours_to_quantity(effort_hours: float, rate: float) -> Optional[float]:
    if effort_hours <= 0 or rate <= 0:
        return None
    return effort_hours * rate


@dataclass(frozen=True)
class CalculationComparison:
    primary_value: float
    alternative_value: float
    threshold: float = SIGNIFICANT_DIFFERENCE

    @property
    def difference_percent(self) -> float:
        return (self.alternative_value - self.primary_value) / self.primary_value * 100

    @property
    def is_significant(self) -> bool:
        return abs(self.difference_percent / 100) > self.threshold

    @property
    def formatted_difference(self) -> str:
        sign = "+" if self.difference_percent > 0 else ""
        return f"{sign}{self.difference_percent:.0f}%"


def is_valid_personnel(count: int) -> bool:
    return settings.min_personnel <= count <= settings.max_personnel


def is_valid_duration_hours(hours: float) -> bool:
    return 0 <= hours <= settings.max_duration_hours


def is_valid_quantity(quantity: float) -> bool:
    return 0 <= quantity <= settings.max_quantity


def is_valid_productivity_rate(rate: float) -> bool:
    return settings.min_productivity_rate <= rate <= settings.max_productivity_rate


def clamp_personnel(count: int) -> int:
    return max(settings.min_personnel, min(count, settings.max_personnel))


def workday_hours() -> float:
    return float(settings.workday_end_hour - settings.workday_start_hour)


def available_work_hours(
    start: dt.datetime,
    deadline: dt.datetime,
    tz: Optional[dt.tzinfo | str] = None,
) -> float:
    """Working hours between ``start`` and ``deadline``, counted inside each local workday.

    Never less than one hour, so a passed deadline still yields a usable crew size.
    """
    begin = as_utc(start)
    end = as_utc(deadline)
    if end <= begin:
        return MINIMUM_AVAILABLE_HOURS
    total = 0.0
    day = local_day(begin, tz)
    last_day = local_day(end, tz)
    while day <= last_day:
        window_start, window_end = workday_bounds(
            day, settings.workday_start_hour, settings.workday_end_hour, tz
        )
        overlap = (min(window_end, end) - max(window_start, begin)).total_seconds()
        if overlap > 0:
            total += overlap / SECONDS_PER_HOUR
        day += dt.timedelta(days=1)
    return max(total, MINIMUM_AVAILABLE_HOURS)


def effective_deadline(task: Task) -> Optional[dt.datetime]:
    return optional_utc(task.end_date or task.due_date)


def working_window(task: Task, now: dt.datetime) -> Optional[Tuple[dt.datetime, dt.datetime]]:
    end = effective_deadline(task)
    if end is None:
        return None
    start = optional_utc(task.start_date) or as_utc(now)
    if start >= end:
        return None
    return start, end


def task_available_work_hours(
    task: Task,
    now: dt.datetime,
    tz: Optional[dt.tzinfo | str] = None,
) -> Optional[float]:
    window = working_window(task, now)
    if window is None:
        return None
    return available_work_hours(window[0], window[1], tz)


def minimum_personnel(effort_hours: float, available_hours: float) -> int:
    if available_hours <= 0:
        return 1
    return max(math.ceil(effort_hours / available_hours), 1)


class CrewScenarioKind(str, enum.Enum):
    TIGHT = "tight"
    SAFE = "safe"
    BUFFER = "buffer"


@dataclass(frozen=True)
class CrewScenario:
    kind: CrewScenarioKind
    people: int
    hours_per_person: float


def crew_scenarios(effort_hours: float, minimum: int) -> List[CrewScenario]:
    """Minimum crew, one extra person, and two extra people."""
    if minimum <= 0:
        return []
    return [
        CrewScenario(kind, minimum + extra, effort_hours / (minimum + extra))
        for extra, kind in enumerate(CrewScenarioKind)
    ]
