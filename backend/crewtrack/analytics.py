"""Historical statistics per task type and portfolio KPIs over a date range."""
from __future__ import annotations

import datetime as dt
import enum
import math
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from . import estimates, productivity
from .models import Task, TimeEntry
from .timekeeping import entry_person_hours
from .utils import as_utc, local_day, resolve_timezone, round_half_up

if TYPE_CHECKING:  # pragma: no cover
    from .aggregator import SubtaskAggregator

MIN_SAMPLE_SIZE = 3
ON_TARGET_TOLERANCE = 5

UNDER_ESTIMATE_RATIO = 0.9
OVER_ESTIMATE_RATIO = 1.1

EFFICIENCY_WEIGHT = 0.35
ACCURACY_WEIGHT = 0.35
UTILIZATION_WEIGHT = 0.30

UNDER_UTILIZED_RATE = 0.70
IDEAL_UTILIZATION_PERCENTAGE = 85.0


@dataclass(frozen=True)
class TaskTypeAnalytics:
    task_type: str
    sample_size: int
    avg_accuracy: float
    avg_productivity_rate: Optional[float] = None

    @property
    def typical_overrun_percentage(self) -> int:
        return round_half_up((1.0 - self.avg_accuracy) * 100)

    @property
    def is_significant(self) -> bool:
        return self.sample_size >= MIN_SAMPLE_SIZE

    def adjusted_effort(self, effort_hours: float) -> float:
        return effort_hours / self.avg_accuracy

    @property
    def variance_description(self) -> str:
        overrun = self.typical_overrun_percentage
        if abs(overrun) < ON_TARGET_TOLERANCE:
            return "typically on target"
        if overrun > 0:
            return f"typically {overrun}% over estimate"
        return f"typically {abs(overrun)}% under estimate"

    @classmethod
    def calculate(
        cls,
        task_type: str,
        tasks: Iterable[Task],
        now: dt.datetime,
        aggregator: Optional["SubtaskAggregator"] = None,
    ) -> Optional["TaskTypeAnalytics"]:
        """None until at least three completed tasks of the type carry an accuracy ratio."""
        accuracies = []
        rates = []
        for task in tasks:
            if task.task_type != task_type or not task.is_completed:
                continue
            accuracy = estimates.estimate_accuracy(task, now, aggregator)
            if accuracy is None:
                continue
            accuracies.append(accuracy)
            rate = productivity.units_per_hour(task, aggregator)
            if rate is not None:
                rates.append(rate)

        if len(accuracies) < MIN_SAMPLE_SIZE:
            return None
        return cls(
            task_type=task_type,
            sample_size=len(accuracies),
            avg_accuracy=sum(accuracies) / len(accuracies),
            avg_productivity_rate=(sum(rates) / len(rates)) if rates else None,
        )


def task_type_analytics(
    tasks: Iterable[Task],
    now: dt.datetime,
    aggregator: Optional["SubtaskAggregator"] = None,
) -> Dict[str, TaskTypeAnalytics]:
    task_list = list(tasks)
    types = sorted({task.task_type for task in task_list if task.task_type})
    results = {}
    for task_type in types:
        analytics = TaskTypeAnalytics.calculate(task_type, task_list, now, aggregator)
        if analytics is not None:
            results[task_type] = analytics
    return results


@dataclass(frozen=True)
class KPIDateRange:
    start: dt.datetime
    end: dt.datetime

    @property
    def days(self) -> int:
        return (as_utc(self.end) - as_utc(self.start)).days

    def contains(self, value: dt.datetime) -> bool:
        return as_utc(self.start) <= as_utc(value) <= as_utc(self.end)

    @classmethod
    def today(cls, now: dt.datetime, tz: Optional[dt.tzinfo | str] = None) -> "KPIDateRange":
        zone = resolve_timezone(tz)
        start = dt.datetime.combine(local_day(now, zone), dt.time.min, tzinfo=zone)
        return cls(as_utc(start), as_utc(now))

    @classmethod
    def this_week(cls, now: dt.datetime, tz: Optional[dt.tzinfo | str] = None) -> "KPIDateRange":
        zone = resolve_timezone(tz)
        day = local_day(now, zone)
        monday = day - dt.timedelta(days=day.weekday())
        return cls(as_utc(dt.datetime.combine(monday, dt.time.min, tzinfo=zone)), as_utc(now))

    @classmethod
    def this_month(cls, now: dt.datetime, tz: Optional[dt.tzinfo | str] = None) -> "KPIDateRange":
        zone = resolve_timezone(tz)
        first = local_day(now, zone).replace(day=1)
        return cls(as_utc(dt.datetime.combine(first, dt.time.min, tzinfo=zone)), as_utc(now))

    @classmethod
    def custom(cls, start: dt.datetime, end: dt.datetime) -> "KPIDateRange":
        return cls(as_utc(start), as_utc(end))


@dataclass(frozen=True)
class TaskEfficiencyMetrics:
    average_efficiency_ratio: Optional[float] = None
    tasks_under_estimate: int = 0
    tasks_on_estimate: int = 0
    tasks_over_estimate: int = 0
    total_tasks_analyzed: int = 0
    total_time_spent: float = 0.0
    total_time_estimated: int = 0

    @property
    def efficiency_score(self) -> float:
        if self.total_tasks_analyzed == 0:
            return 0.0
        on_or_under = self.tasks_under_estimate + self.tasks_on_estimate
        return on_or_under / self.total_tasks_analyzed * 100.0

    @property
    def average_time_delta(self) -> Optional[int]:
        """Seconds saved per task; negative when tasks ran over."""
        if self.total_tasks_analyzed == 0:
            return None
        return int((self.total_time_estimated - self.total_time_spent) / self.total_tasks_analyzed)


@dataclass(frozen=True)
class EstimateAccuracyMetrics:
    mean_absolute_error: Optional[float] = None
    mean_absolute_percentage_error: Optional[float] = None
    root_mean_square_error: Optional[float] = None
    estimates_within_10_percent: int = 0
    estimates_within_25_percent: int = 0
    total_tasks_analyzed: int = 0

    @property
    def accuracy_score(self) -> float:
        if self.mean_absolute_percentage_error is None:
            return 0.0
        return max(0.0, 100.0 - self.mean_absolute_percentage_error)


@dataclass(frozen=True)
class TeamUtilizationMetrics:
    total_person_hours_tracked: float
    total_person_hours_available: float
    utilization_rate: float
    active_contributors: int
    average_hours_per_contributor: float
    total_time_entries: int

    @property
    def utilization_percentage(self) -> float:
        return self.utilization_rate * 100.0

    @property
    def is_under_utilized(self) -> bool:
        return self.utilization_rate < UNDER_UTILIZED_RATE

    @property
    def is_over_utilized(self) -> bool:
        return self.utilization_rate > 1.0


class KPIHealthStatus(str, enum.Enum):
    EXCELLENT = "Excellent"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"
    CRITICAL = "Critical"

    @classmethod
    def for_score(cls, score: float) -> "KPIHealthStatus":
        if score >= 80:
            return cls.EXCELLENT
        if score >= 60:
            return cls.GOOD
        if score >= 40:
            return cls.FAIR
        if score >= 20:
            return cls.POOR
        return cls.CRITICAL


@dataclass(frozen=True)
class KPIResult:
    date_range: KPIDateRange
    calculated_at: dt.datetime
    efficiency: TaskEfficiencyMetrics
    accuracy: EstimateAccuracyMetrics
    utilization: TeamUtilizationMetrics
    total_tasks: int
    total_completed_tasks: int

    @property
    def overall_health_score(self) -> float:
        utilization_score = min(self.utilization.utilization_percentage, 100.0)
        return (
            self.efficiency.efficiency_score * EFFICIENCY_WEIGHT
            + self.accuracy.accuracy_score * ACCURACY_WEIGHT
            + utilization_score * UTILIZATION_WEIGHT
        )

    @property
    def health_status(self) -> KPIHealthStatus:
        return KPIHealthStatus.for_score(self.overall_health_score)


@dataclass(frozen=True)
class KPISnapshot:
    date_range: KPIDateRange
    calculated_at: dt.datetime
    efficiency_score: float
    accuracy_score: float
    utilization_percentage: float
    overall_health_score: float
    health_status: KPIHealthStatus
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def from_result(cls, result: KPIResult) -> "KPISnapshot":
        return cls(
            date_range=result.date_range,
            calculated_at=result.calculated_at,
            efficiency_score=result.efficiency.efficiency_score,
            accuracy_score=result.accuracy.accuracy_score,
            utilization_percentage=result.utilization.utilization_percentage,
            overall_health_score=result.overall_health_score,
            health_status=result.health_status,
        )


def filter_completed_tasks(tasks: Iterable[Task], date_range: KPIDateRange) -> List[Task]:
    return [task for task in tasks if task.completed_date is not None and date_range.contains(task.completed_date)]


def _analyzable(tasks: Iterable[Task], now: dt.datetime, aggregator: Optional["SubtaskAggregator"]):
    for task in tasks:
        estimate = estimates.estimate_for(task, aggregator)
        if not estimate or estimate <= 0:
            continue
        actual = estimates.time_spent_for(task, now, aggregator)
        if actual <= 0:
            continue
        yield estimate, actual


def efficiency_metrics(
    tasks: Iterable[Task],
    now: dt.datetime,
    aggregator: Optional["SubtaskAggregator"] = None,
) -> TaskEfficiencyMetrics:
    pairs = list(_analyzable(tasks, now, aggregator))
    if not pairs:
        return TaskEfficiencyMetrics()
    under = on = over = 0
    total_ratio = 0.0
    for estimate, actual in pairs:
        ratio = actual / estimate
        total_ratio += ratio
        if ratio < UNDER_ESTIMATE_RATIO:
            under += 1
        elif ratio <= OVER_ESTIMATE_RATIO:
            on += 1
        else:
            over += 1
    return TaskEfficiencyMetrics(
        average_efficiency_ratio=total_ratio / len(pairs),
        tasks_under_estimate=under,
        tasks_on_estimate=on,
        tasks_over_estimate=over,
        total_tasks_analyzed=len(pairs),
        total_time_spent=sum(actual for _, actual in pairs),
        total_time_estimated=sum(estimate for estimate, _ in pairs),
    )


def accuracy_metrics(
    tasks: Iterable[Task],
    now: dt.datetime,
    aggregator: Optional["SubtaskAggregator"] = None,
) -> EstimateAccuracyMetrics:
    pairs = list(_analyzable(tasks, now, aggregator))
    if not pairs:
        return EstimateAccuracyMetrics()
    absolute_errors = []
    percentage_errors = []
    within_10 = within_25 = 0
    for estimate, actual in pairs:
        error = abs(estimate - actual)
        percentage = error / estimate * 100.0
        absolute_errors.append(error)
        percentage_errors.append(percentage)
        if percentage <= 10.0:
            within_10 += 1
        if percentage <= 25.0:
            within_25 += 1
    count = len(pairs)
    return EstimateAccuracyMetrics(
        mean_absolute_error=sum(absolute_errors) / count,
        mean_absolute_percentage_error=sum(percentage_errors) / count,
        root_mean_square_error=math.sqrt(sum(error * error for error in absolute_errors) / count),
        estimates_within_10_percent=within_10,
        estimates_within_25_percent=within_25,
        total_tasks_analyzed=count,
    )


def utilization_metrics(
    entries: Iterable[TimeEntry],
    date_range: KPIDateRange,
    available_person_hours_per_day: float,
    tz: Optional[dt.tzinfo | str] = None,
) -> TeamUtilizationMetrics:
    relevant = [entry for entry in entries if entry.end_time is not None and date_range.contains(entry.end_time)]
    days = max(1, date_range.days)
    if not relevant:
        return TeamUtilizationMetrics(
            total_person_hours_tracked=0.0,
            total_person_hours_available=available_person_hours_per_day * days,
            utilization_rate=0.0,
            active_contributors=0,
            average_hours_per_contributor=0.0,
            total_time_entries=0,
        )

    tracked = sum(entry_person_hours(entry) or 0.0 for entry in relevant)
    # Crew size stands in for distinct people; each slot on each day counts once.
    person_days = {
        (local_day(entry.end_time, tz), slot)
        for entry in relevant
        for slot in range(entry.personnel_count or 1)
    }
    contributors = max(1, len(person_days) // days)
    available = available_person_hours_per_day * contributors * days
    return TeamUtilizationMetrics(
        total_person_hours_tracked=tracked,
        total_person_hours_available=available,
        utilization_rate=tracked / available if available > 0 else 0.0,
        active_contributors=contributors,
        average_hours_per_contributor=tracked / contributors,
        total_time_entries=len(relevant),
    )


def calculate_kpis(
    tasks: Iterable[Task],
    entries: Iterable[TimeEntry],
    date_range: KPIDateRange,
    now: dt.datetime,
    available_person_hours_per_day: Optional[float] = None,
    aggregator: Optional["SubtaskAggregator"] = None,
    tz: Optional[dt.tzinfo | str] = None,
) -> KPIResult:
    if available_person_hours_per_day is None:
        from .config import settings

        available_person_hours_per_day = settings.available_person_hours_per_day
    task_list = list(tasks)
    completed = filter_completed_tasks(task_list, date_range)
    return KPIResult(
        date_range=date_range,
        calculated_at=as_utc(now),
        efficiency=efficiency_metrics(completed, now, aggregator),
        accuracy=accuracy_metrics(completed, now, aggregator),
        utilization=utilization_metrics(entries, date_range, available_person_hours_per_day, tz),
        total_tasks=len(task_list),
        total_completed_tasks=len(completed),
    )


def compare_kpis(current: KPIResult, previous: KPIResult) -> Dict[str, float]:
    """Score deltas; ``utilizationImprovement`` is positive when utilisation moved toward the ideal."""
    current_distance = abs(current.utilization.utilization_percentage - IDEAL_UTILIZATION_PERCENTAGE)
    previous_distance = abs(previous.utilization.utilization_percentage - IDEAL_UTILIZATION_PERCENTAGE)
    return {
        "efficiencyScore": current.efficiency.efficiency_score - previous.efficiency.efficiency_score,
        "accuracyScore": current.accuracy.accuracy_score - previous.accuracy.accuracy_score,
        "utilizationImprovement": previous_distance - current_distance,
        "overallHealthScore": current.overall_health_score - previous.overall_health_score,
    }


def task_efficiency_ratio(task: Task, now: dt.datetime, aggregator: Optional["SubtaskAggregator"] = None) -> Optional[float]:
    pairs = list(_analyzable([task], now, aggregator))
    if not pairs:
        return None
    estimate, actual = pairs[0]
    return actual / estimate


def was_completed_within_estimate(task: Task, now: dt.datetime, aggregator: Optional["SubtaskAggregator"] = None) -> bool:
    estimate = estimates.estimate_for(task, aggregator)
    if estimate is None:
        return False
    return estimates.time_spent_for(task, now, aggregator) <= estimate
