from __future__ import annotations

import datetime as dt
import enum
from typing import TYPE_CHECKING, Optional, Set

from .models import Task
from . import timekeeping

if TYPE_CHECKING:  # pragma: no cover
    from .aggregator import SubtaskAggregator


class EstimateSource(str, enum.Enum):
    CUSTOM = "custom"
    CALCULATED = "calculated"
    OWN = "own"
    NONE = "none"


class TimeEstimateStatus(str, enum.Enum):
    ON_TRACK = "onTrack"
    WARNING = "warning"
    OVER = "over"


WARNING_THRESHOLD = 0.75
OVER_THRESHOLD = 1.0


def estimate_status_for(progress: float) -> TimeEstimateStatus:
    """Bucket a progress ratio; used for both recorded and live progress."""
    if progress >= OVER_THRESHOLD:
        return TimeEstimateStatus.OVER
    if progress >= WARNING_THRESHOLD:
        return TimeEstimateStatus.WARNING
    return TimeEstimateStatus.ON_TRACK


def calculated_estimate_from_subtasks(task: Task, _visited: Optional[Set[str]] = None) -> Optional[int]:
    subtasks = task.subtasks or []
    if not subtasks:
        return None
    visited = _visited if _visited is not None else set()
    visited.add(task.id)
    total = 0
    for subtask in subtasks:
        if subtask.id in visited:
            continue
        total += effective_estimate(subtask, visited) or 0
    return total if total > 0 else None


def effective_estimate(task: Task, _visited: Optional[Set[str]] = None) -> Optional[int]:
    if task.has_custom_estimate:
        return task.estimated_seconds
    visited = _visited if _visited is not None else set()
    if task.id in visited:
        return None
    calculated = calculated_estimate_from_subtasks(task, visited)
    if calculated is not None:
        return calculated
    return task.estimated_seconds


def estimate_source(task: Task) -> EstimateSource:
    if task.has_custom_estimate:
        return EstimateSource.CUSTOM
    if calculated_estimate_from_subtasks(task) is not None:
        return EstimateSource.CALCULATED
    if task.estimated_seconds is not None:
        return EstimateSource.OWN
    return EstimateSource.NONE


def is_using_calculated_estimate(task: Task) -> bool:
    return estimate_source(task) is EstimateSource.CALCULATED


def estimate_for(task: Task, aggregator: Optional["SubtaskAggregator"]) -> Optional[int]:
    if aggregator is not None:
        return aggregator.effective_estimate(task)
    return effective_estimate(task)


def time_spent_for(task: Task, now: dt.datetime, aggregator: Optional["SubtaskAggregator"]) -> float:
    if aggregator is not None:
        return aggregator.total_time_spent(task, now)
    return timekeeping.total_time_spent(task, now)


def time_progress(
    task: Task,
    now: dt.datetime,
    aggregator: Optional["SubtaskAggregator"] = None,
) -> Optional[float]:
    estimate = estimate_for(task, aggregator)
    if not estimate or estimate <= 0:
        return None
    return time_spent_for(task, now, aggregator) / estimate


def is_over_estimate(task: Task, now: dt.datetime, aggregator: Optional["SubtaskAggregator"] = None) -> bool:
    progress = time_progress(task, now, aggregator)
    return progress is not None and progress > OVER_THRESHOLD


def time_remaining(task: Task, now: dt.datetime, aggregator: Optional["SubtaskAggregator"] = None) -> Optional[float]:
    """Seconds left in the budget; negative once over."""
    estimate = estimate_for(task, aggregator)
    if estimate is None:
        return None
    return estimate - time_spent_for(task, now, aggregator)


def estimate_status(
    task: Task,
    now: dt.datetime,
    aggregator: Optional["SubtaskAggregator"] = None,
) -> Optional[TimeEstimateStatus]:
    progress = time_progress(task, now, aggregator)
    if progress is None:
        return None
    return estimate_status_for(progress)


def estimate_accuracy(task: Task, now: dt.datetime, aggregator: Optional["SubtaskAggregator"] = None) -> Optional[float]:
    """Estimate over actual time for completed tasks; above 1.0 means finished under budget."""
    if not task.is_completed:
        return None
    estimate = estimate_for(task, aggregator)
    spent = time_spent_for(task, now, aggregator)
    if not estimate or estimate <= 0 or spent <= 0:
        return None
    return estimate / spent
