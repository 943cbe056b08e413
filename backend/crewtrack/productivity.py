from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from . import estimates, timekeeping
from .models import Task
from .utils import SECONDS_PER_HOUR, round_half_up

if TYPE_CHECKING:  # pragma: no cover
    from .aggregator import SubtaskAggregator

AHEAD_RATIO = 1.1
BEHIND_RATIO = 0.9


class PaceKind(str, enum.Enum):
    AHEAD = "ahead"
    ON_PACE = "onPace"
    BEHIND = "behind"


@dataclass(frozen=True)
class PaceStatus:
    kind: PaceKind
    percentage: int = 0

    @property
    def label(self) -> str:
        if self.kind is PaceKind.AHEAD:
            return f"{self.percentage}% ahead"
        if self.kind is PaceKind.BEHIND:
            return f"{self.percentage}% behind"
        return "On pace"


def _person_hours(task: Task, aggregator: Optional["SubtaskAggregator"]) -> Optional[float]:
    if aggregator is not None:
        return aggregator.total_person_hours(task)
    return timekeeping.total_person_hours(task)


def _rate(task: Task, aggregator: Optional["SubtaskAggregator"]) -> Optional[float]:
    if not task.unit_type.is_quantifiable:
        return None
    if task.quantity is None or task.quantity <= 0:
        return None
    person_hours = _person_hours(task, aggregator)
    if person_hours is None or person_hours <= 0:
        return None
    return task.quantity / person_hours


def units_per_hour(task: Task, aggregator: Optional["SubtaskAggregator"] = None) -> Optional[float]:
    """Historical output per person-hour; only completed tasks have one."""
    if not task.is_completed:
        return None
    return _rate(task, aggregator)


def has_productivity_data(task: Task, aggregator: Optional["SubtaskAggregator"] = None) -> bool:
    return units_per_hour(task, aggregator) is not None


def live_productivity_rate(task: Task, aggregator: Optional["SubtaskAggregator"] = None) -> Optional[float]:
    return _rate(task, aggregator)


def required_productivity_rate(
    task: Task,
    now: dt.datetime,
    aggregator: Optional["SubtaskAggregator"] = None,
) -> Optional[float]:
    """Units per person-hour needed to finish the remaining quantity inside the remaining budget."""
    if not task.unit_type.is_quantifiable:
        return None
    if task.expected_quantity is None or task.expected_quantity <= 0:
        return None
    estimate = estimates.estimate_for(task, aggregator)
    if not estimate or estimate <= 0:
        return None

    remaining_quantity = task.expected_quantity - (task.quantity or 0)
    if remaining_quantity <= 0:
        return None
    remaining_seconds = estimate - estimates.time_spent_for(task, now, aggregator)
    if remaining_seconds <= 0:
        return None

    remaining_person_hours = remaining_seconds / SECONDS_PER_HOUR * (task.expected_personnel_count or 1)
    return remaining_quantity / remaining_person_hours


def pace_status_for(live_rate: Optional[float], required_rate: Optional[float]) -> Optional[PaceStatus]:
    if live_rate is None or required_rate is None or required_rate <= 0:
        return None
    ratio = live_rate / required_rate
    if ratio >= AHEAD_RATIO:
        return PaceStatus(PaceKind.AHEAD, round_half_up((ratio - 1.0) * 100))
    if ratio >= BEHIND_RATIO:
        return PaceStatus(PaceKind.ON_PACE)
    return PaceStatus(PaceKind.BEHIND, round_half_up((1.0 - ratio) * 100))


def pace_status(
    task: Task,
    now: dt.datetime,
    aggregator: Optional["SubtaskAggregator"] = None,
) -> Optional[PaceStatus]:
    return pace_status_for(
        live_productivity_rate(task, aggregator),
        required_productivity_rate(task, now, aggregator),
    )


def has_live_productivity_insights(
    task: Task,
    now: dt.datetime,
    aggregator: Optional["SubtaskAggregator"] = None,
) -> bool:
    return (
        live_productivity_rate(task, aggregator) is not None
        or required_productivity_rate(task, now, aggregator) is not None
    )


def expected_productivity_rate(task: Task) -> Optional[float]:
    if task.custom_productivity_rate is not None and task.custom_productivity_rate > 0:
        return task.custom_productivity_rate
    return task.unit_type.default_productivity_rate


def minimum_required_productivity_rate(
    task: Task,
    aggregator: Optional["SubtaskAggregator"] = None,
) -> Optional[float]:
    """Rate needed to deliver the whole expected quantity within the full estimate."""
    if not task.unit_type.is_quantifiable:
        return None
    if task.expected_quantity is None or task.expected_quantity <= 0:
        return None
    estimate = estimates.estimate_for(task, aggregator)
    if not estimate or estimate <= 0:
        return None
    person_hours = estimate / SECONDS_PER_HOUR * (task.expected_personnel_count or 1)
    if person_hours <= 0:
        return None
    return task.expected_quantity / person_hours


def quantity_progress(task: Task) -> Optional[float]:
    if task.expected_quantity is None or task.expected_quantity <= 0:
        return None
    return (task.quantity or 0) / task.expected_quantity


def quantity_remaining(task: Task) -> Optional[float]:
    if task.expected_quantity is None:
        return None
    return task.expected_quantity - (task.quantity or 0)


def has_quantity_progress(task: Task) -> bool:
    return task.expected_quantity is not None and task.expected_quantity > 0
