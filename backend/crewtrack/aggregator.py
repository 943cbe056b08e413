"""Cached roll-ups of time, person-hours, personnel and estimates over task subtrees.

Closed time and person-hours are cached per task. Open timers are cached only as
their start times, so live values are recomputed against every caller-supplied
``now``. Mutations must call :meth:`SubtaskAggregator.invalidate` for the task
they touch; the task's ancestors are dropped with it.
"""
from __future__ import annotations

import datetime as dt
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Optional, Set, Tuple

from . import estimates, timekeeping
from .graph import iter_ancestors
from .models import Task
from .utils import SECONDS_PER_HOUR, as_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersonnelStats:
    counts: Tuple[int, ...]
    minimum: Optional[int]
    maximum: Optional[int]
    most_common: Optional[int]
    average: Optional[float]
    has_personnel_tracking: bool


@dataclass(frozen=True)
class AggregatedStats:
    direct_closed_seconds: int
    total_closed_seconds: int
    direct_open_starts: Tuple[dt.datetime, ...]
    total_open_starts: Tuple[dt.datetime, ...]
    personnel_counts: Tuple[int, ...]
    direct_person_hours: Optional[float]
    subtree_person_hours: Optional[float]
    effective_estimate: Optional[int]

    @property
    def has_personnel_tracking(self) -> bool:
        return any(count > 1 for count in self.personnel_counts)


_EMPTY = AggregatedStats(0, 0, (), (), (), None, None, None)


def _live(starts: Tuple[dt.datetime, ...], now: dt.datetime) -> float:
    moment = as_utc(now)
    return sum(max((moment - start).total_seconds(), 0.0) for start in starts)


def _sum_optional(values) -> Optional[float]:
    realised = [value for value in values if value is not None]
    if not realised:
        return None
    return sum(realised)


class SubtaskAggregator:
    def __init__(self) -> None:
        self._cache: Dict[str, AggregatedStats] = {}
        self._parents: Dict[str, Optional[str]] = {}
        self._computing: Set[str] = set()

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    def stats(self, task: Task) -> AggregatedStats:
        cached = self._cache.get(task.id)
        if cached is not None:
            return cached
        if task.id in self._computing:
            # Parent/subtask cycle in legacy data; the repeated node contributes nothing.
            return _EMPTY
        self._computing.add(task.id)
        try:
            stats = self._compute(task)
        finally:
            self._computing.discard(task.id)
        self._cache[task.id] = stats
        self._parents[task.id] = task.parent_task.id if task.parent_task is not None else None
        return stats

    def _compute(self, task: Task) -> AggregatedStats:
        direct_closed = timekeeping.direct_time_spent(task)
        direct_open = tuple(as_utc(entry.start_time) for entry in task.open_entries)
        direct_person_hours = timekeeping.total_person_hours(task)
        personnel = [entry.personnel_count or 1 for entry in (task.time_entries or [])]

        total_closed = direct_closed
        total_open = list(direct_open)
        subtree_hours = [direct_person_hours]
        subtask_estimates = []
        for subtask in task.subtasks or []:
            child = self.stats(subtask)
            if subtask.id in self._computing:
                continue
            total_closed += child.total_closed_seconds
            total_open.extend(child.total_open_starts)
            subtree_hours.append(child.subtree_person_hours)
            personnel.extend(child.personnel_counts)
            subtask_estimates.append(child.effective_estimate)

        return AggregatedStats(
            direct_closed_seconds=direct_closed,
            total_closed_seconds=total_closed,
            direct_open_starts=direct_open,
            total_open_starts=tuple(total_open),
            personnel_counts=tuple(personnel),
            direct_person_hours=direct_person_hours,
            subtree_person_hours=_sum_optional(subtree_hours),
            effective_estimate=self._estimate_from(task, subtask_estimates),
        )

    @staticmethod
    def _estimate_from(task: Task, subtask_estimates) -> Optional[int]:
        if task.has_custom_estimate:
            return task.estimated_seconds
        calculated = sum(value or 0 for value in subtask_estimates)
        if subtask_estimates and calculated > 0:
            return calculated
        return task.estimated_seconds

    def direct_time_spent(self, task: Task, now: Optional[dt.datetime] = None) -> float:
        stats = self.stats(task)
        if now is None:
            return float(stats.direct_closed_seconds)
        return stats.direct_closed_seconds + _live(stats.direct_open_starts, now)

    def total_time_spent(self, task: Task, now: dt.datetime) -> float:
        stats = self.stats(task)
        return stats.total_closed_seconds + _live(stats.total_open_starts, now)

    def total_tracked_hours(self, task: Task, now: dt.datetime) -> float:
        return self.total_time_spent(task, now) / SECONDS_PER_HOUR

    def total_person_hours(self, task: Task) -> Optional[float]:
        """Realised person-hours on the task's own closed entries."""
        return self.stats(task).direct_person_hours

    def subtree_person_hours(self, task: Task) -> Optional[float]:
        """Realised person-hours over the whole subtree; open timers are excluded."""
        return self.stats(task).subtree_person_hours

    def effective_estimate(self, task: Task) -> Optional[int]:
        return self.stats(task).effective_estimate

    def time_progress(self, task: Task, now: dt.datetime) -> Optional[float]:
        return estimates.time_progress(task, now, self)

    def personnel_stats(self, task: Task) -> PersonnelStats:
        counts = self.stats(task).personnel_counts
        if not counts:
            return PersonnelStats((), None, None, None, None, False)
        most_common = Counter(counts).most_common(1)[0][0]
        return PersonnelStats(
            counts=counts,
            minimum=min(counts),
            maximum=max(counts),
            most_common=most_common,
            average=sum(counts) / len(counts),
            has_personnel_tracking=any(count > 1 for count in counts),
        )

    def invalidate(self, task_or_id: Task | str) -> None:
        """Drop the cached stats of one task and of every ancestor above it."""
        if isinstance(task_or_id, Task):
            task_id = task_or_id.id
            ancestor_ids = [ancestor.id for ancestor in iter_ancestors(task_or_id)]
        else:
            task_id = task_or_id
            ancestor_ids = []

        pending = [task_id, *ancestor_ids]
        seen: Set[str] = set()
        while pending:
            current = pending.pop()
            if current is None or current in seen:
                continue
            seen.add(current)
            self._cache.pop(current, None)
            pending.append(self._parents.pop(current, None))
        logger.debug("Invalidated %d cached task(s) from %s", len(seen), task_id)
