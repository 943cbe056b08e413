from __future__ import annotations

import datetime as dt
from typing import List, Optional, Set

from .graph import iter_subtree
from .models import Task, TimeEntry
from .utils import SECONDS_PER_HOUR, as_utc, day_bounds, local_day


def entry_duration_seconds(entry: TimeEntry, now: Optional[dt.datetime] = None) -> float:
    """Elapsed seconds of an entry; open entries count up to ``now`` or zero without one."""
    start = as_utc(entry.start_time)
    if entry.end_time is not None:
        end = as_utc(entry.end_time)
    elif now is not None:
        end = as_utc(now)
    else:
        return 0.0
    return max((end - start).total_seconds(), 0.0)


def entry_person_hours(entry: TimeEntry) -> Optional[float]:
    if entry.is_open:
        return None
    return entry_duration_seconds(entry) / SECONDS_PER_HOUR * (entry.personnel_count or 1)


def closed_entries(task: Task) -> List[TimeEntry]:
    return [entry for entry in (task.time_entries or []) if entry.end_time is not None]


def active_timer_entry(task: Task) -> Optional[TimeEntry]:
    open_entries = task.open_entries
    if not open_entries:
        return None
    return max(open_entries, key=lambda entry: as_utc(entry.start_time))


def direct_time_spent(task: Task) -> int:
    """Seconds logged on the task's own closed entries."""
    return sum(int(entry_duration_seconds(entry)) for entry in closed_entries(task))


def live_seconds(task: Task, now: dt.datetime) -> float:
    # Every open entry is counted; legacy data may hold more than one.
    return sum(entry_duration_seconds(entry, now) for entry in task.open_entries)


def direct_time_with_live(task: Task, now: dt.datetime) -> float:
    return direct_time_spent(task) + live_seconds(task, now)


def total_time_spent(task: Task, now: dt.datetime, _visited: Optional[Set[str]] = None) -> float:
    """Seconds spent on the task and its whole subtree, open timers included."""
    visited = _visited if _visited is not None else set()
    if task.id in visited:
        return 0.0
    visited.add(task.id)
    total = direct_time_with_live(task, now)
    for subtask in task.subtasks or []:
        total += total_time_spent(subtask, now, visited)
    return total


def total_tracked_hours(task: Task, now: dt.datetime) -> float:
    return total_time_spent(task, now) / SECONDS_PER_HOUR


def total_person_hours(task: Task) -> Optional[float]:
    """Person-hours realised on the task's own closed entries; None without any."""
    values = [entry_person_hours(entry) for entry in closed_entries(task)]
    if not values:
        return None
    return sum(values)


def subtree_person_hours(task: Task) -> Optional[float]:
    hours = [total_person_hours(task)]
    hours.extend(total_person_hours(node) for node in iter_subtree(task))
    realised = [value for value in hours if value is not None]
    if not realised:
        return None
    return sum(realised)


def today_entries(task: Task, now: dt.datetime, tz: Optional[dt.tzinfo | str] = None) -> List[TimeEntry]:
    """Closed entries whose end time falls on the caller's local calendar day."""
    start, end = day_bounds(local_day(now, tz), tz)
    return [entry for entry in closed_entries(task) if start <= as_utc(entry.end_time) < end]


def today_hours(task: Task, now: dt.datetime, tz: Optional[dt.tzinfo | str] = None) -> float:
    return sum(entry_duration_seconds(entry) for entry in today_entries(task, now, tz)) / SECONDS_PER_HOUR


def today_person_hours(task: Task, now: dt.datetime, tz: Optional[dt.tzinfo | str] = None) -> float:
    return sum(entry_person_hours(entry) or 0.0 for entry in today_entries(task, now, tz))


def has_personnel_tracking(task: Task) -> bool:
    return any((entry.personnel_count or 1) > 1 for entry in (task.time_entries or []))
