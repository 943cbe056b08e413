from __future__ import annotations

from typing import Optional


class CrewTrackError(Exception):
    """Base class for errors raised by the crewtrack core."""

    default_detail = "Operation failed"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class PersistenceError(CrewTrackError):
    default_detail = "Changes could not be saved"


class CyclicRelationshipError(CrewTrackError):
    default_detail = "Relationship would create a cycle"


class TaskStateError(CrewTrackError):
    default_detail = "Task is not in a state that allows this action"


class TaskBlockedError(TaskStateError):
    default_detail = "Task is blocked by incomplete dependencies"


class TimerAlreadyRunningError(TaskStateError):
    default_detail = "Task already has a running timer"


class NoActiveTimerError(TaskStateError):
    default_detail = "Task has no running timer"


class ArchiveRejectedError(TaskStateError):
    default_detail = "Task cannot be archived"

    def __init__(self, issues: list[str]):
        self.issues = list(issues)
        super().__init__("; ".join(self.issues) or None)


class InvalidTimeRangeError(CrewTrackError):
    default_detail = "End time must be after start time"


class NotFoundError(CrewTrackError):
    default_detail = "Not found"


class InvalidValueError(CrewTrackError):
    default_detail = "Value is outside the allowed range"
