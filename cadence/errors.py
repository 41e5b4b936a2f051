"""Failure types raised by the scheduling core.

Each class maps to one outcome the serving layer can report distinctly:
validation (400), conflict (409), not found (404) and store failure (500).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from cadence.models import Occurrence, serialize_datetime


class CadenceError(Exception):
    """Base class for every failure raised by the scheduling core."""

    status_code = 500

    def to_dict(self) -> dict[str, Any]:
        return {"error": str(self)}


class ValidationFailure(CadenceError):
    """Request is malformed and nothing was written.

    Raised for a missing title, an inverted interval, a recurring request
    without start/end or ``until``, and an expansion producing no occurrences.
    """

    status_code = 400


class ConflictFailure(CadenceError):
    """A candidate interval overlaps another task of the same owner."""

    status_code = 409

    def __init__(
        self,
        message: str = "Time slot already taken",
        conflict: Occurrence | None = None,
        blocking_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.conflict = conflict
        self.blocking_id = blocking_id

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        if self.conflict is not None:
            payload["conflict"] = {
                "start_time": serialize_datetime(self.conflict.start),
                "end_time": serialize_datetime(self.conflict.end),
            }
        if self.blocking_id:
            payload["blocking_task_id"] = self.blocking_id
        return payload

    @classmethod
    def for_interval(cls, start: datetime, end: datetime, blocking_id: str | None = None) -> "ConflictFailure":
        return cls(conflict=Occurrence(start=start, end=end), blocking_id=blocking_id)


class NotFoundFailure(CadenceError):
    """Target task is absent or belongs to another owner."""

    status_code = 404


class StoreFailure(CadenceError):
    """The interval store itself failed. Not retried."""

    status_code = 500
