from __future__ import annotations

from datetime import datetime
from typing import Protocol

from cadence.models import TaskRecord


class IntervalLookup(Protocol):
    def exists(
        self,
        owner: str,
        *,
        start_before: datetime,
        end_after: datetime,
        exclude_id: str | None = None,
    ) -> bool: ...

    def find_overlapping(
        self,
        owner: str,
        *,
        start_before: datetime,
        end_after: datetime,
        exclude_id: str | None = None,
    ) -> TaskRecord | None: ...


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open overlap test: touching endpoints are not a conflict."""
    return a_start < b_end and b_start < a_end


class OverlapGuard:
    def __init__(self, store: IntervalLookup) -> None:
        self.store = store

    def overlaps(
        self,
        owner: str,
        start_time: datetime | None,
        end_time: datetime | None,
        exclude_id: str | None = None,
    ) -> bool:
        # Open-ended tasks never conflict.
        if start_time is None or end_time is None:
            return False
        return self.store.exists(
            owner,
            start_before=end_time,
            end_after=start_time,
            exclude_id=exclude_id,
        )

    def first_conflict(
        self,
        owner: str,
        start_time: datetime | None,
        end_time: datetime | None,
        exclude_id: str | None = None,
    ) -> TaskRecord | None:
        if start_time is None or end_time is None:
            return None
        return self.store.find_overlapping(
            owner,
            start_before=end_time,
            end_after=start_time,
            exclude_id=exclude_id,
        )
