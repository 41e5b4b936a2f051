from __future__ import annotations

import contextlib
import logging
import uuid
from datetime import datetime
from typing import Any, ContextManager

from cadence.errors import ConflictFailure, NotFoundFailure, ValidationFailure
from cadence.models import (
    DEFAULT_MAX_OCCURRENCES,
    NO_RECURRENCE,
    STANDALONE,
    TASK_STATUSES,
    Occurrence,
    RecurrenceRule,
    SeriesMember,
    SeriesResult,
    Standalone,
    TaskRecord,
    parse_iso_datetime,
)
from cadence.overlap import OverlapGuard, intervals_overlap
from cadence.recurrence import generate_occurrences, normalize_recurrence, take_occurrences
from cadence.task_store import TaskStore

logger = logging.getLogger(__name__)

DESCRIPTIVE_FIELDS = ("title", "description", "status", "due_date")


def _new_series_id() -> str:
    return str(uuid.uuid4())


def _parse_instant(payload: dict[str, Any], field: str) -> datetime | None:
    try:
        return parse_iso_datetime(payload.get(field))
    except (TypeError, ValueError) as exc:
        raise ValidationFailure(f"{field} is not a valid datetime") from exc


def _check_order(start: datetime | None, end: datetime | None) -> None:
    if start is not None and end is not None and start >= end:
        raise ValidationFailure("start_time must be before end_time")


def _clean_descriptive(payload: dict[str, Any]) -> dict[str, Any]:
    """Validate and return only the descriptive fields present in ``payload``."""
    cleaned: dict[str, Any] = {}
    if "title" in payload:
        title = str(payload.get("title") or "").strip()
        if not title:
            raise ValidationFailure("title is required")
        cleaned["title"] = title
    if "description" in payload:
        cleaned["description"] = str(payload.get("description") or "")
    if "status" in payload and payload.get("status") is not None:
        status = str(payload["status"]).strip()
        if status not in TASK_STATUSES:
            raise ValidationFailure(f"status must be one of: {', '.join(TASK_STATUSES)}")
        cleaned["status"] = status
    if "due_date" in payload:
        cleaned["due_date"] = _parse_instant(payload, "due_date")
    return cleaned


class SeriesMutator:
    """Create, update and delete tasks while keeping an owner's intervals disjoint.

    Series membership lives only on the records themselves; every call is an
    independent unit of work against the store.
    """

    def __init__(self, store: TaskStore, max_occurrences: int = DEFAULT_MAX_OCCURRENCES) -> None:
        self.store = store
        self.guard = OverlapGuard(store)
        self.max_occurrences = max(1, int(max_occurrences))

    def _transaction(self) -> ContextManager[Any]:
        transaction = getattr(self.store, "transaction", None)
        if transaction is None:
            return contextlib.nullcontext()
        return transaction()

    def _build_occurrences(
        self,
        owner: str,
        start: datetime,
        end: datetime,
        rule: RecurrenceRule,
        exclude_id: str | None = None,
    ) -> list[Occurrence]:
        staged: list[Occurrence] = []
        candidates = take_occurrences(generate_occurrences(start, end, rule), self.max_occurrences)
        for occurrence in candidates:
            # Members of one series must not overlap each other either.
            if any(intervals_overlap(occurrence.start, occurrence.end, prior.start, prior.end) for prior in staged):
                logger.warning(
                    "Series members overlap owner=%s start=%s end=%s",
                    owner,
                    occurrence.start.isoformat(),
                    occurrence.end.isoformat(),
                )
                raise ConflictFailure.for_interval(occurrence.start, occurrence.end)
            self._reject_overlap(owner, occurrence.start, occurrence.end, exclude_id=exclude_id)
            staged.append(occurrence)
        if not staged:
            raise ValidationFailure("No occurrences generated within the given range")
        return staged

    @staticmethod
    def _series_records(
        base: TaskRecord,
        occurrences: list[Occurrence],
        series_id: str,
        rule: RecurrenceRule,
    ) -> list[TaskRecord]:
        return [
            base.with_updates(
                id="",
                start_time=occurrence.start,
                end_time=occurrence.end,
                membership=SeriesMember(series_id=series_id),
                recurrence=rule,
            )
            for occurrence in occurrences
        ]

    @staticmethod
    def _require_bounded(
        start: datetime | None, end: datetime | None, rule: RecurrenceRule
    ) -> tuple[datetime, datetime]:
        if start is None or end is None or rule.until is None:
            raise ValidationFailure("start_time, end_time, and recurrence.until are required for recurrence")
        return start, end

    def _reject_overlap(
        self,
        owner: str,
        start: datetime | None,
        end: datetime | None,
        exclude_id: str | None = None,
    ) -> None:
        if start is None or end is None:
            return
        if not self.guard.overlaps(owner, start, end, exclude_id=exclude_id):
            return
        blocking = self.guard.first_conflict(owner, start, end, exclude_id=exclude_id)
        blocking_id = blocking.id if blocking is not None else None
        logger.warning("Task conflict owner=%s start=%s end=%s blocking_id=%s", owner, start, end, blocking_id)
        raise ConflictFailure.for_interval(start, end, blocking_id=blocking_id)

    # ---- public API ----

    def list_tasks(self, owner: str, title: str | None = None) -> list[TaskRecord]:
        return self.store.list_for_owner(owner, title=(title or "").strip() or None)

    def get_task(self, owner: str, task_id: str) -> TaskRecord:
        task = self.store.get(owner, task_id)
        if task is None:
            raise NotFoundFailure("Task not found")
        return task

    def create_task(self, owner: str, payload: dict[str, Any]) -> TaskRecord | SeriesResult:
        if "title" not in payload:
            raise ValidationFailure("title is required")
        fields = _clean_descriptive(payload)
        start = _parse_instant(payload, "start_time")
        end = _parse_instant(payload, "end_time")
        _check_order(start, end)
        rule = normalize_recurrence(payload.get("recurrence"))

        base = TaskRecord(owner=owner, **fields)

        if not rule.is_recurring:
            self._reject_overlap(owner, start, end)
            created = self.store.insert_one(
                base.with_updates(
                    start_time=start,
                    end_time=end,
                    membership=STANDALONE,
                    recurrence=NO_RECURRENCE,
                )
            )
            logger.info("Task created id=%s owner=%s", created.id, owner)
            return created

        start, end = self._require_bounded(start, end, rule)
        occurrences = self._build_occurrences(owner, start, end, rule)
        series_id = _new_series_id()
        items = self.store.insert_many(owner, self._series_records(base, occurrences, series_id, rule))
        logger.info("Series created series_id=%s owner=%s count=%s", series_id, owner, len(items))
        return SeriesResult(series_id=series_id, count=len(items), items=items)

    def update_task(self, owner: str, task_id: str, payload: dict[str, Any]) -> TaskRecord | SeriesResult:
        current = self.get_task(owner, task_id)
        fields = _clean_descriptive(payload)

        next_start = _parse_instant(payload, "start_time") or current.start_time
        next_end = _parse_instant(payload, "end_time") or current.end_time
        _check_order(next_start, next_end)

        requested = payload.get("is_recurring")
        wants_recurring = requested if isinstance(requested, bool) else current.is_recurring
        raw_rule = payload.get("recurrence")
        rule = normalize_recurrence(raw_rule if raw_rule is not None else current.recurrence)

        if requested is False:
            return self._demote(current, fields, next_start, next_end)

        if wants_recurring and rule.is_recurring:
            series_start, series_end = self._require_bounded(next_start, next_end, rule)
            membership = current.membership
            if isinstance(membership, SeriesMember):
                return self._rebuild(current, membership.series_id, fields, series_start, series_end, rule)
            if isinstance(membership, Standalone):
                return self._promote(current, fields, series_start, series_end, rule)
            raise TypeError(f"Unknown membership: {membership!r}")

        return self._plain_update(current, payload, fields, next_start, next_end)

    def delete_task(self, owner: str, task_id: str) -> TaskRecord:
        deleted = self.store.delete_one(owner, task_id)
        if deleted is None:
            raise NotFoundFailure("Task not found")
        logger.info("Task deleted id=%s owner=%s", task_id, owner)
        return deleted

    # ---- transitions ----

    def _demote(
        self,
        current: TaskRecord,
        fields: dict[str, Any],
        next_start: datetime | None,
        next_end: datetime | None,
    ) -> TaskRecord:
        self._reject_overlap(current.owner, next_start, next_end, exclude_id=current.id)
        patch = dict(fields)
        patch.update(
            start_time=next_start,
            end_time=next_end,
            membership=STANDALONE,
            recurrence=NO_RECURRENCE,
        )
        updated = self.store.update_one(current.owner, current.id, patch)
        if updated is None:
            raise NotFoundFailure("Task not found")
        if current.series_id:
            # Former series-mates stay as they are.
            logger.info("Task demoted id=%s from series_id=%s", current.id, current.series_id)
        return updated

    def _rebuild(
        self,
        current: TaskRecord,
        series_id: str,
        fields: dict[str, Any],
        next_start: datetime,
        next_end: datetime,
        rule: RecurrenceRule,
    ) -> SeriesResult:
        owner = current.owner
        base = current.with_updates(**fields)
        with self._transaction():
            removed = self.store.delete_many(owner, series_id)
            occurrences = self._build_occurrences(owner, next_start, next_end, rule)
            items = self.store.insert_many(owner, self._series_records(base, occurrences, series_id, rule))
        logger.info(
            "Series rebuilt series_id=%s owner=%s removed=%s count=%s",
            series_id,
            owner,
            removed,
            len(items),
        )
        return SeriesResult(series_id=series_id, count=len(items), items=items)

    def _promote(
        self,
        current: TaskRecord,
        fields: dict[str, Any],
        next_start: datetime,
        next_end: datetime,
        rule: RecurrenceRule,
    ) -> SeriesResult:
        owner = current.owner
        base = current.with_updates(**fields)
        # The task may keep occupying its own former slot.
        occurrences = self._build_occurrences(owner, next_start, next_end, rule, exclude_id=current.id)
        series_id = _new_series_id()
        first, rest = occurrences[0], occurrences[1:]
        patch = {name: getattr(base, name) for name in DESCRIPTIVE_FIELDS}
        patch.update(
            start_time=first.start,
            end_time=first.end,
            membership=SeriesMember(series_id=series_id),
            recurrence=rule,
        )
        with self._transaction():
            updated = self.store.update_one(owner, current.id, patch)
            if updated is None:
                raise NotFoundFailure("Task not found")
            inserted = self.store.insert_many(owner, self._series_records(base, rest, series_id, rule)) if rest else []
        logger.info("Task promoted id=%s series_id=%s count=%s", current.id, series_id, 1 + len(inserted))
        return SeriesResult(series_id=series_id, count=1 + len(inserted), items=[updated, *inserted])

    def _plain_update(
        self,
        current: TaskRecord,
        payload: dict[str, Any],
        fields: dict[str, Any],
        next_start: datetime | None,
        next_end: datetime | None,
    ) -> TaskRecord:
        self._reject_overlap(current.owner, next_start, next_end, exclude_id=current.id)
        patch = dict(fields)
        if payload.get("start_time") is not None:
            patch["start_time"] = next_start
        if payload.get("end_time") is not None:
            patch["end_time"] = next_end
        updated = self.store.update_one(current.owner, current.id, patch)
        if updated is None:
            raise NotFoundFailure("Task not found")
        return updated
