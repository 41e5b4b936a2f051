from __future__ import annotations

from datetime import datetime, timedelta, timezone
from itertools import islice
from typing import Any, Iterable, Iterator

from cadence.models import (
    DEFAULT_MAX_OCCURRENCES,
    NO_RECURRENCE,
    RECURRENCE_TYPES,
    Occurrence,
    RecurrenceRule,
    parse_iso_datetime,
)


def _coerce_every(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 1
    try:
        every = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 1
    return every if every >= 1 else 1


def _coerce_days(value: Any) -> tuple[int, ...]:
    if not isinstance(value, (list, tuple, set, frozenset)):
        return ()
    days: set[int] = set()
    for item in value:
        if isinstance(item, bool):
            continue
        try:
            day = int(item)
        except (TypeError, ValueError):
            continue
        if 0 <= day <= 6:
            days.add(day)
    return tuple(sorted(days))


def _coerce_until(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return parse_iso_datetime(value)
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        return None


def normalize_recurrence(raw: RecurrenceRule | dict[str, Any] | None) -> RecurrenceRule:
    """Fill every absent field of a recurrence description with its default.

    ``until`` presence is not checked here; callers that need a bounded rule
    reject it themselves.
    """
    if raw is None:
        return NO_RECURRENCE
    if isinstance(raw, RecurrenceRule):
        raw = {
            "type": raw.type,
            "every": raw.every,
            "until": raw.until,
            "days_of_week": list(raw.days_of_week),
        }
    if not isinstance(raw, dict):
        return NO_RECURRENCE

    rule_type = str(raw.get("type") or "none").strip().lower()
    if rule_type not in RECURRENCE_TYPES or rule_type == "none":
        return NO_RECURRENCE

    days = raw.get("days_of_week", raw.get("daysOfWeek"))
    return RecurrenceRule(
        type=rule_type,
        every=_coerce_every(raw.get("every")),
        until=_coerce_until(raw.get("until")),
        days_of_week=_coerce_days(days),
    )


def add_months(value: datetime, months: int) -> datetime:
    """Step a datetime by calendar months, spilling surplus days forward.

    The day of month is kept; when the target month is shorter the extra
    days roll into the next month (31 Jan + 1 month -> 3 Mar, or 2 Mar in a
    leap year).
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    first_of_month = value.replace(year=year, month=month, day=1)
    return first_of_month + timedelta(days=value.day - 1)


def sunday_based_weekday(value: datetime) -> int:
    return (value.weekday() + 1) % 7


def _shift(value: datetime, delta: timedelta) -> datetime | None:
    """Add ``delta`` to ``value``; None once the result leaves the datetime range."""
    try:
        return value + delta
    except OverflowError:
        return None


def _next_start(current: datetime, rule: RecurrenceRule) -> datetime | None:
    try:
        if rule.type == "monthly":
            return add_months(current, rule.every)
        if rule.type == "weekly":
            return current + timedelta(weeks=rule.every)
        return current + timedelta(days=rule.every)
    except (OverflowError, ValueError):
        # Past year 9999, so past any representable ``until`` as well.
        return None


def _weekly_on_days(start: datetime, duration: timedelta, rule: RecurrenceRule) -> Iterator[Occurrence]:
    week = 0
    while True:
        try:
            anchor = start + timedelta(weeks=week * rule.every)
        except OverflowError:
            return
        if rule.until is not None and anchor > rule.until:
            return
        anchor_dow = sunday_based_weekday(anchor)
        for dow in rule.days_of_week:
            occurrence_start = _shift(anchor, timedelta(days=(dow - anchor_dow) % 7))
            if occurrence_start is None or (rule.until is not None and occurrence_start > rule.until):
                return
            occurrence_end = _shift(occurrence_start, duration)
            if occurrence_end is None:
                return
            yield Occurrence(start=occurrence_start, end=occurrence_end)
        week += 1


def _stepped(start: datetime, duration: timedelta, rule: RecurrenceRule) -> Iterator[Occurrence]:
    current: datetime | None = start
    while current is not None and (rule.until is None or current <= rule.until):
        end = _shift(current, duration)
        if end is None:
            return
        yield Occurrence(start=current, end=end)
        current = _next_start(current, rule)


def generate_occurrences(start: datetime, end: datetime, rule: RecurrenceRule) -> Iterator[Occurrence]:
    """Lazily expand a base interval with a normalized rule.

    The sequence is unbounded when ``rule.until`` is None; truncation is the
    caller's job (see ``take_occurrences``). A ``none`` rule yields nothing.
    """
    if not rule.is_recurring:
        return iter(())
    duration = end - start
    # Weekdays and month days are read in UTC.
    start = start.astimezone(timezone.utc) if start.tzinfo else start.replace(tzinfo=timezone.utc)
    if rule.type == "weekly" and rule.days_of_week:
        return _weekly_on_days(start, duration, rule)
    return _stepped(start, duration, rule)


def take_occurrences(occurrences: Iterable[Occurrence], cap: int = DEFAULT_MAX_OCCURRENCES) -> Iterator[Occurrence]:
    return islice(occurrences, max(0, int(cap)))
