import unittest
from datetime import datetime, timedelta, timezone

from cadence.models import NO_RECURRENCE, RecurrenceRule
from cadence.recurrence import add_months, generate_occurrences, normalize_recurrence, take_occurrences


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class NormalizeRecurrenceTests(unittest.TestCase):
    def test_none_and_missing_type_yield_canonical_rule(self) -> None:
        self.assertEqual(normalize_recurrence(None), NO_RECURRENCE)
        self.assertEqual(normalize_recurrence({}), NO_RECURRENCE)
        self.assertEqual(normalize_recurrence({"type": "none", "every": 4}), NO_RECURRENCE)
        self.assertEqual(normalize_recurrence({"type": "yearly"}), NO_RECURRENCE)
        self.assertEqual(NO_RECURRENCE.to_dict(), {"type": "none", "every": 1, "until": None, "days_of_week": []})

    def test_defaults_fill_absent_fields(self) -> None:
        rule = normalize_recurrence({"type": "daily"})
        self.assertEqual(rule, RecurrenceRule(type="daily", every=1, until=None, days_of_week=()))

    def test_every_is_coerced(self) -> None:
        self.assertEqual(normalize_recurrence({"type": "daily", "every": "3"}).every, 3)
        self.assertEqual(normalize_recurrence({"type": "daily", "every": "abc"}).every, 1)
        self.assertEqual(normalize_recurrence({"type": "daily", "every": 0}).every, 1)
        self.assertEqual(normalize_recurrence({"type": "daily", "every": None}).every, 1)

    def test_every_out_of_float_range_falls_back_to_one(self) -> None:
        self.assertEqual(normalize_recurrence({"type": "daily", "every": "inf"}).every, 1)
        self.assertEqual(normalize_recurrence({"type": "daily", "every": 1e400}).every, 1)
        self.assertEqual(normalize_recurrence({"type": "daily", "every": "nan"}).every, 1)

    def test_days_of_week_accepts_both_spellings(self) -> None:
        camel = normalize_recurrence({"type": "weekly", "daysOfWeek": [3, 1, 1, 9, "x"]})
        snake = normalize_recurrence({"type": "weekly", "days_of_week": [3, 1]})
        self.assertEqual(camel.days_of_week, (1, 3))
        self.assertEqual(snake.days_of_week, (1, 3))
        self.assertEqual(normalize_recurrence({"type": "weekly", "days_of_week": "1,3"}).days_of_week, ())

    def test_until_string_is_parsed(self) -> None:
        rule = normalize_recurrence({"type": "monthly", "until": "2026-05-01T00:00:00Z"})
        self.assertEqual(rule.until, _utc(2026, 5, 1))

    def test_normalizing_twice_is_idempotent(self) -> None:
        raw = {"type": "weekly", "every": "2", "until": "2026-06-01T00:00:00Z", "daysOfWeek": [5, 2]}
        once = normalize_recurrence(raw)
        self.assertEqual(normalize_recurrence(once), once)
        self.assertEqual(normalize_recurrence(once.to_dict()), once)


class GenerateOccurrencesTests(unittest.TestCase):
    def test_daily_steps_by_every_and_stops_at_until(self) -> None:
        start = _utc(2026, 1, 1, 8)
        rule = RecurrenceRule(type="daily", every=2, until=_utc(2026, 1, 9, 8))
        occurrences = list(generate_occurrences(start, start + timedelta(hours=1), rule))
        self.assertEqual(len(occurrences), 5)
        for k, occurrence in enumerate(occurrences):
            self.assertEqual(occurrence.start, start + timedelta(days=2 * k))
            self.assertEqual(occurrence.end - occurrence.start, timedelta(hours=1))
            self.assertLessEqual(occurrence.start, rule.until)

    def test_daily_excludes_start_just_after_until(self) -> None:
        start = _utc(2026, 1, 1, 8)
        rule = RecurrenceRule(type="daily", every=1, until=_utc(2026, 1, 3, 7, 59))
        starts = [o.start for o in generate_occurrences(start, start + timedelta(hours=1), rule)]
        self.assertEqual(starts, [_utc(2026, 1, 1, 8), _utc(2026, 1, 2, 8)])

    def test_weekly_days_from_sunday_base(self) -> None:
        start = _utc(2026, 3, 1, 9)  # Sunday
        rule = RecurrenceRule(type="weekly", every=1, until=_utc(2026, 3, 15, 23), days_of_week=(1, 3))
        starts = [o.start for o in generate_occurrences(start, start + timedelta(hours=1), rule)]
        self.assertEqual(
            starts,
            [_utc(2026, 3, 2, 9), _utc(2026, 3, 4, 9), _utc(2026, 3, 9, 9), _utc(2026, 3, 11, 9)],
        )

    def test_weekly_days_only_move_forward_from_block_anchor(self) -> None:
        start = _utc(2026, 3, 4, 9)  # Wednesday
        rule = RecurrenceRule(type="weekly", every=1, until=_utc(2026, 12, 31), days_of_week=(1, 3))
        occurrences = list(take_occurrences(generate_occurrences(start, start + timedelta(hours=1), rule), 4))
        self.assertEqual(
            [o.start for o in occurrences],
            [_utc(2026, 3, 9, 9), _utc(2026, 3, 4, 9), _utc(2026, 3, 16, 9), _utc(2026, 3, 11, 9)],
        )

    def test_weekly_stops_at_first_start_past_until(self) -> None:
        start = _utc(2026, 3, 4, 9)  # Wednesday
        rule = RecurrenceRule(type="weekly", every=1, until=_utc(2026, 3, 6), days_of_week=(1, 3))
        self.assertEqual(list(generate_occurrences(start, start + timedelta(hours=1), rule)), [])

    def test_weekly_every_two_weeks_skips_blocks(self) -> None:
        start = _utc(2026, 3, 1, 9)
        rule = RecurrenceRule(type="weekly", every=2, until=_utc(2026, 3, 20), days_of_week=(2,))
        starts = [o.start for o in generate_occurrences(start, start + timedelta(hours=1), rule)]
        self.assertEqual(starts, [_utc(2026, 3, 3, 9), _utc(2026, 3, 17, 9)])

    def test_weekly_without_days_keeps_base_weekday(self) -> None:
        start = _utc(2026, 3, 4, 9)
        rule = RecurrenceRule(type="weekly", every=2, until=_utc(2026, 4, 1, 9))
        starts = [o.start for o in generate_occurrences(start, start + timedelta(hours=1), rule)]
        self.assertEqual(starts, [_utc(2026, 3, 4, 9), _utc(2026, 3, 18, 9), _utc(2026, 4, 1, 9)])

    def test_monthly_from_jan_31_rolls_over(self) -> None:
        start = _utc(2026, 1, 31, 10)
        rule = RecurrenceRule(type="monthly", every=1, until=_utc(2026, 5, 31))
        starts = [o.start for o in generate_occurrences(start, start + timedelta(hours=1), rule)]
        self.assertEqual(
            starts,
            [_utc(2026, 1, 31, 10), _utc(2026, 3, 3, 10), _utc(2026, 4, 3, 10), _utc(2026, 5, 3, 10)],
        )

    def test_add_months_in_leap_year(self) -> None:
        self.assertEqual(add_months(_utc(2028, 1, 31, 10), 1), _utc(2028, 3, 2, 10))
        self.assertEqual(add_months(_utc(2026, 11, 15), 3), _utc(2027, 2, 15))

    def test_stepping_past_year_9999_ends_the_sequence(self) -> None:
        start, end = _utc(2026, 3, 2, 9), _utc(2026, 3, 2, 10)
        until = _utc(2030, 1, 1)
        rules = (
            RecurrenceRule(type="daily", every=10_000_000, until=until),
            RecurrenceRule(type="daily", every=10**12, until=until),
            RecurrenceRule(type="monthly", every=200_000, until=until),
            RecurrenceRule(type="weekly", every=10_000_000, until=until),
            RecurrenceRule(type="weekly", every=10_000_000, until=until, days_of_week=(1,)),
        )
        for rule in rules:
            with self.subTest(rule=rule):
                starts = [occurrence.start for occurrence in generate_occurrences(start, end, rule)]
                self.assertEqual(starts, [start])

    def test_unbounded_rule_stops_at_datetime_max(self) -> None:
        rule = RecurrenceRule(type="monthly", every=12 * 3000)
        starts = [occurrence.start for occurrence in generate_occurrences(_utc(2026, 1, 1), _utc(2026, 1, 2), rule)]
        self.assertEqual(starts, [_utc(2026, 1, 1), _utc(5026, 1, 1), _utc(8026, 1, 1)])

    def test_weekdays_are_read_in_utc(self) -> None:
        # 00:30 on Monday at +02:00 is still Sunday in UTC.
        start = datetime(2026, 3, 2, 0, 30, tzinfo=timezone(timedelta(hours=2)))
        rule = RecurrenceRule(type="weekly", until=_utc(2026, 3, 10), days_of_week=(0,))
        occurrences = list(generate_occurrences(start, start + timedelta(hours=1), rule))
        self.assertEqual(
            [occurrence.start for occurrence in occurrences],
            [_utc(2026, 3, 1, 22, 30), _utc(2026, 3, 8, 22, 30)],
        )
        self.assertEqual(occurrences[0].start.utcoffset(), timedelta(0))

    def test_month_days_are_read_in_utc(self) -> None:
        start = datetime(2026, 2, 1, 0, 30, tzinfo=timezone(timedelta(hours=2)))
        rule = RecurrenceRule(type="monthly", until=_utc(2026, 3, 31))
        starts = [occurrence.start for occurrence in generate_occurrences(start, start + timedelta(hours=1), rule)]
        self.assertEqual(starts, [_utc(2026, 1, 31, 22, 30), _utc(2026, 3, 3, 22, 30)])

    def test_none_rule_yields_nothing(self) -> None:
        start = _utc(2026, 1, 1)
        self.assertEqual(list(generate_occurrences(start, start + timedelta(hours=1), NO_RECURRENCE)), [])

    def test_cap_is_applied_by_caller(self) -> None:
        start = _utc(2026, 1, 1, 8)
        rule = RecurrenceRule(type="daily", every=1, until=None)
        capped = list(take_occurrences(generate_occurrences(start, start + timedelta(hours=1), rule), 10))
        self.assertEqual(len(capped), 10)
        self.assertEqual(capped[-1].start, _utc(2026, 1, 10, 8))

    def test_generator_is_restartable(self) -> None:
        start = _utc(2026, 1, 1, 8)
        rule = RecurrenceRule(type="daily", every=1, until=_utc(2026, 1, 3, 8))
        first = list(generate_occurrences(start, start + timedelta(hours=1), rule))
        second = list(generate_occurrences(start, start + timedelta(hours=1), rule))
        self.assertEqual(first, second)


if __name__ == "__main__":
    unittest.main()
