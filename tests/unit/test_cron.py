"""Unit tests for five-field cron evaluation."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from launchpad.jobs.cron import CronExpression
from launchpad.jobs.errors import CronPatternError


def test_next_after_daily_at_2am_rolls_to_next_day() -> None:
  expression = CronExpression.parse("0 2 * * *")
  assert expression.next_after(datetime(2026, 3, 10, 2, 0, tzinfo=UTC)) == datetime(2026, 3, 11, 2, 0, tzinfo=UTC)
  assert expression.next_after(datetime(2026, 3, 10, 1, 59, 30, tzinfo=UTC)) == datetime(2026, 3, 10, 2, 0, tzinfo=UTC)


def test_step_values_every_15_minutes() -> None:
  expression = CronExpression.parse("*/15 * * * *")
  assert expression.minutes == frozenset({0, 15, 30, 45})
  assert expression.next_after(datetime(2026, 3, 10, 9, 16, tzinfo=UTC)) == datetime(2026, 3, 10, 9, 30, tzinfo=UTC)


def test_weekly_sunday_uses_cron_weekday_numbering() -> None:
  expression = CronExpression.parse("0 0 * * 0")
  # 2026-03-10 is a Tuesday; the following Sunday is 2026-03-15.
  assert expression.next_after(datetime(2026, 3, 10, 12, 0, tzinfo=UTC)) == datetime(2026, 3, 15, 0, 0, tzinfo=UTC)
  assert CronExpression.parse("0 0 * * 7").weekdays == frozenset({0})


def test_monthly_first_crosses_year_boundary() -> None:
  expression = CronExpression.parse("0 0 1 * *")
  assert expression.next_after(datetime(2026, 12, 15, tzinfo=UTC)) == datetime(2027, 1, 1, tzinfo=UTC)


def test_day_of_month_and_weekday_match_either() -> None:
  expression = CronExpression.parse("0 9 13 * 5")
  # Friday the 6th matches through the weekday, Tuesday the 13th through the day of month.
  assert expression.matches(datetime(2026, 3, 6, 9, 0, tzinfo=UTC))
  assert expression.matches(datetime(2026, 1, 13, 9, 0, tzinfo=UTC))
  assert not expression.matches(datetime(2026, 3, 10, 9, 0, tzinfo=UTC))


def test_ranges_and_lists() -> None:
  expression = CronExpression.parse("0,30 9-11 * * 1-5")
  assert expression.minutes == frozenset({0, 30})
  assert expression.hours == frozenset({9, 10, 11})
  assert expression.weekdays == frozenset({1, 2, 3, 4, 5})


@pytest.mark.parametrize("pattern", ["* * * *", "61 * * * *", "*/0 * * * *", "a * * * *", "5-1 * * * *", "0 0 31 2 *"])
def test_invalid_patterns_are_rejected(pattern: str) -> None:
  with pytest.raises(CronPatternError):
    CronExpression.parse(pattern).next_after(datetime(2026, 1, 1, tzinfo=UTC))
