"""Five-field cron expression evaluation (minute hour day-of-month month day-of-week)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from launchpad.jobs.errors import CronPatternError

# (low, high) bounds per field; day-of-week accepts 7 as an alias for Sunday.
_FIELD_BOUNDS = ((0, 59), (0, 23), (1, 31), (1, 12), (0, 7))
_FIELD_NAMES = ("minute", "hour", "day-of-month", "month", "day-of-week")
_SEARCH_HORIZON = timedelta(days=366 * 5)


def _parse_field(raw: str, index: int) -> frozenset[int]:
  low, high = _FIELD_BOUNDS[index]
  values: set[int] = set()
  for part in raw.split(","):
    if not part:
      raise CronPatternError(f"Empty {_FIELD_NAMES[index]} entry in cron field '{raw}'")
    base, _, step_raw = part.partition("/")
    step = 1
    if step_raw:
      if not step_raw.isdigit() or int(step_raw) == 0:
        raise CronPatternError(f"Invalid step '{step_raw}' in {_FIELD_NAMES[index]} field")
      step = int(step_raw)

    if base == "*":
      start, end = low, high
    elif "-" in base:
      start_raw, _, end_raw = base.partition("-")
      if not (start_raw.isdigit() and end_raw.isdigit()):
        raise CronPatternError(f"Invalid range '{base}' in {_FIELD_NAMES[index]} field")
      start, end = int(start_raw), int(end_raw)
    elif base.isdigit():
      start = int(base)
      # "5/15" means every 15 starting at 5.
      end = high if step_raw else start
    else:
      raise CronPatternError(f"Invalid value '{base}' in {_FIELD_NAMES[index]} field")

    if start < low or end > high or start > end:
      raise CronPatternError(f"{_FIELD_NAMES[index]} value '{part}' is outside {low}-{high}")
    values.update(range(start, end + 1, step))

  if index == 4 and 7 in values:
    values.discard(7)
    values.add(0)
  return frozenset(values)


@dataclass(frozen=True)
class CronExpression:
  """Parsed cron pattern with standard day-of-month / day-of-week OR semantics."""

  pattern: str
  minutes: frozenset[int]
  hours: frozenset[int]
  days: frozenset[int]
  months: frozenset[int]
  weekdays: frozenset[int]
  day_restricted: bool
  weekday_restricted: bool

  @classmethod
  def parse(cls, pattern: str) -> CronExpression:
    fields = pattern.split()
    if len(fields) != 5:
      raise CronPatternError(f"Cron pattern '{pattern}' must have 5 fields, got {len(fields)}")
    parsed = [_parse_field(raw, index) for index, raw in enumerate(fields)]
    return cls(
      pattern=pattern,
      minutes=parsed[0],
      hours=parsed[1],
      days=parsed[2],
      months=parsed[3],
      weekdays=parsed[4],
      day_restricted=fields[2] != "*",
      weekday_restricted=fields[4] != "*",
    )

  def _day_matches(self, moment: datetime) -> bool:
    in_days = moment.day in self.days
    # Python counts Monday as 0; cron counts Sunday as 0.
    in_weekdays = (moment.weekday() + 1) % 7 in self.weekdays
    if self.day_restricted and self.weekday_restricted:
      return in_days or in_weekdays
    if self.day_restricted:
      return in_days
    if self.weekday_restricted:
      return in_weekdays
    return True

  def matches(self, moment: datetime) -> bool:
    return moment.minute in self.minutes and moment.hour in self.hours and moment.month in self.months and self._day_matches(moment)

  def next_after(self, moment: datetime) -> datetime:
    """Return the first matching minute strictly after `moment`, keeping its tzinfo."""
    candidate = moment.replace(second=0, microsecond=0) + timedelta(minutes=1)
    limit = candidate + _SEARCH_HORIZON
    while candidate <= limit:
      if candidate.month not in self.months:
        year, month = (candidate.year + 1, 1) if candidate.month == 12 else (candidate.year, candidate.month + 1)
        candidate = candidate.replace(year=year, month=month, day=1, hour=0, minute=0)
        continue
      if not self._day_matches(candidate):
        candidate = candidate.replace(hour=0, minute=0) + timedelta(days=1)
        continue
      if candidate.hour not in self.hours:
        candidate = candidate.replace(minute=0) + timedelta(hours=1)
        continue
      if candidate.minute not in self.minutes:
        candidate += timedelta(minutes=1)
        continue
      return candidate
    raise CronPatternError(f"Cron pattern '{self.pattern}' never fires")
