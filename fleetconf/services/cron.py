"""Cron expressions for drift detection schedules.

Accepts 5-field (minute precision) and 6-field (leading seconds) expressions
plus the usual ``@daily``-style descriptors. Field syntax is parsed with
Celery's ``crontab_parser`` so schedules read the same as beat entries.
Expressions are evaluated in UTC. Day-of-week runs 0-6 with 0 = Sunday.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from celery.schedules import crontab_parser

from fleetconf.errors import CronValidationError

DESCRIPTORS = {
    "@yearly": "0 0 0 1 1 *",
    "@annually": "0 0 0 1 1 *",
    "@monthly": "0 0 0 1 * *",
    "@weekly": "0 0 0 * * 0",
    "@daily": "0 0 0 * * *",
    "@midnight": "0 0 0 * * *",
    "@hourly": "0 0 * * * *",
}

# (name, max_, min_) as crontab_parser expects them
_FIELDS = (
    ("second", 60, 0),
    ("minute", 60, 0),
    ("hour", 24, 0),
    ("day of month", 31, 1),
    ("month", 12, 1),
    ("day of week", 7, 0),
)

# leap days can be eight years apart around a century
_SEARCH_YEARS = 8


@dataclass(frozen=True)
class CronExpression:
    expression: str
    seconds: frozenset[int]
    minutes: frozenset[int]
    hours: frozenset[int]
    days_of_month: frozenset[int]
    months: frozenset[int]
    days_of_week: frozenset[int]
    dom_restricted: bool
    dow_restricted: bool

    def _day_matches(self, dt: datetime) -> bool:
        dom_ok = dt.day in self.days_of_month
        dow_ok = (dt.weekday() + 1) % 7 in self.days_of_week
        if self.dom_restricted and self.dow_restricted:
            return dom_ok or dow_ok
        return dom_ok and dow_ok

    def next_after(self, dt: datetime) -> datetime | None:
        """First matching second strictly after ``dt``; ``None`` if nothing matches."""
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
        t = dt.replace(microsecond=0) + timedelta(seconds=1)
        limit_year = t.year + _SEARCH_YEARS
        while t.year <= limit_year:
            if t.month not in self.months:
                year, month = (t.year + 1, 1) if t.month == 12 else (t.year, t.month + 1)
                t = t.replace(year=year, month=month, day=1, hour=0, minute=0, second=0)
                continue
            if not self._day_matches(t):
                t = (t + timedelta(days=1)).replace(hour=0, minute=0, second=0)
                continue
            if t.hour not in self.hours:
                t = (t + timedelta(hours=1)).replace(minute=0, second=0)
                continue
            if t.minute not in self.minutes:
                t = (t + timedelta(minutes=1)).replace(second=0)
                continue
            if t.second not in self.seconds:
                later = [s for s in self.seconds if s > t.second]
                if later:
                    t = t.replace(second=min(later))
                else:
                    t = (t + timedelta(minutes=1)).replace(second=0)
                continue
            return t
        return None


def parse_cron(expression: str) -> CronExpression:
    if not isinstance(expression, str) or not expression.strip():
        raise CronValidationError("Cron expression must be a non-empty string")
    text = expression.strip()
    if text.startswith("@"):
        if text.lower() not in DESCRIPTORS:
            raise CronValidationError(f"Unknown cron descriptor {text!r}")
        fields = DESCRIPTORS[text.lower()].split()
    else:
        fields = text.split()
        if len(fields) == 5:
            fields = ["0", *fields]
        elif len(fields) != 6:
            raise CronValidationError(
                f"Invalid cron expression {text!r}: expected 5 or 6 fields, got {len(fields)}"
            )

    parsed = []
    for raw, (name, max_, min_) in zip(fields, _FIELDS):
        if raw == "?" and name in ("day of month", "day of week"):
            raw = "*"
        try:
            values = crontab_parser(max_, min_).parse(raw)
        except (ValueError, crontab_parser.ParseException) as exc:
            raise CronValidationError(f"Invalid {name} field {raw!r} in {text!r}: {exc}") from exc
        if not values:
            raise CronValidationError(f"Invalid {name} field {raw!r} in {text!r}: matches nothing")
        parsed.append(frozenset(values))

    cron = CronExpression(
        expression=text,
        seconds=parsed[0],
        minutes=parsed[1],
        hours=parsed[2],
        days_of_month=parsed[3],
        months=parsed[4],
        days_of_week=parsed[5],
        dom_restricted=not fields[3].startswith(("*", "?")),
        dow_restricted=not fields[5].startswith(("*", "?")),
    )
    if cron.next_after(datetime.now(UTC)) is None:
        raise CronValidationError(f"Cron expression {text!r} never fires")
    return cron


def validate_cron(expression: str) -> None:
    parse_cron(expression)
