"""Recurrence rules for recurring issue templates.

``custom_config`` arrives as loose JSON; parse_recurrence() validates it
at the boundary into one of four frozen config types keyed by frequency:

    DAILY    DailyConfig(interval)        every N days (default 1)
    WEEKLY   WeeklyConfig(days)           on the given weekdays, else every 7 days
    MONTHLY  MonthlyConfig(day_of_month)  one calendar month later
    CUSTOM   CustomConfig(options)        falls back to +1 day

compute_next_run() is pure: it derives the next slot from the previous
*scheduled* instant only, never from the wall clock, so each slot is
produced at most once however late the scheduler runs.

Weekday numbers follow the board UI convention: 0=Sunday ... 6=Saturday.
"""

import calendar
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Optional, Tuple

from tracker.errors import ValidationError


@dataclass(frozen=True)
class DailyConfig:
    interval: int = 1


@dataclass(frozen=True)
class WeeklyConfig:
    days: Tuple[int, ...] = ()


@dataclass(frozen=True)
class MonthlyConfig:
    day_of_month: Optional[int] = None


@dataclass(frozen=True)
class CustomConfig:
    options: dict = field(default_factory=dict, hash=False)


FREQUENCY_TYPES = {
    "DAILY": DailyConfig,
    "WEEKLY": WeeklyConfig,
    "MONTHLY": MonthlyConfig,
    "CUSTOM": CustomConfig,
}


def _positive_int(value, label, minimum=1, maximum=None):
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be an integer")
    if number != value and not isinstance(value, str):
        raise ValidationError(f"{label} must be an integer")
    if number < minimum or (maximum is not None and number > maximum):
        bound = f"between {minimum} and {maximum}" if maximum is not None else f">= {minimum}"
        raise ValidationError(f"{label} must be {bound}")
    return number


def parse_recurrence(frequency, config=None):
    """Validate ``frequency`` + raw ``config`` into a config object.

    Accepts both snake_case and the camelCase keys older clients send
    (``dayOfMonth``).

    Raises:
        ValidationError: unknown frequency or malformed parameters.
    """
    if frequency not in FREQUENCY_TYPES:
        raise ValidationError(
            f"Invalid frequency '{frequency}'. Must be one of: {', '.join(FREQUENCY_TYPES)}"
        )
    config = config or {}
    if not isinstance(config, dict):
        raise ValidationError("custom_config must be an object")

    if frequency == "DAILY":
        interval = config.get("interval")
        if interval is None:
            return DailyConfig()
        return DailyConfig(interval=_positive_int(interval, "interval"))

    if frequency == "WEEKLY":
        days = config.get("days") or []
        if not isinstance(days, (list, tuple)):
            raise ValidationError("days must be a list of weekday numbers (0=Sunday)")
        parsed = {_positive_int(d, "weekday", minimum=0, maximum=6) for d in days}
        return WeeklyConfig(days=tuple(sorted(parsed)))

    if frequency == "MONTHLY":
        day = config.get("day_of_month", config.get("dayOfMonth"))
        if day is None:
            return MonthlyConfig()
        return MonthlyConfig(day_of_month=_positive_int(day, "day_of_month", maximum=31))

    return CustomConfig(options=dict(config))


def config_to_dict(config):
    """JSON form stored in RecurringIssueTemplate.custom_config."""
    if isinstance(config, CustomConfig):
        return dict(config.options)
    data = asdict(config)
    if isinstance(config, WeeklyConfig):
        data["days"] = list(config.days)
    return {k: v for k, v in data.items() if v is not None}


def anchor_monthly(config, first_run_at):
    """Pin a MONTHLY config without ``day_of_month`` to the first run's day.

    compute_next_run() only sees the previous slot, so an unanchored
    schedule that starts on the 31st would stay on the 28th after February.
    Other configs are returned unchanged.
    """
    if isinstance(config, MonthlyConfig) and config.day_of_month is None and first_run_at:
        return MonthlyConfig(day_of_month=first_run_at.day)
    return config


def _js_weekday(moment):
    """0=Sunday ... 6=Saturday."""
    return (moment.weekday() + 1) % 7


def _add_month(moment, day_of_month=None):
    year = moment.year + moment.month // 12
    month = moment.month % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    day = min(day_of_month or moment.day, last_day)
    return moment.replace(year=year, month=month, day=day)


def compute_next_run(previous, config):
    """Next scheduled instant after ``previous`` under ``config``.

    Pure: the result depends only on the arguments.
    """
    if isinstance(config, DailyConfig):
        return previous + timedelta(days=config.interval)

    if isinstance(config, WeeklyConfig):
        if not config.days:
            return previous + timedelta(days=7)
        current = _js_weekday(previous)
        later = [d for d in config.days if d > current]
        if later:
            return previous + timedelta(days=later[0] - current)
        return previous + timedelta(days=7 - current + config.days[0])

    if isinstance(config, MonthlyConfig):
        return _add_month(previous, config.day_of_month)

    # CUSTOM: cron-style rules are not supported yet; run daily.
    return previous + timedelta(days=1)
