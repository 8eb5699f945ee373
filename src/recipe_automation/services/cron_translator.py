"""Translate between recurrence intervals and canonical cron expressions."""

from __future__ import annotations

import re
from typing import Final

MINUTES_PER_HOUR: Final[int] = 60
MINUTES_PER_DAY: Final[int] = 1440
CUSTOM_SCHEDULE_LABEL: Final[str] = "Custom schedule"

_EVERY_N_MINUTES = re.compile(r"^\*/(?P<value>[1-9]\d*) \* \* \* \*$")
_EVERY_N_HOURS = re.compile(r"^0 \*/(?P<value>[1-9]\d*) \* \* \*$")
_EVERY_N_DAYS = re.compile(r"^0 0 \*/(?P<value>[1-9]\d*) \* \*$")


class InvalidIntervalError(ValueError):
    """Raised when a recurrence interval is not a positive whole number."""


def minutes_to_cron(minutes: int) -> str:
    """Return the canonical cron expression for an every-N-minutes interval.

    Intervals of an hour or more are converted with integer division, so
    minute counts that are not whole hours (or whole days) are truncated:
    90 minutes becomes every hour, 2000 minutes becomes every day.
    """

    if isinstance(minutes, bool) or not isinstance(minutes, int):
        raise InvalidIntervalError("Interval minutes must be an integer")
    if minutes <= 0:
        raise InvalidIntervalError("Interval minutes must be greater than zero")

    if minutes < MINUTES_PER_HOUR:
        return f"*/{minutes} * * * *"

    hours = minutes // MINUTES_PER_HOUR
    if minutes < MINUTES_PER_DAY:
        return f"0 */{hours} * * *"

    days = hours // 24
    return f"0 0 */{days} * *"


def _pluralize(value: int, unit: str) -> str:
    suffix = "" if value == 1 else "s"
    return f"Every {value} {unit}{suffix}"


def cron_to_human(expression: str | None) -> str:
    """Describe a canonical cron expression, echoing anything else verbatim."""

    if not expression:
        return CUSTOM_SCHEDULE_LABEL

    normalized = " ".join(expression.split())
    if match := _EVERY_N_MINUTES.match(normalized):
        return _pluralize(int(match["value"]), "minute")
    if match := _EVERY_N_HOURS.match(normalized):
        return _pluralize(int(match["value"]), "hour")
    if match := _EVERY_N_DAYS.match(normalized):
        return _pluralize(int(match["value"]), "day")

    return expression


def interval_minutes_from_cron(expression: str | None) -> int | None:
    """Return the interval encoded by a canonical expression, if any."""

    if not expression:
        return None

    normalized = " ".join(expression.split())
    if match := _EVERY_N_MINUTES.match(normalized):
        return int(match["value"])
    if match := _EVERY_N_HOURS.match(normalized):
        return int(match["value"]) * MINUTES_PER_HOUR
    if match := _EVERY_N_DAYS.match(normalized):
        return int(match["value"]) * MINUTES_PER_DAY
    return None


__all__ = [
    "CUSTOM_SCHEDULE_LABEL",
    "InvalidIntervalError",
    "cron_to_human",
    "interval_minutes_from_cron",
    "minutes_to_cron",
]
