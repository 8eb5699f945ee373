"""Tests for interval and cron expression translation."""

from __future__ import annotations

import pytest

from recipe_automation.services.cron_translator import (
    CUSTOM_SCHEDULE_LABEL,
    InvalidIntervalError,
    cron_to_human,
    interval_minutes_from_cron,
    minutes_to_cron,
)


@pytest.mark.parametrize("minutes", [1, 5, 15, 30, 59])
def test_sub_hour_intervals_round_trip_to_minute_descriptions(minutes: int) -> None:
    expression = minutes_to_cron(minutes)

    assert expression == f"*/{minutes} * * * *"
    expected_unit = "minute" if minutes == 1 else "minutes"
    assert cron_to_human(expression) == f"Every {minutes} {expected_unit}"


@pytest.mark.parametrize("hours", [1, 2, 6, 12, 23])
def test_whole_hour_intervals_recover_their_hour_count(hours: int) -> None:
    expression = minutes_to_cron(hours * 60)

    assert expression == f"0 */{hours} * * *"
    expected_unit = "hour" if hours == 1 else "hours"
    assert cron_to_human(expression) == f"Every {hours} {expected_unit}"
    assert interval_minutes_from_cron(expression) == hours * 60


def test_day_intervals_use_day_of_month_step() -> None:
    assert minutes_to_cron(1440) == "0 0 */1 * *"
    assert minutes_to_cron(2880) == "0 0 */2 * *"
    assert cron_to_human("0 0 */1 * *") == "Every 1 day"
    assert cron_to_human("0 0 */3 * *") == "Every 3 days"


def test_non_whole_hour_intervals_are_truncated() -> None:
    assert minutes_to_cron(90) == "0 */1 * * *"
    assert cron_to_human(minutes_to_cron(90)) == "Every 1 hour"
    assert minutes_to_cron(2000) == "0 0 */1 * *"


def test_two_hour_interval_matches_canonical_expression() -> None:
    assert minutes_to_cron(120) == "0 */2 * * *"


@pytest.mark.parametrize("value", [0, -5])
def test_non_positive_intervals_are_rejected(value: int) -> None:
    with pytest.raises(InvalidIntervalError):
        minutes_to_cron(value)


@pytest.mark.parametrize("value", [True, 1.5, "10"])
def test_non_integer_intervals_are_rejected(value: object) -> None:
    with pytest.raises(InvalidIntervalError):
        minutes_to_cron(value)  # type: ignore[arg-type]


def test_unrecognized_expressions_are_echoed_verbatim() -> None:
    assert cron_to_human("30 9 * * 1-5") == "30 9 * * 1-5"
    assert interval_minutes_from_cron("30 9 * * 1-5") is None


def test_missing_expression_is_described_as_custom() -> None:
    assert cron_to_human("") == CUSTOM_SCHEDULE_LABEL
    assert cron_to_human(None) == CUSTOM_SCHEDULE_LABEL
    assert interval_minutes_from_cron(None) is None


def test_extra_whitespace_is_tolerated_when_describing() -> None:
    assert cron_to_human("*/10  *  * * *") == "Every 10 minutes"
