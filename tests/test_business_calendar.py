from datetime import datetime, timedelta, timezone

import pytest

from inquiry_sla.core import ConfigurationException
from inquiry_sla.sla.domain import BusinessCalendar, BusinessPolicy
from inquiry_sla.sla.domain.value_objects import parse_business_days

OFFICE_HOURS = BusinessPolicy(
    business_hours_only=True,
    start_hour=9,
    end_hour=18,
    business_days=frozenset({1, 2, 3, 4, 5}),
)

FRIDAY_5PM = datetime(2024, 1, 19, 17, 0, tzinfo=timezone.utc)


def test_wall_clock_when_business_hours_disabled():
    policy = BusinessPolicy(business_hours_only=False)
    assert BusinessCalendar.compute_deadline(FRIDAY_5PM, 4, policy) == FRIDAY_5PM + timedelta(hours=4)


def test_friday_evening_rolls_over_weekend():
    deadline = BusinessCalendar.compute_deadline(FRIDAY_5PM, 2, OFFICE_HOURS)
    assert deadline == datetime(2024, 1, 22, 10, 0, tzinfo=timezone.utc)


def test_start_outside_hours_is_advanced_first():
    saturday = datetime(2024, 1, 20, 11, 30, tzinfo=timezone.utc)
    deadline = BusinessCalendar.compute_deadline(saturday, 3, OFFICE_HOURS)
    assert deadline == datetime(2024, 1, 22, 12, 0, tzinfo=timezone.utc)


def test_early_morning_start_uses_same_day_window():
    monday_early = datetime(2024, 1, 22, 6, 0, tzinfo=timezone.utc)
    deadline = BusinessCalendar.compute_deadline(monday_early, 1, OFFICE_HOURS)
    assert deadline == datetime(2024, 1, 22, 10, 0, tzinfo=timezone.utc)


def test_partial_hours_keep_minutes():
    start = datetime(2024, 1, 19, 16, 30, tzinfo=timezone.utc)
    deadline = BusinessCalendar.compute_deadline(start, 2, OFFICE_HOURS)
    # 1.5h on Friday, 0.5h on Monday
    assert deadline == datetime(2024, 1, 22, 9, 30, tzinfo=timezone.utc)


def test_deadline_on_closing_time_moves_to_next_opening():
    start = datetime(2024, 1, 17, 16, 0, tzinfo=timezone.utc)
    deadline = BusinessCalendar.compute_deadline(start, 2, OFFICE_HOURS)
    assert deadline == datetime(2024, 1, 18, 9, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("hours", [0, -3])
def test_non_positive_hours_return_start(hours):
    saturday = datetime(2024, 1, 20, 11, 30, tzinfo=timezone.utc)
    assert BusinessCalendar.compute_deadline(saturday, hours, OFFICE_HOURS) == saturday


def test_naive_start_is_treated_as_utc():
    naive = datetime(2024, 1, 19, 17, 0)
    assert BusinessCalendar.compute_deadline(naive, 2, OFFICE_HOURS) == datetime(
        2024, 1, 22, 10, 0, tzinfo=timezone.utc
    )


def test_deadline_is_monotonic_in_hours():
    starts = [FRIDAY_5PM + timedelta(hours=h, minutes=17 * h) for h in range(0, 60, 7)]
    for start in starts:
        previous = None
        for quarter_hours in range(1, 200):
            deadline = BusinessCalendar.compute_deadline(start, quarter_hours / 4, OFFICE_HOURS)
            if previous is not None:
                assert deadline >= previous
            previous = deadline


def test_deadline_stays_inside_business_window():
    starts = [FRIDAY_5PM + timedelta(minutes=53 * i) for i in range(80)]
    for start in starts:
        for hours in (0.5, 1, 2.25, 9, 13, 40):
            deadline = BusinessCalendar.compute_deadline(start, hours, OFFICE_HOURS)
            assert deadline.isoweekday() in OFFICE_HOURS.business_days
            assert 9 <= deadline.hour < 18


def test_business_hours_follow_policy_timezone():
    policy = BusinessPolicy(
        business_hours_only=True,
        start_hour=9,
        end_hour=17,
        business_days=frozenset({1, 2, 3, 4, 5}),
        timezone="Asia/Tokyo",
    )
    # Monday 08:00 UTC is 17:00 in Tokyo, already closed
    start = datetime(2024, 1, 22, 8, 0, tzinfo=timezone.utc)
    deadline = BusinessCalendar.compute_deadline(start, 1, policy)
    # Tuesday 10:00 Tokyo
    assert deadline == datetime(2024, 1, 23, 1, 0, tzinfo=timezone.utc)


def test_weekend_only_calendar():
    policy = BusinessPolicy(business_hours_only=True, start_hour=10, end_hour=14, business_days=frozenset({6, 7}))
    deadline = BusinessCalendar.compute_deadline(FRIDAY_5PM, 6, policy)
    assert deadline == datetime(2024, 1, 21, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"start_hour": 18, "end_hour": 9},
        {"start_hour": 9, "end_hour": 9},
        {"start_hour": -1, "end_hour": 9},
        {"business_days": frozenset()},
        {"business_days": frozenset({0, 1})},
        {"timezone": "Mars/Olympus_Mons"},
    ],
)
def test_malformed_policy_is_rejected(kwargs):
    with pytest.raises(ConfigurationException):
        BusinessPolicy(business_hours_only=True, **kwargs)


def test_parse_business_days_storage_format():
    assert parse_business_days("1,2, 3,4,5") == frozenset({1, 2, 3, 4, 5})
    assert parse_business_days([6, 7]) == frozenset({6, 7})
    with pytest.raises(ConfigurationException):
        parse_business_days("mon,tue")
