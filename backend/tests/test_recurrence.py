"""
Tests for rule parsing and occurrence expansion.
"""

from datetime import datetime, timedelta, timezone

import pytest
from dateutil.relativedelta import relativedelta

from resource_booking.core.exceptions import InvalidRecurrenceRule, InvalidTimeRange
from resource_booking.services.recurrence_service import (
    Frequency,
    RecurrenceEngine,
    RecurrenceRule,
    is_unbounded,
    parse_rule,
)

from conftest import NOW, at, fixed_clock


def test_parse_weekly_count():
    rule = parse_rule("RRULE:FREQ=WEEKLY;COUNT=10")
    assert rule.frequency is Frequency.WEEKLY
    assert rule.interval == 1
    assert rule.count == 10
    assert rule.until is None


def test_parse_without_prefix_and_lowercase_keys():
    rule = parse_rule("freq=daily;interval=2")
    assert rule.frequency is Frequency.DAILY
    assert rule.interval == 2
    assert is_unbounded(rule)


def test_parse_until_basic_format():
    rule = parse_rule("RRULE:FREQ=DAILY;UNTIL=20300110T090000Z")
    assert rule.until == at(10, 9)
    assert rule.to_rrule_string() == "RRULE:FREQ=DAILY;UNTIL=20300110T090000Z"


@pytest.mark.parametrize(
    "text",
    [
        "",
        "RRULE:COUNT=3",
        "RRULE:FREQ=HOURLY",
        "RRULE:FREQ=SOMETIMES",
        "RRULE:FREQ=WEEKLY;INTERVAL=0",
        "RRULE:FREQ=WEEKLY;COUNT=abc",
        "RRULE:FREQ=WEEKLY;COUNT=-1",
        "RRULE:FREQ=WEEKLY;UNTIL=tomorrow",
        "RRULE:FREQ=WEEKLY;BYDAY=MO,WE",
        "RRULE:FREQ=WEEKLY;FREQ=DAILY",
        "RRULE:FREQ",
    ],
)
def test_parse_rejects_malformed_rules(text):
    with pytest.raises(InvalidRecurrenceRule):
        parse_rule(text)


def test_unbounded_regardless_of_interval():
    assert RecurrenceRule(Frequency.WEEKLY, interval=3).is_unbounded
    assert not RecurrenceRule(Frequency.WEEKLY, interval=3, count=2).is_unbounded
    assert not RecurrenceRule(Frequency.WEEKLY, until=at(31, 0)).is_unbounded


def test_weekly_count_ten(engine):
    monday = at(14, 9)
    starts = engine.expand("RRULE:FREQ=WEEKLY;COUNT=10", monday, monday + timedelta(hours=1))

    assert len(starts) == 10
    assert starts[0] == monday
    for previous, current in zip(starts, starts[1:]):
        assert current - previous == timedelta(days=7)


def test_count_zero_is_empty(engine):
    assert engine.expand("RRULE:FREQ=DAILY;COUNT=0", at(8, 9)) == []


def test_count_ignores_horizon(engine):
    starts = engine.expand("RRULE:FREQ=YEARLY;COUNT=5", at(8, 9))
    assert len(starts) == 5
    assert starts[-1] == at(8, 9, year=2034)
    assert starts[-1] > engine.horizon_end()


def test_until_is_inclusive(engine):
    starts = engine.expand("RRULE:FREQ=DAILY;UNTIL=20300110T090000Z", at(8, 9))
    assert starts == [at(8, 9), at(9, 9), at(10, 9)]


def test_until_before_start_is_empty(engine):
    assert engine.expand("RRULE:FREQ=DAILY;UNTIL=20300101T000000Z", at(8, 9)) == []


def test_interval_steps(engine):
    starts = engine.expand("RRULE:FREQ=DAILY;INTERVAL=3;COUNT=3", at(8, 9))
    assert starts == [at(8, 9), at(11, 9), at(14, 9)]


def test_unbounded_stops_at_horizon_from_now(engine):
    start = at(8, 9)
    starts = engine.expand("RRULE:FREQ=WEEKLY", start, start + timedelta(hours=1))

    horizon = NOW + relativedelta(years=2)
    assert starts
    assert starts[0] == start
    assert horizon - timedelta(days=7) < starts[-1] <= horizon


def test_unbounded_with_explicit_horizon(engine):
    starts = engine.expand("RRULE:FREQ=DAILY", at(8, 9), horizon_end=at(10, 9))
    assert starts == [at(8, 9), at(9, 9), at(10, 9)]


def test_unbounded_horizon_before_start_is_empty(engine):
    assert engine.expand("RRULE:FREQ=DAILY", at(8, 9), horizon_end=at(1, 0)) == []


def test_monthly_skips_short_months(engine):
    starts = engine.expand("RRULE:FREQ=MONTHLY;COUNT=4", at(31, 10))
    assert [s.month for s in starts] == [1, 3, 5, 7]
    assert all(s.day == 31 for s in starts)


def test_yearly_leap_day_only_in_leap_years(engine):
    leap_day = datetime(2032, 2, 29, 10, tzinfo=timezone.utc)
    starts = engine.expand("RRULE:FREQ=YEARLY;COUNT=2", leap_day)
    assert starts == [leap_day, datetime(2036, 2, 29, 10, tzinfo=timezone.utc)]


def test_sub_second_start_preserved(engine):
    start = at(8, 9).replace(microsecond=250000)
    starts = engine.expand("RRULE:FREQ=DAILY;COUNT=2", start)
    assert starts == [start, start + timedelta(days=1)]


def test_template_end_before_start_rejected(engine):
    with pytest.raises(InvalidTimeRange):
        engine.expand("RRULE:FREQ=DAILY;COUNT=2", at(8, 10), at(8, 9))


def test_naive_template_treated_as_utc(engine):
    starts = engine.expand("RRULE:FREQ=DAILY;COUNT=1", datetime(2030, 1, 8, 9))
    assert starts == [at(8, 9)]


def test_occurrences_between_is_half_open(engine):
    starts = engine.occurrences_between("RRULE:FREQ=DAILY", at(8, 9), at(8, 9), at(10, 9))
    assert starts == [at(8, 9), at(9, 9)]


def test_occurrences_between_reaches_past_horizon():
    engine = RecurrenceEngine(clock=fixed_clock)
    window_start = at(1, 0, year=2040)
    window_end = at(1, 0, month=2, year=2040)

    starts = engine.occurrences_between("RRULE:FREQ=WEEKLY", at(7, 9), window_start, window_end)

    assert starts
    assert all(window_start <= s < window_end for s in starts)
    assert all(s.weekday() == 0 and s.hour == 9 for s in starts)


def test_occurrences_between_respects_count(engine):
    starts = engine.occurrences_between("RRULE:FREQ=DAILY;COUNT=2", at(8, 9), at(1, 0), at(31, 0))
    assert starts == [at(8, 9), at(9, 9)]


def test_occurrences_between_window_before_template(engine):
    assert engine.occurrences_between("RRULE:FREQ=DAILY", at(8, 9), at(1, 0), at(8, 9)) == []
