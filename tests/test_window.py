from datetime import date, datetime, timezone

import pytest

from conftest import make_subscriber
from ideadrip.errors import InvalidScheduleError
from ideadrip.models import UserSchedule, Weekday
from ideadrip.window import describe, is_due, minutes_off, parse_hhmm, slot_for


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def schedule(day="monday", time="09:00", tz="America/New_York"):
    return UserSchedule.from_settings(enabled=True, day=day, time=time, timezone=tz)


# 2026-10-19 is a Monday; New York is on EDT (UTC-4) until 2026-11-01.


def test_due_within_five_minutes_on_the_right_day():
    assert is_due(utc(2026, 10, 19, 13, 0), schedule())
    assert is_due(utc(2026, 10, 19, 13, 4), schedule())  # 09:04 local, delta 4
    assert is_due(utc(2026, 10, 19, 12, 55), schedule())  # 08:55 local, delta 5


def test_not_due_past_the_tolerance():
    assert not is_due(utc(2026, 10, 19, 13, 6), schedule())  # delta 6
    assert not is_due(utc(2026, 10, 19, 12, 54), schedule())


def test_wrong_local_day_is_never_due():
    # Tuesday 09:00 New York time
    assert not is_due(utc(2026, 10, 20, 13, 0), schedule())
    assert minutes_off(utc(2026, 10, 20, 13, 0), schedule()) is None


def test_time_is_read_in_the_users_zone_not_utc():
    # 09:00 UTC Monday is 05:00 in New York.
    assert not is_due(utc(2026, 10, 19, 9, 0), schedule())
    assert is_due(utc(2026, 10, 19, 9, 0), schedule(tz="UTC"))


def test_dst_transition_uses_zone_rules_not_a_fixed_offset():
    # After 2026-11-01 New York is UTC-5: Monday 09:00 local is 14:00Z.
    assert is_due(utc(2026, 11, 2, 14, 0), schedule())
    assert not is_due(utc(2026, 11, 2, 13, 0), schedule())


def test_local_day_can_differ_from_utc_day():
    # Monday 08:00 in Auckland (NZDT, UTC+13) is still Sunday in UTC.
    sched = schedule(day="monday", time="08:00", tz="Pacific/Auckland")
    assert is_due(utc(2026, 10, 18, 19, 0), sched)


def test_half_hour_offset_zone():
    # India is UTC+05:30: Monday 09:00 IST == 03:30Z.
    sched = schedule(tz="Asia/Kolkata")
    assert is_due(utc(2026, 10, 19, 3, 33), sched)
    assert not is_due(utc(2026, 10, 19, 3, 0), sched)


def test_midnight_rollover_is_not_matched():
    # Saturday 23:58 slot, run lands on Sunday 00:02 local: four minutes later
    # on the wall clock, but the day filter rejects it.
    sched = schedule(day="saturday", time="23:58", tz="UTC")
    assert not is_due(utc(2026, 10, 25, 0, 2), sched)
    assert is_due(utc(2026, 10, 24, 23, 55), sched)


def test_parse_hhmm():
    assert parse_hhmm("00:00") == 0
    assert parse_hhmm("09:30") == 570
    assert parse_hhmm("23:59") == 1439
    for bad in ("24:00", "9", "09:60", "ab:cd", "", "09:00:00"):
        with pytest.raises(ValueError):
            parse_hhmm(bad)


def test_unreadable_schedule_raises_schedule_error():
    with pytest.raises(InvalidScheduleError):
        is_due(utc(2026, 10, 19, 13, 0), schedule(tz="Mars/Olympus_Mons"))
    with pytest.raises(InvalidScheduleError):
        is_due(utc(2026, 10, 19, 13, 0), schedule(time="9am"))


def test_naive_instant_is_rejected():
    with pytest.raises(ValueError):
        is_due(datetime(2026, 10, 19, 13, 0), schedule())


def test_slot_uses_local_calendar_date():
    sub = make_subscriber("7", day="monday", time="08:00", tz="Pacific/Auckland")
    slot = slot_for(sub.user_id, utc(2026, 10, 18, 19, 0), sub.schedule)
    assert slot.local_date == date(2026, 10, 19)
    assert slot.as_string() == "7:2026-10-19:08:00"


def test_describe():
    assert describe(schedule()) == "Mondays at 09:00 (America/New_York)"
    assert Weekday.parse("Friday") is Weekday.FRIDAY
