"""
Tests for availability windows: awake hours, group overrides and timezones.
"""

from datetime import date, datetime

import pytest
from conftest import at

from planmyday.src.scheduling.types import (
    DayHours,
    GroupSchedule,
    Slot,
    WeeklyHours,
)
from planmyday.src.scheduling.windows import (
    effective_hours,
    get_timezone,
    local_date,
    local_to_utc,
    resolve_window,
    windows_between,
)

MONDAY = date(2024, 1, 8)
TUESDAY = date(2024, 1, 9)


class TestWeeklyHours:
    def test_from_dict_parses_days_and_nulls(self):
        hours = WeeklyHours.from_dict(
            {"monday": {"start": 9, "end": 17}, "tuesday": None}
        )
        assert hours.for_weekday(0) == DayHours(9, 17)
        assert hours.for_weekday(1) is None
        # Missing weekdays are unavailable
        assert hours.for_weekday(6) is None

    def test_from_dict_none_means_not_configured(self):
        assert WeeklyHours.from_dict(None) is None

    @pytest.mark.parametrize(
        "data",
        [
            {"monday": {"start": 17, "end": 9}},
            {"monday": {"start": 9, "end": 9}},
            {"monday": {"start": 9, "end": 24}},
            {"monday": {"start": -1, "end": 5}},
            {"monday": {"start": "9", "end": 17}},
            {"monday": {"start": 9}},
            {"funday": {"start": 9, "end": 17}},
            ["monday"],
        ],
    )
    def test_from_dict_rejects_invalid_input(self, data):
        with pytest.raises(ValueError):
            WeeklyHours.from_dict(data)

    def test_round_trip_through_dict(self):
        hours = WeeklyHours.every_day(8, 18)
        assert WeeklyHours.from_dict(hours.to_dict()) == hours


class TestResolveWindow:
    def test_user_hours_in_utc(self):
        hours = WeeklyHours.every_day(9, 17)
        assert resolve_window(MONDAY, hours) == [Slot(at(0, 9), at(0, 17))]

    def test_hours_are_local_to_the_user(self):
        """09:00-17:00 in New York in January is 14:00-22:00 UTC"""
        hours = WeeklyHours.every_day(9, 17)
        windows = resolve_window(MONDAY, hours, timezone="America/New_York")
        assert windows == [Slot(at(0, 14), at(0, 22))]

    def test_dst_shifts_the_utc_boundaries(self):
        hours = WeeklyHours.every_day(9, 17)
        before = resolve_window(date(2024, 3, 9), hours, timezone="America/New_York")
        after = resolve_window(date(2024, 3, 10), hours, timezone="America/New_York")
        assert before[0].start == datetime(2024, 3, 9, 14, 0)
        assert after[0].start == datetime(2024, 3, 10, 13, 0)

    def test_null_day_is_unavailable(self):
        hours = WeeklyHours.from_dict({"monday": None, "tuesday": {"start": 9, "end": 17}})
        assert resolve_window(MONDAY, hours) == []

    def test_enabled_group_overrides_user_hours(self):
        user_hours = WeeklyHours.every_day(8, 18)
        group = GroupSchedule(
            id="g",
            auto_schedule_enabled=True,
            auto_schedule_hours=WeeklyHours.every_day(12, 14),
        )
        assert resolve_window(MONDAY, user_hours, group=group) == [
            Slot(at(0, 12), at(0, 14))
        ]

    def test_enabled_group_null_day_disables_day_even_if_user_is_awake(self):
        user_hours = WeeklyHours.every_day(8, 18)
        group_hours = WeeklyHours.from_dict(
            {"monday": {"start": 10, "end": 12}, "tuesday": None}
        )
        group = GroupSchedule(
            id="g", auto_schedule_enabled=True, auto_schedule_hours=group_hours
        )
        assert resolve_window(TUESDAY, user_hours, group=group) == []

    def test_disabled_group_uses_user_hours(self):
        user_hours = WeeklyHours.every_day(8, 18)
        group = GroupSchedule(
            id="g",
            auto_schedule_enabled=False,
            auto_schedule_hours=WeeklyHours.every_day(12, 14),
        )
        assert resolve_window(MONDAY, user_hours, group=group) == [
            Slot(at(0, 8), at(0, 18))
        ]

    def test_enabled_group_without_hours_uses_user_hours(self):
        user_hours = WeeklyHours.every_day(8, 18)
        group = GroupSchedule(id="g", auto_schedule_enabled=True)
        assert effective_hours(user_hours, group) is user_hours

    def test_default_hours_when_user_never_configured(self):
        default = WeeklyHours.every_day(9, 17)
        assert resolve_window(MONDAY, None, default_hours=default) == [
            Slot(at(0, 9), at(0, 17))
        ]
        assert resolve_window(MONDAY, None) == []


class TestTimezones:
    def test_unknown_timezone_raises_value_error(self):
        with pytest.raises(ValueError):
            get_timezone("Mars/Olympus_Mons")

    def test_local_date_uses_user_timezone(self):
        """Sunday 20:00 UTC is already Monday morning in Tokyo"""
        assert local_date(at(-1, 20), "Asia/Tokyo") == MONDAY
        assert local_date(at(-1, 20), "UTC") == date(2024, 1, 7)

    def test_local_to_utc(self):
        assert local_to_utc(MONDAY, 9, timezone="Asia/Tokyo") == at(0, 0)

    def test_windows_between_follows_local_weekdays(self, make_task, make_snapshot):
        hours = WeeklyHours.from_dict({"monday": {"start": 9, "end": 17}})
        snapshot = make_snapshot([], awake_hours=hours, timezone="Asia/Tokyo")
        task = make_task("t")

        windows = list(windows_between(task, snapshot, at(-1, 20), at(0, 12)))

        # Monday 09:00-17:00 Tokyo is Monday 00:00-08:00 UTC
        assert windows == [Slot(at(0, 0), at(0, 8))]
