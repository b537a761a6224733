from datetime import datetime, time, timedelta

import pytz

from planmyday.src.scheduling.types import Slot


def get_timezone(name):
    """Resolve an IANA timezone name, defaulting to UTC when unset."""
    try:
        return pytz.timezone(name or "UTC")
    except pytz.UnknownTimeZoneError as e:
        raise ValueError(f"Unknown timezone: {name}") from e


def to_local(instant, timezone):
    """Convert a naive UTC instant into an aware datetime in the given timezone."""
    return pytz.utc.localize(instant).astimezone(get_timezone(timezone))


def local_date(instant, timezone):
    """The calendar date an instant falls on for the user, not for the server."""
    return to_local(instant, timezone).date()


def local_to_utc(day, hour, minute=0, timezone="UTC"):
    """
    Turn a wall-clock time on a local calendar day into a naive UTC instant.

    pytz's localize() applies the offset in force on that day, so DST
    transitions shift the UTC boundaries rather than the local hours.
    """
    tz = get_timezone(timezone)
    local_dt = tz.localize(datetime.combine(day, time(hour, minute)))
    return local_dt.astimezone(pytz.utc).replace(tzinfo=None)


def local_midnight(day, timezone):
    return local_to_utc(day, 0, timezone=timezone)


def effective_hours(awake_hours, group=None, default_hours=None):
    """
    Pick the weekly hours that govern a task.

    An enabled group with configured hours replaces the user's awake hours
    entirely, so a null weekday in the group disables that day even if the
    user is awake. Otherwise the user's awake hours apply, and a user who never
    configured awake hours gets default_hours.
    """
    if (
        group is not None
        and group.auto_schedule_enabled
        and group.auto_schedule_hours is not None
    ):
        return group.auto_schedule_hours
    if awake_hours is not None:
        return awake_hours
    return default_hours


def resolve_window(day, awake_hours, group=None, timezone="UTC", default_hours=None):
    """
    Compute the allowed interval(s) for a local calendar day.

    Args:
        day: date in the user's timezone
        awake_hours: the user's WeeklyHours, or None if never configured
        group: GroupSchedule of the task, if any
        timezone: IANA name used to convert local hours to UTC
        default_hours: WeeklyHours used when awake_hours is None

    Returns:
        A list with the day's window as a Slot of naive UTC instants, or an
        empty list when the day is unavailable.
    """
    hours = effective_hours(awake_hours, group, default_hours)
    if hours is None:
        return []

    day_hours = hours.for_weekday(day.weekday())
    if day_hours is None:
        return []

    return [
        Slot(
            local_to_utc(day, day_hours.start, timezone=timezone),
            local_to_utc(day, day_hours.end, timezone=timezone),
        )
    ]


def windows_for_day(task, snapshot, day):
    return resolve_window(
        day,
        snapshot.availability.awake_hours,
        group=snapshot.group_for(task),
        timezone=snapshot.availability.timezone,
        default_hours=snapshot.settings.default_awake_hours,
    )


def windows_between(task, snapshot, start, end):
    """Yield the task's windows that intersect [start, end), in time order."""
    timezone = snapshot.availability.timezone
    day = local_date(start, timezone)
    last_day = local_date(end, timezone)
    while day <= last_day:
        for window in windows_for_day(task, snapshot, day):
            if window.end > start and window.start < end:
                yield window
        day += timedelta(days=1)
