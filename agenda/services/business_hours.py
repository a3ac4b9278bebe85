"""Weekly business-hours schedules and their resolution to absolute open intervals."""
from collections.abc import Mapping
from datetime import date
from typing import Any

from agenda.core.errors import ConfigurationError
from agenda.models.location import Location, Provider
from agenda.services.timewindow import Interval, get_zone, parse_wall_time, to_absolute

WEEKDAY_KEYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

WallInterval = tuple[tuple[int, int], tuple[int, int]]
WeeklySchedule = dict[str, list[WallInterval]]


def parse_weekly_schedule(raw: Mapping[str, Any] | None) -> WeeklySchedule:
    """Validate a ``{"mon": [["09:00", "12:00"], ...]}`` mapping.

    Raises ConfigurationError for unknown weekdays, malformed times, intervals whose
    close precedes their open, or intervals that are unordered or overlap.
    """
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigurationError("Business hours must be a mapping of weekday to intervals")
    schedule: WeeklySchedule = {}
    for key, intervals in raw.items():
        day_key = str(key).strip().lower()
        if day_key not in WEEKDAY_KEYS:
            raise ConfigurationError(f"Unknown weekday {key!r} in business hours")
        if not isinstance(intervals, (list, tuple)):
            raise ConfigurationError(f"Business hours for {day_key} must be a list of [open, close] pairs")
        parsed: list[WallInterval] = []
        for pair in intervals:
            if not isinstance(pair, (list, tuple)) or len(pair) != 2:
                raise ConfigurationError(f"Malformed interval {pair!r} for {day_key}")
            opens, closes = parse_wall_time(pair[0]), parse_wall_time(pair[1])
            if closes < opens:
                raise ConfigurationError(f"Interval {pair!r} for {day_key} closes before it opens")
            if parsed and opens < parsed[-1][1]:
                raise ConfigurationError(f"Intervals for {day_key} must be ordered and non-overlapping")
            parsed.append((opens, closes))
        schedule[day_key] = parsed
    return schedule


def effective_schedule(location: Location, provider: Provider | None = None) -> WeeklySchedule:
    # A provider schedule replaces the location's; the two are never merged
    if provider is not None and provider.schedule:
        return parse_weekly_schedule(provider.schedule)
    return parse_weekly_schedule(location.business_hours)


def resolve_open_intervals(day: date, location: Location, provider: Provider | None = None) -> list[Interval]:
    """Open intervals for a calendar date in the location's timezone, as UTC instants."""
    zone = get_zone(location.timezone)
    schedule = effective_schedule(location, provider)
    day_key = WEEKDAY_KEYS[day.weekday()]
    return [
        Interval(to_absolute(day, opens, zone), to_absolute(day, closes, zone))
        for opens, closes in schedule.get(day_key, [])
    ]
