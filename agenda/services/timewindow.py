"""Wall-clock <-> instant conversion and interval arithmetic.

Every datetime leaving this module is timezone-aware UTC. Naive datetimes only
exist at the storage boundary (see ``to_naive_utc`` / ``as_utc``).
"""
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from agenda.core.errors import ConfigurationError, ValidationError

Clock = Callable[[], datetime]

_WALL_TIME_RE = re.compile(r"^([01]\d|2[0-4]):([0-5]\d)$")
END_OF_DAY = "24:00"


def system_clock() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, order=True)
class Interval:
    """Half-open ``[start, end)`` range of aware instants."""

    start: datetime
    end: datetime

    def overlaps(self, other: "Interval") -> bool:
        return overlaps(self.start, self.end, other.start, other.end)

    def contains(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and a_end > b_start


def get_zone(name: str | None) -> ZoneInfo:
    """Resolve an IANA timezone; a missing or unknown id is a configuration problem."""
    if not name or not name.strip():
        raise ConfigurationError("Timezone is not configured")
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"Unknown timezone {name!r}") from e


def parse_wall_time(value: str) -> tuple[int, int]:
    """Parse ``HH:MM`` into (hour, minute). ``24:00`` is accepted as end of day."""
    match = _WALL_TIME_RE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ConfigurationError(f"Invalid wall-clock time {value!r}, expected HH:MM")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour == 24 and minute != 0:
        raise ConfigurationError(f"Invalid wall-clock time {value!r}")
    return hour, minute


def to_absolute(day: date, wall_time: tuple[int, int], zone: ZoneInfo) -> datetime:
    """Convert a wall-clock time on ``day`` in ``zone`` to an aware UTC instant.

    The UTC offset is looked up for that specific date, so the same wall-clock hour
    maps to different instants across DST changes. A nonexistent wall time (spring
    gap) lands after the gap; an ambiguous one (fall back) takes its first occurrence.
    """
    hour, minute = wall_time
    if hour == 24:
        day, hour = day + timedelta(days=1), 0
    local = datetime.combine(day, time(hour, minute), tzinfo=zone)
    return local.astimezone(UTC)


def local_day_bounds(day: date, zone: ZoneInfo) -> Interval:
    return Interval(to_absolute(day, (0, 0), zone), to_absolute(day + timedelta(days=1), (0, 0), zone))


def local_date(instant: datetime, zone: ZoneInfo) -> date:
    return require_aware(instant).astimezone(zone).date()


def require_aware(value: datetime, field: str = "datetime") -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError(f"{field} must include a timezone offset")
    return value.astimezone(UTC)


def as_utc(value: datetime) -> datetime:
    """Storage -> domain: naive values are UTC by convention."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def utc_naive_now() -> datetime:
    """Current time as naive UTC, the form stored in timestamp columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Domain -> storage: TIMESTAMP WITHOUT TIME ZONE columns hold naive UTC."""
    if value.tzinfo is not None:
        return value.astimezone(UTC).replace(tzinfo=None)
    return value


def merge(intervals: Iterable[Interval]) -> list[Interval]:
    """Sort and coalesce overlapping or touching intervals."""
    merged: list[Interval] = []
    for interval in sorted(i for i in intervals if not i.is_empty):
        if merged and interval.start <= merged[-1].end:
            last = merged[-1]
            merged[-1] = Interval(last.start, max(last.end, interval.end))
        else:
            merged.append(interval)
    return merged


def subtract(intervals: Iterable[Interval], occupied: Iterable[Interval]) -> list[Interval]:
    """Remove every occupied range from ``intervals``; result is ordered and non-empty."""
    blockers = merge(occupied)
    free: list[Interval] = []
    for interval in sorted(intervals):
        cursor = interval.start
        for block in blockers:
            if block.end <= cursor or block.start >= interval.end:
                continue
            if block.start > cursor:
                free.append(Interval(cursor, block.start))
            cursor = max(cursor, block.end)
            if cursor >= interval.end:
                break
        if cursor < interval.end:
            free.append(Interval(cursor, interval.end))
    return free
