from collections.abc import Iterable
from datetime import date, datetime, timedelta

from agenda.core.errors import ValidationError
from agenda.models.location import Location, Provider, Service
from agenda.services.business_hours import resolve_open_intervals
from agenda.services.store import TenantStore
from agenda.services.timewindow import Interval, get_zone, local_day_bounds, require_aware, subtract

Slot = Interval


def validate_slot_params(duration_minutes: int, buffer_minutes: int) -> None:
    if duration_minutes is None or duration_minutes <= 0:
        raise ValidationError(f"Slot duration must be positive, got {duration_minutes}")
    if buffer_minutes is None or buffer_minutes < 0:
        raise ValidationError(f"Buffer must not be negative, got {buffer_minutes}")


def generate_slots(
    day: date,
    location: Location,
    provider: Provider | None,
    duration_minutes: int,
    buffer_minutes: int,
    occupied: Iterable[Interval] = (),
    not_before: datetime | None = None,
) -> list[Slot]:
    """Free slots of ``duration_minutes`` for one local calendar day.

    Occupied ranges are cut out of the open intervals first; each remaining
    sub-interval is then filled from its start, stepping ``duration + buffer``, and
    a slot never extends past the sub-interval it was laid in. Slots starting
    before ``not_before`` are dropped.
    """
    validate_slot_params(duration_minutes, buffer_minutes)
    occupied = sorted(occupied)
    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=duration_minutes + buffer_minutes)

    slots: list[Slot] = []
    for free in subtract(resolve_open_intervals(day, location, provider), occupied):
        cursor = free.start
        while cursor + duration <= free.end:
            candidate = Slot(cursor, cursor + duration)
            if not any(candidate.overlaps(o) for o in occupied):
                if not_before is None or candidate.start >= not_before:
                    slots.append(candidate)
            cursor += step
    return slots


def resolve_duration(
    duration_minutes: int | None, service: Service | None, location: Location
) -> int:
    """Explicit duration wins, then the service's, then the location default."""
    if duration_minutes is not None:
        resolved = duration_minutes
    elif service is not None:
        resolved = service.duration_minutes
    else:
        resolved = location.slot_duration_minutes
    if resolved is None or resolved <= 0:
        raise ValidationError(f"Duration must be positive, got {resolved}")
    return resolved


async def get_slots_for_date(
    store: TenantStore,
    day: date,
    location_id: int,
    now: datetime,
    provider_id: int | None = None,
    service_id: int | None = None,
    duration_minutes: int | None = None,
) -> tuple[int, list[Slot]]:
    """Load configuration and occupancy for one day and generate its free slots.

    Returns (resolved duration, slots). Slots already in the past are left out.
    """
    location = await store.get_location(location_id)
    provider = await store.get_provider(provider_id) if provider_id is not None else None
    service = await store.get_service(service_id) if service_id is not None else None
    duration = resolve_duration(duration_minutes, service, location)
    validate_slot_params(duration, location.buffer_minutes)

    day_window = local_day_bounds(day, get_zone(location.timezone))
    occupied = await store.list_occupied(location.id, provider_id, day_window)
    slots = generate_slots(
        day,
        location,
        provider,
        duration,
        location.buffer_minutes,
        occupied,
        not_before=require_aware(now, "now"),
    )
    return duration, slots
