"""Suggest the next days that still have free slots."""
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from agenda.core.errors import ValidationError
from agenda.models.location import Location, Provider
from agenda.services.slot_service import Slot, generate_slots, resolve_duration, validate_slot_params
from agenda.services.store import TenantStore
from agenda.services.timewindow import Interval, get_zone, local_date, local_day_bounds, require_aware


@dataclass
class DayAvailability:
    date: date
    slots: list[Slot] = field(default_factory=list)


def find_next_available_slots(
    from_date: date,
    location: Location,
    provider: Provider | None,
    duration_minutes: int,
    limit: int,
    days_to_scan: int,
    occupied: Iterable[Interval] = (),
    not_before: datetime | None = None,
) -> list[DayAvailability]:
    """First ``limit`` days within ``days_to_scan`` days of ``from_date`` with a free slot.

    Days are scanned in order and the scan stops as soon as ``limit`` is reached.
    An exhausted horizon returns an empty list.
    """
    if limit < 1:
        raise ValidationError(f"limit must be at least 1, got {limit}")
    if days_to_scan < 1:
        raise ValidationError(f"days_to_scan must be at least 1, got {days_to_scan}")
    occupied = sorted(occupied)
    found: list[DayAvailability] = []
    for offset in range(days_to_scan):
        day = from_date + timedelta(days=offset)
        slots = generate_slots(
            day, location, provider, duration_minutes, location.buffer_minutes, occupied, not_before=not_before
        )
        if slots:
            found.append(DayAvailability(date=day, slots=slots))
            if len(found) >= limit:
                break
    return found


async def suggest_next_available(
    store: TenantStore,
    from_date: date | None,
    location_id: int,
    now: datetime,
    provider_id: int | None = None,
    service_id: int | None = None,
    duration_minutes: int | None = None,
    limit: int = 3,
    days_to_scan: int = 14,
) -> tuple[int, list[DayAvailability]]:
    """Load occupancy for the whole horizon in one read, then scan day by day."""
    if days_to_scan < 1:
        raise ValidationError(f"days_to_scan must be at least 1, got {days_to_scan}")
    location = await store.get_location(location_id)
    provider = await store.get_provider(provider_id) if provider_id is not None else None
    service = await store.get_service(service_id) if service_id is not None else None
    duration = resolve_duration(duration_minutes, service, location)
    validate_slot_params(duration, location.buffer_minutes)

    zone = get_zone(location.timezone)
    if from_date is None:
        from_date = local_date(require_aware(now, "now"), zone)
    horizon = Interval(
        local_day_bounds(from_date, zone).start,
        local_day_bounds(from_date + timedelta(days=days_to_scan - 1), zone).end,
    )
    occupied = await store.list_occupied(location.id, provider_id, horizon)
    days = find_next_available_slots(
        from_date,
        location,
        provider,
        duration,
        limit,
        days_to_scan,
        occupied,
        not_before=require_aware(now, "now"),
    )
    return duration, days
