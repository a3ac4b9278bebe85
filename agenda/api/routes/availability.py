from datetime import date

from fastapi import APIRouter, Depends, Query

from agenda.api.deps import get_clock, get_tenant_store
from agenda.api.schemas.availability import AvailableSlotsResponse, DaySlots, SlotInfo, SuggestionsResponse
from agenda.core.config import settings
from agenda.services.availability_search import suggest_next_available
from agenda.services.slot_service import get_slots_for_date
from agenda.services.store import TenantStore
from agenda.services.timewindow import Clock

router = APIRouter(prefix="/availability", tags=["availability"])


@router.get("/slots", response_model=AvailableSlotsResponse)
async def available_slots(
    date_param: date = Query(..., alias="date"),
    location_id: int = Query(...),
    provider_id: int | None = Query(None),
    service_id: int | None = Query(None),
    duration_minutes: int | None = Query(None, gt=0),
    store: TenantStore = Depends(get_tenant_store),
    clock: Clock = Depends(get_clock),
) -> AvailableSlotsResponse:
    """Free slots for a local calendar day at the location (and provider, if given)."""
    duration, slots = await get_slots_for_date(
        store,
        date_param,
        location_id,
        clock(),
        provider_id=provider_id,
        service_id=service_id,
        duration_minutes=duration_minutes,
    )
    return AvailableSlotsResponse(
        date=date_param,
        location_id=location_id,
        provider_id=provider_id,
        duration_minutes=duration,
        slots=[SlotInfo.from_slot(s) for s in slots],
    )


@router.get("/suggest", response_model=SuggestionsResponse)
async def suggest(
    location_id: int = Query(...),
    from_date: date | None = Query(None),
    provider_id: int | None = Query(None),
    service_id: int | None = Query(None),
    duration_minutes: int | None = Query(None, gt=0),
    limit: int = Query(settings.suggest_limit, ge=1, le=31),
    days_to_scan: int = Query(settings.suggest_days_to_scan, ge=1, le=90),
    store: TenantStore = Depends(get_tenant_store),
    clock: Clock = Depends(get_clock),
) -> SuggestionsResponse:
    now = clock()
    duration, days = await suggest_next_available(
        store,
        from_date,
        location_id,
        now,
        provider_id=provider_id,
        service_id=service_id,
        duration_minutes=duration_minutes,
        limit=limit,
        days_to_scan=days_to_scan,
    )
    return SuggestionsResponse(
        location_id=location_id,
        provider_id=provider_id,
        duration_minutes=duration,
        days=[DaySlots(date=d.date, slots=[SlotInfo.from_slot(s) for s in d.slots]) for d in days],
    )
