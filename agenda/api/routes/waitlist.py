from fastapi import APIRouter, Depends, Query, status

from agenda.api.deps import get_clock, get_tenant_store
from agenda.api.schemas.waitlist import WaitlistEntryPublic, WaitlistJoinRequest, WaitlistResolveRequest
from agenda.services.store import TenantStore
from agenda.services.timewindow import Clock
from agenda.services.waitlist_service import add_to_waitlist, list_active_waitlist, resolve_waitlist_entry

router = APIRouter(prefix="/waitlist", tags=["waitlist"])


@router.post("", response_model=WaitlistEntryPublic, status_code=status.HTTP_201_CREATED)
async def join_waitlist(
    body: WaitlistJoinRequest,
    store: TenantStore = Depends(get_tenant_store),
    clock: Clock = Depends(get_clock),
) -> WaitlistEntryPublic:
    entry, patient = await add_to_waitlist(
        store, body.full_name, body.phone, clock(), location_id=body.location_id, priority=body.priority
    )
    return WaitlistEntryPublic.from_model(entry, patient)


@router.get("", response_model=list[WaitlistEntryPublic])
async def active_waitlist(
    location_id: int = Query(...),
    store: TenantStore = Depends(get_tenant_store),
) -> list[WaitlistEntryPublic]:
    rows = await list_active_waitlist(store, location_id)
    return [WaitlistEntryPublic.from_model(entry, patient) for entry, patient in rows]


@router.patch("/{entry_id}", response_model=WaitlistEntryPublic)
async def resolve_entry(
    entry_id: int,
    body: WaitlistResolveRequest,
    store: TenantStore = Depends(get_tenant_store),
    clock: Clock = Depends(get_clock),
) -> WaitlistEntryPublic:
    entry = await resolve_waitlist_entry(store, entry_id, body.resolution, clock())
    return WaitlistEntryPublic.from_model(entry)
