import logging

from fastapi import APIRouter, Depends, HTTPException, status

from agenda.api.deps import get_clock, get_messenger, get_tenant_store
from agenda.api.schemas.appointment import AppointmentPublic, BookAppointmentRequest
from agenda.models import AppointmentStatus
from agenda.models.booking import AppointmentCreate
from agenda.services.appointment_service import create_appointment, get_appointment, transition_appointment
from agenda.services.messaging import Messenger
from agenda.services.store import TenantStore
from agenda.services.timewindow import Clock

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/appointments", tags=["appointments"])

_ACTIONS = {
    "confirm": AppointmentStatus.CONFIRMED,
    "cancel": AppointmentStatus.CANCELED,
    "complete": AppointmentStatus.COMPLETED,
    "no-show": AppointmentStatus.NO_SHOW,
    "reschedule": AppointmentStatus.RESCHEDULE_REQUESTED,
}


@router.post("", response_model=AppointmentPublic, status_code=status.HTTP_201_CREATED)
async def book_appointment(
    body: BookAppointmentRequest,
    store: TenantStore = Depends(get_tenant_store),
    messenger: Messenger = Depends(get_messenger),
    clock: Clock = Depends(get_clock),
) -> AppointmentPublic:
    data = AppointmentCreate.model_validate(body.model_dump(exclude={"channel"}))
    appointment = await create_appointment(
        store.session, store.tenant_id, data, messenger, clock(), channel=body.channel
    )
    return AppointmentPublic.from_model(appointment)


@router.get("/{appointment_id}", response_model=AppointmentPublic)
async def read_appointment(
    appointment_id: int,
    store: TenantStore = Depends(get_tenant_store),
) -> AppointmentPublic:
    appointment = await get_appointment(store.session, store.tenant_id, appointment_id)
    return AppointmentPublic.from_model(appointment)


@router.post("/{appointment_id}/{action}", response_model=AppointmentPublic)
async def change_status(
    appointment_id: int,
    action: str,
    store: TenantStore = Depends(get_tenant_store),
    clock: Clock = Depends(get_clock),
) -> AppointmentPublic:
    target = _ACTIONS.get(action)
    if target is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown action {action!r}; expected one of {', '.join(_ACTIONS)}",
        )
    appointment = await transition_appointment(store.session, store.tenant_id, appointment_id, target, clock())
    return AppointmentPublic.from_model(appointment)
