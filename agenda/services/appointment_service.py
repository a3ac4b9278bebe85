import logging
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.core.config import settings
from agenda.core.errors import SlotTaken, ValidationError
from agenda.models import PROVIDER_OVERLAP_CONSTRAINT, Appointment, AppointmentStatus, Location, Provider, Service
from agenda.models.booking import AppointmentCreate, BookingChannel
from agenda.services.business_hours import resolve_open_intervals
from agenda.services.messaging import Messenger
from agenda.services.notification_service import notify_appointment_created
from agenda.services.patient_service import resolve_or_create_patient
from agenda.services.slot_service import resolve_duration
from agenda.services.store import TenantStore
from agenda.services.timewindow import Interval, as_utc, get_zone, local_date, require_aware, to_naive_utc

logger = logging.getLogger(__name__)

# target status -> statuses it may be reached from
_TRANSITIONS: dict[AppointmentStatus, set[AppointmentStatus]] = {
    AppointmentStatus.CONFIRMED: {AppointmentStatus.PENDING, AppointmentStatus.RESCHEDULE_REQUESTED},
    AppointmentStatus.CANCELED: {
        AppointmentStatus.PENDING,
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.RESCHEDULE_REQUESTED,
    },
    AppointmentStatus.COMPLETED: {AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED},
    AppointmentStatus.NO_SHOW: {AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED},
    AppointmentStatus.RESCHEDULE_REQUESTED: {AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED},
}


async def resolve_location(store: TenantStore, location_id: int | None, provider: Provider | None) -> Location:
    """Explicit location, else the provider's default, else the tenant's only location."""
    if location_id is not None:
        return await store.get_location(location_id)
    if provider is not None and provider.default_location_id is not None:
        return await store.get_location(provider.default_location_id)
    locations = await store.list_locations()
    if not locations:
        raise ValidationError("The tenant has no locations; create one first")
    if len(locations) > 1:
        raise ValidationError("Several locations exist; location_id is required")
    return locations[0]


def fits_business_hours(requested: Interval, location: Location, provider: Provider | None) -> bool:
    day = local_date(requested.start, get_zone(location.timezone))
    return any(o.contains(requested) for o in resolve_open_intervals(day, location, provider))


async def _load_service(store: TenantStore, service_id: int | None) -> Service | None:
    if service_id is None:
        return None
    service = await store.get_service(service_id)
    if not service.active:
        raise ValidationError(f"Service {service.name!r} is paused")
    return service


async def _load_provider(store: TenantStore, provider_id: int | None) -> Provider | None:
    if provider_id is None:
        return None
    provider = await store.get_provider(provider_id)
    if not provider.active:
        raise ValidationError(f"Provider {provider.full_name!r} is inactive")
    return provider


def is_overlap_violation(error: IntegrityError) -> bool:
    """True when the insert hit the provider overlap exclusion constraint."""
    orig = error.orig
    # asyncpg keeps the constraint name on the driver exception the adapter wraps
    for candidate in (orig, getattr(orig, "__cause__", None)):
        if getattr(candidate, "constraint_name", None) == PROVIDER_OVERLAP_CONSTRAINT:
            return True
    return PROVIDER_OVERLAP_CONSTRAINT in str(orig)


async def _ensure_free(
    store: TenantStore,
    location_id: int,
    provider_id: int | None,
    requested: Interval,
    exclude_appointment_id: int | None = None,
) -> None:
    occupied = await store.list_occupied(
        location_id, provider_id, requested, exclude_appointment_id=exclude_appointment_id
    )
    if any(o.overlaps(requested) for o in occupied):
        raise SlotTaken("The requested slot is no longer available; search availability again")


async def create_appointment(
    session: AsyncSession,
    tenant_id: int,
    data: AppointmentCreate,
    messenger: Messenger,
    now: datetime,
    channel: BookingChannel = BookingChannel.PUBLIC,
    default_country_code: str = settings.default_country_code,
) -> Appointment:
    """Book an appointment, re-validating the slot under the location lock.

    The appointment is committed before the confirmation message is attempted;
    a failed notification is logged and never undoes the booking.
    """
    store = TenantStore(session, tenant_id)
    await store.get_tenant()
    service = await _load_service(store, data.service_id)
    provider = await _load_provider(store, data.provider_id)
    location = await resolve_location(store, data.location_id, provider)
    duration = resolve_duration(data.duration_minutes, service, location)

    start = require_aware(data.start_at, "start_at")
    if start < require_aware(now, "now"):
        raise ValidationError("Cannot book an appointment in the past")
    requested = Interval(start, start + timedelta(minutes=duration))
    if not fits_business_hours(requested, location, provider):
        raise ValidationError("The requested time is outside business hours")

    status = AppointmentStatus.CONFIRMED if channel == BookingChannel.INTERNAL else AppointmentStatus.PENDING
    stamp = to_naive_utc(now)
    try:
        await store.lock_location(location.id)
        if provider is not None:
            await store.lock_provider(provider.id)
        patient = await resolve_or_create_patient(
            store, data.patient_name, data.patient_phone, data.patient_email, default_country_code
        )
        await _ensure_free(store, location.id, provider.id if provider else None, requested)
        appointment = Appointment(
            tenant_id=tenant_id,
            location_id=location.id,
            provider_id=provider.id if provider else None,
            patient_id=patient.id,
            service_id=service.id if service else None,
            service_name=service.name if service else (data.service_name or "").strip() or None,
            start_at=to_naive_utc(requested.start),
            end_at=to_naive_utc(requested.end),
            status=status,
            notes=data.notes,
            created_at=stamp,
            updated_at=stamp,
            status_changed_at=stamp,
        )
        try:
            await store.add_appointment(appointment)
        except IntegrityError as e:
            if not is_overlap_violation(e):
                raise
            raise SlotTaken("The requested slot was taken by a concurrent booking") from e
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        "Appointment booked: tenant=%s appointment=%s location=%s provider=%s start=%s channel=%s",
        tenant_id,
        appointment.id,
        location.id,
        appointment.provider_id,
        requested.start.isoformat(),
        channel.value,
    )

    await notify_appointment_created(store, messenger, appointment, patient, location, provider)
    try:
        await session.commit()
    except Exception as e:
        await session.rollback()
        logger.exception(
            "Could not record notification: tenant=%s appointment=%s error=%s", tenant_id, appointment.id, e
        )
    return appointment


async def transition_appointment(
    session: AsyncSession,
    tenant_id: int,
    appointment_id: int,
    target: AppointmentStatus,
    now: datetime,
) -> Appointment:
    store = TenantStore(session, tenant_id)
    try:
        appointment = await store.get_appointment(appointment_id)
        current = AppointmentStatus(appointment.status)
        if current not in _TRANSITIONS[target]:
            raise ValidationError(f"Cannot change appointment from {current.value} to {target.value}")
        if target == AppointmentStatus.CONFIRMED and current == AppointmentStatus.RESCHEDULE_REQUESTED:
            # The slot was released while awaiting a reschedule; claim it again
            await store.lock_location(appointment.location_id)
            if appointment.provider_id is not None:
                await store.lock_provider(appointment.provider_id)
            requested = Interval(as_utc(appointment.start_at), as_utc(appointment.end_at))
            await _ensure_free(
                store,
                appointment.location_id,
                appointment.provider_id,
                requested,
                exclude_appointment_id=appointment.id,
            )
        await store.set_appointment_status(appointment, target, require_aware(now, "now"))
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info(
        "Appointment %s: tenant=%s appointment=%s from=%s", target.value, tenant_id, appointment_id, current.value
    )
    return appointment


async def confirm_appointment(session: AsyncSession, tenant_id: int, appointment_id: int, now: datetime) -> Appointment:
    return await transition_appointment(session, tenant_id, appointment_id, AppointmentStatus.CONFIRMED, now)


async def cancel_appointment(session: AsyncSession, tenant_id: int, appointment_id: int, now: datetime) -> Appointment:
    return await transition_appointment(session, tenant_id, appointment_id, AppointmentStatus.CANCELED, now)


async def complete_appointment(session: AsyncSession, tenant_id: int, appointment_id: int, now: datetime) -> Appointment:
    return await transition_appointment(session, tenant_id, appointment_id, AppointmentStatus.COMPLETED, now)


async def mark_no_show(session: AsyncSession, tenant_id: int, appointment_id: int, now: datetime) -> Appointment:
    return await transition_appointment(session, tenant_id, appointment_id, AppointmentStatus.NO_SHOW, now)


async def request_reschedule(session: AsyncSession, tenant_id: int, appointment_id: int, now: datetime) -> Appointment:
    return await transition_appointment(
        session, tenant_id, appointment_id, AppointmentStatus.RESCHEDULE_REQUESTED, now
    )


async def get_appointment(session: AsyncSession, tenant_id: int, appointment_id: int) -> Appointment:
    return await TenantStore(session, tenant_id).get_appointment(appointment_id)
