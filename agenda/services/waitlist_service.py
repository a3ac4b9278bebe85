import logging
from datetime import datetime

from agenda.core.config import settings
from agenda.core.errors import ValidationError
from agenda.models import Patient, WaitlistEntry, WaitlistResolution
from agenda.services.appointment_service import resolve_location
from agenda.services.patient_service import resolve_or_create_patient
from agenda.services.store import TenantStore
from agenda.services.timewindow import require_aware, to_naive_utc

logger = logging.getLogger(__name__)


async def add_to_waitlist(
    store: TenantStore,
    full_name: str,
    phone: str,
    now: datetime,
    location_id: int | None = None,
    priority: int = 1,
    default_country_code: str = settings.default_country_code,
) -> tuple[WaitlistEntry, Patient]:
    if priority < 0:
        raise ValidationError(f"priority must not be negative, got {priority}")
    if not phone or not phone.strip():
        raise ValidationError("A phone number is required to join the waitlist")
    location = await resolve_location(store, location_id, None)
    patient = await resolve_or_create_patient(store, full_name, phone, None, default_country_code)
    if patient.opt_out:
        raise ValidationError("The patient opted out of messages and cannot join the waitlist")
    entry = await store.add_waitlist_entry(
        WaitlistEntry(
            tenant_id=store.tenant_id,
            location_id=location.id,
            patient_id=patient.id,
            priority=priority,
            active=True,
            created_at=to_naive_utc(require_aware(now, "now")),
        )
    )
    logger.info(
        "Waitlist entry added: tenant=%s location=%s patient=%s entry=%s",
        store.tenant_id,
        location.id,
        patient.id,
        entry.id,
    )
    return entry, patient


async def resolve_waitlist_entry(
    store: TenantStore, entry_id: int, resolution: WaitlistResolution, now: datetime
) -> WaitlistEntry:
    """Close an entry. Resolving is a staff action; the backfill job never does it."""
    entry = await store.get_waitlist_entry(entry_id)
    if not entry.active:
        raise ValidationError(f"Waitlist entry {entry_id} is already resolved")
    entry.active = False
    entry.resolution = WaitlistResolution(resolution).value
    entry.resolved_at = to_naive_utc(require_aware(now, "now"))
    store.session.add(entry)
    await store.session.flush()
    return entry


async def list_active_waitlist(
    store: TenantStore, location_id: int, limit: int | None = None
) -> list[tuple[WaitlistEntry, Patient]]:
    await store.get_location(location_id)
    return await store.list_active_waitlist(location_id, limit=limit)
