"""Data access for the scheduling core.

``TenantStore`` is the accessor every core operation receives: it is bound to one
tenant and filters every query on it. ``JobScanner`` is the single cross-tenant
reader, limited to the two scans the background jobs start from.
"""
from datetime import datetime

from sqlalchemy import and_, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.core.errors import NotFound
from agenda.models import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentStatus,
    AvailabilityBlock,
    Location,
    MessageDirection,
    MessageLog,
    MessageStatus,
    Patient,
    Provider,
    Service,
    Tenant,
    WaitlistEntry,
)
from agenda.services.timewindow import Interval, as_utc, to_naive_utc, utc_naive_now


def _insert_for(session: AsyncSession):
    """Dialect-specific INSERT supporting ON CONFLICT DO NOTHING."""
    dialect = session.get_bind().dialect.name
    return pg_insert if dialect == "postgresql" else sqlite_insert


class TenantStore:
    def __init__(self, session: AsyncSession, tenant_id: int):
        self.session = session
        self.tenant_id = tenant_id

    # --- tenant configuration ---

    async def get_tenant(self) -> Tenant:
        result = await self.session.execute(select(Tenant).where(Tenant.id == self.tenant_id))
        tenant = result.scalar_one_or_none()
        if not tenant:
            raise NotFound(f"Tenant {self.tenant_id} not found")
        return tenant

    async def get_location(self, location_id: int) -> Location:
        result = await self.session.execute(
            select(Location).where(Location.id == location_id, Location.tenant_id == self.tenant_id)
        )
        location = result.scalar_one_or_none()
        if not location:
            raise NotFound(f"Location {location_id} not found")
        return location

    async def list_locations(self) -> list[Location]:
        result = await self.session.execute(
            select(Location).where(Location.tenant_id == self.tenant_id).order_by(Location.name, Location.id)
        )
        return list(result.scalars().all())

    async def get_provider(self, provider_id: int) -> Provider:
        result = await self.session.execute(
            select(Provider).where(Provider.id == provider_id, Provider.tenant_id == self.tenant_id)
        )
        provider = result.scalar_one_or_none()
        if not provider:
            raise NotFound(f"Provider {provider_id} not found")
        return provider

    async def get_service(self, service_id: int) -> Service:
        result = await self.session.execute(
            select(Service).where(Service.id == service_id, Service.tenant_id == self.tenant_id)
        )
        service = result.scalar_one_or_none()
        if not service:
            raise NotFound(f"Service {service_id} not found")
        return service

    # --- occupancy ---

    async def list_active_appointments(
        self,
        location_id: int,
        provider_id: int | None,
        window: Interval,
        exclude_appointment_id: int | None = None,
    ) -> list[Appointment]:
        """Active appointments overlapping ``window`` that block the location/provider.

        Without a provider every appointment at the location blocks. With one, the
        provider's own appointments (at any location) and unassigned appointments at
        the location block.
        """
        if provider_id is None:
            scope = Appointment.location_id == location_id
        else:
            scope = or_(
                Appointment.provider_id == provider_id,
                and_(Appointment.provider_id.is_(None), Appointment.location_id == location_id),
            )
        q = select(Appointment).where(
            Appointment.tenant_id == self.tenant_id,
            Appointment.status.in_([s.value for s in ACTIVE_STATUSES]),
            Appointment.start_at < to_naive_utc(window.end),
            Appointment.end_at > to_naive_utc(window.start),
            scope,
        )
        if exclude_appointment_id is not None:
            q = q.where(Appointment.id != exclude_appointment_id)
        result = await self.session.execute(q.order_by(Appointment.start_at))
        return list(result.scalars().all())

    async def list_blocks(self, provider_id: int, window: Interval) -> list[AvailabilityBlock]:
        result = await self.session.execute(
            select(AvailabilityBlock)
            .where(
                AvailabilityBlock.tenant_id == self.tenant_id,
                AvailabilityBlock.provider_id == provider_id,
                AvailabilityBlock.start_at < to_naive_utc(window.end),
                AvailabilityBlock.end_at > to_naive_utc(window.start),
            )
            .order_by(AvailabilityBlock.start_at)
        )
        return list(result.scalars().all())

    async def list_occupied(
        self,
        location_id: int,
        provider_id: int | None,
        window: Interval,
        exclude_appointment_id: int | None = None,
    ) -> list[Interval]:
        appointments = await self.list_active_appointments(
            location_id, provider_id, window, exclude_appointment_id=exclude_appointment_id
        )
        occupied = [Interval(as_utc(a.start_at), as_utc(a.end_at)) for a in appointments]
        if provider_id is not None:
            blocks = await self.list_blocks(provider_id, window)
            occupied.extend(Interval(as_utc(b.start_at), as_utc(b.end_at)) for b in blocks)
        return sorted(occupied)

    # --- booking locks ---

    async def lock_location(self, location_id: int) -> None:
        """Take the location row lock for the rest of the transaction.

        Concurrent bookings for the same location queue here, so the conflict
        re-read that follows sees every booking committed before ours.
        """
        result = await self.session.execute(
            update(Location)
            .where(Location.id == location_id, Location.tenant_id == self.tenant_id)
            .values(booking_seq=Location.booking_seq + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFound(f"Location {location_id} not found")

    async def lock_provider(self, provider_id: int) -> None:
        result = await self.session.execute(
            update(Provider)
            .where(Provider.id == provider_id, Provider.tenant_id == self.tenant_id)
            .values(booking_seq=Provider.booking_seq + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFound(f"Provider {provider_id} not found")

    # --- patients ---

    async def get_patient(self, patient_id: int) -> Patient:
        result = await self.session.execute(
            select(Patient).where(Patient.id == patient_id, Patient.tenant_id == self.tenant_id)
        )
        patient = result.scalar_one_or_none()
        if not patient:
            raise NotFound(f"Patient {patient_id} not found")
        return patient

    async def find_patient_by_phone(self, phone_e164: str) -> Patient | None:
        result = await self.session.execute(
            select(Patient).where(Patient.tenant_id == self.tenant_id, Patient.phone_e164 == phone_e164)
        )
        return result.scalar_one_or_none()

    async def find_patient_by_email(self, email: str) -> Patient | None:
        result = await self.session.execute(
            select(Patient)
            .where(Patient.tenant_id == self.tenant_id, Patient.email == email)
            .order_by(Patient.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def insert_patient_if_absent(self, full_name: str, phone_e164: str, email: str | None) -> Patient:
        """Insert by (tenant, phone) unless a concurrent writer got there first."""
        insert = _insert_for(self.session)
        stmt = (
            insert(Patient)
            .values(
                tenant_id=self.tenant_id,
                full_name=full_name,
                phone_e164=phone_e164,
                email=email,
                opt_out=False,
                created_at=utc_naive_now(),
            )
            .on_conflict_do_nothing(index_elements=["tenant_id", "phone_e164"])
        )
        await self.session.execute(stmt)
        patient = await self.find_patient_by_phone(phone_e164)
        if patient is None:
            raise NotFound(f"Patient with phone {phone_e164} could not be stored")
        return patient

    async def add_patient(self, patient: Patient) -> Patient:
        patient.tenant_id = self.tenant_id
        self.session.add(patient)
        await self.session.flush()
        await self.session.refresh(patient)
        return patient

    # --- appointments ---

    async def get_appointment(self, appointment_id: int) -> Appointment:
        result = await self.session.execute(
            select(Appointment).where(Appointment.id == appointment_id, Appointment.tenant_id == self.tenant_id)
        )
        appointment = result.scalar_one_or_none()
        if not appointment:
            raise NotFound(f"Appointment {appointment_id} not found")
        return appointment

    async def add_appointment(self, appointment: Appointment) -> Appointment:
        appointment.tenant_id = self.tenant_id
        self.session.add(appointment)
        await self.session.flush()
        await self.session.refresh(appointment)
        return appointment

    async def set_appointment_status(
        self, appointment: Appointment, status: AppointmentStatus, now: datetime
    ) -> Appointment:
        stamp = to_naive_utc(now)
        appointment.status = status
        appointment.updated_at = stamp
        appointment.status_changed_at = stamp
        self.session.add(appointment)
        await self.session.flush()
        return appointment

    # --- waitlist ---

    async def add_waitlist_entry(self, entry: WaitlistEntry) -> WaitlistEntry:
        entry.tenant_id = self.tenant_id
        self.session.add(entry)
        await self.session.flush()
        await self.session.refresh(entry)
        return entry

    async def get_waitlist_entry(self, entry_id: int) -> WaitlistEntry:
        result = await self.session.execute(
            select(WaitlistEntry).where(WaitlistEntry.id == entry_id, WaitlistEntry.tenant_id == self.tenant_id)
        )
        entry = result.scalar_one_or_none()
        if not entry:
            raise NotFound(f"Waitlist entry {entry_id} not found")
        return entry

    async def list_active_waitlist(
        self, location_id: int, limit: int | None = None
    ) -> list[tuple[WaitlistEntry, Patient]]:
        """Active entries for a location with their patients, lowest priority value first."""
        q = (
            select(WaitlistEntry, Patient)
            .join(Patient, and_(Patient.id == WaitlistEntry.patient_id, Patient.tenant_id == self.tenant_id))
            .where(
                WaitlistEntry.tenant_id == self.tenant_id,
                WaitlistEntry.location_id == location_id,
                WaitlistEntry.active == True,  # noqa: E712
            )
            .order_by(WaitlistEntry.priority, WaitlistEntry.created_at, WaitlistEntry.id)
        )
        if limit is not None:
            q = q.limit(limit)
        result = await self.session.execute(q)
        return [(entry, patient) for entry, patient in result.all()]

    # --- message log ---

    async def claim_message(
        self, appointment_id: int, patient_id: int, message_type: str, payload: dict | None = None
    ) -> bool:
        """Reserve the idempotency key before sending.

        Returns True when this caller now owns the send: either the row was just
        inserted, or a previous attempt had failed and is taken over. A pending or
        sent row means another run owns it.
        """
        insert = _insert_for(self.session)
        stmt = (
            insert(MessageLog)
            .values(
                tenant_id=self.tenant_id,
                patient_id=patient_id,
                appointment_id=appointment_id,
                direction=MessageDirection.OUT.value,
                type=message_type,
                status=MessageStatus.PENDING.value,
                payload=payload or {},
                created_at=utc_naive_now(),
            )
            .on_conflict_do_nothing(index_elements=["appointment_id", "patient_id", "type"])
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 1:
            return True
        retry = await self.session.execute(
            update(MessageLog)
            .where(
                MessageLog.tenant_id == self.tenant_id,
                MessageLog.appointment_id == appointment_id,
                MessageLog.patient_id == patient_id,
                MessageLog.type == message_type,
                MessageLog.status == MessageStatus.FAILED.value,
            )
            .values(status=MessageStatus.PENDING.value, error=None)
            .execution_options(synchronize_session=False)
        )
        return retry.rowcount == 1

    async def finish_message(
        self,
        appointment_id: int,
        patient_id: int,
        message_type: str,
        status: MessageStatus,
        error: str | None = None,
    ) -> None:
        await self.session.execute(
            update(MessageLog)
            .where(
                MessageLog.tenant_id == self.tenant_id,
                MessageLog.appointment_id == appointment_id,
                MessageLog.patient_id == patient_id,
                MessageLog.type == message_type,
            )
            .values(status=status.value, error=error)
            .execution_options(synchronize_session=False)
        )

    async def list_messages(self, appointment_id: int) -> list[MessageLog]:
        result = await self.session.execute(
            select(MessageLog)
            .where(MessageLog.tenant_id == self.tenant_id, MessageLog.appointment_id == appointment_id)
            .order_by(MessageLog.id)
        )
        return list(result.scalars().all())


class JobScanner:
    """Cross-tenant reads for the background jobs, and nothing else."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def recently_canceled(
        self, changed_since: datetime, starts_after: datetime, starts_until: datetime
    ) -> list[Appointment]:
        result = await self.session.execute(
            select(Appointment)
            .where(
                Appointment.status == AppointmentStatus.CANCELED.value,
                Appointment.status_changed_at >= to_naive_utc(changed_since),
                Appointment.start_at > to_naive_utc(starts_after),
                Appointment.start_at <= to_naive_utc(starts_until),
            )
            .order_by(Appointment.start_at, Appointment.id)
        )
        return list(result.scalars().all())

    async def confirmed_starting_between(self, window_start: datetime, window_end: datetime) -> list[Appointment]:
        result = await self.session.execute(
            select(Appointment)
            .where(
                Appointment.status == AppointmentStatus.CONFIRMED.value,
                Appointment.start_at >= to_naive_utc(window_start),
                Appointment.start_at <= to_naive_utc(window_end),
            )
            .order_by(Appointment.start_at, Appointment.id)
        )
        return list(result.scalars().all())
