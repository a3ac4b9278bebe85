"""
Tests for the appointment creation transaction.

Coverage:
- Happy path with confirmation message and message log
- Validation: naive/past start, outside business hours, paused service, inactive provider
- Conflicts, including two concurrent bookings for the same slot
- Notification failures never undo the booking
"""
import asyncio
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from agenda.core.errors import NotFound, SlotTaken, ValidationError
from agenda.models import Appointment, AppointmentStatus, Location, MessageLog, MessageStatus, Patient, Service
from agenda.models.booking import AppointmentCreate, BookingChannel
from agenda.services.appointment_service import create_appointment, is_overlap_violation
from agenda.services.messaging import TemplateName
from agenda.services.slot_service import get_slots_for_date
from agenda.services.store import TenantStore
from agenda.services.timewindow import as_utc

from factories import MONDAY, NOW, TZ_NAME, WEEKDAY_HOURS, add_appointment, add_patient, add_provider, hhmm, local


def booking(start: datetime, **fields) -> AppointmentCreate:
    data = dict(patient_name="Lucia Gomez", patient_phone="011 4444-5555", start_at=start)
    data.update(fields)
    return AppointmentCreate(**data)


async def book(session_maker, seed, messenger, data: AppointmentCreate, channel=BookingChannel.PUBLIC):
    async with session_maker() as session:
        return await create_appointment(session, seed.tenant_id, data, messenger, NOW, channel=channel)


async def count(session_maker, model) -> int:
    async with session_maker() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.mark.asyncio
async def test_books_pending_appointment_and_notifies(session_maker, seed, messenger):
    appointment = await book(session_maker, seed, messenger, booking(local(MONDAY, "09:00")))

    assert appointment.id is not None
    assert appointment.status == AppointmentStatus.PENDING
    assert as_utc(appointment.start_at) == local(MONDAY, "09:00")
    assert as_utc(appointment.end_at) == local(MONDAY, "09:30")
    assert appointment.location_id == seed.location_id

    assert len(messenger.sent) == 1
    sent = messenger.sent[0]
    assert sent.to == "+541144445555"
    assert sent.template == TemplateName.APPOINTMENT_CREATED
    assert sent.variables == ["Lucia Gomez", "26/10/2026", "09:00", "Centro"]

    async with session_maker() as session:
        logs = await TenantStore(session, seed.tenant_id).list_messages(appointment.id)
    assert [(log.type, log.status) for log in logs] == [(TemplateName.APPOINTMENT_CREATED, MessageStatus.SENT)]


@pytest.mark.asyncio
async def test_internal_channel_books_confirmed(session_maker, seed, messenger):
    appointment = await book(
        session_maker, seed, messenger, booking(local(MONDAY, "09:00")), channel=BookingChannel.INTERNAL
    )
    assert appointment.status == AppointmentStatus.CONFIRMED


@pytest.mark.asyncio
async def test_existing_patient_is_reused_and_refreshed(session_maker, seed, messenger):
    patient_id = await add_patient(session_maker, seed.tenant_id, "Lu Gomez", "+541144445555")
    appointment = await book(
        session_maker, seed, messenger, booking(local(MONDAY, "09:00"), patient_email="LUCIA@example.com")
    )
    assert appointment.patient_id == patient_id
    async with session_maker() as session:
        patient = await TenantStore(session, seed.tenant_id).get_patient(patient_id)
    assert patient.full_name == "Lucia Gomez"
    assert patient.email == "lucia@example.com"
    assert await count(session_maker, Patient) == 1


@pytest.mark.asyncio
async def test_service_duration_applies(session_maker, seed, messenger):
    async with session_maker() as session:
        service = Service(tenant_id=seed.tenant_id, name="Primera consulta", duration_minutes=60)
        session.add(service)
        await session.commit()
        service_id = service.id
    appointment = await book(session_maker, seed, messenger, booking(local(MONDAY, "10:00"), service_id=service_id))
    assert as_utc(appointment.end_at) - as_utc(appointment.start_at) == timedelta(minutes=60)
    assert appointment.service_name == "Primera consulta"


@pytest.mark.asyncio
async def test_paused_service_is_rejected(session_maker, seed, messenger):
    async with session_maker() as session:
        service = Service(tenant_id=seed.tenant_id, name="Kinesiologia", active=False)
        session.add(service)
        await session.commit()
        service_id = service.id
    with pytest.raises(ValidationError):
        await book(session_maker, seed, messenger, booking(local(MONDAY, "09:00"), service_id=service_id))


@pytest.mark.asyncio
async def test_inactive_provider_is_rejected(session_maker, seed, messenger):
    provider_id = await add_provider(session_maker, seed.tenant_id, active=False)
    with pytest.raises(ValidationError):
        await book(session_maker, seed, messenger, booking(local(MONDAY, "09:00"), provider_id=provider_id))


@pytest.mark.asyncio
async def test_naive_start_is_rejected(session_maker, seed, messenger):
    with pytest.raises(ValidationError):
        await book(session_maker, seed, messenger, booking(datetime(2026, 10, 26, 9, 0)))


@pytest.mark.asyncio
async def test_past_start_is_rejected(session_maker, seed, messenger):
    with pytest.raises(ValidationError):
        await book(session_maker, seed, messenger, booking(local(date(2026, 10, 19), "09:00")))


@pytest.mark.parametrize("start", ["08:30", "11:45", "12:00"])
@pytest.mark.asyncio
async def test_outside_business_hours_is_rejected(session_maker, seed, messenger, start):
    with pytest.raises(ValidationError):
        await book(session_maker, seed, messenger, booking(local(MONDAY, start)))
    assert await count(session_maker, Appointment) == 0


@pytest.mark.asyncio
async def test_closed_day_is_rejected(session_maker, seed, messenger):
    with pytest.raises(ValidationError):
        await book(session_maker, seed, messenger, booking(local(date(2026, 10, 25), "09:00")))


@pytest.mark.asyncio
async def test_missing_contact_is_rejected(session_maker, seed, messenger):
    with pytest.raises(ValidationError):
        await book(session_maker, seed, messenger, booking(local(MONDAY, "09:00"), patient_phone=None))


@pytest.mark.asyncio
async def test_invalid_phone_is_rejected(session_maker, seed, messenger):
    with pytest.raises(ValidationError):
        await book(session_maker, seed, messenger, booking(local(MONDAY, "09:00"), patient_phone="12"))


@pytest.mark.asyncio
async def test_overlap_with_active_appointment_is_slot_taken(session_maker, seed, messenger):
    patient_id = await add_patient(session_maker, seed.tenant_id, "Ana", "+5491111111111")
    await add_appointment(session_maker, seed, patient_id, local(MONDAY, "09:00"), minutes=60)
    with pytest.raises(SlotTaken):
        await book(session_maker, seed, messenger, booking(local(MONDAY, "09:30")))
    assert await count(session_maker, Appointment) == 1
    assert messenger.sent == []


@pytest.mark.asyncio
async def test_canceled_appointment_does_not_block(session_maker, seed, messenger):
    patient_id = await add_patient(session_maker, seed.tenant_id, "Ana", "+5491111111111")
    await add_appointment(
        session_maker, seed, patient_id, local(MONDAY, "09:00"), status=AppointmentStatus.CANCELED
    )
    appointment = await book(session_maker, seed, messenger, booking(local(MONDAY, "09:00")))
    assert appointment.status == AppointmentStatus.PENDING


@pytest.mark.asyncio
async def test_provider_busy_at_another_location_is_slot_taken(session_maker, seed, messenger):
    provider_id = await add_provider(session_maker, seed.tenant_id)
    async with session_maker() as session:
        other = Location(tenant_id=seed.tenant_id, name="Sucursal Sur", timezone=TZ_NAME, business_hours=WEEKDAY_HOURS)
        session.add(other)
        await session.commit()
        other_id = other.id
    first = await book(
        session_maker, seed, messenger, booking(local(MONDAY, "09:00"), provider_id=provider_id, location_id=other_id)
    )
    assert first.location_id == other_id
    with pytest.raises(SlotTaken):
        await book(
            session_maker,
            seed,
            messenger,
            booking(local(MONDAY, "09:00"), provider_id=provider_id, location_id=seed.location_id, patient_phone="+5491122223333"),
        )


@pytest.mark.asyncio
async def test_concurrent_bookings_for_same_slot(session_maker, seed, messenger):
    results = await asyncio.gather(
        book(session_maker, seed, messenger, booking(local(MONDAY, "09:00"))),
        book(session_maker, seed, messenger, booking(local(MONDAY, "09:00"), patient_name="Marta Diaz", patient_phone="+5491133334444")),
        return_exceptions=True,
    )
    created = [r for r in results if isinstance(r, Appointment)]
    taken = [r for r in results if isinstance(r, SlotTaken)]
    assert len(created) == 1
    assert len(taken) == 1
    assert await count(session_maker, Appointment) == 1


@pytest.mark.asyncio
async def test_failed_notification_keeps_booking(session_maker, seed, messenger):
    messenger.fail_with = "WhatsApp API error: 401"
    appointment = await book(session_maker, seed, messenger, booking(local(MONDAY, "09:00")))
    assert appointment.id is not None
    async with session_maker() as session:
        logs = await TenantStore(session, seed.tenant_id).list_messages(appointment.id)
    assert len(logs) == 1
    assert logs[0].status == MessageStatus.FAILED
    assert "401" in logs[0].error


@pytest.mark.asyncio
async def test_raising_messenger_keeps_booking(session_maker, seed, messenger):
    messenger.raise_with = RuntimeError("connection reset")
    appointment = await book(session_maker, seed, messenger, booking(local(MONDAY, "09:00")))
    assert await count(session_maker, Appointment) == 1
    async with session_maker() as session:
        stored = await TenantStore(session, seed.tenant_id).get_appointment(appointment.id)
    assert stored.status == AppointmentStatus.PENDING


@pytest.mark.asyncio
async def test_opted_out_patient_is_booked_without_message(session_maker, seed, messenger):
    await add_patient(session_maker, seed.tenant_id, "Lucia Gomez", "+541144445555", opt_out=True)
    await book(session_maker, seed, messenger, booking(local(MONDAY, "09:00")))
    assert messenger.sent == []
    assert await count(session_maker, MessageLog) == 0


@pytest.mark.asyncio
async def test_several_locations_require_location_id(session_maker, seed, messenger):
    async with session_maker() as session:
        session.add(Location(tenant_id=seed.tenant_id, name="Sucursal Sur", timezone=TZ_NAME, business_hours=WEEKDAY_HOURS))
        await session.commit()
    with pytest.raises(ValidationError):
        await book(session_maker, seed, messenger, booking(local(MONDAY, "09:00")))


@pytest.mark.asyncio
async def test_unknown_tenant(session_maker, seed, messenger):
    async with session_maker() as session:
        with pytest.raises(NotFound):
            await create_appointment(session, seed.tenant_id + 99, booking(local(MONDAY, "09:00")), messenger, NOW)


@pytest.mark.asyncio
async def test_booked_slot_disappears_from_availability(session_maker, seed, messenger):
    await book(session_maker, seed, messenger, booking(local(MONDAY, "10:00")))
    async with session_maker() as session:
        _, slots = await get_slots_for_date(TenantStore(session, seed.tenant_id), MONDAY, seed.location_id, NOW)
    assert [hhmm(s.start) for s in slots] == ["09:00", "09:30", "10:30", "11:00", "11:30"]


def _failing_insert(message: str):
    async def add_appointment(self, appointment):
        raise IntegrityError("INSERT INTO appointments", {}, Exception(message))

    return add_appointment


@pytest.mark.asyncio
async def test_overlap_constraint_violation_is_slot_taken(session_maker, seed, messenger, monkeypatch):
    monkeypatch.setattr(
        TenantStore,
        "add_appointment",
        _failing_insert('conflicting key value violates exclusion constraint "ex_appointments_provider_overlap"'),
    )
    with pytest.raises(SlotTaken):
        await book(session_maker, seed, messenger, booking(local(MONDAY, "09:00")))


@pytest.mark.asyncio
async def test_other_integrity_errors_propagate(session_maker, seed, messenger, monkeypatch):
    monkeypatch.setattr(
        TenantStore,
        "add_appointment",
        _failing_insert('insert violates foreign key constraint "appointments_service_id_fkey"'),
    )
    with pytest.raises(IntegrityError):
        await book(session_maker, seed, messenger, booking(local(MONDAY, "09:00")))
    assert await count(session_maker, Appointment) == 0
    assert messenger.sent == []


class _DriverError(Exception):
    constraint_name = "ex_appointments_provider_overlap"


def test_overlap_violation_reads_constraint_name():
    wrapped = Exception("IntegrityError")
    wrapped.__cause__ = _DriverError("conflicting key value")
    assert is_overlap_violation(IntegrityError("INSERT", {}, wrapped))
    assert not is_overlap_violation(IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")))
