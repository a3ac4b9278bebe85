"""Reminders ahead of confirmed appointments.

A run picks appointments starting within ``lead +/- tolerance`` of now. Because
the tolerance is wider than the polling interval, consecutive runs overlap and
every appointment falls into at least one of them; the message log keeps the
overlap from sending twice.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agenda.core.config import Settings, settings
from agenda.core.errors import ConfigurationError, ValidationError
from agenda.services.messaging import Messenger, TemplateName
from agenda.services.notification_service import JobReport, NotificationResult, format_local, send_logged
from agenda.services.store import JobScanner, TenantStore
from agenda.services.timewindow import as_utc, require_aware

logger = logging.getLogger(__name__)

REMINDER_TEMPLATES = {
    24: TemplateName.REMINDER_24H,
    2: TemplateName.REMINDER_2H,
}


def reminder_window(now: datetime, hours_ahead: int, tolerance_minutes: int) -> tuple[datetime, datetime]:
    center = now + timedelta(hours=hours_ahead)
    tolerance = timedelta(minutes=tolerance_minutes)
    return center - tolerance, center + tolerance


async def _remind(
    session_maker: async_sessionmaker[AsyncSession],
    messenger: Messenger,
    tenant_id: int,
    appointment_id: int,
    patient_id: int,
    location_id: int,
    start: datetime,
    template_name: str,
) -> NotificationResult:
    async with session_maker() as session:
        store = TenantStore(session, tenant_id)
        try:
            patient = await store.get_patient(patient_id)
            location = await store.get_location(location_id)
            date_str, time_str = format_local(start, location.timezone)
            variables = [patient.full_name, f"{date_str} {time_str}", location.name]
            outcome = await send_logged(store, messenger, appointment_id, patient, template_name, variables)
            await session.commit()
        except Exception:
            await session.rollback()
            raise
    return outcome


async def run_reminder_job(
    session_maker: async_sessionmaker[AsyncSession],
    messenger: Messenger,
    now: datetime,
    hours_ahead: int,
    config: Settings = settings,
) -> JobReport:
    template_name = REMINDER_TEMPLATES.get(hours_ahead)
    if template_name is None:
        raise ValidationError(f"hours_ahead must be one of {sorted(REMINDER_TEMPLATES)}, got {hours_ahead}")
    if config.reminder_tolerance_minutes <= config.reminder_poll_interval_minutes:
        raise ConfigurationError(
            "Reminder tolerance must be greater than the polling interval "
            f"({config.reminder_tolerance_minutes} <= {config.reminder_poll_interval_minutes} minutes)"
        )
    now = require_aware(now, "now")
    window_start, window_end = reminder_window(now, hours_ahead, config.reminder_tolerance_minutes)

    report = JobReport(job=template_name)
    async with session_maker() as session:
        due = await JobScanner(session).confirmed_starting_between(window_start, window_end)
        targets = [(a.id, a.tenant_id, a.patient_id, a.location_id, as_utc(a.start_at)) for a in due]

    for appointment_id, tenant_id, patient_id, location_id, start in targets:
        report.candidates += 1
        try:
            outcome = await _remind(
                session_maker, messenger, tenant_id, appointment_id, patient_id, location_id, start, template_name
            )
        except Exception as e:
            logger.exception(
                "Reminder failed: tenant=%s patient=%s appointment=%s error=%s",
                tenant_id,
                patient_id,
                appointment_id,
                e,
            )
            report.failed += 1
            continue
        report.record(outcome)
        if outcome.status == "failed":
            logger.warning(
                "Reminder not delivered: tenant=%s patient=%s appointment=%s error=%s",
                tenant_id,
                patient_id,
                appointment_id,
                outcome.error,
            )

    if targets:
        logger.info(
            "Reminder job %s: due=%d sent=%d skipped=%d failed=%d",
            template_name,
            len(targets),
            report.sent,
            report.skipped,
            report.failed,
        )
    return report
