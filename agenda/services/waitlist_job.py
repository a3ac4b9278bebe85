"""Offer freshly canceled slots to the location's waitlist."""
import logging
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agenda.core.config import Settings, settings
from agenda.services.messaging import Messenger, TemplateName
from agenda.services.notification_service import JobReport, NotificationResult, format_local, send_logged
from agenda.services.store import JobScanner, TenantStore
from agenda.services.timewindow import as_utc, require_aware

logger = logging.getLogger(__name__)


async def _offer(
    session_maker: async_sessionmaker[AsyncSession],
    messenger: Messenger,
    tenant_id: int,
    appointment_id: int,
    patient_id: int,
    variables: list[str],
) -> NotificationResult:
    async with session_maker() as session:
        store = TenantStore(session, tenant_id)
        try:
            patient = await store.get_patient(patient_id)
            outcome = await send_logged(
                store, messenger, appointment_id, patient, TemplateName.WAITLIST_OFFER, variables
            )
            await session.commit()
        except Exception:
            await session.rollback()
            raise
    return outcome


async def run_waitlist_job(
    session_maker: async_sessionmaker[AsyncSession],
    messenger: Messenger,
    now: datetime,
    config: Settings = settings,
) -> JobReport:
    """Message up to ``waitlist_batch_size`` waiting patients per recently canceled slot.

    Each (appointment, patient) pair is offered at most once; entries stay active
    until staff resolve them.
    """
    now = require_aware(now, "now")
    report = JobReport(job="waitlist")
    async with session_maker() as session:
        scanner = JobScanner(session)
        canceled = await scanner.recently_canceled(
            changed_since=now - timedelta(minutes=config.waitlist_lookback_minutes),
            starts_after=now,
            starts_until=now + timedelta(hours=config.waitlist_horizon_hours),
        )
        slots = [(a.id, a.tenant_id, a.location_id, as_utc(a.start_at)) for a in canceled]

    for appointment_id, tenant_id, location_id, start in slots:
        try:
            async with session_maker() as session:
                store = TenantStore(session, tenant_id)
                location = await store.get_location(location_id)
                waiting = await store.list_active_waitlist(location_id, limit=config.waitlist_batch_size)
                patient_ids = [patient.id for _, patient in waiting]
                date_str, time_str = format_local(start, location.timezone)
        except Exception as e:
            logger.exception(
                "Waitlist lookup failed: tenant=%s appointment=%s location=%s error=%s",
                tenant_id,
                appointment_id,
                location_id,
                e,
            )
            report.failed += 1
            continue

        for patient_id in patient_ids:
            report.candidates += 1
            try:
                outcome = await _offer(
                    session_maker, messenger, tenant_id, appointment_id, patient_id, [date_str, time_str]
                )
            except Exception as e:
                logger.exception(
                    "Waitlist offer failed: tenant=%s patient=%s appointment=%s error=%s",
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
                    "Waitlist offer not delivered: tenant=%s patient=%s appointment=%s error=%s",
                    tenant_id,
                    patient_id,
                    appointment_id,
                    outcome.error,
                )

    if slots:
        logger.info(
            "Waitlist job: canceled=%d sent=%d skipped=%d failed=%d",
            len(slots),
            report.sent,
            report.skipped,
            report.failed,
        )
    return report
