"""Best-effort patient notifications.

Sending never raises into the caller: the outcome comes back as a
``NotificationResult`` and failures are logged with full context.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from agenda.models import Appointment, Location, MessageStatus, Patient, Provider
from agenda.services.messaging import Messenger, SendResult, TemplateName
from agenda.services.store import TenantStore
from agenda.services.timewindow import as_utc, get_zone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationResult:
    status: str  # "sent" | "skipped" | "failed"
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "sent"


@dataclass
class JobReport:
    """Per-run counters for a messaging job."""

    job: str
    candidates: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0

    def record(self, outcome: NotificationResult) -> None:
        if outcome.status == "sent":
            self.sent += 1
        elif outcome.status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict:
        return {
            "job": self.job,
            "candidates": self.candidates,
            "sent": self.sent,
            "skipped": self.skipped,
            "failed": self.failed,
        }


def format_local(instant: datetime, timezone: str | None) -> tuple[str, str]:
    """(date, time) strings for an instant in the location's timezone."""
    local = as_utc(instant).astimezone(get_zone(timezone))
    return local.strftime("%d/%m/%Y"), local.strftime("%H:%M")


async def send_logged(
    store: TenantStore,
    messenger: Messenger,
    appointment_id: int,
    patient: Patient,
    template_name: str,
    variables: list[str],
) -> NotificationResult:
    """Claim the idempotency key, send, and record the outcome on the message log.

    The caller owns the transaction and decides when to commit.
    """
    if patient.opt_out:
        return NotificationResult("skipped", "patient opted out")
    if not patient.phone_e164:
        return NotificationResult("skipped", "patient has no phone")
    claimed = await store.claim_message(
        appointment_id, patient.id, template_name, payload={"template": template_name, "variables": variables}
    )
    if not claimed:
        return NotificationResult("skipped", "already sent")
    try:
        result = await messenger.send_template_message(store.tenant_id, patient.phone_e164, template_name, variables)
    except Exception as e:
        result = SendResult.failure(f"{type(e).__name__}: {e}")
    if result.ok:
        await store.finish_message(appointment_id, patient.id, template_name, MessageStatus.SENT)
        return NotificationResult("sent")
    await store.finish_message(appointment_id, patient.id, template_name, MessageStatus.FAILED, error=result.error)
    return NotificationResult("failed", result.error)


async def notify_appointment_created(
    store: TenantStore,
    messenger: Messenger,
    appointment: Appointment,
    patient: Patient,
    location: Location,
    provider: Provider | None,
) -> NotificationResult:
    date_str, time_str = format_local(appointment.start_at, location.timezone)
    where = location.name if provider is None else f"{location.name} - {provider.full_name}"
    variables = [patient.full_name, date_str, time_str, where]
    try:
        outcome = await send_logged(
            store, messenger, appointment.id, patient, TemplateName.APPOINTMENT_CREATED, variables
        )
    except Exception as e:
        logger.exception(
            "Appointment notification failed: tenant=%s patient=%s appointment=%s error=%s",
            store.tenant_id,
            patient.id,
            appointment.id,
            e,
        )
        return NotificationResult("failed", f"{type(e).__name__}: {e}")
    if outcome.status == "failed":
        logger.warning(
            "Appointment notification failed: tenant=%s patient=%s appointment=%s error=%s",
            store.tenant_id,
            patient.id,
            appointment.id,
            outcome.error,
        )
    else:
        logger.info(
            "Appointment notification %s: tenant=%s patient=%s appointment=%s",
            outcome.status,
            store.tenant_id,
            patient.id,
            appointment.id,
        )
    return outcome
