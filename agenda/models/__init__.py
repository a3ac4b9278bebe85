from agenda.models.tenant import Integration, MessageTemplate, Tenant
from agenda.models.location import AvailabilityBlock, Location, Provider, Service
from agenda.models.patient import Patient
from agenda.models.appointment import (
    ACTIVE_STATUSES,
    PROVIDER_OVERLAP_CONSTRAINT,
    Appointment,
    AppointmentStatus,
)
from agenda.models.waitlist import WaitlistEntry, WaitlistResolution
from agenda.models.message_log import MessageDirection, MessageLog, MessageStatus

__all__ = [
    "Tenant",
    "Integration",
    "MessageTemplate",
    "Location",
    "Provider",
    "AvailabilityBlock",
    "Service",
    "Patient",
    "Appointment",
    "AppointmentStatus",
    "ACTIVE_STATUSES",
    "PROVIDER_OVERLAP_CONSTRAINT",
    "WaitlistEntry",
    "WaitlistResolution",
    "MessageLog",
    "MessageDirection",
    "MessageStatus",
]
