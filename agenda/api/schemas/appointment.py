from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from agenda.models import Appointment
from agenda.models.booking import BookingChannel
from agenda.services.timewindow import as_utc


class BookAppointmentRequest(BaseModel):
    patient_name: str = Field(min_length=1, max_length=200)
    patient_phone: str | None = None
    patient_email: EmailStr | None = None
    start_at: datetime  # ISO-8601 with offset
    duration_minutes: int | None = Field(default=None, gt=0)
    location_id: int | None = None
    provider_id: int | None = None
    service_id: int | None = None
    service_name: str | None = None
    notes: str | None = Field(default=None, max_length=2000)
    channel: BookingChannel = BookingChannel.PUBLIC


class AppointmentPublic(BaseModel):
    id: int
    location_id: int
    provider_id: int | None
    patient_id: int
    service_id: int | None
    service_name: str | None
    start_at: datetime
    end_at: datetime
    status: str
    notes: str | None
    status_changed_at: datetime

    @classmethod
    def from_model(cls, a: Appointment) -> "AppointmentPublic":
        return cls(
            id=a.id,
            location_id=a.location_id,
            provider_id=a.provider_id,
            patient_id=a.patient_id,
            service_id=a.service_id,
            service_name=a.service_name,
            start_at=as_utc(a.start_at),
            end_at=as_utc(a.end_at),
            status=str(a.status),
            notes=a.notes,
            status_changed_at=as_utc(a.status_changed_at),
        )
