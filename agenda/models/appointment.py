from datetime import datetime
from enum import StrEnum

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from agenda.services.timewindow import utc_naive_now


class AppointmentStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    RESCHEDULE_REQUESTED = "reschedule_requested"
    CANCELED = "canceled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


# Postgres exclusion constraint over active provider appointments (see migrations)
PROVIDER_OVERLAP_CONSTRAINT = "ex_appointments_provider_overlap"

# Statuses that claim their time range
ACTIVE_STATUSES = (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)


class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"
    id: int | None = Field(default=None, primary_key=True)
    tenant_id: int = Field(foreign_key="tenants.id", index=True)
    location_id: int = Field(foreign_key="locations.id", index=True)
    provider_id: int | None = Field(default=None, foreign_key="providers.id", index=True)
    patient_id: int = Field(foreign_key="patients.id", index=True)
    service_id: int | None = Field(default=None, foreign_key="services.id")
    service_name: str | None = None
    start_at: datetime = Field(index=True, sa_type=DateTime(timezone=False))
    end_at: datetime = Field(sa_type=DateTime(timezone=False))
    status: str = Field(default=AppointmentStatus.PENDING, index=True)
    notes: str | None = None
    created_at: datetime = Field(default_factory=utc_naive_now, sa_type=DateTime(timezone=False))
    updated_at: datetime = Field(default_factory=utc_naive_now, sa_type=DateTime(timezone=False))
    status_changed_at: datetime = Field(default_factory=utc_naive_now, index=True, sa_type=DateTime(timezone=False))
