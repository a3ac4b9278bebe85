from datetime import datetime
from enum import StrEnum

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from agenda.services.timewindow import utc_naive_now


class WaitlistResolution(StrEnum):
    ACCEPTED = "accepted"
    DECLINED = "declined"
    MANUAL = "manual"


class WaitlistEntry(SQLModel, table=True):
    __tablename__ = "waitlist_entries"
    id: int | None = Field(default=None, primary_key=True)
    tenant_id: int = Field(foreign_key="tenants.id", index=True)
    location_id: int = Field(foreign_key="locations.id", index=True)
    patient_id: int = Field(foreign_key="patients.id", index=True)
    priority: int = 1  # lower is served first
    active: bool = Field(default=True, index=True)
    resolution: str | None = None
    created_at: datetime = Field(default_factory=utc_naive_now, sa_type=DateTime(timezone=False))
    resolved_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=False))
