from datetime import datetime

from pydantic import BaseModel, Field

from agenda.models import Patient, WaitlistEntry, WaitlistResolution
from agenda.services.timewindow import as_utc


class WaitlistJoinRequest(BaseModel):
    full_name: str = Field(min_length=1, max_length=200)
    phone: str
    location_id: int | None = None
    priority: int = Field(default=1, ge=0)


class WaitlistResolveRequest(BaseModel):
    resolution: WaitlistResolution


class WaitlistEntryPublic(BaseModel):
    id: int
    location_id: int
    patient_id: int
    patient_name: str | None = None
    priority: int
    active: bool
    resolution: str | None
    created_at: datetime
    resolved_at: datetime | None

    @classmethod
    def from_model(cls, entry: WaitlistEntry, patient: Patient | None = None) -> "WaitlistEntryPublic":
        return cls(
            id=entry.id,
            location_id=entry.location_id,
            patient_id=entry.patient_id,
            patient_name=patient.full_name if patient else None,
            priority=entry.priority,
            active=entry.active,
            resolution=entry.resolution,
            created_at=as_utc(entry.created_at),
            resolved_at=as_utc(entry.resolved_at) if entry.resolved_at else None,
        )

