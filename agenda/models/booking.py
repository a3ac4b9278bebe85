from datetime import datetime
from enum import StrEnum

from sqlmodel import SQLModel


class BookingChannel(StrEnum):
    PUBLIC = "public"  # public booking page
    BOT = "bot"  # automated messaging bot
    INTERNAL = "internal"  # staff calendar; trusted, books straight to confirmed


class AppointmentCreate(SQLModel):
    patient_name: str
    patient_phone: str | None = None
    patient_email: str | None = None
    start_at: datetime
    duration_minutes: int | None = None
    location_id: int | None = None
    provider_id: int | None = None
    service_id: int | None = None
    service_name: str | None = None
    notes: str | None = None
