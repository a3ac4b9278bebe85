from datetime import datetime

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel


class Location(SQLModel, table=True):
    __tablename__ = "locations"
    id: int | None = Field(default=None, primary_key=True)
    tenant_id: int = Field(foreign_key="tenants.id", index=True)
    name: str
    timezone: str | None = None  # IANA id; required for any availability computation
    # {"mon": [["09:00", "12:00"], ["14:00", "18:00"]], ...}, wall-clock in `timezone`
    business_hours: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    slot_duration_minutes: int = 30
    buffer_minutes: int = 0
    booking_seq: int = 0  # bumped by every booking to take the row lock


class Provider(SQLModel, table=True):
    __tablename__ = "providers"
    id: int | None = Field(default=None, primary_key=True)
    tenant_id: int = Field(foreign_key="tenants.id", index=True)
    full_name: str
    active: bool = True
    default_location_id: int | None = Field(default=None, foreign_key="locations.id")
    # Replaces the location's weekly schedule entirely when non-empty
    schedule: dict | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    booking_seq: int = 0


class AvailabilityBlock(SQLModel, table=True):
    """Absolute-time interval where a provider is unavailable (vacation, meetings)."""

    __tablename__ = "availability_blocks"
    id: int | None = Field(default=None, primary_key=True)
    tenant_id: int = Field(foreign_key="tenants.id", index=True)
    provider_id: int = Field(foreign_key="providers.id", index=True)
    start_at: datetime = Field(index=True, sa_type=DateTime(timezone=False))
    end_at: datetime = Field(sa_type=DateTime(timezone=False))
    reason: str | None = None


class Service(SQLModel, table=True):
    __tablename__ = "services"
    id: int | None = Field(default=None, primary_key=True)
    tenant_id: int = Field(foreign_key="tenants.id", index=True)
    name: str
    duration_minutes: int = 30
    active: bool = True
