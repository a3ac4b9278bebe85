from datetime import datetime
from enum import StrEnum

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from agenda.services.timewindow import utc_naive_now


class MessageDirection(StrEnum):
    OUT = "out"
    IN = "in"


class MessageStatus(StrEnum):
    PENDING = "pending"  # claimed by a job run, send in flight
    SENT = "sent"
    FAILED = "failed"


class MessageLog(SQLModel, table=True):
    """Audit trail of messages; (appointment, patient, type) is the idempotency key."""

    __tablename__ = "message_log"
    __table_args__ = (
        UniqueConstraint("appointment_id", "patient_id", "type", name="uq_message_log_idempotency"),
    )
    id: int | None = Field(default=None, primary_key=True)
    tenant_id: int = Field(foreign_key="tenants.id", index=True)
    patient_id: int = Field(foreign_key="patients.id", index=True)
    appointment_id: int | None = Field(default=None, foreign_key="appointments.id", index=True)
    direction: str = MessageDirection.OUT
    type: str
    status: str = MessageStatus.PENDING
    error: str | None = None
    payload: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utc_naive_now, sa_type=DateTime(timezone=False))
