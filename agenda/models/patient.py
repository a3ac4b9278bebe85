from datetime import datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from agenda.services.timewindow import utc_naive_now


class Patient(SQLModel, table=True):
    __tablename__ = "patients"
    __table_args__ = (UniqueConstraint("tenant_id", "phone_e164", name="uq_patients_tenant_phone"),)
    id: int | None = Field(default=None, primary_key=True)
    tenant_id: int = Field(foreign_key="tenants.id", index=True)
    full_name: str
    phone_e164: str | None = Field(default=None, index=True)
    email: str | None = None
    opt_out: bool = False  # suppresses all outbound messaging
    created_at: datetime = Field(default_factory=utc_naive_now, sa_type=DateTime(timezone=False))
