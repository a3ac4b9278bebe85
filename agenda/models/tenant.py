from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from agenda.services.timewindow import utc_naive_now


class Tenant(SQLModel, table=True):
    __tablename__ = "tenants"
    id: int | None = Field(default=None, primary_key=True)
    name: str
    created_at: datetime = Field(default_factory=utc_naive_now, sa_type=DateTime(timezone=False))


class Integration(SQLModel, table=True):
    """Per-tenant credentials for an external provider (validated via models.credentials)."""

    __tablename__ = "integrations"
    __table_args__ = (UniqueConstraint("tenant_id", "provider", name="uq_integrations_tenant_provider"),)
    id: int | None = Field(default=None, primary_key=True)
    tenant_id: int = Field(foreign_key="tenants.id", index=True)
    provider: str
    credentials: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    enabled: bool = True
    updated_at: datetime = Field(default_factory=utc_naive_now, sa_type=DateTime(timezone=False))


class MessageTemplate(SQLModel, table=True):
    """Maps a logical template name to the provider-approved template for a tenant."""

    __tablename__ = "message_templates"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_message_templates_tenant_name"),)
    id: int | None = Field(default=None, primary_key=True)
    tenant_id: int = Field(foreign_key="tenants.id", index=True)
    name: str
    provider_template_name: str
    language: str | None = None
