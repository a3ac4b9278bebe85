import logging
from dataclasses import dataclass, field

import pydantic
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agenda.core.cache import Cache
from agenda.models.credentials import (
    META_WHATSAPP,
    IntegrationCredentials,
    MetaWhatsAppCredentials,
    dump_credentials,
    parse_credentials,
)
from agenda.models.tenant import Integration, MessageTemplate
from agenda.services.timewindow import utc_naive_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WhatsAppConfig:
    credentials: MetaWhatsAppCredentials
    # logical template name -> (provider template name, language)
    templates: dict[str, tuple[str, str | None]] = field(default_factory=dict)

    def template_for(self, logical_name: str) -> tuple[str, str | None]:
        return self.templates.get(logical_name, (logical_name, None))


async def load_credentials(session: AsyncSession, tenant_id: int, provider: str) -> IntegrationCredentials | None:
    """Enabled credentials for a provider, or None when absent or invalid."""
    result = await session.execute(
        select(Integration).where(
            Integration.tenant_id == tenant_id,
            Integration.provider == provider,
            Integration.enabled == True,  # noqa: E712
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        return None
    try:
        return parse_credentials(row.provider, row.credentials or {})
    except pydantic.ValidationError as e:
        logger.warning("Invalid %s credentials for tenant %s: %s", provider, tenant_id, e.errors())
        return None


async def load_template_map(session: AsyncSession, tenant_id: int) -> dict[str, tuple[str, str | None]]:
    result = await session.execute(select(MessageTemplate).where(MessageTemplate.tenant_id == tenant_id))
    return {t.name: (t.provider_template_name, t.language) for t in result.scalars().all()}


async def upsert_integration(
    session: AsyncSession,
    tenant_id: int,
    credentials: IntegrationCredentials,
    cache: Cache | None = None,
    enabled: bool = True,
) -> Integration:
    result = await session.execute(
        select(Integration).where(Integration.tenant_id == tenant_id, Integration.provider == credentials.provider)
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = Integration(tenant_id=tenant_id, provider=credentials.provider)
    row.credentials = dump_credentials(credentials)
    row.enabled = enabled
    row.updated_at = utc_naive_now()
    session.add(row)
    await session.flush()
    if cache is not None:
        cache.invalidate(IntegrationDirectory.cache_key(tenant_id))
    return row


class IntegrationDirectory:
    """Per-tenant WhatsApp configuration lookups with an injected cache."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], cache: Cache):
        self.session_maker = session_maker
        self.cache = cache

    @staticmethod
    def cache_key(tenant_id: int) -> str:
        return f"integration:{META_WHATSAPP}:{tenant_id}"

    async def whatsapp(self, tenant_id: int) -> WhatsAppConfig | None:
        key = self.cache_key(tenant_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        async with self.session_maker() as session:
            credentials = await load_credentials(session, tenant_id, META_WHATSAPP)
            if credentials is None:
                return None
            templates = await load_template_map(session, tenant_id)
        config = WhatsAppConfig(credentials=credentials, templates=templates)
        self.cache.set(key, config)
        return config

    def invalidate(self, tenant_id: int) -> None:
        self.cache.invalidate(self.cache_key(tenant_id))
