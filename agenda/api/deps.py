import hmac
import logging

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.core.cache import Cache, NullCache
from agenda.core.config import settings
from agenda.core.db import get_session
from agenda.services.messaging import Messenger
from agenda.services.store import TenantStore
from agenda.services.timewindow import Clock, system_clock

logger = logging.getLogger(__name__)

__all__ = [
    "get_session",
    "get_clock",
    "get_messenger",
    "get_tenant_cache",
    "get_tenant_id",
    "get_tenant_store",
    "verify_cron_secret",
]


def get_clock() -> Clock:
    return system_clock


def get_messenger(request: Request) -> Messenger:
    return request.app.state.messenger


def get_tenant_cache(request: Request) -> Cache:
    cache = getattr(request.app.state, "tenant_cache", None)
    return NullCache() if cache is None else cache


def get_tenant_id(x_tenant_id: int | None = Header(default=None, alias="X-Tenant-Id")) -> int:
    """Tenant resolved by the upstream gateway and forwarded as a header."""
    if x_tenant_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing X-Tenant-Id header")
    return x_tenant_id


async def get_tenant_store(
    tenant_id: int = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_tenant_cache),
) -> TenantStore:
    store = TenantStore(session, tenant_id)
    key = f"tenant:{tenant_id}"
    if cache.get(key) is None:
        tenant = await store.get_tenant()
        cache.set(key, tenant.name)
    return store


def verify_cron_secret(x_cron_secret: str | None = Header(default=None, alias="X-Cron-Secret")) -> None:
    if not settings.cron_secret:
        logger.warning("Cron route called but CRON_SECRET is not configured")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Cron secret not configured")
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret.encode(), settings.cron_secret.encode()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid cron secret")
