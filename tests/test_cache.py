import pytest

from agenda.core.cache import NullCache, TTLCache
from agenda.models import Tenant
from agenda.models.credentials import MetaWhatsAppCredentials
from agenda.models.tenant import MessageTemplate
from agenda.services.integration_service import IntegrationDirectory, upsert_integration


class FakeTimer:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire():
    timer = FakeTimer()
    cache = TTLCache(ttl_seconds=60, timer=timer)
    cache.set("tenant:1", "Clinica Norte")
    timer.now = 59.9
    assert cache.get("tenant:1") == "Clinica Norte"
    timer.now = 60
    assert cache.get("tenant:1") is None
    assert len(cache) == 0


def test_oldest_entry_is_evicted():
    cache = TTLCache(ttl_seconds=60, max_entries=2, timer=FakeTimer())
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("a", 3)  # rewrite moves "a" behind "b"
    cache.set("c", 4)
    assert cache.get("b") is None
    assert (cache.get("a"), cache.get("c")) == (3, 4)


def test_invalidate_and_clear():
    cache = TTLCache(ttl_seconds=60)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.invalidate("a")
    assert cache.get("a") is None
    cache.clear()
    assert len(cache) == 0


def test_ttl_must_be_positive():
    with pytest.raises(ValueError):
        TTLCache(ttl_seconds=0)


def test_null_cache_never_stores():
    cache = NullCache()
    cache.set("a", 1)
    assert cache.get("a") is None


async def _configure_whatsapp(session_maker, tenant_id, cache=None, token="EAAG"):
    async with session_maker() as session:
        creds = MetaWhatsAppCredentials(phone_number_id="1098", access_token=token)
        await upsert_integration(session, tenant_id, creds, cache=cache)
        await session.commit()


@pytest.mark.asyncio
async def test_directory_caches_config(session_maker, seed):
    await _configure_whatsapp(session_maker, seed.tenant_id)
    async with session_maker() as session:
        session.add(
            MessageTemplate(
                tenant_id=seed.tenant_id, name="reminder_24h", provider_template_name="recordatorio_turno", language="es_AR"
            )
        )
        await session.commit()

    cache = TTLCache(ttl_seconds=60)
    directory = IntegrationDirectory(session_maker, cache)
    config = await directory.whatsapp(seed.tenant_id)
    assert config.credentials.phone_number_id == "1098"
    assert config.template_for("reminder_24h") == ("recordatorio_turno", "es_AR")
    assert config.template_for("waitlist_offer") == ("waitlist_offer", None)
    assert await directory.whatsapp(seed.tenant_id) is config


@pytest.mark.asyncio
async def test_directory_missing_integration(session_maker, seed):
    cache = TTLCache(ttl_seconds=60)
    directory = IntegrationDirectory(session_maker, cache)
    assert await directory.whatsapp(seed.tenant_id) is None
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_upsert_invalidates_cached_config(session_maker, seed):
    cache = TTLCache(ttl_seconds=60)
    directory = IntegrationDirectory(session_maker, cache)
    await _configure_whatsapp(session_maker, seed.tenant_id, cache)
    assert (await directory.whatsapp(seed.tenant_id)).credentials.access_token == "EAAG"

    await _configure_whatsapp(session_maker, seed.tenant_id, cache, token="EAAH")
    assert (await directory.whatsapp(seed.tenant_id)).credentials.access_token == "EAAH"


@pytest.mark.asyncio
async def test_directory_is_per_tenant(session_maker, seed):
    await _configure_whatsapp(session_maker, seed.tenant_id)
    async with session_maker() as session:
        other = Tenant(name="Otra Clinica")
        session.add(other)
        await session.commit()
        other_id = other.id
    directory = IntegrationDirectory(session_maker, TTLCache(ttl_seconds=60))
    assert await directory.whatsapp(other_id) is None
