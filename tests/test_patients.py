import pytest

from agenda.core.errors import ValidationError
from agenda.models import Tenant
from agenda.services.patient_service import normalize_phone, resolve_or_create_patient
from agenda.services.store import TenantStore


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("+54 9 11 4444-5555", "+5491144445555"),
        ("0054 11 4444 5555", "+541144445555"),
        ("011 4444-5555", "+541144445555"),
        ("(011) 4444.5555", "+541144445555"),
        ("5491144445555", "+5491144445555"),
    ],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw, "54") == expected


@pytest.mark.parametrize("raw", ["", "   ", "+0123456789", "12345", "+54 11 abcd 5555", None])
def test_normalize_phone_rejects(raw):
    with pytest.raises(ValidationError):
        normalize_phone(raw, "54")


@pytest.mark.asyncio
async def test_resolve_by_phone_is_idempotent(session, seed):
    store = TenantStore(session, seed.tenant_id)
    first = await resolve_or_create_patient(store, "Lucia", "011 4444-5555", None, "54")
    second = await resolve_or_create_patient(store, "Lucia Gomez", "+541144445555", None, "54")
    assert first.id == second.id
    assert second.full_name == "Lucia Gomez"


@pytest.mark.asyncio
async def test_resolve_by_email_without_phone(session, seed):
    store = TenantStore(session, seed.tenant_id)
    first = await resolve_or_create_patient(store, "Pedro", None, "Pedro@Example.com", "54")
    second = await resolve_or_create_patient(store, "Pedro Sosa", "", "pedro@example.com", "54")
    assert first.id == second.id
    assert first.phone_e164 is None


@pytest.mark.asyncio
async def test_resolve_requires_name_and_contact(session, seed):
    store = TenantStore(session, seed.tenant_id)
    with pytest.raises(ValidationError):
        await resolve_or_create_patient(store, "Pedro", None, None, "54")
    with pytest.raises(ValidationError):
        await resolve_or_create_patient(store, "  ", "+541144445555", None, "54")


@pytest.mark.asyncio
async def test_patients_are_scoped_per_tenant(session, seed):
    other = Tenant(name="Otra Clinica")
    session.add(other)
    await session.flush()
    mine = await resolve_or_create_patient(TenantStore(session, seed.tenant_id), "Lucia", "+541144445555", None, "54")
    theirs = await resolve_or_create_patient(TenantStore(session, other.id), "Lucia", "+541144445555", None, "54")
    assert mine.id != theirs.id
    assert theirs.tenant_id == other.id
