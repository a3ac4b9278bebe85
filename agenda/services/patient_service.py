import re

from agenda.core.errors import ValidationError
from agenda.models.patient import Patient
from agenda.services.store import TenantStore

_PHONE_STRIP_RE = re.compile(r"[\s\-().]")
_E164_RE = re.compile(r"^\+[1-9]\d{7,14}$")


def normalize_phone(raw: str | None, default_country_code: str) -> str:
    """Normalize user input to E.164 (``+`` followed by 8-15 digits).

    ``00`` is read as the international prefix; a leading ``0`` is a national
    trunk prefix and gets replaced by ``default_country_code``.
    """
    if raw is None or not raw.strip():
        raise ValidationError("Phone number is required")
    cleaned = _PHONE_STRIP_RE.sub("", raw.strip())
    if cleaned.startswith("+"):
        digits = cleaned[1:]
    elif cleaned.startswith("00"):
        digits = cleaned[2:]
    elif cleaned.startswith("0"):
        digits = default_country_code + cleaned.lstrip("0")
    else:
        digits = cleaned
    phone = "+" + digits
    if not _E164_RE.match(phone):
        raise ValidationError(f"Invalid phone number {raw!r}")
    return phone


def _clean_email(email: str | None) -> str | None:
    if email is None:
        return None
    email = email.strip().lower()
    return email or None


async def resolve_or_create_patient(
    store: TenantStore,
    full_name: str,
    phone: str | None,
    email: str | None,
    default_country_code: str,
) -> Patient:
    """Find the tenant's patient by phone (or email when no phone is given), else create one.

    An existing patient gets its name, and email when provided, refreshed.
    """
    full_name = (full_name or "").strip()
    if not full_name:
        raise ValidationError("Patient name is required")
    email = _clean_email(email)

    if phone and phone.strip():
        phone_e164 = normalize_phone(phone, default_country_code)
        patient = await store.find_patient_by_phone(phone_e164)
        if patient is None:
            return await store.insert_patient_if_absent(full_name, phone_e164, email)
    elif email:
        patient = await store.find_patient_by_email(email)
        if patient is None:
            return await store.add_patient(Patient(tenant_id=store.tenant_id, full_name=full_name, email=email))
    else:
        raise ValidationError("Either a phone number or an email is required")

    patient.full_name = full_name
    if email:
        patient.email = email
    store.session.add(patient)
    await store.session.flush()
    return patient
