import pydantic
import pytest

from agenda.models.credentials import (
    BankTransferDetails,
    MercadoPagoCredentials,
    MetaWhatsAppCredentials,
    dump_credentials,
    parse_credentials,
)


def test_parse_whatsapp_by_alias():
    creds = parse_credentials("meta_whatsapp", {"phoneNumberId": "1098", "accessToken": "EAAG", "extra": "x"})
    assert isinstance(creds, MetaWhatsAppCredentials)
    assert creds.phone_number_id == "1098"
    assert creds.access_token == "EAAG"
    assert creds.business_account_id is None


def test_provider_selects_model():
    assert isinstance(parse_credentials("mercadopago", {"accessToken": "APP_USR"}), MercadoPagoCredentials)
    bank = parse_credentials("bank_transfer", {"accountHolder": "Clinica Norte SRL", "accountNumber": "0170"})
    assert isinstance(bank, BankTransferDetails)


@pytest.mark.parametrize(
    "provider,raw",
    [
        ("meta_whatsapp", {"phoneNumberId": "1098"}),
        ("meta_whatsapp", {"phoneNumberId": "", "accessToken": "EAAG"}),
        ("bank_transfer", {"accountHolder": "Clinica Norte SRL"}),
        ("stripe", {"accessToken": "sk"}),
    ],
)
def test_invalid_credentials_raise(provider, raw):
    with pytest.raises(pydantic.ValidationError):
        parse_credentials(provider, raw)


def test_dump_uses_aliases_without_provider():
    creds = MetaWhatsAppCredentials(phone_number_id="1098", access_token="EAAG")
    assert dump_credentials(creds) == {"phoneNumberId": "1098", "accessToken": "EAAG"}
    assert parse_credentials("meta_whatsapp", dump_credentials(creds)) == creds
