"""Integration credentials, one model per external provider.

Stored as JSON on ``Integration.credentials``; always parsed through
``parse_credentials`` before reaching business logic.
"""
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

META_WHATSAPP = "meta_whatsapp"
MERCADOPAGO = "mercadopago"
BANK_TRANSFER = "bank_transfer"


class MetaWhatsAppCredentials(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    provider: Literal["meta_whatsapp"] = META_WHATSAPP
    phone_number_id: str = Field(min_length=1, alias="phoneNumberId")
    access_token: str = Field(min_length=1, alias="accessToken")
    business_account_id: str | None = Field(default=None, alias="businessAccountId")
    verify_token: str | None = Field(default=None, alias="verifyToken")


class MercadoPagoCredentials(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    provider: Literal["mercadopago"] = MERCADOPAGO
    access_token: str = Field(min_length=1, alias="accessToken")
    public_key: str | None = Field(default=None, alias="publicKey")
    webhook_secret: str | None = Field(default=None, alias="webhookSecret")


class BankTransferDetails(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    provider: Literal["bank_transfer"] = BANK_TRANSFER
    account_holder: str = Field(min_length=1, alias="accountHolder")
    account_number: str = Field(min_length=1, alias="accountNumber")
    bank_name: str | None = Field(default=None, alias="bankName")
    alias: str | None = None


IntegrationCredentials = Annotated[
    MetaWhatsAppCredentials | MercadoPagoCredentials | BankTransferDetails,
    Field(discriminator="provider"),
]

_credentials_adapter: TypeAdapter[IntegrationCredentials] = TypeAdapter(IntegrationCredentials)


def parse_credentials(provider: str, raw: dict) -> IntegrationCredentials:
    """Validate a stored credentials blob; raises pydantic.ValidationError."""
    return _credentials_adapter.validate_python({**raw, "provider": provider})


def dump_credentials(credentials: IntegrationCredentials) -> dict:
    return credentials.model_dump(by_alias=True, exclude={"provider"}, exclude_none=True)
