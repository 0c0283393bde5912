"""Pydantic schemas for billing requests, responses and webhooks"""
from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
    model_validator,
)


DOCUMENT_LENGTHS = {"CPF": 11, "CNPJ": 14}

# Decimal internally, plain JSON number on the wire.
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CustomerIn(BaseModel):
    """Buyer details forwarded to the payment provider."""

    name: str = Field(..., description="Full name")
    email: str = Field(..., description="Contact e-mail")
    phone: str = Field(..., description="Phone number, e.g. +5511999999999")
    document: str = Field(..., description="CPF or CNPJ, digits only or formatted")
    document_type: Optional[Literal["CPF", "CNPJ"]] = Field(
        default=None, description="Derived from the document length when omitted"
    )

    @field_validator("name", "email", "phone", "document")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("email")
    @classmethod
    def looks_like_email(cls, v: str) -> str:
        local, _, domain = v.partition("@")
        if not local or not domain:
            raise ValueError("must be an e-mail address")
        return v

    @field_validator("document")
    @classmethod
    def digits_only(cls, v: str) -> str:
        digits = "".join(ch for ch in v if ch.isdigit())
        if not digits:
            raise ValueError("must contain digits")
        return digits

    @model_validator(mode="after")
    def check_document_type(self) -> "CustomerIn":
        if self.document_type is None:
            for doc_type, length in DOCUMENT_LENGTHS.items():
                if len(self.document) == length:
                    self.document_type = doc_type
                    break
            else:
                raise ValueError("document must have 11 (CPF) or 14 (CNPJ) digits")
        elif len(self.document) != DOCUMENT_LENGTHS[self.document_type]:
            raise ValueError(
                f"{self.document_type} must have {DOCUMENT_LENGTHS[self.document_type]} digits"
            )
        return self


class TransactionCreate(BaseModel):
    """Payload for starting a subscription purchase."""

    plan_type: str = Field(..., description="pro or premium")
    period_months: int = Field(default=1, description="1, 6 or 12")
    customer: CustomerIn


class TransactionRead(BaseModel):
    transaction_id: str
    pix_payload: Optional[str] = None
    status: Optional[str] = None
    amount: Money
    external_id: str


class QuoteRead(BaseModel):
    plan_type: str
    period_months: int
    monthly_price: Money
    discount_rate: Money
    total: Money
    effective_monthly_price: Money


class SubscriptionRead(BaseModel):
    subscribed: bool = True
    plan_type: str
    status: str
    period_months: int
    current_period_start: datetime
    current_period_end: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProviderStatus(str, enum.Enum):
    AUTHORIZED = "AUTHORIZED"
    PENDING = "PENDING"
    CHARGEBACK = "CHARGEBACK"
    FAILED = "FAILED"
    IN_DISPUTE = "IN_DISPUTE"


class WebhookEvent(BaseModel):
    """Payment status notification sent by the provider."""

    id: str = Field(..., min_length=1, description="Provider transaction id")
    external_id: str = Field(..., min_length=1, description="Correlation token")
    total_amount: Decimal = Field(..., ge=0)
    status: ProviderStatus
    payment_method: Optional[str] = None
    updated_at: Optional[datetime] = Field(
        default=None, description="Provider-side time of the status change"
    )

    model_config = ConfigDict(extra="ignore")
