"""
Payment provider models
"""

from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field
from enum import Enum


class ProviderPaymentStatus(str, Enum):
    """Payment statuses reported by MercadoPago"""
    APPROVED = "approved"
    PENDING = "pending"
    IN_PROCESS = "in_process"
    AUTHORIZED = "authorized"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    CHARGED_BACK = "charged_back"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ProviderPaymentStatus":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class PreferenceResult(BaseModel):
    """Registered payment intent"""

    preference_id: str
    redirect_url: str


class PaymentInfo(BaseModel):
    """Authoritative payment object fetched from the provider"""

    id: str
    status: ProviderPaymentStatus
    raw_status: str
    status_detail: Optional[str] = None
    external_reference: Optional[str] = None
    preference_id: Optional[str] = None
    order_id: Optional[str] = None
    transaction_amount: Optional[Decimal] = None
    currency: Optional[str] = None


class WebhookVerificationStatus(str, Enum):
    VERIFIED = "verified"
    INVALID_SIGNATURE = "invalid_signature"
    MALFORMED_PAYLOAD = "malformed_payload"


class WebhookVerification(BaseModel):
    """Typed result of checking a webhook delivery"""

    status: WebhookVerificationStatus
    event_type: Optional[str] = None
    data_id: Optional[str] = None
    detail: Optional[str] = None

    @property
    def is_verified(self) -> bool:
        return self.status == WebhookVerificationStatus.VERIFIED


class WebhookOutcome(BaseModel):
    """Summary returned to the provider (always 200 once verified and processed)"""

    received: bool = True
    event_type: Optional[str] = None
    order_id: Optional[str] = None
    payment_status: Optional[str] = None
    new_status: Optional[str] = None
    processed: bool = False
    enrolled: bool = False
    detail: Optional[str] = Field(None, description="Why nothing changed, when nothing did")
