"""Pydantic schemas for request bodies and gateway events."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, EmailStr, Field


# =============================================================================
# Request bodies
# =============================================================================

class JobCreate(BaseModel):
    """Request to post a new job."""
    title: str = Field(..., min_length=3, max_length=255)
    description: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1, max_length=50)
    location: str = Field(..., min_length=1, max_length=255)
    price: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    preferred_date: datetime | None = None


class HireRequest(BaseModel):
    """Buyer selects a provider and starts the charge."""
    provider_id: int = Field(..., gt=0)


class WithdrawRequest(BaseModel):
    """Provider withdraws part of their available balance."""
    model_config = ConfigDict(populate_by_name=True)

    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    payout_email: EmailStr = Field(..., alias='paypalEmail')


# Ten years
MAX_ESCROW_PERIOD_MINUTES = 10 * 365 * 24 * 60


class EscrowPeriodUpdate(BaseModel):
    """Operator change to the escrow holding period (new escrows only)."""
    minutes: int = Field(..., ge=1, le=MAX_ESCROW_PERIOD_MINUTES)


# =============================================================================
# Gateway events
# =============================================================================

class WebhookEventKind(str, Enum):
    """Closed set of gateway events the escrow engine reacts to."""
    ORDER_APPROVED = 'order_approved'
    CAPTURE_COMPLETED = 'capture_completed'
    CAPTURE_DENIED = 'capture_denied'
    UNKNOWN = 'unknown'


class GatewayEvent(BaseModel):
    """Gateway-neutral view of an inbound webhook event."""
    event_id: str
    kind: WebhookEventKind
    raw_type: str
    payment_id: str
    failure_reason: str | None = None


class StripePaymentIntentObject(BaseModel):
    id: str
    last_payment_error: dict | None = None


class StripeEventData(BaseModel):
    object: StripePaymentIntentObject


class StripeEventPayload(BaseModel):
    """The subset of a Stripe event envelope we rely on."""
    id: str
    type: str
    data: StripeEventData
