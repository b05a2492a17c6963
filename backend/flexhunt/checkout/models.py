"""Pydantic models for the checkout workflow.

Store rows are snake_case; the HTTP surface keeps the camelCase field
names the web client already sends and reads.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

# =============================================================================
# Enums
# =============================================================================


class PaymentStatus(str, Enum):
    """PaymentRecord lifecycle. Only moves forward:

    PENDING -> COMPLETED | FAILED | CANCELLED | TIMEOUT
    COMPLETED -> RELEASED (after the escrow hold)
    """

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    TIMEOUT = "TIMEOUT"
    RELEASED = "RELEASED"


class OrderStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


CAPTURED_STATUSES = {PaymentStatus.COMPLETED, PaymentStatus.RELEASED}


# =============================================================================
# Store records
# =============================================================================


class PaymentRecord(BaseModel):
    """A single purchase attempt (``payments`` table)."""

    id: str
    gig_id: str | None = None
    buyer_id: str | None = None
    seller_id: str | None = None
    amount: Decimal | None = None
    currency: str = "USD"
    status: PaymentStatus | None = None
    paypal_order_id: str | None = None
    capture_id: str | None = None
    escrow_release_date: datetime | None = None
    captured_at: datetime | None = None
    released_at: datetime | None = None
    is_disputed: bool = False
    dispute_reason: str | None = None
    dispute_id: str | None = None
    disputed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        extra = "ignore"

    def is_party(self, user_id: str) -> bool:
        return user_id in (self.buyer_id, self.seller_id)


class OrderRecord(BaseModel):
    """A confirmed purchase handed to fulfillment (``orders`` table)."""

    id: str
    gig_id: str | None = None
    buyer_id: str | None = None
    seller_id: str | None = None
    amount: Decimal | None = None
    status: OrderStatus
    payment_id: str
    created_at: datetime | None = None
    completed_at: datetime | None = None

    class Config:
        extra = "ignore"


# =============================================================================
# Service results
# =============================================================================


@dataclass
class CreatedPayment:
    order_id: str
    status: str
    payment_id: str


@dataclass
class CaptureResult:
    status: str
    payment_id: str
    capture_id: str | None = None
    order_id: str | None = None
    already_captured: bool = False


@dataclass
class ReleaseResult:
    payment_id: str
    already_released: bool = False


@dataclass
class DisputeResult:
    dispute_id: str
    payment_id: str


# =============================================================================
# Request/Response Models
# =============================================================================


class CreatePaymentRequest(BaseModel):
    """Body of POST /api/create-payment.

    Fields are optional at the schema level so a missing one is reported
    by name rather than as a generic validation error.
    """

    gig_id: str | None = Field(None, alias="gigId")
    buyer_id: str | None = Field(None, alias="buyerId")
    amount: Decimal | None = None
    payment_id: str | None = Field(None, alias="paymentId")
    title: str | None = None

    class Config:
        populate_by_name = True


class CreatePaymentResponse(BaseModel):
    orderID: str
    status: str
    paymentId: str


class CapturePaymentRequest(BaseModel):
    order_id: str | None = Field(None, alias="orderID")
    payment_id: str | None = Field(None, alias="paymentId")

    class Config:
        populate_by_name = True


class CapturePaymentResponse(BaseModel):
    status: str
    captureId: str | None = None
    paymentId: str
    orderId: str | None = None


class ReleaseEscrowRequest(BaseModel):
    payment_id: str | None = Field(None, alias="paymentId")

    class Config:
        populate_by_name = True


class ReleaseEscrowResponse(BaseModel):
    status: str = "SUCCESS"
    paymentId: str


class DisputePaymentRequest(BaseModel):
    payment_id: str | None = Field(None, alias="paymentId")
    reason: str | None = None
    evidence: list[str] = Field(default_factory=list)

    class Config:
        populate_by_name = True


class DisputePaymentResponse(BaseModel):
    status: str = "DISPUTE_CREATED"
    disputeId: str
