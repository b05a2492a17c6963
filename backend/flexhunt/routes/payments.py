"""Checkout routes.

Endpoints the web client calls around the PayPal hosted checkout.
Everything else (gigs, orders listing, messaging) the client reads and
writes directly in the store.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from ..auth import CurrentUser
from ..checkout import CheckoutService
from ..checkout.models import (
    CapturePaymentRequest,
    CapturePaymentResponse,
    CreatePaymentRequest,
    CreatePaymentResponse,
    DisputePaymentRequest,
    DisputePaymentResponse,
    ReleaseEscrowRequest,
    ReleaseEscrowResponse,
)
from ..clock import Clock
from ..config import Settings, get_settings
from ..database import Database
from ..logging_config import get_logger
from ..payments import Gateway
from ..rate_limit import (
    CAPTURE_PAYMENT_LIMIT,
    CREATE_PAYMENT_LIMIT,
    DISPUTE_PAYMENT_LIMIT,
    RELEASE_ESCROW_LIMIT,
    limiter,
)

logger = get_logger("flexhunt.routes.payments")
router = APIRouter(prefix="/api", tags=["payments"])


def get_checkout_service(
    db: Database,
    gateway: Gateway,
    settings: Annotated[Settings, Depends(get_settings)],
    clock: Clock,
) -> CheckoutService:
    return CheckoutService(db=db, gateway=gateway, settings=settings, now=clock)


Checkout = Annotated[CheckoutService, Depends(get_checkout_service)]


@router.post("/create-payment", response_model=CreatePaymentResponse)
@limiter.limit(CREATE_PAYMENT_LIMIT)
async def create_payment(
    request: Request,
    body: CreatePaymentRequest,
    auth: CurrentUser,
    checkout: Checkout,
):
    """
    Create a PayPal order for a gig purchase.

    The payment record is written as PENDING with the PayPal order id;
    the client then sends the buyer through PayPal's approval flow.
    """
    logger.info(f"POST /api/create-payment | user={auth.user_id} | gig={body.gig_id}")
    created = await checkout.create_payment(
        auth,
        gig_id=body.gig_id,
        buyer_id=body.buyer_id,
        amount=body.amount,
        payment_id=body.payment_id,
        title=body.title,
    )
    return CreatePaymentResponse(
        orderID=created.order_id,
        status=created.status,
        paymentId=created.payment_id,
    )


@router.post("/capture-payment", response_model=CapturePaymentResponse)
@limiter.limit(CAPTURE_PAYMENT_LIMIT)
async def capture_payment(
    request: Request,
    body: CapturePaymentRequest,
    auth: CurrentUser,
    checkout: Checkout,
):
    """
    Capture an approved PayPal order.

    On success the payment moves to COMPLETED, the escrow clock starts and
    an IN_PROGRESS order is created. Repeating the call is harmless.
    """
    logger.info(f"POST /api/capture-payment | user={auth.user_id} | order={body.order_id}")
    result = await checkout.capture_payment(auth, order_id=body.order_id, payment_id=body.payment_id)
    return CapturePaymentResponse(
        status=result.status,
        captureId=result.capture_id,
        paymentId=result.payment_id,
        orderId=result.order_id,
    )


@router.post("/release-escrow", response_model=ReleaseEscrowResponse)
@limiter.limit(RELEASE_ESCROW_LIMIT)
async def release_escrow(
    request: Request,
    body: ReleaseEscrowRequest,
    auth: CurrentUser,
    checkout: Checkout,
):
    """
    Release escrowed funds to the seller once the hold period is over.

    Either party (or an admin) may trigger the release; nobody can release early.
    """
    logger.info(f"POST /api/release-escrow | user={auth.user_id} | payment={body.payment_id}")
    result = await checkout.release_escrow(auth, payment_id=body.payment_id)
    return ReleaseEscrowResponse(paymentId=result.payment_id)


@router.post("/dispute-payment", response_model=DisputePaymentResponse)
@limiter.limit(DISPUTE_PAYMENT_LIMIT)
async def dispute_payment(
    request: Request,
    body: DisputePaymentRequest,
    auth: CurrentUser,
    checkout: Checkout,
):
    """
    Contest a payment.

    Flags the payment and opens a dispute record; funds stay in escrow
    until the dispute is settled.
    """
    logger.info(f"POST /api/dispute-payment | user={auth.user_id} | payment={body.payment_id}")
    result = await checkout.dispute_payment(
        auth,
        payment_id=body.payment_id,
        reason=body.reason,
        evidence=body.evidence,
    )
    return DisputePaymentResponse(disputeId=result.dispute_id)
