"""Checkout orchestrator: create, capture, release and dispute.

The gateway, the identity provider and the store share no transaction,
so the workflow relies on ordering:

- the create write only lands on a record that is absent or still PENDING;
- the order row is created only after PayPal confirms the capture;
- the capture write is conditional on the payment still being PENDING on
  the captured PayPal order, which makes a repeated or racing capture a
  no-op rather than a duplicate order;
- escrow is never released before ``escrow_release_date``.

The payment's ``status`` is the single source of truth for how far the
workflow has progressed.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Callable

from supabase import Client

from .. import database
from ..auth import AuthContext
from ..clock import as_utc, utcnow
from ..config import Settings
from ..errors import (
    CaptureFailed,
    DisputeWindowClosed,
    EscrowNotMatured,
    Forbidden,
    InvalidRequest,
    InvalidState,
    PaymentDisputed,
    RecordNotFound,
)
from ..logging_config import get_logger
from ..payments import PayPalClient
from .models import (
    CAPTURED_STATUSES,
    CaptureResult,
    CreatedPayment,
    DisputeResult,
    OrderRecord,
    PaymentRecord,
    PaymentStatus,
    ReleaseResult,
)

logger = get_logger("flexhunt.checkout")

CAPTURE_COMPLETED = "COMPLETED"


def _parse_amount(raw) -> Decimal:
    try:
        amount = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        raise InvalidRequest("amount must be numeric")
    if not amount.is_finite():
        raise InvalidRequest("amount must be numeric")
    amount = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    if amount <= 0:
        raise InvalidRequest("amount must be greater than zero")
    return amount


class CheckoutService:
    """Stateless orchestrator; one instance per request."""

    def __init__(
        self,
        db: Client,
        gateway: PayPalClient,
        settings: Settings,
        now: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.gateway = gateway
        self.settings = settings
        self._now = now

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_payment(self, payment_id: str) -> PaymentRecord:
        row = await database.get_payment(self.db, payment_id)
        if not row:
            raise RecordNotFound("Payment not found", paymentId=payment_id)
        return PaymentRecord(**row)

    @staticmethod
    def _require_party(caller: AuthContext, payment: PaymentRecord, buyer_only: bool = False) -> None:
        if caller.is_admin:
            return
        if buyer_only:
            allowed = caller.user_id == payment.buyer_id
        else:
            allowed = payment.is_party(caller.user_id)
        if not allowed:
            raise Forbidden("Not authorized to act on this payment")

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_payment(
        self,
        caller: AuthContext,
        gig_id: str | None,
        buyer_id: str | None,
        amount,
        payment_id: str | None = None,
        title: str | None = None,
    ) -> CreatedPayment:
        """Open a PayPal order for a gig and record the PENDING payment."""
        missing = [
            name
            for name, value in (("gigId", gig_id), ("buyerId", buyer_id), ("amount", amount))
            if value is None or value == ""
        ]
        if missing:
            raise InvalidRequest(
                f"Missing required fields: {', '.join(missing)}",
                received={"gigId": gig_id, "buyerId": buyer_id, "amount": None if amount is None else str(amount)},
            )
        amount = _parse_amount(amount)

        if buyer_id != caller.user_id and not caller.is_admin:
            raise Forbidden("buyerId does not match the authenticated user")

        gig = await database.get_gig(self.db, gig_id)
        if not gig:
            raise RecordNotFound("Gig not found", gigId=gig_id)
        seller_id = gig.get("provider_id")
        if not seller_id:
            raise InvalidRequest("Gig has no provider to pay")
        if seller_id == buyer_id:
            raise InvalidRequest("Cannot purchase your own gig")

        payment_id = payment_id or str(uuid.uuid4())
        existing = await database.get_payment(self.db, payment_id)
        if existing:
            record = PaymentRecord(**existing)
            if record.buyer_id and record.buyer_id != buyer_id:
                raise Forbidden("Payment belongs to another buyer")
            if record.status not in (None, PaymentStatus.PENDING):
                raise InvalidState(f"Payment is already {record.status.value}")

        if title:
            description = f"Payment for: {title}"
        else:
            description = f"Payment for gig {gig_id}"

        frontend = self.settings.frontend_url.rstrip("/")
        order = await self.gateway.create_order(
            amount=amount,
            description=description[:127],  # PayPal limit
            custom_id=f"{gig_id}_{payment_id}",
            brand_name=self.settings.brand_name,
            return_url=f"{frontend}/payment/success",
            cancel_url=f"{frontend}/payment/cancel",
        )

        now = self._now().isoformat()
        fields = {
            "gig_id": gig_id,
            "buyer_id": buyer_id,
            "seller_id": seller_id,
            "amount": str(amount),
            "currency": "USD",
            "status": PaymentStatus.PENDING.value,
            "paypal_order_id": order.id,
            "is_disputed": False,
            "updated_at": now,
        }
        if existing:
            written = await database.update_pending_payment(self.db, payment_id, fields)
        else:
            fields["created_at"] = now
            written = await database.insert_pending_payment(self.db, payment_id, fields)
        if written is None:
            # Captured or created elsewhere while PayPal was answering; the
            # new gateway order is left unapproved and expires on its own.
            current = await database.get_payment(self.db, payment_id)
            status_value = (current or {}).get("status") or "unset"
            logger.warning(
                f"Payment changed during create | payment={payment_id} | "
                f"status={status_value} | orphaned_order={order.id}"
            )
            raise InvalidState(f"Payment changed while creating order (status: {status_value})")

        logger.info(
            f"Payment pending | payment={payment_id} | order={order.id} | "
            f"gig={gig_id} | buyer={buyer_id} | amount={amount}"
        )
        return CreatedPayment(order_id=order.id, status=order.status, payment_id=payment_id)

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    async def _already_captured(self, payment: PaymentRecord) -> CaptureResult:
        row = await database.get_order_by_payment(self.db, payment.id)
        order = OrderRecord(**row) if row else None
        return CaptureResult(
            status=CAPTURE_COMPLETED,
            payment_id=payment.id,
            capture_id=payment.capture_id,
            order_id=order.id if order else None,
            already_captured=True,
        )

    async def capture_payment(
        self,
        caller: AuthContext,
        order_id: str | None,
        payment_id: str | None = None,
    ) -> CaptureResult:
        """Capture an approved PayPal order and hand the purchase to fulfillment."""
        if not order_id:
            raise InvalidRequest("Missing required fields: orderID")

        row = await database.get_payment_by_gateway_order(self.db, order_id)
        if not row:
            raise RecordNotFound("No payment matches this order", orderID=order_id)
        payment = PaymentRecord(**row)

        if payment_id and payment_id != payment.id:
            raise InvalidRequest("paymentId does not match the order")
        self._require_party(caller, payment, buyer_only=True)

        if payment.status in CAPTURED_STATUSES:
            logger.info(f"Capture replay ignored | payment={payment.id} | order={order_id}")
            return await self._already_captured(payment)
        if payment.status != PaymentStatus.PENDING:
            status_value = payment.status.value if payment.status else "unset"
            raise InvalidState(f"Cannot capture payment in status: {status_value}")

        capture = await self.gateway.capture_order(order_id)
        if capture.status != CAPTURE_COMPLETED:
            logger.warning(f"Capture not completed | order={order_id} | status={capture.status}")
            raise CaptureFailed(
                f"Payment capture failed: {capture.status}",
                gatewayStatus=capture.status,
            )

        now = self._now()
        release_date = now + timedelta(days=self.settings.escrow_hold_days)
        applied, row = await database.complete_capture(
            self.db, payment.id, order_id, capture.capture_id, now, release_date
        )

        if not applied:
            current = await self._load_payment(payment.id)
            if current.status in CAPTURED_STATUSES and current.paypal_order_id == order_id:
                # Lost the race to a concurrent capture of the same order
                logger.warning(f"Capture already applied by another request | payment={payment.id}")
                return await self._already_captured(current)
            logger.error(
                f"Capture not recorded | payment={payment.id} | order={order_id} | "
                f"capture={capture.capture_id} | current_order={current.paypal_order_id}"
            )
            raise InvalidState("Payment no longer tracks this order")

        order = OrderRecord(**row)
        logger.info(
            f"Payment captured | payment={payment.id} | capture={capture.capture_id} | "
            f"order={order.id} | release={release_date.isoformat()}"
        )
        return CaptureResult(
            status=CAPTURE_COMPLETED,
            payment_id=payment.id,
            capture_id=capture.capture_id,
            order_id=order.id,
        )

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    async def _complete_order(self, payment_id: str, now: datetime) -> None:
        """Second, best-effort write of a release; safe to repeat."""
        try:
            await database.complete_order_for_payment(self.db, payment_id, now)
        except Exception:
            logger.warning(f"Order completion failed | payment={payment_id}", exc_info=True)

    async def release_escrow(self, caller: AuthContext, payment_id: str | None) -> ReleaseResult:
        """Release escrowed funds once the hold period has passed."""
        if not payment_id:
            raise InvalidRequest("Missing required fields: paymentId")

        payment = await self._load_payment(payment_id)
        self._require_party(caller, payment)
        now = self._now()

        if payment.status == PaymentStatus.RELEASED:
            await self._complete_order(payment.id, now)
            return ReleaseResult(payment_id=payment.id, already_released=True)

        if payment.status != PaymentStatus.COMPLETED:
            status_value = payment.status.value if payment.status else "unset"
            raise InvalidState(f"Payment is not in escrow (status: {status_value})")
        if payment.escrow_release_date is None:
            raise InvalidState("Payment has no escrow release date")

        release_date = as_utc(payment.escrow_release_date)
        if now < release_date:
            raise EscrowNotMatured(
                "Escrow period not completed",
                releaseDate=release_date.isoformat(),
            )
        if payment.is_disputed:
            raise PaymentDisputed("Payment is under dispute", disputeId=payment.dispute_id)

        updated = await database.release_payment(self.db, payment.id, now)
        if updated is None:
            current = await self._load_payment(payment.id)
            if current.status != PaymentStatus.RELEASED:
                raise InvalidState("Payment changed during release")
            logger.info(f"Release already applied by another request | payment={payment.id}")

        await self._complete_order(payment.id, now)
        logger.info(f"Escrow released | payment={payment.id} | by={caller.user_id}")
        return ReleaseResult(payment_id=payment.id, already_released=updated is None)

    # ------------------------------------------------------------------
    # Dispute
    # ------------------------------------------------------------------

    async def dispute_payment(
        self,
        caller: AuthContext,
        payment_id: str | None,
        reason: str | None,
        evidence: list[str] | None = None,
    ) -> DisputeResult:
        """Flag a payment as disputed and open a dispute record."""
        reason = (reason or "").strip()
        missing = [name for name, value in (("paymentId", payment_id), ("reason", reason)) if not value]
        if missing:
            raise InvalidRequest(f"Missing required fields: {', '.join(missing)}")

        payment = await self._load_payment(payment_id)
        self._require_party(caller, payment)
        now = self._now()

        if payment.captured_at is not None:
            window_end = as_utc(payment.captured_at) + timedelta(days=self.settings.dispute_window_days)
            if now > window_end:
                raise DisputeWindowClosed(
                    "Dispute window has expired",
                    windowEnd=window_end.isoformat(),
                )

        dispute = await database.open_dispute(
            self.db,
            payment_id=payment.id,
            reason=reason,
            evidence=list(evidence or []),
            created_by=caller.user_id,
            created_at=now,
        )
        logger.info(
            f"Dispute opened | dispute={dispute['id']} | payment={payment.id} | "
            f"by={caller.user_id} | reason={reason[:50]}"
        )
        return DisputeResult(dispute_id=dispute["id"], payment_id=payment.id)
