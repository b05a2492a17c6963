"""Database utilities for Supabase integration.

Each collection is a table; multi-row steps that must be all-or-nothing
(capture, dispute) run inside Postgres functions defined in
``migrations/001_checkout.sql`` and are invoked with ``db.rpc``.
"""

import asyncio
from datetime import datetime
from typing import Annotated, Any

import httpx
from fastapi import Depends
from supabase import Client, create_client
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import Settings, get_settings

_supabase_client: Client | None = None


def get_supabase_client(settings: Settings | None = None) -> Client:
    """Get cached Supabase client."""
    global _supabase_client
    if _supabase_client is None:
        if settings is None:
            settings = get_settings()
        # Prefer new secret key, fall back to legacy service_role_key
        api_key = settings.supabase_secret_key or settings.supabase_service_role_key
        if not api_key:
            raise ValueError("Either SUPABASE_SECRET_KEY or SUPABASE_SERVICE_ROLE_KEY must be set")
        _supabase_client = create_client(settings.supabase_url, api_key)
    return _supabase_client


def get_db(settings: Annotated[Settings, Depends(get_settings)]) -> Client:
    """FastAPI dependency for Supabase client."""
    return get_supabase_client(settings)


# Type alias for dependency injection
Database = Annotated[Client, Depends(get_db)]


# =============================================================================
# Table Names (keep in sync with SQL migrations)
# =============================================================================

GIGS_TABLE = "gigs"
PAYMENTS_TABLE = "payments"
ORDERS_TABLE = "orders"
DISPUTES_TABLE = "disputes"
ASSESSMENTS_TABLE = "assessments"
QUESTIONS_TABLE = "assessment_questions"

CAPTURE_PAYMENT_FN = "capture_payment"
OPEN_DISPUTE_FN = "open_payment_dispute"
UPDATE_CANDIDATE_FN = "update_assessment_candidate"


# Reads are idempotent and may be retried; writes are single-attempt.
_retry_read = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    retry=retry_if_exception_type(httpx.TransportError),
    reraise=True,
)


def _first(result) -> dict | None:
    return result.data[0] if result.data else None


async def ping(db: Client) -> None:
    """Cheapest possible round trip; raises if the store is unreachable."""
    await asyncio.to_thread(
        lambda: db.table(PAYMENTS_TABLE).select("id").limit(1).execute()
    )


# =============================================================================
# Gigs
# =============================================================================


@_retry_read
async def get_gig(db: Client, gig_id: str) -> dict | None:
    """Get a gig by ID."""
    result = await asyncio.to_thread(
        lambda: db.table(GIGS_TABLE).select("*").eq("id", gig_id).limit(1).execute()
    )
    return _first(result)


# =============================================================================
# Payments
# =============================================================================


@_retry_read
async def get_payment(db: Client, payment_id: str) -> dict | None:
    """Get a payment record by ID."""
    result = await asyncio.to_thread(
        lambda: db.table(PAYMENTS_TABLE).select("*").eq("id", payment_id).limit(1).execute()
    )
    return _first(result)


@_retry_read
async def get_payment_by_gateway_order(db: Client, paypal_order_id: str) -> dict | None:
    """Get the payment record tracking a PayPal order."""
    result = await asyncio.to_thread(
        lambda: (
            db.table(PAYMENTS_TABLE)
            .select("*")
            .eq("paypal_order_id", paypal_order_id)
            .limit(1)
            .execute()
        )
    )
    return _first(result)


async def insert_pending_payment(db: Client, payment_id: str, fields: dict[str, Any]) -> dict | None:
    """Insert a new PENDING payment record.

    Returns None if a record with this id appeared in the meantime.
    """
    data = {"id": payment_id, **fields}
    result = await asyncio.to_thread(
        lambda: (
            db.table(PAYMENTS_TABLE)
            .upsert(data, on_conflict="id", ignore_duplicates=True)
            .execute()
        )
    )
    return _first(result)


async def update_pending_payment(db: Client, payment_id: str, fields: dict[str, Any]) -> dict | None:
    """Point an existing, not yet captured payment at a new gateway order.

    Matches only rows whose status is unset or PENDING; returns None if the
    payment moved on (captured, failed) before the write.
    """
    result = await asyncio.to_thread(
        lambda: (
            db.table(PAYMENTS_TABLE)
            .update(fields)
            .eq("id", payment_id)
            .or_("status.is.null,status.eq.PENDING")
            .execute()
        )
    )
    return _first(result)


async def complete_capture(
    db: Client,
    payment_id: str,
    paypal_order_id: str,
    capture_id: str | None,
    captured_at: datetime,
    escrow_release_date: datetime,
) -> tuple[bool, dict | None]:
    """Atomically move a PENDING payment to COMPLETED and create its order.

    The payment must still track ``paypal_order_id``.

    Returns:
        Tuple of (applied, order).
        - (True, order_dict) if this call performed the transition
        - (False, None) if the payment was no longer PENDING on that order
    """
    params = {
        "p_payment_id": payment_id,
        "p_paypal_order_id": paypal_order_id,
        "p_capture_id": capture_id,
        "p_captured_at": captured_at.isoformat(),
        "p_escrow_release_date": escrow_release_date.isoformat(),
    }
    result = await asyncio.to_thread(lambda: db.rpc(CAPTURE_PAYMENT_FN, params).execute())
    data = result.data or {}
    if isinstance(data, list):
        data = data[0] if data else {}
    return bool(data.get("applied")), data.get("order")


async def release_payment(db: Client, payment_id: str, released_at: datetime) -> dict | None:
    """Conditionally move a payment from COMPLETED to RELEASED.

    Returns the updated row, or None if the payment was not COMPLETED.
    """
    update = {
        "status": "RELEASED",
        "released_at": released_at.isoformat(),
        "updated_at": released_at.isoformat(),
    }
    result = await asyncio.to_thread(
        lambda: (
            db.table(PAYMENTS_TABLE)
            .update(update)
            .eq("id", payment_id)
            .eq("status", "COMPLETED")
            .execute()
        )
    )
    return _first(result)


# =============================================================================
# Orders
# =============================================================================


@_retry_read
async def get_order_by_payment(db: Client, payment_id: str) -> dict | None:
    """Get the order created for a payment, if any."""
    result = await asyncio.to_thread(
        lambda: db.table(ORDERS_TABLE).select("*").eq("payment_id", payment_id).limit(1).execute()
    )
    return _first(result)


async def complete_order_for_payment(
    db: Client, payment_id: str, completed_at: datetime
) -> dict | None:
    """Mark the payment's IN_PROGRESS order COMPLETED. No-op if none matches."""
    update = {"status": "COMPLETED", "completed_at": completed_at.isoformat()}
    result = await asyncio.to_thread(
        lambda: (
            db.table(ORDERS_TABLE)
            .update(update)
            .eq("payment_id", payment_id)
            .eq("status", "IN_PROGRESS")
            .execute()
        )
    )
    return _first(result)


# =============================================================================
# Disputes
# =============================================================================


async def open_dispute(
    db: Client,
    payment_id: str,
    reason: str,
    evidence: list[str],
    created_by: str,
    created_at: datetime,
) -> dict:
    """Flag the payment and insert an OPEN dispute in one transaction.

    Buyer, seller and amount are copied from the payment inside the
    database function. Returns the dispute row.
    """
    params = {
        "p_payment_id": payment_id,
        "p_reason": reason,
        "p_evidence": evidence,
        "p_created_by": created_by,
        "p_created_at": created_at.isoformat(),
    }
    result = await asyncio.to_thread(lambda: db.rpc(OPEN_DISPUTE_FN, params).execute())
    data = result.data
    if isinstance(data, list):
        data = data[0] if data else None
    if not data:
        raise RuntimeError(f"Failed to open dispute for payment {payment_id}")
    return data


# =============================================================================
# Assessments
# =============================================================================


async def create_question(db: Client, data: dict[str, Any]) -> dict:
    """Insert a question."""
    result = await asyncio.to_thread(lambda: db.table(QUESTIONS_TABLE).insert(data).execute())
    row = _first(result)
    if row is None:
        raise RuntimeError("Failed to create question")
    return row


@_retry_read
async def list_questions_by_creator(db: Client, created_by: str) -> list[dict]:
    """Questions authored by a recruiter, newest first."""
    result = await asyncio.to_thread(
        lambda: (
            db.table(QUESTIONS_TABLE)
            .select("*")
            .eq("created_by", created_by)
            .order("created_at", desc=True)
            .execute()
        )
    )
    return result.data or []


@_retry_read
async def get_questions(db: Client, question_ids: list[str]) -> list[dict]:
    """Fetch questions by ID (order not guaranteed)."""
    if not question_ids:
        return []
    result = await asyncio.to_thread(
        lambda: db.table(QUESTIONS_TABLE).select("*").in_("id", question_ids).execute()
    )
    return result.data or []


async def create_assessment(db: Client, data: dict[str, Any]) -> dict:
    """Insert an assessment."""
    result = await asyncio.to_thread(lambda: db.table(ASSESSMENTS_TABLE).insert(data).execute())
    row = _first(result)
    if row is None:
        raise RuntimeError("Failed to create assessment")
    return row


@_retry_read
async def list_assessments_by_creator(db: Client, created_by: str) -> list[dict]:
    """Assessments authored by a recruiter, newest first."""
    result = await asyncio.to_thread(
        lambda: (
            db.table(ASSESSMENTS_TABLE)
            .select("*")
            .eq("created_by", created_by)
            .order("created_at", desc=True)
            .execute()
        )
    )
    return result.data or []


@_retry_read
async def get_assessment(db: Client, assessment_id: str) -> dict | None:
    """Get an assessment by ID."""
    result = await asyncio.to_thread(
        lambda: db.table(ASSESSMENTS_TABLE).select("*").eq("id", assessment_id).limit(1).execute()
    )
    return _first(result)


async def update_assessment(db: Client, assessment_id: str, fields: dict[str, Any]) -> dict | None:
    """Update assessment fields; returns the updated row or None if absent."""
    result = await asyncio.to_thread(
        lambda: db.table(ASSESSMENTS_TABLE).update(fields).eq("id", assessment_id).execute()
    )
    return _first(result)


async def update_candidate(
    db: Client,
    assessment_id: str,
    candidate_id: str,
    fields: dict[str, Any] | None = None,
    if_unset: dict[str, Any] | None = None,
    violations: list[dict[str, Any]] | None = None,
    expected_status: str = "invited",
) -> dict | None:
    """Change one entry of ``eligible_candidates`` in place.

    Runs the ``update_assessment_candidate`` Postgres function, which locks
    the assessment row and rewrites only the matching candidate:
    ``fields`` overwrite, ``if_unset`` fill keys that are missing or null,
    ``violations`` are appended to ``securityViolations``.

    Returns the updated candidate, or None if no candidate with that id is
    in ``expected_status``.
    """
    params = {
        "p_assessment_id": assessment_id,
        "p_candidate_id": candidate_id,
        "p_expected_status": expected_status,
        "p_fields": fields or {},
        "p_if_unset": if_unset or {},
        "p_violations": violations or [],
    }
    result = await asyncio.to_thread(lambda: db.rpc(UPDATE_CANDIDATE_FN, params).execute())
    data = result.data
    if isinstance(data, list):
        data = data[0] if data else None
    return data or None
