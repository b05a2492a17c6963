"""Pytest configuration and fixtures."""

import copy
import os
import secrets
import sys
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

# Generate a unique test secret for this test run to prevent token forgery
_TEST_JWT_SECRET = f"test-only-{secrets.token_urlsafe(32)}"

# For unit tests, set mock values ONLY if not running integration tests
if not os.environ.get("RUN_INTEGRATION"):
    os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
    os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
    os.environ.setdefault("JWT_SECRET_KEY", _TEST_JWT_SECRET)
    os.environ.setdefault("PAYPAL_CLIENT_ID", "test-client-id")
    os.environ.setdefault("PAYPAL_CLIENT_SECRET", "test-client-secret")
else:
    # For integration tests, load from .env
    from pathlib import Path

    from dotenv import load_dotenv

    env_path = Path(__file__).parent.parent / ".env"

    # Safety check: require explicit confirmation for integration tests
    if not os.environ.get("CONFIRM_INTEGRATION_CREDENTIALS"):
        print("\n" + "=" * 70, file=sys.stderr)
        print(
            "⚠️  WARNING: Integration tests will use REAL credentials from .env",
            file=sys.stderr,
        )
        print(
            "   This may touch live payments tables and the PayPal sandbox.",
            file=sys.stderr,
        )
        print("   Set CONFIRM_INTEGRATION_CREDENTIALS=yes to proceed.", file=sys.stderr)
        print("=" * 70 + "\n", file=sys.stderr)
        pytest.exit(
            "Integration tests require CONFIRM_INTEGRATION_CREDENTIALS=yes",
            returncode=1,
        )

    print("\n⚠️  Running integration tests with REAL credentials\n", file=sys.stderr)
    load_dotenv(env_path, override=True)

from fastapi.testclient import TestClient  # noqa: E402

from flexhunt.auth import create_access_token  # noqa: E402
from flexhunt.clock import get_clock  # noqa: E402
from flexhunt.config import get_settings  # noqa: E402
from flexhunt.database import get_db  # noqa: E402
from flexhunt.main import app  # noqa: E402
from flexhunt.payments import GatewayCapture, GatewayOrder, get_gateway  # noqa: E402
from flexhunt.rate_limit import limiter  # noqa: E402

# Clearly fake IDs that cannot collide with production IDs
BUYER_ID = "usr_TEST_BUYER_0001"
SELLER_ID = "usr_TEST_SELLER_001"
STRANGER_ID = "usr_TEST_OTHER_0001"
ADMIN_ID = "usr_TEST_ADMIN_0001"
RECRUITER_ID = "usr_TEST_RECRUIT_01"
CANDIDATE_ID = "usr_TEST_CANDID_001"
GIG_ID = "gig_TEST_0001"

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Fakes
# =============================================================================


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class InMemoryStore:
    """Dict-backed stand-in for the ``flexhunt.database`` store functions.

    Rows are kept the way PostgREST returns them: snake_case keys and ISO
    timestamp strings.
    """

    FUNCTIONS = [
        "get_gig",
        "get_payment",
        "get_payment_by_gateway_order",
        "insert_pending_payment",
        "update_pending_payment",
        "complete_capture",
        "release_payment",
        "get_order_by_payment",
        "complete_order_for_payment",
        "open_dispute",
        "create_question",
        "list_questions_by_creator",
        "get_questions",
        "create_assessment",
        "list_assessments_by_creator",
        "get_assessment",
        "update_assessment",
        "update_candidate",
    ]

    def __init__(self):
        self.gigs: dict[str, dict] = {}
        self.payments: dict[str, dict] = {}
        self.orders: dict[str, dict] = {}
        self.disputes: dict[str, dict] = {}
        self.questions: dict[str, dict] = {}
        self.assessments: dict[str, dict] = {}
        self.fail_order_completion = False
        self._seq = 0

    def install(self, monkeypatch) -> None:
        for name in self.FUNCTIONS:
            monkeypatch.setattr(f"flexhunt.database.{name}", getattr(self, name))

    def _next_id(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}-{self._seq}"

    def add_gig(self, gig_id: str = GIG_ID, provider_id: str | None = SELLER_ID, **fields) -> dict:
        self.gigs[gig_id] = {"id": gig_id, "provider_id": provider_id, **fields}
        return self.gigs[gig_id]

    def orders_for(self, payment_id: str) -> list[dict]:
        return [o for o in self.orders.values() if o["payment_id"] == payment_id]

    # Gigs / payments

    async def get_gig(self, db, gig_id):
        return copy.deepcopy(self.gigs.get(gig_id))

    async def get_payment(self, db, payment_id):
        return copy.deepcopy(self.payments.get(payment_id))

    async def get_payment_by_gateway_order(self, db, paypal_order_id):
        for row in self.payments.values():
            if row.get("paypal_order_id") == paypal_order_id:
                return copy.deepcopy(row)
        return None

    async def insert_pending_payment(self, db, payment_id, fields):
        if payment_id in self.payments:
            return None
        self.payments[payment_id] = {"id": payment_id, **copy.deepcopy(fields)}
        return copy.deepcopy(self.payments[payment_id])

    async def update_pending_payment(self, db, payment_id, fields):
        row = self.payments.get(payment_id)
        if row is None or row.get("status") not in (None, "PENDING"):
            return None
        row.update(copy.deepcopy(fields))
        return copy.deepcopy(row)

    async def complete_capture(self, db, payment_id, paypal_order_id, capture_id, captured_at, escrow_release_date):
        row = self.payments.get(payment_id)
        if row is None or row.get("status") != "PENDING" or row.get("paypal_order_id") != paypal_order_id:
            return False, None
        row.update(
            {
                "status": "COMPLETED",
                "capture_id": capture_id,
                "captured_at": captured_at.isoformat(),
                "escrow_release_date": escrow_release_date.isoformat(),
                "updated_at": captured_at.isoformat(),
            }
        )
        order = {
            "id": self._next_id("order"),
            "gig_id": row.get("gig_id"),
            "buyer_id": row.get("buyer_id"),
            "seller_id": row.get("seller_id"),
            "amount": row.get("amount"),
            "status": "IN_PROGRESS",
            "payment_id": payment_id,
            "created_at": captured_at.isoformat(),
        }
        self.orders[order["id"]] = order
        return True, copy.deepcopy(order)

    async def release_payment(self, db, payment_id, released_at):
        row = self.payments.get(payment_id)
        if row is None or row.get("status") != "COMPLETED":
            return None
        row.update(
            {
                "status": "RELEASED",
                "released_at": released_at.isoformat(),
                "updated_at": released_at.isoformat(),
            }
        )
        return copy.deepcopy(row)

    # Orders

    async def get_order_by_payment(self, db, payment_id):
        orders = self.orders_for(payment_id)
        return copy.deepcopy(orders[0]) if orders else None

    async def complete_order_for_payment(self, db, payment_id, completed_at):
        if self.fail_order_completion:
            raise ConnectionError("store unavailable")
        for order in self.orders_for(payment_id):
            if order["status"] == "IN_PROGRESS":
                order["status"] = "COMPLETED"
                order["completed_at"] = completed_at.isoformat()
                return copy.deepcopy(order)
        return None

    # Disputes

    async def open_dispute(self, db, payment_id, reason, evidence, created_by, created_at):
        payment = self.payments[payment_id]
        dispute = {
            "id": self._next_id("dispute"),
            "payment_id": payment_id,
            "buyer_id": payment.get("buyer_id"),
            "seller_id": payment.get("seller_id"),
            "amount": payment.get("amount"),
            "reason": reason,
            "evidence": list(evidence),
            "status": "OPEN",
            "created_by": created_by,
            "created_at": created_at.isoformat(),
        }
        self.disputes[dispute["id"]] = dispute
        payment.update(
            {
                "is_disputed": True,
                "dispute_reason": reason,
                "dispute_id": dispute["id"],
                "disputed_at": created_at.isoformat(),
            }
        )
        return copy.deepcopy(dispute)

    # Assessments

    async def create_question(self, db, data):
        row = {"id": self._next_id("q"), **copy.deepcopy(data)}
        self.questions[row["id"]] = row
        return copy.deepcopy(row)

    async def list_questions_by_creator(self, db, created_by):
        return [copy.deepcopy(q) for q in self.questions.values() if q["created_by"] == created_by]

    async def get_questions(self, db, question_ids):
        return [copy.deepcopy(self.questions[q]) for q in question_ids if q in self.questions]

    async def create_assessment(self, db, data):
        row = {"id": self._next_id("a"), **copy.deepcopy(data)}
        self.assessments[row["id"]] = row
        return copy.deepcopy(row)

    async def list_assessments_by_creator(self, db, created_by):
        return [copy.deepcopy(a) for a in self.assessments.values() if a["created_by"] == created_by]

    async def get_assessment(self, db, assessment_id):
        return copy.deepcopy(self.assessments.get(assessment_id))

    async def update_assessment(self, db, assessment_id, fields):
        row = self.assessments.get(assessment_id)
        if row is None:
            return None
        row.update(copy.deepcopy(fields))
        return copy.deepcopy(row)

    async def update_candidate(
        self, db, assessment_id, candidate_id, fields=None, if_unset=None, violations=None, expected_status="invited"
    ):
        row = self.assessments.get(assessment_id)
        if row is None:
            return None
        for candidate in row["eligible_candidates"]:
            if candidate["candidate"] == candidate_id and candidate["status"] == expected_status:
                break
        else:
            return None
        for key, value in (if_unset or {}).items():
            if candidate.get(key) is None:
                candidate[key] = copy.deepcopy(value)
        candidate.update(copy.deepcopy(fields or {}))
        candidate["securityViolations"] = candidate.get("securityViolations", []) + copy.deepcopy(violations or [])
        return copy.deepcopy(candidate)


class FakeGateway:
    """Records calls instead of talking to PayPal."""

    def __init__(self):
        self.created: list[dict] = []
        self.captured: list[str] = []
        self.capture_status = "COMPLETED"
        self.create_error: Exception | None = None
        self.capture_error: Exception | None = None
        self._seq = 0

    async def create_order(self, amount, description, custom_id, brand_name=None, return_url=None, cancel_url=None):
        if self.create_error:
            raise self.create_error
        self._seq += 1
        order_id = f"PAYPAL-ORDER-{self._seq}"
        self.created.append(
            {
                "id": order_id,
                "amount": amount,
                "description": description,
                "custom_id": custom_id,
                "brand_name": brand_name,
                "return_url": return_url,
                "cancel_url": cancel_url,
            }
        )
        return GatewayOrder(id=order_id, status="CREATED")

    async def capture_order(self, order_id):
        if self.capture_error:
            raise self.capture_error
        self.captured.append(order_id)
        capture_id = f"CAPTURE-{order_id}" if self.capture_status == "COMPLETED" else None
        return GatewayCapture(order_id=order_id, status=self.capture_status, capture_id=capture_id)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def store(monkeypatch):
    """In-memory store wired over ``flexhunt.database``."""
    fake = InMemoryStore()
    fake.install(monkeypatch)
    return fake


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def client(store, gateway, clock):
    """Create a test client with store, gateway and clock replaced."""
    app.dependency_overrides[get_db] = lambda: MagicMock()
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_clock] = lambda: clock
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_headers(user_id: str, role: str | None = None) -> dict[str, str]:
    token = create_access_token(get_settings(), user_id=user_id, role=role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def buyer_headers():
    return make_headers(BUYER_ID)


@pytest.fixture
def seller_headers():
    return make_headers(SELLER_ID)


@pytest.fixture
def stranger_headers():
    return make_headers(STRANGER_ID)


@pytest.fixture
def admin_headers():
    return make_headers(ADMIN_ID, role="admin")


@pytest.fixture
def recruiter_headers():
    return make_headers(RECRUITER_ID, role="recruiter")


@pytest.fixture
def candidate_headers():
    return make_headers(CANDIDATE_ID)
