"""
Pytest configuration and fixtures for testing
"""
import os
import tempfile
from pathlib import Path

# Configure the app before any project module reads settings
_TEST_DIR = Path(tempfile.mkdtemp(prefix="journal-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR / 'test.db'}"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_PRICE_ID"] = "price_test"
os.environ["REDIS_URL"] = ""
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["MEDIA_DIR"] = str(_TEST_DIR / "media")

import copy
import uuid
from typing import Any, Dict, List, Optional

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from backend.utils.errors import ExternalServiceError
from database import Base

# File-backed SQLite so the app and the test share one database across connections
TEST_DATABASE_URL = f"sqlite+aiosqlite:///{_TEST_DIR / 'test.db'}"

# Create test engine
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    future=True,
    poolclass=NullPool,
)

# Create test session factory
TestAsyncSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class FakeBillingClient:
    """
    In-memory stand-in for StripeBillingClient.

    Subscriptions are plain Stripe-shaped dicts keyed by id; every call is
    recorded in ``calls`` as (method, args).
    """

    def __init__(self):
        self.calls: List[tuple] = []
        self.subscriptions: Dict[str, Dict[str, Any]] = {}
        self.customers_by_email: Dict[str, List[str]] = {}
        self.checkout_sessions: Dict[str, Dict[str, Any]] = {}
        self.fail_on: set = set()
        self.webhook_secret = os.environ["STRIPE_WEBHOOK_SECRET"]
        self._next_customer = 0

    def _record(self, method: str, *args):
        self.calls.append((method, args))
        if method in self.fail_on:
            raise ExternalServiceError(f"{method} failed")

    def calls_to(self, method: str) -> List[tuple]:
        return [args for name, args in self.calls if name == method]

    def add_subscription(
        self,
        subscription_id: str,
        customer_id: str,
        status: str = "active",
        cancel_at_period_end: bool = False,
        current_period_end: int = 1893456000,
        price_id: str = "price_test",
    ) -> Dict[str, Any]:
        subscription = {
            "id": subscription_id,
            "object": "subscription",
            "customer": customer_id,
            "status": status,
            "cancel_at_period_end": cancel_at_period_end,
            "current_period_end": current_period_end,
            "items": {"data": [{"price": {"id": price_id}}]},
        }
        self.subscriptions[subscription_id] = subscription
        return subscription

    async def create_customer(self, email, user_id):
        self._record("create_customer", email, user_id)
        self._next_customer += 1
        return f"cus_new_{self._next_customer}"

    async def list_customer_ids_by_email(self, email, limit=3):
        self._record("list_customer_ids_by_email", email, limit)
        return list(self.customers_by_email.get(email, []))[:limit]

    async def create_checkout_session(self, customer_id, price_id, success_url, cancel_url, user_id):
        self._record("create_checkout_session", customer_id, price_id, success_url, cancel_url, user_id)
        return f"https://checkout.stripe.test/{customer_id}"

    async def retrieve_checkout_session(self, session_id):
        self._record("retrieve_checkout_session", session_id)
        return copy.deepcopy(self.checkout_sessions[session_id])

    async def create_portal_session(self, customer_id, return_url):
        self._record("create_portal_session", customer_id, return_url)
        return f"https://billing.stripe.test/{customer_id}"

    async def retrieve_subscription(self, subscription_id):
        self._record("retrieve_subscription", subscription_id)
        return copy.deepcopy(self.subscriptions[subscription_id])

    async def list_subscriptions(self, customer_id, status=None, limit=None):
        self._record("list_subscriptions", customer_id, status, limit)
        found = [
            copy.deepcopy(s) for s in self.subscriptions.values()
            if s["customer"] == customer_id and (status is None or s["status"] == status)
        ]
        return found[:limit] if limit else found

    async def update_subscription(self, subscription_id, cancel_at_period_end):
        self._record("update_subscription", subscription_id, cancel_at_period_end)
        self.subscriptions[subscription_id]["cancel_at_period_end"] = cancel_at_period_end
        return copy.deepcopy(self.subscriptions[subscription_id])

    async def cancel_subscription(self, subscription_id):
        self._record("cancel_subscription", subscription_id)
        self.subscriptions[subscription_id]["status"] = "canceled"
        return copy.deepcopy(self.subscriptions[subscription_id])

    def construct_event(self, payload, signature):
        from services.billing_client import StripeBillingClient
        return StripeBillingClient(api_key=None, webhook_secret=self.webhook_secret).construct_event(
            payload, signature
        )


async def _create_tables():
    async with test_engine.begin() as conn:
        # Import models to ensure they're registered with Base
        import database_models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)


async def _drop_tables():
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def test_db():
    """
    Fixture that provides an isolated SQLite database session for each test.

    This fixture:
    - Creates all tables before the test runs
    - Yields a clean AsyncSession for the test
    - Drops all tables after the test completes
    """
    await _create_tables()

    async with TestAsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    await _drop_tables()


@pytest.fixture
def session_factory(test_db):
    """Session factory for code that opens its own sessions (sweep, races)."""
    return TestAsyncSessionLocal


@pytest.fixture
def billing_client():
    return FakeBillingClient()


@pytest.fixture
def object_store(tmp_path):
    from services.storage_service import LocalObjectStore
    return LocalObjectStore(tmp_path / "media", "/media/")


@pytest.fixture
async def make_user(test_db):
    """Create a principal plus its account record, with optional field overrides."""
    from auth_utils import hash_password
    from crud.principal import PrincipalRepository
    from crud.user import UserRepository

    async def _make_user(email: Optional[str] = None, **fields):
        email = email or f"user-{uuid.uuid4().hex[:8]}@example.com"
        principal = await PrincipalRepository(test_db).create(email, hash_password("Password123!"))
        user = await UserRepository(test_db).create_user(principal.id)
        if fields:
            await UserRepository(test_db).update_user(user, fields)
        await test_db.commit()
        return user

    return _make_user


@pytest.fixture
async def client(test_db, billing_client, object_store):
    """
    HTTP client against the app with the database, billing provider and
    object store replaced by test doubles.
    """
    from main import app
    from database import get_db
    from services.billing_client import get_billing_client
    from services.storage_service import get_object_store

    async def override_get_db():
        async with TestAsyncSessionLocal() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_billing_client] = lambda: billing_client
    app.dependency_overrides[get_object_store] = lambda: object_store

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Bearer header for a user id."""
    from auth_utils import create_jwt

    def _auth_headers(user_id: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_jwt(user_id)}"}

    return _auth_headers
