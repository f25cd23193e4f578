# Shared pytest configuration and fixtures for all test types
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

# Create test limiter with no default limits and in-memory storage
test_limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri="memory://",
)

# Patch the limiter before importing the app so decorators use test limiter
with patch("common.providers.rate_limiter.limiter.limiter", test_limiter):
    from api.main import app

from common.core.dates import utcnow
from common.db.base import Base
from common.providers.locking.memory_lock import MemoryLock
from packages.accounts.models.database.account import AccountEntity
from packages.auth.dependencies import get_current_user
from packages.auth.models.domain.authenticated_user import AuthenticatedUser
from packages.billing import catalog
from packages.billing.models.database import (  # noqa
    PendingWebhookEventEntity,
    ProcessedWebhookEventEntity,
    SubscriptionEntity,
)
from packages.billing.models.domain.enums import (
    BillingCycle,
    Currency,
    PlanKey,
    SubscriptionStatus,
)
from packages.billing.models.domain.subscription import Subscription
from packages.billing.providers.payment.interface import (
    CheckoutSession,
    PaymentProviderInterface,
)

# Test database URL
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine and initialize schema."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_connection(test_engine):
    """Create test connection with outer transaction for rollback isolation."""
    async with test_engine.connect() as connection:
        trans = await connection.begin()
        yield connection
        await trans.rollback()


@pytest_asyncio.fixture(scope="function")
async def test_session_factory(test_connection):
    """Create session factory bound to test connection.

    Using join_transaction_mode="create_savepoint" so transaction() blocks
    (and their rollbacks on conflict) map onto savepoints.
    """
    return async_sessionmaker(
        bind=test_connection,
        class_=AsyncSession,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )


@pytest_asyncio.fixture(scope="function")
async def test_db(test_session_factory):
    """Create a test database session."""
    async with test_session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function", autouse=True)
async def patch_lazy_sessions(test_session_factory, monkeypatch):
    """
    Patch session factories to use test database.

    This allows real transaction() and get_session() to run with proper
    commit/rollback/ContextVar semantics while using the test database.
    """
    monkeypatch.setattr("common.db.session.AsyncSessionLocal", test_session_factory)
    monkeypatch.setattr(
        "common.db.session.AsyncSessionLocalReadonly", test_session_factory
    )


@pytest.fixture(autouse=True)
def memory_lock_provider(monkeypatch):
    """Fresh in-process lock provider per test."""
    provider = MemoryLock()
    monkeypatch.setattr("common.providers.locking.factory._lock_provider", provider)
    return provider


@pytest.fixture(autouse=True)
def mock_payment_provider(monkeypatch):
    """Mocked Stripe gateway; no test talks to the processor."""
    provider = MagicMock(spec=PaymentProviderInterface)
    provider.create_customer = AsyncMock(return_value="cus_new123")
    provider.create_checkout_session = AsyncMock(
        return_value=CheckoutSession(
            session_id="cs_test_123",
            url="https://checkout.stripe.com/c/pay/cs_test_123",
        )
    )
    provider.retrieve_subscription = AsyncMock()
    provider.update_subscription = AsyncMock()
    provider.parse_webhook_event = MagicMock()
    provider.health_check = AsyncMock(return_value=True)
    monkeypatch.setattr(
        "packages.billing.providers.payment.factory._payment_provider", provider
    )
    return provider


@pytest.fixture
def now() -> datetime:
    return utcnow().replace(microsecond=0)


@pytest_asyncio.fixture(scope="function")
async def sample_account(test_db: AsyncSession):
    """Create a sample account for testing."""
    account = AccountEntity(name="Test Account", email="owner@example.com")
    test_db.add(account)
    await test_db.commit()
    await test_db.refresh(account)
    return account


@pytest_asyncio.fixture(scope="function")
async def other_account(test_db: AsyncSession):
    account = AccountEntity(name="Other Account", email="other@example.com")
    test_db.add(account)
    await test_db.commit()
    await test_db.refresh(account)
    return account


@pytest.fixture
def subscription_factory(test_db: AsyncSession, now: datetime):
    """Insert a subscription row directly and return its domain model."""

    async def _create(account_id: int, **overrides) -> Subscription:
        plan = catalog.get_plan(overrides.pop("plan", PlanKey.STARTER))
        cycle = overrides.pop("billing_cycle", BillingCycle.MONTHLY)
        amount_cents = plan.price_cents(cycle)
        values = dict(
            account_id=account_id,
            plan=plan.key.value,
            status=SubscriptionStatus.ACTIVE.value,
            billing_cycle=cycle.value,
            currency=Currency.USD.value,
            amount_cents=amount_cents,
            mrr_cents=catalog.compute_mrr_cents(amount_cents, cycle),
            stripe_customer_id=f"cus_{account_id}",
            stripe_subscription_id=f"sub_{account_id}",
            started_at=now - timedelta(days=10),
            current_period_start=now - timedelta(days=10),
            current_period_end=now + timedelta(days=20),
            entitlements=plan.entitlements.model_dump(),
            usage_reset_at=now - timedelta(days=10),
            last_event_at=now - timedelta(days=10),
        )
        if plan.key == PlanKey.FREE:
            values.update(stripe_customer_id=None, stripe_subscription_id=None)
        values.update(overrides)
        if isinstance(values["status"], SubscriptionStatus):
            values["status"] = values["status"].value

        entity = SubscriptionEntity(**values)
        test_db.add(entity)
        await test_db.commit()
        await test_db.refresh(entity)
        return Subscription.model_validate(entity)

    return _create


@pytest_asyncio.fixture(scope="function")
async def sample_subscription(sample_account, subscription_factory):
    """Active monthly Starter subscription for the sample account."""
    return await subscription_factory(sample_account.id)


@pytest.fixture
def test_user(sample_account) -> AuthenticatedUser:
    return AuthenticatedUser(account_id=sample_account.id, user_id="user_1")


@pytest.fixture
def admin_user(sample_account) -> AuthenticatedUser:
    return AuthenticatedUser(account_id=sample_account.id, user_id="admin_1", is_admin=True)


async def _client_for(user):
    app.dependency_overrides[get_current_user] = lambda: user
    test_limiter.reset()
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def client(test_user):
    """Test client authenticated as a regular account member."""
    async for ac in _client_for(test_user):
        yield ac


@pytest_asyncio.fixture(scope="function")
async def admin_client(admin_user):
    """Test client authenticated as an account admin."""
    async for ac in _client_for(admin_user):
        yield ac


@pytest_asyncio.fixture(scope="function")
async def anonymous_client():
    """Test client with no forwarded identity."""
    test_limiter.reset()
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
