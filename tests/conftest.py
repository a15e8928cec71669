import os
import uuid
from collections.abc import AsyncGenerator
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

os.environ.setdefault("IDENTITY_JWT_SECRET", "test-secret-for-unit-tests-minimum-32-chars")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["STRIPE_SECRET_KEY"] = ""  # Force mock mode in tests
os.environ["NOTIFICATION_WEBHOOK_URL"] = ""

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from plotshare.config import settings
from plotshare.database import Base, get_db
from plotshare.dependencies import get_notification_dispatcher, get_reconciliation_service
from plotshare.main import app
from plotshare.models.booking import Booking
from plotshare.models.enums import BookingStatus, DisputeReason, UserRole
from plotshare.models.user import User
from plotshare.services.disputes import file_dispute
from plotshare.services.notifications import NotificationDispatcher
from plotshare.services.reconciliation import ReconciliationResult

# Use SQLite for tests (in-memory)
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(TEST_DB_URL, echo=False)
test_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with test_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def notifier() -> MagicMock:
    """Records dispatched events instead of scheduling HTTP deliveries."""
    return MagicMock(spec=NotificationDispatcher)


@pytest.fixture
def reconciliation() -> AsyncMock:
    service = AsyncMock()
    service.apply_resolution.return_value = ReconciliationResult(ok=True, reference="re_test_123")
    return service


@pytest_asyncio.fixture
async def client(
    db: AsyncSession, notifier: MagicMock, reconciliation: AsyncMock
) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_dispatcher] = lambda: notifier
    app.dependency_overrides[get_reconciliation_service] = lambda: reconciliation

    # Reset rate limiter storage between tests to avoid 429 errors
    from plotshare.utils.rate_limit import limiter
    if hasattr(limiter, "_limiter") and hasattr(limiter._limiter, "_storage"):
        limiter._limiter._storage.reset()
    elif hasattr(limiter, "reset"):
        limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _make_user(db: AsyncSession, email: str, role: UserRole = UserRole.MEMBER, **kwargs) -> User:
    user = User(id=uuid.uuid4(), email=email, role=role, **kwargs)
    db.add(user)
    await db.flush()
    return user


@pytest_asyncio.fixture
async def renter(db: AsyncSession) -> User:
    return await _make_user(db, "renter@test.com", first_name="Rita", last_name="Renter")


@pytest_asyncio.fixture
async def owner(db: AsyncSession) -> User:
    return await _make_user(db, "owner@test.com", first_name="Oscar", last_name="Owner")


@pytest_asyncio.fixture
async def staff(db: AsyncSession) -> User:
    return await _make_user(db, "staff@test.com", role=UserRole.ADMIN, first_name="Sam")


@pytest_asyncio.fixture
async def stranger(db: AsyncSession) -> User:
    return await _make_user(db, "stranger@test.com")


@pytest_asyncio.fixture
async def booking(db: AsyncSession, owner: User, renter: User) -> Booking:
    b = Booking(
        id=uuid.uuid4(),
        owner_id=owner.id,
        renter_id=renter.id,
        start_date=date.today() - timedelta(days=10),
        end_date=date.today() + timedelta(days=20),
        total_amount=Decimal("500.00"),
        status=BookingStatus.ACTIVE,
        stripe_payment_intent_id="pi_mock_500",
    )
    db.add(b)
    await db.flush()
    return b


@pytest_asyncio.fixture
async def dispute(db: AsyncSession, booking: Booking, renter: User, notifier: MagicMock):
    """An OPEN dispute filed by the renter."""
    return await file_dispute(
        db,
        renter.id,
        booking.id,
        reason=DisputeReason.ACCESS_ISSUES,
        description="The gate to the plot has been locked since day one.",
        requested_amount=Decimal("150.00"),
        notifier=notifier,
    )


def make_token(user: User, **overrides) -> str:
    payload = {
        "sub": str(user.id),
        "type": "access",
        "iss": settings.IDENTITY_JWT_ISSUER,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=15),
    }
    payload.update(overrides)
    return jwt.encode(payload, settings.IDENTITY_JWT_SECRET, algorithm=settings.IDENTITY_JWT_ALGORITHM)


def auth_header(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user)}"}
