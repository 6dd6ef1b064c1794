"""
Test configuration and fixtures
Fixtures for the async SQLAlchemy stores, fake gateways and the booking service
"""

import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, List, Tuple
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

# Set test environment before the app reads its settings
os.environ["APP_ENV"] = "testing"
os.environ["SECRET_KEY"] = "test-secret-key-that-is-at-least-32-characters"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key-that-is-at-least-32-chars"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_app.db"
os.environ["PAYMENT_MOCK_MODE"] = "true"
os.environ["SENDGRID_API_KEY"] = ""
os.environ["RATE_LIMIT_ENABLED"] = "false"

# Import all models BEFORE creating fixtures (critical for create_all to work)
from app.core.database import Base, DatabaseManager
from app.core.saga import SagaOrchestrator
from app.models import Booking, TourPackage, User, UserRole
from app.models.payment import PaymentMethod
from app.schemas.booking import BookingCreate
from app.services.booking_service import BookingService
from app.services.payment_service import ChargeRequest, ChargeResult, PaymentAdapter, PaymentGateway

NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakePaymentAdapter(PaymentAdapter):
    """Records charges and answers with a canned result"""

    name = "fake"

    def __init__(self, succeed: bool = True, error_detail: str = "Your card was declined."):
        self.succeed = succeed
        self.error_detail = error_detail
        self.requests: List[ChargeRequest] = []

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        self.requests.append(request)
        if not self.succeed:
            return ChargeResult(success=False, error_detail=self.error_detail)
        return ChargeResult(
            success=True,
            transaction_id="txn_test_123",
            payment_intent_id="pi_test_123",
            status="succeeded"
        )


class FakeEmailService:
    """Collects notifications instead of sending them"""

    def __init__(self):
        self.sent: List[Tuple[str, str]] = []
        self.fail = False

    async def _record(self, kind: str, booking: Booking) -> bool:
        if self.fail:
            raise RuntimeError("SendGrid unavailable")
        self.sent.append((kind, booking.booking_reference))
        return True

    async def send_booking_confirmation(self, booking: Booking) -> bool:
        return await self._record("confirmation", booking)

    async def send_booking_cancellation(self, booking: Booking) -> bool:
        return await self._record("cancellation", booking)


class RecordingRefundExecutor:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.refunds = []
        self.payment_intents = []

    async def execute_refund(self, booking, amount, reason):
        if self.fail:
            raise RuntimeError("Refund API down")
        self.refunds.append((booking.booking_reference, amount, reason))
        self.payment_intents.append(booking.payment_intent_id)


@pytest_asyncio.fixture(scope="function")
async def test_db(tmp_path):
    """File-backed SQLite so every session gets its own connection"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_db):
    return async_sessionmaker(
        test_db,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
def db(session_factory) -> DatabaseManager:
    return DatabaseManager(session_factory)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        try:
            yield session
        finally:
            if session.in_transaction():
                await session.rollback()


async def fetch(session_factory, model, identifier):
    """Load a row through a fresh session"""
    async with session_factory() as session:
        return await session.get(model, identifier)


async def count_rows(session_factory, model) -> int:
    from sqlalchemy import func, select

    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))


# User fixtures
@pytest_asyncio.fixture
async def test_user(db_session) -> User:
    user = User(
        email=f"traveler_{uuid4().hex[:8]}@example.com",
        full_name="Test Traveler",
        phone="+1234567890",
        role=UserRole.USER,
    )
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def other_user(db_session) -> User:
    user = User(
        email=f"other_{uuid4().hex[:8]}@example.com",
        full_name="Other Traveler",
        role=UserRole.USER,
    )
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def admin_user(db_session) -> User:
    user = User(
        email=f"admin_{uuid4().hex[:8]}@example.com",
        full_name="Admin User",
        role=UserRole.ADMIN,
    )
    db_session.add(user)
    await db_session.commit()
    return user


async def make_tour(session: AsyncSession, price="500.00", discount="0", slots=5, is_active=True) -> TourPackage:
    tour = TourPackage(
        title="Kyoto Temples",
        destination="Kyoto",
        country="Japan",
        duration_days=4,
        price=Decimal(price),
        discount=Decimal(discount),
        currency="USD",
        cancellation_policy="Tiered refund by days before departure",
        is_active=is_active,
        total_booked=0,
        available_slots=slots,
    )
    session.add(tour)
    await session.commit()
    return tour


@pytest_asyncio.fixture
async def test_tour(db_session) -> TourPackage:
    return await make_tour(db_session)


# Service fixtures
@pytest.fixture
def payment_adapter() -> FakePaymentAdapter:
    return FakePaymentAdapter()


@pytest.fixture
def payment_gateway(payment_adapter) -> PaymentGateway:
    return PaymentGateway({method: payment_adapter for method in PaymentMethod})


@pytest.fixture
def email_service() -> FakeEmailService:
    return FakeEmailService()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def booking_service(db, payment_gateway, email_service, session_factory, clock) -> BookingService:
    return BookingService(
        db=db,
        payment_gateway=payment_gateway,
        email_service=email_service,
        orchestrator=SagaOrchestrator(session_factory),
        clock=clock,
    )


def booking_payload(tour_id, days_ahead: int = 40, travelers: int = 1, payment_method="credit_card") -> dict:
    start = NOW + timedelta(days=days_ahead)
    return {
        "tour_package_id": str(tour_id),
        "travelers": [
            {
                "name": f"Traveler {index + 1}",
                "email": f"traveler{index + 1}@example.com",
                "phone": "+1234567890",
                "age": 30 + index,
                "gender": "female" if index % 2 else "male",
                "nationality": "Canadian",
            }
            for index in range(travelers)
        ],
        "travel_dates": {
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(days=4)).isoformat(),
        },
        "payment_method": payment_method,
        "special_requests": "Window seat on transfers",
    }


def booking_request(tour_id, **kwargs) -> BookingCreate:
    return BookingCreate.model_validate(booking_payload(tour_id, **kwargs))
