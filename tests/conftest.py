"""
Test configuration - shared pytest fixtures
"""

import uuid
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from academy.core.config import Settings, Environment
from academy.core.database import Base
from academy.models.database import (
    UserDB,
    StudentDB,
    CourseDB,
    CouponDB,
    BankAccountDB,
)
from academy.repositories import (
    BankAccountRepository,
    CouponRepository,
    CourseRepository,
    EnrollmentRepository,
    OrderRepository,
    UserRepository,
)
from academy.services.checkout_service import CheckoutService
from academy.services.common_cache import SimpleCache
from academy.services.coupon_service import CouponService
from academy.services.enrollment_service import EnrollmentService
from academy.services.notification_service import NotificationService
from academy.services.order_service import OrderService
from academy.services.payment_gateway_service import MercadoPagoGateway
from academy.services.payment_webhook_service import PaymentWebhookService
from academy.services.price_calculator_service import PriceCalculatorService

WEBHOOK_SECRET = "test-webhook-secret"


@pytest.fixture
def test_settings():
    """Settings isolated from any local .env file"""
    return Settings(
        _env_file=None,
        environment=Environment.TESTING,
        debug=False,
        app_url="https://academy.test",
        mercadopago_access_token="TEST-access-token",
        mercadopago_webhook_secret=WEBHOOK_SECRET,
        mercadopago_api_url="https://api.mercadopago.test",
        resend_api_key="re_test",
        admin_notification_emails=["admin@academy.test"],
    )


@pytest_asyncio.fixture
async def test_db_engine():
    """In-memory SQLite shared by every session of a test"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_db_engine) -> AsyncSession:
    session_maker = async_sessionmaker(test_db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session


@pytest.fixture
def null_cache():
    """Cache without a Redis client: every read is a miss"""
    return SimpleCache(key_prefix="test:")


@pytest.fixture
def email_sender():
    sender = MagicMock()
    sender.send = AsyncMock()
    return sender


@pytest.fixture
def notification_service(email_sender, test_settings):
    return NotificationService(email_sender, test_settings)


@pytest.fixture
def mock_gateway():
    """Gateway double with AsyncMock coroutine methods"""
    return MagicMock(spec=MercadoPagoGateway)


def build_services(db_session, settings, gateway, notification_service, cache) -> SimpleNamespace:
    """The service graph as the API wires it, over one session"""
    order_service = OrderService(OrderRepository(db_session), cache=cache)
    enrollment_service = EnrollmentService(
        db=db_session,
        order_service=order_service,
        enrollment_repo=EnrollmentRepository(db_session),
        course_repo=CourseRepository(db_session),
        coupon_repo=CouponRepository(db_session),
        user_repo=UserRepository(db_session),
        notification_service=notification_service
    )
    checkout_service = CheckoutService(
        db=db_session,
        course_repo=CourseRepository(db_session),
        bank_account_repo=BankAccountRepository(db_session),
        user_repo=UserRepository(db_session),
        enrollment_repo=EnrollmentRepository(db_session),
        order_service=order_service,
        coupon_service=CouponService(CouponRepository(db_session)),
        price_calculator=PriceCalculatorService(settings.default_usd_to_uyu_rate),
        gateway=gateway,
        enrollment_service=enrollment_service,
        notification_service=notification_service,
        cache=cache
    )
    webhook_service = PaymentWebhookService(
        db=db_session,
        gateway=gateway,
        order_service=order_service,
        enrollment_service=enrollment_service,
        notification_service=notification_service,
        course_repo=CourseRepository(db_session),
        user_repo=UserRepository(db_session)
    )
    return SimpleNamespace(
        order=order_service,
        enrollment=enrollment_service,
        checkout=checkout_service,
        webhook=webhook_service
    )


@pytest.fixture
def services(db_session, test_settings, mock_gateway, notification_service, null_cache):
    return build_services(db_session, test_settings, mock_gateway, notification_service, null_cache)


@pytest.fixture
def services_for(test_settings, mock_gateway, notification_service, null_cache):
    """Service graph factory for tests that need more than one session"""
    def _build(session: AsyncSession) -> SimpleNamespace:
        return build_services(session, test_settings, mock_gateway, notification_service, null_cache)
    return _build


def _new_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def make_user(db_session):
    async def _make(**overrides) -> UserDB:
        data = {
            "id": _new_id(),
            "email": f"student-{uuid.uuid4().hex[:8]}@academy.test",
            "name": "Ana Pereira",
            "role": "student",
        }
        data.update(overrides)
        user = UserDB(**data)
        db_session.add(user)
        await db_session.commit()
        return user
    return _make


@pytest.fixture
def make_student(db_session):
    async def _make(user: UserDB, **overrides) -> StudentDB:
        data = {"id": _new_id(), "user_id": user.id, "first_name": "Ana", "last_name": "Pereira"}
        data.update(overrides)
        student = StudentDB(**data)
        db_session.add(student)
        await db_session.commit()
        return student
    return _make


@pytest.fixture
def make_course(db_session):
    async def _make(**overrides) -> CourseDB:
        course_id = overrides.pop("id", _new_id())
        data = {
            "id": course_id,
            "slug": f"course-{course_id[:8]}",
            "title": "Introduction to Wine Tasting",
            "type": "cata",
            "price_usd": Decimal("100.00"),
            "price_uyu": None,
            "max_capacity": 20,
            "enrolled_count": 0,
            "status": "enrolling",
            "modality": "presencial",
            "address": "Rambla 123, Montevideo",
        }
        data.update(overrides)
        course = CourseDB(**data)
        db_session.add(course)
        await db_session.commit()
        return course
    return _make


@pytest.fixture
def make_coupon(db_session):
    async def _make(**overrides) -> CouponDB:
        data = {
            "id": _new_id(),
            "code": "HALF",
            "discount_percent": 50,
            "max_uses": 10,
            "current_uses": 0,
            "is_active": True,
        }
        data.update(overrides)
        coupon = CouponDB(**data)
        db_session.add(coupon)
        await db_session.commit()
        return coupon
    return _make


@pytest.fixture
def make_bank_account(db_session):
    async def _make(**overrides) -> BankAccountDB:
        data = {
            "id": _new_id(),
            "bank_name": "BROU",
            "account_holder": "Tinta Academy",
            "account_type": "Caja de ahorro",
            "account_number": "001234567-00001",
            "currency": "UYU",
            "display_order": 0,
            "is_active": True,
        }
        data.update(overrides)
        account = BankAccountDB(**data)
        db_session.add(account)
        await db_session.commit()
        return account
    return _make
