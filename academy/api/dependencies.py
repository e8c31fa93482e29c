"""
FastAPI dependencies: request-scoped sessions, caller identity and service wiring
"""

from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from academy.core.config import Settings
from academy.core.exceptions import PermissionDenied
from academy.models.user import AuthenticatedUser, UserRole
from academy.repositories import (
    BankAccountRepository,
    CouponRepository,
    CourseRepository,
    EnrollmentRepository,
    OrderRepository,
    UserRepository,
)
from academy.services.checkout_service import CheckoutService
from academy.services.coupon_service import CouponService
from academy.services.enrollment_service import EnrollmentService
from academy.services.notification_service import NotificationService
from academy.services.order_service import OrderService
from academy.services.payment_gateway_service import MercadoPagoGateway
from academy.services.payment_webhook_service import PaymentWebhookService
from academy.services.price_calculator_service import PriceCalculatorService
from academy.services.upload_service import UploadService


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async with request.app.state.database.session() as session:
        yield session


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_gateway(request: Request) -> MercadoPagoGateway:
    return request.app.state.gateway


def get_notification_service(request: Request) -> NotificationService:
    return request.app.state.notification_service


def get_upload_service(request: Request) -> UploadService:
    return request.app.state.upload_service


async def get_current_user(
    x_user_id: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None),
    x_user_role: str = Header(UserRole.STUDENT.value),
    x_user_name: Optional[str] = Header(None)
) -> AuthenticatedUser:
    """Identity asserted by the upstream authentication gateway"""
    if not x_user_id or not x_user_email:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    try:
        role = UserRole(x_user_role.lower())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown role")
    return AuthenticatedUser(user_id=x_user_id, email=x_user_email, name=x_user_name, role=role)


async def require_superadmin(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
    if not user.is_superadmin:
        raise PermissionDenied("Administrator role required")
    return user


def get_order_service(db: AsyncSession = Depends(get_db)) -> OrderService:
    return OrderService(OrderRepository(db))


def get_enrollment_service(
    db: AsyncSession = Depends(get_db),
    order_service: OrderService = Depends(get_order_service),
    notification_service: NotificationService = Depends(get_notification_service)
) -> EnrollmentService:
    return EnrollmentService(
        db=db,
        order_service=order_service,
        enrollment_repo=EnrollmentRepository(db),
        course_repo=CourseRepository(db),
        coupon_repo=CouponRepository(db),
        user_repo=UserRepository(db),
        notification_service=notification_service
    )


def get_checkout_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    order_service: OrderService = Depends(get_order_service),
    enrollment_service: EnrollmentService = Depends(get_enrollment_service),
    gateway: MercadoPagoGateway = Depends(get_gateway),
    notification_service: NotificationService = Depends(get_notification_service)
) -> CheckoutService:
    return CheckoutService(
        db=db,
        course_repo=CourseRepository(db),
        bank_account_repo=BankAccountRepository(db),
        user_repo=UserRepository(db),
        enrollment_repo=EnrollmentRepository(db),
        order_service=order_service,
        coupon_service=CouponService(CouponRepository(db)),
        price_calculator=PriceCalculatorService(settings.default_usd_to_uyu_rate),
        gateway=gateway,
        enrollment_service=enrollment_service,
        notification_service=notification_service
    )


def get_webhook_service(
    db: AsyncSession = Depends(get_db),
    order_service: OrderService = Depends(get_order_service),
    enrollment_service: EnrollmentService = Depends(get_enrollment_service),
    gateway: MercadoPagoGateway = Depends(get_gateway),
    notification_service: NotificationService = Depends(get_notification_service)
) -> PaymentWebhookService:
    return PaymentWebhookService(
        db=db,
        gateway=gateway,
        order_service=order_service,
        enrollment_service=enrollment_service,
        notification_service=notification_service,
        course_repo=CourseRepository(db),
        user_repo=UserRepository(db)
    )
