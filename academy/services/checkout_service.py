"""
Checkout orchestrator
Builds the checkout context, gates eligibility, creates the order and
dispatches it to the gateway, bank transfer or free enrollment flow.
"""

from typing import List, Optional, Tuple
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from academy.core.clock import utcnow, ensure_aware
from academy.core.exceptions import (
    BusinessException,
    CheckoutValidationError,
    EligibilityBlocked,
    ExternalProviderError,
    NotFoundError,
    PermissionDenied,
    StateConflict,
)
from academy.models.bank_account import BankAccount
from academy.models.checkout import (
    CheckoutContext,
    CheckoutOutcome,
    CheckoutRequest,
    CheckoutResult,
    Eligibility,
    EligibilityBlockReason,
    BLOCK_REASON_MESSAGES,
    TransferSentRequest,
)
from academy.models.coupon import CouponValidation
from academy.models.course import Course, CourseStatus, ENROLLABLE_STATUSES
from academy.models.notification import EmailTemplate
from academy.models.order import Currency, Order, OrderCreate, OrderStatus, PaymentMethod
from academy.models.user import AuthenticatedUser
from academy.repositories.bank_account_repository import BankAccountRepository
from academy.repositories.course_repository import CourseRepository
from academy.repositories.enrollment_repository import EnrollmentRepository
from academy.repositories.user_repository import UserRepository
from academy.services.common_cache import SimpleCache, bank_account_cache
from academy.services.coupon_service import CouponService
from academy.services.enrollment_service import EnrollmentService
from academy.services.notification_service import NotificationService, build_snapshot
from academy.services.order_service import OrderService
from academy.services.payment_gateway_service import MercadoPagoGateway
from academy.services.price_calculator_service import PriceCalculatorService

logger = logging.getLogger(__name__)

FINISHED_STATUSES = frozenset({CourseStatus.FINISHED, CourseStatus.IN_PROGRESS})


class CheckoutService:
    """Checkout business service"""

    def __init__(
        self,
        db: AsyncSession,
        course_repo: CourseRepository,
        bank_account_repo: BankAccountRepository,
        user_repo: UserRepository,
        enrollment_repo: EnrollmentRepository,
        order_service: OrderService,
        coupon_service: CouponService,
        price_calculator: PriceCalculatorService,
        gateway: MercadoPagoGateway,
        enrollment_service: EnrollmentService,
        notification_service: NotificationService,
        cache: Optional[SimpleCache] = None
    ):
        self.db = db
        self.course_repo = course_repo
        self.bank_account_repo = bank_account_repo
        self.user_repo = user_repo
        self.enrollment_repo = enrollment_repo
        self.order_service = order_service
        self.coupon_service = coupon_service
        self.price_calculator = price_calculator
        self.gateway = gateway
        self.enrollment_service = enrollment_service
        self.notification_service = notification_service
        self.cache = cache or bank_account_cache
        self.cache_prefix = "bank"
        self.cache_ttl = 600

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    async def get_course(self, course_id: str) -> Course:
        db_course = await self.course_repo.get_by_id(course_id)
        if not db_course:
            raise NotFoundError(f"Course {course_id} not found", {"course_id": course_id})
        return self.course_repo.to_model(db_course)

    async def get_active_bank_accounts(self, use_cache: bool = True) -> List[BankAccount]:
        cache_key = f"{self.cache_prefix}:active:all"

        if use_cache:
            cached_accounts = await self.cache.get(cache_key)
            if cached_accounts:
                return [BankAccount(**account) for account in cached_accounts]

        db_accounts = await self.bank_account_repo.get_active()
        accounts = [self.bank_account_repo.to_model(account) for account in db_accounts]

        if use_cache:
            await self.cache.set(cache_key, [account.model_dump(mode="json") for account in accounts], ttl=self.cache_ttl)

        return accounts

    async def check_eligibility(self, user_id: str, course: Course) -> Eligibility:
        """
        First failing check wins: existing enrollment, course over,
        capacity, course status and registration deadline.
        """
        if await self.enrollment_repo.get_active_for_user(user_id, course.id):
            return Eligibility(can_enroll=False, block_reason=EligibilityBlockReason.ALREADY_ENROLLED)

        if course.status in FINISHED_STATUSES:
            return Eligibility(can_enroll=False, block_reason=EligibilityBlockReason.COURSE_FINISHED)

        if course.status == CourseStatus.FULL or course.is_full:
            return Eligibility(can_enroll=False, block_reason=EligibilityBlockReason.COURSE_FULL)

        if course.status not in ENROLLABLE_STATUSES:
            return Eligibility(can_enroll=False, block_reason=EligibilityBlockReason.COURSE_NOT_OPEN)

        deadline = ensure_aware(course.registration_deadline)
        if deadline and utcnow() > deadline:
            return Eligibility(can_enroll=False, block_reason=EligibilityBlockReason.COURSE_NOT_OPEN)

        return Eligibility(can_enroll=True)

    async def validate_coupon(self, user: AuthenticatedUser, course_id: str, coupon_code: str) -> CouponValidation:
        """Coupon preview for the checkout page; never consumes a use"""
        course = await self.get_course(course_id)
        return await self.coupon_service.validate(
            coupon_code,
            course.id,
            user.email,
            self.price_calculator.base_price(course, Currency.USD)
        )

    async def get_checkout_context(
        self,
        user: AuthenticatedUser,
        course_id: str,
        coupon_code: Optional[str] = None
    ) -> CheckoutContext:
        course = await self.get_course(course_id)
        eligibility = await self.check_eligibility(user.user_id, course)

        coupon_validation = None
        if coupon_code and coupon_code.strip():
            coupon_validation = await self.coupon_service.validate(
                coupon_code,
                course.id,
                user.email,
                self.price_calculator.base_price(course, Currency.USD)
            )

        pricing = self.price_calculator.calculate_all(course, coupon_validation)

        return CheckoutContext(
            user_id=user.user_id,
            email=user.email,
            course=course,
            coupon_validation=coupon_validation,
            pricing=pricing,
            is_free=self.price_calculator.is_free(pricing),
            eligibility=eligibility,
            bank_accounts=await self.get_active_bank_accounts(),
            open_order=await self.order_service.get_open_order(user.user_id, course.id)
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit_checkout(self, user: AuthenticatedUser, request: CheckoutRequest) -> CheckoutResult:
        """
        Run a checkout submission end to end.
        Business failures come back as a typed CheckoutResult.
        """
        try:
            context = await self.get_checkout_context(user, request.course_id, request.coupon_code)
        except NotFoundError as e:
            return self._failure(CheckoutOutcome.INVALID, e)

        if not context.can_enroll:
            return CheckoutResult(
                outcome=CheckoutOutcome.BLOCKED,
                block_reason=context.eligibility.block_reason,
                error_code=context.eligibility.block_reason.value,
                message=context.eligibility.message
            )

        validation = context.coupon_validation
        if validation and not validation.is_valid:
            return CheckoutResult(
                outcome=CheckoutOutcome.INVALID,
                error_code=validation.reason.value,
                message=validation.message
            )

        if context.is_free:
            payment_method, currency = PaymentMethod.FREE, Currency.USD
        elif request.payment_method == PaymentMethod.FREE:
            return CheckoutResult(
                outcome=CheckoutOutcome.INVALID,
                error_code=CheckoutValidationError.code,
                message="This course is not free, choose a payment method"
            )
        else:
            payment_method, currency = request.payment_method, request.currency

        pricing = context.pricing[currency]

        try:
            bank_account_id = None
            if payment_method == PaymentMethod.BANK_TRANSFER and request.bank_account_id:
                bank_account_id = self._pick_bank_account(context.bank_accounts, request.bank_account_id).id

            order_data = OrderCreate(
                user_id=user.user_id,
                course_id=context.course.id,
                payment_method=payment_method,
                currency=currency,
                coupon_id=context.applied_coupon_id,
                bank_account_id=bank_account_id,
                base_amount=pricing.base_amount,
                discount_percent=pricing.discount_percent,
                discount_amount=pricing.discount_amount,
                final_amount=pricing.final_amount
            )

            if payment_method == PaymentMethod.FREE:
                return await self._checkout_free(order_data)
            if payment_method == PaymentMethod.BANK_TRANSFER:
                return await self._checkout_bank_transfer(user, context, order_data)
            return await self._checkout_gateway(user, context, order_data)

        except EligibilityBlocked as e:
            await self.db.rollback()
            reason = EligibilityBlockReason(e.reason)
            return CheckoutResult(
                outcome=CheckoutOutcome.BLOCKED,
                block_reason=reason,
                error_code=reason.value,
                message=BLOCK_REASON_MESSAGES[reason]
            )
        except BusinessException as e:
            await self.db.rollback()
            return self._failure(CheckoutOutcome.INVALID, e)

    def _failure(self, outcome: CheckoutOutcome, error: BusinessException, order: Optional[Order] = None) -> CheckoutResult:
        return CheckoutResult(
            outcome=outcome,
            order=order,
            error_code=error.details.get("reason", error.code),
            message=error.message,
            retryable=error.retryable
        )

    def _pick_bank_account(self, accounts: List[BankAccount], bank_account_id: str) -> BankAccount:
        for account in accounts:
            if account.id == bank_account_id:
                return account
        raise CheckoutValidationError("Unknown or inactive bank account", {"bank_account_id": bank_account_id})

    @staticmethod
    def _matches(order: Order, order_data: OrderCreate) -> bool:
        """An open order can be resumed when the purchase terms are unchanged"""
        return (
            order.payment_method == order_data.payment_method
            and order.currency == order_data.currency
            and order.coupon_id == order_data.coupon_id
            and order.bank_account_id == order_data.bank_account_id
            and order.final_amount == order_data.final_amount
        )

    async def _acquire_order(self, order_data: OrderCreate) -> Tuple[Order, bool, Optional[str]]:
        """
        Return (order, reused, cancelled_order_id). At most one open order
        exists per user and course: a matching one is resumed, a stale one
        is cancelled first. The caller clears the cancelled order's cache
        once its transaction commits.
        """
        cancelled_id = None
        open_order = await self.order_service.get_open_order(order_data.user_id, order_data.course_id)
        if open_order:
            if self._matches(open_order, order_data):
                logger.info(f"Resuming open order {open_order.order_number}")
                return open_order, True, None
            if open_order.transfer_sent_at:
                raise StateConflict(
                    "A bank transfer was already reported for this course, wait for its confirmation",
                    {"order_id": open_order.id}
                )
            await self.order_service.transition(open_order.id, OrderStatus.CANCELLED, strict=True)
            logger.info(f"Cancelled stale order {open_order.order_number} before a new checkout")
            cancelled_id = open_order.id

        try:
            order = await self.order_service.create_order(order_data)
        except IntegrityError:
            # a concurrent submission created the open order first
            await self.db.rollback()
            open_order = await self.order_service.get_open_order(order_data.user_id, order_data.course_id)
            if open_order and self._matches(open_order, order_data):
                return open_order, True, None
            raise StateConflict("Another checkout for this course is in progress, please retry")
        return order, False, cancelled_id

    async def _clear_order_caches(self, *order_ids: Optional[str]) -> None:
        for order_id in order_ids:
            if order_id:
                await self.order_service.clear_order_cache(order_id)

    async def _checkout_free(self, order_data: OrderCreate) -> CheckoutResult:
        order, _, cancelled_id = await self._acquire_order(order_data)
        await self.order_service.transition(order.id, OrderStatus.PAID, strict=True)
        result = await self.enrollment_service.fulfill_paid_order(order.id)
        await self._clear_order_caches(cancelled_id)
        return CheckoutResult(
            outcome=CheckoutOutcome.COMPLETED,
            order=await self.order_service.get_order(order.id),
            enrollment=result.enrollment
        )

    async def _checkout_bank_transfer(
        self,
        user: AuthenticatedUser,
        context: CheckoutContext,
        order_data: OrderCreate
    ) -> CheckoutResult:
        order, reused, cancelled_id = await self._acquire_order(order_data)
        if order.status == OrderStatus.INITIATED:
            await self.order_service.transition(order.id, OrderStatus.PENDING_PAYMENT, strict=True)
        await self.db.commit()
        await self._clear_order_caches(order.id, cancelled_id)

        order = await self.order_service.get_order(order.id)
        if not reused:
            snapshot = build_snapshot(
                order,
                context.course,
                user.email,
                user.name,
                coupon_code=context.coupon_validation.code if context.applied_coupon_id else None,
                bank_accounts=context.bank_accounts
            )
            self.notification_service.dispatch(EmailTemplate.TRANSFER_INSTRUCTIONS, [user.email], snapshot)

        return CheckoutResult(
            outcome=CheckoutOutcome.PENDING_TRANSFER,
            order=order,
            bank_accounts=context.bank_accounts
        )

    async def _checkout_gateway(
        self,
        user: AuthenticatedUser,
        context: CheckoutContext,
        order_data: OrderCreate
    ) -> CheckoutResult:
        order, _, cancelled_id = await self._acquire_order(order_data)
        if order.mp_preference_id and order.mp_checkout_url:
            return CheckoutResult(outcome=CheckoutOutcome.REDIRECT, order=order, redirect_url=order.mp_checkout_url)

        # the order row is durable before the provider is called
        if order.status == OrderStatus.INITIATED:
            await self.order_service.transition(order.id, OrderStatus.PENDING_PAYMENT, strict=True)
        await self.db.commit()
        await self._clear_order_caches(cancelled_id)
        order = await self.order_service.get_order(order.id)

        try:
            preference = await self.gateway.create_preference(order, context.course.title, user.email, user.name)
        except ExternalProviderError as e:
            return self._failure(CheckoutOutcome.PROVIDER_ERROR, e, order=order)

        if not await self.order_service.set_preference(order.id, preference.preference_id, preference.redirect_url):
            await self.db.rollback()
            raise StateConflict("The order was closed while contacting the payment provider", {"order_id": order.id})
        await self.db.commit()
        await self.order_service.clear_order_cache(order.id)

        return CheckoutResult(
            outcome=CheckoutOutcome.REDIRECT,
            order=await self.order_service.get_order(order.id),
            redirect_url=preference.redirect_url
        )

    # ------------------------------------------------------------------
    # Order follow-up
    # ------------------------------------------------------------------

    async def get_order_for_user(self, user: AuthenticatedUser, order_id: str, use_cache: bool = True) -> Order:
        """Owner or superadmin view of an order"""
        order = await self.order_service.get_order(order_id, use_cache=use_cache)
        if not order:
            raise NotFoundError(f"Order {order_id} not found", {"order_id": order_id})
        if order.user_id != user.user_id and not user.is_superadmin:
            raise PermissionDenied("This order belongs to another user")
        return order

    async def get_transfer_order_for_owner(self, user: AuthenticatedUser, order_id: str) -> Order:
        order = await self.get_order_for_user(user, order_id, use_cache=False)
        if order.user_id != user.user_id:
            raise PermissionDenied("Only the buyer can report a transfer")
        if order.payment_method != PaymentMethod.BANK_TRANSFER or order.status != OrderStatus.PENDING_PAYMENT:
            raise StateConflict(
                "This order is not waiting for a bank transfer",
                {"order_id": order_id, "status": order.status.value}
            )
        return order

    async def mark_transfer_sent(
        self,
        user: AuthenticatedUser,
        order_id: str,
        request: TransferSentRequest
    ) -> Order:
        """
        Record the payer's reference and proof. The order stays in
        pending_payment until an admin confirms the money arrived.
        """
        await self.get_transfer_order_for_owner(user, order_id)

        if not await self.order_service.record_transfer_sent(order_id, request.reference, request.proof_url):
            await self.db.rollback()
            raise StateConflict("This order is not waiting for a bank transfer", {"order_id": order_id})
        await self.db.commit()
        await self.order_service.clear_order_cache(order_id)

        order = await self.order_service.get_order(order_id)
        course = await self.get_course(order.course_id)
        snapshot = build_snapshot(order, course, user.email, user.name)
        admins = self.notification_service.admin_recipients(await self.user_repo.get_superadmin_emails())
        self.notification_service.dispatch(EmailTemplate.ADMIN_TRANSFER_NOTIFICATION, admins, snapshot)
        return order

    async def confirm_transfer_payment(self, admin: AuthenticatedUser, order_id: str) -> CheckoutResult:
        """Admin asserts the transfer arrived: pending_payment -> paid, then enrollment"""
        if not admin.is_superadmin:
            raise PermissionDenied("Only administrators can confirm transfers")

        order = await self.order_service.get_order(order_id)
        if not order:
            raise NotFoundError(f"Order {order_id} not found", {"order_id": order_id})
        if order.payment_method != PaymentMethod.BANK_TRANSFER:
            raise StateConflict("Only bank transfer orders are confirmed manually", {"order_id": order_id})

        result = await self.order_service.transition(order_id, OrderStatus.PAID, strict=True)
        if not result.applied and result.current_status != OrderStatus.PAID:
            await self.db.rollback()
            raise StateConflict(
                "The order changed status during confirmation",
                {"order_id": order_id, "status": result.current_status.value}
            )

        logger.info(f"Transfer for order {order.order_number} confirmed by {admin.user_id}")
        fulfillment = await self.enrollment_service.fulfill_paid_order(order_id)
        return CheckoutResult(
            outcome=CheckoutOutcome.COMPLETED,
            order=await self.order_service.get_order(order_id),
            enrollment=fulfillment.enrollment
        )

    async def cancel_order(self, user: AuthenticatedUser, order_id: str) -> Order:
        """Buyer or admin cancels an order that was not paid yet"""
        await self.get_order_for_user(user, order_id, use_cache=False)

        result = await self.order_service.transition(order_id, OrderStatus.CANCELLED, strict=True)
        await self.db.commit()
        await self.order_service.clear_order_cache(order_id)
        if result.applied:
            logger.info(f"Order {order_id} cancelled by {user.user_id}")
        return await self.order_service.get_order(order_id)

    async def get_user_orders(self, user: AuthenticatedUser) -> List[Order]:
        return await self.order_service.get_user_orders(user.user_id)
