"""
Enrollment creator
Turns a paid order into exactly one active enrollment
"""

import logging

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from academy.core.exceptions import CheckoutValidationError, EligibilityBlocked, NotFoundError, StateConflict
from academy.models.checkout import EligibilityBlockReason, BLOCK_REASON_MESSAGES
from academy.models.coupon import CouponInvalidReason, COUPON_ERROR_MESSAGES
from academy.models.enrollment import FulfillmentResult
from academy.models.notification import EmailTemplate
from academy.models.order import Order, OrderStatus, PaymentMethod
from academy.repositories.coupon_repository import CouponRepository
from academy.repositories.course_repository import CourseRepository
from academy.repositories.enrollment_repository import EnrollmentRepository
from academy.repositories.user_repository import UserRepository
from academy.services.notification_service import NotificationService, build_snapshot
from academy.services.order_service import OrderService

logger = logging.getLogger(__name__)
event_logger = structlog.get_logger()


class EnrollmentService:
    """Enrollment creation for paid and free orders"""

    def __init__(
        self,
        db: AsyncSession,
        order_service: OrderService,
        enrollment_repo: EnrollmentRepository,
        course_repo: CourseRepository,
        coupon_repo: CouponRepository,
        user_repo: UserRepository,
        notification_service: NotificationService
    ):
        self.db = db
        self.order_service = order_service
        self.enrollment_repo = enrollment_repo
        self.course_repo = course_repo
        self.coupon_repo = coupon_repo
        self.user_repo = user_repo
        self.notification_service = notification_service

    async def create_enrollment_for_order(self, order: Order) -> FulfillmentResult:
        """
        Write the enrollment, seat and coupon use for a paid order.
        Runs inside the caller's transaction and does not commit.

        Idempotent: an existing active enrollment of the student in the
        course is returned unchanged. Free orders are rejected when the
        course filled up meanwhile; paid orders are always honoured and the
        enrollment is flagged over capacity.
        """
        if order.status != OrderStatus.PAID:
            raise StateConflict(
                "Only paid orders can be fulfilled",
                {"order_id": order.id, "status": order.status.value}
            )

        is_new_student = False
        student = await self.user_repo.get_student_by_user_id(order.user_id)
        if not student:
            user = await self.user_repo.get_by_id(order.user_id)
            if not user:
                raise NotFoundError(f"User {order.user_id} does not exist")
            student = await self.user_repo.create_student(user.id, user.name)
            is_new_student = True
            logger.info(f"Student profile {student.id} created for user {user.id}")

        if order.student_id != student.id:
            await self.order_service.link_student(order.id, student.id)

        profile_complete = self.user_repo.is_certification_profile_complete(student)

        existing = await self.enrollment_repo.get_active(student.id, order.course_id)
        if existing:
            if existing.order_id != order.id:
                logger.warning(
                    f"Order {order.order_number} paid for course {order.course_id} "
                    f"but student {student.id} already holds enrollment {existing.id}"
                )
            return FulfillmentResult(
                enrollment=self.enrollment_repo.to_model(existing),
                created=False,
                is_new_student=is_new_student,
                profile_complete=profile_complete
            )

        over_capacity = False
        if not await self.course_repo.try_reserve_seat(order.course_id):
            if order.payment_method == PaymentMethod.FREE:
                raise EligibilityBlocked(
                    EligibilityBlockReason.COURSE_FULL.value,
                    BLOCK_REASON_MESSAGES[EligibilityBlockReason.COURSE_FULL]
                )
            await self.course_repo.force_increment(order.course_id)
            over_capacity = True
            event_logger.warning(
                "enrollment_over_capacity",
                order_id=order.id,
                order_number=order.order_number,
                course_id=order.course_id,
                payment_method=order.payment_method.value
            )

        if order.coupon_id:
            await self._consume_coupon(order)

        db_enrollment = await self.enrollment_repo.create(
            student_id=student.id,
            course_id=order.course_id,
            order_id=order.id,
            over_capacity=over_capacity
        )
        logger.info(f"Enrollment {db_enrollment.id} created for order {order.order_number}")

        return FulfillmentResult(
            enrollment=self.enrollment_repo.to_model(db_enrollment),
            created=True,
            is_new_student=is_new_student,
            profile_complete=profile_complete
        )

    async def _consume_coupon(self, order: Order) -> None:
        if await self.coupon_repo.try_consume_use(order.coupon_id):
            return
        if order.payment_method == PaymentMethod.FREE:
            raise CheckoutValidationError(
                COUPON_ERROR_MESSAGES[CouponInvalidReason.MAX_USES_REACHED],
                {"reason": CouponInvalidReason.MAX_USES_REACHED.value}
            )
        # the buyer already paid the discounted price
        await self.coupon_repo.force_consume_use(order.coupon_id)
        logger.warning(f"Coupon {order.coupon_id} used beyond max_uses by order {order.order_number}")

    async def fulfill_paid_order(self, order_id: str) -> FulfillmentResult:
        """
        Create the enrollment for an order already moved to paid in this
        session, commit, then schedule the notifications.
        """
        try:
            order = await self.order_service.get_order(order_id)
            if not order:
                raise NotFoundError(f"Order {order_id} does not exist")
            result = await self.create_enrollment_for_order(order)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.order_service.clear_order_cache(order_id)
        if result.created:
            await self.notify_order_paid(order_id, result)
        return result

    async def notify_order_paid(self, order_id: str, result: FulfillmentResult) -> None:
        """Confirmation to the student, payment notice to admins, certification data reminder"""
        order = await self.order_service.get_order(order_id)
        db_course = await self.course_repo.get_by_id(order.course_id)
        user = await self.user_repo.get_by_id(order.user_id)
        if not db_course or not user:
            logger.error(f"Cannot notify order {order_id}: course or user missing")
            return

        course = self.course_repo.to_model(db_course)
        coupon_code = None
        if order.coupon_id:
            db_coupon = await self.coupon_repo.get_by_id(order.coupon_id)
            coupon_code = db_coupon.code if db_coupon else None

        snapshot = build_snapshot(order, course, user.email, user.name, coupon_code=coupon_code)
        admins = self.notification_service.admin_recipients(await self.user_repo.get_superadmin_emails())

        self.notification_service.dispatch(EmailTemplate.ORDER_CONFIRMATION, [user.email], snapshot)
        if order.payment_method != PaymentMethod.FREE:
            self.notification_service.dispatch(EmailTemplate.ADMIN_PAYMENT_NOTIFICATION, admins, snapshot)
        if course.is_certification and not result.profile_complete:
            self.notification_service.dispatch(EmailTemplate.WSET_DATA_REMINDER, [user.email], snapshot)
