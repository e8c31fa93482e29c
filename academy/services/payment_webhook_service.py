"""
MercadoPago webhook processing
Verify the delivery, fetch the authoritative payment, apply the mapped
order transition and fulfil paid orders. Safe under at-least-once delivery.
"""

from typing import Optional
import time

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from academy.core.exceptions import MalformedPayload, SignatureInvalid, StateConflict
from academy.models.notification import EmailTemplate
from academy.models.order import Order, OrderStatus, TransitionMetadata
from academy.models.payment import (
    PaymentInfo,
    ProviderPaymentStatus,
    WebhookOutcome,
    WebhookVerificationStatus,
)
from academy.repositories.course_repository import CourseRepository
from academy.repositories.user_repository import UserRepository
from academy.services.enrollment_service import EnrollmentService
from academy.services.notification_service import NotificationService, build_snapshot
from academy.services.order_service import OrderService
from academy.services.payment_gateway_service import MercadoPagoGateway

logger = structlog.get_logger()

PAYMENT_EVENT = "payment"

REJECTED_STATUSES = frozenset({ProviderPaymentStatus.REJECTED, ProviderPaymentStatus.CANCELLED})
IN_FLIGHT_STATUSES = frozenset({
    ProviderPaymentStatus.PENDING,
    ProviderPaymentStatus.IN_PROCESS,
    ProviderPaymentStatus.AUTHORIZED,
})


class PaymentWebhookService:
    """Webhook handling for gateway orders"""

    def __init__(
        self,
        db: AsyncSession,
        gateway: MercadoPagoGateway,
        order_service: OrderService,
        enrollment_service: EnrollmentService,
        notification_service: NotificationService,
        course_repo: CourseRepository,
        user_repo: UserRepository
    ):
        self.db = db
        self.gateway = gateway
        self.order_service = order_service
        self.enrollment_service = enrollment_service
        self.notification_service = notification_service
        self.course_repo = course_repo
        self.user_repo = user_repo

    async def handle(
        self,
        raw_body: bytes,
        signature_header: Optional[str],
        request_id: Optional[str],
        query_data_id: Optional[str] = None
    ) -> WebhookOutcome:
        """
        Raises SignatureInvalid and MalformedPayload for rejected deliveries;
        provider and database errors propagate so the delivery is retried.
        Everything else, no-ops included, returns an outcome.
        """
        started = time.monotonic()
        verification = self.gateway.verify_webhook(raw_body, signature_header, request_id, query_data_id)

        if verification.status == WebhookVerificationStatus.MALFORMED_PAYLOAD:
            logger.warning("webhook_malformed", detail=verification.detail)
            raise MalformedPayload(verification.detail or "malformed webhook payload")
        if verification.status == WebhookVerificationStatus.INVALID_SIGNATURE:
            raise SignatureInvalid("Invalid webhook signature")

        if verification.event_type != PAYMENT_EVENT:
            logger.info("webhook_ignored", event_type=verification.event_type, data_id=verification.data_id)
            return WebhookOutcome(event_type=verification.event_type, detail="event type ignored")

        payment = await self.gateway.get_payment(verification.data_id)
        order = await self.find_order(payment)
        if not order:
            logger.warning(
                "webhook_order_not_found",
                payment_id=payment.id,
                external_reference=payment.external_reference
            )
            return WebhookOutcome(
                event_type=PAYMENT_EVENT,
                payment_status=payment.raw_status,
                detail="order not found"
            )

        outcome = await self.apply_payment(order, payment)
        logger.info(
            "webhook_processed",
            order_id=order.id,
            payment_id=payment.id,
            status=payment.raw_status,
            new_status=outcome.new_status,
            processed=outcome.processed,
            duration_ms=int((time.monotonic() - started) * 1000)
        )
        return outcome

    async def find_order(self, payment: PaymentInfo) -> Optional[Order]:
        """metadata order id, external_reference, stored payment id, stored preference id"""
        for order_id in (payment.order_id, payment.external_reference):
            if order_id:
                order = await self.order_service.get_order(order_id)
                if order:
                    return order

        order = await self.order_service.get_order_by_payment_id(payment.id)
        if order:
            return order

        if payment.preference_id:
            return await self.order_service.get_order_by_preference_id(payment.preference_id)
        return None

    async def apply_payment(self, order: Order, payment: PaymentInfo) -> WebhookOutcome:
        outcome = WebhookOutcome(
            event_type=PAYMENT_EVENT,
            order_id=order.id,
            payment_status=payment.raw_status
        )
        metadata = TransitionMetadata(
            mp_payment_id=payment.id,
            mp_status=payment.raw_status,
            mp_status_detail=payment.status_detail
        )

        if payment.status == ProviderPaymentStatus.APPROVED:
            return await self._apply_approved(order, metadata, outcome)

        if payment.status in REJECTED_STATUSES:
            return await self._apply_rejected(order, metadata, outcome)

        if payment.status not in IN_FLIGHT_STATUSES:
            logger.warning("webhook_unmapped_status", order_id=order.id, payment_id=payment.id, status=payment.raw_status)

        # bookkeeping only, no transition
        recorded = await self.order_service.record_provider_payment(
            order.id, payment.id, payment.raw_status, payment.status_detail
        )
        await self.db.commit()
        await self.order_service.clear_order_cache(order.id)
        outcome.new_status = (await self.order_service.get_order(order.id)).status.value
        outcome.processed = recorded
        outcome.detail = "payment status recorded" if recorded else "order already closed"
        return outcome

    async def _apply_approved(self, order: Order, metadata: TransitionMetadata, outcome: WebhookOutcome) -> WebhookOutcome:
        result = await self.order_service.transition(order.id, OrderStatus.PAID, metadata)

        if not result.applied and result.current_status != OrderStatus.PAID:
            await self.db.rollback()
            logger.warning(
                "webhook_approved_for_closed_order",
                order_id=order.id,
                payment_id=metadata.mp_payment_id,
                status=result.current_status.value
            )
            outcome.new_status = result.current_status.value
            outcome.detail = "order already closed"
            return outcome

        # a repeated delivery still runs fulfilment: it returns the existing enrollment
        fulfillment = await self.enrollment_service.fulfill_paid_order(order.id)
        outcome.new_status = OrderStatus.PAID.value
        outcome.processed = result.applied
        outcome.enrolled = fulfillment.created
        if not result.applied:
            outcome.detail = "already paid"
        return outcome

    async def _apply_rejected(self, order: Order, metadata: TransitionMetadata, outcome: WebhookOutcome) -> WebhookOutcome:
        try:
            result = await self.order_service.transition(order.id, OrderStatus.PAYMENT_REJECTED, metadata)
        except StateConflict as e:
            await self.db.rollback()
            logger.warning("webhook_rejection_not_applicable", order_id=order.id, detail=e.message)
            outcome.new_status = order.status.value
            outcome.detail = e.message
            return outcome

        await self.db.commit()
        await self.order_service.clear_order_cache(order.id)
        outcome.new_status = result.current_status.value
        outcome.processed = result.applied

        if not result.applied:
            outcome.detail = f"order is {result.current_status.value}"
            return outcome

        await self._notify_rejected(order.id)
        return outcome

    async def _notify_rejected(self, order_id: str) -> None:
        order = await self.order_service.get_order(order_id)
        db_course = await self.course_repo.get_by_id(order.course_id)
        user = await self.user_repo.get_by_id(order.user_id)
        if not db_course or not user:
            logger.error("webhook_notification_skipped", order_id=order_id, reason="course or user missing")
            return
        snapshot = build_snapshot(order, self.course_repo.to_model(db_course), user.email, user.name)
        self.notification_service.dispatch(EmailTemplate.PAYMENT_REJECTED, [user.email], snapshot)
