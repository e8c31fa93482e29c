"""
PaymentWebhookService tests: at-least-once delivery against the SQLite test database
"""

import pytest
import pytest_asyncio
from decimal import Decimal

from sqlalchemy import func, select

from academy.core.exceptions import ExternalProviderError, MalformedPayload, SignatureInvalid
from academy.models.database import EnrollmentDB
from academy.models.order import Currency, OrderCreate, OrderStatus, PaymentMethod
from academy.models.payment import (
    PaymentInfo,
    ProviderPaymentStatus,
    WebhookVerification,
    WebhookVerificationStatus,
)

BODY = b'{"type": "payment", "data": {"id": "pay_123"}}'


def verified(event_type="payment", data_id="pay_123") -> WebhookVerification:
    return WebhookVerification(status=WebhookVerificationStatus.VERIFIED, event_type=event_type, data_id=data_id)


def payment(status: str, order_id=None, preference_id=None, detail=None) -> PaymentInfo:
    return PaymentInfo(
        id="pay_123",
        status=ProviderPaymentStatus.parse(status),
        raw_status=status,
        status_detail=detail,
        external_reference=order_id,
        order_id=order_id,
        preference_id=preference_id
    )


async def count_enrollments(db_session, order_id) -> int:
    result = await db_session.execute(
        select(func.count(EnrollmentDB.id)).where(EnrollmentDB.order_id == order_id)
    )
    return result.scalar()


@pytest.mark.asyncio
class TestPaymentWebhookService:
    """Webhook handling"""

    @pytest_asyncio.fixture
    async def gateway_order(self, services, db_session, make_user, make_course):
        user = await make_user(email="ana@academy.test")
        course = await make_course()
        order = await services.order.create_order(OrderCreate(
            user_id=user.id,
            course_id=course.id,
            payment_method=PaymentMethod.MERCADOPAGO,
            currency=Currency.USD,
            base_amount=Decimal("100.00"),
            final_amount=Decimal("100.00")
        ))
        await services.order.transition(order.id, OrderStatus.PENDING_PAYMENT, strict=True)
        await services.order.set_preference(order.id, "pref-1", "https://mp.test/checkout/pref-1")
        await db_session.commit()
        return await services.order.get_order(order.id)

    @pytest.fixture(autouse=True)
    def verified_delivery(self, mock_gateway):
        mock_gateway.verify_webhook.return_value = verified()

    async def handle(self, services):
        return await services.webhook.handle(BODY, "ts=1,v1=sig", "req-1")

    async def test_approved_pays_and_enrolls(self, services, db_session, mock_gateway, gateway_order):
        mock_gateway.get_payment.return_value = payment("approved", order_id=gateway_order.id, detail="accredited")

        outcome = await self.handle(services)

        assert outcome.processed
        assert outcome.enrolled
        assert outcome.new_status == "paid"
        order = await services.order.get_order(gateway_order.id)
        assert order.status == OrderStatus.PAID
        assert order.mp_payment_id == "pay_123"
        assert order.mp_status_detail == "accredited"
        assert order.paid_at is not None
        assert await count_enrollments(db_session, gateway_order.id) == 1

    async def test_duplicate_delivery_is_noop(self, services, db_session, mock_gateway, gateway_order,
                                              notification_service, email_sender):
        mock_gateway.get_payment.return_value = payment("approved", order_id=gateway_order.id)

        await self.handle(services)
        await notification_service.drain()
        sent = email_sender.send.await_count
        duplicate = await self.handle(services)
        await notification_service.drain()

        assert not duplicate.processed
        assert not duplicate.enrolled
        assert duplicate.new_status == "paid"
        assert await count_enrollments(db_session, gateway_order.id) == 1
        assert email_sender.send.await_count == sent

    async def test_rejected(self, services, db_session, mock_gateway, gateway_order, notification_service,
                            email_sender):
        mock_gateway.get_payment.return_value = payment(
            "rejected", order_id=gateway_order.id, detail="cc_rejected_insufficient_amount"
        )

        outcome = await self.handle(services)
        await notification_service.drain()

        assert outcome.processed
        assert outcome.new_status == "payment_rejected"
        order = await services.order.get_order(gateway_order.id)
        assert order.status == OrderStatus.PAYMENT_REJECTED
        assert order.rejected_at is not None
        assert await count_enrollments(db_session, gateway_order.id) == 0

        to, subject, text = email_sender.send.call_args.args
        assert to == ["ana@academy.test"]
        assert "not approved" in subject
        assert "cc_rejected_insufficient_amount" in text

    async def test_approved_after_rejection_is_ignored(self, services, db_session, mock_gateway, gateway_order):
        mock_gateway.get_payment.return_value = payment("rejected", order_id=gateway_order.id)
        await self.handle(services)

        mock_gateway.get_payment.return_value = payment("approved", order_id=gateway_order.id)
        outcome = await self.handle(services)

        assert not outcome.processed
        assert outcome.new_status == "payment_rejected"
        assert await count_enrollments(db_session, gateway_order.id) == 0

    async def test_approved_on_cancelled_order(self, services, db_session, mock_gateway, gateway_order):
        await services.order.transition(gateway_order.id, OrderStatus.CANCELLED, strict=True)
        await db_session.commit()
        mock_gateway.get_payment.return_value = payment("approved", order_id=gateway_order.id)

        outcome = await self.handle(services)

        assert not outcome.processed
        assert outcome.new_status == "cancelled"
        assert (await services.order.get_order(gateway_order.id)).status == OrderStatus.CANCELLED
        assert await count_enrollments(db_session, gateway_order.id) == 0

    async def test_pending_is_bookkeeping_only(self, services, mock_gateway, gateway_order):
        mock_gateway.get_payment.return_value = payment("in_process", order_id=gateway_order.id,
                                                        detail="pending_contingency")

        outcome = await self.handle(services)

        assert outcome.new_status == "pending_payment"
        order = await services.order.get_order(gateway_order.id)
        assert order.status == OrderStatus.PENDING_PAYMENT
        assert order.mp_status == "in_process"
        assert order.mp_payment_id == "pay_123"

    async def test_refund_is_recorded_without_transition(self, services, mock_gateway, gateway_order):
        mock_gateway.get_payment.return_value = payment("refunded", order_id=gateway_order.id)

        outcome = await self.handle(services)

        assert outcome.new_status == "pending_payment"
        assert (await services.order.get_order(gateway_order.id)).mp_status == "refunded"

    async def test_lookup_by_preference(self, services, db_session, mock_gateway, gateway_order):
        mock_gateway.get_payment.return_value = payment("approved", preference_id="pref-1")

        outcome = await self.handle(services)

        assert outcome.order_id == gateway_order.id
        assert outcome.new_status == "paid"

    async def test_unknown_order(self, services, mock_gateway, gateway_order):
        mock_gateway.get_payment.return_value = payment("approved", order_id="no-such-order")

        outcome = await self.handle(services)

        assert outcome.order_id is None
        assert outcome.detail == "order not found"
        assert (await services.order.get_order(gateway_order.id)).status == OrderStatus.PENDING_PAYMENT

    async def test_invalid_signature(self, services, mock_gateway):
        mock_gateway.verify_webhook.return_value = WebhookVerification(
            status=WebhookVerificationStatus.INVALID_SIGNATURE, event_type="payment", data_id="pay_123"
        )

        with pytest.raises(SignatureInvalid):
            await self.handle(services)

        mock_gateway.get_payment.assert_not_called()

    async def test_malformed(self, services, mock_gateway):
        mock_gateway.verify_webhook.return_value = WebhookVerification(
            status=WebhookVerificationStatus.MALFORMED_PAYLOAD, detail="invalid JSON"
        )

        with pytest.raises(MalformedPayload):
            await self.handle(services)

    async def test_other_event_types_ignored(self, services, mock_gateway):
        mock_gateway.verify_webhook.return_value = verified(event_type="merchant_order")

        outcome = await self.handle(services)

        assert outcome.detail == "event type ignored"
        mock_gateway.get_payment.assert_not_called()

    async def test_provider_failure_propagates(self, services, mock_gateway, gateway_order):
        mock_gateway.get_payment.side_effect = ExternalProviderError("Could not fetch payment from provider")

        with pytest.raises(ExternalProviderError):
            await self.handle(services)

    async def test_rejection_of_bank_transfer_not_applied(self, services, db_session, mock_gateway,
                                                          make_user, make_course):
        user = await make_user()
        course = await make_course()
        order = await services.order.create_order(OrderCreate(
            user_id=user.id,
            course_id=course.id,
            payment_method=PaymentMethod.BANK_TRANSFER,
            currency=Currency.USD,
            base_amount=Decimal("100.00"),
            final_amount=Decimal("100.00")
        ))
        await services.order.transition(order.id, OrderStatus.PENDING_PAYMENT, strict=True)
        await db_session.commit()
        mock_gateway.get_payment.return_value = payment("rejected", order_id=order.id)

        outcome = await self.handle(services)

        assert not outcome.processed
        assert (await services.order.get_order(order.id)).status == OrderStatus.PENDING_PAYMENT
