"""
CheckoutService tests: the whole checkout flow over the SQLite test database
"""

import pytest
import pytest_asyncio
from decimal import Decimal
from datetime import timedelta

from sqlalchemy import func, select

from academy.core.clock import utcnow
from academy.core.exceptions import ExternalProviderError, PermissionDenied, StateConflict
from academy.models.checkout import CheckoutOutcome, CheckoutRequest, EligibilityBlockReason, TransferSentRequest
from academy.models.database import CouponDB, EnrollmentDB, OrderDB
from academy.models.order import Currency, OrderStatus, PaymentMethod
from academy.models.payment import PreferenceResult
from academy.models.user import AuthenticatedUser, UserRole
from academy.services.common_cache import SimpleCache


def as_caller(user, role=UserRole.STUDENT) -> AuthenticatedUser:
    return AuthenticatedUser(user_id=user.id, email=user.email, name=user.name, role=role)


async def count_rows(db_session, model, **filters) -> int:
    query = select(func.count(model.id))
    for column, value in filters.items():
        query = query.where(getattr(model, column) == value)
    return (await db_session.execute(query)).scalar()



class InMemoryRedis:
    """Dict-backed stand-in for the redis client calls SimpleCache makes"""

    def __init__(self):
        self.store = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value

    async def delete(self, *keys):
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

@pytest.fixture
def preference(mock_gateway):
    mock_gateway.create_preference.return_value = PreferenceResult(
        preference_id="pref-1",
        redirect_url="https://mp.test/checkout/pref-1"
    )
    return mock_gateway.create_preference


@pytest.mark.asyncio
class TestCheckoutContext:
    """Context and eligibility"""

    async def test_context_with_coupon(self, services, make_user, make_course, make_coupon, make_bank_account):
        caller = as_caller(await make_user())
        course = await make_course()
        await make_coupon()
        await make_bank_account()

        context = await services.checkout.get_checkout_context(caller, course.id, "half")

        assert context.can_enroll
        assert context.coupon_validation.is_valid
        assert context.pricing[Currency.USD].final_amount == Decimal("50.00")
        assert context.pricing[Currency.UYU].final_amount == Decimal("2100")
        assert not context.is_free
        assert len(context.bank_accounts) == 1
        assert context.open_order is None

    @pytest.mark.parametrize("overrides, reason", [
        ({"status": "draft"}, EligibilityBlockReason.COURSE_NOT_OPEN),
        ({"status": "finished"}, EligibilityBlockReason.COURSE_FINISHED),
        ({"status": "in_progress"}, EligibilityBlockReason.COURSE_FINISHED),
        ({"status": "full"}, EligibilityBlockReason.COURSE_FULL),
        ({"max_capacity": 2, "enrolled_count": 2}, EligibilityBlockReason.COURSE_FULL),
    ])
    async def test_course_state_blocks(self, services, make_user, make_course, overrides, reason):
        caller = as_caller(await make_user())
        course = await make_course(**overrides)

        context = await services.checkout.get_checkout_context(caller, course.id)

        assert not context.can_enroll
        assert context.eligibility.block_reason == reason

    async def test_past_deadline_blocks(self, services, make_user, make_course):
        caller = as_caller(await make_user())
        course = await make_course(registration_deadline=utcnow() - timedelta(days=1))

        context = await services.checkout.get_checkout_context(caller, course.id)

        assert context.eligibility.block_reason == EligibilityBlockReason.COURSE_NOT_OPEN

    async def test_future_deadline_allows(self, services, make_user, make_course):
        caller = as_caller(await make_user())
        course = await make_course(registration_deadline=utcnow() + timedelta(days=7))

        context = await services.checkout.get_checkout_context(caller, course.id)

        assert context.can_enroll


@pytest.mark.asyncio
class TestGatewayCheckout:
    """mercadopago flow"""

    async def test_half_coupon_redirects(self, services, db_session, make_user, make_course, make_coupon,
                                         preference):
        caller = as_caller(await make_user())
        course = await make_course()
        coupon = await make_coupon()
        coupon_id = coupon.id

        result = await services.checkout.submit_checkout(caller, CheckoutRequest(
            course_id=course.id,
            payment_method=PaymentMethod.MERCADOPAGO,
            coupon_code="HALF"
        ))

        assert result.outcome == CheckoutOutcome.REDIRECT
        assert result.redirect_url == "https://mp.test/checkout/pref-1"
        assert result.order.status == OrderStatus.PENDING_PAYMENT
        assert result.order.final_amount == Decimal("50.00")
        assert result.order.coupon_id == coupon_id
        assert result.order.mp_preference_id == "pref-1"

        sent_order = preference.call_args.args[0]
        assert sent_order.id == result.order.id
        assert sent_order.final_amount == Decimal("50.00")

        coupon_row = (await db_session.execute(
            select(CouponDB).where(CouponDB.id == coupon_id).execution_options(populate_existing=True)
        )).scalar_one()
        assert coupon_row.current_uses == 0

    async def test_provider_error_then_retry_reuses_order(self, services, db_session, make_user, make_course,
                                                          mock_gateway):
        caller = as_caller(await make_user())
        course = await make_course()
        request = CheckoutRequest(course_id=course.id, payment_method=PaymentMethod.MERCADOPAGO)
        mock_gateway.create_preference.side_effect = [
            ExternalProviderError("Could not start the online payment, please try again"),
            PreferenceResult(preference_id="pref-2", redirect_url="https://mp.test/checkout/pref-2"),
        ]

        failed = await services.checkout.submit_checkout(caller, request)

        assert failed.outcome == CheckoutOutcome.PROVIDER_ERROR
        assert failed.retryable
        assert failed.order.status == OrderStatus.PENDING_PAYMENT

        retried = await services.checkout.submit_checkout(caller, request)

        assert retried.outcome == CheckoutOutcome.REDIRECT
        assert retried.order.id == failed.order.id
        assert await count_rows(db_session, OrderDB, user_id=caller.user_id) == 1

    async def test_resubmit_reuses_preference(self, services, make_user, make_course, preference):
        caller = as_caller(await make_user())
        course = await make_course()
        request = CheckoutRequest(course_id=course.id, payment_method=PaymentMethod.MERCADOPAGO)

        first = await services.checkout.submit_checkout(caller, request)
        second = await services.checkout.submit_checkout(caller, request)

        assert second.outcome == CheckoutOutcome.REDIRECT
        assert second.order.id == first.order.id
        assert second.redirect_url == first.redirect_url
        assert preference.await_count == 1

    async def test_changed_terms_cancel_stale_order(self, services, db_session, make_user, make_course,
                                                    make_bank_account, preference):
        caller = as_caller(await make_user())
        course = await make_course()
        await make_bank_account()

        transfer = await services.checkout.submit_checkout(caller, CheckoutRequest(
            course_id=course.id, payment_method=PaymentMethod.BANK_TRANSFER, currency=Currency.UYU
        ))
        online = await services.checkout.submit_checkout(caller, CheckoutRequest(
            course_id=course.id, payment_method=PaymentMethod.MERCADOPAGO
        ))

        assert online.outcome == CheckoutOutcome.REDIRECT
        assert online.order.id != transfer.order.id
        stale = await services.order.get_order(transfer.order.id)
        assert stale.status == OrderStatus.CANCELLED
        assert stale.cancelled_at is not None

    async def test_status_page_shows_cancelled_stale_order(self, services, make_user, make_course,
                                                          make_bank_account, preference):
        services.order.cache = SimpleCache(InMemoryRedis(), key_prefix="order:")
        caller = as_caller(await make_user())
        course = await make_course()
        await make_bank_account()

        transfer = await services.checkout.submit_checkout(caller, CheckoutRequest(
            course_id=course.id, payment_method=PaymentMethod.BANK_TRANSFER, currency=Currency.UYU
        ))
        shown = await services.checkout.get_order_for_user(caller, transfer.order.id)
        assert shown.status == OrderStatus.PENDING_PAYMENT

        await services.checkout.submit_checkout(caller, CheckoutRequest(
            course_id=course.id, payment_method=PaymentMethod.MERCADOPAGO
        ))

        shown = await services.checkout.get_order_for_user(caller, transfer.order.id)
        assert shown.status == OrderStatus.CANCELLED


@pytest.mark.asyncio
class TestFreeCheckout:

    async def test_free_course_completes(self, services, db_session, make_user, make_course, mock_gateway):
        caller = as_caller(await make_user())
        course = await make_course(price_usd=Decimal("0"))
        course_id = course.id

        result = await services.checkout.submit_checkout(caller, CheckoutRequest(
            course_id=course_id,
            payment_method=PaymentMethod.BANK_TRANSFER,
            currency=Currency.UYU
        ))

        assert result.outcome == CheckoutOutcome.COMPLETED
        assert result.order.status == OrderStatus.PAID
        assert result.order.payment_method == PaymentMethod.FREE
        assert result.order.currency == Currency.USD
        assert result.enrollment is not None
        assert await count_rows(db_session, EnrollmentDB, course_id=course_id) == 1
        mock_gateway.create_preference.assert_not_called()

    async def test_full_coupon_completes_and_consumes_use(self, services, db_session, make_user, make_course,
                                                         make_coupon):
        caller = as_caller(await make_user())
        course = await make_course()
        coupon = await make_coupon(code="GIFT", discount_percent=100)
        coupon_id = coupon.id

        result = await services.checkout.submit_checkout(caller, CheckoutRequest(
            course_id=course.id,
            payment_method=PaymentMethod.MERCADOPAGO,
            coupon_code="gift"
        ))

        assert result.outcome == CheckoutOutcome.COMPLETED
        assert result.order.final_amount == Decimal("0.00")
        coupon_row = (await db_session.execute(
            select(CouponDB).where(CouponDB.id == coupon_id).execution_options(populate_existing=True)
        )).scalar_one()
        assert coupon_row.current_uses == 1

    async def test_enrolled_user_is_blocked(self, services, db_session, make_user, make_course):
        caller = as_caller(await make_user())
        course = await make_course(price_usd=Decimal("0"))
        course_id = course.id
        request = CheckoutRequest(course_id=course_id, payment_method=PaymentMethod.FREE)

        await services.checkout.submit_checkout(caller, request)
        again = await services.checkout.submit_checkout(caller, request)

        assert again.outcome == CheckoutOutcome.BLOCKED
        assert again.block_reason == EligibilityBlockReason.ALREADY_ENROLLED
        assert await count_rows(db_session, OrderDB, course_id=course_id) == 1


@pytest.mark.asyncio
class TestRejectedSubmissions:

    async def test_blocked_course_creates_no_order(self, services, db_session, make_user, make_course):
        caller = as_caller(await make_user())
        course = await make_course(status="draft")
        course_id = course.id

        result = await services.checkout.submit_checkout(caller, CheckoutRequest(
            course_id=course_id, payment_method=PaymentMethod.MERCADOPAGO
        ))

        assert result.outcome == CheckoutOutcome.BLOCKED
        assert result.block_reason == EligibilityBlockReason.COURSE_NOT_OPEN
        assert not result.success
        assert await count_rows(db_session, OrderDB, course_id=course_id) == 0

    async def test_invalid_coupon(self, services, db_session, make_user, make_course, make_coupon):
        caller = as_caller(await make_user())
        course = await make_course()
        course_id = course.id
        await make_coupon(expires_at=utcnow() - timedelta(days=1))

        result = await services.checkout.submit_checkout(caller, CheckoutRequest(
            course_id=course_id, payment_method=PaymentMethod.MERCADOPAGO, coupon_code="HALF"
        ))

        assert result.outcome == CheckoutOutcome.INVALID
        assert result.error_code == "expired"
        assert await count_rows(db_session, OrderDB, course_id=course_id) == 0

    async def test_free_method_for_paid_course(self, services, make_user, make_course):
        caller = as_caller(await make_user())
        course = await make_course()

        result = await services.checkout.submit_checkout(caller, CheckoutRequest(
            course_id=course.id, payment_method=PaymentMethod.FREE
        ))

        assert result.outcome == CheckoutOutcome.INVALID

    async def test_unknown_course(self, services, make_user):
        caller = as_caller(await make_user())

        result = await services.checkout.submit_checkout(caller, CheckoutRequest(
            course_id="missing", payment_method=PaymentMethod.MERCADOPAGO
        ))

        assert result.outcome == CheckoutOutcome.INVALID
        assert result.error_code == "not_found"

    async def test_unknown_bank_account(self, services, db_session, make_user, make_course, make_bank_account):
        caller = as_caller(await make_user())
        course = await make_course()
        course_id = course.id
        await make_bank_account()

        result = await services.checkout.submit_checkout(caller, CheckoutRequest(
            course_id=course_id,
            payment_method=PaymentMethod.BANK_TRANSFER,
            bank_account_id="not-a-bank"
        ))

        assert result.outcome == CheckoutOutcome.INVALID
        assert await count_rows(db_session, OrderDB, course_id=course_id) == 0


@pytest.mark.asyncio
class TestBankTransfer:
    """Bank transfer flow up to admin confirmation"""

    @pytest_asyncio.fixture
    async def pending_transfer(self, services, make_user, make_course, make_bank_account):
        user = await make_user(email="ana@academy.test")
        course = await make_course()
        account = await make_bank_account()
        caller = as_caller(user)
        result = await services.checkout.submit_checkout(caller, CheckoutRequest(
            course_id=course.id,
            payment_method=PaymentMethod.BANK_TRANSFER,
            currency=Currency.UYU,
            bank_account_id=account.id
        ))
        return caller, result

    async def test_pending_with_instructions(self, pending_transfer, notification_service, email_sender):
        caller, result = pending_transfer
        await notification_service.drain()

        assert result.outcome == CheckoutOutcome.PENDING_TRANSFER
        assert result.order.status == OrderStatus.PENDING_PAYMENT
        assert result.order.currency == Currency.UYU
        assert result.order.final_amount == Decimal("4200")
        assert len(result.bank_accounts) == 1

        to, subject, text = email_sender.send.call_args.args
        assert to == ["ana@academy.test"]
        assert result.order.order_number in subject
        assert "001234567-00001" in text

    async def test_mark_sent_keeps_pending(self, services, pending_transfer, notification_service, email_sender):
        caller, result = pending_transfer

        order = await services.checkout.mark_transfer_sent(
            caller, result.order.id, TransferSentRequest(reference="BROU-778899")
        )
        await notification_service.drain()

        assert order.status == OrderStatus.PENDING_PAYMENT
        assert order.transfer_reference == "BROU-778899"
        assert order.transfer_sent_at is not None
        assert email_sender.send.call_args.args[0] == ["admin@academy.test"]

    async def test_reported_transfer_blocks_method_change(self, services, pending_transfer, preference):
        caller, result = pending_transfer
        await services.checkout.mark_transfer_sent(caller, result.order.id, TransferSentRequest(reference="R1"))

        switched = await services.checkout.submit_checkout(caller, CheckoutRequest(
            course_id=result.order.course_id, payment_method=PaymentMethod.MERCADOPAGO
        ))

        assert switched.outcome == CheckoutOutcome.INVALID
        assert switched.error_code == "state_conflict"
        assert (await services.order.get_order(result.order.id)).status == OrderStatus.PENDING_PAYMENT

    async def test_other_bank_account_replaces_order(self, services, pending_transfer, make_bank_account):
        caller, result = pending_transfer
        other = await make_bank_account(bank_name="Itau", account_number="998877", currency="USD")
        other_id = other.id

        switched = await services.checkout.submit_checkout(caller, CheckoutRequest(
            course_id=result.order.course_id,
            payment_method=PaymentMethod.BANK_TRANSFER,
            currency=Currency.UYU,
            bank_account_id=other_id
        ))

        assert switched.outcome == CheckoutOutcome.PENDING_TRANSFER
        assert switched.order.id != result.order.id
        assert switched.order.bank_account_id == other_id
        assert (await services.order.get_order(result.order.id)).status == OrderStatus.CANCELLED

    async def test_confirm_is_idempotent(self, services, db_session, pending_transfer, make_user):
        caller, result = pending_transfer
        admin = as_caller(await make_user(role="superadmin"), role=UserRole.SUPERADMIN)

        first = await services.checkout.confirm_transfer_payment(admin, result.order.id)
        second = await services.checkout.confirm_transfer_payment(admin, result.order.id)

        assert first.outcome == CheckoutOutcome.COMPLETED
        assert first.order.status == OrderStatus.PAID
        assert second.outcome == CheckoutOutcome.COMPLETED
        assert second.enrollment.id == first.enrollment.id
        assert await count_rows(db_session, EnrollmentDB, order_id=result.order.id) == 1

    async def test_confirm_requires_superadmin(self, services, pending_transfer):
        caller, result = pending_transfer

        with pytest.raises(PermissionDenied):
            await services.checkout.confirm_transfer_payment(caller, result.order.id)

    async def test_cancel_paid_order_conflicts(self, services, pending_transfer, make_user):
        caller, result = pending_transfer
        admin = as_caller(await make_user(role="superadmin"), role=UserRole.SUPERADMIN)
        await services.checkout.confirm_transfer_payment(admin, result.order.id)

        with pytest.raises(StateConflict):
            await services.checkout.cancel_order(caller, result.order.id)

    async def test_cancel_pending_order(self, services, pending_transfer):
        caller, result = pending_transfer

        order = await services.checkout.cancel_order(caller, result.order.id)

        assert order.status == OrderStatus.CANCELLED

    async def test_other_user_cannot_read_order(self, services, pending_transfer, make_user):
        caller, result = pending_transfer
        stranger = as_caller(await make_user())
        admin = as_caller(await make_user(role="superadmin"), role=UserRole.SUPERADMIN)

        with pytest.raises(PermissionDenied):
            await services.checkout.get_order_for_user(stranger, result.order.id)
        assert (await services.checkout.get_order_for_user(admin, result.order.id)).id == result.order.id
