"""
Order store service
Order creation, status transitions against the allowed-transition table, and order queries
"""

from typing import Any, Dict, List, Optional
from datetime import datetime
import logging
import random

from academy.core.clock import utcnow
from academy.core.exceptions import CheckoutValidationError, NotFoundError, PersistenceError, StateConflict
from academy.models.order import (
    Order,
    OrderCreate,
    OrderFilters,
    OrderPage,
    OrderStatus,
    PaymentMethod,
    TransitionMetadata,
    TransitionResult,
    allowed_sources,
    is_transition_allowed,
)
from academy.repositories.order_repository import OrderRepository
from academy.services.common_cache import SimpleCache, order_cache

logger = logging.getLogger(__name__)

ORDER_NUMBER_MAX_ATTEMPTS = 5

# timestamp column stamped when an order enters the status
STATUS_TIMESTAMPS = {
    OrderStatus.PAID: "paid_at",
    OrderStatus.CANCELLED: "cancelled_at",
    OrderStatus.PAYMENT_REJECTED: "rejected_at",
}


def generate_order_number(now: Optional[datetime] = None) -> str:
    """TA-YYYYMMDD-XXXX"""
    now = now or utcnow()
    return f"TA-{now:%Y%m%d}-{random.randint(0, 9999):04d}"


class OrderService:
    """Order business service"""

    def __init__(self, order_repo: OrderRepository, cache: Optional[SimpleCache] = None):
        self.order_repo = order_repo
        self.cache = cache or order_cache
        self.cache_prefix = "order"
        self.cache_ttl = 300

    async def create_order(self, order_data: OrderCreate) -> Order:
        """Insert an order in status initiated with a unique order number"""
        if order_data.final_amount != order_data.base_amount - order_data.discount_amount:
            raise CheckoutValidationError("final_amount must equal base_amount - discount_amount")

        for _ in range(ORDER_NUMBER_MAX_ATTEMPTS):
            order_number = generate_order_number()
            if not await self.order_repo.order_number_exists(order_number):
                break
        else:
            raise PersistenceError("Could not generate a unique order number")

        db_order = await self.order_repo.create(order_data, order_number)
        logger.info(f"Order {order_number} created for user {order_data.user_id}, course {order_data.course_id}")
        return self.order_repo.to_model(db_order)

    async def get_order(self, order_id: str, use_cache: bool = False) -> Optional[Order]:
        """
        Fetch an order. Only status pages read through the cache;
        every decision inside a transaction reads the row.
        """
        cache_key = f"{self.cache_prefix}:detail:{order_id}"

        if use_cache:
            cached_order = await self.cache.get(cache_key)
            if cached_order:
                return Order(**cached_order)

        db_order = await self.order_repo.get_by_id(order_id)
        if not db_order:
            return None

        order = self.order_repo.to_model(db_order)

        if use_cache:
            await self.cache.set(cache_key, order.model_dump(mode="json"), ttl=self.cache_ttl)

        return order

    async def get_order_by_payment_id(self, payment_id: str) -> Optional[Order]:
        db_order = await self.order_repo.get_by_mp_payment_id(payment_id)
        return self.order_repo.to_model(db_order) if db_order else None

    async def get_order_by_preference_id(self, preference_id: str) -> Optional[Order]:
        db_order = await self.order_repo.get_by_mp_preference_id(preference_id)
        return self.order_repo.to_model(db_order) if db_order else None

    async def get_open_order(self, user_id: str, course_id: str) -> Optional[Order]:
        db_order = await self.order_repo.get_open_order(user_id, course_id)
        return self.order_repo.to_model(db_order) if db_order else None

    async def transition(
        self,
        order_id: str,
        target: OrderStatus,
        metadata: Optional[TransitionMetadata] = None,
        strict: bool = False
    ) -> TransitionResult:
        """
        Move an order to `target` with a conditional UPDATE.

        A transition outside the table, or a lost race (0 rows updated), is
        returned with applied=False. With strict=True a transition the table
        forbids raises StateConflict instead; a repeat of an already applied
        transition is never an error.
        """
        db_order = await self.order_repo.get_by_id(order_id)
        if not db_order:
            raise NotFoundError(f"Order {order_id} does not exist")

        current = OrderStatus(db_order.status)

        if target == OrderStatus.PAYMENT_REJECTED and db_order.payment_method != PaymentMethod.MERCADOPAGO.value:
            raise StateConflict(
                "Only gateway orders can be rejected by the payment provider",
                {"order_id": order_id, "payment_method": db_order.payment_method}
            )

        if not is_transition_allowed(current, target):
            if current == target:
                return TransitionResult(order_id=order_id, target=target, applied=False, current_status=current)
            if strict:
                raise StateConflict(
                    f"Order cannot move from {current.value} to {target.value}",
                    {"order_id": order_id, "current_status": current.value, "target": target.value}
                )
            logger.warning(f"Ignored transition of order {order_id}: {current.value} -> {target.value}")
            return TransitionResult(order_id=order_id, target=target, applied=False, current_status=current)

        values: Dict[str, Any] = {}
        if metadata:
            values.update(metadata.model_dump(exclude_none=True))
        timestamp_column = STATUS_TIMESTAMPS.get(target)
        if timestamp_column:
            values[timestamp_column] = utcnow()

        applied = await self.order_repo.transition(order_id, allowed_sources(target), target, values)
        if applied:
            logger.info(f"Order {db_order.order_number}: {current.value} -> {target.value}")
            return TransitionResult(order_id=order_id, target=target, applied=True, current_status=target)

        # someone else moved the order between our read and the update
        db_order = await self.order_repo.get_by_id(order_id)
        current = OrderStatus(db_order.status)
        logger.info(f"Transition of order {order_id} to {target.value} was a no-op, status is {current.value}")
        return TransitionResult(order_id=order_id, target=target, applied=False, current_status=current)

    async def set_preference(self, order_id: str, preference_id: str, checkout_url: str) -> bool:
        return await self.order_repo.set_preference(order_id, preference_id, checkout_url)

    async def record_provider_payment(
        self,
        order_id: str,
        payment_id: str,
        status: str,
        status_detail: Optional[str] = None
    ) -> bool:
        return await self.order_repo.record_provider_payment(order_id, payment_id, status, status_detail)

    async def record_transfer_sent(
        self,
        order_id: str,
        reference: Optional[str] = None,
        proof_url: Optional[str] = None
    ) -> bool:
        return await self.order_repo.record_transfer_sent(order_id, utcnow(), reference, proof_url)

    async def link_student(self, order_id: str, student_id: str) -> None:
        await self.order_repo.link_student(order_id, student_id)

    async def get_user_orders(self, user_id: str, limit: int = 50, offset: int = 0) -> List[Order]:
        db_orders = await self.order_repo.get_user_orders(user_id, limit=limit, offset=offset)
        return [self.order_repo.to_model(db_order) for db_order in db_orders]

    async def get_pending_transfer_orders(self) -> List[Order]:
        db_orders = await self.order_repo.get_pending_transfer_orders()
        return [self.order_repo.to_model(db_order) for db_order in db_orders]

    async def list_orders(self, filters: OrderFilters) -> OrderPage:
        db_orders, total = await self.order_repo.list_orders(filters)
        return OrderPage(orders=[self.order_repo.to_model(o) for o in db_orders], total=total)

    async def clear_order_cache(self, order_id: str) -> None:
        """Call after commit of any write to the order"""
        await self.cache.delete(f"{self.cache_prefix}:detail:{order_id}")
