"""
Order data access
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple
from datetime import datetime
import uuid

from sqlalchemy import select, update, func, desc
from sqlalchemy.ext.asyncio import AsyncSession

from academy.models.order import (
    Order,
    OrderCreate,
    OrderFilters,
    OrderStatus,
    PaymentMethod,
    OPEN_ORDER_STATUSES,
)
from academy.models.database.order_db import OrderDB

OPEN_STATUS_VALUES = [status.value for status in OPEN_ORDER_STATUSES]


class OrderRepository:
    """Order data access"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, order_id: str) -> Optional[OrderDB]:
        """Fetch an order, always re-reading the row"""
        result = await self.db.execute(
            select(OrderDB)
            .where(OrderDB.id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def order_number_exists(self, order_number: str) -> bool:
        result = await self.db.execute(
            select(func.count(OrderDB.id)).where(OrderDB.order_number == order_number)
        )
        return (result.scalar() or 0) > 0

    async def get_by_mp_payment_id(self, payment_id: str) -> Optional[OrderDB]:
        result = await self.db.execute(
            select(OrderDB)
            .where(OrderDB.mp_payment_id == payment_id)
            .order_by(desc(OrderDB.created_at))
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_mp_preference_id(self, preference_id: str) -> Optional[OrderDB]:
        result = await self.db.execute(
            select(OrderDB)
            .where(OrderDB.mp_preference_id == preference_id)
            .order_by(desc(OrderDB.created_at))
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_open_order(self, user_id: str, course_id: str) -> Optional[OrderDB]:
        """The not-yet-terminal order of a user for a course"""
        result = await self.db.execute(
            select(OrderDB)
            .where(
                OrderDB.user_id == user_id,
                OrderDB.course_id == course_id,
                OrderDB.status.in_(OPEN_STATUS_VALUES)
            )
            .order_by(desc(OrderDB.created_at))
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create(self, order_data: OrderCreate, order_number: str) -> OrderDB:
        """Insert a new order in status initiated"""
        db_order = OrderDB(
            id=str(uuid.uuid4()),
            order_number=order_number,
            user_id=order_data.user_id,
            course_id=order_data.course_id,
            coupon_id=order_data.coupon_id,
            bank_account_id=order_data.bank_account_id,
            payment_method=order_data.payment_method.value,
            currency=order_data.currency.value,
            base_amount=order_data.base_amount,
            discount_percent=order_data.discount_percent,
            discount_amount=order_data.discount_amount,
            final_amount=order_data.final_amount,
            status=OrderStatus.INITIATED.value
        )
        self.db.add(db_order)
        await self.db.flush()
        await self.db.refresh(db_order)
        return db_order

    async def transition(
        self,
        order_id: str,
        from_statuses: Iterable[OrderStatus],
        target: OrderStatus,
        values: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Conditional status update:
        UPDATE orders SET status=:target WHERE id=:id AND status IN (:from_statuses)
        Returns True when exactly one row changed.
        """
        update_data = {"status": target.value, "updated_at": func.now()}
        if values:
            update_data.update(values)

        result = await self.db.execute(
            update(OrderDB)
            .where(
                OrderDB.id == order_id,
                OrderDB.status.in_([status.value for status in from_statuses])
            )
            .values(**update_data)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def link_student(self, order_id: str, student_id: str) -> None:
        await self.db.execute(
            update(OrderDB)
            .where(OrderDB.id == order_id)
            .values(student_id=student_id)
            .execution_options(synchronize_session=False)
        )

    async def update_open_order(self, order_id: str, values: Dict[str, Any]) -> bool:
        """Write non-status fields while the order is still open"""
        result = await self.db.execute(
            update(OrderDB)
            .where(
                OrderDB.id == order_id,
                OrderDB.status.in_(OPEN_STATUS_VALUES)
            )
            .values(updated_at=func.now(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def set_preference(self, order_id: str, preference_id: str, checkout_url: str) -> bool:
        return await self.update_open_order(order_id, {
            "mp_preference_id": preference_id,
            "mp_checkout_url": checkout_url
        })

    async def record_provider_payment(
        self,
        order_id: str,
        payment_id: str,
        status: str,
        status_detail: Optional[str] = None
    ) -> bool:
        return await self.update_open_order(order_id, {
            "mp_payment_id": payment_id,
            "mp_status": status,
            "mp_status_detail": status_detail
        })

    async def record_transfer_sent(
        self,
        order_id: str,
        sent_at: datetime,
        reference: Optional[str] = None,
        proof_url: Optional[str] = None
    ) -> bool:
        """Store the payer's transfer notice; the status is left untouched"""
        values: Dict[str, Any] = {"transfer_sent_at": sent_at}
        if reference:
            values["transfer_reference"] = reference
        if proof_url:
            values["transfer_proof_url"] = proof_url

        result = await self.db.execute(
            update(OrderDB)
            .where(
                OrderDB.id == order_id,
                OrderDB.status == OrderStatus.PENDING_PAYMENT.value,
                OrderDB.payment_method == PaymentMethod.BANK_TRANSFER.value
            )
            .values(updated_at=func.now(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def get_user_orders(self, user_id: str, limit: int = 50, offset: int = 0) -> List[OrderDB]:
        result = await self.db.execute(
            select(OrderDB)
            .where(OrderDB.user_id == user_id)
            .order_by(desc(OrderDB.created_at))
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_pending_transfer_orders(self) -> List[OrderDB]:
        """Bank transfers awaiting admin confirmation, oldest first"""
        result = await self.db.execute(
            select(OrderDB)
            .where(
                OrderDB.payment_method == PaymentMethod.BANK_TRANSFER.value,
                OrderDB.status == OrderStatus.PENDING_PAYMENT.value
            )
            .order_by(OrderDB.created_at)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_orders(self, filters: OrderFilters) -> Tuple[List[OrderDB], int]:
        """Filtered page of orders plus the total count"""
        conditions = []
        if filters.status:
            conditions.append(OrderDB.status == filters.status.value)
        if filters.payment_method:
            conditions.append(OrderDB.payment_method == filters.payment_method.value)
        if filters.course_id:
            conditions.append(OrderDB.course_id == filters.course_id)
        if filters.user_id:
            conditions.append(OrderDB.user_id == filters.user_id)

        query = select(OrderDB).where(*conditions).order_by(
            desc(OrderDB.created_at)
        ).limit(filters.limit).offset(filters.offset).execution_options(populate_existing=True)

        result = await self.db.execute(query)
        total = await self.db.execute(
            select(func.count(OrderDB.id)).where(*conditions)
        )
        return list(result.scalars().all()), total.scalar() or 0

    def to_model(self, db_order: OrderDB) -> Order:
        """Convert to the pydantic model"""
        return Order(
            id=db_order.id,
            order_number=db_order.order_number,
            user_id=db_order.user_id,
            course_id=db_order.course_id,
            student_id=db_order.student_id,
            coupon_id=db_order.coupon_id,
            bank_account_id=db_order.bank_account_id,
            payment_method=db_order.payment_method,
            currency=db_order.currency,
            base_amount=db_order.base_amount,
            discount_percent=db_order.discount_percent or 0,
            discount_amount=db_order.discount_amount,
            final_amount=db_order.final_amount,
            status=db_order.status,
            mp_preference_id=db_order.mp_preference_id,
            mp_checkout_url=db_order.mp_checkout_url,
            mp_payment_id=db_order.mp_payment_id,
            mp_status=db_order.mp_status,
            mp_status_detail=db_order.mp_status_detail,
            transfer_reference=db_order.transfer_reference,
            transfer_proof_url=db_order.transfer_proof_url,
            transfer_sent_at=db_order.transfer_sent_at,
            paid_at=db_order.paid_at,
            cancelled_at=db_order.cancelled_at,
            rejected_at=db_order.rejected_at,
            created_at=db_order.created_at,
            updated_at=db_order.updated_at
        )
