"""
Coupon data access
"""

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from academy.models.coupon import Coupon
from academy.models.database.coupon_db import CouponDB


def normalize_coupon_code(code: str) -> str:
    return code.strip().upper()


class CouponRepository:
    """Coupon data access"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_code(self, code: str) -> Optional[CouponDB]:
        """Look a coupon up by its case-normalised code"""
        result = await self.db.execute(
            select(CouponDB).where(CouponDB.code == normalize_coupon_code(code))
        )
        return result.scalar_one_or_none()

    async def get_by_id(self, coupon_id: str) -> Optional[CouponDB]:
        result = await self.db.execute(
            select(CouponDB)
            .where(CouponDB.id == coupon_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def try_consume_use(self, coupon_id: str) -> bool:
        """Increment current_uses only while below max_uses"""
        result = await self.db.execute(
            update(CouponDB)
            .where(
                CouponDB.id == coupon_id,
                CouponDB.current_uses < CouponDB.max_uses
            )
            .values(current_uses=CouponDB.current_uses + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def force_consume_use(self, coupon_id: str) -> None:
        """Record a use for an order that was already paid with the discount"""
        await self.db.execute(
            update(CouponDB)
            .where(CouponDB.id == coupon_id)
            .values(current_uses=CouponDB.current_uses + 1)
            .execution_options(synchronize_session=False)
        )

    def to_model(self, db_coupon: CouponDB) -> Coupon:
        """Convert to the pydantic model"""
        return Coupon(
            id=db_coupon.id,
            code=db_coupon.code,
            discount_percent=db_coupon.discount_percent,
            max_uses=db_coupon.max_uses,
            current_uses=db_coupon.current_uses or 0,
            restricted_to_email=db_coupon.restricted_to_email,
            restricted_to_course_id=db_coupon.restricted_to_course_id,
            min_purchase_amount=db_coupon.min_purchase_amount,
            valid_from=db_coupon.valid_from,
            expires_at=db_coupon.expires_at,
            is_active=db_coupon.is_active,
            description=db_coupon.description
        )
