"""
Bank account data access
"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.models.bank_account import BankAccount
from academy.models.database.bank_account_db import BankAccountDB


class BankAccountRepository:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, account_id: str) -> Optional[BankAccountDB]:
        result = await self.db.execute(
            select(BankAccountDB).where(BankAccountDB.id == account_id)
        )
        return result.scalar_one_or_none()

    async def get_active(self, currency: Optional[str] = None) -> List[BankAccountDB]:
        """Active accounts in checkout display order"""
        conditions = [BankAccountDB.is_active.is_(True)]
        if currency:
            conditions.append(BankAccountDB.currency == currency)

        result = await self.db.execute(
            select(BankAccountDB)
            .where(*conditions)
            .order_by(BankAccountDB.display_order, BankAccountDB.created_at)
        )
        return list(result.scalars().all())

    def to_model(self, db_account: BankAccountDB) -> BankAccount:
        return BankAccount(
            id=db_account.id,
            bank_name=db_account.bank_name,
            account_holder=db_account.account_holder,
            account_type=db_account.account_type,
            account_number=db_account.account_number,
            currency=db_account.currency,
            swift_code=db_account.swift_code,
            routing_number=db_account.routing_number,
            display_order=db_account.display_order or 0,
            notes=db_account.notes,
            is_active=db_account.is_active
        )
