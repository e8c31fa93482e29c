"""
Create the checkout tables and seed a default bank account

Run with:
python -m academy.scripts.init_checkout_tables
"""

import asyncio
import logging
import uuid

from sqlalchemy import select

from academy.core.config import settings
from academy.core.database import Database
from academy.models.database import BankAccountDB

logger = logging.getLogger(__name__)

DEFAULT_BANK_ACCOUNT = {
    "bank_name": "BROU",
    "account_holder": "Tinta Academy",
    "account_type": "Caja de ahorro",
    "account_number": "000000000-00000",
    "currency": "UYU",
    "display_order": 0,
    "notes": "Default account created by init_checkout_tables, edit before going live",
}


async def create_checkout_tables() -> None:
    database = Database(settings)
    try:
        await database.init_database()

        logger.info("Creating checkout tables...")
        await database.create_all()
        logger.info("Checkout tables created")

        async with database.session() as session:
            existing = await session.execute(select(BankAccountDB.id).limit(1))
            if existing.first() is None:
                session.add(BankAccountDB(id=str(uuid.uuid4()), **DEFAULT_BANK_ACCOUNT))
                await session.commit()
                logger.info("Default bank account created")
            else:
                logger.info("Bank accounts already present, seed skipped")

    except Exception as e:
        logger.error(f"Creating checkout tables failed: {e}")
        raise
    finally:
        await database.close_database()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    asyncio.run(create_checkout_tables())
