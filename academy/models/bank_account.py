"""
Bank account model
"""

from typing import Optional
from pydantic import BaseModel


class BankAccount(BaseModel):
    """Destination account listed in transfer instructions"""

    id: str
    bank_name: str
    account_holder: str
    account_type: str
    account_number: str
    currency: str
    swift_code: Optional[str] = None
    routing_number: Optional[str] = None
    display_order: int = 0
    notes: Optional[str] = None
    is_active: bool = True
