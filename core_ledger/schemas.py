"""
Pydantic public views of ledger entities

These are the shapes handed back to callers: internal storage references
between entities are replaced by public identifiers such as account numbers.
"""

from decimal import Decimal
from datetime import datetime
from typing import Optional, TYPE_CHECKING
from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .users import User
    from .accounts import Account
    from .transactions import Transaction


class UserView(BaseModel):
    id: int
    name: str
    email: str
    created_at: datetime

    @classmethod
    def from_user(cls, user: 'User') -> 'UserView':
        return cls(id=user.id, name=user.name, email=user.email, created_at=user.created_at)


class AccountView(BaseModel):
    id: int
    account_number: str
    balance: Decimal = Field(..., description="Balance with two fractional digits")
    user_id: int
    user_name: Optional[str] = None

    @classmethod
    def from_account(cls, account: 'Account', user: Optional['User'] = None) -> 'AccountView':
        return cls(
            id=account.id,
            account_number=account.account_number,
            balance=account.balance,
            user_id=account.user_id,
            user_name=user.name if user else None
        )


class TransactionView(BaseModel):
    id: int
    from_account_number: Optional[str] = None
    to_account_number: Optional[str] = None
    amount: Decimal
    type: str = Field(..., description="DEPOSIT, WITHDRAW or TRANSFER")
    status: str = Field(..., description="SUCCESS or FAILED")
    timestamp: datetime

    @classmethod
    def from_transaction(
        cls,
        transaction: 'Transaction',
        from_account_number: Optional[str] = None,
        to_account_number: Optional[str] = None
    ) -> 'TransactionView':
        return cls(
            id=transaction.id,
            from_account_number=from_account_number,
            to_account_number=to_account_number,
            amount=transaction.amount,
            type=transaction.type.value,
            status=transaction.status.value,
            timestamp=transaction.timestamp
        )
