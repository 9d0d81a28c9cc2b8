"""
Transaction Log Module

Append-only log of every balance-changing attempt, successful or not, and
the read-only history query over it. A written Transaction is never updated
or removed: together the SUCCESS entries reconstruct every account balance.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum

from .money import to_amount, is_positive
from .storage import StorageInterface, StorageRecord
from .accounts import AccountStore
from .errors import AccountNotFound
from .schemas import TransactionView


class TransactionType(Enum):
    """Kinds of ledger operations"""
    DEPOSIT = "DEPOSIT"    # Credit to destination only
    WITHDRAW = "WITHDRAW"  # Debit from source only
    TRANSFER = "TRANSFER"  # Debit source, credit destination


class TransactionStatus(Enum):
    """Outcome of a ledger operation"""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass
class Transaction(StorageRecord):
    """
    Immutable record of one ledger operation. For a FAILED attempt the
    requested amount is recorded.
    """
    type: TransactionType
    status: TransactionStatus
    amount: Decimal
    timestamp: datetime
    source_account_id: Optional[int] = None
    destination_account_id: Optional[int] = None

    def __post_init__(self):
        self.amount = to_amount(self.amount)
        if not is_positive(self.amount):
            raise ValueError("Transaction amount must be positive")

        has_source = self.source_account_id is not None
        has_destination = self.destination_account_id is not None
        expected = {
            TransactionType.DEPOSIT: (False, True),
            TransactionType.WITHDRAW: (True, False),
            TransactionType.TRANSFER: (True, True),
        }[self.type]
        if (has_source, has_destination) != expected:
            raise ValueError(f"{self.type.value} transaction has wrong account references")

    @property
    def is_successful(self) -> bool:
        return self.status == TransactionStatus.SUCCESS

    def involves(self, account_id: int) -> bool:
        """Check if the account is source or destination"""
        return account_id in (self.source_account_id, self.destination_account_id)

    def effect_on(self, account_id: int) -> Decimal:
        """Signed balance change this entry applied to an account"""
        if not self.is_successful:
            return Decimal('0.00')
        effect = Decimal('0.00')
        if self.destination_account_id == account_id:
            effect += self.amount
        if self.source_account_id == account_id:
            effect -= self.amount
        return effect

    @classmethod
    def from_dict(cls, data: Dict) -> 'Transaction':
        return cls(
            id=data['id'],
            type=TransactionType(data['type']),
            status=TransactionStatus(data['status']),
            amount=Decimal(data['amount']),
            timestamp=datetime.fromisoformat(data['timestamp']),
            source_account_id=data.get('source_account_id'),
            destination_account_id=data.get('destination_account_id')
        )


def _newest_first(transaction: Transaction):
    return (transaction.timestamp, transaction.id)


class TransactionLog:
    """
    Durable append-only store of transactions
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "transactions"

    def append(
        self,
        transaction_type: TransactionType,
        status: TransactionStatus,
        amount: Decimal,
        source_account_id: Optional[int] = None,
        destination_account_id: Optional[int] = None
    ) -> Transaction:
        """
        Write a new entry. Id and timestamp are assigned here, never by the
        caller. Participates in the caller's atomic unit if one is open.
        """
        transaction = Transaction(
            id=self.storage.next_id(self.table_name),
            type=transaction_type,
            status=status,
            amount=amount,
            timestamp=datetime.now(timezone.utc),
            source_account_id=source_account_id,
            destination_account_id=destination_account_id
        )
        self.storage.insert(self.table_name, str(transaction.id), transaction.to_dict())
        return transaction

    def get(self, transaction_id: int) -> Optional[Transaction]:
        """Get a single entry by id"""
        data = self.storage.load(self.table_name, str(transaction_id))
        if data:
            return Transaction.from_dict(data)
        return None

    def find_by_account_id(self, account_id: int) -> List[Transaction]:
        """
        Every entry where the account is source or destination, newest first
        (timestamp descending, ties broken by id descending)
        """
        rows = self.storage.find_any(self.table_name, [
            {"source_account_id": account_id},
            {"destination_account_id": account_id},
        ])
        transactions = [Transaction.from_dict(row) for row in rows]
        transactions.sort(key=_newest_first, reverse=True)
        return transactions

    def count(self) -> int:
        return self.storage.count(self.table_name)


class TransactionHistory:
    """
    Read-only history query; never writes
    """

    def __init__(self, log: TransactionLog, accounts: AccountStore):
        self.log = log
        self.accounts = accounts

    def get_account_history(self, account_id: int) -> List[TransactionView]:
        """
        Public views of every transaction touching an account, newest first

        Raises:
            AccountNotFound: If no account has this id
        """
        if self.accounts.get_by_id(account_id) is None:
            raise AccountNotFound("id", account_id)

        numbers: Dict[int, Optional[str]] = {}

        def number_of(ref: Optional[int]) -> Optional[str]:
            if ref is None:
                return None
            if ref not in numbers:
                account = self.accounts.get_by_id(ref)
                numbers[ref] = account.account_number if account else None
            return numbers[ref]

        return [
            TransactionView.from_transaction(
                txn,
                from_account_number=number_of(txn.source_account_id),
                to_account_number=number_of(txn.destination_account_id)
            )
            for txn in self.log.find_by_account_id(account_id)
        ]

    def reconstruct_balance(self, account_id: int) -> Decimal:
        """Balance implied by the account's SUCCESS entries (credits minus debits)"""
        total = Decimal('0.00')
        for txn in self.log.find_by_account_id(account_id):
            total += txn.effect_on(account_id)
        return total
