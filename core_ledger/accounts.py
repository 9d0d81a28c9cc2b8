"""
Account Management Module

Account records, the Account Store (keyed storage with compare-and-write on
balance) and account-number generation. Accounts reference their owner by
user id only; the User is the authority over ownership.
"""

import secrets
import string
from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from .money import ZERO, to_amount
from .storage import StorageInterface, StorageRecord
from .users import UserDirectory
from .errors import (
    AccountNotFound, AccountNumberExhaustedError, infrastructure_guard
)
from .schemas import AccountView
from .logging_config import get_logger, log_action


@dataclass
class Account(StorageRecord):
    """
    Customer account. Balance is only ever changed by the ledger core.
    """
    account_number: str
    user_id: int
    created_at: datetime
    updated_at: datetime
    balance: Decimal = ZERO
    version: int = 0  # Incremented on every write; compare-and-write token

    def __post_init__(self):
        self.balance = to_amount(self.balance)
        if self.balance < ZERO:
            raise ValueError("Account balance cannot be negative")

    def can_cover(self, amount: Decimal) -> bool:
        """Check if the balance is enough for a debit of amount"""
        return self.balance >= amount

    def credited(self, amount: Decimal) -> 'Account':
        """Copy of this account with amount added"""
        return replace(self, balance=self.balance + amount)

    def debited(self, amount: Decimal) -> 'Account':
        """Copy of this account with amount removed"""
        return replace(self, balance=self.balance - amount)

    @classmethod
    def from_dict(cls, data: Dict) -> 'Account':
        return cls(
            id=data['id'],
            account_number=data['account_number'],
            user_id=data['user_id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            balance=Decimal(data['balance']),
            version=data['version']
        )


class AccountStore:
    """
    Durable keyed storage of accounts.

    Account numbers are unique through the ``account_numbers`` index table,
    written with an insert in the same unit as the account itself.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "accounts"
        self.number_index_table = "account_numbers"

    def get(self, account_number: str) -> Optional[Account]:
        """Get account by account number"""
        index = self.storage.load(self.number_index_table, account_number)
        if index is None:
            return None
        return self.get_by_id(index['account_id'])

    def get_by_id(self, account_id: int) -> Optional[Account]:
        """Get account by storage id"""
        data = self.storage.load(self.table_name, str(account_id))
        if data:
            return Account.from_dict(data)
        return None

    def exists_by_number(self, account_number: str) -> bool:
        """Check if an account number is taken"""
        return self.storage.exists(self.number_index_table, account_number)

    def list_by_user(self, user_id: int) -> List[Account]:
        """All accounts owned by a user, oldest first"""
        rows = self.storage.find(self.table_name, {"user_id": user_id})
        return sorted((Account.from_dict(row) for row in rows), key=lambda a: a.id)

    def create(self, account_number: str, user_id: int) -> Account:
        """
        Persist a new zero-balance account

        Raises:
            DuplicateRecordError: If the account number is already taken
        """
        now = datetime.now(timezone.utc)
        with self.storage.atomic():
            account = Account(
                id=self.storage.next_id(self.table_name),
                account_number=account_number,
                user_id=user_id,
                created_at=now,
                updated_at=now
            )
            self.storage.insert(self.number_index_table, account_number, {"account_id": account.id})
            self.storage.insert(self.table_name, str(account.id), account.to_dict())
        return account

    def update(self, account: Account) -> Account:
        """
        Write a changed account back, provided nobody else wrote it since it
        was read (its version still matches)

        Returns:
            The stored account with its new version

        Raises:
            ConcurrentModificationError: If the stored version moved on
        """
        stored = replace(
            account,
            version=account.version + 1,
            updated_at=datetime.now(timezone.utc)
        )
        self.storage.compare_and_save(
            self.table_name, str(account.id), stored.to_dict(),
            field_name="version", expected=account.version
        )
        return stored


class AccountNumberGenerator:
    """
    Draws random fixed-length numeric account numbers until one is free.

    The existence check is an optimization; the store's unique index is what
    actually guarantees uniqueness.
    """

    def __init__(self, store: AccountStore, length: int = 10, max_attempts: int = 20):
        if length < 1:
            raise ValueError("Account number length must be positive")
        if max_attempts < 1:
            raise ValueError("max_attempts must be positive")
        self.store = store
        self.length = length
        self.max_attempts = max_attempts
        self._random = secrets.SystemRandom()

    def candidate(self) -> str:
        """One random candidate number"""
        return "".join(self._random.choice(string.digits) for _ in range(self.length))

    def generate(self) -> str:
        """
        Generate an account number not present in the store

        Raises:
            AccountNumberExhaustedError: If every attempt collided
        """
        for _ in range(self.max_attempts):
            number = self.candidate()
            if not self.store.exists_by_number(number):
                return number
        raise AccountNumberExhaustedError(self.max_attempts)


class AccountManager:
    """
    Account creation and read access to accounts' public views
    """

    def __init__(
        self,
        store: AccountStore,
        users: UserDirectory,
        number_generator: Optional[AccountNumberGenerator] = None
    ):
        self.store = store
        self.users = users
        self.number_generator = number_generator or AccountNumberGenerator(store)
        self.logger = get_logger("core_ledger.accounts")

    def create_account(self, user_id: int) -> AccountView:
        """
        Open a new zero-balance account for an existing user

        Args:
            user_id: Owner of the new account

        Returns:
            Public view of the created account

        Raises:
            UserNotFound: If the user does not exist
            AccountNumberExhaustedError: If no free account number was found
        """
        user = self.users.get_user(user_id)

        with infrastructure_guard(self.logger, "create_account"):
            account_number = self.number_generator.generate()
            account = self.store.create(account_number, user.id)

        log_action(
            self.logger, "info", "Account created",
            account_number=account.account_number,
            action="create_account", resource=f"account:{account.id}",
            extra={"user_id": user.id}
        )
        return AccountView.from_account(account, user)

    def get_account(self, account_number: str) -> AccountView:
        """Public view of an account, by number"""
        account = self.store.get(account_number)
        if account is None:
            raise AccountNotFound("accountNumber", account_number)
        return AccountView.from_account(account, self.users.get_by_id(account.user_id))

    def get_user_accounts(self, user_id: int) -> List[AccountView]:
        """Public views of all accounts a user owns"""
        user = self.users.get_user(user_id)
        return [AccountView.from_account(account, user) for account in self.store.list_by_user(user.id)]
