"""
Ledger Core

Deposits, withdrawals and transfers. Each operation is one atomic unit
covering the balance read, the balance write and the transaction-log append,
executed while holding the per-account locks of every account it touches.

A rejected debit (insufficient funds) is itself an auditable event: its
FAILED entry is committed before InsufficientBalance is raised. Missing
accounts and self-transfers are rejected before anything is written.
"""

from decimal import Decimal
from typing import Optional

from .money import to_amount, is_positive, AmountLike
from .storage import StorageInterface
from .locking import AccountLockManager
from .accounts import Account, AccountStore
from .transactions import Transaction, TransactionLog, TransactionType, TransactionStatus
from .schemas import TransactionView
from .errors import (
    AccountNotFound, InsufficientBalance, InvalidOperation, InvalidAmount,
    infrastructure_guard
)
from .logging_config import get_logger, log_action


class LedgerService:
    """
    Orchestrates balance-changing operations against the Account Store and
    the Transaction Log
    """

    def __init__(
        self,
        storage: StorageInterface,
        accounts: AccountStore,
        log: TransactionLog,
        locks: Optional[AccountLockManager] = None
    ):
        self.storage = storage
        self.accounts = accounts
        self.log = log
        self.locks = locks if locks is not None else AccountLockManager()
        self.logger = get_logger("core_ledger.ledger")

    def deposit(self, account_number: str, amount: AmountLike) -> TransactionView:
        """
        Credit an account

        Args:
            account_number: Account to credit
            amount: Strictly positive amount

        Returns:
            Public view of the SUCCESS DEPOSIT entry

        Raises:
            InvalidAmount: If amount is not strictly positive
            AccountNotFound: If the account does not exist
        """
        self._require_number(account_number)
        amount = self._validate_amount(amount)

        with self.locks.hold(account_number):
            with infrastructure_guard(self.logger, "deposit"):
                with self.storage.atomic():
                    account = self._find_account(account_number)
                    self.accounts.update(account.credited(amount))
                    transaction = self.log.append(
                        TransactionType.DEPOSIT, TransactionStatus.SUCCESS, amount,
                        destination_account_id=account.id
                    )

        self._log_entry(transaction, account_number)
        return TransactionView.from_transaction(transaction, to_account_number=account_number)

    def withdraw(self, account_number: str, amount: AmountLike) -> TransactionView:
        """
        Debit an account if its balance covers the amount

        Returns:
            Public view of the SUCCESS WITHDRAW entry

        Raises:
            InvalidAmount: If amount is not strictly positive
            AccountNotFound: If the account does not exist
            InsufficientBalance: If the balance is lower than amount; a FAILED
                WITHDRAW entry has been committed
        """
        self._require_number(account_number)
        amount = self._validate_amount(amount)

        with self.locks.hold(account_number):
            with infrastructure_guard(self.logger, "withdraw"):
                with self.storage.atomic():
                    account = self._find_account(account_number)
                    if account.can_cover(amount):
                        self.accounts.update(account.debited(amount))
                        status = TransactionStatus.SUCCESS
                    else:
                        status = TransactionStatus.FAILED
                    transaction = self.log.append(
                        TransactionType.WITHDRAW, status, amount,
                        source_account_id=account.id
                    )

        self._log_entry(transaction, account_number)
        if not transaction.is_successful:
            raise InsufficientBalance(account_number, amount, account.balance, transaction.id)
        return TransactionView.from_transaction(transaction, from_account_number=account_number)

    def transfer(self, from_account_number: str, to_account_number: str,
                 amount: AmountLike) -> TransactionView:
        """
        Move funds between two accounts as one indivisible unit

        Returns:
            Public view of the SUCCESS TRANSFER entry

        Raises:
            InvalidOperation: If source and destination are the same account
            InvalidAmount: If amount is not strictly positive
            AccountNotFound: If either account does not exist (the source is
                reported when both are missing)
            InsufficientBalance: If the source balance is lower than amount; a
                FAILED TRANSFER entry has been committed
        """
        self._require_number(from_account_number)
        self._require_number(to_account_number)
        if from_account_number == to_account_number:
            raise InvalidOperation("Cannot transfer to the same account")
        amount = self._validate_amount(amount)

        with self.locks.hold(from_account_number, to_account_number):
            with infrastructure_guard(self.logger, "transfer"):
                with self.storage.atomic():
                    source = self._find_account(from_account_number)
                    destination = self._find_account(to_account_number)
                    if source.can_cover(amount):
                        self.accounts.update(source.debited(amount))
                        self.accounts.update(destination.credited(amount))
                        status = TransactionStatus.SUCCESS
                    else:
                        status = TransactionStatus.FAILED
                    transaction = self.log.append(
                        TransactionType.TRANSFER, status, amount,
                        source_account_id=source.id,
                        destination_account_id=destination.id
                    )

        self._log_entry(transaction, from_account_number, to_account_number)
        if not transaction.is_successful:
            raise InsufficientBalance(from_account_number, amount, source.balance, transaction.id)
        return TransactionView.from_transaction(
            transaction,
            from_account_number=from_account_number,
            to_account_number=to_account_number
        )

    def _find_account(self, account_number: str) -> Account:
        account = self.accounts.get(account_number)
        if account is None:
            raise AccountNotFound("accountNumber", account_number)
        return account

    @staticmethod
    def _require_number(account_number: str) -> None:
        if not account_number:
            raise InvalidOperation("Account number is required")

    @staticmethod
    def _validate_amount(amount: AmountLike) -> Decimal:
        try:
            value = to_amount(amount)
        except ValueError:
            raise InvalidAmount(amount)
        if not is_positive(value):
            raise InvalidAmount(amount)
        return value

    def _log_entry(self, transaction: Transaction, account_number: str,
                   counterparty: Optional[str] = None) -> None:
        action = transaction.type.value.lower()
        if transaction.is_successful:
            level, message = "info", f"{transaction.type.value} completed"
        else:
            level, message = "warning", f"{transaction.type.value} rejected: insufficient balance"
            action += "_rejected"

        extra = {
            "transaction_id": transaction.id,
            "amount": str(transaction.amount),
            "status": transaction.status.value,
        }
        if counterparty:
            extra["to_account"] = counterparty

        log_action(
            self.logger, level, message,
            account_number=account_number, action=action,
            resource=f"transaction:{transaction.id}", extra=extra
        )
