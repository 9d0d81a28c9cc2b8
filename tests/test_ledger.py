"""
Test suite for ledger core

Tests deposits, withdrawals and transfers including rejected debits,
validation ordering and atomicity on infrastructure failure. Every test runs
against both storage backends.
"""

import pytest
from decimal import Decimal

from core_ledger.storage import InMemoryStorage, SQLiteStorage
from core_ledger.users import UserDirectory
from core_ledger.accounts import AccountStore, AccountManager
from core_ledger.transactions import TransactionLog, TransactionHistory
from core_ledger.ledger import LedgerService
from core_ledger.errors import (
    AccountNotFound, InsufficientBalance, InvalidOperation, InvalidAmount,
    LedgerInfrastructureError
)


class TestLedgerService:
    """Test ledger operations (in-memory storage)"""

    def make_storage(self):
        return InMemoryStorage()

    def setup_method(self):
        self.storage = self.make_storage()
        self.users = UserDirectory(self.storage)
        self.accounts = AccountStore(self.storage)
        self.log = TransactionLog(self.storage)
        self.manager = AccountManager(self.accounts, self.users)
        self.history = TransactionHistory(self.log, self.accounts)
        self.ledger = LedgerService(self.storage, self.accounts, self.log)

        user = self.users.create_user("Jane Doe", "jane@example.com")
        self.first = self.manager.create_account(user.id).account_number
        self.second = self.manager.create_account(user.id).account_number

    def teardown_method(self):
        self.storage.close()

    def balance(self, account_number):
        return self.accounts.get(account_number).balance

    # Deposit

    def test_deposit(self):
        """Test crediting an account"""
        view = self.ledger.deposit(self.first, Decimal('100.00'))

        assert view.type == "DEPOSIT"
        assert view.status == "SUCCESS"
        assert view.amount == Decimal('100.00')
        assert view.from_account_number is None
        assert view.to_account_number == self.first
        assert self.balance(self.first) == Decimal('100.00')
        assert self.log.count() == 1

    def test_deposit_normalizes_to_two_digits(self):
        view = self.ledger.deposit(self.first, "10.5")
        assert str(view.amount) == "10.50"
        assert self.balance(self.first) == Decimal('10.50')

    @pytest.mark.parametrize("amount", ["10.005", "1e30", 10 ** 26])
    def test_deposit_unrepresentable_amount(self, amount):
        """Test sub-cent and oversized amounts surface as InvalidAmount"""
        with pytest.raises(InvalidAmount):
            self.ledger.deposit(self.first, amount)

        assert self.balance(self.first) == Decimal('0.00')
        assert self.log.count() == 0

    def test_deposit_unknown_account(self):
        """Test that nothing is written for a missing account"""
        with pytest.raises(AccountNotFound) as exc_info:
            self.ledger.deposit("0000000000", Decimal('10.00'))

        assert exc_info.value.field_name == "accountNumber"
        assert self.log.count() == 0

    @pytest.mark.parametrize("amount", [Decimal('0'), Decimal('-5.00'), "0.004", "abc"])
    def test_deposit_invalid_amount(self, amount):
        """Test that non-positive amounts are rejected before any write"""
        with pytest.raises(InvalidAmount) as exc_info:
            self.ledger.deposit(self.first, amount)

        assert exc_info.value.http_status == 400
        assert self.balance(self.first) == Decimal('0.00')
        assert self.log.count() == 0

    def test_invalid_amount_checked_before_account(self):
        """Test validation order for a missing account and a bad amount"""
        with pytest.raises(InvalidAmount):
            self.ledger.deposit("0000000000", Decimal('0'))

    def test_empty_account_number(self):
        with pytest.raises(InvalidOperation):
            self.ledger.deposit("", Decimal('1.00'))

    # Withdraw

    def test_withdraw(self):
        """Test debiting an account"""
        self.ledger.deposit(self.first, Decimal('100.00'))

        view = self.ledger.withdraw(self.first, Decimal('30.00'))

        assert view.type == "WITHDRAW"
        assert view.status == "SUCCESS"
        assert view.from_account_number == self.first
        assert view.to_account_number is None
        assert self.balance(self.first) == Decimal('70.00')

    def test_withdraw_entire_balance(self):
        """Test that balance may reach exactly zero"""
        self.ledger.deposit(self.first, Decimal('50.00'))
        self.ledger.withdraw(self.first, Decimal('50.00'))
        assert self.balance(self.first) == Decimal('0.00')

    def test_withdraw_insufficient_balance_records_failure(self):
        """Test that a rejected debit is recorded as FAILED"""
        self.ledger.deposit(self.first, Decimal('20.00'))

        with pytest.raises(InsufficientBalance) as exc_info:
            self.ledger.withdraw(self.first, Decimal('20.01'))

        error = exc_info.value
        assert error.account_number == self.first
        assert error.requested == Decimal('20.01')
        assert error.available == Decimal('20.00')
        assert error.code == 2002

        assert self.balance(self.first) == Decimal('20.00')
        failed = self.log.get(error.transaction_id)
        assert failed.status.value == "FAILED"
        assert failed.amount == Decimal('20.01')
        assert self.log.count() == 2

    def test_withdraw_unknown_account(self):
        with pytest.raises(AccountNotFound):
            self.ledger.withdraw("0000000000", Decimal('10.00'))
        assert self.log.count() == 0

    def test_withdraw_invalid_amount(self):
        with pytest.raises(InvalidAmount):
            self.ledger.withdraw(self.first, Decimal('-1'))
        assert self.log.count() == 0

    # Transfer

    def test_transfer(self):
        """Test moving funds between accounts"""
        self.ledger.deposit(self.first, Decimal('100.00'))

        view = self.ledger.transfer(self.first, self.second, Decimal('40.00'))

        assert view.type == "TRANSFER"
        assert view.status == "SUCCESS"
        assert view.from_account_number == self.first
        assert view.to_account_number == self.second
        assert self.balance(self.first) == Decimal('60.00')
        assert self.balance(self.second) == Decimal('40.00')

    def test_transfer_insufficient_balance(self):
        """Test that neither balance moves and a FAILED entry is recorded"""
        self.ledger.deposit(self.first, Decimal('10.00'))

        with pytest.raises(InsufficientBalance) as exc_info:
            self.ledger.transfer(self.first, self.second, Decimal('10.01'))

        assert self.balance(self.first) == Decimal('10.00')
        assert self.balance(self.second) == Decimal('0.00')

        failed = self.log.get(exc_info.value.transaction_id)
        assert failed.type.value == "TRANSFER"
        assert failed.status.value == "FAILED"
        # The destination sees the failed attempt in its history too
        assert [v.status for v in self.history.get_account_history(
            self.accounts.get(self.second).id)] == ["FAILED"]

    def test_transfer_to_same_account(self):
        """Test self-transfer rejected with no entry written"""
        self.ledger.deposit(self.first, Decimal('10.00'))

        with pytest.raises(InvalidOperation) as exc_info:
            self.ledger.transfer(self.first, self.first, Decimal('1.00'))

        assert not isinstance(exc_info.value, InvalidAmount)
        assert exc_info.value.code == 2003
        assert self.log.count() == 1

    def test_same_account_checked_before_amount(self):
        with pytest.raises(InvalidOperation) as exc_info:
            self.ledger.transfer(self.first, self.first, Decimal('0'))
        assert exc_info.value.code == 2003

    def test_transfer_unknown_destination(self):
        """Test no entry and no balance change for a missing destination"""
        self.ledger.deposit(self.first, Decimal('10.00'))

        with pytest.raises(AccountNotFound) as exc_info:
            self.ledger.transfer(self.first, "0000000000", Decimal('5.00'))

        assert exc_info.value.field_value == "0000000000"
        assert self.balance(self.first) == Decimal('10.00')
        assert self.log.count() == 1

    def test_transfer_both_accounts_missing_reports_source(self):
        with pytest.raises(AccountNotFound) as exc_info:
            self.ledger.transfer("0000000001", "0000000002", Decimal('5.00'))

        assert exc_info.value.field_value == "0000000001"

    def test_transfer_invalid_amount(self):
        with pytest.raises(InvalidAmount):
            self.ledger.transfer(self.first, self.second, Decimal('0.00'))
        assert self.log.count() == 0

    # Atomicity

    def test_log_failure_rolls_back_balance(self):
        """Test that a failing append leaves balances untouched"""
        self.ledger.deposit(self.first, Decimal('100.00'))

        def broken_append(*args, **kwargs):
            raise RuntimeError("disk on fire")

        self.log.append = broken_append

        with pytest.raises(LedgerInfrastructureError) as exc_info:
            self.ledger.transfer(self.first, self.second, Decimal('25.00'))

        assert "disk" not in exc_info.value.message
        assert exc_info.value.http_status == 500
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert self.balance(self.first) == Decimal('100.00')
        assert self.balance(self.second) == Decimal('0.00')
        assert self.log.count() == 1

    def test_balances_match_reconstruction(self):
        """Test that SUCCESS entries reconstruct every balance"""
        self.ledger.deposit(self.first, Decimal('100.00'))
        self.ledger.withdraw(self.first, Decimal('12.34'))
        self.ledger.transfer(self.first, self.second, Decimal('50.00'))
        with pytest.raises(InsufficientBalance):
            self.ledger.transfer(self.second, self.first, Decimal('50.01'))
        self.ledger.transfer(self.second, self.first, Decimal('0.66'))

        for number in (self.first, self.second):
            account = self.accounts.get(number)
            assert self.history.reconstruct_balance(account.id) == account.balance

        assert self.balance(self.first) == Decimal('38.32')
        assert self.balance(self.second) == Decimal('49.34')


class TestLedgerServiceSQLite(TestLedgerService):
    """Test ledger operations (SQLite storage)"""

    def make_storage(self):
        return SQLiteStorage()
