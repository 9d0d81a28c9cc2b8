"""
Integration tests for the ledger system

Drives a full user/account/ledger/history session through LedgerSystem.
"""

import pytest
from decimal import Decimal

from core_ledger.system import LedgerSystem
from core_ledger.config import LedgerConfig
from core_ledger.errors import InsufficientBalance, DuplicateEmail, AccountNotFound


@pytest.fixture(params=["memory://", "sqlite://"])
def system(request):
    ledger_system = LedgerSystem(config=LedgerConfig(database_url=request.param))
    yield ledger_system
    ledger_system.close()


def test_full_session(system):
    """Deposit, withdraw, transfer and a rejected withdrawal end to end"""
    user = system.create_user("Jane Doe", "jane@example.com")
    a1 = system.account_manager.create_account(user.id)
    a2 = system.account_manager.create_account(user.id)
    assert a1.account_number != a2.account_number

    system.ledger.deposit(a1.account_number, Decimal('100.00'))
    system.ledger.withdraw(a1.account_number, Decimal('30.00'))
    system.ledger.transfer(a1.account_number, a2.account_number, Decimal('50.00'))

    with pytest.raises(InsufficientBalance):
        system.ledger.withdraw(a1.account_number, Decimal('1000.00'))

    assert system.account_manager.get_account(a1.account_number).balance == Decimal('20.00')
    assert system.account_manager.get_account(a2.account_number).balance == Decimal('50.00')

    history = system.history.get_account_history(a1.id)
    assert [(v.type, v.status) for v in history] == [
        ("WITHDRAW", "FAILED"),
        ("TRANSFER", "SUCCESS"),
        ("WITHDRAW", "SUCCESS"),
        ("DEPOSIT", "SUCCESS"),
    ]
    assert history[0].amount == Decimal('1000.00')
    assert history[1].to_account_number == a2.account_number

    a2_history = system.history.get_account_history(a2.id)
    assert [(v.type, v.from_account_number) for v in a2_history] == [
        ("TRANSFER", a1.account_number)
    ]

    assert system.history.reconstruct_balance(a1.id) == Decimal('20.00')
    assert system.history.reconstruct_balance(a2.id) == Decimal('50.00')


def test_user_accounts_listing(system):
    user = system.create_user("Jane Doe", "jane@example.com")
    created = [system.account_manager.create_account(user.id) for _ in range(3)]

    listed = system.account_manager.get_user_accounts(user.id)
    assert [a.account_number for a in listed] == [a.account_number for a in created]
    assert all(a.user_name == "Jane Doe" for a in listed)


def test_duplicate_registration(system):
    system.create_user("Jane Doe", "jane@example.com")
    with pytest.raises(DuplicateEmail):
        system.create_user("Jane Again", "jane@example.com")


def test_configured_account_number_length():
    """Test that configuration reaches the number generator"""
    config = LedgerConfig(account_number_length=12)
    with LedgerSystem(config=config) as system:
        user = system.create_user("Jane Doe", "jane@example.com")
        account = system.account_manager.create_account(user.id)
        assert len(account.account_number) == 12


def test_persistent_sqlite_reopen(tmp_path):
    """Test balances and history survive reopening a file database"""
    url = f"sqlite:///{tmp_path / 'ledger.db'}"

    with LedgerSystem(config=LedgerConfig(database_url=url)) as system:
        user = system.create_user("Jane Doe", "jane@example.com")
        account = system.account_manager.create_account(user.id)
        system.ledger.deposit(account.account_number, Decimal('42.10'))

    with LedgerSystem(config=LedgerConfig(database_url=url)) as system:
        reopened = system.account_manager.get_account(account.account_number)
        assert reopened.balance == Decimal('42.10')
        assert len(system.history.get_account_history(reopened.id)) == 1

        # Sequences continue where they left off
        other = system.create_user("John Roe", "john@example.com")
        assert other.id == user.id + 1


def test_ledger_shares_system_lock_manager(system):
    """Test that the wired ledger locks through the system's manager"""
    assert system.ledger.locks is system.locks

    for index in range(100):
        with pytest.raises(AccountNotFound):
            system.ledger.withdraw(f"{index:010d}", Decimal('1.00'))

    assert len(system.locks) == 0
