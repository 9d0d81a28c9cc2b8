"""
Account Locking Module

In-process per-account locks. Operations touching several accounts acquire
their locks in ascending account-number order, so two transfers running in
opposite directions between the same pair of accounts cannot deadlock.

A lock exists only while some caller holds or waits for it; the registry
never grows beyond the accounts currently in use.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class _LockEntry:
    """Lock plus the number of callers holding or waiting for it"""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class AccountLockManager:
    """Registry of one lock per account number in use"""

    def __init__(self):
        self._locks: Dict[str, _LockEntry] = {}
        self._registry_lock = threading.Lock()

    def _checkout(self, account_number: str) -> threading.Lock:
        with self._registry_lock:
            entry = self._locks.get(account_number)
            if entry is None:
                entry = _LockEntry()
                self._locks[account_number] = entry
            entry.users += 1
            return entry.lock

    def _checkin(self, account_number: str) -> None:
        with self._registry_lock:
            entry = self._locks[account_number]
            entry.users -= 1
            if entry.users == 0:
                del self._locks[account_number]

    @staticmethod
    def lock_order(*account_numbers: str) -> List[str]:
        """Distinct account numbers in the order their locks are taken"""
        return sorted(set(account_numbers))

    @contextmanager
    def hold(self, *account_numbers: str) -> Iterator[None]:
        """
        Block until every named account is locked, then yield.

        Locks are released in reverse acquisition order, including when the
        body raises.
        """
        checked_out: List[str] = []
        acquired: List[threading.Lock] = []
        try:
            for number in self.lock_order(*account_numbers):
                lock = self._checkout(number)
                checked_out.append(number)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for number in checked_out:
                self._checkin(number)

    def __len__(self) -> int:
        """Number of accounts currently locked or awaited"""
        with self._registry_lock:
            return len(self._locks)
