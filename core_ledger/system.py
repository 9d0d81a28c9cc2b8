"""
Ledger system wiring

Builds the storage backend and every ledger component from configuration.
"""

from typing import Optional

from .config import LedgerConfig, get_config
from .storage import StorageInterface, create_storage
from .locking import AccountLockManager
from .users import UserDirectory
from .accounts import AccountStore, AccountNumberGenerator, AccountManager
from .transactions import TransactionLog, TransactionHistory
from .ledger import LedgerService
from .schemas import UserView
from .logging_config import setup_logging


class LedgerSystem:
    """Ledger core with all components initialized"""

    def __init__(self, config: Optional[LedgerConfig] = None,
                 storage: Optional[StorageInterface] = None,
                 configure_logging: bool = False):
        self.config = config or get_config()

        if configure_logging:
            setup_logging(self.config.log_level, log_format=self.config.log_format)

        self.storage = storage or create_storage(self.config.database_url)

        self.users = UserDirectory(self.storage)
        self.account_store = AccountStore(self.storage)
        self.transaction_log = TransactionLog(self.storage)
        self.locks = AccountLockManager()

        self.account_manager = AccountManager(
            self.account_store,
            self.users,
            AccountNumberGenerator(
                self.account_store,
                length=self.config.account_number_length,
                max_attempts=self.config.account_number_max_attempts
            )
        )
        self.ledger = LedgerService(
            self.storage, self.account_store, self.transaction_log, self.locks
        )
        self.history = TransactionHistory(self.transaction_log, self.account_store)

    def create_user(self, name: str, email: str) -> UserView:
        """Register a user and return its public view"""
        return UserView.from_user(self.users.create_user(name, email))

    def close(self) -> None:
        self.storage.close()

    def __enter__(self) -> 'LedgerSystem':
        return self

    def __exit__(self, *exc) -> None:
        self.close()
