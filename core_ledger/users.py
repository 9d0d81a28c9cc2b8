"""
User Directory Module

Manages the users that own ledger accounts. Email uniqueness is enforced at
write time through a secondary index table written in the same atomic unit
as the user record.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, Optional

from .storage import StorageInterface, StorageRecord, DuplicateRecordError
from .errors import UserNotFound, DuplicateEmail, infrastructure_guard
from .logging_config import get_logger, log_action


@dataclass
class User(StorageRecord):
    """Owner of zero or more accounts"""
    name: str
    email: str
    created_at: datetime

    @classmethod
    def from_dict(cls, data: Dict) -> 'User':
        return cls(
            id=data['id'],
            name=data['name'],
            email=data['email'],
            created_at=datetime.fromisoformat(data['created_at'])
        )


class UserDirectory:
    """
    Lookup and registration of users
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "users"
        self.email_index_table = "user_emails"
        self.logger = get_logger("core_ledger.users")

    def create_user(self, name: str, email: str) -> User:
        """
        Register a new user

        Args:
            name: Display name
            email: Email address, unique as stored (case-sensitive)

        Returns:
            The stored User with its assigned id

        Raises:
            DuplicateEmail: If the email is already registered
        """
        if self.exists_by_email(email):
            raise DuplicateEmail(email)

        with infrastructure_guard(self.logger, "create_user"):
            try:
                with self.storage.atomic():
                    user = User(
                        id=self.storage.next_id(self.table_name),
                        name=name,
                        email=email,
                        created_at=datetime.now(timezone.utc)
                    )
                    self.storage.insert(self.email_index_table, email, {"user_id": user.id})
                    self.storage.insert(self.table_name, str(user.id), user.to_dict())
            except DuplicateRecordError as e:
                if e.table == self.email_index_table:
                    raise DuplicateEmail(email) from e
                raise

        log_action(
            self.logger, "info", "User created",
            action="create_user", resource=f"user:{user.id}",
            extra={"user_id": user.id}
        )
        return user

    def get_by_id(self, user_id: int) -> Optional[User]:
        """Get user by id, or None"""
        data = self.storage.load(self.table_name, str(user_id))
        if data:
            return User.from_dict(data)
        return None

    def get_user(self, user_id: int) -> User:
        """Get user by id, raising UserNotFound if absent"""
        user = self.get_by_id(user_id)
        if user is None:
            raise UserNotFound(user_id)
        return user

    def exists_by_email(self, email: str) -> bool:
        """Check if an email is already registered"""
        return self.storage.exists(self.email_index_table, email)
