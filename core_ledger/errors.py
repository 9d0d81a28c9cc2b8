"""
Ledger Error Taxonomy

Typed failures raised by the ledger core. Business-rule failures are expected
outcomes and carry a stable code plus the HTTP status a presentation layer
should map them to. Infrastructure failures are surfaced generically.

Error code ranges:
  1xxx: Users
  2xxx: Accounts and ledger operations
  9xxx: Infrastructure
"""

import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import Iterator, Optional

from .money import format_amount


class LedgerError(Exception):
    """Base class for all ledger failures"""

    def __init__(self, code: int, message: str, http_status: int = 500) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 1xxx: Users ---

class UserNotFound(LedgerError):
    def __init__(self, user_id: int) -> None:
        self.user_id = user_id
        super().__init__(1001, f"User not found with id: {user_id}", 404)


class DuplicateEmail(LedgerError):
    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__(1002, f"Email already registered: {email}", 409)


# --- 2xxx: Accounts ---

class AccountNotFound(LedgerError):
    def __init__(self, field_name: str, field_value: object) -> None:
        self.field_name = field_name
        self.field_value = field_value
        super().__init__(2001, f"Account not found with {field_name}: '{field_value}'", 404)


class InsufficientBalance(LedgerError):
    def __init__(
        self,
        account_number: str,
        requested: Decimal,
        available: Decimal,
        transaction_id: Optional[int] = None,
    ) -> None:
        self.account_number = account_number
        self.requested = requested
        self.available = available
        # Id of the FAILED entry recorded for this attempt
        self.transaction_id = transaction_id
        super().__init__(
            2002,
            f"Insufficient balance in account '{account_number}'. "
            f"Requested: {format_amount(requested)}, Available: {format_amount(available)}",
            400,
        )


class InvalidOperation(LedgerError):
    def __init__(self, message: str, code: int = 2003) -> None:
        super().__init__(code, message, 400)


class InvalidAmount(InvalidOperation):
    def __init__(self, amount: object) -> None:
        self.amount = amount
        super().__init__(f"Amount must be greater than zero, got: {amount}", code=2004)


# --- 9xxx: Infrastructure ---

class LedgerInfrastructureError(LedgerError):
    def __init__(self, detail: str = "Internal ledger failure") -> None:
        super().__init__(9001, detail, 500)


class AccountNumberExhaustedError(LedgerInfrastructureError):
    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Could not generate a unique account number after {attempts} attempts")


@contextmanager
def infrastructure_guard(logger: logging.Logger, operation: str) -> Iterator[None]:
    """
    Re-raise anything that is not a LedgerError as a generic
    LedgerInfrastructureError. The original exception is logged and chained
    but its message is never exposed to the caller.
    """
    try:
        yield
    except LedgerError:
        raise
    except Exception as e:
        logger.exception(f"Infrastructure failure during {operation}")
        raise LedgerInfrastructureError() from e
