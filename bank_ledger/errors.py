"""
Ledger Error Taxonomy

Every failure a ledger operation can report is a LedgerError subclass tagged
with an ErrorKind. Callers branch on ``kind`` and read the structured fields
instead of parsing messages.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Reportable failure kinds"""
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    SELF_TRANSFER = "self_transfer"
    DUPLICATE_ACCOUNT = "duplicate_account"
    AUTHENTICATION = "authentication"
    STORE_FAILURE = "store_failure"


class LedgerError(Exception):
    """Base class for all ledger failures"""

    kind: ErrorKind = ErrorKind.STORE_FAILURE

    def __init__(self, message: str, **fields: Any):
        super().__init__(message)
        self.message = message
        self.fields = fields

    def to_dict(self) -> Dict[str, Any]:
        """Structured representation, safe for JSON rendering"""
        result = {"kind": self.kind.value, "message": self.message}
        for key, value in self.fields.items():
            result[key] = str(value) if isinstance(value, Decimal) else value
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, {self.fields!r})"


class ValidationError(LedgerError):
    """Malformed, missing or non-positive input"""
    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, field=field)
        self.field = field


class NotFound(LedgerError):
    """A referenced account or phone number does not resolve"""
    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str, entity: str = "account", key: Any = None):
        super().__init__(message, entity=entity, key=key)
        self.entity = entity
        self.key = key


class InsufficientFunds(LedgerError):
    """Balance is lower than the requested debit"""
    kind = ErrorKind.INSUFFICIENT_FUNDS

    def __init__(self, account_id: int, requested: Decimal, available: Decimal,
                 message: str = "Insufficient funds"):
        super().__init__(message, account_id=account_id,
                         requested=requested, available=available)
        self.account_id = account_id
        self.requested = requested
        self.available = available


class SelfTransferError(LedgerError):
    """Source and destination of a transfer are the same account"""
    kind = ErrorKind.SELF_TRANSFER

    def __init__(self, account_id: int):
        super().__init__("Cannot transfer to the same account", account_id=account_id)
        self.account_id = account_id


class DuplicateAccount(LedgerError):
    """Username or phone number already registered"""
    kind = ErrorKind.DUPLICATE_ACCOUNT

    def __init__(self, field: str, value: Any = None):
        super().__init__(f"An account with this {field} already exists", field=field, value=value)
        self.field = field
        self.value = value


class AuthenticationError(LedgerError):
    """Unknown username or wrong password"""
    kind = ErrorKind.AUTHENTICATION

    def __init__(self):
        super().__init__("Invalid credentials")


class StoreFailure(LedgerError):
    """Unexpected infrastructure failure; the unit of work was rolled back"""
    kind = ErrorKind.STORE_FAILURE

    def __init__(self, detail: str, operation: Optional[str] = None):
        super().__init__("Internal storage failure", detail=detail, operation=operation)
        self.detail = detail
        self.operation = operation
