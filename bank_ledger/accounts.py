"""
Account Management Module

Provisioning, profile maintenance and login for ledger accounts. Balances are
never edited here: the only balance written by this module is the opening
balance, and it is recorded in the ledger as a deposit in the same unit of
work.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import hashlib
import hmac
import secrets

from .errors import AuthenticationError, DuplicateAccount, NotFound, ValidationError
from .money import ZERO, format_amount, parse_amount, quantize
from .movements import Direction, MovementKind, parse_timestamp
from .storage import StorageInterface
from .logging_config import get_logger, log_action


OPENING_BALANCE_MEMO = "Opening balance"


@dataclass
class Account:
    """Ledger account with its current balance"""
    id: int
    username: str
    first_name: str
    last_name: str
    age: int
    phone: str
    balance: Decimal
    created_at: Optional[datetime] = None
    password_hash: Optional[str] = None
    password_salt: Optional[str] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        """Create instance from a storage row"""
        return cls(
            id=int(data["id"]),
            username=data["username"],
            first_name=data["first_name"],
            last_name=data["last_name"],
            age=int(data["age"]),
            phone=data["phone"],
            balance=quantize(data["balance"]),
            created_at=parse_timestamp(data.get("created_at")),
            password_hash=data.get("password_hash"),
            password_salt=data.get("password_salt"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Public representation; password material is never included"""
        return {
            "id": self.id,
            "username": self.username,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "age": self.age,
            "phone": self.phone,
            "balance": format_amount(self.balance),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def _require_text(value: Any, field: str) -> str:
    if value is None or not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    return value.strip()


def _require_age(value: Any) -> int:
    if value is None or value == "":
        raise ValidationError("age is required", field="age")
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValidationError("age must be a positive integer", field="age")
    try:
        age = int(value)
    except (TypeError, ValueError):
        raise ValidationError("age must be a positive integer", field="age")
    if age <= 0:
        raise ValidationError("age must be a positive integer", field="age")
    return age


class AccountManager:
    """
    Manages account lifecycle and credentials

    Reads go through read-only units of work; every write is a single
    write unit of work.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.logger = get_logger("bank_ledger.accounts")

    def create_account(
        self,
        username: Optional[str],
        password: Optional[str],
        first_name: Optional[str],
        last_name: Optional[str],
        age: Any,
        phone: Optional[str],
        opening_balance: Any = None
    ) -> Account:
        """
        Provision a new account

        Args:
            username: Unique login name
            password: Plain password; only a salted scrypt hash is stored
            first_name: Owner first name
            last_name: Owner surname
            age: Owner age, positive integer
            phone: Unique phone number used as transfer destination
            opening_balance: Initial funds, recorded as a deposit movement

        Returns:
            Created Account

        Raises:
            ValidationError: Missing or malformed field
            DuplicateAccount: Username or phone already registered
        """
        username = _require_text(username, "username")
        password = _require_text(password, "password")
        first_name = _require_text(first_name, "first_name")
        last_name = _require_text(last_name, "last_name")
        age = _require_age(age)
        phone = _require_text(phone, "phone")
        balance = ZERO
        if opening_balance is not None:
            balance = parse_amount(opening_balance, field="opening_balance", allow_zero=True)

        salt = self._generate_salt()
        with self.storage.unit_of_work() as uow:
            if uow.find_account_by_username(username):
                raise DuplicateAccount("username", username)
            if uow.find_account_by_phone(phone):
                raise DuplicateAccount("phone", phone)

            account_id = uow.insert_account({
                "username": username,
                "password_hash": self._hash_password(password, salt),
                "password_salt": salt,
                "first_name": first_name,
                "last_name": last_name,
                "age": age,
                "phone": phone,
                "balance": balance,
            })

            if balance > ZERO:
                uow.insert_movement({
                    "account_id": account_id,
                    "kind": MovementKind.DEPOSIT.value,
                    "direction": Direction.INCOMING.value,
                    "amount": balance,
                    "resulting_balance": balance,
                    "memo": OPENING_BALANCE_MEMO,
                })

            account = Account.from_dict(uow.get_account(account_id))

        log_action(
            self.logger, "info", "Account created",
            action="create_account", resource=f"account:{account.id}",
            extra={"username": username, "opening_balance": str(balance)}
        )
        return account

    def get_account(self, account_id: int) -> Account:
        """
        Get account by id

        Raises:
            NotFound: No account with this id
        """
        with self.storage.unit_of_work(write=False) as uow:
            data = uow.get_account(account_id)
        if not data:
            raise NotFound("Account not found", entity="account", key=account_id)
        return Account.from_dict(data)

    def list_accounts(self) -> List[Account]:
        """All accounts ordered by id"""
        with self.storage.unit_of_work(write=False) as uow:
            return [Account.from_dict(row) for row in uow.list_accounts()]

    def update_profile(
        self,
        account_id: int,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        age: Any = None,
        phone: Optional[str] = None
    ) -> Account:
        """
        Update the non-balance fields of an account

        Only the fields passed (not None) are changed.

        Raises:
            NotFound: No account with this id
            ValidationError: A passed field is empty or malformed
            DuplicateAccount: The new phone belongs to another account
        """
        fields: Dict[str, Any] = {}
        if first_name is not None:
            fields["first_name"] = _require_text(first_name, "first_name")
        if last_name is not None:
            fields["last_name"] = _require_text(last_name, "last_name")
        if age is not None:
            fields["age"] = _require_age(age)
        if phone is not None:
            fields["phone"] = _require_text(phone, "phone")

        with self.storage.unit_of_work() as uow:
            if uow.get_account(account_id) is None:
                raise NotFound("Account not found", entity="account", key=account_id)
            if "phone" in fields:
                owner = uow.find_account_by_phone(fields["phone"])
                if owner and int(owner["id"]) != account_id:
                    raise DuplicateAccount("phone", fields["phone"])
            uow.update_account(account_id, fields)
            account = Account.from_dict(uow.get_account(account_id))

        log_action(
            self.logger, "info", "Account profile updated",
            action="update_account", resource=f"account:{account_id}",
            extra={"fields": sorted(fields)}
        )
        return account

    def delete_account(self, account_id: int) -> None:
        """
        Delete an account; its movements stay in the ledger

        Raises:
            NotFound: No account with this id
        """
        with self.storage.unit_of_work() as uow:
            if not uow.delete_account(account_id):
                raise NotFound("Account not found", entity="account", key=account_id)

        log_action(
            self.logger, "info", "Account deleted",
            action="delete_account", resource=f"account:{account_id}"
        )

    def authenticate(self, username: Optional[str], password: Optional[str]) -> Account:
        """
        Check credentials and return the matching account

        Raises:
            ValidationError: Username or password missing
            AuthenticationError: Unknown username or wrong password
        """
        username = _require_text(username, "username")
        password = _require_text(password, "password")

        with self.storage.unit_of_work(write=False) as uow:
            data = uow.find_account_by_username(username)

        if not data or not self._verify_password(data, password):
            log_action(
                self.logger, "warning", "Login failed",
                action="login", resource=f"user:{username}"
            )
            raise AuthenticationError()

        return Account.from_dict(data)

    def _generate_salt(self) -> str:
        """Generate random salt for password hashing"""
        return secrets.token_hex(16)

    def _hash_password(self, password: str, salt: str) -> str:
        """Hash password with salt using scrypt"""
        return hashlib.scrypt(
            password.encode(),
            salt=salt.encode(),
            n=16384, r=8, p=1
        ).hex()

    def _verify_password(self, data: Dict[str, Any], password: str) -> bool:
        """Verify password against the stored hash"""
        if not data.get("password_hash") or not data.get("password_salt"):
            return False
        expected = self._hash_password(password, data["password_salt"])
        return hmac.compare_digest(expected, data["password_hash"])
