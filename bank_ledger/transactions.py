"""
Transaction Processing Module

The money-movement core: deposits, withdrawals and phone-based transfers.
Each operation validates its input, then runs one write unit of work that
re-reads the affected balances under lock, enforces the business rules,
writes the new balances and appends the ledger rows. Any failure rolls the
whole unit back, so a balance is never changed without its movement.

Operations never raise for expected failures: they return ``Success`` with a
receipt or ``Failure`` carrying a tagged LedgerError.
"""

from decimal import Decimal
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar, Union

from .errors import (
    InsufficientFunds, LedgerError, NotFound, SelfTransferError,
    StoreFailure, ValidationError
)
from .money import check_balance, format_amount, parse_amount, quantize
from .movements import Direction, MovementKind
from .storage import StorageInterface, UnitOfWork
from .logging_config import get_logger, log_action


T = TypeVar("T")

DEFAULT_DEPOSIT_MEMO = "Deposit"
DEFAULT_WITHDRAWAL_MEMO = "Withdrawal"


@dataclass(frozen=True)
class Success(Generic[T]):
    """Operation committed; ``value`` is its receipt"""
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    """Operation aborted with nothing written"""
    error: LedgerError

    @property
    def ok(self) -> bool:
        return False

    @property
    def kind(self):
        return self.error.kind


Result = Union[Success[T], Failure]


@dataclass(frozen=True)
class MovementReceipt:
    """Outcome of a deposit or withdrawal"""
    movement_id: int
    account_id: int
    amount: Decimal
    previous_balance: Decimal
    new_balance: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "movement_id": self.movement_id,
            "account_id": self.account_id,
            "amount": format_amount(self.amount),
            "previous_balance": format_amount(self.previous_balance),
            "new_balance": format_amount(self.new_balance),
        }


@dataclass(frozen=True)
class TransferParty:
    """One side of a completed transfer"""
    account_id: int
    name: str
    phone: str
    previous_balance: Decimal
    new_balance: Decimal
    movement_id: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.account_id,
            "name": self.name,
            "phone": self.phone,
            "previous_balance": format_amount(self.previous_balance),
            "new_balance": format_amount(self.new_balance),
            "movement_id": self.movement_id,
        }


@dataclass(frozen=True)
class TransferReceipt:
    """Outcome of a transfer: both parties' balances and movements"""
    amount: Decimal
    source: TransferParty
    destination: TransferParty

    @property
    def account_id(self) -> int:
        """The initiating account"""
        return self.source.account_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": format_amount(self.amount),
            "source": self.source.to_dict(),
            "destination": self.destination.to_dict(),
        }


def _require_account_id(value: Any, field: str) -> int:
    """Structural check of an account id; existence is checked in the store"""
    if value is None or value == "":
        raise ValidationError(f"{field} is required", field=field)
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer", field=field)


def _require_phone(value: Any, field: str = "destination_phone") -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", field=field)
    return str(value).strip()


def _memo(memo: Optional[str], default: str) -> str:
    if memo is None or not str(memo).strip():
        return default
    return str(memo).strip()


def _name(account: Dict[str, Any]) -> str:
    return f"{account['first_name']} {account['last_name']}"


class TransactionProcessor:
    """
    Executes money movements as all-or-nothing units of work

    The processor keeps no state between calls; all serialization of
    concurrent access to an account is delegated to the storage backend.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.logger = get_logger("bank_ledger.transactions")

    def deposit(self, account_id: Any, amount: Any, memo: Optional[str] = None) -> Result:
        """
        Credit an account

        Args:
            account_id: Account to credit
            amount: Positive amount, at most two decimal places
            memo: Free text; defaults to "Deposit"

        Returns:
            Success(MovementReceipt) or Failure with ValidationError / NotFound
        """
        return self._execute("deposit", self._deposit, account_id, amount, memo)

    def withdraw(self, account_id: Any, amount: Any, memo: Optional[str] = None) -> Result:
        """
        Debit an account

        Returns:
            Success(MovementReceipt) or Failure with ValidationError /
            NotFound / InsufficientFunds
        """
        return self._execute("withdrawal", self._withdraw, account_id, amount, memo)

    def transfer(
        self,
        source_account_id: Any,
        destination_phone: Any,
        amount: Any,
        memo: Optional[str] = None
    ) -> Result:
        """
        Move funds to the account registered with a phone number

        Preconditions are checked in a fixed order and the first failing one
        is reported: input shape, source exists, phone registered, not a
        self-transfer, sufficient funds.

        Returns:
            Success(TransferReceipt) or Failure with ValidationError /
            NotFound / SelfTransferError / InsufficientFunds
        """
        return self._execute(
            "transfer", self._transfer, source_account_id, destination_phone, amount, memo
        )

    def _execute(self, operation: str, func: Callable[..., T], *args: Any) -> Result:
        try:
            value = func(*args)
        except StoreFailure as e:
            log_action(
                self.logger, "error", f"{operation} failed: {e.detail}",
                action=operation, extra=e.to_dict()
            )
            return Failure(e)
        except LedgerError as e:
            log_action(
                self.logger, "warning", f"{operation} rejected: {e.message}",
                action=operation, extra=e.to_dict()
            )
            return Failure(e)
        except Exception as e:
            # The unit of work has already rolled back when we get here
            self.logger.exception("Unexpected error during %s", operation)
            return Failure(StoreFailure(str(e), operation=operation))

        # Committed: nothing past this point may turn the result into a Failure
        self._log_completed(operation, value)
        return Success(value)

    def _log_completed(self, operation: str, receipt: Any) -> None:
        log_action(
            self.logger, "info", f"{operation.capitalize()} completed",
            action=operation, resource=f"account:{receipt.account_id}",
            extra=receipt.to_dict()
        )

    def _lock_one(self, uow: UnitOfWork, account_id: int) -> Dict[str, Any]:
        account = uow.lock_accounts([account_id]).get(account_id)
        if account is None:
            raise NotFound("Account not found", entity="account", key=account_id)
        return account

    def _deposit(self, account_id: Any, amount: Any, memo: Optional[str]) -> MovementReceipt:
        account_id = _require_account_id(account_id, "account_id")
        amount = parse_amount(amount)

        with self.storage.unit_of_work() as uow:
            account = self._lock_one(uow, account_id)
            previous_balance = quantize(account["balance"])
            new_balance = check_balance(previous_balance + amount)

            uow.set_balance(account_id, new_balance)
            movement_id = uow.insert_movement({
                "account_id": account_id,
                "kind": MovementKind.DEPOSIT.value,
                "direction": Direction.INCOMING.value,
                "amount": amount,
                "resulting_balance": new_balance,
                "memo": _memo(memo, DEFAULT_DEPOSIT_MEMO),
            })

        return MovementReceipt(movement_id, account_id, amount, previous_balance, new_balance)

    def _withdraw(self, account_id: Any, amount: Any, memo: Optional[str]) -> MovementReceipt:
        account_id = _require_account_id(account_id, "account_id")
        amount = parse_amount(amount)

        with self.storage.unit_of_work() as uow:
            account = self._lock_one(uow, account_id)
            previous_balance = quantize(account["balance"])
            if previous_balance < amount:
                raise InsufficientFunds(
                    account_id, amount, previous_balance,
                    message="Insufficient funds for withdrawal"
                )
            new_balance = previous_balance - amount

            uow.set_balance(account_id, new_balance)
            movement_id = uow.insert_movement({
                "account_id": account_id,
                "kind": MovementKind.WITHDRAWAL.value,
                "direction": Direction.OUTGOING.value,
                "amount": amount,
                "resulting_balance": new_balance,
                "memo": _memo(memo, DEFAULT_WITHDRAWAL_MEMO),
            })

        return MovementReceipt(movement_id, account_id, amount, previous_balance, new_balance)

    def _transfer(
        self,
        source_account_id: Any,
        destination_phone: Any,
        amount: Any,
        memo: Optional[str]
    ) -> TransferReceipt:
        source_id = _require_account_id(source_account_id, "source_account_id")
        phone = _require_phone(destination_phone)
        amount = parse_amount(amount)

        with self.storage.unit_of_work() as uow:
            # Resolve both parties first, then lock them in id order
            if uow.get_account(source_id) is None:
                raise NotFound("Source account not found", entity="account", key=source_id)

            destination = uow.find_account_by_phone(phone)
            if destination is None:
                raise NotFound("Destination phone not registered", entity="phone", key=phone)

            destination_id = int(destination["id"])
            if destination_id == source_id:
                raise SelfTransferError(source_id)

            locked = uow.lock_accounts([source_id, destination_id])
            source = locked.get(source_id)
            destination = locked.get(destination_id)
            if source is None:
                raise NotFound("Source account not found", entity="account", key=source_id)
            if destination is None or destination["phone"] != phone:
                raise NotFound("Destination phone not registered", entity="phone", key=phone)

            source_previous = quantize(source["balance"])
            if source_previous < amount:
                raise InsufficientFunds(
                    source_id, amount, source_previous,
                    message="Insufficient funds for transfer"
                )

            destination_previous = quantize(destination["balance"])
            source_new = source_previous - amount
            destination_new = check_balance(destination_previous + amount)

            uow.set_balance(source_id, source_new)
            uow.set_balance(destination_id, destination_new)

            outgoing_id = uow.insert_movement({
                "account_id": source_id,
                "kind": MovementKind.TRANSFER.value,
                "direction": Direction.OUTGOING.value,
                "amount": amount,
                "resulting_balance": source_new,
                "memo": _memo(memo, f"Transfer to {_name(destination)}"),
                "related_account_id": destination_id,
            })
            incoming_id = uow.insert_movement({
                "account_id": destination_id,
                "kind": MovementKind.TRANSFER.value,
                "direction": Direction.INCOMING.value,
                "amount": amount,
                "resulting_balance": destination_new,
                "memo": _memo(memo, f"Transfer from {_name(source)}"),
                "related_account_id": source_id,
            })

        return TransferReceipt(
            amount=amount,
            source=TransferParty(
                source_id, _name(source), source["phone"],
                source_previous, source_new, outgoing_id
            ),
            destination=TransferParty(
                destination_id, _name(destination), phone,
                destination_previous, destination_new, incoming_id
            ),
        )
