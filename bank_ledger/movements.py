"""
Movement Ledger Module

The append-only ledger of balance changes. Rows are written only by the
transaction core (and the opening balance at provisioning); this module
defines their shape and the read-only queries over them.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum

from .money import format_amount, quantize
from .storage import StorageInterface


class MovementKind(Enum):
    """Cause of a balance change"""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER = "transfer"


class Direction(Enum):
    """Whether the movement adds to or takes from the owning account"""
    INCOMING = "incoming"
    OUTGOING = "outgoing"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Normalise a store timestamp (datetime or ISO string) to aware UTC"""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _join_name(first: Optional[str], last: Optional[str]) -> Optional[str]:
    if first is None and last is None:
        return None
    return " ".join(part for part in (first, last) if part)


@dataclass(frozen=True)
class Movement:
    """
    Immutable ledger entry

    ``resulting_balance`` is the owning account's balance right after this
    entry. ``related_account_id`` is set only for transfers and points at
    the other side of the pair.
    """
    id: int
    account_id: int
    kind: MovementKind
    direction: Direction
    amount: Decimal
    resulting_balance: Decimal
    memo: str
    created_at: Optional[datetime] = None
    related_account_id: Optional[int] = None
    account_name: Optional[str] = None
    related_account_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Movement':
        """Create instance from a storage row (optionally joined with names)"""
        related = data.get("related_account_id")
        return cls(
            id=int(data["id"]),
            account_id=int(data["account_id"]),
            kind=MovementKind(data["kind"]),
            direction=Direction(data["direction"]),
            amount=quantize(data["amount"]),
            resulting_balance=quantize(data["resulting_balance"]),
            memo=data.get("memo") or "",
            created_at=parse_timestamp(data.get("created_at")),
            related_account_id=int(related) if related is not None else None,
            account_name=_join_name(data.get("account_first_name"), data.get("account_last_name")),
            related_account_name=_join_name(data.get("related_first_name"), data.get("related_last_name")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "kind": self.kind.value,
            "direction": self.direction.value,
            "amount": format_amount(self.amount),
            "resulting_balance": format_amount(self.resulting_balance),
            "memo": self.memo,
            "related_account_id": self.related_account_id,
            "account_name": self.account_name,
            "related_account_name": self.related_account_name,
        }


class MovementLedger:
    """Read-only queries over the movement ledger"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def list_movements(self) -> List[Movement]:
        """All movements with owner and counterparty names, most recent first"""
        with self.storage.unit_of_work(write=False) as uow:
            rows = uow.list_movements()
        return [Movement.from_dict(row) for row in rows]

    def list_account_movements(self, account_id: int) -> List[Movement]:
        """Movements owned by one account, most recent first"""
        with self.storage.unit_of_work(write=False) as uow:
            rows = uow.list_movements(account_id=account_id)
        return [Movement.from_dict(row) for row in rows]
