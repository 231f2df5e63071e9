"""Ledger entry model: one immutable money movement."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional
import uuid

from .money import Money
from .task import parse_timestamp, utcnow


class EntryType(Enum):
    """Kinds of money movement."""

    TOPUP = "topup"                # External funds in
    PAYMENT = "payment"            # Client funds captured for a task
    PAYOUT = "payout"              # Specialist share of a settled payment
    WITHDRAWAL = "withdrawal"      # Funds out to an external account
    REFUND = "refund"              # Captured funds returned to the client
    PLATFORM_FEE = "platform_fee"  # Platform share of a settled payment
    ADJUSTMENT = "adjustment"      # Manual admin credit or debit


class EntryStatus(Enum):
    """Status of a ledger entry."""

    PENDING = "pending"        # Captured, held in escrow
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"    # Escrow released; see the matching refund


# A captured payment keeps the client's funds held while pending and after
# cancellation; the refund entry is what gives them back.
HELD_PAYMENT_STATUSES = (EntryStatus.PENDING, EntryStatus.COMPLETED, EntryStatus.CANCELLED)


@dataclass
class LedgerEntry:
    """An append-only financial fact.

    Only ``status`` ever changes after creation, and only out of PENDING.
    """

    id: str = field(default_factory=lambda: f"TX-{uuid.uuid4().hex[:10].upper()}")
    type: EntryType = EntryType.TOPUP
    amount: Money = field(default_factory=Money.zero)
    from_user_id: Optional[str] = None
    to_user_id: Optional[str] = None
    related_task_id: Optional[str] = None
    related_entry_id: Optional[str] = None  # Payment a payout/refund/fee settles
    status: EntryStatus = EntryStatus.PENDING
    description: str = ""
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def affects_balance(self) -> bool:
        """Whether this entry currently counts toward user balances."""
        if self.type == EntryType.PAYMENT:
            return self.status in HELD_PAYMENT_STATUSES
        return self.status == EntryStatus.COMPLETED

    def balance_delta(self, user_id: str) -> int:
        """Signed cents this entry contributes to ``user_id``'s balance."""
        if not self.affects_balance:
            return 0
        delta = 0
        if self.to_user_id == user_id:
            delta += self.amount.cents
        if self.from_user_id == user_id:
            delta -= self.amount.cents
        return delta

    def touches(self, user_id: str) -> bool:
        return user_id in (self.from_user_id, self.to_user_id)

    def finish(self, status: EntryStatus) -> None:
        """Move out of PENDING. History is otherwise never rewritten."""
        if self.status != EntryStatus.PENDING:
            raise ValueError(f"Entry {self.id} is already {self.status.value}")
        if status == EntryStatus.PENDING:
            raise ValueError("Cannot move an entry back to pending")
        self.status = status
        self.completed_at = utcnow()

    def to_dict(self) -> dict:
        """Serialize entry to dictionary."""
        return {
            "id": self.id,
            "type": self.type.value,
            "amount": self.amount.to_str(),
            "from_user_id": self.from_user_id,
            "to_user_id": self.to_user_id,
            "related_task_id": self.related_task_id,
            "related_entry_id": self.related_entry_id,
            "status": self.status.value,
            "description": self.description,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LedgerEntry":
        """Deserialize entry from dictionary."""
        return cls(
            id=data["id"],
            type=EntryType(data["type"]),
            amount=Money.parse(data["amount"]),
            from_user_id=data.get("from_user_id"),
            to_user_id=data.get("to_user_id"),
            related_task_id=data.get("related_task_id"),
            related_entry_id=data.get("related_entry_id"),
            status=EntryStatus(data["status"]),
            description=data.get("description", ""),
            created_by=data.get("created_by"),
            created_at=parse_timestamp(data["created_at"]),
            completed_at=parse_timestamp(data.get("completed_at")),
        )
