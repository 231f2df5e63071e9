"""Invoice model: a billing snapshot of one completed payment."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional
import uuid

from .money import Money
from .task import parse_timestamp, utcnow


class InvoiceStatus(Enum):
    """Status of an invoice. The only field that changes after issue."""

    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


@dataclass
class Invoice:
    """An issued billing document."""

    id: str = field(default_factory=lambda: f"INVC-{uuid.uuid4().hex[:8].upper()}")
    invoice_number: str = ""
    transaction_id: str = ""
    task_id: Optional[str] = None
    amount: Money = field(default_factory=Money.zero)
    status: InvoiceStatus = InvoiceStatus.PENDING

    # Parties
    payer_id: Optional[str] = None
    payee_id: Optional[str] = None
    issuer_name: str = ""
    issuer_address: str = ""
    issuer_tax_id: str = ""

    # Dates
    issued_at: datetime = field(default_factory=utcnow)
    due_date: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    notes: str = ""

    def to_dict(self) -> dict:
        """Serialize invoice to dictionary."""
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "transaction_id": self.transaction_id,
            "task_id": self.task_id,
            "amount": self.amount.to_str(),
            "status": self.status.value,
            "payer_id": self.payer_id,
            "payee_id": self.payee_id,
            "issuer_name": self.issuer_name,
            "issuer_address": self.issuer_address,
            "issuer_tax_id": self.issuer_tax_id,
            "issued_at": self.issued_at.isoformat(),
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Invoice":
        """Deserialize invoice from dictionary."""
        return cls(
            id=data["id"],
            invoice_number=data["invoice_number"],
            transaction_id=data["transaction_id"],
            task_id=data.get("task_id"),
            amount=Money.parse(data["amount"]),
            status=InvoiceStatus(data.get("status", "pending")),
            payer_id=data.get("payer_id"),
            payee_id=data.get("payee_id"),
            issuer_name=data.get("issuer_name", ""),
            issuer_address=data.get("issuer_address", ""),
            issuer_tax_id=data.get("issuer_tax_id", ""),
            issued_at=parse_timestamp(data["issued_at"]),
            due_date=parse_timestamp(data.get("due_date")),
            paid_at=parse_timestamp(data.get("paid_at")),
            notes=data.get("notes", ""),
        )
