"""Evaluation model: a specialist's price and time proposal for a task."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
import uuid

from .money import Money
from .task import parse_timestamp, utcnow


class EvaluationStatus(Enum):
    """Status of an evaluation."""

    SUBMITTED = "submitted"      # Active proposal awaiting the client
    ACCEPTED = "accepted"        # Bound to the task
    SUPERSEDED = "superseded"    # Replaced by a newer proposal
    REJECTED = "rejected"        # Task was rejected or cancelled


@dataclass
class Evaluation:
    """A cost/time proposal. ``total_cost`` is always hours x rate."""

    id: str = field(default_factory=lambda: f"EVAL-{uuid.uuid4().hex[:8].upper()}")
    task_id: str = ""
    specialist_id: str = ""
    estimated_hours: Decimal = Decimal("0")
    hourly_rate: Money = field(default_factory=Money.zero)
    notes: str = ""
    status: EvaluationStatus = EvaluationStatus.SUBMITTED
    created_at: datetime = field(default_factory=utcnow)

    @property
    def total_cost(self) -> Money:
        return self.hourly_rate.multiply(self.estimated_hours)

    @property
    def is_active(self) -> bool:
        return self.status == EvaluationStatus.SUBMITTED

    def to_dict(self) -> dict:
        """Serialize evaluation to dictionary."""
        return {
            "id": self.id,
            "task_id": self.task_id,
            "specialist_id": self.specialist_id,
            "estimated_hours": str(self.estimated_hours),
            "hourly_rate": self.hourly_rate.to_str(),
            "total_cost": self.total_cost.to_str(),
            "notes": self.notes,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Evaluation":
        """Deserialize evaluation; a stored ``total_cost`` is ignored."""
        return cls(
            id=data["id"],
            task_id=data["task_id"],
            specialist_id=data["specialist_id"],
            estimated_hours=Decimal(data["estimated_hours"]),
            hourly_rate=Money.parse(data["hourly_rate"]),
            notes=data.get("notes", ""),
            status=EvaluationStatus(data.get("status", "submitted")),
            created_at=parse_timestamp(data["created_at"]),
        )
