"""Task model and the lifecycle transition table."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import uuid

from ..errors import InvalidTransition
from .user import Role


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class TaskStatus(Enum):
    """Task lifecycle status."""

    CREATED = "created"          # Submitted by client, nobody assigned
    EVALUATING = "evaluating"    # Specialists are pricing the work
    EVALUATED = "evaluated"      # An evaluation was accepted
    PAID = "paid"                # Client funds captured into escrow
    IN_PROGRESS = "in_progress"  # Specialist is working
    COMPLETED = "completed"      # Done, escrow settled
    CANCELLED = "cancelled"      # Logically terminated
    REJECTED = "rejected"        # Refused by an administrator

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.CANCELLED, TaskStatus.REJECTED)


class TaskPriority(Enum):
    """Task priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskEvent(Enum):
    """Events that drive a task through its lifecycle."""

    BEGIN_EVALUATION = "begin_evaluation"
    ACCEPT_EVALUATION = "accept_evaluation"
    CAPTURE_PAYMENT = "capture_payment"
    START_WORK = "start_work"
    COMPLETE = "complete"
    CANCEL = "cancel"
    REJECT = "reject"


@dataclass(frozen=True)
class Transition:
    source: TaskStatus
    event: TaskEvent
    target: TaskStatus
    roles: frozenset


_NON_TERMINAL = [s for s in TaskStatus if not s.is_terminal]

TRANSITIONS: dict[tuple[TaskStatus, TaskEvent], Transition] = {}


def _edge(source: TaskStatus, event: TaskEvent, target: TaskStatus, *roles: Role) -> None:
    TRANSITIONS[(source, event)] = Transition(source, event, target, frozenset(roles))


_edge(TaskStatus.CREATED, TaskEvent.BEGIN_EVALUATION, TaskStatus.EVALUATING, Role.SPECIALIST)
_edge(TaskStatus.EVALUATING, TaskEvent.ACCEPT_EVALUATION, TaskStatus.EVALUATED, Role.CLIENT, Role.ADMIN)
_edge(TaskStatus.EVALUATED, TaskEvent.CAPTURE_PAYMENT, TaskStatus.PAID, Role.CLIENT)
_edge(TaskStatus.PAID, TaskEvent.START_WORK, TaskStatus.IN_PROGRESS, Role.SPECIALIST)
_edge(TaskStatus.IN_PROGRESS, TaskEvent.COMPLETE, TaskStatus.COMPLETED, Role.SPECIALIST)
for _status in _NON_TERMINAL:
    _edge(_status, TaskEvent.CANCEL, TaskStatus.CANCELLED, Role.CLIENT, Role.ADMIN)
for _status in (TaskStatus.EVALUATING, TaskStatus.EVALUATED):
    _edge(_status, TaskEvent.REJECT, TaskStatus.REJECTED, Role.ADMIN)


def find_transition(status: TaskStatus, event: TaskEvent) -> Transition:
    """Look up the edge for ``event`` out of ``status``."""
    transition = TRANSITIONS.get((status, event))
    if transition is None:
        raise InvalidTransition(f"Cannot {event.value} a task in status {status.value}")
    return transition


@dataclass
class Task:
    """A unit of client-requested work."""

    # Identity
    id: str = field(default_factory=lambda: f"TASK-{uuid.uuid4().hex[:8].upper()}")
    client_id: str = ""
    specialist_id: Optional[str] = None

    # Content
    title: str = ""
    description: str = ""
    category: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM

    # Lifecycle
    status: TaskStatus = TaskStatus.CREATED
    evaluation_id: Optional[str] = None  # Accepted evaluation
    deadline: Optional[datetime] = None  # Business data only

    # Metadata
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_overdue(self) -> bool:
        """Check if task is past deadline."""
        if self.deadline is None or self.is_terminal:
            return False
        return utcnow() > self.deadline

    def apply(self, transition: Transition) -> None:
        """Move to the transition's target status."""
        if transition.source != self.status:
            raise InvalidTransition(
                f"Task {self.id} is {self.status.value}, not {transition.source.value}"
            )
        self.status = transition.target
        self.updated_at = utcnow()
        if self.status == TaskStatus.COMPLETED:
            self.completed_at = self.updated_at

    def to_dict(self) -> dict:
        """Serialize task to dictionary."""
        return {
            "id": self.id,
            "client_id": self.client_id,
            "specialist_id": self.specialist_id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "priority": self.priority.value,
            "status": self.status.value,
            "evaluation_id": self.evaluation_id,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        """Deserialize task from dictionary."""
        task = cls(
            id=data["id"],
            client_id=data.get("client_id", ""),
            specialist_id=data.get("specialist_id"),
            title=data.get("title", ""),
            description=data.get("description", ""),
            category=data.get("category", ""),
            priority=TaskPriority(data.get("priority", "medium")),
            status=TaskStatus(data.get("status", "created")),
            evaluation_id=data.get("evaluation_id"),
        )

        for field_name in ["deadline", "created_at", "updated_at", "completed_at"]:
            if data.get(field_name):
                setattr(task, field_name, parse_timestamp(data[field_name]))

        return task


@dataclass
class TransitionRecord:
    """One entry in a task's lifecycle history."""

    task_id: str
    from_status: TaskStatus
    to_status: TaskStatus
    event: TaskEvent
    actor_id: str
    actor_role: Role
    note: str = ""
    at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "event": self.event.value,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role.value,
            "note": self.note,
            "at": self.at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TransitionRecord":
        return cls(
            task_id=data["task_id"],
            from_status=TaskStatus(data["from_status"]),
            to_status=TaskStatus(data["to_status"]),
            event=TaskEvent(data["event"]),
            actor_id=data["actor_id"],
            actor_role=Role(data["actor_role"]),
            note=data.get("note", ""),
            at=parse_timestamp(data["at"]),
        )
