"""Engine data models for tasks, evaluations, ledger entries, and invoices."""

from .money import Money
from .user import Actor, Role
from .task import Task, TaskStatus, TaskPriority, TaskEvent, Transition, TransitionRecord, TRANSITIONS
from .evaluation import Evaluation, EvaluationStatus
from .ledger_entry import LedgerEntry, EntryType, EntryStatus
from .invoice import Invoice, InvoiceStatus

__all__ = [
    # Money
    "Money",
    # Identity
    "Actor",
    "Role",
    # Tasks
    "Task",
    "TaskStatus",
    "TaskPriority",
    "TaskEvent",
    "Transition",
    "TransitionRecord",
    "TRANSITIONS",
    # Evaluations
    "Evaluation",
    "EvaluationStatus",
    # Ledger
    "LedgerEntry",
    "EntryType",
    "EntryStatus",
    # Invoices
    "Invoice",
    "InvoiceStatus",
]
