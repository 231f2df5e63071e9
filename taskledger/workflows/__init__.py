"""Workflow engines for the task lifecycle, evaluations, ledger, and invoices."""

from .ledger import Ledger, AdjustmentDirection
from .task_manager import TaskManager
from .evaluation_store import EvaluationStore
from .invoice_generator import InvoiceGenerator

__all__ = [
    "Ledger",
    "AdjustmentDirection",
    "TaskManager",
    "EvaluationStore",
    "InvoiceGenerator",
]
