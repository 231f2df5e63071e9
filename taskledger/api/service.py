"""Role-gated operation surface for an external API layer.

Every operation takes the caller's ``Actor`` as supplied by the identity
provider and returns an ``OperationResult``: either the typed payload or the
failure code and message of the ``EngineError`` that stopped it.

Usage:
    service = MarketplaceService.from_config(load_config())
    client = Actor("u-client", Role.CLIENT)

    result = service.create_task(client, "Fix invoice PDF", "...", "billing")
    if result.ok:
        task = result.value
    else:
        print(result.error, result.message)
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Union

from ..config import EngineConfig
from ..errors import EngineError, Forbidden
from ..events import EventDispatcher
from ..models.money import Money, Numeric
from ..models.task import TaskPriority
from ..models.user import Actor
from ..store import Store
from ..workflows.evaluation_store import EvaluationStore
from ..workflows.invoice_generator import InvoiceGenerator
from ..workflows.ledger import AdjustmentDirection, Ledger
from ..workflows.task_manager import TaskManager

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """Outcome of one operation."""

    ok: bool
    value: Any = None
    error: Optional[str] = None  # EngineError.code
    message: str = ""

    @classmethod
    def success(cls, value: Any, message: str = "") -> "OperationResult":
        return cls(ok=True, value=value, message=message)

    @classmethod
    def failure(cls, error: EngineError) -> "OperationResult":
        return cls(ok=False, error=error.code, message=error.message)


class MarketplaceService:
    """Wires the engine components together behind one facade."""

    def __init__(self, store: Store, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.store = store
        self.ledger = Ledger(store, self.config)
        self.tasks = TaskManager(store, self.ledger, self.config)
        self.evaluations = EvaluationStore(store, self.tasks)
        self.invoices = InvoiceGenerator(store, self.config)

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        dispatcher: Optional[EventDispatcher] = None,
    ) -> "MarketplaceService":
        return cls(Store(config.data_dir, dispatcher=dispatcher), config)

    @property
    def dispatcher(self) -> EventDispatcher:
        return self.store.dispatcher

    def _run(self, operation: str, actor: Actor, func: Callable, *args, **kwargs) -> OperationResult:
        try:
            return OperationResult.success(func(*args, **kwargs))
        except EngineError as e:
            logger.warning("%s by %s refused: [%s] %s", operation, actor.user_id, e.code, e.message)
            return OperationResult.failure(e)

    @staticmethod
    def _require_self_or_admin(actor: Actor, user_id: str) -> None:
        if not actor.is_admin and actor.user_id != user_id:
            raise Forbidden("You can only act on your own balance")

    @staticmethod
    def _require_admin(actor: Actor) -> None:
        if not actor.is_admin:
            raise Forbidden("Administrator access required")

    # === Tasks ===

    def create_task(
        self,
        actor: Actor,
        title: str,
        description: str,
        category: str,
        priority: TaskPriority = TaskPriority.MEDIUM,
        deadline: Optional[datetime] = None,
    ) -> OperationResult:
        return self._run(
            "create_task", actor, self.tasks.create_task,
            actor, title, description, category, priority, deadline,
        )

    def begin_evaluation(self, actor: Actor, task_id: str) -> OperationResult:
        return self._run("begin_evaluation", actor, self.tasks.begin_evaluation, task_id, actor)

    def submit_evaluation(
        self,
        actor: Actor,
        task_id: str,
        hours: Numeric,
        rate: Union[Money, Numeric],
        notes: str = "",
    ) -> OperationResult:
        return self._run(
            "submit_evaluation", actor, self.evaluations.submit, task_id, actor, hours, rate, notes
        )

    def accept_evaluation(self, actor: Actor, evaluation_id: str) -> OperationResult:
        return self._run("accept_evaluation", actor, self.evaluations.accept, evaluation_id, actor)

    def capture_payment(self, actor: Actor, task_id: str) -> OperationResult:
        return self._run("capture_payment", actor, self.tasks.capture_payment, task_id, actor)

    def start_work(self, actor: Actor, task_id: str) -> OperationResult:
        return self._run("start_work", actor, self.tasks.start_work, task_id, actor)

    def complete_task(self, actor: Actor, task_id: str) -> OperationResult:
        return self._run("complete_task", actor, self.tasks.complete_task, task_id, actor)

    def cancel_task(self, actor: Actor, task_id: str, reason: str = "") -> OperationResult:
        return self._run("cancel_task", actor, self.tasks.cancel_task, task_id, actor, reason)

    def reject_task(self, actor: Actor, task_id: str, reason: str = "") -> OperationResult:
        return self._run("reject_task", actor, self.tasks.reject_task, task_id, actor, reason)

    # === Balances ===

    def top_up(self, actor: Actor, amount: Money, user_id: Optional[str] = None) -> OperationResult:
        def op():
            target = user_id or actor.user_id
            self._require_self_or_admin(actor, target)
            return self.ledger.record_topup(target, amount)
        return self._run("top_up", actor, op)

    def withdraw(self, actor: Actor, amount: Money) -> OperationResult:
        return self._run(
            "withdraw", actor, self.ledger.record_withdrawal, actor.user_id, amount
        )

    def adjust_balance(
        self,
        actor: Actor,
        user_id: str,
        amount: Money,
        direction: AdjustmentDirection,
        reason: str,
    ) -> OperationResult:
        def op():
            self._require_admin(actor)
            return self.ledger.adjust_balance(actor.user_id, user_id, amount, direction, reason)
        return self._run("adjust_balance", actor, op)

    def get_balance(self, actor: Actor, user_id: Optional[str] = None) -> OperationResult:
        def op():
            target = user_id or actor.user_id
            self._require_self_or_admin(actor, target)
            return self.ledger.balance_of(target)
        return self._run("get_balance", actor, op)

    def list_transactions(self, actor: Actor, user_id: Optional[str] = None) -> OperationResult:
        def op():
            target = user_id or actor.user_id
            self._require_self_or_admin(actor, target)
            return self.ledger.entries_for_user(target)
        return self._run("list_transactions", actor, op)

    # === Invoices ===

    def issue_invoice(self, actor: Actor, transaction_id: str) -> OperationResult:
        def op():
            entry = self.ledger.get_entry(transaction_id)
            if not actor.is_admin and entry.from_user_id != actor.user_id:
                raise Forbidden("Only the payer or an administrator can issue this invoice")
            return self.invoices.issue_invoice(transaction_id)
        return self._run("issue_invoice", actor, op)

    def void_invoice(self, actor: Actor, invoice_id: str) -> OperationResult:
        def op():
            self._require_admin(actor)
            return self.invoices.void_invoice(invoice_id)
        return self._run("void_invoice", actor, op)
