"""Task lifecycle state machine with role guards and ledger side effects."""

import logging
from datetime import datetime, timezone
from typing import Optional

from .. import events
from ..config import EngineConfig
from ..errors import AlreadyRefunded, Forbidden, InvalidTransition, TaskNotFound
from ..locks import task_key
from ..models.evaluation import EvaluationStatus
from ..models.ledger_entry import EntryStatus, EntryType
from ..models.task import (
    Task,
    TaskEvent,
    TaskPriority,
    TaskStatus,
    Transition,
    TransitionRecord,
    find_transition,
)
from ..models.user import Actor
from ..store import Store, UnitOfWork
from .ledger import Ledger

logger = logging.getLogger(__name__)

# Events whose actor must be the task's own client (admins are exempt).
CLIENT_OWNED_EVENTS = (TaskEvent.ACCEPT_EVALUATION, TaskEvent.CAPTURE_PAYMENT, TaskEvent.CANCEL)

# Events whose actor must be the bound specialist.
SPECIALIST_OWNED_EVENTS = (TaskEvent.START_WORK, TaskEvent.COMPLETE)

_EVENT_NOTIFICATIONS = {
    TaskEvent.ACCEPT_EVALUATION: events.TASK_EVALUATED,
    TaskEvent.CAPTURE_PAYMENT: events.TASK_PAID,
    TaskEvent.COMPLETE: events.TASK_COMPLETED,
    TaskEvent.CANCEL: events.TASK_CANCELLED,
    TaskEvent.REJECT: events.TASK_REJECTED,
}


class TaskManager:
    """Manages the lifecycle of tasks on the platform.

    Every operation locks the task, checks the transition table and the
    actor guard, applies the ledger side effect if the edge has one, and
    commits all of it in one store transaction. If any step fails the task
    keeps its previous status.
    """

    def __init__(self, store: Store, ledger: Ledger, config: Optional[EngineConfig] = None):
        self.store = store
        self.ledger = ledger
        self.config = config or ledger.config

    # === Queries ===

    def get_task(self, task_id: str) -> Task:
        task = self.store.get("tasks", task_id)
        if task is None:
            raise TaskNotFound(f"Task not found: {task_id}")
        return task

    def list_tasks(
        self,
        status: Optional[TaskStatus] = None,
        client_id: Optional[str] = None,
        specialist_id: Optional[str] = None,
        include_terminal: bool = True,
    ) -> list[Task]:
        """List tasks with optional filtering, newest first."""
        filtered = []
        for task in self.store.all("tasks"):
            if status and task.status != status:
                continue
            if client_id and task.client_id != client_id:
                continue
            if specialist_id and task.specialist_id != specialist_id:
                continue
            if not include_terminal and task.is_terminal:
                continue
            filtered.append(task)

        return sorted(filtered, key=lambda t: t.created_at, reverse=True)

    def history(self, task_id: str) -> list[TransitionRecord]:
        """Status changes of a task, oldest first."""
        self.get_task(task_id)
        return self.store.history(task_id)

    # === Creation ===

    def create_task(
        self,
        actor: Actor,
        title: str,
        description: str,
        category: str,
        priority: TaskPriority = TaskPriority.MEDIUM,
        deadline: Optional[datetime] = None,
    ) -> Task:
        """Create a new task owned by the calling client."""
        if not actor.is_client:
            raise Forbidden("Only clients can create tasks")
        if deadline is not None and deadline.tzinfo is None:
            # Naive deadlines are taken as UTC
            deadline = deadline.replace(tzinfo=timezone.utc)

        task = Task(
            client_id=actor.user_id,
            title=title,
            description=description,
            category=category,
            priority=priority,
            deadline=deadline,
        )
        with self.store.transaction(task_key(task.id)) as uow:
            uow.put("tasks", task)

        logger.info("Task %s created by %s", task.id, actor.user_id)
        return task

    # === Transition machinery ===

    def load_task(self, uow: UnitOfWork, task_id: str) -> Task:
        """Lock and load a task inside a transaction."""
        uow.lock(task_key(task_id))
        task = uow.get("tasks", task_id)
        if task is None:
            raise TaskNotFound(f"Task not found: {task_id}")
        return task

    @staticmethod
    def authorize(transition: Transition, task: Task, actor: Actor) -> None:
        """Check the actor guard of an edge."""
        if actor.role not in transition.roles:
            raise Forbidden(
                f"A {actor.role.value} cannot {transition.event.value} task {task.id}"
            )
        if actor.is_admin:
            return
        if transition.event in CLIENT_OWNED_EVENTS and task.client_id != actor.user_id:
            raise Forbidden(f"Task {task.id} belongs to another client")
        if transition.event in SPECIALIST_OWNED_EVENTS and task.specialist_id != actor.user_id:
            raise Forbidden(f"Task {task.id} is assigned to another specialist")

    def apply_event(
        self,
        uow: UnitOfWork,
        task: Task,
        event: TaskEvent,
        actor: Actor,
        note: str = "",
    ) -> Transition:
        """Validate and apply one edge to a task loaded in ``uow``."""
        transition = find_transition(task.status, event)
        self.authorize(transition, task, actor)

        previous = task.status
        task.apply(transition)
        uow.put("tasks", task)
        uow.record(TransitionRecord(
            task_id=task.id,
            from_status=previous,
            to_status=task.status,
            event=event,
            actor_id=actor.user_id,
            actor_role=actor.role,
            note=note,
        ))
        notification = _EVENT_NOTIFICATIONS.get(event)
        if notification:
            uow.emit(
                notification,
                task_id=task.id, client_id=task.client_id,
                specialist_id=task.specialist_id, status=task.status.value,
            )
        return transition

    def _close_open_evaluations(self, uow: UnitOfWork, task_id: str) -> None:
        for evaluation in uow.query(
            "evaluations",
            lambda e: e.task_id == task_id and e.status == EvaluationStatus.SUBMITTED,
        ):
            evaluation.status = EvaluationStatus.REJECTED
            uow.put("evaluations", evaluation)

    # === Lifecycle operations ===

    def begin_evaluation(self, task_id: str, actor: Actor) -> Task:
        """A specialist starts pricing an unassigned task."""
        with self.store.transaction() as uow:
            task = self.load_task(uow, task_id)
            if task.specialist_id is not None:
                raise InvalidTransition(f"Task {task_id} is already assigned")
            self.apply_event(uow, task, TaskEvent.BEGIN_EVALUATION, actor)

        logger.info("Task %s: evaluation started by %s", task_id, actor.user_id)
        return task

    def capture_payment(self, task_id: str, actor: Actor) -> Task:
        """Client pays the accepted evaluation's total into escrow."""
        with self.store.transaction() as uow:
            task = self.load_task(uow, task_id)
            transition = find_transition(task.status, TaskEvent.CAPTURE_PAYMENT)
            self.authorize(transition, task, actor)

            evaluation = uow.get("evaluations", task.evaluation_id)
            amount = evaluation.total_cost
            if not amount.is_zero:
                self.ledger.capture_for_task(task.client_id, task.id, amount)
            self.apply_event(uow, task, TaskEvent.CAPTURE_PAYMENT, actor, note=f"Captured {amount}")

        logger.info("Task %s paid: %s captured from %s", task_id, amount, task.client_id)
        return task

    def start_work(self, task_id: str, actor: Actor) -> Task:
        """The bound specialist begins work on a paid task."""
        with self.store.transaction() as uow:
            task = self.load_task(uow, task_id)
            self.apply_event(uow, task, TaskEvent.START_WORK, actor)

        logger.info("Task %s: work started by %s", task_id, actor.user_id)
        return task

    def complete_task(self, task_id: str, actor: Actor) -> Task:
        """The bound specialist finishes; escrow is settled."""
        with self.store.transaction() as uow:
            task = self.load_task(uow, task_id)
            transition = find_transition(task.status, TaskEvent.COMPLETE)
            self.authorize(transition, task, actor)

            evaluation = uow.get("evaluations", task.evaluation_id)
            if not evaluation.total_cost.is_zero:
                self.ledger.settle_task(task.id)
            self.apply_event(uow, task, TaskEvent.COMPLETE, actor)

        logger.info("Task %s completed by %s", task_id, actor.user_id)
        return task

    def cancel_task(self, task_id: str, actor: Actor, reason: str = "") -> Task:
        """Cancel a task, refunding any captured payment."""
        with self.store.transaction() as uow:
            task = self.load_task(uow, task_id)
            if task.status == TaskStatus.CANCELLED:
                self.authorize(
                    find_transition(TaskStatus.CREATED, TaskEvent.CANCEL), task, actor
                )
                refunded = uow.query(
                    "entries",
                    lambda e: e.type == EntryType.REFUND and e.related_task_id == task_id,
                )
                if refunded:
                    raise AlreadyRefunded(f"Task {task_id} was already cancelled and refunded")

            transition = find_transition(task.status, TaskEvent.CANCEL)
            self.authorize(transition, task, actor)

            payments = uow.query(
                "entries",
                lambda e: e.type == EntryType.PAYMENT and e.related_task_id == task_id,
            )
            if any(p.status == EntryStatus.COMPLETED for p in payments):
                raise InvalidTransition(f"Task {task_id} was already settled")
            if any(p.status == EntryStatus.PENDING for p in payments):
                self.ledger.refund_task(task.id, reason=reason or f"Task {task_id} cancelled")
            self._close_open_evaluations(uow, task.id)
            self.apply_event(uow, task, TaskEvent.CANCEL, actor, note=reason)

        logger.info("Task %s cancelled by %s", task_id, actor.user_id)
        return task

    def reject_task(self, task_id: str, actor: Actor, reason: str = "") -> Task:
        """An administrator refuses a task under evaluation."""
        with self.store.transaction() as uow:
            task = self.load_task(uow, task_id)
            self.apply_event(uow, task, TaskEvent.REJECT, actor, note=reason)
            self._close_open_evaluations(uow, task.id)

        logger.info("Task %s rejected by %s", task_id, actor.user_id)
        return task
