"""Specialist evaluations: submission, supersession, and acceptance."""

import logging
from typing import Optional, Union

from ..errors import (
    AlreadySuperseded,
    EvaluationNotFound,
    Forbidden,
    InvalidAmount,
    InvalidTransition,
    TaskNotEvaluable,
)
from ..models.evaluation import Evaluation, EvaluationStatus
from ..models.money import Money, Numeric, to_decimal
from ..models.task import TaskEvent, TaskStatus, find_transition
from ..models.user import Actor
from ..store import Store
from .task_manager import TaskManager

logger = logging.getLogger(__name__)

EVALUABLE_STATUSES = (TaskStatus.CREATED, TaskStatus.EVALUATING)


class EvaluationStore:
    """Records pricing proposals and keeps one active evaluation per task."""

    def __init__(self, store: Store, task_manager: TaskManager):
        self.store = store
        self.task_manager = task_manager

    def get(self, evaluation_id: str) -> Evaluation:
        evaluation = self.store.get("evaluations", evaluation_id)
        if evaluation is None:
            raise EvaluationNotFound(f"Evaluation not found: {evaluation_id}")
        return evaluation

    def list_for_task(self, task_id: str) -> list[Evaluation]:
        """Evaluations of a task, newest first."""
        evaluations = [e for e in self.store.all("evaluations") if e.task_id == task_id]
        return sorted(evaluations, key=lambda e: e.created_at, reverse=True)

    def list_for_specialist(self, specialist_id: str) -> list[Evaluation]:
        evaluations = [e for e in self.store.all("evaluations") if e.specialist_id == specialist_id]
        return sorted(evaluations, key=lambda e: e.created_at, reverse=True)

    def active_for_task(self, task_id: str) -> Optional[Evaluation]:
        """The evaluation currently awaiting acceptance, if any."""
        for evaluation in self.list_for_task(task_id):
            if evaluation.is_active:
                return evaluation
        return None

    def submit(
        self,
        task_id: str,
        actor: Actor,
        hours: Numeric,
        rate: Union[Money, Numeric],
        notes: str = "",
    ) -> Evaluation:
        """Record a new proposal and supersede earlier ones.

        The total is always recomputed from ``hours`` and ``rate``.
        """
        if not actor.is_specialist:
            raise Forbidden("Only specialists can evaluate tasks")

        hours = to_decimal(hours)
        if hours <= 0:
            raise InvalidAmount(f"Estimated hours must be positive, got {hours}")
        if not isinstance(rate, Money):
            rate = Money.parse(rate)

        with self.store.transaction() as uow:
            task = self.task_manager.load_task(uow, task_id)
            if task.status not in EVALUABLE_STATUSES:
                raise TaskNotEvaluable(
                    f"Task {task_id} cannot be evaluated in status {task.status.value}"
                )
            if task.status == TaskStatus.CREATED:
                self.task_manager.apply_event(uow, task, TaskEvent.BEGIN_EVALUATION, actor)

            for previous in uow.query(
                "evaluations",
                lambda e: e.task_id == task_id and e.status == EvaluationStatus.SUBMITTED,
            ):
                previous.status = EvaluationStatus.SUPERSEDED
                uow.put("evaluations", previous)

            evaluation = Evaluation(
                task_id=task_id,
                specialist_id=actor.user_id,
                estimated_hours=hours,
                hourly_rate=rate,
                notes=notes,
            )
            uow.put("evaluations", evaluation)

        logger.info(
            "Evaluation %s for task %s: %s h x %s = %s",
            evaluation.id, task_id, hours, rate, evaluation.total_cost,
        )
        return evaluation

    def accept(self, evaluation_id: str, actor: Actor) -> Evaluation:
        """Accept a proposal, binding its specialist to the task."""
        task_id = self.get(evaluation_id).task_id

        with self.store.transaction() as uow:
            task = self.task_manager.load_task(uow, task_id)
            find_transition(task.status, TaskEvent.ACCEPT_EVALUATION)
            evaluation = uow.get("evaluations", evaluation_id)
            if evaluation.status in (EvaluationStatus.SUPERSEDED, EvaluationStatus.REJECTED):
                raise AlreadySuperseded(
                    f"Evaluation {evaluation_id} is {evaluation.status.value}"
                )
            if evaluation.status == EvaluationStatus.ACCEPTED:
                raise InvalidTransition(f"Evaluation {evaluation_id} was already accepted")

            task.specialist_id = evaluation.specialist_id
            task.evaluation_id = evaluation.id
            self.task_manager.apply_event(uow, task, TaskEvent.ACCEPT_EVALUATION, actor)

            evaluation.status = EvaluationStatus.ACCEPTED
            uow.put("evaluations", evaluation)

        logger.info(
            "Evaluation %s accepted for task %s; specialist %s bound",
            evaluation_id, task_id, evaluation.specialist_id,
        )
        return evaluation
