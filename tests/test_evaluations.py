"""Tests for evaluation submission and acceptance."""

from decimal import Decimal

import pytest

from taskledger.errors import (
    AlreadySuperseded,
    EvaluationNotFound,
    Forbidden,
    InvalidAmount,
    InvalidTransition,
    TaskNotEvaluable,
)
from taskledger.models import EvaluationStatus, Money, TaskStatus


class TestSubmit:
    def test_total_cost_is_hours_times_rate(self, scenario, service, specialist):
        task = scenario.created()
        evaluation = service.evaluations.submit(task.id, specialist, 10, "75.00")
        assert evaluation.total_cost == Money.parse("750.00")
        assert evaluation.status == EvaluationStatus.SUBMITTED

    def test_repeated_computation_is_exact(self, scenario, service, specialist):
        task = scenario.created()
        evaluation = service.evaluations.submit(task.id, specialist, "10", "75.00")
        assert all(evaluation.total_cost.cents == 75000 for _ in range(1000))

    def test_fractional_hours(self, scenario, service, specialist):
        task = scenario.created()
        evaluation = service.evaluations.submit(task.id, specialist, "1.5", "33.33")
        # 49.995 rounds half-up
        assert evaluation.total_cost == Money.parse("50.00")

    def test_first_submission_starts_evaluation(self, scenario, service, specialist):
        task = scenario.created()
        service.evaluations.submit(task.id, specialist, 1, "10.00")
        assert service.tasks.get_task(task.id).status == TaskStatus.EVALUATING

    def test_stored_total_is_recomputed_on_load(self, scenario, service):
        _, evaluation = scenario.evaluating(hours="3", rate="20.00")
        data = evaluation.to_dict()
        data["total_cost"] = "1.00"
        from taskledger.models import Evaluation
        assert Evaluation.from_dict(data).total_cost == Money.parse("60.00")

    def test_new_submission_supersedes_previous(self, scenario, service, other_specialist):
        task_id, first = scenario.evaluating()
        second = service.evaluations.submit(task_id, other_specialist, 8, "80.00")

        assert service.evaluations.get(first.id).status == EvaluationStatus.SUPERSEDED
        assert service.evaluations.active_for_task(task_id).id == second.id
        active = [e for e in service.evaluations.list_for_task(task_id) if e.is_active]
        assert len(active) == 1

    def test_only_specialists_submit(self, scenario, service, client):
        task = scenario.created()
        with pytest.raises(Forbidden):
            service.evaluations.submit(task.id, client, 1, "10.00")

    def test_hours_must_be_positive(self, scenario, service, specialist):
        task = scenario.created()
        with pytest.raises(InvalidAmount):
            service.evaluations.submit(task.id, specialist, 0, "10.00")
        assert service.tasks.get_task(task.id).status == TaskStatus.CREATED

    def test_zero_rate_allowed(self, scenario, service, specialist):
        task = scenario.created()
        evaluation = service.evaluations.submit(task.id, specialist, 2, "0")
        assert evaluation.total_cost.is_zero

    def test_not_evaluable_after_acceptance(self, scenario, service, specialist):
        task_id, _ = scenario.evaluated()
        with pytest.raises(TaskNotEvaluable):
            service.evaluations.submit(task_id, specialist, 1, "10.00")

    def test_list_for_specialist(self, scenario, service, specialist):
        scenario.evaluating()
        scenario.evaluating()
        assert len(service.evaluations.list_for_specialist(specialist.user_id)) == 2


class TestAccept:
    def test_accept_binds_specialist(self, scenario, service, client, specialist):
        task_id, evaluation = scenario.evaluating()
        accepted = service.evaluations.accept(evaluation.id, client)

        task = service.tasks.get_task(task_id)
        assert accepted.status == EvaluationStatus.ACCEPTED
        assert task.status == TaskStatus.EVALUATED
        assert task.specialist_id == specialist.user_id
        assert task.evaluation_id == evaluation.id

    def test_admin_can_accept(self, scenario, service, admin):
        task_id, evaluation = scenario.evaluating()
        service.evaluations.accept(evaluation.id, admin)
        assert service.tasks.get_task(task_id).status == TaskStatus.EVALUATED

    def test_other_client_forbidden(self, scenario, service, other_client):
        task_id, evaluation = scenario.evaluating()
        with pytest.raises(Forbidden):
            service.evaluations.accept(evaluation.id, other_client)
        task = service.tasks.get_task(task_id)
        assert task.status == TaskStatus.EVALUATING
        assert task.specialist_id is None

    def test_specialist_cannot_accept(self, scenario, service, specialist):
        _, evaluation = scenario.evaluating()
        with pytest.raises(Forbidden):
            service.evaluations.accept(evaluation.id, specialist)

    def test_superseded_cannot_be_accepted(self, scenario, service, client, other_specialist):
        task_id, first = scenario.evaluating()
        service.evaluations.submit(task_id, other_specialist, 2, "10.00")
        with pytest.raises(AlreadySuperseded):
            service.evaluations.accept(first.id, client)

    def test_unknown_evaluation(self, service, client):
        with pytest.raises(EvaluationNotFound):
            service.evaluations.accept("EVAL-NOPE", client)

    def test_accept_twice(self, scenario, service, client):
        _, evaluation = scenario.evaluating()
        service.evaluations.accept(evaluation.id, client)
        with pytest.raises(InvalidTransition):
            service.evaluations.accept(evaluation.id, client)

    def test_hours_kept_as_decimal(self, scenario, service):
        _, evaluation = scenario.evaluated(hours="2.25", rate="40.00")
        stored = service.evaluations.get(evaluation.id)
        assert stored.estimated_hours == Decimal("2.25")
        assert stored.total_cost == Money.parse("90.00")
