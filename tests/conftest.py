"""Shared fixtures for engine tests."""

from decimal import Decimal

import pytest

from taskledger.api.service import MarketplaceService
from taskledger.config import EngineConfig
from taskledger.models import Actor, Money, Role
from taskledger.store import Store


@pytest.fixture
def config():
    return EngineConfig(commission_split=Decimal("0.5"))


@pytest.fixture
def store():
    return Store()


@pytest.fixture
def service(store, config):
    return MarketplaceService(store, config)


@pytest.fixture
def client():
    return Actor("client-1", Role.CLIENT)


@pytest.fixture
def other_client():
    return Actor("client-2", Role.CLIENT)


@pytest.fixture
def specialist():
    return Actor("expert-1", Role.SPECIALIST)


@pytest.fixture
def other_specialist():
    return Actor("expert-2", Role.SPECIALIST)


@pytest.fixture
def admin():
    return Actor("admin-1", Role.ADMIN)


class Scenario:
    """Drives a task to a given lifecycle stage."""

    def __init__(self, service, client, specialist):
        self.service = service
        self.client = client
        self.specialist = specialist

    def created(self, title="Migrate billing DB"):
        return self.service.tasks.create_task(self.client, title, "Move to Postgres", "database")

    def evaluating(self, hours="10", rate="75.00"):
        task = self.created()
        evaluation = self.service.evaluations.submit(task.id, self.specialist, hours, rate, "Plan")
        return task.id, evaluation

    def evaluated(self, hours="10", rate="75.00"):
        task_id, evaluation = self.evaluating(hours, rate)
        self.service.evaluations.accept(evaluation.id, self.client)
        return task_id, evaluation

    def paid(self, hours="10", rate="75.00", funds="1000.00"):
        self.service.ledger.record_topup(self.client.user_id, Money.parse(funds))
        task_id, evaluation = self.evaluated(hours, rate)
        self.service.tasks.capture_payment(task_id, self.client)
        return task_id, evaluation

    def in_progress(self, **kwargs):
        task_id, evaluation = self.paid(**kwargs)
        self.service.tasks.start_work(task_id, self.specialist)
        return task_id, evaluation

    def completed(self, **kwargs):
        task_id, evaluation = self.in_progress(**kwargs)
        self.service.tasks.complete_task(task_id, self.specialist)
        return task_id, evaluation


@pytest.fixture
def scenario(service, client, specialist):
    return Scenario(service, client, specialist)
