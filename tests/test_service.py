"""Tests for the role-gated service facade."""

from taskledger.api.service import OperationResult
from taskledger.errors import InsufficientBalance
from taskledger.models import Money, TaskStatus
from taskledger.workflows.ledger import AdjustmentDirection


def usd(value: str) -> Money:
    return Money.parse(value)


class TestOperationResult:
    def test_failure_carries_code(self):
        result = OperationResult.failure(InsufficientBalance("short by $1.00"))
        assert not result.ok
        assert result.error == "insufficient_balance"
        assert result.message == "short by $1.00"


class TestWorkflowThroughService:
    def test_end_to_end(self, service, client, specialist):
        assert service.top_up(client, usd("1000.00")).ok

        task = service.create_task(client, "Fix invoice PDF", "Fonts broken", "billing").value
        evaluation = service.submit_evaluation(specialist, task.id, "10", "100.00").value
        assert service.accept_evaluation(client, evaluation.id).ok
        assert service.capture_payment(client, task.id).ok
        assert service.start_work(specialist, task.id).ok

        result = service.complete_task(specialist, task.id)
        assert result.ok
        assert result.value.status == TaskStatus.COMPLETED
        assert service.get_balance(specialist).value == usd("500.00")

    def test_failures_are_returned_not_raised(self, service, client, specialist):
        task = service.create_task(client, "Audit", "", "security").value
        evaluation = service.submit_evaluation(specialist, task.id, "1", "10.00").value
        service.accept_evaluation(client, evaluation.id)

        result = service.capture_payment(client, task.id)
        assert not result.ok
        assert result.error == "insufficient_balance"

        result = service.start_work(specialist, task.id)
        assert result.error == "invalid_transition"

    def test_forbidden_code(self, service, specialist):
        result = service.create_task(specialist, "x", "", "general")
        assert not result.ok
        assert result.error == "forbidden"


class TestBalanceGates:
    def test_cannot_read_other_balance(self, service, client, other_client):
        assert service.get_balance(client, other_client.user_id).error == "forbidden"

    def test_admin_reads_any_balance(self, service, admin, client):
        service.top_up(client, usd("5.00"))
        assert service.get_balance(admin, client.user_id).value == usd("5.00")

    def test_cannot_top_up_someone_else(self, service, client, other_client):
        result = service.top_up(client, usd("5.00"), user_id=other_client.user_id)
        assert result.error == "forbidden"
        assert service.ledger.balance_of(other_client.user_id) == Money.zero()

    def test_adjust_requires_admin(self, service, client, admin):
        result = service.adjust_balance(
            client, client.user_id, usd("100.00"), AdjustmentDirection.CREDIT, "free money"
        )
        assert result.error == "forbidden"

        result = service.adjust_balance(
            admin, client.user_id, usd("100.00"), AdjustmentDirection.CREDIT, "Promo credit"
        )
        assert result.ok
        assert result.value.created_by == admin.user_id

    def test_withdraw_own_funds(self, service, specialist):
        service.top_up(specialist, usd("20.00"))
        assert service.withdraw(specialist, usd("15.00")).ok
        assert service.withdraw(specialist, usd("15.00")).error == "insufficient_balance"

    def test_list_transactions(self, service, client, other_client):
        service.top_up(client, usd("5.00"))
        assert len(service.list_transactions(client).value) == 1
        assert service.list_transactions(other_client, client.user_id).error == "forbidden"


class TestInvoiceGates:
    def test_payer_issues_others_cannot(self, scenario, service, client, other_client, admin):
        task_id, _ = scenario.completed()
        payment_id = next(
            e.id for e in service.ledger.entries_for_task(task_id) if e.type.value == "payment"
        )

        assert service.issue_invoice(other_client, payment_id).error == "forbidden"
        issued = service.issue_invoice(client, payment_id)
        assert issued.ok

        assert service.void_invoice(client, issued.value.id).error == "forbidden"
        assert service.void_invoice(admin, issued.value.id).ok

    def test_unknown_transaction(self, service, admin):
        assert service.issue_invoice(admin, "TX-NOPE").error == "transaction_not_found"
