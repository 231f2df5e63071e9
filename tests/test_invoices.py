"""Tests for invoice issuance."""

from datetime import timedelta

import pytest

from taskledger.config import EngineConfig, IssuerInfo
from taskledger.errors import (
    InvalidTransition,
    InvoiceNotFound,
    NotInvoiceable,
    TransactionNotFound,
)
from taskledger.models import EntryType, InvoiceStatus, Money
from taskledger.workflows.invoice_generator import InvoiceGenerator


def payment_of(service, task_id):
    return next(
        e for e in service.ledger.entries_for_task(task_id) if e.type == EntryType.PAYMENT
    )


class TestIssue:
    def test_invoice_snapshots_payment(self, scenario, service, client, specialist):
        task_id, _ = scenario.completed(hours="10", rate="75.00")
        payment = payment_of(service, task_id)

        invoice = service.invoices.issue_invoice(payment.id)

        assert invoice.invoice_number == "INV-000001"
        assert invoice.amount == Money.parse("750.00")
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.payer_id == client.user_id
        assert invoice.payee_id == specialist.user_id
        assert invoice.task_id == task_id
        assert invoice.paid_at == payment.completed_at
        assert invoice.due_date == invoice.issued_at + timedelta(days=30)

    def test_idempotent_per_transaction(self, scenario, service):
        task_id, _ = scenario.completed()
        payment = payment_of(service, task_id)

        first = service.invoices.issue_invoice(payment.id)
        second = service.invoices.issue_invoice(payment.id)

        assert first.id == second.id
        assert first.invoice_number == second.invoice_number
        assert len(service.invoices.list_invoices()) == 1

    def test_numbers_are_sequential(self, scenario, service):
        numbers = []
        for _ in range(3):
            task_id, _ = scenario.completed(funds="750.00")
            numbers.append(service.invoices.issue_invoice(payment_of(service, task_id).id).invoice_number)
        assert numbers == ["INV-000001", "INV-000002", "INV-000003"]

    def test_held_payment_not_invoiceable(self, scenario, service):
        task_id, _ = scenario.paid()
        with pytest.raises(NotInvoiceable):
            service.invoices.issue_invoice(payment_of(service, task_id).id)

    def test_refunded_payment_not_invoiceable(self, scenario, service, client):
        task_id, _ = scenario.paid()
        service.tasks.cancel_task(task_id, client)
        with pytest.raises(NotInvoiceable):
            service.invoices.issue_invoice(payment_of(service, task_id).id)

    def test_topup_not_invoiceable(self, service):
        entry = service.ledger.record_topup("c1", Money.parse("10.00"))
        with pytest.raises(NotInvoiceable):
            service.invoices.issue_invoice(entry.id)

    def test_failed_issue_does_not_consume_number(self, scenario, service):
        entry = service.ledger.record_topup("c1", Money.parse("10.00"))
        with pytest.raises(NotInvoiceable):
            service.invoices.issue_invoice(entry.id)

        task_id, _ = scenario.completed()
        invoice = service.invoices.issue_invoice(payment_of(service, task_id).id)
        assert invoice.invoice_number == "INV-000001"

    def test_unknown_transaction(self, service):
        with pytest.raises(TransactionNotFound):
            service.invoices.issue_invoice("TX-NOPE")

    def test_issuer_and_prefix_from_config(self, scenario, service, store):
        config = EngineConfig(
            invoice_prefix="ACME",
            invoice_due_days=14,
            issuer=IssuerInfo(name="Acme Ltd.", address="1 Main St", tax_id="US-42"),
        )
        generator = InvoiceGenerator(store, config)
        task_id, _ = scenario.completed()

        invoice = generator.issue_invoice(payment_of(service, task_id).id)
        assert invoice.invoice_number == "ACME-000001"
        assert invoice.issuer_name == "Acme Ltd."
        assert invoice.issuer_tax_id == "US-42"
        assert invoice.due_date - invoice.issued_at == timedelta(days=14)


class TestVoid:
    def test_void_keeps_number(self, scenario, service):
        task_id, _ = scenario.completed()
        invoice = service.invoices.issue_invoice(payment_of(service, task_id).id)

        voided = service.invoices.void_invoice(invoice.id)
        assert voided.status == InvoiceStatus.CANCELLED
        assert voided.invoice_number == invoice.invoice_number

        again = service.invoices.issue_invoice(invoice.transaction_id)
        assert again.id == invoice.id

    def test_void_twice(self, scenario, service):
        task_id, _ = scenario.completed()
        invoice = service.invoices.issue_invoice(payment_of(service, task_id).id)
        service.invoices.void_invoice(invoice.id)
        with pytest.raises(InvalidTransition):
            service.invoices.void_invoice(invoice.id)

    def test_void_unknown(self, service):
        with pytest.raises(InvoiceNotFound):
            service.invoices.void_invoice("INVC-NOPE")

    def test_get_unknown(self, service):
        with pytest.raises(InvoiceNotFound):
            service.invoices.get_invoice("INVC-NOPE")


class TestList:
    def test_filter_by_payer(self, service, scenario, other_client):
        task_id, _ = scenario.completed()
        service.invoices.issue_invoice(payment_of(service, task_id).id)

        assert len(service.invoices.list_invoices(payer_id="client-1")) == 1
        assert service.invoices.list_invoices(payer_id=other_client.user_id) == []

    def test_get_returns_stored_copy(self, scenario, service):
        task_id, _ = scenario.completed()
        issued = service.invoices.issue_invoice(payment_of(service, task_id).id)
        fetched = service.invoices.get_invoice(issued.id)
        assert fetched.to_dict() == issued.to_dict()
