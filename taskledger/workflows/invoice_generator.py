"""Invoice issuance from completed payment transactions."""

import logging
from datetime import timedelta
from typing import Optional

from ..config import EngineConfig
from ..errors import InvoiceNotFound, InvalidTransition, NotInvoiceable, TransactionNotFound
from ..locks import counter_key
from ..models.invoice import Invoice, InvoiceStatus
from ..models.ledger_entry import EntryStatus, EntryType
from ..store import Store

logger = logging.getLogger(__name__)

INVOICE_COUNTER = "invoice_number"


class InvoiceGenerator:
    """Derives immutable invoice snapshots from the ledger."""

    def __init__(self, store: Store, config: Optional[EngineConfig] = None):
        self.store = store
        self.config = config or EngineConfig()

    def format_number(self, sequence: int) -> str:
        return f"{self.config.invoice_prefix}-{sequence:06d}"

    def get_invoice(self, invoice_id: str) -> Invoice:
        invoice = self.store.get("invoices", invoice_id)
        if invoice is None:
            raise InvoiceNotFound(f"Invoice not found: {invoice_id}")
        return invoice

    def list_invoices(self, payer_id: Optional[str] = None) -> list[Invoice]:
        """Invoices in number order, optionally for one payer."""
        invoices = self.store.all("invoices")
        if payer_id:
            invoices = [i for i in invoices if i.payer_id == payer_id]
        return sorted(invoices, key=lambda i: i.invoice_number)

    def issue_invoice(self, transaction_id: str) -> Invoice:
        """Issue the invoice for a completed payment.

        Calling this again for the same transaction returns the invoice
        already issued. The number is allocated under the counter lock inside
        the same transaction, so an aborted issue does not consume a number.
        """
        with self.store.transaction(counter_key(INVOICE_COUNTER)) as uow:
            existing = uow.query("invoices", lambda i: i.transaction_id == transaction_id)
            if existing:
                return existing[0]

            entry = uow.get("entries", transaction_id)
            if entry is None:
                raise TransactionNotFound(f"Transaction not found: {transaction_id}")
            if entry.type != EntryType.PAYMENT or entry.status != EntryStatus.COMPLETED:
                raise NotInvoiceable(
                    f"Transaction {transaction_id} is a {entry.status.value} {entry.type.value}, "
                    "not a completed payment"
                )

            task = uow.get("tasks", entry.related_task_id) if entry.related_task_id else None
            issuer = self.config.issuer
            invoice = Invoice(
                invoice_number=self.format_number(uow.next_value(INVOICE_COUNTER)),
                transaction_id=entry.id,
                task_id=entry.related_task_id,
                amount=entry.amount,
                status=InvoiceStatus.PAID,
                payer_id=entry.from_user_id,
                payee_id=task.specialist_id if task else None,
                issuer_name=issuer.name,
                issuer_address=issuer.address,
                issuer_tax_id=issuer.tax_id,
                paid_at=entry.completed_at,
                notes=task.title if task else entry.description,
            )
            invoice.due_date = invoice.issued_at + timedelta(days=self.config.invoice_due_days)
            uow.put("invoices", invoice)

        logger.info("Issued invoice %s for transaction %s", invoice.invoice_number, transaction_id)
        return invoice

    def void_invoice(self, invoice_id: str) -> Invoice:
        """Cancel an issued invoice. The number is never reused."""
        with self.store.transaction(counter_key(INVOICE_COUNTER)) as uow:
            invoice = uow.get("invoices", invoice_id)
            if invoice is None:
                raise InvoiceNotFound(f"Invoice not found: {invoice_id}")
            if invoice.status == InvoiceStatus.CANCELLED:
                raise InvalidTransition(f"Invoice {invoice.invoice_number} is already cancelled")
            invoice.status = InvoiceStatus.CANCELLED
            uow.put("invoices", invoice)

        logger.info("Voided invoice %s", invoice.invoice_number)
        return invoice
