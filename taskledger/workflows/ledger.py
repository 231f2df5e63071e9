"""Append-only ledger: balances, escrow capture, settlement, and refunds."""

import logging
from decimal import Decimal
from enum import Enum
from typing import Optional

from .. import events
from ..config import EngineConfig
from ..errors import (
    AlreadyRefunded,
    DuplicateCapture,
    InsufficientBalance,
    InvalidAmount,
    InvalidTransition,
    NoCaptureFound,
    TransactionNotFound,
)
from ..locks import task_key, user_key
from ..models.ledger_entry import EntryStatus, EntryType, LedgerEntry
from ..models.money import Money, to_decimal
from ..models.task import Task, TaskStatus
from ..store import Store, UnitOfWork

logger = logging.getLogger(__name__)


class AdjustmentDirection(Enum):
    """Direction of a manual balance adjustment."""

    CREDIT = "credit"
    DEBIT = "debit"


class Ledger:
    """Owns all balance truth.

    A balance is never stored; ``balance_of`` projects it from the entries.
    Every write runs inside a store transaction holding the relevant task and
    user locks, so balance checks and the writes they guard are atomic.
    """

    def __init__(self, store: Store, config: Optional[EngineConfig] = None):
        self.store = store
        self.config = config or EngineConfig()

    # === Queries ===

    def get_entry(self, entry_id: str) -> LedgerEntry:
        entry = self.store.get("entries", entry_id)
        if entry is None:
            raise TransactionNotFound(f"Transaction not found: {entry_id}")
        return entry

    def entries_for_user(self, user_id: str) -> list[LedgerEntry]:
        """All entries touching a user, oldest first."""
        entries = [e for e in self.store.all("entries") if e.touches(user_id)]
        return sorted(entries, key=lambda e: e.created_at)

    def entries_for_task(self, task_id: str) -> list[LedgerEntry]:
        entries = [e for e in self.store.all("entries") if e.related_task_id == task_id]
        return sorted(entries, key=lambda e: e.created_at)

    def balance_of(self, user_id: str) -> Money:
        """Current balance projected from the ledger."""
        return Money(self._balance_cents(self.store.all("entries"), user_id))

    @staticmethod
    def _balance_cents(entries: list[LedgerEntry], user_id: str) -> int:
        return sum(entry.balance_delta(user_id) for entry in entries)

    def _locked_balance(self, uow: UnitOfWork, user_id: str) -> Money:
        uow.lock(user_key(user_id))
        return Money(self._balance_cents(uow.query("entries"), user_id))

    @staticmethod
    def _require_positive(amount: Money) -> None:
        if not isinstance(amount, Money):
            raise InvalidAmount(f"Expected Money, got {amount!r}")
        if amount.is_zero:
            raise InvalidAmount("Amount must be greater than zero")

    @staticmethod
    def _task_payments(uow: UnitOfWork, task_id: str) -> list[LedgerEntry]:
        return uow.query(
            "entries",
            lambda e: e.type == EntryType.PAYMENT and e.related_task_id == task_id,
        )

    # === External funds ===

    def record_topup(self, user_id: str, amount: Money) -> LedgerEntry:
        """Credit funds the payment gateway has already confirmed."""
        self._require_positive(amount)
        with self.store.transaction(user_key(user_id)) as uow:
            entry = LedgerEntry(
                type=EntryType.TOPUP,
                amount=amount,
                to_user_id=user_id,
                description="Balance top-up",
            )
            entry.finish(EntryStatus.COMPLETED)
            uow.put("entries", entry)

        logger.info("Top-up %s for %s (%s)", amount, user_id, entry.id)
        return entry

    def record_withdrawal(self, user_id: str, amount: Money) -> LedgerEntry:
        """Debit funds disbursed to the user's external account."""
        self._require_positive(amount)
        with self.store.transaction(user_key(user_id)) as uow:
            balance = self._locked_balance(uow, user_id)
            if balance < amount:
                raise InsufficientBalance(
                    f"Cannot withdraw {amount}: balance is {balance}"
                )
            entry = LedgerEntry(
                type=EntryType.WITHDRAWAL,
                amount=amount,
                from_user_id=user_id,
                description="Withdrawal",
            )
            entry.finish(EntryStatus.COMPLETED)
            uow.put("entries", entry)

        logger.info("Withdrawal %s for %s (%s)", amount, user_id, entry.id)
        return entry

    def adjust_balance(
        self,
        admin_id: str,
        user_id: str,
        amount: Money,
        direction: AdjustmentDirection,
        reason: str,
    ) -> LedgerEntry:
        """Record a manual admin credit or debit."""
        self._require_positive(amount)
        if not reason.strip():
            raise InvalidAmount("A reason is required for balance adjustments")

        with self.store.transaction(user_key(user_id)) as uow:
            entry = LedgerEntry(
                type=EntryType.ADJUSTMENT,
                amount=amount,
                description=reason,
                created_by=admin_id,
            )
            if direction == AdjustmentDirection.DEBIT:
                balance = self._locked_balance(uow, user_id)
                if balance < amount:
                    raise InsufficientBalance(f"Cannot debit {amount}: balance is {balance}")
                entry.from_user_id = user_id
            else:
                entry.to_user_id = user_id
            entry.finish(EntryStatus.COMPLETED)
            uow.put("entries", entry)

        logger.info(
            "Admin %s %sed %s %s: %s", admin_id, direction.value, user_id, amount, reason
        )
        return entry

    # === Escrow ===

    def capture_for_task(self, client_id: str, task_id: str, amount: Money) -> LedgerEntry:
        """Hold ``amount`` of the client's balance in escrow for a task."""
        self._require_positive(amount)
        with self.store.transaction(task_key(task_id), user_key(client_id)) as uow:
            existing = [
                p for p in self._task_payments(uow, task_id)
                if p.status in (EntryStatus.PENDING, EntryStatus.COMPLETED)
            ]
            if existing:
                raise DuplicateCapture(
                    f"Task {task_id} already has payment {existing[0].id}"
                )

            balance = self._locked_balance(uow, client_id)
            if balance < amount:
                raise InsufficientBalance(
                    f"Balance {balance} does not cover {amount} for task {task_id}"
                )

            entry = LedgerEntry(
                type=EntryType.PAYMENT,
                amount=amount,
                from_user_id=client_id,
                related_task_id=task_id,
                status=EntryStatus.PENDING,
                description=f"Payment for task {task_id}",
            )
            uow.put("entries", entry)
            uow.emit(
                events.PAYMENT_CAPTURED,
                task_id=task_id, transaction_id=entry.id,
                client_id=client_id, amount=amount.to_str(),
            )

        logger.info("Captured %s from %s for task %s (%s)", amount, client_id, task_id, entry.id)
        return entry

    def _pending_payment(self, uow: UnitOfWork, task_id: str) -> LedgerEntry:
        pending = [p for p in self._task_payments(uow, task_id) if p.status == EntryStatus.PENDING]
        if not pending:
            raise NoCaptureFound(f"No captured payment for task {task_id}")
        return pending[0]

    def settle_task(
        self,
        task_id: str,
        commission_split: Optional[Decimal] = None,
    ) -> tuple[Optional[LedgerEntry], Optional[LedgerEntry]]:
        """Release escrow: pay the specialist their share, retain the rest.

        Only a task that is in progress can be settled; ``complete_task``
        settles before it moves the task to completed. Returns
        ``(payout, platform_fee)``. Either is None when its share rounds to
        zero, since ledger amounts are always positive.
        """
        split = to_decimal(
            commission_split if commission_split is not None else self.config.commission_split
        )
        with self.store.transaction(task_key(task_id)) as uow:
            task: Optional[Task] = uow.get("tasks", task_id)
            payment = self._pending_payment(uow, task_id)
            if task is None or not task.specialist_id:
                raise NoCaptureFound(f"Task {task_id} has no specialist to pay")
            if task.status != TaskStatus.IN_PROGRESS:
                raise InvalidTransition(
                    f"Cannot settle task {task_id} in status {task.status.value}"
                )
            uow.lock(user_key(task.specialist_id))

            share, retained = payment.amount.split(split)

            payment.finish(EntryStatus.COMPLETED)
            uow.put("entries", payment)

            payout = fee = None
            if not share.is_zero:
                payout = LedgerEntry(
                    type=EntryType.PAYOUT,
                    amount=share,
                    to_user_id=task.specialist_id,
                    related_task_id=task_id,
                    related_entry_id=payment.id,
                    description=f"Payout for task {task_id}",
                )
                payout.finish(EntryStatus.COMPLETED)
                uow.put("entries", payout)
                uow.emit(
                    events.PAYOUT_ISSUED,
                    task_id=task_id, transaction_id=payout.id, payment_id=payment.id,
                    specialist_id=task.specialist_id, amount=share.to_str(),
                )
            if not retained.is_zero:
                fee = LedgerEntry(
                    type=EntryType.PLATFORM_FEE,
                    amount=retained,
                    related_task_id=task_id,
                    related_entry_id=payment.id,
                    description=f"Platform commission for task {task_id}",
                )
                fee.finish(EntryStatus.COMPLETED)
                uow.put("entries", fee)

        logger.info(
            "Settled task %s: %s to %s, %s retained", task_id, share, task.specialist_id, retained
        )
        return payout, fee

    def refund_task(self, task_id: str, reason: str = "") -> LedgerEntry:
        """Release escrow back to the client."""
        with self.store.transaction(task_key(task_id)) as uow:
            payments = self._task_payments(uow, task_id)
            pending = [p for p in payments if p.status == EntryStatus.PENDING]
            if not pending:
                if any(p.status == EntryStatus.CANCELLED for p in payments):
                    raise AlreadyRefunded(f"Task {task_id} was already refunded")
                raise NoCaptureFound(f"No captured payment for task {task_id}")

            payment = pending[0]
            uow.lock(user_key(payment.from_user_id))
            payment.finish(EntryStatus.CANCELLED)
            uow.put("entries", payment)

            refund = LedgerEntry(
                type=EntryType.REFUND,
                amount=payment.amount,
                to_user_id=payment.from_user_id,
                related_task_id=task_id,
                related_entry_id=payment.id,
                description=reason or f"Refund for task {task_id}",
            )
            refund.finish(EntryStatus.COMPLETED)
            uow.put("entries", refund)
            uow.emit(
                events.PAYMENT_REFUNDED,
                task_id=task_id, transaction_id=refund.id, payment_id=payment.id,
                client_id=payment.from_user_id, amount=payment.amount.to_str(),
            )

        logger.info("Refunded %s to %s for task %s", payment.amount, payment.from_user_id, task_id)
        return refund

    def has_captured(self, task_id: str) -> bool:
        """Whether a payment for the task is currently held in escrow."""
        return any(
            e.type == EntryType.PAYMENT and e.status == EntryStatus.PENDING
            for e in self.entries_for_task(task_id)
        )

    def is_refunded(self, task_id: str) -> bool:
        return any(e.type == EntryType.REFUND for e in self.entries_for_task(task_id))
