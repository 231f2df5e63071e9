"""Tests for the transactional store and event dispatch."""

import json

import pytest

from taskledger import events
from taskledger.api.service import MarketplaceService
from taskledger.errors import StorageError
from taskledger.events import EventDispatcher, LifecycleEvent
from taskledger.models import EntryType, Money, TaskStatus
from taskledger.store import STATE_FILE, Store


class TestTransaction:
    def test_exception_discards_staged_writes(self, scenario, store):
        task = scenario.created()
        with pytest.raises(RuntimeError):
            with store.transaction() as uow:
                staged = uow.get("tasks", task.id)
                staged.title = "Changed"
                uow.put("tasks", staged)
                raise RuntimeError("boom")
        assert store.get("tasks", task.id).title == "Migrate billing DB"

    def test_reads_are_copies(self, scenario, store):
        task = scenario.created()
        fetched = store.get("tasks", task.id)
        fetched.status = TaskStatus.COMPLETED
        assert store.get("tasks", task.id).status == TaskStatus.CREATED

    def test_nested_transaction_joins_outer(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction() as outer:
                with store.transaction() as inner:
                    assert inner is outer
                    outer.next_value("invoice_number")
                raise RuntimeError("abort after inner")
        assert store.counter("invoice_number") == 0

    def test_uow_sees_its_own_writes(self, scenario, store):
        task = scenario.created()
        with store.transaction() as uow:
            staged = uow.get("tasks", task.id)
            staged.title = "Renamed"
            uow.put("tasks", staged)
            assert uow.get("tasks", task.id).title == "Renamed"
            assert [t.title for t in uow.query("tasks")] == ["Renamed"]


class TestPersistence:
    def test_state_survives_restart(self, tmp_path, config, client, specialist):
        service = MarketplaceService(Store(tmp_path), config)
        service.ledger.record_topup(client.user_id, Money.parse("1000.00"))
        task = service.tasks.create_task(client, "Audit", "Check logs", "security")
        evaluation = service.evaluations.submit(task.id, specialist, "4", "50.00")
        service.evaluations.accept(evaluation.id, client)
        service.tasks.capture_payment(task.id, client)

        reopened = MarketplaceService(Store(tmp_path), config)
        restored = reopened.tasks.get_task(task.id)
        assert restored.status == TaskStatus.PAID
        assert restored.specialist_id == specialist.user_id
        assert reopened.evaluations.get(evaluation.id).total_cost == Money.parse("200.00")
        assert reopened.ledger.balance_of(client.user_id) == Money.parse("800.00")
        assert len(reopened.tasks.history(task.id)) == 3

    def test_counters_persist(self, tmp_path):
        store = Store(tmp_path)
        with store.transaction() as uow:
            uow.next_value("invoice_number")
        assert Store(tmp_path).counter("invoice_number") == 1

    def test_state_file_is_plain_json(self, tmp_path, config, client):
        service = MarketplaceService(Store(tmp_path), config)
        service.ledger.record_topup(client.user_id, Money.parse("12.34"))

        data = json.loads((tmp_path / STATE_FILE).read_text())
        assert data["entries"][0]["amount"] == "12.34"
        assert data["entries"][0]["type"] == EntryType.TOPUP.value
        assert not list(tmp_path.glob("*.tmp"))

    def test_failed_flush_rolls_back(self, tmp_path, monkeypatch, config, client):
        store = Store(tmp_path)
        service = MarketplaceService(store, config)
        service.ledger.record_topup(client.user_id, Money.parse("10.00"))

        def broken_flush():
            raise OSError("disk full")

        monkeypatch.setattr(store, "_flush", broken_flush)
        with pytest.raises(StorageError):
            service.ledger.record_topup(client.user_id, Money.parse("5.00"))

        assert service.ledger.balance_of(client.user_id) == Money.parse("10.00")
        assert len(store.all("entries")) == 1

    def test_corrupt_state_file(self, tmp_path):
        (tmp_path / STATE_FILE).write_text("{not json")
        with pytest.raises(StorageError):
            Store(tmp_path)


class TestEvents:
    def test_published_only_after_commit(self, store):
        seen = []

        def handler(event):
            # Committed state is visible when the handler runs.
            seen.append((event.name, store.counter("invoice_number")))

        store.dispatcher.subscribe(handler)
        with store.transaction() as uow:
            uow.next_value("invoice_number")
            uow.emit(events.TASK_PAID, task_id="T1")
            assert seen == []
        assert seen == [(events.TASK_PAID, 1)]

    def test_aborted_transaction_emits_nothing(self, store):
        seen = []
        store.dispatcher.subscribe(seen.append)
        with pytest.raises(RuntimeError):
            with store.transaction() as uow:
                uow.emit(events.TASK_PAID, task_id="T1")
                raise RuntimeError("boom")
        assert seen == []

    def test_failing_handler_is_isolated(self, caplog):
        dispatcher = EventDispatcher()
        delivered = []

        def broken(event):
            raise ValueError("handler bug")

        dispatcher.subscribe(broken)
        dispatcher.subscribe(delivered.append)
        dispatcher.publish(LifecycleEvent(name=events.TASK_COMPLETED))

        assert len(delivered) == 1
        assert "handler bug" in caplog.text

    def test_unsubscribe(self):
        dispatcher = EventDispatcher()
        delivered = []
        dispatcher.subscribe(delivered.append)
        dispatcher.unsubscribe(delivered.append)
        dispatcher.publish(LifecycleEvent(name=events.TASK_PAID))
        assert delivered == []
