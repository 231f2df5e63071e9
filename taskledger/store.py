"""
Entity storage with an all-or-nothing transactional boundary.

All entities live in memory. When the store has a data directory, each
commit rewrites ``engine_state.json`` atomically (temp file + rename), so a
crash never leaves half of a compound operation on disk.

Writes go through a ``UnitOfWork``: they are staged, then applied together
at commit. An exception anywhere inside ``Store.transaction()`` discards the
staged writes; a failed disk write restores the in-memory state too. Locks
taken through the unit of work are held until the outermost transaction has
committed or aborted, and lifecycle events are dispatched only after commit.
"""

import copy
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

from .errors import StorageError
from .events import EventDispatcher, LifecycleEvent
from .locks import KeyedLocks
from .models.evaluation import Evaluation
from .models.invoice import Invoice
from .models.ledger_entry import LedgerEntry
from .models.task import Task, TransitionRecord

logger = logging.getLogger(__name__)

STATE_FILE = "engine_state.json"

COLLECTIONS = {
    "tasks": Task,
    "evaluations": Evaluation,
    "entries": LedgerEntry,
    "invoices": Invoice,
}


class UnitOfWork:
    """Staged writes, held locks, and queued events for one transaction."""

    def __init__(self, store: "Store"):
        self._store = store
        self.staged: Dict[str, Dict[str, object]] = {name: {} for name in COLLECTIONS}
        self.history: List[TransitionRecord] = []
        self.counters: Dict[str, int] = {}
        self.events: List[LifecycleEvent] = []
        self.held_locks: List[str] = []

    def lock(self, *keys: str) -> None:
        """Take locks that stay held until the transaction ends."""
        self.held_locks.extend(self._store.locks.acquire(*keys))

    def get(self, collection: str, entity_id: str):
        """Return a private copy of an entity, seeing this transaction's writes."""
        staged = self.staged[collection].get(entity_id)
        if staged is not None:
            return copy.deepcopy(staged)
        return self._store.get(collection, entity_id)

    def query(self, collection: str, predicate: Optional[Callable] = None) -> list:
        """All entities matching ``predicate``, staged writes included."""
        merged = {e.id: e for e in self._store.all(collection)}
        for entity_id, entity in self.staged[collection].items():
            merged[entity_id] = copy.deepcopy(entity)
        items = list(merged.values())
        if predicate is not None:
            items = [item for item in items if predicate(item)]
        return items

    def put(self, collection: str, entity) -> None:
        self.staged[collection][entity.id] = copy.deepcopy(entity)

    def record(self, entry: TransitionRecord) -> None:
        self.history.append(entry)

    def next_value(self, counter: str) -> int:
        """Allocate the next value of a monotonic counter."""
        current = self.counters.get(counter, self._store.counter(counter))
        self.counters[counter] = current + 1
        return current + 1

    def emit(self, name: str, **payload) -> None:
        self.events.append(LifecycleEvent(name=name, payload=payload))


class Store:
    """In-memory entity store with optional JSON persistence."""

    def __init__(self, data_dir: Optional[Path] = None, dispatcher: Optional[EventDispatcher] = None):
        """Initialize store, loading existing state from ``data_dir``."""
        self.data_dir = Path(data_dir) if data_dir else None
        self.dispatcher = dispatcher or EventDispatcher()
        self.locks = KeyedLocks()
        self._data: Dict[str, Dict[str, object]] = {name: {} for name in COLLECTIONS}
        self._history: List[TransitionRecord] = []
        self._counters: Dict[str, int] = {}
        self._commit_lock = threading.RLock()
        self._local = threading.local()
        if self.data_dir is not None:
            self._load()

    @property
    def state_file(self) -> Optional[Path]:
        return self.data_dir / STATE_FILE if self.data_dir else None

    # === Reads ===

    def get(self, collection: str, entity_id: str):
        with self._commit_lock:
            entity = self._data[collection].get(entity_id)
            return copy.deepcopy(entity) if entity is not None else None

    def all(self, collection: str) -> list:
        with self._commit_lock:
            return copy.deepcopy(list(self._data[collection].values()))

    def history(self, task_id: str) -> List[TransitionRecord]:
        with self._commit_lock:
            return copy.deepcopy([r for r in self._history if r.task_id == task_id])

    def counter(self, name: str) -> int:
        with self._commit_lock:
            return self._counters.get(name, 0)

    # === Transactions ===

    @contextmanager
    def transaction(self, *lock_keys: str) -> Iterator[UnitOfWork]:
        """Run a compound operation atomically.

        Nested calls on the same thread join the outer transaction.
        """
        current = getattr(self._local, "uow", None)
        if current is not None:
            current.lock(*lock_keys)
            yield current
            return

        uow = UnitOfWork(self)
        self._local.uow = uow
        try:
            uow.lock(*lock_keys)
            yield uow
            self._commit(uow)
        finally:
            self._local.uow = None
            self.locks.release(uow.held_locks)

        for event in uow.events:
            self.dispatcher.publish(event)

    def _commit(self, uow: UnitOfWork) -> None:
        with self._commit_lock:
            previous = []
            for collection, staged in uow.staged.items():
                for entity_id, entity in staged.items():
                    previous.append((collection, entity_id, self._data[collection].get(entity_id)))
                    self._data[collection][entity_id] = entity
            old_counters = dict(self._counters)
            self._counters.update(uow.counters)
            history_length = len(self._history)
            self._history.extend(uow.history)

            try:
                self._flush()
            except (OSError, TypeError, ValueError) as e:
                for collection, entity_id, entity in reversed(previous):
                    if entity is None:
                        del self._data[collection][entity_id]
                    else:
                        self._data[collection][entity_id] = entity
                self._counters = old_counters
                del self._history[history_length:]
                logger.error("Commit rolled back: %s", e)
                raise StorageError(f"Could not persist changes: {e}") from e

    # === Persistence ===

    def _snapshot(self) -> dict:
        snapshot = {
            name: [entity.to_dict() for entity in self._data[name].values()]
            for name in COLLECTIONS
        }
        snapshot["history"] = [r.to_dict() for r in self._history]
        snapshot["counters"] = dict(self._counters)
        return snapshot

    def _flush(self) -> None:
        """Atomically replace the state file."""
        if self.data_dir is None:
            return
        self.data_dir.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(self._snapshot(), indent=2)
        fd, tmp_path = tempfile.mkstemp(dir=self.data_dir, prefix=".engine_state.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.state_file)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _load(self) -> None:
        """Load state from the data directory, if any exists."""
        if not self.state_file.exists():
            return
        try:
            with open(self.state_file, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Could not read {self.state_file}: {e}") from e

        for name, model in COLLECTIONS.items():
            self._data[name] = {item["id"]: model.from_dict(item) for item in data.get(name, [])}
        self._history = [TransitionRecord.from_dict(r) for r in data.get("history", [])]
        self._counters = {k: int(v) for k, v in data.get("counters", {}).items()}
        logger.info(
            "Loaded %d tasks and %d ledger entries from %s",
            len(self._data["tasks"]), len(self._data["entries"]), self.state_file,
        )
