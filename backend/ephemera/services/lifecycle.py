# ephemera/services/lifecycle.py

import logging
import threading
from typing import List, Optional

from ephemera.core.scheduler import EXPIRY_WORKERS, ExpiryScheduler
from ephemera.core.store import RecordStore
from ephemera.core.ttl import DurationInput, is_expired, parse_self_destruct
from ephemera.models.record import Message, Record, RecordKind

logger = logging.getLogger(__name__)


class LifecycleManager:
    """
    Entry point for creating, reading and deleting ephemeral records.

    Every deletion, timed or explicit, goes through
    ``RecordStore.delete_if_exists`` so a record is removed at most once.

    Example:
        >>> manager = LifecycleManager(RecordStore(SessionLocal))
        >>> manager.recover()
        >>> msg_id = manager.create_message("alice", "bob", "hi", 30)
        >>> manager.delete_explicit(msg_id)
        True
    """

    def __init__(self, store: RecordStore, max_workers: int = EXPIRY_WORKERS):
        self.store = store
        self.scheduler = ExpiryScheduler(self._expire, max_workers=max_workers)
        self._recovered = False
        self._recover_lock = threading.Lock()

    # ---------- creation ----------

    def create_event(self, name: str, date: str, self_destruct_after: DurationInput = None) -> int:
        return self._create(RecordKind.EVENT, {"name": name, "date": date}, self_destruct_after)

    def create_message(
        self,
        sender: str,
        receiver: str,
        content: str,
        self_destruct_after: DurationInput = None
    ) -> int:
        payload = {"sender": sender, "receiver": receiver, "content": content}
        return self._create(RecordKind.MESSAGE, payload, self_destruct_after)

    def _create(self, kind: RecordKind, payload: dict, self_destruct_after: DurationInput) -> int:
        ttl = parse_self_destruct(self_destruct_after)

        # StorageError propagates from here and nothing gets scheduled
        record = self.store.insert(kind, payload, ttl)

        if record.expires_at is not None:
            try:
                self.scheduler.schedule(record.id, record.expires_at)
            except Exception:
                # An unscheduled row would outlive its lifetime
                self.store.delete_if_exists(record.id)
                raise
            logger.info(
                "✅ %s %s created, self-destructs in %ss",
                kind.value.capitalize(), record.id, record.self_destruct_after
            )
        else:
            logger.info("✅ %s %s created", kind.value.capitalize(), record.id)

        return record.id

    # ---------- deletion ----------

    def delete_explicit(self, record_id: int, kind: Optional[RecordKind] = None) -> bool:
        """Delete on request. False when the record (of that kind) was already gone."""
        deleted = self.store.delete_if_exists(record_id, kind)

        if deleted:
            self.scheduler.cancel(record_id)
            logger.info("🗑️ Record %s deleted on request", record_id)
        else:
            logger.info("⚠️ Record %s already deleted", record_id)
        return deleted

    def _expire(self, record_id: int) -> bool:
        return self.store.delete_if_exists(record_id)

    # ---------- reads ----------

    def get(self, record_id: int) -> Optional[Record]:
        record = self.store.get(record_id)
        # Past its deadline but the deletion has not landed yet
        if record is None or is_expired(record.expires_at):
            return None
        return record

    def list_for_participant(self, identity: str) -> List[Message]:
        return [
            m for m in self.store.query_by_participant(identity)
            if not is_expired(m.expires_at)
        ]

    def list_all(self, kind: Optional[RecordKind] = RecordKind.EVENT) -> List[Record]:
        return [r for r in self.store.list_all(kind) if not is_expired(r.expires_at)]

    # ---------- process lifecycle ----------

    def recover(self) -> int:
        """Re-arm self-destructs for every stored record. Run once before serving."""
        with self._recover_lock:
            if self._recovered:
                logger.warning("recover() already ran, ignoring")
                return 0

            armed = self.scheduler.recover(self.store.list_expiring())
            self._recovered = True

        return armed

    def shutdown(self):
        self.scheduler.shutdown()
