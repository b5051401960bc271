"""
Tests for LifecycleManager: creation, explicit and timed deletion,
recovery after a restart, and concurrent use.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from unittest import mock

import pytest

from ephemera.core.errors import InvalidDuration, StorageError
from ephemera.core.store import RecordStore
from ephemera.infra.database import create_session_factory
from ephemera.models.record import Event, Message, RecordKind
from ephemera.services.lifecycle import LifecycleManager


class TestCreate:

    def test_create_event_without_ttl(self, manager):
        event_id = manager.create_event("Retro", "2024-06-01")

        event = manager.get(event_id)
        assert isinstance(event, Event)
        assert event.name == "Retro"
        assert event_id not in manager.scheduler

    def test_create_message_with_ttl_is_scheduled(self, manager):
        message_id = manager.create_message("alice", "bob", "burn after reading", 60)

        message = manager.get(message_id)
        assert isinstance(message, Message)
        assert message.sender == "alice"
        assert message_id in manager.scheduler

    def test_invalid_duration_stores_nothing(self, manager, store):
        with pytest.raises(InvalidDuration):
            manager.create_message("alice", "bob", "hi", -5)

        assert store.count() == 0
        assert len(manager.scheduler) == 0

    def test_interval_past_the_calendar_stores_nothing(self, manager, store):
        with pytest.raises(InvalidDuration):
            manager.create_event("Heat death", "eventually", 1e12)

        assert store.count() == 0
        assert len(manager.scheduler) == 0
        assert manager.list_all() == []

    def test_failed_schedule_removes_the_row(self, manager, store):
        with mock.patch.object(manager.scheduler, "schedule", side_effect=RuntimeError("stopped")):
            with pytest.raises(RuntimeError):
                manager.create_message("alice", "bob", "hi", 60)

        assert store.count() == 0

    def test_failed_insert_schedules_nothing(self, manager):
        with mock.patch.object(manager.store, "insert", side_effect=StorageError("db down")):
            with pytest.raises(StorageError):
                manager.create_event("x", "y", 1)

        assert len(manager.scheduler) == 0


class TestExpiry:

    def test_no_premature_expiry(self, manager):
        message_id = manager.create_message("alice", "bob", "hi", 1)

        time.sleep(0.5)
        assert manager.get(message_id) is not None
        assert manager.store.get(message_id) is not None

    def test_eventual_expiry(self, manager, wait_until):
        message_id = manager.create_message("alice", "bob", "hi", 0.3)

        assert wait_until(lambda: manager.store.get(message_id) is None, timeout=1.0)
        assert message_id not in manager.scheduler

    def test_zero_ttl_expires_right_away(self, manager, wait_until):
        event_id = manager.create_event("flash", "now", 0)

        assert manager.get(event_id) is None
        assert wait_until(lambda: manager.store.get(event_id) is None, timeout=1.0)

    def test_reads_hide_records_past_deadline(self, manager, store):
        # Deadline passed but the timer has been cancelled, so the row lingers
        message_id = manager.create_message("alice", "bob", "hi", 0.1)
        manager.scheduler.cancel(message_id)
        time.sleep(0.2)

        assert store.get(message_id) is not None
        assert manager.get(message_id) is None
        assert manager.list_for_participant("alice") == []

    def test_records_without_ttl_stay(self, manager):
        event_id = manager.create_event("Forever", "always")
        manager.create_event("Gone", "soon", 0.1)

        time.sleep(0.4)

        assert [e.id for e in manager.list_all()] == [event_id]
        assert manager.delete_explicit(event_id) is True
        assert manager.get(event_id) is None


class TestDeleteExplicit:

    def test_explicit_delete_is_idempotent(self, manager):
        message_id = manager.create_message("alice", "bob", "hi")

        assert manager.delete_explicit(message_id) is True
        assert manager.delete_explicit(message_id) is False

    def test_explicit_delete_cancels_timer(self, manager):
        message_id = manager.create_message("alice", "bob", "hi", 60)

        assert manager.delete_explicit(message_id) is True
        assert message_id not in manager.scheduler

    def test_delete_unknown_id(self, manager):
        assert manager.delete_explicit(424242) is False

    def test_delete_with_wrong_kind_keeps_record_and_timer(self, manager):
        event_id = manager.create_event("Party", "fri", 60)

        assert manager.delete_explicit(event_id, RecordKind.MESSAGE) is False
        assert manager.get(event_id) is not None
        assert event_id in manager.scheduler

    def test_timer_and_explicit_delete_remove_once(self, manager, wait_until):
        deletions = []
        real_delete = manager.store.delete_if_exists

        def tracking_delete(record_id, kind=None):
            deleted = real_delete(record_id, kind)
            deletions.append((threading.current_thread().name, deleted))
            return deleted

        with mock.patch.object(manager.store, "delete_if_exists", side_effect=tracking_delete):
            message_id = manager.create_message("alice", "bob", "hi", 1)

            time.sleep(0.5)
            first = manager.delete_explicit(message_id)
            time.sleep(1.0)
            second = manager.delete_explicit(message_id)

            assert wait_until(lambda: len(manager.scheduler) == 0)

        assert first is True
        assert second is False
        assert [d for _, d in deletions].count(True) == 1
        assert manager.store.count() == 0

    def test_timer_wins_then_explicit_delete_is_noop(self, manager, wait_until):
        message_id = manager.create_message("alice", "bob", "hi", 0.1)

        assert wait_until(lambda: manager.store.get(message_id) is None)
        assert manager.delete_explicit(message_id) is False


class TestRecover:

    def test_recover_after_restart(self, store, wait_until):
        first = LifecycleManager(store)
        first.recover()
        overdue = first.create_message("alice", "bob", "old", 0.2)
        later = first.create_event("Later", "tomorrow", 2.0)
        keeper = first.create_event("Keep", "always")

        # Unclean stop: pending timers are lost
        first.shutdown()
        time.sleep(0.3)
        assert store.get(overdue) is not None

        second = LifecycleManager(store)
        try:
            assert second.recover() == 2

            assert wait_until(lambda: store.get(overdue) is None, timeout=0.5)
            assert store.get(later) is not None
            assert wait_until(lambda: store.get(later) is None, timeout=3.0)
            assert store.get(keeper) is not None
        finally:
            second.shutdown()

    def test_recover_runs_once(self, engine, wait_until):
        manager = LifecycleManager(RecordStore(create_session_factory(engine)))
        try:
            manager.store.insert(RecordKind.EVENT, {"name": "x", "date": "y"}, timedelta(seconds=60))

            assert manager.recover() == 1
            assert manager.recover() == 0
            assert len(manager.scheduler) == 1
        finally:
            manager.shutdown()

    def test_recover_can_retry_after_storage_error(self, store):
        manager = LifecycleManager(store)
        try:
            with mock.patch.object(store, "list_expiring", side_effect=StorageError("db down")):
                with pytest.raises(StorageError):
                    manager.recover()

            assert manager.recover() == 0
        finally:
            manager.shutdown()

    def test_recover_survives_unrepresentable_deadline(self, store):
        event = store.insert(RecordKind.EVENT, {"name": "x", "date": "y"}, timedelta(seconds=1e12))
        manager = LifecycleManager(store)
        try:
            assert manager.recover() == 1
            assert event.id in manager.scheduler
            assert [e.id for e in manager.list_all()] == [event.id]
        finally:
            manager.shutdown()

    def test_timer_storage_fault_is_logged_not_raised(self, manager, wait_until, caplog):
        message_id = manager.create_message("alice", "bob", "hi", 60)

        with mock.patch.object(manager.store, "delete_if_exists", side_effect=StorageError("db down")):
            with caplog.at_level("ERROR", logger="ephemera.core.scheduler"):
                manager.scheduler.schedule(message_id, manager.get(message_id).created_at)
                assert wait_until(lambda: "db down" in caplog.text)

        assert message_id not in manager.scheduler
        # Scheduler keeps working for other records
        other = manager.create_message("alice", "bob", "next", 0.1)
        assert wait_until(lambda: manager.store.get(other) is None)


class TestConcurrency:

    def test_many_records_are_independent(self, manager, wait_until):
        def create(i):
            ttl = 0.3 if i % 3 == 0 else None
            return i, manager.create_message(f"user{i % 4}", "hub", f"msg {i}", ttl)

        with ThreadPoolExecutor(max_workers=8) as pool:
            created = dict(pool.map(create, range(30)))

        explicit = [created[i] for i in range(30) if i % 3 == 1]
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(manager.delete_explicit, explicit))
        assert all(results)

        timed = {created[i] for i in range(30) if i % 3 == 0}
        assert wait_until(lambda: all(manager.store.get(r) is None for r in timed))

        survivors = {created[i] for i in range(30) if i % 3 == 2}
        assert {r.id for r in manager.store.list_all()} == survivors
        assert len(set(created.values())) == 30

    def test_racing_explicit_deletes_succeed_once(self, manager):
        message_ids = [manager.create_message("a", "b", str(i), 60) for i in range(10)]

        def delete_all(_):
            return [manager.delete_explicit(m) for m in message_ids]

        with ThreadPoolExecutor(max_workers=4) as pool:
            outcomes = list(pool.map(delete_all, range(4)))

        for column in zip(*outcomes):
            assert column.count(True) == 1
        assert len(manager.scheduler) == 0
