"""Tests for the process registry and cancellation."""

import json
import threading
from unittest.mock import Mock, patch

import pytest

from error_handler import DangerousPidError, ProcessControlError, SessionStoreError
from events import CANCELLED_EVENT
from models import SessionRecord
from process_registry import ProcessRegistry
from session import SessionStore


@pytest.fixture
def kill_primitives():
    """Patch the platform primitives used by the registry."""
    with patch("process_registry.is_process_alive", return_value=True) as alive, \
            patch("process_registry.kill_process_tree") as kill_tree, \
            patch("process_registry.kill_process") as kill:
        yield Mock(alive=alive, kill_tree=kill_tree, kill=kill)


class TestRegistration:
    """Tests for register/unregister and queries."""

    def setup_method(self):
        self.store = Mock()
        self.registry = ProcessRegistry(Mock(), self.store)

    def test_register_and_query(self):
        self.registry.register("s1", 4242)
        self.registry.register("s2", 4343)

        assert self.registry.is_running("s1") is True
        assert self.registry.running_sessions() == {"s1", "s2"}
        assert self.registry.get_pid("s1") == 4242

    def test_register_overwrites(self):
        self.registry.register("s1", 100)
        self.registry.register("s1", 200)
        assert self.registry.get_pid("s1") == 200

    def test_unregister(self):
        self.registry.register("s1", 100)
        assert self.registry.unregister("s1") is True
        assert self.registry.is_running("s1") is False

    def test_unregister_missing_is_noop(self):
        assert self.registry.unregister("missing") is False

    def test_unregister_with_stale_pid_keeps_newer_entry(self):
        self.registry.register("s1", 100)
        self.registry.register("s1", 200)

        assert self.registry.unregister("s1", 100) is False
        assert self.registry.get_pid("s1") == 200
        assert self.registry.unregister("s1", 200) is True

    def test_running_sessions_is_a_snapshot(self):
        self.registry.register("s1", 100)
        snapshot = self.registry.running_sessions()
        self.registry.unregister("s1")
        assert snapshot == {"s1"}


class TestCancel:
    """Tests for cancel()."""

    def setup_method(self):
        self.emitter = Mock()
        self.store = Mock()
        self.registry = ProcessRegistry(self.emitter, self.store)

    def test_cancel_unknown_session(self, kill_primitives):
        assert self.registry.cancel("missing", "wt-1") is False
        kill_primitives.kill_tree.assert_not_called()
        kill_primitives.kill.assert_not_called()
        self.emitter.emit.assert_not_called()

    def test_cancel_running_session(self, kill_primitives):
        self.registry.register("s1", 4242)

        assert self.registry.cancel("s1", "wt-1") is True

        assert self.registry.is_running("s1") is False
        kill_primitives.kill_tree.assert_called_once_with(4242)
        kill_primitives.kill.assert_called_once_with(4242)
        self.store.mark_run_cancelled.assert_called_once_with("s1")
        name, event = self.emitter.emit.call_args[0]
        assert name == CANCELLED_EVENT
        assert event.session_id == "s1"
        assert event.worktree_id == "wt-1"
        assert event.discard_partial_output is False

    def test_cancel_twice(self, kill_primitives):
        self.registry.register("s1", 4242)
        assert self.registry.cancel("s1", "wt-1") is True
        assert self.registry.cancel("s1", "wt-1") is False

    @pytest.mark.parametrize("pid", [0, 1])
    def test_dangerous_pid_rejected(self, kill_primitives, pid):
        self.registry.register("s1", pid)

        with pytest.raises(DangerousPidError):
            self.registry.cancel("s1", "wt-1")

        kill_primitives.kill_tree.assert_not_called()
        kill_primitives.kill.assert_not_called()
        self.emitter.emit.assert_not_called()
        # Entry is gone so the session is not stuck "running"
        assert self.registry.is_running("s1") is False

    def test_kill_failures_do_not_change_outcome(self, kill_primitives):
        kill_primitives.kill_tree.side_effect = ProcessControlError("no such process group")
        kill_primitives.kill.side_effect = ProcessControlError("no such process")
        self.registry.register("s1", 4242)

        assert self.registry.cancel("s1", "wt-1") is True
        self.emitter.emit.assert_called_once()

    def test_dead_process_still_cancelled(self, kill_primitives):
        kill_primitives.alive.return_value = False
        self.registry.register("s1", 4242)

        assert self.registry.cancel("s1", "wt-1") is True
        kill_primitives.kill_tree.assert_called_once_with(4242)

    def test_store_failure_still_emits(self, kill_primitives):
        self.store.mark_run_cancelled.side_effect = SessionStoreError("no running run")
        self.registry.register("s1", 4242)

        assert self.registry.cancel("s1", "wt-1") is True
        self.emitter.emit.assert_called_once()

    def test_concurrent_cancel_succeeds_once(self, kill_primitives):
        self.registry.register("s1", 4242)
        results = []
        lock = threading.Lock()

        def cancel():
            outcome = self.registry.cancel("s1", "wt-1")
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=cancel) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert results.count(False) == 19


class TestCancelOrdering:
    """Run state must read "cancelled" by the time the event is observed."""

    def test_store_updated_before_event(self, temp_dir, emitter, kill_primitives):
        store = SessionStore(temp_dir)
        registry = ProcessRegistry(emitter, store)
        store.record_run_started("s1", "wt-1", 4242)
        registry.register("s1", 4242)
        observed = []

        def on_event(name, payload):
            if name == CANCELLED_EVENT:
                observed.append((store.get_run_status(payload["session_id"]), registry.is_running("s1")))

        emitter.subscribe(on_event)

        registry.cancel("s1", "wt-1")

        assert observed == [("cancelled", False)]

    def test_event_payload_shape(self, temp_dir, emitter, events, kill_primitives):
        registry = ProcessRegistry(emitter, SessionStore(temp_dir))
        registry.register("s1", 4242)

        registry.cancel("s1", "wt-1")

        assert events == [(CANCELLED_EVENT, {
            "session_id": "s1",
            "worktree_id": "wt-1",
            "discard_partial_output": False,
        })]


class TestCancelAllForWorktree:
    """Tests for bulk cancellation."""

    def setup_method(self):
        self.emitter = Mock()
        self.store = Mock()
        self.registry = ProcessRegistry(self.emitter, self.store)

    def test_cancels_running_sessions_of_worktree(self, kill_primitives):
        self.store.load_sessions_for_worktree.return_value = [
            SessionRecord(id="a", worktree_id="wt-1"),
            SessionRecord(id="b", worktree_id="wt-1"),
            SessionRecord(id="c", worktree_id="wt-1"),
        ]
        self.registry.register("a", 1001)
        self.registry.register("b", 1002)
        self.registry.register("other", 1003)

        assert self.registry.cancel_all_for_worktree("wt-1") == 2

        assert self.registry.running_sessions() == {"other"}
        self.store.load_sessions_for_worktree.assert_called_once_with("wt-1")

    def test_lookup_failure_means_nothing_to_cancel(self, kill_primitives):
        self.store.load_sessions_for_worktree.side_effect = SessionStoreError("wt-2.json not found")
        self.registry.register("a", 1001)

        assert self.registry.cancel_all_for_worktree("wt-2") == 0
        assert self.registry.is_running("a") is True

    def test_dangerous_pid_does_not_stop_the_rest(self, kill_primitives):
        self.store.load_sessions_for_worktree.return_value = [
            SessionRecord(id="a", worktree_id="wt-1"),
            SessionRecord(id="b", worktree_id="wt-1"),
        ]
        self.registry.register("a", 1)
        self.registry.register("b", 1002)

        assert self.registry.cancel_all_for_worktree("wt-1") == 1
        kill_primitives.kill.assert_called_once_with(1002)


class TestCorruptRunState:
    """A malformed run manifest must not stop cancellation."""

    def write_manifest(self, store: SessionStore, session_id: str, data) -> None:
        path = store._runs_path(session_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data))

    def test_cancel_still_emits(self, temp_dir, emitter, events, kill_primitives):
        store = SessionStore(temp_dir)
        self.write_manifest(store, "s1", {"runs": [{"run_id": "r", "legacy": 1}]})
        registry = ProcessRegistry(emitter, store)
        registry.register("s1", 4242)

        assert registry.cancel("s1", "wt-1") is True

        assert [name for name, _ in events] == [CANCELLED_EVENT]
        assert registry.is_running("s1") is False

    def test_cancel_all_continues_past_bad_manifests(self, temp_dir, emitter, events, kill_primitives):
        store = SessionStore(temp_dir)
        store.save_sessions_for_worktree("wt-1", [
            SessionRecord(id="s1", worktree_id="wt-1"),
            SessionRecord(id="s2", worktree_id="wt-1"),
        ])
        self.write_manifest(store, "s1", ["not", "a", "dict"])
        self.write_manifest(store, "s2", {"runs": [{"run_id": "r", "legacy": 1}]})
        registry = ProcessRegistry(emitter, store)
        registry.register("s1", 1001)
        registry.register("s2", 1002)

        assert registry.cancel_all_for_worktree("wt-1") == 2

        assert registry.running_sessions() == set()
        assert len(events) == 2
