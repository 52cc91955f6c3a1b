"""Registry of running agent processes by session, with safe cancellation."""

import logging
import threading

from error_handler import DangerousPidError, ProcessControlError, SessionStoreError, handle_process_error
from events import CANCELLED_EVENT, EventEmitter
from logging_config import get_logger, log_process_action
from metrics import record_cancellation, time_operation
from models import CancelledEvent
from process_utils import is_process_alive, kill_process, kill_process_tree

logger = get_logger(__name__)

# Never signal pid 0 (our own process group) or pid 1 (init/launchd)
DANGEROUS_PIDS = frozenset({0, 1})


class ProcessRegistry:
    """Maps session ids to the pid of their running agent process.

    Keyed by session id rather than worktree id, so several sessions of
    one worktree can run concurrently. An entry exists exactly while its
    process is believed to be running.
    """

    def __init__(self, emitter: EventEmitter, store):
        """
        Args:
            emitter: Receives the chat:cancelled event
            store: Provides mark_run_cancelled(session_id) and
                load_sessions_for_worktree(worktree_id)
        """
        self.emitter = emitter
        self.store = store
        self._processes: dict[str, int] = {}
        self._lock = threading.Lock()

    def register(self, session_id: str, pid: int) -> None:
        """Register the pid of a running process. Last writer wins."""
        with self._lock:
            previous = self._processes.get(session_id)
            self._processes[session_id] = pid
        if previous is not None and previous != pid:
            logger.debug(f"Session {session_id} re-registered: pid {previous} -> {pid}")
        else:
            logger.debug(f"Registered process pid={pid} for session {session_id}")

    def unregister(self, session_id: str, pid: int | None = None) -> bool:
        """Remove a session's entry. Returns True if one was removed.

        With ``pid`` given, only an entry for that exact pid is removed, so a
        stale exit cannot drop a newer process of the same session.
        """
        with self._lock:
            if pid is not None and self._processes.get(session_id) != pid:
                return False
            pid = self._processes.pop(session_id, None)
        if pid is not None:
            logger.debug(f"Unregistered process {pid} for session {session_id}")
        return pid is not None

    def is_running(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._processes

    def running_sessions(self) -> set[str]:
        with self._lock:
            return set(self._processes)

    def get_pid(self, session_id: str) -> int | None:
        with self._lock:
            return self._processes.get(session_id)

    def cancel(self, session_id: str, worktree_id: str) -> bool:
        """Kill the process tree of a session.

        Returns False when no process was registered (already finished).
        Raises DangerousPidError for pid 0 or 1; the entry is removed
        anyway so the session does not stay "running" forever.
        """
        # Remove first so concurrent status queries never see a cancelled session as running
        with self._lock:
            pid = self._processes.pop(session_id, None)

        if pid is None:
            logger.debug(f"No running process found for session {session_id}")
            return False

        if pid in DANGEROUS_PIDS:
            logger.error(f"Refusing to kill dangerous PID: {pid}")
            raise DangerousPidError(pid)

        log_process_action(logger, f"Cancelling process group {pid}", session_id, pid, worktree_id=worktree_id)

        if not is_process_alive(pid):
            logger.warning(f"Process {pid} check failed (may have exited)")

        try:
            kill_process_tree(pid)
            logger.debug(f"Sent kill to process tree pid={pid}")
        except ProcessControlError as e:
            handle_process_error(e, "kill_tree", pid)

        # The tree kill may only have reached the group
        try:
            kill_process(pid)
        except ProcessControlError as e:
            logger.debug(f"Direct kill of pid={pid} failed (may be redundant): {e}")

        # Persist before emitting: listeners refetch run state when they get the event
        try:
            self.store.mark_run_cancelled(session_id)
        except SessionStoreError as e:
            logger.warning(f"Failed to mark run as cancelled for session {session_id}: {e}")

        self.emitter.emit(
            CANCELLED_EVENT,
            CancelledEvent(session_id=session_id, worktree_id=worktree_id, discard_partial_output=False),
        )
        record_cancellation(session_id, worktree_id, pid)
        log_process_action(logger, "Cancellation emitted", session_id, pid, logging.DEBUG, worktree_id=worktree_id)
        return True

    def cancel_all_for_worktree(self, worktree_id: str) -> int:
        """Cancel every running session of a worktree. Returns the number cancelled."""
        logger.debug(f"Cancelling all processes for worktree {worktree_id}")
        try:
            sessions = self.store.load_sessions_for_worktree(worktree_id)
        except SessionStoreError as e:
            # Worktree may have no sessions yet
            logger.debug(f"No sessions found for worktree {worktree_id}: {e}")
            return 0

        cancelled = 0
        with time_operation("cancel_all_for_worktree"):
            for session in sessions:
                try:
                    if self.cancel(session.id, worktree_id):
                        cancelled += 1
                except DangerousPidError as e:
                    logger.error(f"Skipped session {session.id}: {e}")

        if cancelled:
            logger.info(f"Cancelled {cancelled} process(es) for worktree {worktree_id}")
        return cancelled
