"""Background polling of git and PR status for the active worktree.

Polling is split into two categories:

- **Local**: git commands that run locally (fast, debounced to 10s)
- **Remote**: PR status through ``gh`` (slower, rate-limited, on its own
  configurable interval and only for worktrees linked to a PR)

A single worker thread re-reads shared state every iteration. Callers
never push work to it; they flip flags and replace the target.
"""

import threading
import time
from typing import Callable, Optional

from config import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_REMOTE_POLL_INTERVAL,
    MIN_LOCAL_POLL_DEBOUNCE,
    clamp_poll_interval,
    clamp_remote_poll_interval,
)
from error_handler import handle_poll_error
from events import GIT_STATUS_EVENT, PR_STATUS_EVENT, EventEmitter
from gh_utils import get_pr_status, resolve_gh_binary
from git_utils import get_branch_status
from logging_config import get_logger, log_poll_result
from metrics import record_poll
from models import ActiveWorktreeInfo

logger = get_logger(__name__)


class AtomicFlag:
    """A boolean whose read-and-clear is a single critical section."""

    def __init__(self, value: bool = False):
        self._value = value
        self._lock = threading.Lock()

    def get(self) -> bool:
        with self._lock:
            return self._value

    def set(self, value: bool = True) -> None:
        with self._lock:
            self._value = value

    def swap(self, value: bool) -> bool:
        """Store a new value and return the previous one."""
        with self._lock:
            previous = self._value
            self._value = value
            return previous

    def consume(self) -> bool:
        """Clear the flag, returning whether it was set."""
        return self.swap(False)


class BackgroundTaskManager:
    """Runs the dual-rate polling loop for the active worktree.

    The worker is idle while the app is unfocused or no worktree is
    active, polls while both hold, and stops for good once ``stop`` is
    called. Each piece of shared state has its own lock; nothing is
    atomic across pieces, so a target swap mid-iteration is tolerated and
    corrected on the next pass.
    """

    def __init__(
        self,
        emitter: EventEmitter,
        local_status: Callable = get_branch_status,
        remote_status: Callable = get_pr_status,
        resolve_tool_binary: Callable[[], str] = resolve_gh_binary,
        poll_interval: int = DEFAULT_POLL_INTERVAL,
        remote_poll_interval: int = DEFAULT_REMOTE_POLL_INTERVAL,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.emitter = emitter
        self._local_status = local_status
        self._remote_status = remote_status
        self._resolve_tool_binary = resolve_tool_binary
        self._clock = clock
        self._sleep = sleep

        # Assume foregrounded at startup
        self._focused = AtomicFlag(True)
        self._shutdown = threading.Event()
        self._immediate_local = AtomicFlag()
        self._immediate_remote = AtomicFlag()

        self._active_worktree: Optional[ActiveWorktreeInfo] = None
        self._worktree_lock = threading.Lock()

        self._poll_interval = clamp_poll_interval(poll_interval)
        self._remote_poll_interval = clamp_remote_poll_interval(remote_poll_interval)
        self._interval_lock = threading.Lock()

        # worktree_id -> unix seconds of the last poll; never pruned
        self._last_local_poll: dict[str, int] = {}
        self._local_times_lock = threading.Lock()
        self._last_remote_poll: dict[str, int] = {}
        self._remote_times_lock = threading.Lock()

        self._thread: Optional[threading.Thread] = None

    def _now(self) -> int:
        return int(self._clock())

    # Worker lifecycle

    def start(self) -> None:
        """Start the polling loop on a daemon thread."""
        if self._shutdown.is_set():
            raise RuntimeError("Background task manager was stopped; create a new one")
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Background task manager already running")
            return

        logger.debug("Starting background task manager")
        self._thread = threading.Thread(target=self.run, name="git-status-poller", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Signal the loop to exit. Terminal: the manager cannot be restarted."""
        logger.debug("Signaling background task manager to stop")
        self._shutdown.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def is_stopped(self) -> bool:
        return self._shutdown.is_set()

    def run(self) -> None:
        """The polling loop. Returns only after ``stop``."""
        logger.debug("Background task polling loop started")

        while True:
            if self._shutdown.is_set():
                logger.debug("Background task manager shutting down")
                break

            # Only poll when app is focused
            if not self._focused.get():
                self._sleep(1)
                continue

            info = self.get_active_worktree()
            if info is None:
                self._sleep(1)
                continue

            self.poll_once(info)
            self._wait_for_next_cycle()

    def _wait_for_next_cycle(self) -> None:
        # One-second steps so shutdown, focus loss and immediate triggers are seen quickly
        for _ in range(self.get_poll_interval()):
            if (
                self._shutdown.is_set()
                or not self._focused.get()
                or self._immediate_local.get()
                or self._remote_trigger_pending()
            ):
                break
            self._sleep(1)

    def _remote_trigger_pending(self) -> bool:
        # A remote trigger stays pending while the target has no PR; waking for it would spin
        if not self._immediate_remote.get():
            return False
        info = self.get_active_worktree()
        return info is not None and info.has_pr

    # Polling

    def poll_once(self, info: ActiveWorktreeInfo) -> None:
        """Run the local check, then the remote check, for one worktree."""
        logger.debug(
            f"Polling loop: worktree={info.worktree_id}, pr_number={info.pr_number}, pr_url={info.pr_url}"
        )
        now = self._now()
        self._poll_local(info, now)
        if info.has_pr:
            self._poll_remote(info, now)

    def _poll_local(self, info: ActiveWorktreeInfo, now: int) -> bool:
        with self._local_times_lock:
            # Missing entry counts as 0, so a worktree is eligible on first sight
            last_local = self._last_local_poll.get(info.worktree_id, 0)
        time_since_local = max(0, now - last_local)
        is_immediate = self._immediate_local.consume()

        if not (is_immediate or time_since_local >= MIN_LOCAL_POLL_DEBOUNCE):
            return False

        # Recorded before the call so a slow check cannot cause a re-poll
        with self._local_times_lock:
            self._last_local_poll[info.worktree_id] = now

        started = time.monotonic()
        try:
            status = self._local_status(info)
        except Exception as e:
            elapsed = time.monotonic() - started
            record_poll("local", info.worktree_id, False, elapsed * 1000)
            log_poll_result(logger, "local", info.worktree_id, elapsed, False)
            handle_poll_error(e, "git", info.worktree_id)
            return True

        elapsed = time.monotonic() - started
        record_poll("local", info.worktree_id, True, elapsed * 1000)
        log_poll_result(logger, "local", info.worktree_id, elapsed, True)
        logger.debug(
            f"Git status for {info.worktree_id}: behind={status.behind_count}, "
            f"ahead={status.ahead_count}, has_updates={status.has_updates}"
        )
        self.emitter.emit(GIT_STATUS_EVENT, status)
        return True

    def _poll_remote(self, info: ActiveWorktreeInfo, now: int) -> bool:
        with self._remote_times_lock:
            last_remote = self._last_remote_poll.get(info.worktree_id, 0)
        time_since_remote = max(0, now - last_remote)
        remote_interval = self.get_remote_poll_interval()
        is_immediate = self._immediate_remote.consume()

        should_poll = is_immediate or time_since_remote >= remote_interval
        logger.debug(
            f"Remote poll check: should_poll={should_poll}, is_immediate={is_immediate}, "
            f"time_since={time_since_remote}s, interval={remote_interval}s"
        )
        if not should_poll:
            return False

        with self._remote_times_lock:
            self._last_remote_poll[info.worktree_id] = now

        started = time.monotonic()
        try:
            gh = self._resolve_tool_binary()
            status = self._remote_status(
                info.worktree_path, info.pr_number, info.pr_url, info.worktree_id, gh
            )
        except Exception as e:
            elapsed = time.monotonic() - started
            record_poll("remote", info.worktree_id, False, elapsed * 1000)
            log_poll_result(logger, "remote", info.worktree_id, elapsed, False, pr_number=info.pr_number)
            handle_poll_error(e, f"PR #{info.pr_number}", info.worktree_id)
            return True

        elapsed = time.monotonic() - started
        record_poll("remote", info.worktree_id, True, elapsed * 1000)
        log_poll_result(logger, "remote", info.worktree_id, elapsed, True, pr_number=info.pr_number)
        logger.debug(
            f"PR status for #{info.pr_number}: display_status={status.display_status}, "
            f"check_status={status.check_status}"
        )
        self.emitter.emit(PR_STATUS_EVENT, status)
        return True

    # Shared state mutated by UI events

    def set_focused(self, focused: bool) -> None:
        """Pause polling when unfocused; on regaining focus poll right away if the debounce elapsed."""
        was_focused = self._focused.swap(focused)

        if focused and not was_focused:
            info = self.get_active_worktree()
            if info is None:
                logger.debug("App gained focus: no active worktree")
                return

            with self._local_times_lock:
                last_poll = self._last_local_poll.get(info.worktree_id, 0)
            time_since = max(0, self._now() - last_poll)
            logger.debug(
                f"App gained focus: worktree={info.worktree_id}, last_poll={time_since}s ago, "
                f"debounce={MIN_LOCAL_POLL_DEBOUNCE}s"
            )
            if time_since >= MIN_LOCAL_POLL_DEBOUNCE:
                self._immediate_local.set()
        elif not focused and was_focused:
            logger.debug("App lost focus: polling paused")

    def is_focused(self) -> bool:
        return self._focused.get()

    def set_active_worktree(self, info: Optional[ActiveWorktreeInfo]) -> None:
        """Replace the polling target; None stops polling on the next iteration."""
        logger.debug(f"Active worktree changed: {info.worktree_id if info else None}")
        with self._worktree_lock:
            self._active_worktree = info

        # A just-activated worktree is always checked right away
        if info is not None:
            self._immediate_local.set()

    def get_active_worktree(self) -> Optional[ActiveWorktreeInfo]:
        with self._worktree_lock:
            return self._active_worktree

    def set_poll_interval(self, seconds: int) -> int:
        """Set the local polling interval, clamped to 10-600 seconds."""
        clamped = clamp_poll_interval(seconds)
        logger.debug(f"Setting local git poll interval to {clamped} seconds")
        with self._interval_lock:
            self._poll_interval = clamped
        return clamped

    def get_poll_interval(self) -> int:
        with self._interval_lock:
            return self._poll_interval

    def set_remote_poll_interval(self, seconds: int) -> int:
        """Set the remote polling interval, clamped to 30-600 seconds."""
        clamped = clamp_remote_poll_interval(seconds)
        logger.debug(f"Setting remote poll interval to {clamped} seconds")
        with self._interval_lock:
            self._remote_poll_interval = clamped
        return clamped

    def get_remote_poll_interval(self) -> int:
        with self._interval_lock:
            return self._remote_poll_interval

    def trigger_immediate_poll(self) -> None:
        """Force a local poll on the next wake, bypassing interval and debounce."""
        logger.debug("Triggering immediate local git poll")
        self._immediate_local.set()

    def trigger_immediate_remote_poll(self) -> None:
        """Force a remote poll on the next wake, bypassing the remote interval."""
        logger.debug("Triggering immediate remote poll")
        self._immediate_remote.set()

    def last_local_poll(self, worktree_id: str) -> Optional[int]:
        with self._local_times_lock:
            return self._last_local_poll.get(worktree_id)

    def last_remote_poll(self, worktree_id: str) -> Optional[int]:
        with self._remote_times_lock:
            return self._last_remote_poll.get(worktree_id)
