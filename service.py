"""Command surface of the backend: polling control and process cancellation.

These are the operations the IPC dispatch table and the WebSocket
transport forward to. Argument decoding happens in the transport layer.
"""

from pathlib import Path
from typing import Callable, Optional

from background_tasks import BackgroundTaskManager
from config import (
    get_poll_interval,
    get_remote_poll_interval,
    save_config,
    set_poll_interval,
    set_remote_poll_interval,
)
from error_handler import handle_configuration_error
from events import EventEmitter
from gh_utils import resolve_gh_binary
from logging_config import get_logger
from models import ActiveWorktreeInfo
from process_registry import ProcessRegistry
from session import SessionStore

logger = get_logger(__name__)


class BackendService:
    """Owns the polling scheduler and the process registry."""

    def __init__(
        self,
        cfg: dict,
        emitter: EventEmitter,
        store: SessionStore,
        config_path: Optional[Path] = None,
        persist_config: bool = True,
        tasks: Optional[BackgroundTaskManager] = None,
        registry: Optional[ProcessRegistry] = None,
        save: Callable[[dict, Optional[Path]], None] = save_config,
    ):
        self.cfg = cfg
        self.emitter = emitter
        self.store = store
        self.config_path = config_path
        self.persist_config = persist_config
        self._save = save

        self.tasks = tasks or BackgroundTaskManager(
            emitter,
            resolve_tool_binary=lambda: resolve_gh_binary(self.cfg),
            poll_interval=get_poll_interval(cfg),
            remote_poll_interval=get_remote_poll_interval(cfg),
        )
        self.registry = registry or ProcessRegistry(emitter, store)

    def start(self) -> None:
        self.tasks.start()
        logger.info(
            f"Backend started (git poll {self.tasks.get_poll_interval()}s, "
            f"remote poll {self.tasks.get_remote_poll_interval()}s)"
        )

    def shutdown(self, timeout: float = 2.0) -> None:
        """Stop the polling loop. Registered agent processes keep running."""
        self.tasks.stop()
        self.tasks.join(timeout)
        running = self.registry.running_sessions()
        if running:
            logger.info(f"Shutting down with {len(running)} agent process(es) still registered")

    def _persist(self) -> None:
        if not self.persist_config:
            return
        try:
            self._save(self.cfg, self.config_path)
        except OSError as e:
            handle_configuration_error(e)

    # Polling

    def set_app_focus_state(self, focused: bool) -> None:
        self.tasks.set_focused(bool(focused))

    def set_active_worktree_for_polling(
        self,
        worktree_id: Optional[str],
        worktree_path: Optional[str],
        base_branch: Optional[str] = None,
        pr_number: Optional[int] = None,
        pr_url: Optional[str] = None,
    ) -> None:
        """Set the polling target; a missing id or path clears it."""
        if not worktree_id or not worktree_path:
            self.tasks.set_active_worktree(None)
            return

        self.tasks.set_active_worktree(ActiveWorktreeInfo(
            worktree_id=worktree_id,
            worktree_path=Path(worktree_path),
            base_branch=base_branch or "main",
            pr_number=pr_number,
            pr_url=pr_url or None,
        ))

    def get_git_poll_interval(self) -> int:
        return self.tasks.get_poll_interval()

    def set_git_poll_interval(self, seconds: int) -> int:
        clamped = self.tasks.set_poll_interval(seconds)
        set_poll_interval(self.cfg, clamped)
        self._persist()
        return clamped

    def get_remote_poll_interval(self) -> int:
        return self.tasks.get_remote_poll_interval()

    def set_remote_poll_interval(self, seconds: int) -> int:
        clamped = self.tasks.set_remote_poll_interval(seconds)
        set_remote_poll_interval(self.cfg, clamped)
        self._persist()
        return clamped

    def trigger_immediate_git_poll(self) -> None:
        self.tasks.trigger_immediate_poll()

    def trigger_immediate_remote_poll(self) -> None:
        self.tasks.trigger_immediate_remote_poll()

    # Processes

    def cancel_chat_message(self, session_id: str, worktree_id: str) -> bool:
        """Cancel the running agent process of a session.

        Raises DangerousPidError if the registered pid was 0 or 1.
        """
        return self.registry.cancel(session_id, worktree_id)

    def cancel_processes_for_worktree(self, worktree_id: str) -> int:
        return self.registry.cancel_all_for_worktree(worktree_id)

    def get_running_sessions(self) -> list[str]:
        return sorted(self.registry.running_sessions())
