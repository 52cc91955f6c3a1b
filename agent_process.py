"""Launching agent CLI processes that can later be cancelled as a tree."""

import subprocess
import threading
from pathlib import Path

from error_handler import SessionStoreError
from logging_config import get_logger, log_process_action
from process_registry import ProcessRegistry
from process_utils import new_group_popen_kwargs

logger = get_logger(__name__)


def agent_popen_kwargs() -> dict:
    """Popen arguments for agent processes.

    The child leads a new process group, so cancelling it with a group
    kill can never reach this process.
    """
    return new_group_popen_kwargs()


def launch_agent_process(
    command: list[str],
    cwd: Path,
    session_id: str,
    worktree_id: str,
    registry: ProcessRegistry,
    store=None,
    **popen_kwargs,
) -> subprocess.Popen:
    """Spawn an agent process, register it and watch for its exit.

    Output is inherited from this process unless ``stdout``/``stderr`` are
    passed, e.g. a log file or ``subprocess.DEVNULL``. With ``subprocess.PIPE``
    the caller owns reading ``process.stdout``; the watcher only waits.
    """
    kwargs = dict(popen_kwargs)
    kwargs.update(agent_popen_kwargs())

    process = subprocess.Popen(command, cwd=str(cwd), **kwargs)
    log_process_action(logger, f"Launched {command[0]}", session_id, process.pid, worktree_id=worktree_id)

    registry.register(session_id, process.pid)
    if store is not None:
        try:
            store.record_run_started(session_id, worktree_id, process.pid)
        except SessionStoreError as e:
            logger.warning(f"Failed to record run start for session {session_id}: {e}")

    watcher = threading.Thread(
        target=_watch_process,
        args=(process, session_id, registry, store),
        name=f"agent-watch-{session_id[:8]}",
        daemon=True,
    )
    watcher.start()
    return process


def _watch_process(
    process: subprocess.Popen,
    session_id: str,
    registry: ProcessRegistry,
    store,
) -> None:
    returncode = process.wait()

    # Missing entry means the session was cancelled (run state already updated) or re-launched
    if not registry.unregister(session_id, process.pid):
        logger.debug(f"Process for session {session_id} exited but is no longer registered ({returncode})")
        return

    status = "completed" if returncode == 0 else "failed"
    logger.info(f"Process for session {session_id} exited with {returncode}")
    if store is not None:
        try:
            store.record_run_finished(session_id, status)
        except SessionStoreError as e:
            logger.warning(f"Failed to record run end for session {session_id}: {e}")
