"""Session index and run-state storage for agent sessions in worktrees."""

import hashlib
import json
import threading
import time
import uuid
from dataclasses import asdict
from pathlib import Path

from error_handler import SessionStoreError
from logging_config import get_logger
from models import RunRecord, SessionRecord

logger = get_logger(__name__)


def _safe_name(identifier: str) -> str:
    """Make an identifier usable as a file name.

    Identifiers that change under sanitising get a digest suffix, so
    ``a/b`` and ``a_b`` map to different files.
    """
    safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in identifier)
    if safe != identifier:
        digest = hashlib.sha1(identifier.encode("utf-8")).hexdigest()[:10]
        safe = f"{safe}-{digest}"
    return safe


class SessionStore:
    """JSON-backed store of sessions per worktree and runs per session.

    Layout under ``data_dir``:
        sessions/<worktree_id>.json  {"worktree_id": ..., "sessions": [...]}
        runs/<session_id>.json       {"session_id": ..., "runs": [...]}
    """

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.sessions_dir = self.data_dir / "sessions"
        self.runs_dir = self.data_dir / "runs"
        self._lock = threading.Lock()

    def _sessions_path(self, worktree_id: str) -> Path:
        return self.sessions_dir / f"{_safe_name(worktree_id)}.json"

    def _runs_path(self, session_id: str) -> Path:
        return self.runs_dir / f"{_safe_name(session_id)}.json"

    def _read_json(self, path: Path) -> dict:
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError as e:
            raise SessionStoreError(f"{path.name} not found") from e
        except (OSError, ValueError) as e:
            raise SessionStoreError(f"Failed to read {path}: {e}") from e

    def _write_json(self, path: Path, data: dict) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.parent / f".{path.name}.tmp"
        try:
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            tmp.replace(path)
        except OSError as e:
            raise SessionStoreError(f"Failed to write {path}: {e}") from e

    # Sessions

    def load_sessions_for_worktree(self, worktree_id: str) -> list[SessionRecord]:
        """Load all sessions of a worktree. Raises SessionStoreError if none were saved."""
        with self._lock:
            data = self._read_json(self._sessions_path(worktree_id))
        try:
            return [
                SessionRecord(
                    id=s["id"],
                    worktree_id=worktree_id,
                    name=s.get("name", ""),
                    created_at=s.get("created_at", 0),
                )
                for s in data.get("sessions", [])
            ]
        except (KeyError, TypeError, AttributeError) as e:
            raise SessionStoreError(f"Malformed session index for {worktree_id}: {e}") from e

    def save_sessions_for_worktree(self, worktree_id: str, sessions: list[SessionRecord]) -> None:
        """Replace the session index of a worktree."""
        data = {
            "worktree_id": worktree_id,
            "sessions": [
                {"id": s.id, "name": s.name, "created_at": s.created_at} for s in sessions
            ],
        }
        with self._lock:
            self._write_json(self._sessions_path(worktree_id), data)

    # Runs

    def _load_runs(self, session_id: str) -> list[RunRecord]:
        path = self._runs_path(session_id)
        if not path.exists():
            return []
        data = self._read_json(path)
        if not isinstance(data, dict):
            raise SessionStoreError(f"Malformed run manifest for {session_id}: expected an object")
        try:
            return [RunRecord(**r) for r in data.get("runs", [])]
        except (TypeError, KeyError, AttributeError) as e:
            raise SessionStoreError(f"Malformed run manifest for {session_id}: {e}") from e

    def _save_runs(self, session_id: str, runs: list[RunRecord]) -> None:
        self._write_json(
            self._runs_path(session_id),
            {"session_id": session_id, "runs": [asdict(r) for r in runs]},
        )

    def record_run_started(self, session_id: str, worktree_id: str, pid: int | None = None) -> RunRecord:
        """Append a new running run for a session."""
        run = RunRecord(
            run_id=str(uuid.uuid4()),
            session_id=session_id,
            worktree_id=worktree_id,
            status="running",
            started_at=int(time.time()),
            pid=pid,
        )
        with self._lock:
            runs = self._load_runs(session_id)
            runs.append(run)
            self._save_runs(session_id, runs)
        logger.debug(f"Run {run.run_id[:8]} started for session {session_id}")
        return run

    def _finish_latest_running(self, session_id: str, status: str) -> RunRecord:
        with self._lock:
            runs = self._load_runs(session_id)
            for run in reversed(runs):
                if run.status == "running":
                    run.status = status
                    run.ended_at = int(time.time())
                    self._save_runs(session_id, runs)
                    return run
        raise SessionStoreError(f"No running run for session {session_id}")

    def record_run_finished(self, session_id: str, status: str) -> RunRecord:
        """Mark the latest running run as completed or failed."""
        run = self._finish_latest_running(session_id, status)
        logger.debug(f"Run {run.run_id[:8]} for session {session_id} finished: {status}")
        return run

    def mark_run_cancelled(self, session_id: str) -> RunRecord:
        """Mark the latest running run as cancelled. Raises SessionStoreError if none is running."""
        run = self._finish_latest_running(session_id, "cancelled")
        logger.debug(f"Run {run.run_id[:8]} for session {session_id} marked cancelled")
        return run

    def get_run_status(self, session_id: str) -> str | None:
        """Status of the latest run of a session, or None without runs."""
        with self._lock:
            runs = self._load_runs(session_id)
        return runs[-1].status if runs else None
