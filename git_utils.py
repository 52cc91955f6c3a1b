"""Git operations for local worktree status checks."""

import shutil
import subprocess
import time
from pathlib import Path
from typing import List

from error_handler import StatusCheckError
from logging_config import get_logger
from models import ActiveWorktreeInfo, GitBranchStatus
from process_utils import silent_popen_kwargs

logger = get_logger(__name__)


def which(cmd: str) -> str | None:
    """Find command in PATH."""
    return shutil.which(cmd)


def run_git(args: List[str], cwd: Path | None = None, check: bool = True) -> subprocess.CompletedProcess[str]:
    """Run a git command with safe argument passing."""
    cmd = ["git"] + list(args)
    try:
        cp = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd else None,
            check=check,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            **silent_popen_kwargs(),
        )
        return cp
    except FileNotFoundError:
        raise RuntimeError("Git not found on PATH.")
    except subprocess.CalledProcessError as e:
        # surface stderr to caller
        raise RuntimeError(e.stderr.strip() or str(e))


def ref_exists(worktree_path: Path, ref: str) -> bool:
    """Check whether a ref resolves in the given worktree."""
    cp = run_git(["-C", str(worktree_path), "rev-parse", "--verify", "--quiet", ref], check=False)
    return cp.returncode == 0


def current_branch(worktree_path: Path) -> str | None:
    """Current branch name, or None when HEAD is detached."""
    cp = run_git(["-C", str(worktree_path), "rev-parse", "--abbrev-ref", "HEAD"])
    name = cp.stdout.strip()
    return None if name == "HEAD" else name


def ahead_behind(worktree_path: Path, base_ref: str) -> tuple[int, int]:
    """Commits HEAD is ahead of and behind ``base_ref``."""
    cp = run_git(["-C", str(worktree_path), "rev-list", "--left-right", "--count", f"HEAD...{base_ref}"])
    parts = cp.stdout.split()
    if len(parts) != 2:
        raise RuntimeError(f"Unexpected rev-list output: {cp.stdout.strip()!r}")
    return int(parts[0]), int(parts[1])


def count_uncommitted_changes(worktree_path: Path) -> int:
    """Number of modified, staged or untracked paths."""
    cp = run_git(["-C", str(worktree_path), "status", "--porcelain"])
    return len([line for line in cp.stdout.splitlines() if line.strip()])


def get_branch_status(info: ActiveWorktreeInfo) -> GitBranchStatus:
    """Local status of a worktree compared to its base branch.

    Compares against ``origin/<base>`` when the remote-tracking ref exists,
    otherwise against the local ``<base>`` branch. Does not fetch.
    """
    path = Path(info.worktree_path)
    try:
        branch = current_branch(path)
        base_ref = f"origin/{info.base_branch}"
        if not ref_exists(path, base_ref):
            base_ref = info.base_branch
            if not ref_exists(path, base_ref):
                raise StatusCheckError(f"Base branch '{info.base_branch}' not found in {path}")
        ahead, behind = ahead_behind(path, base_ref)
        uncommitted = count_uncommitted_changes(path)
    except StatusCheckError:
        raise
    except (RuntimeError, ValueError) as e:
        raise StatusCheckError(f"git status failed for {info.worktree_id}: {e}") from e

    return GitBranchStatus(
        worktree_id=info.worktree_id,
        current_branch=branch,
        base_branch=info.base_branch,
        behind_count=behind,
        ahead_count=ahead,
        has_updates=behind > 0,
        uncommitted_changes=uncommitted,
        checked_at=int(time.time()),
    )
