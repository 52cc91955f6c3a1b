"""GitHub CLI integration for pull-request status checks."""

import json
import shutil
import subprocess
import time
from pathlib import Path
from typing import Optional

from config import get_gh_command
from error_handler import StatusCheckError
from logging_config import get_logger
from models import PrStatus
from process_utils import silent_popen_kwargs

logger = get_logger(__name__)

PR_VIEW_FIELDS = "state,isDraft,reviewDecision,mergeable,statusCheckRollup"
GH_TIMEOUT_SECONDS = 30

FAILED_CONCLUSIONS = {"FAILURE", "ERROR", "CANCELLED", "TIMED_OUT", "ACTION_REQUIRED", "STARTUP_FAILURE"}
PENDING_STATES = {"PENDING", "EXPECTED", "QUEUED", "IN_PROGRESS", "WAITING", "REQUESTED"}


def find_gh_cli() -> Optional[str]:
    """Find the GitHub CLI executable."""
    possible_paths = [
        shutil.which("gh"),  # Standard PATH lookup
        "/opt/homebrew/bin/gh",
        "/usr/local/bin/gh",
        str(Path.home() / ".local/bin/gh"),
        str(Path.home() / "bin/gh"),
    ]

    for path in possible_paths:
        if path and Path(path).exists() and Path(path).is_file():
            return path

    return None


def resolve_gh_binary(cfg: Optional[dict] = None) -> str:
    """Configured override, then a discovered binary, then bare ``gh``."""
    if cfg:
        override = get_gh_command(cfg)
        if override:
            return override
    return find_gh_cli() or "gh"


def _check_state(check: dict) -> str:
    """Reduce one rollup entry (CheckRun or StatusContext) to success/failure/pending."""
    # StatusContext entries carry a single "state"
    if check.get("__typename") == "StatusContext" or ("state" in check and "conclusion" not in check):
        state = (check.get("state") or "").upper()
        if state in ("FAILURE", "ERROR"):
            return "failure"
        if state == "SUCCESS":
            return "success"
        return "pending"

    status = (check.get("status") or "").upper()
    conclusion = (check.get("conclusion") or "").upper()
    if status in PENDING_STATES or not conclusion:
        return "pending"
    if conclusion in FAILED_CONCLUSIONS:
        return "failure"
    return "success"


def summarize_checks(rollup: Optional[list]) -> Optional[str]:
    """Overall check status: failure beats pending beats success; None without checks."""
    if not rollup:
        return None
    states = {_check_state(c) for c in rollup if isinstance(c, dict)}
    if "failure" in states:
        return "failure"
    if "pending" in states:
        return "pending"
    return "success" if states else None


def display_status_for(data: dict) -> str:
    """Map gh's PR fields to the status shown in the UI."""
    state = (data.get("state") or "").upper()
    if state == "MERGED":
        return "merged"
    if state == "CLOSED":
        return "closed"
    if data.get("isDraft"):
        return "draft"
    decision = (data.get("reviewDecision") or "").upper()
    if decision == "APPROVED":
        return "approved"
    if decision == "CHANGES_REQUESTED":
        return "changes_requested"
    return "open"


def parse_pr_view(output: str, worktree_id: str, pr_number: int, pr_url: str) -> PrStatus:
    """Parse ``gh pr view --json`` output into a PrStatus."""
    try:
        data = json.loads(output)
    except ValueError as e:
        raise StatusCheckError(f"Invalid JSON from gh for PR #{pr_number}: {e}") from e
    if not isinstance(data, dict):
        raise StatusCheckError(f"Unexpected gh output for PR #{pr_number}")

    return PrStatus(
        worktree_id=worktree_id,
        pr_number=pr_number,
        pr_url=pr_url,
        state=(data.get("state") or "OPEN").upper(),
        display_status=display_status_for(data),
        check_status=summarize_checks(data.get("statusCheckRollup")),
        mergeable=data.get("mergeable"),
        checked_at=int(time.time()),
    )


def get_pr_status(
    worktree_path: Path,
    pr_number: int,
    pr_url: str,
    worktree_id: str,
    gh: str = "gh",
) -> PrStatus:
    """Fetch the status of a pull request through the GitHub CLI."""
    cmd = [gh, "pr", "view", str(pr_number), "--json", PR_VIEW_FIELDS]
    try:
        result = subprocess.run(
            cmd,
            cwd=str(worktree_path),
            capture_output=True,
            text=True,
            timeout=GH_TIMEOUT_SECONDS,
            **silent_popen_kwargs(),
        )
    except FileNotFoundError as e:
        raise StatusCheckError(f"GitHub CLI not found: {gh}") from e
    except subprocess.TimeoutExpired as e:
        raise StatusCheckError(f"gh pr view timed out after {GH_TIMEOUT_SECONDS}s") from e
    except OSError as e:
        raise StatusCheckError(f"Failed to run gh: {e}") from e

    if result.returncode != 0:
        raise StatusCheckError(result.stderr.strip() or f"gh exited with {result.returncode}")

    return parse_pr_view(result.stdout, worktree_id, pr_number, pr_url)
