"""Data models for the worktree polling backend."""

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ActiveWorktreeInfo:
    """The worktree currently eligible for background polling."""

    worktree_id: str
    worktree_path: Path
    base_branch: str = "main"
    pr_number: int | None = None
    pr_url: str | None = None

    @property
    def has_pr(self) -> bool:
        """Remote checks need both a PR number and a PR URL."""
        return self.pr_number is not None and bool(self.pr_url)


@dataclass
class GitBranchStatus:
    """Result of a local git status check."""

    worktree_id: str
    current_branch: str | None
    base_branch: str
    behind_count: int
    ahead_count: int
    has_updates: bool
    uncommitted_changes: int
    checked_at: int  # unix seconds


@dataclass
class PrStatus:
    """Result of a remote pull-request status check."""

    worktree_id: str
    pr_number: int
    pr_url: str
    state: str  # "OPEN", "CLOSED", "MERGED"
    display_status: str  # "open", "draft", "approved", "changes_requested", "merged", "closed"
    check_status: str | None  # "success", "failure", "pending" or None without checks
    mergeable: str | None
    checked_at: int


@dataclass
class CancelledEvent:
    """Payload of the chat:cancelled event."""

    session_id: str
    worktree_id: str
    # A process that was genuinely running may have produced partial content worth keeping
    discard_partial_output: bool = False


@dataclass
class SessionRecord:
    """A chat session belonging to a worktree."""

    id: str
    worktree_id: str
    name: str = ""
    created_at: int = 0


@dataclass
class RunRecord:
    """One agent invocation for a session."""

    run_id: str
    session_id: str
    worktree_id: str
    status: str  # "running", "completed", "failed", "cancelled"
    started_at: int
    ended_at: int | None = None
    pid: int | None = None
