"""Tests for logging configuration."""

import json
import logging
from pathlib import Path

import pytest

from logging_config import get_logger, log_poll_result, log_process_action, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def flush_handlers():
    for handler in logging.getLogger().handlers:
        handler.flush()


def read_json_lines(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line]


@pytest.mark.usefixtures("restore_root_logger")
class TestSetupLogging:
    """Tests for handlers and structured output."""

    def test_log_files_created(self, temp_dir: Path):
        setup_logging(level="DEBUG", log_to_console=False, log_dir=temp_dir)
        get_logger("background_tasks").error("git status failed")
        flush_handlers()

        assert "git status failed" in (temp_dir / "worktree_poller.log").read_text()
        assert "git status failed" in (temp_dir / "errors.log").read_text()

    def test_process_log_only_holds_process_control(self, temp_dir: Path):
        setup_logging(level="DEBUG", log_to_console=False, log_dir=temp_dir)

        log_process_action(get_logger("process_registry"), "Cancelling process group 4242", "s1", 4242)
        get_logger("background_tasks").info("Polling loop tick")
        flush_handlers()

        process_log = (temp_dir / "process.log").read_text()
        assert "Cancelling process group 4242" in process_log
        assert "session=s1 pid=4242" in process_log
        assert "Polling loop tick" not in process_log

    def test_text_format_without_context(self, temp_dir: Path):
        setup_logging(level="DEBUG", log_to_console=False, log_dir=temp_dir)
        get_logger("service").info("Backend started")
        flush_handlers()

        assert "[wt=- session=- pid=-]" in (temp_dir / "worktree_poller.log").read_text()

    def test_json_format_carries_context(self, temp_dir: Path):
        setup_logging(level="DEBUG", log_to_console=False, json_format=True, log_dir=temp_dir)

        log_poll_result(get_logger("background_tasks"), "remote", "wt-1", 0.25, False, pr_number=42)
        log_process_action(
            get_logger("process_registry"), "Cancelling process group 4242", "s1", 4242, worktree_id="wt-1"
        )
        flush_handlers()

        poll, cancel = read_json_lines(temp_dir / "worktree_poller.log")
        assert poll["worktree_id"] == "wt-1"
        assert "session_id" not in poll
        assert poll["extra"] == {"kind": "remote", "duration_ms": 250.0, "success": False, "pr_number": 42}
        assert (cancel["session_id"], cancel["pid"], cancel["worktree_id"]) == ("s1", 4242, "wt-1")
        assert "host_pid" in cancel

    def test_setup_replaces_previous_handlers(self, temp_dir: Path):
        setup_logging(log_to_console=False, log_dir=temp_dir / "first")
        setup_logging(log_to_console=False, log_dir=temp_dir / "second")

        assert len(logging.getLogger().handlers) == 3
