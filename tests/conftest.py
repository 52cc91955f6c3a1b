"""Pytest configuration and fixtures for worktree poller tests."""

import shutil
import subprocess
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

from events import EventEmitter


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def temp_git_repo(temp_dir: Path) -> Path:
    """Create a temporary git repository with one commit on 'main'."""
    subprocess.run(["git", "init"], cwd=temp_dir, check=True, capture_output=True)
    subprocess.run(["git", "config", "user.name", "Test User"], cwd=temp_dir, check=True)
    subprocess.run(["git", "config", "user.email", "test@example.com"], cwd=temp_dir, check=True)
    subprocess.run(["git", "config", "commit.gpgsign", "false"], cwd=temp_dir, check=True)

    readme_file = temp_dir / "README.md"
    readme_file.write_text("# Test Repository\n")
    subprocess.run(["git", "add", "README.md"], cwd=temp_dir, check=True)
    subprocess.run(["git", "commit", "-m", "Initial commit"], cwd=temp_dir, check=True, capture_output=True)
    subprocess.run(["git", "branch", "-M", "main"], cwd=temp_dir, check=True)

    return temp_dir


@pytest.fixture
def sample_config() -> dict:
    """Provide a sample configuration for testing."""
    return {
        "git_poll_interval": 30,
        "remote_poll_interval": 120,
        "gh_command": "/usr/local/bin/gh",
        "log_level": "DEBUG",
        "json_logs": False,
        "enable_telemetry": False,
        "data_dir": None,
    }


@pytest.fixture
def config_file(temp_dir: Path, sample_config: dict) -> Path:
    """Create a temporary config file for testing."""
    import json

    config_path = temp_dir / "settings.json"
    config_path.write_text(json.dumps(sample_config, indent=2))
    return config_path


class FakeClock:
    """Simulated unix clock whose sleep advances time and fires scheduled actions."""

    def __init__(self, start: int = 1_700_000_000):
        self.start = start
        self.now = start
        self._actions: list[tuple[int, callable]] = []

    def time(self) -> float:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.now += int(seconds)
        due = sorted((a for a in self._actions if a[0] <= self.now), key=lambda a: a[0])
        self._actions = [a for a in self._actions if a[0] > self.now]
        for _, action in due:
            action()

    def at(self, offset: int, action) -> None:
        """Run ``action`` once simulated time reaches start + offset."""
        self._actions.append((self.start + offset, action))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def emitter() -> EventEmitter:
    return EventEmitter()


@pytest.fixture
def events(emitter: EventEmitter) -> list:
    """Every (event_name, payload) emitted through the ``emitter`` fixture."""
    received = []
    emitter.subscribe(lambda name, payload: received.append((name, payload)))
    return received
