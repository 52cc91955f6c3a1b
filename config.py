"""Configuration management for the worktree polling backend."""

import os
import sys
import json
from pathlib import Path

APP_NAME = "WorktreePoller"

# Local polling (git commands that run locally)
MIN_POLL_INTERVAL = 10
MAX_POLL_INTERVAL = 600
DEFAULT_POLL_INTERVAL = 60

# Minimum seconds between local polls (debounce for focus changes), not configurable
MIN_LOCAL_POLL_DEBOUNCE = 10

# Remote polling (PR status through the GitHub CLI)
MIN_REMOTE_POLL_INTERVAL = 30
MAX_REMOTE_POLL_INTERVAL = 600
DEFAULT_REMOTE_POLL_INTERVAL = 60

DEFAULT_CONFIG = {
    "git_poll_interval": DEFAULT_POLL_INTERVAL,  # int, seconds
    "remote_poll_interval": DEFAULT_REMOTE_POLL_INTERVAL,  # int, seconds
    "gh_command": None,  # str | None - override path to the gh binary
    "log_level": "INFO",  # str
    "json_logs": False,  # bool
    "enable_telemetry": False,  # bool
    "data_dir": None,  # str | None - sessions and run manifests
}


def _config_dir() -> Path:
    """Get the platform-specific configuration directory."""
    if sys.platform.startswith("win"):
        base = os.environ.get("APPDATA") or str(Path.home() / "AppData" / "Roaming")
        return Path(base) / APP_NAME
    elif sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_NAME
    else:
        base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
        return Path(base) / APP_NAME


def _config_path() -> Path:
    """Get the configuration file path."""
    return _config_dir() / "settings.json"


def clamp_poll_interval(seconds: int) -> int:
    """Clamp a local polling interval to the valid range."""
    return max(MIN_POLL_INTERVAL, min(MAX_POLL_INTERVAL, int(seconds)))


def clamp_remote_poll_interval(seconds: int) -> int:
    """Clamp a remote polling interval to the valid range."""
    return max(MIN_REMOTE_POLL_INTERVAL, min(MAX_REMOTE_POLL_INTERVAL, int(seconds)))


def load_config(path: Path | None = None) -> dict:
    """Load configuration from file, falling back to defaults."""
    p = path or _config_path()
    try:
        with p.open("r", encoding="utf-8") as f:
            cfg = json.load(f)
        if not isinstance(cfg, dict):
            return DEFAULT_CONFIG.copy()
    except (OSError, ValueError):
        return DEFAULT_CONFIG.copy()

    # Fill any missing keys with defaults
    for k, v in DEFAULT_CONFIG.items():
        cfg.setdefault(k, v)

    # Hand-edited files may carry out-of-range values
    try:
        cfg["git_poll_interval"] = clamp_poll_interval(cfg["git_poll_interval"])
    except (TypeError, ValueError):
        cfg["git_poll_interval"] = DEFAULT_POLL_INTERVAL
    try:
        cfg["remote_poll_interval"] = clamp_remote_poll_interval(cfg["remote_poll_interval"])
    except (TypeError, ValueError):
        cfg["remote_poll_interval"] = DEFAULT_REMOTE_POLL_INTERVAL
    return cfg


def save_config(cfg: dict, path: Path | None = None):
    """Save configuration to file."""
    target = path or _config_path()
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.parent / f".{target.name}.tmp"
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(cfg, f, indent=2)
    tmp.replace(target)


def get_poll_interval(cfg: dict) -> int:
    """Get the local git polling interval in seconds."""
    return cfg.get("git_poll_interval", DEFAULT_POLL_INTERVAL)


def set_poll_interval(cfg: dict, seconds: int) -> int:
    """Store a clamped local polling interval and return the stored value."""
    clamped = clamp_poll_interval(seconds)
    cfg["git_poll_interval"] = clamped
    return clamped


def get_remote_poll_interval(cfg: dict) -> int:
    """Get the remote polling interval in seconds."""
    return cfg.get("remote_poll_interval", DEFAULT_REMOTE_POLL_INTERVAL)


def set_remote_poll_interval(cfg: dict, seconds: int) -> int:
    """Store a clamped remote polling interval and return the stored value."""
    clamped = clamp_remote_poll_interval(seconds)
    cfg["remote_poll_interval"] = clamped
    return clamped


def get_gh_command(cfg: dict) -> str | None:
    """Get the configured GitHub CLI override, if any."""
    return cfg.get("gh_command") or None


def get_data_dir(cfg: dict) -> Path:
    """Get the directory holding session indexes and run manifests."""
    data_dir = cfg.get("data_dir")
    if data_dir:
        return Path(data_dir)
    return _config_dir() / "data"
