"""Cross-platform process liveness and termination primitives.

Any process that may later be killed as a tree must be spawned as the
leader of its own process group (see ``new_group_popen_kwargs``), so a
group kill can never reach the host application.
"""

import os
import signal
import subprocess
import sys

from error_handler import ProcessControlError
from logging_config import get_logger

logger = get_logger(__name__)

# Windows process creation flags
CREATE_NEW_PROCESS_GROUP = 0x00000200
CREATE_NO_WINDOW = 0x08000000


def is_windows() -> bool:
    return sys.platform.startswith("win")


def new_group_popen_kwargs() -> dict:
    """Popen keyword arguments that start the child in a new process group."""
    if is_windows():
        return {"creationflags": CREATE_NEW_PROCESS_GROUP | CREATE_NO_WINDOW}
    return {"start_new_session": True}


def silent_popen_kwargs() -> dict:
    """Popen keyword arguments for background commands (no console window on Windows)."""
    if is_windows():
        return {"creationflags": CREATE_NO_WINDOW}
    return {}


class PosixProcessControl:
    """Signal-based process control for Linux and macOS."""

    def is_alive(self, pid: int) -> bool:
        # Signal 0 checks existence without delivering anything
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists, owned by someone else
            return True
        except OSError:
            return False
        return True

    def kill(self, pid: int) -> None:
        try:
            os.kill(pid, signal.SIGKILL)
        except OSError as e:
            raise ProcessControlError(f"Failed to kill process {pid}: {e}") from e

    def kill_tree(self, pid: int) -> None:
        # The pid is the group leader, so the group id equals the pid
        try:
            os.killpg(pid, signal.SIGKILL)
        except OSError as e:
            logger.debug(f"Process group kill for {pid} failed ({e}), killing the process only")
            self.kill(pid)

    def terminate_graceful(self, pid: int) -> None:
        try:
            os.kill(pid, signal.SIGTERM)
        except OSError as e:
            raise ProcessControlError(f"Failed to terminate process {pid}: {e}") from e


class WindowsProcessControl:
    """Win32 process control through kernel32 and taskkill."""

    PROCESS_TERMINATE = 0x0001
    PROCESS_QUERY_LIMITED_INFORMATION = 0x1000
    STILL_ACTIVE = 259

    def __init__(self):
        self._kernel32 = None

    @property
    def kernel32(self):
        if self._kernel32 is None:
            import ctypes
            self._kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
        return self._kernel32

    def is_alive(self, pid: int) -> bool:
        import ctypes

        handle = self.kernel32.OpenProcess(self.PROCESS_QUERY_LIMITED_INFORMATION, False, pid)
        if not handle:
            return False
        try:
            exit_code = ctypes.c_ulong(0)
            ok = self.kernel32.GetExitCodeProcess(handle, ctypes.byref(exit_code))
        finally:
            self.kernel32.CloseHandle(handle)
        return bool(ok) and exit_code.value == self.STILL_ACTIVE

    def kill(self, pid: int) -> None:
        import ctypes

        handle = self.kernel32.OpenProcess(self.PROCESS_TERMINATE, False, pid)
        if not handle:
            raise ProcessControlError(
                f"Failed to open process {pid}: {ctypes.WinError(ctypes.get_last_error())}"
            )
        try:
            ok = self.kernel32.TerminateProcess(handle, 1)
        finally:
            self.kernel32.CloseHandle(handle)
        if not ok:
            raise ProcessControlError(
                f"Failed to terminate process {pid}: {ctypes.WinError(ctypes.get_last_error())}"
            )

    def kill_tree(self, pid: int) -> None:
        try:
            cp = subprocess.run(
                ["taskkill", "/F", "/T", "/PID", str(pid)],
                capture_output=True,
                text=True,
                timeout=10,
                **silent_popen_kwargs(),
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise ProcessControlError(f"Failed to run taskkill: {e}") from e
        if cp.returncode != 0:
            raise ProcessControlError(f"taskkill failed: {cp.stderr.strip()}")

    def terminate_graceful(self, pid: int) -> None:
        # No SIGTERM equivalent for arbitrary processes
        self.kill(pid)


_process_control = WindowsProcessControl() if is_windows() else PosixProcessControl()


def get_process_control():
    """Return the process-control implementation for this platform."""
    return _process_control


def is_process_alive(pid: int) -> bool:
    """Check whether a process is still alive."""
    return _process_control.is_alive(pid)


def kill_process(pid: int) -> None:
    """Immediately kill exactly one process. Raises ProcessControlError."""
    _process_control.kill(pid)


def kill_process_tree(pid: int) -> None:
    """Kill a process and all of its descendants. Raises ProcessControlError."""
    _process_control.kill_tree(pid)


def terminate_process(pid: int) -> None:
    """Ask a process to exit (SIGTERM); immediate kill on Windows."""
    _process_control.terminate_graceful(pid)
