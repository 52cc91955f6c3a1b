"""Operational metrics for the polling scheduler and process registry."""

import json
import time
import uuid
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, asdict
from contextlib import contextmanager, nullcontext
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class MetricEvent:
    """Represents a single metric event."""
    timestamp: str
    event_type: str
    data: Dict[str, Any]
    run_id: str


@dataclass
class PerformanceBenchmark:
    """Performance benchmark data."""
    operation: str
    duration_ms: float
    timestamp: str
    success: bool
    error_type: Optional[str] = None


@dataclass
class ServiceMetrics:
    """Counters for one backend run."""
    run_id: str
    start_time: str
    end_time: Optional[str] = None
    duration_seconds: Optional[float] = None
    local_polls: int = 0
    remote_polls: int = 0
    poll_failures: int = 0
    cancellations: int = 0
    errors_count: int = 0


class MetricsCollector:
    """Collects counters and timings for the current backend run."""

    def __init__(self, config_dir: Path, enable_telemetry: bool = False):
        """Initialize metrics collector.

        Args:
            config_dir: Directory to store metrics files
            enable_telemetry: Whether to append individual events to events.jsonl
        """
        self.metrics_dir = config_dir / "metrics"
        self.metrics_dir.mkdir(parents=True, exist_ok=True)

        self.enable_telemetry = enable_telemetry
        self.run_id = str(uuid.uuid4())

        self.current_run = ServiceMetrics(
            run_id=self.run_id,
            start_time=datetime.now().isoformat()
        )

        self.performance_benchmarks: List[PerformanceBenchmark] = []

        # Polls happen on the scheduler thread, cancellations on caller threads
        self._lock = threading.Lock()

        self.events_file = self.metrics_dir / "events.jsonl"
        self.runs_file = self.metrics_dir / "runs.json"
        self.performance_file = self.metrics_dir / "performance.json"

        logger.info(f"Metrics collector initialized (run: {self.run_id[:8]})")

    def record_event(self, event_type: str, data: Dict[str, Any]):
        """Append an event to the JSONL log when telemetry is enabled."""
        if not self.enable_telemetry:
            return

        with self._lock:
            try:
                event = MetricEvent(
                    timestamp=datetime.now().isoformat(),
                    event_type=event_type,
                    data=data,
                    run_id=self.run_id
                )
                with open(self.events_file, 'a', encoding='utf-8') as f:
                    f.write(json.dumps(asdict(event), default=str) + '\n')
            except OSError as e:
                logger.warning(f"Failed to record event {event_type}: {e}")

    def record_poll(self, kind: str, worktree_id: str, success: bool, duration_ms: float):
        """Record one local or remote status check."""
        with self._lock:
            if kind == "remote":
                self.current_run.remote_polls += 1
            else:
                self.current_run.local_polls += 1
            if not success:
                self.current_run.poll_failures += 1

        self.record_event('poll', {
            'kind': kind,
            'worktree_id': worktree_id,
            'success': success,
            'duration_ms': duration_ms
        })
        self.record_performance(f"{kind}_poll", duration_ms, success)

    def record_cancellation(self, session_id: str, worktree_id: str, pid: int):
        """Record a cancelled agent process."""
        with self._lock:
            self.current_run.cancellations += 1

        self.record_event('cancellation', {
            'session_id': session_id,
            'worktree_id': worktree_id,
            'pid': pid
        })

    def record_error(self, error_type: str, error_message: str, context: Dict[str, Any] = None):
        """Record error metrics."""
        with self._lock:
            self.current_run.errors_count += 1

        self.record_event('error', {
            'error_type': error_type,
            'error_message': error_message,
            'context': context or {}
        })

    def record_performance(self, operation: str, duration_ms: float, success: bool, error_type: Optional[str] = None):
        """Record performance benchmark."""
        benchmark = PerformanceBenchmark(
            operation=operation,
            duration_ms=duration_ms,
            timestamp=datetime.now().isoformat(),
            success=success,
            error_type=error_type
        )

        with self._lock:
            self.performance_benchmarks.append(benchmark)

            # Save performance data periodically
            if len(self.performance_benchmarks) % 10 == 0:
                self._save_performance_data()

    @contextmanager
    def time_operation(self, operation_name: str):
        """Context manager for timing operations.

        Usage:
            with metrics.time_operation("cancel_all_for_worktree"):
                # perform operation
                pass
        """
        start_time = time.time()
        success = True
        error_type = None

        try:
            yield
        except Exception as e:
            success = False
            error_type = type(e).__name__
            raise
        finally:
            duration_ms = (time.time() - start_time) * 1000
            self.record_performance(operation_name, duration_ms, success, error_type)

    def finalize_session(self):
        """Finalize the current run and save metrics."""
        self.current_run.end_time = datetime.now().isoformat()

        start_dt = datetime.fromisoformat(self.current_run.start_time)
        end_dt = datetime.fromisoformat(self.current_run.end_time)
        self.current_run.duration_seconds = (end_dt - start_dt).total_seconds()

        self._save_run_data()
        with self._lock:
            self._save_performance_data()
        self._rotate_old_files()

        logger.info(f"Run finalized: {self.current_run.duration_seconds:.1f}s, "
                    f"{self.current_run.local_polls} local polls, "
                    f"{self.current_run.remote_polls} remote polls, "
                    f"{self.current_run.cancellations} cancellations")

    def _save_run_data(self):
        """Append the current run to runs.json."""
        try:
            runs = []
            if self.runs_file.exists():
                with open(self.runs_file, 'r', encoding='utf-8') as f:
                    runs = json.load(f)

            runs.append(asdict(self.current_run))

            with open(self.runs_file, 'w', encoding='utf-8') as f:
                json.dump(runs, f, indent=2)

        except (OSError, ValueError) as e:
            logger.warning(f"Failed to save run data: {e}")

    def _save_performance_data(self):
        """Save performance benchmarks to file."""
        try:
            with open(self.performance_file, 'w', encoding='utf-8') as f:
                json.dump([asdict(b) for b in self.performance_benchmarks], f, indent=2)
        except OSError as e:
            logger.warning(f"Failed to save performance data: {e}")

    def _rotate_old_files(self):
        """Move metrics files older than 30 days into archive/."""
        try:
            cutoff_date = datetime.now() - timedelta(days=30)

            for file_path in self.metrics_dir.glob("*.json*"):
                if file_path.stat().st_mtime < cutoff_date.timestamp():
                    archive_name = f"{file_path.name}.{int(cutoff_date.timestamp())}"
                    archive_path = self.metrics_dir / "archive" / archive_name
                    archive_path.parent.mkdir(exist_ok=True)
                    file_path.rename(archive_path)
                    logger.debug(f"Archived old metrics file: {file_path.name}")

        except OSError as e:
            logger.warning(f"Failed to rotate metrics files: {e}")

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get summary of collected metrics."""
        with self._lock:
            summary = {
                'current_run': asdict(self.current_run),
                'performance_benchmarks_count': len(self.performance_benchmarks),
                'telemetry_enabled': self.enable_telemetry,
            }
            durations = [b.duration_ms for b in self.performance_benchmarks if b.success]
            if durations:
                summary['performance_stats'] = {
                    'avg_duration_ms': sum(durations) / len(durations),
                    'min_duration_ms': min(durations),
                    'max_duration_ms': max(durations),
                    'success_rate': len(durations) / len(self.performance_benchmarks)
                }
        return summary


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def initialize_metrics(config_dir: Path, enable_telemetry: bool = False) -> MetricsCollector:
    """Initialize global metrics collector."""
    global _metrics_collector
    _metrics_collector = MetricsCollector(config_dir, enable_telemetry)
    return _metrics_collector


def get_metrics_collector() -> Optional[MetricsCollector]:
    """Get the global metrics collector instance."""
    return _metrics_collector


def finalize_metrics():
    """Finalize metrics collection."""
    if _metrics_collector:
        _metrics_collector.finalize_session()


def record_poll(kind: str, worktree_id: str, success: bool, duration_ms: float):
    """Record a status check."""
    if _metrics_collector:
        _metrics_collector.record_poll(kind, worktree_id, success, duration_ms)


def record_cancellation(session_id: str, worktree_id: str, pid: int):
    """Record a cancelled process."""
    if _metrics_collector:
        _metrics_collector.record_cancellation(session_id, worktree_id, pid)


def record_error(error_type: str, error_message: str, context: Dict[str, Any] = None):
    """Record an error."""
    if _metrics_collector:
        _metrics_collector.record_error(error_type, error_message, context)


def time_operation(operation_name: str):
    """Context manager for timing operations."""
    if _metrics_collector:
        return _metrics_collector.time_operation(operation_name)
    return nullcontext()
