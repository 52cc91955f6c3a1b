#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Worktree polling backend.
Entry point: runs the polling scheduler and process registry inside a Qt event loop.
"""

import signal
import sys
import time

from PySide6.QtCore import QCoreApplication, QTimer

from config import _config_dir, get_data_dir, load_config
from error_handler import ErrorCategory, ErrorSeverity, handle_error
from events import EventEmitter
from logging_config import configure_qt_logging, get_logger, setup_logging
from metrics import finalize_metrics, initialize_metrics
from qt_bridge import QtEventBridge
from service import BackendService
from session import SessionStore

logger = get_logger(__name__)


def main(argv: list[str] | None = None) -> int:
    startup_start_time = time.time()
    cfg = load_config()

    setup_logging(
        level=cfg.get("log_level", "INFO"),
        log_to_file=True,
        log_to_console=True,
        json_format=bool(cfg.get("json_logs")),
    )
    logger.info("Starting worktree polling backend")

    initialize_metrics(_config_dir(), enable_telemetry=bool(cfg.get("enable_telemetry")))

    app = QCoreApplication(argv if argv is not None else sys.argv)
    app.setApplicationName("Worktree Poller")
    configure_qt_logging()

    emitter = EventEmitter()
    bridge = QtEventBridge(emitter)
    bridge.event_received.connect(
        lambda name, payload: logger.debug(f"Event {name}: {payload}")
    )

    service = BackendService(cfg, emitter, SessionStore(get_data_dir(cfg)))
    service.start()

    # Python signal handlers only run while the interpreter has control
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    signal.signal(signal.SIGTERM, lambda *_: app.quit())
    heartbeat = QTimer()
    heartbeat.timeout.connect(lambda: None)
    heartbeat.start(500)

    startup_time_ms = (time.time() - startup_start_time) * 1000
    logger.info(f"Backend startup completed in {startup_time_ms:.1f}ms")

    exit_code = app.exec()

    heartbeat.stop()
    service.shutdown()
    bridge.detach()
    finalize_metrics()
    logger.info(f"Backend exiting with code {exit_code}")
    return exit_code


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as e:
        handle_error(e, category=ErrorCategory.STARTUP, severity=ErrorSeverity.CRITICAL)
        finalize_metrics()
        sys.exit(1)
