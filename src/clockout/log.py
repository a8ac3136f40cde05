"""Logging for clockout: one ``clockout`` logger tree plus a recent-log buffer."""

import logging
from collections import deque
from datetime import datetime
from typing import Deque

logger = logging.getLogger("clockout")

# Circular buffer to store recent log entries (max 100)
log_buffer: Deque[dict] = deque(maxlen=100)


class LogBufferHandler(logging.Handler):
    """Custom logging handler that captures logs to circular buffer."""

    def __init__(self, buffer: Deque[dict] = log_buffer):
        super().__init__()
        self.buffer = buffer

    def emit(self, record: logging.LogRecord):
        """Capture log record to buffer with timestamp, level, and message."""
        try:
            self.buffer.append({
                "timestamp": datetime.fromtimestamp(record.created).strftime("%H:%M:%S"),
                "level": record.levelname,
                "logger": record.name,
                "message": self.format(record),
            })
        except Exception:
            self.handleError(record)


buffer_handler = LogBufferHandler()
buffer_handler.setLevel(logging.DEBUG)
buffer_handler.setFormatter(logging.Formatter("%(message)s"))


def setup_logging(verbose: bool = False, console: bool = False) -> None:
    """Attach the buffer (and optionally a stderr handler) once; set the level."""
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if buffer_handler not in logger.handlers:
        logger.addHandler(buffer_handler)
    if not (console or verbose):
        return
    # Server logs show up in /api/logs/recent too
    uvicorn_logger = logging.getLogger("uvicorn")
    if buffer_handler not in uvicorn_logger.handlers:
        uvicorn_logger.addHandler(buffer_handler)
    if not any(getattr(h, "_clockout_console", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        handler._clockout_console = True
        logger.addHandler(handler)


def recent_logs(limit: int = 50) -> list[dict]:
    limit = max(0, min(limit, log_buffer.maxlen or 100))
    return list(log_buffer)[-limit:] if limit else []
