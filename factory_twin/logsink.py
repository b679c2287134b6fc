from __future__ import annotations

"""
File: factory_twin/logsink.py
Purpose: Append-only activity log with an in-memory export buffer.
Key responsibilities:
- Prefix each line with an ISO-8601 UTC timestamp.
- Append lines to a log file on a best-effort basis.
- Keep the most recent lines in memory for log export.
- Mirror application log records into the sink.
"""

from collections import deque
from datetime import datetime, timezone
import logging
from pathlib import Path
import threading

# Diagnostics for the sink itself; never attached to SinkHandler.
logger = logging.getLogger("factory-twin-sink")


def iso_now() -> str:
    """UTC timestamp in the same shape as JavaScript's toISOString()."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class LogSink:
    """Best-effort append-only text sink."""
    def __init__(self, path: Path | None, buffer_lines: int = 2000) -> None:
        self.path = path
        self.buffer: deque[str] = deque(maxlen=max(1, buffer_lines))
        self.write_failures = 0
        self._lock = threading.Lock()

    def open(self, path: Path | None = None) -> None:
        """Point the sink at path (if given) and create its directory."""
        if path is not None:
            self.path = path
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self.write_failures += 1
            logger.warning("log sink unavailable path=%s err=%s", self.path, exc)

    def record(self, message: str) -> str:
        """Timestamp a line and keep it in the export buffer only."""
        line = f"[{iso_now()}] {message}"
        with self._lock:
            self.buffer.append(line)
        return line

    def write(self, line: str) -> None:
        """Append an already recorded line to the log file."""
        if self.path is None:
            return
        with self._lock:
            try:
                with self.path.open("a", encoding="utf-8") as fh:
                    fh.write(line + "\n")
            except OSError as exc:
                self.write_failures += 1
                logger.warning("log sink write failed path=%s err=%s", self.path, exc)

    def append(self, message: str) -> str:
        """Record one timestamped line, persist it and return it."""
        line = self.record(message)
        self.write(line)
        return line

    def export(self) -> str:
        """Return the buffered lines as one text blob."""
        with self._lock:
            return "\n".join(self.buffer)


class SinkHandler(logging.Handler):
    """Logging handler that mirrors application log lines into a LogSink."""
    def __init__(self, sink: LogSink, level: int = logging.INFO) -> None:
        super().__init__(level=level)
        self.sink = sink
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.sink.append(self.format(record))
        except Exception:  # noqa: BLE001
            self.handleError(record)
