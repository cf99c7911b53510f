"""Observability utilities for the Zettel Graph engine.

Provides persistent disk logging with rotation, per-operation timing
metrics, named event counters, and operation tracking with correlation ids.
"""
import json
import logging
import re
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

# Default locations (can be overridden via configure_logging / MetricsCollector)
DEFAULT_LOG_DIR = Path.home() / ".zettel-graph" / "logs"
DEFAULT_METRICS_FILE = Path.home() / ".zettel-graph" / "metrics.json"

# Logging format with ISO 8601 timestamps
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Global flag to track if logging has been configured
_logging_configured = False


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB per file
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Configure persistent file logging with rotation.

    Sets up a rotating file handler on the ``zettel_graph`` logger hierarchy.
    Log files are rotated when they reach max_bytes, keeping backup_count old files.

    Args:
        log_dir: Directory for log files. Defaults to ~/.zettel-graph/logs/
        level: Logging level (default: INFO)
        max_bytes: Maximum size per log file before rotation (default: 10 MB)
        backup_count: Number of rotated files to keep (default: 5)
        console: Also log to console (default: True)

    Returns:
        Path to the log directory
    """
    global _logging_configured

    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger("zettel_graph")
    root_logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    # Reconfiguring replaces the previous log file rather than adding a second one
    for handler in list(root_logger.handlers):
        if isinstance(handler, RotatingFileHandler):
            root_logger.removeHandler(handler)
            handler.close()

    log_file = log_path / "zettel_graph.log"
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    if console and not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        for h in root_logger.handlers
    ):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    _logging_configured = True
    root_logger.info(f"Logging configured: {log_file} (max {max_bytes} bytes, {backup_count} backups)")

    return log_path


def is_logging_configured() -> bool:
    """Check if file logging has been configured."""
    return _logging_configured


def _sanitize_error_message(message: Optional[str], max_length: int = 200) -> Optional[str]:
    """Make an error message safe to persist in the metrics snapshot.

    Home directory paths are shortened to ``~``, whitespace runs collapse to
    one space and the result is truncated to ``max_length`` characters.
    """
    if message is None:
        return None

    sanitized = message.replace(str(Path.home()), "~")
    sanitized = re.sub(r"\s+", " ", sanitized).strip()
    if len(sanitized) > max_length:
        sanitized = sanitized[: max_length - 3] + "..."
    return sanitized


@dataclass
class OperationMetrics:
    """Running totals for one operation name."""

    count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: Optional[float] = None
    max_duration_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None

    def add(self, duration_ms: float, success: bool, error: Optional[str]) -> None:
        self.count += 1
        self.total_duration_ms += duration_ms
        if self.min_duration_ms is None or duration_ms < self.min_duration_ms:
            self.min_duration_ms = duration_ms
        self.max_duration_ms = max(self.max_duration_ms, duration_ms)
        if success:
            self.success_count += 1
            return
        self.error_count += 1
        self.last_error = _sanitize_error_message(error)
        self.last_error_time = datetime.now(timezone.utc)

    def snapshot(self) -> Dict[str, Any]:
        average = self.total_duration_ms / self.count if self.count else 0.0
        return {
            "count": self.count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "success_rate": self.success_count / self.count if self.count else 0,
            "avg_duration_ms": round(average, 2),
            "min_duration_ms": round(self.min_duration_ms or 0.0, 2),
            "max_duration_ms": round(self.max_duration_ms, 2),
            "last_error": self.last_error,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
        }


class MetricsCollector:
    """Thread-safe metrics for engine operations.

    Tracks timing and success rates per operation name (build_graph,
    kb_overview, hybrid_search, ...) and plain event counters such as
    ``wikilinks_inserted``. ``save_metrics()`` writes a JSON snapshot.

    Args:
        metrics_file: Snapshot location. Defaults to ~/.zettel-graph/metrics.json
    """

    def __init__(self, metrics_file: Optional[Union[str, Path]] = None):
        self._lock = Lock()
        self._metrics_file = Path(metrics_file) if metrics_file else DEFAULT_METRICS_FILE
        self._operations: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self._counters: Dict[str, int] = defaultdict(int)
        self._start_time = datetime.now(timezone.utc)

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        with self._lock:
            self._operations[operation].add(duration_ms, success, error)

    def increment(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[counter] += amount

    def get_counter(self, counter: str) -> int:
        with self._lock:
            return self._counters.get(counter, 0)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Per-operation snapshot keyed by operation name."""
        with self._lock:
            return {name: m.snapshot() for name, m in self._operations.items()}

    def get_summary(self) -> Dict[str, Any]:
        """Totals across every operation plus the event counters."""
        with self._lock:
            operations = list(self._operations.values())
            total = sum(m.count for m in operations)
            succeeded = sum(m.success_count for m in operations)
            return {
                "uptime_seconds": (datetime.now(timezone.utc) - self._start_time).total_seconds(),
                "total_operations": total,
                "total_success": succeeded,
                "total_errors": sum(m.error_count for m in operations),
                "overall_success_rate": succeeded / total if total else 1.0,
                "operations_tracked": list(self._operations),
                "counters": dict(self._counters),
            }

    def reset(self) -> None:
        with self._lock:
            self._operations.clear()
            self._counters.clear()
            self._start_time = datetime.now(timezone.utc)

    def save_metrics(self) -> bool:
        """Write the snapshot atomically.

        Returns:
            True if saved, False if the file could not be written.
        """
        payload = {
            "start_time": self._start_time.isoformat(),
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "operations": self.get_metrics(),
            "counters": self.get_summary()["counters"],
        }
        temp_file = self._metrics_file.with_suffix(".tmp")
        try:
            self._metrics_file.parent.mkdir(parents=True, exist_ok=True)
            temp_file.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            temp_file.replace(self._metrics_file)
        except (OSError, TypeError) as e:
            logger.error(f"Failed to save metrics to {self._metrics_file}: {e}")
            return False
        return True


# Global metrics collector instance
metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context):
    """Time a block, record it in ``metrics`` and log start and end at DEBUG.

    Yields a dict seeded with a short ``correlation_id``; values stored in it
    are appended to the END log line.

    Example:
        with timed_operation("hybrid_search", query="test") as op:
            results = run_search()
            op["result_count"] = len(results)
    """
    correlation_id = uuid.uuid4().hex[:8]
    info: Dict[str, Any] = {"correlation_id": correlation_id}
    details = ", ".join(f"{key}={value}" for key, value in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({details})")

    started = time.perf_counter()
    error: Optional[str] = None
    try:
        yield info
    except Exception as e:
        error = str(e)
        raise
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        metrics.record_operation(operation, elapsed_ms, error is None, error)
        results = ", ".join(
            f"{key}={value}" for key, value in info.items() if key != "correlation_id"
        )
        outcome = "OK" if error is None else f"ERROR: {error}"
        logger.debug(f"[{correlation_id}] END {operation} ({elapsed_ms:.2f}ms) [{outcome}] {results}")
