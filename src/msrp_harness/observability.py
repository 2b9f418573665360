"""Logging and metrics for harness runs."""

import logging
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

DEFAULT_LOG_DIR = Path("logs/msrp-harness")


def setup_logging(level: str = "INFO", log_dir: Optional[Path] = None) -> None:
    """Send structured JSON logs to ``log_dir``/msrp-harness.log and the console."""
    logs_dir = log_dir or DEFAULT_LOG_DIR
    logs_dir.mkdir(parents=True, exist_ok=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=[
            logging.FileHandler(logs_dir / "msrp-harness.log"),
            logging.StreamHandler(),
        ],
        force=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def generate_run_id() -> str:
    """Short id tying one harness run's log lines and report together."""
    return uuid.uuid4().hex[:12]


def bind_run_context(run_id: str, scenario: str) -> None:
    """Attach ``run_id`` and ``scenario`` to every log line from this context."""
    structlog.contextvars.bind_contextvars(run_id=run_id, scenario=scenario)


def clear_run_context() -> None:
    """Drop the run context bound by bind_run_context."""
    structlog.contextvars.clear_contextvars()


class MetricsCollector:
    """Counters and timers keyed by name plus sorted tags.

    ``events.published[role=active,type=ready]`` is the key for a counter named
    ``events.published`` with tags ``{"role": "active", "type": "ready"}``.
    """

    def __init__(self):
        self._counters: Dict[str, int] = {}
        self._timers: Dict[str, List[float]] = {}

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None) -> None:
        """Increment a counter metric."""
        key = self._make_key(name, tags)
        self._counters[key] = self._counters.get(key, 0) + value

    def record_timer(self, name: str, duration_seconds: float, tags: Optional[Dict[str, str]] = None) -> None:
        """Record a timer metric."""
        self._timers.setdefault(self._make_key(name, tags), []).append(duration_seconds)

    def get_counters(self) -> Dict[str, int]:
        """Get all counter values."""
        return self._counters.copy()

    def get_timers(self) -> Dict[str, Dict[str, float]]:
        """Get timer statistics (count, min, max, avg)."""
        return {
            key: {
                "count": len(values),
                "min": min(values),
                "max": max(values),
                "avg": sum(values) / len(values),
            }
            for key, values in self._timers.items()
            if values
        }

    def snapshot(self) -> Dict[str, Any]:
        """Get counters and timer statistics together."""
        return {"counters": self.get_counters(), "timers": self.get_timers()}

    def reset(self) -> None:
        """Drop every recorded metric."""
        self._counters.clear()
        self._timers.clear()

    def _make_key(self, name: str, tags: Optional[Dict[str, str]]) -> str:
        """Create a key for metrics with optional tags."""
        if not tags:
            return name
        tag_str = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
        return f"{name}[{tag_str}]"


# Default collector for callers that don't bring their own
_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    """Get the default metrics collector instance."""
    return _metrics


class TimerContext:
    """Records the time spent in a ``with`` block, also when it raises.

    Failed blocks get an ``outcome=error`` tag so spawn timeouts don't skew the
    successful spawn timings.
    """

    def __init__(self, name: str, tags: Optional[Dict[str, str]] = None,
                 collector: Optional[MetricsCollector] = None):
        self.name = name
        self.tags = dict(tags or {})
        self.collector = collector or get_metrics_collector()
        self.start_time: Optional[float] = None

    def __enter__(self):
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is None:
            return
        tags = self.tags if exc_type is None else {**self.tags, "outcome": "error"}
        self.collector.record_timer(self.name, time.monotonic() - self.start_time, tags or None)


def time_operation(name: str, tags: Optional[Dict[str, str]] = None,
                   collector: Optional[MetricsCollector] = None) -> TimerContext:
    """Create a timer context for timing operations."""
    return TimerContext(name, tags, collector)
