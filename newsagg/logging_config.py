# newsagg/logging_config.py
"""
Structured JSON logging.

One aggregation run fans out over several providers, the quota ledger and
the cache. Every line emitted while a run is active carries its trace id, so
a single run can be followed across all of them:

    {"timestamp": "...", "level": "INFO", "logger": "newsagg.services.orchestrator",
     "message": "...", "trace_id": "9f2c...", "stage": "aggregate", "provider": "newsdata"}
"""

import json
import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone

trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)
stage_var: ContextVar[str | None] = ContextVar("stage", default=None)
component_var: ContextVar[str | None] = ContextVar("component", default=None)
provider_var: ContextVar[str | None] = ContextVar("provider", default=None)

_CONTEXT = {
    "trace_id": trace_id_var,
    "stage": stage_var,
    "component": component_var,
    "provider": provider_var,
}

# Copied from `extra=` when present; these override the context values
EXTRA_FIELDS = (
    "event",
    "duration_ms",
    "items_processed",
    "provider",
    "category",
    "endpoint",
    "status_code",
    "ratio",
    "signature",
    "ttl",
    "operation",
    "job_id",
)

_QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy", "apscheduler", "redis")


class JSONFormatter(logging.Formatter):
    """Single-line JSON with trace context."""

    def format(self, record: logging.LogRecord) -> str:
        data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name, var in _CONTEXT.items():
            value = var.get()
            if value:
                data[name] = value
        for name in EXTRA_FIELDS:
            if hasattr(record, name):
                data[name] = getattr(record, name)
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


def configure_logging(json_format: bool = True, level: str = "INFO") -> None:
    """
    Replace root handlers with a single stdout handler.

    Args:
        json_format: JSON lines for production, plain text for local runs
        level: DEBUG, INFO, WARNING or ERROR
    """
    numeric_level = getattr(logging, level.upper())
    root = logging.getLogger()
    root.setLevel(numeric_level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


@contextmanager
def log_stage(stage: str, trace_id: str | None = None) -> Iterator[None]:
    """
    Tag log lines with a stage name and time it.

    Usage:
        with log_stage("aggregate"):
            ...
    """
    if trace_id:
        trace_id_var.set(trace_id)
    token = stage_var.set(stage)
    logger = logging.getLogger("newsagg.stage")
    start = time.monotonic()
    logger.debug(f"Stage {stage} started", extra={"event": "stage_start"})
    try:
        yield
    except Exception as e:
        logger.error(
            f"Stage {stage} failed: {e}",
            extra={"event": "stage_failed", "duration_ms": _elapsed_ms(start)},
            exc_info=True,
        )
        raise
    else:
        logger.debug(
            f"Stage {stage} completed",
            extra={"event": "stage_complete", "duration_ms": _elapsed_ms(start)},
        )
    finally:
        stage_var.reset(token)


@contextmanager
def log_provider_call(provider: str, endpoint: str, category: str | None = None) -> Iterator[dict]:
    """
    Time one upstream HTTP attempt.

    The yielded dict is filled in by the caller (`items`, `status_code`) and
    reported on exit. Failures are logged at WARNING and re-raised; the
    caller decides whether to retry.
    """
    token = provider_var.set(provider)
    logger = logging.getLogger("newsagg.provider")
    outcome: dict = {"items": 0, "status_code": None}
    start = time.monotonic()
    try:
        yield outcome
    except Exception as e:
        logger.warning(
            f"{provider} call failed after {_elapsed_ms(start)}ms: {e}",
            extra={
                "event": "provider_call_failed",
                "endpoint": endpoint,
                "category": category,
                "status_code": getattr(e, "status_code", None),
                "duration_ms": _elapsed_ms(start),
            },
        )
        raise
    else:
        logger.info(
            f"{provider} returned {outcome['items']} articles in {_elapsed_ms(start)}ms",
            extra={
                "event": "provider_fetch",
                "endpoint": endpoint,
                "category": category,
                "status_code": outcome["status_code"],
                "items_processed": outcome["items"],
                "duration_ms": _elapsed_ms(start),
            },
        )
    finally:
        provider_var.reset(token)
