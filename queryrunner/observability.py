import json
import logging
import time
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge

from .config import Settings


_RESERVED = frozenset((
    "args", "msg", "levelname", "levelno", "pathname", "filename",
    "module", "exc_info", "exc_text", "stack_info", "lineno",
    "funcName", "created", "msecs", "relativeCreated", "thread",
    "threadName", "processName", "process", "taskName", "name", "message",
))


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "level": record.levelname,
            "time": int(time.time()),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        # attach extras
        for k, v in record.__dict__.items():
            if k.startswith("_") or k in _RESERVED:
                continue
            payload[k] = v
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(settings: Settings) -> None:
    level = settings.log_level.upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO))
    root = logging.getLogger()
    if settings.log_format.lower() == "json":
        for h in list(root.handlers):
            h.setFormatter(JsonFormatter())


class Metrics:
    """Prometheus collectors for the query runner, on their own registry."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        # label set kept small: channel is email|slack, kind is subscribed|unsubscribed|test
        labelnames = ("channel", "kind")
        self.notifications_sent = Counter(
            "queryrunner_notifications_sent_total", "Notifications delivered",
            labelnames=labelnames, registry=self.registry,
        )
        self.notifications_failed = Counter(
            "queryrunner_notifications_failed_total", "Notification deliveries that failed",
            labelnames=labelnames, registry=self.registry,
        )
        self.dispatch_failures = Counter(
            "queryrunner_dispatch_failures_total", "Change notifications aborted before delivery",
            registry=self.registry,
        )
        self.bulk_load_attempts = Counter(
            "queryrunner_bulk_load_attempts_total", "Attempts to fetch all saved queries",
            registry=self.registry,
        )
        self.saved_queries = Gauge(
            "queryrunner_saved_queries", "Saved queries currently cached",
            registry=self.registry,
        )
