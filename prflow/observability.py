from __future__ import annotations

import contextvars
import json
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Tuple

from flask import g, has_request_context, request


LatencyBuckets = Tuple[float, ...]

HTTP_LATENCY_BUCKETS_MS: LatencyBuckets = (5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0)

_UNSET_REQUEST_ID = "n/a"
_worker_request_id: contextvars.ContextVar[str] = contextvars.ContextVar("prflow_request_id", default="")


# --- request ids -----------------------------------------------------------


def set_log_request_id(request_id: str | None) -> None:
    """Bind a request id for log lines emitted outside a Flask request (CLI, workers, tests)."""
    _worker_request_id.set(str(request_id or "").strip())


def current_request_id(default: str = _UNSET_REQUEST_ID) -> str:
    if has_request_context():
        bound = getattr(g, "request_id", None)
        if bound:
            return str(bound)
    return _worker_request_id.get() or default


def ensure_request_id() -> str:
    """Return this request's id, adopting ``X-Request-Id`` or minting a uuid on first use."""
    request_id = getattr(g, "request_id", None)
    if not request_id:
        request_id = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
        g.request_id = request_id
    set_log_request_id(request_id)
    return request_id


# --- logging ---------------------------------------------------------------

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line with the request id and any ``extra=`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, object] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if has_request_context():
            entry["request_id"] = current_request_id()
            entry["method"] = request.method
            entry["path"] = request.path
            if request.url_rule is not None:
                entry["route"] = request.url_rule.rule
        else:
            entry["request_id"] = str(getattr(record, "request_id", "") or "").strip() or current_request_id()

        for key, value in vars(record).items():
            if key in _RECORD_ATTRIBUTES or key.startswith("_") or key in entry or callable(value):
                continue
            entry[key] = value

        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_json_logging(app) -> None:
    if not app.config.get("LOG_JSON", True):
        return
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).strip().upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
    # Flask's own handler would print every record a second time.
    app.logger.handlers = []
    app.logger.propagate = True


# --- metrics ---------------------------------------------------------------


def _escape_label(value: object) -> str:
    return str(value).replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _sample(name: str, value: int | float, labels: Dict[str, object] | None = None) -> str:
    if not labels:
        return f"{name} {value}"
    rendered = ",".join(f'{key}="{_escape_label(labels[key])}"' for key in sorted(labels))
    return f"{name}{{{rendered}}} {value}"


class Counter:
    """Monotonic counter, optionally split by a fixed set of label names."""

    kind = "counter"

    def __init__(self, name: str, documentation: str, labelnames: Iterable[str] = ()) -> None:
        self.name = name
        self.documentation = documentation
        self.labelnames = tuple(labelnames)
        self._values: Dict[Tuple[str, ...], int] = {}

    def inc(self, amount: int = 1, **labels: object) -> None:
        key = tuple(str(labels.get(label) or "unknown") for label in self.labelnames)
        self._values[key] = self._values.get(key, 0) + max(0, int(amount))

    def total(self) -> int:
        return sum(self._values.values())

    def by(self, labelname: str) -> Dict[str, int]:
        position = self.labelnames.index(labelname)
        grouped: Dict[str, int] = {}
        for key, value in sorted(self._values.items()):
            grouped[key[position]] = grouped.get(key[position], 0) + value
        return grouped

    def render(self) -> List[str]:
        if not self.labelnames:
            return [_sample(self.name, self.total())]
        return [
            _sample(self.name, value, dict(zip(self.labelnames, key)))
            for key, value in sorted(self._values.items())
        ]

    def clear(self) -> None:
        self._values.clear()


class Histogram:
    """Cumulative histogram keyed by label values."""

    kind = "histogram"

    def __init__(self, name: str, documentation: str, labelnames: Iterable[str], buckets: LatencyBuckets) -> None:
        self.name = name
        self.documentation = documentation
        self.labelnames = tuple(labelnames)
        self.buckets = tuple(sorted(buckets))
        self._series: Dict[Tuple[str, ...], dict] = {}

    def observe(self, value: float, **labels: object) -> None:
        key = tuple(str(labels.get(label) or "unknown") for label in self.labelnames)
        series = self._series.setdefault(key, {"counts": [0] * len(self.buckets), "sum": 0.0, "count": 0})
        value = max(0.0, float(value))
        series["sum"] += value
        series["count"] += 1
        for index, upper in enumerate(self.buckets):
            if value <= upper:
                series["counts"][index] += 1

    def render(self) -> List[str]:
        lines: List[str] = []
        for key, series in sorted(self._series.items()):
            labels = dict(zip(self.labelnames, key))
            for upper, count in zip(self.buckets, series["counts"]):
                lines.append(_sample(f"{self.name}_bucket", count, {**labels, "le": f"{upper:g}"}))
            lines.append(_sample(f"{self.name}_bucket", series["count"], {**labels, "le": "+Inf"}))
            lines.append(_sample(f"{self.name}_sum", series["sum"], labels))
            lines.append(_sample(f"{self.name}_count", series["count"], labels))
        return lines

    def clear(self) -> None:
        self._series.clear()


class MetricsRegistry:
    """Process-wide counters behind one lock; rendered for ``/health`` and ``/metrics``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.http_requests = Counter(
            "http_request_total", "Total HTTP requests by method, route and status.", ("method", "route", "status")
        )
        self.http_latency = Histogram(
            "http_request_duration_ms",
            "HTTP request duration in milliseconds.",
            ("method", "route"),
            HTTP_LATENCY_BUCKETS_MS,
        )
        self.transitions = Counter(
            "workflow_transition_total", "Purchase request status transitions by action and target.", ("action", "to")
        )
        self.number_conflicts = Counter("pr_number_conflict_total", "Request number allocation conflicts retried.")
        self.number_exhausted = Counter(
            "pr_number_exhausted_total", "Request number allocations that ran out of attempts."
        )
        self.notifications_emitted = Counter("notification_emitted_total", "Notifications emitted by type.", ("type",))
        self.notifications_failed = Counter(
            "notification_failed_total", "Notification deliveries that failed and were dropped."
        )
        self.domain_events = Counter("domain_event_emitted_total", "Domain events published by type.", ("event_type",))
        self._errors_total = 0

    def _metrics(self):
        return (
            self.http_requests,
            self.http_latency,
            self.transitions,
            self.number_conflicts,
            self.number_exhausted,
            self.notifications_emitted,
            self.notifications_failed,
            self.domain_events,
        )

    def reset(self) -> None:
        with self._lock:
            for metric in self._metrics():
                metric.clear()
            self._errors_total = 0

    def inc(self, counter: Counter, amount: int = 1, **labels: object) -> None:
        with self._lock:
            counter.inc(amount, **labels)

    def observe_http(self, method: str, route: str, status_code: int, duration_ms: float) -> None:
        method = (method or "GET").upper()
        with self._lock:
            self.http_requests.inc(method=method, route=route, status=int(status_code))
            self.http_latency.observe(duration_ms, method=method, route=route)
            if int(status_code) >= 400:
                self._errors_total += 1

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "requests_total": self.http_requests.total(),
                "errors_total": self._errors_total,
                "workflow": {
                    "transitions_total": self.transitions.total(),
                    "sequence_conflicts_total": self.number_conflicts.total(),
                    "sequence_exhausted_total": self.number_exhausted.total(),
                },
                "notifications": {
                    "emitted_total": self.notifications_emitted.total(),
                    "failed_total": self.notifications_failed.total(),
                },
                "domain_events": {
                    "emitted_total": self.domain_events.total(),
                    "by_type": self.domain_events.by("event_type"),
                },
            }

    def exposition(self) -> str:
        lines: List[str] = []
        with self._lock:
            for metric in self._metrics():
                lines.append(f"# HELP {metric.name} {metric.documentation}")
                lines.append(f"# TYPE {metric.name} {metric.kind}")
                lines.extend(metric.render())
        return "\n".join(lines) + "\n"


_METRICS = MetricsRegistry()


def mark_request_start() -> None:
    g._request_started_at = time.perf_counter()


def observe_response(response):
    started = getattr(g, "_request_started_at", None)
    elapsed_ms = (time.perf_counter() - started) * 1000.0 if started else 0.0
    route = request.url_rule.rule if request.url_rule is not None else request.path
    _METRICS.observe_http(request.method, route, response.status_code, elapsed_ms)
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
    return response


def metrics_snapshot() -> dict:
    return _METRICS.snapshot()


def prometheus_metrics_text() -> str:
    return _METRICS.exposition()


def observe_workflow_transition(action: str, to_status: str) -> None:
    _METRICS.inc(_METRICS.transitions, action=action, to=to_status)


def observe_sequence_conflict(count: int = 1) -> None:
    _METRICS.inc(_METRICS.number_conflicts, count)


def observe_sequence_exhausted() -> None:
    _METRICS.inc(_METRICS.number_exhausted)


def observe_notification_emitted(notification_type: str) -> None:
    _METRICS.inc(_METRICS.notifications_emitted, type=notification_type)


def observe_notification_failed(count: int = 1) -> None:
    _METRICS.inc(_METRICS.notifications_failed, count)


def observe_domain_event_emitted(event_type: str) -> None:
    _METRICS.inc(_METRICS.domain_events, event_type=event_type)


def reset_metrics_for_tests() -> None:
    _METRICS.reset()
    set_log_request_id(None)


def register_request_tracing(app) -> None:
    """Stamp every request with an id and feed the HTTP counters."""

    @app.before_request
    def _start_request() -> None:
        ensure_request_id()
        mark_request_start()

    @app.after_request
    def _finish_request(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return observe_response(response)
