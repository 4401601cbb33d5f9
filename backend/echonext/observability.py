"""Request logging and metrics for the prediction service."""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections import defaultdict
from contextvars import ContextVar
from threading import Lock
from typing import Iterable, Protocol, Sequence

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from echonext.core.config import get_settings

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
logger = logging.getLogger(__name__)

DEFAULT_BUCKETS_MS = [50, 100, 250, 500, 1000, 2500, 5000, 10000]


def get_request_id() -> str | None:
    """Return the current request id if set by middleware."""
    return request_id_ctx.get()


class MetricsBackend(Protocol):
    """Metrics backend interface."""

    def observe_request(
        self,
        method: str,
        path: str,
        status_code: int,
        duration_ms: float,
    ) -> None:
        ...

    def observe_external_api(
        self,
        provider: str,
        operation: str,
        status_code: int,
        duration_ms: float,
    ) -> None:
        ...

    def observe_prediction(self, source: str, duration_ms: float) -> None:
        ...

    def observe_build_chunk(self, success: bool) -> None:
        ...

    def render_prometheus(self) -> str:
        ...


def _format_labels(names: Sequence[str], values: Sequence[str], extra: str = "") -> str:
    parts = [f'{name}="{value}"' for name, value in zip(names, values)]
    if extra:
        parts.append(extra)
    return ",".join(parts)


class _CounterFamily:
    def __init__(self, name: str, help_text: str, label_names: Sequence[str]) -> None:
        self.name = name
        self.help_text = help_text
        self.label_names = tuple(label_names)
        self.values: dict[tuple[str, ...], float] = defaultdict(float)

    def inc(self, labels: tuple[str, ...], amount: float = 1) -> None:
        self.values[labels] += amount

    def render(self) -> list[str]:
        lines = [f"# HELP {self.name} {self.help_text}", f"# TYPE {self.name} counter"]
        for labels, value in sorted(self.values.items()):
            rendered = int(value) if float(value).is_integer() else f"{value:.2f}"
            lines.append(f"{self.name}{{{_format_labels(self.label_names, labels)}}} {rendered}")
        return lines


class _HistogramFamily:
    def __init__(
        self,
        name: str,
        help_text: str,
        label_names: Sequence[str],
        buckets_ms: Sequence[int],
    ) -> None:
        self.name = name
        self.help_text = help_text
        self.label_names = tuple(label_names)
        self.buckets_ms = list(buckets_ms)
        self.bucket_counts: dict[tuple[str, ...], list[int]] = {}
        self.sums: dict[tuple[str, ...], float] = defaultdict(float)
        self.counts: dict[tuple[str, ...], int] = defaultdict(int)

    def observe(self, labels: tuple[str, ...], value_ms: float) -> None:
        counts = self.bucket_counts.setdefault(labels, [0] * (len(self.buckets_ms) + 1))
        index = next(
            (i for i, bound in enumerate(self.buckets_ms) if value_ms <= bound),
            len(self.buckets_ms),
        )
        counts[index] += 1
        self.sums[labels] += value_ms
        self.counts[labels] += 1

    def render(self) -> list[str]:
        lines = [f"# HELP {self.name} {self.help_text}", f"# TYPE {self.name} histogram"]
        for labels in sorted(self.bucket_counts):
            cumulative = 0
            bounds = [str(b) for b in self.buckets_ms] + ["+Inf"]
            for bound, count in zip(bounds, self.bucket_counts[labels]):
                cumulative += count
                label_str = _format_labels(self.label_names, labels, f'le="{bound}"')
                lines.append(f"{self.name}_bucket{{{label_str}}} {cumulative}")
            label_str = _format_labels(self.label_names, labels)
            lines.append(f"{self.name}_sum{{{label_str}}} {self.sums[labels]:.2f}")
            lines.append(f"{self.name}_count{{{label_str}}} {self.counts[labels]}")
        return lines


class MetricsCollector:
    """In-process metrics collector with Prometheus text output."""

    def __init__(self, buckets_ms: Iterable[int] | None = None) -> None:
        buckets = list(buckets_ms or DEFAULT_BUCKETS_MS)
        self._lock = Lock()
        self._http_requests = _CounterFamily(
            "http_requests_total", "Total HTTP requests", ("method", "path", "status")
        )
        self._http_duration = _HistogramFamily(
            "http_request_duration_ms",
            "Request duration in milliseconds",
            ("method", "path"),
            buckets,
        )
        self._external_requests = _CounterFamily(
            "external_api_requests_total",
            "External API requests",
            ("provider", "operation", "status"),
        )
        self._external_duration = _HistogramFamily(
            "external_api_duration_ms",
            "External API duration in milliseconds",
            ("provider", "operation"),
            buckets,
        )
        self._predictions = _CounterFamily(
            "predictions_total", "Prediction turns by source", ("source",)
        )
        self._prediction_duration = _CounterFamily(
            "prediction_duration_ms_sum", "Total prediction time by source", ("source",)
        )
        self._build_chunks = _CounterFamily(
            "knowledge_build_chunks_total", "Chunks embedded during builds", ("status",)
        )

    def observe_request(
        self,
        method: str,
        path: str,
        status_code: int,
        duration_ms: float,
    ) -> None:
        """Record a single request observation."""
        with self._lock:
            self._http_requests.inc((method, path, str(status_code)))
            self._http_duration.observe((method, path), duration_ms)

    def observe_external_api(
        self,
        provider: str,
        operation: str,
        status_code: int,
        duration_ms: float,
    ) -> None:
        """Record an external API call observation."""
        with self._lock:
            self._external_requests.inc((provider, operation, str(status_code)))
            self._external_duration.observe((provider, operation), duration_ms)

    def observe_prediction(self, source: str, duration_ms: float) -> None:
        """Record one prediction turn by the source that answered it."""
        with self._lock:
            self._predictions.inc((source,))
            self._prediction_duration.inc((source,), duration_ms)

    def observe_build_chunk(self, success: bool) -> None:
        """Record one chunk embedding attempt during a knowledge base build."""
        with self._lock:
            self._build_chunks.inc(("success" if success else "error",))

    def prediction_count(self, source: str) -> int:
        """Number of recorded predictions for a source."""
        with self._lock:
            return int(self._predictions.values.get((source,), 0))

    def render_prometheus(self) -> str:
        """Render metrics in Prometheus text format."""
        families = (
            self._http_requests,
            self._http_duration,
            self._external_requests,
            self._external_duration,
            self._predictions,
            self._prediction_duration,
            self._build_chunks,
        )
        lines: list[str] = []
        with self._lock:
            for family in families:
                lines.extend(family.render())
        return "\n".join(lines) + "\n"


class PrometheusMetrics:
    """Prometheus client-based metrics backend."""

    def __init__(self, buckets_ms: Iterable[int]) -> None:
        from prometheus_client import CollectorRegistry, Counter, Histogram

        buckets = list(buckets_ms)
        self._registry = CollectorRegistry()

        self._http_requests = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "path", "status"],
            registry=self._registry,
        )
        self._http_duration = Histogram(
            "http_request_duration_ms",
            "Request duration in milliseconds",
            ["method", "path"],
            buckets=buckets,
            registry=self._registry,
        )
        self._external_requests = Counter(
            "external_api_requests_total",
            "External API requests",
            ["provider", "operation", "status"],
            registry=self._registry,
        )
        self._external_duration = Histogram(
            "external_api_duration_ms",
            "External API duration in milliseconds",
            ["provider", "operation"],
            buckets=buckets,
            registry=self._registry,
        )
        self._predictions = Counter(
            "predictions_total",
            "Prediction turns by source",
            ["source"],
            registry=self._registry,
        )
        self._prediction_duration = Histogram(
            "prediction_duration_ms",
            "Prediction duration in milliseconds",
            ["source"],
            buckets=buckets,
            registry=self._registry,
        )
        self._build_chunks = Counter(
            "knowledge_build_chunks_total",
            "Chunks embedded during builds",
            ["status"],
            registry=self._registry,
        )

    def observe_request(
        self,
        method: str,
        path: str,
        status_code: int,
        duration_ms: float,
    ) -> None:
        self._http_requests.labels(method, path, str(status_code)).inc()
        self._http_duration.labels(method, path).observe(duration_ms)

    def observe_external_api(
        self,
        provider: str,
        operation: str,
        status_code: int,
        duration_ms: float,
    ) -> None:
        self._external_requests.labels(provider, operation, str(status_code)).inc()
        self._external_duration.labels(provider, operation).observe(duration_ms)

    def observe_prediction(self, source: str, duration_ms: float) -> None:
        self._predictions.labels(source).inc()
        self._prediction_duration.labels(source).observe(duration_ms)

    def observe_build_chunk(self, success: bool) -> None:
        self._build_chunks.labels("success" if success else "error").inc()

    def render_prometheus(self) -> str:
        from prometheus_client import generate_latest

        return generate_latest(self._registry).decode("utf-8")


_metrics_backend: MetricsBackend | None = None


def get_metrics_backend() -> MetricsBackend:
    """Return a cached metrics backend instance."""
    global _metrics_backend
    if _metrics_backend is None:
        _metrics_backend = _build_metrics_backend(get_settings().metrics_backend)
    return _metrics_backend


def _build_metrics_backend(backend: str) -> MetricsBackend:
    if backend == "prometheus":
        return PrometheusMetrics(DEFAULT_BUCKETS_MS)
    if backend != "inmemory":
        logger.warning(f"Unknown metrics_backend={backend!r}; using in-memory metrics")
    return MetricsCollector(DEFAULT_BUCKETS_MS)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id, log it as JSON, and record metrics."""

    def __init__(
        self,
        app: ASGIApp,
        metrics: MetricsBackend | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(app)
        self.metrics = metrics or get_metrics_backend()
        self.logger = logger or logging.getLogger("echonext.request")

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        token = request_id_ctx.set(request_id)
        request.state.request_id = request_id

        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            # Route templates keep label cardinality bounded
            route_path = getattr(request.scope.get("route"), "path", None)
            self.metrics.observe_request(
                request.method,
                route_path or "/__unknown__",
                status_code,
                duration_ms,
            )
            self.logger.info(
                json.dumps(
                    {
                        "request_id": request_id,
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": status_code,
                        "elapsed_ms": round(duration_ms, 2),
                    }
                )
            )
            request_id_ctx.reset(token)
