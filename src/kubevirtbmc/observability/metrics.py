"""
Prometheus metrics for KubeVirt BMC.

This module provides metrics collection for the controller (reconciliation
and work queue) and the agent (credential sync and authentication), plus the
small HTTP server that exposes them.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager

from aiohttp.web import (
    Application,
    AppRunner,
    Request,
    Response,
    TCPSite,
    json_response,
)
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# Project registry, kept apart from the process-wide default registry
_metrics_registry = CollectorRegistry()

# Controller metrics
RECONCILIATION_TOTAL = Counter(
    "kubevirtbmc_reconciliation_total",
    "Reconcile passes by outcome",
    ["resource_type", "namespace", "name", "result"],
    registry=_metrics_registry,
)

RECONCILIATION_DURATION = Histogram(
    "kubevirtbmc_reconciliation_duration_seconds",
    "Duration of reconcile passes",
    ["resource_type", "namespace", "operation"],
    buckets=[0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=_metrics_registry,
)

RECONCILIATION_ERRORS = Counter(
    "kubevirtbmc_reconciliation_errors_total",
    "Failed reconcile passes by error type",
    ["resource_type", "namespace", "error_type", "retryable"],
    registry=_metrics_registry,
)

POD_REFRESH_TOTAL = Counter(
    "kubevirtbmc_pod_refresh_total",
    "Total number of agent pods deleted because they were stale",
    ["namespace", "reason"],
    registry=_metrics_registry,
)

WORK_QUEUE_DEPTH = Gauge(
    "kubevirtbmc_work_queue_depth",
    "Number of keys waiting in the reconcile queue",
    [],
    registry=_metrics_registry,
)

WORK_QUEUE_RETRIES = Counter(
    "kubevirtbmc_work_queue_retries_total",
    "Total number of keys re-added to the queue",
    ["reason"],
    registry=_metrics_registry,
)

SECRET_EVENT_FANOUT = Histogram(
    "kubevirtbmc_secret_event_fanout",
    "Number of VirtualMachineBMCs enqueued per secret event",
    [],
    buckets=[0, 1, 2, 5, 10, 25, 50, 100],
    registry=_metrics_registry,
)

# Agent metrics
CREDENTIAL_EVENTS_TOTAL = Counter(
    "kubevirtbmc_credential_events_total",
    "Total number of secret events observed by the credential synchronizer",
    ["event", "result"],
    registry=_metrics_registry,
)

AUTH_DECISIONS_TOTAL = Counter(
    "kubevirtbmc_auth_decisions_total",
    "Total number of authentication decisions",
    ["method", "result"],
    registry=_metrics_registry,
)

SESSION_TOKENS_ACTIVE = Gauge(
    "kubevirtbmc_session_tokens_active",
    "Number of session tokens currently held by the token store",
    [],
    registry=_metrics_registry,
)


def get_metrics_registry() -> CollectorRegistry:
    return _metrics_registry


class MetricsCollector:
    """Thin recording API over the module-level metrics."""

    def __init__(self):
        self.registry = get_metrics_registry()

    @asynccontextmanager
    async def track_reconciliation(
        self,
        resource_type: str,
        namespace: str,
        name: str,
        operation: str = "reconcile",
    ):
        """
        Time one reconcile pass and count its outcome.

        Exceptions are counted by type and retryability, then re-raised.
        """
        started = time.monotonic()
        outcome = "success"
        try:
            yield
        except Exception as e:
            outcome = "error"
            RECONCILIATION_ERRORS.labels(
                resource_type=resource_type,
                namespace=namespace,
                error_type=type(e).__name__,
                retryable=str(getattr(e, "retryable", True)).lower(),
            ).inc()
            raise
        finally:
            RECONCILIATION_TOTAL.labels(
                resource_type=resource_type,
                namespace=namespace,
                name=name,
                result=outcome,
            ).inc()
            RECONCILIATION_DURATION.labels(
                resource_type=resource_type,
                namespace=namespace,
                operation=operation,
            ).observe(time.monotonic() - started)

    def record_pod_refresh(self, namespace: str, reason: str) -> None:
        """Count a stale agent pod deletion."""
        POD_REFRESH_TOTAL.labels(namespace=namespace, reason=reason).inc()

    def set_queue_depth(self, depth: int) -> None:
        WORK_QUEUE_DEPTH.set(depth)

    def record_requeue(self, reason: str) -> None:
        """
        Count a key going back into the work queue.

        Args:
            reason: One of "requeue", "requeue_after", "error" or "dirty"
        """
        WORK_QUEUE_RETRIES.labels(reason=reason).inc()

    def record_secret_fanout(self, count: int) -> None:
        SECRET_EVENT_FANOUT.observe(count)

    def record_credential_event(self, event: str, result: str) -> None:
        """
        Count a secret event applied by the credential synchronizer.

        Args:
            event: Watch event type (INITIAL, ADDED, MODIFIED, DELETED)
            result: Outcome ("updated", "cleared", "incomplete")
        """
        CREDENTIAL_EVENTS_TOTAL.labels(event=event, result=result).inc()

    def record_auth_decision(self, method: str | None, authorized: bool) -> None:
        AUTH_DECISIONS_TOTAL.labels(
            method=method or "none",
            result="authorized" if authorized else "rejected",
        ).inc()

    def set_active_sessions(self, count: int) -> None:
        SESSION_TOKENS_ACTIVE.set(count)


class MetricsServer:
    """
    aiohttp server for Prometheus scrapes and kubelet probes.

    Routes:
        /metrics: project registry in the Prometheus text format
        /ready: 200 when the readiness check passes (or none is set), else 503
        /healthz: liveness, always "ok"
    """

    def __init__(
        self,
        port: int = 8081,
        host: str = "0.0.0.0",
        readiness_check: Callable[[], Awaitable[bool]] | None = None,
    ):
        """
        Args:
            port: TCP port to listen on
            host: Address to bind
            readiness_check: Coroutine function deciding /ready
        """
        self.port = port
        self.host = host
        self.readiness_check = readiness_check
        self.app = Application()
        self.app.router.add_get("/metrics", self._serve_metrics)
        self.app.router.add_get("/ready", self._serve_ready)
        self.app.router.add_get("/healthz", self._serve_healthz)
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None

    async def _serve_metrics(self, request: Request) -> Response:
        try:
            payload = generate_latest(get_metrics_registry())
        except Exception as e:
            logger.error(f"Metrics exposition failed: {e}")
            # Type name only in the response body
            return Response(
                text=f"Error generating metrics: {type(e).__name__}",
                status=500,
            )
        return Response(body=payload, headers={"Content-Type": CONTENT_TYPE_LATEST})

    async def _serve_ready(self, request: Request) -> Response:
        error = None
        if self.readiness_check is None:
            ready = True
        else:
            try:
                ready = await self.readiness_check()
            except Exception as e:
                logger.error(f"Readiness check raised: {e}")
                ready = False
                error = type(e).__name__

        body: dict[str, object] = {
            "status": "ready" if ready else "not_ready",
            "timestamp": time.time(),
        }
        if error:
            body["error"] = error
        return json_response(body, status=200 if ready else 503)

    async def _serve_healthz(self, request: Request) -> Response:
        return Response(text="ok")

    async def start(self) -> None:
        self.runner = AppRunner(self.app)
        await self.runner.setup()
        self.site = TCPSite(self.runner, self.host, self.port)
        try:
            await self.site.start()
        except OSError:
            await self.runner.cleanup()
            self.runner = None
            self.site = None
            raise
        logger.info(f"Metrics endpoint listening on {self.host}:{self.port}")

    async def stop(self) -> None:
        if self.site is not None:
            await self.site.stop()
            self.site = None
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
        logger.info("Metrics endpoint stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()


metrics_collector = MetricsCollector()
