"""
Structured logging for the controller and the virtbmc agent.

Every record can carry a correlation id (one per reconcile pass or request)
and a fixed set of structured fields, rendered as one JSON document per line
when JSON output is enabled.
"""

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

# Endpoints scraped by kubelet and Prometheus
HEALTH_PROBE_PATHS = frozenset({"/healthz", "/health", "/ready", "/metrics"})

# Record attributes copied into the JSON document when present
STRUCTURED_FIELDS = (
    "resource_type",
    "resource_name",
    "namespace",
    "operation",
    "duration",
    "error_type",
    "audit",
    "secret_ref",
    "secret_version",
    "pod_name",
    "reason",
    "auth_method",
    "queue_key",
    "retries",
)

# Libraries whose INFO output drowns our own
QUIET_LOGGERS = (
    "kopf",
    "kubernetes",
    "urllib3",
    "aiohttp.access",
    "aiohttp.server",
    "aiohttp.web",
)


class HealthProbeFilter(logging.Filter):
    """Drops access-log lines for probe and scrape endpoints."""

    def __init__(self, suppress_health_logs: bool = True):
        super().__init__()
        self.suppress_health_logs = suppress_health_logs

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.suppress_health_logs:
            return True
        text = record.getMessage()
        return not any(path in text for path in HEALTH_PROBE_PATHS)


class CorrelationIDFilter(logging.Filter):
    """Stamps each record with the correlation id of the current context."""

    def filter(self, record: logging.LogRecord) -> bool:
        current = correlation_id.get()
        if not current:
            current = set_correlation_id(generate_correlation_id())
        record.correlation_id = current
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        document: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", ""),
        }
        document.update(
            (name, getattr(record, name))
            for name in STRUCTURED_FIELDS
            if hasattr(record, name)
        )
        if record.exc_info:
            document["exception"] = self.formatException(record.exc_info)

        return json.dumps(document, default=str)


def generate_correlation_id() -> str:
    """Short random id, eight hex characters."""
    return uuid.uuid4().hex[:8]


def set_correlation_id(corr_id: str) -> str:
    correlation_id.set(corr_id)
    return corr_id


def get_correlation_id() -> str:
    return correlation_id.get()


def setup_structured_logging(
    log_level: str = "INFO",
    enable_json_formatting: bool = True,
    correlation_id_enabled: bool = True,
    log_health_probes: bool = False,
) -> None:
    """
    Replace the root handlers with a single stream handler.

    Args:
        log_level: Root level name; unknown names fall back to INFO
        enable_json_formatting: Emit JSON documents instead of plain lines
        correlation_id_enabled: Attach a correlation id to every record
        log_health_probes: Keep access-log lines of probe endpoints
    """
    if enable_json_formatting:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        fields = ["%(asctime)s", "%(name)s", "%(levelname)s", "%(message)s"]
        if correlation_id_enabled:
            fields.insert(1, "%(correlation_id)s")
        formatter = logging.Formatter(" - ".join(fields))

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    if correlation_id_enabled:
        handler.addFilter(CorrelationIDFilter())
    if not log_health_probes:
        handler.addFilter(HealthProbeFilter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class OperatorLogger:
    """
    Logger facade used by reconcilers and the authentication chain.

    Keyword arguments of the plain level methods become structured fields.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    @staticmethod
    def _resource(resource_type: str, name: str, namespace: str) -> dict[str, Any]:
        return {
            "resource_type": resource_type,
            "resource_name": name,
            "namespace": namespace,
        }

    def log_reconciliation_start(
        self,
        resource_type: str,
        resource_name: str,
        namespace: str,
        correlation_id: str | None = None,
    ) -> str:
        """
        Open a reconcile pass and bind a correlation id to the current context.

        Returns:
            The correlation id now in effect
        """
        corr_id = set_correlation_id(correlation_id or generate_correlation_id())
        self.logger.info(
            f"Reconciling {resource_type} {namespace}/{resource_name}",
            extra={
                **self._resource(resource_type, resource_name, namespace),
                "operation": "reconcile_start",
            },
        )
        return corr_id

    def log_reconciliation_success(
        self, resource_type: str, resource_name: str, namespace: str, duration: float
    ) -> None:
        self.logger.info(
            f"Reconciled {resource_type} {namespace}/{resource_name} "
            f"in {duration:.3f}s",
            extra={
                **self._resource(resource_type, resource_name, namespace),
                "operation": "reconcile_success",
                "duration": duration,
            },
        )

    def log_reconciliation_error(
        self,
        resource_type: str,
        resource_name: str,
        namespace: str,
        error: Exception,
        duration: float,
    ) -> None:
        self.logger.error(
            f"Reconcile of {resource_type} {namespace}/{resource_name} failed: {error}",
            extra={
                **self._resource(resource_type, resource_name, namespace),
                "operation": "reconcile_error",
                "error_type": type(error).__name__,
                "duration": duration,
            },
            exc_info=True,
        )

    def log_auth_audit(
        self,
        method: str | None,
        username: str,
        success: bool,
        remote: str | None = None,
    ) -> None:
        """
        Record an authentication decision.

        Accepted requests are logged at DEBUG, rejections at WARNING.

        Args:
            method: Strategy that accepted the request ("token", "basic"), or None
            username: Username bound to the request, "" when unknown
            success: Whether the request was authorized
            remote: Peer address, when known
        """
        outcome = "authorized" if success else "rejected"
        self.logger.log(
            logging.DEBUG if success else logging.WARNING,
            f"Request {outcome} via {method or 'no credentials'}",
            extra={
                "audit": {
                    "audit_event": "authentication",
                    "method": method,
                    "username": username,
                    "success": success,
                    "remote": remote,
                },
                "auth_method": method,
            },
        )

    def debug(self, message: str, **kwargs) -> None:
        self.logger.debug(message, extra=kwargs)

    def info(self, message: str, **kwargs) -> None:
        self.logger.info(message, extra=kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self.logger.warning(message, extra=kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs) -> None:
        self.logger.error(message, exc_info=exc_info, extra=kwargs)
