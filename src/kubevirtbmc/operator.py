#!/usr/bin/env python3
"""
KubeVirt BMC controller - Main entry point for the kopf-based controller.

The controller keeps one virtbmc agent pod and service per VirtualMachineBMC:
- Multi-namespace operation (watches all namespaces by default)
- Work-queue driven reconciliation with per-key single-flight and backoff
- Agent pod replacement when the referenced credentials change
- Prometheus metrics and health endpoints

Usage:
    kubevirtbmc-controller
    # Or with kopf directly:
    kopf run -m kubevirtbmc.operator --all-namespaces

Environment Variables:
    KUBEVIRTBMC_OPERATOR_NAMESPACES: Comma-separated list of namespaces to watch
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
    BMC_NAMESPACE: Namespace where agent pods and services are created
"""

import logging
import sys

import kopf
from kubernetes import client

# Importing the handler module registers its decorators with kopf
from kubevirtbmc.handlers import virtualmachinebmc  # noqa: F401
from kubevirtbmc.observability.logging import setup_structured_logging
from kubevirtbmc.observability.metrics import MetricsServer
from kubevirtbmc.services import ReconcileQueue, VirtualMachineBMCReconciler
from kubevirtbmc.settings import settings as operator_settings
from kubevirtbmc.utils.kubernetes import get_kubernetes_client


def configure_logging() -> None:
    """Configure structured logging for the controller based on operator_settings."""
    setup_structured_logging(
        log_level=operator_settings.log_level.upper(),
        enable_json_formatting=operator_settings.json_logs,
        correlation_id_enabled=operator_settings.correlation_ids,
        log_health_probes=operator_settings.log_health_probes,
    )


def get_watched_namespaces() -> list[str] | None:
    """
    Get the list of namespaces to watch from operator_settings.

    Returns:
        List of namespace names, or None to watch all namespaces
    """
    return operator_settings.watched_namespaces


@kopf.on.startup()
async def startup_handler(
    settings: kopf.OperatorSettings, memo: kopf.Memo, **_
) -> None:
    """
    Controller startup configuration.

    Loads the cluster configuration, starts the metrics server and the
    reconcile workers, and stores the queue in ``memo`` for the watch
    handlers.
    """
    logging.info("Starting KubeVirt BMC controller...")
    settings.watching.reconnect_backoff = 1.0

    watched_namespaces = get_watched_namespaces()
    if watched_namespaces:
        logging.info(f"Watching namespaces: {', '.join(watched_namespaces)}")
    else:
        logging.info("Watching all namespaces (cluster-wide mode)")

    k8s_client = get_kubernetes_client()
    memo.custom_api = client.CustomObjectsApi(k8s_client)

    reconciler = VirtualMachineBMCReconciler(k8s_client, config=operator_settings)
    queue = ReconcileQueue(
        reconciler.reconcile,
        workers=operator_settings.max_concurrent_reconciles,
        base_delay=operator_settings.requeue_base_delay_seconds,
        max_delay=operator_settings.requeue_max_delay_seconds,
    )
    await queue.start()
    memo.reconcile_queue = queue
    logging.info(
        f"Agent workloads go to namespace {operator_settings.bmc_namespace} "
        f"using image {operator_settings.agent_image}"
    )

    async def queue_ready() -> bool:
        return queue.running

    memo.metrics_server = None
    try:
        metrics_server = MetricsServer(
            port=operator_settings.metrics_port,
            host=operator_settings.metrics_host,
            readiness_check=queue_ready,
        )
        await metrics_server.start()
        memo.metrics_server = metrics_server
    except Exception as e:
        logging.error(f"Failed to start metrics server: {e}")
        # Don't fail controller startup if metrics server fails
        logging.warning("Continuing without metrics server")


@kopf.on.cleanup()
async def cleanup_handler(memo: kopf.Memo, **_) -> None:
    """Stop the reconcile workers and the metrics server."""
    logging.info("Shutting down KubeVirt BMC controller...")

    queue = getattr(memo, "reconcile_queue", None)
    if queue is not None:
        await queue.stop()

    metrics_server = getattr(memo, "metrics_server", None)
    if metrics_server is not None:
        await metrics_server.stop()


def main() -> None:
    """
    Main entry point for the controller.

    This function:
    1. Configures logging
    2. Determines namespace scope
    3. Runs the kopf operator with appropriate settings
    """
    configure_logging()

    watched_namespaces = get_watched_namespaces()

    try:
        if watched_namespaces:
            kopf.run(namespaces=watched_namespaces)
        else:
            kopf.run(clusterwide=True)
    except KeyboardInterrupt:
        logging.info("Received shutdown signal")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Controller failed with error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
