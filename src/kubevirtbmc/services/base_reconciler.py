"""
Key-driven reconciler base class.

BaseReconciler wraps every pass with correlation-id logging and metrics,
classifies failures for the work queue, and runs the blocking Kubernetes
client off the event loop.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, TypeVar

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..errors import (
    KubernetesAPIError,
    OperatorError,
    TemporaryError,
)
from ..observability.logging import OperatorLogger
from .work_queue import ObjectKey, ReconcileResult

T = TypeVar("T")


class BaseReconciler(ABC):
    """
    Base class for key-driven reconcilers.

    Provides common patterns for:
    - Correlation-id logging and metrics around each pass
    - Classification of Kubernetes API failures into retryable errors
    - Running blocking client calls off the event loop
    - Kubernetes client management
    """

    resource_type = "resource"

    def __init__(self, k8s_client: client.ApiClient | None = None):
        """
        Initialize base reconciler.

        Args:
            k8s_client: Kubernetes API client, will be created if not provided
        """
        self.k8s_client = k8s_client
        self.logger = OperatorLogger(self.__class__.__name__)

    @property
    def kubernetes_client(self) -> client.ApiClient:
        """Kubernetes API client, created on first use."""
        if self.k8s_client is None:
            from ..utils.kubernetes import get_kubernetes_client

            self.k8s_client = get_kubernetes_client()
        return self.k8s_client

    async def reconcile(self, key: ObjectKey) -> ReconcileResult:
        """
        Run one reconcile pass for a key.

        Args:
            key: Namespace and name of the resource to reconcile

        Returns:
            Whether and when the key should be reconciled again

        Raises:
            OperatorError: Classified failure; ``retryable`` tells the work
                queue whether to back off and retry
        """
        from ..observability.metrics import metrics_collector

        start_time = time.time()

        self.logger.log_reconciliation_start(
            resource_type=self.resource_type,
            resource_name=key.name,
            namespace=key.namespace,
        )

        async with metrics_collector.track_reconciliation(
            resource_type=self.resource_type,
            namespace=key.namespace,
            name=key.name,
        ):
            try:
                result = await self.do_reconcile(key)

                duration = time.time() - start_time
                self.logger.log_reconciliation_success(
                    resource_type=self.resource_type,
                    resource_name=key.name,
                    namespace=key.namespace,
                    duration=duration,
                )
                return result

            except OperatorError as e:
                self._log_failure(key, e, start_time)
                raise

            except ApiException as e:
                error = KubernetesAPIError.from_api_exception(
                    e, f"reconcile {self.resource_type} {key}"
                )
                self._log_failure(key, error, start_time)
                raise error from e

            except Exception as e:
                # Anything unclassified is retried
                error = TemporaryError(
                    f"Unexpected error during reconciliation: {str(e)}"
                )
                self._log_failure(key, error, start_time)
                raise error from e

    def _log_failure(
        self, key: ObjectKey, error: Exception, start_time: float
    ) -> None:
        self.logger.log_reconciliation_error(
            resource_type=self.resource_type,
            resource_name=key.name,
            namespace=key.namespace,
            error=error,
            duration=time.time() - start_time,
        )

    @abstractmethod
    async def do_reconcile(self, key: ObjectKey) -> ReconcileResult:
        """
        Resource-specific reconcile pass.

        This method must be implemented by subclasses to provide
        resource-specific reconciliation logic. It must be idempotent:
        every pass observes the cluster afresh.

        Args:
            key: Namespace and name of the resource to reconcile

        Returns:
            Whether and when the key should be reconciled again
        """
        raise NotImplementedError("Subclasses must implement do_reconcile method")

    async def call_api(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking Kubernetes client call in a worker thread."""
        return await asyncio.to_thread(func, *args, **kwargs)

    async def read_optional(
        self, func: Callable[..., T], *args: Any, **kwargs: Any
    ) -> T | None:
        """
        Read an object that may legitimately be absent.

        Returns:
            The object, or None when the API answers 404
        """
        try:
            return await self.call_api(func, *args, **kwargs)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
