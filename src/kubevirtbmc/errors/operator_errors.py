"""
Error hierarchy with categorization and retry logic.

The controller's work queue reads ``retryable`` and ``delay`` to decide
whether and when a failed key is reconciled again. The agent treats
non-retryable errors raised during startup as fatal.
"""

from kubernetes.client.rest import ApiException


class OperatorError(Exception):
    """
    Base class of every KubeVirt BMC error.

    Attributes:
        category: Coarse error family, used as a metrics and log label
        retryable: Whether the failed key should be reconciled again
        delay: Retry delay in seconds; None leaves it to the queue backoff
        user_action: Hint appended to the message for operators
        cause: Underlying exception, if any
    """

    def __init__(
        self,
        message: str,
        category: str,
        retryable: bool = True,
        delay: float | None = None,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.category = category
        self.retryable = retryable
        self.delay = delay
        self.user_action = user_action
        self.cause = cause

    def __str__(self) -> str:
        message = super().__str__()
        if not self.user_action:
            return message
        return f"{message}\nAction required: {self.user_action}"


class ValidationError(OperatorError):
    """The VirtualMachineBMC spec does not validate."""

    def __init__(
        self, message: str, field: str | None = None, user_action: str | None = None
    ):
        if field:
            message = f"Validation error in field '{field}': {message}"
        super().__init__(
            message=message,
            category="validation",
            retryable=False,
            user_action=user_action or "Fix the resource spec",
        )


class TemporaryError(OperatorError):
    """Failure expected to clear up by itself."""

    def __init__(
        self, message: str, delay: float | None = None, user_action: str | None = None
    ):
        super().__init__(
            message=message,
            category="temporary",
            retryable=True,
            delay=delay,
            user_action=user_action or "None, the key is retried automatically",
        )


class ExternalServiceError(OperatorError):
    """A call to a service outside the process failed."""

    def __init__(
        self,
        service: str,
        message: str,
        retryable: bool = True,
        delay: float | None = None,
        user_action: str | None = None,
    ):
        super().__init__(
            message=f"{service} error: {message}",
            category="external",
            retryable=retryable,
            delay=delay,
            user_action=user_action or f"Check {service} connectivity",
        )


class KubernetesAPIError(ExternalServiceError):
    """A Kubernetes API call failed."""

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        status: int | None = None,
        retryable: bool = True,
    ):
        if reason:
            message = f"{message} (reason: {reason})"
        super().__init__(
            service="Kubernetes API",
            message=message,
            retryable=retryable,
            user_action="Check RBAC permissions and cluster connectivity",
        )
        self.status = status

    @classmethod
    def from_api_exception(
        cls, exc: ApiException, operation: str
    ) -> "KubernetesAPIError":
        """
        Classify an ApiException raised by the kubernetes client.

        Every status except 404 is retryable, 4xx included, and so are
        transport failures that carry no HTTP status.

        Args:
            exc: Exception raised by the kubernetes client
            operation: Description of the failed call, used in the message
        """
        status = getattr(exc, "status", None)
        return cls(
            message=f"Failed to {operation}: {exc}",
            reason=getattr(exc, "reason", None),
            status=status,
            retryable=status != 404,
        )


class ConfigurationError(OperatorError):
    """Controller or agent configuration is unusable."""

    def __init__(
        self, message: str, retryable: bool = False, user_action: str | None = None
    ):
        super().__init__(
            message=message,
            category="configuration",
            retryable=retryable,
            user_action=user_action or "Correct the configuration and restart",
        )


class SecretReferenceError(ConfigurationError):
    """Secret reference that does not parse as ``namespace/name``."""

    def __init__(self, secret_ref: str):
        super().__init__(
            message=(
                "invalid secret reference format, expected namespace/name, "
                f"got: {secret_ref}"
            ),
            user_action="Pass --secret-ref as <namespace>/<name>",
        )
        self.secret_ref = secret_ref


class CacheSyncTimeoutError(OperatorError):
    """The credential watch did not complete its initial sync in time."""

    def __init__(self, secret_ref: str, timeout: float):
        super().__init__(
            message=(
                f"timed out after {timeout}s waiting for secret cache "
                f"{secret_ref} to sync"
            ),
            category="startup",
            retryable=False,
            user_action="Check that the agent can list and watch the secret",
        )
        self.secret_ref = secret_ref
        self.timeout = timeout

