"""
Error handling module for KubeVirt BMC.

This module provides an error hierarchy shared by the controller and the
agent, with clear categorization for retry decisions.
"""

from .operator_errors import (
    CacheSyncTimeoutError,
    ConfigurationError,
    ExternalServiceError,
    KubernetesAPIError,
    OperatorError,
    SecretReferenceError,
    TemporaryError,
    ValidationError,
)

__all__ = [
    "OperatorError",
    "ValidationError",
    "TemporaryError",
    "ExternalServiceError",
    "KubernetesAPIError",
    "ConfigurationError",
    "SecretReferenceError",
    "CacheSyncTimeoutError",
]
