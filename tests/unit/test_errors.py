"""Tests for the error hierarchy and API error classification."""

import pytest
from kubernetes.client.rest import ApiException

from kubevirtbmc.errors import (
    CacheSyncTimeoutError,
    ConfigurationError,
    KubernetesAPIError,
    OperatorError,
    SecretReferenceError,
    TemporaryError,
    ValidationError,
)


class TestErrorCategories:
    def test_validation_error_is_not_retryable(self):
        error = ValidationError("bad value", field="spec.authSecret")

        assert error.retryable is False
        assert error.category == "validation"
        assert "spec.authSecret" in str(error)

    def test_temporary_error_keeps_delay(self):
        error = TemporaryError("busy", delay=12)

        assert error.retryable is True
        assert error.delay == 12

    def test_user_action_is_appended(self):
        error = ConfigurationError("broken", user_action="Fix it")
        assert str(error) == "broken\nAction required: Fix it"

    def test_secret_reference_error(self):
        error = SecretReferenceError("no-slash")

        assert isinstance(error, ConfigurationError)
        assert error.retryable is False
        assert "got: no-slash" in str(error)

    def test_cache_sync_timeout(self):
        error = CacheSyncTimeoutError("default/creds", 30.0)

        assert isinstance(error, OperatorError)
        assert error.retryable is False
        assert "default/creds" in str(error)


class TestKubernetesAPIErrorClassification:
    """Retry classification of ApiException statuses."""

    @pytest.mark.parametrize(
        ("status", "retryable"),
        [
            (500, True),
            (503, True),
            (409, True),
            (429, True),
            (400, True),
            (401, True),
            (403, True),
            (422, True),
            (404, False),
        ],
    )
    def test_status_classification(self, status, retryable):
        error = KubernetesAPIError.from_api_exception(
            ApiException(status=status), "create pod"
        )

        assert error.retryable is retryable
        assert error.status == status
        assert "create pod" in str(error)

    def test_transport_failure_is_retryable(self):
        error = KubernetesAPIError.from_api_exception(ApiException(), "list secrets")
        assert error.retryable is True

    def test_forbidden_keeps_reason_and_stays_retryable(self):
        error = KubernetesAPIError.from_api_exception(
            ApiException(status=403, reason="Forbidden"), "read secret"
        )

        assert error.retryable is True
        assert "reason: Forbidden" in str(error)
