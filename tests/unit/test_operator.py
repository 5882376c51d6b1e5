"""Tests for controller startup and cleanup wiring."""

from unittest.mock import AsyncMock, MagicMock, patch

import kopf
import pytest

from kubevirtbmc import operator


@pytest.fixture
def metrics_server_cls():
    with patch("kubevirtbmc.operator.MetricsServer") as cls:
        cls.return_value.start = AsyncMock()
        cls.return_value.stop = AsyncMock()
        yield cls


@pytest.fixture
def k8s_client():
    with patch(
        "kubevirtbmc.operator.get_kubernetes_client", return_value=MagicMock()
    ) as factory:
        yield factory


class TestStartupAndCleanup:
    @pytest.mark.asyncio
    async def test_startup_starts_queue_and_metrics(self, metrics_server_cls, k8s_client):
        memo = kopf.Memo()
        settings = kopf.OperatorSettings()

        await operator.startup_handler(settings=settings, memo=memo)
        try:
            assert memo.reconcile_queue.running is True
            assert memo.metrics_server is metrics_server_cls.return_value
            assert memo.custom_api is not None
            assert settings.watching.reconnect_backoff == 1.0

            readiness_check = metrics_server_cls.call_args.kwargs["readiness_check"]
            assert await readiness_check() is True
        finally:
            await operator.cleanup_handler(memo=memo)

        assert memo.reconcile_queue.running is False
        metrics_server_cls.return_value.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_metrics_failure_does_not_block_startup(
        self, metrics_server_cls, k8s_client
    ):
        metrics_server_cls.return_value.start.side_effect = OSError("port in use")
        memo = kopf.Memo()

        await operator.startup_handler(settings=kopf.OperatorSettings(), memo=memo)
        try:
            assert memo.metrics_server is None
            assert memo.reconcile_queue.running is True
        finally:
            await operator.cleanup_handler(memo=memo)


class TestWatchedNamespaces:
    def test_cluster_wide_by_default(self):
        with patch.object(operator.operator_settings, "namespaces", ""):
            assert operator.get_watched_namespaces() is None
