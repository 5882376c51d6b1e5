"""
Unit tests for VirtualMachineBMCReconciler.

The Kubernetes APIs are replaced with MagicMocks; each test describes the
cluster state a pass observes and checks the writes the pass makes.
"""

import asyncio
from unittest.mock import MagicMock, PropertyMock, patch

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from kubevirtbmc.constants import (
    CRD_API_VERSION,
    CRD_KIND,
    LAST_KNOWN_SECRET_VERSION_ANNOTATION,
    REFRESH_REASON_SECRET_DATA_CHANGED,
    REFRESH_REASON_SECRET_REF_CHANGED,
)
from kubevirtbmc.errors import KubernetesAPIError, TemporaryError, ValidationError
from kubevirtbmc.models import VirtualMachineBMCSpec
from kubevirtbmc.services import (
    ObjectKey,
    ReconcileQueue,
    ReconcileResult,
    VirtualMachineBMCReconciler,
    should_refresh_pod,
)
from kubevirtbmc.utils.kubernetes import build_agent_pod

BMC_NS = "kubevirtbmc-system"
KEY = ObjectKey(namespace=BMC_NS, name="bmc1")


def make_bmc(secret_ns="default", secret_name="creds", spec=None):
    return {
        "apiVersion": CRD_API_VERSION,
        "kind": CRD_KIND,
        "metadata": {
            "name": "bmc1",
            "namespace": BMC_NS,
            "uid": "uid-1",
            "resourceVersion": "7",
        },
        "spec": spec
        if spec is not None
        else {
            "authSecret": {"namespace": secret_ns, "name": secret_name},
            "virtualMachine": {"namespace": "default", "name": "vm1"},
        },
    }


def make_spec(secret_ns="default", secret_name="creds"):
    return VirtualMachineBMCSpec.model_validate(make_bmc(secret_ns, secret_name)["spec"])


def make_secret(version="100"):
    return client.V1Secret(
        metadata=client.V1ObjectMeta(
            name="creds", namespace="default", resource_version=version
        ),
        data={"username": "dXNlcg==", "password": "cGFzcw=="},
    )


def make_pod(secret_version="100", secret_name="creds", phase="Running"):
    pod = build_agent_pod(
        "bmc1",
        make_spec(secret_name=secret_name),
        namespace=BMC_NS,
        image="anish60/virtbmc:latest",
        service_account="kubevirtbmc-virtbmc",
        secret_version=secret_version,
    )
    pod.status = client.V1PodStatus(phase=phase)
    return pod


def make_service(cluster_ip="10.96.0.15"):
    return client.V1Service(
        metadata=client.V1ObjectMeta(name="bmc1-virtbmc", namespace=BMC_NS),
        spec=client.V1ServiceSpec(cluster_ip=cluster_ip),
    )


def not_found():
    return ApiException(status=404, reason="Not Found")


@pytest.fixture
def core_api():
    api = MagicMock()
    api.read_namespaced_secret.return_value = make_secret()
    api.read_namespaced_pod.side_effect = not_found()
    api.read_namespaced_service.side_effect = not_found()
    return api


@pytest.fixture
def custom_api():
    api = MagicMock()
    api.get_namespaced_custom_object.return_value = make_bmc()
    return api


@pytest.fixture
def reconciler(core_api, custom_api):
    with (
        patch.object(
            VirtualMachineBMCReconciler,
            "core_api",
            new_callable=PropertyMock,
            return_value=core_api,
        ),
        patch.object(
            VirtualMachineBMCReconciler,
            "custom_api",
            new_callable=PropertyMock,
            return_value=custom_api,
        ),
    ):
        yield VirtualMachineBMCReconciler(k8s_client=MagicMock())


def written_status(custom_api):
    body = custom_api.replace_namespaced_custom_object_status.call_args.kwargs["body"]
    return body["status"]


class TestShouldRefreshPod:
    """Tests for the stale-pod decision."""

    def test_up_to_date_pod_is_kept(self):
        refresh, reason = should_refresh_pod(make_pod("100"), make_spec(), "100")
        assert refresh is False
        assert reason == ""

    def test_changed_secret_reference_triggers_refresh(self):
        pod = make_pod("100", secret_name="old-creds")
        refresh, reason = should_refresh_pod(pod, make_spec(), "100")
        assert refresh is True
        assert reason == REFRESH_REASON_SECRET_REF_CHANGED

    def test_changed_secret_version_triggers_refresh(self):
        refresh, reason = should_refresh_pod(make_pod("99"), make_spec(), "100")
        assert refresh is True
        assert reason == REFRESH_REASON_SECRET_DATA_CHANGED

    def test_missing_annotation_triggers_refresh_when_secret_exists(self):
        pod = make_pod("100")
        pod.metadata.annotations = None
        refresh, reason = should_refresh_pod(pod, make_spec(), "100")
        assert refresh is True
        assert reason == REFRESH_REASON_SECRET_DATA_CHANGED

    def test_absent_secret_never_reports_data_change(self):
        refresh, _ = should_refresh_pod(make_pod("99"), make_spec(), "")
        assert refresh is False

    def test_reference_change_wins_over_data_change(self):
        pod = make_pod("1", secret_name="old-creds")
        _, reason = should_refresh_pod(pod, make_spec(), "100")
        assert reason == REFRESH_REASON_SECRET_REF_CHANGED

    def test_pod_without_virtbmc_container_counts_as_reference_change(self):
        pod = make_pod("100")
        pod.spec.containers[0].name = "sidecar"
        refresh, reason = should_refresh_pod(pod, make_spec(), "100")
        assert refresh is True
        assert reason == REFRESH_REASON_SECRET_REF_CHANGED


class TestReconcileCreate:
    """Passes that create the agent workload."""

    @pytest.mark.asyncio
    async def test_missing_resource_is_a_no_op(self, reconciler, core_api, custom_api):
        custom_api.get_namespaced_custom_object.side_effect = not_found()

        result = await reconciler.reconcile(KEY)

        assert result == ReconcileResult()
        custom_api.replace_namespaced_custom_object_status.assert_not_called()
        core_api.create_namespaced_pod.assert_not_called()
        core_api.create_namespaced_service.assert_not_called()

    @pytest.mark.asyncio
    async def test_creates_pod_and_service(self, reconciler, core_api, custom_api):
        result = await reconciler.reconcile(KEY)

        assert result == ReconcileResult()

        status = written_status(custom_api)
        assert status["conditions"][0]["type"] == "SecretReady"
        assert status["conditions"][0]["status"] == "True"
        assert status["ready"] is False
        assert status["serviceIP"] == ""

        pod = core_api.create_namespaced_pod.call_args.kwargs["body"]
        assert core_api.create_namespaced_pod.call_args.kwargs["namespace"] == BMC_NS
        assert pod.metadata.name == "bmc1-virtbmc"
        assert pod.metadata.annotations[LAST_KNOWN_SECRET_VERSION_ANNOTATION] == "100"
        owner = pod.metadata.owner_references[0]
        assert owner.uid == "uid-1"
        assert owner.kind == CRD_KIND
        assert owner.controller is True
        assert owner.block_owner_deletion is True

        service = core_api.create_namespaced_service.call_args.kwargs["body"]
        assert service.metadata.name == "bmc1-virtbmc"
        assert service.metadata.owner_references[0].name == "bmc1"

    @pytest.mark.asyncio
    async def test_missing_secret_reports_condition_and_still_creates(
        self, reconciler, core_api, custom_api
    ):
        core_api.read_namespaced_secret.side_effect = not_found()

        result = await reconciler.reconcile(KEY)

        assert result == ReconcileResult()
        status = written_status(custom_api)
        assert status["conditions"][0]["status"] == "False"
        assert status["ready"] is False

        pod = core_api.create_namespaced_pod.call_args.kwargs["body"]
        assert pod.metadata.annotations[LAST_KNOWN_SECRET_VERSION_ANNOTATION] == ""
        args = pod.spec.containers[0].args
        assert args[args.index("--secret-ref") + 1] == "default/creds"

    @pytest.mark.asyncio
    async def test_already_existing_children_are_success(
        self, reconciler, core_api, custom_api
    ):
        core_api.create_namespaced_pod.side_effect = ApiException(status=409)
        core_api.create_namespaced_service.side_effect = ApiException(status=409)

        result = await reconciler.reconcile(KEY)

        assert result == ReconcileResult()

    @pytest.mark.asyncio
    async def test_pod_create_failure_is_retryable(self, reconciler, core_api):
        core_api.create_namespaced_pod.side_effect = ApiException(status=500)

        with pytest.raises(KubernetesAPIError) as exc_info:
            await reconciler.reconcile(KEY)

        assert exc_info.value.retryable is True
        assert exc_info.value.status == 500
        core_api.create_namespaced_service.assert_not_called()


class TestReconcileSteadyState:
    """Passes over an existing workload."""

    @pytest.fixture(autouse=True)
    def existing_children(self, core_api):
        core_api.read_namespaced_pod.side_effect = None
        core_api.read_namespaced_pod.return_value = make_pod("100")
        core_api.read_namespaced_service.side_effect = None
        core_api.read_namespaced_service.return_value = make_service()
        core_api.create_namespaced_service.side_effect = ApiException(status=409)

    @pytest.mark.asyncio
    async def test_running_pod_reports_ready(self, reconciler, core_api, custom_api):
        result = await reconciler.reconcile(KEY)

        assert result == ReconcileResult()
        status = written_status(custom_api)
        assert status["ready"] is True
        assert status["serviceIP"] == "10.96.0.15"
        core_api.delete_namespaced_pod.assert_not_called()
        core_api.create_namespaced_pod.assert_not_called()

    @pytest.mark.asyncio
    async def test_pending_pod_is_not_ready(self, reconciler, core_api, custom_api):
        core_api.read_namespaced_pod.return_value = make_pod("100", phase="Pending")

        await reconciler.reconcile(KEY)

        assert written_status(custom_api)["ready"] is False

    @pytest.mark.asyncio
    async def test_repeated_passes_write_the_same_status(
        self, reconciler, core_api, custom_api
    ):
        await reconciler.reconcile(KEY)
        first = written_status(custom_api)
        await reconciler.reconcile(KEY)
        second = written_status(custom_api)

        for status in (first, second):
            for condition in status["conditions"]:
                condition.pop("lastUpdateTime")
        assert first == second
        core_api.create_namespaced_pod.assert_not_called()
        core_api.delete_namespaced_pod.assert_not_called()

    @pytest.mark.asyncio
    async def test_status_write_keeps_resource_version(self, reconciler, custom_api):
        await reconciler.reconcile(KEY)

        body = custom_api.replace_namespaced_custom_object_status.call_args.kwargs[
            "body"
        ]
        assert body["metadata"]["resourceVersion"] == "7"

    @pytest.mark.asyncio
    async def test_secret_data_change_deletes_pod_and_requeues(
        self, reconciler, core_api
    ):
        core_api.read_namespaced_secret.return_value = make_secret("101")

        result = await reconciler.reconcile(KEY)

        assert result == ReconcileResult(requeue=True)
        core_api.delete_namespaced_pod.assert_called_once_with(
            name="bmc1-virtbmc", namespace=BMC_NS, grace_period_seconds=0
        )
        core_api.create_namespaced_pod.assert_not_called()
        core_api.create_namespaced_service.assert_not_called()

    @pytest.mark.asyncio
    async def test_stale_running_pod_is_not_reported_ready(
        self, reconciler, core_api, custom_api
    ):
        core_api.read_namespaced_secret.return_value = make_secret("101")

        await reconciler.reconcile(KEY)

        status = written_status(custom_api)
        assert status["ready"] is False
        assert status["conditions"][0]["status"] == "True"
        assert status["serviceIP"] == "10.96.0.15"

    @pytest.mark.asyncio
    async def test_secret_reference_change_deletes_pod(
        self, reconciler, core_api, custom_api
    ):
        custom_api.get_namespaced_custom_object.return_value = make_bmc(
            secret_name="new-creds"
        )

        result = await reconciler.reconcile(KEY)

        assert result.requeue is True
        core_api.delete_namespaced_pod.assert_called_once()

    @pytest.mark.asyncio
    async def test_pod_already_deleted_counts_as_success(self, reconciler, core_api):
        core_api.read_namespaced_secret.return_value = make_secret("101")
        core_api.delete_namespaced_pod.side_effect = not_found()

        result = await reconciler.reconcile(KEY)

        assert result == ReconcileResult(requeue=True)

    @pytest.mark.asyncio
    async def test_deleted_secret_keeps_pod(self, reconciler, core_api, custom_api):
        core_api.read_namespaced_secret.side_effect = not_found()

        result = await reconciler.reconcile(KEY)

        assert result == ReconcileResult()
        core_api.delete_namespaced_pod.assert_not_called()
        assert written_status(custom_api)["ready"] is False


class TestReconcileErrors:
    """Error classification of failed passes."""

    @pytest.mark.asyncio
    async def test_status_conflict_is_retryable(self, reconciler, custom_api):
        custom_api.replace_namespaced_custom_object_status.side_effect = ApiException(
            status=409, reason="Conflict"
        )

        with pytest.raises(KubernetesAPIError) as exc_info:
            await reconciler.reconcile(KEY)

        assert exc_info.value.retryable is True
        assert exc_info.value.status == 409

    @pytest.mark.asyncio
    async def test_secret_read_error_is_retryable(self, reconciler, core_api):
        core_api.read_namespaced_secret.side_effect = ApiException(status=503)

        with pytest.raises(KubernetesAPIError) as exc_info:
            await reconciler.reconcile(KEY)

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_forbidden_is_retryable(self, reconciler, custom_api):
        custom_api.get_namespaced_custom_object.side_effect = ApiException(
            status=403, reason="Forbidden"
        )

        with pytest.raises(KubernetesAPIError) as exc_info:
            await reconciler.reconcile(KEY)

        assert exc_info.value.retryable is True
        assert exc_info.value.status == 403

    @pytest.mark.asyncio
    async def test_forbidden_secret_read_is_requeued_until_granted(
        self, reconciler, core_api, custom_api
    ):
        core_api.read_namespaced_secret.side_effect = [
            ApiException(status=403, reason="Forbidden"),
            ApiException(status=403, reason="Forbidden"),
            make_secret(),
        ]
        queue = ReconcileQueue(
            reconciler.reconcile, workers=1, base_delay=0.01, max_delay=0.05
        )
        queue.add(KEY)
        await queue.start()
        try:
            async with asyncio.timeout(2.0):
                while not core_api.create_namespaced_pod.called:
                    await asyncio.sleep(0.01)
        finally:
            await queue.stop()

        assert core_api.read_namespaced_secret.call_count == 3
        assert written_status(custom_api)["conditions"][0]["status"] == "True"

    @pytest.mark.asyncio
    async def test_invalid_spec_is_not_retryable(self, reconciler, custom_api):
        custom_api.get_namespaced_custom_object.return_value = make_bmc(
            spec={"authSecret": {"namespace": "default"}}
        )

        with pytest.raises(ValidationError) as exc_info:
            await reconciler.reconcile(KEY)

        assert exc_info.value.retryable is False
        custom_api.replace_namespaced_custom_object_status.assert_not_called()

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_temporary(self, reconciler, core_api):
        core_api.read_namespaced_pod.side_effect = RuntimeError("connection reset")

        with pytest.raises(TemporaryError) as exc_info:
            await reconciler.reconcile(KEY)

        assert exc_info.value.retryable is True
        assert "connection reset" in str(exc_info.value)
