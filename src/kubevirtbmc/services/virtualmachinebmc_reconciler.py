"""
VirtualMachineBMC reconciler.

Drives the agent pod and service of every VirtualMachineBMC towards the
desired state and keeps the resource status current. A pass reads the
resource, its auth secret and its children, writes the status, then
creates missing children or deletes a stale agent pod so that the next
pass recreates it with the current secret.
"""

from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException
from pydantic import ValidationError as PydanticValidationError

from ..constants import (
    CONDITION_FALSE,
    CONDITION_SECRET_READY,
    CONDITION_TRUE,
    CRD_GROUP,
    CRD_PLURAL,
    CRD_VERSION,
    LAST_KNOWN_SECRET_VERSION_ANNOTATION,
    REFRESH_REASON_SECRET_DATA_CHANGED,
    REFRESH_REASON_SECRET_REF_CHANGED,
)
from ..errors import ValidationError
from ..models import Condition, VirtualMachineBMCSpec, VirtualMachineBMCStatus
from ..observability.metrics import metrics_collector
from ..settings import Settings, settings
from ..utils.kubernetes import (
    build_agent_pod,
    build_agent_service,
    child_name,
    format_secret_ref,
    pod_secret_ref,
    set_owner_reference,
)
from .base_reconciler import BaseReconciler
from .work_queue import ObjectKey, ReconcileResult


def should_refresh_pod(
    pod: client.V1Pod, spec: VirtualMachineBMCSpec, secret_version: str
) -> tuple[bool, str]:
    """
    Decide whether a running agent pod must be replaced.

    The pod is stale when it was launched with a different secret reference,
    or when the secret exists and its resourceVersion differs from the one
    recorded on the pod.

    Args:
        pod: Existing agent pod
        spec: Current VirtualMachineBMC spec
        secret_version: resourceVersion of the auth secret, "" when absent

    Returns:
        Tuple of (refresh needed, human readable reason)
    """
    desired_ref = format_secret_ref(spec.auth_secret.namespace, spec.auth_secret.name)
    if pod_secret_ref(pod) != desired_ref:
        return True, REFRESH_REASON_SECRET_REF_CHANGED

    if secret_version:
        annotations = pod.metadata.annotations or {}
        if annotations.get(LAST_KNOWN_SECRET_VERSION_ANNOTATION) != secret_version:
            return True, REFRESH_REASON_SECRET_DATA_CHANGED

    return False, ""


class VirtualMachineBMCReconciler(BaseReconciler):
    """
    Reconciler for VirtualMachineBMC resources.

    Handles the agent workload lifecycle including:
    - SecretReady condition, service IP and readiness in the status
    - Agent pod creation with the secret version annotation
    - Stale pod replacement after secret reference or data changes
    - Agent service creation
    """

    resource_type = "virtualmachinebmc"

    def __init__(
        self,
        k8s_client: client.ApiClient | None = None,
        config: Settings | None = None,
    ):
        super().__init__(k8s_client)
        self.config = config or settings

    @property
    def core_api(self) -> client.CoreV1Api:
        return client.CoreV1Api(self.kubernetes_client)

    @property
    def custom_api(self) -> client.CustomObjectsApi:
        return client.CustomObjectsApi(self.kubernetes_client)

    async def do_reconcile(self, key: ObjectKey) -> ReconcileResult:
        core_api = self.core_api
        custom_api = self.custom_api

        bmc = await self.read_optional(
            custom_api.get_namespaced_custom_object,
            group=CRD_GROUP,
            version=CRD_VERSION,
            namespace=key.namespace,
            plural=CRD_PLURAL,
            name=key.name,
        )
        if bmc is None:
            # Deleted; children are garbage collected through owner references
            self.logger.debug(f"VirtualMachineBMC {key} not found, nothing to do")
            return ReconcileResult()

        spec = self._parse_spec(bmc, key)
        bmc_ns = self.config.bmc_namespace
        name = child_name(key.name)

        secret = await self.read_optional(
            core_api.read_namespaced_secret,
            name=spec.auth_secret.name,
            namespace=spec.auth_secret.namespace,
        )
        secret_exists = secret is not None
        secret_version = ""
        if secret is None:
            self.logger.info(
                f"Referenced secret {spec.auth_secret} not found",
                secret_ref=str(spec.auth_secret),
            )
        else:
            secret_version = secret.metadata.resource_version or ""

        existing_pod = await self.read_optional(
            core_api.read_namespaced_pod, name=name, namespace=bmc_ns
        )
        existing_service = await self.read_optional(
            core_api.read_namespaced_service, name=name, namespace=bmc_ns
        )

        refresh, reason = False, ""
        if existing_pod is not None:
            refresh, reason = should_refresh_pod(existing_pod, spec, secret_version)

        # A pod about to be replaced is never reported ready
        status = self._build_status(
            secret_exists, None if refresh else existing_pod, existing_service
        )
        await self._write_status(custom_api, bmc, key, status)

        if existing_pod is not None:
            if refresh:
                self.logger.info(
                    f"Pod refresh required for {key}: {reason}",
                    pod_name=name,
                    reason=reason,
                    secret_version=secret_version,
                )
                await self._delete_pod(core_api, name, bmc_ns)
                metrics_collector.record_pod_refresh(bmc_ns, reason)
                # The next pass creates the replacement
                return ReconcileResult(requeue=True)

            self.logger.debug(f"Pod {bmc_ns}/{name} exists and is up-to-date")
        else:
            pod = build_agent_pod(
                key.name,
                spec,
                namespace=bmc_ns,
                image=self.config.agent_image,
                service_account=self.config.agent_service_account,
                secret_version=secret_version,
            )
            set_owner_reference(pod, key.name, bmc["metadata"]["uid"])
            await self._create_if_missing(
                core_api.create_namespaced_pod, bmc_ns, pod, "Pod"
            )

        service = build_agent_service(key.name, spec, namespace=bmc_ns)
        set_owner_reference(service, key.name, bmc["metadata"]["uid"])
        await self._create_if_missing(
            core_api.create_namespaced_service, bmc_ns, service, "Service"
        )

        return ReconcileResult()

    def _parse_spec(self, bmc: dict[str, Any], key: ObjectKey) -> VirtualMachineBMCSpec:
        try:
            return VirtualMachineBMCSpec.model_validate(bmc.get("spec") or {})
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid VirtualMachineBMC spec for {key}: {e}",
                user_action="Set spec.authSecret and spec.virtualMachine "
                "with both namespace and name",
            ) from e

    @staticmethod
    def _build_status(
        secret_exists: bool,
        pod: client.V1Pod | None,
        service: client.V1Service | None,
    ) -> VirtualMachineBMCStatus:
        pod_running = (
            pod is not None
            and pod.status is not None
            and pod.status.phase == "Running"
        )
        service_ip = ""
        if service is not None and service.spec is not None:
            service_ip = service.spec.cluster_ip or ""

        return VirtualMachineBMCStatus(
            service_ip=service_ip,
            ready=secret_exists and pod_running,
            conditions=[
                Condition(
                    type=CONDITION_SECRET_READY,
                    status=CONDITION_TRUE if secret_exists else CONDITION_FALSE,
                )
            ],
        )

    async def _write_status(
        self,
        custom_api: client.CustomObjectsApi,
        bmc: dict[str, Any],
        key: ObjectKey,
        status: VirtualMachineBMCStatus,
    ) -> None:
        # Keeps metadata.resourceVersion so a concurrent write fails with 409
        body = dict(bmc)
        body["status"] = status.to_body()
        await self.call_api(
            custom_api.replace_namespaced_custom_object_status,
            group=CRD_GROUP,
            version=CRD_VERSION,
            namespace=key.namespace,
            plural=CRD_PLURAL,
            name=key.name,
            body=body,
        )
        self.logger.info(f"Updated status of VirtualMachineBMC {key}")

    async def _delete_pod(
        self, core_api: client.CoreV1Api, name: str, namespace: str
    ) -> None:
        try:
            await self.call_api(
                core_api.delete_namespaced_pod,
                name=name,
                namespace=namespace,
                grace_period_seconds=0,
            )
        except ApiException as e:
            if e.status != 404:
                raise
            self.logger.debug(f"Pod {namespace}/{name} already gone")

    async def _create_if_missing(
        self, create: Any, namespace: str, body: Any, kind: str
    ) -> None:
        try:
            await self.call_api(create, namespace=namespace, body=body)
            self.logger.info(f"Created {kind} {namespace}/{body.metadata.name}")
        except ApiException as e:
            if e.status != 409:
                raise
            self.logger.debug(f"{kind} {namespace}/{body.metadata.name} already exists")
