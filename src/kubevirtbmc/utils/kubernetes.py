"""
Kubernetes utilities for KubeVirt BMC.

This module provides helper functions for interacting with the Kubernetes API,
including client configuration and the pod and service templates that run
the virtbmc agent for a VirtualMachineBMC.

Key functionality:
- Kubernetes client management and configuration
- Agent pod and service construction
- Owner references for garbage collection
- Reading the secret reference back out of a running agent pod
"""

import logging
from typing import Any

from kubernetes import client, config

from kubevirtbmc.constants import (
    CRD_API_VERSION,
    CRD_KIND,
    DEFAULT_LISTEN_ADDRESS,
    IPMI_PORT,
    IPMI_PORT_NAME,
    IPMI_SVC_PORT,
    LAST_KNOWN_SECRET_VERSION_ANNOTATION,
    REDFISH_PORT,
    REDFISH_PORT_NAME,
    REDFISH_SVC_PORT,
    SECRET_REF_FLAG,
    VIRTBMC_CONTAINER_NAME,
    VIRTBMC_SUFFIX,
    VIRTUAL_MACHINE_BMC_NAME_LABEL,
    VM_NAME_LABEL,
)
from kubevirtbmc.models import VirtualMachineBMCSpec

logger = logging.getLogger(__name__)


def get_kubernetes_client(kubeconfig: str | None = None) -> client.ApiClient:
    """
    Get configured Kubernetes API client.

    An explicit kubeconfig path wins. Otherwise the in-cluster configuration
    is tried first, then the local kubeconfig.

    Args:
        kubeconfig: Optional path to a kubeconfig file

    Returns:
        Configured Kubernetes API client
    """
    if kubeconfig:
        config.load_kube_config(config_file=kubeconfig)
        logger.debug(f"Loaded Kubernetes configuration from {kubeconfig}")
        return client.ApiClient()

    try:
        # Try in-cluster config first (when running in a pod)
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            # Fall back to local kubeconfig (for development)
            config.load_kube_config()
            logger.debug("Loaded kubeconfig from local environment")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    return client.ApiClient()


def child_name(bmc_name: str) -> str:
    """Name shared by the agent pod and service of a VirtualMachineBMC."""
    return f"{bmc_name}{VIRTBMC_SUFFIX}"


def format_secret_ref(namespace: str, name: str) -> str:
    return f"{namespace}/{name}"


def _child_labels(bmc_name: str, spec: VirtualMachineBMCSpec) -> dict[str, str]:
    return {
        VIRTUAL_MACHINE_BMC_NAME_LABEL: bmc_name,
        VM_NAME_LABEL: spec.virtual_machine.name,
    }


def build_agent_pod(
    bmc_name: str,
    spec: VirtualMachineBMCSpec,
    namespace: str,
    image: str,
    service_account: str,
    secret_version: str = "",
) -> client.V1Pod:
    """
    Build the pod running the virtbmc agent for a VirtualMachineBMC.

    Args:
        bmc_name: Name of the VirtualMachineBMC
        spec: Validated VirtualMachineBMC spec
        namespace: Namespace the pod is created in
        image: Full agent image reference
        service_account: Service account the agent runs as
        secret_version: resourceVersion of the auth secret, "" when absent

    Returns:
        Pod object ready to be created
    """
    secret_ref = format_secret_ref(
        spec.auth_secret.namespace, spec.auth_secret.name
    )

    container = client.V1Container(
        name=VIRTBMC_CONTAINER_NAME,
        image=image,
        args=[
            "--address",
            DEFAULT_LISTEN_ADDRESS,
            "--ipmi-port",
            str(IPMI_PORT),
            "--redfish-port",
            str(REDFISH_PORT),
            SECRET_REF_FLAG,
            secret_ref,
            spec.virtual_machine.namespace,
            spec.virtual_machine.name,
        ],
        ports=[
            client.V1ContainerPort(
                name=IPMI_PORT_NAME, container_port=IPMI_PORT, protocol="UDP"
            ),
            client.V1ContainerPort(
                name=REDFISH_PORT_NAME, container_port=REDFISH_PORT, protocol="TCP"
            ),
        ],
    )

    return client.V1Pod(
        api_version="v1",
        kind="Pod",
        metadata=client.V1ObjectMeta(
            name=child_name(bmc_name),
            namespace=namespace,
            labels=_child_labels(bmc_name, spec),
            annotations={LAST_KNOWN_SECRET_VERSION_ANNOTATION: secret_version},
        ),
        spec=client.V1PodSpec(
            containers=[container],
            service_account_name=service_account,
        ),
    )


def build_agent_service(
    bmc_name: str, spec: VirtualMachineBMCSpec, namespace: str
) -> client.V1Service:
    """
    Build the service exposing the IPMI and Redfish ports of an agent pod.

    Args:
        bmc_name: Name of the VirtualMachineBMC
        spec: Validated VirtualMachineBMC spec
        namespace: Namespace the service is created in

    Returns:
        Service object ready to be created
    """
    return client.V1Service(
        api_version="v1",
        kind="Service",
        metadata=client.V1ObjectMeta(
            name=child_name(bmc_name),
            namespace=namespace,
            labels=_child_labels(bmc_name, spec),
        ),
        spec=client.V1ServiceSpec(
            selector={VIRTUAL_MACHINE_BMC_NAME_LABEL: bmc_name},
            ports=[
                client.V1ServicePort(
                    name=IPMI_PORT_NAME,
                    protocol="UDP",
                    port=IPMI_SVC_PORT,
                    target_port=IPMI_PORT_NAME,
                ),
                client.V1ServicePort(
                    name=REDFISH_PORT_NAME,
                    protocol="TCP",
                    port=REDFISH_SVC_PORT,
                    target_port=REDFISH_PORT_NAME,
                ),
            ],
        ),
    )


def set_owner_reference(
    resource: Any,
    owner_name: str,
    owner_uid: str,
    owner_kind: str = CRD_KIND,
    api_version: str = CRD_API_VERSION,
) -> None:
    """
    Set owner reference for garbage collection.

    Args:
        resource: Kubernetes resource to set owner reference on
        owner_name: Name of the owner resource
        owner_uid: UID of the owner resource
        owner_kind: Kind of the owner resource
        api_version: API version of the owner resource
    """
    if resource.metadata.owner_references is None:
        resource.metadata.owner_references = []

    resource.metadata.owner_references.append(
        client.V1OwnerReference(
            api_version=api_version,
            kind=owner_kind,
            name=owner_name,
            uid=owner_uid,
            controller=True,
            block_owner_deletion=True,
        )
    )


def pod_secret_ref(pod: client.V1Pod) -> str:
    """
    Return the secret reference a running agent pod was launched with.

    Looks for the argument following --secret-ref in the virtbmc container.
    Returns "" when the container or the flag is missing.
    """
    containers = (pod.spec.containers if pod.spec else None) or []
    for container in containers:
        if container.name != VIRTBMC_CONTAINER_NAME:
            continue
        args = container.args or []
        for i, arg in enumerate(args):
            if arg == SECRET_REF_FLAG and i + 1 < len(args):
                return args[i + 1]
        break
    return ""


def controlling_owner_name(metadata: dict[str, Any]) -> str | None:
    """
    Return the name of the VirtualMachineBMC controlling an object.

    Args:
        metadata: Raw object metadata as delivered in watch events

    Returns:
        Owner name, or None when no VirtualMachineBMC controls the object
    """
    for ref in metadata.get("ownerReferences") or []:
        if not ref.get("controller"):
            continue
        if ref.get("kind") == CRD_KIND and ref.get("apiVersion") == CRD_API_VERSION:
            return ref.get("name")
        return None
    return None
