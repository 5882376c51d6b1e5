"""
VirtualMachineBMC watch handlers - Feed the reconcile work queue.

The handlers never reconcile inline. Each event is mapped to the keys of the
VirtualMachineBMCs it affects and those keys are added to the queue created
at startup (``memo.reconcile_queue``):
- VirtualMachineBMC events enqueue the resource itself
- Pod and Service events enqueue the controlling VirtualMachineBMC
- Secret events enqueue every VirtualMachineBMC referencing the secret
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import kopf
from kubernetes import client
from kubernetes.client.rest import ApiException

from kubevirtbmc.constants import (
    CRD_GROUP,
    CRD_PLURAL,
    CRD_VERSION,
    VIRTUAL_MACHINE_BMC_NAME_LABEL,
)
from kubevirtbmc.observability.metrics import metrics_collector
from kubevirtbmc.services import ObjectKey, ReconcileQueue
from kubevirtbmc.utils.kubernetes import controlling_owner_name

logger = logging.getLogger(__name__)


def owner_key(meta: dict[str, Any], namespace: str) -> ObjectKey | None:
    """Key of the VirtualMachineBMC controlling a child object, if any."""
    owner = controlling_owner_name(meta)
    if owner is None:
        return None
    return ObjectKey(namespace=namespace, name=owner)


def keys_referencing_secret(
    items: list[dict[str, Any]], secret_namespace: str, secret_name: str
) -> list[ObjectKey]:
    """
    Select the VirtualMachineBMCs whose auth secret is the given secret.

    Args:
        items: VirtualMachineBMC objects as returned by a list call
        secret_namespace: Namespace of the changed secret
        secret_name: Name of the changed secret

    Returns:
        Keys of the matching resources, in list order
    """
    keys = []
    for item in items:
        auth_secret = (item.get("spec") or {}).get("authSecret") or {}
        if (
            auth_secret.get("name") == secret_name
            and auth_secret.get("namespace") == secret_namespace
        ):
            metadata = item.get("metadata") or {}
            keys.append(
                ObjectKey(namespace=metadata.get("namespace"), name=metadata.get("name"))
            )
    return keys


async def enqueue_for_secret(
    queue: ReconcileQueue,
    custom_api: client.CustomObjectsApi,
    secret_namespace: str,
    secret_name: str,
) -> list[ObjectKey]:
    """
    Enqueue every VirtualMachineBMC referencing a secret.

    A failed list enqueues nothing; the next event for the secret or the
    resources retries the mapping.
    """
    try:
        listing = await asyncio.to_thread(
            custom_api.list_cluster_custom_object,
            group=CRD_GROUP,
            version=CRD_VERSION,
            plural=CRD_PLURAL,
        )
    except ApiException as e:
        logger.error(
            f"Failed to list VirtualMachineBMCs for secret "
            f"{secret_namespace}/{secret_name}: {e.status} {e.reason}"
        )
        return []

    keys = keys_referencing_secret(
        listing.get("items") or [], secret_namespace, secret_name
    )
    for key in keys:
        queue.add(key)

    metrics_collector.record_secret_fanout(len(keys))
    if keys:
        logger.debug(
            f"Secret {secret_namespace}/{secret_name} changed, enqueued "
            f"{', '.join(str(k) for k in keys)}"
        )
    return keys


@kopf.on.event(CRD_GROUP, CRD_VERSION, CRD_PLURAL)
async def on_virtualmachinebmc_event(
    name: str, namespace: str, memo: kopf.Memo, **_
) -> None:
    """Enqueue a VirtualMachineBMC on any change, deletion included."""
    memo.reconcile_queue.add(ObjectKey(namespace=namespace, name=name))


@kopf.on.event("v1", "pods", labels={VIRTUAL_MACHINE_BMC_NAME_LABEL: kopf.PRESENT})
async def on_agent_pod_event(
    meta: kopf.Meta, namespace: str, memo: kopf.Memo, **_
) -> None:
    """Enqueue the VirtualMachineBMC owning an agent pod."""
    key = owner_key(dict(meta), namespace)
    if key is not None:
        memo.reconcile_queue.add(key)


@kopf.on.event(
    "v1", "services", labels={VIRTUAL_MACHINE_BMC_NAME_LABEL: kopf.PRESENT}
)
async def on_agent_service_event(
    meta: kopf.Meta, namespace: str, memo: kopf.Memo, **_
) -> None:
    """Enqueue the VirtualMachineBMC owning an agent service."""
    key = owner_key(dict(meta), namespace)
    if key is not None:
        memo.reconcile_queue.add(key)


@kopf.on.event("v1", "secrets")
async def on_secret_event(
    name: str, namespace: str, memo: kopf.Memo, **_
) -> None:
    """Enqueue every VirtualMachineBMC that references the changed secret."""
    await enqueue_for_secret(memo.reconcile_queue, memo.custom_api, namespace, name)
