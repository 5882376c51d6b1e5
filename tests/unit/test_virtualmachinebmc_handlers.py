"""
Unit tests for the VirtualMachineBMC watch handlers.

Handlers only map events to queue keys, so a MagicMock queue is enough to
observe what they enqueue.
"""

from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException

from kubevirtbmc.constants import CRD_API_VERSION, CRD_KIND
from kubevirtbmc.handlers.virtualmachinebmc import (
    enqueue_for_secret,
    keys_referencing_secret,
    on_agent_pod_event,
    on_secret_event,
    on_virtualmachinebmc_event,
    owner_key,
)
from kubevirtbmc.services import ObjectKey


def bmc_item(namespace, name, secret_ns, secret_name):
    return {
        "metadata": {"namespace": namespace, "name": name},
        "spec": {
            "authSecret": {"namespace": secret_ns, "name": secret_name},
            "virtualMachine": {"namespace": "default", "name": "vm"},
        },
    }


def owned_meta(owner="bmc1", kind=CRD_KIND, api_version=CRD_API_VERSION, controller=True):
    return {
        "name": f"{owner}-virtbmc",
        "ownerReferences": [
            {
                "apiVersion": api_version,
                "kind": kind,
                "name": owner,
                "uid": "uid-1",
                "controller": controller,
            }
        ],
    }


@pytest.fixture
def memo():
    memo = MagicMock()
    memo.custom_api.list_cluster_custom_object.return_value = {
        "items": [
            bmc_item("ns-a", "bmc1", "default", "creds"),
            bmc_item("ns-b", "bmc2", "default", "creds"),
            bmc_item("ns-a", "bmc3", "default", "other"),
            bmc_item("ns-c", "bmc4", "elsewhere", "creds"),
        ]
    }
    return memo


class TestKeysReferencingSecret:
    def test_matches_namespace_and_name(self, memo):
        items = memo.custom_api.list_cluster_custom_object.return_value["items"]

        keys = keys_referencing_secret(items, "default", "creds")

        assert keys == [
            ObjectKey(namespace="ns-a", name="bmc1"),
            ObjectKey(namespace="ns-b", name="bmc2"),
        ]

    def test_items_without_spec_are_skipped(self):
        items = [{"metadata": {"namespace": "ns", "name": "broken"}}]
        assert keys_referencing_secret(items, "default", "creds") == []


class TestOwnerKey:
    """Mapping agent pods and services back to their VirtualMachineBMC."""

    def test_controller_reference_maps_to_owner(self):
        key = owner_key(owned_meta(), "kubevirtbmc-system")
        assert key == ObjectKey(namespace="kubevirtbmc-system", name="bmc1")

    def test_non_controller_reference_is_ignored(self):
        assert owner_key(owned_meta(controller=False), "kubevirtbmc-system") is None

    def test_foreign_controller_is_ignored(self):
        meta = owned_meta(kind="ReplicaSet", api_version="apps/v1")
        assert owner_key(meta, "kubevirtbmc-system") is None

    def test_missing_owner_references(self):
        assert owner_key({"name": "orphan"}, "kubevirtbmc-system") is None


class TestEnqueueForSecret:
    """Secret change fan-out."""

    @pytest.mark.asyncio
    async def test_enqueues_every_referencing_resource(self, memo):
        keys = await enqueue_for_secret(
            memo.reconcile_queue, memo.custom_api, "default", "creds"
        )

        assert len(keys) == 2
        added = [call.args[0] for call in memo.reconcile_queue.add.call_args_list]
        assert added == keys

    @pytest.mark.asyncio
    async def test_unreferenced_secret_enqueues_nothing(self, memo):
        keys = await enqueue_for_secret(
            memo.reconcile_queue, memo.custom_api, "default", "unrelated"
        )

        assert keys == []
        memo.reconcile_queue.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_list_failure_enqueues_nothing(self, memo):
        memo.custom_api.list_cluster_custom_object.side_effect = ApiException(
            status=500, reason="Internal Server Error"
        )

        keys = await enqueue_for_secret(
            memo.reconcile_queue, memo.custom_api, "default", "creds"
        )

        assert keys == []
        memo.reconcile_queue.add.assert_not_called()


class TestEventHandlers:
    @pytest.mark.asyncio
    async def test_resource_event_enqueues_itself(self, memo):
        await on_virtualmachinebmc_event(name="bmc1", namespace="ns-a", memo=memo)

        memo.reconcile_queue.add.assert_called_once_with(
            ObjectKey(namespace="ns-a", name="bmc1")
        )

    @pytest.mark.asyncio
    async def test_pod_event_enqueues_owner(self, memo):
        await on_agent_pod_event(
            meta=owned_meta(), namespace="kubevirtbmc-system", memo=memo
        )

        memo.reconcile_queue.add.assert_called_once_with(
            ObjectKey(namespace="kubevirtbmc-system", name="bmc1")
        )

    @pytest.mark.asyncio
    async def test_unowned_pod_event_is_ignored(self, memo):
        await on_agent_pod_event(
            meta={"name": "stray"}, namespace="kubevirtbmc-system", memo=memo
        )

        memo.reconcile_queue.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_secret_event_fans_out(self, memo):
        await on_secret_event(name="creds", namespace="default", memo=memo)

        assert memo.reconcile_queue.add.call_count == 2
