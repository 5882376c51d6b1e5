"""
Service layer for KubeVirt BMC.

This package contains reconciliation logic that is independent of the
kopf event handlers, plus the work queue that feeds it.
"""

from .base_reconciler import BaseReconciler
from .virtualmachinebmc_reconciler import (
    VirtualMachineBMCReconciler,
    should_refresh_pod,
)
from .work_queue import ObjectKey, ReconcileQueue, ReconcileResult

__all__ = [
    "BaseReconciler",
    "ObjectKey",
    "ReconcileQueue",
    "ReconcileResult",
    "VirtualMachineBMCReconciler",
    "should_refresh_pod",
]
