"""
Utils package - Utility modules for KubeVirt BMC functionality.

Contains helper modules for:
- Kubernetes client configuration and agent workload templates
- Reader/writer locking for state shared with watch threads
"""

from kubevirtbmc.utils.kubernetes import (
    build_agent_pod,
    build_agent_service,
    get_kubernetes_client,
    set_owner_reference,
)
from kubevirtbmc.utils.locks import ReadWriteLock

__all__ = [
    "ReadWriteLock",
    "build_agent_pod",
    "build_agent_service",
    "get_kubernetes_client",
    "set_owner_reference",
]
