"""
KubeVirt BMC - Emulated baseboard management controllers for KubeVirt VMs.

This package contains two cooperating processes:
- The controller, a kopf operator that turns VirtualMachineBMC resources
  into an agent pod and service per virtual machine
- The virtbmc agent, which runs inside that pod, keeps its credentials in
  sync with a Kubernetes secret and authenticates IPMI/Redfish requests
"""

__version__ = "0.1.0"
