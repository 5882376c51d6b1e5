"""
Handlers package - Contains the kopf event handlers for KubeVirt BMC.

- virtualmachinebmc.py: watches feeding the VirtualMachineBMC work queue
"""
