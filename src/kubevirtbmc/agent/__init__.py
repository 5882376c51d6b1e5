"""
virtbmc agent - runs inside every BMC pod.
"""

from .server import ManagementServer
from .virtbmc import Options, ProtocolEmulator, ResourceManager, VirtBMC

__all__ = [
    "ManagementServer",
    "Options",
    "ProtocolEmulator",
    "ResourceManager",
    "VirtBMC",
]
