"""
Models package - Pydantic models for type-safe resource handling.

Defines data models for:
- VirtualMachineBMC specifications and status
- Shared references such as namespaced names
"""

from .common import NamespacedName
from .virtualmachinebmc import (
    Condition,
    VirtualMachineBMCSpec,
    VirtualMachineBMCStatus,
)

__all__ = [
    "Condition",
    "NamespacedName",
    "VirtualMachineBMCSpec",
    "VirtualMachineBMCStatus",
]
