"""
Pydantic models for VirtualMachineBMC resources.

A VirtualMachineBMC binds a KubeVirt virtual machine to an emulated BMC
agent, and names the secret holding the credentials the agent accepts.
"""

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from .common import NamespacedName


class VirtualMachineBMCSpec(BaseModel):
    """Desired state of a VirtualMachineBMC."""

    model_config = {"populate_by_name": True}

    auth_secret: NamespacedName = Field(
        ...,
        alias="authSecret",
        description="Secret holding the username and password keys",
    )
    virtual_machine: NamespacedName = Field(
        ...,
        alias="virtualMachine",
        description="Virtual machine the BMC controls",
    )


class Condition(BaseModel):
    """Status condition for a VirtualMachineBMC."""

    model_config = {"populate_by_name": True}

    type: str = Field(..., description="Condition type")
    status: Literal["True", "False"] = Field(..., description="Condition status")
    last_update_time: str = Field(
        default_factory=lambda: datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
        alias="lastUpdateTime",
        description="Last time the condition was written",
    )


class VirtualMachineBMCStatus(BaseModel):
    """
    Observed state of a VirtualMachineBMC.

    Written in full on every reconcile pass.
    """

    model_config = {"populate_by_name": True}

    service_ip: str = Field(
        "", alias="serviceIP", description="Cluster IP of the agent service"
    )
    ready: bool = Field(False, description="Secret present and agent pod running")
    conditions: list[Condition] = Field(
        default_factory=list, description="Detailed status conditions"
    )

    def to_body(self) -> dict[str, Any]:
        """Serialize to the camelCase form stored on the resource."""
        return self.model_dump(by_alias=True)
