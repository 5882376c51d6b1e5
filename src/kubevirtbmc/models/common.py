"""
Common models shared across different resource types.
"""

from pydantic import BaseModel, Field


class NamespacedName(BaseModel):
    """Reference to a namespaced Kubernetes object."""

    model_config = {"populate_by_name": True}

    namespace: str = Field(..., min_length=1, description="Namespace of the object")
    name: str = Field(..., min_length=1, description="Name of the object")

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"
