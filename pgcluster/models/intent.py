"""
Side-effect intents emitted by the lifecycle decisions.

Decision functions return these values instead of calling the Kubernetes API,
so they can be tested without any collaborator. The controllers execute them.
"""
from typing import Union

from pydantic import BaseModel, ConfigDict, Field


class RemoveMember(BaseModel):
    """Delete a member pod, and optionally its storage claim afterwards."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Pod (and storage claim) name")
    namespace: str = Field(..., description="Kubernetes namespace")
    delete_storage: bool = Field(default=False, description="Also delete the claim once the pod is gone")


class DesignatePrimary(BaseModel):
    """Record a member as the cluster's target primary."""

    model_config = ConfigDict(frozen=True)

    cluster: str = Field(..., description="Cluster name")
    namespace: str = Field(..., description="Kubernetes namespace")
    pod_name: str = Field(..., description="Member that should become primary")


Intent = Union[RemoveMember, DesignatePrimary]
