"""
Pydantic models for the Cluster custom resource and its member pods.
"""
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MasterUpdateStrategy(str, Enum):
    """How the primary is replaced during a rolling update."""

    UNSUPERVISED = "unsupervised"  # Switch over automatically
    SUPERVISED = "supervised"  # Wait for an operator-issued switchover


class ClusterStatus(BaseModel):
    """Observed status of a cluster, persisted on the custom resource."""

    model_config = ConfigDict(frozen=True)

    current_primary: Optional[str] = Field(default=None, description="Member currently acting as primary")
    target_primary: Optional[str] = Field(default=None, description="Member designated to become primary")


class Cluster(BaseModel):
    """
    Desired and observed state of one PostgreSQL cluster.

    Instances are immutable: decisions that change the status return a new
    Cluster through with_status() and the caller persists it.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Cluster name")
    namespace: str = Field(..., min_length=1, description="Kubernetes namespace")
    image_name: str = Field(..., min_length=1, description="Target PostgreSQL image")
    instances: int = Field(default=1, ge=0, description="Target number of members")
    master_update_strategy: MasterUpdateStrategy = Field(
        default=MasterUpdateStrategy.UNSUPERVISED,
        description="Whether the primary is replaced automatically",
    )
    storage_enabled: bool = Field(default=False, description="Members use a persistent volume claim each")
    resource_version: Optional[str] = Field(
        default=None, description="Kubernetes resourceVersion used for optimistic concurrency"
    )
    status: ClusterStatus = Field(default_factory=ClusterStatus)

    @field_validator("master_update_strategy", mode="before")
    @classmethod
    def normalize_strategy(cls, v: Any) -> Any:
        """Accept the capitalised spellings used in manifests."""
        if isinstance(v, str):
            return v.lower()
        return v

    @classmethod
    def from_resource(cls, resource: Dict[str, Any], default_image: Optional[str] = None) -> "Cluster":
        """
        Build a Cluster from a custom resource body as returned by the API.

        Args:
            resource: The custom object dictionary
            default_image: Image used when the resource does not name one

        Returns:
            Parsed Cluster
        """
        metadata = resource.get("metadata", {})
        spec = resource.get("spec", {})
        status = resource.get("status") or {}

        strategy = spec.get("masterUpdateStrategy") or MasterUpdateStrategy.UNSUPERVISED.value

        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            image_name=spec.get("imageName") or default_image or "",
            instances=spec.get("instances", 1),
            master_update_strategy=strategy,
            storage_enabled=bool(spec.get("storage")),
            resource_version=metadata.get("resourceVersion"),
            status=ClusterStatus(
                current_primary=status.get("currentPrimary"),
                target_primary=status.get("targetPrimary"),
            ),
        )

    @property
    def switchover_pending(self) -> bool:
        """True while a designated primary has not taken over yet."""
        target = self.status.target_primary
        return bool(target) and target != self.status.current_primary

    def with_status(self, **fields: Any) -> "Cluster":
        """Return a copy of this cluster with some status fields replaced."""
        return self.model_copy(update={"status": self.status.model_copy(update=fields)})


class Member(BaseModel):
    """One running PostgreSQL instance (a pod)."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Pod name, also the storage claim name")
    namespace: str = Field(..., min_length=1, description="Kubernetes namespace")
    image: Optional[str] = Field(default=None, description="Image of the PostgreSQL container, if found")
    pod_ip: Optional[str] = Field(default=None, description="Pod IP used to reach PostgreSQL")

    @classmethod
    def from_pod(cls, pod: Any, container_name: str) -> "Member":
        """Convert a kubernetes V1Pod into a Member."""
        image = None
        for container in (pod.spec.containers if pod.spec else None) or []:
            if container.name == container_name:
                image = container.image
                break

        return cls(
            name=pod.metadata.name,
            namespace=pod.metadata.namespace,
            image=image,
            pod_ip=pod.status.pod_ip if pod.status else None,
        )
