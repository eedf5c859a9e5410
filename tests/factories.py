"""
Test doubles and builders shared by the test modules.
"""
from typing import Dict, List, Optional, Tuple

from pgcluster.exceptions import ClusterStatusConflictError, DeleteError
from pgcluster.models.cluster import Cluster, ClusterStatus, MasterUpdateStrategy, Member
from pgcluster.models.replication import ClusterStatusSnapshot, ReplicationStatus

OLD_IMAGE = "postgres:15.4"
NEW_IMAGE = "postgres:16.1"


class FakeKubernetes:
    """In-memory stand-in for KubernetesService that records every call."""

    def __init__(self):
        self.calls: List[Tuple] = []
        self.clusters: List[Cluster] = []
        self.members: Dict[str, List[Member]] = {}
        self.fail_pod_delete: Optional[str] = None
        self.fail_pvc_delete: Optional[str] = None
        self.conflict_on_update = False

    async def list_clusters(self, namespace=None):
        self.calls.append(("list_clusters", namespace))
        return list(self.clusters)

    async def list_members(self, cluster):
        self.calls.append(("list_members", cluster.name))
        return list(self.members.get(cluster.name, []))

    async def delete_member(self, name, namespace):
        self.calls.append(("delete_member", name, namespace))
        if self.fail_pod_delete:
            raise DeleteError("pod", name, self.fail_pod_delete)

    async def delete_storage_claim(self, name, namespace):
        self.calls.append(("delete_storage_claim", name, namespace))
        if self.fail_pvc_delete:
            raise DeleteError("pvc", name, self.fail_pvc_delete)

    async def update_cluster_status(self, cluster, **fields):
        self.calls.append(("update_cluster_status", cluster.name, fields))
        if self.conflict_on_update:
            raise ClusterStatusConflictError(cluster.name, cluster.namespace)
        return cluster.with_status(**fields)

    def calls_named(self, name: str) -> List[Tuple]:
        return [call for call in self.calls if call[0] == name]


def make_cluster(
    instances: int = 3,
    image: str = NEW_IMAGE,
    primary: Optional[str] = "pg-1",
    target_primary: Optional[str] = None,
    strategy: MasterUpdateStrategy = MasterUpdateStrategy.UNSUPERVISED,
    storage: bool = True,
    name: str = "pg",
) -> Cluster:
    return Cluster(
        name=name,
        namespace="db",
        image_name=image,
        instances=instances,
        master_update_strategy=strategy,
        storage_enabled=storage,
        resource_version="42",
        status=ClusterStatus(
            current_primary=primary,
            target_primary=target_primary if target_primary is not None else primary,
        ),
    )


def make_member(name: str, image: Optional[str] = NEW_IMAGE, pod_ip: Optional[str] = "10.0.0.1") -> Member:
    return Member(name=name, namespace="db", image=image, pod_ip=pod_ip)


def make_snapshot(*statuses: ReplicationStatus) -> ClusterStatusSnapshot:
    return ClusterStatusSnapshot(items=list(statuses))


def primary_status(name: str, system_id: str = "7001") -> ReplicationStatus:
    return ReplicationStatus(pod_name=name, system_id=system_id, is_primary=True)


def follower_status(name: str, replay: int = 100, received: Optional[int] = None, system_id: str = "7001") -> ReplicationStatus:
    return ReplicationStatus(
        pod_name=name,
        system_id=system_id,
        is_primary=False,
        received_lsn=received if received is not None else replay,
        replay_lsn=replay,
    )

