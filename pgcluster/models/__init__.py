from pgcluster.models.cluster import Cluster, ClusterStatus, MasterUpdateStrategy, Member
from pgcluster.models.intent import DesignatePrimary, Intent, RemoveMember
from pgcluster.models.replication import ClusterStatusSnapshot, ReplicationStatus

__all__ = [
    "Cluster",
    "ClusterStatus",
    "MasterUpdateStrategy",
    "Member",
    "DesignatePrimary",
    "Intent",
    "RemoveMember",
    "ClusterStatusSnapshot",
    "ReplicationStatus",
]
