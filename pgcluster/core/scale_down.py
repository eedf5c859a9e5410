"""
Scale-down of a PostgreSQL cluster.

Scale-up is handled by the provisioning side of the operator; this module only
removes members. One member is removed per reconciliation cycle, the one with
the highest name, so a scale-down undoes growth in reverse order.
"""
from typing import List, Optional, TYPE_CHECKING

from pgcluster.config.logging import get_logger
from pgcluster.core.ordering import get_sacrificial_member
from pgcluster.exceptions import DeleteError, StorageCleanupError
from pgcluster.models.cluster import Cluster, Member
from pgcluster.models.intent import RemoveMember
from pgcluster.services import metrics

if TYPE_CHECKING:
    from pgcluster.services.kubernetes_service import KubernetesService

logger = get_logger(__name__)


def plan_scale_down(cluster: Cluster, members: List[Member]) -> Optional[RemoveMember]:
    """
    Decide which member, if any, a scale-down removes.

    Args:
        cluster: Cluster carrying the target number of instances
        members: Members currently observed

    Returns:
        RemoveMember for the sacrificial member, or None when the cluster is
        not above its target size
    """
    if len(members) <= cluster.instances:
        return None

    sacrificial = get_sacrificial_member(members)
    if sacrificial is None:
        return None

    return RemoveMember(
        name=sacrificial.name,
        namespace=sacrificial.namespace,
        delete_storage=cluster.storage_enabled,
    )


class ScaleDownController:
    """Executes scale-down decisions against the Kubernetes API."""

    def __init__(self, kubernetes: "KubernetesService"):
        self.kubernetes = kubernetes

    async def scale_down(self, cluster: Cluster, members: List[Member]) -> Optional[RemoveMember]:
        """
        Remove one member if the cluster has more members than requested.

        The pod is deleted first. Its storage claim is deleted only after the
        pod delete succeeded, and only when the cluster uses persistent storage.

        Returns:
            The executed intent, or None when there was nothing to remove

        Raises:
            DeleteError: If the pod could not be deleted (storage untouched)
            StorageCleanupError: If the pod was deleted but its claim was not
        """
        intent = plan_scale_down(cluster, members)
        if intent is None:
            logger.info(
                "no_instances_to_sacrifice",
                cluster=cluster.name,
                namespace=cluster.namespace,
                members=len(members),
                instances=cluster.instances,
                message="Wait for the next sync loop",
            )
            return None

        logger.info(
            "scaling_down_deleting_instance",
            cluster=cluster.name,
            namespace=cluster.namespace,
            pod=intent.name,
            members=len(members),
            instances=cluster.instances,
        )

        try:
            await self.kubernetes.delete_member(intent.name, intent.namespace)
        except DeleteError as e:
            logger.error(
                "scale_down_pod_deletion_failed",
                cluster=cluster.name,
                namespace=cluster.namespace,
                pod=intent.name,
                error=e.reason,
            )
            raise

        metrics.member_deletions_total.labels(reason="scale_down").inc()

        if not intent.delete_storage:
            return intent

        try:
            await self.kubernetes.delete_storage_claim(intent.name, intent.namespace)
        except DeleteError as e:
            logger.error(
                "scale_down_pvc_deletion_failed",
                cluster=cluster.name,
                namespace=cluster.namespace,
                pvc=intent.name,
                error=e.reason,
            )
            raise StorageCleanupError(intent.name, e.reason) from e

        logger.info(
            "scale_down_pvc_deleted",
            cluster=cluster.name,
            namespace=cluster.namespace,
            pvc=intent.name,
        )
        return intent
