"""
Rolling upgrade of a PostgreSQL cluster to a new image.

At most one member is acted upon per reconciliation cycle. Followers are
replaced first, in descending name order; deleting a pod lets the
provisioning side recreate it with the target image on the same storage.
The primary is never deleted while it is the primary: it is first demoted
through a switchover, either issued by an operator (supervised clusters) or
initiated here (unsupervised clusters), and replaced in a later cycle once
it has become a follower.
"""
from typing import List, Optional, Union, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

from pgcluster.config.logging import get_logger
from pgcluster.core.ordering import sort_members_descending
from pgcluster.core.state_machine import UpgradePhase
from pgcluster.exceptions import DeleteError, InconsistentClusterStatusError
from pgcluster.models.cluster import Cluster, MasterUpdateStrategy, Member
from pgcluster.models.intent import DesignatePrimary, RemoveMember
from pgcluster.models.replication import ClusterStatusSnapshot
from pgcluster.services import metrics

if TYPE_CHECKING:
    from pgcluster.services.kubernetes_service import KubernetesService

logger = get_logger(__name__)

# Phases after which a stale follower is the former primary
_HANDOFF_PHASES = {
    UpgradePhase.AWAITING_MANUAL_SWITCHOVER,
    UpgradePhase.SWITCHOVER_INITIATED,
    UpgradePhase.REPLACING_AUTHORITY,
}


class UpgradePlan(BaseModel):
    """Outcome of one upgrade decision: the phase reached and at most one intent."""

    model_config = ConfigDict(frozen=True)

    phase: UpgradePhase
    intent: Optional[Union[RemoveMember, DesignatePrimary]] = None


def is_stale(cluster: Cluster, member: Member) -> bool:
    """True if the member's image is known and differs from the target image."""
    return member.image is not None and member.image != cluster.image_name


def primary_needs_upgrade(cluster: Cluster, members: List[Member]) -> bool:
    """True if the current primary is among the members and runs a stale image."""
    return any(
        member.name == cluster.status.current_primary and is_stale(cluster, member)
        for member in members
    )


def plan_upgrade(
    cluster: Cluster,
    members: List[Member],
    snapshot: ClusterStatusSnapshot,
    previous_phase: Optional[UpgradePhase] = None,
) -> UpgradePlan:
    """
    Decide the next step of the rolling upgrade.

    Args:
        cluster: Cluster with the target image, strategy and primary
        members: Members currently observed
        snapshot: Ranked replication statuses; only read when the primary
            itself has to be switched over
        previous_phase: Phase reached by the previous cycle, if known

    Returns:
        UpgradePlan with the phase reached and the intent to execute

    Raises:
        InconsistentClusterStatusError: If an automatic switchover is due but
            the snapshot cannot name a safe promotion candidate
    """
    primary_member: Optional[Member] = None

    for member in sort_members_descending(members):
        if member.image is None:
            logger.error(
                "member_image_unknown",
                cluster=cluster.name,
                namespace=cluster.namespace,
                pod=member.name,
            )
            continue

        if not is_stale(cluster, member):
            continue

        if member.name == cluster.status.current_primary:
            # The primary cannot be upgraded on the fly
            primary_member = member
            continue

        phase = UpgradePhase.REPLACING_FOLLOWER
        if previous_phase in _HANDOFF_PHASES:
            phase = UpgradePhase.REPLACING_AUTHORITY
        return UpgradePlan(
            phase=phase,
            intent=RemoveMember(name=member.name, namespace=member.namespace, delete_storage=False),
        )

    if primary_member is None:
        return UpgradePlan(phase=UpgradePhase.CONVERGED)

    if cluster.master_update_strategy == MasterUpdateStrategy.SUPERVISED:
        logger.info(
            "waiting_for_manual_switchover",
            cluster=cluster.name,
            namespace=cluster.namespace,
            primary=primary_member.name,
            message="Waiting for the user to issue a switchover to complete the rolling update",
        )
        return UpgradePlan(phase=UpgradePhase.AWAITING_MANUAL_SWITCHOVER)

    if not snapshot.is_consistent_for_switchover():
        raise InconsistentClusterStatusError(
            details={
                "cluster": cluster.name,
                "namespace": cluster.namespace,
                "primary": primary_member.name,
                "status": snapshot.summary(),
            },
        )

    candidate = snapshot.items[1]
    member_names = {member.name for member in members}
    if (
        cluster.switchover_pending
        and cluster.status.target_primary in member_names
        and cluster.status.target_primary == candidate.pod_name
    ):
        logger.info(
            "waiting_for_switchover_completion",
            cluster=cluster.name,
            namespace=cluster.namespace,
            current_primary=cluster.status.current_primary,
            target_primary=cluster.status.target_primary,
        )
        return UpgradePlan(phase=UpgradePhase.SWITCHOVER_INITIATED)

    logger.info(
        "switching_over_to_replica",
        cluster=cluster.name,
        namespace=cluster.namespace,
        old_primary=cluster.status.current_primary,
        new_primary=candidate.pod_name,
        status=snapshot.summary(),
        message="Switching over to a replica to complete the rolling update",
    )
    return UpgradePlan(
        phase=UpgradePhase.SWITCHOVER_INITIATED,
        intent=DesignatePrimary(
            cluster=cluster.name,
            namespace=cluster.namespace,
            pod_name=candidate.pod_name,
        ),
    )


class RollingUpgradeOrchestrator:
    """Executes rolling upgrade decisions against the Kubernetes API."""

    def __init__(self, kubernetes: "KubernetesService"):
        self.kubernetes = kubernetes

    async def upgrade(
        self,
        cluster: Cluster,
        members: List[Member],
        snapshot: ClusterStatusSnapshot,
        previous_phase: Optional[UpgradePhase] = None,
    ) -> UpgradePlan:
        """
        Bring at most one member onto the target image.

        Deleting a member never touches its storage claim: the replacement
        reuses it. Designating a new primary never deletes anything.

        Raises:
            InconsistentClusterStatusError: If no safe promotion candidate exists
            DeleteError: If the stale member could not be deleted
            ClusterStatusConflictError: If the cluster changed while designating
        """
        plan = plan_upgrade(cluster, members, snapshot, previous_phase)
        intent = plan.intent

        if isinstance(intent, RemoveMember):
            logger.info(
                "deleting_old_pod",
                cluster=cluster.name,
                namespace=cluster.namespace,
                pod=intent.name,
                to=cluster.image_name,
                phase=plan.phase.value,
            )
            try:
                await self.kubernetes.delete_member(intent.name, intent.namespace)
            except DeleteError as e:
                logger.error(
                    "upgrade_pod_deletion_failed",
                    cluster=cluster.name,
                    namespace=cluster.namespace,
                    pod=intent.name,
                    error=e.reason,
                )
                raise
            metrics.member_deletions_total.labels(reason="upgrade").inc()

        elif isinstance(intent, DesignatePrimary):
            await self.kubernetes.update_cluster_status(cluster, target_primary=intent.pod_name)
            metrics.switchovers_total.inc()

        return plan
