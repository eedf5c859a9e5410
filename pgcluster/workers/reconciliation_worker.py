"""
Reconciliation worker for PostgreSQL clusters.

Runs periodically over every Cluster resource. For each cluster one cycle
lists the member pods and then either scales the cluster down or moves its
rolling upgrade one step forward. Clusters are reconciled one after the other,
so a cluster never has two cycles in flight.
"""
import asyncio
import time
from datetime import datetime
from typing import Dict, List, Optional

from pgcluster.config.logging import cluster_log_context, get_logger
from pgcluster.config.settings import settings
from pgcluster.core.rolling_upgrade import RollingUpgradeOrchestrator, primary_needs_upgrade
from pgcluster.core.scale_down import ScaleDownController
from pgcluster.core.state_machine import UpgradePhase, UpgradeStateMachine
from pgcluster.exceptions import (
    ClusterStatusConflictError,
    InconsistentClusterStatusError,
    PgClusterException,
    StorageCleanupError,
)
from pgcluster.models.cluster import Cluster
from pgcluster.models.replication import ClusterStatusSnapshot
from pgcluster.services import metrics
from pgcluster.services.kubernetes_service import KubernetesService
from pgcluster.services.status_prober import StatusProber

logger = get_logger(__name__)


def _phase_key(cluster: Cluster) -> str:
    return f"{cluster.namespace}/{cluster.name}"


class ReconciliationWorker:
    """
    Drives clusters toward their desired size and image.

    Features:
    - Periodic reconciliation (configurable interval)
    - Scale-down of clusters above their target size
    - Rolling upgrade, one member per cycle, with switchover of the primary
    - Per-cluster error isolation (one failing cluster does not stop the pass)
    - Graceful shutdown
    """

    def __init__(
        self,
        kubernetes: KubernetesService,
        prober: StatusProber,
        reconcile_interval: int = 30,
        error_backoff: int = 60,
        namespace: Optional[str] = None,
    ):
        """
        Initialize reconciliation worker.

        Args:
            kubernetes: Object-store collaborator
            prober: Member status prober
            reconcile_interval: Seconds between reconciliation passes
            error_backoff: Seconds to wait after a failed pass
            namespace: Namespace to reconcile (None for all namespaces)
        """
        self.kubernetes = kubernetes
        self.prober = prober
        self.scale_down_controller = ScaleDownController(kubernetes)
        self.upgrade_orchestrator = RollingUpgradeOrchestrator(kubernetes)
        self.reconcile_interval = reconcile_interval
        self.error_backoff = error_backoff
        self.namespace = namespace
        self.running = False
        self.last_pass_completed_at: Optional[datetime] = None
        self._phases: Dict[str, UpgradePhase] = {}
        self._sleep_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, kubernetes: KubernetesService, prober: StatusProber) -> "ReconciliationWorker":
        """Build a worker configured from the global settings."""
        return cls(
            kubernetes,
            prober,
            reconcile_interval=settings.reconcile_interval,
            error_backoff=settings.reconcile_error_backoff,
            namespace=settings.watch_namespace,
        )

    async def start(self):
        """Start reconciliation worker (runs until stopped)."""
        self.running = True

        logger.info(
            "reconciliation_worker_started",
            interval_seconds=self.reconcile_interval,
            namespace=self.namespace,
        )

        while self.running:
            try:
                await self.reconcile_all_clusters()
                self.last_pass_completed_at = datetime.utcnow()

                logger.info(
                    "reconciliation_pass_completed",
                    next_run_in_seconds=self.reconcile_interval,
                )
                delay = self.reconcile_interval

            except asyncio.CancelledError:
                logger.info("reconciliation_worker_cancelled")
                break
            except Exception as e:
                logger.error(
                    "reconciliation_pass_error",
                    error=str(e),
                    exc_info=True,
                )
                delay = self.error_backoff

            if not self.running:
                break
            # Wait before next pass (with cancellation support)
            try:
                self._sleep_task = asyncio.create_task(asyncio.sleep(delay))
                await self._sleep_task
            except asyncio.CancelledError:
                logger.info("reconciliation_sleep_cancelled")
                break
            finally:
                self._sleep_task = None

        self.running = False
        logger.info("reconciliation_worker_stopped")

    async def stop(self):
        """Stop reconciliation worker gracefully."""
        logger.info("stopping_reconciliation_worker")
        self.running = False

        # Cancel sleep task if running
        if self._sleep_task and not self._sleep_task.done():
            self._sleep_task.cancel()
            try:
                await self._sleep_task
            except asyncio.CancelledError:
                pass

    async def reconcile_all_clusters(self):
        """
        Reconcile every cluster once.

        Errors of a single cluster are logged and counted; the pass goes on
        with the next cluster and the failed one is retried next pass.
        """
        clusters = await self.kubernetes.list_clusters(self.namespace)
        self._forget_removed_clusters(clusters)
        if not clusters:
            logger.debug("no_clusters_found", namespace=self.namespace)
            return

        logger.info("reconciliation_started", cluster_count=len(clusters))

        for cluster in clusters:
            try:
                with cluster_log_context(cluster.name, cluster.namespace):
                    await self.reconcile_cluster(cluster)
            except (InconsistentClusterStatusError, ClusterStatusConflictError, StorageCleanupError) as e:
                # Expected transient conditions, retried with fresh state next pass
                metrics.reconcile_errors_total.labels(error=type(e).__name__).inc()
                logger.warning(
                    "reconciliation_deferred",
                    cluster=cluster.name,
                    namespace=cluster.namespace,
                    error=e.message,
                    details=e.details,
                )
            except PgClusterException as e:
                metrics.reconcile_errors_total.labels(error=type(e).__name__).inc()
                logger.error(
                    "reconciliation_failed_for_cluster",
                    cluster=cluster.name,
                    namespace=cluster.namespace,
                    error=e.message,
                    details=e.details,
                )
            except Exception as e:
                metrics.reconcile_errors_total.labels(error=type(e).__name__).inc()
                logger.error(
                    "reconciliation_failed_for_cluster",
                    cluster=cluster.name,
                    namespace=cluster.namespace,
                    error=str(e),
                    exc_info=True,
                )

    async def reconcile_cluster(self, cluster: Cluster) -> str:
        """
        Run one reconciliation cycle for a cluster.

        Returns:
            The outcome of the cycle, also used as the metrics label

        Raises:
            PgClusterException: Any lifecycle error, unchanged
        """
        started = time.monotonic()
        try:
            outcome = await self._reconcile_cluster(cluster)
        finally:
            metrics.reconcile_duration_seconds.observe(time.monotonic() - started)

        metrics.reconcile_total.labels(outcome=outcome).inc()
        logger.debug(
            "cluster_reconciled",
            cluster=cluster.name,
            namespace=cluster.namespace,
            outcome=outcome,
        )
        return outcome

    async def _reconcile_cluster(self, cluster: Cluster) -> str:
        members = await self.kubernetes.list_members(cluster)

        if len(members) > cluster.instances:
            intent = await self.scale_down_controller.scale_down(cluster, members)
            return "scaled_down" if intent else "noop"

        if len(members) < cluster.instances:
            logger.info(
                "waiting_for_instances",
                cluster=cluster.name,
                namespace=cluster.namespace,
                members=len(members),
                instances=cluster.instances,
            )
            return "waiting_for_instances"

        # Probing is only needed when the primary itself must be switched over
        snapshot = ClusterStatusSnapshot()
        if primary_needs_upgrade(cluster, members):
            snapshot = await self.prober.build_snapshot(members, cluster.status.current_primary)

        key = _phase_key(cluster)
        previous_phase = self._phases.get(key)
        plan = await self.upgrade_orchestrator.upgrade(cluster, members, snapshot, previous_phase)

        UpgradeStateMachine.check_transition(key, previous_phase, plan.phase)
        self._phases[key] = plan.phase
        return plan.phase.value

    def _forget_removed_clusters(self, clusters: List[Cluster]):
        """Drop remembered phases of clusters that no longer exist."""
        present = {_phase_key(cluster) for cluster in clusters}
        for key in set(self._phases) - present:
            del self._phases[key]

    @property
    def is_ready(self) -> bool:
        """True once a full pass has completed."""
        return self.last_pass_completed_at is not None
