"""
Status probing of cluster members over the PostgreSQL protocol.

Two connections are used per member: the application role only pings the
server, the superuser reads the replication state. Both are bounded by
settings.probe_timeout_seconds and always closed.
"""
import asyncio
from collections import Counter
from typing import List, Optional

import asyncpg

from pgcluster.config.logging import get_logger
from pgcluster.config.settings import Settings, settings as default_settings
from pgcluster.core.ordering import rank_statuses
from pgcluster.exceptions import ProbeError
from pgcluster.models.cluster import Member
from pgcluster.models.replication import ClusterStatusSnapshot, ReplicationStatus
from pgcluster.services import metrics

logger = get_logger(__name__)

# Errors that mean "this member could not be probed"
PROBE_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    asyncio.TimeoutError,
    ValueError,
)

SYSTEM_ID_QUERY = "SELECT system_identifier FROM pg_control_system()"
IS_PRIMARY_QUERY = "SELECT NOT pg_is_in_recovery()"
LSN_QUERY = (
    "SELECT pg_last_wal_receive_lsn()::text AS received_lsn, "
    "pg_last_wal_replay_lsn()::text AS replay_lsn"
)


class StatusProber:
    """Reads liveness and replication status from cluster members."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

    async def _connect(self, member: Member, user: str, password: Optional[str], database: str) -> asyncpg.Connection:
        if not member.pod_ip:
            raise ProbeError(member.name, "member has no pod IP")

        try:
            return await asyncpg.connect(
                host=member.pod_ip,
                port=self.settings.postgres_port,
                user=user,
                password=password,
                database=database,
                timeout=self.settings.probe_timeout_seconds,
            )
        except PROBE_ERRORS as e:
            raise ProbeError(member.name, f"connection failed: {e}") from e

    async def _close(self, member: Member, conn: asyncpg.Connection) -> None:
        try:
            await conn.close(timeout=self.settings.probe_timeout_seconds)
        except PROBE_ERRORS as e:
            logger.warning("probe_connection_close_failed", pod=member.name, error=str(e))
            conn.terminate()

    async def check_reachable(self, member: Member) -> None:
        """
        Check that a member accepts connections from the application role.

        Raises:
            ProbeError: If the connection or the ping fails
        """
        conn = await self._connect(
            member,
            self.settings.app_user,
            self.settings.app_password,
            self.settings.app_database,
        )
        try:
            await conn.fetchval("SELECT 1", timeout=self.settings.probe_timeout_seconds)
        except PROBE_ERRORS as e:
            raise ProbeError(member.name, f"ping failed: {e}") from e
        finally:
            await self._close(member, conn)

    async def read_status(self, member: Member) -> ReplicationStatus:
        """
        Read the replication status of a member.

        Followers also report their received and replayed WAL positions.

        Raises:
            ProbeError: If any query fails or returns an unusable value
        """
        conn = await self._connect(
            member,
            self.settings.superuser,
            self.settings.superuser_password,
            self.settings.superuser_database,
        )
        timeout = self.settings.probe_timeout_seconds
        try:
            system_id = await conn.fetchval(SYSTEM_ID_QUERY, timeout=timeout)
            if system_id is None:
                raise ProbeError(member.name, "no system identifier")

            is_primary = await conn.fetchval(IS_PRIMARY_QUERY, timeout=timeout)
            if is_primary is None:
                raise ProbeError(member.name, "no recovery state")

            received_lsn = None
            replay_lsn = None
            if not is_primary:
                row = await conn.fetchrow(LSN_QUERY, timeout=timeout)
                if row is None:
                    raise ProbeError(member.name, "no WAL positions")
                received_lsn = row["received_lsn"]
                replay_lsn = row["replay_lsn"]

            return ReplicationStatus(
                pod_name=member.name,
                system_id=str(system_id),
                is_primary=bool(is_primary),
                received_lsn=received_lsn,
                replay_lsn=replay_lsn,
            )
        except PROBE_ERRORS as e:
            # pydantic's ValidationError is a ValueError, so a bad LSN lands here too
            raise ProbeError(member.name, f"status query failed: {e}") from e
        finally:
            await self._close(member, conn)

    async def _probe(self, member: Member) -> Optional[ReplicationStatus]:
        try:
            await self.check_reachable(member)
        except ProbeError as e:
            metrics.probe_failures_total.labels(stage="reachable").inc()
            logger.warning("member_unreachable", pod=member.name, error=e.reason)
            return None

        try:
            return await self.read_status(member)
        except ProbeError as e:
            metrics.probe_failures_total.labels(stage="status").inc()
            logger.warning("member_status_unknown", pod=member.name, error=e.reason)
            return None

    async def build_snapshot(
        self, members: List[Member], current_primary: Optional[str] = None
    ) -> ClusterStatusSnapshot:
        """
        Probe all members concurrently and rank the answers.

        Members that fail a probe are left out: their status is unknown for
        this cycle. Members whose system identifier differs from the
        cluster's do not belong to this cluster and are left out as well.
        The cluster's identifier is the one of the recorded current primary
        if it answered as primary, else the one of any answering primary,
        else the most common one.
        """
        results = await asyncio.gather(*(self._probe(member) for member in members))
        statuses = [status for status in results if status is not None]

        if not statuses:
            return ClusterStatusSnapshot()

        primaries = [status for status in statuses if status.is_primary]
        recorded = [status for status in primaries if status.pod_name == current_primary]
        if recorded:
            reference_id = recorded[0].system_id
        elif primaries:
            reference_id = primaries[0].system_id
        else:
            reference_id = Counter(status.system_id for status in statuses).most_common(1)[0][0]

        matching = []
        for status in statuses:
            if status.system_id != reference_id:
                logger.warning(
                    "member_system_id_mismatch",
                    pod=status.pod_name,
                    system_id=status.system_id,
                    expected=reference_id,
                )
                continue
            matching.append(status)

        return ClusterStatusSnapshot(items=rank_statuses(matching))
