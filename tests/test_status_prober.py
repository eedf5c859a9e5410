"""
Tests for the member status prober.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import pytest

from pgcluster.config.settings import Settings
from pgcluster.exceptions import ProbeError
from pgcluster.services.status_prober import StatusProber
from tests.factories import follower_status, make_member, primary_status


def make_connection(fetchval=None, fetchrow=None):
    conn = MagicMock()
    conn.fetchval = AsyncMock(side_effect=fetchval or [])
    conn.fetchrow = AsyncMock(return_value=fetchrow)
    conn.close = AsyncMock()
    conn.terminate = MagicMock()
    return conn


@pytest.fixture
def prober():
    return StatusProber(Settings(probe_timeout_seconds=2.0, superuser_password="secret"))


@pytest.mark.asyncio
async def test_read_status_of_primary(prober):
    conn = make_connection(fetchval=[7001234567890, True])

    with patch("pgcluster.services.status_prober.asyncpg.connect", AsyncMock(return_value=conn)) as connect:
        status = await prober.read_status(make_member("pg-1", pod_ip="10.0.0.5"))

    assert status.pod_name == "pg-1"
    assert status.system_id == "7001234567890"
    assert status.is_primary is True
    assert status.received_lsn is None and status.replay_lsn is None
    conn.fetchrow.assert_not_called()
    conn.close.assert_awaited_once()

    kwargs = connect.await_args.kwargs
    assert kwargs["host"] == "10.0.0.5"
    assert kwargs["user"] == "postgres"
    assert kwargs["password"] == "secret"
    assert kwargs["timeout"] == 2.0


@pytest.mark.asyncio
async def test_read_status_of_follower(prober):
    conn = make_connection(
        fetchval=[7001, False],
        fetchrow={"received_lsn": "0/3000148", "replay_lsn": "0/3000060"},
    )

    with patch("pgcluster.services.status_prober.asyncpg.connect", AsyncMock(return_value=conn)):
        status = await prober.read_status(make_member("pg-2"))

    assert status.is_primary is False
    assert status.received_lsn == 0x3000148
    assert status.replay_lsn == 0x3000060


@pytest.mark.asyncio
async def test_read_status_follower_not_streaming(prober):
    conn = make_connection(fetchval=[7001, False], fetchrow={"received_lsn": None, "replay_lsn": None})

    with patch("pgcluster.services.status_prober.asyncpg.connect", AsyncMock(return_value=conn)):
        status = await prober.read_status(make_member("pg-2"))

    assert status.received_lsn is None


@pytest.mark.asyncio
async def test_read_status_query_failure(prober):
    conn = make_connection(fetchval=[7001, asyncpg.InterfaceError("cannot perform operation: connection is closed")])

    with patch("pgcluster.services.status_prober.asyncpg.connect", AsyncMock(return_value=conn)):
        with pytest.raises(ProbeError) as exc_info:
            await prober.read_status(make_member("pg-2"))

    assert exc_info.value.member == "pg-2"
    conn.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_read_status_partial_result(prober):
    conn = make_connection(fetchval=[None])

    with patch("pgcluster.services.status_prober.asyncpg.connect", AsyncMock(return_value=conn)):
        with pytest.raises(ProbeError, match="no system identifier"):
            await prober.read_status(make_member("pg-2"))

    conn.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_read_status_bad_lsn(prober):
    conn = make_connection(fetchval=[7001, False], fetchrow={"received_lsn": "nonsense", "replay_lsn": "0/1"})

    with patch("pgcluster.services.status_prober.asyncpg.connect", AsyncMock(return_value=conn)):
        with pytest.raises(ProbeError):
            await prober.read_status(make_member("pg-2"))


@pytest.mark.asyncio
async def test_connection_refused(prober):
    connect = AsyncMock(side_effect=ConnectionRefusedError("refused"))

    with patch("pgcluster.services.status_prober.asyncpg.connect", connect):
        with pytest.raises(ProbeError, match="connection failed"):
            await prober.check_reachable(make_member("pg-3"))


@pytest.mark.asyncio
async def test_connection_timeout(prober):
    connect = AsyncMock(side_effect=asyncio.TimeoutError())

    with patch("pgcluster.services.status_prober.asyncpg.connect", connect):
        with pytest.raises(ProbeError):
            await prober.read_status(make_member("pg-3"))


@pytest.mark.asyncio
async def test_member_without_ip(prober):
    with pytest.raises(ProbeError, match="no pod IP"):
        await prober.check_reachable(make_member("pg-3", pod_ip=None))


@pytest.mark.asyncio
async def test_check_reachable_uses_application_role(prober):
    conn = make_connection(fetchval=[1])

    with patch("pgcluster.services.status_prober.asyncpg.connect", AsyncMock(return_value=conn)) as connect:
        await prober.check_reachable(make_member("pg-1"))

    assert connect.await_args.kwargs["user"] == "app"
    assert connect.await_args.kwargs["database"] == "app"
    conn.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_close_failure_terminates_connection(prober):
    conn = make_connection(fetchval=[1])
    conn.close = AsyncMock(side_effect=asyncio.TimeoutError())

    with patch("pgcluster.services.status_prober.asyncpg.connect", AsyncMock(return_value=conn)):
        await prober.check_reachable(make_member("pg-1"))

    conn.terminate.assert_called_once()


@pytest.mark.asyncio
async def test_build_snapshot_ranks_and_drops_failures(prober):
    answers = {
        "pg-1": primary_status("pg-1"),
        "pg-2": follower_status("pg-2", replay=100),
        "pg-3": follower_status("pg-3", replay=300),
        "pg-4": ProbeError("pg-4", "refused"),
    }

    async def read_status(member):
        answer = answers[member.name]
        if isinstance(answer, Exception):
            raise answer
        return answer

    prober.check_reachable = AsyncMock()
    prober.read_status = read_status

    snapshot = await prober.build_snapshot([make_member(name) for name in answers])

    assert [s.pod_name for s in snapshot.items] == ["pg-1", "pg-3", "pg-2"]


@pytest.mark.asyncio
async def test_build_snapshot_skips_unreachable_members(prober):
    async def check_reachable(member):
        if member.name == "pg-2":
            raise ProbeError("pg-2", "ping failed")

    prober.check_reachable = check_reachable
    prober.read_status = AsyncMock(side_effect=lambda member: follower_status(member.name))

    snapshot = await prober.build_snapshot([make_member("pg-1"), make_member("pg-2")])

    assert [s.pod_name for s in snapshot.items] == ["pg-1"]


@pytest.mark.asyncio
async def test_build_snapshot_drops_foreign_system_id(prober):
    answers = {
        "pg-1": primary_status("pg-1", system_id="7001"),
        "pg-2": follower_status("pg-2", replay=900, system_id="9999"),
        "pg-3": follower_status("pg-3", replay=100, system_id="7001"),
    }
    prober.check_reachable = AsyncMock()
    prober.read_status = AsyncMock(side_effect=lambda member: answers[member.name])

    snapshot = await prober.build_snapshot([make_member(name) for name in answers])

    assert [s.pod_name for s in snapshot.items] == ["pg-1", "pg-3"]


@pytest.mark.asyncio
async def test_build_snapshot_without_primary_uses_majority_system_id(prober):
    answers = {
        "pg-1": follower_status("pg-1", system_id="7001"),
        "pg-2": follower_status("pg-2", system_id="7001"),
        "pg-3": follower_status("pg-3", system_id="9999"),
    }
    prober.check_reachable = AsyncMock()
    prober.read_status = AsyncMock(side_effect=lambda member: answers[member.name])

    snapshot = await prober.build_snapshot([make_member(name) for name in answers])

    assert sorted(s.pod_name for s in snapshot.items) == ["pg-1", "pg-2"]


@pytest.mark.asyncio
async def test_build_snapshot_of_nothing(prober):
    snapshot = await prober.build_snapshot([])
    assert len(snapshot) == 0


@pytest.mark.asyncio
async def test_build_snapshot_prefers_recorded_primary_system_id(prober):
    answers = {
        "pg-1": primary_status("pg-1", system_id="9999"),
        "pg-2": primary_status("pg-2", system_id="7001"),
        "pg-3": follower_status("pg-3", system_id="7001"),
    }
    prober.check_reachable = AsyncMock()
    prober.read_status = AsyncMock(side_effect=lambda member: answers[member.name])

    snapshot = await prober.build_snapshot([make_member(name) for name in answers], current_primary="pg-2")

    assert [s.pod_name for s in snapshot.items] == ["pg-2", "pg-3"]
