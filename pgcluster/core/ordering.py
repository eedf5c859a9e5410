"""
Ordering and selection helpers shared by the lifecycle controllers.

Member names end in a serial number (cluster-1, cluster-2, ... cluster-10),
so names are compared with their digit runs as integers. This keeps
cluster-10 after cluster-9 and makes "highest name" mean "most recently
added member".
"""
import re
from typing import Iterable, List, Optional, Tuple

from pgcluster.models.cluster import Member
from pgcluster.models.replication import ReplicationStatus

_DIGITS = re.compile(r"(\d+)")


def name_sort_key(name: str) -> Tuple:
    """Natural sort key for a member name; total order over distinct names."""
    parts = _DIGITS.split(name)
    # Text parts sit at even indexes and digit runs at odd ones, so
    # element-wise comparison never mixes str and int.
    key = tuple(int(part) if idx % 2 else part for idx, part in enumerate(parts))
    return key, name


def sort_members_descending(members: Iterable[Member]) -> List[Member]:
    """Members ordered by name, highest first."""
    return sorted(members, key=lambda member: name_sort_key(member.name), reverse=True)


def get_sacrificial_member(members: Iterable[Member]) -> Optional[Member]:
    """The member a scale-down removes: the highest name, or None if there are no members."""
    ordered = sort_members_descending(members)
    return ordered[0] if ordered else None


def status_rank_key(status: ReplicationStatus) -> Tuple:
    """
    Sort key for replication statuses.

    Primaries come first. Followers follow by replayed position, then by
    received position, both descending with unknown positions last, and
    finally by name.
    """
    return (
        0 if status.is_primary else 1,
        status.replay_lsn is None,
        -(status.replay_lsn or 0),
        status.received_lsn is None,
        -(status.received_lsn or 0),
        name_sort_key(status.pod_name),
    )


def rank_statuses(statuses: Iterable[ReplicationStatus]) -> List[ReplicationStatus]:
    """Order statuses so that index 0 is the primary and index 1 the best candidate."""
    return sorted(statuses, key=status_rank_key)
