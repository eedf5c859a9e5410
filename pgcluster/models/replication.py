"""
Replication status models built from member probes.
"""
import re
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_LSN_PATTERN = re.compile(r"([0-9A-Fa-f]{1,8})/([0-9A-Fa-f]{1,8})")


def parse_lsn(value: str) -> int:
    """
    Parse a PostgreSQL LSN in its textual form.

    Args:
        value: LSN such as "0/3000148" (two hexadecimal halves)

    Returns:
        The 64-bit position as an integer

    Raises:
        ValueError: If the value is not a valid LSN
    """
    match = _LSN_PATTERN.fullmatch(value.strip())
    if match is None:
        raise ValueError(f"Invalid LSN: {value!r}")
    return (int(match.group(1), 16) << 32) | int(match.group(2), 16)


def format_lsn(position: int) -> str:
    """Format an integer position back to PostgreSQL's textual LSN form."""
    return f"{position >> 32:X}/{position & 0xFFFFFFFF:X}"


class ReplicationStatus(BaseModel):
    """Replication state of one member, as reported by the member itself."""

    model_config = ConfigDict(frozen=True)

    pod_name: str = Field(..., description="Member the status was read from")
    system_id: str = Field(..., description="PostgreSQL system identifier")
    is_primary: bool = Field(..., description="Member is accepting writes")
    received_lsn: Optional[int] = Field(default=None, description="Last WAL position received (followers)")
    replay_lsn: Optional[int] = Field(default=None, description="Last WAL position replayed (followers)")

    @field_validator("received_lsn", "replay_lsn", mode="before")
    @classmethod
    def parse_positions(cls, v: Any) -> Any:
        """Accept LSNs in PostgreSQL's textual form."""
        if isinstance(v, str):
            return parse_lsn(v)
        return v


class ClusterStatusSnapshot(BaseModel):
    """
    Ordered replication statuses of the members that answered a probe.

    Index 0 is the primary when it is reachable and index 1 is the best
    promotion candidate. The order is produced by
    pgcluster.core.ordering.rank_statuses.
    """

    model_config = ConfigDict(frozen=True)

    items: List[ReplicationStatus] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.items)

    def primary(self) -> Optional[ReplicationStatus]:
        """Status at index 0 if it reports itself as primary."""
        if self.items and self.items[0].is_primary:
            return self.items[0]
        return None

    def promotion_candidate(self) -> Optional[ReplicationStatus]:
        """Status at index 1, whatever it reports."""
        if len(self.items) >= 2:
            return self.items[1]
        return None

    def is_consistent_for_switchover(self) -> bool:
        """A switchover needs a second entry that is not itself a primary."""
        candidate = self.promotion_candidate()
        return candidate is not None and not candidate.is_primary

    def summary(self) -> List[dict]:
        """Compact representation for log events."""
        return [
            {
                "pod": item.pod_name,
                "primary": item.is_primary,
                "received_lsn": format_lsn(item.received_lsn) if item.received_lsn is not None else None,
                "replay_lsn": format_lsn(item.replay_lsn) if item.replay_lsn is not None else None,
            }
            for item in self.items
        ]
