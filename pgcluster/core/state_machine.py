"""
Rolling Upgrade State Machine

This module names the phases a cluster goes through while a new image is
rolled out, and which phase may follow which between two reconciliation
cycles.

Phases:
- CONVERGED: every member runs the target image
- REPLACING_FOLLOWER: a stale follower has been deleted to be recreated
- AWAITING_MANUAL_SWITCHOVER: only the primary is stale and the cluster is
  supervised, so an operator has to issue the switchover
- SWITCHOVER_INITIATED: only the primary is stale and a follower has been
  designated as the new primary
- REPLACING_AUTHORITY: the former primary, now a follower, has been deleted

Usage:
    >>> from pgcluster.core.state_machine import UpgradePhase, UpgradeStateMachine
    >>>
    >>> UpgradeStateMachine.can_transition(
    ...     UpgradePhase.SWITCHOVER_INITIATED,
    ...     UpgradePhase.REPLACING_AUTHORITY
    ... )
    True
"""

from enum import Enum
from typing import Dict, Set, Optional
import structlog

logger = structlog.get_logger(__name__)


class UpgradePhase(str, Enum):
    """Rolling upgrade phases of a cluster"""
    CONVERGED = "converged"
    REPLACING_FOLLOWER = "replacing_follower"
    AWAITING_MANUAL_SWITCHOVER = "awaiting_manual_switchover"
    SWITCHOVER_INITIATED = "switchover_initiated"
    REPLACING_AUTHORITY = "replacing_authority"


class UpgradeStateMachine:
    """
    Transition table of the rolling upgrade.

    Used by the reconciliation worker to flag unexpected jumps between
    cycles. It never blocks a decision: the observed cluster state always
    wins over the remembered phase.
    """

    # Every phase may also stay where it is.
    TRANSITIONS: Dict[UpgradePhase, Set[UpgradePhase]] = {
        UpgradePhase.CONVERGED: {
            UpgradePhase.REPLACING_FOLLOWER,          # New image, stale follower
            UpgradePhase.AWAITING_MANUAL_SWITCHOVER,  # Only the primary is stale, supervised
            UpgradePhase.SWITCHOVER_INITIATED,        # Only the primary is stale, unsupervised
        },
        UpgradePhase.REPLACING_FOLLOWER: {
            UpgradePhase.CONVERGED,                   # Last stale member replaced
            UpgradePhase.AWAITING_MANUAL_SWITCHOVER,  # Followers done, primary left
            UpgradePhase.SWITCHOVER_INITIATED,        # Followers done, primary left
        },
        UpgradePhase.AWAITING_MANUAL_SWITCHOVER: {
            UpgradePhase.REPLACING_AUTHORITY,         # Operator switched over
            UpgradePhase.SWITCHOVER_INITIATED,        # Strategy changed to unsupervised
            UpgradePhase.CONVERGED,                   # Target image reverted
        },
        UpgradePhase.SWITCHOVER_INITIATED: {
            UpgradePhase.REPLACING_AUTHORITY,         # Handoff completed
            UpgradePhase.AWAITING_MANUAL_SWITCHOVER,  # Strategy changed to supervised
            UpgradePhase.CONVERGED,                   # Target image reverted
        },
        UpgradePhase.REPLACING_AUTHORITY: {
            UpgradePhase.CONVERGED,                   # Former primary recreated
        },
    }

    @classmethod
    def can_transition(cls, from_phase: UpgradePhase, to_phase: UpgradePhase) -> bool:
        """
        Check if a transition between two cycles is expected.

        Args:
            from_phase: Phase reached by the previous cycle
            to_phase: Phase reached by the current cycle

        Returns:
            True if the transition is expected, False otherwise
        """
        if from_phase == to_phase:
            return True
        return to_phase in cls.TRANSITIONS.get(from_phase, set())

    @classmethod
    def check_transition(
        cls,
        cluster: str,
        from_phase: Optional[UpgradePhase],
        to_phase: UpgradePhase,
    ) -> bool:
        """
        Log a warning when a cluster jumps between phases unexpectedly.

        A cluster seen for the first time (from_phase is None) may start in
        any phase, since the operator may have been restarted mid-upgrade.

        Returns:
            True if the transition was expected
        """
        if from_phase is None:
            return True

        if cls.can_transition(from_phase, to_phase):
            if from_phase != to_phase:
                logger.info(
                    "upgrade_phase_changed",
                    cluster=cluster,
                    from_phase=from_phase.value,
                    to_phase=to_phase.value,
                )
            return True

        logger.warning(
            "unexpected_upgrade_phase_transition",
            cluster=cluster,
            from_phase=from_phase.value,
            to_phase=to_phase.value,
            allowed=[p.value for p in cls.TRANSITIONS.get(from_phase, set())],
        )
        return False
