"""
Lifecycle decisions for PostgreSQL clusters.

This package holds the logic that decides which member to remove or replace:
- Ordering helpers shared by the controllers
- Scale-down of a cluster above its target size
- Rolling upgrade of a cluster to a new image
- Phases of the rolling upgrade across cycles
"""

# Import directly from submodules:
# from pgcluster.core.scale_down import ScaleDownController, plan_scale_down
# from pgcluster.core.rolling_upgrade import RollingUpgradeOrchestrator, plan_upgrade
# from pgcluster.core.state_machine import UpgradePhase, UpgradeStateMachine
