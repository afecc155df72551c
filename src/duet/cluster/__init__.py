"""Cluster coordination for Duet.

Provides the per-node coordination loop and its building blocks:
- Heartbeat-based membership tracking
- Deterministic generator/handler election
- NodeCoordinator wiring both to the directory and the event channel

Example:
    from duet.cluster import NodeCoordinator

    coordinator = NodeCoordinator(directory, channel)
    await coordinator.start()
"""

from duet.cluster.coordinator import (
    CoordinatorConfig,
    LocalView,
    NodeCoordinator,
    NodeSnapshot,
    NodeState,
    NodeStats,
)
from duet.cluster.election import RoleAssignment, elect, find_inconsistencies
from duet.cluster.errors import (
    ChannelUnavailable,
    CoordinationError,
    DirectoryUnavailable,
    InconsistencyKind,
    InconsistentRoleState,
)
from duet.cluster.membership import MembershipChange, MembershipTracker

__all__ = [
    # Coordinator
    "NodeCoordinator",
    "CoordinatorConfig",
    "LocalView",
    "NodeSnapshot",
    "NodeState",
    "NodeStats",
    # Election
    "RoleAssignment",
    "elect",
    "find_inconsistencies",
    # Membership
    "MembershipTracker",
    "MembershipChange",
    # Errors
    "CoordinationError",
    "DirectoryUnavailable",
    "ChannelUnavailable",
    "InconsistencyKind",
    "InconsistentRoleState",
]
