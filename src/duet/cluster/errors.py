"""Error taxonomy for cluster coordination.

Directory and channel failures are best effort: a failed call aborts the
current tick and the next periodic tick is the retry. Nothing here is
fatal to a running node.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class CoordinationError(Exception):
    """Base class for recoverable coordination failures."""

    # Recovery is the next tick of the periodic loop, never an inline retry
    retry_on_next_tick: bool = True

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        self.detail = detail
        message = f"{operation} failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class DirectoryUnavailable(CoordinationError):
    """A Shared Directory call failed (connection, timeout, server error)."""


class ChannelUnavailable(CoordinationError):
    """An Event Channel publish or subscribe call failed."""


class InconsistencyKind(str, Enum):
    """Kind of role-state inconsistency observed in the directory."""

    SAME_NODE_BOTH_ROLES = "same_node_both_roles"
    GENERATOR_OFFLINE = "generator_offline"
    HANDLER_OFFLINE = "handler_offline"
    HANDLER_WITHOUT_PEERS = "handler_without_peers"


@dataclass(frozen=True, slots=True)
class InconsistentRoleState:
    """Detected, never raised. The next election pass corrects it."""

    kind: InconsistencyKind
    node_id: str

    def __str__(self) -> str:
        return f"{self.kind.value} ({self.node_id})"
