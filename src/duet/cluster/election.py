"""Generator/handler election policy.

A pure function of (online nodes, current generator, current handler).
Every node runs it independently; because the tie-break is the smallest
eligible node id, nodes that see the same membership converge on the same
assignment without talking to each other.

Precedence:
1. Generator vacant or offline: re-elect it (clearing the handler when
   fewer than two nodes are online).
2. Handler vacant, offline, colliding with the generator, or fewer than
   two nodes online: re-elect or clear it.
3. Otherwise keep both roles.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from duet.cluster.errors import InconsistencyKind, InconsistentRoleState

# A handler needs someone else to be the generator
MIN_NODES_FOR_HANDLER = 2


@dataclass(frozen=True, slots=True)
class RoleAssignment:
    """Generator and handler ids (None when vacant)."""

    generator: str | None = None
    handler: str | None = None

    def changes(self, previous: RoleAssignment) -> set[str]:
        """Names of the roles that differ from previous."""
        changed = set()
        if self.generator != previous.generator:
            changed.add("generator")
        if self.handler != previous.handler:
            changed.add("handler")
        return changed


def _smallest_except(online: Iterable[str], excluded: str | None) -> str | None:
    candidates = sorted(node for node in online if node != excluded)
    return candidates[0] if candidates else None


def elect(
    online: Iterable[str],
    current_generator: str | None,
    current_handler: str | None,
) -> RoleAssignment:
    """Decide the role assignment for the given membership.

    Args:
        online: Ids of the nodes currently online
        current_generator: Generator id as last stored, or None
        current_handler: Handler id as last stored, or None

    Returns:
        The new RoleAssignment. Equal to the input roles when both are
        online and distinct.
    """
    nodes = frozenset(online)
    generator = current_generator
    handler = current_handler

    if generator not in nodes:
        if not nodes:
            return RoleAssignment()
        if len(nodes) == 1:
            return RoleAssignment(generator=next(iter(nodes)))
        generator = _smallest_except(nodes, handler)

    if len(nodes) < MIN_NODES_FOR_HANDLER:
        handler = None
    elif handler not in nodes or handler == generator:
        handler = _smallest_except(nodes, generator)

    return RoleAssignment(generator=generator, handler=handler)


def find_inconsistencies(
    online: Iterable[str],
    generator: str | None,
    handler: str | None,
) -> list[InconsistentRoleState]:
    """Report role entries that break the assignment invariants."""
    nodes = frozenset(online)
    found = []

    if generator is not None and generator == handler:
        found.append(InconsistentRoleState(InconsistencyKind.SAME_NODE_BOTH_ROLES, generator))
    if generator is not None and generator not in nodes:
        found.append(InconsistentRoleState(InconsistencyKind.GENERATOR_OFFLINE, generator))
    if handler is not None:
        if handler not in nodes:
            found.append(InconsistentRoleState(InconsistencyKind.HANDLER_OFFLINE, handler))
        elif len(nodes) < MIN_NODES_FOR_HANDLER:
            found.append(
                InconsistentRoleState(InconsistencyKind.HANDLER_WITHOUT_PEERS, handler)
            )

    return found
