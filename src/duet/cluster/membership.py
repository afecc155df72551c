"""Heartbeat-based membership tracking.

Every node writes node:{id}:timestamp each sync cycle. A node is online
while its heartbeat is younger than the expiry window. Whoever first
observes a stale heartbeat deletes it; concurrent trackers on other nodes
may repeat the delete, which is harmless.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from duet.directory.base import SharedDirectory
from duet.directory.keys import DirectoryKeys

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MembershipChange:
    """Result of one membership refresh."""

    online: frozenset[str]
    joined: frozenset[str]
    left: frozenset[str]


def parse_timestamp(value: str | None) -> int | None:
    """Parse a heartbeat value (epoch milliseconds)."""
    if value is None:
        return None
    try:
        return int(float(value))
    except (ValueError, OverflowError):
        return None


class MembershipTracker:
    """Computes the live node set from heartbeat entries.

    The tracker remembers the online set of its previous refresh to report
    joins and departures.
    """

    def __init__(self, keys: DirectoryKeys | None = None) -> None:
        self.keys = keys or DirectoryKeys()
        self._previous: frozenset[str] = frozenset()

    @property
    def online(self) -> frozenset[str]:
        """Online set as of the last successful refresh."""
        return self._previous

    async def refresh(
        self,
        directory: SharedDirectory,
        now: int,
        expiry_window: int,
        commit: bool = True,
    ) -> MembershipChange:
        """Scan heartbeats and garbage-collect stale ones.

        Args:
            directory: Shared directory to scan
            now: Current time in epoch milliseconds
            expiry_window: Heartbeats older than this (ms) are stale
            commit: Remember the result as the baseline for the next delta.
                Pass False and call commit() once the caller's own cycle
                has succeeded.

        Returns:
            MembershipChange with the online set and its delta since the
            previous refresh.

        Raises:
            DirectoryUnavailable: If a directory call fails. The previous
                online set is kept in that case.
        """
        online: set[str] = set()

        for key in await directory.list_keys(self.keys.heartbeat_pattern):
            node_id = self.keys.parse_heartbeat(key)
            if node_id is None:
                continue

            timestamp = parse_timestamp(await directory.get(key))
            if timestamp is not None and now - timestamp < expiry_window:
                online.add(node_id)
            else:
                await directory.delete(key)
                logger.debug(f"Removed stale heartbeat of {node_id}")

        current = frozenset(online)
        change = MembershipChange(
            online=current,
            joined=current - self._previous,
            left=self._previous - current,
        )
        if commit:
            self.commit(change)
        return change

    def commit(self, change: MembershipChange) -> None:
        """Make change the baseline for the next refresh."""
        self._previous = change.online
