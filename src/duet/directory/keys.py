"""Directory key schema for Duet.

Key format:
- node:{node_id}:timestamp   heartbeat, value = last-seen epoch milliseconds
- generator                  id of the node allowed to publish
- handler                    id of the node allowed to consume

An optional prefix namespaces every key as "{prefix}:{key}" so several
clusters can share one Redis database.
"""

from __future__ import annotations

HEARTBEAT_PREFIX = "node"
HEARTBEAT_SUFFIX = "timestamp"


class DirectoryKeys:
    """Key generator for one cluster namespace."""

    def __init__(self, prefix: str = "") -> None:
        self.prefix = prefix.rstrip(":")

    def _qualify(self, key: str) -> str:
        if not self.prefix:
            return key
        return f"{self.prefix}:{key}"

    @property
    def generator(self) -> str:
        """Key holding the generator id."""
        return self._qualify("generator")

    @property
    def handler(self) -> str:
        """Key holding the handler id."""
        return self._qualify("handler")

    def heartbeat(self, node_id: str) -> str:
        """Key for a node's heartbeat timestamp."""
        return self._qualify(f"{HEARTBEAT_PREFIX}:{node_id}:{HEARTBEAT_SUFFIX}")

    @property
    def heartbeat_pattern(self) -> str:
        """Glob pattern matching every heartbeat key."""
        return self._qualify(f"{HEARTBEAT_PREFIX}:*:{HEARTBEAT_SUFFIX}")

    def parse_heartbeat(self, key: str | bytes) -> str | None:
        """Extract the node id from a heartbeat key.

        Returns:
            The node id, or None if the key is not a heartbeat key.
        """
        if isinstance(key, bytes):
            key = key.decode()

        head = self._qualify(f"{HEARTBEAT_PREFIX}:")
        tail = f":{HEARTBEAT_SUFFIX}"
        if not key.startswith(head) or not key.endswith(tail):
            return None

        node_id = key[len(head) : -len(tail)]
        return node_id or None
