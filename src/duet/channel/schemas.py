"""Message schema for the event channel.

The generator publishes one Message per publish tick; the handler
consumes them. Messages are serialized to JSON with orjson.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from uuid import uuid4

import orjson


@dataclass(frozen=True, slots=True)
class Message:
    """A generated message."""

    sender: str
    sequence: int
    body: str
    message_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def generate(cls, sender: str, sequence: int) -> "Message":
        """Build the next message for a generator."""
        now = datetime.now(UTC)
        return cls(
            sender=sender,
            sequence=sequence,
            body=f"Message, {now.isoformat()}",
            timestamp=now,
        )


def serialize_message(message: Message) -> bytes:
    """Serialize a message to JSON bytes."""
    data = asdict(message)
    data["timestamp"] = message.timestamp.isoformat()
    return orjson.dumps(data)


def deserialize_message(data: bytes | str) -> Message:
    """Deserialize JSON bytes to a message.

    Raises:
        ValueError: If the payload is not a valid message.
    """
    try:
        parsed = orjson.loads(data)
    except orjson.JSONDecodeError as e:
        raise ValueError(f"Invalid message payload: {e}") from e

    if not isinstance(parsed, dict):
        raise ValueError("Invalid message payload: expected an object")

    try:
        return Message(
            sender=parsed["sender"],
            sequence=int(parsed["sequence"]),
            body=parsed["body"],
            message_id=parsed["message_id"],
            timestamp=datetime.fromisoformat(parsed["timestamp"]),
        )
    except (KeyError, TypeError) as e:
        raise ValueError(f"Invalid message payload: {e}") from e
