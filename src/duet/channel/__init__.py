"""Event channel backends and message schema.

The Redis backend lives in duet.channel.redis and is selected by
duet.runtime based on configuration.
"""

from duet.channel.base import EventChannel, InMemoryChannel, MessageCallback, Subscription
from duet.channel.schemas import Message, deserialize_message, serialize_message

__all__ = [
    "EventChannel",
    "InMemoryChannel",
    "MessageCallback",
    "Subscription",
    "Message",
    "serialize_message",
    "deserialize_message",
]
