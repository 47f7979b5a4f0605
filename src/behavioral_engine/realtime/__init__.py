"""Realtime fan-out of risk and intervention changes."""

from behavioral_engine.realtime.channels import (
    ChannelMessage,
    ChannelRegistry,
    Mailbox,
    MessageType,
    Subscription,
    UserChannel,
)

__all__ = [
    "ChannelMessage",
    "ChannelRegistry",
    "Mailbox",
    "MessageType",
    "Subscription",
    "UserChannel",
]
