"""Realtime fan-out - per-user channels with latest-state-wins delivery.

Delivery is at-most-once. A message published while nobody is subscribed
is dropped, and nothing is replayed on reconnect: a reconnecting client
gets a fresh snapshot instead.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, Optional
from uuid import uuid4

from behavioral_engine.common.time import utc_now

logger = logging.getLogger(__name__)


class MessageType:
    INTERVENTION_CREATED = "intervention_created"
    RISK_STATE_UPDATED = "risk_state_updated"
    SNAPSHOT = "snapshot"


# Only the newest message of these types is worth delivering
COALESCED_TYPES = frozenset({MessageType.RISK_STATE_UPDATED})


@dataclass(frozen=True)
class ChannelMessage:
    type: str
    user_id: str
    payload: Dict[str, Any]
    sent_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "user_id": self.user_id,
            "payload": self.payload,
            "sent_at": self.sent_at.isoformat(),
        }


class Mailbox:
    """Bounded, thread-safe inbox for one subscriber.

    Coalesced message types replace any queued message of the same type.
    When full, the oldest message is dropped.
    """

    def __init__(self, maxsize: int = 32):
        self.maxsize = maxsize
        self._items: Deque[ChannelMessage] = deque()
        self._cond = threading.Condition()
        self._closed = False
        self.dropped = 0

    def put(self, message: ChannelMessage) -> bool:
        """Queue a message. Returns False once the mailbox is closed."""
        with self._cond:
            if self._closed:
                return False
            if message.type in COALESCED_TYPES:
                stale = [m for m in self._items if m.type == message.type]
                for m in stale:
                    self._items.remove(m)
            if len(self._items) >= self.maxsize:
                self._items.popleft()
                self.dropped += 1
            self._items.append(message)
            self._cond.notify()
            return True

    def get(self, timeout: Optional[float] = None) -> Optional[ChannelMessage]:
        """Next message, or None on timeout or close."""
        with self._cond:
            if not self._items and not self._closed:
                self._cond.wait(timeout)
            if self._items:
                return self._items.popleft()
            return None

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._items.clear()
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)


@dataclass
class Subscription:
    """A live subscriber on a user's channel."""
    user_id: str
    subscriber_id: str
    mailbox: Mailbox

    def get(self, timeout: Optional[float] = None) -> Optional[ChannelMessage]:
        return self.mailbox.get(timeout)

    @property
    def active(self) -> bool:
        return not self.mailbox.closed


class UserChannel:
    """All subscribers for one user, keyed by subscriber id."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        self._subscribers: Dict[str, Subscription] = {}
        self._lock = threading.Lock()

    def subscribe(self, subscriber_id: str, mailbox_size: int) -> Subscription:
        """Add a subscriber, replacing (and closing) one with the same id."""
        subscription = Subscription(self.user_id, subscriber_id, Mailbox(mailbox_size))
        with self._lock:
            previous = self._subscribers.get(subscriber_id)
            self._subscribers[subscriber_id] = subscription
        if previous is not None:
            previous.mailbox.close()
            logger.info(
                "Replaced realtime subscriber",
                extra={"user_id": self.user_id, "subscriber_id": subscriber_id},
            )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Remove ``subscription`` only if it is still the registered one.

        A stale connection cleaning up after a re-subscribe leaves the
        replacement alone.
        """
        with self._lock:
            current = self._subscribers.get(subscription.subscriber_id)
            removed = current is subscription
            if removed:
                del self._subscribers[subscription.subscriber_id]
        subscription.mailbox.close()
        return removed

    def publish(self, message: ChannelMessage) -> int:
        with self._lock:
            subscribers = list(self._subscribers.values())
        return sum(1 for s in subscribers if s.mailbox.put(message))

    def close(self) -> None:
        with self._lock:
            subscribers = list(self._subscribers.values())
            self._subscribers.clear()
        for s in subscribers:
            s.mailbox.close()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)


class ChannelRegistry:
    """One logical channel per user, created on first subscribe."""

    def __init__(self, mailbox_size: int = 32):
        self.mailbox_size = mailbox_size
        self._channels: Dict[str, UserChannel] = {}
        self._lock = threading.Lock()

    def channel(self, user_id: str) -> Optional[UserChannel]:
        with self._lock:
            return self._channels.get(user_id)

    def subscribe(self, user_id: str, subscriber_id: Optional[str] = None) -> Subscription:
        subscriber_id = subscriber_id or f"sub_{uuid4().hex[:12]}"
        with self._lock:
            channel = self._channels.get(user_id)
            if channel is None:
                channel = UserChannel(user_id)
                self._channels[user_id] = channel
            return channel.subscribe(subscriber_id, self.mailbox_size)

    def unsubscribe(self, subscription: Subscription) -> bool:
        with self._lock:
            channel = self._channels.get(subscription.user_id)
            if channel is None:
                subscription.mailbox.close()
                return False
            removed = channel.unsubscribe(subscription)
            if channel.subscriber_count == 0:
                del self._channels[subscription.user_id]
            return removed

    def publish(self, user_id: str, message_type: str, payload: Dict[str, Any]) -> int:
        """Push to every subscriber of the user. Never raises.

        Returns:
            Number of mailboxes the message reached.
        """
        try:
            channel = self.channel(user_id)
            if channel is None:
                return 0
            return channel.publish(ChannelMessage(type=message_type, user_id=user_id, payload=payload))
        except Exception as e:
            logger.error(
                f"Realtime publish failed: {e}",
                extra={"user_id": user_id, "message_type": message_type},
            )
            return 0

    def close_all(self) -> None:
        with self._lock:
            channels = list(self._channels.values())
            self._channels.clear()
        for channel in channels:
            channel.close()

    @property
    def channel_count(self) -> int:
        with self._lock:
            return len(self._channels)
