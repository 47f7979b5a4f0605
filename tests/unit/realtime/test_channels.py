"""Tests for realtime channels and mailboxes."""

import threading

from behavioral_engine.realtime import ChannelMessage, ChannelRegistry, Mailbox, MessageType


def message(message_type=MessageType.INTERVENTION_CREATED, **payload):
    return ChannelMessage(type=message_type, user_id="user-1", payload=payload)


class TestMailbox:
    """Bounded, latest-state-wins inbox."""

    def test_fifo(self):
        mailbox = Mailbox()
        mailbox.put(message(n=1))
        mailbox.put(message(n=2))

        assert mailbox.get(timeout=0).payload == {"n": 1}
        assert mailbox.get(timeout=0).payload == {"n": 2}
        assert mailbox.get(timeout=0) is None

    def test_risk_updates_coalesce(self):
        """Only the newest risk state is kept; other messages stay."""
        mailbox = Mailbox()
        mailbox.put(message(MessageType.RISK_STATE_UPDATED, score=10))
        mailbox.put(message(n=1))
        mailbox.put(message(MessageType.RISK_STATE_UPDATED, score=40))

        assert len(mailbox) == 2
        assert mailbox.get(timeout=0).payload == {"n": 1}
        assert mailbox.get(timeout=0).payload == {"score": 40}

    def test_full_drops_oldest(self):
        mailbox = Mailbox(maxsize=2)
        for n in range(3):
            mailbox.put(message(n=n))

        assert mailbox.dropped == 1
        assert [mailbox.get(timeout=0).payload["n"] for _ in range(2)] == [1, 2]

    def test_closed_rejects(self):
        mailbox = Mailbox()
        mailbox.close()
        assert mailbox.put(message()) is False
        assert mailbox.get(timeout=0) is None

    def test_get_wakes_on_put(self):
        """A blocked reader is woken by a publisher on another thread."""
        mailbox = Mailbox()
        received = []
        reader = threading.Thread(target=lambda: received.append(mailbox.get(timeout=5)))
        reader.start()
        mailbox.put(message(n=7))
        reader.join(timeout=5)

        assert received[0].payload == {"n": 7}


class TestChannelRegistry:
    """Per-user channels."""

    def test_publish_without_subscribers(self):
        """At-most-once: nobody listening means the message is gone."""
        registry = ChannelRegistry()
        assert registry.publish("user-1", MessageType.INTERVENTION_CREATED, {}) == 0
        assert registry.channel_count == 0

    def test_publish_reaches_every_subscriber(self):
        registry = ChannelRegistry()
        phone = registry.subscribe("user-1", "phone")
        tablet = registry.subscribe("user-1", "tablet")
        other = registry.subscribe("user-2")

        assert registry.publish("user-1", MessageType.INTERVENTION_CREATED, {"id": "i-1"}) == 2
        assert phone.get(timeout=0).payload == {"id": "i-1"}
        assert tablet.get(timeout=0).to_dict()["type"] == "intervention_created"
        assert other.get(timeout=0) is None

    def test_resubscribe_replaces(self):
        """Same subscriber id: the old subscription is closed."""
        registry = ChannelRegistry()
        old = registry.subscribe("user-1", "phone")
        new = registry.subscribe("user-1", "phone")

        assert old.active is False
        assert new.active is True
        assert registry.publish("user-1", MessageType.INTERVENTION_CREATED, {}) == 1

    def test_stale_unsubscribe_keeps_replacement(self):
        registry = ChannelRegistry()
        old = registry.subscribe("user-1", "phone")
        new = registry.subscribe("user-1", "phone")

        assert registry.unsubscribe(old) is False
        assert new.active is True
        assert registry.channel_count == 1

    def test_last_unsubscribe_removes_channel(self):
        registry = ChannelRegistry()
        subscription = registry.subscribe("user-1")

        assert registry.unsubscribe(subscription) is True
        assert subscription.active is False
        assert registry.channel_count == 0

    def test_close_all(self):
        registry = ChannelRegistry()
        subscriptions = [registry.subscribe(f"user-{n}") for n in range(3)]

        registry.close_all()

        assert registry.channel_count == 0
        assert not any(s.active for s in subscriptions)
