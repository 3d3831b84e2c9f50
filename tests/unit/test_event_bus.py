"""
Unit tests for the EventBus.

Tests subscription rules, wildcard routing, priorities, once-listeners and
failure isolation.
"""

import pytest

from sparkle.core.event.bus import EventBus
from sparkle.core.event.types import ListenerPriority


@pytest.mark.unit
class TestSubscription:
    """Test listener registration."""

    def test_callback_must_take_one_argument(self):
        """Listeners receive exactly one payload argument."""
        bus = EventBus()

        def two_args(payload, extra):
            return None

        with pytest.raises(ValueError):
            bus.subscribe("level.up", two_args)

    def test_duplicate_identifier_ignored(self):
        bus = EventBus()

        bus.subscribe("level.up", lambda payload: None, identifier="same")
        bus.subscribe("level.up", lambda payload: None, identifier="same")

        assert bus.get_listener_count("level.up") == 1

    def test_unsubscribe(self):
        bus = EventBus()
        bus.subscribe("level.up", lambda payload: None, identifier="listener")

        assert bus.unsubscribe("level.up", "listener") is True
        assert bus.unsubscribe("level.up", "listener") is False
        assert bus.get_listener_count() == 0


@pytest.mark.unit
class TestPublish:
    """Test delivery semantics."""

    async def test_exact_and_wildcard_listeners_receive_event(self):
        """A payload reaches exact, prefix-wildcard and catch-all listeners."""
        # Arrange
        bus = EventBus()
        received = []
        bus.subscribe("realtime.level:up", lambda p: received.append("exact"), identifier="a")
        bus.subscribe("realtime.*", lambda p: received.append("prefix"), identifier="b")
        bus.subscribe("*", lambda p: received.append("all"), identifier="c")
        bus.subscribe("notification.created", lambda p: received.append("other"), identifier="d")

        # Act
        await bus.publish("realtime.level:up", {"account_id": 1})

        # Assert
        assert sorted(received) == ["all", "exact", "prefix"]

    async def test_priorities_run_in_order(self):
        bus = EventBus()
        order = []
        bus.subscribe("x", lambda p: order.append("normal"), priority=ListenerPriority.NORMAL, identifier="n")
        bus.subscribe("x", lambda p: order.append("critical"), priority=ListenerPriority.CRITICAL, identifier="c")
        bus.subscribe("x", lambda p: order.append("high"), priority=ListenerPriority.HIGH, identifier="h")

        await bus.publish("x", {})

        assert order == ["critical", "high", "normal"]

    async def test_results_returned_and_failures_isolated(self):
        """A failing listener contributes None without stopping the others."""
        bus = EventBus()

        def broken(payload):
            raise RuntimeError("listener bug")

        async def doubled(payload):
            return payload["value"] * 2

        bus.subscribe("x", broken, priority=ListenerPriority.HIGH, identifier="broken")
        bus.subscribe("x", doubled, identifier="doubled")

        results = await bus.publish("x", {"value": 21})

        assert results == [None, 42]
        assert bus.get_metrics_summary()["total_errors"] == 1

    async def test_once_listener_runs_once(self):
        bus = EventBus()
        calls = []
        bus.subscribe("x", lambda p: calls.append(p), once=True, identifier="once")

        await bus.publish("x", {"n": 1})
        await bus.publish("x", {"n": 2})

        assert calls == [{"n": 1}]

    async def test_low_priority_is_fire_and_forget(self):
        """LOW listeners run in the background and contribute no result."""
        bus = EventBus()
        calls = []

        async def audit(payload):
            calls.append(payload)
            return "ignored"

        bus.subscribe("x", audit, priority=ListenerPriority.LOW, identifier="audit")

        results = await bus.publish("x", {"n": 1})
        await bus.drain()

        assert results == []
        assert calls == [{"n": 1}]
