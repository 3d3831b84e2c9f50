"""
Event system with a process-wide EventBus instance.
"""

from .bus import EventBus
from .router import EventRouter
from .types import CallbackType, EventListener, EventPayload, ListenerPriority

event_bus = EventBus()

__all__ = [
    "event_bus",
    "EventBus",
    "EventRouter",
    "EventPayload",
    "ListenerPriority",
    "EventListener",
    "CallbackType",
]
