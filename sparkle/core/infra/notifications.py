"""
Notification and realtime sinks.

Both are fire-and-forget collaborators: the engine calls them only after a
transaction has committed, and a failing sink never undoes engine state.

The default implementations forward to the EventBus so that the host
application can attach delivery (email, push, websocket) as listeners:

- ``notification.created``   {"account_id", "kind", "payload", "created_at"}
- ``realtime.<event_name>``  {"account_id", "event", "payload"}
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Protocol

from sparkle.core.event.bus import EventBus
from sparkle.core.logging.logger import get_logger

if TYPE_CHECKING:
    from sparkle.core.database.unit_of_work import UnitOfWork

logger = get_logger(__name__)


class NotificationSink(Protocol):
    async def notify(self, account_id: int, kind: str, payload: Mapping[str, Any]) -> None: ...


class RealtimeSink(Protocol):
    async def emit(self, account_id: int, event_name: str, payload: Mapping[str, Any]) -> None: ...


class EventBusNotificationSink:
    EVENT_NAME = "notification.created"

    def __init__(self, event_bus: EventBus) -> None:
        self._events = event_bus

    async def notify(self, account_id: int, kind: str, payload: Mapping[str, Any]) -> None:
        data: Dict[str, Any] = {
            "account_id": account_id,
            "kind": kind,
            "payload": dict(payload),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        await self._events.publish(self.EVENT_NAME, data)
        logger.debug("Notification dispatched", extra={"account_id": account_id, "kind": kind})


class EventBusRealtimeSink:
    PREFIX = "realtime."

    def __init__(self, event_bus: EventBus) -> None:
        self._events = event_bus

    async def emit(self, account_id: int, event_name: str, payload: Mapping[str, Any]) -> None:
        await self._events.publish(
            f"{self.PREFIX}{event_name}",
            {"account_id": account_id, "event": event_name, "payload": dict(payload)},
        )


class SideEffectDispatcher:
    """
    Queues notification and realtime deliveries on a unit of work.

    Both sinks are invoked only after the transaction commits; a sink that
    raises is logged by the unit of work and never affects engine state.
    """

    def __init__(self, notifier: NotificationSink, realtime: RealtimeSink) -> None:
        self._notifier = notifier
        self._realtime = realtime

    def notify_after_commit(
        self,
        uow: "UnitOfWork",
        account_id: int,
        kind: str,
        payload: Mapping[str, Any],
        *,
        realtime_event: Optional[str] = None,
    ) -> None:
        frozen = dict(payload)

        async def _notify() -> None:
            await self._notifier.notify(account_id, kind, frozen)

        uow.after_commit(f"notify:{kind}", _notify)

        if realtime_event is not None:

            async def _emit() -> None:
                await self._realtime.emit(account_id, realtime_event, frozen)

            uow.after_commit(f"realtime:{realtime_event}", _emit)
