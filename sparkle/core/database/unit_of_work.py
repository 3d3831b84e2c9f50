"""
UnitOfWork: one database transaction plus its deferred side effects.

Purpose
-------
Every gamification operation runs inside exactly one transaction. Anything
observable outside the store (event-bus publishes, notifications, realtime
pushes, audit records, cache invalidation) is registered on the unit of work
and dispatched only after the transaction commits. A rollback discards them.

Nesting
-------
Services accept an optional ``uow``. ``UnitOfWork.begin(outer)`` joins the
caller's unit of work when one is given, so composed operations (XP award
inside a quest claim inside a trade) share one atomic boundary and one
after-commit queue.

Conflict translation
--------------------
``StaleDataError`` (optimistic version mismatch) and unique-constraint
``IntegrityError`` raised inside the transaction surface as
``ConcurrencyConflictError``.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from sparkle.core.database.service import DatabaseService
from sparkle.core.logging.logger import get_logger
from sparkle.modules.shared.exceptions import ConcurrencyConflictError

logger = get_logger(__name__)

AfterCommitCallback = Callable[[], Awaitable[Any]]


class UnitOfWork:
    """
    Transaction handle shared by the services taking part in one operation.

    Example
    -------
    >>> async with UnitOfWork.begin() as uow:
    ...     account = await accounts.get_for_update(uow.session, 42)
    ...     account.sparkle_points += 10
    ...     uow.publish_after_commit(bus, "currency.changed", {"account_id": 42})
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.id = uuid.uuid4().hex[:12]
        self._after_commit: List[Tuple[str, AfterCommitCallback]] = []
        self._keys: Dict[str, int] = {}

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #

    def after_commit(
        self,
        label: str,
        callback: AfterCommitCallback,
        *,
        key: Optional[str] = None,
    ) -> None:
        """
        Queue ``callback`` to run after commit.

        Callbacks registered with the same ``key`` collapse to the first one.
        """
        if key is not None:
            if key in self._keys:
                return
            self._keys[key] = len(self._after_commit)
        self._after_commit.append((label, callback))

    def publish_after_commit(self, event_bus: Any, event_name: str, payload: Dict[str, Any]) -> None:
        data = dict(payload)

        async def _publish() -> Any:
            return await event_bus.publish(event_name, data)

        self.after_commit(event_name, _publish)

    @property
    def pending_count(self) -> int:
        return len(self._after_commit)

    # ------------------------------------------------------------------ #
    # Dispatch
    # ------------------------------------------------------------------ #

    async def _dispatch(self) -> None:
        callbacks, self._after_commit = self._after_commit, []
        self._keys.clear()

        for label, callback in callbacks:
            try:
                await callback()
            except Exception as exc:
                logger.error(
                    "After-commit side effect failed",
                    extra={
                        "uow_id": self.id,
                        "side_effect": label,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                    exc_info=True,
                )

        if callbacks:
            logger.debug(
                "After-commit side effects dispatched",
                extra={"uow_id": self.id, "count": len(callbacks)},
            )

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    @classmethod
    @asynccontextmanager
    async def begin(cls, outer: Optional["UnitOfWork"] = None) -> AsyncGenerator["UnitOfWork", None]:
        """
        Open a unit of work, or join ``outer`` when given.

        Raises
        ------
        ConcurrencyConflictError
            When the store detected a conflicting concurrent write.
        """
        if outer is not None:
            yield outer
            return

        try:
            async with DatabaseService.get_transaction() as session:
                uow = cls(session)
                yield uow
        except StaleDataError as exc:
            logger.warning(
                "Optimistic concurrency conflict; transaction rolled back",
                extra={"error": str(exc)},
            )
            raise ConcurrencyConflictError("row", None) from exc
        except IntegrityError as exc:
            if "unique" not in str(exc.orig).lower():
                raise
            logger.warning(
                "Unique constraint race; transaction rolled back",
                extra={"error": str(exc.orig)},
            )
            raise ConcurrencyConflictError("row", None) from exc

        await uow._dispatch()
