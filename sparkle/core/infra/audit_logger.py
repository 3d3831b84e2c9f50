"""
Audit trail producer.

Purpose
-------
Publishes one structured audit event per committed balance, XP, inventory or
trade mutation. This module is a pure event producer: persistence or
shipping to an external store is left to subscribers of
``audit.transaction.logged``.

Canonical Event Shape
---------------------
{
    "timestamp": str,          # ISO8601 UTC
    "account_id": int,
    "transaction_type": str,   # e.g. "currency_spent", "xp_awarded"
    "details": dict,
    "context": str,            # originating operation
    "meta": dict,
}

Audit failures never propagate to the caller.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

from sparkle.core.event.bus import EventBus
from sparkle.core.logging.logger import get_logger

if TYPE_CHECKING:
    from sparkle.core.database.unit_of_work import UnitOfWork

logger = get_logger(__name__)


@dataclass
class AuditMetrics:
    events_emitted: int = 0
    publish_errors: int = 0
    total_log_time_ms: float = 0.0


_metrics = AuditMetrics()


class AuditLogger:
    """Classmethod-only audit producer."""

    EVENT_NAME = "audit.transaction.logged"

    @classmethod
    async def log(
        cls,
        *,
        event_bus: EventBus,
        account_id: int,
        transaction_type: str,
        details: Mapping[str, Any],
        context: Optional[str] = None,
        meta: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Publish an audit event now. Publish failures are logged, not raised."""
        start_time = time.perf_counter()
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "account_id": int(account_id),
            "transaction_type": transaction_type,
            "details": dict(details),
            "context": context or "unknown",
            "meta": dict(meta) if meta is not None else {},
        }

        try:
            await event_bus.publish(cls.EVENT_NAME, payload)
        except Exception as exc:
            _metrics.publish_errors += 1
            logger.error(
                "Failed to publish audit event",
                extra={
                    "account_id": account_id,
                    "transaction_type": transaction_type,
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
            return

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        _metrics.events_emitted += 1
        _metrics.total_log_time_ms += elapsed_ms
        logger.debug(
            "Audit event emitted",
            extra={
                "account_id": account_id,
                "transaction_type": transaction_type,
                "context": payload["context"],
            },
        )

    @classmethod
    def log_after_commit(
        cls,
        uow: "UnitOfWork",
        *,
        event_bus: EventBus,
        account_id: int,
        transaction_type: str,
        details: Mapping[str, Any],
        context: Optional[str] = None,
    ) -> None:
        """Defer an audit event until ``uow`` commits."""
        frozen = dict(details)

        async def _emit() -> None:
            await cls.log(
                event_bus=event_bus,
                account_id=account_id,
                transaction_type=transaction_type,
                details=frozen,
                context=context,
                meta={"uow_id": uow.id},
            )

        uow.after_commit(f"audit:{transaction_type}", _emit)

    @staticmethod
    def get_metrics() -> Dict[str, Any]:
        return asdict(_metrics)

    @staticmethod
    def reset_metrics() -> None:
        global _metrics
        _metrics = AuditMetrics()
