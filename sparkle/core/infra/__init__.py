"""Cross-cutting infrastructure: audit trail and notification sinks."""

from sparkle.core.infra.audit_logger import AuditLogger
from sparkle.core.infra.notifications import (
    EventBusNotificationSink,
    EventBusRealtimeSink,
    NotificationSink,
    RealtimeSink,
    SideEffectDispatcher,
)

__all__ = [
    "AuditLogger",
    "EventBusNotificationSink",
    "EventBusRealtimeSink",
    "NotificationSink",
    "RealtimeSink",
    "SideEffectDispatcher",
]
