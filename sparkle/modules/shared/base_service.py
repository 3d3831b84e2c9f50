"""
Base Service Foundation

Purpose
-------
Foundation class for every domain service in the gamification engine.
Services implement business rules, run inside a ``UnitOfWork`` and raise
domain exceptions.

Design Notes
------------
This base class provides:
- Structured logging with operation context
- Safe config access (ConfigManager dot paths with defaults)
- Post-commit event emission through the unit of work
- Error logging helpers

What this class does NOT do:
- Manage database transactions (``UnitOfWork`` does)
- Hold sessions or ORM state between calls

Usage
-----
    class CurrencyLedger(BaseService):
        def __init__(self, config_manager, event_bus, logger, router):
            super().__init__(config_manager, event_bus, logger)
            self._router = router

        async def award(self, account_id, amount, currency, reason, *, uow=None):
            async with UnitOfWork.begin(uow) as uow:
                ...
                self.emit_after_commit(uow, "currency.changed", {...})
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

from sparkle.modules.shared.exceptions import ConfigurationError

if TYPE_CHECKING:
    from logging import Logger

    from sparkle.core.config.manager import ConfigManager
    from sparkle.core.database.unit_of_work import UnitOfWork
    from sparkle.core.event.bus import EventBus


class BaseService:
    """
    Base class for all domain services.

    Args:
        config_manager: Application configuration manager (class or instance)
        event_bus: Event bus for post-commit domain events
        logger: Structured logger instance
    """

    def __init__(
        self,
        config_manager: "type[ConfigManager] | ConfigManager",
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        self._config = config_manager
        self._events = event_bus
        self.log = logger

    def get_config(self, key: str, default: Optional[Any] = None, required: bool = False) -> Any:
        """
        Safely retrieve a configuration value.

        Raises:
            ConfigurationError: If required=True and key is missing
        """
        value = self._config.get(key, default)
        if required and value is None:
            raise ConfigurationError(key, f"Required configuration key '{key}' is missing")
        return value

    def get_int_config(self, key: str, default: int) -> int:
        value = self.get_config(key, default)
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(key, f"Expected an integer, got {value!r}") from exc

    def emit_after_commit(self, uow: UnitOfWork, event_type: str, data: Dict[str, Any]) -> None:
        """Queue a domain event to publish once ``uow`` commits."""
        uow.publish_after_commit(self._events, event_type, data)

    def log_operation(self, operation: str, **context: Any) -> None:
        self.log.info(
            f"Service operation: {operation}",
            extra={"operation": operation, **context},
        )
