"""
Core infrastructure layer for the Sparkle gamification engine.

Subsystems
----------
- config: environment settings (Config) and YAML tunables (ConfigManager)
- logging: structured logging, logger factory, LogContext
- database: declarative base, DatabaseService, UnitOfWork
- redis: RedisService cache with circuit breaker
- event: EventBus for post-commit domain events
- infra: audit trail and notification/realtime sinks
- validation: InputValidator

Import from the subpackages directly; this module performs no re-exports so
that importing ``sparkle.core`` has no side effects.
"""
