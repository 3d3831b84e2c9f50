"""Redis cache layer with graceful degradation."""

from sparkle.core.redis.service import CircuitBreaker, RedisService

__all__ = ["CircuitBreaker", "RedisService"]
