"""
Redis cache access with graceful degradation.

Features:
- JSON serialization for cached leaderboards and user stats
- TTL support on every write
- Pattern invalidation via SCAN
- Small circuit breaker: after repeated failures Redis is skipped for a
  recovery window, and every operation degrades to a cache miss

When Redis is disabled, not initialized or failing, reads return ``None`` and
writes return ``False``; callers always fall back to the database.
"""

from __future__ import annotations

import json
import time
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from sparkle.core.config.config import Config
from sparkle.core.logging.logger import get_logger

logger = get_logger(__name__)


class CircuitBreaker:
    """
    States:
        - closed: normal operation
        - open: failures exceeded threshold, calls skipped until recovery timeout
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 30.0) -> None:
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.opened_at: Optional[float] = None

    @property
    def state(self) -> str:
        return "open" if self.opened_at is not None else "closed"

    def call_succeeded(self) -> None:
        self.failure_count = 0
        self.opened_at = None

    def call_failed(self) -> None:
        self.failure_count += 1
        if self.failure_count >= self.failure_threshold and self.opened_at is None:
            self.opened_at = time.monotonic()
            logger.warning(
                "Redis circuit breaker opened",
                extra={"failure_count": self.failure_count},
            )

    def can_attempt(self) -> bool:
        if self.opened_at is None:
            return True
        if time.monotonic() - self.opened_at >= self.recovery_timeout:
            # Half-open: allow one probe; a failure re-opens immediately.
            self.opened_at = None
            self.failure_count = self.failure_threshold - 1
            return True
        return False


class RedisService:
    """
    Class-level Redis client wrapper.

    Example
    -------
    >>> await RedisService.initialize()
    >>> await RedisService.set_json("leaderboard:xp:global:all:10", entries, ttl_seconds=300)
    >>> await RedisService.get_json("leaderboard:xp:global:all:10")
    """

    _client: Optional[redis.Redis] = None
    _circuit_breaker: CircuitBreaker = CircuitBreaker()
    _metrics: Dict[str, int] = {"hits": 0, "misses": 0, "writes": 0, "failures": 0}

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    @classmethod
    async def initialize(cls, url: Optional[str] = None, client: Optional[redis.Redis] = None) -> bool:
        """
        Connect and ping. Returns False (cache disabled) instead of raising.

        ``client`` lets tests inject a pre-built client.
        """
        if cls._client is not None:
            return True
        if client is None and not Config.REDIS_ENABLED:
            logger.info("Redis disabled by configuration; caching off")
            return False

        candidate = client or redis.from_url(
            url or Config.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=Config.REDIS_SOCKET_TIMEOUT,
            socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
        )
        try:
            await candidate.ping()
        except (RedisError, OSError) as exc:
            logger.warning(
                "Redis unavailable; continuing without cache",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            await candidate.aclose()
            return False

        cls._client = candidate
        cls._circuit_breaker = CircuitBreaker()
        logger.info("RedisService initialized")
        return True

    @classmethod
    async def shutdown(cls) -> None:
        if cls._client is None:
            return
        try:
            await cls._client.aclose()
        finally:
            cls._client = None
            logger.info("RedisService shutdown complete")

    @classmethod
    def is_available(cls) -> bool:
        return cls._client is not None and cls._circuit_breaker.can_attempt()

    @classmethod
    async def health_check(cls) -> bool:
        if cls._client is None:
            return False
        try:
            await cls._client.ping()
            return True
        except (RedisError, OSError):
            return False

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #

    @classmethod
    def _record_failure(cls, operation: str, key: str, exc: Exception) -> None:
        cls._circuit_breaker.call_failed()
        cls._metrics["failures"] += 1
        logger.warning(
            f"Redis {operation} failed",
            extra={"operation": operation, "key": key, "error": str(exc)},
        )

    @classmethod
    async def get_json(cls, key: str) -> Optional[Any]:
        """Cached JSON value, or None on miss / unavailability / corrupt entry."""
        if not cls.is_available():
            return None
        assert cls._client is not None
        try:
            raw = await cls._client.get(key)
        except (RedisError, OSError) as exc:
            cls._record_failure("get", key, exc)
            return None

        cls._circuit_breaker.call_succeeded()
        if raw is None:
            cls._metrics["misses"] += 1
            return None
        try:
            value = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding corrupt cache entry", extra={"key": key})
            cls._metrics["misses"] += 1
            return None
        cls._metrics["hits"] += 1
        return value

    @classmethod
    async def set_json(cls, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        if not cls.is_available():
            return False
        assert cls._client is not None
        payload = json.dumps(value, separators=(",", ":"), default=str)
        try:
            if ttl_seconds:
                await cls._client.set(key, payload, ex=int(ttl_seconds))
            else:
                await cls._client.set(key, payload)
        except (RedisError, OSError) as exc:
            cls._record_failure("set", key, exc)
            return False

        cls._circuit_breaker.call_succeeded()
        cls._metrics["writes"] += 1
        return True

    @classmethod
    async def delete(cls, *keys: str) -> int:
        if not keys or not cls.is_available():
            return 0
        assert cls._client is not None
        try:
            removed = await cls._client.delete(*keys)
        except (RedisError, OSError) as exc:
            cls._record_failure("delete", ",".join(keys), exc)
            return 0
        cls._circuit_breaker.call_succeeded()
        return int(removed)

    @classmethod
    async def delete_pattern(cls, pattern: str) -> int:
        """Delete every key matching a glob pattern (SCAN-based, non-blocking)."""
        if not cls.is_available():
            return 0
        assert cls._client is not None
        removed = 0
        try:
            batch: list[str] = []
            async for key in cls._client.scan_iter(match=pattern, count=200):
                batch.append(key)
                if len(batch) >= 200:
                    removed += await cls._client.delete(*batch)
                    batch.clear()
            if batch:
                removed += await cls._client.delete(*batch)
        except (RedisError, OSError) as exc:
            cls._record_failure("delete_pattern", pattern, exc)
            return removed
        cls._circuit_breaker.call_succeeded()
        return removed

    @classmethod
    def get_metrics(cls) -> Dict[str, Any]:
        return {
            **cls._metrics,
            "available": cls.is_available(),
            "circuit_state": cls._circuit_breaker.state,
        }
