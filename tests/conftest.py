"""
Pytest Configuration and Fixtures for the Sparkle Gamification Tests
====================================================================

Purpose
-------
Centralized fixtures for the engine test suite: a throwaway SQLite store per
test, a small achievement/quest catalogue, recording notification and
realtime sinks, and an engine facade wired to all of them.

Responsibilities
----------------
- Environment setup before any ``sparkle`` module is imported
- Per-test database lifecycle (create schema, dispose engine)
- Engine facade wired to an isolated EventBus and a seeded RNG
- Optional testcontainers setup for PostgreSQL and Redis

Non-Responsibilities
--------------------
- Test implementation (delegated to test files)
- Test data definitions (delegated to tests/factories.py)
- Production configuration (test-specific only)

Architecture Notes
------------------
- Unit tests use mocks (fast, isolated)
- Integration tests use a file-backed SQLite database so that concurrent
  transactions really serialize on the database lock
- Container fixtures are skipped when Docker is unavailable
"""

from __future__ import annotations

import os
import random
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, Generator, List, Mapping, Optional, Tuple

ROOT_DIR = Path(__file__).resolve().parents[1]

# Config.load() runs at import, so the environment must be in place first.
os.environ["TESTING"] = "true"
os.environ["REDIS_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["LOG_TO_FILE"] = "false"
os.environ["CONFIG_DIR"] = str(ROOT_DIR / "config")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from sparkle.core.config.manager import ConfigManager  # noqa: E402
from sparkle.core.database.service import DatabaseService  # noqa: E402
from sparkle.core.event.bus import EventBus  # noqa: E402
from sparkle.core.logging.logger import get_logger  # noqa: E402
from sparkle.modules.gamification import GamificationCatalog, GamificationService  # noqa: E402
from tests.factories import CATALOG_DATA  # noqa: E402

logger = get_logger(__name__)


# ============================================================================
# CONFIGURATION FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def fresh_config() -> Generator[None, None, None]:
    """
    Reload YAML configuration for every test.

    Scope: function (overrides applied by one test never leak)
    """
    ConfigManager.initialize(ROOT_DIR / "config")
    yield
    ConfigManager.clear_cache()


# ============================================================================
# DATABASE FIXTURES (Integration Tests)
# ============================================================================


@pytest_asyncio.fixture
async def database(tmp_path: Path) -> AsyncGenerator[None, None]:
    """
    Initialize DatabaseService against a fresh SQLite file.

    Scope: function (clean slate per test)
    Uses: Integration tests that need the store
    """
    await DatabaseService.shutdown()
    await DatabaseService.initialize(url=f"sqlite+aiosqlite:///{tmp_path / 'sparkle.db'}")
    await DatabaseService.create_schema()

    yield

    await DatabaseService.shutdown()


# ============================================================================
# ENGINE FIXTURES
# ============================================================================


class RecordingNotifier:
    """Notification sink that keeps every delivery in memory."""

    def __init__(self) -> None:
        self.sent: List[Tuple[int, str, Dict[str, Any]]] = []

    async def notify(self, account_id: int, kind: str, payload: Mapping[str, Any]) -> None:
        self.sent.append((account_id, kind, dict(payload)))

    def kinds(self, account_id: Optional[int] = None) -> List[str]:
        return [kind for target, kind, _ in self.sent if account_id is None or target == account_id]


class RecordingRealtime:
    """Realtime sink that keeps every push in memory."""

    def __init__(self) -> None:
        self.emitted: List[Tuple[int, str, Dict[str, Any]]] = []

    async def emit(self, account_id: int, event_name: str, payload: Mapping[str, Any]) -> None:
        self.emitted.append((account_id, event_name, dict(payload)))

    def events(self, account_id: Optional[int] = None) -> List[str]:
        return [name for target, name, _ in self.emitted if account_id is None or target == account_id]


@pytest.fixture
def catalog() -> GamificationCatalog:
    """Small catalogue covering every trigger family the tests exercise."""
    return GamificationCatalog.from_mapping(CATALOG_DATA)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def realtime() -> RecordingRealtime:
    return RecordingRealtime()


@pytest.fixture
def event_bus() -> EventBus:
    """Isolated bus so listeners registered by one test never see another's events."""
    return EventBus()


@pytest.fixture
def published(event_bus: EventBus) -> List[Tuple[str, Dict[str, Any]]]:
    """
    Record domain events published on the test bus, in order.

    Each entry is ``(event_name, payload)``.
    """
    seen: List[Tuple[str, Dict[str, Any]]] = []

    def _recorder(name: str):
        async def _listener(payload: Dict[str, Any]) -> None:
            seen.append((name, payload))

        return _listener

    for name in (
        "account.opened",
        "xp.awarded",
        "level.up",
        "achievement.unlocked",
        "currency.changed",
        "quest.completed",
        "quest.claimed",
        "trade.proposed",
        "trade.rejected",
        "trade.cancelled",
        "trade.completed",
        "trade.failed",
        "trade.expired",
        "store.item_purchased",
        "inventory.changed",
        "leaderboard.refreshed",
    ):
        event_bus.subscribe(name, _recorder(name), identifier=f"test:{name}")

    return seen


@pytest.fixture
def engine(database, catalog, event_bus, notifier, realtime) -> GamificationService:
    """
    Engine facade over the test database.

    Scope: function
    Uses: Integration tests that drive whole operations
    """
    return GamificationService(
        catalog,
        ConfigManager,
        event_bus,
        notifier,
        realtime,
        rng=random.Random(7),
    )


# ============================================================================
# TESTCONTAINERS FIXTURES (Optional, slow)
# ============================================================================


@pytest.fixture(scope="session")
def postgres_container():
    """
    Start a PostgreSQL testcontainer.

    Scope: session (container persists across all tests)
    Uses: ``slow`` tests that run the engine on its production dialect
    """
    postgres = pytest.importorskip("testcontainers.postgres")
    try:
        container = postgres.PostgresContainer(image="postgres:16-alpine", driver="asyncpg")
        container.start()
    except Exception as exc:
        pytest.skip(f"PostgreSQL container unavailable: {exc}")

    logger.info("PostgreSQL testcontainer started")
    yield container

    logger.info("Stopping PostgreSQL testcontainer...")
    container.stop()


@pytest.fixture(scope="session")
def redis_container():
    """
    Start a Redis testcontainer.

    Scope: session
    Uses: ``slow`` tests for leaderboard caching
    """
    redis_module = pytest.importorskip("testcontainers.redis")
    try:
        container = redis_module.RedisContainer(image="redis:7-alpine")
        container.start()
    except Exception as exc:
        pytest.skip(f"Redis container unavailable: {exc}")

    logger.info("Redis testcontainer started")
    yield container

    logger.info("Stopping Redis testcontainer...")
    container.stop()
