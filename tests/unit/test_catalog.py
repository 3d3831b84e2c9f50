"""
Unit tests for GamificationCatalog parsing and quest cycle windows.
"""

from datetime import datetime, timezone

import pytest

from sparkle.core.config.manager import ConfigManager
from sparkle.database.models.enums import AchievementRarity, CurrencyType, QuestType
from sparkle.modules.quests.service import cycle_window
from sparkle.modules.shared.catalog import (
    AchievementMetric,
    GamificationCatalog,
    QuestRequirementType,
)
from sparkle.modules.shared.exceptions import ConfigurationError, NotFoundError
from sparkle.modules.shared.triggers import TriggerType
from tests.factories import CATALOG_DATA


def _quest(**overrides):
    raw = {"type": "daily", "requirement": {"type": "create_posts", "count": 1}}
    raw.update(overrides)
    return GamificationCatalog.from_mapping({"quest_definitions": {"q": raw}}).get_quest("q")


@pytest.mark.unit
class TestCatalogParsing:
    """Test definitions built from configuration mappings."""

    def test_achievement_fields(self):
        catalog = GamificationCatalog.from_mapping(CATALOG_DATA)
        first_post = catalog.get_achievement("first_post")

        assert first_post.trigger is TriggerType.POST_CREATED
        assert first_post.metric is AchievementMetric.POST_COUNT
        assert first_post.threshold == 1
        assert first_post.rewards.xp == 100
        assert first_post.rewards.sparkle_points == 50
        assert first_post.rarity is AchievementRarity.COMMON

    def test_item_rewards_accept_lists(self):
        """A list of item ids means one of each."""
        catalog = GamificationCatalog.from_mapping(CATALOG_DATA)

        assert dict(catalog.get_achievement("first_purchase").rewards.items) == {"badge_shopper": 1}

    def test_index_by_trigger(self):
        catalog = GamificationCatalog.from_mapping(CATALOG_DATA)

        ids = {a.id for a in catalog.achievements_for(TriggerType.POST_CREATED)}
        assert ids == {"first_post", "prolific_writer"}
        assert catalog.achievements_for(TriggerType.YOUTUBE_SHARED) == ()

    def test_quest_lookups(self):
        catalog = GamificationCatalog.from_mapping(CATALOG_DATA)

        daily = {q.id for q in catalog.quests_of_type(QuestType.DAILY)}
        assert daily == {"daily_first_post", "daily_commenter", "daily_reactor"}
        posts = {q.id for q in catalog.quests_for_requirement(QuestRequirementType.CREATE_POSTS)}
        assert posts == {"daily_first_post", "special_storyteller", "veteran_special"}

    def test_currency_metric_defaults_to_sparkle(self):
        catalog = GamificationCatalog.from_mapping(
            {
                "achievements": {
                    "saver": {
                        "trigger": "currency_earned",
                        "criteria": {"metric": "currency_earned", "threshold": 1000},
                    }
                }
            }
        )

        assert catalog.get_achievement("saver").currency is CurrencyType.SPARKLE_POINTS

    def test_unknown_ids_raise_not_found(self):
        catalog = GamificationCatalog.from_mapping(CATALOG_DATA)

        with pytest.raises(NotFoundError):
            catalog.get_quest("nope")
        with pytest.raises(NotFoundError):
            catalog.get_achievement("nope")

    @pytest.mark.parametrize(
        "raw",
        [
            {"achievements": {"a": {"trigger": "teleported"}}},
            {"achievements": {"a": {"trigger": "login", "criteria": {"metric": "karma"}}}},
            {"achievements": {"a": {"trigger": "login", "criteria": {"threshold": 0}}}},
            {"achievements": {"a": {"trigger": "special_action", "criteria": {"metric": "action"}}}},
            {"achievements": {"a": {"trigger": "login", "rewards": {"xp": -5}}}},
            {"achievements": {"a": {"trigger": "login", "prerequisites": ["missing"]}}},
            {"quest_definitions": {"q": {"requirement": {"type": "write_novels"}}}},
            {"quest_definitions": {"q": {"requirement": {"type": "create_posts"}, "available_from": "soon"}}},
            {"achievements": ["not", "a", "mapping"]},
        ],
    )
    def test_malformed_definitions_raise_configuration_error(self, raw):
        with pytest.raises(ConfigurationError):
            GamificationCatalog.from_mapping(raw)

    def test_shipped_yaml_catalogue_loads(self):
        """The catalogue in config/gamification parses and cross-references cleanly."""
        catalog = GamificationCatalog.from_config(ConfigManager)

        assert "first_post" in catalog.achievements
        assert "daily_first_post" in catalog.quests
        assert catalog.get_quest("daily_youtube").min_level == 3
        assert catalog.get_achievement("prolific_writer").prerequisites == ("first_post",)


@pytest.mark.unit
class TestCycleWindow:
    """Test the cycle key and window of each quest type."""

    def test_daily_window(self):
        now = datetime(2024, 3, 10, 15, 30, tzinfo=timezone.utc)

        key, start, end = cycle_window(_quest(type="daily"), now)

        assert key == "2024-03-10"
        assert start == datetime(2024, 3, 10, tzinfo=timezone.utc)
        assert end == datetime(2024, 3, 11, tzinfo=timezone.utc)

    def test_weekly_window_starts_monday(self):
        now = datetime(2024, 3, 10, 15, tzinfo=timezone.utc)  # a Sunday

        key, start, end = cycle_window(_quest(type="weekly"), now)

        assert key == "2024-W10"
        assert start == datetime(2024, 3, 4, tzinfo=timezone.utc)
        assert end == datetime(2024, 3, 11, tzinfo=timezone.utc)

    def test_monthly_window(self):
        now = datetime(2024, 2, 20, tzinfo=timezone.utc)

        key, start, end = cycle_window(_quest(type="monthly"), now)

        assert key == "2024-02"
        assert start == datetime(2024, 2, 1, tzinfo=timezone.utc)
        assert end == datetime(2024, 3, 1, tzinfo=timezone.utc)

    def test_one_off_special_never_expires(self):
        now = datetime(2024, 3, 10, tzinfo=timezone.utc)

        key, start, end = cycle_window(_quest(type="special"), now)

        assert key == "once"
        assert start == now
        assert end is None

    def test_repeatable_special_keys_on_assignment_time(self):
        now = datetime(2024, 3, 10, 9, 5, tzinfo=timezone.utc)

        key, _, end = cycle_window(_quest(type="special", cooldown_hours=24, expiry_hours=12), now)

        assert key == now.isoformat(timespec="seconds")
        assert end == datetime(2024, 3, 10, 21, 5, tzinfo=timezone.utc)

    def test_available_until_caps_window(self):
        now = datetime(2024, 3, 10, 8, tzinfo=timezone.utc)
        until = "2024-03-10T12:00:00+00:00"

        _, _, end = cycle_window(_quest(type="daily", available_until=until), now)

        assert end == datetime(2024, 3, 10, 12, tzinfo=timezone.utc)
