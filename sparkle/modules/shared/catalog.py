"""
Static achievement and quest definitions.

Purpose
-------
``GamificationCatalog`` is the immutable definition set the engine runs
against. It is built once (from ConfigManager YAML or an injected mapping)
and passed into every service that needs definitions, so tests can inject
their own fixtures without touching global state.

YAML Shape
----------
achievements:
  first_post:
    name: First Steps
    trigger: post_created
    criteria: {metric: post_count, threshold: 1}
    rewards: {xp: 100, sparkle_points: 50}
    rarity: common
    category: content
    hidden: false
    prerequisites: []
    available_until: null           # ISO8601

quest_definitions:
  daily_first_post:
    name: Daily Writer
    type: daily
    requirement: {type: create_posts, count: 1}
    rewards: {xp: 50, items: {streak_freeze: 1}}
    min_level: 1
    prerequisites: []
    cooldown_hours: 0
    expiry_hours: 24
    available_from: null
    available_until: null

Malformed definitions raise ``ConfigurationError`` at load time.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Tuple

from sparkle.core.logging.logger import get_logger
from sparkle.database.models.enums import AchievementRarity, CurrencyType, QuestType
from sparkle.modules.shared.exceptions import ConfigurationError, NotFoundError
from sparkle.modules.shared.triggers import TriggerType

if TYPE_CHECKING:
    from sparkle.core.config.manager import ConfigManager

logger = get_logger(__name__)


class AchievementMetric(str, enum.Enum):
    """Durable-state rule used to compute achievement progress."""

    POST_COUNT = "post_count"
    COMMENT_COUNT = "comment_count"
    FOLLOW_COUNT = "follow_count"
    FOLLOWER_COUNT = "follower_count"
    MAX_POST_REACTIONS = "max_post_reactions"
    REACTIONS_GIVEN = "reactions_given"
    YOUTUBE_POST_COUNT = "youtube_post_count"
    LEVEL = "level"
    TOTAL_XP = "total_xp"
    CURRENCY_EARNED = "currency_earned"
    CURRENCY_SPENT = "currency_spent"
    TRADES_COMPLETED = "trades_completed"
    QUESTS_COMPLETED = "quests_completed"
    LOGIN_STREAK = "login_streak"
    ITEMS_PURCHASED = "items_purchased"
    ACTION = "action"
    EVENT = "event"


class QuestRequirementType(str, enum.Enum):
    CREATE_POSTS = "create_posts"
    CREATE_COMMENTS = "create_comments"
    GIVE_REACTIONS = "give_reactions"
    EARN_XP = "earn_xp"
    LOGIN_STREAK = "login_streak"
    SHARE_YOUTUBE = "share_youtube"
    PURCHASE_ITEMS = "purchase_items"

    @property
    def is_counter(self) -> bool:
        """True when progress lives in the assignment's blob, not a query."""
        return self in _COUNTER_REQUIREMENTS


_COUNTER_REQUIREMENTS = frozenset(
    {
        QuestRequirementType.GIVE_REACTIONS,
        QuestRequirementType.EARN_XP,
        QuestRequirementType.PURCHASE_ITEMS,
    }
)

# Triggers that move each requirement type forward.
REQUIREMENT_TRIGGERS: Mapping[QuestRequirementType, TriggerType] = MappingProxyType(
    {
        QuestRequirementType.CREATE_POSTS: TriggerType.POST_CREATED,
        QuestRequirementType.CREATE_COMMENTS: TriggerType.COMMENT_CREATED,
        QuestRequirementType.GIVE_REACTIONS: TriggerType.REACTION_GIVEN,
        QuestRequirementType.EARN_XP: TriggerType.XP_GAINED,
        QuestRequirementType.LOGIN_STREAK: TriggerType.LOGIN,
        QuestRequirementType.SHARE_YOUTUBE: TriggerType.YOUTUBE_SHARED,
        QuestRequirementType.PURCHASE_ITEMS: TriggerType.ITEM_PURCHASED,
    }
)


@dataclass(frozen=True)
class RewardBundle:
    xp: int = 0
    sparkle_points: int = 0
    premium_points: int = 0
    items: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))

    def currency_amounts(self) -> Tuple[Tuple[CurrencyType, int], ...]:
        return tuple(
            (currency, amount)
            for currency, amount in (
                (CurrencyType.SPARKLE_POINTS, self.sparkle_points),
                (CurrencyType.PREMIUM_POINTS, self.premium_points),
            )
            if amount > 0
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "xp": self.xp,
            "sparkle_points": self.sparkle_points,
            "premium_points": self.premium_points,
            "items": dict(self.items),
        }


@dataclass(frozen=True)
class AchievementDefinition:
    id: str
    name: str
    trigger: TriggerType
    metric: AchievementMetric
    threshold: int
    rewards: RewardBundle
    description: str = ""
    rarity: AchievementRarity = AchievementRarity.COMMON
    category: str = "general"
    hidden: bool = False
    prerequisites: Tuple[str, ...] = ()
    currency: Optional[CurrencyType] = None
    action: Optional[str] = None
    available_until: Optional[datetime] = None

    def is_available(self, now: datetime) -> bool:
        return self.available_until is None or now <= self.available_until

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "trigger": self.trigger.value,
            "rarity": self.rarity.value,
            "category": self.category,
            "hidden": self.hidden,
            "threshold": self.threshold,
            "rewards": self.rewards.to_dict(),
        }


@dataclass(frozen=True)
class QuestDefinition:
    id: str
    name: str
    quest_type: QuestType
    requirement_type: QuestRequirementType
    required: int
    rewards: RewardBundle
    description: str = ""
    min_level: int = 1
    prerequisites: Tuple[str, ...] = ()
    cooldown_hours: int = 0
    expiry_hours: Optional[int] = None
    available_from: Optional[datetime] = None
    available_until: Optional[datetime] = None

    def is_available(self, now: datetime) -> bool:
        if self.available_from is not None and now < self.available_from:
            return False
        return self.available_until is None or now <= self.available_until

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.quest_type.value,
            "requirement": {"type": self.requirement_type.value, "count": self.required},
            "rewards": self.rewards.to_dict(),
            "min_level": self.min_level,
        }


# ============================================================================
# Parsing helpers
# ============================================================================


def _parse_int(key: str, value: Any, *, minimum: int = 0) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(key, f"Expected an integer, got {value!r}")
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(key, f"Expected an integer, got {value!r}") from None
    if parsed < minimum:
        raise ConfigurationError(key, f"Must be >= {minimum}, got {parsed}")
    return parsed


def _parse_enum(key: str, enum_cls: Any, value: Any) -> Any:
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        choices = ", ".join(member.value for member in enum_cls)
        raise ConfigurationError(key, f"Unknown value {value!r}; expected one of: {choices}") from None


def _parse_datetime(key: str, value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            raise ConfigurationError(key, f"Expected an ISO8601 timestamp, got {value!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_rewards(key: str, raw: Optional[Mapping[str, Any]]) -> RewardBundle:
    raw = raw or {}
    if not isinstance(raw, Mapping):
        raise ConfigurationError(key, "rewards must be a mapping")

    items_raw = raw.get("items") or {}
    if isinstance(items_raw, (list, tuple)):
        items_raw = {item_id: 1 for item_id in items_raw}
    if not isinstance(items_raw, Mapping):
        raise ConfigurationError(f"{key}.items", "items must be a mapping or list")

    items = {
        str(item_id): _parse_int(f"{key}.items.{item_id}", qty, minimum=1)
        for item_id, qty in items_raw.items()
    }
    return RewardBundle(
        xp=_parse_int(f"{key}.xp", raw.get("xp", 0)),
        sparkle_points=_parse_int(f"{key}.sparkle_points", raw.get("sparkle_points", 0)),
        premium_points=_parse_int(f"{key}.premium_points", raw.get("premium_points", 0)),
        items=MappingProxyType(items),
    )


def _parse_achievement(achievement_id: str, raw: Mapping[str, Any]) -> AchievementDefinition:
    key = f"achievements.{achievement_id}"
    criteria = raw.get("criteria") or {}
    metric = _parse_enum(f"{key}.criteria.metric", AchievementMetric, criteria.get("metric", "event"))

    currency = None
    if metric in (AchievementMetric.CURRENCY_EARNED, AchievementMetric.CURRENCY_SPENT):
        currency = _parse_enum(
            f"{key}.criteria.currency", CurrencyType, criteria.get("currency", CurrencyType.SPARKLE_POINTS.value)
        )

    action = criteria.get("action")
    if metric is AchievementMetric.ACTION and not action:
        raise ConfigurationError(f"{key}.criteria.action", "action achievements need an action name")

    return AchievementDefinition(
        id=achievement_id,
        name=str(raw.get("name", achievement_id)),
        description=str(raw.get("description", "")),
        trigger=_parse_enum(f"{key}.trigger", TriggerType, raw.get("trigger")),
        metric=metric,
        threshold=_parse_int(f"{key}.criteria.threshold", criteria.get("threshold", 1), minimum=1),
        rewards=_parse_rewards(f"{key}.rewards", raw.get("rewards")),
        rarity=_parse_enum(f"{key}.rarity", AchievementRarity, raw.get("rarity", "common")),
        category=str(raw.get("category", "general")),
        hidden=bool(raw.get("hidden", False)),
        prerequisites=tuple(str(p) for p in raw.get("prerequisites") or ()),
        currency=currency,
        action=str(action) if action else None,
        available_until=_parse_datetime(f"{key}.available_until", raw.get("available_until")),
    )


def _parse_quest(quest_id: str, raw: Mapping[str, Any]) -> QuestDefinition:
    key = f"quest_definitions.{quest_id}"
    requirement = raw.get("requirement") or {}
    expiry = raw.get("expiry_hours")

    return QuestDefinition(
        id=quest_id,
        name=str(raw.get("name", quest_id)),
        description=str(raw.get("description", "")),
        quest_type=_parse_enum(f"{key}.type", QuestType, raw.get("type", "daily")),
        requirement_type=_parse_enum(f"{key}.requirement.type", QuestRequirementType, requirement.get("type")),
        required=_parse_int(f"{key}.requirement.count", requirement.get("count", 1), minimum=1),
        rewards=_parse_rewards(f"{key}.rewards", raw.get("rewards")),
        min_level=_parse_int(f"{key}.min_level", raw.get("min_level", 1), minimum=1),
        prerequisites=tuple(str(p) for p in raw.get("prerequisites") or ()),
        cooldown_hours=_parse_int(f"{key}.cooldown_hours", raw.get("cooldown_hours", 0)),
        expiry_hours=_parse_int(f"{key}.expiry_hours", expiry, minimum=1) if expiry is not None else None,
        available_from=_parse_datetime(f"{key}.available_from", raw.get("available_from")),
        available_until=_parse_datetime(f"{key}.available_until", raw.get("available_until")),
    )


# ============================================================================
# Catalog
# ============================================================================


class GamificationCatalog:
    """Read-only view over achievement and quest definitions."""

    def __init__(
        self,
        achievements: Mapping[str, AchievementDefinition],
        quests: Mapping[str, QuestDefinition],
    ) -> None:
        self._achievements: Mapping[str, AchievementDefinition] = MappingProxyType(dict(achievements))
        self._quests: Mapping[str, QuestDefinition] = MappingProxyType(dict(quests))
        self._by_trigger: Mapping[TriggerType, Tuple[AchievementDefinition, ...]] = MappingProxyType(
            {
                trigger: tuple(a for a in self._achievements.values() if a.trigger is trigger)
                for trigger in TriggerType
            }
        )
        self._validate_references()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GamificationCatalog":
        """
        Build from ``{"achievements": {...}, "quest_definitions": {...}}``.

        ``quests`` is accepted as an alias of ``quest_definitions``.

        Raises:
            ConfigurationError: If any definition is malformed
        """
        raw_achievements = data.get("achievements") or {}
        raw_quests = data.get("quest_definitions") or data.get("quests") or {}
        if not isinstance(raw_achievements, Mapping) or not isinstance(raw_quests, Mapping):
            raise ConfigurationError("catalog", "achievements and quest_definitions must be mappings")

        catalog = cls(
            {str(k): _parse_achievement(str(k), v or {}) for k, v in raw_achievements.items()},
            {str(k): _parse_quest(str(k), v or {}) for k, v in raw_quests.items()},
        )
        logger.info(
            "Gamification catalog loaded",
            extra={"achievement_count": len(catalog._achievements), "quest_count": len(catalog._quests)},
        )
        return catalog

    @classmethod
    def from_config(cls, config_manager: "Optional[type[ConfigManager]]" = None) -> "GamificationCatalog":
        if config_manager is None:
            from sparkle.core.config.manager import ConfigManager

            config_manager = ConfigManager
        return cls.from_mapping(
            {
                "achievements": config_manager.get("achievements", {}),
                "quest_definitions": config_manager.get("quest_definitions", {}),
            }
        )

    def _validate_references(self) -> None:
        for achievement in self._achievements.values():
            for prereq in achievement.prerequisites:
                if prereq not in self._achievements:
                    raise ConfigurationError(
                        f"achievements.{achievement.id}.prerequisites",
                        f"Unknown prerequisite achievement '{prereq}'",
                    )
        for quest in self._quests.values():
            for prereq in quest.prerequisites:
                if prereq not in self._quests:
                    raise ConfigurationError(
                        f"quest_definitions.{quest.id}.prerequisites",
                        f"Unknown prerequisite quest '{prereq}'",
                    )

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #

    @property
    def achievements(self) -> Mapping[str, AchievementDefinition]:
        return self._achievements

    @property
    def quests(self) -> Mapping[str, QuestDefinition]:
        return self._quests

    def achievements_for(self, trigger: TriggerType) -> Tuple[AchievementDefinition, ...]:
        return self._by_trigger.get(trigger, ())

    def get_achievement(self, achievement_id: str) -> AchievementDefinition:
        try:
            return self._achievements[achievement_id]
        except KeyError:
            raise NotFoundError("Achievement", achievement_id) from None

    def get_quest(self, quest_id: str) -> QuestDefinition:
        try:
            return self._quests[quest_id]
        except KeyError:
            raise NotFoundError("Quest", quest_id) from None

    def quests_of_type(self, quest_type: QuestType) -> Tuple[QuestDefinition, ...]:
        return tuple(q for q in self._quests.values() if q.quest_type is quest_type)

    def quests_for_requirement(self, requirement: QuestRequirementType) -> Tuple[QuestDefinition, ...]:
        return tuple(q for q in self._quests.values() if q.requirement_type is requirement)

    def __len__(self) -> int:
        return len(self._achievements) + len(self._quests)
