"""
Trigger vocabulary and in-transaction dispatch.

A trigger is the classification of something that happened to an account
("post created", "level reached"). Services that react to triggers (the
achievement evaluator, the quest tracker) register on a ``TriggerRouter``;
producers (XP award, currency ledger, store, trades, the facade) dispatch
``TriggerEvent`` objects through it inside their unit of work.

Dispatch is synchronous with the transaction: handler failures propagate
and abort the whole operation. Anything user-visible a handler produces
(notifications, realtime pushes) is queued on the unit of work.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Tuple,
)

from sparkle.core.database.base import utc_now
from sparkle.core.logging.logger import get_logger
from sparkle.modules.shared.exceptions import ValidationError

if TYPE_CHECKING:
    from sparkle.core.database.unit_of_work import UnitOfWork

logger = get_logger(__name__)


class TriggerType(str, enum.Enum):
    POST_CREATED = "post_created"
    COMMENT_CREATED = "comment_created"
    POST_LIKED = "post_liked"
    REACTION_GIVEN = "reaction_given"
    USER_FOLLOWED = "user_followed"
    YOUTUBE_SHARED = "youtube_shared"
    PROFILE_COMPLETED = "profile_completed"
    LEVEL_REACHED = "level_reached"
    XP_GAINED = "xp_gained"
    CURRENCY_EARNED = "currency_earned"
    CURRENCY_SPENT = "currency_spent"
    ITEM_PURCHASED = "item_purchased"
    TRADE_COMPLETED = "trade_completed"
    QUEST_COMPLETED = "quest_completed"
    LOGIN = "login"
    SPECIAL_ACTION = "special_action"

    @classmethod
    def parse(cls, value: Any) -> "TriggerType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower().strip())
        except ValueError:
            raise ValidationError(
                "trigger",
                f"Unknown trigger '{value}'. Must be one of: {', '.join(t.value for t in cls)}",
            ) from None


class EntityType(str, enum.Enum):
    USER = "user"
    POST = "post"
    COMMENT = "comment"
    ITEM = "item"
    TRADE = "trade"
    QUEST = "quest"
    ACHIEVEMENT = "achievement"


@dataclass(frozen=True)
class EntityRef:
    """Typed reference to the entity that caused a trigger or a ledger row."""

    entity_type: EntityType
    entity_id: str

    @classmethod
    def of(cls, entity_type: "EntityType | str", entity_id: Any) -> "EntityRef":
        try:
            kind = EntityType(getattr(entity_type, "value", entity_type))
        except ValueError:
            raise ValidationError("entity_type", f"Unknown entity type '{entity_type}'") from None
        return cls(kind, str(entity_id))

    def to_dict(self) -> Dict[str, str]:
        return {"entity_type": self.entity_type.value, "entity_id": self.entity_id}


@dataclass(frozen=True)
class TriggerEvent:
    trigger: TriggerType
    account_id: int
    data: Mapping[str, Any] = field(default_factory=dict)
    entity: Optional[EntityRef] = None
    occurred_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", MappingProxyType(dict(self.data)))


TriggerHandler = Callable[["UnitOfWork", TriggerEvent], Awaitable[List[Dict[str, Any]]]]


class TriggerRouter:
    """
    Routes trigger events to registered handlers.

    A handler registered without ``triggers`` receives every event. Handlers
    run in registration order and their result lists are concatenated.
    """

    def __init__(self) -> None:
        self._handlers: List[Tuple[str, Optional[frozenset], TriggerHandler]] = []

    def register(
        self,
        handler: TriggerHandler,
        *,
        triggers: Optional[Iterable[TriggerType]] = None,
        name: Optional[str] = None,
    ) -> None:
        label = name or getattr(handler, "__qualname__", repr(handler))
        accepted = frozenset(TriggerType.parse(t) for t in triggers) if triggers is not None else None
        self._handlers.append((label, accepted, handler))
        logger.debug(
            "Trigger handler registered",
            extra={
                "handler": label,
                "triggers": sorted(t.value for t in accepted) if accepted is not None else "*",
            },
        )

    def handler_names(self, trigger: TriggerType) -> List[str]:
        return [label for label, accepted, _ in self._handlers if accepted is None or trigger in accepted]

    async def dispatch(self, uow: UnitOfWork, event: TriggerEvent) -> List[Dict[str, Any]]:
        results: List[Dict[str, Any]] = []
        for label, accepted, handler in self._handlers:
            if accepted is not None and event.trigger not in accepted:
                continue
            produced = await handler(uow, event)
            if produced:
                results.extend(produced)

        logger.debug(
            "Trigger dispatched",
            extra={
                "trigger": event.trigger.value,
                "account_id": event.account_id,
                "result_count": len(results),
                "uow_id": uow.id,
            },
        )
        return results
