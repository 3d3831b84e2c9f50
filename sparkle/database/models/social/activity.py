"""
Community activity tables read by the engine.

The host application writes these rows (posts, comments, follows,
reactions, logins); the gamification engine only queries them to derive
achievement and quest progress.
Schema only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from sparkle.core.database.base import Base, BigIntPK, IdMixin, UTCDateTime, utc_now


class Post(Base, IdMixin):
    __tablename__ = "posts"
    __table_args__ = (Index("ix_posts_author_time", "author_id", "created_at"),)

    author_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    youtube_video_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)


class Comment(Base, IdMixin):
    __tablename__ = "comments"
    __table_args__ = (Index("ix_comments_author_time", "author_id", "created_at"),)

    author_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    post_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)


class Follow(Base, IdMixin):
    """``follower_id`` follows ``following_id``."""

    __tablename__ = "follows"
    __table_args__ = (
        UniqueConstraint("follower_id", "following_id"),
        Index("ix_follows_following_time", "following_id", "created_at"),
    )

    follower_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    following_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)


class Reaction(Base, IdMixin):
    """Reaction given by ``account_id`` to a post."""

    __tablename__ = "reactions"
    __table_args__ = (
        UniqueConstraint("account_id", "post_id", "kind"),
        Index("ix_reactions_account_time", "account_id", "created_at"),
    )

    account_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    post_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default="like")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)


class LoginEvent(Base, IdMixin):
    __tablename__ = "login_events"
    __table_args__ = (Index("ix_login_events_account_time", "account_id", "occurred_at"),)

    account_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
