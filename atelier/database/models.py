"""
atelier.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables:
- users              : Platform members (mute state + moderation meta)
- user_strikes       : Moderation strikes with expiry and void trail
- notifications      : In-app notifications, de-duplicated by key
- key_values         : Small JSON key/value store (job run dates)
- images             : Uploaded media with ingestion (scan) status
- tags / tags_on_articles
- articles           : Long-form posts indexed into Meilisearch
- article_stats      : Denormalized engagement counters
- crucibles          : Pairwise-judged image contests
- crucible_entries   : Contest entries with ELO score and final position
- buzz_transactions  : Buzz ledger (entry fees, refunds, prize payouts)
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Atelier ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class StrikeReason(enum.StrEnum):
    BLOCKED_CONTENT = "BlockedContent"
    REALISTIC_MINOR_CONTENT = "RealisticMinorContent"
    CSAM_CONTENT = "CSAMContent"
    TOS_VIOLATION = "TOSViolation"
    HARASSMENT = "Harassment"
    PROHIBITED_CONTENT = "ProhibitedContent"
    MANUAL_MOD_ACTION = "ManualModAction"


class StrikeStatus(enum.StrEnum):
    ACTIVE = "Active"
    EXPIRED = "Expired"
    VOIDED = "Voided"


class ImageIngestionStatus(enum.StrEnum):
    PENDING = "Pending"
    SCANNED = "Scanned"
    BLOCKED = "Blocked"
    ERROR = "Error"


class Availability(enum.StrEnum):
    PUBLIC = "Public"
    UNSEARCHABLE = "Unsearchable"
    PRIVATE = "Private"


class ArticleStatus(enum.StrEnum):
    DRAFT = "Draft"
    PUBLISHED = "Published"
    UNPUBLISHED = "Unpublished"


class CrucibleStatus(enum.StrEnum):
    PENDING = "Pending"
    ACTIVE = "Active"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class NotificationCategory(enum.StrEnum):
    SYSTEM = "System"
    CRUCIBLE = "Crucible"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str | None] = mapped_column(String(100), default=None)
    email: Mapped[str | None] = mapped_column(String(255), default=None)
    image: Mapped[str | None] = mapped_column(String(255), default=None)
    muted: Mapped[bool] = mapped_column(Boolean, default=False)
    mute_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    # strikeFlaggedForReview / strikeFlaggedAt live here
    meta: Mapped[dict | None] = mapped_column(JSONB, default=None)
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    strikes: Mapped[list[UserStrike]] = relationship(
        back_populates="user",
        foreign_keys="UserStrike.user_id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_users_username", "username"),
        Index("ix_users_muted_expiry", "muted", "mute_expires_at"),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.username!r} muted={self.muted}>"


# ---------------------------------------------------------------------------
# UserStrike: moderation strikes
# ---------------------------------------------------------------------------
class UserStrike(Base):
    __tablename__ = "user_strikes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    reason: Mapped[StrikeReason] = mapped_column(
        Enum(StrikeReason, name="strike_reason", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    status: Mapped[StrikeStatus] = mapped_column(
        Enum(StrikeStatus, name="strike_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=StrikeStatus.ACTIVE,
    )
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    internal_notes: Mapped[str | None] = mapped_column(Text, default=None)
    entity_type: Mapped[str | None] = mapped_column(String(50), default=None)
    entity_id: Mapped[int | None] = mapped_column(Integer, default=None)
    report_id: Mapped[int | None] = mapped_column(Integer, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    voided_by: Mapped[int | None] = mapped_column(Integer, default=None)
    void_reason: Mapped[str | None] = mapped_column(Text, default=None)
    issued_by: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), default=None
    )

    user: Mapped[User] = relationship(back_populates="strikes", foreign_keys=[user_id])
    issued_by_user: Mapped[User | None] = relationship(foreign_keys=[issued_by])

    __table_args__ = (
        Index("ix_user_strikes_user_status", "user_id", "status"),
        Index("ix_user_strikes_status_expiry", "status", "expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserStrike id={self.id} user={self.user_id} "
            f"points={self.points} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# Notification
# ---------------------------------------------------------------------------
class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    details: Mapped[dict | None] = mapped_column(JSONB, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    viewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at"),
    )


# ---------------------------------------------------------------------------
# KeyValue: job run dates and other small JSON blobs
# ---------------------------------------------------------------------------
class KeyValue(Base):
    __tablename__ = "key_values"

    key: Mapped[str] = mapped_column(String(200), primary_key=True)
    value: Mapped[dict | list | str | int | None] = mapped_column(JSONB, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------
class Image(Base):
    __tablename__ = "images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    url: Mapped[str] = mapped_column(String(255), nullable=False)
    width: Mapped[int | None] = mapped_column(Integer, default=None)
    height: Mapped[int | None] = mapped_column(Integer, default=None)
    hash: Mapped[str | None] = mapped_column(String(100), default=None)
    nsfw_level: Mapped[int] = mapped_column(Integer, default=0)
    ingestion: Mapped[ImageIngestionStatus] = mapped_column(
        Enum(
            ImageIngestionStatus,
            name="image_ingestion_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        default=ImageIngestionStatus.PENDING,
    )
    needs_review: Mapped[str | None] = mapped_column(String(50), default=None)
    scanned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<Image id={self.id} ingestion={self.ingestion}>"


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------
class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)


class TagsOnArticles(Base):
    __tablename__ = "tags_on_articles"

    article_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("articles.id", ondelete="CASCADE"), primary_key=True
    )
    tag_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True
    )

    tag: Mapped[Tag] = relationship()


# ---------------------------------------------------------------------------
# Articles
# ---------------------------------------------------------------------------
class Article(Base):
    __tablename__ = "articles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, default="")
    cover_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("images.id", ondelete="SET NULL"), default=None
    )
    nsfw_level: Mapped[int] = mapped_column(Integer, default=0)
    availability: Mapped[Availability] = mapped_column(
        Enum(Availability, name="availability", values_callable=lambda e: [m.value for m in e]),
        default=Availability.PUBLIC,
    )
    status: Mapped[ArticleStatus] = mapped_column(
        Enum(ArticleStatus, name="article_status", values_callable=lambda e: [m.value for m in e]),
        default=ArticleStatus.DRAFT,
    )
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    user: Mapped[User] = relationship()
    cover: Mapped[Image | None] = relationship()
    tags: Mapped[list[TagsOnArticles]] = relationship(cascade="all, delete-orphan")
    stats: Mapped[ArticleStat | None] = relationship(uselist=False)

    __table_args__ = (
        Index("ix_articles_updated_at", "updated_at"),
    )

    def __repr__(self) -> str:
        return f"<Article id={self.id} title={self.title!r} status={self.status}>"


class ArticleStat(Base):
    __tablename__ = "article_stats"

    article_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("articles.id", ondelete="CASCADE"), primary_key=True
    )
    view_count: Mapped[int] = mapped_column(Integer, default=0)
    comment_count: Mapped[int] = mapped_column(Integer, default=0)
    reaction_count: Mapped[int] = mapped_column(Integer, default=0)
    collected_count: Mapped[int] = mapped_column(Integer, default=0)
    tipped_amount: Mapped[int] = mapped_column(Integer, default=0)


# ---------------------------------------------------------------------------
# Crucibles: pairwise-judged contests
# ---------------------------------------------------------------------------
class Crucible(Base):
    __tablename__ = "crucibles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    status: Mapped[CrucibleStatus] = mapped_column(
        Enum(CrucibleStatus, name="crucible_status", values_callable=lambda e: [m.value for m in e]),
        default=CrucibleStatus.PENDING,
    )
    entry_fee: Mapped[int] = mapped_column(Integer, default=0)
    # Bitmask of allowed image NSFW levels; an image needs one bit in common
    nsfw_level: Mapped[int] = mapped_column(Integer, default=1)
    entry_limit: Mapped[int] = mapped_column(Integer, default=1)
    max_total_entries: Mapped[int | None] = mapped_column(Integer, default=None)
    # [{"position": 1, "percentage": 50}, ...]
    prize_positions: Mapped[list | None] = mapped_column(JSONB, default=None)
    start_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    end_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    entries: Mapped[list[CrucibleEntry]] = relationship(
        back_populates="crucible", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_crucibles_status_end", "status", "end_at"),
    )

    def __repr__(self) -> str:
        return f"<Crucible id={self.id} name={self.name!r} status={self.status}>"


class CrucibleEntry(Base):
    __tablename__ = "crucible_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    crucible_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("crucibles.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    image_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("images.id", ondelete="CASCADE"), nullable=False
    )
    score: Mapped[int] = mapped_column(Integer, default=1500)
    vote_count: Mapped[int] = mapped_column(Integer, default=0)
    position: Mapped[int | None] = mapped_column(Integer, default=None)
    # External id of the entry fee payment; None for free entries
    buzz_transaction_id: Mapped[str | None] = mapped_column(String(200), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    crucible: Mapped[Crucible] = relationship(back_populates="entries")
    image: Mapped[Image] = relationship()
    user: Mapped[User] = relationship()

    __table_args__ = (
        UniqueConstraint("crucible_id", "image_id", name="uq_crucible_entries_image"),
        Index("ix_crucible_entries_crucible", "crucible_id"),
        Index("ix_crucible_entries_crucible_user", "crucible_id", "user_id"),
    )


# ---------------------------------------------------------------------------
# BuzzTransaction: append-only ledger
# ---------------------------------------------------------------------------
class BuzzTransaction(Base):
    __tablename__ = "buzz_transactions"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    from_account_id: Mapped[int] = mapped_column(Integer, nullable=False)
    to_account_id: Mapped[int] = mapped_column(Integer, nullable=False)
    account_type: Mapped[str] = mapped_column(String(20), nullable=False, default="yellow")
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    details: Mapped[dict | None] = mapped_column(JSONB, default=None)
    external_transaction_id: Mapped[str] = mapped_column(
        String(200), nullable=False, unique=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
