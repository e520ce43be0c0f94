"""
SQLAlchemy ORM models for the Street Paddle backend.

Tables mirror the document layout the mobile app was built against:
users, group chats with per-member read watermarks, the public
announcement feed, tournaments, and persisted draw rounds.
"""

import enum
import uuid
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    JSON,
    ForeignKey,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import relationship
from streetpaddle.database.db import Base
from streetpaddle.utils.datetime_utils import utcnow


def _new_document_id() -> str:
    """Opaque identifier for user and group documents."""
    return uuid.uuid4().hex


class ChangeKind(str, enum.Enum):
    """Kinds of changes that can move a user's unread counts."""

    MEMBERSHIP = "membership"
    GROUP_MESSAGE = "group_message"
    ANNOUNCEMENT = "announcement"
    WATERMARK = "watermark"


class User(Base):
    """Application user. Identity itself is issued by the auth provider."""

    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=_new_document_id)
    username = Column(String(50), nullable=False, unique=True)
    email = Column(String(255), nullable=True, unique=True)
    full_name = Column(String(255), nullable=True)
    # Announcement watermark; NULL means "never read"
    last_read_announcements_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Group(Base):
    """Group (or direct) chat."""

    __tablename__ = "groups"

    id = Column(String(64), primary_key=True, default=_new_document_id)
    name = Column(String(255), nullable=True)  # None for two-person direct chats
    creator_id = Column(String(64), ForeignKey("users.id"), nullable=True)
    latest_message = Column(Text, nullable=True)
    latest_message_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    members = relationship("GroupMember", back_populates="group", cascade="all, delete-orphan", passive_deletes=True)
    messages = relationship("GroupMessage", back_populates="group", cascade="all, delete-orphan", passive_deletes=True)


class GroupMember(Base):
    """Group membership plus the member's read watermark."""

    __tablename__ = "group_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(String(64), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # NULL means "never read": every message in the group counts as unread
    last_read_at = Column(DateTime(timezone=True), nullable=True)
    joined_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    group = relationship("Group", back_populates="members")

    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_members_group_user"),
        Index("idx_group_members_user", "user_id"),
    )


class GroupMessage(Base):
    """Chat message posted to a group."""

    __tablename__ = "group_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(String(64), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    text = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    group = relationship("Group", back_populates="messages")

    __table_args__ = (
        Index("idx_group_messages_group_created", "group_id", "created_at"),
    )


class PublicMessage(Base):
    """Entry in the single global announcement feed."""

    __tablename__ = "public_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sender_id = Column(String(64), ForeignKey("users.id"), nullable=True)
    sender_username = Column(String(50), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_public_messages_created", "created_at"),
    )


class Tournament(Base):
    """Tournament configuration created by an administrator before any draw."""

    __tablename__ = "tournaments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    number_of_players = Column(Integer, nullable=False)
    categories = Column(JSON, nullable=False, default=list)  # List of category names
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    link = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    rounds = relationship("DrawRound", back_populates="tournament", cascade="all, delete-orphan", passive_deletes=True)


class DrawRound(Base):
    """
    Persisted draw document for a tournament category.

    round_key is "round_{index}" for bracket rounds and "champion" for the
    champion record; only the matching set of columns is populated.
    """

    __tablename__ = "draw_rounds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False)
    category = Column(String(100), nullable=False)
    round_key = Column(String(32), nullable=False)
    round_index = Column(Integer, nullable=True)  # NULL for the champion record
    player_names = Column(JSON, nullable=True)
    scores = Column(JSON, nullable=True)
    is_completed = Column(Boolean, default=False, nullable=False)
    champion_name = Column(String(255), nullable=True)
    champion_score = Column(String(100), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    tournament = relationship("Tournament", back_populates="rounds")

    __table_args__ = (
        UniqueConstraint("tournament_id", "category", "round_key", name="uq_draw_rounds_key"),
        Index("idx_draw_rounds_category", "tournament_id", "category"),
    )
