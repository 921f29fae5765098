# --- models/database.py ---

from typing import List, Optional, Dict, Any
from sqlalchemy import Integer, String, Text, Boolean, ForeignKey, DateTime, JSON, Float, UniqueConstraint, Index
from sqlalchemy.orm import relationship, Mapped, mapped_column, declarative_base
from datetime import datetime, timezone
import uuid

Base = declarative_base()

def generate_uuid():
    return str(uuid.uuid4())

def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo anyway)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)

# Session lifecycle states
SESSION_ACTIVE = "active"
SESSION_FINISHED = "finished"
SESSION_ABANDONED = "abandoned"
SESSION_STATUSES = (SESSION_ACTIVE, SESSION_FINISHED, SESSION_ABANDONED)

# Ledger vocabulary
TX_CREDIT = "credit"
TX_DEBIT = "debit"
TX_SOURCES = ("topup", "play", "refund", "adjustment", "admin")

FLAVOR_TONE = "tone"
FLAVOR_TIME = "time"

FEEDBACK_STATUSES = ("visible", "hidden", "flagged", "deleted")


# --- User Model ---
class User(Base):
    """Player or operator account; owns the wallet balance"""
    __tablename__ = 'users'

    id: Mapped[str] = mapped_column(String, primary_key=True, default=generate_uuid)
    username: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String, unique=True, nullable=True)
    display_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    # Live balance; the wallet_transactions table is the durable history
    wallet_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self):
        return f"<User(username='{self.username}', balance={self.wallet_balance})>"


# --- FlavorOption Model (Settings Store) ---
class FlavorOption(Base):
    """One tone style or time flavor a player can pick when starting a story"""
    __tablename__ = 'flavor_options'
    __table_args__ = (UniqueConstraint('kind', 'option_id', name='uq_flavor_kind_option'),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=generate_uuid)
    kind: Mapped[str] = mapped_column(String, nullable=False)  # 'tone' or 'time'
    option_id: Mapped[str] = mapped_column(String, nullable=False)
    display_label: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<FlavorOption(kind='{self.kind}', id='{self.option_id}')>"


# --- Story Model ---
class Story(Base):
    """Catalog entry: metadata, cast, pricing and the prompt template"""
    __tablename__ = 'stories'

    id: Mapped[str] = mapped_column(String, primary_key=True)  # slug, e.g. "the-picture-of-dorian-gray"
    title: Mapped[str] = mapped_column(String, nullable=False)
    author_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    headline: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    language: Mapped[str] = mapped_column(String, default="en")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    credits_per_chapter: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    estimated_chapter_count: Mapped[int] = mapped_column(Integer, nullable=False, default=10)

    # Used by start when the player picks no flavor
    default_tone_style_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    default_time_flavor_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    # Template with {{NAME}} placeholders, composed once per session
    story_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    opening_beats: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    guardrails: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    # [{"id", "name", "summary", "hooks"}], [{"id", "label"}], [{"character_id", "role_ids"}]
    characters: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    roles: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    cast: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    total_played: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_reviews: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    sessions: Mapped[List["StorySession"]] = relationship("StorySession", back_populates="story")

    def __repr__(self):
        return f"<Story(id='{self.id}', title='{self.title}')>"


# --- StorySession Model ---
class StorySession(Base):
    """A user's play-through of one story under one tone/time flavor"""
    __tablename__ = 'story_sessions'
    __table_args__ = (
        Index('ix_story_sessions_user_story', 'user_id', 'story_id'),
        Index('ix_story_sessions_user_status', 'user_id', 'status'),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String, ForeignKey('users.id'), nullable=False)
    story_id: Mapped[str] = mapped_column(String, ForeignKey('stories.id'), nullable=False)
    tone_style_id: Mapped[str] = mapped_column(String, nullable=False)
    time_flavor_id: Mapped[str] = mapped_column(String, nullable=False)

    # Composed once at start; every chapter is generated against it
    story_prompt: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[str] = mapped_column(String, nullable=False, default=SESSION_ACTIVE)
    current_chapter: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    chapters_generated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    rating_stars: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    rating_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_activity_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    story: Mapped["Story"] = relationship("Story", back_populates="sessions")
    chapters: Mapped[List["Chapter"]] = relationship(
        "Chapter", back_populates="session", order_by="Chapter.chapter_index"
    )

    def __repr__(self):
        return f"<StorySession(id='{self.id}', status='{self.status}', chapter={self.current_chapter})>"


# --- Chapter Model ---
class Chapter(Base):
    """One generated chapter; written once, never updated"""
    __tablename__ = 'chapters'
    __table_args__ = (UniqueConstraint('session_id', 'chapter_index', name='uq_chapter_session_index'),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=generate_uuid)
    session_id: Mapped[str] = mapped_column(String, ForeignKey('story_sessions.id'), nullable=False)
    chapter_index: Mapped[int] = mapped_column(Integer, nullable=False)
    prompt_used: Mapped[str] = mapped_column(Text, nullable=False)
    opening_beat: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    chosen_option: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    choices: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    session: Mapped["StorySession"] = relationship("StorySession", back_populates="chapters")

    def __repr__(self):
        return f"<Chapter(session='{self.session_id}', index={self.chapter_index})>"


# --- WalletTransaction Model ---
class WalletTransaction(Base):
    """Append-only ledger row; balance_after snapshots the wallet right after it"""
    __tablename__ = 'wallet_transactions'
    __table_args__ = (Index('ix_wallet_transactions_user_id', 'user_id', 'id'),)

    # Integer sequence so ledger order is total
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey('users.id'), nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)  # 'credit' | 'debit'
    source: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    note: Mapped[str] = mapped_column(String, nullable=False, default="")
    story_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    chapter: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    refund_of: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey('wallet_transactions.id'), nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "amount": self.amount,
            "balanceAfter": self.balance_after,
            "note": self.note,
            "storyId": self.story_id,
            "sessionId": self.session_id,
            "chapter": self.chapter,
            "refundOf": self.refund_of,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<WalletTransaction(id={self.id}, type='{self.type}', amount={self.amount})>"


# --- Feedback Model ---
class Feedback(Base):
    """A user's review of a story; one per (user, story)"""
    __tablename__ = 'feedbacks'
    __table_args__ = (UniqueConstraint('user_id', 'story_id', name='uq_feedback_user_story'),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String, ForeignKey('users.id'), nullable=False)
    story_id: Mapped[str] = mapped_column(String, ForeignKey('stories.id'), nullable=False)
    stars: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(String(250), nullable=False, default="")
    status: Mapped[str] = mapped_column(String, nullable=False, default="visible")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Feedback(story='{self.story_id}', stars={self.stars}, status='{self.status}')>"

# --- END OF FILE models/database.py ---
