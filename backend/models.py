from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import DateTime, Index, UniqueConstraint, text
from sqlmodel import Field, Relationship, SQLModel

EASY = "easy"
HARD = "hard"
RESPONSES = (EASY, HARD)

SESSION_TYPES = ("review", "cram", "new")

DEFAULT_EASE = 2.5
DEFAULT_INTERVAL_DAYS = 1


def utcnow() -> datetime:
    # naive UTC, stored in plain DateTime columns
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Deck(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True, max_length=100)
    description: str = Field(default="", max_length=500)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())

    cards: List["Card"] = Relationship(
        back_populates="deck", sa_relationship_kwargs={"cascade": "all, delete-orphan"}
    )
    sessions: List["StudySession"] = Relationship(
        back_populates="deck", sa_relationship_kwargs={"cascade": "all, delete-orphan"}
    )


class Card(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("deck_id", "front", name="uq_card_deck_front"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    deck_id: int = Field(foreign_key="deck.id", index=True, ondelete="CASCADE")
    front: str = Field(max_length=1000)
    back: str = Field(max_length=1000)

    # spaced repetition fields
    easiness_factor: float = DEFAULT_EASE
    interval_days: int = DEFAULT_INTERVAL_DAYS
    next_review_date: datetime = Field(default_factory=utcnow, sa_type=DateTime(), index=True)
    repetition_count: int = 0

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())

    deck: Optional[Deck] = Relationship(back_populates="cards")
    events: List["SessionCard"] = Relationship(
        back_populates="card", sa_relationship_kwargs={"cascade": "all, delete-orphan"}
    )


class StudySession(SQLModel, table=True):
    __table_args__ = (
        # one open session per deck
        Index(
            "ux_studysession_active_deck",
            "deck_id",
            unique=True,
            sqlite_where=text("completed_at IS NULL"),
            postgresql_where=text("completed_at IS NULL"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    deck_id: int = Field(foreign_key="deck.id", index=True, ondelete="CASCADE")
    cards_studied: int = 0
    cards_correct: int = 0
    started_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())
    completed_at: Optional[datetime] = Field(default=None, sa_type=DateTime())
    session_type: str = "review"  # "review" | "cram" | "new"

    deck: Optional[Deck] = Relationship(back_populates="sessions")
    events: List["SessionCard"] = Relationship(
        back_populates="session", sa_relationship_kwargs={"cascade": "all, delete-orphan"}
    )

    @property
    def is_active(self) -> bool:
        return self.completed_at is None


class SessionCard(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("session_id", "card_id", name="uq_sessioncard_session_card"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: int = Field(foreign_key="studysession.id", index=True, ondelete="CASCADE")
    card_id: int = Field(foreign_key="card.id", index=True, ondelete="CASCADE")
    response: str  # "easy" | "hard"
    response_time_ms: Optional[int] = None
    reviewed_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())

    session: Optional[StudySession] = Relationship(back_populates="events")
    card: Optional[Card] = Relationship(back_populates="events")
