import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from errors import ConflictError, NotFoundError, ValidationError
from models import RESPONSES, SESSION_TYPES, Card, Deck, SessionCard, StudySession, utcnow
from validation import (
    validate_card_text,
    validate_choice,
    validate_deck_description,
    validate_deck_name,
    validate_easiness_factor,
    validate_id,
    validate_interval_days,
    validate_repetition_count,
    validate_response_time,
)

logger = logging.getLogger(__name__)


class Repository:
    def __init__(self, sess: Session):
        self.sess = sess

    def _save(self, obj, conflict: Optional[ConflictError] = None):
        """Add and flush so ids and defaults are populated before commit."""
        self.sess.add(obj)
        try:
            self.sess.flush()
        except IntegrityError:
            self.sess.rollback()
            if conflict is None:
                raise
            raise conflict
        self.sess.refresh(obj)
        return obj


# ---------- Decks ----------
class DeckRepository(Repository):
    def create(self, name: str, description: Optional[str] = None) -> Deck:
        name = validate_deck_name(name)
        description = validate_deck_description(description)
        if self.sess.exec(select(Deck).where(Deck.name == name)).first():
            raise ConflictError(f'Deck with name "{name}" already exists', "DUPLICATE_NAME")
        deck = Deck(name=name, description=description)
        return self._save(deck, ConflictError(f'Deck with name "{name}" already exists', "DUPLICATE_NAME"))

    def get(self, deck_id: int) -> Optional[Deck]:
        return self.sess.get(Deck, validate_id(deck_id, "deck_id"))

    def get_or_raise(self, deck_id: int) -> Deck:
        deck = self.get(deck_id)
        if not deck:
            raise NotFoundError("Deck", deck_id)
        return deck

    def stats(self, deck: Deck, now: Optional[datetime] = None) -> Dict:
        now = now or utcnow()
        total = CardRepository(self.sess).count_by_deck(deck.id)
        due = self.sess.exec(
            select(func.count())
            .select_from(Card)
            .where(Card.deck_id == deck.id, Card.next_review_date <= now)
        ).one()
        last = self.sess.exec(
            select(StudySession)
            .where(StudySession.deck_id == deck.id)
            .order_by(col(StudySession.started_at).desc(), col(StudySession.id).desc())
        ).first()
        return {
            "total_cards": total,
            "due_cards": due,
            "last_studied": last.completed_at if last else None,
        }

    def get_with_stats(self, deck_id: int, now: Optional[datetime] = None) -> Optional[Dict]:
        deck = self.get(deck_id)
        if not deck:
            return None
        return {**deck.model_dump(), "statistics": self.stats(deck, now)}

    def list_with_stats(self, now: Optional[datetime] = None) -> List[Dict]:
        decks = self.sess.exec(select(Deck).order_by(col(Deck.updated_at).desc(), col(Deck.id).desc())).all()
        return [{**d.model_dump(), "statistics": self.stats(d, now)} for d in decks]

    def search(self, query: str, now: Optional[datetime] = None) -> List[Dict]:
        query = (query or "").strip()
        if not query:
            return self.list_with_stats(now)
        pattern = f"%{query.lower()}%"
        decks = self.sess.exec(
            select(Deck)
            .where(or_(func.lower(Deck.name).like(pattern), func.lower(Deck.description).like(pattern)))
            .order_by(col(Deck.updated_at).desc(), col(Deck.id).desc())
        ).all()
        return [{**d.model_dump(), "statistics": self.stats(d, now)} for d in decks]

    def update(self, deck_id: int, name: Optional[str] = None, description: Optional[str] = None) -> Deck:
        deck = self.get_or_raise(deck_id)
        if name is not None:
            name = validate_deck_name(name)
            if name != deck.name:
                clash = self.sess.exec(select(Deck).where(Deck.name == name, Deck.id != deck.id)).first()
                if clash:
                    raise ConflictError(f'Deck with name "{name}" already exists', "DUPLICATE_NAME")
            deck.name = name
        if description is not None:
            deck.description = validate_deck_description(description)
        deck.updated_at = utcnow()
        return self._save(deck, ConflictError(f'Deck with name "{deck.name}" already exists', "DUPLICATE_NAME"))

    def delete(self, deck_id: int) -> Tuple[int, int]:
        deck = self.get_or_raise(deck_id)
        card_count = CardRepository(self.sess).count_by_deck(deck.id)
        self.sess.delete(deck)
        self.sess.flush()
        logger.info("Deleted deck %s with %s cards", deck_id, card_count)
        return deck_id, card_count


# ---------- Cards ----------
CARD_SCHEDULE_FIELDS = ("easiness_factor", "interval_days", "next_review_date", "repetition_count")


class CardRepository(Repository):
    def _check_front_free(self, deck_id: int, front: str, exclude_id: Optional[int] = None) -> None:
        stmt = select(Card).where(Card.deck_id == deck_id, Card.front == front)
        if exclude_id is not None:
            stmt = stmt.where(Card.id != exclude_id)
        if self.sess.exec(stmt).first():
            raise ConflictError("Card with this front content already exists in this deck", "DUPLICATE_CARD")

    def create(self, deck_id: int, front: str, back: str) -> Card:
        deck = DeckRepository(self.sess).get_or_raise(deck_id)
        front = validate_card_text(front, "front")
        back = validate_card_text(back, "back")
        self._check_front_free(deck.id, front)
        card = Card(deck_id=deck.id, front=front, back=back, next_review_date=utcnow())
        return self._save(card, ConflictError("Card with this front content already exists in this deck", "DUPLICATE_CARD"))

    def bulk_create(self, deck_id: int, drafts: Sequence[Dict[str, str]]) -> List[Card]:
        deck = DeckRepository(self.sess).get_or_raise(deck_id)
        if not drafts:
            return []
        cleaned = [
            (validate_card_text(d.get("front"), f"front[{i}]"), validate_card_text(d.get("back"), f"back[{i}]"))
            for i, d in enumerate(drafts)
        ]
        fronts = [f for f, _ in cleaned]
        if len(set(fronts)) != len(fronts):
            raise ConflictError("Duplicate front content found within the batch", "DUPLICATE_IN_BATCH")
        existing = self.sess.exec(
            select(Card.front).where(Card.deck_id == deck.id, col(Card.front).in_(fronts))
        ).all()
        if existing:
            raise ConflictError(
                f"Cards with these front contents already exist: {', '.join(existing)}", "DUPLICATE_CARDS"
            )
        now = utcnow()
        cards = [Card(deck_id=deck.id, front=f, back=b, next_review_date=now) for f, b in cleaned]
        self.sess.add_all(cards)
        self.sess.flush()
        for c in cards:
            self.sess.refresh(c)
        return cards

    def get(self, card_id: int) -> Optional[Card]:
        return self.sess.get(Card, validate_id(card_id, "card_id"))

    def get_or_raise(self, card_id: int) -> Card:
        card = self.get(card_id)
        if not card:
            raise NotFoundError("Card", card_id)
        return card

    def list_by_deck(self, deck_id: int) -> List[Card]:
        deck_id = validate_id(deck_id, "deck_id")
        return list(self.sess.exec(
            select(Card).where(Card.deck_id == deck_id).order_by(col(Card.created_at).desc(), col(Card.id).desc())
        ).all())

    def list_due(self, deck_id: int, now: Optional[datetime] = None) -> List[Card]:
        deck_id = validate_id(deck_id, "deck_id")
        now = now or utcnow()
        return list(self.sess.exec(
            select(Card)
            .where(Card.deck_id == deck_id, Card.next_review_date <= now)
            .order_by(col(Card.next_review_date), col(Card.id))
        ).all())

    def count_by_deck(self, deck_id: int) -> int:
        deck_id = validate_id(deck_id, "deck_id")
        return self.sess.exec(select(func.count()).select_from(Card).where(Card.deck_id == deck_id)).one()

    def update(self, card_id: int, **fields) -> Card:
        """Edit card text or, as a maintenance bypass, its schedule directly."""
        card = self.get_or_raise(card_id)
        unknown = set(fields) - {"front", "back", *CARD_SCHEDULE_FIELDS}
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        if fields.get("front") is not None:
            front = validate_card_text(fields["front"], "front")
            if front != card.front:
                self._check_front_free(card.deck_id, front, exclude_id=card.id)
            card.front = front
        if fields.get("back") is not None:
            card.back = validate_card_text(fields["back"], "back")
        if fields.get("easiness_factor") is not None:
            card.easiness_factor = validate_easiness_factor(fields["easiness_factor"])
        if fields.get("interval_days") is not None:
            card.interval_days = validate_interval_days(fields["interval_days"])
        if fields.get("next_review_date") is not None:
            card.next_review_date = fields["next_review_date"]
        if fields.get("repetition_count") is not None:
            reps = validate_repetition_count(fields["repetition_count"])
            if reps < card.repetition_count:
                raise ConflictError("repetition_count cannot decrease", "REPETITION_COUNT_DECREASE")
            card.repetition_count = reps

        card.updated_at = utcnow()
        return self._save(card, ConflictError("Card with this front content already exists in this deck", "DUPLICATE_CARD"))

    def delete(self, card_id: int) -> None:
        card = self.get_or_raise(card_id)
        self.sess.delete(card)
        self.sess.flush()


# ---------- Study sessions ----------
class StudySessionRepository(Repository):
    def create(self, deck_id: int, session_type: str = "review", now: Optional[datetime] = None) -> StudySession:
        deck = DeckRepository(self.sess).get_or_raise(deck_id)
        if session_type is None:
            session_type = "review"
        session_type = validate_choice(session_type, "session_type", SESSION_TYPES)
        study = StudySession(deck_id=deck.id, session_type=session_type, started_at=now or utcnow())
        return self._save(study, ConflictError(
            f"Deck {deck.id} already has an active study session", "ACTIVE_SESSION_EXISTS"
        ))

    def get(self, session_id: int) -> Optional[StudySession]:
        return self.sess.get(StudySession, validate_id(session_id, "session_id"))

    def get_or_raise(self, session_id: int) -> StudySession:
        study = self.get(session_id)
        if not study:
            raise NotFoundError("Study session", session_id)
        return study

    def find_active(self, deck_id: int) -> Optional[StudySession]:
        deck_id = validate_id(deck_id, "deck_id")
        return self.sess.exec(
            select(StudySession)
            .where(StudySession.deck_id == deck_id, col(StudySession.completed_at).is_(None))
            .order_by(col(StudySession.started_at).desc(), col(StudySession.id).desc())
        ).first()

    def list_by_deck(self, deck_id: int, limit: int = 10) -> List[StudySession]:
        deck_id = validate_id(deck_id, "deck_id")
        return list(self.sess.exec(
            select(StudySession)
            .where(StudySession.deck_id == deck_id)
            .order_by(col(StudySession.started_at).desc(), col(StudySession.id).desc())
            .limit(limit)
        ).all())

    def set_counters(self, session_id: int, studied: int, correct: int) -> StudySession:
        study = self.get_or_raise(session_id)
        if not study.is_active:
            raise ConflictError("Cannot update completed study session", "SESSION_COMPLETED")
        study.cards_studied = studied
        study.cards_correct = correct
        return self._save(study)

    def complete(self, session_id: int, now: Optional[datetime] = None) -> StudySession:
        study = self.get_or_raise(session_id)
        if not study.is_active:
            raise ConflictError("Study session is already completed", "SESSION_COMPLETED")
        study.completed_at = now or utcnow()
        return self._save(study)

    def delete(self, session_id: int) -> None:
        study = self.get_or_raise(session_id)
        self.sess.delete(study)
        self.sess.flush()


# ---------- Session cards (review events) ----------
class SessionCardRepository(Repository):
    def create(
        self,
        session_id: int,
        card_id: int,
        response: str,
        response_time_ms: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> SessionCard:
        response = validate_choice(response, "response", RESPONSES)
        response_time_ms = validate_response_time(response_time_ms)
        study = StudySessionRepository(self.sess).get_or_raise(session_id)
        if not study.is_active:
            raise ConflictError("Cannot add cards to completed study session", "SESSION_COMPLETED")
        card = CardRepository(self.sess).get_or_raise(card_id)

        duplicate = ConflictError("Card has already been reviewed in this session", "DUPLICATE_REVIEW")
        seen = self.sess.exec(
            select(SessionCard).where(SessionCard.session_id == study.id, SessionCard.card_id == card.id)
        ).first()
        if seen:
            raise duplicate
        event = SessionCard(
            session_id=study.id,
            card_id=card.id,
            response=response,
            response_time_ms=response_time_ms,
            reviewed_at=now or utcnow(),
        )
        return self._save(event, duplicate)

    def list_by_session(self, session_id: int) -> List[SessionCard]:
        session_id = validate_id(session_id, "session_id")
        return list(self.sess.exec(
            select(SessionCard)
            .where(SessionCard.session_id == session_id)
            .order_by(col(SessionCard.reviewed_at).desc(), col(SessionCard.id).desc())
        ).all())

    def list_by_card(self, card_id: int, limit: Optional[int] = None) -> List[SessionCard]:
        card_id = validate_id(card_id, "card_id")
        stmt = (
            select(SessionCard)
            .where(SessionCard.card_id == card_id)
            .order_by(col(SessionCard.reviewed_at).desc(), col(SessionCard.id).desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.sess.exec(stmt).all())

    def delete_by_session(self, session_id: int) -> int:
        events = self.list_by_session(session_id)
        for e in events:
            self.sess.delete(e)
        self.sess.flush()
        return len(events)
