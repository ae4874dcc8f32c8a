import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlmodel import Session, col, select

from database import Database
from errors import ConflictError
from models import EASY, SESSION_TYPES, Card, SessionCard, StudySession, utcnow
from repositories import (
    CardRepository,
    DeckRepository,
    SessionCardRepository,
    StudySessionRepository,
)
from scheduler import is_due, round_half_up, schedule_review
from validation import validate_choice, validate_id

logger = logging.getLogger(__name__)


@dataclass
class ReviewResult:
    event: SessionCard
    card: Card
    session: StudySession


def _average(values: List[int]) -> Optional[float]:
    return sum(values) / len(values) if values else None


class StudyService:
    """Runs study sessions over a deck and applies the schedule on every review.

    Each public call opens its own transaction on ``db``; ``review_one`` writes
    the review event, the card's new schedule and the session counters in one
    commit so a failure leaves none of them behind.
    """

    def __init__(
        self,
        db: Database,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.clock = clock
        self.rng = rng or random.Random()

    # ---------- lifecycle ----------
    def start(self, deck_id: int, session_type: str = "review") -> StudySession:
        if session_type is None:
            session_type = "review"
        session_type = validate_choice(session_type, "session_type", SESSION_TYPES)
        with self.db.transaction() as sess:
            repo = StudySessionRepository(sess)
            active = repo.find_active(deck_id)
            if active:
                logger.debug("Resuming study session %s for deck %s", active.id, deck_id)
                return active
            try:
                study = repo.create(deck_id, session_type, now=self.clock())
            except ConflictError:
                # lost a race against another start() on the same deck
                active = repo.find_active(deck_id)
                if not active:
                    raise
                return active
            logger.info("Started %s session %s for deck %s", session_type, study.id, deck_id)
            return study

    def complete(self, session_id: int) -> StudySession:
        with self.db.transaction() as sess:
            study = StudySessionRepository(sess).complete(session_id, self.clock())
        logger.info(
            "Completed session %s: %s studied, %s correct",
            study.id, study.cards_studied, study.cards_correct,
        )
        return study

    def abandon(self, session_id: int) -> None:
        with self.db.transaction() as sess:
            repo = StudySessionRepository(sess)
            study = repo.get_or_raise(session_id)
            if not study.is_active:
                raise ConflictError("Cannot abandon completed study session", "SESSION_COMPLETED")
            removed = SessionCardRepository(sess).delete_by_session(study.id)
            repo.delete(study.id)
        logger.info("Abandoned session %s, dropped %s reviews", session_id, removed)

    # ---------- queue ----------
    def build_queue(
        self,
        deck_id: int,
        session_type: str = "review",
        limit: Optional[int] = None,
        shuffle: bool = False,
    ) -> List[Card]:
        """Cards to present, in order.

        review: due cards, oldest due date first.
        new:    cards never reviewed, in the order they were added.
        cram:   every card, lowest easiness factor first.
        """
        if session_type is None:
            session_type = "review"
        session_type = validate_choice(session_type, "session_type", SESSION_TYPES)
        now = self.clock()
        with self.db.session() as sess:
            deck = DeckRepository(sess).get_or_raise(deck_id)
            stmt = select(Card).where(Card.deck_id == deck.id)
            if session_type == "review":
                stmt = stmt.where(Card.next_review_date <= now).order_by(
                    col(Card.next_review_date), col(Card.id)
                )
            elif session_type == "new":
                stmt = stmt.where(Card.repetition_count == 0).order_by(col(Card.created_at), col(Card.id))
            else:
                stmt = stmt.order_by(col(Card.easiness_factor), col(Card.next_review_date), col(Card.id))
            cards = list(sess.exec(stmt).all())

        if shuffle:
            self.rng.shuffle(cards)
        if limit is not None:
            cards = cards[:max(0, limit)]
        return cards

    # ---------- reviews ----------
    def review_one(
        self,
        session_id: int,
        card_id: int,
        response: str,
        response_time_ms: Optional[int] = None,
    ) -> ReviewResult:
        now = self.clock()
        with self.db.transaction() as sess:
            study = StudySessionRepository(sess).get_or_raise(session_id)
            if not study.is_active:
                raise ConflictError("Cannot review cards in a completed study session", "SESSION_COMPLETED")
            card = CardRepository(sess).get_or_raise(card_id)
            if card.deck_id != study.deck_id:
                raise ConflictError(
                    f"Card {card.id} does not belong to deck {study.deck_id}", "CARD_NOT_IN_DECK"
                )

            event = SessionCardRepository(sess).create(
                study.id, card.id, response, response_time_ms, now=now
            )
            card = self._reschedule(sess, card, response, now)
            study = self._recount(sess, study.id)

        logger.debug(
            "Session %s card %s %s -> interval %sd, ease %.2f",
            study.id, card.id, response, card.interval_days, card.easiness_factor,
        )
        return ReviewResult(event=event, card=card, session=study)

    def _reschedule(self, sess: Session, card: Card, response: str, now: datetime) -> Card:
        outcome = schedule_review(
            card.easiness_factor, card.interval_days, card.repetition_count, response, now
        )
        return CardRepository(sess).update(
            card.id,
            easiness_factor=outcome.easiness_factor,
            interval_days=outcome.interval_days,
            next_review_date=outcome.next_review_date,
            repetition_count=outcome.repetition_count,
        )

    def _recount(self, sess: Session, session_id: int) -> StudySession:
        # rebuilt from the events every time, never incremented
        events = SessionCardRepository(sess).list_by_session(session_id)
        correct = sum(1 for e in events if e.response == EASY)
        return StudySessionRepository(sess).set_counters(session_id, len(events), correct)

    # ---------- reads ----------
    def get_session(self, session_id: int) -> StudySession:
        with self.db.session() as sess:
            return StudySessionRepository(sess).get_or_raise(session_id)

    def get_active(self, deck_id: int) -> Optional[StudySession]:
        with self.db.session() as sess:
            return StudySessionRepository(sess).find_active(deck_id)

    def list_sessions(self, deck_id: int, limit: int = 10) -> List[StudySession]:
        with self.db.session() as sess:
            DeckRepository(sess).get_or_raise(deck_id)
            return StudySessionRepository(sess).list_by_deck(deck_id, limit)

    def progress(self, session_id: int) -> Dict:
        with self.db.session() as sess:
            study = StudySessionRepository(sess).get_or_raise(session_id)
            events = SessionCardRepository(sess).list_by_session(study.id)
        times = [e.response_time_ms for e in events if e.response_time_ms is not None]
        return {
            "session": study,
            "total_answered": len(events),
            "correct_answers": sum(1 for e in events if e.response == EASY),
            "average_response_time": _average(times),
        }

    def stats(self, session_id: int) -> Dict:
        study = self.get_session(session_id)
        accuracy = (study.cards_correct / study.cards_studied) * 100 if study.cards_studied else 0
        return {
            "total_cards": study.cards_studied,
            "correct_cards": study.cards_correct,
            "accuracy": round_half_up(accuracy * 100) / 100,
        }

    def card_history(self, card_id: int) -> Dict:
        validate_id(card_id, "card_id")
        with self.db.session() as sess:
            card = CardRepository(sess).get_or_raise(card_id)
            events = SessionCardRepository(sess).list_by_card(card_id)
        times = [e.response_time_ms for e in events if e.response_time_ms is not None]
        return {
            "total_reviews": len(events),
            "correct_reviews": sum(1 for e in events if e.response == EASY),
            "average_response_time": _average(times),
            "last_reviewed": events[0].reviewed_at if events else None,
            "is_due": is_due(card.next_review_date, self.clock()),
        }
