import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from config import Config, configure_logging
from database import Database
from errors import AppError, ValidationError, to_failure
from ingest import extract_qa_pairs, read_pdf_text
from models import Card, StudySession
from repositories import CardRepository, DeckRepository
from study import StudyService

logger = logging.getLogger(__name__)

SessionTypeIn = Literal["review", "cram", "new"]
ResponseIn = Literal["easy", "hard"]


# ---------- Pydantic I/O ----------
class DeckIn(BaseModel):
    name: str
    description: Optional[str] = None


class DeckUpdateIn(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class CardIn(BaseModel):
    front: str
    back: str


class BulkCardsIn(BaseModel):
    cards: List[CardIn]


class CardUpdateIn(BaseModel):
    front: Optional[str] = None
    back: Optional[str] = None
    easiness_factor: Optional[float] = None
    interval_days: Optional[int] = None
    next_review_date: Optional[datetime] = None
    repetition_count: Optional[int] = None


class StartSessionIn(BaseModel):
    session_type: SessionTypeIn = "review"


class ReviewIn(BaseModel):
    card_id: int
    response: ResponseIn
    response_time_ms: Optional[int] = Field(default=None, ge=0)


class TextImportIn(BaseModel):
    text: str


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _require_confirmation(confirm: bool) -> None:
    if not confirm:
        raise ValidationError("Confirmation is required for this action", "confirm")


# ---------- dependencies ----------
def get_db(request: Request) -> Database:
    return request.app.state.db


def get_study(request: Request) -> StudyService:
    return request.app.state.study


def create_app(config: type = Config, database: Optional[Database] = None) -> FastAPI:
    configure_logging(config.LOG_LEVEL)
    db = database or Database(config.DATABASE_URL, echo=config.SQL_ECHO)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db.open()
        try:
            yield
        finally:
            db.close()

    app = FastAPI(title="StudyTool API", version="0.3", lifespan=lifespan)
    app.state.db = db
    app.state.study = StudyService(db)
    app.state.config = config
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS, allow_credentials=True,
        allow_methods=["*"], allow_headers=["*"]
    )

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=to_failure(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ())[1:]) or None
        message = f"{field}: {first.get('msg')}" if field else "Invalid request"
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": message, "code": "VALIDATION_ERROR"},
        )

    app.include_router(_routes())
    return app


def _routes():
    router = APIRouter()

    @router.get("/health")
    def health(db: Database = Depends(get_db)):
        ok = db.is_open and db.ping()
        return {"backend": "running", "database": "connected" if ok else "unavailable"}

    # ---------- Decks ----------
    @router.post("/decks", status_code=201)
    def create_deck(payload: DeckIn, db: Database = Depends(get_db)):
        with db.transaction() as sess:
            repo = DeckRepository(sess)
            deck = repo.create(payload.name, payload.description)
            return repo.get_with_stats(deck.id)

    @router.get("/decks")
    def list_decks(q: Optional[str] = None, db: Database = Depends(get_db)):
        with db.session() as sess:
            repo = DeckRepository(sess)
            return repo.search(q) if q else repo.list_with_stats()

    @router.get("/decks/{deck_id}")
    def get_deck(deck_id: int, db: Database = Depends(get_db)):
        with db.session() as sess:
            repo = DeckRepository(sess)
            repo.get_or_raise(deck_id)
            deck = repo.get_with_stats(deck_id)
            deck["cards"] = CardRepository(sess).list_by_deck(deck_id)
            return deck

    @router.patch("/decks/{deck_id}")
    def update_deck(deck_id: int, payload: DeckUpdateIn, db: Database = Depends(get_db)):
        with db.transaction() as sess:
            repo = DeckRepository(sess)
            repo.update(deck_id, payload.name, payload.description)
            return repo.get_with_stats(deck_id)

    @router.delete("/decks/{deck_id}")
    def delete_deck(deck_id: int, confirm: bool = False, db: Database = Depends(get_db)):
        _require_confirmation(confirm)
        with db.transaction() as sess:
            deleted_id, card_count = DeckRepository(sess).delete(deck_id)
        return {"deleted_deck_id": deleted_id, "deleted_card_count": card_count}

    # ---------- Cards ----------
    @router.post("/decks/{deck_id}/cards", response_model=Card, status_code=201)
    def create_card(deck_id: int, payload: CardIn, db: Database = Depends(get_db)):
        with db.transaction() as sess:
            return CardRepository(sess).create(deck_id, payload.front, payload.back)

    @router.post("/decks/{deck_id}/cards/bulk", response_model=List[Card], status_code=201)
    def bulk_create_cards(deck_id: int, payload: BulkCardsIn, db: Database = Depends(get_db)):
        with db.transaction() as sess:
            return CardRepository(sess).bulk_create(deck_id, [c.model_dump() for c in payload.cards])

    @router.get("/decks/{deck_id}/cards", response_model=List[Card])
    def list_cards(deck_id: int, due_only: bool = False, db: Database = Depends(get_db)):
        with db.session() as sess:
            DeckRepository(sess).get_or_raise(deck_id)
            repo = CardRepository(sess)
            return repo.list_due(deck_id) if due_only else repo.list_by_deck(deck_id)

    @router.get("/cards/{card_id}", response_model=Card)
    def get_card(card_id: int, db: Database = Depends(get_db)):
        with db.session() as sess:
            return CardRepository(sess).get_or_raise(card_id)

    @router.patch("/cards/{card_id}", response_model=Card)
    def update_card(card_id: int, payload: CardUpdateIn, db: Database = Depends(get_db)):
        fields = payload.model_dump(exclude_unset=True)
        if "next_review_date" in fields:
            fields["next_review_date"] = _naive_utc(fields["next_review_date"])
        with db.transaction() as sess:
            return CardRepository(sess).update(card_id, **fields)

    @router.delete("/cards/{card_id}")
    def delete_card(card_id: int, confirm: bool = False, db: Database = Depends(get_db)):
        _require_confirmation(confirm)
        with db.transaction() as sess:
            CardRepository(sess).delete(card_id)
        return {"deleted_card_id": card_id}

    @router.get("/cards/{card_id}/history")
    def card_history(card_id: int, study: StudyService = Depends(get_study)):
        return study.card_history(card_id)

    # ---------- Import ----------
    def _import(deck_id: int, text: str, request: Request) -> List[Card]:
        limit = request.app.state.config.MAX_IMPORT_CARDS
        drafts = extract_qa_pairs(text, max_pairs=limit)
        with get_db(request).transaction() as sess:
            return CardRepository(sess).bulk_create(deck_id, drafts)

    @router.post("/decks/{deck_id}/import/text", response_model=List[Card], status_code=201)
    def import_text(deck_id: int, payload: TextImportIn, request: Request):
        return _import(deck_id, payload.text, request)

    @router.post("/decks/{deck_id}/import/pdf", response_model=List[Card], status_code=201)
    def import_pdf(deck_id: int, request: Request, file: UploadFile = File(...)):
        if not (file.filename or "").lower().endswith(".pdf"):
            raise ValidationError("Upload a PDF", "file")
        return _import(deck_id, read_pdf_text(file.file.read()), request)

    # ---------- Study sessions ----------
    @router.post("/decks/{deck_id}/sessions", response_model=StudySession)
    def start_session(deck_id: int, payload: Optional[StartSessionIn] = None,
                      study: StudyService = Depends(get_study)):
        session_type = payload.session_type if payload else "review"
        return study.start(deck_id, session_type)

    @router.get("/decks/{deck_id}/sessions", response_model=List[StudySession])
    def list_sessions(deck_id: int, limit: int = 10, study: StudyService = Depends(get_study)):
        return study.list_sessions(deck_id, limit)

    @router.get("/decks/{deck_id}/sessions/active", response_model=Optional[StudySession])
    def active_session(deck_id: int, study: StudyService = Depends(get_study)):
        return study.get_active(deck_id)

    @router.get("/decks/{deck_id}/queue", response_model=List[Card])
    def study_queue(deck_id: int, session_type: SessionTypeIn = "review", limit: Optional[int] = None,
                    shuffle: bool = False, study: StudyService = Depends(get_study)):
        return study.build_queue(deck_id, session_type, limit=limit, shuffle=shuffle)

    @router.get("/sessions/{session_id}", response_model=StudySession)
    def get_session(session_id: int, study: StudyService = Depends(get_study)):
        return study.get_session(session_id)

    @router.post("/sessions/{session_id}/reviews", status_code=201)
    def review_card(session_id: int, payload: ReviewIn, study: StudyService = Depends(get_study)):
        result = study.review_one(session_id, payload.card_id, payload.response, payload.response_time_ms)
        return {"event": result.event, "card": result.card, "session": result.session}

    @router.get("/sessions/{session_id}/progress")
    def session_progress(session_id: int, study: StudyService = Depends(get_study)):
        return study.progress(session_id)

    @router.get("/sessions/{session_id}/stats")
    def session_stats(session_id: int, study: StudyService = Depends(get_study)):
        return study.stats(session_id)

    @router.post("/sessions/{session_id}/complete", response_model=StudySession)
    def complete_session(session_id: int, study: StudyService = Depends(get_study)):
        return study.complete(session_id)

    @router.delete("/sessions/{session_id}")
    def abandon_session(session_id: int, study: StudyService = Depends(get_study)):
        study.abandon(session_id)
        return {"abandoned_session_id": session_id}

    return router


app = create_app()


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
