import os
import sys
from datetime import datetime, timedelta

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'backend')))

from fastapi.testclient import TestClient

from app import create_app
from config import Config
from database import Database
from repositories import CardRepository, DeckRepository
from study import StudyService


class TestConfig(Config):
    DATABASE_URL = 'sqlite://'
    SQL_ECHO = False
    LOG_LEVEL = 'WARNING'
    CORS_ORIGINS = ['*']
    MAX_IMPORT_CARDS = 5


class FrozenClock:
    def __init__(self, now=datetime(2024, 1, 15, 9, 30)):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def db():
    database = Database(TestConfig.DATABASE_URL).open()
    yield database
    database.close()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def study(db, clock):
    return StudyService(db, clock=clock)


@pytest.fixture
def deck(db):
    with db.transaction() as sess:
        return DeckRepository(sess).create('Spanish', 'Basic vocabulary')


@pytest.fixture
def make_card(db, deck):
    def _make(front, back='answer', deck_id=None, **schedule):
        with db.transaction() as sess:
            repo = CardRepository(sess)
            card = repo.create(deck_id or deck.id, front, back)
            if schedule:
                card = repo.update(card.id, **schedule)
            return card
    return _make


@pytest.fixture
def client():
    app = create_app(TestConfig)
    with TestClient(app) as c:
        yield c
