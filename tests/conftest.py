import os

os.environ["RATE_LIMIT_MAX_REQUESTS"] = "0"

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import create_document, get_db
from main import app
from notifier import get_notifier
from schemas import User
from security import hash_password, token_for

PASSWORD = "Secret123"


class RecordingNotifier:
    def __init__(self):
        self.published = []

    def publish(self, topic, payload, room=None):
        self.published.append((topic, payload, room))

    def topics(self):
        return [topic for topic, _, _ in self.published]


@pytest.fixture
def db():
    return mongomock.MongoClient()["alumni_connect_test"]


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(db, notifier):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture(scope="session")
def password_hash():
    return hash_password(PASSWORD)


@pytest.fixture
def make_user(db, password_hash):
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        fields = {
            "name": f"Alumnus {counter['n']}",
            "email": f"alum{counter['n']}@example.com",
            "password": password_hash,
            "batch": "2020",
            "role": "Engineer",
        }
        fields.update(overrides)
        return create_document(db, "user", User(**fields))

    return _make


def auth(user):
    return {"Authorization": f"Bearer {token_for(user)}"}
