import asyncio

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from vidya.auth.firebase_auth import get_token_claims
from vidya.database import get_db
from vidya.main import app
from vidya.users.user_service import build_user_document


def run(coro):
    return asyncio.run(coro)


def sample_test_payload(**overrides):
    payload = {
        "title": "Physics Mock 1",
        "description": "Full syllabus mock",
        "grade": "12",
        "subject": "Physics",
        "duration": 30,
        "passing_score": 60,
        "status": "published",
        "questions": [
            {
                "question_id": "q1",
                "text": "2 + 3 = ?",
                "type": "integer",
                "correct_answer": "5",
                "marks": 5,
                "section_title": "Maths",
            },
            {
                "question_id": "q2",
                "text": "Capital of France?",
                "type": "mcq",
                "options": [
                    {"option_id": "o1", "text": "Paris", "is_correct": True},
                    {"option_id": "o2", "text": "Rome"},
                ],
                "correct_answer": "Paris",
                "marks": 10,
                "section_title": "General Knowledge",
            },
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def db():
    return AsyncMongoMockClient()["vidya_test"]


@pytest.fixture
def identity():
    """Claims the fake token resolves to; tests switch users by editing it"""
    return {"uid": "student-1", "email": "student-1@example.com", "name": "Student One"}


@pytest.fixture
def client(db, identity):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_token_claims] = lambda: dict(identity)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def anon_client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def add_user(db):
    def _add(user_id, role="student", **fields):
        doc = build_user_document(
            user_id=user_id,
            email=f"{user_id}@example.com",
            name=user_id.replace("-", " ").title(),
            role=role,
            grade="12",
        )
        doc.update(fields)
        run(db.users.insert_one(doc))
        doc.pop("_id", None)
        return doc
    return _add


@pytest.fixture
def login(identity):
    def _login(user_id):
        identity["uid"] = user_id
        identity["email"] = f"{user_id}@example.com"
    return _login


@pytest.fixture
def published_test(client, add_user, login):
    """A free published test created by a teacher; caller is left as student-1"""
    add_user("teacher-1", role="teacher")
    add_user("student-1")
    login("teacher-1")
    response = client.post("/api/tests", json=sample_test_payload())
    assert response.status_code == 201, response.text
    login("student-1")
    return response.json()
