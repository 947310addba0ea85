from unittest.mock import patch

import pytest

from conftest import run
from vidya.auth.permissions import UserContext
from vidya.database import create_indexes
from vidya.errors import ConflictError
from vidya.exams import attempt_service

TEST = {
    "test_id": "TEST_RACE",
    "title": "Race Mock",
    "subject": "Physics",
    "duration": 10,
    "passing_score": 60,
    "questions": [{"question_id": "q1", "type": "integer", "correct_answer": "5", "marks": 1}],
}

STUDENT = UserContext({"user_id": "student-1", "name": "Student One", "email": "s1@example.com", "role": "student"})

real_get_or_start = attempt_service.get_or_start_attempt


def test_submit_loses_race_when_attempt_finalised_elsewhere(db):
    async def finalised_meanwhile(db_, test, user_id):
        attempt = await real_get_or_start(db_, test, user_id)
        await db_.testattempts.update_one(
            {"attempt_id": attempt["attempt_id"]}, {"$set": {"status": "completed", "score": 100}}
        )
        return attempt

    with patch.object(attempt_service, "get_or_start_attempt", side_effect=finalised_meanwhile):
        with pytest.raises(ConflictError) as excinfo:
            run(attempt_service.submit_attempt(db, TEST, STUDENT, {"q1": "5"}, None))

    assert excinfo.value.status_code == 409
    stored = run(db.testattempts.find({"test_id": "TEST_RACE"}).to_list(length=None))
    assert [a["score"] for a in stored] == [100]
    assert run(db.leaderboards.count_documents({})) == 0


def test_unique_index_rejects_second_completed_attempt(db):
    run(create_indexes(db))

    async def completed_by_other_request(db_, test, user_id):
        attempt = await real_get_or_start(db_, test, user_id)
        await db_.testattempts.insert_one({
            "attempt_id": "ATT_OTHER", "test_id": test["test_id"], "user_id": user_id,
            "status": "completed", "score": 40,
        })
        return attempt

    with patch.object(attempt_service, "get_or_start_attempt", side_effect=completed_by_other_request):
        with pytest.raises(ConflictError):
            run(attempt_service.submit_attempt(db, TEST, STUDENT, {"q1": "5"}, None))

    completed = run(db.testattempts.find({"status": "completed"}).to_list(length=None))
    assert [a["attempt_id"] for a in completed] == ["ATT_OTHER"]


def test_in_progress_attempts_are_not_unique(db):
    run(create_indexes(db))
    for attempt_id in ("ATT_A", "ATT_B"):
        run(db.testattempts.insert_one({
            "attempt_id": attempt_id, "test_id": "TEST_RACE", "user_id": "student-1", "status": "in_progress",
        }))
    assert run(db.testattempts.count_documents({"status": "in_progress"})) == 2


def test_submit_twice_is_rejected(db):
    run(create_indexes(db))
    first = run(attempt_service.submit_attempt(db, TEST, STUDENT, {"q1": "5"}, None))
    assert first["status"] == "completed"

    with pytest.raises(ConflictError):
        run(attempt_service.submit_attempt(db, TEST, STUDENT, {"q1": "5"}, None))
