import pytest

from conftest import run, sample_test_payload


def test_create_test_computes_totals_and_sections(client, add_user, login):
    add_user("teacher-1", role="teacher")
    login("teacher-1")

    response = client.post("/api/tests", json=sample_test_payload(status="draft"))
    assert response.status_code == 201
    test = response.json()
    assert test["test_id"].startswith("TEST_")
    assert test["total_marks"] == 15
    assert test["total_questions"] == 2
    assert test["metadata"]["version"] == 1
    sections = {s["title"]: s for s in test["sections"]}
    assert sections["Maths"]["total_marks"] == 5
    assert sections["Maths"]["passing_marks"] == 3  # ceil(5 * 60 / 100)
    assert sections["General Knowledge"]["total_questions"] == 1


def test_students_cannot_create_tests(client, add_user):
    add_user("student-1")
    response = client.post("/api/tests", json=sample_test_payload())
    assert response.status_code == 403
    assert response.json()["error"] == "Access denied: Teacher privileges required"


def test_paid_test_requires_price(client, add_user, login):
    add_user("teacher-1", role="teacher")
    login("teacher-1")
    response = client.post("/api/tests", json=sample_test_payload(is_paid=True, price=0))
    assert response.status_code == 400
    assert response.json()["error"] == "Paid tests must have a price greater than 0"


def test_series_test_requires_series_id(client, add_user, login):
    add_user("teacher-1", role="teacher")
    login("teacher-1")
    response = client.post("/api/tests", json=sample_test_payload(is_series_test=True))
    assert response.status_code == 400
    assert response.json()["error"] == "Series tests must have a seriesId"


def test_invalid_body_is_reported_as_400(client, add_user, login):
    add_user("teacher-1", role="teacher")
    login("teacher-1")
    response = client.post("/api/tests", json={"title": "No questions"})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Validation failed"
    assert body["details"]


def test_update_bumps_version_and_recomputes(client, published_test, login):
    login("teacher-1")
    questions = sample_test_payload()["questions"]
    questions[0]["marks"] = 10
    response = client.put(f"/api/tests/{published_test['test_id']}", json={"questions": questions})
    assert response.status_code == 200
    updated = response.json()
    assert updated["metadata"]["version"] == 2
    assert updated["total_marks"] == 20


def test_student_view_hides_answers(client, published_test):
    response = client.get(f"/api/tests/{published_test['test_id']}")
    assert response.status_code == 200
    test = response.json()
    assert test["access"]["access_reason"] == "free_test"
    for question in test["questions"]:
        assert "correct_answer" not in question
        assert all("is_correct" not in option for option in question["options"])


def test_missing_test_is_404(client, add_user):
    add_user("student-1")
    response = client.get("/api/tests/TEST_DOESNOTEXIST")
    assert response.status_code == 404
    assert response.json() == {"error": "Test not found"}


def test_categories_merge_defaults_with_subjects(client, published_test):
    response = client.get("/api/tests/categories")
    assert response.status_code == 200
    categories = response.json()["categories"]
    names = [c["name"] for c in categories]
    assert names[:3] == ["SSC", "UPSC", "JEE"]
    physics = next(c for c in categories if c["name"] == "Physics")
    assert physics["icon"] == "science"


def test_draft_tests_are_not_listed_for_students(client, published_test, login):
    login("teacher-1")
    client.post("/api/tests", json=sample_test_payload(title="Draft", status="draft"))
    login("student-1")
    response = client.get("/api/tests")
    titles = [t["title"] for t in response.json()["tests"]]
    assert titles == ["Physics Mock 1"]


def test_publishing_requires_questions(client, add_user, login):
    add_user("teacher-1", role="teacher")
    login("teacher-1")
    draft = client.post("/api/tests", json=sample_test_payload(status="draft", questions=[])).json()
    response = client.patch(f"/api/tests/{draft['test_id']}/status", json={"status": "published"})
    assert response.status_code == 400
    assert "At least one question is required" in response.json()["details"]


# ==================== SUBMISSION ====================

def test_submit_scores_attempt(client, published_test, db):
    test_id = published_test["test_id"]
    response = client.post(f"/api/tests/{test_id}/submit", json={"answers": {"q1": "5", "q2": "Rome"}})
    assert response.status_code == 200
    attempt = response.json()["attempt"]
    assert attempt["status"] == "completed"
    assert attempt["obtained_marks"] == 5
    assert attempt["total_marks"] == 15
    assert attempt["score"] == 33
    assert attempt["is_passed"] is False
    assert attempt["time_taken"] >= 1
    assert [r["is_correct"] for r in attempt["results"]] == [True, False]

    test = run(db.tests.find_one({"test_id": test_id}))
    assert test["attempts"] == 1
    assert test["average_score"] == 33

    user = run(db.users.find_one({"user_id": "student-1"}))
    assert user["test_history"][0]["score"] == 33


def test_second_submit_conflicts(client, published_test):
    test_id = published_test["test_id"]
    first = client.post(f"/api/tests/{test_id}/submit", json={"answers": {"q1": "5", "q2": "o1"}})
    assert first.status_code == 200
    assert first.json()["attempt"]["is_passed"] is True

    second = client.post(f"/api/tests/{test_id}/submit", json={"answers": {"q1": "5"}})
    assert second.status_code == 409
    assert second.json()["error"] == "Test already completed"


def test_saved_progress_is_merged_on_submit(client, published_test):
    test_id = published_test["test_id"]
    saved = client.post(f"/api/tests/{test_id}/save-progress", json={"answers": {"q2": "Paris"}, "time_left": 900})
    assert saved.status_code == 200
    assert saved.json()["attempt"]["time_left"] == 900

    response = client.post(f"/api/tests/{test_id}/submit", json={"answers": {"q1": "5"}})
    attempt = response.json()["attempt"]
    assert attempt["answers"] == {"q2": "Paris", "q1": "5"}
    assert attempt["score"] == 100


def test_start_reuses_in_progress_attempt(client, published_test):
    test_id = published_test["test_id"]
    first = client.post(f"/api/tests/{test_id}/start").json()
    second = client.post(f"/api/tests/{test_id}/start").json()
    assert first["attempt_id"] == second["attempt_id"]
    assert first["time_left"] == 30 * 60


def test_check_completion_and_my_attempts(client, published_test):
    test_id = published_test["test_id"]
    assert client.get(f"/api/tests/{test_id}/check-completion").json()["completed"] is False

    client.post(f"/api/tests/{test_id}/submit", json={"answers": {"q1": "5"}})

    completion = client.get(f"/api/tests/{test_id}/check-completion").json()
    assert completion["completed"] is True
    attempts = client.get(f"/api/tests/{test_id}/attempts/me").json()["attempts"]
    assert len(attempts) == 1


def test_other_students_cannot_read_an_attempt(client, published_test, add_user, login):
    test_id = published_test["test_id"]
    attempt = client.post(f"/api/tests/{test_id}/submit", json={"answers": {}}).json()["attempt"]

    add_user("student-2")
    login("student-2")
    response = client.get(f"/api/tests/{test_id}/attempts/{attempt['attempt_id']}")
    assert response.status_code == 403


def test_stats_for_staff(client, published_test, login):
    test_id = published_test["test_id"]
    client.post(f"/api/tests/{test_id}/submit", json={"answers": {"q1": "5", "q2": "Paris"}})

    login("teacher-1")
    stats = client.get(f"/api/tests/{test_id}/stats").json()
    assert stats["question_types"] == {"integer": 1, "mcq": 1}
    assert stats["completed_attempts"] == 1
    assert stats["pass_rate"] == 100
    assert stats["ready_for_publishing"] is True


@pytest.mark.parametrize("body", [
    {"passing_score": None},
    {"questions": None},
    {"duration": None},
    {"discount": 150},
    {"passing_score": 500},
    {"duration": 0},
    {"price": -5},
    {"questions": [{"text": "Zero marks", "type": "shortAnswer", "correct_answer": "x", "marks": 0}]},
])
def test_update_rejects_invalid_fields(client, published_test, login, db, body):
    login("teacher-1")
    response = client.put(f"/api/tests/{published_test['test_id']}", json=body)
    assert response.status_code == 400
    assert response.json()["error"] == "Validation failed"

    stored = run(db.tests.find_one({"test_id": published_test["test_id"]}))
    assert stored["passing_score"] == 60
    assert stored["discount"] == 0
    assert stored["metadata"]["version"] == 1


def test_update_may_clear_series_id(client, published_test, login):
    login("teacher-1")
    response = client.put(f"/api/tests/{published_test['test_id']}", json={"series_id": None, "passing_score": 40})
    assert response.status_code == 200
    assert response.json()["series_id"] is None
    assert response.json()["passing_score"] == 40
