import pytest

from conftest import run, sample_test_payload


# ==================== SETTINGS ====================

def test_settings_lifecycle(client, add_user, login):
    add_user("admin-1", role="admin")
    login("admin-1")

    created = client.post("/api/admin/settings/create", json={
        "key": "site_name", "value": "Vidya", "category": "general", "is_public": True,
    })
    assert created.status_code == 201
    client.post("/api/admin/settings/create", json={"key": "max_attempts", "value": 3, "category": "test"})

    duplicate = client.post("/api/admin/settings/create", json={"key": "site_name", "value": "x"})
    assert duplicate.status_code == 409

    bulk = client.post("/api/admin/settings", json={"settings": {"max_attempts": 5, "unknown": 1}})
    assert bulk.json() == {"updated": ["max_attempts"], "not_found": ["unknown"]}

    by_category = client.get("/api/admin/settings/category/test").json()["settings"]
    assert by_category[0]["value"] == 5

    public = client.get("/api/admin/settings/public").json()
    assert public == {"site_name": "Vidya"}

    assert client.delete("/api/admin/settings/site_name").status_code == 200
    assert client.delete("/api/admin/settings/site_name").status_code == 404


def test_settings_require_admin(client, add_user):
    add_user("student-1")
    assert client.get("/api/admin/settings").status_code == 403


# ==================== SERIES ====================

def test_series_listing_filters_and_pricing(client, add_user, login):
    add_user("teacher-1", role="teacher")
    login("teacher-1")
    client.post("/api/test-series", json={
        "title": "NEET Crash Course", "description": "Biology heavy", "category": "neet",
        "is_paid": True, "price": 1000, "discount": 25, "popular": True,
    })
    client.post("/api/test-series", json={
        "title": "SSC Free Practice", "description": "Warm up", "category": "ssc",
    })

    everything = client.get("/api/test-series").json()["series"]
    assert [s["title"] for s in everything] == ["NEET Crash Course", "SSC Free Practice"]
    assert everything[0]["discounted_price"] == 750

    assert [s["category"] for s in client.get("/api/test-series", params={"paid": False}).json()["series"]] == ["ssc"]
    assert client.get("/api/test-series", params={"search": "biology"}).json()["total"] == 1


def test_paid_series_requires_price(client, add_user, login):
    add_user("teacher-1", role="teacher")
    login("teacher-1")
    response = client.post("/api/test-series", json={
        "title": "Bad", "description": "No price", "category": "jee", "is_paid": True,
    })
    assert response.status_code == 400


def test_series_self_heals_and_syncs(client, add_user, login, db):
    add_user("admin-1", role="admin")
    login("admin-1")
    series = client.post("/api/test-series", json={
        "title": "GATE CS", "description": "Mocks", "category": "gate",
    }).json()
    test = client.post("/api/tests", json=sample_test_payload(
        is_series_test=True, series_id=series["series_id"],
    )).json()

    fetched = client.get(f"/api/test-series/{series['series_id']}").json()
    assert fetched["tests"] == [test["test_id"]]
    assert fetched["total_tests"] == 1

    run(db.testseries.update_one({"series_id": series["series_id"]}, {"$set": {"total_tests": 7}}))
    report = client.post("/api/test-series/admin/sync-tests").json()["series"]
    assert report == [{"series_id": series["series_id"], "before": 7, "after": 1}]

    listed = client.get(f"/api/test-series/{series['series_id']}/tests").json()
    assert [t["test_id"] for t in listed["tests"]] == [test["test_id"]]


def test_subscription_tracks_progress(client, published_test, login):
    login("teacher-1")
    series = client.post("/api/test-series", json={
        "title": "Physics Series", "description": "Mocks", "category": "jee",
        "tests": [published_test["test_id"], "TEST_OTHER"],
    }).json()

    login("student-1")
    subscribed = client.post(f"/api/test-series/{series['series_id']}/subscribe")
    assert subscribed.status_code == 200
    client.post(f"/api/tests/{published_test['test_id']}/submit", json={"answers": {"q1": "5", "q2": "o1"}})

    entries = client.get("/api/test-series/user/subscribed").json()["series"]
    assert entries[0]["tests_completed"] == [published_test["test_id"]]
    assert entries[0]["progress"] == 50
    assert entries[0]["series"]["title"] == "Physics Series"

    board = client.get(f"/api/leaderboard/series/{series['series_id']}").json()
    assert board["leaderboard"][0]["user_id"] == "student-1"


# ==================== PURCHASES ====================

def test_free_series_purchase_completes_immediately(client, add_user, login, db):
    add_user("teacher-1", role="teacher")
    add_user("student-1")
    login("teacher-1")
    series = client.post("/api/test-series", json={
        "title": "Free Series", "description": "Gift", "category": "cbse",
    }).json()

    login("student-1")
    purchase = client.post("/api/purchases/create", json={"series_id": series["series_id"]}).json()
    assert purchase["status"] == "completed"
    assert purchase["payment_method"] == "free"
    assert purchase["expires_at"] is None

    again = client.post("/api/purchases/create", json={"series_id": series["series_id"]})
    assert again.status_code == 409

    stored = run(db.testseries.find_one({"series_id": series["series_id"]}))
    assert stored["students"] == 1
    purchased = client.get("/api/test-series/user/purchased").json()["series"]
    assert purchased[0]["purchase_id"] == purchase["purchase_id"]


def test_purchase_requires_one_target(client, add_user):
    add_user("student-1")
    assert client.post("/api/purchases/create", json={}).status_code == 400


def test_only_owner_completes_purchase(client, add_user, login):
    add_user("teacher-1", role="teacher")
    add_user("student-1")
    add_user("student-2")
    login("teacher-1")
    series = client.post("/api/test-series", json={
        "title": "Paid", "description": "Series", "category": "upsc", "is_paid": True, "price": 300,
    }).json()

    login("student-1")
    pending = client.post("/api/purchases/create", json={"series_id": series["series_id"]}).json()

    login("student-2")
    assert client.post(f"/api/purchases/{pending['purchase_id']}/complete", json={}).status_code == 403
    assert client.get(f"/api/purchases/{pending['purchase_id']}").status_code == 403

    login("student-1")
    assert client.post(f"/api/purchases/{pending['purchase_id']}/complete", json={}).status_code == 200
    assert client.post(f"/api/purchases/{pending['purchase_id']}/complete", json={}).status_code == 409
    assert len(client.get("/api/purchases/history").json()["purchases"]) == 1


def test_admin_refund_and_stats(client, add_user, login):
    add_user("admin-1", role="admin")
    add_user("student-1")
    login("admin-1")
    series = client.post("/api/test-series", json={
        "title": "Banking PO", "description": "Series", "category": "banking", "is_paid": True, "price": 200,
    }).json()

    login("student-1")
    pending = client.post("/api/purchases/create", json={"series_id": series["series_id"]}).json()
    client.post(f"/api/purchases/{pending['purchase_id']}/complete", json={"payment_id": "pay_9"})

    login("admin-1")
    stats = client.get("/api/purchases/admin/stats").json()
    assert stats["total_revenue"] == 200
    assert stats["by_category"] == {"banking": {"count": 1, "revenue": 200}}
    assert stats["by_status"]["completed"]["count"] == 1

    refunded = client.post(f"/api/purchases/{pending['purchase_id']}/refund")
    assert refunded.json()["status"] == "refunded"
    assert refunded.json()["access_granted"] is False

    listing = client.get("/api/purchases/admin/all", params={"status": "refunded"}).json()
    assert listing["pagination"]["total"] == 1


def test_health(anon_client):
    response = anon_client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["database"] in ("connected", "disconnected")


@pytest.mark.parametrize("body", [
    {"tests": None},
    {"title": None},
    {"discount": 150},
    {"price": -1},
    {"title": "   "},
])
def test_series_update_rejects_invalid_fields(client, add_user, login, db, body):
    add_user("teacher-1", role="teacher")
    login("teacher-1")
    series = client.post("/api/test-series", json={
        "title": "CAT Mocks", "description": "Quant", "category": "cat", "tests": ["TEST_A"],
    }).json()

    response = client.put(f"/api/test-series/{series['series_id']}", json=body)
    assert response.status_code == 400

    stored = run(db.testseries.find_one({"series_id": series["series_id"]}))
    assert stored["tests"] == ["TEST_A"]
    assert stored["discount"] == 0


def test_series_update_dedupes_tests(client, add_user, login):
    add_user("teacher-1", role="teacher")
    login("teacher-1")
    series = client.post("/api/test-series", json={
        "title": "CAT Mocks", "description": "Quant", "category": "cat",
    }).json()

    response = client.put(f"/api/test-series/{series['series_id']}", json={
        "tests": ["TEST_A", "TEST_B", "TEST_A"], "image_url": None, "discount": 10,
    })
    assert response.status_code == 200
    assert response.json()["tests"] == ["TEST_A", "TEST_B"]
    assert response.json()["total_tests"] == 2
