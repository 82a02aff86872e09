import json
from datetime import datetime, timedelta

from fastapi.testclient import TestClient
from sqlalchemy.exc import SQLAlchemyError

from hiddenmood.backend.app import main


def add_entry(db_session, user, stress=60, emotion="sad", days_ago=0, feedback="Feedback", text="Some journal text"):
    entry = main.History(
        history_id=main.generate_id(),
        user_id=user.user_id,
        stress_level="medium",
        stress_percent=stress,
        emotion=emotion,
        text=text,
        feedback=feedback,
        video_link_json=json.dumps([{"title": "Relax"}]),
        created_at=datetime.utcnow() - timedelta(days=days_ago),
    )
    db_session.add(entry)
    db_session.commit()
    return entry


def test_history_requires_token(client):
    assert client.get("/api/history").status_code == 401
    assert client.get("/summary").status_code == 401
    assert client.get("/recent").status_code == 401


def test_history_newest_first_and_own_only(client, make_user, auth_headers, db_session):
    user = make_user()
    other = make_user(name="Other Person", email="other@example.com")
    older = add_entry(db_session, user, days_ago=2, text="older")
    newer = add_entry(db_session, user, days_ago=0, text="newer")
    add_entry(db_session, other, text="not mine")

    response = client.get("/api/history", headers=auth_headers(user))
    assert response.status_code == 200
    body = response.json()
    assert [item["history_id"] for item in body] == [newer.history_id, older.history_id]
    assert body[0]["video_link"] == [{"title": "Relax"}]


def test_history_empty_list(client, make_user, auth_headers):
    response = client.get("/api/history", headers=auth_headers(make_user()))
    assert response.status_code == 200
    assert response.json() == []


def test_history_database_error(client, make_user, auth_headers, db_session, monkeypatch):
    headers = auth_headers(make_user())

    def broken_query(*args, **kwargs):
        raise SQLAlchemyError("database error")

    monkeypatch.setattr(db_session, "query", broken_query)
    response = client.get("/api/history", headers=headers)
    assert response.status_code == 500
    assert response.json() == {"error": "Failed to fetch history"}


def test_history_item(client, make_user, auth_headers, db_session):
    user = make_user()
    entry = add_entry(db_session, user, text="Today was hard")
    response = client.get(f"/api/history/{entry.history_id}", headers=auth_headers(user))
    assert response.status_code == 200
    assert response.json()["text"] == "Today was hard"
    assert response.json()["user_id"] == user.user_id


def test_history_item_of_other_user_is_not_found(client, make_user, auth_headers, db_session):
    user = make_user()
    other = make_user(name="Other Person", email="other@example.com")
    entry = add_entry(db_session, other)
    response = client.get(f"/api/history/{entry.history_id}", headers=auth_headers(user))
    assert response.status_code == 404
    assert response.json() == {"error": "History item not found"}


def test_history_item_rejects_placeholder_ids(client, make_user, auth_headers):
    headers = auth_headers(make_user())
    for bad_id in ["undefined", "null", "%20"]:
        response = client.get(f"/api/history/{bad_id}", headers=headers)
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid history ID"}


def test_summary_empty(client, make_user, auth_headers):
    response = client.get("/summary", headers=auth_headers(make_user()))
    assert response.status_code == 200
    assert response.json() == {
        "averageStress": 0,
        "emotionCounts": {},
        "stressHistory": [],
        "latestEmotion": "neutral",
        "latestEmotionTime": None,
        "weeklyCount": 0,
        "totalCount": 0,
        "mostCommonEmotion": "neutral",
        "tips": [],
    }


def test_summary_with_entries(client, make_user, auth_headers, db_session):
    user = make_user()
    add_entry(db_session, user, stress=40, emotion="anxious", days_ago=2, feedback="Plain feedback")
    add_entry(db_session, user, stress=60, emotion="sad", days_ago=1, feedback="Suggestion: Practice mindfulness")
    add_entry(db_session, user, stress=80, emotion="anxious", days_ago=0, feedback="Suggestion: Take a break")

    body = client.get("/summary", headers=auth_headers(user)).json()
    assert body["averageStress"] == 60
    assert body["totalCount"] == 3
    assert body["weeklyCount"] == 3
    assert body["emotionCounts"] == {"anxious": 2, "sad": 1}
    assert body["latestEmotion"] == "anxious"
    assert body["mostCommonEmotion"] == "anxious"
    assert [point["stress"] for point in body["stressHistory"]] == [40, 60, 80]
    assert body["tips"] == ["Take a break", "Practice mindfulness"]


def test_summary_window(client, make_user, auth_headers, db_session):
    user = make_user()
    add_entry(db_session, user, days_ago=1)
    add_entry(db_session, user, days_ago=20)
    add_entry(db_session, user, days_ago=45)
    headers = auth_headers(user)
    assert client.get("/summary", headers=headers).json()["totalCount"] == 2
    assert client.get("/summary?days=7", headers=headers).json()["totalCount"] == 1
    assert client.get("/summary?days=90", headers=headers).json()["totalCount"] == 3
    assert client.get("/summary?days=0", headers=headers).status_code == 400


def test_recent_respects_limit(client, make_user, auth_headers, db_session):
    user = make_user()
    for days_ago in range(5):
        add_entry(db_session, user, days_ago=days_ago, text=f"entry {days_ago}")
    response = client.get("/recent?limit=3", headers=auth_headers(user))
    assert response.status_code == 200
    assert [item["text"] for item in response.json()] == ["entry 0", "entry 1", "entry 2"]


def test_recent_defaults_to_ten(client, make_user, auth_headers, db_session):
    user = make_user()
    for days_ago in range(12):
        add_entry(db_session, user, days_ago=days_ago)
    assert len(client.get("/recent", headers=auth_headers(user)).json()) == 10


def test_detail(client, make_user, auth_headers, db_session):
    user = make_user()
    other = make_user(name="Other Person", email="other@example.com")
    mine = add_entry(db_session, user)
    theirs = add_entry(db_session, other)
    headers = auth_headers(user)

    found = client.get(f"/detail/{mine.history_id}", headers=headers)
    assert found.status_code == 200
    assert found.json()["history_id"] == mine.history_id

    missing = client.get(f"/detail/{theirs.history_id}", headers=headers)
    assert missing.status_code == 404
    assert missing.json() == {"error": "Entry not found"}


def test_detail_database_error(client, make_user, auth_headers, db_session, monkeypatch):
    headers = auth_headers(make_user())

    def broken_query(*args, **kwargs):
        raise SQLAlchemyError("database error")

    monkeypatch.setattr(db_session, "query", broken_query)
    response = client.get("/detail/id_1_abc", headers=headers)
    assert response.status_code == 500
    assert response.json() == {"error": "Failed to fetch entry details"}


def test_unexpected_error_keeps_json_envelope(client, make_user, auth_headers, db_session):
    user = make_user()
    entry = add_entry(db_session, user)
    entry.video_link_json = "{not json"
    db_session.commit()

    lenient = TestClient(main.app, raise_server_exceptions=False)
    response = lenient.get("/api/history", headers=auth_headers(user))
    assert response.status_code == 500
    assert response.headers["content-type"].startswith("application/json")
    assert response.json() == {"error": "Internal server error"}
