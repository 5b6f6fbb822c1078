"""Tests for syncservice/app.py — HTTP endpoints, status codes and auth."""

import pytest
from fastapi.testclient import TestClient

from conftest import make_session
from habitsync.models import SessionRecord, StreakState
from habitsync.scoring import score_session
from syncservice.app import create_app


@pytest.fixture
def client(workspace):
    return TestClient(create_app(workspace))


def _commit_body(session_id="s1", base_revision=0, prior=None):
    session = make_session(session_id)
    outcome, state = score_session(prior or StreakState(), session)
    body = SessionRecord(session=session, outcome=outcome).to_dict()
    body["streakState"] = state.to_dict()
    body["baseRevision"] = base_revision
    return body


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200


def test_unknown_session_is_404(client):
    assert client.get("/v1/users/u1/sessions/nope").status_code == 404


def test_put_creates_then_reports_existing(client):
    body = _commit_body()
    created = client.put("/v1/users/u1/sessions/s1", json=body)
    assert created.status_code == 201
    assert created.json()["status"] == "created"
    assert created.json()["streakState"]["revision"] == 1

    again = client.put("/v1/users/u1/sessions/s1", json=body)
    assert again.status_code == 200
    assert again.json()["outcome"] == body["outcome"]

    fetched = client.get("/v1/users/u1/sessions/s1")
    assert fetched.status_code == 200
    assert fetched.json()["outcome"] == body["outcome"]


def test_put_with_stale_revision_conflicts(client):
    client.put("/v1/users/u1/sessions/s1", json=_commit_body("s1"))
    response = client.put("/v1/users/u1/sessions/s2", json=_commit_body("s2", base_revision=0))

    assert response.status_code == 409
    assert response.json()["streakState"]["revision"] == 1
    assert client.get("/v1/users/u1/sessions/s2").status_code == 404


def test_put_id_mismatch_rejected(client):
    response = client.put("/v1/users/u1/sessions/other", json=_commit_body("s1"))
    assert response.status_code == 422


def test_put_for_another_user_rejected(client):
    response = client.put("/v1/users/u2/sessions/s1", json=_commit_body("s1"))
    assert response.status_code == 422


def test_invalid_user_id_rejected(client):
    assert client.get("/v1/users/bad%20id/streak").status_code == 400


def test_history_limit(client):
    client.put("/v1/users/u1/sessions/s1", json=_commit_body("s1"))
    prior = StreakState.from_dict(client.get("/v1/users/u1/streak").json())
    client.put("/v1/users/u1/sessions/s2", json=_commit_body("s2", base_revision=1, prior=prior))

    records = client.get("/v1/users/u1/history", params={"limit": 1}).json()["records"]
    assert [r["session"]["id"] for r in records] == ["s2"]


def test_goals_patch_and_read(client):
    assert client.get("/v1/users/u1/goals").json()["dailyFrequency"] == 2

    response = client.patch(
        "/v1/users/u1/goals",
        json={"field": "dailyFrequency", "value": 3, "source": "user", "updatedAt": "2026-03-10T12:00:00+00:00"},
    )
    assert response.status_code == 200
    assert response.json()["dailyFrequency"] == 3
    assert client.get("/v1/users/u1/goals").json()["updatedAt"].startswith("2026-03-10T12:00:00")


def test_goals_patch_validation(client):
    assert client.patch("/v1/users/u1/goals", json={"value": 3}).status_code == 400
    assert client.patch("/v1/users/u1/goals", json={"field": "dailyFrequency", "value": 0}).status_code == 400
    assert client.patch("/v1/users/u1/goals", json={"field": "mood", "value": 1}).status_code == 400
    bad_stamp = {"field": "dailyFrequency", "value": 2, "updatedAt": "yesterday"}
    assert client.patch("/v1/users/u1/goals", json=bad_stamp).status_code == 400


def test_import_skips_known_sessions(client):
    record = SessionRecord.from_dict(_commit_body("g1")).to_dict()
    payload = {"records": [record], "streakState": StreakState(time_streak=1, total_points=110).to_dict()}

    assert client.post("/v1/users/u1/import", json=payload).json() == {"imported": 1}
    assert client.post("/v1/users/u1/import", json=payload).json() == {"imported": 0}
    assert client.get("/v1/users/u1/streak").json()["revision"] == 1


def test_auth_required_when_configured(workspace, monkeypatch):
    monkeypatch.setenv("HABITSYNC_SERVICE_USERNAME", "svc")
    monkeypatch.setenv("HABITSYNC_SERVICE_PASSWORD", "secret")
    client = TestClient(create_app(workspace))

    assert client.get("/v1/users/u1/streak").status_code == 401
    assert client.get("/v1/users/u1/streak", auth=("svc", "wrong")).status_code == 401
    assert client.get("/v1/users/u1/streak", auth=("svc", "secret")).status_code == 200
