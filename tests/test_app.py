# tests/test_app.py

import pytest
from fastapi.testclient import TestClient

from stagesync.app import app, get_backend, get_cache, get_config, get_registry
from stagesync.config_manager import ConfigManager
from stagesync.core.cache import ReadViewCache, groups_view_key
from stagesync.core.sessions import SessionRegistry


@pytest.fixture
def client(config_file, backend, fake_redis):
    config = ConfigManager(config_file)
    registry = SessionRegistry()
    cache = ReadViewCache(fake_redis)

    app.dependency_overrides[get_config] = lambda: config
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_backend] = lambda: backend
    app.dependency_overrides[get_cache] = lambda: cache
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def group_session(client):
    response = client.post("/api/courses/cs2100_fa26/assignments/301/group-sessions")
    assert response.status_code == 201
    return response.json()["session_id"]


@pytest.fixture
def email_session(client):
    response = client.post("/api/courses/cs2100_fa26/email-sessions")
    assert response.status_code == 201
    return response.json()["session_id"]


def test_list_courses(client):
    response = client.get("/api/courses")

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["courses"][0]["assignments"][0]["max_group_size"] == 3


def test_unknown_course_and_assignment(client):
    assert client.post("/api/courses/nope/email-sessions").status_code == 404
    assert client.post("/api/courses/cs2100_fa26/assignments/999/group-sessions").status_code == 404
    assert client.get("/api/sessions/missing").status_code == 404


def test_conflicting_stage_returns_409_and_keeps_store(client, group_session):
    client.post(
        f"/api/sessions/{group_session}/groups",
        json={"groups": [{"name": "team-red", "member_ids": ["s1", "s2"]}]},
    )

    response = client.post(
        f"/api/sessions/{group_session}/moves",
        json={"moves": [{"subject_id": "s4", "to_group_id": 3}, {"subject_id": "s2", "to_group_id": 3}]},
    )

    assert response.status_code == 409
    assert response.json()["detail"]["conflicting_ids"] == ["s2"]
    listing = client.get(f"/api/sessions/{group_session}").json()
    assert len(listing["intents"]) == 1


def test_group_size_problems_are_warnings(client, group_session):
    response = client.post(
        f"/api/sessions/{group_session}/groups",
        json={"groups": [{"name": "solo", "member_ids": ["s1"]}]},
    )

    assert response.status_code == 200
    assert response.json()["warnings"] == ["Group solo is too small (min: 2, current: 1)"]


def test_invalid_group_name_is_rejected(client, group_session):
    response = client.post(
        f"/api/sessions/{group_session}/groups",
        json={"groups": [{"name": "no spaces", "member_ids": ["s1", "s2"]}]},
    )

    assert response.status_code == 400


def test_wrong_session_kind(client, email_session):
    response = client.post(
        f"/api/sessions/{email_session}/moves",
        json={"moves": [{"subject_id": "s1", "to_group_id": 3}]},
    )

    assert response.status_code == 400


def test_publish_group_session(client, group_session, backend, fake_redis):
    client.post(
        f"/api/sessions/{group_session}/groups",
        json={"groups": [{"name": "team-red", "member_ids": ["s1", "s2"]}]},
    )
    client.post(
        f"/api/sessions/{group_session}/moves",
        json={"moves": [{"subject_id": "s3", "from_group_id": 5}]},
    )
    backend.fail("move_member", "s3")

    response = client.post(f"/api/sessions/{group_session}/publish")

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["failed"] == 1
    assert not data["overall_success"]
    # Moves are applied before group creates
    assert data["outcomes"][0]["intent"]["kind"] == "member_move"
    assert data["outcomes"][1]["success"]
    assert client.get(f"/api/sessions/{group_session}").json()["intents"] == []
    assert groups_view_key(301) in fake_redis.deleted


def test_generate_groups_preview(client, group_session, backend):
    response = client.post(
        f"/api/sessions/{group_session}/groups/generate",
        json={"ungrouped_ids": ["a", "b", "c", "d"], "group_size": 2, "seed": 7},
    )

    assert response.status_code == 200
    data = response.json()
    assert [g["name"] for g in data["groups"]] == ["anon-1", "anon-2"]
    assert data["warnings"] == []
    # Nothing is staged by a preview
    assert client.get(f"/api/sessions/{group_session}").json()["intents"] == []


def test_generate_groups_warns_on_size(client, group_session):
    response = client.post(
        f"/api/sessions/{group_session}/groups/generate",
        json={"ungrouped_ids": ["a", "b", "c", "d", "e"], "group_size": 5},
    )

    assert response.json()["warnings"] == ["Groups for this assignment should be in range 2 - 3"]


def test_email_preview_edit_and_publish(client, email_session, backend):
    response = client.post(
        f"/api/sessions/{email_session}/emails/preview",
        json={
            "recipients": [
                {"address": "a@example.edu", "subject_id": "a", "variables": {"assignment_group_name": "otters"}},
                {"address": "b@example.edu", "subject_id": "b"},
            ],
            "subject": "{course_name}: {assignment_name}",
            "body": "Your group is {assignment_group_name}",
            "assignment_id": 301,
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["added"] == 2
    first, second = data["intents"]
    assert first["subject"] == "CS2100: Project 1"
    assert first["body"] == "Your group is otters"
    assert second["body"] == "Your group is {assignment_group_name}"
    assert first["reply_to"] == "staff@example.edu"

    patched = client.patch(
        f"/api/sessions/{email_session}/intents/{second['intent_id']}",
        json={"body": "Please pick a group"},
    )
    assert patched.status_code == 200
    assert patched.json()["intents"][1]["body"] == "Please pick a group"

    result = client.post(f"/api/sessions/{email_session}/publish").json()

    assert result["overall_success"]
    assert len(backend.calls_to("create_email_batch")) == 1
    assert [i["body"] for i in backend.calls_to("insert_email")] == ["Your group is otters", "Please pick a group"]


def test_same_recipient_twice_is_a_conflict(client, email_session):
    payload = {
        "recipients": [{"address": "a@example.edu", "subject_id": "a"}],
        "subject": "Hi",
        "body": "Hello",
    }
    client.post(f"/api/sessions/{email_session}/emails/preview", json=payload)

    response = client.post(f"/api/sessions/{email_session}/emails/preview", json=payload)

    assert response.status_code == 409


def test_remove_and_clear(client, group_session):
    listing = client.post(
        f"/api/sessions/{group_session}/moves",
        json={"moves": [{"subject_id": "a", "to_group_id": 1}, {"subject_id": "b", "to_group_id": 1}]},
    ).json()
    intent_id = listing["intents"][0]["intent_id"]

    after_remove = client.delete(f"/api/sessions/{group_session}/intents/{intent_id}")
    assert [i["subject_id"] for i in after_remove.json()["intents"]] == ["b"]
    assert client.delete(f"/api/sessions/{group_session}/intents/{intent_id}").status_code == 404

    after_clear = client.post(f"/api/sessions/{group_session}/clear")
    assert after_clear.json()["intents"] == []


def test_dispose_session(client, group_session):
    assert client.delete(f"/api/sessions/{group_session}").status_code == 204
    assert client.get(f"/api/sessions/{group_session}").status_code == 404


def test_groups_read_view_is_cached(client, backend):
    backend.groups = [{"id": 1, "name": "team-red"}]

    first = client.get("/api/courses/cs2100_fa26/assignments/301/groups")
    second = client.get("/api/courses/cs2100_fa26/assignments/301/groups")

    assert first.json()["total"] == 1
    assert second.json()["groups"] == [{"id": 1, "name": "team-red"}]
    assert len(backend.calls_to("list_groups")) == 1


def test_assignment_variables_are_filled_by_the_server(client, email_session):
    response = client.post(
        f"/api/sessions/{email_session}/emails/preview",
        json={
            "recipients": [{"address": "a@example.edu", "subject_id": "a"}],
            "subject": "{assignment_name} is due {due_date}",
            "body": "Submit at {assignment_url} ({class_section})",
            "assignment_id": 301,
        },
    )

    intent = response.json()["intents"][0]
    assert intent["subject"] == "Project 1 is due 2026-10-02"
    assert intent["body"] == "Submit at https://course.example.edu/course/42/assignments/301 ({class_section})"


def test_blank_email_edit_is_rejected(client, email_session):
    intents = client.post(
        f"/api/sessions/{email_session}/emails/preview",
        json={"recipients": [{"address": "a@example.edu", "subject_id": "a"}], "subject": "Hi", "body": "Hello"},
    ).json()["intents"]

    response = client.patch(f"/api/sessions/{email_session}/intents/{intents[0]['intent_id']}", json={"subject": ""})

    assert response.status_code == 400
    assert client.get(f"/api/sessions/{email_session}").json()["intents"][0]["subject"] == "Hi"


def test_unknown_intent_is_404(client, group_session):
    response = client.patch(f"/api/sessions/{group_session}/intents/missing", json={"name": "x"})

    assert response.status_code == 404
    assert response.json()["detail"] == "Staged change not found: missing"


def test_stray_key_error_is_a_server_error(client, backend, monkeypatch):
    def broken(assignment_id):
        raise KeyError("assignment_groups_members")

    monkeypatch.setattr(backend, "list_groups", broken)

    response = client.get("/api/courses/cs2100_fa26/assignments/301/groups")

    assert response.status_code == 500
