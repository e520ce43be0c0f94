"""
Unit tests for API routes.
Services are mocked; these tests cover auth, status codes and payload shapes.
"""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect
from streetpaddle.api.main import app
from streetpaddle.services import (
    auth_service,
    user_service,
    chat_service,
    unread_service,
    tournament_service,
    draw_service,
)
from streetpaddle.services.bracket_engine import BracketEngine
from streetpaddle.services.draw_service import DrawPersistenceError


def make_client_with_auth(monkeypatch, user_id="u1", is_admin=False):
    """Create a test client with mocked authentication."""

    def fake_verify_token(token):
        return {"user_id": user_id}

    async def fake_get_user_by_id(session, uid):
        return {
            "id": user_id,
            "username": "alice",
            "email": "alice@example.com",
            "full_name": "Alice",
            "is_admin": is_admin,
            "last_read_announcements_at": None,
            "created_at": "2026-01-01T00:00:00+00:00",
        }

    monkeypatch.setattr(auth_service, "verify_token", fake_verify_token, raising=True)
    monkeypatch.setattr(user_service, "get_user_by_id", fake_get_user_by_id, raising=True)

    return TestClient(app), {"Authorization": "Bearer dummy"}


def _bracket(player_count=8):
    engine = BracketEngine(1, "Men")
    engine.load(player_count)
    return engine


def test_requires_token():
    client = TestClient(app)
    response = client.get("/api/groups")
    assert response.status_code in (401, 403)


def test_invalid_token(monkeypatch):
    monkeypatch.setattr(auth_service, "verify_token", lambda token: None, raising=True)
    client = TestClient(app)
    response = client.get("/api/groups", headers={"Authorization": "Bearer bad"})
    assert response.status_code == 401


# ---------------------------------------------------------------------------
# Groups and announcements
# ---------------------------------------------------------------------------


def test_create_group(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    captured = {}

    async def fake_create_group(session, creator_id, member_ids, name=None, feed=None):
        captured.update(creator_id=creator_id, member_ids=member_ids, feed=feed)
        return {"id": "g1", "name": name, "creator_id": creator_id, "member_ids": ["u1", "u2"]}

    monkeypatch.setattr(chat_service, "create_group", fake_create_group, raising=True)

    response = client.post("/api/groups", json={"member_ids": ["u2"], "name": "Doubles"}, headers=headers)

    assert response.status_code == 200
    assert response.json()["id"] == "g1"
    assert captured["creator_id"] == "u1"
    assert captured["feed"] is app.state.change_feed


def test_create_group_invalid(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_create_group(session, creator_id, member_ids, name=None, feed=None):
        raise ValueError("A group needs at least two members")

    monkeypatch.setattr(chat_service, "create_group", fake_create_group, raising=True)

    response = client.post("/api/groups", json={"member_ids": ["u1"]}, headers=headers)
    assert response.status_code == 400


def test_post_message_non_member(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_post(session, group_id, sender_id, text, feed=None):
        raise ValueError("Group not found or user is not a member")

    monkeypatch.setattr(chat_service, "post_group_message", fake_post, raising=True)

    response = client.post("/api/groups/g1/messages", json={"text": "hi"}, headers=headers)
    assert response.status_code == 400


def test_mark_group_read(monkeypatch):
    from datetime import datetime
    import pytz

    client, headers = make_client_with_auth(monkeypatch)

    async def fake_mark(session, group_id, user_id, feed=None):
        return datetime(2026, 1, 1, tzinfo=pytz.UTC)

    monkeypatch.setattr(unread_service, "mark_group_read", fake_mark, raising=True)

    response = client.put("/api/groups/g1/read", headers=headers)
    assert response.status_code == 200
    assert response.json()["last_read_at"].startswith("2026-01-01")


def test_remove_other_member_requires_creator(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_get_group(session, group_id):
        return {"id": group_id, "creator_id": "u9", "member_ids": ["u1", "u2", "u9"]}

    monkeypatch.setattr(chat_service, "get_group", fake_get_group, raising=True)

    response = client.delete("/api/groups/g1/members/u2", headers=headers)
    assert response.status_code == 403


def test_delete_group(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    calls = []

    async def fake_delete(session, group_id, user_id, feed=None):
        calls.append((group_id, user_id))
        return [user_id, "u2"]

    monkeypatch.setattr(chat_service, "delete_group", fake_delete, raising=True)

    response = client.delete("/api/groups/g1", headers=headers)
    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert calls == [("g1", "u1")]


def test_delete_group_non_member(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_delete(session, group_id, user_id, feed=None):
        raise ValueError("Group not found or user is not a member")

    monkeypatch.setattr(chat_service, "delete_group", fake_delete, raising=True)

    response = client.delete("/api/groups/g1", headers=headers)
    assert response.status_code == 404


def test_post_announcement_requires_admin(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, is_admin=False)
    response = client.post("/api/announcements", json={"content": "Courts open"}, headers=headers)
    assert response.status_code == 403


def test_post_announcement_as_admin(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, is_admin=True)

    async def fake_post(session, sender_id, content, feed=None):
        return {"id": 1, "sender_username": "alice", "content": content, "created_at": None}

    monkeypatch.setattr(chat_service, "post_announcement", fake_post, raising=True)

    response = client.post("/api/announcements", json={"content": "Courts open"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["content"] == "Courts open"


# ---------------------------------------------------------------------------
# Unread
# ---------------------------------------------------------------------------


def test_get_unread(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_group_ids(session, user_id):
        return ["g1", "g2"]

    async def fake_group(session, group_id, user_id):
        return {"g1": 2, "g2": 1}[group_id]

    async def fake_announcements(session, user_id):
        return 3

    monkeypatch.setattr(unread_service, "get_group_ids_for_user", fake_group_ids, raising=True)
    monkeypatch.setattr(unread_service, "compute_unread_for_group", fake_group, raising=True)
    monkeypatch.setattr(unread_service, "compute_unread_announcements", fake_announcements, raising=True)

    response = client.get("/api/unread", headers=headers)

    assert response.status_code == 200
    assert response.json() == {"groups": {"g1": 2, "g2": 1}, "announcements": 3, "total": 6}


def test_notifications_socket_requires_token():
    client = TestClient(app)
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/api/ws/notifications") as websocket:
            websocket.receive_text()
    assert exc_info.value.code == 1008


def test_notifications_socket_pushes_badge(monkeypatch):
    monkeypatch.setattr(auth_service, "verify_token", lambda token: {"user_id": "u7"}, raising=True)

    async def fake_group_ids(session, user_id):
        return ["g1"]

    async def fake_group(session, group_id, user_id):
        return 2

    async def fake_announcements(session, user_id):
        return 1

    monkeypatch.setattr(unread_service, "get_group_ids_for_user", fake_group_ids, raising=True)
    monkeypatch.setattr(unread_service, "compute_unread_for_group", fake_group, raising=True)
    monkeypatch.setattr(unread_service, "compute_unread_announcements", fake_announcements, raising=True)

    client = TestClient(app)
    with client.websocket_connect("/api/ws/notifications?token=dummy") as websocket:
        counts = []
        while 3 not in counts and len(counts) < 3:
            frame = websocket.receive_json()
            assert frame["type"] == "badge"
            counts.append(frame["count"])

    assert counts[0] == 0  # reset on connect
    assert counts[-1] == 3
    assert not app.state.aggregator.is_listening("u7")


def test_inbox_socket_closes_when_updates_fail(monkeypatch):
    monkeypatch.setattr(auth_service, "verify_token", lambda token: {"user_id": "u8"}, raising=True)

    async def failing_summary(session, user_id):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(unread_service, "get_unread_summary", failing_summary, raising=True)

    client = TestClient(app)
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/api/ws/inbox?token=dummy") as websocket:
            websocket.receive_json()
    assert exc_info.value.code == 1011


# ---------------------------------------------------------------------------
# Tournaments and draws
# ---------------------------------------------------------------------------


def test_create_tournament_requires_admin(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, is_admin=False)
    payload = {
        "title": "Summer Open",
        "number_of_players": 8,
        "categories": ["Men"],
        "start_date": "2026-06-01T00:00:00Z",
        "end_date": "2026-06-02T00:00:00Z",
    }
    response = client.post("/api/tournaments", json=payload, headers=headers)
    assert response.status_code == 403


def test_create_tournament_rejects_bad_dates(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, is_admin=True)
    payload = {
        "title": "Summer Open",
        "number_of_players": 8,
        "categories": ["Men"],
        "start_date": "2026-06-02T00:00:00Z",
        "end_date": "2026-06-01T00:00:00Z",
    }
    response = client.post("/api/tournaments", json=payload, headers=headers)
    assert response.status_code == 422


def test_get_tournament_not_found(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_get(session, tournament_id):
        return None

    monkeypatch.setattr(tournament_service, "get_tournament", fake_get, raising=True)

    response = client.get("/api/tournaments/42", headers=headers)
    assert response.status_code == 404


def test_get_draw(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    engine = _bracket()

    async def fake_load(session, registry, tournament_id, category):
        return engine

    monkeypatch.setattr(draw_service, "load_bracket", fake_load, raising=True)

    response = client.get("/api/tournaments/1/draws/Men", headers=headers)

    assert response.status_code == 200
    data = response.json()
    assert data["title"] == "Round 1"
    assert data["can_advance"] is True
    assert len(data["rounds"][0]["player_names"]) == 8


def test_get_draw_unknown_category(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_load(session, registry, tournament_id, category):
        raise ValueError("Category Mixed not found in tournament")

    monkeypatch.setattr(draw_service, "load_bracket", fake_load, raising=True)

    response = client.get("/api/tournaments/1/draws/Mixed", headers=headers)
    assert response.status_code == 404


def test_advance_rejected_returns_conflict(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, is_admin=True)
    engine = _bracket(player_count=2)

    async def fake_load(session, registry, tournament_id, category):
        return engine

    async def fake_advance(session, registry, tournament_id, category):
        return engine, False

    monkeypatch.setattr(draw_service, "load_bracket", fake_load, raising=True)
    monkeypatch.setattr(draw_service, "advance_round", fake_advance, raising=True)

    response = client.post("/api/tournaments/1/draws/Men/advance", headers=headers)

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["bracket"]["can_advance"] is False
    assert detail["bracket"]["can_declare_champion"] is True


def test_advance_persistence_failure(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, is_admin=True)
    engine = _bracket()

    async def fake_load(session, registry, tournament_id, category):
        return engine

    async def fake_advance(session, registry, tournament_id, category):
        raise DrawPersistenceError("Could not save round_0; please retry")

    monkeypatch.setattr(draw_service, "load_bracket", fake_load, raising=True)
    monkeypatch.setattr(draw_service, "advance_round", fake_advance, raising=True)

    response = client.post("/api/tournaments/1/draws/Men/advance", headers=headers)
    assert response.status_code == 503


def test_edit_slot_requires_admin(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, is_admin=False)
    response = client.put(
        "/api/tournaments/1/draws/Men/slots",
        json={"round_index": 0, "slot_index": 0, "name": "Ana"},
        headers=headers,
    )
    assert response.status_code == 403


def test_edit_slot_out_of_range(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, is_admin=True)
    engine = _bracket()

    async def fake_load(session, registry, tournament_id, category):
        return engine

    async def fake_edit(session, registry, tournament_id, category, round_index, slot_index, name, user):
        raise ValueError(f"Slot {slot_index} does not exist in round {round_index}")

    monkeypatch.setattr(draw_service, "load_bracket", fake_load, raising=True)
    monkeypatch.setattr(draw_service, "edit_slot", fake_edit, raising=True)

    response = client.put(
        "/api/tournaments/1/draws/Men/slots",
        json={"round_index": 0, "slot_index": 8, "name": "Ana"},
        headers=headers,
    )
    assert response.status_code == 400
