from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from main import app, get_store

A = {"Authorization": "Bearer tok-a"}
B = {"Authorization": "Bearer tok-b"}
C = {"Authorization": "Bearer tok-c"}
D = {"Authorization": "Bearer tok-d"}


@pytest.fixture
def client(store):
    later = datetime.now(timezone.utc) + timedelta(days=30)
    for user_id, token in [("a1", "tok-a"), ("b2", "tok-b"), ("c3", "tok-c")]:
        store.rows("session").append({"_id": f"s-{user_id}", "user_id": user_id, "token": token, "expires_at": later})
    store.rows("profile").extend([
        {"_id": "a1", "display_name": "Alice & Biscuit"},
        {"_id": "b2", "display_name": "Bob & Mochi"},
        {"_id": "c3", "display_name": "Cat & Pixel"},
    ])
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def _match(client) -> str:
    client.post("/likes", json={"to_user_id": "b2", "target_id": "p1", "message": "hi"}, headers=A)
    response = client.post("/likes", json={"to_user_id": "a1", "target_id": "p2"}, headers=B)
    return response.json()["match_id"]


def test_like_flow_and_duplicate(client) -> None:
    first = client.post("/likes", json={"to_user_id": "b2", "target_id": "p1", "message": "hi"}, headers=A)
    second = client.post("/likes", json={"to_user_id": "a1", "target_id": "p2"}, headers=B)
    replay = client.post("/likes", json={"to_user_id": "b2", "target_id": "p1", "message": "hi"}, headers=A)

    assert first.status_code == 200
    assert first.json()["matched"] is False
    assert second.status_code == 200
    assert second.json()["matched"] is True
    assert second.json()["match_id"]
    assert replay.status_code == 409
    assert replay.json()["detail"] == "DuplicateLike"


def test_missing_or_bad_token_is_unauthenticated(client) -> None:
    body = {"to_user_id": "b2", "target_id": "p1"}

    assert client.post("/likes", json=body).status_code == 401
    assert client.post("/likes", json=body, headers={"Authorization": "Bearer nope"}).status_code == 401
    assert client.post("/likes", json=body, headers={"Authorization": "Token tok-a"}).status_code == 401


def test_expired_session_is_unauthenticated(client, store) -> None:
    earlier = datetime.now(timezone.utc) - timedelta(minutes=1)
    store.rows("session").append({"_id": "s-old", "user_id": "a1", "token": "tok-old", "expires_at": earlier})

    response = client.get("/matches", headers={"Authorization": "Bearer tok-old"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Unauthenticated"


def test_self_like_and_bad_target_type(client) -> None:
    self_like = client.post("/likes", json={"to_user_id": "a1", "target_id": "p1"}, headers=A)
    bad_type = client.post("/likes", json={"to_user_id": "b2", "target_type": "photo", "target_id": "x"}, headers=A)

    assert self_like.status_code == 400
    assert self_like.json()["detail"] == "SelfLikeRejected"
    assert bad_type.status_code == 422


def test_pass_and_feed(client) -> None:
    assert client.post("/passes", json={"target_user_id": "b2"}, headers=A).json() == {"ok": True, "error": None}

    feed = client.get("/feed", headers=A)

    assert [p["id"] for p in feed.json()["profiles"]] == ["c3"]
    assert client.get("/feed?limit=0", headers=A).status_code == 422


def test_likes_and_matches_listing(client) -> None:
    _match(client)

    incoming = client.get("/likes/incoming", headers=B).json()
    matches = client.get("/matches", headers=A).json()

    assert incoming["likes"][0]["other_user_name"] == "Alice & Biscuit"
    assert incoming["likes"][0]["like"]["message"] == "hi"
    assert matches["matches"][0]["other_profile"]["display_name"] == "Bob & Mochi"
    assert matches["matches"][0]["match"]["user_low"] == "a1"


def test_conversation_flow(client) -> None:
    conversation_id = _match(client)

    sent = client.post(f"/conversations/{conversation_id}/messages", json={"content": "hello"}, headers=A)
    listed = client.get("/conversations", headers=B).json()["conversations"]
    messages = client.get(f"/conversations/{conversation_id}/messages", headers=B).json()["messages"]
    read = client.post(f"/conversations/{conversation_id}/read", headers=B)
    again = client.post(f"/conversations/{conversation_id}/read", headers=B)

    assert sent.status_code == 200
    assert sent.json()["message"]["recipient_id"] == "b2"
    assert listed[0]["other_user_name"] == "Alice & Biscuit"
    assert listed[0]["unread_count"] == 1
    assert [m["content"] for m in messages] == ["hello"]
    assert read.json()["updated"] == 1
    assert again.json()["updated"] == 0
    assert client.get("/conversations", headers=B).json()["conversations"][0]["unread_count"] == 0


def test_outsider_and_empty_message(client) -> None:
    conversation_id = _match(client)

    outsider = client.post(f"/conversations/{conversation_id}/messages", json={"content": "hey"}, headers=C)
    empty = client.post(f"/conversations/{conversation_id}/messages", json={"content": "  "}, headers=A)
    unknown = client.get("/conversations/missing/messages", headers=A)

    assert outsider.status_code == 403
    assert empty.status_code == 400
    assert empty.json()["detail"] == "EmptyMessage"
    assert unknown.status_code == 404


def test_socket_refuses_outsider(client) -> None:
    conversation_id = _match(client)

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"/conversations/{conversation_id}/ws?token=tok-c"):
            pass


def test_socket_pushes_messages_to_participant(client, store) -> None:
    conversation_id = _match(client)

    with client:
        with client.websocket_connect(f"/conversations/{conversation_id}/ws?token=tok-a") as ws:
            assert ws.receive_json() == {"type": "ack", "message": "connected"}
            assert len(store.listeners) == 1

            client.post(f"/conversations/{conversation_id}/messages", json={"content": "woof"}, headers=B)
            pushed = ws.receive_json()

    assert pushed["content"] == "woof"
    assert pushed["sender_id"] == "b2"
    assert pushed["recipient_id"] == "a1"
    assert store.listeners == []


def test_profile_upsert_and_card(client, store) -> None:
    store.rows("session").append({"_id": "s-d4", "user_id": "d4", "token": "tok-d"})

    missing = client.get("/profiles/me", headers=D)
    nameless = client.put("/profiles/me", json={"bio": "hi"}, headers=D)
    created = client.put("/profiles/me", json={"display_name": " Dana & Rex ", "age": 31}, headers=D)
    updated = client.put("/profiles/me", json={"bio": "dog person"}, headers=D)

    assert missing.status_code == 404
    assert nameless.status_code == 400
    assert nameless.json()["detail"] == "IncompleteProfile"
    assert created.json()["profile"]["display_name"] == "Dana & Rex"
    assert updated.json()["profile"]["bio"] == "dog person"
    assert updated.json()["profile"]["age"] == 31
    assert client.get("/profiles/me", headers=D).json()["profile"]["id"] == "d4"
    assert client.get("/profiles/d4", headers=A).json()["profile"]["display_name"] == "Dana & Rex"
    assert client.get("/profiles/nobody", headers=A).status_code == 404
    assert client.get("/profiles/me").status_code == 401


def test_pets_belong_to_owner(client) -> None:
    added = client.post("/profiles/me/pets", json={"name": "Biscuit", "breed": "Beagle", "age": 3}, headers=A)
    pet_id = added.json()["pet"]["id"]

    renamed = client.put(f"/profiles/me/pets/{pet_id}", json={"name": "Biscuit II"}, headers=A)
    stolen = client.put(f"/profiles/me/pets/{pet_id}", json={"name": "Mine"}, headers=B)
    unknown = client.put("/profiles/me/pets/missing", json={"name": "Ghost"}, headers=A)

    assert added.status_code == 200
    assert added.json()["pet"]["owner_id"] == "a1"
    assert renamed.json()["pet"]["name"] == "Biscuit II"
    assert renamed.json()["pet"]["breed"] == "Beagle"
    assert stolen.status_code == 403
    assert unknown.status_code == 404
    assert [p["name"] for p in client.get("/profiles/me/pets", headers=A).json()["pets"]] == ["Biscuit II"]
    assert client.get("/profiles/me/pets", headers=B).json()["pets"] == []
    assert [p["name"] for p in client.get("/profiles/a1", headers=C).json()["pets"]] == ["Biscuit II"]
    assert client.post("/profiles/me/pets", json={"name": ""}, headers=A).status_code == 422


def test_stored_age_outside_write_bounds_still_readable(client, store) -> None:
    store.rows("profile")[2]["age"] = 12

    feed = client.get("/feed", headers=A)
    client.post("/likes", json={"to_user_id": "c3", "target_id": "p1"}, headers=A)
    client.post("/likes", json={"to_user_id": "a1", "target_id": "p1"}, headers=C)
    matches = client.get("/matches", headers=A)
    rejected = client.put("/profiles/me", json={"age": 12}, headers=A)

    assert feed.status_code == 200
    assert {p["id"]: p["age"] for p in feed.json()["profiles"]}["c3"] == 12
    assert matches.status_code == 200
    assert matches.json()["matches"][0]["other_profile"]["age"] == 12
    assert rejected.status_code == 422


def test_health(client) -> None:
    assert client.get("/").json() == {"message": "PawMatch API running"}
    assert client.get("/test").json()["database"] == "✅ Connected & Working"


def test_storage_outage_is_503(broken_store) -> None:
    app.dependency_overrides[get_store] = lambda: broken_store
    try:
        response = TestClient(app).post("/likes", json={"to_user_id": "b2", "target_id": "p1"}, headers=A)
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 503
