from datetime import timedelta

import pytest

from conftest import auth
from database import create_document, utcnow
from schemas import ChatMessage


@pytest.fixture
def alice(make_user):
    return make_user(name="Alice")


@pytest.fixture
def bob(make_user):
    return make_user(name="Bob")


def send(client, user, content="Hello everyone", **extra):
    response = client.post("/api/chat/messages", headers=auth(user), json={"content": content, **extra})
    assert response.status_code == 201, response.json()
    return response.json()["data"]["message"]


def test_send_message_publishes(client, alice, notifier):
    message = send(client, alice, "  Hi there  ")
    assert message["content"] == "Hi there"
    assert message["sender"]["name"] == "Alice"
    topic, payload, room = notifier.published[-1]
    assert topic == "new-message"
    assert payload["message"]["id"] == message["id"]
    assert room is None


def test_send_empty_message_rejected(client, alice):
    assert client.post("/api/chat/messages", headers=auth(alice), json={"content": "   "}).status_code == 400


def test_reply_to_must_exist(client, alice):
    response = client.post(
        "/api/chat/messages",
        headers=auth(alice),
        json={"content": "re", "reply_to": "5f1d7f0c2b3a4c5d6e7f8a9b"},
    )
    assert response.status_code == 404
    assert response.json()["message"] == "Replied message not found"


def test_reply_preview(client, alice, bob):
    original = send(client, alice, "Question?")
    reply = send(client, bob, "Answer.", reply_to=original["id"])
    assert reply["reply_to"]["content"] == "Question?"
    assert reply["reply_to"]["sender"]["name"] == "Alice"


def test_list_messages_oldest_first(client, alice, bob, db):
    start = utcnow() - timedelta(minutes=10)
    for i in range(3):
        message = ChatMessage(sender=alice["_id"], content=f"message {i}").model_dump()
        create_document(db, "chatmessage", dict(message, created_at=start + timedelta(minutes=i)))
    data = client.get("/api/chat/messages", headers=auth(bob), params={"limit": 2}).json()["data"]
    assert [m["content"] for m in data["messages"]] == ["message 1", "message 2"]
    assert data["pagination"]["total_messages"] == 3
    assert data["pagination"]["has_next_page"] is True


def test_edit_own_message(client, alice, notifier):
    message = send(client, alice)
    response = client.put(f"/api/chat/messages/{message['id']}", headers=auth(alice), json={"content": "Edited"})
    assert response.status_code == 200
    edited = response.json()["data"]["message"]
    assert edited["content"] == "Edited"
    assert edited["is_edited"] is True
    assert notifier.topics()[-1] == "message-edited"


def test_edit_other_users_message(client, alice, bob):
    message = send(client, alice)
    response = client.put(f"/api/chat/messages/{message['id']}", headers=auth(bob), json={"content": "Mine"})
    assert response.status_code == 403
    assert response.json()["message"] == "You can only edit your own messages"


def test_edit_window_expires(client, alice, db):
    message = send(client, alice)
    db["chatmessage"].update_many({}, {"$set": {"created_at": utcnow() - timedelta(minutes=16)}})
    response = client.put(f"/api/chat/messages/{message['id']}", headers=auth(alice), json={"content": "Late"})
    assert response.status_code == 400
    assert response.json()["message"] == "Message is too old to edit"


def test_soft_delete(client, alice, bob, notifier, db):
    message = send(client, alice)
    assert client.delete(f"/api/chat/messages/{message['id']}", headers=auth(bob)).status_code == 403

    response = client.delete(f"/api/chat/messages/{message['id']}", headers=auth(alice))
    assert response.status_code == 200
    stored = db["chatmessage"].find_one({})
    assert stored["is_deleted"] is True
    assert stored["content"] == "This message has been deleted"
    assert notifier.topics()[-1] == "message-deleted"

    again = client.delete(f"/api/chat/messages/{message['id']}", headers=auth(alice))
    assert again.json()["message"] == "Message is already deleted"
    listed = client.get("/api/chat/messages", headers=auth(alice)).json()["data"]["messages"]
    assert listed == []


def test_reactions(client, alice, bob, notifier):
    message = send(client, alice)
    url = f"/api/chat/messages/{message['id']}/reactions"

    response = client.post(url, headers=auth(bob), json={"emoji": "👍"})
    assert response.status_code == 200
    reactions = response.json()["data"]["reactions"]
    assert reactions[0]["emoji"] == "👍"
    assert reactions[0]["user"]["name"] == "Bob"
    assert notifier.topics()[-1] == "message-reaction-added"

    duplicate = client.post(url, headers=auth(bob), json={"emoji": "👍"})
    assert duplicate.status_code == 400
    assert duplicate.json()["message"] == "User has already reacted with this emoji"

    removed = client.request("DELETE", url, headers=auth(bob), json={"emoji": "👍"})
    assert removed.json()["message"] == "Reaction removed successfully"
    assert notifier.topics()[-1] == "message-reaction-removed"
    assert client.post(url, headers=auth(bob), json={"emoji": "👍"}).status_code == 200


def test_chat_stats(client, alice, bob):
    send(client, alice, "one")
    send(client, alice, "two")
    send(client, bob, "three")
    data = client.get("/api/chat/stats", headers=auth(bob)).json()["data"]
    assert data["total_messages"] == 3
    assert data["user_messages"] == 1
    assert data["messages_today"] == 3
    assert data["active_users"][0]["user"]["name"] == "Alice"
    assert data["active_users"][0]["message_count"] == 2


def test_search(client, alice, bob):
    send(client, alice, "Python meetup tonight")
    send(client, bob, "python is great")
    send(client, bob, "Unrelated")

    data = client.get("/api/chat/search", headers=auth(alice), params={"query": "PYTHON"}).json()["data"]
    assert data["pagination"]["total_results"] == 2
    by_bob = client.get(
        "/api/chat/search", headers=auth(alice), params={"query": "python", "sender": str(bob["_id"])}
    ).json()["data"]
    assert [m["content"] for m in by_bob["messages"]] == ["python is great"]
    assert client.get("/api/chat/search", headers=auth(alice)).status_code == 400


def test_chat_requires_auth(client):
    assert client.get("/api/chat/messages").status_code == 401
