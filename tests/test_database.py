import mongomock
import pytest
from bson import ObjectId

from conftest import auth
from database import create_document, find_by_id, parse_object_id, save_document
from errors import ConcurrentModification, ValidationFailed


@pytest.fixture
def db():
    return mongomock.MongoClient()["versions"]


def test_create_document_stamps_version(db):
    doc = create_document(db, "thing", {"name": "a"})
    assert doc["version"] == 0
    assert doc["created_at"] == doc["updated_at"]
    assert isinstance(doc["_id"], ObjectId)


def test_save_bumps_version(db):
    doc = create_document(db, "thing", {"name": "a"})
    doc["name"] = "b"
    save_document(db, "thing", doc)
    stored = find_by_id(db, "thing", doc["_id"])
    assert stored["name"] == "b"
    assert stored["version"] == 1


def test_stale_save_is_rejected(db):
    doc = create_document(db, "thing", {"name": "a"})
    first = find_by_id(db, "thing", doc["_id"])
    second = find_by_id(db, "thing", doc["_id"])

    first["name"] = "first"
    save_document(db, "thing", first)
    second["name"] = "second"
    with pytest.raises(ConcurrentModification):
        save_document(db, "thing", second)

    assert second["version"] == 0
    assert find_by_id(db, "thing", doc["_id"])["name"] == "first"


def test_parse_object_id():
    oid = ObjectId()
    assert parse_object_id(str(oid)) == oid
    with pytest.raises(ValidationFailed):
        parse_object_id("nope", "event_id")


def test_conflict_surfaces_as_409(client, make_user, db, monkeypatch):
    organizer = make_user()
    response = client.post(
        "/api/events",
        headers=auth(organizer),
        json={
            "title": "Race",
            "description": "Two registrations at once",
            "date": "2999-01-01T10:00:00Z",
            "time": "10:00",
            "location": "Here",
            "max_attendees": 1,
        },
    )
    event_id = response.json()["data"]["event"]["id"]

    import routes_events

    real_find = routes_events.find_by_id

    def find_then_race(db_, name, doc_id):
        doc = real_find(db_, name, doc_id)
        db_[name].update_one({"_id": doc["_id"]}, {"$inc": {"version": 1}})
        return doc

    monkeypatch.setattr(routes_events, "find_by_id", find_then_race)
    conflict = client.post(f"/api/events/{event_id}/register", headers=auth(make_user()))
    assert conflict.status_code == 409
    assert conflict.json()["success"] is False
    assert db["event"].find_one({})["attendees"] == []
