from seed import seed


def test_seed_populates_and_is_repeatable(db):
    counts = seed(db)
    assert counts == {"users": 4, "events": 2, "messages": 3, "requests": 2}
    assert seed(db) == counts
    assert db["user"].count_documents({}) == 4

    networking = db["event"].find_one({"title": "Alumni Networking Night"})
    assert len(networking["attendees"]) == 2
    assert networking["version"] == 1
