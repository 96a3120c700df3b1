from datetime import timedelta

import pytest
from bson import ObjectId

import lifecycle
from database import utcnow
from errors import DomainConflict, Forbidden


def make_event(**overrides):
    event = {
        "_id": ObjectId(),
        "organizer": ObjectId(),
        "date": utcnow() + timedelta(days=7),
        "time": "18:00",
        "location": "Hall",
        "status": "published",
        "attendees": [],
        "max_attendees": None,
        "registration_deadline": None,
    }
    event.update(overrides)
    return event


def make_request(status="pending"):
    return {
        "_id": ObjectId(),
        "mentee": ObjectId(),
        "mentor": ObjectId(),
        "status": status,
        "scheduled_meetings": [],
        "feedback": {"mentee_rating": None, "mentee_review": None, "mentor_rating": None, "mentor_review": None},
    }


def test_register_until_full():
    event = make_event(max_attendees=1)
    first, second = ObjectId(), ObjectId()
    lifecycle.register_attendee(event, first)
    assert lifecycle.is_full(event)
    assert lifecycle.available_spots(event) == 0
    with pytest.raises(DomainConflict, match="Event is full"):
        lifecycle.register_attendee(event, second)
    assert lifecycle.attendee_count(event) == 1


def test_register_checks_in_order():
    user = ObjectId()
    past = make_event(date=utcnow() - timedelta(days=1), status="draft")
    with pytest.raises(DomainConflict, match="Cannot register for this event"):
        lifecycle.register_attendee(past, user)

    closed = make_event(registration_deadline=utcnow() - timedelta(hours=1), date=utcnow() - timedelta(minutes=1))
    with pytest.raises(DomainConflict, match="Registration deadline has passed"):
        lifecycle.register_attendee(closed, user)

    with pytest.raises(DomainConflict, match="Cannot register for past events"):
        lifecycle.register_attendee(make_event(date=utcnow() - timedelta(days=1)), user)


def test_register_twice_rejected():
    event = make_event()
    user = ObjectId()
    lifecycle.register_attendee(event, user)
    with pytest.raises(DomainConflict, match="already registered"):
        lifecycle.register_attendee(event, str(user))


def test_unregister_removes_every_record():
    event = make_event()
    user = ObjectId()
    lifecycle.register_attendee(event, user)
    event["attendees"].append({"_id": ObjectId(), "user": user, "status": "cancelled"})
    lifecycle.unregister_attendee(event, user)
    assert event["attendees"] == []
    with pytest.raises(DomainConflict, match="not registered"):
        lifecycle.unregister_attendee(event, user)


def test_frozen_fields_after_registration():
    event = make_event()
    lifecycle.apply_event_update(event, {"location": "Annex"})
    assert event["location"] == "Annex"

    lifecycle.register_attendee(event, ObjectId())
    with pytest.raises(DomainConflict, match="Cannot update date, time, or location"):
        lifecycle.apply_event_update(event, {"time": "19:00"})
    lifecycle.apply_event_update(event, {"title": "Renamed"})
    assert event["title"] == "Renamed"
    assert event["time"] == "18:00"


def test_deadline_must_precede_date():
    event = make_event()
    with pytest.raises(DomainConflict, match="Registration deadline must be before event date"):
        lifecycle.apply_event_update(event, {"registration_deadline": event["date"] + timedelta(hours=1)})
    assert event["registration_deadline"] is None


def test_hard_delete_only_without_attendees():
    event = make_event()
    assert lifecycle.should_hard_delete(event)
    lifecycle.register_attendee(event, ObjectId())
    assert not lifecycle.should_hard_delete(event)


def test_organizer_check():
    event = make_event()
    lifecycle.require_organizer(event, str(event["organizer"]), "update")
    with pytest.raises(Forbidden, match="Only the event organizer can delete this event"):
        lifecycle.require_organizer(event, ObjectId(), "delete")


def test_edit_window():
    sender = ObjectId()
    now = utcnow()
    message = {"sender": sender, "content": "hi", "created_at": now - timedelta(minutes=14)}
    lifecycle.edit_message(message, sender, "hello", now=now)
    assert message["content"] == "hello"
    assert message["is_edited"] is True

    old = {"sender": sender, "content": "hi", "created_at": now - timedelta(minutes=16)}
    with pytest.raises(DomainConflict, match="too old"):
        lifecycle.edit_message(old, sender, "hello", now=now)
    assert old["content"] == "hi"


def test_edit_rejects_other_sender_before_age():
    message = {"sender": ObjectId(), "content": "hi", "created_at": utcnow() - timedelta(days=1)}
    with pytest.raises(Forbidden, match="You can only edit your own messages"):
        lifecycle.edit_message(message, ObjectId(), "hello")


def test_soft_delete_is_terminal():
    sender = ObjectId()
    message = {"sender": sender, "content": "hi", "created_at": utcnow()}
    lifecycle.soft_delete_message(message, sender)
    assert message["content"] == lifecycle.DELETED_PLACEHOLDER
    with pytest.raises(DomainConflict, match="already deleted"):
        lifecycle.soft_delete_message(message, sender)
    with pytest.raises(DomainConflict, match="Cannot edit deleted message"):
        lifecycle.edit_message(message, sender, "back")
    with pytest.raises(DomainConflict, match="Cannot react to deleted message"):
        lifecycle.add_reaction(message, sender, "👍")


def test_reactions_unique_per_user_and_emoji():
    message = {"sender": ObjectId(), "content": "hi", "reactions": []}
    user = ObjectId()
    lifecycle.add_reaction(message, user, "👍")
    lifecycle.add_reaction(message, user, "🎉")
    lifecycle.add_reaction(message, ObjectId(), "👍")
    with pytest.raises(DomainConflict, match="already reacted"):
        lifecycle.add_reaction(message, user, "👍")

    lifecycle.remove_reaction(message, user, "👍")
    lifecycle.remove_reaction(message, user, "👍")
    assert [r["emoji"] for r in message["reactions"]] == ["🎉", "👍"]


@pytest.mark.parametrize("current,target,allowed", [
    ("pending", "accepted", True),
    ("pending", "declined", True),
    ("pending", "cancelled", True),
    ("accepted", "completed", True),
    ("accepted", "cancelled", False),
    ("declined", "accepted", False),
    ("completed", "accepted", False),
    ("cancelled", "pending", False),
])
def test_transition_graph(current, target, allowed):
    assert lifecycle.can_transition(current, target) is allowed


def test_only_mentor_responds_once():
    request = make_request()
    with pytest.raises(Forbidden, match="Only the mentor can accept this request"):
        lifecycle.accept_request(request, request["mentee"])
    lifecycle.accept_request(request, request["mentor"], "Happy to help")
    assert request["status"] == "accepted"
    assert request["response_message"] == "Happy to help"
    with pytest.raises(DomainConflict, match="already been responded to"):
        lifecycle.decline_request(request, request["mentor"])
    assert request["status"] == "accepted"


def test_cancel_only_pending_by_mentee():
    request = make_request()
    with pytest.raises(Forbidden, match="Only the mentee can cancel the request"):
        lifecycle.cancel_request(request, request["mentor"])
    lifecycle.accept_request(request, request["mentor"])
    with pytest.raises(DomainConflict, match="Can only cancel pending requests"):
        lifecycle.cancel_request(request, request["mentee"])
    assert request["status"] == "accepted"


def test_meetings_need_accepted_request():
    request = make_request()
    with pytest.raises(DomainConflict, match="accepted mentorships"):
        lifecycle.schedule_meeting(request, request["mentee"], utcnow(), 30)
    lifecycle.accept_request(request, request["mentor"])
    meeting = lifecycle.schedule_meeting(request, request["mentee"], utcnow(), 30)
    assert meeting["status"] == "scheduled"
    with pytest.raises(Forbidden, match="Access denied"):
        lifecycle.schedule_meeting(request, ObjectId(), utcnow(), 30)


def test_feedback_once_per_side():
    request = make_request("completed")
    lifecycle.add_feedback(request, request["mentee"], 5, "Great")
    with pytest.raises(DomainConflict, match="already provided feedback"):
        lifecycle.add_feedback(request, request["mentee"], 4)
    lifecycle.add_feedback(request, request["mentor"], 4)
    assert request["feedback"]["mentee_rating"] == 5
    assert request["feedback"]["mentor_rating"] == 4


def test_feedback_requires_completion():
    request = make_request("accepted")
    with pytest.raises(DomainConflict, match="completed mentorships"):
        lifecycle.add_feedback(request, request["mentor"], 3)


def test_check_can_request():
    mentee = ObjectId()
    mentor = {"_id": ObjectId(), "preferences": {"mentorship_available": False}}
    with pytest.raises(DomainConflict, match="not available for mentorship"):
        lifecycle.check_can_request(mentee, mentor, None)
    mentor["preferences"]["mentorship_available"] = True
    with pytest.raises(DomainConflict, match="from yourself"):
        lifecycle.check_can_request(mentor["_id"], mentor, None)
    with pytest.raises(DomainConflict, match="pending or active"):
        lifecycle.check_can_request(mentee, mentor, {"status": "pending"})
    lifecycle.check_can_request(mentee, mentor, None)


def test_profile_visibility():
    owner = ObjectId()
    user = {"_id": owner, "preferences": {"profile_visibility": "alumni-only"}}
    with pytest.raises(Forbidden, match="only visible to alumni"):
        lifecycle.check_profile_visible(user, None)
    lifecycle.check_profile_visible(user, ObjectId())

    user["preferences"]["profile_visibility"] = "private"
    with pytest.raises(Forbidden, match="private"):
        lifecycle.check_profile_visible(user, ObjectId())
    lifecycle.check_profile_visible(user, owner)
