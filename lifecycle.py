"""
Lifecycle rules for events, chat messages and mentorship requests.

These functions mutate plain MongoDB documents in memory and raise
``errors`` exceptions when a rule is broken; persisting the result is the
caller's job (see ``database.save_document``). Each mutator checks its
preconditions in a fixed order and applies nothing unless all of them pass.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from bson import ObjectId

from database import as_utc, utcnow
from errors import DomainConflict, Forbidden

EDIT_WINDOW = timedelta(minutes=15)
DELETED_PLACEHOLDER = "This message has been deleted"

FROZEN_EVENT_FIELDS = ("date", "time", "location")

MENTORSHIP_TRANSITIONS = {
    "pending": {"accepted", "declined", "cancelled"},
    "accepted": {"completed"},
}

Doc = Dict[str, Any]


def same_id(a: Any, b: Any) -> bool:
    if a is None or b is None:
        return False
    return str(a) == str(b)


# Users

def require_self(target_id: Any, user_id: Any, message: str) -> None:
    if not same_id(target_id, user_id):
        raise Forbidden(message)


def visible_tiers(authenticated: bool) -> List[str]:
    if authenticated:
        return ["public", "alumni-only"]
    return ["public"]


def check_profile_visible(user: Doc, viewer_id: Optional[Any]) -> None:
    if same_id(user["_id"], viewer_id):
        return
    visibility = (user.get("preferences") or {}).get("profile_visibility", "alumni-only")
    if visibility == "private":
        raise Forbidden("This profile is private")
    if visibility == "alumni-only" and viewer_id is None:
        raise Forbidden("This profile is only visible to alumni")


# Events

def require_organizer(event: Doc, user_id: Any, action: str) -> None:
    if not same_id(event.get("organizer"), user_id):
        raise Forbidden(f"Only the event organizer can {action} this event")


def attendee_count(event: Doc) -> int:
    return sum(1 for a in event.get("attendees", []) if a.get("status") == "registered")


def available_spots(event: Doc) -> Optional[int]:
    if not event.get("max_attendees"):
        return None
    return event["max_attendees"] - attendee_count(event)


def is_full(event: Doc) -> bool:
    if not event.get("max_attendees"):
        return False
    return attendee_count(event) >= event["max_attendees"]


def is_user_attending(event: Doc, user_id: Any) -> bool:
    return any(
        same_id(a.get("user"), user_id) and a.get("status") == "registered"
        for a in event.get("attendees", [])
    )


def register_attendee(event: Doc, user_id: Any, now: Optional[datetime] = None) -> Doc:
    now = now or utcnow()
    if event.get("status") != "published":
        raise DomainConflict("Cannot register for this event")
    deadline = as_utc(event.get("registration_deadline"))
    if deadline and now > deadline:
        raise DomainConflict("Registration deadline has passed")
    if as_utc(event["date"]) < now:
        raise DomainConflict("Cannot register for past events")
    if is_user_attending(event, user_id):
        raise DomainConflict("User is already registered for this event")
    if is_full(event):
        raise DomainConflict("Event is full")
    attendee = {"_id": ObjectId(), "user": user_id, "registered_at": now, "status": "registered"}
    event.setdefault("attendees", []).append(attendee)
    return attendee


def unregister_attendee(event: Doc, user_id: Any) -> None:
    if not is_user_attending(event, user_id):
        raise DomainConflict("You are not registered for this event")
    event["attendees"] = [a for a in event.get("attendees", []) if not same_id(a.get("user"), user_id)]


def apply_event_update(event: Doc, updates: Doc) -> Doc:
    if event.get("attendees") and any(field in updates for field in FROZEN_EVENT_FIELDS):
        raise DomainConflict("Cannot update date, time, or location after users have registered")
    date = as_utc(updates.get("date", event.get("date")))
    deadline = as_utc(updates.get("registration_deadline", event.get("registration_deadline")))
    if deadline and date and deadline >= date:
        raise DomainConflict("Registration deadline must be before event date")
    event.update(updates)
    return event


def should_hard_delete(event: Doc) -> bool:
    """Events nobody signed up for are removed; others are kept as cancelled."""
    return not event.get("attendees")


def cancel_event(event: Doc) -> None:
    event["status"] = "cancelled"


def add_comment(event: Doc, user_id: Any, content: str, now: Optional[datetime] = None) -> Doc:
    comment = {"_id": ObjectId(), "user": user_id, "content": content, "created_at": now or utcnow()}
    event.setdefault("comments", []).append(comment)
    return comment


# Chat messages

def require_sender(message: Doc, user_id: Any, action: str) -> None:
    if not same_id(message.get("sender"), user_id):
        raise Forbidden(f"You can only {action} your own messages")


def edit_message(message: Doc, user_id: Any, content: str, now: Optional[datetime] = None) -> Doc:
    now = now or utcnow()
    if message.get("is_deleted"):
        raise DomainConflict("Cannot edit deleted message")
    require_sender(message, user_id, "edit")
    if now - as_utc(message["created_at"]) > EDIT_WINDOW:
        raise DomainConflict("Message is too old to edit")
    message["content"] = content
    message["is_edited"] = True
    message["edited_at"] = now
    return message


def soft_delete_message(message: Doc, user_id: Any, now: Optional[datetime] = None) -> Doc:
    if message.get("is_deleted"):
        raise DomainConflict("Message is already deleted")
    require_sender(message, user_id, "delete")
    message["is_deleted"] = True
    message["deleted_at"] = now or utcnow()
    message["content"] = DELETED_PLACEHOLDER
    return message


def add_reaction(message: Doc, user_id: Any, emoji: str, now: Optional[datetime] = None) -> Doc:
    if message.get("is_deleted"):
        raise DomainConflict("Cannot react to deleted message")
    for reaction in message.get("reactions", []):
        if same_id(reaction.get("user"), user_id) and reaction.get("emoji") == emoji:
            raise DomainConflict("User has already reacted with this emoji")
    reaction = {"_id": ObjectId(), "user": user_id, "emoji": emoji, "created_at": now or utcnow()}
    message.setdefault("reactions", []).append(reaction)
    return reaction


def remove_reaction(message: Doc, user_id: Any, emoji: str) -> None:
    message["reactions"] = [
        r for r in message.get("reactions", [])
        if not (same_id(r.get("user"), user_id) and r.get("emoji") == emoji)
    ]


# Mentorship requests

def require_mentor(request: Doc, user_id: Any, action: str) -> None:
    if not same_id(request.get("mentor"), user_id):
        raise Forbidden(f"Only the mentor can {action} this request")


def require_mentee(request: Doc, user_id: Any, action: str) -> None:
    if not same_id(request.get("mentee"), user_id):
        raise Forbidden(f"Only the mentee can {action} the request")


def require_party(request: Doc, user_id: Any) -> None:
    if not (same_id(request.get("mentee"), user_id) or same_id(request.get("mentor"), user_id)):
        raise Forbidden("Access denied")


def party_role(request: Doc, user_id: Any) -> str:
    require_party(request, user_id)
    return "mentee" if same_id(request.get("mentee"), user_id) else "mentor"


def other_party(request: Doc, user_id: Any) -> Any:
    if same_id(request.get("mentee"), user_id):
        return request["mentor"]
    return request["mentee"]


def can_transition(current: str, target: str) -> bool:
    return target in MENTORSHIP_TRANSITIONS.get(current, set())


def _transition(request: Doc, target: str, refusal: str) -> None:
    if not can_transition(request.get("status"), target):
        raise DomainConflict(refusal)
    request["status"] = target


def check_can_request(mentee_id: Any, mentor: Doc, active_request: Optional[Doc]) -> None:
    """``active_request`` is any pending/accepted request for the same pair."""
    if not (mentor.get("preferences") or {}).get("mentorship_available"):
        raise DomainConflict("This user is not available for mentorship")
    if same_id(mentee_id, mentor["_id"]):
        raise DomainConflict("You cannot request mentorship from yourself")
    if active_request is not None:
        raise DomainConflict("You already have a pending or active mentorship request with this mentor")


def _respond(request: Doc, user_id: Any, target: str, verb: str, response_message: Optional[str], now: Optional[datetime]) -> Doc:
    require_mentor(request, user_id, verb)
    _transition(request, target, "This request has already been responded to")
    request["response_message"] = response_message
    request["responded_at"] = now or utcnow()
    return request


def accept_request(request: Doc, user_id: Any, response_message: Optional[str] = None, now: Optional[datetime] = None) -> Doc:
    return _respond(request, user_id, "accepted", "accept", response_message, now)


def decline_request(request: Doc, user_id: Any, response_message: Optional[str] = None, now: Optional[datetime] = None) -> Doc:
    return _respond(request, user_id, "declined", "decline", response_message, now)


def complete_request(request: Doc, user_id: Any) -> Doc:
    require_party(request, user_id)
    _transition(request, "completed", "Only accepted mentorships can be completed")
    return request


def cancel_request(request: Doc, user_id: Any) -> Doc:
    require_mentee(request, user_id, "cancel")
    _transition(request, "cancelled", "Can only cancel pending requests")
    return request


def schedule_meeting(
    request: Doc,
    user_id: Any,
    date: datetime,
    duration: int,
    meeting_link: Optional[str] = None,
    notes: Optional[str] = None,
) -> Doc:
    require_party(request, user_id)
    if request.get("status") != "accepted":
        raise DomainConflict("Can only schedule meetings for accepted mentorships")
    meeting = {
        "_id": ObjectId(),
        "date": date,
        "duration": duration,
        "meeting_link": meeting_link or "",
        "notes": notes or "",
        "status": "scheduled",
    }
    request.setdefault("scheduled_meetings", []).append(meeting)
    return meeting


def add_feedback(request: Doc, user_id: Any, rating: int, review: Optional[str] = None) -> Doc:
    side = party_role(request, user_id)
    if request.get("status") != "completed":
        raise DomainConflict("Can only add feedback for completed mentorships")
    feedback = request.setdefault("feedback", {})
    if feedback.get(f"{side}_rating"):
        raise DomainConflict("You have already provided feedback for this mentorship")
    feedback[f"{side}_rating"] = rating
    feedback[f"{side}_review"] = review
    return feedback
