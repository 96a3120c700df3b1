import logging
from datetime import datetime
from typing import List, Literal, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator
from pymongo.database import Database

import lifecycle
from database import as_utc, create_document, find_by_id, get_db, save_document, utcnow
from errors import NotFound, envelope
from notifier import Notifier, get_notifier, user_room
from pagination import Page, page_params
from schemas import (
    MeetingType,
    MentorshipRequest as MentorshipRequestSchema,
    MentorshipStatus,
    MentorshipType,
    ObjectIdStr,
    Timeline,
    Trimmed,
)
from security import get_current_user
from serializers import USER_PROFILE, populate, populate_one, to_json

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/mentorship", tags=["mentorship"])

PARTIES = {"mentee": USER_PROFILE, "mentor": USER_PROFILE + ("mentorship_profile",)}


class CreateRequestBody(BaseModel):
    mentor: ObjectIdStr
    subject: Trimmed = Field(..., min_length=1, max_length=200)
    message: Trimmed = Field(..., min_length=1, max_length=1000)
    mentorship_type: MentorshipType
    preferred_meeting_type: MeetingType
    goals: List[str] = Field(default_factory=list)
    timeline: Timeline = "flexible"
    expertise: List[str] = Field(default_factory=list)

    @field_validator("goals")
    @classmethod
    def check_goals(cls, v):
        goals = [g.strip() for g in v if g.strip()]
        if any(len(g) > 200 for g in goals):
            raise ValueError("Goal cannot exceed 200 characters")
        return goals

    @field_validator("expertise")
    @classmethod
    def strip_expertise(cls, v):
        return [e.strip() for e in v if e.strip()]


class RespondBody(BaseModel):
    response_message: Optional[Trimmed] = Field(None, max_length=500)


class MeetingBody(BaseModel):
    date: datetime
    duration: int = Field(..., gt=0, description="Minutes")
    meeting_link: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("date")
    @classmethod
    def date_utc(cls, v):
        return as_utc(v)


class FeedbackBody(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review: Optional[Trimmed] = Field(None, max_length=500)


def request_to_public(db: Database, request: dict) -> dict:
    return to_json(populate_one(db, request, PARTIES))


def _load_request(db: Database, request_id: str) -> dict:
    request = find_by_id(db, "mentorshiprequest", request_id)
    if not request:
        raise NotFound("Mentorship request not found")
    return request


@router.get("/requests")
def list_requests(
    page: Page = Depends(page_params(10)),
    request_status: Optional[MentorshipStatus] = Query(None, alias="status"),
    request_type: Literal["sent", "received", "all"] = Query("all", alias="type"),
    current: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    me = current["_id"]
    if request_type == "sent":
        filt: dict = {"mentee": me}
    elif request_type == "received":
        filt = {"mentor": me}
    else:
        filt = {"$or": [{"mentee": me}, {"mentor": me}]}
    if request_status:
        filt["status"] = request_status

    requests = list(
        db["mentorshiprequest"].find(filt).sort("created_at", -1).skip(page.skip).limit(page.limit)
    )
    total = db["mentorshiprequest"].count_documents(filt)
    return envelope(True, data={
        "requests": [to_json(r) for r in populate(db, requests, PARTIES)],
        "pagination": page.block(total, "requests"),
    })


@router.get("/requests/{request_id}")
def get_request(request_id: str, current: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    request = _load_request(db, request_id)
    lifecycle.require_party(request, current["_id"])
    return envelope(True, data={"request": request_to_public(db, request)})


@router.post("/requests", status_code=status.HTTP_201_CREATED)
def create_request(
    body: CreateRequestBody,
    current: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    mentor = db["user"].find_one({"_id": ObjectId(body.mentor)})
    if not mentor or not mentor.get("is_active", True):
        raise NotFound("Mentor not found")

    active = db["mentorshiprequest"].find_one({
        "mentee": current["_id"],
        "mentor": mentor["_id"],
        "status": {"$in": ["pending", "accepted"]},
    })
    lifecycle.check_can_request(current["_id"], mentor, active)

    request = create_document(db, "mentorshiprequest", MentorshipRequestSchema(
        mentee=current["_id"],
        mentor=mentor["_id"],
        **body.model_dump(exclude={"mentor"}),
    ))
    logger.info("Mentorship request %s: %s -> %s", request["_id"], current["_id"], mentor["_id"])

    public = request_to_public(db, request)
    notifier.publish(
        "new-mentorship-request",
        {"request": public, "timestamp": utcnow().isoformat()},
        room=user_room(mentor["_id"]),
    )
    return envelope(True, "Mentorship request sent successfully", data={"request": public})


def _respond(db: Database, notifier: Notifier, request_id: str, current: dict, body: Optional[RespondBody], accept: bool) -> dict:
    request = _load_request(db, request_id)
    response_message = body.response_message if body else None
    if accept:
        lifecycle.accept_request(request, current["_id"], response_message)
    else:
        lifecycle.decline_request(request, current["_id"], response_message)
    save_document(db, "mentorshiprequest", request)
    logger.info("Mentorship request %s %s", request["_id"], request["status"])

    public = request_to_public(db, request)
    topic = "mentorship-request-accepted" if accept else "mentorship-request-declined"
    notifier.publish(topic, {"request": public, "timestamp": utcnow().isoformat()}, room=user_room(request["mentee"]))
    return public


@router.put("/requests/{request_id}/accept")
def accept_request(
    request_id: str,
    body: Optional[RespondBody] = None,
    current: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    public = _respond(db, notifier, request_id, current, body, accept=True)
    return envelope(True, "Mentorship request accepted successfully", data={"request": public})


@router.put("/requests/{request_id}/decline")
def decline_request(
    request_id: str,
    body: Optional[RespondBody] = None,
    current: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    public = _respond(db, notifier, request_id, current, body, accept=False)
    return envelope(True, "Mentorship request declined", data={"request": public})


@router.put("/requests/{request_id}/complete")
def complete_request(request_id: str, current: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    request = _load_request(db, request_id)
    lifecycle.complete_request(request, current["_id"])
    save_document(db, "mentorshiprequest", request)
    return envelope(True, "Mentorship marked as completed")


@router.post("/requests/{request_id}/meetings", status_code=status.HTTP_201_CREATED)
def schedule_meeting(
    request_id: str,
    body: MeetingBody,
    current: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    request = _load_request(db, request_id)
    meeting = lifecycle.schedule_meeting(
        request, current["_id"], body.date, body.duration, body.meeting_link, body.notes
    )
    save_document(db, "mentorshiprequest", request)

    meeting = to_json(meeting)
    notifier.publish(
        "meeting-scheduled",
        {"mentorship_id": str(request["_id"]), "meeting": meeting, "timestamp": utcnow().isoformat()},
        room=user_room(lifecycle.other_party(request, current["_id"])),
    )
    return envelope(True, "Meeting scheduled successfully", data={"meeting": meeting})


@router.post("/requests/{request_id}/feedback")
def add_feedback(
    request_id: str,
    body: FeedbackBody,
    current: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    request = _load_request(db, request_id)
    feedback = lifecycle.add_feedback(request, current["_id"], body.rating, body.review)
    save_document(db, "mentorshiprequest", request)
    return envelope(True, "Feedback added successfully", data={"feedback": to_json(feedback)})


@router.get("/stats")
def mentorship_stats(current: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    requests = db["mentorshiprequest"]
    me = current["_id"]

    def avg_rating(party: str, rating_field: str) -> Optional[float]:
        rows = list(requests.aggregate([
            {"$match": {party: me, rating_field: {"$ne": None}}},
            {"$group": {"_id": None, "avg_rating": {"$avg": f"${rating_field}"}}},
        ]))
        return rows[0]["avg_rating"] if rows else None

    return envelope(True, data={
        "user_stats": {
            "sent_requests": requests.count_documents({"mentee": me}),
            "received_requests": requests.count_documents({"mentor": me}),
            "accepted_as_mentee": requests.count_documents({"mentee": me, "status": "accepted"}),
            "accepted_as_mentor": requests.count_documents({"mentor": me, "status": "accepted"}),
            "completed_as_mentee": requests.count_documents({"mentee": me, "status": "completed"}),
            "completed_as_mentor": requests.count_documents({"mentor": me, "status": "completed"}),
            # ratings each side received from the other
            "avg_rating_as_mentor": avg_rating("mentor", "feedback.mentee_rating"),
            "avg_rating_as_mentee": avg_rating("mentee", "feedback.mentor_rating"),
        },
        "platform_stats": {
            "total_requests": requests.count_documents({}),
            "total_mentors": db["user"].count_documents(
                {"is_active": True, "preferences.mentorship_available": True}
            ),
        },
    })


@router.delete("/requests/{request_id}")
def cancel_request(request_id: str, current: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    request = _load_request(db, request_id)
    lifecycle.cancel_request(request, current["_id"])
    save_document(db, "mentorshiprequest", request)
    return envelope(True, "Mentorship request cancelled successfully")
