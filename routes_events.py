import logging
import re
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator
from pymongo.database import Database

import lifecycle
from database import as_utc, create_document, find_by_id, get_db, save_document, utcnow
from errors import ConcurrentModification, DomainConflict, Forbidden, NotFound, envelope
from notifier import Notifier, get_notifier
from pagination import Page, page_params
from schemas import TIME_PATTERN, WEBSITE_PATTERN, Event as EventSchema, EventCategory, EventStatus, Trimmed
from security import get_current_user, get_optional_user
from serializers import USER_BRIEF, USER_CARD, populate, populate_one, to_json

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/events", tags=["events"])

LIST_POPULATE = {"organizer": USER_CARD, "attendees.user": USER_BRIEF}
DETAIL_POPULATE = {
    "organizer": USER_CARD,
    "attendees.user": ("name", "avatar", "role", "company"),
    "comments.user": USER_BRIEF,
}


def event_to_public(event: dict) -> dict:
    out = to_json(event)
    out["attendee_count"] = lifecycle.attendee_count(event)
    out["available_spots"] = lifecycle.available_spots(event)
    out["is_full"] = lifecycle.is_full(event)
    return out


def _future(v: Optional[datetime]) -> Optional[datetime]:
    v = as_utc(v)
    if v is not None and v <= utcnow():
        raise ValueError("Event date must be in the future")
    return v


def _check_virtual(is_virtual: Optional[bool], virtual_link: Optional[str]) -> None:
    if is_virtual and not virtual_link:
        raise ValueError("Virtual link is required for virtual events")
    if virtual_link and not re.match(WEBSITE_PATTERN, virtual_link):
        raise ValueError("Virtual link must be a valid URL")


class EventCreate(BaseModel):
    title: Trimmed = Field(..., min_length=1, max_length=200)
    description: Trimmed = Field(..., min_length=1, max_length=2000)
    date: datetime
    time: str = Field(..., pattern=TIME_PATTERN)
    location: Trimmed = Field(..., min_length=1, max_length=200)
    max_attendees: Optional[int] = Field(None, ge=1, le=1000)
    category: EventCategory = "networking"
    tags: List[str] = Field(default_factory=list)
    image: str = ""
    is_virtual: bool = False
    virtual_link: Optional[Trimmed] = None
    registration_deadline: Optional[datetime] = None
    status: Literal["draft", "published"] = "published"
    is_public: bool = True
    requires_approval: bool = False

    @field_validator("date")
    @classmethod
    def date_in_future(cls, v):
        return _future(v)

    @field_validator("registration_deadline")
    @classmethod
    def deadline_utc(cls, v):
        return as_utc(v)

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v):
        return [t.strip().lower() for t in v if t.strip()]

    @model_validator(mode="after")
    def check_consistency(self):
        _check_virtual(self.is_virtual, self.virtual_link)
        if self.registration_deadline and self.registration_deadline >= self.date:
            raise ValueError("Registration deadline must be before event date")
        return self


CLEARABLE_EVENT_FIELDS = ("max_attendees", "registration_deadline", "virtual_link")


class EventUpdate(BaseModel):
    title: Optional[Trimmed] = Field(None, min_length=1, max_length=200)
    description: Optional[Trimmed] = Field(None, min_length=1, max_length=2000)
    date: Optional[datetime] = None
    time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    location: Optional[Trimmed] = Field(None, min_length=1, max_length=200)
    max_attendees: Optional[int] = Field(None, ge=1, le=1000)
    category: Optional[EventCategory] = None
    tags: Optional[List[str]] = None
    image: Optional[str] = None
    is_virtual: Optional[bool] = None
    virtual_link: Optional[Trimmed] = None
    registration_deadline: Optional[datetime] = None
    is_public: Optional[bool] = None
    requires_approval: Optional[bool] = None

    @field_validator("date")
    @classmethod
    def date_in_future(cls, v):
        return _future(v)

    @field_validator("registration_deadline")
    @classmethod
    def deadline_utc(cls, v):
        return as_utc(v)

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v):
        if v is None:
            return v
        return [t.strip().lower() for t in v if t.strip()]

    def changes(self) -> dict:
        """Fields sent in the body; null only clears the optional ones."""
        return {
            k: v for k, v in self.model_dump(exclude_unset=True).items()
            if v is not None or k in CLEARABLE_EVENT_FIELDS
        }


class CommentBody(BaseModel):
    content: str = Field(..., max_length=500)

    @field_validator("content", mode="before")
    @classmethod
    def not_blank(cls, v):
        if isinstance(v, str):
            v = v.strip()
        if not v:
            raise ValueError("Comment content is required")
        return v


def _load_event(db: Database, event_id: str) -> dict:
    event = find_by_id(db, "event", event_id)
    if not event:
        raise NotFound("Event not found")
    return event


def _listing(db: Database, filt: dict, sort: list, page: Page) -> tuple:
    events = list(db["event"].find(filt).sort(sort).skip(page.skip).limit(page.limit))
    total = db["event"].count_documents(filt)
    return events, total


@router.get("")
def list_events(
    page: Page = Depends(page_params(10)),
    search: Optional[str] = Query(None, min_length=1, max_length=100),
    category: Optional[EventCategory] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    is_virtual: Optional[bool] = None,
    include_past: bool = False,
    available_only: bool = False,
    viewer: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    filt: dict = {"status": "published", "is_public": True}
    if not include_past:
        filt["date"] = {"$gte": utcnow()}
    if search:
        term = {"$regex": re.escape(search.strip()), "$options": "i"}
        filt["$or"] = [{"title": term}, {"description": term}, {"location": term}, {"tags": term}]
    if category:
        filt["category"] = category
    if start_date or end_date:
        filt["date"] = {}
        if start_date:
            filt["date"]["$gte"] = as_utc(start_date)
        if end_date:
            filt["date"]["$lte"] = as_utc(end_date)
    if is_virtual is not None:
        filt["is_virtual"] = is_virtual

    events, total = _listing(db, filt, [("date", 1)], page)
    if available_only:
        events = [e for e in events if not lifecycle.is_full(e)]
    events = populate(db, events, LIST_POPULATE)
    return envelope(True, data={
        "events": [event_to_public(e) for e in events],
        "pagination": page.block(total, "events"),
    })


@router.get("/my/organized")
def my_organized(
    page: Page = Depends(page_params(10)),
    event_status: Optional[EventStatus] = Query(None, alias="status"),
    current: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    filt: dict = {"organizer": current["_id"]}
    if event_status:
        filt["status"] = event_status
    events, total = _listing(db, filt, [("created_at", -1)], page)
    events = populate(db, events, LIST_POPULATE)
    return envelope(True, data={
        "events": [event_to_public(e) for e in events],
        "pagination": page.block(total, "events"),
    })


@router.get("/my/attending")
def my_attending(
    page: Page = Depends(page_params(10)),
    current: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    filt = {"attendees": {"$elemMatch": {"user": current["_id"], "status": "registered"}}}
    events, total = _listing(db, filt, [("date", 1)], page)
    events = populate(db, events, LIST_POPULATE)
    return envelope(True, data={
        "events": [event_to_public(e) for e in events],
        "pagination": page.block(total, "events"),
    })


@router.get("/{event_id}")
def get_event(event_id: str, viewer: Optional[dict] = Depends(get_optional_user), db: Database = Depends(get_db)):
    event = _load_event(db, event_id)
    if not event.get("is_public", True) and not (
        viewer and lifecycle.same_id(viewer["_id"], event.get("organizer"))
    ):
        raise Forbidden("This event is private")
    return envelope(True, data={"event": event_to_public(populate_one(db, event, DETAIL_POPULATE))})


@router.post("", status_code=status.HTTP_201_CREATED)
def create_event(body: EventCreate, current: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    event = create_document(db, "event", EventSchema(organizer=current["_id"], **body.model_dump()))
    logger.info("Event %s created by %s", event["_id"], current["_id"])
    event = populate_one(db, event, {"organizer": USER_CARD})
    return envelope(True, "Event created successfully", data={"event": event_to_public(event)})


@router.put("/{event_id}")
def update_event(
    event_id: str,
    body: EventUpdate,
    current: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    event = _load_event(db, event_id)
    lifecycle.require_organizer(event, current["_id"], "update")

    updates = body.changes()
    try:
        _check_virtual(updates.get("is_virtual", event.get("is_virtual")), updates.get("virtual_link", event.get("virtual_link")))
    except ValueError as e:
        raise DomainConflict(str(e))
    lifecycle.apply_event_update(event, updates)
    save_document(db, "event", event)

    event = event_to_public(populate_one(db, event, {"organizer": USER_CARD}))
    notifier.publish("event-updated", {"event": event})
    return envelope(True, "Event updated successfully", data={"event": event})


@router.delete("/{event_id}")
def delete_event(
    event_id: str,
    current: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    event = _load_event(db, event_id)
    lifecycle.require_organizer(event, current["_id"], "delete")

    if lifecycle.should_hard_delete(event):
        res = db["event"].delete_one({"_id": event["_id"], "version": event.get("version", 0)})
        if res.deleted_count == 0:
            raise ConcurrentModification()
        logger.info("Event %s deleted", event["_id"])
        return envelope(True, "Event deleted successfully")

    lifecycle.cancel_event(event)
    save_document(db, "event", event)
    logger.info("Event %s cancelled with %d attendees", event["_id"], len(event["attendees"]))
    notifier.publish("event-updated", {"event": event_to_public(event)})
    return envelope(True, "Event cancelled successfully")


@router.post("/{event_id}/register")
def register_for_event(event_id: str, current: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    event = _load_event(db, event_id)
    lifecycle.register_attendee(event, current["_id"])
    save_document(db, "event", event)

    event = populate_one(db, event, {"attendees.user": USER_BRIEF})
    return envelope(True, "Successfully registered for event", data={"event": event_to_public(event)})


@router.delete("/{event_id}/register")
def unregister_from_event(event_id: str, current: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    event = _load_event(db, event_id)
    lifecycle.unregister_attendee(event, current["_id"])
    save_document(db, "event", event)
    return envelope(True, "Successfully unregistered from event")


@router.post("/{event_id}/comments", status_code=status.HTTP_201_CREATED)
def add_comment(
    event_id: str,
    body: CommentBody,
    current: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    event = _load_event(db, event_id)
    comment = lifecycle.add_comment(event, current["_id"], body.content)
    save_document(db, "event", event)

    comment = populate_one(db, comment, {"user": USER_BRIEF})
    return envelope(True, "Comment added successfully", data={"comment": to_json(comment)})
