import logging
import re
from datetime import datetime
from typing import List, Literal, Optional

from bson import ObjectId
from fastapi import APIRouter, Body, Depends, Query, status
from pydantic import BaseModel, Field
from pymongo.database import Database

import lifecycle
from database import as_utc, create_document, find_by_id, get_db, save_document, utcnow
from errors import NotFound, envelope
from notifier import Notifier, get_notifier
from pagination import Page, page_params
from schemas import ChatMessage as ChatMessageSchema, MessageType, ObjectIdStr, Trimmed
from security import get_current_user
from serializers import USER_BRIEF, populate, to_json

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])

MESSAGE_POPULATE = {
    "sender": ("name", "avatar", "role", "company"),
    "mentions": USER_BRIEF,
    "reactions.user": USER_BRIEF,
}


class SendMessageBody(BaseModel):
    content: Trimmed = Field(..., min_length=1, max_length=1000)
    message_type: Literal["text", "image", "file"] = "text"
    mentions: List[ObjectIdStr] = Field(default_factory=list)
    reply_to: Optional[ObjectIdStr] = None


class EditMessageBody(BaseModel):
    content: Trimmed = Field(..., min_length=1, max_length=1000)


class ReactionBody(BaseModel):
    emoji: Trimmed = Field(..., min_length=1, max_length=32)


def messages_to_public(db: Database, messages: List[dict]) -> List[dict]:
    """Populate user references and the ``reply_to`` preview of each message."""
    messages = populate(db, messages, MESSAGE_POPULATE)
    reply_ids = list({m["reply_to"] for m in messages if m.get("reply_to")})
    if reply_ids:
        replies = list(db["chatmessage"].find({"_id": {"$in": reply_ids}}, {"content": 1, "sender": 1}))
        replies = {str(r["_id"]): r for r in populate(db, replies, {"sender": ("name",)})}
        for m in messages:
            if m.get("reply_to"):
                m["reply_to"] = replies.get(str(m["reply_to"]))
    return [to_json(m) for m in messages]


def _load_message(db: Database, message_id: str) -> dict:
    message = find_by_id(db, "chatmessage", message_id)
    if not message:
        raise NotFound("Message not found")
    return message


def _date_range(start: Optional[datetime], end: Optional[datetime]) -> Optional[dict]:
    if not (start or end):
        return None
    rng = {}
    if start:
        rng["$gte"] = as_utc(start)
    if end:
        rng["$lte"] = as_utc(end)
    return rng


@router.get("/messages")
def list_messages(
    page: Page = Depends(page_params(50)),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    search: Optional[str] = Query(None, min_length=1, max_length=100),
    message_type: Optional[MessageType] = None,
    current: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    filt: dict = {"is_deleted": False}
    created = _date_range(start_date, end_date)
    if created:
        filt["created_at"] = created
    if search:
        filt["content"] = {"$regex": re.escape(search), "$options": "i"}
    if message_type:
        filt["message_type"] = message_type

    messages = list(db["chatmessage"].find(filt).sort("created_at", -1).skip(page.skip).limit(page.limit))
    total = db["chatmessage"].count_documents(filt)
    # newest page first, oldest message first within the page
    messages.reverse()
    return envelope(True, data={
        "messages": messages_to_public(db, messages),
        "pagination": page.block(total, "messages"),
    })


@router.post("/messages", status_code=status.HTTP_201_CREATED)
def send_message(
    body: SendMessageBody,
    current: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    reply_to = None
    if body.reply_to:
        reply_to = ObjectId(body.reply_to)
        if not db["chatmessage"].find_one({"_id": reply_to}, {"_id": 1}):
            raise NotFound("Replied message not found")

    message = create_document(db, "chatmessage", ChatMessageSchema(
        sender=current["_id"],
        content=body.content,
        message_type=body.message_type,
        mentions=[ObjectId(m) for m in body.mentions],
        reply_to=reply_to,
    ))
    public = messages_to_public(db, [message])[0]
    notifier.publish("new-message", {"message": public, "timestamp": utcnow().isoformat()})
    return envelope(True, "Message sent successfully", data={"message": public})


@router.put("/messages/{message_id}")
def edit_message(
    message_id: str,
    body: EditMessageBody,
    current: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    message = _load_message(db, message_id)
    lifecycle.edit_message(message, current["_id"], body.content)
    save_document(db, "chatmessage", message)

    notifier.publish("message-edited", {
        "message_id": str(message["_id"]),
        "content": message["content"],
        "is_edited": message["is_edited"],
        "edited_at": message["edited_at"].isoformat(),
    })
    return envelope(True, "Message edited successfully", data={"message": messages_to_public(db, [message])[0]})


@router.delete("/messages/{message_id}")
def delete_message(
    message_id: str,
    current: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    message = _load_message(db, message_id)
    lifecycle.soft_delete_message(message, current["_id"])
    save_document(db, "chatmessage", message)

    notifier.publish("message-deleted", {"message_id": str(message["_id"]), "content": message["content"]})
    return envelope(True, "Message deleted successfully")


@router.post("/messages/{message_id}/reactions")
def add_reaction(
    message_id: str,
    body: ReactionBody,
    current: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    message = _load_message(db, message_id)
    reaction = lifecycle.add_reaction(message, current["_id"], body.emoji)
    save_document(db, "chatmessage", message)

    notifier.publish("message-reaction-added", {
        "message_id": str(message["_id"]),
        "reaction": {
            "user": {"id": str(current["_id"]), "name": current.get("name"), "avatar": current.get("avatar")},
            "emoji": body.emoji,
            "created_at": reaction["created_at"].isoformat(),
        },
    })
    reactions = populate(db, [message], {"reactions.user": USER_BRIEF})[0]["reactions"]
    return envelope(True, "Reaction added successfully", data={"reactions": to_json(reactions)})


@router.delete("/messages/{message_id}/reactions")
def remove_reaction(
    message_id: str,
    body: ReactionBody = Body(...),
    current: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    message = _load_message(db, message_id)
    lifecycle.remove_reaction(message, current["_id"], body.emoji)
    save_document(db, "chatmessage", message)

    notifier.publish("message-reaction-removed", {
        "message_id": str(message["_id"]),
        "user_id": str(current["_id"]),
        "emoji": body.emoji,
    })
    return envelope(True, "Reaction removed successfully")


@router.get("/stats")
def chat_stats(current: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    messages = db["chatmessage"]
    live = {"is_deleted": False}
    today = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)

    top_senders = list(messages.aggregate([
        {"$match": live},
        {"$group": {"_id": "$sender", "message_count": {"$sum": 1}}},
        {"$sort": {"message_count": -1}},
        {"$limit": 10},
    ]))
    users = {
        str(u["_id"]): u
        for u in db["user"].find(
            {"_id": {"$in": [s["_id"] for s in top_senders]}}, {"name": 1, "avatar": 1, "role": 1}
        )
    }
    active_users = [
        {"user": to_json(users[str(s["_id"])]), "message_count": s["message_count"]}
        for s in top_senders
        if str(s["_id"]) in users
    ]
    by_type = list(messages.aggregate([
        {"$match": live},
        {"$group": {"_id": "$message_type", "count": {"$sum": 1}}},
    ]))

    return envelope(True, data={
        "total_messages": messages.count_documents(live),
        "user_messages": messages.count_documents({**live, "sender": current["_id"]}),
        "messages_today": messages.count_documents({**live, "created_at": {"$gte": today}}),
        "active_users": active_users,
        "messages_by_type": by_type,
    })


@router.get("/search")
def search_messages(
    query: str = Query(..., min_length=1, max_length=100),
    sender: Optional[ObjectIdStr] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: Page = Depends(page_params(20)),
    current: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    filt: dict = {"is_deleted": False, "content": {"$regex": re.escape(query), "$options": "i"}}
    if sender:
        filt["sender"] = ObjectId(sender)
    created = _date_range(date_from, date_to)
    if created:
        filt["created_at"] = created

    messages = list(db["chatmessage"].find(filt).sort("created_at", -1).skip(page.skip).limit(page.limit))
    total = db["chatmessage"].count_documents(filt)
    messages = [to_json(m) for m in populate(db, messages, {"sender": ("name", "avatar", "role", "company")})]
    return envelope(True, data={"messages": messages, "pagination": page.block(total, "results")})
