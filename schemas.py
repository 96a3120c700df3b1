"""
Database Schemas for Alumni Connect

Each Pydantic model corresponds to a MongoDB collection.
Collection name is the lowercase class name (e.g., ChatMessage -> "chatmessage").
References to other documents are stored as ObjectIds.
"""
from datetime import datetime
from typing import Annotated, List, Literal, Optional

from bson import ObjectId
from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, EmailStr, Field

DEFAULT_AVATAR = (
    "https://images.pexels.com/photos/614810/pexels-photo-614810.jpeg"
    "?auto=compress&cs=tinysrgb&w=150&h=150&dpr=2"
)

TIME_PATTERN = r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$"
LINKEDIN_PATTERN = r"^https?://(www\.)?linkedin\.com/.*"
GITHUB_PATTERN = r"^https?://(www\.)?github\.com/.*"
WEBSITE_PATTERN = r"^https?://.*"
PHONE_PATTERN = r"^\+?[1-9][0-9]{0,15}$"


def _strip(v):
    return v.strip() if isinstance(v, str) else v


Trimmed = Annotated[str, BeforeValidator(_strip)]


def _object_id(v: str) -> str:
    if not ObjectId.is_valid(v):
        raise ValueError("Invalid id")
    return v


ObjectIdStr = Annotated[str, AfterValidator(_object_id)]

Visibility = Literal["public", "alumni-only", "private"]
AvailabilityLevel = Literal["high", "medium", "low"]
EventCategory = Literal["networking", "career", "social", "educational", "sports", "cultural", "other"]
EventStatus = Literal["draft", "published", "cancelled", "completed"]
AttendeeStatus = Literal["registered", "attended", "cancelled"]
MessageType = Literal["text", "image", "file", "system"]
MentorshipStatus = Literal["pending", "accepted", "declined", "completed", "cancelled"]
MentorshipType = Literal["one-time", "short-term", "long-term"]
MeetingType = Literal["video-call", "phone-call", "in-person", "chat", "email"]
Timeline = Literal["1-week", "2-weeks", "1-month", "3-months", "6-months", "flexible"]
MeetingStatus = Literal["scheduled", "completed", "cancelled", "rescheduled"]


class Preferences(BaseModel):
    email_notifications: bool = True
    profile_visibility: Visibility = "alumni-only"
    mentorship_available: bool = False


class MentorshipProfile(BaseModel):
    expertise: List[str] = Field(default_factory=list, description="Areas the mentor can help with")
    experience: Optional[str] = Field(None, max_length=1000)
    availability: AvailabilityLevel = "medium"


class User(BaseModel):
    name: str = Field(..., max_length=100, description="Full name")
    email: EmailStr = Field(..., description="Unique, lower-cased email address")
    password: str = Field(..., description="Hashed password")
    batch: str = Field(..., description="Graduation year")
    role: str = Field(..., max_length=100, description="Current job title")
    skills: List[str] = Field(default_factory=list)
    bio: str = Field("", max_length=500)
    avatar: str = DEFAULT_AVATAR
    company: Optional[str] = Field(None, max_length=100)
    location: Optional[str] = Field(None, max_length=100)
    linkedin: Optional[str] = Field(None, pattern=LINKEDIN_PATTERN)
    github: Optional[str] = Field(None, pattern=GITHUB_PATTERN)
    website: Optional[str] = Field(None, pattern=WEBSITE_PATTERN)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    is_verified: bool = False
    is_active: bool = Field(True, description="False once the account is deactivated")
    last_login: Optional[datetime] = None
    preferences: Preferences = Field(default_factory=Preferences)
    mentorship_profile: MentorshipProfile = Field(default_factory=MentorshipProfile)


class Event(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    title: str = Field(..., max_length=200)
    description: str = Field(..., max_length=2000)
    date: datetime
    time: str = Field(..., pattern=TIME_PATTERN, description="HH:MM")
    location: str = Field(..., max_length=200)
    organizer: ObjectId
    attendees: List[dict] = Field(default_factory=list, description="{user, registered_at, status}")
    max_attendees: Optional[int] = Field(None, ge=1, le=1000)
    category: EventCategory = "networking"
    tags: List[str] = Field(default_factory=list)
    image: str = ""
    is_virtual: bool = False
    virtual_link: Optional[str] = None
    registration_deadline: Optional[datetime] = None
    status: EventStatus = "published"
    comments: List[dict] = Field(default_factory=list, description="{id, user, content, created_at}")
    is_public: bool = True
    requires_approval: bool = False


class ChatMessage(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    sender: ObjectId
    content: str = Field(..., max_length=1000)
    message_type: MessageType = "text"
    attachments: List[dict] = Field(default_factory=list)
    reactions: List[dict] = Field(default_factory=list, description="{user, emoji, created_at}")
    mentions: List[ObjectId] = Field(default_factory=list)
    reply_to: Optional[ObjectId] = None
    is_edited: bool = False
    edited_at: Optional[datetime] = None
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None


class Feedback(BaseModel):
    mentee_rating: Optional[int] = Field(None, ge=1, le=5)
    mentee_review: Optional[str] = Field(None, max_length=500)
    mentor_rating: Optional[int] = Field(None, ge=1, le=5)
    mentor_review: Optional[str] = Field(None, max_length=500)


class MentorshipRequest(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    mentee: ObjectId
    mentor: ObjectId
    subject: str = Field(..., max_length=200)
    message: str = Field(..., max_length=1000)
    status: MentorshipStatus = "pending"
    mentorship_type: MentorshipType
    preferred_meeting_type: MeetingType
    goals: List[str] = Field(default_factory=list)
    timeline: Timeline = "flexible"
    expertise: List[str] = Field(default_factory=list)
    response_message: Optional[str] = Field(None, max_length=500)
    responded_at: Optional[datetime] = None
    scheduled_meetings: List[dict] = Field(
        default_factory=list, description="{id, date, duration, meeting_link, notes, status}"
    )
    feedback: Feedback = Field(default_factory=Feedback)
