import logging
import re
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_validator
from pymongo.database import Database

from database import find_by_id, get_db, parse_object_id, utcnow
from errors import NotFound, envelope
from lifecycle import check_profile_visible, require_self, visible_tiers
from pagination import Page, page_params
from schemas import (
    GITHUB_PATTERN,
    LINKEDIN_PATTERN,
    PHONE_PATTERN,
    WEBSITE_PATTERN,
    AvailabilityLevel,
    Visibility,
)
from security import get_current_user, get_optional_user
from serializers import user_to_public

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

MENTOR_FIELDS = {
    "name": 1, "email": 1, "role": 1, "company": 1, "location": 1, "skills": 1,
    "mentorship_profile": 1, "preferences.mentorship_available": 1, "avatar": 1,
}


def icontains(term: str) -> dict:
    return {"$regex": re.escape(term), "$options": "i"}


class PreferencesUpdate(BaseModel):
    email_notifications: Optional[bool] = None
    profile_visibility: Optional[Visibility] = None
    mentorship_available: Optional[bool] = None


class MentorshipProfileUpdate(BaseModel):
    expertise: Optional[List[str]] = None
    experience: Optional[str] = Field(None, max_length=1000)
    availability: Optional[AvailabilityLevel] = None


class UpdateUserBody(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    bio: Optional[str] = Field(None, max_length=500)
    skills: Optional[List[str]] = None
    company: Optional[str] = Field(None, max_length=100)
    location: Optional[str] = Field(None, max_length=100)
    linkedin: Optional[str] = Field(None, pattern=LINKEDIN_PATTERN)
    github: Optional[str] = Field(None, pattern=GITHUB_PATTERN)
    website: Optional[str] = Field(None, pattern=WEBSITE_PATTERN)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    preferences: Optional[PreferencesUpdate] = None
    mentorship_profile: Optional[MentorshipProfileUpdate] = None

    @field_validator("name", "bio", "company", "location", "linkedin", "github", "website", "phone", mode="before")
    @classmethod
    def strip(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("skills")
    @classmethod
    def check_skills(cls, v):
        if v is None:
            return v
        skills = [s.strip() for s in v]
        if any(not (1 <= len(s) <= 50) for s in skills):
            raise ValueError("Each skill must be between 1 and 50 characters")
        return skills

    def to_set(self) -> dict:
        """Flatten into a ``$set`` document; nested objects update key by key."""
        update = {}
        for key, value in self.model_dump(exclude_unset=True).items():
            if value is None:
                continue
            if key in ("preferences", "mentorship_profile"):
                for sub_key, sub_value in value.items():
                    if sub_value is not None:
                        update[f"{key}.{sub_key}"] = sub_value
            else:
                update[key] = value
        return update


@router.get("")
def list_users(
    page: Page = Depends(page_params(10)),
    search: Optional[str] = Query(None, min_length=1, max_length=100),
    batch: Optional[str] = None,
    skills: Optional[List[str]] = Query(None),
    company: Optional[str] = None,
    location: Optional[str] = None,
    mentorship_available: Optional[bool] = None,
    viewer: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    filt: dict = {"is_active": True}
    if search:
        term = icontains(search.strip())
        filt["$or"] = [
            {"name": term},
            {"role": term},
            {"company": term},
            {"skills": term},
            {"location": term},
        ]
    if batch:
        filt["batch"] = batch
    if skills:
        filt["skills"] = {"$in": skills}
    if company:
        filt["company"] = icontains(company)
    if location:
        filt["location"] = icontains(location)
    if mentorship_available:
        filt["preferences.mentorship_available"] = True
    filt["preferences.profile_visibility"] = {"$in": visible_tiers(viewer is not None)}

    users = list(db["user"].find(filt).sort("created_at", -1).skip(page.skip).limit(page.limit))
    total = db["user"].count_documents(filt)
    return envelope(
        True,
        data={"users": [user_to_public(u) for u in users], "pagination": page.block(total, "users")},
    )


@router.get("/stats/overview")
def stats_overview(db: Database = Depends(get_db)):
    users = db["user"]
    active = {"$match": {"is_active": True}}

    def top(field: str, limit: int, exclude_blank: bool = False, by_count: bool = True) -> list:
        match = {"is_active": True}
        if exclude_blank:
            match[field] = {"$nin": ["", None]}
        pipeline = [
            {"$match": match},
            {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
            {"$sort": {"count": -1} if by_count else {"_id": -1}},
            {"$limit": limit},
        ]
        return list(users.aggregate(pipeline))

    top_skills = list(users.aggregate([
        active,
        {"$unwind": "$skills"},
        {"$group": {"_id": "$skills", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
        {"$limit": 15},
    ]))
    mentorship = list(users.aggregate([
        active,
        {"$group": {"_id": "$preferences.mentorship_available", "count": {"$sum": 1}}},
    ]))

    return envelope(True, data={
        "total_alumni": users.count_documents({"is_active": True}),
        "batch_distribution": top("batch", 10, by_count=False),
        "top_companies": top("company", 10, exclude_blank=True),
        "top_skills": top_skills,
        "location_distribution": top("location", 10, exclude_blank=True),
        "mentorship_availability": mentorship,
    })


@router.get("/mentors/available")
def available_mentors(
    page: Page = Depends(page_params(10)),
    expertise: Optional[List[str]] = Query(None),
    availability: Optional[AvailabilityLevel] = None,
    current: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    filt: dict = {
        "is_active": True,
        "preferences.mentorship_available": True,
        "_id": {"$ne": current["_id"]},
    }
    if expertise:
        filt["mentorship_profile.expertise"] = {"$in": expertise}
    if availability:
        filt["mentorship_profile.availability"] = availability

    mentors = list(
        db["user"].find(filt, MENTOR_FIELDS).sort("created_at", -1).skip(page.skip).limit(page.limit)
    )
    total = db["user"].count_documents(filt)
    return envelope(
        True,
        data={"mentors": [user_to_public(m) for m in mentors], "pagination": page.block(total, "mentors")},
    )


@router.get("/{user_id}")
def get_user(user_id: str, viewer: Optional[dict] = Depends(get_optional_user), db: Database = Depends(get_db)):
    user = find_by_id(db, "user", user_id)
    if not user or not user.get("is_active", True):
        raise NotFound("User not found")
    check_profile_visible(user, viewer["_id"] if viewer else None)
    return envelope(True, data={"user": user_to_public(user)})


@router.put("/{user_id}")
def update_user(
    user_id: str,
    body: UpdateUserBody,
    current: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    oid = parse_object_id(user_id)
    require_self(oid, current["_id"], "You can only update your own profile")

    update = body.to_set()
    if update:
        update["updated_at"] = utcnow()
        db["user"].update_one({"_id": oid}, {"$set": update, "$inc": {"version": 1}})
    user = db["user"].find_one({"_id": oid})
    if not user:
        raise NotFound("User not found")
    return envelope(True, "Profile updated successfully", data={"user": user_to_public(user)})


@router.delete("/{user_id}")
def deactivate_user(user_id: str, current: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    oid = parse_object_id(user_id)
    require_self(oid, current["_id"], "You can only deactivate your own account")

    res = db["user"].update_one(
        {"_id": oid},
        {"$set": {"is_active": False, "updated_at": utcnow()}, "$inc": {"version": 1}},
    )
    if res.matched_count == 0:
        raise NotFound("User not found")
    logger.info("Deactivated user %s", oid)
    return envelope(True, "Account deactivated successfully")
