"""
Seed the database with sample alumni, events, chat messages and mentorship
requests.

    python seed.py

Existing users, events, messages and requests are removed first.
"""
import logging
from datetime import timedelta

from pymongo.database import Database

import lifecycle
from database import create_document, ensure_indexes, get_db, save_document, utcnow
from schemas import ChatMessage, Event, MentorshipRequest, User
from security import hash_password

logger = logging.getLogger(__name__)

SAMPLE_PASSWORD = "Password123"

SAMPLE_USERS = [
    {
        "name": "John Doe",
        "email": "john@example.com",
        "batch": "2020",
        "role": "Software Engineer",
        "skills": ["React", "Node.js", "Python"],
        "bio": "Full-stack engineer with 3+ years of experience.",
        "company": "Tech Corp",
        "location": "San Francisco, CA",
        "linkedin": "https://linkedin.com/in/johndoe",
        "preferences": {"mentorship_available": True, "profile_visibility": "alumni-only"},
        "mentorship_profile": {
            "expertise": ["Web Development", "Career Guidance", "Technical Interviews"],
            "experience": "Senior engineer across startups and big tech.",
            "availability": "high",
        },
    },
    {
        "name": "Sarah Johnson",
        "email": "sarah@example.com",
        "batch": "2019",
        "role": "Product Manager",
        "skills": ["Product Strategy", "User Research", "Agile"],
        "bio": "Product manager in B2B SaaS.",
        "company": "Microsoft",
        "location": "Seattle, WA",
        "preferences": {"mentorship_available": True, "profile_visibility": "public"},
        "mentorship_profile": {
            "expertise": ["Product Management", "Strategy", "Leadership"],
            "experience": "Led several product launches.",
            "availability": "medium",
        },
    },
    {
        "name": "Michael Chen",
        "email": "michael@example.com",
        "batch": "2018",
        "role": "Data Scientist",
        "skills": ["Python", "Machine Learning", "SQL"],
        "company": "DataWorks",
        "location": "New York, NY",
        "preferences": {"profile_visibility": "public"},
    },
    {
        "name": "Emily Davis",
        "email": "emily@example.com",
        "batch": "2021",
        "role": "UX Designer",
        "skills": ["Figma", "User Research"],
        "company": "Design Studio",
        "location": "Austin, TX",
    },
]


def seed(db: Database) -> dict:
    for name in ("user", "event", "chatmessage", "mentorshiprequest"):
        db[name].delete_many({})
    logger.info("Cleared existing data")
    ensure_indexes(db)

    password = hash_password(SAMPLE_PASSWORD)
    users = [create_document(db, "user", User(password=password, **u)) for u in SAMPLE_USERS]
    john, sarah, michael, emily = users
    logger.info("Created %d users", len(users))

    now = utcnow()
    events = [
        create_document(db, "event", Event(
            title="Alumni Networking Night",
            description="Meet fellow alumni over drinks and snacks.",
            date=now + timedelta(days=14),
            time="18:30",
            location="Downtown Hall",
            organizer=john["_id"],
            max_attendees=50,
            category="networking",
            tags=["networking", "social"],
        )),
        create_document(db, "event", Event(
            title="Career Workshop: Breaking into Product",
            description="A hands-on session on product management careers.",
            date=now + timedelta(days=30),
            time="10:00",
            location="Online",
            organizer=sarah["_id"],
            max_attendees=100,
            category="career",
            is_virtual=True,
            virtual_link="https://meet.example.com/product",
        )),
    ]
    for event, attendees in ((events[0], [sarah, michael]), (events[1], [john, emily])):
        for user in attendees:
            lifecycle.register_attendee(event, user["_id"])
        save_document(db, "event", event)
    logger.info("Created %d events", len(events))

    messages = [
        create_document(db, "chatmessage", ChatMessage(sender=u["_id"], content=text))
        for u, text in (
            (john, "Welcome to the alumni chat!"),
            (sarah, "Great to be here. Anyone going to networking night?"),
            (michael, "Count me in."),
        )
    ]
    logger.info("Created %d chat messages", len(messages))

    requests = [
        create_document(db, "mentorshiprequest", MentorshipRequest(
            mentee=emily["_id"],
            mentor=john["_id"],
            subject="Moving from design to front-end",
            message="I'd love guidance on building engineering skills.",
            mentorship_type="short-term",
            preferred_meeting_type="video-call",
            goals=["Learn React", "Build a portfolio"],
            timeline="3-months",
        )),
        create_document(db, "mentorshiprequest", MentorshipRequest(
            mentee=michael["_id"],
            mentor=sarah["_id"],
            subject="Product sense for data scientists",
            message="How do I work more closely with product teams?",
            mentorship_type="one-time",
            preferred_meeting_type="chat",
        )),
    ]
    logger.info("Created %d mentorship requests", len(requests))

    return {"users": len(users), "events": len(events), "messages": len(messages), "requests": len(requests)}


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    counts = seed(get_db())
    logger.info("Seeding complete: %s (password for every user: %s)", counts, SAMPLE_PASSWORD)


if __name__ == "__main__":
    main()
