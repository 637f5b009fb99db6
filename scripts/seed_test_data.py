"""
Seed the local database with sample talents, a business user and calendar events.

Usage:
  python scripts/seed_test_data.py

This script is idempotent: running it multiple times reuses the same
records based on unique fields (email for users, title + date for events).
"""

from datetime import date, timedelta

from bookinghub.auth.provider import AuthProvider
from bookinghub.db import SessionLocal, Base, engine
from bookinghub.models.models import User, TalentProfile, CalendarEvent, BusinessEvent
from bookinghub.services.business import ensure_business_account_exists


SAMPLE_USERS = [
    ("maya.reyes@example.com", "Maya", "Reyes", "talent"),
    ("jon.okafor@example.com", "Jon", "Okafor", "talent"),
    ("events@acme-cons.example.com", "Acme", "Conventions", "business"),
]

SAMPLE_EVENTS = [
    # (talent email or None for unassigned, title, days from today, status)
    ("maya.reyes@example.com", "Anime Expo panel", 5, "booked"),
    ("maya.reyes@example.com", "Studio session", 12, "hold"),
    ("jon.okafor@example.com", "Comic Con signing", 20, "tentative"),
    (None, "Agency holiday", 30, "not_available"),
]


def ensure_user(db, email: str, first: str, last: str, role: str) -> User:
    user = db.query(User).filter(User.email == email).first()
    if user:
        return user
    return AuthProvider(db).sign_up(email, "password123", metadata={
        "first_name": first,
        "last_name": last,
        "role": role,
        "created_by_admin": True,
    })


def main() -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        users = {}
        for email, first, last, role in SAMPLE_USERS:
            users[email] = ensure_user(db, email, first, last, role)
            if role == "business":
                ensure_business_account_exists(db, users[email].id)

        talents = {}
        for email, user in users.items():
            tp = db.query(TalentProfile).filter(TalentProfile.user_id == user.id).first()
            if tp:
                tp.public_visibility = True
                talents[email] = tp

        today = date.today()
        for email, title, offset, status in SAMPLE_EVENTS:
            start = today + timedelta(days=offset)
            exists = db.query(CalendarEvent).filter(CalendarEvent.event_title == title, CalendarEvent.start_date == start).first()
            if exists:
                continue
            db.add(CalendarEvent(
                talent_id=talents[email].id if email else None,
                event_title=title,
                start_date=start,
                end_date=start,
                status=status,
                source_file="seed",
            ))

        if not db.query(BusinessEvent).filter(BusinessEvent.title == "Acme Spring Con").first():
            account = ensure_business_account_exists(db, users["events@acme-cons.example.com"].id)
            be = BusinessEvent(title="Acme Spring Con", status="confirmed")
            be.talents = [talents["maya.reyes@example.com"]]
            be.accounts = [account]
            db.add(be)

        db.commit()
        print(f"Seeded {len(users)} users, {len(talents)} talents")
    finally:
        db.close()


if __name__ == "__main__":
    main()
