"""
Create (or promote) the first administrator.

Signup only ever hands out the default role and role changes need an admin,
so the first one has to come from here.

Usage:
    python scripts/seed_admin.py admin@example.com 'S3cret-pass' [--first-name Ada] [--last-name Admin]
"""
import argparse

from bookinghub.auth.provider import AuthProvider, normalize_email
from bookinghub.db import SessionLocal, Base, engine
from bookinghub.models.models import User, Profile
from bookinghub.services.role_transition import apply_role


def seed_admin(email: str, password: str, first_name: str = "", last_name: str = "") -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        email = normalize_email(email)
        user = db.query(User).filter(User.email == email).first()
        if user is None:
            user = AuthProvider(db).sign_up(email, password, metadata={
                "first_name": first_name,
                "last_name": last_name,
                "role": "admin",
                "created_by_admin": True,
            })
            print(f"[CREATE] admin {email} ({user.id})")
            return

        profile = db.query(Profile).filter(Profile.user_id == user.id).first()
        if profile.role == "admin":
            print(f"[SKIP] {email} is already an admin")
            return
        apply_role(db, profile, "admin")
        profile.active = True
        db.commit()
        print(f"[PROMOTE] {email} is now an admin")
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create or promote the first administrator")
    parser.add_argument("email")
    parser.add_argument("password")
    parser.add_argument("--first-name", default="")
    parser.add_argument("--last-name", default="")
    args = parser.parse_args()
    seed_admin(args.email, args.password, args.first_name, args.last_name)
