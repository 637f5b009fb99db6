"""
Provisioning hooks that run inside every ORM flush.

They stand in for database triggers: a new auth identity gets its baseline
Profile and Role Grant, a profile that becomes `talent` without a Talent
Profile gets one, and a profile that becomes `business` gets its Business
Account.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog
from slugify import slugify
from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import ROLES, User, Profile, RoleGrant, TalentProfile, BusinessAccount


logger = structlog.get_logger(__name__)


def signup_default_role() -> str:
    role = (settings.default_signup_role or "").lower()
    return role if role in ROLES else "talent"


def unique_talent_slug(session: Session, name: str, exclude_id: Optional[uuid.UUID] = None) -> str:
    base = slugify(name or "") or "talent"
    pending = {
        obj.slug for obj in session.new
        if isinstance(obj, TalentProfile) and obj.slug and obj.id != exclude_id
    }
    i = 1
    candidate = base
    with session.no_autoflush:
        while True:
            if candidate not in pending:
                q = session.query(TalentProfile.id).filter(TalentProfile.slug == candidate)
                if exclude_id is not None:
                    q = q.filter(TalentProfile.id != exclude_id)
                if q.first() is None:
                    return candidate
            i += 1
            candidate = f"{base}-{i}"


def _pending_profile_for(session: Session, user_id: uuid.UUID) -> Optional[Profile]:
    for obj in session.new:
        if isinstance(obj, Profile) and obj.user_id == user_id:
            return obj
    return None


def _provision_identity(session: Session, user: User) -> None:
    if user.id is None:
        user.id = uuid.uuid4()
    meta = user.user_metadata or {}
    if meta.get("created_by_admin") and user.email_confirmed_at is None:
        user.email_confirmed_at = datetime.now(timezone.utc)
        user.confirmation_token = None

    if _pending_profile_for(session, user.id) is not None:
        return
    role = (meta.get("role") or "").lower()
    if role not in ROLES:
        role = signup_default_role()
    created_by = meta.get("created_by")
    profile = Profile(
        id=uuid.uuid4(),
        user_id=user.id,
        email=user.email,
        first_name=meta.get("first_name") or None,
        last_name=meta.get("last_name") or None,
        role=role,
        active=True,
        created_by=uuid.UUID(str(created_by)) if created_by else None,
    )
    session.add(profile)
    session.add(RoleGrant(id=uuid.uuid4(), user_id=user.id, role=role))
    logger.info("identity_provisioned", user_id=str(user.id), role=role)


def _role_changed(profile: Profile) -> bool:
    state = inspect(profile)
    if state.pending:
        return True
    return state.attrs.role.history.has_changes()


def _ensure_talent_profile(session: Session, profile: Profile) -> None:
    for obj in session.new:
        if isinstance(obj, TalentProfile) and obj.user_id == profile.user_id:
            return
    with session.no_autoflush:
        existing = session.query(TalentProfile.id).filter(TalentProfile.user_id == profile.user_id).first()
    if existing is not None:
        return
    name = profile.full_name or (profile.email or "").split("@")[0] or "Talent"
    tp = TalentProfile(
        id=uuid.uuid4(),
        user_id=profile.user_id,
        name=name,
        slug=unique_talent_slug(session, name),
        active=True,
        public_visibility=False,
        sort_rank=0,
    )
    session.add(tp)
    logger.info("talent_profile_provisioned", user_id=str(profile.user_id), talent_id=str(tp.id))



def _ensure_business_account(session: Session, profile: Profile) -> None:
    for obj in session.new:
        if isinstance(obj, BusinessAccount) and obj.user_id == profile.user_id:
            return
    with session.no_autoflush:
        existing = session.query(BusinessAccount.id).filter(BusinessAccount.user_id == profile.user_id).first()
    if existing is not None:
        return
    account = BusinessAccount(
        id=uuid.uuid4(),
        user_id=profile.user_id,
        name=profile.full_name or profile.email or "Business",
        contact_email=profile.email,
        contact_phone=profile.phone,
    )
    session.add(account)
    logger.info("business_account_provisioned", user_id=str(profile.user_id), account_id=str(account.id))


@event.listens_for(Session, "before_flush")
def provision_on_flush(session: Session, flush_context, instances) -> None:
    for obj in list(session.new):
        if isinstance(obj, User):
            _provision_identity(session, obj)
    for obj in list(session.new) + list(session.dirty):
        if isinstance(obj, Profile) and obj.role == "talent" and _role_changed(obj):
            _ensure_talent_profile(session, obj)
        elif isinstance(obj, Profile) and obj.role == "business" and _role_changed(obj):
            _ensure_business_account(session, obj)
