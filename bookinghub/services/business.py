"""
Business account linkage and the talent linkage used for calendar visibility.
"""
import uuid
from typing import Optional, Set

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.models import (
    Profile,
    BusinessAccount,
    BusinessEvent,
    TalentProfile,
    business_event_account,
    business_event_talent,
)
from .permissions import BUSINESS_MANAGE, has_capability


logger = structlog.get_logger(__name__)


def get_business_account_for_user(db: Session, user_id: uuid.UUID) -> Optional[BusinessAccount]:
    return db.query(BusinessAccount).filter(BusinessAccount.user_id == user_id).first()


def _default_account_name(db: Session, user_id: uuid.UUID) -> str:
    profile = db.query(Profile).filter(Profile.user_id == user_id).first()
    if profile is None:
        return "Business"
    return profile.full_name or profile.email


def ensure_business_account_exists(db: Session, user_id: uuid.UUID, commit: bool = True) -> BusinessAccount:
    """
    Create the user's business account if it is missing. Never creates a second one.

    With commit=False the row is only flushed, so the caller's transaction decides.
    """
    existing = get_business_account_for_user(db, user_id)
    if existing is not None:
        return existing
    profile = db.query(Profile).filter(Profile.user_id == user_id).first()
    account = BusinessAccount(
        user_id=user_id,
        name=_default_account_name(db, user_id),
        contact_email=profile.email if profile else None,
        contact_phone=profile.phone if profile else None,
    )
    if not commit:
        db.add(account)
        db.flush()
        return account
    try:
        db.add(account)
        db.commit()
    except IntegrityError:
        # Lost a race against a concurrent insert: the unique user_id wins
        db.rollback()
        existing = get_business_account_for_user(db, user_id)
        if existing is None:
            raise
        return existing
    db.refresh(account)
    logger.info("business_account_created", user_id=str(user_id), account_id=str(account.id))
    return account


def own_talent_ids(db: Session, user_id: uuid.UUID) -> Set[uuid.UUID]:
    rows = db.query(TalentProfile.id).filter(TalentProfile.user_id == user_id).all()
    return {r[0] for r in rows}


def business_talent_ids(db: Session, user_id: uuid.UUID) -> Set[uuid.UUID]:
    account = get_business_account_for_user(db, user_id)
    if account is None:
        return set()
    rows = (
        db.query(business_event_talent.c.talent_id)
        .join(business_event_account, business_event_account.c.event_id == business_event_talent.c.event_id)
        .filter(business_event_account.c.business_account_id == account.id)
        .distinct()
        .all()
    )
    return {r[0] for r in rows}


def linked_talent_ids(db: Session, profile: Profile) -> Set[uuid.UUID]:
    """Talent IDs a calendar:edit_own viewer is tied to."""
    if profile.role == "talent":
        return own_talent_ids(db, profile.user_id)
    if profile.role == "business":
        return business_talent_ids(db, profile.user_id)
    return set()


def business_events_for_account(db: Session, account_id: uuid.UUID):
    return (
        db.query(BusinessEvent)
        .join(business_event_account, business_event_account.c.event_id == BusinessEvent.id)
        .filter(business_event_account.c.business_account_id == account_id)
    )


def logistics_scope(db: Session, profile: Profile, event: BusinessEvent) -> Optional[Set[uuid.UUID]]:
    """
    Assigned talent IDs whose logistics the profile may read on this event.

    Managers and linked business accounts see every assigned talent; a talent
    sees only their own rows. None means the event is not visible at all.
    """
    assigned = {t.id for t in event.talents}
    if has_capability(profile, BUSINESS_MANAGE):
        return assigned
    if profile.role == "business":
        account = get_business_account_for_user(db, profile.user_id)
        if account is not None and any(a.id == account.id for a in event.accounts):
            return assigned
        return None
    if profile.role == "talent":
        own = own_talent_ids(db, profile.user_id) & assigned
        return own or None
    return None
