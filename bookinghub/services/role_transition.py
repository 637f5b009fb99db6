"""
Role transitions.

A role change touches several rows that must move together: the profile's
role, the role grant, the talent profile's activation and the business
account. They are written in one transaction guarded by the profile's
version column; the activity and audit entries are written afterwards and
only produce warnings when they fail.
"""
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..models.models import ROLES, Profile, RoleGrant, TalentProfile
from . import provisioning  # noqa: F401  talent profile creation on flush
from .audit import best_effort, log_activity, log_security_event
from .business import ensure_business_account_exists
from .errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    RoleTransitionError,
    SelfRoleChangeError,
    ValidationError,
)
from .permissions import USERS_ROLES, has_capability


logger = structlog.get_logger(__name__)


@dataclass
class TransitionResult:
    user_id: uuid.UUID
    old_role: str
    new_role: str
    changed: bool
    version: int
    warnings: List[str] = field(default_factory=list)


def _sync_grants(db: Session, user_id: uuid.UUID, role: str) -> None:
    grants = db.query(RoleGrant).filter(RoleGrant.user_id == user_id).all()
    if not any(g.role == role for g in grants):
        db.add(RoleGrant(id=uuid.uuid4(), user_id=user_id, role=role))
    for g in grants:
        if g.role != role:
            db.delete(g)


def _talent_profile(db: Session, user_id: uuid.UUID) -> Optional[TalentProfile]:
    return db.query(TalentProfile).filter(TalentProfile.user_id == user_id).first()


def apply_role(db: Session, profile: Profile, new_role: str) -> None:
    """
    Move the profile and its dependent rows to `new_role` without committing.

    Leaving talent deactivates and hides the talent profile; returning
    reactivates it. Becoming business ensures the business account.
    """
    old_role = profile.role
    profile.role = new_role
    _sync_grants(db, profile.user_id, new_role)

    tp = _talent_profile(db, profile.user_id)
    if old_role == "talent" and new_role != "talent" and tp is not None:
        tp.active = False
        tp.public_visibility = False
    elif new_role == "talent" and tp is not None:
        tp.active = True
        tp.public_visibility = True
    # new_role == "talent" without a talent profile: provisioning creates it on flush

    if new_role == "business":
        ensure_business_account_exists(db, profile.user_id, commit=False)


def change_role(
    db: Session,
    actor: Profile,
    target_user_id: uuid.UUID,
    new_role: str,
    expected_version: Optional[int] = None,
) -> TransitionResult:
    new_role = (new_role or "").lower()
    if new_role not in ROLES:
        raise ValidationError(f"Invalid role: {new_role or '<empty>'}")
    if actor.user_id == target_user_id:
        raise SelfRoleChangeError()
    if not has_capability(actor, USERS_ROLES):
        raise AuthorizationError("Only administrators can change roles")

    profile = db.query(Profile).filter(Profile.user_id == target_user_id).first()
    if profile is None:
        raise NotFoundError("User not found")
    if expected_version is not None and expected_version != profile.version:
        raise ConflictError("Profile was modified by someone else, reload and try again")

    old_role = profile.role
    if old_role == new_role:
        return TransitionResult(
            user_id=target_user_id, old_role=old_role, new_role=new_role,
            changed=False, version=profile.version,
        )

    try:
        apply_role(db, profile, new_role)
        db.commit()
    except StaleDataError:
        db.rollback()
        logger.info("role_change_conflict", user_id=str(target_user_id), new_role=new_role)
        raise ConflictError("Profile was modified by someone else, reload and try again")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("role_change_failed", user_id=str(target_user_id), new_role=new_role, error=str(e))
        raise RoleTransitionError("Role change failed, nothing was saved")

    db.refresh(profile)
    logger.info(
        "role_changed",
        user_id=str(target_user_id),
        old_role=old_role,
        new_role=new_role,
        actor_id=str(actor.user_id),
    )

    result = TransitionResult(
        user_id=target_user_id, old_role=old_role, new_role=new_role,
        changed=True, version=profile.version,
    )
    changes = {"role": {"before": old_role, "after": new_role}}
    best_effort(db, result.warnings, "activity_log_failed", lambda: log_activity(
        db,
        user_id=target_user_id,
        action="role_changed",
        admin_user_id=actor.user_id,
        details={"old_role": old_role, "new_role": new_role, "changed_by": actor.email},
    ))
    best_effort(db, result.warnings, "audit_log_failed", lambda: log_security_event(
        db,
        entity_type="role",
        entity_id=target_user_id,
        action="ROLE_CHANGE",
        actor_id=actor.user_id,
        actor_role=actor.role,
        source="api",
        changes_json=changes,
    ))
    return result
