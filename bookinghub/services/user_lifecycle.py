"""
Administrative user creation and hard deletion.
"""
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import structlog
from azure.core.exceptions import AzureError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth.provider import AuthProvider, normalize_email
from ..config import settings
from ..models.models import (
    ROLES,
    User,
    Profile,
    RoleGrant,
    TalentProfile,
    BusinessAccount,
    BusinessEventHotel,
    BusinessEventTransport,
    BusinessEventTravel,
    CalendarEvent,
    LoginHistory,
    PasswordReset,
    StoredFile,
    business_event_account,
    business_event_talent,
)
from ..storage.provider import StorageProvider
from .audit import best_effort, log_activity, log_security_event
from .business import ensure_business_account_exists, get_business_account_for_user
from .errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ServiceError,
    UserCleanupError,
    ValidationError,
)
from .permissions import USERS_DELETE, USERS_ROLES, USERS_WRITE, has_capability


logger = structlog.get_logger(__name__)

# Roles an actor without users:roles may hand out at creation
_BASIC_ROLES = ("talent", "business")


@dataclass
class CreateUserResult:
    user_id: uuid.UUID
    profile: Profile
    talent_id: Optional[uuid.UUID] = None
    business_account_id: Optional[uuid.UUID] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class DeleteUserResult:
    user_id: uuid.UUID
    removed_files: int = 0
    warnings: List[str] = field(default_factory=list)


def create_user(
    db: Session,
    actor: Profile,
    email: str,
    password: str,
    role: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    phone: Optional[str] = None,
    auth: Optional[AuthProvider] = None,
) -> CreateUserResult:
    if not has_capability(actor, USERS_WRITE):
        raise AuthorizationError("Not allowed to create users")
    email = normalize_email(email)
    role = (role or "").lower()
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    if not password or len(password) < settings.password_min_length:
        raise ValidationError(f"Password must be at least {settings.password_min_length} characters")
    if role not in ROLES:
        raise ValidationError(f"Invalid role: {role or '<empty>'}")
    if role not in _BASIC_ROLES and not has_capability(actor, USERS_ROLES):
        raise AuthorizationError("Only administrators can create admin or staff users")
    if db.query(User.id).filter(User.email == email).first():
        raise ConflictError("A user with this email already exists")

    auth = auth or AuthProvider(db)
    user = auth.sign_up(email, password, metadata={
        "first_name": (first_name or "").strip(),
        "last_name": (last_name or "").strip(),
        "role": role,
        "created_by_admin": True,
        "created_by": str(actor.user_id),
    })

    profile = db.query(Profile).filter(Profile.user_id == user.id).first()
    if profile is None:
        # The identity exists but provisioning did not run; nothing more can be derived
        raise UserCleanupError("User was created but no profile was provisioned")
    if phone:
        profile.phone = phone
        db.commit()

    result = CreateUserResult(user_id=user.id, profile=profile)

    if role == "business":
        try:
            result.business_account_id = ensure_business_account_exists(db, user.id).id
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("business_account_create_failed", user_id=str(user.id), error=str(e))
            result.warnings.append("business_account_create_failed")

    grant = db.query(RoleGrant).filter(RoleGrant.user_id == user.id, RoleGrant.role == role).first()
    if grant is None:
        logger.warning("role_grant_missing", user_id=str(user.id), role=role)
        result.warnings.append("role_grant_missing")
    if role == "talent":
        tp = db.query(TalentProfile).filter(TalentProfile.user_id == user.id).first()
        if tp is None:
            logger.warning("talent_profile_missing", user_id=str(user.id))
            result.warnings.append("talent_profile_missing")
        else:
            result.talent_id = tp.id

    best_effort(db, result.warnings, "activity_log_failed", lambda: log_activity(
        db,
        user_id=user.id,
        action="user_created",
        admin_user_id=actor.user_id,
        details={"email": email, "role": role, "created_by": actor.email},
    ))
    best_effort(db, result.warnings, "audit_log_failed", lambda: log_security_event(
        db,
        entity_type="user",
        entity_id=user.id,
        action="USER_CREATE",
        actor_id=actor.user_id,
        actor_role=actor.role,
        source="api",
        changes_json={"email": email, "role": role},
    ))
    logger.info("user_created", user_id=str(user.id), role=role, actor_id=str(actor.user_id))
    return result


def delete_user_and_files_completely(
    db: Session,
    storage: StorageProvider,
    user_id: uuid.UUID,
) -> Tuple[int, List[str]]:
    """
    Remove every domain row owned by the user in one transaction, then the
    stored objects. Returns (objects removed, warnings).
    """
    try:
        talent_ids = [r[0] for r in db.query(TalentProfile.id).filter(TalentProfile.user_id == user_id).all()]
        if talent_ids:
            db.query(CalendarEvent).filter(CalendarEvent.talent_id.in_(talent_ids)).delete(synchronize_session=False)
            for model in (BusinessEventTravel, BusinessEventHotel, BusinessEventTransport):
                db.query(model).filter(model.talent_id.in_(talent_ids)).delete(synchronize_session=False)
            db.execute(business_event_talent.delete().where(business_event_talent.c.talent_id.in_(talent_ids)))
            db.query(TalentProfile).filter(TalentProfile.id.in_(talent_ids)).delete(synchronize_session=False)

        account = get_business_account_for_user(db, user_id)
        if account is not None:
            db.execute(business_event_account.delete().where(business_event_account.c.business_account_id == account.id))
            db.query(BusinessAccount).filter(BusinessAccount.id == account.id).delete(synchronize_session=False)

        db.query(RoleGrant).filter(RoleGrant.user_id == user_id).delete(synchronize_session=False)
        db.query(LoginHistory).filter(LoginHistory.user_id == user_id).delete(synchronize_session=False)
        db.query(PasswordReset).filter(PasswordReset.user_id == user_id).delete(synchronize_session=False)

        files = db.query(StoredFile).filter(StoredFile.owner_user_id == user_id).all()
        objects = [(f.bucket, f.key) for f in files]
        for f in files:
            db.delete(f)

        profile = db.query(Profile).filter(Profile.user_id == user_id).first()
        if profile is not None:
            db.delete(profile)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("user_cleanup_failed", user_id=str(user_id), error=str(e))
        raise UserCleanupError("Failed to delete user data, nothing was removed")

    removed = 0
    warnings: List[str] = []
    for bucket, key in objects:
        try:
            storage.delete(bucket, key)
            removed += 1
        except (OSError, AzureError) as e:
            logger.warning("stored_object_delete_failed", bucket=bucket, key=key, error=str(e))
            warnings.append("stored_object_delete_failed")
    return removed, warnings


def hard_delete_user(
    db: Session,
    storage: StorageProvider,
    actor: Profile,
    user_id: uuid.UUID,
    auth: Optional[AuthProvider] = None,
) -> DeleteUserResult:
    if actor.user_id == user_id:
        raise AuthorizationError("You cannot delete your own account")
    if not has_capability(actor, USERS_DELETE):
        raise AuthorizationError("Only administrators can delete users")

    profile = db.query(Profile).filter(Profile.user_id == user_id).first()
    user = db.query(User).filter(User.id == user_id).first()
    if profile is None and user is None:
        raise NotFoundError("User not found")
    email = profile.email if profile else user.email
    old_role = profile.role if profile else None

    removed, warnings = delete_user_and_files_completely(db, storage, user_id)
    result = DeleteUserResult(user_id=user_id, removed_files=removed, warnings=warnings)

    auth = auth or AuthProvider(db)
    try:
        auth.admin_delete_user(user_id)
    except (SQLAlchemyError, ServiceError) as e:
        db.rollback()
        logger.warning("auth_identity_delete_failed", user_id=str(user_id), error=str(e))
        result.warnings.append("auth_identity_delete_failed")

    best_effort(db, result.warnings, "activity_log_failed", lambda: log_activity(
        db,
        user_id=user_id,
        action="user_deleted",
        admin_user_id=actor.user_id,
        details={"email": email, "role": old_role, "deleted_by": actor.email},
    ))
    best_effort(db, result.warnings, "audit_log_failed", lambda: log_security_event(
        db,
        entity_type="user",
        entity_id=user_id,
        action="USER_DELETE",
        actor_id=actor.user_id,
        actor_role=actor.role,
        source="api",
        changes_json={"email": email, "role": old_role},
    ))
    logger.info("user_deleted", user_id=str(user_id), actor_id=str(actor.user_id), warnings=result.warnings)
    return result
