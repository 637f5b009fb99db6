from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy import or_
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from typing import Optional
import uuid

from ..db import get_db
from ..models.models import Profile
from ..auth.provider import AuthProvider
from ..auth.security import require_capabilities
from ..schemas.users import (
    ProfileResponse,
    UserCreateRequest,
    UserCreateResponse,
    ProfileUpdate,
    RoleChangeRequest,
    RoleChangeResponse,
    PasswordSetRequest,
    DeleteUserResponse,
    LoginHistoryResponse,
    ActivityLogResponse,
)
from ..services.audit import best_effort, get_activity_logs, log_activity, log_security_event
from ..services.change_feed import feed
from ..services.errors import ServiceError, to_http
from ..services.exports import login_history_csv, login_history_filename, login_history_rows
from ..services.permissions import REPORTS_EXPORT, USERS_DELETE, USERS_READ, USERS_ROLES, USERS_WRITE
from ..services.role_transition import change_role
from ..services.user_lifecycle import create_user, hard_delete_user
from ..storage.provider import StorageProvider
from .files import get_storage


router = APIRouter(prefix="/users", tags=["users"])

TABLE = "profiles"


def _get_profile(db: Session, user_id: uuid.UUID) -> Profile:
    p = db.query(Profile).filter(Profile.user_id == user_id).first()
    if not p:
        raise HTTPException(status_code=404, detail="User not found")
    return p


@router.get("")
def list_users(
    q: Optional[str] = None,
    role: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
    _=Depends(require_capabilities(USERS_READ)),
):
    """
    List users with pagination

    Args:
        q: Search query (email or name)
        role: Only users holding this role
        page: Page number (1-indexed)
        limit: Number of items per page (default 50, max 200)
    """
    limit = min(max(1, limit), 200)
    page = max(1, page)
    offset = (page - 1) * limit

    query = db.query(Profile)
    if q:
        like = f"%{q}%"
        query = query.filter(or_(Profile.email.ilike(like), Profile.first_name.ilike(like), Profile.last_name.ilike(like)))
    if role:
        query = query.filter(Profile.role == role.lower())

    total_count = query.count()
    rows = query.order_by(Profile.created_at.desc()).offset(offset).limit(limit).all()
    return {
        "items": [ProfileResponse.model_validate(p) for p in rows],
        "total": total_count,
        "page": page,
        "limit": limit,
        "total_pages": (total_count + limit - 1) // limit if limit > 0 else 0,
    }


@router.get("/{user_id}", response_model=ProfileResponse)
def get_user(user_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_capabilities(USERS_READ))):
    return _get_profile(db, user_id)


@router.post("", response_model=UserCreateResponse, status_code=201)
def create(
    req: UserCreateRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    me: Profile = Depends(require_capabilities(USERS_WRITE)),
):
    try:
        result = create_user(
            db,
            me,
            email=req.email,
            password=req.password,
            role=req.role,
            first_name=req.first_name,
            last_name=req.last_name,
            phone=req.phone,
        )
    except ServiceError as e:
        raise to_http(e)
    background_tasks.add_task(feed.publish, TABLE, "INSERT", result.user_id)
    return UserCreateResponse(
        user_id=result.user_id,
        profile=ProfileResponse.model_validate(result.profile),
        talent_id=result.talent_id,
        business_account_id=result.business_account_id,
        warnings=result.warnings,
    )


@router.patch("/{user_id}", response_model=ProfileResponse)
def update_user(
    user_id: uuid.UUID,
    req: ProfileUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    me: Profile = Depends(require_capabilities(USERS_WRITE)),
):
    p = _get_profile(db, user_id)
    if req.expected_version is not None and req.expected_version != p.version:
        raise HTTPException(status_code=409, detail="Profile was modified by someone else, reload and try again")
    changes = req.model_dump(exclude_unset=True, exclude={"expected_version"})
    if changes.get("active") is False and user_id == me.user_id:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")
    before = {k: getattr(p, k) for k in changes}
    for k, v in changes.items():
        setattr(p, k, v)
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Profile was modified by someone else, reload and try again")
    db.refresh(p)
    diff = {k: {"before": before[k], "after": changes[k]} for k in changes if before[k] != changes[k]}
    if diff:
        warnings: list = []
        best_effort(db, warnings, "activity_log_failed", lambda: log_activity(
            db, user_id=user_id, action="profile_updated", admin_user_id=me.user_id, details=diff,
        ))
        background_tasks.add_task(feed.publish, TABLE, "UPDATE", user_id)
    return p


@router.put("/{user_id}/role", response_model=RoleChangeResponse)
def set_role(
    user_id: uuid.UUID,
    req: RoleChangeRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    me: Profile = Depends(require_capabilities(USERS_ROLES)),
):
    try:
        result = change_role(db, me, user_id, req.role, expected_version=req.expected_version)
    except ServiceError as e:
        raise to_http(e)
    if result.changed:
        background_tasks.add_task(feed.publish, TABLE, "UPDATE", user_id)
    return RoleChangeResponse(
        user_id=result.user_id,
        old_role=result.old_role,
        new_role=result.new_role,
        changed=result.changed,
        version=result.version,
        warnings=result.warnings,
    )


@router.delete("/{user_id}", response_model=DeleteUserResponse)
def delete_user(
    user_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    me: Profile = Depends(require_capabilities(USERS_DELETE)),
    storage: StorageProvider = Depends(get_storage),
):
    try:
        result = hard_delete_user(db, storage, me, user_id)
    except ServiceError as e:
        raise to_http(e)
    background_tasks.add_task(feed.publish, TABLE, "DELETE", user_id)
    return DeleteUserResponse(user_id=result.user_id, removed_files=result.removed_files, warnings=result.warnings)


@router.put("/{user_id}/password")
def set_password(
    user_id: uuid.UUID,
    req: PasswordSetRequest,
    db: Session = Depends(get_db),
    me: Profile = Depends(require_capabilities(USERS_ROLES)),
):
    try:
        AuthProvider(db).admin_update_user_password(user_id, req.password)
    except ServiceError as e:
        raise to_http(e)
    warnings: list = []
    best_effort(db, warnings, "audit_log_failed", lambda: log_security_event(
        db,
        entity_type="user",
        entity_id=user_id,
        action="PASSWORD_RESET",
        actor_id=me.user_id,
        actor_role=me.role,
        source="api",
    ))
    return {"status": "ok", "warnings": warnings}


@router.get("/{user_id}/login-history", response_model=list[LoginHistoryResponse])
def login_history(user_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_capabilities(USERS_READ))):
    _get_profile(db, user_id)
    return login_history_rows(db, user_id)


@router.get("/{user_id}/login-history/export")
def export_login_history(user_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_capabilities(REPORTS_EXPORT))):
    _get_profile(db, user_id)
    body = login_history_csv(login_history_rows(db, user_id))
    return Response(
        content=body,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{login_history_filename(user_id)}"'},
    )


@router.get("/{user_id}/activity", response_model=list[ActivityLogResponse])
def activity(
    user_id: uuid.UUID,
    limit: int = 100,
    offset: int = 0,
    db: Session = Depends(get_db),
    _=Depends(require_capabilities(USERS_READ)),
):
    return get_activity_logs(db, user_id, limit=min(max(1, limit), 500), offset=max(0, offset))
