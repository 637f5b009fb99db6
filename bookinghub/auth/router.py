import uuid
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..db import get_db
from ..models.models import User, Profile, TalentProfile
from ..schemas.auth import (
    SignUpRequest,
    SignUpResponse,
    LoginRequest,
    TokenResponse,
    RefreshRequest,
    PasswordForgotRequest,
    PasswordResetRequest,
    MeResponse,
    SelfProfileUpdate,
)
from ..services.audit import best_effort, log_activity
from ..services.business import get_business_account_for_user
from ..services.change_feed import feed
from ..services.errors import ServiceError, to_http
from .provider import AuthProvider
from .security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    get_current_user,
    get_current_profile,
    capabilities_for,
)


router = APIRouter(prefix="/auth", tags=["auth"])


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _location_from_headers(request: Request) -> Optional[dict]:
    # Filled in by the edge proxy when geo lookup is enabled
    loc = {
        "city": request.headers.get("x-geo-city"),
        "region": request.headers.get("x-geo-region"),
        "country": request.headers.get("x-geo-country"),
    }
    return loc if any(loc.values()) else None


@router.post("/signup", response_model=SignUpResponse, status_code=201)
def signup(req: SignUpRequest, db: Session = Depends(get_db)):
    try:
        user = AuthProvider(db).sign_up(
            req.email,
            req.password,
            metadata={"first_name": req.first_name or "", "last_name": req.last_name or ""},
        )
    except ServiceError as e:
        raise to_http(e)
    return SignUpResponse(id=user.id, email=user.email, confirmation_required=user.email_confirmed_at is None)


@router.get("/confirm")
def confirm(token: str, db: Session = Depends(get_db)):
    try:
        user = AuthProvider(db).confirm_email(token)
    except ServiceError as e:
        raise to_http(e)
    return {"status": "ok", "email": user.email}


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, request: Request, db: Session = Depends(get_db)):
    try:
        _, _, access, refresh = AuthProvider(db).sign_in(
            req.email,
            req.password,
            ip_address=_client_ip(request),
            user_agent=request.headers.get("user-agent"),
            location_info=_location_from_headers(request),
        )
    except ServiceError as e:
        raise to_http(e)
    return TokenResponse(access_token=access, refresh_token=refresh)


@router.post("/refresh", response_model=TokenResponse)
def refresh(req: RefreshRequest, db: Session = Depends(get_db)):
    payload = decode_token(req.refresh_token)
    if payload.get("type") != "refresh":
        raise HTTPException(status_code=400, detail="Invalid refresh token")
    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid subject")
    profile = db.query(Profile).filter(Profile.user_id == user_id).first()
    user = db.query(User).filter(User.id == profile.user_id).first() if profile else None
    if not user or not user.is_active or not profile.active:
        raise HTTPException(status_code=401, detail="User not active")
    access = create_access_token(str(user.id), role=profile.role)
    new_refresh = create_refresh_token(str(user.id))
    return TokenResponse(access_token=access, refresh_token=new_refresh)


@router.post("/password/forgot")
def password_forgot(req: PasswordForgotRequest, db: Session = Depends(get_db)):
    # Same answer whether or not the address exists
    AuthProvider(db).reset_password(req.email)
    return {"status": "ok"}


@router.post("/password/reset")
def password_reset(req: PasswordResetRequest, db: Session = Depends(get_db)):
    try:
        AuthProvider(db).complete_password_reset(req.token, req.new_password)
    except ServiceError as e:
        raise to_http(e)
    return {"status": "ok"}


def _me_response(db: Session, user: User, profile: Profile) -> MeResponse:
    tp = db.query(TalentProfile).filter(TalentProfile.user_id == user.id).first()
    account = get_business_account_for_user(db, user.id)
    return MeResponse(
        id=user.id,
        email=user.email,
        first_name=profile.first_name,
        last_name=profile.last_name,
        phone=profile.phone,
        role=profile.role,
        active=profile.active,
        version=profile.version,
        capabilities=capabilities_for(profile),
        talent_id=tp.id if tp else None,
        business_account_id=account.id if account else None,
    )


@router.get("/me", response_model=MeResponse)
def me(
    user: User = Depends(get_current_user),
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    return _me_response(db, user, profile)


@router.patch("/me", response_model=MeResponse)
def update_me(
    req: SelfProfileUpdate,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    if req.expected_version is not None and req.expected_version != profile.version:
        raise HTTPException(status_code=409, detail="Profile was modified elsewhere, reload and try again")
    changes = req.model_dump(exclude_unset=True, exclude={"expected_version"})
    before = {k: getattr(profile, k) for k in changes}
    for k, v in changes.items():
        setattr(profile, k, v)
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Profile was modified elsewhere, reload and try again")
    db.refresh(profile)
    diff = {k: {"before": before[k], "after": changes[k]} for k in changes if before[k] != changes[k]}
    if diff:
        warnings: list = []
        best_effort(db, warnings, "activity_log_failed", lambda: log_activity(
            db, user_id=user.id, action="profile_updated", admin_user_id=None, details=diff,
        ))
        background_tasks.add_task(feed.publish, "profiles", "UPDATE", user.id)
    return _me_response(db, user, profile)
