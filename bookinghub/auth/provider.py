"""
Authentication provider.

Owns the `users` identity table. Creating an identity fires the provisioning
hooks (services/provisioning.py) that build the Profile and Role Grant.
"""
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import User, Profile, LoginHistory, PasswordReset
from ..services import provisioning  # noqa: F401  registers flush hooks
from ..services.errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from ..services.mailer import send_mail
from .security import get_password_hash, verify_password, create_access_token, create_refresh_token


logger = structlog.get_logger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _as_aware(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class AuthProvider:
    def __init__(self, db: Session):
        self.db = db

    def _validate_password(self, password: str) -> None:
        if not password or len(password) < settings.password_min_length:
            raise ValidationError(f"Password must be at least {settings.password_min_length} characters")

    def sign_up(self, email: str, password: str, metadata: Optional[dict] = None) -> User:
        email = normalize_email(email)
        if not email or "@" not in email:
            raise ValidationError("A valid email is required")
        self._validate_password(password)
        if self.db.query(User.id).filter(User.email == email).first():
            raise ConflictError("Email already registered")

        metadata = dict(metadata or {})
        user = User(
            id=uuid.uuid4(),
            email=email,
            password_hash=get_password_hash(password),
            is_active=True,
            user_metadata=metadata,
            confirmation_token=None if metadata.get("created_by_admin") else secrets.token_urlsafe(32),
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)

        if user.confirmation_token:
            link = f"{settings.public_base_url}/auth/confirm?token={user.confirmation_token}"
            send_mail(user.email, f"Confirm your {settings.app_name} account", f"Click to confirm your account: {link}")
        logger.info("user_signed_up", user_id=str(user.id), admin_created=bool(metadata.get("created_by_admin")))
        return user

    def confirm_email(self, token: str) -> User:
        user = self.db.query(User).filter(User.confirmation_token == token).first() if token else None
        if not user:
            raise ValidationError("Invalid or expired confirmation token")
        user.email_confirmed_at = datetime.now(timezone.utc)
        user.confirmation_token = None
        self.db.commit()
        return user

    def sign_in(
        self,
        email: str,
        password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        location_info: Optional[dict] = None,
    ) -> Tuple[User, Profile, str, str]:
        user = self.db.query(User).filter(User.email == normalize_email(email)).first()
        if not user or not verify_password(password, user.password_hash):
            raise AuthenticationError("Invalid credentials")
        if not user.is_active:
            raise AuthenticationError("User not active")
        if user.email_confirmed_at is None:
            raise AuthenticationError("Email not confirmed")
        profile = self.db.query(Profile).filter(Profile.user_id == user.id).first()
        if profile is None or not profile.active:
            raise AuthenticationError("Account is disabled")

        now = datetime.now(timezone.utc)
        user.last_sign_in_at = now
        profile.last_login = now
        self.db.add(LoginHistory(
            user_id=user.id,
            ip_address=ip_address or "unknown",
            user_agent=user_agent,
            login_time=now,
            location_info=location_info,
        ))
        self.db.commit()

        access = create_access_token(str(user.id), role=profile.role)
        refresh = create_refresh_token(str(user.id))
        return user, profile, access, refresh

    def reset_password(self, email: str) -> Optional[str]:
        """Issue a reset token. Unknown addresses get the same silent answer."""
        user = self.db.query(User).filter(User.email == normalize_email(email)).first()
        if not user:
            return None
        token = secrets.token_urlsafe(32)
        self.db.add(PasswordReset(user_id=user.id, token=token, expires_at=datetime.now(timezone.utc) + timedelta(hours=1)))
        self.db.commit()
        link = f"{settings.public_base_url}/auth?reset=true&token={token}"
        send_mail(user.email, f"Reset your {settings.app_name} password", f"Click to reset your password: {link}")
        return token

    def complete_password_reset(self, token: str, new_password: str) -> User:
        self._validate_password(new_password)
        pr = self.db.query(PasswordReset).filter(PasswordReset.token == token).first()
        if not pr:
            raise ValidationError("Invalid or expired token")
        now_utc = datetime.now(timezone.utc)
        expires_at = _as_aware(pr.expires_at)
        if pr.used_at is not None or (expires_at and expires_at < now_utc):
            raise ValidationError("Invalid or expired token")
        user = self.db.query(User).filter(User.id == pr.user_id).first()
        if not user:
            raise ValidationError("Invalid token")
        user.password_hash = get_password_hash(new_password)
        pr.used_at = now_utc
        self.db.commit()
        return user

    def admin_update_user_password(self, user_id: uuid.UUID, password: str) -> User:
        self._validate_password(password)
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError("User not found")
        user.password_hash = get_password_hash(password)
        self.db.commit()
        return user

    def admin_delete_user(self, user_id: uuid.UUID) -> None:
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError("User not found")
        self.db.delete(user)
        self.db.commit()
