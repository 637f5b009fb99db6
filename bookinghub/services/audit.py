"""
Audit logging service.

Two append-only trails:
- user_activity_logs: what an administrator (or the user) did to an account
- audit_logs: security events with an integrity hash
"""
import hashlib
import json
import uuid
from datetime import datetime
from typing import Optional, Dict, Any, List, Callable

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.models import ActivityLog, AuditLog
from ..config import settings


logger = structlog.get_logger(__name__)


def _as_uuid(value) -> Optional[uuid.UUID]:
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def compute_integrity_hash(canonical_data: Dict[str, Any], secret: str) -> str:
    # Remove None values and sort keys for consistency
    canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
    canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)
    hash_input = f"{canonical_json}:{secret}"
    return hashlib.sha256(hash_input.encode()).hexdigest()


def log_security_event(
    db: Session,
    entity_type: str,
    entity_id,
    action: str,
    actor_id=None,
    actor_role: Optional[str] = None,
    source: Optional[str] = None,
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
    integrity_secret: Optional[str] = None,
) -> AuditLog:
    """
    Create an append-only security audit entry.

    Args:
        db: Database session
        entity_type: Type of entity (user|profile|role)
        entity_id: Entity ID
        action: Action performed (ROLE_CHANGE|USER_CREATE|USER_DELETE|PASSWORD_RESET)
        actor_id: User ID who performed the action
        actor_role: Role of the actor at the time of the action
        source: Source of the action (api|system)
        changes_json: Before/after diff
        context: Additional context
        integrity_secret: Secret for integrity hash (defaults to JWT_SECRET)

    Returns:
        Created AuditLog object
    """
    timestamp_utc = datetime.utcnow().replace(tzinfo=None)
    if integrity_secret is None:
        integrity_secret = settings.jwt_secret

    integrity_hash = None
    if integrity_secret:
        integrity_hash = compute_integrity_hash(
            {
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action,
                "actor_id": str(actor_id) if actor_id else None,
                "actor_role": actor_role,
                "source": source,
                "timestamp_utc": timestamp_utc.isoformat(),
                "changes": changes_json,
                "context": context,
            },
            integrity_secret,
        )

    audit_log = AuditLog(
        entity_type=entity_type,
        entity_id=_as_uuid(entity_id),
        action=action,
        actor_id=_as_uuid(actor_id),
        actor_role=actor_role,
        source=source or "system",
        changes_json=changes_json,
        timestamp_utc=timestamp_utc,
        context=context,
        integrity_hash=integrity_hash,
    )

    db.add(audit_log)
    db.commit()
    db.refresh(audit_log)

    return audit_log


def log_activity(
    db: Session,
    user_id,
    action: str,
    admin_user_id=None,
    details: Optional[Dict] = None,
) -> ActivityLog:
    entry = ActivityLog(
        user_id=_as_uuid(user_id),
        admin_user_id=_as_uuid(admin_user_id),
        action=action,
        details=details,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def best_effort(db: Session, warnings: List[str], event: str, fn: Callable[[], Any]) -> None:
    """
    Run a secondary write whose failure must not undo the primary operation.
    The failure is logged and appended to `warnings`.
    """
    try:
        fn()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(event, error=str(e))
        warnings.append(event)


def get_activity_logs(db: Session, user_id, limit: int = 100, offset: int = 0) -> list:
    query = db.query(ActivityLog).filter(ActivityLog.user_id == _as_uuid(user_id))
    query = query.order_by(ActivityLog.created_at.desc())
    return query.limit(limit).offset(offset).all()

