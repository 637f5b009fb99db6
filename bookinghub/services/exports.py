"""
CSV exports.
"""
import csv
import io
import uuid
from datetime import date, datetime, timezone
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ..models.models import LoginHistory


LOGIN_HISTORY_COLUMNS = ("ip_address", "city", "region", "country", "login_time", "user_agent")


def login_history_rows(db: Session, user_id: uuid.UUID):
    return (
        db.query(LoginHistory)
        .filter(LoginHistory.user_id == user_id)
        .order_by(LoginHistory.login_time.desc())
        .all()
    )


def iso_utc(dt: datetime) -> str:
    """UTC with millisecond precision, e.g. 2025-06-10T12:00:00.000Z. Naive values are taken as UTC."""
    dt = dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def login_history_csv(entries: Iterable[LoginHistory]) -> str:
    """Header row bare, every data field quoted with embedded quotes doubled."""
    buf = io.StringIO()
    buf.write(",".join(LOGIN_HISTORY_COLUMNS) + "\n")
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    rows = 0
    for e in entries:
        loc = e.location_info or {}
        writer.writerow([
            e.ip_address or "",
            loc.get("city") or "",
            loc.get("region") or "",
            loc.get("country") or "",
            iso_utc(e.login_time) if e.login_time else "",
            e.user_agent or "",
        ])
        rows += 1
    # Rows are newline-joined; the last one has no terminator
    body = buf.getvalue()
    return body[:-1] if rows else body


def login_history_filename(user_id, today: Optional[date] = None) -> str:
    today = today or datetime.now(timezone.utc).date()
    return f"login-history-{user_id}-{today.strftime('%Y%m%d')}.csv"
