"""
CSV import of calendar events.

Headers are mapped onto event fields (exact field names first, then keyword
detection), rows are validated and normalized, and valid rows are inserted
in one transaction unless it is a dry run.
"""
import csv
import io
import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Dict, List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import CalendarEvent, TalentProfile
from .errors import HardFailure, ValidationError


logger = structlog.get_logger(__name__)

REQUIRED_FIELDS = ("event_title", "start_date")
OPTIONAL_FIELDS = (
    "end_date", "talent_name", "status", "start_time", "end_time", "timezone", "all_day",
    "venue_name", "location_city", "location_state", "location_country", "address_line",
    "contact_name", "contact_email", "contact_phone", "url", "notes_internal", "notes_public",
    "travel_in", "travel_out",
)
IMPORT_FIELDS = REQUIRED_FIELDS + OPTIONAL_FIELDS

# Checked in order; the first rule whose keywords match wins
_KEYWORD_RULES = [
    ("talent_name", ("talent", "artist", "performer", "voice", "actor", "name"), None),
    ("event_title", ("title", "event", "show", "convention", "con", "project"), None),
    ("start_date", ("startdate", "start", "datestart", "begindate", "from"), ("date", "day", "when")),
    ("end_date", ("enddate", "end", "dateend", "finishdate", "to", "until"), ("date", "day", "when")),
    ("status", ("status", "state", "condition", "booking"), None),
    ("venue_name", ("venue", "location", "place", "site", "facility"), None),
    ("location_city", ("city", "town"), None),
    ("location_state", ("state", "province", "region"), None),
    ("url", ("url", "website", "link", "web"), None),
    ("notes_public", ("notes", "note", "comment", "description", "info"), None),
]

_STATUS_SYNONYMS = {
    "booked": "booked", "confirmed": "booked",
    "hold": "hold", "pending": "hold",
    "available": "available", "open": "available",
    "tentative": "tentative", "maybe": "tentative",
    "cancelled": "cancelled", "canceled": "cancelled",
    "not available": "not_available", "not_available": "not_available", "unavailable": "not_available",
    "ooo": "not_available", "off": "not_available", "personal day": "not_available",
    "out of office": "not_available",
}

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%Y/%m/%d")
_TIME_FORMATS = ("%H:%M", "%H:%M:%S", "%I:%M %p", "%I:%M%p", "%I %p")


@dataclass
class ImportRow:
    row_index: int
    values: Dict[str, str]
    errors: List[str] = field(default_factory=list)


@dataclass
class ImportResult:
    dry_run: bool
    mapping: Dict[str, str]
    created: int = 0
    skipped: int = 0
    rows: List[ImportRow] = field(default_factory=list)


def _matches(keywords, normalized: str, words: List[str]) -> bool:
    return any(k in normalized or k in words for k in keywords)


def auto_map_headers(headers: List[str]) -> Dict[str, str]:
    mapping: Dict[str, str] = {}
    for header in headers:
        if not header or not header.strip():
            continue
        key = header.strip().lower()
        if key in IMPORT_FIELDS:
            mapping[header] = key
            continue
        normalized = re.sub(r"[^a-z0-9]", "", key)
        words = re.split(r"[^a-z0-9]+", key)
        for target, keywords, qualifiers in _KEYWORD_RULES:
            if _matches(keywords, normalized, words) and (qualifiers is None or _matches(qualifiers, normalized, words)):
                mapping[header] = target
                break
    return mapping


def normalize_status(value: Optional[str]) -> str:
    if not value:
        return "available"
    return _STATUS_SYNONYMS.get(value.strip().lower(), "available")


def parse_date(value: str) -> date:
    value = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(value)


def parse_time(value: str) -> time:
    value = value.strip().upper()
    for fmt in _TIME_FORMATS:
        try:
            return datetime.strptime(value, fmt).time()
        except ValueError:
            continue
    raise ValueError(value)


def read_csv(content: bytes) -> List[Dict[str, str]]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = content.decode("latin-1")
    if not text.strip():
        raise ValidationError("Empty or invalid CSV file")
    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        raise ValidationError("No header row found in CSV file")
    return [r for r in reader if any((v or "").strip() for v in r.values() if isinstance(v, str))]


def normalize_row(raw: Dict[str, str], mapping: Dict[str, str], row_index: int, default_talent_name: Optional[str] = None) -> ImportRow:
    values: Dict[str, str] = {}
    for header, target in mapping.items():
        v = raw.get(header)
        if isinstance(v, str) and v.strip() and target not in values:
            values[target] = v.strip()
    row = ImportRow(row_index=row_index, values=values)

    for f in REQUIRED_FIELDS:
        if not values.get(f):
            row.errors.append(f"Missing {f}")
    if not values.get("end_date") and values.get("start_date"):
        values["end_date"] = values["start_date"]
    if not values.get("talent_name") and default_talent_name:
        values["talent_name"] = default_talent_name
    values["status"] = normalize_status(values.get("status"))

    for f in ("start_date", "end_date"):
        if values.get(f):
            try:
                parse_date(values[f])
            except ValueError:
                row.errors.append(f"Invalid {f}: {values[f]}")
    for f in ("start_time", "end_time"):
        if values.get(f):
            try:
                parse_time(values[f])
            except ValueError:
                row.errors.append(f"Invalid {f}: {values[f]}")
    return row


def _to_event(row: ImportRow, talent_map: Dict[str, uuid.UUID], source_file: str, created_by: Optional[uuid.UUID]) -> CalendarEvent:
    v = row.values
    start_time = parse_time(v["start_time"]) if v.get("start_time") else None
    end_time = parse_time(v["end_time"]) if v.get("end_time") else None
    return CalendarEvent(
        talent_id=talent_map.get((v.get("talent_name") or "").lower()),
        event_title=v["event_title"],
        start_date=parse_date(v["start_date"]),
        end_date=parse_date(v["end_date"]),
        start_time=start_time,
        end_time=end_time,
        timezone=v.get("timezone") or settings.calendar_default_timezone,
        all_day=start_time is None and end_time is None,
        status=v["status"],
        venue_name=v.get("venue_name"),
        location_city=v.get("location_city"),
        location_state=v.get("location_state"),
        location_country=v.get("location_country") or settings.calendar_default_country,
        address_line=v.get("address_line"),
        contact_name=v.get("contact_name"),
        contact_email=v.get("contact_email"),
        contact_phone=v.get("contact_phone"),
        url=v.get("url"),
        notes_internal=v.get("notes_internal"),
        notes_public=v.get("notes_public"),
        travel_in=v.get("travel_in"),
        travel_out=v.get("travel_out"),
        source_file=source_file,
        created_by=created_by,
    )


def import_calendar_csv(
    db: Session,
    content: bytes,
    source_file: Optional[str] = None,
    created_by: Optional[uuid.UUID] = None,
    default_talent_id: Optional[uuid.UUID] = None,
    dry_run: bool = True,
) -> ImportResult:
    raw_rows = read_csv(content)
    headers = list(raw_rows[0].keys()) if raw_rows else []
    mapping = auto_map_headers([h for h in headers if h])

    talents = db.query(TalentProfile.id, TalentProfile.name).all()
    talent_map = {name.lower(): tid for tid, name in talents}
    default_talent_name = None
    if default_talent_id is not None:
        default_talent_name = next((name for tid, name in talents if tid == default_talent_id), None)

    result = ImportResult(dry_run=dry_run, mapping=mapping)
    # Data rows start at line 2, under the header
    result.rows = [normalize_row(r, mapping, i + 2, default_talent_name) for i, r in enumerate(raw_rows)]
    valid = [r for r in result.rows if not r.errors]
    result.skipped = len(result.rows) - len(valid)

    if dry_run:
        result.created = len(valid)
        return result

    try:
        for r in valid:
            db.add(_to_event(r, talent_map, source_file or "import", created_by))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("calendar_import_failed", rows=len(valid), error=str(e))
        raise HardFailure("Import failed, no events were saved")
    result.created = len(valid)
    logger.info("calendar_imported", created=result.created, skipped=result.skipped, source_file=source_file)
    return result
