"""
iCalendar (RFC 5545) export of a single calendar event.
"""
from datetime import datetime, time, timedelta
from typing import List, Optional

import pytz

from ..config import settings
from ..models.models import CalendarEvent


def ics_timestamp(dt: datetime) -> str:
    return dt.astimezone(pytz.utc).strftime("%Y%m%dT%H%M%SZ")


def escape_text(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def _zone(name: Optional[str]):
    try:
        return pytz.timezone(name or settings.calendar_default_timezone)
    except pytz.UnknownTimeZoneError:
        return pytz.timezone(settings.calendar_default_timezone)


def event_bounds(event: CalendarEvent):
    """Start/end as aware datetimes. A missing end means one day after the start."""
    tz = _zone(event.timezone)
    start = tz.localize(datetime.combine(event.start_date, event.start_time or time(0, 0)))
    if event.end_date is None and event.end_time is None:
        return start, start + timedelta(days=1)
    end_date = event.end_date or event.start_date
    end = tz.localize(datetime.combine(end_date, event.end_time or time(0, 0)))
    if end <= start:
        end = start + timedelta(days=1)
    return start, end


def event_location(event: CalendarEvent) -> str:
    parts = [event.venue_name, event.address_line, event.location_city, event.location_state, event.location_country]
    return ", ".join(p for p in parts if p)


def build_event_ics(event: CalendarEvent, now: Optional[datetime] = None) -> str:
    start, end = event_bounds(event)
    now = now or datetime.now(pytz.utc)
    lines: List[str] = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{settings.ics_prodid}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        "BEGIN:VEVENT",
        f"UID:{event.id}@{settings.ics_uid_domain}",
        f"DTSTAMP:{ics_timestamp(now)}",
        f"DTSTART:{ics_timestamp(start)}",
        f"DTEND:{ics_timestamp(end)}",
        f"SUMMARY:{escape_text(event.event_title or '')}",
    ]
    location = event_location(event)
    if location:
        lines.append(f"LOCATION:{escape_text(location)}")
    if event.url:
        lines.append(f"URL:{event.url}")
    if event.notes_public:
        lines.append(f"DESCRIPTION:{escape_text(event.notes_public)}")
    lines += ["END:VEVENT", "END:VCALENDAR"]
    return "\r\n".join(lines) + "\r\n"


def ics_filename(event: CalendarEvent) -> str:
    return f"event-{event.id}.ics"
