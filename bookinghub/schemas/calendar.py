import uuid
from datetime import date, time, datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, field_validator

from ..models.models import CALENDAR_STATUSES


class CalendarEventBase(BaseModel):
    talent_id: Optional[uuid.UUID] = None
    event_title: str
    start_date: date
    end_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    timezone: Optional[str] = None
    all_day: bool = True
    status: str = "available"
    venue_name: Optional[str] = None
    location_city: Optional[str] = None
    location_state: Optional[str] = None
    location_country: Optional[str] = None
    address_line: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    url: Optional[str] = None
    notes_internal: Optional[str] = None
    notes_public: Optional[str] = None
    travel_in: Optional[str] = None
    travel_out: Optional[str] = None

    @field_validator('status')
    @classmethod
    def known_status(cls, v):
        if v not in CALENDAR_STATUSES:
            raise ValueError(f"status must be one of {', '.join(CALENDAR_STATUSES)}")
        return v


class CalendarEventCreate(CalendarEventBase):
    pass


class CalendarEventUpdate(BaseModel):
    talent_id: Optional[uuid.UUID] = None
    event_title: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    timezone: Optional[str] = None
    all_day: Optional[bool] = None
    status: Optional[str] = None
    venue_name: Optional[str] = None
    location_city: Optional[str] = None
    location_state: Optional[str] = None
    location_country: Optional[str] = None
    address_line: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    url: Optional[str] = None
    notes_internal: Optional[str] = None
    notes_public: Optional[str] = None
    travel_in: Optional[str] = None
    travel_out: Optional[str] = None

    @field_validator('status')
    @classmethod
    def known_status(cls, v):
        if v is not None and v not in CALENDAR_STATUSES:
            raise ValueError(f"status must be one of {', '.join(CALENDAR_STATUSES)}")
        return v

    @field_validator('event_title', 'start_date', 'all_day', 'status')
    @classmethod
    def not_null(cls, v):
        # Omit the field to leave it unchanged
        if v is None:
            raise ValueError("may not be null")
        return v


class CalendarEventResponse(CalendarEventBase):
    id: uuid.UUID
    talent_name: Optional[str] = None
    source_file: Optional[str] = None
    created_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CalendarListResponse(BaseModel):
    events: List[CalendarEventResponse]
    query: Dict[str, Any]


class ImportRowResponse(BaseModel):
    row_index: int
    values: Dict[str, str]
    errors: List[str] = []


class ImportResponse(BaseModel):
    dry_run: bool
    mapping: Dict[str, str]
    created: int
    skipped: int
    rows: List[ImportRowResponse] = []
