import uuid
from datetime import date, datetime
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, field_validator

from ..models.models import TRANSPORT_PROVIDERS


class BusinessEventBase(BaseModel):
    title: str
    start_ts: Optional[datetime] = None
    end_ts: Optional[datetime] = None
    venue_name: Optional[str] = None
    address_line: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    website: Optional[str] = None
    status: Optional[str] = "draft"


class BusinessEventCreate(BusinessEventBase):
    talent_ids: List[uuid.UUID] = []
    business_account_ids: List[uuid.UUID] = []


class BusinessEventUpdate(BaseModel):
    title: Optional[str] = None
    start_ts: Optional[datetime] = None
    end_ts: Optional[datetime] = None
    venue_name: Optional[str] = None
    address_line: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    website: Optional[str] = None
    status: Optional[str] = None


class AssignmentRequest(BaseModel):
    ids: List[uuid.UUID]


class BusinessEventResponse(BusinessEventBase):
    id: uuid.UUID
    talent_ids: List[uuid.UUID] = []
    business_account_ids: List[uuid.UUID] = []
    created_at: Optional[datetime] = None


class EventContact(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    contact_name: Optional[str] = None
    phone_number: Optional[str] = None


class TravelDetails(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    airline_name: Optional[str] = None
    confirmation_codes: Optional[str] = None
    arrival_datetime: Optional[datetime] = None
    departure_datetime: Optional[datetime] = None
    notes: Optional[str] = None


class HotelDetails(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    hotel_name: Optional[str] = None
    hotel_address: Optional[str] = None
    confirmation_number: Optional[str] = None
    checkin_date: Optional[date] = None
    checkout_date: Optional[date] = None


class TransportDetails(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    provider_type: Optional[str] = None
    confirmation_code: Optional[str] = None
    pickup_location: Optional[str] = None
    dropoff_location: Optional[str] = None
    notes: Optional[str] = None

    @field_validator('provider_type')
    @classmethod
    def known_provider(cls, v):
        if v is not None and v not in TRANSPORT_PROVIDERS:
            raise ValueError(f"provider_type must be one of {', '.join(TRANSPORT_PROVIDERS)}")
        return v


class TalentLogistics(BaseModel):
    talent_id: uuid.UUID
    talent_name: str
    travel: Optional[TravelDetails] = None
    hotel: Optional[HotelDetails] = None
    transport: Optional[TransportDetails] = None


class EventLogisticsResponse(BaseModel):
    event_id: uuid.UUID
    contact: Optional[EventContact] = None
    talents: List[TalentLogistics] = []
