import uuid
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import get_current_profile, require_capabilities
from ..db import get_db
from ..models.models import (
    BusinessAccount,
    BusinessEvent,
    BusinessEventContact,
    BusinessEventHotel,
    BusinessEventTransport,
    BusinessEventTravel,
    Profile,
    TalentProfile,
    business_event_talent,
)
from ..schemas.business_events import (
    AssignmentRequest,
    BusinessEventCreate,
    BusinessEventResponse,
    BusinessEventUpdate,
    EventContact,
    EventLogisticsResponse,
    HotelDetails,
    TalentLogistics,
    TransportDetails,
    TravelDetails,
)
from ..services.business import business_events_for_account, get_business_account_for_user, logistics_scope
from ..services.change_feed import feed
from ..services.permissions import BUSINESS_MANAGE, has_capability


router = APIRouter(prefix="/business-events", tags=["business-events"])

TABLE = "business_events"


def _event_out(ev: BusinessEvent) -> BusinessEventResponse:
    return BusinessEventResponse(
        id=ev.id,
        title=ev.title,
        start_ts=ev.start_ts,
        end_ts=ev.end_ts,
        venue_name=ev.venue_name,
        address_line=ev.address_line,
        city=ev.city,
        state=ev.state,
        country=ev.country,
        website=ev.website,
        status=ev.status,
        talent_ids=[t.id for t in ev.talents],
        business_account_ids=[a.id for a in ev.accounts],
        created_at=ev.created_at,
    )


def _get_event(db: Session, event_id: uuid.UUID) -> BusinessEvent:
    ev = db.query(BusinessEvent).filter(BusinessEvent.id == event_id).first()
    if not ev:
        raise HTTPException(status_code=404, detail="Business event not found")
    return ev


def _load(db: Session, model, ids: List[uuid.UUID], label: str) -> list:
    if not ids:
        return []
    rows = db.query(model).filter(model.id.in_(ids)).all()
    if len(rows) != len(set(ids)):
        raise HTTPException(status_code=400, detail=f"Unknown {label} id")
    return rows


@router.get("", response_model=List[BusinessEventResponse])
def list_events(db: Session = Depends(get_db), me: Profile = Depends(get_current_profile)):
    """Managers see every event; business users their account's; talents those they are booked on."""
    if has_capability(me, BUSINESS_MANAGE):
        query = db.query(BusinessEvent)
    elif me.role == "business":
        account = get_business_account_for_user(db, me.user_id)
        if account is None:
            return []
        query = business_events_for_account(db, account.id)
    elif me.role == "talent":
        query = (
            db.query(BusinessEvent)
            .join(business_event_talent, business_event_talent.c.event_id == BusinessEvent.id)
            .join(TalentProfile, TalentProfile.id == business_event_talent.c.talent_id)
            .filter(TalentProfile.user_id == me.user_id)
        )
    else:
        return []
    events = query.order_by(BusinessEvent.start_ts.asc(), BusinessEvent.title.asc()).all()
    return [_event_out(ev) for ev in events]


@router.post("", response_model=BusinessEventResponse, status_code=201)
def create_event(
    body: BusinessEventCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    me: Profile = Depends(require_capabilities(BUSINESS_MANAGE)),
):
    if not body.title.strip():
        raise HTTPException(status_code=400, detail="title is required")
    ev = BusinessEvent(**body.model_dump(exclude={"talent_ids", "business_account_ids"}), created_by=me.user_id)
    ev.talents = _load(db, TalentProfile, body.talent_ids, "talent")
    ev.accounts = _load(db, BusinessAccount, body.business_account_ids, "business account")
    db.add(ev)
    db.commit()
    db.refresh(ev)
    background_tasks.add_task(feed.publish, TABLE, "INSERT", ev.id)
    return _event_out(ev)


@router.patch("/{event_id}", response_model=BusinessEventResponse)
def update_event(
    event_id: uuid.UUID,
    body: BusinessEventUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    _=Depends(require_capabilities(BUSINESS_MANAGE)),
):
    ev = _get_event(db, event_id)
    for k, v in body.model_dump(exclude_unset=True).items():
        setattr(ev, k, v)
    db.commit()
    db.refresh(ev)
    background_tasks.add_task(feed.publish, TABLE, "UPDATE", ev.id)
    return _event_out(ev)


@router.delete("/{event_id}")
def delete_event(
    event_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    _=Depends(require_capabilities(BUSINESS_MANAGE)),
):
    ev = _get_event(db, event_id)
    db.delete(ev)
    db.commit()
    background_tasks.add_task(feed.publish, TABLE, "DELETE", event_id)
    return {"status": "ok"}


@router.put("/{event_id}/talents", response_model=BusinessEventResponse)
def set_talents(
    event_id: uuid.UUID,
    body: AssignmentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    _=Depends(require_capabilities(BUSINESS_MANAGE)),
):
    ev = _get_event(db, event_id)
    ev.talents = _load(db, TalentProfile, body.ids, "talent")
    db.commit()
    db.refresh(ev)
    background_tasks.add_task(feed.publish, TABLE, "UPDATE", ev.id)
    return _event_out(ev)


@router.put("/{event_id}/accounts", response_model=BusinessEventResponse)
def set_accounts(
    event_id: uuid.UUID,
    body: AssignmentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    _=Depends(require_capabilities(BUSINESS_MANAGE)),
):
    ev = _get_event(db, event_id)
    ev.accounts = _load(db, BusinessAccount, body.ids, "business account")
    db.commit()
    db.refresh(ev)
    background_tasks.add_task(feed.publish, TABLE, "UPDATE", ev.id)
    return _event_out(ev)


def _one(db: Session, model, event_id: uuid.UUID, talent_id: uuid.UUID):
    return db.query(model).filter(model.event_id == event_id, model.talent_id == talent_id).first()


@router.get("/{event_id}/logistics", response_model=EventLogisticsResponse)
def get_logistics(
    event_id: uuid.UUID,
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    ev = _get_event(db, event_id)
    scope = logistics_scope(db, me, ev)
    if scope is None:
        raise HTTPException(status_code=404, detail="Business event not found")
    talents = []
    for talent in sorted(ev.talents, key=lambda t: t.name):
        if talent.id not in scope:
            continue
        travel = _one(db, BusinessEventTravel, ev.id, talent.id)
        hotel = _one(db, BusinessEventHotel, ev.id, talent.id)
        transport = _one(db, BusinessEventTransport, ev.id, talent.id)
        talents.append(TalentLogistics(
            talent_id=talent.id,
            talent_name=talent.name,
            travel=TravelDetails.model_validate(travel) if travel else None,
            hotel=HotelDetails.model_validate(hotel) if hotel else None,
            transport=TransportDetails.model_validate(transport) if transport else None,
        ))
    return EventLogisticsResponse(
        event_id=ev.id,
        contact=EventContact.model_validate(ev.contact) if ev.contact else None,
        talents=talents,
    )


@router.put("/{event_id}/contact", response_model=EventContact)
def save_contact(
    event_id: uuid.UUID,
    body: EventContact,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    _=Depends(require_capabilities(BUSINESS_MANAGE)),
):
    ev = _get_event(db, event_id)
    if ev.contact is None:
        ev.contact = BusinessEventContact(event_id=ev.id)
    for k, v in body.model_dump().items():
        setattr(ev.contact, k, v)
    db.commit()
    db.refresh(ev)
    background_tasks.add_task(feed.publish, BusinessEventContact.__tablename__, "UPDATE", ev.id)
    return EventContact.model_validate(ev.contact)


def _save_talent_logistics(db: Session, event_id: uuid.UUID, talent_id: uuid.UUID, model, body):
    """Insert or replace the (event, talent) row of one logistics table."""
    ev = _get_event(db, event_id)
    if not any(t.id == talent_id for t in ev.talents):
        raise HTTPException(status_code=400, detail="Talent is not assigned to this event")
    row = _one(db, model, ev.id, talent_id)
    if row is None:
        row = model(event_id=ev.id, talent_id=talent_id)
        db.add(row)
    for k, v in body.model_dump().items():
        setattr(row, k, v)
    db.commit()
    db.refresh(row)
    return row


@router.put("/{event_id}/talents/{talent_id}/travel", response_model=TravelDetails)
def save_travel(
    event_id: uuid.UUID,
    talent_id: uuid.UUID,
    body: TravelDetails,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    _=Depends(require_capabilities(BUSINESS_MANAGE)),
):
    row = _save_talent_logistics(db, event_id, talent_id, BusinessEventTravel, body)
    background_tasks.add_task(feed.publish, BusinessEventTravel.__tablename__, "UPDATE", row.id)
    return TravelDetails.model_validate(row)


@router.put("/{event_id}/talents/{talent_id}/hotel", response_model=HotelDetails)
def save_hotel(
    event_id: uuid.UUID,
    talent_id: uuid.UUID,
    body: HotelDetails,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    _=Depends(require_capabilities(BUSINESS_MANAGE)),
):
    if body.checkin_date and body.checkout_date and body.checkout_date < body.checkin_date:
        raise HTTPException(status_code=400, detail="checkout_date cannot be before checkin_date")
    row = _save_talent_logistics(db, event_id, talent_id, BusinessEventHotel, body)
    background_tasks.add_task(feed.publish, BusinessEventHotel.__tablename__, "UPDATE", row.id)
    return HotelDetails.model_validate(row)


@router.put("/{event_id}/talents/{talent_id}/transport", response_model=TransportDetails)
def save_transport(
    event_id: uuid.UUID,
    talent_id: uuid.UUID,
    body: TransportDetails,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    _=Depends(require_capabilities(BUSINESS_MANAGE)),
):
    row = _save_talent_logistics(db, event_id, talent_id, BusinessEventTransport, body)
    background_tasks.add_task(feed.publish, BusinessEventTransport.__tablename__, "UPDATE", row.id)
    return TransportDetails.model_validate(row)
