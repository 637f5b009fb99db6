import uuid
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import get_current_profile, require_capabilities
from ..db import get_db
from ..models.models import Profile, TalentProfile
from ..schemas.talents import TalentPublic, TalentResponse, TalentUpdate
from ..services.change_feed import feed
from ..services.permissions import TALENT_MANAGE, has_capability
from ..services.provisioning import unique_talent_slug


router = APIRouter(prefix="/talents", tags=["talents"])

TABLE = "talent_profiles"
# What a talent may edit on their own profile
OWNER_FIELDS = {"name", "bio"}


def _public_query(db: Session):
    return (
        db.query(TalentProfile)
        .filter(TalentProfile.active.is_(True), TalentProfile.public_visibility.is_(True))
        .order_by(TalentProfile.sort_rank.asc(), TalentProfile.name.asc())
    )


@router.get("", response_model=List[TalentPublic])
def list_public(db: Session = Depends(get_db)):
    return _public_query(db).all()


@router.get("/all", response_model=List[TalentResponse])
def list_all(db: Session = Depends(get_db), _=Depends(require_capabilities(TALENT_MANAGE))):
    return db.query(TalentProfile).order_by(TalentProfile.sort_rank.asc(), TalentProfile.name.asc()).all()


@router.get("/{slug}", response_model=TalentPublic)
def get_public(slug: str, db: Session = Depends(get_db)):
    tp = _public_query(db).filter(TalentProfile.slug == slug).first()
    if not tp:
        raise HTTPException(status_code=404, detail="Talent not found")
    return tp


@router.patch("/{talent_id}", response_model=TalentResponse)
def update_talent(
    talent_id: uuid.UUID,
    body: TalentUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    tp = db.query(TalentProfile).filter(TalentProfile.id == talent_id).first()
    if not tp:
        raise HTTPException(status_code=404, detail="Talent not found")
    changes = body.model_dump(exclude_unset=True)
    if not has_capability(me, TALENT_MANAGE):
        if tp.user_id != me.user_id:
            raise HTTPException(status_code=403, detail="Forbidden")
        extra = set(changes) - OWNER_FIELDS
        if extra:
            raise HTTPException(status_code=403, detail=f"Not allowed to change: {', '.join(sorted(extra))}")
    if "name" in changes:
        if not changes["name"]:
            raise HTTPException(status_code=400, detail="name cannot be empty")
        if changes["name"] != tp.name:
            tp.slug = unique_talent_slug(db, changes["name"], exclude_id=tp.id)
    for k, v in changes.items():
        setattr(tp, k, v)
    db.commit()
    db.refresh(tp)
    background_tasks.add_task(feed.publish, TABLE, "UPDATE", tp.id)
    return tp
