import uuid
from typing import Optional
from pydantic import BaseModel, field_validator


class TalentPublic(BaseModel):
    id: uuid.UUID
    name: str
    slug: str
    headshot_url: Optional[str] = None
    bio: Optional[str] = None

    class Config:
        from_attributes = True


class TalentResponse(TalentPublic):
    user_id: Optional[uuid.UUID] = None
    active: bool
    public_visibility: bool
    sort_rank: int


class TalentUpdate(BaseModel):
    name: Optional[str] = None
    bio: Optional[str] = None
    # manager-only fields
    active: Optional[bool] = None
    public_visibility: Optional[bool] = None
    sort_rank: Optional[int] = None
    headshot_url: Optional[str] = None

    @field_validator('name', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None
