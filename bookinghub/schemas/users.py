import uuid
from datetime import datetime
from typing import Optional, List, Any, Dict
from pydantic import BaseModel, EmailStr, Field, field_validator


class ProfileResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    role: str
    active: bool
    last_login: Optional[datetime] = None
    avatar_url: Optional[str] = None
    background_image_url: Optional[str] = None
    created_at: Optional[datetime] = None
    version: int

    class Config:
        from_attributes = True


class UserCreateRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    role: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


class UserCreateResponse(BaseModel):
    user_id: uuid.UUID
    profile: ProfileResponse
    talent_id: Optional[uuid.UUID] = None
    business_account_id: Optional[uuid.UUID] = None
    warnings: List[str] = []


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    active: Optional[bool] = None
    expected_version: Optional[int] = None

    @field_validator('first_name', 'last_name', 'phone', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class RoleChangeRequest(BaseModel):
    role: str
    expected_version: Optional[int] = None


class RoleChangeResponse(BaseModel):
    user_id: uuid.UUID
    old_role: str
    new_role: str
    changed: bool
    version: int
    warnings: List[str] = []


class PasswordSetRequest(BaseModel):
    password: str = Field(min_length=8)


class DeleteUserResponse(BaseModel):
    user_id: uuid.UUID
    removed_files: int
    warnings: List[str] = []


class LoginHistoryResponse(BaseModel):
    id: uuid.UUID
    ip_address: str
    user_agent: Optional[str] = None
    login_time: datetime
    location_info: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class ActivityLogResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    admin_user_id: Optional[uuid.UUID] = None
    action: str
    details: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True
