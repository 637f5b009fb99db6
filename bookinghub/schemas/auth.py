import uuid
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Optional, List


class SignUpRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class SignUpResponse(BaseModel):
    id: uuid.UUID
    email: EmailStr
    confirmation_required: bool


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshRequest(BaseModel):
    refresh_token: str


class PasswordForgotRequest(BaseModel):
    email: str


class PasswordResetRequest(BaseModel):
    token: str
    new_password: str = Field(min_length=8)


class MeResponse(BaseModel):
    id: uuid.UUID
    email: EmailStr
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    role: str
    active: bool
    version: int
    capabilities: List[str] = []
    talent_id: Optional[uuid.UUID] = None
    business_account_id: Optional[uuid.UUID] = None


class SelfProfileUpdate(BaseModel):
    """Fields a user may change on their own profile; anything else is a 422."""
    model_config = ConfigDict(extra="forbid")

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    expected_version: Optional[int] = None
