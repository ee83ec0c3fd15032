from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from notekeeper.utils import ensure_utc, make_id

TITLE_MAX_LENGTH = 200
CONTENT_MAX_LENGTH = 10000


# Stored records

class UserRecord(BaseModel):
    """User as persisted by the record store"""
    id: str = Field(default_factory=make_id, min_length=1)
    email: str = Field(..., min_length=1)
    password_hash: str = Field(..., alias="passwordHash", min_length=1)
    created_at: Optional[datetime] = Field(None, alias="createdAt")

    class Config:
        populate_by_name = True
        from_attributes = True

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("created_at")
    @classmethod
    def as_utc(cls, value):
        return ensure_utc(value)


class NoteRecord(BaseModel):
    """Note as persisted by the record store"""
    id: str = Field(default_factory=make_id, min_length=1)
    user_id: str = Field(..., alias="userId", min_length=1)
    title: str = Field("", max_length=TITLE_MAX_LENGTH)
    content: str = Field("", max_length=CONTENT_MAX_LENGTH)
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    class Config:
        populate_by_name = True
        from_attributes = True

    @field_validator("title", "content", mode="before")
    @classmethod
    def null_as_empty(cls, value):
        # Rows written by older schemas may hold NULL text columns
        return "" if value is None else value

    @field_validator("created_at", "updated_at")
    @classmethod
    def as_utc(cls, value):
        return ensure_utc(value)

    def is_blank(self) -> bool:
        return not self.title.strip() and not self.content.strip()


# Auth

class CredentialsRequest(BaseModel):
    """Email and password pair used for login"""
    email: str = Field(..., min_length=1, description="User email")
    password: str = Field(..., min_length=1, description="Plaintext password")


class RegisterRequest(CredentialsRequest):
    """Request model to register a new user"""
    email: EmailStr = Field(..., description="User email")
    password: str = Field(..., min_length=6, description="Plaintext password (min 6 chars)")


class UserResponse(BaseModel):
    """User response without sensitive fields"""
    id: str
    email: str


class AuthResponse(BaseModel):
    """Token response for successful register or login"""
    token: str = Field(..., description="Signed bearer token")
    user: UserResponse


# Notes

class NoteCreateRequest(BaseModel):
    """Create note request; at least one of title/content must be non-blank"""
    title: str = Field("", max_length=TITLE_MAX_LENGTH)
    content: str = Field("", max_length=CONTENT_MAX_LENGTH)

    class Config:
        str_strip_whitespace = True


class NoteUpdateRequest(BaseModel):
    """Update note request (partial; omitted fields are left unchanged)"""
    title: Optional[str] = Field(None, max_length=TITLE_MAX_LENGTH)
    content: Optional[str] = Field(None, max_length=CONTENT_MAX_LENGTH)

    class Config:
        str_strip_whitespace = True


class NoteResponse(BaseModel):
    """Note response model"""
    id: str
    user_id: str = Field(..., alias="userId")
    title: str
    content: str
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")

    class Config:
        populate_by_name = True
        from_attributes = True


class HealthResponse(BaseModel):
    """Store health report"""
    status: str
    backend: str
    time: datetime

