"""
Pydantic schemas.

Two groups live here:
  • Records  — immutable snapshots the repository hands to the core.
               The core never holds one across calls; it re-reads instead.
  • Request / response bodies for the API layer. Field-level checks
    (lengths, required fields) are declared here and enforced by FastAPI.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ──────────────────────────── Records ─────────────────────────────────────

class UserRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    password_hash: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def owner_id(self) -> str:
        # A user "owns" its own account record
        return self.user_id


class PostRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    post_id: str
    owner_id: str
    title: str
    description: str
    location: str
    likes: tuple[str, ...] = ()
    comment_ids: tuple[str, ...] = ()
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CommentRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    comment_id: str
    owner_id: str
    description: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CleanupJobRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str
    user_id: str
    applied_steps: tuple[str, ...] = ()
    status: str = "pending"
    attempts: int = 0
    last_error: Optional[str] = None


# ──────────────────────────── Users ───────────────────────────────────────

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt rejects anything longer than 72 bytes, not characters
PASSWORD_MAX_BYTES = 72


def _check_password_bytes(value: Optional[str]) -> Optional[str]:
    if value is not None and len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"password must be at most {PASSWORD_MAX_BYTES} bytes in UTF-8")
    return value


class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=256)
    first_name: str = Field(..., min_length=3, max_length=256)
    last_name: str = Field(..., min_length=3, max_length=256)
    email: str = Field(..., min_length=6, max_length=256, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=6, max_length=72)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value):
        return _check_password_bytes(value)


class UserUpdate(BaseModel):
    username: Optional[str] = Field(None, min_length=3, max_length=256)
    first_name: Optional[str] = Field(None, min_length=3, max_length=256)
    last_name: Optional[str] = Field(None, min_length=3, max_length=256)
    email: Optional[str] = Field(None, min_length=6, max_length=256, pattern=EMAIL_PATTERN)
    password: Optional[str] = Field(None, min_length=6, max_length=72)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value):
        return _check_password_bytes(value)


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=6, max_length=256, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=6, max_length=72)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value):
        return _check_password_bytes(value)


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    username: str
    email: str
    first_name: Optional[str]
    last_name: Optional[str]
    created_at: Optional[datetime]


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class MessageResponse(BaseModel):
    message: str


# ──────────────────────────── Posts ───────────────────────────────────────

class PostCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=256)
    description: str = Field(..., min_length=1)
    location: str = Field(..., min_length=1, max_length=256)


class PostUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=256)
    description: Optional[str] = Field(None, min_length=1)
    location: Optional[str] = Field(None, min_length=1, max_length=256)


class PostResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    post_id: str
    owner_id: str
    title: str
    description: str
    location: str
    likes: list[str]
    like_count: int
    comment_ids: list[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    @classmethod
    def from_record(cls, post: PostRecord) -> "PostResponse":
        return cls(
            post_id=post.post_id,
            owner_id=post.owner_id,
            title=post.title,
            description=post.description,
            location=post.location,
            likes=list(post.likes),
            like_count=len(post.likes),
            comment_ids=list(post.comment_ids),
            created_at=post.created_at,
            updated_at=post.updated_at,
        )


# ──────────────────────────── Comments ────────────────────────────────────

class CommentCreate(BaseModel):
    description: str = Field(..., min_length=1, max_length=2000)


class CommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    comment_id: str
    owner_id: str
    description: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]


class CommentCreatedResponse(BaseModel):
    post: PostResponse
    comment: CommentResponse
