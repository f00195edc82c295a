"""
SQLAlchemy ORM models for TiDB.

Tables:
  users          — accounts (bcrypt password hash, never plaintext)
  posts          — post content; owner is immutable after creation
  likes          — a post's like set, one row per (post, user)
  comments       — comment entities
  post_comments  — a post's ordered comment-reference sequence
  cleanup_jobs   — applied-steps record of account-deletion cascades

Owner columns are plain indexed ids rather than foreign keys: a user row is
deleted before its posts, comments and likes are cleaned up, so the database
must tolerate dangling owner ids for the duration of the cascade.
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    username: Mapped[str] = mapped_column(String(256), unique=True, nullable=False)
    # Always stored lower-cased so uniqueness is case-insensitive
    email: Mapped[str] = mapped_column(String(256), unique=True, nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(256))
    last_name: Mapped[Optional[str]] = mapped_column(String(256))
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )


class Post(Base):
    __tablename__ = "posts"

    post_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    owner_id: Mapped[str] = mapped_column(String(36), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    location: Mapped[str] = mapped_column(String(256), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_posts_owner", "owner_id"),
        Index("idx_posts_created", "created_at"),
    )


class Like(Base):
    __tablename__ = "likes"

    # Surrogate key gives the like set its insertion order
    like_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    post_id: Mapped[str] = mapped_column(String(36), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        # The set-add primitive: a second like by the same user is rejected here
        UniqueConstraint("post_id", "user_id", name="uq_likes_post_user"),
        Index("idx_likes_user", "user_id"),
    )


class Comment(Base):
    __tablename__ = "comments"

    comment_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    owner_id: Mapped[str] = mapped_column(String(36), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (Index("idx_comments_owner", "owner_id"),)


class PostComment(Base):
    __tablename__ = "post_comments"

    link_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    post_id: Mapped[str] = mapped_column(String(36), nullable=False)
    # A comment is referenced from exactly one post
    comment_id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)

    __table_args__ = (Index("idx_post_comments_post", "post_id"),)


class CleanupJob(Base):
    __tablename__ = "cleanup_jobs"

    job_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    applied_steps: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_cleanup_jobs_status", "status"),
        Index("idx_cleanup_jobs_user", "user_id"),
    )
