"""
Feed repository contract.

The core treats storage as this interface and relies on each method being a
single atomic step against one entity (or one filter, for the *_many
calls). In particular the set primitives must be atomic at the storage
level: ``append_to_set`` reports whether the value was actually added, so
two concurrent likes cannot both succeed.

Nothing here is atomic across calls. Callers that touch two entities
order their calls so an interruption leaves an orphan rather than a
dangling reference, or use ``insert_linked_comment`` where the storage
engine can do both writes in one transaction.
"""
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional, Union

from app.schemas import CleanupJobRecord, CommentRecord, PostRecord, UserRecord


class EntityKind(str, Enum):
    USER = "user"
    POST = "post"
    COMMENT = "comment"


# Set-valued fields of a post
LIKES = "likes"
COMMENTS = "comments"

Record = Union[UserRecord, PostRecord, CommentRecord]


class FeedRepository(ABC):

    # ── Generic entity access ─────────────────────────────────────────────

    @abstractmethod
    async def find_by_id(self, kind: EntityKind, entity_id: str) -> Optional[Record]:
        ...

    @abstractmethod
    async def find_owner_of(self, kind: EntityKind, entity_id: str) -> Optional[str]:
        """Owner id of a post/comment (a user's own id for users), or None."""

    @abstractmethod
    async def insert(self, kind: EntityKind, **fields: Any) -> Record:
        """Create an entity. Raises Conflict on a uniqueness violation."""

    @abstractmethod
    async def update_fields(
        self, kind: EntityKind, entity_id: str, **fields: Any
    ) -> Optional[Record]:
        """Overwrite scalar fields; returns the updated record, or None if missing."""

    @abstractmethod
    async def delete_by_id(self, kind: EntityKind, entity_id: str) -> bool:
        """Delete one entity. A post takes its own like set and comment links with it."""

    @abstractmethod
    async def delete_many(self, kind: EntityKind, owner_id: str) -> int:
        """Delete every entity of ``kind`` owned by ``owner_id``."""

    # ── Set-valued fields ─────────────────────────────────────────────────

    @abstractmethod
    async def append_to_set(
        self, kind: EntityKind, entity_id: str, field: str, value: str
    ) -> bool:
        """Atomically add ``value``; False if it was already present."""

    @abstractmethod
    async def remove_from_set(
        self, kind: EntityKind, entity_id: str, field: str, value: str
    ) -> bool:
        """Atomically remove ``value``; False if it was not present."""

    @abstractmethod
    async def update_many_pull(self, kind: EntityKind, field: str, value: str) -> int:
        """Remove ``value`` from ``field`` on every entity of ``kind``."""

    @abstractmethod
    async def insert_linked_comment(
        self, post_id: str, owner_id: str, description: str
    ) -> Optional[CommentRecord]:
        """Create a comment and append it to the post's comment sequence.

        Returns None (and writes nothing) if the post does not exist.
        """

    # ── Queries ───────────────────────────────────────────────────────────

    @abstractmethod
    async def find_user_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    async def find_user_by_username(self, username: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    async def find_users(self) -> list[UserRecord]:
        ...

    @abstractmethod
    async def find_posts(self, owner_id: Optional[str] = None) -> list[PostRecord]:
        """Posts ordered by like count (desc), then creation time (asc)."""

    @abstractmethod
    async def find_comments(self, owner_id: str) -> list[CommentRecord]:
        ...

    @abstractmethod
    async def find_post_comments(self, post_id: str) -> list[CommentRecord]:
        """Comments referenced by a post, in reference order."""

    # ── Account-deletion bookkeeping ──────────────────────────────────────

    @abstractmethod
    async def create_cleanup_job(self, user_id: str) -> CleanupJobRecord:
        ...

    @abstractmethod
    async def record_cleanup_step(self, job_id: str, step: str) -> CleanupJobRecord:
        ...

    @abstractmethod
    async def finish_cleanup_job(self, job_id: str) -> CleanupJobRecord:
        ...

    @abstractmethod
    async def fail_cleanup_job(self, job_id: str, error: str) -> CleanupJobRecord:
        ...

    @abstractmethod
    async def find_cleanup_job(self, job_id: str) -> Optional[CleanupJobRecord]:
        ...

    @abstractmethod
    async def find_unfinished_cleanup_jobs(self) -> list[CleanupJobRecord]:
        ...

    @abstractmethod
    async def find_orphaned_owner_ids(self) -> list[str]:
        """Ids that own posts/comments or appear in like sets but have no user row."""

    @abstractmethod
    async def delete_dangling_links(self) -> int:
        """Drop like and comment links whose post no longer exists."""
