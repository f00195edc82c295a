"""
Authorization policy: pure decisions over a snapshot of the entity.

Nothing here performs I/O. Callers pass the record they just read and the
authenticated actor id; the answer is only as fresh as that record, so the
repository's atomic primitives still guard the write that follows.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from app.schemas import PostRecord

OWNER_CANNOT_LIKE = "owner cannot like own post"
ALREADY_LIKED = "already liked"
OWNER_CANNOT_COMMENT = "owner cannot comment own post"
UNSUPPORTED_INTERACTION = "unsupported interaction"


class InteractionKind(str, Enum):
    LIKE = "like"
    COMMENT = "comment"


class Owned(Protocol):
    @property
    def owner_id(self) -> str: ...


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def can_modify(actor_id: str, entity: Owned) -> bool:
    """Only the owner may edit or delete an entity."""
    return actor_id == entity.owner_id


def can_interact(actor_id: str, post: PostRecord, kind: InteractionKind) -> Decision:
    """Decide whether ``actor_id`` may perform ``kind`` on ``post``.

    Kinds without an explicit rule are denied.
    """
    if kind == InteractionKind.LIKE:
        if actor_id == post.owner_id:
            return Decision(False, OWNER_CANNOT_LIKE)
        if actor_id in post.likes:
            return Decision(False, ALREADY_LIKED)
        return ALLOW

    if kind == InteractionKind.COMMENT:
        if actor_id == post.owner_id:
            return Decision(False, OWNER_CANNOT_COMMENT)
        return ALLOW

    return Decision(False, UNSUPPORTED_INTERACTION)
