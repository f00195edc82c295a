"""
Interaction engine: likes, comments, and owner edits/deletes of posts.

Every operation re-reads the entity it is about to change, asks the policy,
then performs one atomic repository step. The read is only advisory for
concurrent writers; the atomic set primitives make the final call, so two
racing likes from the same user yield one success and one "already liked".

Cross-entity removals drop the reference before the entity (comment link,
then comment), so a failure in between leaves an unreachable comment rather
than a post pointing at nothing.
"""
import logging
from typing import Optional

from opentelemetry import trace

from app.core.policy import (
    ALREADY_LIKED,
    InteractionKind,
    can_interact,
    can_modify,
)
from app.errors import Forbidden, NotFound, ValidationFailed
from app.repository.base import COMMENTS, LIKES, EntityKind, FeedRepository
from app.schemas import CommentRecord, PostRecord
from app.telemetry import INTERACTIONS_TOTAL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

NOT_LIKED = "not liked"
NOT_POST_OWNER = "You are not the owner of the post"
NOT_COMMENT_OWNER = "You are not the owner of the comment"
NOT_LINKED = "Comment is not linked to this post"

_POST_FIELDS = ("title", "description", "location")


class InteractionEngine:
    def __init__(self, repository: FeedRepository, delete_post_comments: bool = False) -> None:
        self._repo = repository
        self._delete_post_comments = delete_post_comments

    # ── Posts ─────────────────────────────────────────────────────────────

    async def create_post(
        self, actor_id: str, title: str, description: str, location: str
    ) -> PostRecord:
        with tracer.start_as_current_span("create_post") as span:
            span.set_attribute("user.id", actor_id)
            await self._require_user(actor_id)
            post = await self._repo.insert(
                EntityKind.POST,
                owner_id=actor_id,
                title=title,
                description=description,
                location=location,
            )
            span.set_attribute("post.id", post.post_id)
            logger.info("Post created: %s by user %s", post.post_id, actor_id)
            return post

    async def edit_post(self, post_id: str, actor_id: str, **fields: Optional[str]) -> PostRecord:
        changes = {k: v for k, v in fields.items() if k in _POST_FIELDS and v is not None}
        if not changes:
            raise ValidationFailed("No values to update")

        with tracer.start_as_current_span("edit_post") as span:
            span.set_attribute("post.id", post_id)
            post = await self._get_post(post_id)
            if not can_modify(actor_id, post):
                raise Forbidden(NOT_POST_OWNER)

            updated = await self._repo.update_fields(EntityKind.POST, post_id, **changes)
            if updated is None:
                raise NotFound("Post not found")
            return updated

    async def delete_post(self, post_id: str, actor_id: str) -> PostRecord:
        """Delete a post with its like set and comment links.

        The referenced comment entities are deleted as well only when the
        engine was built with ``delete_post_comments``; otherwise they stay
        behind unreferenced.
        """
        with tracer.start_as_current_span("delete_post") as span:
            span.set_attribute("post.id", post_id)
            post = await self._get_post(post_id)
            if not can_modify(actor_id, post):
                raise Forbidden(NOT_POST_OWNER)

            if not await self._repo.delete_by_id(EntityKind.POST, post_id):
                raise NotFound("Post not found")

            if self._delete_post_comments:
                for comment_id in post.comment_ids:
                    await self._repo.delete_by_id(EntityKind.COMMENT, comment_id)
            elif post.comment_ids:
                logger.info(
                    "Post %s deleted; %d comment(s) left unreferenced",
                    post_id, len(post.comment_ids),
                )
            return post

    # ── Likes ─────────────────────────────────────────────────────────────

    async def like(self, post_id: str, actor_id: str) -> PostRecord:
        with tracer.start_as_current_span("like_post") as span:
            span.set_attribute("post.id", post_id)
            span.set_attribute("user.id", actor_id)

            await self._require_user(actor_id)
            post = await self._get_post(post_id, kind=InteractionKind.LIKE)
            decision = can_interact(actor_id, post, InteractionKind.LIKE)
            if not decision:
                INTERACTIONS_TOTAL.labels(kind="like", outcome="forbidden").inc()
                raise Forbidden(decision.reason)

            if not await self._repo.append_to_set(EntityKind.POST, post_id, LIKES, actor_id):
                # Another request added the same like between our read and write
                INTERACTIONS_TOTAL.labels(kind="like", outcome="forbidden").inc()
                raise Forbidden(ALREADY_LIKED)

            INTERACTIONS_TOTAL.labels(kind="like", outcome="ok").inc()
            return await self._get_post(post_id)

    async def unlike(self, post_id: str, actor_id: str) -> PostRecord:
        with tracer.start_as_current_span("unlike_post") as span:
            span.set_attribute("post.id", post_id)
            span.set_attribute("user.id", actor_id)

            post = await self._get_post(post_id, kind=InteractionKind.LIKE)
            if actor_id not in post.likes:
                INTERACTIONS_TOTAL.labels(kind="unlike", outcome="not_found").inc()
                raise NotFound(NOT_LIKED)

            if not await self._repo.remove_from_set(EntityKind.POST, post_id, LIKES, actor_id):
                INTERACTIONS_TOTAL.labels(kind="unlike", outcome="not_found").inc()
                raise NotFound(NOT_LIKED)

            INTERACTIONS_TOTAL.labels(kind="unlike", outcome="ok").inc()
            return await self._get_post(post_id)

    # ── Comments ──────────────────────────────────────────────────────────

    async def add_comment(
        self, post_id: str, actor_id: str, description: str
    ) -> tuple[PostRecord, CommentRecord]:
        with tracer.start_as_current_span("add_comment") as span:
            span.set_attribute("post.id", post_id)
            span.set_attribute("user.id", actor_id)

            await self._require_user(actor_id)
            post = await self._get_post(post_id, kind=InteractionKind.COMMENT)
            decision = can_interact(actor_id, post, InteractionKind.COMMENT)
            if not decision:
                INTERACTIONS_TOTAL.labels(kind="comment", outcome="forbidden").inc()
                raise Forbidden(decision.reason)

            # Entity and link are written in one transaction
            comment = await self._repo.insert_linked_comment(post_id, actor_id, description)
            if comment is None:
                INTERACTIONS_TOTAL.labels(kind="comment", outcome="not_found").inc()
                raise NotFound("Post not found")

            INTERACTIONS_TOTAL.labels(kind="comment", outcome="ok").inc()
            span.set_attribute("comment.id", comment.comment_id)
            return await self._get_post(post_id), comment

    async def edit_comment(
        self, post_id: str, comment_id: str, actor_id: str, description: str
    ) -> CommentRecord:
        with tracer.start_as_current_span("edit_comment") as span:
            span.set_attribute("post.id", post_id)
            span.set_attribute("comment.id", comment_id)
            comment = await self._get_comment(comment_id)
            if not can_modify(actor_id, comment):
                raise Forbidden(NOT_COMMENT_OWNER)

            post = await self._get_post(post_id)
            if comment_id not in post.comment_ids:
                raise NotFound(NOT_LINKED)

            updated = await self._repo.update_fields(
                EntityKind.COMMENT, comment_id, description=description
            )
            if updated is None:
                raise NotFound("Comment not found")
            return updated

    async def delete_comment(self, post_id: str, comment_id: str, actor_id: str) -> PostRecord:
        with tracer.start_as_current_span("delete_comment") as span:
            span.set_attribute("post.id", post_id)
            span.set_attribute("comment.id", comment_id)

            comment = await self._get_comment(comment_id)
            if not can_modify(actor_id, comment):
                INTERACTIONS_TOTAL.labels(kind="uncomment", outcome="forbidden").inc()
                raise Forbidden(NOT_COMMENT_OWNER)

            # Reference first, entity second
            if not await self._repo.remove_from_set(EntityKind.POST, post_id, COMMENTS, comment_id):
                INTERACTIONS_TOTAL.labels(kind="uncomment", outcome="not_found").inc()
                raise NotFound(NOT_LINKED)
            await self._repo.delete_by_id(EntityKind.COMMENT, comment_id)

            INTERACTIONS_TOTAL.labels(kind="uncomment", outcome="ok").inc()
            return await self._get_post(post_id)

    # ── Reads ─────────────────────────────────────────────────────────────

    async def _get_post(
        self, post_id: str, kind: Optional[InteractionKind] = None
    ) -> PostRecord:
        post = await self._repo.find_by_id(EntityKind.POST, post_id)
        if post is None:
            if kind is not None:
                INTERACTIONS_TOTAL.labels(kind=kind.value, outcome="not_found").inc()
            raise NotFound("Post not found")
        return post

    async def _get_comment(self, comment_id: str) -> CommentRecord:
        comment = await self._repo.find_by_id(EntityKind.COMMENT, comment_id)
        if comment is None:
            raise NotFound("Comment not found")
        return comment

    async def _require_user(self, user_id: str) -> None:
        # A token can outlive its account; such actors may not create content
        if await self._repo.find_owner_of(EntityKind.USER, user_id) is None:
            raise NotFound("User not found")
