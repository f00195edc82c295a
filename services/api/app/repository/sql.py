"""
FeedRepository on SQLAlchemy (TiDB in production, SQLite in tests).

Every public method runs in its own session and commits on exit, so each
call is one atomic unit and nothing is cached between calls.

Set-valued post fields map onto link tables:
  likes     → likes          (UNIQUE post_id, user_id: the set-add guard)
  comments  → post_comments  (UNIQUE comment_id: one post per comment)
Insertion order is the surrogate key order.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Sequence

from sqlalchemy import delete, func, select, union
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.errors import Conflict
from app.models import CleanupJob, Comment, Like, Post, PostComment, User
from app.repository.base import COMMENTS, LIKES, EntityKind, FeedRepository, Record
from app.schemas import CleanupJobRecord, CommentRecord, PostRecord, UserRecord

logger = logging.getLogger(__name__)

_MODELS = {
    EntityKind.USER: User,
    EntityKind.POST: Post,
    EntityKind.COMMENT: Comment,
}

# Identity and ownership never change after creation
_IMMUTABLE_FIELDS = {"user_id", "post_id", "comment_id", "owner_id"}

_NO_SYNC = {"synchronize_session": False}


class SqlFeedRepository(FeedRepository):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self._sessions() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    # ── Generic entity access ─────────────────────────────────────────────

    async def find_by_id(self, kind: EntityKind, entity_id: str) -> Optional[Record]:
        async with self._session() as session:
            row = await session.get(_MODELS[kind], entity_id)
            if row is None:
                return None
            return await self._to_record(session, kind, row)

    async def find_owner_of(self, kind: EntityKind, entity_id: str) -> Optional[str]:
        if kind is EntityKind.USER:
            column, key = User.user_id, User.user_id
        elif kind is EntityKind.POST:
            column, key = Post.owner_id, Post.post_id
        else:
            column, key = Comment.owner_id, Comment.comment_id

        async with self._session() as session:
            result = await session.execute(select(column).where(key == entity_id))
            return result.scalar_one_or_none()

    async def insert(self, kind: EntityKind, **fields: Any) -> Record:
        row = _MODELS[kind](**fields)
        try:
            async with self._session() as session:
                session.add(row)
                await session.flush()
                await session.refresh(row)
                record = await self._to_record(session, kind, row)
        except IntegrityError as exc:
            raise Conflict(f"{kind.value.capitalize()} already exists") from exc
        return record

    async def update_fields(
        self, kind: EntityKind, entity_id: str, **fields: Any
    ) -> Optional[Record]:
        immutable = _IMMUTABLE_FIELDS.intersection(fields)
        if immutable:
            raise ValueError(f"Cannot update immutable fields: {sorted(immutable)}")

        try:
            async with self._session() as session:
                row = await session.get(_MODELS[kind], entity_id)
                if row is None:
                    return None
                for name, value in fields.items():
                    setattr(row, name, value)
                await session.flush()
                await session.refresh(row)
                record = await self._to_record(session, kind, row)
        except IntegrityError as exc:
            raise Conflict(f"{kind.value.capitalize()} already exists") from exc
        return record

    async def delete_by_id(self, kind: EntityKind, entity_id: str) -> bool:
        async with self._session() as session:
            if kind is EntityKind.USER:
                stmt = delete(User).where(User.user_id == entity_id)
            elif kind is EntityKind.COMMENT:
                stmt = delete(Comment).where(Comment.comment_id == entity_id)
            else:
                # The like set and comment links are part of the post itself
                await session.execute(
                    delete(Like).where(Like.post_id == entity_id).execution_options(**_NO_SYNC)
                )
                await session.execute(
                    delete(PostComment)
                    .where(PostComment.post_id == entity_id)
                    .execution_options(**_NO_SYNC)
                )
                stmt = delete(Post).where(Post.post_id == entity_id)
            result = await session.execute(stmt.execution_options(**_NO_SYNC))
            return result.rowcount > 0

    async def delete_many(self, kind: EntityKind, owner_id: str) -> int:
        async with self._session() as session:
            if kind is EntityKind.COMMENT:
                stmt = delete(Comment).where(Comment.owner_id == owner_id)
            elif kind is EntityKind.POST:
                owned = select(Post.post_id).where(Post.owner_id == owner_id)
                await session.execute(
                    delete(Like).where(Like.post_id.in_(owned)).execution_options(**_NO_SYNC)
                )
                await session.execute(
                    delete(PostComment)
                    .where(PostComment.post_id.in_(owned))
                    .execution_options(**_NO_SYNC)
                )
                stmt = delete(Post).where(Post.owner_id == owner_id)
            else:
                raise ValueError(f"delete_many is not supported for {kind.value}")
            result = await session.execute(stmt.execution_options(**_NO_SYNC))
            return result.rowcount

    # ── Set-valued fields ─────────────────────────────────────────────────

    async def append_to_set(
        self, kind: EntityKind, entity_id: str, field: str, value: str
    ) -> bool:
        _require_post_set(kind, field)
        try:
            async with self._session() as session:
                if await session.get(Post, entity_id) is None:
                    return False
                if field == LIKES:
                    session.add(Like(post_id=entity_id, user_id=value))
                else:
                    session.add(PostComment(post_id=entity_id, comment_id=value))
                await session.flush()
        except IntegrityError:
            # Unique constraint: the value is already in the set
            return False
        return True

    async def remove_from_set(
        self, kind: EntityKind, entity_id: str, field: str, value: str
    ) -> bool:
        _require_post_set(kind, field)
        if field == LIKES:
            stmt = delete(Like).where(Like.post_id == entity_id, Like.user_id == value)
        else:
            stmt = delete(PostComment).where(
                PostComment.post_id == entity_id, PostComment.comment_id == value
            )
        async with self._session() as session:
            result = await session.execute(stmt.execution_options(**_NO_SYNC))
            return result.rowcount > 0

    async def update_many_pull(self, kind: EntityKind, field: str, value: str) -> int:
        _require_post_set(kind, field)
        if field == LIKES:
            stmt = delete(Like).where(Like.user_id == value)
        else:
            stmt = delete(PostComment).where(PostComment.comment_id == value)
        async with self._session() as session:
            result = await session.execute(stmt.execution_options(**_NO_SYNC))
            return result.rowcount

    async def insert_linked_comment(
        self, post_id: str, owner_id: str, description: str
    ) -> Optional[CommentRecord]:
        async with self._session() as session:
            if await session.get(Post, post_id) is None:
                return None
            comment = Comment(owner_id=owner_id, description=description)
            session.add(comment)
            await session.flush()
            session.add(PostComment(post_id=post_id, comment_id=comment.comment_id))
            await session.flush()
            await session.refresh(comment)
            return CommentRecord.model_validate(comment, from_attributes=True)

    # ── Queries ───────────────────────────────────────────────────────────

    async def find_user_by_email(self, email: str) -> Optional[UserRecord]:
        return await self._find_user(User.email == email.lower())

    async def find_user_by_username(self, username: str) -> Optional[UserRecord]:
        return await self._find_user(User.username == username)

    async def find_users(self) -> list[UserRecord]:
        async with self._session() as session:
            rows = await session.execute(select(User).order_by(User.created_at, User.username))
            return [UserRecord.model_validate(u, from_attributes=True) for u in rows.scalars()]

    async def find_posts(self, owner_id: Optional[str] = None) -> list[PostRecord]:
        like_counts = (
            select(Like.post_id, func.count().label("like_count"))
            .group_by(Like.post_id)
            .subquery()
        )
        stmt = (
            select(Post)
            .outerjoin(like_counts, like_counts.c.post_id == Post.post_id)
            .order_by(
                func.coalesce(like_counts.c.like_count, 0).desc(),
                Post.created_at.asc(),
                Post.post_id,
            )
        )
        if owner_id is not None:
            stmt = stmt.where(Post.owner_id == owner_id)

        async with self._session() as session:
            posts = (await session.execute(stmt)).scalars().all()
            return await self._hydrate_posts(session, posts)

    async def find_comments(self, owner_id: str) -> list[CommentRecord]:
        async with self._session() as session:
            rows = await session.execute(
                select(Comment)
                .where(Comment.owner_id == owner_id)
                .order_by(Comment.created_at, Comment.comment_id)
            )
            return [CommentRecord.model_validate(c, from_attributes=True) for c in rows.scalars()]

    async def find_post_comments(self, post_id: str) -> list[CommentRecord]:
        async with self._session() as session:
            rows = await session.execute(
                select(Comment)
                .join(PostComment, PostComment.comment_id == Comment.comment_id)
                .where(PostComment.post_id == post_id)
                .order_by(PostComment.link_id)
            )
            return [CommentRecord.model_validate(c, from_attributes=True) for c in rows.scalars()]

    # ── Account-deletion bookkeeping ──────────────────────────────────────

    async def create_cleanup_job(self, user_id: str) -> CleanupJobRecord:
        async with self._session() as session:
            job = CleanupJob(user_id=user_id, applied_steps=[], status="pending", attempts=0)
            session.add(job)
            await session.flush()
            await session.refresh(job)
            return CleanupJobRecord.model_validate(job, from_attributes=True)

    async def record_cleanup_step(self, job_id: str, step: str) -> CleanupJobRecord:
        async with self._session() as session:
            job = await self._get_job(session, job_id)
            if step not in job.applied_steps:
                # Reassign: in-place mutation of a JSON column is not tracked
                job.applied_steps = [*job.applied_steps, step]
            await session.flush()
            return CleanupJobRecord.model_validate(job, from_attributes=True)

    async def finish_cleanup_job(self, job_id: str) -> CleanupJobRecord:
        async with self._session() as session:
            job = await self._get_job(session, job_id)
            job.status = "done"
            job.attempts += 1
            job.last_error = None
            await session.flush()
            return CleanupJobRecord.model_validate(job, from_attributes=True)

    async def fail_cleanup_job(self, job_id: str, error: str) -> CleanupJobRecord:
        async with self._session() as session:
            job = await self._get_job(session, job_id)
            job.status = "failed"
            job.attempts += 1
            job.last_error = error[:2000]
            await session.flush()
            return CleanupJobRecord.model_validate(job, from_attributes=True)

    async def find_cleanup_job(self, job_id: str) -> Optional[CleanupJobRecord]:
        async with self._session() as session:
            job = await session.get(CleanupJob, job_id)
            if job is None:
                return None
            return CleanupJobRecord.model_validate(job, from_attributes=True)

    async def find_unfinished_cleanup_jobs(self) -> list[CleanupJobRecord]:
        async with self._session() as session:
            rows = await session.execute(
                select(CleanupJob)
                .where(CleanupJob.status != "done")
                .order_by(CleanupJob.created_at, CleanupJob.job_id)
            )
            return [
                CleanupJobRecord.model_validate(j, from_attributes=True)
                for j in rows.scalars()
            ]

    async def find_orphaned_owner_ids(self) -> list[str]:
        owners = union(
            select(Post.owner_id.label("owner_id")),
            select(Comment.owner_id.label("owner_id")),
            select(Like.user_id.label("owner_id")),
        ).subquery()
        stmt = (
            select(owners.c.owner_id)
            .where(owners.c.owner_id.not_in(select(User.user_id)))
            .order_by(owners.c.owner_id)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return list(result.scalars())

    async def delete_dangling_links(self) -> int:
        posts = select(Post.post_id)
        async with self._session() as session:
            likes = await session.execute(
                delete(Like).where(Like.post_id.not_in(posts)).execution_options(**_NO_SYNC)
            )
            links = await session.execute(
                delete(PostComment)
                .where(PostComment.post_id.not_in(posts))
                .execution_options(**_NO_SYNC)
            )
            return likes.rowcount + links.rowcount

    # ── Helpers ───────────────────────────────────────────────────────────

    async def _find_user(self, criterion) -> Optional[UserRecord]:  # noqa: ANN001
        async with self._session() as session:
            result = await session.execute(select(User).where(criterion))
            user = result.scalar_one_or_none()
            if user is None:
                return None
            return UserRecord.model_validate(user, from_attributes=True)

    @staticmethod
    async def _get_job(session: AsyncSession, job_id: str) -> CleanupJob:
        job = await session.get(CleanupJob, job_id)
        if job is None:
            raise LookupError(f"Cleanup job {job_id} not found")
        return job

    async def _to_record(self, session: AsyncSession, kind: EntityKind, row: Any) -> Record:
        if kind is EntityKind.POST:
            (post,) = await self._hydrate_posts(session, [row])
            return post
        if kind is EntityKind.USER:
            return UserRecord.model_validate(row, from_attributes=True)
        return CommentRecord.model_validate(row, from_attributes=True)

    @staticmethod
    async def _hydrate_posts(session: AsyncSession, posts: Sequence[Post]) -> list[PostRecord]:
        """Attach like sets and comment sequences with one query each."""
        if not posts:
            return []
        post_ids = [p.post_id for p in posts]

        likes: dict[str, list[str]] = {pid: [] for pid in post_ids}
        rows = await session.execute(
            select(Like.post_id, Like.user_id)
            .where(Like.post_id.in_(post_ids))
            .order_by(Like.like_id)
        )
        for post_id, user_id in rows.all():
            likes[post_id].append(user_id)

        comments: dict[str, list[str]] = {pid: [] for pid in post_ids}
        rows = await session.execute(
            select(PostComment.post_id, PostComment.comment_id)
            .where(PostComment.post_id.in_(post_ids))
            .order_by(PostComment.link_id)
        )
        for post_id, comment_id in rows.all():
            comments[post_id].append(comment_id)

        return [
            PostRecord(
                post_id=p.post_id,
                owner_id=p.owner_id,
                title=p.title,
                description=p.description,
                location=p.location,
                likes=tuple(likes[p.post_id]),
                comment_ids=tuple(comments[p.post_id]),
                created_at=p.created_at,
                updated_at=p.updated_at,
            )
            for p in posts
        ]


def _require_post_set(kind: EntityKind, field: str) -> None:
    if kind is not EntityKind.POST or field not in (LIKES, COMMENTS):
        raise ValueError(f"{kind.value} has no set field '{field}'")
