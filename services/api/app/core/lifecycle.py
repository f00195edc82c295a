"""
Account deletion and the cascading cleanup that follows it.

Deleting an account removes the user row right away and answers the
request; everything the user left behind is cleaned up afterwards by a
fire-and-forget task. Until that task finishes, the user's comments and
likes may still be visible on other users' posts.

The cascade is a fixed sequence of idempotent steps. Each finished step is
recorded on a cleanup job, so a run that stops half-way can be resumed by
the reconciliation sweep instead of leaving orphans behind:

  1. unlink_comments  pull the user's comment ids from every post
  2. pull_likes       pull the user id from every like set
  3. delete_posts     delete the user's posts (with their like sets/links)
  4. delete_comments  delete the user's comment entities

Step 1 runs before step 4 so no remaining post references a deleted comment.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable

from opentelemetry import trace

from app.errors import NotFound, PartialFailure
from app.repository.base import COMMENTS, LIKES, EntityKind, FeedRepository
from app.schemas import CleanupJobRecord, UserRecord
from app.telemetry import (
    CLEANUP_DURATION,
    CLEANUP_JOBS_UNFINISHED,
    CLEANUP_STEP_FAILURES_TOTAL,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

UNLINK_COMMENTS = "unlink_comments"
PULL_LIKES = "pull_likes"
DELETE_POSTS = "delete_posts"
DELETE_COMMENTS = "delete_comments"

CLEANUP_STEPS = (UNLINK_COMMENTS, PULL_LIKES, DELETE_POSTS, DELETE_COMMENTS)

# Strong references to in-flight cascades; the event loop only keeps weak ones
_pending: set[asyncio.Task] = set()


class AccountLifecycleManager:
    def __init__(self, repository: FeedRepository, delete_post_comments: bool = False) -> None:
        self._repo = repository
        self._delete_post_comments = delete_post_comments

    async def delete_account(self, user_id: str, actor_id: str) -> UserRecord:
        """Delete ``user_id`` and schedule its cleanup. Only the user may do this.

        Any other actor gets the same NotFound as for a missing user.
        """
        with tracer.start_as_current_span("delete_account") as span:
            span.set_attribute("user.id", user_id)

            if actor_id != user_id:
                raise NotFound("User not found")
            user = await self._repo.find_by_id(EntityKind.USER, user_id)
            if user is None or not await self._repo.delete_by_id(EntityKind.USER, user_id):
                raise NotFound("User not found")

            job = await self._repo.create_cleanup_job(user_id)
            self.schedule_cleanup(job.job_id)
            logger.info("User %s deleted; cleanup job %s scheduled", user_id, job.job_id)
            return user

    def schedule_cleanup(self, job_id: str) -> asyncio.Task:
        task = asyncio.create_task(self.run_cleanup(job_id))
        _pending.add(task)
        task.add_done_callback(_pending.discard)
        return task

    async def run_cleanup(self, job_id: str) -> CleanupJobRecord:
        """Run the remaining steps of a cleanup job.

        A failing step stops the run and marks the job failed; the error is
        logged and recorded, not raised, because nobody is waiting on it.
        """
        job = await self._repo.find_cleanup_job(job_id)
        if job is None:
            raise LookupError(f"Cleanup job {job_id} not found")
        if job.status == "done":
            return job

        handlers: dict[str, Callable[[str], Awaitable[None]]] = {
            UNLINK_COMMENTS: self._unlink_comments,
            PULL_LIKES: self._pull_likes,
            DELETE_POSTS: self._delete_posts,
            DELETE_COMMENTS: self._delete_comments,
        }

        started = time.perf_counter()
        with tracer.start_as_current_span("account_cleanup") as span:
            span.set_attribute("user.id", job.user_id)
            span.set_attribute("cleanup.job_id", job_id)

            applied = list(job.applied_steps)
            for step in CLEANUP_STEPS:
                if step in applied:
                    continue
                try:
                    await handlers[step](job.user_id)
                    job = await self._repo.record_cleanup_step(job_id, step)
                except Exception as exc:
                    failure = PartialFailure(job.user_id, step, applied, str(exc))
                    CLEANUP_STEP_FAILURES_TOTAL.labels(step=step).inc()
                    span.record_exception(exc)
                    logger.error("%s", failure.message, exc_info=exc)
                    return await self._repo.fail_cleanup_job(job_id, failure.message)
                applied.append(step)

            job = await self._repo.finish_cleanup_job(job_id)

        CLEANUP_DURATION.observe(time.perf_counter() - started)
        logger.info("Cleanup for user %s complete (job %s)", job.user_id, job_id)
        return job

    async def reconcile(self) -> int:
        """Resume unfinished cleanup jobs and open jobs for orphaned owners.

        Like and comment links left behind by a post deleted mid-write are
        dropped first. Returns the number of jobs run by this sweep.
        """
        with tracer.start_as_current_span("reconcile_cleanup"):
            dangling = await self._repo.delete_dangling_links()
            if dangling:
                logger.warning("Removed %d links to posts that no longer exist", dangling)

            jobs = await self._repo.find_unfinished_cleanup_jobs()
            covered = {job.user_id for job in jobs}

            for owner_id in await self._repo.find_orphaned_owner_ids():
                if owner_id not in covered:
                    logger.warning("Found data of deleted user %s with no cleanup job", owner_id)
                    jobs.append(await self._repo.create_cleanup_job(owner_id))
                    covered.add(owner_id)

            CLEANUP_JOBS_UNFINISHED.set(len(jobs))
            for job in jobs:
                await self.run_cleanup(job.job_id)
            return len(jobs)

    # ── Steps ─────────────────────────────────────────────────────────────

    async def _unlink_comments(self, user_id: str) -> None:
        for comment in await self._repo.find_comments(user_id):
            await self._repo.update_many_pull(EntityKind.POST, COMMENTS, comment.comment_id)

    async def _pull_likes(self, user_id: str) -> None:
        await self._repo.update_many_pull(EntityKind.POST, LIKES, user_id)

    async def _delete_posts(self, user_id: str) -> None:
        if self._delete_post_comments:
            for post in await self._repo.find_posts(owner_id=user_id):
                for comment_id in post.comment_ids:
                    await self._repo.delete_by_id(EntityKind.COMMENT, comment_id)
        await self._repo.delete_many(EntityKind.POST, user_id)

    async def _delete_comments(self, user_id: str) -> None:
        await self._repo.delete_many(EntityKind.COMMENT, user_id)


async def drain() -> None:
    """Wait for every in-flight cleanup task to finish."""
    while _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)
