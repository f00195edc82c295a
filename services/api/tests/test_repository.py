"""SQL repository — atomic primitives, queries and cleanup-job bookkeeping."""

import pytest

from app.errors import Conflict
from app.repository.base import COMMENTS, LIKES, EntityKind


@pytest.fixture
async def post(repository):
    return await repository.insert(
        EntityKind.POST, owner_id="alice", title="T", description="D", location="L"
    )


# ─── Set primitives ──────────────────────────────────────────────────────────

async def test_append_to_set_is_add_if_absent(repository, post):
    assert await repository.append_to_set(EntityKind.POST, post.post_id, LIKES, "bob") is True
    assert await repository.append_to_set(EntityKind.POST, post.post_id, LIKES, "bob") is False

    reloaded = await repository.find_by_id(EntityKind.POST, post.post_id)
    assert reloaded.likes == ("bob",)


async def test_append_to_missing_post_fails(repository):
    assert await repository.append_to_set(EntityKind.POST, "nope", LIKES, "bob") is False


async def test_remove_from_set_reports_absence(repository, post):
    assert await repository.remove_from_set(EntityKind.POST, post.post_id, LIKES, "bob") is False
    await repository.append_to_set(EntityKind.POST, post.post_id, LIKES, "bob")
    assert await repository.remove_from_set(EntityKind.POST, post.post_id, LIKES, "bob") is True


async def test_likes_keep_insertion_order(repository, post):
    for user_id in ("carol", "bob", "dave"):
        await repository.append_to_set(EntityKind.POST, post.post_id, LIKES, user_id)
    reloaded = await repository.find_by_id(EntityKind.POST, post.post_id)
    assert reloaded.likes == ("carol", "bob", "dave")


async def test_update_many_pull_touches_every_post(repository, post):
    other = await repository.insert(
        EntityKind.POST, owner_id="carol", title="T2", description="D2", location="L2"
    )
    for post_id in (post.post_id, other.post_id):
        await repository.append_to_set(EntityKind.POST, post_id, LIKES, "bob")
        await repository.append_to_set(EntityKind.POST, post_id, LIKES, "dave")

    assert await repository.update_many_pull(EntityKind.POST, LIKES, "bob") == 2
    for post_id in (post.post_id, other.post_id):
        assert (await repository.find_by_id(EntityKind.POST, post_id)).likes == ("dave",)


async def test_set_fields_exist_only_on_posts(repository, post):
    with pytest.raises(ValueError):
        await repository.append_to_set(EntityKind.COMMENT, "c1", LIKES, "bob")
    with pytest.raises(ValueError):
        await repository.append_to_set(EntityKind.POST, post.post_id, "followers", "bob")


async def test_comment_is_linked_to_one_post(repository, post):
    comment = await repository.insert_linked_comment(post.post_id, "bob", "Hi")
    other = await repository.insert(
        EntityKind.POST, owner_id="carol", title="T2", description="D2", location="L2"
    )
    assert await repository.append_to_set(
        EntityKind.POST, other.post_id, COMMENTS, comment.comment_id
    ) is False


async def test_linked_comment_on_missing_post_writes_nothing(repository):
    assert await repository.insert_linked_comment("nope", "bob", "Hi") is None
    assert await repository.find_comments("bob") == []


# ─── Entities ────────────────────────────────────────────────────────────────

async def test_duplicate_username_conflicts(repository):
    fields = {"username": "alice", "email": "a@example.com", "password_hash": "x"}
    await repository.insert(EntityKind.USER, **fields)
    with pytest.raises(Conflict):
        await repository.insert(EntityKind.USER, **{**fields, "email": "other@example.com"})


async def test_owner_cannot_be_updated(repository, post):
    with pytest.raises(ValueError):
        await repository.update_fields(EntityKind.POST, post.post_id, owner_id="mallory")


async def test_update_missing_entity_returns_none(repository):
    assert await repository.update_fields(EntityKind.POST, "nope", title="x") is None


async def test_find_owner_of(repository, post):
    comment = await repository.insert_linked_comment(post.post_id, "bob", "Hi")
    assert await repository.find_owner_of(EntityKind.POST, post.post_id) == "alice"
    assert await repository.find_owner_of(EntityKind.COMMENT, comment.comment_id) == "bob"
    assert await repository.find_owner_of(EntityKind.POST, "nope") is None


async def test_delete_many_posts_takes_likes_and_links(repository, post):
    await repository.append_to_set(EntityKind.POST, post.post_id, LIKES, "bob")
    comment = await repository.insert_linked_comment(post.post_id, "bob", "Hi")

    assert await repository.delete_many(EntityKind.POST, "alice") == 1
    assert await repository.find_posts(owner_id="alice") == []
    assert await repository.find_post_comments(post.post_id) == []
    # Only the reference goes; the comment entity is another owner's
    assert await repository.find_by_id(EntityKind.COMMENT, comment.comment_id) is not None


async def test_delete_many_users_is_unsupported(repository):
    with pytest.raises(ValueError):
        await repository.delete_many(EntityKind.USER, "alice")


# ─── Queries ─────────────────────────────────────────────────────────────────

async def test_wall_orders_by_like_count(repository, post):
    popular = await repository.insert(
        EntityKind.POST, owner_id="carol", title="Hot", description="D", location="L"
    )
    for user_id in ("bob", "dave"):
        await repository.append_to_set(EntityKind.POST, popular.post_id, LIKES, user_id)
    await repository.append_to_set(EntityKind.POST, post.post_id, LIKES, "bob")

    wall = await repository.find_posts()
    assert [p.post_id for p in wall] == [popular.post_id, post.post_id]
    assert [len(p.likes) for p in wall] == [2, 1]


async def test_find_posts_by_owner(repository, post):
    await repository.insert(
        EntityKind.POST, owner_id="carol", title="T2", description="D2", location="L2"
    )
    assert [p.post_id for p in await repository.find_posts(owner_id="alice")] == [post.post_id]


async def test_orphaned_owner_ids(repository, post):
    user = await repository.insert(
        EntityKind.USER, username="bob", email="bob@example.com", password_hash="x"
    )
    await repository.append_to_set(EntityKind.POST, post.post_id, LIKES, user.user_id)
    await repository.insert_linked_comment(post.post_id, "zed", "Hi")

    assert await repository.find_orphaned_owner_ids() == ["alice", "zed"]


# ─── Cleanup jobs ────────────────────────────────────────────────────────────

async def test_cleanup_job_lifecycle(repository):
    job = await repository.create_cleanup_job("alice")
    assert job.status == "pending"
    assert job.applied_steps == ()

    job = await repository.record_cleanup_step(job.job_id, "pull_likes")
    job = await repository.record_cleanup_step(job.job_id, "pull_likes")
    assert job.applied_steps == ("pull_likes",)

    failed = await repository.fail_cleanup_job(job.job_id, "boom" * 1000)
    assert failed.status == "failed"
    assert len(failed.last_error) == 2000
    assert await repository.find_unfinished_cleanup_jobs() == [failed]

    done = await repository.finish_cleanup_job(job.job_id)
    assert done.status == "done"
    assert done.attempts == 2
    assert done.last_error is None
    assert await repository.find_unfinished_cleanup_jobs() == []


async def test_unknown_cleanup_job(repository):
    assert await repository.find_cleanup_job("nope") is None
    with pytest.raises(LookupError):
        await repository.record_cleanup_step("nope", "pull_likes")
