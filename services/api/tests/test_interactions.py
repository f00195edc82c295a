"""Interaction engine — likes, comments and owner edits on posts.

Invariants:
    - A rejected operation leaves every entity unchanged
    - A post's comment references and the comment entities stay in step
    - Owner ids never change
"""

import pytest

from app.core.interactions import (
    NOT_COMMENT_OWNER,
    NOT_LIKED,
    NOT_LINKED,
    NOT_POST_OWNER,
    InteractionEngine,
)
from app.core.policy import ALREADY_LIKED, OWNER_CANNOT_COMMENT, OWNER_CANNOT_LIKE
from app.errors import Forbidden, NotFound, ValidationFailed
from app.repository.base import LIKES, EntityKind


@pytest.fixture
async def alice(make_user):
    return await make_user("alice")


@pytest.fixture
async def bob(make_user):
    return await make_user("bob")


@pytest.fixture
async def carol(make_user):
    return await make_user("carol")


@pytest.fixture
async def post(interactions, alice):
    return await interactions.create_post(alice, "Sunrise", "Early start", "Lisbon")


async def _reload(repository, post_id):
    return await repository.find_by_id(EntityKind.POST, post_id)


# ─── Likes ───────────────────────────────────────────────────────────────────

async def test_like_then_unlike(interactions, post, bob):
    liked = await interactions.like(post.post_id, bob)
    assert liked.likes == (bob,)

    unliked = await interactions.unlike(post.post_id, bob)
    assert unliked.likes == ()


async def test_owner_cannot_like_own_post(interactions, repository, post, alice):
    with pytest.raises(Forbidden) as exc_info:
        await interactions.like(post.post_id, alice)
    assert exc_info.value.reason == OWNER_CANNOT_LIKE
    assert (await _reload(repository, post.post_id)).likes == ()


async def test_second_like_is_rejected(interactions, repository, post, bob):
    await interactions.like(post.post_id, bob)
    with pytest.raises(Forbidden) as exc_info:
        await interactions.like(post.post_id, bob)
    assert exc_info.value.reason == ALREADY_LIKED
    assert (await _reload(repository, post.post_id)).likes == (bob,)


async def test_unlike_without_like_changes_nothing(interactions, repository, post, bob, carol):
    await interactions.like(post.post_id, carol)
    with pytest.raises(NotFound, match=NOT_LIKED):
        await interactions.unlike(post.post_id, bob)
    assert (await _reload(repository, post.post_id)).likes == (carol,)


async def test_like_missing_post_is_not_found(interactions, bob):
    with pytest.raises(NotFound):
        await interactions.like("no-such-post", bob)


async def test_deleted_user_cannot_like(interactions, repository, post, bob):
    await repository.delete_by_id(EntityKind.USER, bob)
    with pytest.raises(NotFound):
        await interactions.like(post.post_id, bob)
    assert (await _reload(repository, post.post_id)).likes == ()


async def test_like_lost_race_reports_already_liked(
    interactions, repository, post, bob, monkeypatch
):
    """The stale read allows the like; the set primitive refuses the duplicate."""
    # A competing request adds the like after our read
    await repository.append_to_set(EntityKind.POST, post.post_id, LIKES, bob)

    real_find = repository.find_by_id
    served_stale = []

    async def find_stale(kind, entity_id):
        if kind is EntityKind.POST and not served_stale:
            served_stale.append(entity_id)
            return post
        return await real_find(kind, entity_id)

    monkeypatch.setattr(repository, "find_by_id", find_stale)

    with pytest.raises(Forbidden) as exc_info:
        await interactions.like(post.post_id, bob)
    assert exc_info.value.reason == ALREADY_LIKED
    assert (await real_find(EntityKind.POST, post.post_id)).likes == (bob,)


# ─── End to end ──────────────────────────────────────────────────────────────

async def test_two_user_scenario(interactions, repository, alice, bob):
    post = await interactions.create_post(alice, "Hello", "First post", "Berlin")

    liked = await interactions.like(post.post_id, bob)
    assert liked.likes == (bob,)

    with pytest.raises(Forbidden):
        await interactions.like(post.post_id, alice)

    updated, comment = await interactions.add_comment(post.post_id, bob, "Nice")
    assert updated.comment_ids == (comment.comment_id,)

    with pytest.raises(Forbidden):
        await interactions.delete_comment(post.post_id, comment.comment_id, alice)

    after = await interactions.delete_comment(post.post_id, comment.comment_id, bob)
    assert after.comment_ids == ()
    assert await repository.find_by_id(EntityKind.COMMENT, comment.comment_id) is None


# ─── Comments ────────────────────────────────────────────────────────────────

async def test_comment_creates_entity_and_reference(interactions, repository, post, bob):
    updated, comment = await interactions.add_comment(post.post_id, bob, "Lovely light")

    assert comment.owner_id == bob
    assert updated.comment_ids == (comment.comment_id,)
    assert await repository.find_post_comments(post.post_id) == [comment]


async def test_comments_keep_insertion_order(interactions, repository, post, bob, carol):
    _, first = await interactions.add_comment(post.post_id, bob, "First")
    _, second = await interactions.add_comment(post.post_id, carol, "Second")
    _, third = await interactions.add_comment(post.post_id, bob, "Third")

    reloaded = await _reload(repository, post.post_id)
    assert reloaded.comment_ids == (first.comment_id, second.comment_id, third.comment_id)


async def test_owner_cannot_comment_own_post(interactions, repository, post, alice):
    with pytest.raises(Forbidden) as exc_info:
        await interactions.add_comment(post.post_id, alice, "Me again")
    assert exc_info.value.reason == OWNER_CANNOT_COMMENT
    assert await repository.find_comments(alice) == []


async def test_comment_on_missing_post_creates_nothing(interactions, repository, bob):
    with pytest.raises(NotFound):
        await interactions.add_comment("no-such-post", bob, "Hello?")
    assert await repository.find_comments(bob) == []


async def test_delete_foreign_comment_mutates_nothing(interactions, repository, post, bob, carol):
    _, comment = await interactions.add_comment(post.post_id, bob, "Mine")

    with pytest.raises(Forbidden) as exc_info:
        await interactions.delete_comment(post.post_id, comment.comment_id, carol)
    assert exc_info.value.reason == NOT_COMMENT_OWNER

    assert (await _reload(repository, post.post_id)).comment_ids == (comment.comment_id,)
    assert await repository.find_by_id(EntityKind.COMMENT, comment.comment_id) == comment


async def test_delete_comment_through_wrong_post_is_not_found(
    interactions, repository, post, alice, bob
):
    other = await interactions.create_post(alice, "Sunset", "Late finish", "Porto")
    _, comment = await interactions.add_comment(post.post_id, bob, "Here")

    with pytest.raises(NotFound):
        await interactions.delete_comment(other.post_id, comment.comment_id, bob)
    assert await repository.find_by_id(EntityKind.COMMENT, comment.comment_id) is not None
    assert (await _reload(repository, post.post_id)).comment_ids == (comment.comment_id,)


async def test_edit_comment_by_owner_only(interactions, post, bob, carol):
    _, comment = await interactions.add_comment(post.post_id, bob, "Typo")

    with pytest.raises(Forbidden):
        await interactions.edit_comment(post.post_id, comment.comment_id, carol, "Hijacked")

    edited = await interactions.edit_comment(post.post_id, comment.comment_id, bob, "Fixed")
    assert edited.description == "Fixed"
    assert edited.owner_id == bob


async def test_edit_comment_through_wrong_post_is_not_found(
    interactions, repository, post, alice, bob
):
    other = await interactions.create_post(alice, "Sunset", "Late finish", "Porto")
    _, comment = await interactions.add_comment(post.post_id, bob, "Original")

    with pytest.raises(NotFound, match=NOT_LINKED):
        await interactions.edit_comment(other.post_id, comment.comment_id, bob, "Moved")
    assert (await repository.find_by_id(EntityKind.COMMENT, comment.comment_id)) == comment


# ─── Posts ───────────────────────────────────────────────────────────────────

async def test_edit_post_by_owner(interactions, post, alice):
    edited = await interactions.edit_post(post.post_id, alice, title="Sunrise over the river")
    assert edited.title == "Sunrise over the river"
    assert edited.location == post.location
    assert edited.owner_id == alice


async def test_edit_post_by_other_user_is_forbidden(interactions, repository, post, bob):
    with pytest.raises(Forbidden, match=NOT_POST_OWNER):
        await interactions.edit_post(post.post_id, bob, title="Mine now")
    assert (await _reload(repository, post.post_id)).title == post.title


async def test_edit_post_without_values_fails_validation(interactions, post, alice):
    with pytest.raises(ValidationFailed):
        await interactions.edit_post(post.post_id, alice, title=None)


async def test_edit_post_ignores_owner_change(interactions, post, alice, bob):
    edited = await interactions.edit_post(post.post_id, alice, title="Still mine", owner_id=bob)
    assert edited.owner_id == alice


async def test_delete_post_removes_likes_and_links(interactions, repository, post, alice, bob):
    await interactions.like(post.post_id, bob)
    _, comment = await interactions.add_comment(post.post_id, bob, "Bye")

    deleted = await interactions.delete_post(post.post_id, alice)

    assert deleted.post_id == post.post_id
    assert await _reload(repository, post.post_id) is None
    assert await repository.find_post_comments(post.post_id) == []
    # Comments outlive their post unless configured otherwise
    assert await repository.find_by_id(EntityKind.COMMENT, comment.comment_id) is not None


async def test_delete_post_can_remove_its_comments(repository, alice, bob):
    engine = InteractionEngine(repository, delete_post_comments=True)
    post = await engine.create_post(alice, "Temp", "Gone soon", "Rome")
    _, comment = await engine.add_comment(post.post_id, bob, "Bye")

    await engine.delete_post(post.post_id, alice)
    assert await repository.find_by_id(EntityKind.COMMENT, comment.comment_id) is None


async def test_delete_post_by_other_user_is_forbidden(interactions, repository, post, bob):
    with pytest.raises(Forbidden):
        await interactions.delete_post(post.post_id, bob)
    assert await _reload(repository, post.post_id) is not None


async def test_create_post_requires_existing_user(interactions):
    with pytest.raises(NotFound):
        await interactions.create_post("ghost", "Boo", "Nobody here", "Nowhere")
