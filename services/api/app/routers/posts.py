"""
Post and interaction endpoints:
  GET    /posts/                             — wall: most liked first, then oldest
  GET    /posts/user/{user_id}               — one user's posts, same order
  GET    /posts/{id}                         — fetch a single post
  GET    /posts/{id}/comments                — comments in reference order
  POST   /posts/                             — create a post
  PATCH  /posts/{id}                         — edit own post
  DELETE /posts/{id}                         — delete own post
  POST   /posts/{id}/like                    — like a post
  POST   /posts/{id}/unlike                  — remove own like
  POST   /posts/{id}/comments                — comment on a post
  PATCH  /posts/{id}/comments/{comment_id}   — edit own comment
  DELETE /posts/{id}/comments/{comment_id}   — delete own comment
"""
import logging

from fastapi import APIRouter, status

from app.auth import ActorDep
from app.dependencies import EngineDep, RepositoryDep
from app.errors import NotFound
from app.repository.base import EntityKind
from app.schemas import (
    CommentCreate,
    CommentCreatedResponse,
    CommentResponse,
    PostCreate,
    PostResponse,
    PostUpdate,
)

logger = logging.getLogger(__name__)
router = APIRouter()


# ─────────────────────────── Reads ────────────────────────────────────────

@router.get("/", response_model=list[PostResponse])
async def get_wall(actor: ActorDep, repository: RepositoryDep):
    return [PostResponse.from_record(p) for p in await repository.find_posts()]


@router.get("/user/{user_id}", response_model=list[PostResponse])
async def get_user_posts(user_id: str, actor: ActorDep, repository: RepositoryDep):
    posts = await repository.find_posts(owner_id=user_id)
    return [PostResponse.from_record(p) for p in posts]


@router.get("/{post_id}", response_model=PostResponse)
async def get_post(post_id: str, actor: ActorDep, repository: RepositoryDep):
    post = await repository.find_by_id(EntityKind.POST, post_id)
    if post is None:
        raise NotFound("Post not found")
    return PostResponse.from_record(post)


@router.get("/{post_id}/comments", response_model=list[CommentResponse])
async def get_post_comments(post_id: str, actor: ActorDep, repository: RepositoryDep):
    if await repository.find_owner_of(EntityKind.POST, post_id) is None:
        raise NotFound("Post not found")
    comments = await repository.find_post_comments(post_id)
    return [CommentResponse.model_validate(c) for c in comments]


# ─────────────────────────── Posts ────────────────────────────────────────

@router.post("/", response_model=PostResponse, status_code=status.HTTP_201_CREATED)
async def create_post(body: PostCreate, actor: ActorDep, engine: EngineDep):
    post = await engine.create_post(
        actor.user_id,
        title=body.title,
        description=body.description,
        location=body.location,
    )
    return PostResponse.from_record(post)


@router.patch("/{post_id}", response_model=PostResponse)
async def edit_post(post_id: str, body: PostUpdate, actor: ActorDep, engine: EngineDep):
    post = await engine.edit_post(post_id, actor.user_id, **body.model_dump(exclude_none=True))
    return PostResponse.from_record(post)


@router.delete("/{post_id}", response_model=PostResponse)
async def delete_post(post_id: str, actor: ActorDep, engine: EngineDep):
    return PostResponse.from_record(await engine.delete_post(post_id, actor.user_id))


# ─────────────────────────── Likes ────────────────────────────────────────

@router.post("/{post_id}/like", response_model=PostResponse)
async def like_post(post_id: str, actor: ActorDep, engine: EngineDep):
    return PostResponse.from_record(await engine.like(post_id, actor.user_id))


@router.post("/{post_id}/unlike", response_model=PostResponse)
async def unlike_post(post_id: str, actor: ActorDep, engine: EngineDep):
    return PostResponse.from_record(await engine.unlike(post_id, actor.user_id))


# ─────────────────────────── Comments ─────────────────────────────────────

@router.post(
    "/{post_id}/comments",
    response_model=CommentCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(post_id: str, body: CommentCreate, actor: ActorDep, engine: EngineDep):
    post, comment = await engine.add_comment(post_id, actor.user_id, body.description)
    return CommentCreatedResponse(
        post=PostResponse.from_record(post),
        comment=CommentResponse.model_validate(comment),
    )


@router.patch("/{post_id}/comments/{comment_id}", response_model=CommentResponse)
async def edit_comment(
    post_id: str,
    comment_id: str,
    body: CommentCreate,
    actor: ActorDep,
    engine: EngineDep,
):
    comment = await engine.edit_comment(post_id, comment_id, actor.user_id, body.description)
    return CommentResponse.model_validate(comment)


@router.delete("/{post_id}/comments/{comment_id}", response_model=PostResponse)
async def delete_comment(post_id: str, comment_id: str, actor: ActorDep, engine: EngineDep):
    post = await engine.delete_comment(post_id, comment_id, actor.user_id)
    return PostResponse.from_record(post)
