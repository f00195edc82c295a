"""
User management endpoints:
  POST   /users/register       — create an account
  POST   /users/login          — exchange credentials for a bearer token
  POST   /users/{id}/re-auth   — fresh token for the authenticated user
  POST   /users/{id}/logout    — revoke the presented token
  GET    /users/               — list users
  GET    /users/{id}           — fetch a user profile
  PATCH  /users/{id}           — update own profile / password
  DELETE /users/{id}           — delete own account (cleanup runs afterwards)
"""
import logging

from fastapi import APIRouter, Response, status

from app.auth import ActorDep
from app.dependencies import AccountServiceDep, LifecycleDep, TokenServiceDep
from app.schemas import (
    LoginRequest,
    MessageResponse,
    TokenResponse,
    UserCreate,
    UserResponse,
    UserUpdate,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register_user(body: UserCreate, accounts: AccountServiceDep):
    user = await accounts.register(
        username=body.username,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    return UserResponse.model_validate(user)


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    response: Response,
    accounts: AccountServiceDep,
    tokens: TokenServiceDep,
):
    token = await accounts.login(body.email, body.password)
    response.headers["auth-token"] = token
    return TokenResponse(access_token=token, expires_in=tokens.ttl_seconds)


@router.post("/{user_id}/re-auth", response_model=TokenResponse)
async def reauthenticate(
    user_id: str,
    actor: ActorDep,
    response: Response,
    accounts: AccountServiceDep,
    tokens: TokenServiceDep,
):
    token = await accounts.reauthenticate(user_id, actor.user_id)
    response.headers["auth-token"] = token
    return TokenResponse(access_token=token, expires_in=tokens.ttl_seconds)


@router.post("/{user_id}/logout", response_model=MessageResponse)
async def logout(user_id: str, actor: ActorDep, accounts: AccountServiceDep):
    await accounts.logout(user_id, actor.user_id, actor.token)
    return MessageResponse(message="You have been successfully logged out")


@router.get("/", response_model=list[UserResponse])
async def list_users(actor: ActorDep, accounts: AccountServiceDep):
    return [UserResponse.model_validate(u) for u in await accounts.list_users()]


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: str, actor: ActorDep, accounts: AccountServiceDep):
    return UserResponse.model_validate(await accounts.get_user(user_id))


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str, body: UserUpdate, actor: ActorDep, accounts: AccountServiceDep
):
    user = await accounts.update_profile(
        user_id, actor.user_id, **body.model_dump(exclude_none=True)
    )
    return UserResponse.model_validate(user)


@router.delete("/{user_id}", response_model=UserResponse, status_code=status.HTTP_202_ACCEPTED)
async def delete_user(
    user_id: str,
    actor: ActorDep,
    lifecycle: LifecycleDep,
    tokens: TokenServiceDep,
):
    """
    Delete the caller's account.

    Answers 202: the user row is gone, but posts, comments and likes are
    removed by a background cleanup that may still be running.
    The presented token is revoked as well.
    """
    user = await lifecycle.delete_account(user_id, actor.user_id)
    try:
        await tokens.invalidate(actor.token)
    except Exception as exc:
        # The account is already gone; the token dies with its TTL
        logger.warning("Could not revoke token of deleted user %s: %s", user_id, exc)
    return UserResponse.model_validate(user)
