"""
Bearer-token authentication for routes.

The verified user id is returned as an explicit ``Actor`` value that
handlers pass on to the core; nothing is stashed on the request.

Usage:
    @router.post("/{post_id}/like")
    async def like_post(post_id: str, actor: ActorDep, engine: EngineDep):
        return await engine.like(post_id, actor.user_id)
"""
from typing import Annotated, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict

from app.dependencies import TokenServiceDep
from app.errors import InvalidToken
from app.telemetry import AUTH_FAILURES_TOTAL

# Missing credentials are reported by get_current_actor, not by FastAPI
security = HTTPBearer(auto_error=False)


class Actor(BaseModel):
    """Authenticated caller: the user id and the token it presented."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    token: str


async def get_current_actor(
    tokens: TokenServiceDep,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Actor:
    if credentials is None:
        AUTH_FAILURES_TOTAL.labels(reason="missing").inc()
        raise InvalidToken("Access denied")
    user_id = await tokens.verify(credentials.credentials)
    return Actor(user_id=user_id, token=credentials.credentials)


ActorDep = Annotated[Actor, Depends(get_current_actor)]
