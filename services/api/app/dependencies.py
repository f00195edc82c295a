"""
FastAPI dependency providers for the core services.

The repository and token service are process-wide singletons; engines are
cheap per-request wrappers around them. Tests swap implementations through
``app.dependency_overrides``.
"""
from typing import Annotated, Optional

from fastapi import Depends

from app.clients.redis_client import RedisDenylist
from app.config import settings
from app.core.accounts import AccountService
from app.core.interactions import InteractionEngine
from app.core.lifecycle import AccountLifecycleManager
from app.core.tokens import TokenService
from app.database import AsyncSessionLocal
from app.repository.base import FeedRepository
from app.repository.sql import SqlFeedRepository

_repository: Optional[FeedRepository] = None
_token_service: Optional[TokenService] = None


def get_repository() -> FeedRepository:
    global _repository
    if _repository is None:
        _repository = SqlFeedRepository(AsyncSessionLocal)
    return _repository


def get_token_service() -> TokenService:
    global _token_service
    if _token_service is None:
        _token_service = TokenService(
            secret=settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            ttl_seconds=settings.token_ttl_seconds,
            denylist=RedisDenylist(),
        )
    return _token_service


RepositoryDep = Annotated[FeedRepository, Depends(get_repository)]
TokenServiceDep = Annotated[TokenService, Depends(get_token_service)]


def get_interaction_engine(repository: RepositoryDep) -> InteractionEngine:
    return InteractionEngine(repository, delete_post_comments=settings.delete_post_comments)


def get_account_service(repository: RepositoryDep, tokens: TokenServiceDep) -> AccountService:
    return AccountService(repository, tokens, bcrypt_rounds=settings.bcrypt_rounds)


def get_lifecycle_manager(repository: RepositoryDep) -> AccountLifecycleManager:
    return AccountLifecycleManager(
        repository, delete_post_comments=settings.delete_post_comments
    )


EngineDep = Annotated[InteractionEngine, Depends(get_interaction_engine)]
AccountServiceDep = Annotated[AccountService, Depends(get_account_service)]
LifecycleDep = Annotated[AccountLifecycleManager, Depends(get_lifecycle_manager)]
