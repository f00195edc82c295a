"""
Registration, login and profile management.

Users act only on their own account. A request naming another user id gets
the same NotFound as a missing user, so account ids cannot be probed.
"""
import logging
from typing import Optional

from opentelemetry import trace

from app.core.passwords import hash_password, verify_password
from app.core.tokens import TokenService
from app.errors import Conflict, InvalidCredentials, NotFound, ValidationFailed
from app.repository.base import EntityKind, FeedRepository
from app.schemas import UserRecord
from app.telemetry import AUTH_FAILURES_TOTAL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_PROFILE_FIELDS = ("username", "first_name", "last_name", "email", "password")


class AccountService:
    def __init__(
        self,
        repository: FeedRepository,
        tokens: TokenService,
        bcrypt_rounds: int = 12,
    ) -> None:
        self._repo = repository
        self._tokens = tokens
        self._bcrypt_rounds = bcrypt_rounds

    async def register(
        self,
        username: str,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> UserRecord:
        with tracer.start_as_current_span("register_user"):
            email = email.lower()
            if await self._repo.find_user_by_username(username):
                raise Conflict("Username already taken")
            if await self._repo.find_user_by_email(email):
                raise Conflict("User already exists")

            user = await self._repo.insert(
                EntityKind.USER,
                username=username,
                email=email,
                first_name=first_name,
                last_name=last_name,
                password_hash=await hash_password(password, self._bcrypt_rounds),
            )
            logger.info("Created user %s (id=%s)", user.username, user.user_id)
            return user

    async def login(self, email: str, password: str) -> str:
        """Exchange credentials for a bearer token."""
        user = await self._repo.find_user_by_email(email.lower())
        # Same failure for unknown email and wrong password
        if user is None or not await verify_password(password, user.password_hash):
            AUTH_FAILURES_TOTAL.labels(reason="credentials").inc()
            raise InvalidCredentials()
        logger.info("User %s logged in", user.user_id)
        return self._tokens.issue(user.user_id)

    async def reauthenticate(self, user_id: str, actor_id: str) -> str:
        """Issue a fresh token to an already authenticated user."""
        await self._get_own_user(user_id, actor_id)
        return self._tokens.issue(user_id)

    async def logout(self, user_id: str, actor_id: str, token: str) -> bool:
        await self._get_own_user(user_id, actor_id)
        return await self._tokens.invalidate(token)

    async def get_user(self, user_id: str) -> UserRecord:
        user = await self._repo.find_by_id(EntityKind.USER, user_id)
        if user is None:
            raise NotFound("No user found with the queried id")
        return user

    async def list_users(self) -> list[UserRecord]:
        return await self._repo.find_users()

    async def update_profile(self, user_id: str, actor_id: str, **fields: Optional[str]) -> UserRecord:
        changes = {k: v for k, v in fields.items() if k in _PROFILE_FIELDS and v is not None}
        if not changes:
            raise ValidationFailed("No values to update")
        requested = sorted(changes)

        user = await self._get_own_user(user_id, actor_id)

        if "email" in changes:
            changes["email"] = changes["email"].lower()
            other = await self._repo.find_user_by_email(changes["email"])
            if other is not None and other.user_id != user.user_id:
                raise Conflict("User already exists")
        if "username" in changes:
            other = await self._repo.find_user_by_username(changes["username"])
            if other is not None and other.user_id != user.user_id:
                raise Conflict("Username already taken")
        if "password" in changes:
            changes["password_hash"] = await hash_password(
                changes.pop("password"), self._bcrypt_rounds
            )

        updated = await self._repo.update_fields(EntityKind.USER, user_id, **changes)
        if updated is None:
            raise NotFound("User not found")
        logger.info("Updated user %s (%s)", user_id, ", ".join(requested))
        return updated

    async def _get_own_user(self, user_id: str, actor_id: str) -> UserRecord:
        if user_id != actor_id:
            raise NotFound("User not found")
        user = await self._repo.find_by_id(EntityKind.USER, user_id)
        if user is None:
            raise NotFound("User not found")
        return user
