"""
Bearer token issuing, verification and revocation.

Tokens are HS256 JWTs signed with a process-wide secret:

  { "sub": <user_id>, "iat": <issued>, "exp": <issued + ttl>, "jti": <uuid4> }

Validity is decided by signature and expiry alone, so there is no session
store. Revocation (logout) parks the token's ``jti`` in a denylist whose
entries expire together with the token.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from jose import ExpiredSignatureError, JWTError, jwt

from app.errors import InvalidToken, TokenExpired
from app.telemetry import AUTH_FAILURES_TOTAL

logger = logging.getLogger(__name__)


class Denylist(Protocol):
    async def add(self, jti: str, ttl_seconds: int) -> None: ...

    async def contains(self, jti: str) -> bool: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        ttl_seconds: int = 3600,
        denylist: Optional[Denylist] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self.ttl_seconds = ttl_seconds
        self._denylist = denylist
        self._clock = clock

    def issue(self, user_id: str) -> str:
        """Sign a token for ``user_id`` valid for ``ttl_seconds``."""
        issued_at = self._clock()
        claims = {
            "sub": user_id,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + timedelta(seconds=self.ttl_seconds)).timestamp()),
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    async def verify(self, token: str) -> str:
        """
        Return the user id embedded in ``token``.

        Raises:
            TokenExpired: the validity window has elapsed
            InvalidToken: bad signature, malformed token, or revoked
        """
        claims = self._decode(token, verify_exp=True)

        if self._denylist is not None and await self._denylist.contains(claims["jti"]):
            AUTH_FAILURES_TOTAL.labels(reason="revoked").inc()
            raise InvalidToken("Token has been revoked")

        return claims["sub"]

    async def invalidate(self, token: str) -> bool:
        """
        Revoke ``token`` until it would have expired on its own.

        Returns False when there is nothing to do: the token has already
        expired, or no denylist is configured.
        """
        claims = self._decode(token, verify_exp=False)
        remaining = claims["exp"] - int(self._clock().timestamp())
        if remaining <= 0:
            return False
        if self._denylist is None:
            logger.warning("No token denylist configured; logout cannot revoke tokens")
            return False

        await self._denylist.add(claims["jti"], remaining)
        logger.info("Token %s revoked for user %s", claims["jti"], claims["sub"])
        return True

    def _decode(self, token: str, verify_exp: bool) -> dict:
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"verify_exp": verify_exp},
            )
        except ExpiredSignatureError:
            AUTH_FAILURES_TOTAL.labels(reason="expired").inc()
            raise TokenExpired()
        except JWTError as exc:
            AUTH_FAILURES_TOTAL.labels(reason="invalid").inc()
            logger.warning("JWT validation failed: %s", exc)
            raise InvalidToken()

        if not claims.get("sub") or not claims.get("jti") or "exp" not in claims:
            AUTH_FAILURES_TOTAL.labels(reason="invalid").inc()
            logger.warning("JWT token missing required claims")
            raise InvalidToken("Invalid token: missing claims")
        return claims
