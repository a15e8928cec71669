import uuid

import jwt
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from plotshare.config import settings
from plotshare.models.enums import STAFF_ROLES, UserRole
from plotshare.models.user import User

logger = structlog.get_logger()


class InvalidToken(Exception):
    """Raised when a bearer token from the identity provider cannot be trusted."""


def decode_identity_token(token: str) -> uuid.UUID:
    """Verify an identity-provider access token and return its subject."""
    try:
        payload = jwt.decode(
            token,
            settings.IDENTITY_JWT_SECRET,
            algorithms=[settings.IDENTITY_JWT_ALGORITHM],
            issuer=settings.IDENTITY_JWT_ISSUER,
            options={"verify_iss": True, "require": ["sub", "exp"]},
        )
    except jwt.PyJWTError as exc:
        raise InvalidToken(str(exc)) from None

    # Only accept access tokens, never refresh tokens
    if payload.get("type", "access") != "access":
        raise InvalidToken("not an access token")
    try:
        return uuid.UUID(payload["sub"])
    except (ValueError, TypeError):
        raise InvalidToken("malformed subject") from None


class IdentityProvider:
    """Answers identity questions about the mirrored ``users`` table."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self._staff_cache: dict[uuid.UUID, bool] = {}

    async def get_active_user(self, user_id: uuid.UUID) -> User | None:
        result = await self.db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if user is None or not user.is_active:
            return None
        return user

    async def has_staff_capability(self, user_id: uuid.UUID) -> bool:
        if user_id not in self._staff_cache:
            user = await self.get_active_user(user_id)
            self._staff_cache[user_id] = user is not None and UserRole(user.role) in STAFF_ROLES
        return self._staff_cache[user_id]

    async def get_users(self, user_ids) -> dict[uuid.UUID, User]:
        ids = {i for i in user_ids if i is not None}
        if not ids:
            return {}
        result = await self.db.execute(select(User).where(User.id.in_(ids)))
        return {user.id: user for user in result.scalars().all()}
