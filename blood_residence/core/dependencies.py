"""FastAPI dependencies for authentication and authorization."""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import AppRole, Profile
from .database import get_session
from .permissions import Capability, coerce_role, resolve_capabilities
from .security import decode_access_token

logger = logging.getLogger(__name__)

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser:
    """The authenticated profile and what it may do.

    Built once per request and passed explicitly to whatever needs the
    signed-in user.
    """

    def __init__(self, profile: Profile, email: str | None = None):
        self.profile = profile
        self.email = email
        self.capabilities = resolve_capabilities(profile.role, profile.custom_role)

    @property
    def id(self) -> UUID:
        return self.profile.id

    @property
    def username(self) -> str:
        return self.profile.username

    @property
    def role(self) -> AppRole:
        return coerce_role(self.profile.role)

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities


async def load_user(session: AsyncSession, token: str) -> CurrentUser | None:
    """Resolve an access token to a CurrentUser, or None."""
    payload = decode_access_token(token)
    if payload is None:
        return None

    result = await session.execute(
        select(Profile).where(Profile.id == payload.user_id)
    )
    profile = result.scalar_one_or_none()
    if profile is None:
        logger.warning(f"Access token for unknown profile {payload.sub}")
        return None

    return CurrentUser(profile=profile, email=payload.email)


async def get_current_user(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CurrentUser:
    """Dependency to get the current authenticated user."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await load_user(session, credentials.credentials)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def require_capability(capability: Capability):
    """Dependency factory that rejects users lacking `capability`."""

    async def _check_capability(
        current_user: Annotated[CurrentUser, Depends(get_current_user)],
    ) -> CurrentUser:
        if not current_user.can(capability):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing capability: {capability.value}",
            )
        return current_user

    return _check_capability


# Type aliases for cleaner dependency injection
CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
SessionDep = Annotated[AsyncSession, Depends(get_session)]
