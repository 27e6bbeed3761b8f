"""Security utilities: access token verification and shared secrets."""

import hmac
import logging
from uuid import UUID

import jwt
from pydantic import BaseModel

from .config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class AccessTokenPayload(BaseModel):
    """Claims of an access token issued by the hosted auth provider."""

    sub: str
    email: str | None = None
    role: str | None = None
    exp: int | None = None

    @property
    def user_id(self) -> UUID:
        return UUID(self.sub)


def decode_access_token(token: str) -> AccessTokenPayload | None:
    """Verify and decode an auth provider access token.

    Returns None if the token is invalid, expired, or verification is not
    configured.
    """
    if not settings.auth_enabled:
        logger.warning("SUPABASE_JWT_SECRET not set, rejecting access token")
        return None

    try:
        payload = jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
        )
        token_payload = AccessTokenPayload(**payload)
        # The subject must be a profile id
        token_payload.user_id
        return token_payload
    except jwt.ExpiredSignatureError:
        logger.info("Access token expired")
        return None
    except (jwt.PyJWTError, ValueError) as e:
        logger.warning(f"Access token rejected: {e}")
        return None


def verify_bot_secret(provided: str | None) -> bool:
    """Constant-time comparison of the bot gateway shared secret.

    Always False when no secret is configured.
    """
    expected = settings.telegram_bot_secret
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())
