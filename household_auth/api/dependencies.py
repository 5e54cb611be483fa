from typing import Optional

import redis.asyncio as aioredis
from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from household_auth.core.config import settings
from household_auth.core.encryption import CodeCipher, get_code_cipher
from household_auth.core.errors import InvalidToken, Revoked
from household_auth.core.oauth import GoogleOAuthAdapter
from household_auth.core.security import SESSION_TOKEN, decode_token
from household_auth.models.user import User
from household_auth.services.delivery import CodeDelivery
from household_auth.services.revocation import RevocationLedger

bearer_scheme = HTTPBearer(
    auto_error=False,
    description="Session token issued by /verify-login-code, /2fa/verify or the Google callback",
)


async def get_db(request: Request):
    async with request.app.state.db.session() as session:
        yield session


async def get_redis():
    redis = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        yield redis
    finally:
        await redis.aclose()


def get_cipher() -> CodeCipher:
    return get_code_cipher()


def get_delivery() -> CodeDelivery:
    return CodeDelivery()


def get_oauth_adapter() -> GoogleOAuthAdapter:
    return GoogleOAuthAdapter()


def get_device_token(
    request: Request,
    x_device_token: Optional[str] = Header(None, alias="X-Device-Token"),
) -> Optional[str]:
    """Trusted-device token from the cookie, or the header for non-browser clients."""
    return request.cookies.get(settings.TRUSTED_DEVICE_COOKIE) or x_device_token or None


async def get_token_claims(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Decoded claims of a live session token (signature, expiry, type and ledger checked)."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise InvalidToken("Not authenticated")

    claims = decode_token(credentials.credentials, expected_type=SESSION_TOKEN)
    if await RevocationLedger(db).is_revoked(claims["jti"]):
        raise Revoked()
    return claims


async def get_current_user(
    request: Request,
    claims: dict = Depends(get_token_claims),
    db: AsyncSession = Depends(get_db),
) -> User:
    try:
        user_id = int(claims["sub"])
    except (TypeError, ValueError) as e:
        raise InvalidToken() from e

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise InvalidToken()
    if int(claims.get("tv") or 1) != int(user.token_version or 1):
        raise Revoked("Session is no longer valid")

    request.state.user = user
    return user
