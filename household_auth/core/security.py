"""
Session token issuing and validation.

Two token types share one signing key and are told apart by the "typ" claim:
- "session": full access, default lifetime one day, carries the token version.
- "pending-2fa": issued after primary authentication while a second factor is
  outstanding; lives for a few minutes and is refused by protected routes.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from household_auth.core.config import settings
from household_auth.core.errors import Expired, InvalidToken

ALGORITHM = settings.JWT_ALGORITHM

SESSION_TOKEN = "session"
PENDING_TOKEN = "pending-2fa"

# Claims set by the issuer; callers cannot override them through extra claims.
RESERVED_CLAIMS = {"sub", "iat", "exp", "jti", "typ", "tv"}


def get_secret_key() -> str:
    if not settings.JWT_SECRET:
        raise ValueError("JWT_SECRET must be set")
    return settings.JWT_SECRET


def _encode(
    user_id: Any,
    token_type: str,
    expires_delta: timedelta,
    claims: Optional[Dict[str, Any]] = None,
    token_version: Optional[int] = None,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {k: v for k, v in (claims or {}).items() if k not in RESERVED_CLAIMS}
    payload.update({
        "sub": str(user_id),
        "iat": now,
        "exp": now + expires_delta,
        "jti": str(uuid.uuid4()),
        "typ": token_type,
    })
    if token_version is not None:
        payload["tv"] = token_version
    return jwt.encode(payload, get_secret_key(), algorithm=ALGORITHM)


def create_session_token(
    user_id: Any,
    claims: Optional[Dict[str, Any]] = None,
    token_version: int = 1,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Issue a full session token.

    Args:
        user_id: Subject of the token
        claims: Extra claims (email, twoFAEnabled, ...) copied into the payload
        token_version: User's current token version; bumping it on the user
            invalidates every session issued before
        expires_delta: Lifetime, defaults to SESSION_TOKEN_EXPIRE_MINUTES
    """
    return _encode(
        user_id,
        SESSION_TOKEN,
        expires_delta or timedelta(minutes=settings.SESSION_TOKEN_EXPIRE_MINUTES),
        claims,
        token_version=token_version,
    )


def create_pending_token(user_id: Any, email: str, expires_delta: Optional[timedelta] = None) -> str:
    """Issue the short-lived token that only unlocks the second-factor step."""
    return _encode(
        user_id,
        PENDING_TOKEN,
        expires_delta or timedelta(minutes=settings.PENDING_TOKEN_EXPIRE_MINUTES),
        {"email": email},
    )


def decode_token(token: str, expected_type: Optional[str] = SESSION_TOKEN) -> Dict[str, Any]:
    """
    Verify signature and expiry and return the claims.

    Raises:
        Expired: signature is valid but the token is past "exp"
        InvalidToken: malformed, bad signature, or not of expected_type
    """
    try:
        claims = jwt.decode(token, get_secret_key(), algorithms=[ALGORITHM])
    except ExpiredSignatureError as e:
        raise Expired() from e
    except JWTError as e:
        raise InvalidToken() from e

    if not claims.get("sub") or not claims.get("jti"):
        raise InvalidToken()
    if expected_type is not None and claims.get("typ") != expected_type:
        raise InvalidToken("Token type not accepted here")
    return claims


def token_expiry(claims: Dict[str, Any]) -> datetime:
    return datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc)
