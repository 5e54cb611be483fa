"""Google OAuth/OIDC adapter and one-time state storage."""

import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from jose import jwk, jwt
from jose.exceptions import JWTError

from household_auth.core.config import settings
from household_auth.core.errors import InvalidToken, OAuthStateMismatch
from household_auth.logging import get_logger

logger = get_logger(__name__)

GOOGLE = "google"

# JWKS cache em memória com TTL
_jwks_cache: Dict[str, Dict[str, Any]] = {}


@dataclass
class OAuthProfile:
    """Identity asserted by the provider after a successful callback."""
    provider: str
    provider_account_id: str
    email: Optional[str]
    email_verified: bool = False
    name: Optional[str] = None
    picture: Optional[str] = None
    refresh_token: Optional[str] = None
    access_token_expires_at: Optional[datetime] = None


class GoogleOAuthAdapter:

    authorize_endpoint = "https://accounts.google.com/o/oauth2/v2/auth"
    token_endpoint = "https://oauth2.googleapis.com/token"
    jwks_uri = "https://www.googleapis.com/oauth2/v3/certs"
    issuers = ("https://accounts.google.com", "accounts.google.com")

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
    ):
        self.client_id = client_id or settings.GOOGLE_CLIENT_ID
        self.client_secret = client_secret or settings.GOOGLE_CLIENT_SECRET
        self.redirect_uri = redirect_uri or settings.GOOGLE_REDIRECT_URI

    def get_authorize_url(self, state: str, nonce: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": "openid email profile",
            "state": state,
            "nonce": nonce,
            "access_type": "offline",
            "prompt": "select_account",
        }
        return f"{self.authorize_endpoint}?{urlencode(params)}"

    async def exchange_code_for_tokens(self, code: str) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.post(
                self.token_endpoint,
                data={
                    "code": code,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "redirect_uri": self.redirect_uri,
                    "grant_type": "authorization_code",
                },
            )
            response.raise_for_status()
            return response.json()

    async def validate_id_token(self, id_token: str, nonce: str) -> Dict[str, Any]:
        """
        Verify the id_token against Google's JWKS.

        Raises:
            InvalidToken: unknown key, bad signature/audience/issuer or nonce mismatch
        """
        jwks = await self._get_jwks()
        try:
            kid = jwt.get_unverified_header(id_token).get("kid")
        except JWTError as e:
            raise InvalidToken("Invalid id_token") from e

        key = next((k for k in jwks.get("keys", []) if k.get("kid") == kid), None)
        if key is None:
            raise InvalidToken("Signing key not found in JWKS")

        try:
            payload = jwt.decode(
                id_token,
                jwk.construct(key),
                algorithms=["RS256"],
                audience=self.client_id,
                options={"verify_iss": False, "verify_at_hash": False},
            )
        except JWTError as e:
            raise InvalidToken("Invalid id_token") from e

        if payload.get("iss") not in self.issuers:
            raise InvalidToken("Invalid id_token issuer")
        if payload.get("nonce") != nonce:
            raise InvalidToken("Nonce mismatch")
        return payload

    async def fetch_profile(self, code: str, nonce: str) -> OAuthProfile:
        tokens = await self.exchange_code_for_tokens(code)
        claims = await self.validate_id_token(tokens["id_token"], nonce)

        expires_at = None
        if tokens.get("expires_in"):
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(tokens["expires_in"]))

        email_verified = claims.get("email_verified")
        if isinstance(email_verified, str):
            email_verified = email_verified.lower() == "true"

        return OAuthProfile(
            provider=GOOGLE,
            provider_account_id=str(claims["sub"]),
            email=claims.get("email"),
            email_verified=bool(email_verified),
            name=claims.get("name"),
            picture=claims.get("picture"),
            refresh_token=tokens.get("refresh_token"),
            access_token_expires_at=expires_at,
        )

    async def _get_jwks(self) -> Dict[str, Any]:
        cache_key = "jwks:google"
        now = datetime.now(timezone.utc).timestamp()

        cached = _jwks_cache.get(cache_key)
        if cached and now < cached["expires_at"]:
            return cached["jwks"]

        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(self.jwks_uri)
            response.raise_for_status()
            jwks = response.json()

        _jwks_cache[cache_key] = {"jwks": jwks, "expires_at": now + settings.JWKS_CACHE_TTL_SECONDS}
        return jwks


def generate_oauth_state() -> str:
    return secrets.token_urlsafe(32)


def generate_oauth_nonce() -> str:
    return secrets.token_urlsafe(32)


async def store_oauth_state(redis, state: str, nonce: str) -> None:
    data = {
        "nonce": nonce,
        "provider": GOOGLE,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    await redis.setex(f"oauth:state:{state}", settings.OAUTH_STATE_TTL, json.dumps(data))


async def pop_oauth_state(redis, state: Optional[str]) -> Dict[str, Any]:
    """
    Fetch and delete the state (one-time use).

    Raises:
        OAuthStateMismatch: unknown, expired or already consumed state
    """
    if not state:
        raise OAuthStateMismatch()
    key = f"oauth:state:{state}"
    data = await redis.get(key)
    if data is None:
        raise OAuthStateMismatch()
    removed = await redis.delete(key)
    if not removed:
        # consumido por outra requisição entre o get e o delete
        raise OAuthStateMismatch()
    return json.loads(data)
