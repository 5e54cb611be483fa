"""
Google OAuth login.

/google stores a one-time state + nonce in Redis and redirects to Google.
/google/callback validates the state, exchanges the code, resolves the user
and redirects the browser to the frontend with either a session token or a
pending-2FA token. Clients sending Accept: application/json get the JSON body
instead of the redirect.
"""
from typing import Optional
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from household_auth.api.dependencies import (
    get_cipher,
    get_db,
    get_delivery,
    get_device_token,
    get_oauth_adapter,
    get_redis,
)
from household_auth.api.endpoints.auth import session_response
from household_auth.core.config import settings
from household_auth.core.encryption import CodeCipher
from household_auth.core.errors import AuthError, DeliveryFailed, OAuthStateMismatch
from household_auth.core.oauth import (
    GoogleOAuthAdapter,
    generate_oauth_nonce,
    generate_oauth_state,
    pop_oauth_state,
    store_oauth_state,
)
from household_auth.logging import get_logger
from household_auth.schemas.auth import PendingTwoFactorResponse
from household_auth.services.delivery import CodeDelivery
from household_auth.services.login import AuthOutcome
from household_auth.services.oauth_login import OAuthLoginResult, complete_oauth_login

logger = get_logger(__name__)

router = APIRouter()


def _wants_json(request: Request) -> bool:
    return "application/json" in request.headers.get("accept", "")


def frontend_redirect(path: str, params: dict) -> RedirectResponse:
    return RedirectResponse(
        f"{settings.FRONTEND_URL.rstrip('/')}/{path}?{urlencode(params)}",
        status_code=302,
    )


def callback_redirect(result: OAuthLoginResult) -> RedirectResponse:
    if result.requires_two_factor:
        params = {
            "tempToken": result.temp_token,
            "requiresTwoFactor": "true",
            "twoFAMethod": result.two_fa_method,
            "provider": "google",
        }
    else:
        params = {"token": result.token, "provider": "google"}
        if result.is_new_user:
            params["isNewUser"] = "true"
    return frontend_redirect("callback", params)


@router.get("/google")
async def google_login(
    redis: Redis = Depends(get_redis),
    adapter: GoogleOAuthAdapter = Depends(get_oauth_adapter),
):
    state = generate_oauth_state()
    nonce = generate_oauth_nonce()
    await store_oauth_state(redis, state, nonce)
    return RedirectResponse(adapter.get_authorize_url(state, nonce), status_code=302)


@router.get("/google/callback")
async def google_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis),
    cipher: CodeCipher = Depends(get_cipher),
    delivery: CodeDelivery = Depends(get_delivery),
    adapter: GoogleOAuthAdapter = Depends(get_oauth_adapter),
    device_token: Optional[str] = Depends(get_device_token),
):
    try:
        if error:
            raise OAuthStateMismatch(f"Google sign-in was not completed: {error}")
        oauth_state = await pop_oauth_state(redis, state)
        if not code:
            raise OAuthStateMismatch("Missing authorization code")

        try:
            profile = await adapter.fetch_profile(code, oauth_state["nonce"])
        except httpx.HTTPError as e:
            logger.error("Google token exchange failed", exc_info=True)
            raise OAuthStateMismatch("Could not complete Google sign-in") from e

        result = await complete_oauth_login(db, cipher, delivery, profile, device_token)
    except AuthError as e:
        if _wants_json(request):
            raise
        logger.warning("Google sign-in failed", code=e.code)
        if isinstance(e, DeliveryFailed) and "tempToken" in e.extra:
            return frontend_redirect("callback", {
                "tempToken": e.extra["tempToken"],
                "requiresTwoFactor": "true",
                "twoFAMethod": e.extra["twoFAMethod"],
                "provider": "google",
                "error": e.code,
            })
        return frontend_redirect("login", {"error": e.code, "message": e.detail})

    logger.info(
        "User logged in with Google",
        user_id=result.user.id,
        new_user=result.is_new_user,
        linked=result.linked_existing_account,
    )

    if _wants_json(request):
        if result.requires_two_factor:
            return PendingTwoFactorResponse(temp_token=result.temp_token, two_fa_method=result.two_fa_method)
        return session_response(AuthOutcome(user=result.user, token=result.token, is_new_user=result.is_new_user))
    return callback_redirect(result)
