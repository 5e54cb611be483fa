"""
    Authentication Endpoints
    One-time-code login, session lifecycle and trusted-device management for the
    household budget application.
    Endpoints:
    - /login-code: Sends a login code by email or SMS; registers the user when a name is supplied.
    - /resend-login-code: Replaces the outstanding login code with a fresh one.
    - /invalidate-login-code: Drops the outstanding login code (user cancelled the login).
    - /verify-login-code: Checks the code and issues a session token, or a pending token when 2FA is on.
    - /logout: Revokes the presented session token.
    - /logout-all: Invalidates every session of the current user.
    - /me: Returns the current authenticated user.
    - /trusted-devices: Lists and forgets devices that skip the second factor.
    - /trusted-device-check: Tells whether a device token is still trusted for a user.
    Security Features:
    - Rate limiting per identity and per client IP.
    - Uniform responses for unknown identities (anti-enumeration).
    - Codes encrypted at rest, compared in constant time, three attempts per code.
    - Revocation ledger keyed by jti plus token versioning for logout everywhere.
"""
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.security import HTTPAuthorizationCredentials
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from household_auth.api.dependencies import (
    bearer_scheme,
    get_cipher,
    get_current_user,
    get_db,
    get_delivery,
    get_device_token,
    get_redis,
)
from household_auth.core.config import settings
from household_auth.core.encryption import CodeCipher
from household_auth.core.errors import InvalidToken, RateLimited
from household_auth.core.security import SESSION_TOKEN, decode_token
from household_auth.helpers.getters import get_client_ip, isDebugMode
from household_auth.helpers.rate_limit import allow
from household_auth.logging import get_logger
from household_auth.models.user import User
from household_auth.schemas.auth import (
    CodeSentResponse,
    EmailRequest,
    LoginCodeRequest,
    MessageResponse,
    PendingTwoFactorResponse,
    SessionResponse,
    TrustedDeviceCheckResponse,
    TrustedDeviceOut,
    VerifyLoginCodeRequest,
)
from household_auth.schemas.user import SessionUserOut, UserOut
from household_auth.services.delivery import CodeDelivery
from household_auth.services.login import AuthOutcome, LoginService
from household_auth.services.revocation import RevocationLedger
from household_auth.services.two_factor import TwoFactorGate

logger = get_logger(__name__)

router = APIRouter()

CODE_SENT_MESSAGE = "If an account with this email exists, a login code has been sent"
CODE_RESENT_MESSAGE = "If an account with this email exists, a new login code has been sent"
REGISTERED_MESSAGE = "Account created successfully. Please verify with the code sent to your email."


async def enforce_rate_limit(redis: Redis, request: Request, scope: str, identity: str, limit: int, window: int):
    if not await allow(redis, scope, identity, get_client_ip(request), max_attempts=limit, window_sec=window):
        logger.warning("Rate limit exceeded", scope=scope, ip=get_client_ip(request))
        raise RateLimited()


def session_response(outcome: AuthOutcome) -> SessionResponse:
    user_out = SessionUserOut.model_validate(outcome.user)
    user_out.two_fa_verified = bool(outcome.user.two_fa_enabled)
    user_out.is_new_user = outcome.is_new_user
    return SessionResponse(
        token=outcome.token,
        user=user_out,
        device_token=outcome.trusted_device.token if outcome.trusted_device else None,
    )


def pending_response(outcome: AuthOutcome) -> PendingTwoFactorResponse:
    return PendingTwoFactorResponse(temp_token=outcome.temp_token, two_fa_method=outcome.two_fa_method)


# ==================== One-time code login ====================

@router.post("/login-code", response_model=CodeSentResponse, response_model_exclude_none=True)
async def request_login_code(
    payload: LoginCodeRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis),
    cipher: CodeCipher = Depends(get_cipher),
    delivery: CodeDelivery = Depends(get_delivery),
):
    """
    Envia um código de login de 6 dígitos.

    Se o email não existe e um nome foi informado, a conta é criada (registro).
    Identidades desconhecidas recebem a mesma resposta, sem envio.
    """
    identity = payload.email or payload.phone
    await enforce_rate_limit(
        redis, request, "login-code", identity, settings.LOGIN_CODE_RATE_LIMIT, settings.LOGIN_CODE_RATE_WINDOW
    )

    result = await LoginService(db, cipher, delivery).request_login_code(
        email=payload.email, phone=payload.phone, name=payload.name
    )
    return CodeSentResponse(
        message=REGISTERED_MESSAGE if result.is_registration else CODE_SENT_MESSAGE,
        is_registration=result.is_registration,
        method=result.channel if isDebugMode() else None,
    )


@router.post("/resend-login-code", response_model=CodeSentResponse, response_model_exclude_none=True)
async def resend_login_code(
    payload: EmailRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis),
    cipher: CodeCipher = Depends(get_cipher),
    delivery: CodeDelivery = Depends(get_delivery),
):
    await enforce_rate_limit(
        redis, request, "login-code", payload.email, settings.LOGIN_CODE_RATE_LIMIT, settings.LOGIN_CODE_RATE_WINDOW
    )
    result = await LoginService(db, cipher, delivery).resend_login_code(payload.email)
    return CodeSentResponse(message=CODE_RESENT_MESSAGE, method=result.channel if isDebugMode() else None)


@router.post("/invalidate-login-code", response_model=MessageResponse)
async def invalidate_login_code(
    payload: EmailRequest,
    db: AsyncSession = Depends(get_db),
    cipher: CodeCipher = Depends(get_cipher),
    delivery: CodeDelivery = Depends(get_delivery),
):
    await LoginService(db, cipher, delivery).invalidate_login_code(payload.email)
    return MessageResponse(message="Login code invalidated successfully")


@router.post("/verify-login-code", response_model=Union[SessionResponse, PendingTwoFactorResponse])
async def verify_login_code(
    payload: VerifyLoginCodeRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis),
    cipher: CodeCipher = Depends(get_cipher),
    delivery: CodeDelivery = Depends(get_delivery),
    device_token: Optional[str] = Depends(get_device_token),
):
    await enforce_rate_limit(
        redis, request, "verify", payload.email, settings.VERIFY_RATE_LIMIT, settings.VERIFY_RATE_WINDOW
    )
    outcome = await LoginService(db, cipher, delivery).verify_login_code(
        payload.email, payload.code.strip(), device_token
    )
    if outcome.requires_two_factor:
        return pending_response(outcome)
    logger.info("User logged in with one-time code", user_id=outcome.user.id)
    return session_response(outcome)


# ==================== Session ====================

@router.get("/me", response_model=UserOut)
async def read_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.post("/logout", response_model=MessageResponse)
async def logout(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
):
    if credentials is None:
        raise InvalidToken("Not authenticated")
    claims = decode_token(credentials.credentials, expected_type=SESSION_TOKEN)
    await RevocationLedger(db).revoke(claims)
    logger.info("User logged out", user_id=claims["sub"])
    return MessageResponse(message="Logout successful")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(current_user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    await RevocationLedger(db).revoke_all(current_user)
    return MessageResponse(message="Logged out from all sessions")


# ==================== Trusted devices ====================

@router.get("/trusted-devices", response_model=List[TrustedDeviceOut])
async def list_trusted_devices(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cipher: CodeCipher = Depends(get_cipher),
    delivery: CodeDelivery = Depends(get_delivery),
    device_token: Optional[str] = Depends(get_device_token),
):
    devices = await TwoFactorGate(db, cipher, delivery).list_devices(current_user)
    out = []
    for device in devices:
        item = TrustedDeviceOut.model_validate(device)
        item.current = bool(device_token) and device.token == device_token
        out.append(item)
    return out


@router.delete("/trusted-devices/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
async def forget_trusted_device(
    device_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cipher: CodeCipher = Depends(get_cipher),
    delivery: CodeDelivery = Depends(get_delivery),
):
    await TwoFactorGate(db, cipher, delivery).forget_device(current_user, device_id)


@router.delete("/trusted-devices", response_model=MessageResponse)
async def forget_all_trusted_devices(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cipher: CodeCipher = Depends(get_cipher),
    delivery: CodeDelivery = Depends(get_delivery),
):
    removed = await TwoFactorGate(db, cipher, delivery).forget_all_devices(current_user)
    return MessageResponse(message=f"{removed} trusted device(s) removed")


@router.get("/trusted-device-check", response_model=TrustedDeviceCheckResponse)
async def trusted_device_check(
    user_id: int = Query(..., alias="userId"),
    device_token: str = Query(..., alias="deviceToken", min_length=1),
    db: AsyncSession = Depends(get_db),
    cipher: CodeCipher = Depends(get_cipher),
    delivery: CodeDelivery = Depends(get_delivery),
):
    valid = await TwoFactorGate(db, cipher, delivery).check_device(user_id, device_token)
    return TrustedDeviceCheckResponse(valid=valid)
