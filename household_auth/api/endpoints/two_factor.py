"""
Two-factor authentication endpoints: completing a pending login, and setting
up or turning off 2FA for the signed-in user.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, Response
from redis.asyncio import Redis
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from household_auth.api.dependencies import get_cipher, get_current_user, get_db, get_delivery, get_redis
from household_auth.api.endpoints.auth import enforce_rate_limit, session_response
from household_auth.core.config import settings
from household_auth.core.encryption import CodeCipher
from household_auth.core.security import PENDING_TOKEN, decode_token
from household_auth.helpers.getters import isDebugMode
from household_auth.logging import get_logger
from household_auth.models.trusted_device import TrustedDevice
from household_auth.models.user import User
from household_auth.schemas.auth import (
    CodeResentResponse,
    MessageResponse,
    SessionResponse,
    TempTokenRequest,
    TwoFAConfigureRequest,
    TwoFAConfigureResponse,
    TwoFAConfirmRequest,
    TwoFAStatusResponse,
    TwoFAVerifyRequest,
)
from household_auth.schemas.user import UserOut
from household_auth.services.delivery import SMS, CodeDelivery
from household_auth.services.login import LoginService, issue_session
from household_auth.services.two_factor import TwoFactorGate

logger = get_logger(__name__)

router = APIRouter()


def set_trusted_device_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.TRUSTED_DEVICE_COOKIE,
        value=token,
        max_age=settings.TRUSTED_DEVICE_DAYS * 24 * 60 * 60,
        httponly=True,
        secure=not isDebugMode(),
        samesite="lax",
        path="/",
        domain=settings.COOKIE_DOMAIN if not isDebugMode() else None,
    )


def sent_via(channel: str) -> str:
    return f"Verification code sent via {'SMS' if channel == SMS else 'email'}"


@router.post("/verify", response_model=SessionResponse)
async def verify_second_factor(
    payload: TwoFAVerifyRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis),
    cipher: CodeCipher = Depends(get_cipher),
    delivery: CodeDelivery = Depends(get_delivery),
):
    """
    Completa o login com o código do segundo fator.

    Com trustDevice=true o dispositivo fica confiável por TRUSTED_DEVICE_DAYS dias:
    o token vai no cookie trusted_device e no corpo (deviceToken).
    """
    claims = decode_token(payload.temp_token, expected_type=PENDING_TOKEN)
    await enforce_rate_limit(
        redis, request, "2fa-verify", claims["sub"], settings.VERIFY_RATE_LIMIT, settings.VERIFY_RATE_WINDOW
    )

    outcome = await LoginService(db, cipher, delivery).verify_second_factor(
        payload.temp_token,
        payload.code.strip(),
        trust_device=payload.trust_device,
        user_agent=request.headers.get("user-agent"),
    )
    if outcome.trusted_device is not None:
        set_trusted_device_cookie(response, outcome.trusted_device.token)
    return session_response(outcome)


@router.post("/resend-code", response_model=CodeResentResponse)
async def resend_second_factor(
    payload: TempTokenRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis),
    cipher: CodeCipher = Depends(get_cipher),
    delivery: CodeDelivery = Depends(get_delivery),
):
    claims = decode_token(payload.temp_token, expected_type=PENDING_TOKEN)
    await enforce_rate_limit(
        redis, request, "2fa-resend", claims["sub"], settings.LOGIN_CODE_RATE_LIMIT, settings.LOGIN_CODE_RATE_WINDOW
    )
    channel = await LoginService(db, cipher, delivery).resend_second_factor(payload.temp_token)
    return CodeResentResponse(message=sent_via(channel), method=channel)


@router.post("/configure", response_model=TwoFAConfigureResponse, response_model_exclude_none=True)
async def configure_two_factor(
    payload: TwoFAConfigureRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cipher: CodeCipher = Depends(get_cipher),
    delivery: CodeDelivery = Depends(get_delivery),
):
    """
    Inicia a ativação do 2FA (envia código de confirmação) ou desativa.

    Desativar remove os dispositivos confiáveis e encerra todas as sessões;
    a resposta traz um token novo para a sessão atual.
    """
    channel = await TwoFactorGate(db, cipher, delivery).configure(
        current_user, payload.enabled, payload.method, payload.phone_number
    )
    if not payload.enabled:
        return TwoFAConfigureResponse(
            requires_verification=False,
            user=UserOut.model_validate(current_user),
            token=issue_session(current_user),
        )
    return TwoFAConfigureResponse(
        requires_verification=True,
        method=channel,
        user=UserOut.model_validate(current_user),
    )


@router.post("/confirm", response_model=UserOut)
async def confirm_two_factor(
    payload: TwoFAConfirmRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cipher: CodeCipher = Depends(get_cipher),
    delivery: CodeDelivery = Depends(get_delivery),
):
    await TwoFactorGate(db, cipher, delivery).confirm_setup(current_user, payload.code.strip())
    return current_user


@router.post("/cancel-setup", response_model=MessageResponse)
async def cancel_two_factor_setup(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cipher: CodeCipher = Depends(get_cipher),
    delivery: CodeDelivery = Depends(get_delivery),
):
    await TwoFactorGate(db, cipher, delivery).cancel_setup(current_user)
    return MessageResponse(message="2FA setup cancelled successfully")


@router.get("/status", response_model=TwoFAStatusResponse)
async def two_factor_status(current_user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(func.count(TrustedDevice.id)).where(
            TrustedDevice.user_id == current_user.id,
            TrustedDevice.expires_at > datetime.now(timezone.utc),
        )
    )
    return TwoFAStatusResponse(
        enabled=current_user.two_fa_enabled,
        pending=current_user.two_fa_pending,
        method=current_user.two_fa_method or "email",
        phone_number=current_user.phone_number,
        trusted_devices=result.scalar_one(),
    )
