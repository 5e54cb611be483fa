"""
Authentication orchestrator for one-time-code logins.

Every path ends in one of three outcomes: a session token, a pending-2FA
token, or a code sent out of band.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from household_auth.core.encryption import CodeCipher
from household_auth.core.errors import DeliveryFailed, InvalidCode, InvalidToken
from household_auth.core.security import PENDING_TOKEN, create_pending_token, create_session_token, decode_token
from household_auth.logging import get_logger
from household_auth.models.trusted_device import TrustedDevice
from household_auth.models.user import User
from household_auth.services.codes import CodePurpose, CodeStore
from household_auth.services.delivery import EMAIL, CodeDelivery
from household_auth.services.two_factor import TwoFactorGate

logger = get_logger(__name__)


@dataclass
class CodeRequestResult:
    sent: bool
    is_registration: bool = False
    channel: Optional[str] = None


@dataclass
class AuthOutcome:
    """Either a session (token set) or a pending second factor (temp_token set)."""
    user: User
    token: Optional[str] = None
    temp_token: Optional[str] = None
    two_fa_method: Optional[str] = None
    is_new_user: bool = False
    trusted_device: Optional[TrustedDevice] = None

    @property
    def requires_two_factor(self) -> bool:
        return self.temp_token is not None


def issue_session(user: User) -> str:
    return create_session_token(
        user.id,
        claims={
            "email": user.email,
            "twoFAEnabled": bool(user.two_fa_enabled),
            "twoFAVerified": bool(user.two_fa_enabled),
        },
        token_version=user.token_version or 1,
    )


async def run_second_factor_gate(gate: TwoFactorGate, user: User, device_token: Optional[str]) -> bool:
    """
    Run the two-factor gate. When the second-factor code is stored but could
    not be sent, the DeliveryFailed raised carries a pending token so the
    client can ask for a resend instead of starting over.
    """
    try:
        return await gate.requires_second_factor(user, device_token)
    except DeliveryFailed as e:
        e.extra.update(
            tempToken=create_pending_token(user.id, user.email),
            requiresTwoFactor=True,
            twoFAMethod=user.two_fa_method or EMAIL,
        )
        raise


async def finish_primary_auth(
    gate: TwoFactorGate,
    user: User,
    device_token: Optional[str],
    is_new_user: bool = False,
) -> AuthOutcome:
    """Hand a user who passed the first factor to the two-factor gate."""
    if await run_second_factor_gate(gate, user, device_token):
        return AuthOutcome(
            user=user,
            temp_token=create_pending_token(user.id, user.email),
            two_fa_method=user.two_fa_method or EMAIL,
            is_new_user=is_new_user,
        )
    return AuthOutcome(user=user, token=issue_session(user), is_new_user=is_new_user)


class LoginService:

    def __init__(self, db: AsyncSession, cipher: CodeCipher, delivery: CodeDelivery):
        self.db = db
        self.delivery = delivery
        self.codes = CodeStore(db, cipher, CodePurpose.LOGIN)
        self.gate = TwoFactorGate(db, cipher, delivery)

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email.strip().lower()))
        return result.scalar_one_or_none()

    async def get_by_phone(self, phone: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.phone_number == phone.strip()))
        return result.scalar_one_or_none()

    async def get_by_id(self, user_id: int) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def _send_login_code(self, user: User, preferred: Optional[str]) -> str:
        code = await self.codes.issue(user)
        return await self.delivery.send(user, code, CodePurpose.LOGIN, preferred)

    async def request_login_code(
        self,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        name: Optional[str] = None,
    ) -> CodeRequestResult:
        """
        Send a login code, registering the user first when an unknown email
        comes with a display name. Unknown identities get the same answer as
        known ones, minus the delivery.
        """
        if email:
            user = await self.get_by_email(email)
        elif phone:
            user = await self.get_by_phone(phone)
        else:
            raise ValueError("email or phone is required")

        is_registration = user is None and bool(email) and bool(name)
        if is_registration:
            user = User(
                email=email.strip().lower(),
                name=name.strip(),
                preferred_login_method=EMAIL,
            )
            self.db.add(user)
            await self.db.commit()
            await self.db.refresh(user)
            logger.great("Novo usuário registrado", user_id=user.id)

        if user is None:
            logger.info("Login code requested for unknown identity")
            return CodeRequestResult(sent=False)

        preferred = "sms" if phone and not email else user.preferred_login_method
        channel = await self._send_login_code(user, preferred)
        return CodeRequestResult(sent=True, is_registration=is_registration, channel=channel)

    async def resend_login_code(self, email: str) -> CodeRequestResult:
        user = await self.get_by_email(email)
        if user is None:
            return CodeRequestResult(sent=False)
        channel = await self._send_login_code(user, user.preferred_login_method)
        return CodeRequestResult(sent=True, channel=channel)

    async def invalidate_login_code(self, email: str) -> None:
        user = await self.get_by_email(email)
        if user is not None:
            await self.codes.clear(user)

    async def verify_login_code(self, email: str, code: str, device_token: Optional[str] = None) -> AuthOutcome:
        """
        Raises:
            InvalidCode, CodeExpired, TooManyAttempts: see CodeStore.verify
            DeliveryFailed: a second factor is required but could not be sent;
                carries tempToken for /2fa/resend-code
        """
        user = await self.get_by_email(email)
        if user is None:
            raise InvalidCode("Invalid email or code")

        await self.codes.verify(user, code)
        is_new_user = not user.email_verified
        user.email_verified = True
        await self.db.commit()

        return await finish_primary_auth(self.gate, user, device_token, is_new_user=is_new_user)

    async def _pending_user(self, temp_token: str) -> User:
        claims = decode_token(temp_token, expected_type=PENDING_TOKEN)
        user = await self.get_by_id(int(claims["sub"]))
        if user is None or not user.two_fa_enabled:
            raise InvalidToken()
        return user

    async def verify_second_factor(
        self,
        temp_token: str,
        code: str,
        trust_device: bool = False,
        user_agent: Optional[str] = None,
    ) -> AuthOutcome:
        user = await self._pending_user(temp_token)
        await self.gate.verify(user, code)

        device = None
        if trust_device:
            device = await self.gate.trust_device(user, user_agent)

        logger.info("Second factor verified", user_id=user.id, trusted=bool(device))
        return AuthOutcome(user=user, token=issue_session(user), trusted_device=device)

    async def resend_second_factor(self, temp_token: str) -> str:
        user = await self._pending_user(temp_token)
        return await self.gate.issue_code(user)
