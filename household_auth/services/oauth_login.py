"""Find-or-create of local users from an OAuth identity."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from household_auth.core.config import settings
from household_auth.core.encryption import CodeCipher
from household_auth.core.errors import AccountLinkingDisabled, MissingEmailClaim
from household_auth.core.oauth import OAuthProfile
from household_auth.core.security import create_pending_token
from household_auth.logging import get_logger
from household_auth.models.oauth_account import OAuthAccount
from household_auth.models.user import User
from household_auth.services.delivery import EMAIL, CodeDelivery
from household_auth.services.login import issue_session, run_second_factor_gate
from household_auth.services.two_factor import TwoFactorGate

logger = get_logger(__name__)


@dataclass
class OAuthLoginResult:
    user: User
    is_new_user: bool
    requires_two_factor: bool
    linked_existing_account: bool
    token: Optional[str] = None
    temp_token: Optional[str] = None

    @property
    def two_fa_method(self) -> str:
        return self.user.two_fa_method or EMAIL


class OAuthLoginService:

    def __init__(self, db: AsyncSession, cipher: CodeCipher, delivery: CodeDelivery):
        self.db = db
        self.cipher = cipher
        self.gate = TwoFactorGate(db, cipher, delivery)

    async def _linked_user(self, profile: OAuthProfile) -> Optional[OAuthAccount]:
        result = await self.db.execute(
            select(OAuthAccount).where(
                OAuthAccount.provider == profile.provider,
                OAuthAccount.provider_account_id == profile.provider_account_id,
            )
        )
        return result.scalar_one_or_none()

    def _can_link(self, user: User, profile: OAuthProfile) -> bool:
        return bool(profile.email_verified and settings.OAUTH_LINK_BY_EMAIL and user.allow_account_linking)

    def _link(self, user: User, profile: OAuthProfile) -> OAuthAccount:
        account = OAuthAccount(
            user_id=user.id,
            provider=profile.provider,
            provider_account_id=profile.provider_account_id,
        )
        self.db.add(account)
        return account

    def _refresh_account(self, account: OAuthAccount, profile: OAuthProfile) -> None:
        if profile.refresh_token:
            account.refresh_token = self.cipher.encrypt(profile.refresh_token)
        if profile.access_token_expires_at:
            account.access_token_expires_at = profile.access_token_expires_at
        account.last_login_at = datetime.now(timezone.utc)

    async def complete(self, profile: OAuthProfile, device_token: Optional[str] = None) -> OAuthLoginResult:
        """
        Resolve the provider identity to a local user and run the two-factor gate.

        Raises:
            MissingEmailClaim: the provider did not return an email; nothing is created
            AccountLinkingDisabled: the email belongs to a user that cannot be linked
            DeliveryFailed: a second factor is required but could not be sent;
                carries tempToken for /2fa/resend-code
        """
        if not profile.email:
            logger.warning("OAuth profile without email", provider=profile.provider)
            raise MissingEmailClaim()

        email = profile.email.strip().lower()
        is_new_user = False
        linked = False

        account = await self._linked_user(profile)
        if account is not None:
            result = await self.db.execute(select(User).where(User.id == account.user_id))
            user = result.scalar_one()
        else:
            result = await self.db.execute(select(User).where(User.email == email))
            user = result.scalar_one_or_none()

            if user is not None:
                if not self._can_link(user, profile):
                    logger.audit(
                        "OAuth account link refused",
                        user_id=user.id,
                        provider=profile.provider,
                        email_verified=profile.email_verified,
                        link_by_email=settings.OAUTH_LINK_BY_EMAIL,
                        allow_account_linking=user.allow_account_linking,
                    )
                    raise AccountLinkingDisabled(accountLinkingDisabled=True)
                account = self._link(user, profile)
                linked = True
            else:
                user = User(
                    email=email,
                    name=profile.name or email.split("@")[0],
                    image=profile.picture,
                    email_verified=bool(profile.email_verified),
                    preferred_login_method=EMAIL,
                )
                self.db.add(user)
                await self.db.flush()
                account = self._link(user, profile)
                is_new_user = True

        self._refresh_account(account, profile)
        if profile.picture and not user.image:
            user.image = profile.picture
        if profile.email_verified and not user.email_verified:
            user.email_verified = True
        await self.db.commit()
        await self.db.refresh(user)

        if linked:
            logger.audit(
                "OAuth account linked by email",
                user_id=user.id,
                provider=profile.provider,
                provider_account_id=profile.provider_account_id,
            )
        if is_new_user:
            logger.great("Novo usuário via OAuth", user_id=user.id, provider=profile.provider)

        requires_two_factor = await run_second_factor_gate(self.gate, user, device_token)
        outcome = OAuthLoginResult(
            user=user,
            is_new_user=is_new_user,
            requires_two_factor=requires_two_factor,
            linked_existing_account=linked,
        )
        if requires_two_factor:
            outcome.temp_token = create_pending_token(user.id, user.email)
        else:
            outcome.token = issue_session(user)
        return outcome


async def complete_oauth_login(
    db: AsyncSession,
    cipher: CodeCipher,
    delivery: CodeDelivery,
    profile: OAuthProfile,
    device_token: Optional[str] = None,
) -> OAuthLoginResult:
    return await OAuthLoginService(db, cipher, delivery).complete(profile, device_token)
