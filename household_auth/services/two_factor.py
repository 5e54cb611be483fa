"""
Two-factor gate.

Decides whether a primary authentication needs a second factor, issues and
checks the second-factor code, and manages trusted devices and 2FA setup.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from household_auth.core.config import settings
from household_auth.core.encryption import CodeCipher
from household_auth.logging import get_logger
from household_auth.models.trusted_device import TrustedDevice
from household_auth.models.user import User
from household_auth.services.codes import CodePurpose, CodeStore
from household_auth.services.delivery import EMAIL, SMS, CodeDelivery

logger = get_logger(__name__)

TWO_FA_METHODS = (EMAIL, SMS)


class TwoFactorGate:

    def __init__(self, db: AsyncSession, cipher: CodeCipher, delivery: CodeDelivery):
        self.db = db
        self.delivery = delivery
        self.codes = CodeStore(db, cipher, CodePurpose.SECOND_FACTOR)

    # ==================== Login gate ====================

    async def requires_second_factor(self, user: User, device_token: Optional[str] = None) -> bool:
        """
        True when the caller must complete a second factor.

        A valid trusted device for this user short-circuits the gate without
        generating or sending anything. Otherwise a fresh code is issued,
        committed and delivered.
        """
        if not user.two_fa_enabled:
            return False

        if device_token and await self.is_trusted_device(user, device_token):
            logger.info("Second factor skipped for trusted device", user_id=user.id)
            return False

        await self.issue_code(user)
        return True

    async def issue_code(self, user: User) -> str:
        """Generate, persist and deliver a second-factor code. Returns the channel."""
        code = await self.codes.issue(user)
        return await self.delivery.send(user, code, CodePurpose.SECOND_FACTOR, user.two_fa_method)

    async def verify(self, user: User, code: str) -> None:
        """Check a second-factor code; consumes it on success."""
        await self.codes.verify(user, code)
        await self.db.commit()

    # ==================== Trusted devices ====================

    async def _find_device(self, user_id: int, token: str) -> Optional[TrustedDevice]:
        result = await self.db.execute(
            select(TrustedDevice).where(
                TrustedDevice.user_id == user_id,
                TrustedDevice.token == token,
                TrustedDevice.expires_at > datetime.now(timezone.utc),
            )
        )
        return result.scalar_one_or_none()

    async def is_trusted_device(self, user: User, token: str) -> bool:
        device = await self._find_device(user.id, token)
        if device is None:
            return False
        device.last_used_at = datetime.now(timezone.utc)
        await self.db.commit()
        return True

    async def check_device(self, user_id: int, token: str) -> bool:
        """Read-only validity check, does not touch last_used_at."""
        return await self._find_device(user_id, token) is not None

    async def trust_device(self, user: User, user_agent: Optional[str] = None) -> TrustedDevice:
        now = datetime.now(timezone.utc)
        device = TrustedDevice(
            user_id=user.id,
            token=secrets.token_urlsafe(48),
            user_agent=(user_agent or "")[:512] or None,
            expires_at=now + timedelta(days=settings.TRUSTED_DEVICE_DAYS),
            last_used_at=now,
            created_at=now,
        )
        self.db.add(device)
        await self.db.commit()
        await self.db.refresh(device)
        logger.info("Trusted device registered", user_id=user.id, device_id=device.id)
        return device

    async def list_devices(self, user: User) -> List[TrustedDevice]:
        result = await self.db.execute(
            select(TrustedDevice)
            .where(TrustedDevice.user_id == user.id, TrustedDevice.expires_at > datetime.now(timezone.utc))
            .order_by(TrustedDevice.last_used_at.desc())
        )
        return list(result.scalars().all())

    async def forget_device(self, user: User, device_id: int) -> None:
        result = await self.db.execute(
            select(TrustedDevice).where(TrustedDevice.id == device_id, TrustedDevice.user_id == user.id)
        )
        device = result.scalar_one_or_none()
        if device is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Device not found")
        await self.db.delete(device)
        await self.db.commit()

    async def forget_all_devices(self, user: User) -> int:
        result = await self.db.execute(delete(TrustedDevice).where(TrustedDevice.user_id == user.id))
        await self.db.commit()
        return result.rowcount or 0

    # ==================== Setup ====================

    async def configure(
        self,
        user: User,
        enabled: bool,
        method: str = EMAIL,
        phone_number: Optional[str] = None,
    ) -> Optional[str]:
        """
        Start enabling 2FA (a setup code is sent, 2FA stays off until confirmed)
        or disable it.

        Returns:
            The delivery channel of the setup code, or None when disabling.
        """
        if not enabled:
            await self.disable(user)
            return None

        if method not in TWO_FA_METHODS:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid 2FA method")

        if method == SMS:
            phone = phone_number or user.phone_number
            if not phone:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Phone number is required for SMS two-factor authentication",
                )
            if phone != user.phone_number:
                taken = await self.db.execute(
                    select(User.id).where(User.phone_number == phone, User.id != user.id)
                )
                if taken.scalar_one_or_none() is not None:
                    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Phone number already in use")
                user.phone_number = phone

        user.two_fa_method = method
        user.two_fa_pending = True
        user.two_fa_enabled = False
        channel = await self.issue_code(user)
        logger.info("2FA setup started", user_id=user.id, method=method)
        return channel

    async def confirm_setup(self, user: User, code: str) -> None:
        if not user.two_fa_pending:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No two-factor setup in progress")
        await self.codes.verify(user, code)
        user.two_fa_enabled = True
        user.two_fa_pending = False
        await self.db.commit()
        logger.great("2FA ativado", user_id=user.id, method=user.two_fa_method)

    async def cancel_setup(self, user: User) -> None:
        user.two_fa_pending = False
        await self.codes.clear(user, commit=False)
        await self.db.commit()

    async def disable(self, user: User) -> None:
        """Turn 2FA off, forget every trusted device and end all sessions."""
        user.two_fa_enabled = False
        user.two_fa_pending = False
        await self.codes.clear(user, commit=False)
        await self.db.execute(delete(TrustedDevice).where(TrustedDevice.user_id == user.id))
        await self.db.execute(
            update(User)
            .where(User.id == user.id)
            .values(token_version=User.token_version + 1)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(user)
        logger.audit("2FA disabled", user_id=user.id, token_version=user.token_version)
