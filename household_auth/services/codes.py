"""
Purpose-tagged storage and verification of one-time codes.

The login code and the second-factor code live in separate column groups on
the user row so that a 2FA verification can never race with an unrelated
login-code regeneration.
"""

import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from household_auth.core.codes import generate_code
from household_auth.core.config import settings
from household_auth.core.encryption import CodeCipher
from household_auth.core.errors import CodeExpired, InvalidCode, TooManyAttempts
from household_auth.logging import get_logger
from household_auth.models.user import User

logger = get_logger(__name__)


class CodePurpose(str, Enum):
    LOGIN = "login"
    SECOND_FACTOR = "second_factor"


@dataclass(frozen=True)
class _CodeColumns:
    code: str
    expires_at: str
    attempts: str
    ttl_setting: str


_COLUMNS = {
    CodePurpose.LOGIN: _CodeColumns(
        "login_code", "login_code_expires_at", "login_code_attempts", "LOGIN_CODE_EXPIRE_MINUTES"
    ),
    CodePurpose.SECOND_FACTOR: _CodeColumns(
        "two_fa_code", "two_fa_code_expires_at", "two_fa_attempts", "TWO_FA_CODE_EXPIRE_MINUTES"
    ),
}


class CodeStore:
    """Issue, check and clear codes for one purpose."""

    def __init__(self, db: AsyncSession, cipher: CodeCipher, purpose: CodePurpose):
        self.db = db
        self.cipher = cipher
        self.purpose = purpose
        self.columns = _COLUMNS[purpose]

    @property
    def max_attempts(self) -> int:
        return settings.MAX_CODE_ATTEMPTS

    async def issue(self, user: User) -> str:
        """
        Generate a fresh code, overwrite any outstanding one and reset the
        attempt counter. Commits before returning so the code survives a
        failed delivery.

        Returns:
            The plaintext code, to be handed to the delivery channel only.
        """
        plaintext, encrypted = generate_code(self.cipher)
        ttl = timedelta(minutes=getattr(settings, self.columns.ttl_setting))
        setattr(user, self.columns.code, encrypted)
        setattr(user, self.columns.expires_at, datetime.now(timezone.utc) + ttl)
        setattr(user, self.columns.attempts, 0)
        await self.db.commit()
        return plaintext

    async def clear(self, user: User, commit: bool = True) -> None:
        setattr(user, self.columns.code, None)
        setattr(user, self.columns.expires_at, None)
        setattr(user, self.columns.attempts, 0)
        if commit:
            await self.db.commit()

    def has_outstanding_code(self, user: User) -> bool:
        return getattr(user, self.columns.code) is not None

    async def verify(self, user: User, submitted: str) -> None:
        """
        Check a submitted code. On success the code is consumed (cleared) but
        not committed, so the caller can fold it into its own transaction.

        Raises:
            TooManyAttempts: budget already spent, or spent by this attempt
            CodeExpired: outstanding code is past its expiry
            InvalidCode: no outstanding code, or the code does not match
        """
        attempts = getattr(user, self.columns.attempts) or 0
        stored = getattr(user, self.columns.code)

        if attempts >= self.max_attempts:
            raise TooManyAttempts(maxAttemptsReached=True)

        if stored is None:
            raise InvalidCode("No verification code has been requested or it has been used")

        expires_at = getattr(user, self.columns.expires_at)
        if expires_at is None or expires_at <= datetime.now(timezone.utc):
            await self.clear(user)
            raise CodeExpired()

        expected = self.cipher.decrypt(stored)
        if expected is None:
            logger.error(
                "Stored code could not be decrypted; was ENCRYPTION_KEY rotated?",
                exc_info=False,
                user_id=user.id,
                purpose=self.purpose.value,
            )
            await self.clear(user)
            raise InvalidCode("No verification code has been requested or it has been used")

        if hmac.compare_digest(expected.encode(), (submitted or "").strip().encode()):
            await self._consume(user, stored)
            return

        new_count = await self._increment_attempts(user)
        if new_count >= self.max_attempts:
            setattr(user, self.columns.code, None)
            setattr(user, self.columns.expires_at, None)
            await self.db.commit()
            logger.warning(
                "Verification attempts exhausted",
                user_id=user.id,
                purpose=self.purpose.value,
                attempts=new_count,
            )
            raise TooManyAttempts(maxAttemptsReached=True)

        remaining = self.max_attempts - new_count
        raise InvalidCode(
            f"Invalid verification code. You have {remaining} attempts remaining.",
            attemptsRemaining=remaining,
        )

    async def _consume(self, user: User, stored: str) -> None:
        """
        Clear the code only if the row still holds the ciphertext that was
        checked and the budget is not spent. A concurrent lockout or a
        concurrent successful verify leaves nothing to consume.
        """
        code_column = getattr(User, self.columns.code)
        attempts_column = getattr(User, self.columns.attempts)
        result = await self.db.execute(
            update(User)
            .where(
                User.id == user.id,
                code_column == stored,
                attempts_column < self.max_attempts,
            )
            .values({self.columns.code: None, self.columns.expires_at: None, self.columns.attempts: 0})
            .returning(User.id)
            .execution_options(synchronize_session=False)
        )
        if result.scalar_one_or_none() is not None:
            set_committed_value(user, self.columns.code, None)
            set_committed_value(user, self.columns.expires_at, None)
            set_committed_value(user, self.columns.attempts, 0)
            return

        current = await self.db.execute(
            select(code_column, attempts_column).where(User.id == user.id)
        )
        current_code, current_attempts = current.one()
        set_committed_value(user, self.columns.code, current_code)
        set_committed_value(user, self.columns.attempts, current_attempts)
        logger.warning(
            "Code already consumed or locked by a concurrent request",
            user_id=user.id,
            purpose=self.purpose.value,
        )
        if (current_attempts or 0) >= self.max_attempts:
            raise TooManyAttempts(maxAttemptsReached=True)
        raise InvalidCode("No verification code has been requested or it has been used")

    async def _increment_attempts(self, user: User) -> int:
        """Atomic increment-and-read of the attempt counter for this user row."""
        column = getattr(User, self.columns.attempts)
        result = await self.db.execute(
            update(User)
            .where(User.id == user.id)
            .values({self.columns.attempts: column + 1})
            .returning(column)
            .execution_options(synchronize_session=False)
        )
        new_count = result.scalar_one()
        await self.db.commit()
        set_committed_value(user, self.columns.attempts, new_count)
        return new_count
