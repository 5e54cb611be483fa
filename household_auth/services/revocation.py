"""
Token revocation ledger.

Session tokens are stateless JWTs; a token is killed before its natural
expiry either individually (its jti lands in revoked_tokens) or wholesale by
bumping the user's token_version.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from household_auth.core.security import token_expiry
from household_auth.logging import get_logger
from household_auth.models.revoked_token import RevokedToken
from household_auth.models.trusted_device import TrustedDevice
from household_auth.models.user import User

logger = get_logger(__name__)


class RevocationLedger:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def revoke(self, claims: Dict[str, Any], user_id: Optional[int] = None) -> None:
        """
        Record a decoded token as revoked. Revoking the same jti twice is a no-op.
        """
        jti = claims["jti"]
        if await self.is_revoked(jti):
            return

        self.db.add(RevokedToken(
            jti=jti,
            user_id=user_id if user_id is not None else int(claims["sub"]),
            expires_at=token_expiry(claims),
        ))
        try:
            await self.db.commit()
        except IntegrityError:
            # revogado em paralelo por outra requisição
            await self.db.rollback()

    async def is_revoked(self, jti: str) -> bool:
        result = await self.db.execute(select(RevokedToken.id).where(RevokedToken.jti == jti))
        return result.scalar_one_or_none() is not None

    async def revoke_all(self, user: User) -> int:
        """Invalidate every session issued to the user so far."""
        result = await self.db.execute(
            update(User)
            .where(User.id == user.id)
            .values(token_version=User.token_version + 1)
            .returning(User.token_version)
            .execution_options(synchronize_session=False)
        )
        new_version = result.scalar_one()
        await self.db.commit()
        await self.db.refresh(user)
        logger.audit("All sessions revoked", user_id=user.id, token_version=new_version)
        return new_version

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete ledger rows whose token would have expired anyway."""
        now = now or datetime.now(timezone.utc)
        result = await self.db.execute(delete(RevokedToken).where(RevokedToken.expires_at <= now))
        await self.db.commit()
        return result.rowcount or 0

    async def purge_expired_devices(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        result = await self.db.execute(delete(TrustedDevice).where(TrustedDevice.expires_at <= now))
        await self.db.commit()
        return result.rowcount or 0
