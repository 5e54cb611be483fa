from sqlalchemy import Column, ForeignKey, Integer, String
from household_auth.db.base import Base
from household_auth.db.types import UTCDateTime, utcnow


class RevokedToken(Base):
    """
    Denylist entry for a session token invalidated before its natural expiry.

    Keyed by the token's jti claim. expires_at mirrors the token's exp so rows
    can be deleted once the token would have expired anyway.
    """
    __tablename__ = "revoked_tokens"

    id = Column(Integer, primary_key=True, index=True)
    jti = Column(String(64), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    revoked_at = Column(UTCDateTime, default=utcnow, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False, index=True)

    def __repr__(self):
        return f"<RevokedToken(jti='{self.jti}', user_id={self.user_id})>"
