from sqlalchemy import Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from household_auth.db.base import Base
from household_auth.db.types import UTCDateTime, utcnow


class TrustedDevice(Base):
    """
    Bypass token that lets a device skip the second factor.

    Valid while now < expires_at and only for the owning user. Expired rows
    are purged by the hourly cleanup task.
    """
    __tablename__ = "trusted_devices"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token = Column(String(128), unique=True, nullable=False, index=True)
    user_agent = Column(Text, nullable=True)
    expires_at = Column(UTCDateTime, nullable=False, index=True)
    last_used_at = Column(UTCDateTime, default=utcnow)
    created_at = Column(UTCDateTime, default=utcnow)

    user = relationship("User", back_populates="trusted_devices")

    def __repr__(self):
        return f"<TrustedDevice(id={self.id}, user_id={self.user_id}, expires_at={self.expires_at})>"
