from sqlalchemy import Boolean, Column, Integer, String, Text
from sqlalchemy.orm import relationship
from household_auth.db.base import Base
from household_auth.db.types import UTCDateTime, utcnow

class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)  # always lowercase
    phone_number = Column(String(32), unique=True, index=True, nullable=True)
    image = Column(Text, nullable=True)
    email_verified = Column(Boolean, default=False, nullable=False)
    preferred_login_method = Column(String(10), default="email", nullable=False)  # email | sms
    allow_account_linking = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    # One-time login code (encrypted), kept apart from the second-factor code
    login_code = Column(Text, nullable=True)
    login_code_expires_at = Column(UTCDateTime, nullable=True)
    login_code_attempts = Column(Integer, default=0, nullable=False)

    # Campos para autenticação de dois fatores
    two_fa_enabled = Column(Boolean, default=False, nullable=False)
    two_fa_pending = Column(Boolean, default=False, nullable=False)  # setup started, not confirmed
    two_fa_method = Column(String(10), default="email", nullable=False)  # email | sms
    two_fa_code = Column(Text, nullable=True)
    two_fa_code_expires_at = Column(UTCDateTime, nullable=True)
    two_fa_attempts = Column(Integer, default=0, nullable=False)

    token_version = Column(Integer, default=1, nullable=False)  # invalidate old JWTs

    trusted_devices = relationship("TrustedDevice", back_populates="user", cascade="all, delete-orphan")
    oauth_accounts = relationship("OAuthAccount", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', two_fa_enabled={self.two_fa_enabled})>"
