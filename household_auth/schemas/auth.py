"""
Pydantic schemas for the authentication endpoints.

Request and response bodies use camelCase on the wire; handlers may populate
them by field name.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from household_auth.schemas.user import SessionUserOut, UserOut

CODE_PATTERN = r"^\s*\d{6}\s*$"


class _CamelModel(BaseModel):
    class Config:
        populate_by_name = True


def _normalize_email(value):
    if isinstance(value, str):
        return value.strip().lower()
    return value


# ==================== One-time code login ====================

class LoginCodeRequest(_CamelModel):
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, min_length=6, max_length=32)
    name: Optional[str] = Field(None, min_length=1, max_length=100)

    @field_validator("email", mode="before")
    @classmethod
    def lowercase_email(cls, value):
        return _normalize_email(value)

    @model_validator(mode="after")
    def email_or_phone(self):
        if not self.email and not self.phone:
            raise ValueError("email or phone is required")
        return self


class EmailRequest(_CamelModel):
    email: EmailStr

    @field_validator("email", mode="before")
    @classmethod
    def lowercase_email(cls, value):
        return _normalize_email(value)


class VerifyLoginCodeRequest(EmailRequest):
    code: str = Field(..., pattern=CODE_PATTERN)


class CodeSentResponse(_CamelModel):
    success: bool = True
    message: str
    is_registration: Optional[bool] = Field(None, alias="isRegistration")
    method: Optional[str] = None


class MessageResponse(_CamelModel):
    success: bool = True
    message: str


class SessionResponse(_CamelModel):
    token: str
    user: SessionUserOut
    device_token: Optional[str] = Field(None, alias="deviceToken")


class PendingTwoFactorResponse(_CamelModel):
    message: str = "2FA verification required"
    temp_token: str = Field(..., alias="tempToken")
    requires_two_factor: bool = Field(True, alias="requiresTwoFactor")
    two_fa_method: str = Field("email", alias="twoFAMethod")


# ==================== Second factor ====================

class TwoFAVerifyRequest(_CamelModel):
    temp_token: str = Field(..., alias="tempToken", min_length=1)
    code: str = Field(..., pattern=CODE_PATTERN)
    trust_device: bool = Field(False, alias="trustDevice")


class TempTokenRequest(_CamelModel):
    temp_token: str = Field(..., alias="tempToken", min_length=1)


class TwoFAConfigureRequest(_CamelModel):
    enabled: bool
    method: Literal["email", "sms"] = "email"
    phone_number: Optional[str] = Field(None, alias="phoneNumber", min_length=6, max_length=32)


class TwoFAConfirmRequest(_CamelModel):
    code: str = Field(..., pattern=CODE_PATTERN)


class TwoFAStatusResponse(_CamelModel):
    enabled: bool
    pending: bool
    method: str
    phone_number: Optional[str] = Field(None, alias="phoneNumber")
    trusted_devices: int = Field(0, alias="trustedDevices")


# ==================== Trusted devices ====================

class TrustedDeviceOut(_CamelModel):
    id: int
    user_agent: Optional[str] = Field(None, alias="userAgent")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    last_used_at: Optional[datetime] = Field(None, alias="lastUsedAt")
    expires_at: datetime = Field(..., alias="expiresAt")
    current: bool = False

    class Config:
        from_attributes = True
        populate_by_name = True


class TrustedDeviceCheckResponse(_CamelModel):
    valid: bool


class TwoFAConfigureResponse(_CamelModel):
    success: bool = True
    requires_verification: bool = Field(..., alias="requiresVerification")
    method: Optional[str] = None
    user: UserOut
    token: Optional[str] = None


class CodeResentResponse(_CamelModel):
    success: bool = True
    message: str
    method: str
