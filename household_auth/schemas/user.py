"""
Pydantic schemas for User entities.
"""

from typing import Optional
from pydantic import BaseModel, EmailStr, Field


class UserOut(BaseModel):
    """Public view of a user, as returned next to a session token"""
    id: int
    name: Optional[str] = None
    email: EmailStr
    image: Optional[str] = None
    phone_number: Optional[str] = Field(None, alias="phoneNumber")
    email_verified: bool = Field(False, alias="emailVerified")
    two_fa_enabled: bool = Field(False, alias="twoFAEnabled")
    two_fa_method: str = Field("email", alias="twoFAMethod")
    preferred_login_method: str = Field("email", alias="preferredLoginMethod")

    class Config:
        from_attributes = True
        populate_by_name = True


class SessionUserOut(UserOut):
    """User block of a login response"""
    two_fa_verified: bool = Field(False, alias="twoFAVerified")
    is_new_user: bool = Field(False, alias="isNewUser")
