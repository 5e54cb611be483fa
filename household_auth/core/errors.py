"""
Typed authentication failures.

Each error carries the HTTP status and a stable machine code. The handler
registered in main.py turns them into JSON responses of the form
{"detail": ..., "code": ..., **extra}.
"""

from typing import Any, Dict, Optional


class AuthError(Exception):
    """Base class for authentication failures surfaced to the HTTP layer."""

    status_code: int = 400
    code: str = "auth_error"
    default_detail: str = "Authentication failed"

    def __init__(self, detail: Optional[str] = None, **extra: Any) -> None:
        self.detail = detail or self.default_detail
        self.extra: Dict[str, Any] = extra
        super().__init__(self.detail)


class InvalidCode(AuthError):
    """Wrong one-time or second-factor code. Retryable."""
    status_code = 400
    code = "invalid_code"
    default_detail = "Invalid verification code"


class TooManyAttempts(AuthError):
    """Attempt budget exhausted; a fresh code must be requested."""
    status_code = 429
    code = "too_many_attempts"
    default_detail = "Maximum verification attempts reached. Please request a new code."


class Expired(AuthError):
    """Token or code past its validity window."""
    status_code = 401
    code = "expired"
    default_detail = "Token has expired"


class CodeExpired(Expired):
    status_code = 400
    default_detail = "Verification code has expired. Please request a new one."


class InvalidToken(AuthError):
    """Signature mismatch, malformed token or wrong token type."""
    status_code = 401
    code = "invalid_token"
    default_detail = "Invalid token"


class Revoked(AuthError):
    status_code = 401
    code = "revoked"
    default_detail = "Token has been revoked"


class MissingEmailClaim(AuthError):
    """OAuth identity did not include an email address."""
    status_code = 400
    code = "missing_email_claim"
    default_detail = "No email found in identity provider profile"


class AccountLinkingDisabled(AuthError):
    status_code = 409
    code = "account_linking_disabled"
    default_detail = "This email is already registered with a different authentication method"


class OAuthStateMismatch(AuthError):
    status_code = 400
    code = "oauth_state_mismatch"
    default_detail = "Invalid or expired OAuth state"


class DeliveryFailed(AuthError):
    """The code is stored but could not be handed to the delivery channel."""
    status_code = 424
    code = "delivery_failed"
    default_detail = "Could not send the verification code. Please try again."

    def __init__(self, detail: Optional[str] = None, **extra: Any) -> None:
        extra.setdefault("retryable", True)
        super().__init__(detail, **extra)


class RateLimited(AuthError):
    status_code = 429
    code = "rate_limited"
    default_detail = "Too many requests"


class EncryptionError(Exception):
    """Code cipher is misconfigured. Raised at startup, never per request."""
