"""Symmetric cipher for one-time codes and provider refresh tokens at rest."""

from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from household_auth.core.config import settings
from household_auth.core.errors import EncryptionError


class CodeCipher:
    """Fernet wrapper keyed by the process-wide ENCRYPTION_KEY."""

    def __init__(self, key: Optional[str]):
        if not key:
            raise EncryptionError("ENCRYPTION_KEY must be set")
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            raise EncryptionError(f"ENCRYPTION_KEY is not a valid Fernet key: {e}") from e

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> Optional[str]:
        """Return the plaintext, or None when the value was not produced by this key."""
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            return None


@lru_cache(maxsize=1)
def get_code_cipher() -> CodeCipher:
    """Process-wide cipher. Called eagerly during startup so a bad key fails fast."""
    return CodeCipher(settings.ENCRYPTION_KEY)
