"""One-time code generation."""

import secrets
from typing import Tuple

from household_auth.core.encryption import CodeCipher

CODE_MIN = 100000
CODE_MAX = 999999


def generate_code(cipher: CodeCipher) -> Tuple[str, str]:
    """
    Generate a 6-digit code and its encrypted form.

    The plaintext is uniform over 100000..999999, so it is never zero-padded.

    Returns:
        (plaintext, encrypted) tuple; only the encrypted value is persisted.
    """
    plaintext = str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))
    return plaintext, cipher.encrypt(plaintext)
