"""
Invite code helpers.

An invite code is the family's primary key: `INVITE_CODE_LENGTH` characters drawn
uniformly from `0-9A-Z`. Codes typed by users are canonicalised (trimmed, upper-cased)
before lookup.
"""

import secrets
import string

INVITE_CODE_ALPHABET = string.digits + string.ascii_uppercase
DEFAULT_CODE_LENGTH = 6


def generate_invite_code(length: int = DEFAULT_CODE_LENGTH) -> str:
    """Return a random base-36 upper-case code of the given length."""
    if length <= 0:
        raise ValueError("Invite code length must be positive")
    return "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(length))


def normalize_invite_code(code: str) -> str:
    """Canonical form of a user-entered code: surrounding whitespace removed, upper case."""
    return (code or "").strip().upper()


def is_valid_invite_code(code: str, length: int = DEFAULT_CODE_LENGTH) -> bool:
    """True when `code` is already canonical and has the expected shape."""
    return len(code) == length and all(char in INVITE_CODE_ALPHABET for char in code)
