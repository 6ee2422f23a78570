"""
auth/passwords.py -- One-way password hashing (bcrypt).

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

bcrypt embeds its per-call random salt and cost factor in the output string,
so verify_password() needs nothing but the stored hash.

Plaintext passwords are never logged, stored or returned by anything in this
module.
"""

from __future__ import annotations

import bcrypt

# bcrypt only looks at the first 72 bytes of input. Longer inputs are refused
# instead of being silently truncated.
MAX_PASSWORD_BYTES = 72


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Raises ValueError for an empty password or one longer than 72 UTF-8 bytes.
    The API layer validates the same limits, so this only fires on misuse.
    """
    encoded = plain.encode("utf-8")
    if not encoded:
        raise ValueError("Password must not be empty.")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
    return bcrypt.hashpw(encoded, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Never raises: a malformed or empty hash, or an over-long password, is
    simply a mismatch.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. Login always runs bcrypt, against this hash when
# the email is unknown, so response time does not reveal which emails exist.
DUMMY_HASH: str = hash_password("aggapi_timing_dummy")
