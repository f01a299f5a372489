"""
auth/passwords.py -- Password hashing, verification, and strength rules.

Passwords: bcrypt used directly (no passlib wrapper). The cost factor is
     BCRYPT_ROUNDS from core.config.

     dummy_hash() enables timing equalization in the login flow
     so response time does not reveal whether an email is registered [C1].

Strength: validate_password_strength() reports every broken rule at once so
     a signup form can show all problems in a single round trip.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache

import bcrypt

from auth.errors import Internal
from core.config import get_settings

logger = logging.getLogger("setuauth.passwords")

PASSWORD_MIN_LEN = 8

_SYMBOL_RE = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")

# (pattern, message) -- checked in order, all of them, every time.
_STRENGTH_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"[A-Z]"), "Password must contain at least one uppercase letter"),
    (re.compile(r"[a-z]"), "Password must contain at least one lowercase letter"),
    (re.compile(r"[0-9]"), "Password must contain at least one number"),
    (_SYMBOL_RE, "Password must contain at least one special character"),
]


@dataclass(frozen=True)
class PasswordValidation:
    is_valid: bool
    errors: list[str] = field(default_factory=list)


def hash_password(plain: str, rounds: int | None = None) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated before hashing; bcrypt 4.x
    refuses longer input instead of truncating it silently.
    """
    cost = rounds if rounds is not None else get_settings().bcrypt_rounds
    try:
        return bcrypt.hashpw(plain.encode("utf-8")[:72], bcrypt.gensalt(rounds=cost)).decode("utf-8")
    except (ValueError, TypeError) as exc:
        logger.exception("bcrypt hashing failed")
        raise Internal("Failed to hash password") from exc


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash is a non-match, not an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def validate_password_strength(password: str) -> PasswordValidation:
    """Check the five strength rules and return every violation found."""
    if not password:
        return PasswordValidation(is_valid=False, errors=["Password is required"])

    errors: list[str] = []
    if len(password) < PASSWORD_MIN_LEN:
        errors.append(f"Password must be at least {PASSWORD_MIN_LEN} characters long")
    for pattern, message in _STRENGTH_RULES:
        if not pattern.search(password):
            errors.append(message)
    return PasswordValidation(is_valid=not errors, errors=errors)


# Timing equalization dummy hash [C1].
# One per cost factor, built on first use and cached. The login flow verifies
# against it when the email is unknown, so both branches pay the same bcrypt
# cost as a real hash made with the same BCRYPT_ROUNDS.
@lru_cache(maxsize=4)
def dummy_hash(rounds: int) -> str:
    return bcrypt.hashpw(b"setuauth_timing_dummy", bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_dummy(plain: str, rounds: int | None = None) -> None:
    """Burn one bcrypt verification at the configured cost. Used on the unknown-account branch."""
    cost = rounds if rounds is not None else get_settings().bcrypt_rounds
    verify_password(plain, dummy_hash(cost))
