"""
auth/tokens.py -- JWT access and refresh token codec.

Security design decisions:
  Two token classes, two keys. Access tokens are signed with SECRET_KEY and
       carry identity + role; they are verified offline with no store hit.
       Refresh tokens are signed with REFRESH_SECRET_KEY and carry only the
       account id and the id of the auth_tokens row backing them, so
       revocation is enforced by the store, not by expiry alone.

  A "type" claim is checked on verification as well. Even if both keys were
       misconfigured to the same value, a refresh token would not pass as an
       access token.

  Verification fails distinctly: TokenExpired when the signature is good but
       exp has passed, TokenMalformed for everything else (bad signature,
       wrong type, missing claims, garbage input). Callers branch on this to
       tell "please refresh" apart from "this token is not ours".

  Expiry windows come from core.durations so the exp claim and the persisted
       record expiry are computed from the same expression.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import TokenExpired, TokenMalformed
from auth.models import Role
from core.config import Settings, get_settings
from core.durations import duration_seconds, expires_at

logger = logging.getLogger("setuauth.tokens")

_ALGORITHM = "HS256"
_ACCESS = "access"
_REFRESH = "refresh"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SignedToken:
    token: str
    expires_in: int  # seconds
    expires_at: datetime


@dataclass(frozen=True)
class AccessClaims:
    account_id: str
    email: str
    role: Role


@dataclass(frozen=True)
class RefreshClaims:
    account_id: str
    token_record_id: str


class TokenCodec:
    """Signs and verifies access and refresh JWTs.

    Usage:
        codec = TokenCodec()
        signed = codec.sign_access(account.id, account.email, account.role)
        claims = codec.verify_access(signed.token)
    """

    def __init__(self, settings: Settings | None = None, clock: Callable[[], datetime] = _utcnow) -> None:
        self._settings = settings or get_settings()
        self._clock = clock

    @property
    def access_expires_in(self) -> int:
        return duration_seconds(self._settings.access_token_expires_in)

    @property
    def refresh_window(self) -> str:
        return self._settings.refresh_token_expires_in

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def sign_access(self, account_id: str, email: str, role: Role) -> SignedToken:
        """Encode a short-lived access token carrying identity and role."""
        window = self._settings.access_token_expires_in
        claims = {
            "sub": account_id,
            "email": email,
            "role": Role(role).value,
        }
        return self._sign(claims, _ACCESS, window, self._settings.secret_key)

    def verify_access(self, token: str) -> AccessClaims:
        payload = self._decode(token, _ACCESS, self._settings.secret_key)
        try:
            return AccessClaims(
                account_id=str(payload["sub"]),
                email=str(payload["email"]),
                role=Role(payload["role"]),
            )
        except (KeyError, ValueError) as exc:
            raise TokenMalformed("Invalid access token.") from exc

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def sign_refresh(self, account_id: str, token_record_id: str) -> SignedToken:
        """Encode a refresh token that points at its auth_tokens row.

        jti makes every token string unique, including two minted for the
        same account within the same second. The store keys records by the
        hash of the full string.
        """
        claims = {
            "sub": account_id,
            "tid": token_record_id,
            "jti": secrets.token_hex(16),
        }
        return self._sign(claims, _REFRESH, self.refresh_window, self._settings.refresh_secret_key)

    def verify_refresh(self, token: str) -> RefreshClaims:
        payload = self._decode(token, _REFRESH, self._settings.refresh_secret_key)
        try:
            return RefreshClaims(account_id=str(payload["sub"]), token_record_id=str(payload["tid"]))
        except KeyError as exc:
            raise TokenMalformed("Invalid refresh token.") from exc

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _sign(self, claims: dict, token_type: str, window: str, key: str) -> SignedToken:
        now = self._clock()
        expiry = expires_at(window, now)
        payload = {**claims, "type": token_type, "iat": now, "exp": expiry}
        return SignedToken(
            token=jwt.encode(payload, key, algorithm=_ALGORITHM),
            expires_in=duration_seconds(window),
            expires_at=expiry,
        )

    def _decode(self, token: str, token_type: str, key: str) -> dict:
        label = "Access" if token_type == _ACCESS else "Refresh"
        try:
            payload = jwt.decode(token, key, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpired(f"{label} token has expired.") from exc
        except (JWTError, AttributeError) as exc:
            raise TokenMalformed(f"Invalid {label.lower()} token.") from exc
        if payload.get("type") != token_type:
            raise TokenMalformed(f"Invalid {label.lower()} token.")
        return payload


def extract_bearer(header: str | None) -> str | None:
    """Return the token from an "Authorization: Bearer <token>" header, else None."""
    if not header:
        return None
    parts = header.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None
    return parts[1]
