"""
auth/opaque.py -- Single-use token records (refresh and password reset).

Security design:
  The token string handed to the client is never persisted. The store keeps
  HMAC-SHA256(REFRESH_SECRET_KEY, token). The hash is deterministic, so a
  redemption is one indexed lookup on the exact presented string -- never a
  scan over "any unused token of this kind", which could match a token that
  belongs to someone else.

  redeem() is check-and-set in a single UPDATE. Of two concurrent redemptions
  of the same token exactly one succeeds; the other gets TokenAlreadyUsed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from auth.errors import NotFound, TokenAlreadyUsed, TokenExpired
from auth.models import RequestContext, TokenKind, TokenRecord
from auth.store import AuthStore, new_id
from core.config import Settings, get_settings
from core.durations import expires_at

logger = logging.getLogger("setuauth.opaque")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_token() -> str:
    """Return a new random token: 32 random bytes as 64 hex chars (256 bits)."""
    return secrets.token_hex(32)


@dataclass(frozen=True)
class IssuedToken:
    record_id: str
    token: str  # plaintext -- returned once, never stored or logged
    expires_at: datetime


class OpaqueTokenStore:
    """Issues, redeems and revokes hashed single-use tokens."""

    def __init__(
        self,
        store: AuthStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._key = (settings or get_settings()).refresh_secret_key.encode("utf-8")
        self._clock = clock

    def hash_token(self, raw: str) -> str:
        """Return HMAC-SHA256(key, raw) as a hex string."""
        return hmac.new(self._key, raw.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue(
        self,
        account_id: str,
        kind: TokenKind,
        ttl: str,
        context: RequestContext | None = None,
        *,
        token: str | None = None,
        record_id: str | None = None,
    ) -> IssuedToken:
        """Persist a new record and return the plaintext exactly once.

        ttl is a duration expression ("1h", "7d"). token lets the caller supply
        the string to hash (a signed refresh JWT); otherwise a random one is
        generated. record_id lets the caller know the id before the token
        exists, which the refresh JWT needs to embed it.
        """
        now = self._clock()
        raw = token if token is not None else generate_token()
        context = context or RequestContext()
        record = TokenRecord(
            id=record_id or new_id(),
            account_id=account_id,
            token_hash=self.hash_token(raw),
            kind=kind,
            expires_at=expires_at(ttl, now),
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )
        stored_id = self._store.insert_token(record, now=now)
        logger.debug("Issued %s token record %s for account %s", kind.value, stored_id, account_id)
        return IssuedToken(record_id=stored_id, token=raw, expires_at=record.expires_at)

    def redeem(self, raw: str, kind: TokenKind) -> TokenRecord:
        """Consume the record matching this exact token string.

        Raises NotFound (no such token of this kind), TokenAlreadyUsed (a
        replay; reported even when the record has also expired), or
        TokenExpired. On success the record is already marked used.
        """
        token_hash = self.hash_token(raw)
        now = self._clock()
        consumed = self._store.consume_token(token_hash, kind, now)
        if consumed is not None:
            return consumed

        record = self._store.get_token_by_hash(token_hash, kind)
        if record is None:
            raise NotFound("Token not found.")
        if record.used:
            raise TokenAlreadyUsed()
        raise TokenExpired()

    def mark_used(self, record_id: str) -> None:
        """Flip a record to used. A second call for the same record raises TokenAlreadyUsed."""
        if not self._store.mark_token_used(record_id, self._clock()):
            if self._store.get_token(record_id) is None:
                raise NotFound("Token not found.")
            raise TokenAlreadyUsed()

    def revoke_all_for_account(self, account_id: str, kind: TokenKind) -> int:
        """Mark every unused record of this kind for the account as used."""
        count = self._store.revoke_tokens(account_id, kind, self._clock())
        if count:
            logger.info("Revoked %d %s token(s) for account %s", count, kind.value, account_id)
        return count
