"""Opaque single-purpose tokens for email verification and password reset."""

from __future__ import annotations

import hashlib
import hmac
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

TOKEN_BYTES = 32  # 256 bits of entropy


@dataclass(frozen=True)
class IssuedToken:
    """A freshly issued token.

    ``raw`` goes to the user, ``stored`` goes to the credential store.
    """

    raw: str
    stored: str
    expires_at: datetime


class OpaqueToken(ABC):
    """Shared issue/validate behaviour; subclasses decide the stored form."""

    def __init__(self, ttl: timedelta) -> None:
        self.ttl = ttl

    @staticmethod
    def generate() -> str:
        return secrets.token_urlsafe(TOKEN_BYTES)

    @abstractmethod
    def stored_form(self, raw: str) -> str:
        """Value persisted (and searched) for ``raw``."""

    def issue(self, now: datetime, ttl: Optional[timedelta] = None) -> IssuedToken:
        raw = self.generate()
        return IssuedToken(
            raw=raw,
            stored=self.stored_form(raw),
            expires_at=now + (ttl or self.ttl),
        )

    def expiry_from(self, now: datetime) -> datetime:
        return now + self.ttl

    def validate(
        self,
        raw: Optional[str],
        stored: Optional[str],
        expires_at: Optional[datetime],
        now: datetime,
    ) -> bool:
        """True only for a matching, unexpired token.

        Absent and expired tokens both return False; callers report a single
        "invalid or expired" failure for either.
        """
        if not raw or not stored or expires_at is None:
            return False
        if now >= expires_at:
            return False
        return hmac.compare_digest(self.stored_form(raw), stored)


class VerificationToken(OpaqueToken):
    """Searchable token: stored as-is so accounts can be looked up by it."""

    def stored_form(self, raw: str) -> str:
        return raw


class ResetToken(OpaqueToken):
    """Secret-at-rest token: only its SHA-256 digest is ever persisted."""

    def stored_form(self, raw: str) -> str:
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()
