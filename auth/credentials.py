"""
Credential Records
------------------
The short-lived secret handed over by the external login flow.

How the secret is sent (bearer header or session cookie) is an explicit
field on the record, so header selection never depends on the contents
of the secret itself.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

# Prefix older login flows put in front of cookie-based secrets
COOKIE_MARKER = "cookie:"


class AuthScheme(Enum):
    """How the secret is presented to the API."""
    BEARER = "bearer"  # Authorization: Bearer <secret>
    COOKIE = "cookie"  # Cookie: <secret>


class CredentialOrigin(Enum):
    """Which login path produced the credential."""
    BROWSER_SESSION = "browser-session"
    COOKIE_SESSION = "cookie-session"


@dataclass(frozen=True)
class CredentialRecord:
    """
    One credential and its validity window.

    Timestamps are timezone-aware UTC. ``expires_at`` must be later than
    ``captured_at``.
    """
    secret: str = field(repr=False)
    captured_at: datetime
    expires_at: datetime
    origin: CredentialOrigin = CredentialOrigin.BROWSER_SESSION
    scheme: AuthScheme = AuthScheme.BEARER

    def __post_init__(self):
        if not self.secret:
            raise ValueError("Credential secret is empty")
        if self.captured_at.tzinfo is None or self.expires_at.tzinfo is None:
            raise ValueError("Credential timestamps must be timezone-aware")
        if self.expires_at <= self.captured_at:
            raise ValueError("Credential expires_at must be after captured_at")

    @classmethod
    def capture(
        cls,
        secret: str,
        ttl: float,
        origin: CredentialOrigin = CredentialOrigin.BROWSER_SESSION,
        scheme: AuthScheme = AuthScheme.BEARER,
        now: Optional[datetime] = None
    ) -> "CredentialRecord":
        """Build a record captured now that expires ``ttl`` seconds later."""
        captured = now or datetime.now(timezone.utc)
        return cls(
            secret=secret,
            captured_at=captured,
            expires_at=captured + timedelta(seconds=ttl),
            origin=origin,
            scheme=scheme,
        )

    @classmethod
    def from_marked_secret(
        cls,
        value: str,
        captured_at: datetime,
        expires_at: datetime,
        origin: Optional[CredentialOrigin] = None
    ) -> "CredentialRecord":
        """
        Convert a secret that may carry the legacy ``cookie:`` marker.

        The marker is stripped and turned into ``AuthScheme.COOKIE``; this
        is the only place the marker is interpreted.
        """
        if value.startswith(COOKIE_MARKER):
            return cls(
                secret=value[len(COOKIE_MARKER):],
                captured_at=captured_at,
                expires_at=expires_at,
                origin=origin or CredentialOrigin.COOKIE_SESSION,
                scheme=AuthScheme.COOKIE,
            )
        return cls(
            secret=value,
            captured_at=captured_at,
            expires_at=expires_at,
            origin=origin or CredentialOrigin.BROWSER_SESSION,
            scheme=AuthScheme.BEARER,
        )

    def auth_headers(self) -> Dict[str, str]:
        """Exactly one authentication header for this credential."""
        if self.scheme is AuthScheme.COOKIE:
            return {"Cookie": self.secret}
        if self.scheme is AuthScheme.BEARER:
            return {"Authorization": f"Bearer {self.secret}"}
        raise ValueError(f"Unsupported auth scheme: {self.scheme}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "secret": self.secret,
            "captured_at": self.captured_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "origin": self.origin.value,
            "scheme": self.scheme.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CredentialRecord":
        """Create from dictionary. Raises ValueError on malformed input."""
        try:
            return cls(
                secret=data["secret"],
                captured_at=datetime.fromisoformat(data["captured_at"]),
                expires_at=datetime.fromisoformat(data["expires_at"]),
                origin=CredentialOrigin(data.get("origin", CredentialOrigin.BROWSER_SESSION.value)),
                scheme=AuthScheme(data.get("scheme", AuthScheme.BEARER.value)),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Malformed credential record: {e}") from e


def mask_secret(secret: str, prefix_len: int = 4, suffix_len: int = 4) -> str:
    """Mask a secret for safe logging/display."""
    if not secret:
        return "<empty>"
    if len(secret) <= prefix_len + suffix_len:
        return "*" * len(secret)
    return f"{secret[:prefix_len]}...{secret[-suffix_len:]}"
