"""
D2L Client Test Configuration
-----------------------------
Shared fixtures and stubs for all tests.

Network and key material are isolated: no test talks to a real host,
and every session store uses a fixed test key.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import auth.session_store as session_store_module
from auth.credentials import AuthScheme, CredentialOrigin, CredentialRecord
from auth.session_store import SessionStore
from auth.token_manager import CredentialManager


TEST_KEY = b"test-session-key-material"


# =============================================================================
# Test Isolation
# =============================================================================

@pytest.fixture(autouse=True)
def fast_key_derivation(monkeypatch):
    """Keep PBKDF2 cheap so store round-trips stay fast."""
    monkeypatch.setattr(session_store_module, "KDF_ITERATIONS", 1000)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Strip D2L_* variables inherited from the developer's shell."""
    for name in [k for k in os.environ if k.startswith("D2L_")]:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root path."""
    return PROJECT_ROOT


# =============================================================================
# Credentials
# =============================================================================

def make_record(
    secret: str = "test-token-12345678",
    expires_in: timedelta = timedelta(hours=1),
    scheme: AuthScheme = AuthScheme.BEARER,
    now: Optional[datetime] = None
) -> CredentialRecord:
    """Credential captured at ``now`` that expires ``expires_in`` later."""
    now = now or datetime.now(timezone.utc)
    captured = min(now, now + expires_in) - timedelta(seconds=1)
    return CredentialRecord(
        secret=secret,
        captured_at=captured,
        expires_at=now + expires_in,
        origin=CredentialOrigin.COOKIE_SESSION if scheme is AuthScheme.COOKIE
        else CredentialOrigin.BROWSER_SESSION,
        scheme=scheme,
    )


@pytest.fixture
def session_dir(tmp_path):
    return tmp_path / "session"


@pytest.fixture
def store(session_dir):
    return SessionStore(session_dir, key_material=TEST_KEY)


@pytest.fixture
def manager(store):
    return CredentialManager(store)


class StubCredentialManager:
    """
    In-memory stand-in for CredentialManager.

    ``queued`` records are handed out first, one per get_credential() call;
    after that the current record is returned.
    """

    def __init__(self, record: Optional[CredentialRecord] = None):
        self.current = record
        self.queued: List[Optional[CredentialRecord]] = []
        self.get_calls = 0
        self.clear_calls = 0

    def get_credential(self) -> Optional[CredentialRecord]:
        self.get_calls += 1
        if self.queued:
            return self.queued.pop(0)
        return self.current

    def set_credential(self, record: CredentialRecord) -> bool:
        self.current = record
        return True

    def clear_credential(self) -> None:
        self.clear_calls += 1
        self.queued.clear()
        self.current = None

    def needs_refresh(self) -> bool:
        return self.current is None


@pytest.fixture
def stub_credentials():
    return StubCredentialManager(make_record())
