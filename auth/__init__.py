# Auth module - credential records, encrypted session store, credential manager
# The login flow itself lives outside this package; it only calls set_credential()

from .credentials import AuthScheme, CredentialOrigin, CredentialRecord, mask_secret
from .session_store import SessionStore, SessionStoreError, default_session_dir
from .token_manager import CredentialManager, REFRESH_BUFFER

__all__ = [
    "AuthScheme",
    "CredentialOrigin",
    "CredentialRecord",
    "mask_secret",
    "SessionStore",
    "SessionStoreError",
    "default_session_dir",
    "CredentialManager",
    "REFRESH_BUFFER",
]
