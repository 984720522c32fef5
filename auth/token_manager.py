"""
Credential Manager
------------------
Owns the in-memory credential and falls back to the session store.

A credential is only handed out while it has more than REFRESH_BUFFER
left before expiry, so a request never starts with a credential that
could lapse mid-flight or before the login flow can react.
"""

from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, Optional
import logging

from auth.credentials import CredentialRecord, mask_secret
from auth.session_store import SessionStore, SessionStoreError

REFRESH_BUFFER = timedelta(minutes=5)


class CredentialManager:
    """
    Single credential slot backed by an encrypted SessionStore.

    May be shared by several clients pointed at the same backend.
    """

    def __init__(
        self,
        store: SessionStore,
        clock: Optional[Callable[[], datetime]] = None,
        refresh_buffer: timedelta = REFRESH_BUFFER
    ):
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._refresh_buffer = refresh_buffer
        self._current: Optional[CredentialRecord] = None
        self._generation = 0  # Bumped by every set and clear
        self._lock = Lock()
        self._logger = logging.getLogger("d2l.auth.credentials")

    @property
    def store(self) -> SessionStore:
        return self._store

    def is_valid(self, record: CredentialRecord) -> bool:
        """True if the record has more than the refresh buffer left."""
        return record.expires_at - self._clock() > self._refresh_buffer

    def expires_in(self, record: CredentialRecord) -> timedelta:
        """Time remaining until the record's nominal expiry."""
        return record.expires_at - self._clock()

    def get_credential(self) -> Optional[CredentialRecord]:
        """
        Return a valid credential from memory, else from disk, else None.

        A valid record loaded from disk is kept in memory.
        """
        with self._lock:
            if self._current is not None and self.is_valid(self._current):
                return self._current
            generation = self._generation

        loaded = self._store.load()

        with self._lock:
            if self._generation != generation:
                # A set or clear ran during the load; the slot is authoritative
                current = self._current
                return current if current is not None and self.is_valid(current) else None

            if loaded is None:
                return None
            if not self.is_valid(loaded):
                self._logger.debug("Stored credential is expired or inside the refresh buffer")
                return None

            self._current = loaded
        self._logger.debug(f"Loaded credential from session store ({loaded.origin.value})")
        return loaded

    def set_credential(self, record: CredentialRecord) -> bool:
        """
        Replace the credential and persist it.

        Returns False if persistence failed; the in-memory record still
        serves this process.
        """
        with self._lock:
            self._current = record
            self._generation += 1

        try:
            self._store.save(record)
        except SessionStoreError as e:
            self._logger.error(f"Credential not persisted, kept in memory only: {e}")
            return False

        self._logger.info(
            f"Stored credential {mask_secret(record.secret)} "
            f"({record.origin.value}, expires {record.expires_at.isoformat()})"
        )
        return True

    def clear_credential(self) -> None:
        """Forget the credential in memory and on disk."""
        with self._lock:
            self._current = None
            self._generation += 1

        try:
            self._store.delete()
        except SessionStoreError as e:
            self._logger.error(f"Failed to remove stored credential: {e}")
            raise

        self._logger.info("Credential cleared")

    def needs_refresh(self) -> bool:
        """True when no valid credential is available anywhere."""
        return self.get_credential() is None
