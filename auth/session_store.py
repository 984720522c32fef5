"""
Session Store
-------------
Encrypted on-disk persistence for one credential record.

Security:
- AES-256-GCM authenticated encryption; tampering fails decryption
- Key derived with PBKDF2-HMAC-SHA256 and a random per-file salt
- Key material from D2L_SESSION_KEY, else derived from machine identity
- Directory 0700, file 0600, atomic replace on write

Any failure to read or decrypt is reported as "no session": the login
flow may be rewriting the file from another process at the same time.
"""

from pathlib import Path
from typing import Optional, Union
import base64
import getpass
import json
import logging
import os
import platform
import secrets
import tempfile

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from auth.credentials import CredentialRecord

SESSION_FILE_NAME = "session.enc"
ENVELOPE_VERSION = 1
KEY_ENV_VAR = "D2L_SESSION_KEY"

KDF_ITERATIONS = 200_000
SALT_BYTES = 16
NONCE_BYTES = 12

# Binds ciphertext to this file format
ASSOCIATED_DATA = b"d2l-session-v1"


class SessionStoreError(Exception):
    """Writing or deleting the session file failed."""


def default_session_dir() -> Path:
    """Default per-user session directory (~/.d2l-session)."""
    return Path.home() / ".d2l-session"


class SessionStore:
    """
    Durable, encrypted storage of a single CredentialRecord.

    ``load()`` never raises: a missing, truncated, tampered or undecodable
    file reads as None.
    """

    def __init__(
        self,
        session_dir: Optional[Union[str, Path]] = None,
        key_material: Optional[bytes] = None
    ):
        self._dir = Path(session_dir).expanduser() if session_dir else default_session_dir()
        self._path = self._dir / SESSION_FILE_NAME
        self._logger = logging.getLogger("d2l.auth.session_store")

        self._key_material = key_material or self._load_key_material()

    @property
    def path(self) -> Path:
        return self._path

    def _load_key_material(self) -> bytes:
        """
        Load key material from environment or derive from machine identity.

        Both this client and the login flow run as the same user on the
        same machine, so they derive the same material.
        """
        env_key = os.environ.get(KEY_ENV_VAR)
        if env_key:
            return env_key.encode("utf-8")

        try:
            user = getpass.getuser()
        except (KeyError, OSError):
            user = "unknown"

        machine_id = f"{platform.node()}-{platform.machine()}-{user}-d2l-session"
        return machine_id.encode("utf-8")

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=KDF_ITERATIONS,
        )
        return kdf.derive(self._key_material)

    def _ensure_dir(self) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        os.chmod(self._dir, 0o700)

    def exists(self) -> bool:
        return self._path.exists()

    def save(self, record: CredentialRecord) -> None:
        """Encrypt and atomically write the record."""
        salt = secrets.token_bytes(SALT_BYTES)
        nonce = secrets.token_bytes(NONCE_BYTES)
        plaintext = json.dumps(record.to_dict(), sort_keys=True).encode("utf-8")
        ciphertext = AESGCM(self._derive_key(salt)).encrypt(nonce, plaintext, ASSOCIATED_DATA)

        envelope = {
            "version": ENVELOPE_VERSION,
            "salt": base64.b64encode(salt).decode("ascii"),
            "nonce": base64.b64encode(nonce).decode("ascii"),
            "ciphertext": base64.b64encode(ciphertext).decode("ascii"),
        }

        try:
            self._ensure_dir()
            fd, tmp_name = tempfile.mkstemp(prefix=".session-", suffix=".tmp", dir=self._dir)
            try:
                os.chmod(tmp_name, 0o600)
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(envelope, f)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise SessionStoreError(f"Failed to write session file {self._path}: {e}") from e

        self._logger.debug(f"Saved session to {self._path}")

    def load(self) -> Optional[CredentialRecord]:
        """Read and decrypt the record, or None if unavailable."""
        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            self._logger.warning(f"Cannot read session file {self._path}: {e}")
            return None

        try:
            envelope = json.loads(raw)
            if envelope.get("version") != ENVELOPE_VERSION:
                self._logger.warning(f"Unsupported session envelope version: {envelope.get('version')}")
                return None

            salt = base64.b64decode(envelope["salt"], validate=True)
            nonce = base64.b64decode(envelope["nonce"], validate=True)
            ciphertext = base64.b64decode(envelope["ciphertext"], validate=True)

            plaintext = AESGCM(self._derive_key(salt)).decrypt(nonce, ciphertext, ASSOCIATED_DATA)
            return CredentialRecord.from_dict(json.loads(plaintext.decode("utf-8")))

        except InvalidTag:
            self._logger.warning("Session file failed authentication (tampered or wrong key)")
            return None
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            # json.JSONDecodeError, binascii.Error and UnicodeDecodeError are ValueErrors
            self._logger.debug(f"Session file unreadable, treating as absent: {e}")
            return None

    def delete(self) -> bool:
        """Remove the session file. Returns True if it existed."""
        try:
            self._path.unlink()
            self._logger.debug(f"Deleted session file {self._path}")
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise SessionStoreError(f"Failed to delete session file {self._path}: {e}") from e
