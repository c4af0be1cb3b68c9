"""
Token Store.

Durable key/value persistence for the access token, the refresh token,
the cached user profile and its role tag.  No business logic lives here:
the ``RequestInterceptor`` and ``AuthGateway`` decide *what* to store,
this module only decides *how*.

Two implementations satisfy the ``TokenStore`` protocol:

- ``SqliteTokenStore`` encrypts every value with AES-256-GCM and keeps
  it in the local SQLite ``token_store`` table, so a session survives a
  restart.
- ``MemoryTokenStore`` keeps values in a dict for tests and for hosts
  where persistent storage is disabled.

Degradation contract
--------------------
If the persistence medium is unavailable (database not opened, SQLite
error, unreadable salt, failed decryption) the readers return ``None``
and the writers become no-ops.  Nothing raises; the client simply loses
"restore across restart".

Security model (``SqliteTokenStore``)
-------------------------------------
- The encryption key is derived from machine identity (hostname + OS
  username) via PBKDF2-HMAC-SHA256 with a per-install random salt stored
  in a separate file.  The key is derived once per store instance and
  **never** persisted.
- Each row carries its own GCM nonce and tag, giving confidentiality and
  integrity.  A tampered or foreign row fails verification and reads as
  absent.

Storage layout::

    token_store
    ├── key               TEXT PRIMARY KEY  (access_token | refresh_token | user | role)
    ├── encrypted_payload BLOB
    ├── nonce             BLOB
    └── tag               BLOB
"""

from __future__ import annotations

import getpass
import os
import platform
import socket
import sqlite3
import stat
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2
from pydantic import ValidationError

from student_portal.database import DatabaseManager
from student_portal.logger import StructuredLogger
from student_portal.models.auth_models import TokenPair
from student_portal.models.user import UserProfile
from student_portal.services.base_service import BaseService

_KEY_ACCESS: str = "access_token"
_KEY_REFRESH: str = "refresh_token"
_KEY_USER: str = "user"
_KEY_ROLE: str = "role"

# Failures that mean "the medium is unavailable", never a crash.
_STORAGE_ERRORS: tuple[type[BaseException], ...] = (
    sqlite3.Error,
    RuntimeError,
    OSError,
    ValueError,
    KeyError,
)


@runtime_checkable
class TokenStore(Protocol):
    """Synchronous persistence contract for session credentials."""

    def get(self) -> Optional[TokenPair]: ...

    def set(self, tokens: TokenPair) -> None: ...

    def clear(self) -> None: ...

    def get_cached_profile(self) -> Optional[UserProfile]: ...

    def set_cached_profile(self, profile: UserProfile) -> None: ...

    def get_role_tag(self) -> Optional[str]: ...


class MemoryTokenStore:
    """Process-local ``TokenStore``.  Contents vanish with the process."""

    def __init__(self) -> None:
        self._tokens: Optional[TokenPair] = None
        self._profile: Optional[UserProfile] = None
        self._role: Optional[str] = None

    def get(self) -> Optional[TokenPair]:
        return self._tokens

    def set(self, tokens: TokenPair) -> None:
        self._tokens = tokens

    def clear(self) -> None:
        self._tokens = None
        self._profile = None
        self._role = None

    def get_cached_profile(self) -> Optional[UserProfile]:
        return self._profile

    def set_cached_profile(self, profile: UserProfile) -> None:
        self._profile = profile
        self._role = profile.role

    def get_role_tag(self) -> Optional[str]:
        return self._role


class SqliteTokenStore(BaseService):
    """Encrypted ``TokenStore`` backed by the local SQLite database.

    Parameters
    ----------
    db:
        The ``DatabaseManager``; may be in the unavailable state.
    logger:
        A ``StructuredLogger`` instance.
    salt_path:
        File holding the per-install 32-byte KDF salt.
    kdf_iterations:
        PBKDF2 iteration count.  Lower it only in tests.
    """

    _KEY_LENGTH: int = 32  # 256 bits

    def __init__(
        self,
        db: DatabaseManager,
        logger: StructuredLogger,
        salt_path: Path,
        kdf_iterations: int = 600_000,
    ) -> None:
        super().__init__(logger)
        self._db: DatabaseManager = db
        self._salt_path: Path = salt_path
        self._kdf_iterations: int = kdf_iterations
        self._key: Optional[bytes] = None

    # ------------------------------------------------------------------
    # TokenStore API
    # ------------------------------------------------------------------

    def get(self) -> Optional[TokenPair]:
        """Return the stored pair, or ``None`` if either half is missing."""
        values = self._read(_KEY_ACCESS, _KEY_REFRESH)
        access = values.get(_KEY_ACCESS)
        refresh = values.get(_KEY_REFRESH)
        if not access or not refresh:
            if access or refresh:
                self._logger.warning(
                    "Token store holds a partial token pair; treating as absent.",
                )
            return None
        return TokenPair(access_token=access, refresh_token=refresh)

    def set(self, tokens: TokenPair) -> None:
        """Persist both tokens in one transaction."""
        self._write({
            _KEY_ACCESS: tokens.access_token,
            _KEY_REFRESH: tokens.refresh_token,
        })

    def clear(self) -> None:
        """Remove tokens, profile and role tag in one transaction."""
        try:
            with self._db.transaction() as conn:
                conn.execute("DELETE FROM token_store")
            self._logger.info("Token store cleared.")
        except _STORAGE_ERRORS as exc:
            self._logger.warning("Failed to clear token store: %s", exc)

    def get_cached_profile(self) -> Optional[UserProfile]:
        raw = self._read(_KEY_USER).get(_KEY_USER)
        if raw is None:
            return None
        try:
            return UserProfile.model_validate_json(raw)
        except ValidationError as exc:
            self._logger.warning("Cached profile is malformed: %s", exc)
            return None

    def set_cached_profile(self, profile: UserProfile) -> None:
        """Persist the serialized profile together with its role tag."""
        self._write({
            _KEY_USER: profile.model_dump_json(),
            _KEY_ROLE: profile.role,
        })

    def get_role_tag(self) -> Optional[str]:
        return self._read(_KEY_ROLE).get(_KEY_ROLE)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _read(self, *keys: str) -> dict[str, str]:
        """Decrypt the rows for *keys*.  Unreadable rows are omitted."""
        placeholders = ", ".join("?" for _ in keys)
        try:
            rows = self._db.sqlite.execute(
                f"SELECT key, encrypted_payload, nonce, tag FROM token_store "
                f"WHERE key IN ({placeholders})",
                keys,
            ).fetchall()
            key = self._derive_key()
        except _STORAGE_ERRORS as exc:
            self._logger.warning("Failed to read token store: %s", exc)
            return {}

        values: dict[str, str] = {}
        for row in rows:
            try:
                cipher = AES.new(key, AES.MODE_GCM, nonce=row["nonce"])
                plaintext: bytes = cipher.decrypt_and_verify(
                    row["encrypted_payload"], row["tag"],
                )
                values[row["key"]] = plaintext.decode("utf-8")
            except (ValueError, KeyError) as exc:
                self._logger.warning(
                    "Decryption of token store entry '%s' failed (corrupted "
                    "data or machine identity changed): %s",
                    row["key"],
                    exc,
                )
        return values

    def _write(self, items: dict[str, str]) -> None:
        """Encrypt and upsert *items* atomically."""
        try:
            key = self._derive_key()
            encrypted: list[tuple[str, bytes, bytes, bytes]] = []
            for name, value in items.items():
                cipher = AES.new(key, AES.MODE_GCM)
                ciphertext, tag = cipher.encrypt_and_digest(value.encode("utf-8"))
                encrypted.append((name, ciphertext, cipher.nonce, tag))

            with self._db.transaction() as conn:
                conn.executemany(
                    """
                    INSERT INTO token_store (key, encrypted_payload, nonce, tag)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        encrypted_payload = excluded.encrypted_payload,
                        nonce             = excluded.nonce,
                        tag               = excluded.tag,
                        updated_at        = CURRENT_TIMESTAMP
                    """,
                    encrypted,
                )
        except _STORAGE_ERRORS as exc:
            self._logger.warning(
                "Failed to write token store entries %s: %s", sorted(items), exc,
            )

    def _derive_key(self) -> bytes:
        """Derive (once) the 256-bit AES key from machine identity.

        Raises
        ------
        OSError
            If the salt file cannot be created or read.
        """
        if self._key is None:
            self._key = PBKDF2(
                password=self._machine_identity(),
                salt=self._get_or_create_salt(),
                dkLen=self._KEY_LENGTH,
                count=self._kdf_iterations,
                hmac_hash_module=SHA256,
            )
        return self._key

    @staticmethod
    def _machine_identity() -> str:
        try:
            username = getpass.getuser()
        except (KeyError, OSError):
            username = "unknown"
        return f"{socket.gethostname()}:{username}"

    def _get_or_create_salt(self) -> bytes:
        """Return the per-install random salt, creating it on first use."""
        if self._salt_path.exists():
            data: bytes = self._salt_path.read_bytes()
            if len(data) == 32:
                return data
            self._logger.warning(
                "Salt file has unexpected length (%d); regenerating.",
                len(data),
            )
        salt: bytes = os.urandom(32)
        self._salt_path.parent.mkdir(parents=True, exist_ok=True)
        self._salt_path.write_bytes(salt)

        if platform.system() != "Windows":
            self._salt_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0o600

        self._logger.info("Per-install token salt created at %s.", self._salt_path)
        return salt
