"""
Session Manager — the master password, its verifier, and the live key.

The keyfile (``vault.json``) holds only the KDF parameters, the encryption
salt, and a one-way verifier computed over a separate salt. The password and
the derived key are never written anywhere. After a successful unlock the key
lives in a ``Session`` object until ``lock()`` zeroes it.
"""

from __future__ import annotations

import base64
import hmac
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError

from taohua.config import VaultConfig
from taohua.errors import (
    AuthenticationFailedError,
    CorruptRecordError,
    NotAuthenticatedError,
    PasswordAlreadySetError,
    WeakPasswordError,
)
from taohua.storage import atomic_write_bytes, read_bytes
from taohua.vault.kdf import (
    KdfParams,
    compute_verifier,
    derive_key,
    generate_salt,
    password_strength,
)

if TYPE_CHECKING:
    from taohua.journal.repository import EntryRepository

logger = structlog.get_logger(__name__)

KEYFILE_FORMAT_VERSION = 1


def b64e(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64d(data: str) -> bytes:
    return base64.b64decode(data.encode("ascii"), validate=True)


class KeyfileRecord(BaseModel):
    """Everything needed to verify a password and re-derive its key."""

    format_version: int = KEYFILE_FORMAT_VERSION
    kdf: KdfParams
    salt: str
    verifier_salt: str
    verifier: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_bytes(self) -> bytes:
        return self.model_dump_json(indent=2).encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> KeyfileRecord:
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise CorruptRecordError("unparsable keyfile", {"error": str(e)}) from e


class Session:
    """An unlocked session: the derived key, held in wipeable memory."""

    def __init__(self, key: bytes, kdf_version: int) -> None:
        self._key = bytearray(key)
        self.kdf_version = kdf_version

    @property
    def active(self) -> bool:
        return bool(self._key)

    @property
    def key(self) -> bytes:
        if not self._key:
            raise NotAuthenticatedError("session is locked")
        return bytes(self._key)

    def wipe(self) -> None:
        """Overwrite the key bytes with zeros, then drop them."""
        for i in range(len(self._key)):
            self._key[i] = 0
        self._key = bytearray()

    def __repr__(self) -> str:
        return f"Session(active={self.active}, kdf_version={self.kdf_version})"


class SessionManager:
    """
    Owns the master-password lifecycle and the single active session.

    The session is an explicit object handed to the cipher engine; it is
    created on a successful verify and destroyed on lock.
    """

    def __init__(self, keyfile_path: Path, config: Optional[VaultConfig] = None) -> None:
        self._keyfile_path = keyfile_path
        self._config = config or VaultConfig()
        self._session: Optional[Session] = None

    @property
    def keyfile_path(self) -> Path:
        return self._keyfile_path

    # ------------------------------------------------------------------
    # Keyfile
    # ------------------------------------------------------------------

    def has_master_password(self) -> bool:
        return self._keyfile_path.exists()

    def load_keyfile(self) -> KeyfileRecord:
        return KeyfileRecord.from_bytes(read_bytes(self._keyfile_path))

    def build_keyfile(self, password: str) -> tuple[KeyfileRecord, bytes]:
        """Fresh salts, verifier and key for ``password``. Nothing is written."""
        self._check_strength(password)
        params = KdfParams.from_config(self._config)
        salt = generate_salt(params.salt_length)
        verifier_salt = generate_salt(params.salt_length)
        record = KeyfileRecord(
            kdf=params,
            salt=b64e(salt),
            verifier_salt=b64e(verifier_salt),
            verifier=b64e(compute_verifier(password, verifier_salt, params)),
        )
        return record, derive_key(password, salt, params)

    def _check_strength(self, password: str) -> None:
        score = password_strength(password)
        if score < self._config.min_password_strength:
            raise WeakPasswordError(
                "password too weak",
                {"score": score, "required": self._config.min_password_strength},
            )

    # ------------------------------------------------------------------
    # Password operations
    # ------------------------------------------------------------------

    def set_master_password(self, password: str) -> None:
        """Configure the master password for a new store and open a session."""
        if self.has_master_password():
            raise PasswordAlreadySetError("master password already set")
        record, key = self.build_keyfile(password)
        atomic_write_bytes(self._keyfile_path, record.to_bytes())
        self._replace_session(Session(key, record.kdf.version))
        logger.info("session.master_password_set", kdf=record.kdf.algorithm)

    def verify_master_password(self, password: str) -> bool:
        """Check ``password`` against the stored verifier; unlock on success."""
        if not self.has_master_password():
            return False
        record = self.load_keyfile()
        try:
            verifier_salt = b64d(record.verifier_salt)
            expected = b64d(record.verifier)
            salt = b64d(record.salt)
        except ValueError as e:
            raise CorruptRecordError("keyfile fields are not valid base64", {"error": str(e)}) from e

        candidate = compute_verifier(password, verifier_salt, record.kdf)
        if not hmac.compare_digest(candidate, expected):
            logger.info("session.unlock_rejected")
            return False

        self._replace_session(Session(derive_key(password, salt, record.kdf), record.kdf.version))
        logger.info("session.unlocked")
        return True

    def change_password(self, old: str, new: str, repository: EntryRepository) -> None:
        """
        Re-key the whole store under ``new``.

        The repository re-encrypts every envelope and commits the new keyfile
        in a single all-or-nothing transaction. On any failure the old
        password and the old session remain valid.

        The repository lock is held from the verify until the new session is
        in place, so no other write can seal under the retired key.
        """
        with repository.exclusive():
            if not self.verify_master_password(old):
                raise AuthenticationFailedError("authentication failed")
            record, key = self.build_keyfile(new)
            new_session = Session(key, record.kdf.version)
            try:
                repository.reencrypt_all(self.session, new_session, record.to_bytes())
            except BaseException:
                new_session.wipe()
                raise
            self._replace_session(new_session)
        logger.info("session.password_changed", kdf=record.kdf.algorithm)

    # ------------------------------------------------------------------
    # Session lifetime
    # ------------------------------------------------------------------

    def is_authenticated(self) -> bool:
        return self._session is not None and self._session.active

    @property
    def session(self) -> Session:
        if self._session is None or not self._session.active:
            raise NotAuthenticatedError("session is locked")
        return self._session

    def clear_session(self) -> None:
        if self._session is not None:
            self._session.wipe()
            self._session = None
            logger.info("session.locked")

    lock = clear_session

    def _replace_session(self, session: Session) -> None:
        if self._session is not None and self._session is not session:
            self._session.wipe()
        self._session = session

    def describe(self) -> dict:
        """Non-secret keyfile summary for diagnostics."""
        if not self.has_master_password():
            return {"configured": False}
        record = self.load_keyfile()
        return {
            "configured": True,
            "kdf": record.kdf.model_dump(),
            "created_at": record.created_at.isoformat(),
        }
