"""
Authenticated Encryption Engine — AES-256-GCM envelopes.

Each call to ``encrypt`` draws a fresh 96-bit nonce and binds the ciphertext
to the caller's context (entry id, field, attachment id) and to the envelope
header itself. Any change to ciphertext, tag, nonce, header or context makes
``decrypt`` raise ``AuthenticationFailedError``; it never returns partial or
altered plaintext.
"""

from __future__ import annotations

import binascii
import secrets
from typing import Literal, Optional

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import BaseModel, ValidationError

from taohua.errors import AuthenticationFailedError
from taohua.vault.session import Session, SessionManager, b64d, b64e

logger = structlog.get_logger(__name__)

ENVELOPE_VERSION = 1
ALGORITHM = "AES-256-GCM"
NONCE_LENGTH = 12
TAG_LENGTH = 16

_FAILURE_MESSAGE = "authentication failed"


class EncryptionEnvelope(BaseModel):
    """Self-describing sealed payload: header, nonce, ciphertext || tag."""

    version: int = ENVELOPE_VERSION
    algorithm: Literal["AES-256-GCM"] = ALGORITHM
    kdf_version: int
    nonce: str
    ciphertext: str

    def header(self) -> bytes:
        return f"taohua|v{self.version}|{self.algorithm}|kdf{self.kdf_version}".encode("ascii")

    def to_bytes(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> EncryptionEnvelope:
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise AuthenticationFailedError(_FAILURE_MESSAGE) from e


def _aad(envelope: EncryptionEnvelope, associated_data: bytes) -> bytes:
    header = envelope.header()
    # Length-prefix the header so header/context boundaries cannot shift
    return len(header).to_bytes(2, "big") + header + associated_data


def encrypt_with(session: Session, plaintext: bytes, associated_data: bytes = b"") -> EncryptionEnvelope:
    key = session.key
    nonce = secrets.token_bytes(NONCE_LENGTH)
    envelope = EncryptionEnvelope(kdf_version=session.kdf_version, nonce=b64e(nonce), ciphertext="")
    sealed = AESGCM(key).encrypt(nonce, plaintext, _aad(envelope, associated_data))
    envelope.ciphertext = b64e(sealed)
    return envelope


def decrypt_with(session: Session, envelope: EncryptionEnvelope, associated_data: bytes = b"") -> bytes:
    key = session.key
    try:
        nonce = b64d(envelope.nonce)
        sealed = b64d(envelope.ciphertext)
        if len(nonce) != NONCE_LENGTH or len(sealed) < TAG_LENGTH:
            raise ValueError("malformed envelope")
        return AESGCM(key).decrypt(nonce, sealed, _aad(envelope, associated_data))
    except (InvalidTag, ValueError, binascii.Error) as e:
        logger.debug("cipher.decrypt_rejected")
        raise AuthenticationFailedError(_FAILURE_MESSAGE) from e


class CipherEngine:
    """
    Encrypts and decrypts with the session the manager currently holds.

    An explicit ``session`` overrides it, for work that spans two keys such
    as a password change.
    """

    def __init__(self, sessions: SessionManager) -> None:
        self._sessions = sessions

    def _session(self, session: Optional[Session]) -> Session:
        return session if session is not None else self._sessions.session

    def encrypt(
        self,
        plaintext: bytes,
        associated_data: bytes = b"",
        session: Optional[Session] = None,
    ) -> EncryptionEnvelope:
        return encrypt_with(self._session(session), plaintext, associated_data)

    def decrypt(
        self,
        envelope: EncryptionEnvelope,
        associated_data: bytes = b"",
        session: Optional[Session] = None,
    ) -> bytes:
        return decrypt_with(self._session(session), envelope, associated_data)
