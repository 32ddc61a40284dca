"""Vault — key derivation, session lifetime and authenticated encryption."""
from taohua.vault.cipher import CipherEngine, EncryptionEnvelope
from taohua.vault.kdf import KdfParams, derive_key, generate_secure_password, password_strength
from taohua.vault.session import KeyfileRecord, Session, SessionManager

__all__ = [
    "CipherEngine",
    "EncryptionEnvelope",
    "KdfParams",
    "KeyfileRecord",
    "Session",
    "SessionManager",
    "derive_key",
    "generate_secure_password",
    "password_strength",
]
