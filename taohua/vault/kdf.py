"""
Key Derivation — turning a master password into key material.

Argon2id (memory-hard) is the default; PBKDF2-HMAC-SHA256 is available for
platforms where Argon2 memory costs are impractical. The parameters
that produced a key are versioned and persisted beside the salt, so the cost
can be raised later without locking anyone out of an older store.
"""

from __future__ import annotations

import secrets
import string
from typing import Literal

from argon2.low_level import Type as Argon2Type
from argon2.low_level import hash_secret_raw
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import BaseModel

from taohua.config import PBKDF2_MIN_ITERATIONS, VaultConfig

KEY_LENGTH = 32
SALT_LENGTH = 32
KDF_VERSION = 1

PASSWORD_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits + "!@#$%^&*"

# Prefix mixed into the password when computing the unlock verifier, so the
# verifier and the encryption key never coincide even under the same salt.
_VERIFIER_DOMAIN = b"taohua.verifier.v1\x00"


class KdfParams(BaseModel):
    """Versioned key-derivation parameters, stored with the salt."""

    version: int = KDF_VERSION
    algorithm: Literal["argon2id", "pbkdf2-sha256"] = "argon2id"
    time_cost: int = 3
    memory_cost: int = 65536  # KiB
    parallelism: int = 4
    iterations: int = 600_000
    key_length: int = KEY_LENGTH
    salt_length: int = SALT_LENGTH

    @classmethod
    def from_config(cls, config: VaultConfig) -> KdfParams:
        return cls(
            algorithm=config.kdf_algorithm,
            time_cost=config.argon2_time_cost,
            memory_cost=config.argon2_memory_cost,
            parallelism=config.argon2_parallelism,
            iterations=max(PBKDF2_MIN_ITERATIONS, config.pbkdf2_iterations),
        )


def generate_salt(length: int = SALT_LENGTH) -> bytes:
    return secrets.token_bytes(length)


def derive_key(password: str | bytes, salt: bytes, params: KdfParams) -> bytes:
    """Derive ``params.key_length`` bytes from password and salt. Deterministic."""
    secret = password.encode("utf-8") if isinstance(password, str) else password
    if params.algorithm == "argon2id":
        return hash_secret_raw(
            secret=secret,
            salt=salt,
            time_cost=params.time_cost,
            memory_cost=params.memory_cost,
            parallelism=params.parallelism,
            hash_len=params.key_length,
            type=Argon2Type.ID,
        )
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=params.key_length,
        salt=salt,
        iterations=params.iterations,
    )
    return kdf.derive(secret)


def compute_verifier(password: str, verifier_salt: bytes, params: KdfParams) -> bytes:
    """One-way fingerprint of the password, independent of the encryption key."""
    return derive_key(_VERIFIER_DOMAIN + password.encode("utf-8"), verifier_salt, params)


def password_strength(password: str) -> int:
    """Score a password from 0 to 100 on length and character-class diversity."""
    if not password:
        return 0

    score = 0
    if len(password) >= 8:
        score += 25
    if len(password) >= 12:
        score += 15
    if len(password) >= 16:
        score += 10

    if any(c.islower() for c in password):
        score += 10
    if any(c.isupper() for c in password):
        score += 10
    if any(c.isdigit() for c in password):
        score += 10
    if any(not c.isalnum() for c in password):
        score += 20

    return min(score, 100)


def generate_secure_password(length: int = 16) -> str:
    if length < 1:
        raise ValueError("length must be positive")
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))
