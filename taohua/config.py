# taohua/config.py
"""
Configuration for the Taohua journal.

All configuration flows through this module. Values are loaded from environment
variables (via .env file) and validated with Pydantic. Nothing here is secret:
the master password is never configured, only the cost of deriving keys from it.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

from taohua.errors import StorageIOError

logger = structlog.get_logger(__name__)

# Resolve .env relative to the project root (one level above taohua/ package),
# so the config works regardless of the user's current working directory.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"

_DEFAULT_DATA_DIR = Path("./taohua_data")


def _is_source_checkout() -> bool:
    # An installed package sits in site-packages with no pyproject.toml beside it
    return (_PROJECT_ROOT / "pyproject.toml").is_file()


def _user_data_dir() -> Path:
    """Per-user journal location, following XDG_DATA_HOME when set."""
    xdg = os.environ.get("XDG_DATA_HOME")
    base = Path(xdg) if xdg else Path.home() / ".local" / "share"
    return base / "taohua"

PBKDF2_MIN_ITERATIONS = 100_000


class VaultConfig(BaseSettings):
    """Key derivation cost and password policy."""

    kdf_algorithm: Literal["argon2id", "pbkdf2-sha256"] = Field(
        "argon2id", alias="TAOHUA_KDF_ALGORITHM"
    )
    argon2_time_cost: int = Field(3, alias="TAOHUA_ARGON2_TIME_COST")
    argon2_memory_cost: int = Field(65536, alias="TAOHUA_ARGON2_MEMORY_COST")  # KiB
    argon2_parallelism: int = Field(4, alias="TAOHUA_ARGON2_PARALLELISM")
    pbkdf2_iterations: int = Field(600_000, alias="TAOHUA_PBKDF2_ITERATIONS")

    # Passwords scoring below this (0-100) are rejected
    min_password_strength: int = Field(60, alias="TAOHUA_MIN_PASSWORD_STRENGTH")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "VaultConfig":
        self.argon2_time_cost = max(1, int(self.argon2_time_cost))
        self.argon2_parallelism = max(1, int(self.argon2_parallelism))
        # Argon2 requires at least 8 KiB per lane
        self.argon2_memory_cost = max(8 * self.argon2_parallelism, int(self.argon2_memory_cost))
        if self.pbkdf2_iterations < PBKDF2_MIN_ITERATIONS:
            logger.warning(
                "config.pbkdf2_iterations_raised",
                requested=self.pbkdf2_iterations,
                minimum=PBKDF2_MIN_ITERATIONS,
            )
            self.pbkdf2_iterations = PBKDF2_MIN_ITERATIONS
        self.min_password_strength = max(0, min(100, int(self.min_password_strength)))
        return self


class JournalConfig(BaseSettings):
    """Where the journal lives and how Dream Echo remembers what it showed."""

    data_dir: Path = Field(_DEFAULT_DATA_DIR, alias="TAOHUA_DATA_DIR")

    # Dream Echo avoids repeating the last N recalled entries
    recall_history_size: int = Field(10, alias="TAOHUA_RECALL_HISTORY_SIZE")
    persist_recall_history: bool = Field(False, alias="TAOHUA_PERSIST_RECALL_HISTORY")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "JournalConfig":
        self.recall_history_size = max(1, int(self.recall_history_size))
        return self


class TaohuaConfig:
    """
    Master configuration that composes the subsystem configs.

    Every component receives its config from here. No global state.
    """

    def __init__(self, data_dir: Path | None = None):
        self.vault = VaultConfig()
        self.journal = JournalConfig()
        if data_dir is not None:
            # An explicit directory (e.g. from the CLI) is relative to the CWD
            self.journal.data_dir = Path(data_dir).expanduser().resolve()

        self._resolve_paths()
        try:
            self.journal.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIOError(
                "cannot create data directory",
                {"path": str(self.journal.data_dir), "error": str(e)},
            ) from e

    def _resolve_paths(self) -> None:
        """
        Make data_dir absolute.

        In a source checkout a relative path resolves against the project
        root, so ``taohua`` works from any directory. An installed package
        uses the per-user data directory for the default and the CWD for
        any other relative path.
        """
        p = self.journal.data_dir.expanduser()
        if p.is_absolute():
            self.journal.data_dir = p
            return
        if _is_source_checkout():
            self.journal.data_dir = (_PROJECT_ROOT / p).resolve()
        elif p == _DEFAULT_DATA_DIR:
            self.journal.data_dir = _user_data_dir()
        else:
            self.journal.data_dir = p.resolve()

    def __repr__(self) -> str:
        return (
            f"TaohuaConfig(data_dir={self.journal.data_dir}, "
            f"kdf={self.vault.kdf_algorithm}, "
            f"recall_history={self.journal.recall_history_size})"
        )
