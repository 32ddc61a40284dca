"""
Shared fixtures for the Taohua test suite.

Key derivation runs with minimal Argon2 cost so the suite stays fast; every
store lives under ``tmp_path``.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from taohua.config import TaohuaConfig, VaultConfig
from taohua.journal.repository import KEYFILE_NAME, EntryRepository
from taohua.service import JournalService
from taohua.vault.session import Session, SessionManager

PASSWORD = "Tr0ub4dor&3"


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def fast_kdf_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Cheap Argon2 parameters and an isolated default data dir."""
    monkeypatch.setenv("TAOHUA_ARGON2_TIME_COST", "1")
    monkeypatch.setenv("TAOHUA_ARGON2_MEMORY_COST", "64")
    monkeypatch.setenv("TAOHUA_ARGON2_PARALLELISM", "1")
    monkeypatch.setenv("TAOHUA_DATA_DIR", str(tmp_path / "default_data"))
    monkeypatch.delenv("TAOHUA_KDF_ALGORITHM", raising=False)
    monkeypatch.delenv("TAOHUA_PERSIST_RECALL_HISTORY", raising=False)
    monkeypatch.delenv("TAOHUA_RECALL_HISTORY_SIZE", raising=False)
    monkeypatch.delenv("TAOHUA_MIN_PASSWORD_STRENGTH", raising=False)


# ---------------------------------------------------------------------------
# Vault fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def vault_config() -> VaultConfig:
    return VaultConfig()


@pytest.fixture()
def store_dir(tmp_path: Path) -> Path:
    path = tmp_path / "store"
    path.mkdir()
    return path


@pytest.fixture()
def sessions(store_dir: Path, vault_config: VaultConfig) -> SessionManager:
    """A SessionManager with no master password yet."""
    return SessionManager(store_dir / KEYFILE_NAME, vault_config)


@pytest.fixture()
def unlocked(sessions: SessionManager) -> SessionManager:
    """A SessionManager with PASSWORD set and the session open."""
    sessions.set_master_password(PASSWORD)
    return sessions


@pytest.fixture()
def raw_session() -> Session:
    """A session over a fixed key, for cipher tests that skip the KDF."""
    return Session(bytes(range(32)), kdf_version=1)


# ---------------------------------------------------------------------------
# Journal fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def repository(store_dir: Path, unlocked: SessionManager) -> EntryRepository:
    repo = EntryRepository(store_dir, unlocked)
    repo.load()
    return repo


@pytest.fixture()
def service(tmp_path: Path) -> JournalService:
    svc = JournalService(TaohuaConfig(data_dir=tmp_path / "journal"))
    assert svc.initialize().ok
    return svc


@pytest.fixture()
def reopen(store_dir: Path, vault_config: VaultConfig):
    """Simulate a process restart: fresh objects over the same directory."""

    def _reopen() -> tuple[SessionManager, EntryRepository]:
        fresh_sessions = SessionManager(store_dir / KEYFILE_NAME, vault_config)
        repo = EntryRepository(store_dir, fresh_sessions)
        repo.load()
        return fresh_sessions, repo

    return _reopen
