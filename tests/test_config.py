"""
Tests for taohua.config — settings loading and limit normalization.
"""

from __future__ import annotations

from pathlib import Path

import pytest

import taohua.config as config_module
from taohua.config import (
    PBKDF2_MIN_ITERATIONS,
    JournalConfig,
    TaohuaConfig,
    VaultConfig,
)
from taohua.errors import StorageIOError


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "TAOHUA_ARGON2_TIME_COST",
        "TAOHUA_ARGON2_MEMORY_COST",
        "TAOHUA_ARGON2_PARALLELISM",
        "TAOHUA_PBKDF2_ITERATIONS",
    ):
        monkeypatch.delenv(name, raising=False)


# ---------------------------------------------------------------------------
# VaultConfig
# ---------------------------------------------------------------------------

class TestVaultConfig:
    def test_defaults(self, clean_env: None) -> None:
        config = VaultConfig()
        assert config.kdf_algorithm == "argon2id"
        assert config.argon2_time_cost == 3
        assert config.argon2_memory_cost == 65536
        assert config.argon2_parallelism == 4
        assert config.pbkdf2_iterations == 600_000
        assert config.min_password_strength == 60

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TAOHUA_KDF_ALGORITHM", "pbkdf2-sha256")
        monkeypatch.setenv("TAOHUA_MIN_PASSWORD_STRENGTH", "80")
        config = VaultConfig()
        assert config.kdf_algorithm == "pbkdf2-sha256"
        assert config.min_password_strength == 80

    def test_field_names_accepted(self) -> None:
        config = VaultConfig(argon2_time_cost=2)
        assert config.argon2_time_cost == 2

    def test_clamps_argon2_costs(self) -> None:
        config = VaultConfig(argon2_time_cost=0, argon2_parallelism=0, argon2_memory_cost=1)
        assert config.argon2_time_cost == 1
        assert config.argon2_parallelism == 1
        assert config.argon2_memory_cost == 8

    def test_memory_scales_with_parallelism(self) -> None:
        config = VaultConfig(argon2_parallelism=4, argon2_memory_cost=8)
        assert config.argon2_memory_cost == 32

    def test_pbkdf2_iterations_floor(self) -> None:
        config = VaultConfig(pbkdf2_iterations=1000)
        assert config.pbkdf2_iterations == PBKDF2_MIN_ITERATIONS

    @pytest.mark.parametrize("raw,expected", [(-5, 0), (150, 100), (60, 60)])
    def test_strength_threshold_clamped(self, raw: int, expected: int) -> None:
        assert VaultConfig(min_password_strength=raw).min_password_strength == expected


# ---------------------------------------------------------------------------
# JournalConfig / TaohuaConfig
# ---------------------------------------------------------------------------

class TestJournalConfig:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("TAOHUA_DATA_DIR", raising=False)
        config = JournalConfig()
        assert config.data_dir == Path("./taohua_data")
        assert config.recall_history_size == 10
        assert config.persist_recall_history is False

    def test_history_size_at_least_one(self) -> None:
        assert JournalConfig(recall_history_size=0).recall_history_size == 1

    def test_persist_flag_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TAOHUA_PERSIST_RECALL_HISTORY", "true")
        assert JournalConfig().persist_recall_history is True


class TestTaohuaConfig:
    def test_explicit_data_dir_created(self, tmp_path: Path) -> None:
        target = tmp_path / "nested" / "journal"
        config = TaohuaConfig(data_dir=target)
        assert config.journal.data_dir == target.resolve()
        assert target.is_dir()

    def test_env_data_dir(self, tmp_path: Path) -> None:
        config = TaohuaConfig()
        assert config.journal.data_dir == tmp_path / "default_data"
        assert config.journal.data_dir.is_dir()

    def test_relative_data_dir_is_absolute(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        config = TaohuaConfig(data_dir=Path("relative"))
        assert config.journal.data_dir.is_absolute()
        assert config.journal.data_dir == (tmp_path / "relative").resolve()

    def test_composes_subconfigs(self, tmp_path: Path) -> None:
        config = TaohuaConfig(data_dir=tmp_path)
        assert isinstance(config.vault, VaultConfig)
        assert isinstance(config.journal, JournalConfig)
        assert "kdf=argon2id" in repr(config)


class TestDataDirResolution:
    @pytest.fixture()
    def installed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(config_module, "_is_source_checkout", lambda: False)

    def test_installed_default_uses_user_data_dir(
        self, installed: None, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("TAOHUA_DATA_DIR", raising=False)
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))
        config = TaohuaConfig()
        assert config.journal.data_dir == tmp_path / "xdg" / "taohua"
        assert config.journal.data_dir.is_dir()

    def test_installed_default_without_xdg(
        self, installed: None, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("TAOHUA_DATA_DIR", raising=False)
        monkeypatch.delenv("XDG_DATA_HOME", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        config = TaohuaConfig()
        assert config.journal.data_dir == tmp_path / ".local" / "share" / "taohua"

    def test_installed_relative_env_uses_cwd(
        self, installed: None, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("TAOHUA_DATA_DIR", "mine")
        config = TaohuaConfig()
        assert config.journal.data_dir == (tmp_path / "mine").resolve()

    def test_source_checkout_uses_project_root(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(config_module, "_PROJECT_ROOT", tmp_path)
        (tmp_path / "pyproject.toml").write_text("[project]\n")
        monkeypatch.delenv("TAOHUA_DATA_DIR", raising=False)
        config = TaohuaConfig()
        assert config.journal.data_dir == (tmp_path / "taohua_data").resolve()

    def test_unwritable_data_dir_is_storage_error(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def denied(self, *args, **kwargs) -> None:
            raise PermissionError("read-only file system")

        monkeypatch.setattr(Path, "mkdir", denied)
        with pytest.raises(StorageIOError) as excinfo:
            TaohuaConfig(data_dir=tmp_path / "locked")
        assert excinfo.value.context["path"] == str((tmp_path / "locked").resolve())
