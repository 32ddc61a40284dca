"""
Journal Service — the operation set every caller talks to.

Each public method returns ``Ok(value)`` or ``Err(kind, detail)`` and never
raises. Exceptions from the vault and the journal are translated here, in one
place, so the RPC router and the CLI only ever branch on an ``ErrorKind``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Sequence, TypeVar, Union

import structlog
from pydantic import ValidationError

from taohua.config import TaohuaConfig
from taohua.errors import ErrorKind, InvalidRequestError, TaohuaError
from taohua.journal.models import (
    Attachment,
    AttachmentInput,
    EmotionTag,
    EntryDraft,
    EntryPatch,
    MemoryEntry,
    MemoryMetadata,
    MemoryStats,
    MemoryType,
    SearchFilter,
)
from taohua.journal.recall import DreamEcho
from taohua.journal.repository import KEYFILE_NAME, EntryRepository
from taohua.result import Ok, Result, err_from
from taohua.vault.kdf import generate_secure_password
from taohua.vault.kdf import password_strength as score_password
from taohua.vault.session import SessionManager

logger = structlog.get_logger(__name__)

T = TypeVar("T")

RECALL_HISTORY_FILE = "recall_history.json"


def _validation_detail(error: ValidationError) -> str:
    # include_input=False: inputs may be passwords or entry text
    parts = []
    for item in error.errors(include_url=False, include_input=False):
        location = ".".join(str(p) for p in item.get("loc", ())) or "request"
        parts.append(f"{location}: {item.get('msg', 'invalid')}")
    return "; ".join(parts)


class JournalService:
    """
    Facade over the session manager, the repository and Dream Echo.

    One instance serves one data directory. ``initialize()`` runs crash
    recovery and loads the index; the other operations load lazily if it
    was not called.
    """

    def __init__(self, config: Optional[TaohuaConfig] = None, echo: Optional[DreamEcho] = None) -> None:
        self._config = config or TaohuaConfig()
        root = self._config.journal.data_dir
        self.sessions = SessionManager(root / KEYFILE_NAME, self._config.vault)
        self.repository = EntryRepository(root, self.sessions)
        self._echo = echo

    @property
    def data_dir(self) -> Path:
        return self._config.journal.data_dir

    @property
    def echo(self) -> DreamEcho:
        if self._echo is None:
            journal = self._config.journal
            history_path = self.data_dir / RECALL_HISTORY_FILE if journal.persist_recall_history else None
            self._echo = DreamEcho(self.repository, journal.recall_history_size, history_path)
        return self._echo

    # ------------------------------------------------------------------
    # Error boundary
    # ------------------------------------------------------------------

    def _run(self, operation: str, fn: Callable[[], T]) -> Result[T]:
        try:
            return Ok(fn())
        except TaohuaError as e:
            logger.info("service.operation_failed", operation=operation, kind=e.kind.value, **e.context)
            return err_from(e.kind, e.message, e.context)
        except ValidationError as e:
            detail = _validation_detail(e)
            logger.info("service.invalid_request", operation=operation, detail=detail)
            return err_from(ErrorKind.INVALID_REQUEST, detail)
        except OSError as e:
            logger.error("service.storage_failure", operation=operation, error=str(e))
            return err_from(ErrorKind.STORAGE_IO_FAILURE, str(e))
        except Exception:
            logger.exception("service.unexpected_error", operation=operation)
            return err_from(ErrorKind.INTERNAL, "internal error")

    # ------------------------------------------------------------------
    # Lifecycle and session
    # ------------------------------------------------------------------

    def initialize(self) -> Result[int]:
        def _initialize() -> int:
            count = self.repository.load()
            _ = self.echo
            logger.info(
                "service.initialized",
                data_dir=str(self.data_dir),
                entries=count,
                has_master_password=self.sessions.has_master_password(),
            )
            return count

        return self._run("initialize", _initialize)

    def set_master_password(self, password: str) -> Result[None]:
        return self._run("set_master_password", lambda: self.sessions.set_master_password(password))

    def verify_master_password(self, password: str) -> Result[bool]:
        return self._run("verify_master_password", lambda: self.sessions.verify_master_password(password))

    def has_master_password(self) -> Result[bool]:
        return self._run("has_master_password", self.sessions.has_master_password)

    def lock_session(self) -> Result[None]:
        return self._run("lock_session", self.sessions.lock)

    def is_authenticated(self) -> Result[bool]:
        return self._run("is_authenticated", self.sessions.is_authenticated)

    def change_password(self, old_password: str, new_password: str) -> Result[None]:
        return self._run(
            "change_password",
            lambda: self.sessions.change_password(old_password, new_password, self.repository),
        )

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def create_entry(
        self,
        title: str,
        content: str,
        type: Union[MemoryType, str] = MemoryType.TEXT,
        emotion_tags: Iterable[Union[EmotionTag, str]] = (),
        encrypt: bool = False,
        metadata: Optional[Union[MemoryMetadata, dict]] = None,
        attachments: Sequence[Union[AttachmentInput, dict]] = (),
    ) -> Result[MemoryEntry]:
        def _create() -> MemoryEntry:
            draft = EntryDraft(
                title=title,
                content=content,
                type=type,
                emotion_tags=list(emotion_tags),
                metadata=metadata,
            )
            inputs = [AttachmentInput.model_validate(a) for a in attachments]
            return self.repository.create(draft, encrypt=encrypt, attachments=inputs)

        return self._run("create_entry", _create)

    def update_entry(self, entry_id: str, patch: Union[EntryPatch, dict]) -> Result[MemoryEntry]:
        return self._run(
            "update_entry",
            lambda: self.repository.update(entry_id, EntryPatch.model_validate(patch)),
        )

    def delete_entry(self, entry_id: str) -> Result[None]:
        return self._run("delete_entry", lambda: self.repository.delete(entry_id))

    def get_entry(self, entry_id: str) -> Result[MemoryEntry]:
        return self._run("get_entry", lambda: self.repository.get(entry_id))

    def get_all_entries(self) -> Result[list[MemoryEntry]]:
        return self._run("get_all_entries", self.repository.get_all)

    def get_random_entry(self) -> Result[Optional[MemoryEntry]]:
        """Dream Echo: a fair random pick, or ``Ok(None)`` for an empty journal."""

        def _recall() -> Optional[MemoryEntry]:
            selection = self.echo.select()
            if selection.selected_id is None:
                return None
            # History only records entries that were actually shown
            entry = self.repository.get(selection.selected_id)
            self.echo.commit(selection)
            return entry

        return self._run("get_random_entry", _recall)

    def search_entries(self, criteria: Union[SearchFilter, dict]) -> Result[list[MemoryEntry]]:
        return self._run(
            "search_entries",
            lambda: self.repository.search(SearchFilter.model_validate(criteria)),
        )

    def get_stats(self) -> Result[MemoryStats]:
        return self._run("get_stats", self.repository.stats)

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    def add_attachment(
        self,
        entry_id: str,
        file_name: str,
        data: bytes,
        file_type: str = "application/octet-stream",
    ) -> Result[Attachment]:
        return self._run(
            "add_attachment",
            lambda: self.repository.add_attachment(
                entry_id, AttachmentInput(file_name=file_name, file_type=file_type, data=data)
            ),
        )

    def read_attachment(self, entry_id: str, attachment_id: str) -> Result[bytes]:
        return self._run("read_attachment", lambda: self.repository.read_attachment(entry_id, attachment_id))

    def remove_attachment(self, entry_id: str, attachment_id: str) -> Result[None]:
        return self._run(
            "remove_attachment",
            lambda: self.repository.remove_attachment(entry_id, attachment_id),
        )

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    def backup(self, target_dir: Union[Path, str]) -> Result[Path]:
        return self._run("backup", lambda: self.repository.backup(Path(target_dir).expanduser()))

    def password_strength(self, password: str) -> Result[int]:
        return self._run("password_strength", lambda: score_password(password))

    def generate_password(self, length: int = 16) -> Result[str]:
        def _generate() -> str:
            if not isinstance(length, int) or length < 1:
                raise InvalidRequestError("length must be a positive integer", {"length": length})
            return generate_secure_password(length)

        return self._run("generate_password", _generate)

    def status(self) -> Result[dict[str, Any]]:
        """Non-secret summary of the store, for diagnostics."""

        def _status() -> dict[str, Any]:
            return {
                "data_dir": str(self.data_dir),
                "entries": self.repository.count(),
                "authenticated": self.sessions.is_authenticated(),
                "vault": self.sessions.describe(),
            }

        return self._run("status", _status)
