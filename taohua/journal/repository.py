"""
Entry Repository — the durable, indexed collection of memories.

Layout under the data directory:

    vault.json                           keyfile (owned by the SessionManager)
    entries/<id>.json                    one record per entry
    attachments/<entry_id>/<blob>.bin    attachment bytes (raw or sealed)
    .rekey/                              staging area for a password change

Every file write is atomic (see ``taohua.storage``). The in-memory index is
rebuilt from the records on ``load()`` without decrypting anything; plaintext
only exists transiently while a caller asks for it.

One ``RLock`` serialises mutations, and readers decrypt under it too, so a
read sees either the state before a mutation or the state after it, and never
records of one key paired with the session of another. ``exclusive()`` lets
the session manager hold the lock across a whole password change.
"""

from __future__ import annotations

import json
import os
import shutil
import threading
import uuid
from collections import Counter
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence

import structlog

from taohua.errors import (
    CorruptRecordError,
    NotAuthenticatedError,
    NotFoundError,
    StorageIOError,
)
from taohua.journal.models import (
    Attachment,
    AttachmentInput,
    EntryDraft,
    EntryPatch,
    MemoryEntry,
    MemoryMetadata,
    MemoryStats,
    SearchFilter,
    utcnow,
)
from taohua.journal.records import (
    EntryRecord,
    SealedBody,
    StoredAttachment,
    attachment_aad,
    payload_aad,
)
from taohua.storage import (
    atomic_write_bytes,
    best_effort_chmod,
    fsync_dir,
    read_bytes,
    read_json,
    remove_orphaned_temps,
    unlink_if_exists,
)
from taohua.vault.cipher import CipherEngine, EncryptionEnvelope
from taohua.vault.session import Session, SessionManager

logger = structlog.get_logger(__name__)

ENTRIES_DIR = "entries"
ATTACHMENTS_DIR = "attachments"
REKEY_DIR = ".rekey"
COMMIT_MARKER = "COMMIT"
KEYFILE_NAME = "vault.json"
BLOB_SUFFIX = ".bin"


class EntryRepository:
    """
    Owns the entry index and every file under ``entries/`` and ``attachments/``.

    Encryption always goes through the session held by ``sessions``; the
    repository never sees a password.
    """

    def __init__(self, root: Path, sessions: SessionManager) -> None:
        self.root = root
        self._sessions = sessions
        self._cipher = CipherEngine(sessions)
        self._entries_dir = root / ENTRIES_DIR
        self._attachments_dir = root / ATTACHMENTS_DIR
        self._rekey_dir = root / REKEY_DIR
        self._lock = threading.RLock()
        self._index: dict[str, EntryRecord] = {}
        self._next_seq = 0
        self._loaded = False

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def load(self) -> int:
        """
        Recover from any interrupted write, then rebuild the index.

        Returns the number of entries loaded.
        """
        with self._lock:
            try:
                for directory in (self.root, self._entries_dir, self._attachments_dir):
                    directory.mkdir(parents=True, exist_ok=True)
                    best_effort_chmod(directory, 0o700)
            except OSError as e:
                raise StorageIOError("cannot create store directories", {"error": str(e)}) from e

            self._recover_rekey()
            remove_orphaned_temps(self.root)

            records: list[EntryRecord] = []
            for path in self._entries_dir.glob("*.json"):
                record = EntryRecord.parse(read_json(path), source=str(path))
                if record.id != path.stem:
                    raise CorruptRecordError(
                        "record id does not match its file name",
                        {"path": str(path)},
                    )
                records.append(record)

            records.sort(key=lambda r: (r.created_at, r.seq))
            self._index = {r.id: r for r in records}
            self._next_seq = max((r.seq for r in records), default=-1) + 1
            self._remove_orphaned_blobs()
            self._loaded = True

        logger.info(
            "repository.loaded",
            entries=len(records),
            encrypted=sum(1 for r in records if r.is_encrypted),
        )
        return len(records)

    def _ensure_loaded(self) -> None:
        with self._lock:
            if not self._loaded:
                self.load()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        """Hold the store lock across several steps; re-entrant for this thread."""
        self._ensure_loaded()
        with self._lock:
            yield

    def _recover_rekey(self) -> None:
        if not self._rekey_dir.exists():
            return
        if (self._rekey_dir / COMMIT_MARKER).exists():
            moved = self._apply_staging()
            logger.warning("repository.rekey_rolled_forward", files=moved)
        else:
            self._discard_staging()
            logger.warning("repository.rekey_discarded")

    def _remove_orphaned_blobs(self) -> None:
        """Delete blob files that no committed record references."""
        if not self._attachments_dir.exists():
            return
        removed = 0
        for entry_dir in self._attachments_dir.iterdir():
            record = self._index.get(entry_dir.name)
            if record is None:
                shutil.rmtree(entry_dir, ignore_errors=True)
                removed += 1
                continue
            referenced = {a.blob for a in record.attachments}
            for blob in entry_dir.iterdir():
                if blob.name not in referenced:
                    unlink_if_exists(blob)
                    removed += 1
        if removed:
            logger.info("repository.orphaned_blobs_removed", count=removed)

    # ------------------------------------------------------------------
    # Paths and raw I/O
    # ------------------------------------------------------------------

    def _record_path(self, entry_id: str, base: Optional[Path] = None) -> Path:
        return (base or self.root) / ENTRIES_DIR / f"{entry_id}.json"

    def _blob_path(self, entry_id: str, blob: str, base: Optional[Path] = None) -> Path:
        return (base or self.root) / ATTACHMENTS_DIR / entry_id / blob

    def _write_record(self, record: EntryRecord) -> None:
        atomic_write_bytes(self._record_path(record.id), record.to_bytes())

    def _seal_blob(
        self,
        entry_id: str,
        attachment: StoredAttachment,
        data: bytes,
        session: Optional[Session],
        base: Optional[Path] = None,
    ) -> None:
        if attachment.is_encrypted:
            if session is None:
                raise NotAuthenticatedError("session is locked")
            sealed = self._cipher.encrypt(data, attachment_aad(entry_id, attachment.id), session)
            data = sealed.to_bytes()
        atomic_write_bytes(self._blob_path(entry_id, attachment.blob, base), data)

    def _open_blob(self, entry_id: str, attachment: StoredAttachment, session: Optional[Session]) -> bytes:
        try:
            raw = read_bytes(self._blob_path(entry_id, attachment.blob))
        except FileNotFoundError as e:
            raise CorruptRecordError(
                "attachment blob missing",
                {"entry_id": entry_id, "attachment_id": attachment.id},
            ) from e
        if not attachment.is_encrypted:
            return raw
        if session is None:
            raise NotAuthenticatedError("session is locked")
        envelope = EncryptionEnvelope.from_bytes(raw)
        return self._cipher.decrypt(envelope, attachment_aad(entry_id, attachment.id), session)

    def _discard_blobs(self, entry_id: str, attachments: Iterable[StoredAttachment]) -> None:
        # Leftovers are swept by the next load()
        for attachment in attachments:
            try:
                unlink_if_exists(self._blob_path(entry_id, attachment.blob))
            except StorageIOError as e:
                logger.warning(
                    "repository.blob_cleanup_failed",
                    entry_id=entry_id,
                    attachment_id=attachment.id,
                    error=e.message,
                )

    # ------------------------------------------------------------------
    # Sealing
    # ------------------------------------------------------------------

    def _session_for(self, needed: bool) -> Optional[Session]:
        return self._sessions.session if needed else None

    def _open(self, record: EntryRecord, session: Optional[Session]) -> MemoryEntry:
        if not record.is_encrypted:
            return record.to_entry(record.plain_body())
        if session is None:
            raise NotAuthenticatedError("session is locked")
        assert record.payload is not None
        plaintext = self._cipher.decrypt(record.payload, payload_aad(record.id), session)
        try:
            body = SealedBody.model_validate_json(plaintext)
        except ValueError as e:
            raise CorruptRecordError("sealed payload is not a valid body", {"entry_id": record.id}) from e
        return record.to_entry(body)

    def _build_record(
        self,
        base: EntryRecord,
        body: SealedBody,
        encrypt: bool,
        session: Optional[Session],
    ) -> EntryRecord:
        """Return ``base`` with ``body`` stored in the clear or sealed."""
        if not encrypt:
            return base.model_copy(update={
                "is_encrypted": False,
                "title": body.title,
                "content": body.content,
                "metadata": body.metadata,
                "payload": None,
            })
        if session is None:
            raise NotAuthenticatedError("session is locked")
        payload = self._cipher.encrypt(body.model_dump_json().encode("utf-8"), payload_aad(base.id), session)
        return base.model_copy(update={
            "is_encrypted": True,
            "title": None,
            "content": None,
            "metadata": None,
            "payload": payload,
        })

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _snapshot(self) -> list[EntryRecord]:
        self._ensure_loaded()
        with self._lock:
            return list(self._index.values())

    def _lookup(self, entry_id: str) -> EntryRecord:
        self._ensure_loaded()
        with self._lock:
            record = self._index.get(entry_id)
        if record is None:
            raise NotFoundError("entry not found", {"entry_id": entry_id})
        return record

    def ids(self) -> list[str]:
        return [r.id for r in self._snapshot()]

    def count(self) -> int:
        return len(self._snapshot())

    def contains(self, entry_id: str) -> bool:
        self._ensure_loaded()
        with self._lock:
            return entry_id in self._index

    def get(self, entry_id: str) -> MemoryEntry:
        self._ensure_loaded()
        with self._lock:
            record = self._lookup(entry_id)
            return self._open(record, self._session_for(record.is_encrypted))

    def get_all(self) -> list[MemoryEntry]:
        """
        Every entry in insertion order, decrypted.

        If any entry is encrypted and the session is locked this raises
        ``NotAuthenticatedError`` rather than returning a partial list.
        """
        self._ensure_loaded()
        with self._lock:
            records = list(self._index.values())
            session = self._session_for(any(r.is_encrypted for r in records))
            return [self._open(r, session) for r in records]

    def search(self, criteria: SearchFilter) -> list[MemoryEntry]:
        return [entry for entry in self.get_all() if criteria.matches(entry)]

    def stats(self, today: Optional[date] = None) -> MemoryStats:
        entries = self.get_all()
        if not entries:
            return MemoryStats()

        total_words = sum(e.metadata.word_count or 0 for e in entries if e.metadata)
        by_type = Counter(e.type.value for e in entries)
        by_emotion = Counter(tag.value for e in entries for tag in e.emotion_tags)
        by_month = Counter(e.created_at.astimezone(timezone.utc).strftime("%Y-%m") for e in entries)
        days = {e.created_at.astimezone(timezone.utc).date() for e in entries}
        longest, current = _streaks(days, today or utcnow().date())

        return MemoryStats(
            total_entries=len(entries),
            total_words=total_words,
            average_words_per_entry=round(total_words / len(entries), 2),
            entries_by_type=dict(by_type),
            entries_by_emotion=dict(by_emotion),
            entries_by_month=dict(sorted(by_month.items())),
            longest_streak=longest,
            current_streak=current,
        )

    def read_attachment(self, entry_id: str, attachment_id: str) -> bytes:
        self._ensure_loaded()
        with self._lock:
            record = self._lookup(entry_id)
            attachment = _find_attachment(record, attachment_id)
            return self._open_blob(entry_id, attachment, self._session_for(attachment.is_encrypted))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(
        self,
        draft: EntryDraft,
        encrypt: bool = False,
        attachments: Sequence[AttachmentInput] = (),
    ) -> MemoryEntry:
        """
        Add a new entry. Blobs are written first, then the record; the index
        changes only once the record is durable.
        """
        self._ensure_loaded()
        now = utcnow()
        entry_id = str(uuid.uuid4())
        metadata = (draft.metadata or MemoryMetadata()).recomputed(draft.content)
        body = SealedBody(title=draft.title, content=draft.content, metadata=metadata)

        with self._lock:
            session = self._session_for(encrypt)
            stored = [_new_stored_attachment(item, encrypt, now) for item in attachments]
            written: list[StoredAttachment] = []
            try:
                for item, attachment in zip(attachments, stored):
                    self._seal_blob(entry_id, attachment, item.data, session)
                    written.append(attachment)
                base = EntryRecord(
                    id=entry_id,
                    seq=self._next_seq,
                    type=draft.type,
                    emotion_tags=draft.emotion_tags,
                    created_at=now,
                    updated_at=now,
                    attachments=stored,
                    title=draft.title,
                    content=draft.content,
                )
                record = self._build_record(base, body, encrypt, session)
                self._write_record(record)
            except BaseException:
                self._discard_blobs(entry_id, written)
                raise
            self._index[entry_id] = record
            self._next_seq += 1

        logger.info(
            "repository.entry_created",
            entry_id=entry_id,
            encrypted=encrypt,
            attachments=len(stored),
        )
        return record.to_entry(body)

    def update(self, entry_id: str, patch: EntryPatch) -> MemoryEntry:
        """
        Apply ``patch`` and re-seal under the current session.

        ``created_at`` is preserved; ``updated_at`` becomes now (never earlier
        than ``created_at``). ``patch.encrypt`` toggles encryption of the
        entry and all of its attachments.
        """
        self._ensure_loaded()
        with self._lock:
            record = self._lookup(entry_id)
            encrypt = record.is_encrypted if patch.encrypt is None else patch.encrypt
            session = self._session_for(record.is_encrypted or encrypt)
            current = self._open(record, session)
            if patch.is_empty():
                return current

            content = patch.content if patch.content is not None else current.content
            metadata = patch.metadata if patch.metadata is not None else (current.metadata or MemoryMetadata())
            body = SealedBody(
                title=patch.title if patch.title is not None else current.title,
                content=content,
                metadata=metadata.recomputed(content),
            )

            old_blobs: list[StoredAttachment] = []
            attachments = list(record.attachments)
            if encrypt != record.is_encrypted and attachments:
                old_blobs = attachments
                attachments = self._reseal_attachments(record, encrypt, session)

            base = record.model_copy(update={
                "type": patch.type if patch.type is not None else record.type,
                "emotion_tags": patch.emotion_tags if patch.emotion_tags is not None else record.emotion_tags,
                "updated_at": max(utcnow(), record.created_at),
                "attachments": attachments,
            })
            updated = self._build_record(base, body, encrypt, session)
            try:
                self._write_record(updated)
            except BaseException:
                if old_blobs:
                    self._discard_blobs(entry_id, attachments)
                raise
            self._index[entry_id] = updated
            self._discard_blobs(entry_id, old_blobs)

        logger.info(
            "repository.entry_updated",
            entry_id=entry_id,
            encrypted=encrypt,
            encryption_toggled=encrypt != record.is_encrypted,
        )
        return updated.to_entry(body)

    def _reseal_attachments(
        self,
        record: EntryRecord,
        encrypt: bool,
        session: Optional[Session],
    ) -> list[StoredAttachment]:
        """Write each attachment under a fresh blob name with the new sealing."""
        resealed: list[StoredAttachment] = []
        try:
            for attachment in record.attachments:
                data = self._open_blob(record.id, attachment, session)
                fresh = attachment.model_copy(update={"is_encrypted": encrypt, "blob": _blob_name()})
                self._seal_blob(record.id, fresh, data, session)
                resealed.append(fresh)
        except BaseException:
            self._discard_blobs(record.id, resealed)
            raise
        return resealed

    def delete(self, entry_id: str) -> None:
        """Remove the record (the commit point), then its blobs."""
        self._ensure_loaded()
        with self._lock:
            record = self._lookup(entry_id)
            unlink_if_exists(self._record_path(entry_id))
            fsync_dir(self._entries_dir)
            del self._index[entry_id]
            self._discard_blobs(entry_id, record.attachments)
            entry_dir = self._attachments_dir / entry_id
            if entry_dir.exists():
                shutil.rmtree(entry_dir, ignore_errors=True)
        logger.info("repository.entry_deleted", entry_id=entry_id)

    def add_attachment(self, entry_id: str, item: AttachmentInput) -> Attachment:
        self._ensure_loaded()
        with self._lock:
            record = self._lookup(entry_id)
            session = self._session_for(record.is_encrypted)
            now = utcnow()
            attachment = _new_stored_attachment(item, record.is_encrypted, now)
            self._seal_blob(entry_id, attachment, item.data, session)
            updated = record.model_copy(update={
                "attachments": [*record.attachments, attachment],
                "updated_at": max(now, record.created_at),
            })
            try:
                self._write_record(updated)
            except BaseException:
                self._discard_blobs(entry_id, [attachment])
                raise
            self._index[entry_id] = updated

        logger.info(
            "repository.attachment_added",
            entry_id=entry_id,
            attachment_id=attachment.id,
            size=attachment.file_size,
        )
        return attachment.public()

    def remove_attachment(self, entry_id: str, attachment_id: str) -> None:
        self._ensure_loaded()
        with self._lock:
            record = self._lookup(entry_id)
            attachment = _find_attachment(record, attachment_id)
            updated = record.model_copy(update={
                "attachments": [a for a in record.attachments if a.id != attachment_id],
                "updated_at": max(utcnow(), record.created_at),
            })
            self._write_record(updated)
            self._index[entry_id] = updated
            self._discard_blobs(entry_id, [attachment])
        logger.info("repository.attachment_removed", entry_id=entry_id, attachment_id=attachment_id)

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def backup(self, target_dir: Path) -> Path:
        """
        Copy the store as it is at rest (still encrypted) into a timestamped
        directory under ``target_dir``. Returns the new directory.
        """
        self._ensure_loaded()
        with self._lock:
            stamp = utcnow().strftime("%Y%m%d-%H%M%S")
            dest = target_dir / f"taohua-backup-{stamp}"
            suffix = 1
            while dest.exists():
                dest = target_dir / f"taohua-backup-{stamp}-{suffix}"
                suffix += 1
            try:
                dest.mkdir(parents=True)
                keyfile = self.root / KEYFILE_NAME
                if keyfile.exists():
                    shutil.copy2(keyfile, dest / KEYFILE_NAME)
                shutil.copytree(self._entries_dir, dest / ENTRIES_DIR)
                shutil.copytree(self._attachments_dir, dest / ATTACHMENTS_DIR)
            except OSError as e:
                raise StorageIOError("backup failed", {"target": str(dest), "error": str(e)}) from e
            best_effort_chmod(dest, 0o700)

        logger.info("repository.backup_written", target=str(dest), entries=len(self._index))
        return dest

    # ------------------------------------------------------------------
    # Re-key
    # ------------------------------------------------------------------

    def reencrypt_all(self, old_session: Session, new_session: Session, keyfile_bytes: bytes) -> int:
        """
        Move every sealed record and blob, plus the keyfile, to a new key.

        All-or-nothing: everything is staged under ``.rekey/``, the commit
        marker is written last, and only then are staged files moved into
        place. A failure before the marker leaves the store untouched; a
        crash after it is rolled forward by the next ``load()``.

        Returns the number of re-encrypted entries.
        """
        self._ensure_loaded()
        with self._lock:
            if self._rekey_dir.exists():
                self._discard_staging()
            staged: list[EntryRecord] = []
            try:
                for record in self._index.values():
                    if not record.is_encrypted:
                        continue
                    assert record.payload is not None
                    aad = payload_aad(record.id)
                    plaintext = self._cipher.decrypt(record.payload, aad, old_session)
                    for attachment in record.attachments:
                        if attachment.is_encrypted:
                            data = self._open_blob(record.id, attachment, old_session)
                            self._seal_blob(record.id, attachment, data, new_session, base=self._rekey_dir)
                    resealed = self._cipher.encrypt(plaintext, aad, new_session)
                    rekeyed = record.model_copy(update={"payload": resealed})
                    atomic_write_bytes(self._record_path(record.id, base=self._rekey_dir), rekeyed.to_bytes())
                    staged.append(rekeyed)

                atomic_write_bytes(self._rekey_dir / KEYFILE_NAME, keyfile_bytes)
                manifest = {"entries": [r.id for r in staged], "staged_at": utcnow().isoformat()}
                atomic_write_bytes(self._rekey_dir / COMMIT_MARKER, json.dumps(manifest).encode("utf-8"))
            except BaseException:
                self._discard_staging()
                logger.warning("repository.rekey_rolled_back")
                raise

            self._apply_staging()
            for record in staged:
                self._index[record.id] = record

        logger.info("repository.rekeyed", entries=len(staged))
        return len(staged)

    def _apply_staging(self) -> int:
        """Move staged files over their targets. Idempotent after a crash."""
        moved = 0
        staged_files = sorted(
            (p for p in self._rekey_dir.rglob("*") if p.is_file() and p.name != COMMIT_MARKER),
            # Keyfile last, so a partly applied re-key still has the old verifier
            key=lambda p: p.name == KEYFILE_NAME,
        )
        try:
            for source in staged_files:
                target = self.root / source.relative_to(self._rekey_dir)
                target.parent.mkdir(parents=True, exist_ok=True)
                os.replace(source, target)
                fsync_dir(target.parent)
                moved += 1
            unlink_if_exists(self._rekey_dir / COMMIT_MARKER)
        except OSError as e:
            raise StorageIOError("cannot apply re-key", {"error": str(e)}) from e
        self._discard_staging()
        return moved

    def _discard_staging(self) -> None:
        try:
            shutil.rmtree(self._rekey_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageIOError("cannot remove re-key staging", {"error": str(e)}) from e


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _blob_name() -> str:
    return f"{uuid.uuid4().hex}{BLOB_SUFFIX}"


def _new_stored_attachment(item: AttachmentInput, encrypt: bool, now: datetime) -> StoredAttachment:
    return StoredAttachment(
        file_name=item.file_name,
        file_type=item.file_type,
        file_size=len(item.data),
        is_encrypted=encrypt,
        created_at=now,
        blob=_blob_name(),
    )


def _find_attachment(record: EntryRecord, attachment_id: str) -> StoredAttachment:
    for attachment in record.attachments:
        if attachment.id == attachment_id:
            return attachment
    raise NotFoundError(
        "attachment not found",
        {"entry_id": record.id, "attachment_id": attachment_id},
    )


def _streaks(days: set[date], today: date) -> tuple[int, int]:
    """Longest run of consecutive days, and the run ending today (or yesterday)."""
    longest = run = 0
    previous: Optional[date] = None
    for day in sorted(days):
        run = run + 1 if previous is not None and day - previous == timedelta(days=1) else 1
        longest = max(longest, run)
        previous = day

    current = 0
    cursor = today if today in days else today - timedelta(days=1)
    while cursor in days:
        current += 1
        cursor -= timedelta(days=1)
    return longest, current
