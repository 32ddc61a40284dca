"""
On-disk record format.

One JSON file per entry. Plain entries keep title, content and metadata in
the clear. Encrypted entries keep only what the index needs (id, type,
emotion tags, timestamps, attachment list) in the clear; title, content and
user metadata are sealed together in ``payload``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from taohua.errors import CorruptRecordError
from taohua.journal.models import (
    Attachment,
    EmotionTag,
    MemoryEntry,
    MemoryMetadata,
    MemoryType,
)
from taohua.vault.cipher import EncryptionEnvelope

RECORD_FORMAT_VERSION = 1


def payload_aad(entry_id: str) -> bytes:
    return f"entry:{entry_id}:payload".encode("utf-8")


def attachment_aad(entry_id: str, attachment_id: str) -> bytes:
    return f"attachment:{entry_id}:{attachment_id}".encode("utf-8")


class StoredAttachment(Attachment):
    # File name of the blob under attachments/<entry_id>/
    blob: str

    def public(self) -> Attachment:
        return Attachment(**self.model_dump(exclude={"blob"}))


class SealedBody(BaseModel):
    """The plaintext sealed inside an encrypted entry's payload."""

    title: str
    content: str
    metadata: Optional[MemoryMetadata] = None


class EntryRecord(BaseModel):
    format_version: int = RECORD_FORMAT_VERSION
    id: str
    seq: int
    type: MemoryType
    emotion_tags: list[EmotionTag] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    is_encrypted: bool = False
    attachments: list[StoredAttachment] = Field(default_factory=list)

    # Plain entries only
    title: Optional[str] = None
    content: Optional[str] = None
    metadata: Optional[MemoryMetadata] = None

    # Encrypted entries only
    payload: Optional[EncryptionEnvelope] = None

    @model_validator(mode="after")
    def check_shape(self) -> "EntryRecord":
        if self.is_encrypted:
            if self.payload is None or self.title is not None or self.content is not None:
                raise ValueError("encrypted record must carry only a payload")
        elif self.title is None or self.content is None or self.payload is not None:
            raise ValueError("plain record must carry title and content")
        return self

    def to_bytes(self) -> bytes:
        return self.model_dump_json(indent=2).encode("utf-8")

    @classmethod
    def parse(cls, data: object, source: str = "") -> EntryRecord:
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise CorruptRecordError("invalid entry record", {"path": source, "error": str(e)}) from e

    def to_entry(self, body: SealedBody) -> MemoryEntry:
        return MemoryEntry(
            id=self.id,
            title=body.title,
            content=body.content,
            type=self.type,
            emotion_tags=list(self.emotion_tags),
            created_at=self.created_at,
            updated_at=self.updated_at,
            is_encrypted=self.is_encrypted,
            attachments=[a.public() for a in self.attachments],
            metadata=body.metadata,
        )

    def plain_body(self) -> SealedBody:
        return SealedBody(title=self.title or "", content=self.content or "", metadata=self.metadata)
