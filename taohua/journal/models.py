"""
Journal Data Models — what a memory looks like to the rest of the system.

These are the plaintext shapes the service hands out and accepts. How an
entry is laid out on disk (and which parts are sealed) is the repository's
business; see ``taohua.journal.records``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

READING_CHARS_PER_MINUTE = 200


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    MIXED = "mixed"


class EmotionTag(str, Enum):
    JOY = "joy"
    SADNESS = "sadness"
    NOSTALGIA = "nostalgia"
    HOPE = "hope"
    REGRET = "regret"
    ATTACHMENT = "attachment"
    PERSISTENCE = "persistence"


def _normalize_tags(tags: list[EmotionTag]) -> list[EmotionTag]:
    # Set semantics; sorted so equal sets serialize identically
    return sorted(set(tags), key=lambda t: t.value)


class Attachment(BaseModel):
    """A file stored alongside an entry. The bytes live in the store, not here."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    file_name: str
    file_type: str = "application/octet-stream"
    file_size: int = 0
    is_encrypted: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class AttachmentInput(BaseModel):
    file_name: str
    file_type: str = "application/octet-stream"
    data: bytes


class MemoryMetadata(BaseModel):
    """Derived figures plus optional user context. Never authoritative."""

    word_count: Optional[int] = None
    reading_time: Optional[int] = None  # minutes
    location: Optional[str] = None
    weather: Optional[str] = None
    mood: Optional[str] = None
    tags: list[str] = Field(default_factory=list)

    def recomputed(self, content: str) -> MemoryMetadata:
        """Copy with word count and reading time refreshed from ``content``."""
        # Characters, not whitespace-split words: entries are often CJK text
        count = len(content)
        return self.model_copy(update={
            "word_count": count,
            "reading_time": max(1, count // READING_CHARS_PER_MINUTE),
        })


class MemoryEntry(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str
    content: str
    type: MemoryType = MemoryType.TEXT
    emotion_tags: list[EmotionTag] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    is_encrypted: bool = False
    attachments: list[Attachment] = Field(default_factory=list)
    metadata: Optional[MemoryMetadata] = None

    @field_validator("emotion_tags")
    @classmethod
    def unique_tags(cls, value: list[EmotionTag]) -> list[EmotionTag]:
        return _normalize_tags(value)

    @model_validator(mode="after")
    def updated_not_before_created(self) -> "MemoryEntry":
        if self.updated_at < self.created_at:
            self.updated_at = self.created_at
        return self


class EntryDraft(BaseModel):
    """Caller-supplied fields for a new entry."""

    title: str
    content: str
    type: MemoryType = MemoryType.TEXT
    emotion_tags: list[EmotionTag] = Field(default_factory=list)
    metadata: Optional[MemoryMetadata] = None

    @field_validator("emotion_tags")
    @classmethod
    def unique_tags(cls, value: list[EmotionTag]) -> list[EmotionTag]:
        return _normalize_tags(value)


class EntryPatch(BaseModel):
    """Partial update. ``None`` means "leave unchanged"."""

    title: Optional[str] = None
    content: Optional[str] = None
    type: Optional[MemoryType] = None
    emotion_tags: Optional[list[EmotionTag]] = None
    metadata: Optional[MemoryMetadata] = None
    encrypt: Optional[bool] = None

    @field_validator("emotion_tags")
    @classmethod
    def unique_tags(cls, value: Optional[list[EmotionTag]]) -> Optional[list[EmotionTag]]:
        return None if value is None else _normalize_tags(value)

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class DateRange(BaseModel):
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class SearchFilter(BaseModel):
    keyword: Optional[str] = None
    type: Optional[MemoryType] = None
    emotion_tags: Optional[list[EmotionTag]] = None
    date_range: Optional[DateRange] = None
    tags: Optional[list[str]] = None

    def matches(self, entry: MemoryEntry) -> bool:
        if self.keyword:
            needle = self.keyword.lower()
            if needle not in entry.title.lower() and needle not in entry.content.lower():
                return False

        if self.type is not None and entry.type != self.type:
            return False

        if self.emotion_tags and not set(self.emotion_tags) & set(entry.emotion_tags):
            return False

        if self.date_range is not None:
            if entry.created_at < self.date_range.start or entry.created_at > self.date_range.end:
                return False

        if self.tags:
            entry_tags = entry.metadata.tags if entry.metadata else []
            if not set(self.tags) & set(entry_tags):
                return False

        return True


class MemoryStats(BaseModel):
    total_entries: int = 0
    total_words: int = 0
    average_words_per_entry: float = 0.0
    entries_by_type: dict[str, int] = Field(default_factory=dict)
    entries_by_emotion: dict[str, int] = Field(default_factory=dict)
    entries_by_month: dict[str, int] = Field(default_factory=dict)
    longest_streak: int = 0
    current_streak: int = 0
