"""Journal — memory entries, their durable storage, and Dream Echo recall."""
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
from taohua.journal.recall import DreamEcho, RecallHistory, RecallSelection, select_next
from taohua.journal.repository import EntryRepository

__all__ = [
    "Attachment",
    "AttachmentInput",
    "DreamEcho",
    "EmotionTag",
    "EntryDraft",
    "EntryPatch",
    "EntryRepository",
    "MemoryEntry",
    "MemoryMetadata",
    "MemoryStats",
    "MemoryType",
    "RecallHistory",
    "RecallSelection",
    "SearchFilter",
    "select_next",
]
