"""
Tests for taohua.journal.models and taohua.journal.records.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from taohua.errors import CorruptRecordError
from taohua.journal.models import (
    DateRange,
    EmotionTag,
    EntryDraft,
    EntryPatch,
    MemoryEntry,
    MemoryMetadata,
    MemoryType,
    SearchFilter,
)
from taohua.journal.records import EntryRecord, attachment_aad, payload_aad

NOW = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)


def _entry(**overrides) -> MemoryEntry:
    fields = {
        "title": "Peach blossoms",
        "content": "The orchard was in full bloom.",
        "type": MemoryType.TEXT,
        "emotion_tags": [EmotionTag.JOY],
        "created_at": NOW,
        "updated_at": NOW,
        "metadata": MemoryMetadata(tags=["spring", "family"]),
    }
    fields.update(overrides)
    return MemoryEntry(**fields)


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------

class TestMetadata:
    def test_counts_characters(self) -> None:
        meta = MemoryMetadata().recomputed("桃花源记")
        assert meta.word_count == 4
        assert meta.reading_time == 1

    def test_reading_time_floor_division(self) -> None:
        meta = MemoryMetadata().recomputed("x" * 450)
        assert meta.word_count == 450
        assert meta.reading_time == 2

    def test_empty_content(self) -> None:
        meta = MemoryMetadata().recomputed("")
        assert meta.word_count == 0
        assert meta.reading_time == 1

    def test_keeps_user_fields(self) -> None:
        meta = MemoryMetadata(location="Hangzhou", mood="calm").recomputed("abc")
        assert meta.location == "Hangzhou"
        assert meta.mood == "calm"


# ---------------------------------------------------------------------------
# Entries, drafts, patches
# ---------------------------------------------------------------------------

class TestEntry:
    def test_emotion_tags_are_a_set(self) -> None:
        entry = _entry(emotion_tags=["joy", "hope", "joy"])
        assert entry.emotion_tags == [EmotionTag.HOPE, EmotionTag.JOY]

    def test_unknown_emotion_rejected(self) -> None:
        with pytest.raises(ValueError):
            EntryDraft(title="t", content="c", emotion_tags=["anger"])

    def test_updated_never_before_created(self) -> None:
        entry = _entry(updated_at=NOW - timedelta(days=1))
        assert entry.updated_at == entry.created_at

    def test_type_from_string(self) -> None:
        assert EntryDraft(title="t", content="c", type="audio").type == MemoryType.AUDIO

    def test_patch_is_empty(self) -> None:
        assert EntryPatch().is_empty()
        assert not EntryPatch(title="new").is_empty()
        assert not EntryPatch(encrypt=False).is_empty()


# ---------------------------------------------------------------------------
# SearchFilter
# ---------------------------------------------------------------------------

class TestSearchFilter:
    def test_empty_matches_everything(self) -> None:
        assert SearchFilter().matches(_entry())

    def test_keyword_case_insensitive_title_or_content(self) -> None:
        assert SearchFilter(keyword="PEACH").matches(_entry())
        assert SearchFilter(keyword="orchard").matches(_entry())
        assert not SearchFilter(keyword="winter").matches(_entry())

    def test_type(self) -> None:
        assert SearchFilter(type="text").matches(_entry())
        assert not SearchFilter(type="image").matches(_entry())

    def test_emotion_intersection(self) -> None:
        assert SearchFilter(emotion_tags=["joy", "regret"]).matches(_entry())
        assert not SearchFilter(emotion_tags=["regret"]).matches(_entry())

    def test_date_range_inclusive(self) -> None:
        assert SearchFilter(date_range=DateRange(start=NOW, end=NOW)).matches(_entry())
        later = DateRange(start=NOW + timedelta(seconds=1), end=NOW + timedelta(days=1))
        assert not SearchFilter(date_range=later).matches(_entry())

    def test_naive_dates_are_utc(self) -> None:
        naive = DateRange(start=datetime(2026, 3, 14), end=datetime(2026, 3, 15))
        assert naive.start.tzinfo == timezone.utc
        assert SearchFilter(date_range=naive).matches(_entry())

    def test_tags(self) -> None:
        assert SearchFilter(tags=["family"]).matches(_entry())
        assert not SearchFilter(tags=["work"]).matches(_entry())
        assert not SearchFilter(tags=["family"]).matches(_entry(metadata=None))


# ---------------------------------------------------------------------------
# On-disk records
# ---------------------------------------------------------------------------

class TestEntryRecord:
    def _base(self, **overrides) -> dict:
        data = {
            "id": "abc",
            "seq": 0,
            "type": "text",
            "created_at": NOW.isoformat(),
            "updated_at": NOW.isoformat(),
            "is_encrypted": False,
            "title": "t",
            "content": "c",
        }
        data.update(overrides)
        return data

    def test_plain_record(self) -> None:
        record = EntryRecord.parse(self._base())
        assert record.plain_body().title == "t"

    def test_plain_record_requires_text(self) -> None:
        with pytest.raises(CorruptRecordError):
            EntryRecord.parse(self._base(content=None))

    def test_encrypted_record_requires_payload(self) -> None:
        with pytest.raises(CorruptRecordError):
            EntryRecord.parse(self._base(is_encrypted=True, title=None, content=None))

    def test_encrypted_record_rejects_clear_text(self) -> None:
        payload = {"kdf_version": 1, "nonce": "AAAA", "ciphertext": "AAAA"}
        with pytest.raises(CorruptRecordError):
            EntryRecord.parse(self._base(is_encrypted=True, payload=payload))

    def test_associated_data_is_entry_specific(self) -> None:
        assert payload_aad("a") != payload_aad("b")
        assert attachment_aad("a", "x") != attachment_aad("a", "y")
        assert payload_aad("a") == b"entry:a:payload"
