"""
Tests for taohua.main — logging configuration and redaction.

Covers:
- _redact_sensitive_fields masks every sensitive key and leaves the rest
- None values are left alone so "no password given" stays visible
- configure_logging only configures once
"""

from __future__ import annotations

import logging
from unittest.mock import patch

import pytest

import taohua.main as main_module
from taohua.main import REDACTED, SENSITIVE_KEYS, _redact_sensitive_fields, configure_logging


class TestRedaction:
    def test_masks_sensitive_keys(self) -> None:
        event = {key: "secret value" for key in SENSITIVE_KEYS}
        event["event"] = "session.unlocked"
        result = _redact_sensitive_fields(None, "info", event)
        assert result["event"] == "session.unlocked"
        for key in SENSITIVE_KEYS:
            assert result[key] == REDACTED

    def test_keeps_ordinary_fields(self) -> None:
        event = {"event": "repository.entry_created", "entry_id": "abc", "encrypted": True}
        assert _redact_sensitive_fields(None, "info", dict(event)) == event

    def test_none_is_not_masked(self) -> None:
        result = _redact_sensitive_fields(None, "info", {"event": "x", "password": None})
        assert result["password"] is None

    def test_entry_text_is_sensitive(self) -> None:
        assert {"title", "content"} <= SENSITIVE_KEYS


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def fresh_flag(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(main_module, "_logging_configured", False)

    def test_configures_once(self) -> None:
        with patch("taohua.main.structlog.configure") as configure, \
                patch("taohua.main.logging.basicConfig") as basic:
            configure_logging()
            configure_logging(verbose=True)
        assert configure.call_count == 1
        assert basic.call_count == 1

    def test_redaction_in_processor_chain(self) -> None:
        with patch("taohua.main.structlog.configure") as configure, \
                patch("taohua.main.logging.basicConfig"):
            configure_logging(colors=False)
        processors = configure.call_args.kwargs["processors"]
        assert _redact_sensitive_fields in processors
        # Redaction runs before rendering
        assert processors.index(_redact_sensitive_fields) < len(processors) - 1

    def test_verbose_sets_info_level(self) -> None:
        with patch("taohua.main.structlog.configure"), \
                patch("taohua.main.logging.basicConfig") as basic:
            configure_logging(verbose=True)
        assert basic.call_args.kwargs["level"] == logging.INFO
