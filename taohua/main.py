"""
Taohua — entry point.

Configures structlog once, then hands off to the Click command group. Every
log line passes through ``_redact_sensitive_fields`` so passwords, keys and
entry text never reach a terminal or a log file, whatever a caller binds.
"""

from __future__ import annotations

import logging

import structlog

REDACTED = "[redacted]"

# Values under these keys are replaced wholesale, never truncated or hashed
SENSITIVE_KEYS = frozenset({
    "password",
    "old_password",
    "new_password",
    "content",
    "title",
    "key",
    "plaintext",
    "data",
})


def _redact_sensitive_fields(logger, method_name, event_dict):
    """Structlog processor that masks secret and personal fields."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        if event_dict[key] is not None:
            event_dict[key] = REDACTED
    return event_dict


_logging_configured = False


def configure_logging(verbose: bool = False, colors: bool = True) -> None:
    """Configure structlog and standard-library logging for Taohua entry points.

    Safe to call more than once: subsequent calls are no-ops.
    """
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        return
    _logging_configured = True

    logging.basicConfig(format="%(message)s", level=logging.INFO if verbose else logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            _redact_sensitive_fields,
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


def main() -> None:
    """Entry point for the taohua command."""
    from taohua.cli.app import cli

    cli(prog_name="taohua")


if __name__ == "__main__":
    main()
