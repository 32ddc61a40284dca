"""CLI formatters — console, entry tables, detail panels, strength meter."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from taohua.journal.models import MemoryEntry, MemoryStats

EMOTION_STYLES = {
    "joy": "yellow",
    "sadness": "blue",
    "nostalgia": "magenta",
    "hope": "green",
    "regret": "red",
    "attachment": "cyan",
    "persistence": "bold",
}


def get_console(no_color: bool = False) -> Console:
    """Get a Rich Console, optionally with color disabled."""
    return Console(no_color=no_color, highlight=False)


def format_timestamp(value: datetime) -> str:
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


def emotion_text(tags: list[Any]) -> Text:
    text = Text()
    for i, tag in enumerate(tags):
        name = getattr(tag, "value", str(tag))
        if i:
            text.append(" ")
        text.append(name, style=EMOTION_STYLES.get(name, "dim"))
    return text


def strength_label(score: int) -> Text:
    """Map a 0-100 password score to a colored label."""
    if score >= 80:
        return Text(f"strong ({score})", style="green")
    if score >= 60:
        return Text(f"fair ({score})", style="yellow")
    return Text(f"weak ({score})", style="red")


def build_table(title: str, columns: list[str], rows: list[list[Any]]) -> Table:
    """Build a Rich table with standard styling."""
    table = Table(title=title, show_header=True, header_style="bold")
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*(v if isinstance(v, Text) else str(v) for v in row))
    return table


def entries_table(title: str, entries: list[MemoryEntry]) -> Table:
    rows = [
        [
            e.id[:8],
            format_timestamp(e.created_at),
            e.title,
            e.type.value,
            emotion_text(e.emotion_tags),
            "yes" if e.is_encrypted else "",
        ]
        for e in entries
    ]
    return build_table(title, ["ID", "Created", "Title", "Type", "Emotions", "Sealed"], rows)


def entry_panel(entry: MemoryEntry) -> Panel:
    body = Text()
    body.append(entry.content)
    body.append("\n\n")
    body.append(f"{entry.type.value} · created {format_timestamp(entry.created_at)}", style="dim")
    if entry.updated_at != entry.created_at:
        body.append(f" · updated {format_timestamp(entry.updated_at)}", style="dim")
    if entry.emotion_tags:
        body.append("\n")
        body.append_text(emotion_text(entry.emotion_tags))
    if entry.metadata and entry.metadata.word_count is not None:
        body.append(
            f"\n{entry.metadata.word_count} chars · {entry.metadata.reading_time} min read",
            style="dim",
        )
    for attachment in entry.attachments:
        body.append(f"\n📎 {attachment.file_name} ({attachment.file_size} bytes) [{attachment.id}]", style="dim")
    title = f"{'🔒 ' if entry.is_encrypted else ''}{entry.title}"
    return Panel(body, title=title, subtitle=entry.id, expand=False)


def stats_table(stats: MemoryStats) -> Table:
    rows: list[list[Any]] = [
        ["Entries", stats.total_entries],
        ["Characters", stats.total_words],
        ["Average per entry", f"{stats.average_words_per_entry:.1f}"],
        ["Longest streak", f"{stats.longest_streak} days"],
        ["Current streak", f"{stats.current_streak} days"],
    ]
    for name, count in sorted(stats.entries_by_type.items()):
        rows.append([f"Type: {name}", count])
    for name, count in sorted(stats.entries_by_emotion.items()):
        rows.append([f"Emotion: {name}", count])
    return build_table("Journal statistics", ["Metric", "Value"], rows)
