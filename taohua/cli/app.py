"""CLI application — Click-based command hierarchy for Taohua.

Each invocation is its own process, so there is no session to resume:
commands that need the key prompt for the master password on demand.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

import click

from taohua.cli.formatters import (
    entries_table,
    entry_panel,
    get_console,
    stats_table,
    strength_label,
)
from taohua.config import TaohuaConfig
from taohua.errors import ErrorKind, TaohuaError
from taohua.journal.models import EmotionTag, MemoryType
from taohua.main import configure_logging
from taohua.result import Err, Result
from taohua.service import JournalService
from taohua.vault.kdf import generate_secure_password, password_strength

TYPE_CHOICES = click.Choice([t.value for t in MemoryType])
EMOTION_CHOICES = click.Choice([t.value for t in EmotionTag])
DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S"]


@click.group()
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Journal directory (overrides TAOHUA_DATA_DIR)",
)
@click.option("--no-color", is_flag=True, help="Disable ANSI colors")
@click.option("--verbose", "-v", is_flag=True, help="Show informational log output")
@click.pass_context
def cli(ctx: click.Context, data_dir: Optional[Path], no_color: bool, verbose: bool) -> None:
    """Taohua - an encrypted memory journal."""
    configure_logging(verbose=verbose, colors=not no_color)
    ctx.ensure_object(dict)
    ctx.obj["data_dir"] = data_dir
    ctx.obj["no_color"] = no_color
    ctx.obj["console"] = get_console(no_color=no_color)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _service(ctx: click.Context) -> JournalService:
    """Build and initialize the service on first use."""
    service = ctx.obj.get("service")
    if service is None:
        try:
            config = TaohuaConfig(data_dir=ctx.obj.get("data_dir"))
        except TaohuaError as e:
            raise click.ClickException(f"{e.kind.value}: {e.message}") from e
        service = JournalService(config)
        _unwrap(service.initialize())
        ctx.obj["service"] = service
    return service


def _unwrap(result: Result[Any]) -> Any:
    if isinstance(result, Err):
        message = result.kind.value
        if result.detail:
            message = f"{message}: {result.detail}"
        raise click.ClickException(message)
    return result.value


def _unlock(service: JournalService) -> None:
    if _unwrap(service.is_authenticated()):
        return
    if not _unwrap(service.has_master_password()):
        raise click.ClickException("No master password set. Run 'taohua init' first.")
    password = click.prompt("Master password", hide_input=True)
    if not _unwrap(service.verify_master_password(password)):
        raise click.ClickException(ErrorKind.AUTHENTICATION_FAILED.value)


def _with_unlock(service: JournalService, call: Callable[[], Result[Any]]) -> Any:
    """Run ``call``; if it needs the key, unlock and run it once more."""
    result = call()
    if isinstance(result, Err) and result.kind == ErrorKind.NOT_AUTHENTICATED:
        _unlock(service)
        result = call()
    return _unwrap(result)


def _resolve_id(service: JournalService, prefix: str) -> str:
    """Expand a unique id prefix (as shown by 'list') to a full entry id."""
    ids = service.repository.ids()
    if prefix in ids:
        return prefix
    matches = [i for i in ids if i.startswith(prefix)]
    if not matches:
        raise click.ClickException(f"{ErrorKind.NOT_FOUND.value}: {prefix}")
    if len(matches) > 1:
        raise click.ClickException(f"Ambiguous id prefix: {prefix}")
    return matches[0]


# ---------------------------------------------------------------------------
# Setup and passwords
# ---------------------------------------------------------------------------


@cli.command("init")
@click.pass_context
def init_cmd(ctx: click.Context) -> None:
    """Create the journal and set its master password."""
    service = _service(ctx)
    if _unwrap(service.has_master_password()):
        raise click.ClickException(f"{ErrorKind.PASSWORD_ALREADY_SET.value}: use 'taohua passwd' instead")
    password = click.prompt("New master password", hide_input=True, confirmation_prompt=True)
    _unwrap(service.set_master_password(password))
    ctx.obj["console"].print(f"Journal ready at {service.data_dir}")


@cli.command("passwd")
@click.pass_context
def passwd_cmd(ctx: click.Context) -> None:
    """Change the master password and re-encrypt every sealed entry."""
    service = _service(ctx)
    old = click.prompt("Current master password", hide_input=True)
    new = click.prompt("New master password", hide_input=True, confirmation_prompt=True)
    _unwrap(service.change_password(old, new))
    ctx.obj["console"].print("Master password changed.")


@cli.command("strength")
@click.argument("password", required=False)
@click.pass_context
def strength_cmd(ctx: click.Context, password: Optional[str]) -> None:
    """Score a password from 0 to 100."""
    if password is None:
        password = click.prompt("Password", hide_input=True)
    score = password_strength(password)
    ctx.obj["console"].print(strength_label(score))


@cli.command("genpass")
@click.option("--length", "-n", type=int, default=16, show_default=True)
def genpass_cmd(length: int) -> None:
    """Generate a random password."""
    if length < 1:
        raise click.ClickException(f"{ErrorKind.INVALID_REQUEST.value}: length must be positive")
    click.echo(generate_secure_password(length))


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------


@cli.command("add")
@click.argument("title")
@click.option("--content", "-c", default=None, help="Entry text (prompted if omitted)")
@click.option("--type", "memory_type", type=TYPE_CHOICES, default="text", show_default=True)
@click.option("--emotion", "-e", "emotions", type=EMOTION_CHOICES, multiple=True)
@click.option("--tag", "-t", "tags", multiple=True, help="Free-form tag")
@click.option("--encrypt", is_flag=True, help="Seal title and content")
@click.option(
    "--attach",
    "attachments",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    multiple=True,
)
@click.pass_context
def add_cmd(
    ctx: click.Context,
    title: str,
    content: Optional[str],
    memory_type: str,
    emotions: tuple[str, ...],
    tags: tuple[str, ...],
    encrypt: bool,
    attachments: tuple[Path, ...],
) -> None:
    """Write a new memory."""
    service = _service(ctx)
    if content is None:
        content = click.prompt("Content")
    if encrypt:
        _unlock(service)
    entry = _unwrap(service.create_entry(
        title=title,
        content=content,
        type=memory_type,
        emotion_tags=list(emotions),
        encrypt=encrypt,
        metadata={"tags": list(tags)} if tags else None,
        attachments=[{"file_name": p.name, "data": p.read_bytes()} for p in attachments],
    ))
    ctx.obj["console"].print(f"Saved {entry.id}")


@cli.command("list")
@click.pass_context
def list_cmd(ctx: click.Context) -> None:
    """List every memory, oldest first."""
    service = _service(ctx)
    entries = _with_unlock(service, service.get_all_entries)
    ctx.obj["console"].print(entries_table(f"{len(entries)} memories", entries))


@cli.command("show")
@click.argument("entry_id")
@click.pass_context
def show_cmd(ctx: click.Context, entry_id: str) -> None:
    """Show one memory in full."""
    service = _service(ctx)
    full_id = _resolve_id(service, entry_id)
    entry = _with_unlock(service, lambda: service.get_entry(full_id))
    ctx.obj["console"].print(entry_panel(entry))


@cli.command("edit")
@click.argument("entry_id")
@click.option("--title", default=None)
@click.option("--content", "-c", default=None)
@click.option("--type", "memory_type", type=TYPE_CHOICES, default=None)
@click.option("--emotion", "-e", "emotions", type=EMOTION_CHOICES, multiple=True)
@click.option("--encrypt/--decrypt", "encrypt", default=None, help="Seal or unseal the entry")
@click.pass_context
def edit_cmd(
    ctx: click.Context,
    entry_id: str,
    title: Optional[str],
    content: Optional[str],
    memory_type: Optional[str],
    emotions: tuple[str, ...],
    encrypt: Optional[bool],
) -> None:
    """Change fields of a memory."""
    service = _service(ctx)
    full_id = _resolve_id(service, entry_id)
    patch: dict[str, Any] = {
        "title": title,
        "content": content,
        "type": memory_type,
        "emotion_tags": list(emotions) if emotions else None,
        "encrypt": encrypt,
    }
    entry = _with_unlock(service, lambda: service.update_entry(full_id, patch))
    ctx.obj["console"].print(f"Updated {entry.id}")


@cli.command("rm")
@click.argument("entry_id")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def rm_cmd(ctx: click.Context, entry_id: str, yes: bool) -> None:
    """Delete a memory and its attachments."""
    service = _service(ctx)
    full_id = _resolve_id(service, entry_id)
    if not yes:
        click.confirm(f"Delete {full_id}?", abort=True)
    _unwrap(service.delete_entry(full_id))
    ctx.obj["console"].print(f"Deleted {full_id}")


@cli.command("echo")
@click.pass_context
def echo_cmd(ctx: click.Context) -> None:
    """Dream Echo: recall a random past memory."""
    service = _service(ctx)
    entry = _with_unlock(service, service.get_random_entry)
    if entry is None:
        ctx.obj["console"].print("The journal is empty.")
        return
    ctx.obj["console"].print(entry_panel(entry))


@cli.command("search")
@click.argument("keyword", required=False)
@click.option("--type", "memory_type", type=TYPE_CHOICES, default=None)
@click.option("--emotion", "-e", "emotions", type=EMOTION_CHOICES, multiple=True)
@click.option("--tag", "-t", "tags", multiple=True)
@click.option("--since", type=click.DateTime(formats=DATE_FORMATS), default=None)
@click.option("--until", type=click.DateTime(formats=DATE_FORMATS), default=None)
@click.pass_context
def search_cmd(
    ctx: click.Context,
    keyword: Optional[str],
    memory_type: Optional[str],
    emotions: tuple[str, ...],
    tags: tuple[str, ...],
    since: Optional[datetime],
    until: Optional[datetime],
) -> None:
    """Find memories by keyword, type, emotion, tag or date."""
    service = _service(ctx)
    criteria: dict[str, Any] = {
        "keyword": keyword,
        "type": memory_type,
        "emotion_tags": list(emotions) or None,
        "tags": list(tags) or None,
    }
    if since or until:
        criteria["date_range"] = {
            "start": since or datetime.min,
            "end": until or datetime.max,
        }
    entries = _with_unlock(service, lambda: service.search_entries(criteria))
    ctx.obj["console"].print(entries_table(f"{len(entries)} matches", entries))


@cli.command("stats")
@click.pass_context
def stats_cmd(ctx: click.Context) -> None:
    """Show writing statistics."""
    service = _service(ctx)
    stats = _with_unlock(service, service.get_stats)
    ctx.obj["console"].print(stats_table(stats))


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------


@cli.command("attach")
@click.argument("entry_id")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--file-type", default="application/octet-stream", show_default=True)
@click.pass_context
def attach_cmd(ctx: click.Context, entry_id: str, path: Path, file_type: str) -> None:
    """Attach a file to a memory."""
    service = _service(ctx)
    full_id = _resolve_id(service, entry_id)
    data = path.read_bytes()
    attachment = _with_unlock(service, lambda: service.add_attachment(full_id, path.name, data, file_type))
    ctx.obj["console"].print(f"Attached {attachment.file_name} as {attachment.id}")


@cli.command("extract")
@click.argument("entry_id")
@click.argument("attachment_id")
@click.argument("output", type=click.Path(dir_okay=False, writable=True, path_type=Path))
@click.pass_context
def extract_cmd(ctx: click.Context, entry_id: str, attachment_id: str, output: Path) -> None:
    """Write an attachment's bytes to OUTPUT."""
    service = _service(ctx)
    full_id = _resolve_id(service, entry_id)
    data = _with_unlock(service, lambda: service.read_attachment(full_id, attachment_id))
    output.write_bytes(data)
    ctx.obj["console"].print(f"Wrote {len(data)} bytes to {output}")


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


@cli.command("backup")
@click.argument("target", type=click.Path(file_okay=False, path_type=Path))
@click.pass_context
def backup_cmd(ctx: click.Context, target: Path) -> None:
    """Copy the journal, still encrypted, into TARGET."""
    service = _service(ctx)
    path = _unwrap(service.backup(target))
    ctx.obj["console"].print(f"Backup written to {path}")


@cli.command("serve")
@click.pass_context
def serve_cmd(ctx: click.Context) -> None:
    """Answer JSON-RPC requests on stdin, one per line, until EOF."""
    from taohua.rpc import RequestRouter

    router = RequestRouter(_service(ctx))
    for line in click.get_text_stream("stdin"):
        if not line.strip():
            continue
        response = router.handle_text(line)
        click.echo(json.dumps(response, ensure_ascii=False))
