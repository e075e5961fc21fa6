#!/usr/bin/env python3
"""
shelf: CLI for bibshelf libraries

Usage:
    shelf list                      # List entries (repairs key/directory mismatches)
    shelf show smith2020            # Print an entry
    shelf add --field author=...    # Create an entry
    shelf edit smith2020            # Edit entry.yaml in $EDITOR
    shelf open smith2020            # Open the attached file
    shelf check                     # Verify and repair the library
"""

from __future__ import annotations

import asyncio
import difflib
import json
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any, NoReturn

import click
from click.exceptions import ClickException, UsageError

from . import __version__ as BIBSHELF_VERSION


def run_async(coro):
    """Run async function synchronously."""
    return asyncio.run(coro)


# Shown when the library directory cannot be read.
_MISSING_LIBRARY_HINT = """
Add an entry to create this directory or run:

\tshelf config

to check the path of this library.
"""


# ─────────────────────────────────────────────────────────────────────────────
# Output Formatting
# ─────────────────────────────────────────────────────────────────────────────


def format_table(rows: list[dict], columns: list[str], max_widths: dict | None = None) -> str:
    """Format rows as a simple table."""
    if not rows:
        return ""

    max_widths = max_widths or {}

    def cell(row: dict, col: str) -> str:
        val = str(row.get(col, ""))
        limit = max_widths.get(col, 50)
        if len(val) > limit:
            val = val[: limit - 3] + "..."
        return val

    widths = {col: len(col) for col in columns}
    for row in rows:
        for col in columns:
            widths[col] = max(widths[col], len(cell(row, col)))

    header = "  ".join(col.upper().ljust(widths[col]) for col in columns)
    separator = "  ".join("-" * widths[col] for col in columns)

    lines = [header, separator]
    for row in rows:
        lines.append("  ".join(cell(row, col).ljust(widths[col]) for col in columns).rstrip())

    return "\n".join(lines)


def output(data, as_json: bool = False):
    """Output data as JSON or formatted text."""
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        click.echo(data)


def _entry_row(entry) -> dict[str, str]:
    return {
        "key": entry.key,
        "type": entry.type,
        "author": entry.fields.get("author", ""),
        "title": entry.title,
    }


# ─────────────────────────────────────────────────────────────────────────────
# Error Handling
# ─────────────────────────────────────────────────────────────────────────────


def _handle_error(
    ctx: click.Context,
    error: Exception,
    fallback_message: str | None = None,
    exit_code: int = 1,
) -> NoReturn:
    """Handle an error with optional JSON output, then exit.

    If --json-errors is enabled, outputs structured JSON error.
    Otherwise, outputs human-readable error message.
    """
    from .errors import BibshelfError, ErrorCode, format_error_json

    json_errors = ctx.obj.get("json_errors", False) if ctx.obj else False

    if isinstance(error, BibshelfError):
        if json_errors:
            click.echo(error.to_json(), err=True)
        else:
            click.echo(f"Error: {error.message}", err=True)
            suggestion = error.details.get("suggestion") if error.details else None
            if suggestion:
                click.echo(f"Hint: {suggestion}", err=True)
    else:
        message = fallback_message or str(error)
        if json_errors:
            click.echo(format_error_json(ErrorCode.INTERNAL_ERROR, message), err=True)
        else:
            click.echo(f"Error: {message}", err=True)

    sys.exit(exit_code)


def _handle_load_error(ctx: click.Context, error: Exception, root: Path) -> NoReturn:
    """Like _handle_error, with remediation text when the library itself is unreadable."""
    from .errors import LibraryIOError

    json_errors = ctx.obj.get("json_errors", False) if ctx.obj else False
    if (
        isinstance(error, LibraryIOError)
        and not json_errors
        and error.details.get("path") == root
    ):
        click.echo(f"Error: {error.message}", err=True)
        click.echo(_MISSING_LIBRARY_HINT, err=True)
        sys.exit(1)
    _handle_error(ctx, error)


def get_error_code_for_exception(exc: Exception) -> str:
    """Map Click exceptions to error codes."""
    if isinstance(exc, click.BadParameter):
        return "INVALID_ARGUMENT"
    elif isinstance(exc, click.MissingParameter):
        return "MISSING_ARGUMENT"
    elif isinstance(exc, click.NoSuchOption):
        return "UNKNOWN_OPTION"
    elif isinstance(exc, UsageError):
        return "USAGE_ERROR"
    elif isinstance(exc, ClickException):
        return "CLI_ERROR"
    return "UNKNOWN_ERROR"


class JsonErrorGroup(click.Group):
    """Click group that formats usage errors as JSON when --json-errors is set.

    Also suggests the closest command for typos.
    """

    def resolve_command(self, ctx, args):
        try:
            return super().resolve_command(ctx, args)
        except UsageError as e:
            cmd_name = args[0] if args else ""
            if cmd_name and "No such command" in str(e):
                matches = difflib.get_close_matches(
                    cmd_name, self.list_commands(ctx), n=1, cutoff=0.6
                )
                if matches:
                    raise UsageError(f"No such command '{cmd_name}'. Did you mean '{matches[0]}'?")
            raise

    def main(
        self,
        args: Sequence[str] | None = None,
        prog_name: str | None = None,
        complete_var: str | None = None,
        standalone_mode: bool = True,
        **extra: Any,
    ) -> Any:
        argv = list(args) if args is not None else list(sys.argv[1:])
        if "--json-errors" not in argv:
            return super().main(argv, prog_name, complete_var, standalone_mode, **extra)

        # Accept --json-errors anywhere on the command line.
        argv = ["--json-errors", *(a for a in argv if a != "--json-errors")]
        try:
            return super().main(argv, prog_name, complete_var, standalone_mode=False, **extra)
        except ClickException as e:
            from .errors import format_error_json

            code = get_error_code_for_exception(e)
            click.echo(format_error_json(code, e.format_message()), err=True)
            raise SystemExit(1)


# ─────────────────────────────────────────────────────────────────────────────
# Library Resolution
# ─────────────────────────────────────────────────────────────────────────────


def _library_root(ctx: click.Context) -> Path:
    """Resolve the library selected with --library (or the default one)."""
    from .errors import ConfigurationError
    from .config import get_library_root

    try:
        return get_library_root(ctx.obj.get("library") if ctx.obj else None)
    except ConfigurationError as exc:
        json_errors = ctx.obj.get("json_errors", False) if ctx.obj else False
        libraries = exc.details.get("libraries")
        if libraries and not json_errors:
            click.echo(f"Error: {exc.message}", err=True)
            click.echo("Available libraries:", err=True)
            for name, path in sorted(libraries.items()):
                click.echo(f"  {name}", err=True)
                click.echo(f"    {path}", err=True)
            sys.exit(1)
        _handle_error(ctx, exc)


def _parse_fields(items: tuple[str, ...]) -> dict[str, str]:
    fields: dict[str, str] = {}
    for item in items:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise click.BadParameter(f"expected NAME=VALUE, got '{item}'", param_hint="--field")
        fields[name.strip()] = value.strip()
    return fields


# ─────────────────────────────────────────────────────────────────────────────
# Main CLI Group
# ─────────────────────────────────────────────────────────────────────────────


@click.group(cls=JsonErrorGroup)
@click.version_option(version=BIBSHELF_VERSION, prog_name="shelf")
@click.option("--library", "-l", "library", help="Name of the configured library to use")
@click.option(
    "--json-errors",
    "json_errors",
    is_flag=True,
    help="Output errors as JSON (for programmatic use)",
)
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    envvar="BIBSHELF_QUIET",
    help="Suppress warnings, show only errors and essential output",
)
@click.pass_context
def cli(ctx: click.Context, library: str | None, json_errors: bool, quiet: bool):
    """shelf: manage a directory-per-entry bibliography library.

    \b
    Every entry lives in <library>/<key>/entry.yaml. Loading the library
    (list, check) renames any directory whose name no longer matches the
    key stored in its entry.yaml, printing one "Renamed:" line per repair.

    \b
    Examples:
      shelf list
      shelf -l books show knuth1997
      shelf add --field author="Knuth, Donald" --field year=1997
      shelf edit knuth1997
    """
    from ._logging import set_quiet_mode

    ctx.ensure_object(dict)
    ctx.obj["library"] = library
    ctx.obj["json_errors"] = json_errors
    ctx.obj["quiet"] = quiet

    if quiet:
        set_quiet_mode(True)


@cli.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_cmd(ctx: click.Context, as_json: bool):
    """List all entries of the library.

    Listing loads every entry, so mismatched directories are repaired first.
    """
    from .core import list_entries

    root = _library_root(ctx)
    try:
        # Keep stdout valid JSON: rename audit lines go to stderr.
        entries = run_async(list_entries(root, audit=sys.stderr if as_json else None))
    except Exception as exc:
        _handle_load_error(ctx, exc, root)

    if as_json:
        output([entry.model_dump(exclude_none=True) for entry in entries], as_json=True)
    elif entries:
        rows = [_entry_row(entry) for entry in entries]
        click.echo(format_table(rows, ["key", "type", "author", "title"], {"author": 30}))
    else:
        click.echo(f"No entries in {root}")


@cli.command()
@click.argument("key")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def show(ctx: click.Context, key: str, as_json: bool):
    """Print a single entry."""
    from .core import get_entry
    from .store import encode_entry

    root = _library_root(ctx)
    try:
        entry = run_async(get_entry(root, key))
    except Exception as exc:
        _handle_error(ctx, exc)

    if as_json:
        output(entry.model_dump(exclude_none=True), as_json=True)
    else:
        click.echo(encode_entry(entry), nl=False)


@cli.command()
@click.option("--type", "entry_type", default="article", show_default=True, help="Entry type")
@click.option("--key", help="Entry key (default: derived from author and year)")
@click.option("--field", "-f", "field_items", multiple=True, help="Field as NAME=VALUE (repeatable)")
@click.option("--file", "attachment", help="Attachment file name inside the entry directory")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def add(
    ctx: click.Context,
    entry_type: str,
    key: str | None,
    field_items: tuple[str, ...],
    attachment: str | None,
    as_json: bool,
):
    """Create a new entry.

    \b
    Examples:
      shelf add --field author="Smith, Jane" --field year=2020 --field title="On Things"
      shelf add --type book --key knuth1997 --field title="TAOCP"
    """
    from .core import add_entry
    from .models import Entry

    fields = _parse_fields(field_items)
    root = _library_root(ctx)
    entry = Entry(type=entry_type, key=key or "", fields=fields, file=attachment)
    try:
        entry = run_async(add_entry(root, entry))
    except Exception as exc:
        _handle_error(ctx, exc)

    if as_json:
        output({"key": entry.key, "path": str(root / entry.key)}, as_json=True)
    else:
        click.echo(f"Added: {root / entry.key}")


@cli.command()
@click.argument("key")
@click.pass_context
def edit(ctx: click.Context, key: str):
    """Edit an entry's entry.yaml in your editor.

    If the key was changed, the library is re-loaded so that the entry's
    directory is renamed to match.
    """
    from .core import check_library, edit_entry

    root = _library_root(ctx)
    try:
        entry = run_async(edit_entry(root, key))
        if entry.canonical_key() != key:
            run_async(check_library(root))
    except Exception as exc:
        _handle_error(ctx, exc)


@cli.command("open")
@click.argument("key")
@click.pass_context
def open_cmd(ctx: click.Context, key: str):
    """Open an entry's attached file."""
    from .core import open_attachment

    root = _library_root(ctx)
    try:
        path = run_async(open_attachment(root, key))
    except Exception as exc:
        _handle_error(ctx, exc)
    click.echo(f"Opened: {path}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def check(ctx: click.Context, as_json: bool):
    """Load the library and repair key/directory mismatches."""
    from .core import check_library

    root = _library_root(ctx)
    try:
        loaded = run_async(check_library(root, audit=sys.stderr if as_json else None))
    except Exception as exc:
        _handle_load_error(ctx, exc, root)

    if as_json:
        output(
            {
                "root": str(root),
                "entries": len(loaded.entries),
                "renamed": [
                    {"old": str(r.old_path), "new": str(r.new_path)} for r in loaded.renames
                ],
            },
            as_json=True,
        )
    else:
        click.echo(f"{len(loaded.entries)} entries, {len(loaded.renames)} renamed")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def config(ctx: click.Context, as_json: bool):
    """Show the config file and the configured libraries."""
    from .config import get_config_path, get_default_library, list_libraries, load_config

    try:
        data = load_config()
        libraries = list_libraries(data)
        default = get_default_library(data)
    except Exception as exc:
        _handle_error(ctx, exc)

    if as_json:
        output(
            {
                "config": str(get_config_path()),
                "default": default,
                "libraries": {name: str(path) for name, path in libraries.items()},
            },
            as_json=True,
        )
        return

    click.echo(f"Config file: {get_config_path()}")
    if not libraries:
        click.echo("No libraries configured.")
        return
    click.echo("Libraries:")
    for name, path in sorted(libraries.items()):
        marker = "*" if name == default else " "
        click.echo(f" {marker} {name}")
        click.echo(f"     {path}")


def main():
    """Entry point for shelf CLI."""
    from ._logging import configure_logging

    configure_logging()
    cli()


if __name__ == "__main__":
    main()
