"""Core business logic for bibshelf.

This module contains the entry operations used by the CLI.

Design principles:
- All functions are async for consistency with the library loader
- The library root is always passed in; nothing here reads configuration
  except the editor fallback in ``edit_entry``
"""

import asyncio
import difflib
import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import TextIO

from .config import get_editor
from .errors import BibshelfError, EntryNotFoundError, ErrorCode, LibraryIOError
from .keys import KeyAllocator
from .library import load_library, temp_dir_name
from .models import Entry, LibraryLoad
from .store import entry_file, read_entry, write_entry

log = logging.getLogger(__name__)


def _suggest_similar_keys(root: Path, key: str, limit: int = 5) -> list[str]:
    """Best-effort list of existing keys that look like ``key``."""
    try:
        candidates = [
            p.name for p in root.iterdir() if p.is_dir() and not p.name.startswith(".")
        ]
    except OSError:
        return []
    return difflib.get_close_matches(key, candidates, n=limit, cutoff=0.6)


def _require_entry_dir(root: Path, key: str) -> Path:
    directory = root / key
    if key.startswith(".") or not entry_file(directory).is_file():
        suggestions = _suggest_similar_keys(root, key)
        suggestion = f"Did you mean: {', '.join(suggestions)}?" if suggestions else None
        raise EntryNotFoundError(key, suggestion=suggestion)
    return directory


def _opener_command() -> list[str]:
    """Return the platform command that opens a file with its default application."""
    if sys.platform.startswith("win"):
        return ["cmd", "/c", "start"]
    if sys.platform == "darwin":
        return ["open"]
    return ["xdg-open"]


async def check_library(root: Path, audit: TextIO | None = None) -> LibraryLoad:
    """Run a load pass over the library, repairing any key/directory mismatch."""
    return await load_library(root, audit=audit)


async def list_entries(root: Path, audit: TextIO | None = None) -> list[Entry]:
    """Load the library and return its entries sorted by key.

    Listing runs a full load, so it also repairs mismatched directories.
    """
    loaded = await load_library(root, audit=audit)
    return sorted(loaded.entries, key=lambda entry: entry.key)


async def get_entry(root: Path, key: str) -> Entry:
    """Read a single entry by key.

    Raises:
        EntryNotFoundError: If no entry directory called ``key`` exists.
    """
    directory = _require_entry_dir(root, key)
    return await asyncio.to_thread(read_entry, directory)


async def update_entry(root: Path, entry: Entry) -> Path:
    """Persist an entry to the directory named after its key.

    Returns:
        Path of the metadata file written.
    """
    directory = _require_entry_dir(root, entry.key)
    return await asyncio.to_thread(write_entry, directory, entry)


def _create_entry(root: Path, entry: Entry) -> Path:
    try:
        root.mkdir(parents=True, exist_ok=True)
        staging = root / temp_dir_name("new")
        staging.mkdir()
    except OSError as e:
        raise LibraryIOError.from_os_error("create entry directory in", root, e) from e

    try:
        directory = KeyAllocator(root).claim(entry.canonical_key(), staging)
    except BibshelfError:
        # An empty .tmp- directory would be loaded as an interrupted repair.
        staging.rmdir()
        raise
    entry.key = directory.name
    try:
        write_entry(directory, entry)
    except LibraryIOError:
        # A directory without metadata would make every later load fail.
        shutil.rmtree(directory, ignore_errors=True)
        raise
    return directory


async def add_entry(root: Path, entry: Entry) -> Entry:
    """Create a new entry under a unique key derived from its canonical key.

    The library root is created if it does not exist yet.
    """
    directory = await asyncio.to_thread(_create_entry, root, entry)
    log.info("Added %s", directory)
    return entry


async def edit_entry(root: Path, key: str, editor: list[str] | None = None) -> Entry:
    """Open an entry's metadata file in an editor and return the edited entry.

    Editing the key only changes the file; the next library load renames the
    directory to match.

    Raises:
        EntryNotFoundError: If the entry does not exist.
        BibshelfError: If the editor cannot be started or exits with an error.
        DecodeError: If the edited file is no longer a valid entry.
    """
    directory = _require_entry_dir(root, key)
    command = [*(editor or get_editor()), str(entry_file(directory))]
    log.debug("Running editor: %s", command)

    try:
        result = await asyncio.to_thread(subprocess.run, command, check=False)
    except OSError as e:
        raise BibshelfError(
            f"Failed to start editor {command[0]}: {e}",
            {"command": command},
            code=ErrorCode.EDITOR_FAILED,
        ) from e
    if result.returncode != 0:
        raise BibshelfError(
            f"Editor exited with status {result.returncode}",
            {"command": command},
            code=ErrorCode.EDITOR_FAILED,
        )

    return await asyncio.to_thread(read_entry, directory)


async def open_attachment(root: Path, key: str) -> Path:
    """Open an entry's attachment with the platform's default application.

    Returns:
        Path of the attachment that was opened.

    Raises:
        EntryNotFoundError: If the entry does not exist.
        BibshelfError: If the entry has no attachment.
        LibraryIOError: If the attachment file is missing or cannot be opened.
    """
    entry = await get_entry(root, key)
    if not entry.file:
        raise BibshelfError(
            f"Entry {key} has no attachment", {"key": key}, code=ErrorCode.ENTRY_NOT_FOUND
        )

    path = root / key / entry.file
    if not path.is_file():
        raise LibraryIOError(f"Attachment not found: {path}", {"path": path})

    command = [*_opener_command(), str(path)]
    try:
        subprocess.Popen(command, start_new_session=os.name == "posix")
    except OSError as e:
        raise LibraryIOError.from_os_error("open", path, e) from e
    return path

