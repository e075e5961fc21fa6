"""Concurrent library loading with key/directory self-repair.

A library is a directory holding one sub-directory per entry, each named after
the entry's key and containing ``entry.yaml``. Loading a library:

1. scans the library root once,
2. starts one task per directory, which reads and decodes the entry and checks
   that the directory name equals the entry's canonical key,
3. repairs every mismatch (e.g. after a hand edit of ``key``) by moving the
   directory to a temporary name, allocating a unique key, moving it onto that
   key and persisting the key back to ``entry.yaml``,
4. gathers every entry, or aborts on the first error.

Loading is fail-fast. A missing or corrupt entry aborts the whole load rather
than silently dropping the entry, and no partial result is returned.

Blocking filesystem work runs in worker threads via ``asyncio.to_thread``.
Each worker only ever mutates its own directory; the shared ``KeyAllocator``
serializes key allocation with the rename that takes the allocated name.
"""

from __future__ import annotations

import asyncio
import logging
import os
import secrets
import sys
from pathlib import Path
from typing import TextIO

from .config import TEMP_DIR_PREFIX
from .errors import LibraryIOError
from .keys import KeyAllocator
from .models import Entry, LibraryLoad, RenameRecord
from .store import read_entry, write_entry

log = logging.getLogger(__name__)


def scan_library(root: Path) -> list[str]:
    """List the names of the immediate children of a library root.

    Files and hidden directories (e.g. ``.git``) are listed too; the loader
    ignores them, so they do not count towards the entries of a load. The
    one exception is ``.tmp-`` directories left by an interrupted repair,
    which are loaded and renamed back to their key.

    Raises:
        LibraryIOError: If the root does not exist or cannot be read.
    """
    try:
        with os.scandir(root) as it:
            names = [item.name for item in it]
    except OSError as e:
        raise LibraryIOError.from_os_error("read library directory", root, e) from e
    return sorted(names)


def is_entry_dir(root: Path, name: str) -> bool:
    """Whether ``root / name`` should be loaded as an entry directory.

    Hidden directories are skipped, except temporaries left over from an
    interrupted repair: those still hold an entry and get renamed back.
    """
    if name.startswith(".") and not name.startswith(TEMP_DIR_PREFIX):
        return False
    return (root / name).is_dir()


def temp_dir_name(name: str) -> str:
    """Return a temporary directory name private to the worker repairing ``name``."""
    if name.startswith(TEMP_DIR_PREFIX):
        name = name[len(TEMP_DIR_PREFIX):]
    return f"{TEMP_DIR_PREFIX}{name}-{secrets.token_hex(4)}"


def repair_entry(root: Path, name: str, entry: Entry, allocator: KeyAllocator) -> RenameRecord:
    """Move an entry whose directory name does not match its key onto a unique key.

    The entry's ``key`` is updated in place and persisted to the new directory.

    Raises:
        LibraryIOError: If a rename or the metadata write fails.
        KeyAllocationError: If no unique key can be allocated.
        RenameCollisionError: If the allocated target appeared before the rename.
    """
    old_path = root / name
    temp_path = root / temp_dir_name(name)

    try:
        os.rename(old_path, temp_path)
    except OSError as e:
        raise LibraryIOError.from_os_error("rename", old_path, e) from e

    new_path = allocator.claim(entry.canonical_key(), temp_path)
    entry.key = new_path.name
    write_entry(new_path, entry)

    log.info("Renamed %s to %s", old_path, new_path)
    return RenameRecord(old_path=old_path, new_path=new_path)


def emit_audit(record: RenameRecord, stream: TextIO | None = None) -> None:
    """Write the audit line for a rename to ``stream`` (stdout by default)."""
    stream = stream if stream is not None else sys.stdout
    print(record.audit_line(), file=stream, flush=True)


def _repair_and_audit(
    root: Path, name: str, entry: Entry, allocator: KeyAllocator, audit: TextIO | None
) -> RenameRecord:
    # Runs in the worker thread: the audit line is written even if the
    # awaiting task has been cancelled meanwhile.
    record = repair_entry(root, name, entry, allocator)
    emit_audit(record, audit)
    return record


async def load_entry(
    root: Path,
    name: str,
    allocator: KeyAllocator,
    audit: TextIO | None = None,
) -> tuple[Entry, RenameRecord | None] | None:
    """Load one directory of a library, repairing its name if needed.

    Returns:
        ``(entry, rename)`` where ``rename`` is None if the directory already
        matched, or None if ``name`` is not an entry directory.
    """
    if not await asyncio.to_thread(is_entry_dir, root, name):
        return None

    entry = await asyncio.to_thread(read_entry, root / name)

    key = entry.canonical_key()
    if name == key:
        entry.key = key
        log.debug("Loaded %s", key)
        return entry, None

    repair = asyncio.ensure_future(
        asyncio.to_thread(_repair_and_audit, root, name, entry, allocator, audit)
    )
    try:
        record = await asyncio.shield(repair)
    except asyncio.CancelledError:
        # A thread cannot be interrupted; let the rename finish before unwinding.
        await asyncio.gather(repair, return_exceptions=True)
        raise
    return entry, record


async def load_library(root: Path | str, audit: TextIO | None = None) -> LibraryLoad:
    """Load every entry of a library concurrently.

    Args:
        root: Library root directory.
        audit: Stream receiving one ``Renamed: <old> > <new>`` line per repair
            (stdout by default).

    Returns:
        LibraryLoad with one entry per entry directory (see ``scan_library``
        for what is skipped), in no particular order, and the renames performed.

    Raises:
        BibshelfError: The first error raised by any worker. The remaining
            workers are cancelled; a repair already running in a worker thread
            completes, with its audit line, before the error propagates.
    """
    root = Path(root)
    names = await asyncio.to_thread(scan_library, root)
    allocator = KeyAllocator(root)

    tasks = [asyncio.create_task(load_entry(root, name, allocator, audit)) for name in names]
    try:
        results = await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    loaded = LibraryLoad(root=root)
    for result in results:
        if result is None:
            continue
        entry, record = result
        loaded.entries.append(entry)
        if record is not None:
            loaded.renames.append(record)

    log.debug(
        "Loaded %d entries from %s (%d renamed)", len(loaded.entries), root, len(loaded.renames)
    )
    return loaded
