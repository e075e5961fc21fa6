"""Reading and writing entry metadata files.

Each entry lives in ``<library>/<key>/entry.yaml``. The file is plain YAML so
it can be edited by hand; hand edits to ``key`` are picked up by the next
library load, which renames the directory to match.
"""

import contextlib
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import ENTRY_FILENAME
from .errors import DecodeError, LibraryIOError
from .models import Entry

# Order in which known fields are written; extra keys follow in file order.
_FIELD_ORDER = ("type", "key", "fields", "file")


def entry_file(directory: Path) -> Path:
    """Return the metadata file path for an entry directory."""
    return directory / ENTRY_FILENAME


def decode_entry(data: bytes | str, path: Path) -> Entry:
    """Deserialize metadata bytes into an Entry.

    Args:
        data: Raw content of the metadata file.
        path: Where the data came from (used in error messages only).

    Raises:
        DecodeError: If the content is not YAML or not a valid entry.
    """
    try:
        raw = yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise DecodeError(path, f"Invalid YAML: {e}") from e

    if not isinstance(raw, dict):
        raise DecodeError(path, "Expected a YAML mapping describing an entry")

    try:
        return Entry.model_validate(raw)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        raise DecodeError(path, "Invalid entry:\n" + "\n".join(errors)) from e


def encode_entry(entry: Entry) -> str:
    """Serialize an Entry to YAML text with a stable, readable field order."""
    data = entry.model_dump(exclude_none=True)
    ordered = {name: data.pop(name) for name in _FIELD_ORDER if name in data}
    ordered.update(data)
    return yaml.safe_dump(ordered, sort_keys=False, allow_unicode=True, default_flow_style=False)


def read_entry(directory: Path) -> Entry:
    """Load the entry stored in ``directory``.

    Raises:
        LibraryIOError: If the metadata file is missing or unreadable.
        DecodeError: If the metadata file is malformed.
    """
    path = entry_file(directory)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise LibraryIOError.from_os_error("read", path, e) from e
    return decode_entry(data, path)


def write_entry(directory: Path, entry: Entry) -> Path:
    """Persist ``entry`` to ``directory``, replacing the metadata file atomically.

    Raises:
        LibraryIOError: If the file cannot be written.
    """
    path = entry_file(directory)
    tmp = path.with_name(f".{ENTRY_FILENAME}.tmp")
    try:
        tmp.write_text(encode_entry(entry), encoding="utf-8")
        os.replace(tmp, path)
    except OSError as e:
        with contextlib.suppress(OSError):
            tmp.unlink(missing_ok=True)
        raise LibraryIOError.from_os_error("write", path, e) from e
    return path
