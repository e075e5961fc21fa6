"""Entry key cleaning and unique key allocation.

Keys double as directory names, so they must be filesystem-safe and unique
within a library. Uniqueness is always checked against the live directory
set, never against a snapshot taken at scan time: sibling workers may be
renaming their own directories while a key is being allocated.
"""

from __future__ import annotations

import errno
import logging
import os
import re
import string
import threading
from pathlib import Path

from .config import MAX_KEY_SUFFIX
from .errors import KeyAllocationError, LibraryIOError, RenameCollisionError

log = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^A-Za-z0-9\s]+")
_WHITESPACE = re.compile(r"\s")


def clean_key(text: str) -> str:
    """Reduce arbitrary text to a lowercase, filesystem-safe key.

    Runs of punctuation become a single separator and whitespace becomes
    underscores: "Smith & Jones 2020" -> "smith_jones_2020".
    """
    cleaned = _NON_ALNUM.sub(" ", text)
    cleaned = _WHITESPACE.sub("_", cleaned.strip())
    cleaned = re.sub(r"_+", "_", cleaned)
    return cleaned.lower().strip("_")


def candidate_keys(key: str):
    """Yield ``key`` followed by its disambiguated variants, in preference order."""
    yield key
    for letter in string.ascii_lowercase:
        yield f"{key}{letter}"
    for number in range(2, MAX_KEY_SUFFIX + 1):
        yield f"{key}{number}"


def unique_key(root: Path, key: str) -> str:
    """Return ``key`` or the first variant of it not present under ``root``.

    Raises:
        KeyAllocationError: If ``key`` is empty or every variant is taken.
    """
    if not key:
        raise KeyAllocationError("Cannot allocate an empty key", {"root": root})

    for candidate in candidate_keys(key):
        if not os.path.lexists(root / candidate):
            return candidate

    raise KeyAllocationError(
        f"No unique key available for '{key}' in {root}",
        {"key": key, "root": root},
    )


class KeyAllocator:
    """Hands out unique keys for one library and moves directories onto them.

    One allocator is shared by every worker of a load pass. Allocation and the
    rename that takes the allocated name are done under a single lock, so two
    workers can never be given the same key even though they check the same
    live directory set.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self._lock = threading.Lock()

    def claim(self, key: str, source: Path) -> Path:
        """Allocate a unique key derived from ``key`` and rename ``source`` to it.

        Returns:
            The new directory path; its name is the allocated key.

        Raises:
            KeyAllocationError: If no unique key can be produced.
            RenameCollisionError: If the target appeared before the rename.
            LibraryIOError: If the rename itself fails.
        """
        with self._lock:
            new_key = unique_key(self.root, key)
            target = self.root / new_key

            # Re-validate right before the rename: os.rename silently replaces
            # an empty target directory on POSIX.
            if os.path.lexists(target):
                raise RenameCollisionError(source, target)
            try:
                os.rename(source, target)
            except OSError as e:
                if e.errno in (errno.EEXIST, errno.ENOTEMPTY):
                    raise RenameCollisionError(source, target) from e
                raise LibraryIOError.from_os_error("rename", source, e) from e

        if new_key != key:
            log.debug("Key %s is taken, allocated %s", key, new_key)
        return target
