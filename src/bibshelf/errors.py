"""Error taxonomy for bibshelf.

Every error raised by the library layer is a ``BibshelfError`` carrying a
machine-readable ``ErrorCode``, a human message and optional details. The CLI
renders them either as ``Error: <message>`` lines or, with ``--json-errors``,
as ``{"error": {"code": ..., "message": ..., "details": ...}}``.

Loading a library is fail-fast: any of these errors aborts the whole load.
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes for programmatic consumers."""

    IO_ERROR = "IO_ERROR"
    DECODE_ERROR = "DECODE_ERROR"
    RENAME_COLLISION = "RENAME_COLLISION"
    KEY_ALLOCATION = "KEY_ALLOCATION"
    ENTRY_NOT_FOUND = "ENTRY_NOT_FOUND"
    ENTRY_EXISTS = "ENTRY_EXISTS"
    CONFIG_ERROR = "CONFIG_ERROR"
    EDITOR_FAILED = "EDITOR_FAILED"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class BibshelfError(Exception):
    """Base error with a code, message and structured details."""

    default_code = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        code: ErrorCode | None = None,
    ) -> None:
        self.code = code or self.default_code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            error["details"] = {k: _jsonable(v) for k, v in self.details.items()}
        return {"error": error}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


class LibraryIOError(BibshelfError):
    """A library directory or metadata file is missing, unreadable or unwritable."""

    default_code = ErrorCode.IO_ERROR

    @classmethod
    def from_os_error(cls, action: str, path: Path, exc: OSError) -> "LibraryIOError":
        reason = exc.strerror or str(exc)
        return cls(f"Cannot {action} {path}: {reason}", {"path": path})


class DecodeError(BibshelfError):
    """An entry's metadata file is not valid YAML or does not describe an entry."""

    default_code = ErrorCode.DECODE_ERROR

    def __init__(self, path: Path, message: str) -> None:
        self.path = path
        super().__init__(f"{path}: {message}", {"path": path})


class RenameCollisionError(BibshelfError):
    """The target of a repair rename already exists."""

    default_code = ErrorCode.RENAME_COLLISION

    def __init__(self, source: Path, target: Path) -> None:
        self.source = source
        self.target = target
        super().__init__(
            f"Cannot rename {source} to {target}: target already exists",
            {"source": source, "target": target},
        )


class KeyAllocationError(BibshelfError):
    """No unique key could be derived from the requested one."""

    default_code = ErrorCode.KEY_ALLOCATION


class EntryNotFoundError(BibshelfError):
    """No entry with the given key exists in the library."""

    default_code = ErrorCode.ENTRY_NOT_FOUND

    def __init__(self, key: str, suggestion: str | None = None) -> None:
        self.key = key
        details: dict[str, Any] = {"key": key}
        if suggestion:
            details["suggestion"] = suggestion
        super().__init__(f"Entry not found: {key}", details)


class ConfigurationError(BibshelfError):
    """Raised when required configuration is missing or malformed."""

    default_code = ErrorCode.CONFIG_ERROR


def format_error_json(code: ErrorCode | str, message: str, details: dict | None = None) -> str:
    """Format an arbitrary error as the same JSON shape as ``BibshelfError.to_json``."""
    code_value = code.value if isinstance(code, ErrorCode) else code
    error: dict[str, Any] = {"code": code_value, "message": message}
    if details:
        error["details"] = {k: _jsonable(v) for k, v in details.items()}
    return json.dumps({"error": error})


def _jsonable(value: Any) -> Any:
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
