"""Pydantic models for bibshelf libraries."""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .keys import clean_key

# Key used when an entry has neither a stored key nor enough content to derive one.
FALLBACK_KEY = "entry"


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


class Entry(BaseModel):
    """A bibliographic entry as stored in ``<library>/<key>/entry.yaml``."""

    # Unknown top-level keys survive a load/repair cycle untouched.
    model_config = ConfigDict(extra="allow")

    type: str = "article"
    key: str = ""  # Directory name once loaded; may be hand-edited on disk
    fields: dict[str, str] = Field(default_factory=dict)  # title, author, year, ...
    file: str | None = None  # Attachment file name inside the entry directory

    @field_validator("type", "key", mode="before")
    @classmethod
    def _scalar_to_text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("fields", mode="before")
    @classmethod
    def _field_values_to_text(cls, value: Any) -> Any:
        # YAML reads `year: 2020` as an int; fields are text.
        if value is None:
            return {}
        if isinstance(value, dict):
            return {str(k): _as_text(v) for k, v in value.items()}
        return value

    @property
    def title(self) -> str:
        return self.fields.get("title", "")

    @property
    def first_author_last_name(self) -> str:
        author = self.fields.get("author", "").strip()
        if not author:
            return ""
        first = author.split(" and ")[0].strip()
        if "," in first:
            return first.split(",")[0].strip()
        names = first.split()
        return names[-1] if names else ""

    @property
    def year(self) -> str:
        year = self.fields.get("year", "").strip()
        if not year:
            year = self.fields.get("date", "").strip()[:4]
        return year

    def generated_key(self) -> str:
        """Derive a key from content: last name of the first author + year."""
        stem = self.first_author_last_name
        if not stem:
            title_words = self.title.split()
            stem = title_words[0] if title_words else ""
        key = clean_key(f"{stem}{self.year}") if stem else ""
        return key or FALLBACK_KEY

    def canonical_key(self) -> str:
        """Return the key this entry's directory must be named after.

        A stored key wins (cleaned to be filesystem-safe); otherwise the key is
        generated from content.
        """
        if self.key:
            cleaned = clean_key(self.key)
            if cleaned:
                return cleaned
        return self.generated_key()


class RenameRecord(BaseModel):
    """A directory renamed while repairing a key/directory mismatch."""

    old_path: Path
    new_path: Path

    @property
    def old_key(self) -> str:
        return self.old_path.name

    @property
    def new_key(self) -> str:
        return self.new_path.name

    def audit_line(self) -> str:
        return f"Renamed: {self.old_path} > {self.new_path}"


class LibraryLoad(BaseModel):
    """Result of one load pass over a library."""

    root: Path
    entries: list[Entry] = Field(default_factory=list)  # Unordered
    renames: list[RenameRecord] = Field(default_factory=list)

    @property
    def keys(self) -> set[str]:
        return {entry.key for entry in self.entries}
