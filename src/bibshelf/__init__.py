"""bibshelf: a directory-per-entry bibliography library manager."""

__version__ = "0.1.0"
