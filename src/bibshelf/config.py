"""Configuration management for bibshelf.

This module resolves which library to operate on and which editor to launch,
and holds the constants shared by the library layer. The loading core never
reads configuration itself: callers resolve a library root here and pass it
in explicitly.

Config file (YAML), discovered in this order:
1. BIBSHELF_CONFIG environment variable
2. $XDG_CONFIG_HOME/bibshelf/config.yaml
3. ~/.config/bibshelf/config.yaml

    general:
      default: papers
      editor: vim
    libraries:
      papers: ~/papers
      books: ~/books
"""

import os
import shlex
import sys
from pathlib import Path
from typing import Any

from .errors import ConfigurationError

__all__ = [
    "ConfigurationError",
    "ENTRY_FILENAME",
    "MAX_KEY_SUFFIX",
    "TEMP_DIR_PREFIX",
    "get_config_path",
    "get_default_library",
    "get_editor",
    "get_library_root",
    "list_libraries",
    "load_config",
]


# =============================================================================
# Library layout
# =============================================================================

# Metadata file stored inside every entry directory.
ENTRY_FILENAME = "entry.yaml"

# Prefix of the temporary directory name used while an entry directory is
# being renamed. Directories with this prefix found during a scan are left
# over from an interrupted repair and are healed like any other mismatch.
TEMP_DIR_PREFIX = ".tmp-"

# Highest numeric suffix tried after the single letters a-z are exhausted.
# smith2020, smith2020a ... smith2020z, smith20202 ... smith202099
MAX_KEY_SUFFIX = 99

# Editor used when neither the config file nor $VISUAL/$EDITOR names one.
DEFAULT_EDITOR = "vi"


# =============================================================================
# Config file
# =============================================================================


def get_config_path() -> Path:
    """Return the path of the config file (which may not exist)."""
    explicit = os.environ.get("BIBSHELF_CONFIG")
    if explicit:
        return Path(explicit).expanduser()

    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / "bibshelf" / "config.yaml"


def load_config() -> dict[str, Any]:
    """Load the config file.

    Returns:
        The parsed mapping, or an empty dict if the file does not exist.

    Raises:
        ConfigurationError: If the file cannot be read or is not a YAML mapping.
    """
    import yaml

    path = get_config_path()
    if not path.exists():
        return {}

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to read config file {path}: {e}", {"path": path}) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file {path} must contain a mapping", {"path": path}
        )
    return data


def _section(config: dict[str, Any], name: str) -> dict[str, Any]:
    value = config.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Config section '{name}' must be a mapping")
    return value


def list_libraries(config: dict[str, Any] | None = None) -> dict[str, Path]:
    """Return the configured libraries as {name: absolute path}."""
    if config is None:
        config = load_config()
    libraries = _section(config, "libraries")
    return {
        str(name): Path(str(path)).expanduser().resolve()
        for name, path in libraries.items()
    }


def get_default_library(config: dict[str, Any] | None = None) -> str | None:
    """Return the name of the default library from ``general.default``, if set."""
    if config is None:
        config = load_config()
    default = _section(config, "general").get("default")
    return str(default) if default is not None else None


def get_library_root(name: str | None = None) -> Path:
    """Resolve the root directory of a library.

    Discovery order:
    1. BIBSHELF_LIBRARY_ROOT environment variable (explicit override)
    2. The library called ``name`` in the config file
    3. The library named by ``general.default`` in the config file

    Raises:
        ConfigurationError: If the library is unknown or nothing is configured.
    """
    root = os.environ.get("BIBSHELF_LIBRARY_ROOT")
    if root:
        return Path(root).expanduser().resolve()

    config = load_config()
    libraries = list_libraries(config)

    if name is None:
        name = get_default_library(config)
        if name is None and len(libraries) == 1:
            name = next(iter(libraries))

    if name is None:
        raise ConfigurationError(
            "No library configured. Options:\n"
            f"  1. Add a 'libraries' section and 'general.default' to {get_config_path()}\n"
            "  2. Set BIBSHELF_LIBRARY_ROOT to an existing library directory",
            {"path": get_config_path()},
        )

    name = str(name)
    if name not in libraries:
        raise ConfigurationError(
            f"No library called {name} was found!",
            {
                "library": name,
                "libraries": {k: str(v) for k, v in libraries.items()},
                "suggestion": "Available libraries: " + (", ".join(sorted(libraries)) or "none"),
            },
        )
    return libraries[name]


def get_editor(config: dict[str, Any] | None = None) -> list[str]:
    """Return the command used to edit metadata files, as an argv prefix."""
    if sys.platform.startswith("win"):
        return ["cmd", "/c", "start"]

    if config is None:
        config = load_config()
    editor = (
        _section(config, "general").get("editor")
        or os.environ.get("VISUAL")
        or os.environ.get("EDITOR")
        or DEFAULT_EDITOR
    )
    return shlex.split(str(editor))
