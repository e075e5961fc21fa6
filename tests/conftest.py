"""Shared test fixtures for the bibshelf test suite.

Design:
- tmp_library: isolated library root in a temp directory, selected through
  BIBSHELF_LIBRARY_ROOT so no user config is ever read
- runner / cli_invoke: CliRunner with proper isolation
- make_entry: helper that writes <root>/<dir>/entry.yaml
"""

from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from bibshelf.cli import cli


# ─────────────────────────────────────────────────────────────────────────────
# Core Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point config discovery at an empty temp location for every test."""
    config_path = tmp_path / "config" / "config.yaml"
    monkeypatch.setenv("BIBSHELF_CONFIG", str(config_path))
    monkeypatch.delenv("BIBSHELF_LIBRARY_ROOT", raising=False)
    monkeypatch.delenv("BIBSHELF_LOG_LEVEL", raising=False)
    return config_path


@pytest.fixture
def runner() -> CliRunner:
    """CLI runner with isolated environment."""
    return CliRunner()


@pytest.fixture
def tmp_library(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Create an empty library root and select it via BIBSHELF_LIBRARY_ROOT.

    Usage:
        def test_something(tmp_library):
            make_entry(tmp_library, "smith2020", key="smith2020")
    """
    root = (tmp_path / "library").resolve()
    root.mkdir()
    monkeypatch.setenv("BIBSHELF_LIBRARY_ROOT", str(root))
    return root


@pytest.fixture
def tmp_library_with_entries(tmp_library: Path) -> Path:
    """Library with three consistent entries.

    Creates:
    - knuth1997 (book)
    - smith2020 (article, with attachment)
    - turing1936 (article)
    """
    make_entry(
        tmp_library,
        "knuth1997",
        key="knuth1997",
        entry_type="book",
        fields={"author": "Knuth, Donald", "title": "The Art of Computer Programming", "year": 1997},
    )
    make_entry(
        tmp_library,
        "smith2020",
        key="smith2020",
        fields={"author": "Smith, Jane", "title": "On Things", "year": 2020},
        file="paper.pdf",
    )
    (tmp_library / "smith2020" / "paper.pdf").write_bytes(b"%PDF-1.4\n")
    make_entry(
        tmp_library,
        "turing1936",
        key="turing1936",
        fields={"author": "Alan Turing", "title": "On Computable Numbers", "year": 1936},
    )
    return tmp_library


@pytest.fixture
def cli_invoke(runner: CliRunner, tmp_library: Path):
    """Helper for invoking the CLI against tmp_library.

    Usage:
        def test_list(cli_invoke):
            result = cli_invoke(["list"])
            assert result.exit_code == 0
    """

    def _invoke(args: list[str], input: str | None = None, catch_exceptions: bool = False):
        return runner.invoke(
            cli,
            args,
            input=input,
            catch_exceptions=catch_exceptions,
            env={"BIBSHELF_LIBRARY_ROOT": str(tmp_library)},
        )

    return _invoke


# ─────────────────────────────────────────────────────────────────────────────
# Helper Functions (for test code, not fixtures)
# ─────────────────────────────────────────────────────────────────────────────


def make_entry(
    root: Path,
    dirname: str,
    *,
    key: str | None = None,
    entry_type: str = "article",
    fields: dict | None = None,
    file: str | None = None,
) -> Path:
    """Write ``<root>/<dirname>/entry.yaml`` and return the entry directory.

    Usage in tests:
        from conftest import make_entry
        make_entry(tmp_library, "old_key", key="new_key")
    """
    directory = root / dirname
    directory.mkdir(parents=True, exist_ok=True)
    data: dict = {"type": entry_type}
    if key is not None:
        data["key"] = key
    data["fields"] = fields or {"title": f"Entry {dirname}"}
    if file is not None:
        data["file"] = file
    (directory / "entry.yaml").write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    return directory


def stored_key(directory: Path) -> str:
    """Read the key persisted in a directory's entry.yaml."""
    data = yaml.safe_load((directory / "entry.yaml").read_text(encoding="utf-8"))
    return data["key"]


def entry_dirs(root: Path) -> set[str]:
    """Names of the directories currently in a library root."""
    return {p.name for p in root.iterdir() if p.is_dir()}
