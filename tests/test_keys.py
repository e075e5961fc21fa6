"""Tests for bibshelf.keys: key cleaning and unique key allocation."""

import threading

import pytest

from bibshelf import keys
from bibshelf.errors import KeyAllocationError, RenameCollisionError
from bibshelf.keys import KeyAllocator, candidate_keys, clean_key, unique_key


class TestCleanKey:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("smith2020", "smith2020"),
            ("Smith2020", "smith2020"),
            ("old_key", "old_key"),
            ("Smith & Jones 2020", "smith_jones_2020"),
            ("  padded  ", "padded"),
            ("dots.and-dashes", "dots_and_dashes"),
            ("../escape", "escape"),
            ("!!!", ""),
        ],
    )
    def test_clean_key(self, text, expected):
        assert clean_key(text) == expected

    def test_clean_key_is_idempotent(self):
        once = clean_key("Müller, K. (2019)")
        assert clean_key(once) == once


class TestUniqueKey:
    def test_free_key_is_returned_unchanged(self, tmp_path):
        assert unique_key(tmp_path, "smith2020") == "smith2020"

    def test_taken_key_gets_letter_suffix(self, tmp_path):
        (tmp_path / "smith2020").mkdir()
        (tmp_path / "smith2020a").mkdir()

        assert unique_key(tmp_path, "smith2020") == "smith2020b"

    def test_files_also_block_a_key(self, tmp_path):
        (tmp_path / "smith2020").write_text("")
        assert unique_key(tmp_path, "smith2020") == "smith2020a"

    def test_numbers_follow_letters(self):
        candidates = list(candidate_keys("k"))
        assert candidates[:3] == ["k", "ka", "kb"]
        assert candidates[26] == "kz"
        assert candidates[27] == "k2"

    def test_exhausted_candidates_raise(self, tmp_path, monkeypatch):
        monkeypatch.setattr(keys, "MAX_KEY_SUFFIX", 2)
        for candidate in candidate_keys("k"):
            (tmp_path / candidate).mkdir()

        with pytest.raises(KeyAllocationError):
            unique_key(tmp_path, "k")

    def test_empty_key_raises(self, tmp_path):
        with pytest.raises(KeyAllocationError):
            unique_key(tmp_path, "")


class TestKeyAllocator:
    def test_claim_renames_source_onto_key(self, tmp_path):
        source = tmp_path / ".tmp-x"
        source.mkdir()
        (source / "entry.yaml").write_text("key: smith2020\n")

        target = KeyAllocator(tmp_path).claim("smith2020", source)

        assert target == tmp_path / "smith2020"
        assert (target / "entry.yaml").exists()
        assert not source.exists()

    def test_claim_skips_taken_keys(self, tmp_path):
        (tmp_path / "smith2020").mkdir()
        source = tmp_path / ".tmp-x"
        source.mkdir()

        target = KeyAllocator(tmp_path).claim("smith2020", source)

        assert target.name == "smith2020a"

    def test_target_appearing_before_rename_is_a_collision(self, tmp_path, monkeypatch):
        (tmp_path / "taken").mkdir()
        source = tmp_path / ".tmp-x"
        source.mkdir()
        monkeypatch.setattr(keys, "unique_key", lambda root, key: "taken")

        with pytest.raises(RenameCollisionError) as exc_info:
            KeyAllocator(tmp_path).claim("taken", source)

        assert exc_info.value.target == tmp_path / "taken"
        assert source.exists()

    def test_concurrent_claims_get_distinct_keys(self, tmp_path):
        allocator = KeyAllocator(tmp_path)
        sources = []
        for i in range(20):
            source = tmp_path / f".tmp-{i}"
            source.mkdir()
            sources.append(source)

        results: list = []
        barrier = threading.Barrier(len(sources))

        def worker(source):
            barrier.wait()
            results.append(allocator.claim("dup", source).name)

        threads = [threading.Thread(target=worker, args=(s,)) for s in sources]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 20
        assert len(set(results)) == 20
        assert {p.name for p in tmp_path.iterdir()} == set(results)
