from __future__ import annotations

import pytest

from cami.errors import NoFrontmatterError
from cami.hashing import (
    HASH_PREFIX,
    content_hash,
    content_hash_file,
    extract_frontmatter,
    metadata_hash,
    normalize_content,
)


class TestNormalizeContent:
    def test_cosmetic_variants_hash_equal(self):
        variants = ["line1\nline2", "line1\r\nline2\r\n", "line1  \nline2  "]
        hashes = {content_hash(v) for v in variants}
        assert len(hashes) == 1

    def test_collapses_blank_runs(self):
        assert normalize_content("a\n\n\n\nb") == "a\n\nb"

    def test_whitespace_only_lines_collapse_too(self):
        assert normalize_content("a  \n \n\t\n\nb") == "a\n\nb"

    @pytest.mark.parametrize(
        "text",
        [
            "  leading and trailing  \n\n",
            "a \n \n \n \nb",
            "x\r\r\ny\r\n\r\n\r\n\tz\t",
            "",
        ],
    )
    def test_idempotent(self, text):
        once = normalize_content(text)
        assert normalize_content(once) == once
        assert content_hash(text) == content_hash(once)

    def test_accepts_bytes(self):
        assert normalize_content(b"a\r\nb\r\n") == "a\nb"

    def test_content_change_changes_hash(self):
        assert content_hash("a\nb") != content_hash("a\nc")


class TestMetadataHash:
    def test_ignores_body(self):
        a = "---\nname: x\n---\nbody one\n"
        b = "---\nname: x\n---\nbody two\n"
        assert metadata_hash(a) == metadata_hash(b)
        assert content_hash(a) != content_hash(b)

    def test_ignores_cosmetic_frontmatter_changes(self):
        assert metadata_hash("---\r\nname: x  \r\n---\r\n") == metadata_hash("---\nname: x\n---\n")

    def test_no_frontmatter(self):
        with pytest.raises(NoFrontmatterError, match="no frontmatter found"):
            metadata_hash("just text")

    def test_unclosed_frontmatter(self):
        with pytest.raises(NoFrontmatterError, match="not properly closed"):
            extract_frontmatter("---\nname: x\n")

    def test_extract_frontmatter(self):
        assert extract_frontmatter("---\nname: x\nversion: 1\n---\nbody") == "name: x\nversion: 1"


class TestHashFormat:
    def test_prefix(self, tmp_path):
        path = tmp_path / "a.md"
        path.write_text("---\nname: a\n---\n")
        digest = content_hash_file(path)
        assert digest.startswith(HASH_PREFIX)
        assert len(digest) == len(HASH_PREFIX) + 64
