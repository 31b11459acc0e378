"""Whitespace-insensitive content and frontmatter hashes for deployed agent files."""

from __future__ import annotations

import hashlib
import re
from pathlib import Path

from cami.errors import NoFrontmatterError

HASH_PREFIX = "sha256:"

_BLANK_RUNS = re.compile(r"\n{3,}")
_DELIMITER = "---"


def normalize_content(content: bytes | str) -> str:
    """Normalize text so cosmetic re-saves hash identically.

    Line endings become ``\\n``, trailing spaces and tabs are stripped from
    every line, runs of blank lines collapse to one, and the whole text is
    trimmed. Trailing whitespace is stripped before blank runs are collapsed
    so that ``normalize_content(normalize_content(x)) == normalize_content(x)``.
    """
    text = content.decode("utf-8", errors="replace") if isinstance(content, bytes) else content
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = "\n".join(line.rstrip(" \t") for line in text.split("\n"))
    text = _BLANK_RUNS.sub("\n\n", text)
    return text.strip()


def _digest(text: str) -> str:
    return HASH_PREFIX + hashlib.sha256(text.encode("utf-8")).hexdigest()


def extract_frontmatter(content: bytes | str) -> str:
    """Return the text between the opening and closing ``---`` lines.

    Raises:
        NoFrontmatterError: no opening delimiter, or it is never closed.
    """
    text = content.decode("utf-8", errors="replace") if isinstance(content, bytes) else content
    text = text.removeprefix("\ufeff").replace("\r\n", "\n").replace("\r", "\n")
    lines = text.split("\n")
    if not lines or lines[0].strip() != _DELIMITER:
        raise NoFrontmatterError("no frontmatter found")

    for i in range(1, len(lines)):
        if lines[i].strip() == _DELIMITER:
            return "\n".join(lines[1:i])
    raise NoFrontmatterError("frontmatter not properly closed")


def content_hash(content: bytes | str) -> str:
    """SHA-256 of the normalized full text, as ``sha256:<hex>``."""
    return _digest(normalize_content(content))


def metadata_hash(content: bytes | str) -> str:
    """SHA-256 of the normalized frontmatter only, as ``sha256:<hex>``."""
    return _digest(normalize_content(extract_frontmatter(content)))


def content_hash_file(path: Path) -> str:
    return content_hash(path.read_bytes())


def metadata_hash_file(path: Path) -> str:
    return metadata_hash(path.read_bytes())
