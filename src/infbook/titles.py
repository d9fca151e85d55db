from __future__ import annotations

import re
import unicodedata
from pathlib import PurePosixPath

MARKDOWN_EXTS = (".md",)

_HEADING_RE = re.compile(r"^#\s+(.+?)\s*$")
_SEPARATOR_RE = re.compile(r"[-_]+")


def is_markdown_name(name: str) -> bool:
    return name.lower().endswith(MARKDOWN_EXTS)


def heading_title(text: str) -> str | None:
    """Return the text of the first level-1 ATX heading, if any."""
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        match = _HEADING_RE.match(stripped)
        if match:
            return match.group(1)
    return None


def title_from_filename(name: str) -> str:
    stem = PurePosixPath(name.replace("\\", "/")).stem
    pieces = [piece for piece in _SEPARATOR_RE.sub(" ", stem).split(" ") if piece]
    # "01-welcome" is an ordering prefix, not part of the title.
    if len(pieces) > 1 and pieces[0].isdigit():
        pieces = pieces[1:]
    return " ".join(piece[:1].upper() + piece[1:] for piece in pieces)


def chapter_title(text: str | None, filename: str) -> str:
    if text:
        heading = heading_title(text)
        if heading:
            return heading
    return title_from_filename(filename)


def sort_key(value: str) -> tuple[str, str]:
    """Case- and accent-insensitive ordering with the raw value as tie-breaker."""
    decomposed = unicodedata.normalize("NFKD", value)
    folded = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return folded.casefold(), value


__all__ = [
    "MARKDOWN_EXTS",
    "chapter_title",
    "heading_title",
    "is_markdown_name",
    "sort_key",
    "title_from_filename",
]
