"""
Regenerate ``content/index.json`` from a directory of Markdown chapters.

Every immediate subdirectory of the content root becomes a category and every
``.md`` file inside it a chapter. Category display names chosen in a previous
manifest are kept across rebuilds, so a category renamed by hand in
``index.json`` survives new chapters being added to its directory.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Mapping

from .manifest import (
    INDEX_FILENAME,
    ChapterEntry,
    Manifest,
    ManifestError,
    manifest_from_text,
    write_manifest,
)
from .titles import chapter_title, is_markdown_name, sort_key

logger = logging.getLogger(__name__)

_PATH_SPLIT_RE = re.compile(r"[\\/]")


class ManifestBuildError(RuntimeError):
    """Raised when the content tree cannot be scanned; nothing is written."""


@dataclass(slots=True)
class BuildResult:
    index_path: Path
    manifest: Manifest
    changed: bool

    @property
    def section_count(self) -> int:
        return len(self.manifest)

    @property
    def chapter_count(self) -> int:
        return sum(len(entries) for entries in self.manifest.values())


def existing_section_titles(previous: Mapping[str, list[ChapterEntry]] | None) -> dict[str, str]:
    titles: dict[str, str] = {}
    if not previous:
        return titles
    for section_title, entries in previous.items():
        for entry in entries:
            parts = _PATH_SPLIT_RE.split(entry.file)
            if len(parts) < 2:
                continue
            # First referencing section wins when an old manifest is inconsistent.
            titles.setdefault(parts[1], section_title)
    return titles


def _markdown_files(directory: Path) -> list[Path]:
    files = [
        path
        for path in directory.iterdir()
        if path.is_file() and is_markdown_name(path.name)
    ]
    files.sort(key=lambda path: sort_key(path.name))
    return files


def _collect_section(
    content_root: Path,
    directory: Path,
    known_titles: Mapping[str, str],
) -> tuple[str, list[ChapterEntry]] | None:
    markdown_files = _markdown_files(directory)
    if not markdown_files:
        logger.debug("Skipping %s: no Markdown files", directory.name)
        return None
    section_title = known_titles.get(directory.name, directory.name)
    entries: list[ChapterEntry] = []
    for path in markdown_files:
        text = path.read_text(encoding="utf-8")
        file_value = PurePosixPath(content_root.name, directory.name, path.name).as_posix()
        entries.append(ChapterEntry(title=chapter_title(text, path.name), file=file_value))
    return section_title, entries


def build_manifest(
    content_root: Path,
    previous: Mapping[str, list[ChapterEntry]] | None = None,
) -> Manifest:
    """Scan ``content_root`` and return the ordered category -> chapters mapping."""
    known_titles = existing_section_titles(previous)
    sections: list[tuple[str, list[ChapterEntry]]] = []
    try:
        directories = sorted(
            (entry for entry in content_root.iterdir() if entry.is_dir()),
            key=lambda entry: entry.name,
        )
        for directory in directories:
            section = _collect_section(content_root, directory, known_titles)
            if section is not None:
                sections.append(section)
    except (OSError, UnicodeDecodeError) as exc:
        raise ManifestBuildError(f"Failed to scan {content_root}: {exc}") from exc
    sections.sort(key=lambda item: sort_key(item[0]))
    manifest: Manifest = {}
    for section_title, entries in sections:
        if section_title in manifest:
            # Two directories mapped onto one renamed title: keep both chapter lists.
            manifest[section_title].extend(entries)
        else:
            manifest[section_title] = entries
    return manifest


def rebuild_index(content_root: Path, index_path: Path | None = None) -> BuildResult:
    """Rebuild the manifest on disk, all-or-nothing."""
    content_root = content_root.expanduser()
    if not content_root.is_dir():
        raise ManifestBuildError(f"Content directory not found: {content_root}")
    target = index_path or content_root / INDEX_FILENAME
    try:
        previous_text = target.read_text(encoding="utf-8") if target.exists() else None
        previous = manifest_from_text(previous_text) if previous_text is not None else None
    except (OSError, UnicodeDecodeError, ManifestError) as exc:
        raise ManifestBuildError(f"Failed to read previous manifest {target}: {exc}") from exc
    manifest = build_manifest(content_root, previous)
    try:
        text = write_manifest(target, manifest)
    except OSError as exc:
        raise ManifestBuildError(f"Failed to write {target}: {exc}") from exc
    changed = text != previous_text
    logger.info(
        "Wrote %s (%d sections, %d chapters%s)",
        target,
        len(manifest),
        sum(len(entries) for entries in manifest.values()),
        "" if changed else ", unchanged",
    )
    return BuildResult(index_path=target, manifest=manifest, changed=changed)


__all__ = [
    "BuildResult",
    "ManifestBuildError",
    "build_manifest",
    "existing_section_titles",
    "rebuild_index",
]
