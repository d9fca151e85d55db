from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from .titles import title_from_filename

CONTENT_DIRNAME = "content"
INDEX_FILENAME = "index.json"
DEFAULT_MANIFEST_PATH = f"{CONTENT_DIRNAME}/{INDEX_FILENAME}"


class ManifestError(ValueError):
    """Raised when a manifest cannot be decoded into categories and chapters."""


@dataclass(frozen=True, slots=True)
class ChapterEntry:
    title: str
    file: str

    def as_payload(self) -> dict[str, str]:
        return {"title": self.title, "file": self.file}


Manifest = dict[str, list[ChapterEntry]]


def parse_manifest(payload: object) -> Manifest:
    if not isinstance(payload, Mapping):
        raise ManifestError("Manifest must be a JSON object of categories.")
    manifest: Manifest = {}
    for category, entries in payload.items():
        if not isinstance(category, str) or not isinstance(entries, list):
            continue
        chapters: list[ChapterEntry] = []
        for entry in entries:
            if not isinstance(entry, Mapping):
                continue
            file_value = entry.get("file")
            if not isinstance(file_value, str) or not file_value.strip():
                continue
            title = entry.get("title")
            if not isinstance(title, str) or not title.strip():
                title = title_from_filename(file_value)
            chapters.append(ChapterEntry(title=title, file=file_value))
        manifest[category] = chapters
    return manifest


def manifest_from_text(text: str) -> Manifest:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ManifestError(f"Manifest is not valid JSON: {exc}") from exc
    return parse_manifest(payload)


def load_manifest(path: Path) -> Manifest | None:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    return manifest_from_text(text)


def manifest_payload(manifest: Mapping[str, list[ChapterEntry]]) -> dict[str, list[dict[str, str]]]:
    return {
        category: [entry.as_payload() for entry in entries]
        for category, entries in manifest.items()
    }


def dump_manifest(manifest: Mapping[str, list[ChapterEntry]]) -> str:
    return json.dumps(manifest_payload(manifest), ensure_ascii=False, indent=2) + "\n"


def write_text_atomic(path: Path, text: str) -> None:
    """Replace ``path`` with ``text`` so readers never observe a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as handle:
            handle.write(text)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def write_manifest(path: Path, manifest: Mapping[str, list[ChapterEntry]]) -> str:
    text = dump_manifest(manifest)
    write_text_atomic(path, text)
    return text


__all__ = [
    "CONTENT_DIRNAME",
    "ChapterEntry",
    "DEFAULT_MANIFEST_PATH",
    "INDEX_FILENAME",
    "Manifest",
    "ManifestError",
    "dump_manifest",
    "load_manifest",
    "manifest_from_text",
    "manifest_payload",
    "parse_manifest",
    "write_manifest",
    "write_text_atomic",
]
