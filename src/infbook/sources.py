from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Protocol
from urllib.parse import quote

import requests

from .manifest import DEFAULT_MANIFEST_PATH, Manifest, manifest_from_text


class ContentUnavailableError(ConnectionError):
    """Raised when the manifest or a chapter cannot be fetched."""


class ContentSource(Protocol):
    def fetch_manifest(self) -> Manifest: ...

    def fetch_chapter(self, file: str) -> str: ...


def _normalize_relative(file: str) -> str:
    candidate = PurePosixPath(file.replace("\\", "/"))
    if candidate.is_absolute() or ".." in candidate.parts:
        raise ContentUnavailableError(f"Path escapes the content root: {file}")
    return candidate.as_posix()


class HttpContentSource:
    """Fetch the manifest and chapters from a static site over HTTP(S)."""

    def __init__(
        self,
        base_url: str,
        manifest_path: str = DEFAULT_MANIFEST_PATH,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.manifest_path = manifest_path
        self.timeout = timeout
        self._session = requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{quote(_normalize_relative(path))}"

    def _get_text(self, path: str) -> str:
        url = self._url(path)
        try:
            resp = self._session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise ContentUnavailableError(f"Failed to fetch {url}") from exc
        if not resp.ok:
            raise ContentUnavailableError(f"{url} failed with status {resp.status_code}")
        resp.encoding = "utf-8"
        return resp.text

    def fetch_manifest(self) -> Manifest:
        return manifest_from_text(self._get_text(self.manifest_path))

    def fetch_chapter(self, file: str) -> str:
        return self._get_text(file)


class LocalContentSource:
    """Read the manifest and chapters from a site root on disk."""

    def __init__(self, root: Path, manifest_path: str = DEFAULT_MANIFEST_PATH) -> None:
        self.root = root.expanduser().resolve()
        self.manifest_path = manifest_path

    def resolve(self, path: str) -> Path:
        candidate = (self.root / _normalize_relative(path)).resolve()
        try:
            candidate.relative_to(self.root)
        except ValueError as exc:
            raise ContentUnavailableError(f"Path escapes the content root: {path}") from exc
        return candidate

    def _read_text(self, path: str) -> str:
        target = self.resolve(path)
        try:
            return target.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ContentUnavailableError(f"Failed to read {target}: {exc}") from exc

    def fetch_manifest(self) -> Manifest:
        return manifest_from_text(self._read_text(self.manifest_path))

    def fetch_chapter(self, file: str) -> str:
        return self._read_text(file)


__all__ = [
    "ContentSource",
    "ContentUnavailableError",
    "HttpContentSource",
    "LocalContentSource",
]
