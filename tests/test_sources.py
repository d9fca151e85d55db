from __future__ import annotations

import json
from pathlib import Path

import pytest
import requests

from infbook.manifest import ChapterEntry, ManifestError
from infbook.sources import ContentUnavailableError, HttpContentSource, LocalContentSource


class FakeResponse:
    def __init__(self, text: str, status_code: int = 200) -> None:
        self.text = text
        self.status_code = status_code
        self.encoding: str | None = None

    @property
    def ok(self) -> bool:
        return self.status_code < 400


def _site(tmp_path: Path) -> Path:
    content = tmp_path / "content"
    (content / "intro").mkdir(parents=True)
    (content / "intro" / "a.md").write_text("# A\n", encoding="utf-8")
    (content / "index.json").write_text(
        json.dumps({"intro": [{"title": "A", "file": "content/intro/a.md"}, {"file": ""}]}),
        encoding="utf-8",
    )
    return tmp_path


def test_local_source_reads_manifest_and_chapters(tmp_path: Path) -> None:
    source = LocalContentSource(_site(tmp_path))
    assert source.fetch_manifest() == {"intro": [ChapterEntry("A", "content/intro/a.md")]}
    assert source.fetch_chapter("content/intro/a.md") == "# A\n"


def test_local_source_rejects_paths_outside_root(tmp_path: Path) -> None:
    source = LocalContentSource(_site(tmp_path))
    with pytest.raises(ContentUnavailableError):
        source.fetch_chapter("../outside.md")
    with pytest.raises(ContentUnavailableError):
        source.fetch_chapter("/etc/passwd")
    with pytest.raises(ContentUnavailableError):
        source.fetch_chapter("content/intro/missing.md")


def test_local_source_reports_malformed_manifest(tmp_path: Path) -> None:
    site = _site(tmp_path)
    (site / "content" / "index.json").write_text("[]", encoding="utf-8")
    with pytest.raises(ManifestError):
        LocalContentSource(site).fetch_manifest()


def test_http_source_fetches_relative_urls(monkeypatch: pytest.MonkeyPatch) -> None:
    source = HttpContentSource("https://books.example/site/")
    requested: list[str] = []

    def fake_get(url: str, timeout: float) -> FakeResponse:
        requested.append(url)
        if url.endswith("index.json"):
            return FakeResponse(json.dumps({"Intro": [{"title": "A", "file": "content/intro/a b.md"}]}))
        return FakeResponse("# A\n")

    monkeypatch.setattr(source._session, "get", fake_get)

    manifest = source.fetch_manifest()
    assert manifest == {"Intro": [ChapterEntry("A", "content/intro/a b.md")]}
    assert source.fetch_chapter("content/intro/a b.md") == "# A\n"
    assert requested == [
        "https://books.example/site/content/index.json",
        "https://books.example/site/content/intro/a%20b.md",
    ]


def test_http_source_wraps_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    source = HttpContentSource("https://books.example")

    monkeypatch.setattr(source._session, "get", lambda url, timeout: FakeResponse("", 404))
    with pytest.raises(ContentUnavailableError):
        source.fetch_chapter("content/a.md")

    def boom(url: str, timeout: float) -> FakeResponse:
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(source._session, "get", boom)
    with pytest.raises(ContentUnavailableError):
        source.fetch_manifest()
