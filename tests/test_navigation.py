from __future__ import annotations

import json
import random

import pytest

from infbook.manifest import ChapterEntry
from infbook.navigation import (
    LOCAL_CATEGORY,
    MESSAGE_CHAPTER_FAILED,
    MESSAGE_EMPTY_CATEGORY,
    MESSAGE_EMPTY_LIBRARY,
    MESSAGE_MANIFEST_FAILED,
    LocalFile,
    Navigator,
    Phase,
)
from infbook.preferences import STORAGE_KEY, ChapterRef, MemoryStorage, PreferenceStore
from infbook.sources import ContentUnavailableError


class FakeSource:
    def __init__(
        self,
        manifest: dict[str, list[ChapterEntry]],
        chapters: dict[str, str] | None = None,
        *,
        fail_manifest: bool = False,
    ) -> None:
        self.manifest = manifest
        self.chapters = chapters or {}
        self.fail_manifest = fail_manifest
        self.fetched: list[str] = []

    def fetch_manifest(self) -> dict[str, list[ChapterEntry]]:
        if self.fail_manifest:
            raise ContentUnavailableError("offline")
        return {name: list(entries) for name, entries in self.manifest.items()}

    def fetch_chapter(self, file: str) -> str:
        self.fetched.append(file)
        if file not in self.chapters:
            raise ContentUnavailableError(f"missing {file}")
        return self.chapters[file]


class BrokenStorage:
    def get_item(self, key: str) -> str | None:
        raise OSError("storage unavailable")

    def set_item(self, key: str, value: str) -> None:
        raise OSError("quota exceeded")


def _library() -> FakeSource:
    return FakeSource(
        {
            "Basics": [
                ChapterEntry("Intro", "content/basics/intro.md"),
                ChapterEntry("Setup", "content/basics/setup.md"),
            ],
            "Advanced": [
                ChapterEntry("Deep Dive", "content/advanced/deep.md"),
                ChapterEntry("Broken", "content/advanced/broken.md"),
            ],
        },
        {
            "content/basics/intro.md": "# Intro\n\nWelcome aboard.",
            "content/basics/setup.md": "# Setup\n\nInstall things.",
            "content/advanced/deep.md": "# Deep Dive\n\nDetails.",
        },
    )


def _navigator(source: FakeSource, storage: MemoryStorage | None = None) -> tuple[Navigator, MemoryStorage]:
    storage = storage if storage is not None else MemoryStorage()
    return Navigator(source, PreferenceStore(storage)), storage


def _saved(storage: MemoryStorage) -> dict[str, object]:
    return json.loads(storage.items[STORAGE_KEY])


def _outline(navigator: Navigator) -> list[tuple[str, list[tuple[str, str, str]]]]:
    return [
        (name, [(chapter.title, chapter.file, chapter.origin) for chapter in chapters])
        for name, chapters in navigator.state.categories.items()
    ]


def test_bootstrap_selects_first_category_and_chapter() -> None:
    navigator, storage = _navigator(_library())
    assert navigator.bootstrap() is True

    state = navigator.state
    assert state.phase is Phase.IDLE
    assert state.current_category == "Basics"
    assert state.current_chapter == ChapterRef("Intro", "content/basics/intro.md")
    assert "Welcome aboard." in (state.content or "")
    assert _saved(storage)["currentChapter"] == {
        "title": "Intro",
        "file": "content/basics/intro.md",
    }


def test_restore_falls_back_to_first_chapter_when_saved_chapter_missing() -> None:
    source = FakeSource({"Basics": [ChapterEntry("Intro", "a.md")]}, {"a.md": "# Intro"})
    storage = MemoryStorage(
        {
            STORAGE_KEY: json.dumps(
                {"currentCategory": "Basics", "currentChapter": {"file": "missing.md"}}
            )
        }
    )
    navigator, _ = _navigator(source, storage)
    navigator.bootstrap()

    assert navigator.state.current_category == "Basics"
    assert navigator.state.current_chapter == ChapterRef("Intro", "a.md")


def test_restore_falls_back_to_first_category_when_saved_category_missing() -> None:
    storage = MemoryStorage(
        {
            STORAGE_KEY: json.dumps(
                {
                    "currentCategory": "Removed",
                    "currentChapter": {"title": "Gone", "file": "gone.md"},
                    "sidebarHidden": True,
                    "theme": "dark",
                }
            )
        }
    )
    navigator, _ = _navigator(_library(), storage)
    navigator.bootstrap()

    state = navigator.state
    assert state.current_category == "Basics"
    assert state.current_chapter is not None
    assert state.current_chapter.file == "content/basics/intro.md"
    assert state.sidebar_hidden is True
    assert state.theme == "dark"


def test_restore_adopts_saved_category_and_chapter() -> None:
    storage = MemoryStorage(
        {
            STORAGE_KEY: json.dumps(
                {
                    "currentCategory": "Advanced",
                    "currentChapter": {"title": "Old title", "file": "content/advanced/deep.md"},
                }
            )
        }
    )
    navigator, _ = _navigator(_library(), storage)
    navigator.bootstrap()

    assert navigator.state.current_category == "Advanced"
    assert navigator.state.current_chapter == ChapterRef("Deep Dive", "content/advanced/deep.md")
    assert "Details." in (navigator.state.content or "")


def test_corrupt_saved_state_is_ignored() -> None:
    storage = MemoryStorage({STORAGE_KEY: "{not json"})
    navigator, _ = _navigator(_library(), storage)
    assert navigator.bootstrap() is True
    assert navigator.state.current_category == "Basics"


def test_storage_failures_never_block_navigation() -> None:
    navigator = Navigator(_library(), PreferenceStore(BrokenStorage()))
    assert navigator.bootstrap() is True
    navigator.set_theme("dark")
    navigator.select_category("Advanced")
    assert navigator.state.current_chapter == ChapterRef("Deep Dive", "content/advanced/deep.md")


def test_manifest_failure_enters_failed_state() -> None:
    source = _library()
    source.fail_manifest = True
    navigator, _ = _navigator(source)

    assert navigator.bootstrap() is False
    assert navigator.state.phase is Phase.FAILED
    assert navigator.state.message == MESSAGE_MANIFEST_FAILED
    assert navigator.view().content is None


def test_empty_manifest_shows_getting_started_message() -> None:
    navigator, _ = _navigator(FakeSource({}))
    navigator.bootstrap()
    assert navigator.state.current_category is None
    assert navigator.state.message == MESSAGE_EMPTY_LIBRARY
    assert navigator.view().chapter_heading == "Chapters"


def test_select_category_selects_first_chapter_for_every_category() -> None:
    navigator, _ = _navigator(_library())
    navigator.bootstrap()
    for name, chapters in navigator.state.categories.items():
        navigator.select_category(name)
        assert navigator.state.current_category == name
        assert navigator.state.current_chapter == chapters[0].ref()


def test_select_category_preserve_chapter_keeps_existing_chapter() -> None:
    navigator, _ = _navigator(_library())
    navigator.bootstrap()
    navigator.select_chapter("Setup", "content/basics/setup.md")

    navigator.select_category("Basics", preserve_chapter=True)
    assert navigator.state.current_chapter == ChapterRef("Setup", "content/basics/setup.md")

    navigator.select_category("Basics")
    assert navigator.state.current_chapter == ChapterRef("Intro", "content/basics/intro.md")


def test_reselecting_category_renders_deterministically() -> None:
    navigator, _ = _navigator(_library())
    navigator.bootstrap()
    first = navigator.dispatch("category", "Advanced")
    second = navigator.dispatch("category", "Advanced")
    assert first == second
    assert [button.key for button in first.categories if button.active] == ["Advanced"]
    assert [button.key for button in first.chapters if button.active] == [
        "content/advanced/deep.md"
    ]


def test_empty_category_shows_message_and_persists() -> None:
    source = FakeSource(
        {"Empty": [], "Full": [ChapterEntry("One", "one.md")]},
        {"one.md": "# One"},
    )
    navigator, storage = _navigator(source)
    navigator.bootstrap()

    assert navigator.state.current_category == "Empty"
    assert navigator.state.current_chapter is None
    assert navigator.state.message == MESSAGE_EMPTY_CATEGORY
    assert _saved(storage)["currentCategory"] == "Empty"
    assert navigator.view().chapters == []


def test_chapter_failure_shows_error_and_keeps_navigation_usable() -> None:
    navigator, _ = _navigator(_library())
    navigator.bootstrap()
    navigator.select_category("Advanced")

    view = navigator.dispatch("chapter", "content/advanced/broken.md")
    assert view.content is None
    assert view.message == MESSAGE_CHAPTER_FAILED
    assert navigator.state.current_chapter == ChapterRef("Broken", "content/advanced/broken.md")
    assert [button.key for button in view.chapters if button.active] == [
        "content/advanced/broken.md"
    ]

    view = navigator.dispatch("chapter", "content/advanced/deep.md")
    assert view.message is None
    assert "Details." in (view.content or "")


def test_reload_retries_failed_chapter() -> None:
    source = _library()
    navigator, _ = _navigator(source)
    navigator.bootstrap()
    navigator.select_category("Advanced")
    navigator.dispatch("chapter", "content/advanced/broken.md")
    assert navigator.state.error == "chapter"

    source.chapters["content/advanced/broken.md"] = "# Broken\n\nFixed now."
    view = navigator.dispatch("reload")
    assert "Fixed now." in (view.content or "")
    assert navigator.state.error is None


def test_unknown_chapter_is_not_adopted() -> None:
    navigator, _ = _navigator(_library())
    navigator.bootstrap()

    assert navigator.select_chapter("Ghost", "content/advanced/deep.md") is False
    assert navigator.state.current_chapter == ChapterRef("Intro", "content/basics/intro.md")
    assert navigator.state.message == MESSAGE_CHAPTER_FAILED


def test_chapter_body_is_fetched_once() -> None:
    source = _library()
    navigator, _ = _navigator(source)
    navigator.bootstrap()
    navigator.dispatch("chapter", "content/basics/setup.md")
    navigator.dispatch("chapter", "content/basics/intro.md")
    navigator.dispatch("chapter", "content/basics/setup.md")

    assert source.fetched.count("content/basics/intro.md") == 1
    assert source.fetched.count("content/basics/setup.md") == 1


def test_ui_preferences_persist_and_restore() -> None:
    navigator, storage = _navigator(_library())
    navigator.bootstrap()
    navigator.dispatch("sidebar")
    navigator.dispatch("topbar", value=True)
    navigator.dispatch("theme", value="dark")

    saved = _saved(storage)
    assert saved["sidebarHidden"] is True
    assert saved["topbarHidden"] is True
    assert saved["theme"] == "dark"

    view = navigator.view()
    assert view.sidebar_toggle.label == "Show sidebar"
    assert view.sidebar_toggle.pressed is True
    assert view.theme_toggle.label == "Light mode"

    restored, _ = _navigator(_library(), storage)
    restored.bootstrap()
    assert restored.state.sidebar_hidden is True
    assert restored.state.topbar_hidden is True
    assert restored.state.theme == "dark"


def test_theme_toggle_and_validation() -> None:
    navigator, _ = _navigator(_library())
    navigator.bootstrap()
    navigator.dispatch("theme")
    assert navigator.state.theme == "dark"
    navigator.toggle_theme()
    assert navigator.state.theme == "light"
    with pytest.raises(ValueError):
        navigator.set_theme("sepia")


def test_dispatch_rejects_unknown_action() -> None:
    navigator, _ = _navigator(_library())
    navigator.bootstrap()
    with pytest.raises(ValueError):
        navigator.dispatch("explode")
    with pytest.raises(ValueError):
        navigator.dispatch("category")


def test_local_ingestion_into_empty_library() -> None:
    navigator, _ = _navigator(FakeSource({}))
    navigator.bootstrap()

    count = navigator.ingest_local_files(
        [
            LocalFile("notes/b-two.md", "# Beta\n\nSecond."),
            LocalFile("notes/a-one.md", "First."),
            LocalFile("readme.md", "Top level."),
            LocalFile("notes/image.png", "binary"),
        ]
    )

    assert count == 3
    assert _outline(navigator) == [
        (LOCAL_CATEGORY, [("Readme", "readme.md", "local")]),
        (
            "notes",
            [("A One", "notes/a-one.md", "local"), ("Beta", "notes/b-two.md", "local")],
        ),
    ]
    assert navigator.state.current_category == LOCAL_CATEGORY
    assert "Top level." in (navigator.state.content or "")


def test_local_ingestion_is_order_independent_and_deduplicated() -> None:
    files = [
        LocalFile("guide/02-install.md", "# Install"),
        LocalFile("guide/01-overview.md", "Overview text"),
        LocalFile("faq/questions.md", "# Questions"),
        LocalFile("./guide/zeta_notes.md", "Notes"),
    ]
    shuffled = list(files)
    random.Random(7).shuffle(shuffled)

    first, _ = _navigator(FakeSource({}))
    first.bootstrap()
    first.ingest_local_files(files)
    first.ingest_local_files(files)

    second, _ = _navigator(FakeSource({}))
    second.bootstrap()
    second.ingest_local_files(reversed(shuffled))

    assert _outline(first) == _outline(second)
    assert sum(len(chapters) for chapters in first.state.categories.values()) == 4


def test_local_ingestion_merges_with_remote_manifest() -> None:
    navigator, _ = _navigator(_library())
    navigator.bootstrap()
    navigator.ingest_local_files([LocalFile("Basics/extra.md", "# Appendix")])

    assert list(navigator.state.categories) == ["Advanced", "Basics"]
    titles = [chapter.title for chapter in navigator.state.categories["Basics"]]
    assert titles == ["Appendix", "Intro", "Setup"]
    assert navigator.state.current_chapter == ChapterRef("Intro", "content/basics/intro.md")


def test_reingesting_current_chapter_replaces_body() -> None:
    navigator, _ = _navigator(FakeSource({}))
    navigator.bootstrap()
    navigator.ingest_local_files([LocalFile("notes/a.md", "# A\n\nold text")])
    navigator.ingest_local_files([LocalFile("notes/a.md", "# A\n\nnew text")])

    assert len(navigator.state.categories["notes"]) == 1
    assert "new text" in (navigator.state.content or "")


def test_local_chapters_survive_manifest_reload() -> None:
    source = _library()
    navigator, _ = _navigator(source)
    navigator.bootstrap()
    navigator.ingest_local_files([LocalFile("scratch/todo.md", "# Todo")])

    navigator.bootstrap()
    assert [chapter.file for chapter in navigator.state.categories["scratch"]] == ["scratch/todo.md"]
    assert source.fetched.count("scratch/todo.md") == 0


def test_unknown_category_is_rejected_without_state_change() -> None:
    navigator, storage = _navigator(_library())
    navigator.bootstrap()
    saved_before = dict(storage.items)

    with pytest.raises(ValueError):
        navigator.dispatch("category", "Nope")

    view = navigator.view()
    assert navigator.state.current_category == "Basics"
    assert [button.key for button in view.categories if button.active] == ["Basics"]
    assert storage.items == saved_before
