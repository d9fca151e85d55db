"""
Category/chapter navigation for the book viewer.

:class:`Navigator` owns a single :class:`NavigationState` and is the only
thing that mutates it. The browser shell never holds navigation logic of its
own: it sends every click to :meth:`Navigator.dispatch` with the identifier of
what was clicked (category name or chapter file) and redraws from the
:class:`ViewModel` it gets back.

State progression::

    UNINITIALIZED -> LOADING_MANIFEST -> IDLE <-> CHAPTER_LOADING
                                \\-> FAILED

``FAILED`` is only reached when the manifest itself cannot be loaded. A chapter
that fails to load shows an error in the content area and leaves every other
chapter reachable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Iterable

from .enhance import EnhancementPipeline
from .manifest import ManifestError
from .preferences import THEMES, ChapterRef, PreferenceSnapshot, PreferenceStore
from .rendering import ChapterRenderError, MarkdownRenderer
from .sources import ContentSource, ContentUnavailableError
from .titles import chapter_title, is_markdown_name, sort_key

logger = logging.getLogger(__name__)

MESSAGE_MANIFEST_FAILED = "Content could not be loaded."
MESSAGE_EMPTY_LIBRARY = "Add Markdown files to get started."
MESSAGE_EMPTY_CATEGORY = "No chapters in this category yet."
MESSAGE_CHAPTER_FAILED = "This chapter could not be loaded."
DEFAULT_CHAPTER_HEADING = "Chapters"
LOCAL_CATEGORY = "Local files"

ORIGIN_REMOTE = "remote"
ORIGIN_LOCAL = "local"


class Phase(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING_MANIFEST = "loading_manifest"
    IDLE = "idle"
    CHAPTER_LOADING = "chapter_loading"
    FAILED = "failed"


@dataclass(slots=True)
class Chapter:
    title: str
    file: str
    body: str | None = None
    origin: str = ORIGIN_REMOTE

    def cache_body(self, body: str) -> bool:
        """Fill the rendered-body cache once; later calls leave it untouched."""
        if self.body is not None:
            return False
        self.body = body
        return True

    def ref(self) -> ChapterRef:
        return ChapterRef(title=self.title, file=self.file)


@dataclass(frozen=True, slots=True)
class LocalFile:
    relative_path: str
    text: str


@dataclass(slots=True)
class NavigationState:
    categories: dict[str, list[Chapter]] = field(default_factory=dict)
    current_category: str | None = None
    current_chapter: ChapterRef | None = None
    sidebar_hidden: bool = False
    topbar_hidden: bool = False
    theme: str = THEMES[0]
    phase: Phase = Phase.UNINITIALIZED
    content: str | None = None
    message: str | None = None
    error: str | None = None

    def chapters(self, category: str | None = None) -> list[Chapter]:
        name = self.current_category if category is None else category
        if name is None:
            return []
        return self.categories.get(name, [])

    def find_chapter(self, file: str, category: str | None = None) -> Chapter | None:
        for chapter in self.chapters(category):
            if chapter.file == file:
                return chapter
        return None

    def snapshot(self) -> PreferenceSnapshot:
        return PreferenceSnapshot(
            current_category=self.current_category,
            current_chapter=self.current_chapter,
            sidebar_hidden=self.sidebar_hidden,
            topbar_hidden=self.topbar_hidden,
            theme=self.theme,
        )


@dataclass(frozen=True, slots=True)
class ButtonView:
    key: str
    label: str
    active: bool


@dataclass(frozen=True, slots=True)
class ToggleView:
    label: str
    pressed: bool


@dataclass(frozen=True, slots=True)
class ViewModel:
    phase: Phase
    categories: list[ButtonView]
    chapters: list[ButtonView]
    chapter_heading: str
    content: str | None
    message: str | None
    theme: str
    sidebar_hidden: bool
    topbar_hidden: bool
    sidebar_toggle: ToggleView
    topbar_toggle: ToggleView
    theme_toggle: ToggleView

    def to_payload(self) -> dict[str, object]:
        return {
            "phase": self.phase.value,
            "categories": [_button_payload(button) for button in self.categories],
            "chapters": [_button_payload(button) for button in self.chapters],
            "chapterHeading": self.chapter_heading,
            "content": self.content,
            "message": self.message,
            "theme": self.theme,
            "sidebarHidden": self.sidebar_hidden,
            "topbarHidden": self.topbar_hidden,
            "toggles": {
                "sidebar": _toggle_payload(self.sidebar_toggle),
                "topbar": _toggle_payload(self.topbar_toggle),
                "theme": _toggle_payload(self.theme_toggle),
            },
        }


def _button_payload(button: ButtonView) -> dict[str, object]:
    return {"key": button.key, "label": button.label, "active": button.active}


def _toggle_payload(toggle: ToggleView) -> dict[str, object]:
    return {"label": toggle.label, "pressed": toggle.pressed}


def _normalize_local_path(value: str) -> str:
    parts = [
        part
        for part in PurePosixPath(value.replace("\\", "/")).parts
        if part not in ("", "/", ".", "..")
    ]
    return "/".join(parts)


def _chapter_order(chapter: Chapter) -> tuple[tuple[str, str], tuple[str, str]]:
    return sort_key(chapter.title), sort_key(chapter.file)


class Navigator:
    def __init__(
        self,
        source: ContentSource,
        store: PreferenceStore,
        *,
        renderer: MarkdownRenderer | None = None,
        pipeline: EnhancementPipeline | None = None,
    ) -> None:
        self.source = source
        self.store = store
        self.renderer = renderer or MarkdownRenderer()
        self.pipeline = pipeline or EnhancementPipeline([])
        self.state = NavigationState()

    # -- startup ---------------------------------------------------------

    def bootstrap(self) -> bool:
        state = self.state
        state.phase = Phase.LOADING_MANIFEST
        try:
            manifest = self.source.fetch_manifest()
        except (ContentUnavailableError, ManifestError) as exc:
            logger.error("Manifest could not be loaded: %s", exc)
            state.phase = Phase.FAILED
            state.content = None
            state.message = MESSAGE_MANIFEST_FAILED
            state.error = "manifest"
            return False

        local_chapters = [
            (name, chapter)
            for name, chapters in state.categories.items()
            for chapter in chapters
            if chapter.origin == ORIGIN_LOCAL
        ]
        state.categories = {
            name: [Chapter(title=entry.title, file=entry.file) for entry in entries]
            for name, entries in manifest.items()
        }
        if local_chapters:
            for name, chapter in local_chapters:
                self._merge_chapter(name, chapter)
            self._sort_categories()

        self._restore(self.store.load() or PreferenceSnapshot())
        state.phase = Phase.IDLE
        state.error = None
        if state.current_category is None:
            state.content = None
            state.message = MESSAGE_EMPTY_LIBRARY
            return True
        self.select_category(
            state.current_category,
            preserve_chapter=state.current_chapter is not None,
        )
        return True

    def _restore(self, saved: PreferenceSnapshot) -> None:
        state = self.state
        state.sidebar_hidden = saved.sidebar_hidden
        state.topbar_hidden = saved.topbar_hidden
        state.theme = saved.theme
        if saved.current_category is not None and saved.current_category in state.categories:
            state.current_category = saved.current_category
            match = None
            if saved.current_chapter is not None:
                match = state.find_chapter(saved.current_chapter.file, saved.current_category)
            state.current_chapter = match.ref() if match else None
        else:
            state.current_category = next(iter(state.categories), None)
            state.current_chapter = None

    # -- navigation ------------------------------------------------------

    def select_category(self, name: str, preserve_chapter: bool = False) -> None:
        state = self.state
        if name not in state.categories:
            raise ValueError(f"Unknown category: {name!r}")
        state.current_category = name
        chapters = state.chapters(name)
        if preserve_chapter and state.current_chapter is not None:
            match = state.find_chapter(state.current_chapter.file, name)
            state.current_chapter = match.ref() if match else None
        else:
            state.current_chapter = None

        if not chapters:
            state.content = None
            state.message = MESSAGE_EMPTY_CATEGORY
            state.error = None
            self._persist()
            return

        target = state.current_chapter or chapters[0].ref()
        self.select_chapter(target.title, target.file)

    def select_chapter(self, title: str, file: str) -> bool:
        state = self.state
        chapter = state.find_chapter(file)
        if chapter is None:
            logger.warning(
                "Chapter %s is not part of category %r", file, state.current_category
            )
            self._show_chapter_error()
            self._persist()
            return False

        state.current_chapter = ChapterRef(title=title or chapter.title, file=chapter.file)
        state.phase = Phase.CHAPTER_LOADING
        try:
            body = self._chapter_body(chapter)
        except (ContentUnavailableError, ChapterRenderError) as exc:
            logger.error("Chapter %s could not be loaded: %s", file, exc)
            state.phase = Phase.IDLE
            self._show_chapter_error()
            self._persist()
            return False

        state.phase = Phase.IDLE
        state.content = body
        state.message = None
        state.error = None
        self._persist()
        return True

    def reload_chapter(self) -> bool:
        current = self.state.current_chapter
        if current is None:
            if self.state.current_category is None:
                return False
            self.select_category(self.state.current_category)
            return self.state.error is None
        return self.select_chapter(current.title, current.file)

    def _show_chapter_error(self) -> None:
        self.state.content = None
        self.state.message = MESSAGE_CHAPTER_FAILED
        self.state.error = "chapter"

    def _chapter_body(self, chapter: Chapter) -> str:
        if chapter.body is not None:
            return chapter.body
        text = self.source.fetch_chapter(chapter.file)
        body = self._render(text, chapter.file)
        chapter.cache_body(body)
        return body

    def _render(self, text: str, file: str) -> str:
        return self.pipeline.apply(self.renderer.render(text), file)

    # -- preferences -----------------------------------------------------

    def set_theme(self, theme: str) -> None:
        if theme not in THEMES:
            raise ValueError(f"Unknown theme: {theme!r}")
        self.state.theme = theme
        self._persist()

    def toggle_theme(self) -> None:
        self.set_theme("dark" if self.state.theme == "light" else "light")

    def set_sidebar_hidden(self, hidden: bool) -> None:
        self.state.sidebar_hidden = bool(hidden)
        self._persist()

    def set_topbar_hidden(self, hidden: bool) -> None:
        self.state.topbar_hidden = bool(hidden)
        self._persist()

    def _persist(self) -> None:
        self.store.save(self.state.snapshot())

    # -- local content ---------------------------------------------------

    def ingest_local_files(self, files: Iterable[LocalFile]) -> int:
        """Merge locally supplied Markdown files into the loaded categories."""
        ingested: set[str] = set()
        for local in files:
            relative = _normalize_local_path(local.relative_path)
            if not relative or not is_markdown_name(relative):
                continue
            parts = relative.split("/")
            category = parts[0] if len(parts) > 1 else LOCAL_CATEGORY
            try:
                body = self._render(local.text, relative)
            except ChapterRenderError as exc:
                logger.warning("Skipping %s: %s", relative, exc)
                continue
            chapter = Chapter(
                title=chapter_title(local.text, parts[-1]),
                file=relative,
                body=body,
                origin=ORIGIN_LOCAL,
            )
            self._merge_chapter(category, chapter)
            ingested.add(relative)
        if not ingested:
            return 0
        self._sort_categories()

        state = self.state
        if state.phase in (Phase.UNINITIALIZED, Phase.FAILED):
            state.phase = Phase.IDLE
            state.error = None
        if state.current_category is None or state.current_category not in state.categories:
            self.select_category(next(iter(state.categories)))
        elif state.current_chapter is not None and state.current_chapter.file in ingested:
            self.select_category(state.current_category, preserve_chapter=True)
        elif state.current_chapter is None:
            self.select_category(state.current_category)
        else:
            self._persist()
        return len(ingested)

    def _merge_chapter(self, category: str, chapter: Chapter) -> None:
        for name, chapters in self.state.categories.items():
            self.state.categories[name] = [
                existing for existing in chapters if existing.file != chapter.file
            ]
        self.state.categories.setdefault(category, []).append(chapter)

    def _sort_categories(self) -> None:
        self.state.categories = {
            name: sorted(chapters, key=_chapter_order)
            for name, chapters in sorted(
                self.state.categories.items(), key=lambda item: sort_key(item[0])
            )
        }

    # -- dispatch / render -----------------------------------------------

    def dispatch(
        self,
        action: str,
        key: str | None = None,
        value: object | None = None,
    ) -> ViewModel:
        if action == "category":
            if not isinstance(key, str) or not key:
                raise ValueError("A category key is required.")
            self.select_category(key)
        elif action == "chapter":
            if not isinstance(key, str) or not key:
                raise ValueError("A chapter key is required.")
            chapter = self.state.find_chapter(key)
            self.select_chapter(chapter.title if chapter else "", key)
        elif action == "theme":
            theme = value if value is not None else key
            if theme is None:
                self.toggle_theme()
            elif isinstance(theme, str):
                self.set_theme(theme)
            else:
                raise ValueError(f"Unknown theme: {theme!r}")
        elif action == "sidebar":
            self.set_sidebar_hidden(
                not self.state.sidebar_hidden if value is None else bool(value)
            )
        elif action == "topbar":
            self.set_topbar_hidden(
                not self.state.topbar_hidden if value is None else bool(value)
            )
        elif action == "reload":
            self.reload_chapter()
        else:
            raise ValueError(f"Unknown action: {action!r}")
        return self.view()

    def view(self) -> ViewModel:
        state = self.state
        active_file = state.current_chapter.file if state.current_chapter else None
        categories = [
            ButtonView(key=name, label=name, active=name == state.current_category)
            for name in state.categories
        ]
        chapters = [
            ButtonView(key=chapter.file, label=chapter.title, active=chapter.file == active_file)
            for chapter in state.chapters()
        ]
        return ViewModel(
            phase=state.phase,
            categories=categories,
            chapters=chapters,
            chapter_heading=state.current_category or DEFAULT_CHAPTER_HEADING,
            content=state.content,
            message=state.message,
            theme=state.theme,
            sidebar_hidden=state.sidebar_hidden,
            topbar_hidden=state.topbar_hidden,
            sidebar_toggle=ToggleView(
                label="Show sidebar" if state.sidebar_hidden else "Hide sidebar",
                pressed=state.sidebar_hidden,
            ),
            topbar_toggle=ToggleView(
                label="Show top bar" if state.topbar_hidden else "Hide top bar",
                pressed=state.topbar_hidden,
            ),
            theme_toggle=ToggleView(
                label="Light mode" if state.theme == "dark" else "Dark mode",
                pressed=state.theme == "dark",
            ),
        )


__all__ = [
    "ButtonView",
    "Chapter",
    "LOCAL_CATEGORY",
    "LocalFile",
    "NavigationState",
    "Navigator",
    "Phase",
    "ToggleView",
    "ViewModel",
]
