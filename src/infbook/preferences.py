from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Protocol

from .manifest import write_text_atomic

logger = logging.getLogger(__name__)

STORAGE_KEY = "inf-book:state"
STATE_PATH_ENV = "INFBOOK_STATE_FILE"
THEMES = ("light", "dark")
DEFAULT_THEME = "light"


class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...


class MemoryStorage:
    def __init__(self, items: Mapping[str, str] | None = None) -> None:
        self.items: dict[str, str] = dict(items or {})

    def get_item(self, key: str) -> str | None:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.items[key] = value


class JsonFileStorage:
    """String slots kept in one JSON object on disk."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def _read(self) -> dict[str, str]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        if not isinstance(raw, dict):
            raise ValueError(f"{self.path} does not contain a JSON object")
        return {key: value for key, value in raw.items() if isinstance(value, str)}

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._read().get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            try:
                items = self._read()
            except (OSError, ValueError):
                items = {}
            items[key] = value
            write_text_atomic(self.path, json.dumps(items, ensure_ascii=False, indent=2))


def default_state_path() -> Path:
    env_path = os.environ.get(STATE_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / ".infbook" / "state.json"


@dataclass(frozen=True, slots=True)
class ChapterRef:
    title: str
    file: str

    def as_payload(self) -> dict[str, str]:
        return {"title": self.title, "file": self.file}

    @classmethod
    def from_payload(cls, payload: object) -> "ChapterRef | None":
        if not isinstance(payload, Mapping):
            return None
        file_value = payload.get("file")
        if not isinstance(file_value, str) or not file_value:
            return None
        title = payload.get("title")
        return cls(title=title if isinstance(title, str) else "", file=file_value)


@dataclass(slots=True)
class PreferenceSnapshot:
    current_category: str | None = None
    current_chapter: ChapterRef | None = None
    sidebar_hidden: bool = False
    topbar_hidden: bool = False
    theme: str = DEFAULT_THEME

    def to_payload(self) -> dict[str, object]:
        return {
            "currentCategory": self.current_category,
            "currentChapter": self.current_chapter.as_payload() if self.current_chapter else None,
            "sidebarHidden": self.sidebar_hidden,
            "topbarHidden": self.topbar_hidden,
            "theme": self.theme,
        }

    @classmethod
    def from_payload(cls, payload: object) -> "PreferenceSnapshot | None":
        if not isinstance(payload, Mapping):
            return None
        category = payload.get("currentCategory")
        sidebar_hidden = payload.get("sidebarHidden")
        topbar_hidden = payload.get("topbarHidden")
        theme = payload.get("theme")
        return cls(
            current_category=category if isinstance(category, str) and category else None,
            current_chapter=ChapterRef.from_payload(payload.get("currentChapter")),
            sidebar_hidden=sidebar_hidden if isinstance(sidebar_hidden, bool) else False,
            topbar_hidden=topbar_hidden if isinstance(topbar_hidden, bool) else False,
            theme=theme if theme in THEMES else DEFAULT_THEME,
        )


class PreferenceStore:
    """Reads and writes the preference snapshot; storage failures never propagate."""

    def __init__(self, storage: KeyValueStorage, key: str = STORAGE_KEY) -> None:
        self.storage = storage
        self.key = key

    def load(self) -> PreferenceSnapshot | None:
        try:
            raw = self.storage.get_item(self.key)
            if not raw:
                return None
            return PreferenceSnapshot.from_payload(json.loads(raw))
        except (OSError, ValueError) as exc:
            logger.warning("Saved state could not be loaded: %s", exc)
            return None

    def save(self, snapshot: PreferenceSnapshot) -> bool:
        try:
            self.storage.set_item(self.key, json.dumps(snapshot.to_payload(), ensure_ascii=False))
        except (OSError, ValueError) as exc:
            logger.warning("State could not be saved: %s", exc)
            return False
        return True


__all__ = [
    "ChapterRef",
    "DEFAULT_THEME",
    "JsonFileStorage",
    "KeyValueStorage",
    "MemoryStorage",
    "PreferenceSnapshot",
    "PreferenceStore",
    "STORAGE_KEY",
    "THEMES",
    "default_state_path",
]
