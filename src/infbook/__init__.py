from .builder import BuildResult, ManifestBuildError, build_manifest, rebuild_index
from .manifest import ChapterEntry, ManifestError, dump_manifest, load_manifest, parse_manifest
from .navigation import Chapter, LocalFile, NavigationState, Navigator, Phase, ViewModel
from .preferences import JsonFileStorage, MemoryStorage, PreferenceSnapshot, PreferenceStore
from .sources import ContentUnavailableError, HttpContentSource, LocalContentSource

__all__ = [
    "BuildResult",
    "ManifestBuildError",
    "build_manifest",
    "rebuild_index",
    "ChapterEntry",
    "ManifestError",
    "dump_manifest",
    "load_manifest",
    "parse_manifest",
    "Chapter",
    "LocalFile",
    "NavigationState",
    "Navigator",
    "Phase",
    "ViewModel",
    "JsonFileStorage",
    "MemoryStorage",
    "PreferenceSnapshot",
    "PreferenceStore",
    "ContentUnavailableError",
    "HttpContentSource",
    "LocalContentSource",
]
