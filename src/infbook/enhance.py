"""
Post-processing applied to a rendered chapter fragment after each content swap.

Enhancers are optional: each one is feature-detected through ``available()``
and may report that it is still warming up through ``ready()``. The pipeline
waits for readiness according to a bounded :class:`ReadinessPolicy` and, once
the budget is spent, renders without that enhancer.
"""

from __future__ import annotations

import logging
import posixpath
import re
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, Protocol, Sequence
from urllib.parse import urlsplit

from bs4 import BeautifulSoup, NavigableString, Tag
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

logger = logging.getLogger(__name__)

DEFAULT_READY_TIMEOUT = 5.0
DEFAULT_WARM_LANGUAGES = ("python", "javascript", "bash", "json", "html", "css")
_MEDIA_ATTRS = (
    ("img", "src"),
    ("video", "src"),
    ("video", "poster"),
    ("audio", "src"),
    ("source", "src"),
)
_SKIP_MATH_PARENTS = {"code", "pre", "script", "style", "kbd", "samp"}
_MATH_RE = re.compile(
    r"(?P<display>\$\$.+?\$\$|\\\[.+?\\\])"
    r"|(?P<inline>\\\(.+?\\\)|(?<![\\$\w])\$(?=\S)[^$\n]+?(?<=\S)\$(?![\d$]))",
    re.DOTALL,
)


@dataclass(slots=True)
class ReadinessPolicy:
    """Bounded wait for an optional collaborator to become usable."""

    timeout: float = DEFAULT_READY_TIMEOUT
    interval: float = 0.05
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def wait(self, probe: Callable[[], bool]) -> bool:
        deadline = self.clock() + max(self.timeout, 0.0)
        while True:
            if probe():
                return True
            remaining = deadline - self.clock()
            if remaining <= 0:
                return False
            self.sleep(min(self.interval, remaining))


class Enhancer(Protocol):
    name: str

    def available(self) -> bool: ...

    def ready(self) -> bool: ...

    def apply(self, soup: BeautifulSoup, chapter_file: str) -> None: ...


def _is_relative_reference(value: str) -> bool:
    if not value or value.startswith(("#", "/", "data:")):
        return False
    parts = urlsplit(value)
    return not parts.scheme and not parts.netloc


def resolve_media_path(chapter_file: str, reference: str) -> str:
    if not _is_relative_reference(reference):
        return reference
    base_dir = posixpath.dirname(chapter_file.replace("\\", "/"))
    return posixpath.normpath(posixpath.join(base_dir, reference))


class MediaPathResolver:
    name = "media"

    def available(self) -> bool:
        return True

    def ready(self) -> bool:
        return True

    def apply(self, soup: BeautifulSoup, chapter_file: str) -> None:
        for tag_name, attr in _MEDIA_ATTRS:
            for tag in soup.find_all(tag_name):
                value = tag.get(attr)
                if isinstance(value, str):
                    tag[attr] = resolve_media_path(chapter_file, value)


class PygmentsHighlighter:
    """Highlight ``pre > code.language-*`` blocks with Pygments."""

    name = "highlight"

    def __init__(
        self,
        css_class: str = "highlight",
        warm_languages: Sequence[str] = DEFAULT_WARM_LANGUAGES,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self.formatter = HtmlFormatter(cssclass=css_class)
        self._warmup: Future[None] | None = None
        if warm_languages and executor is not None:
            self._warmup = executor.submit(self._warm, tuple(warm_languages))

    @staticmethod
    def _warm(languages: tuple[str, ...]) -> None:
        for language in languages:
            try:
                get_lexer_by_name(language)
            except ClassNotFound:
                logger.debug("No Pygments lexer for %s", language)

    def available(self) -> bool:
        return True

    def ready(self) -> bool:
        return self._warmup is None or self._warmup.done()

    def stylesheet(self) -> str:
        return self.formatter.get_style_defs(f".{self.formatter.cssclass}")

    def apply(self, soup: BeautifulSoup, chapter_file: str) -> None:
        for code in soup.select("pre > code"):
            language = _code_language(code)
            if not language:
                continue
            try:
                lexer = get_lexer_by_name(language)
            except ClassNotFound:
                continue
            rendered = highlight(code.get_text(), lexer, self.formatter)
            fragment = BeautifulSoup(rendered, "html.parser")
            replacement = fragment.find("div", class_=self.formatter.cssclass)
            pre = code.parent
            if isinstance(pre, Tag) and replacement is not None:
                pre.replace_with(replacement)


def _code_language(code: Tag) -> str | None:
    classes = code.get("class") or []
    for class_name in classes:
        if class_name.startswith("language-"):
            return class_name[len("language-"):] or None
    return None


class MathMarker:
    """Wrap LaTeX delimiters in ``.math`` elements for the browser's MathJax."""

    name = "math"

    def available(self) -> bool:
        return True

    def ready(self) -> bool:
        return True

    def apply(self, soup: BeautifulSoup, chapter_file: str) -> None:
        for node in list(soup.find_all(string=_MATH_RE)):
            if type(node) is not NavigableString:
                continue
            if any(parent.name in _SKIP_MATH_PARENTS for parent in node.parents):
                continue
            node.replace_with(*self._split(soup, str(node)))

    @staticmethod
    def _split(soup: BeautifulSoup, text: str) -> list[NavigableString | Tag]:
        pieces: list[NavigableString | Tag] = []
        position = 0
        for match in _MATH_RE.finditer(text):
            if match.start() > position:
                pieces.append(NavigableString(text[position:match.start()]))
            display = match.group("display") is not None
            tag = soup.new_tag("div" if display else "span")
            tag["class"] = ["math", "display" if display else "inline"]
            tag.string = match.group(0)
            pieces.append(tag)
            position = match.end()
        if position < len(text):
            pieces.append(NavigableString(text[position:]))
        return pieces


class EnhancementPipeline:
    def __init__(
        self,
        enhancers: Iterable[Enhancer],
        policy: ReadinessPolicy | None = None,
    ) -> None:
        self.enhancers = list(enhancers)
        self.policy = policy or ReadinessPolicy()

    def apply(self, html: str, chapter_file: str) -> str:
        if not self.enhancers:
            return html
        soup = BeautifulSoup(html, "html.parser")
        for enhancer in self.enhancers:
            if not enhancer.available():
                logger.debug("Enhancer %s unavailable; skipping", enhancer.name)
                continue
            if not self.policy.wait(enhancer.ready):
                logger.debug(
                    "Enhancer %s not ready after %.1fs; rendering without it",
                    enhancer.name,
                    self.policy.timeout,
                )
                continue
            try:
                enhancer.apply(soup, chapter_file)
            except Exception as exc:  # pragma: no cover - defensive
                logger.warning("Enhancer %s failed on %s: %s", enhancer.name, chapter_file, exc)
        return str(soup)


def default_pipeline(
    executor: ThreadPoolExecutor | None = None,
    timeout: float = DEFAULT_READY_TIMEOUT,
) -> EnhancementPipeline:
    return EnhancementPipeline(
        [MediaPathResolver(), PygmentsHighlighter(executor=executor), MathMarker()],
        ReadinessPolicy(timeout=timeout),
    )


__all__ = [
    "DEFAULT_READY_TIMEOUT",
    "EnhancementPipeline",
    "Enhancer",
    "MathMarker",
    "MediaPathResolver",
    "PygmentsHighlighter",
    "ReadinessPolicy",
    "default_pipeline",
    "resolve_media_path",
]
