from __future__ import annotations

import html
import re
import secrets

import markdown

MARKDOWN_EXTENSIONS = ["fenced_code", "tables", "sane_lists", "toc"]

# Display math first so "$$" is never read as two inline delimiters.
_MATH_PATTERNS = (
    re.compile(r"\$\$(.+?)\$\$", re.DOTALL),
    re.compile(r"\\\[(.+?)\\\]", re.DOTALL),
    re.compile(r"\\\((.+?)\\\)", re.DOTALL),
    re.compile(r"(?<![\\$\w])\$(?=\S)([^$\n]+?)(?<=\S)\$(?![\d$])"),
)


class ChapterRenderError(RuntimeError):
    """Raised when chapter Markdown cannot be converted to HTML."""


class _MathShelf:
    """Keeps LaTeX out of Markdown's reach and puts it back afterwards."""

    def __init__(self) -> None:
        self.items: list[str] = []
        self._new_tag()

    def _new_tag(self) -> None:
        self.tag = f"INFBOOKMATH{secrets.token_hex(8)}"
        self._placeholder_re = re.compile(rf"{self.tag}N(\d+)X")

    def protect(self, text: str) -> str:
        # The tag must not already occur in the chapter, or restore would rewrite it.
        while self.tag in text:
            self._new_tag()

        def _stash(match: re.Match[str]) -> str:
            self.items.append(match.group(0))
            return f"{self.tag}N{len(self.items) - 1}X"

        for pattern in _MATH_PATTERNS:
            text = pattern.sub(_stash, text)
        return text

    def restore(self, rendered: str) -> str:
        if not self.items:
            return rendered

        def _unstash(match: re.Match[str]) -> str:
            index = int(match.group(1))
            if index >= len(self.items):
                return match.group(0)
            return html.escape(self.items[index], quote=False)

        return self._placeholder_re.sub(_unstash, rendered)


class MarkdownRenderer:
    def __init__(self, extensions: list[str] | None = None) -> None:
        self._md = markdown.Markdown(extensions=extensions or MARKDOWN_EXTENSIONS)

    def render(self, text: str) -> str:
        shelf = _MathShelf()
        protected = shelf.protect(text)
        self._md.reset()
        try:
            rendered = self._md.convert(protected)
        except Exception as exc:
            raise ChapterRenderError(f"Markdown conversion failed: {exc}") from exc
        return shelf.restore(rendered)


__all__ = ["ChapterRenderError", "MARKDOWN_EXTENSIONS", "MarkdownRenderer"]
