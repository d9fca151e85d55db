from __future__ import annotations

import html
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator
from urllib.parse import quote

from fastapi import Body, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse

from .enhance import DEFAULT_READY_TIMEOUT, PygmentsHighlighter, default_pipeline
from .manifest import CONTENT_DIRNAME, DEFAULT_MANIFEST_PATH
from .navigation import LocalFile, Navigator
from .preferences import STORAGE_KEY, JsonFileStorage, PreferenceStore, default_state_path
from .sources import ContentUnavailableError, LocalContentSource
from .titles import is_markdown_name

logger = logging.getLogger(__name__)

# Open book glyph; drawn once, served inline as the tab icon.
_FAVICON_SVG = (
    '<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 32 32">'
    '<path d="M3 7c4-2 9-2 13 1v18c-4-3-9-3-13-1z" fill="#2563eb"/>'
    '<path d="M29 7c-4-2-9-2-13 1v18c4-3 9-3 13-1z" fill="#60a5fa"/>'
    "</svg>"
)
FAVICON_URL = "data:image/svg+xml," + quote(_FAVICON_SVG)


@dataclass(slots=True)
class ViewerConfig:
    root: Path
    state_path: Path | None = None
    storage_key: str = STORAGE_KEY
    manifest_path: str = DEFAULT_MANIFEST_PATH
    enhancement_timeout: float = DEFAULT_READY_TIMEOUT
    title: str = "infbook"


INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>__INFBOOK_TITLE__</title>
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <link rel="icon" type="image/svg+xml" href="__INFBOOK_FAVICON__">
  <style>
    :root {
      font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", sans-serif;
      --bg: #f8fafc;
      --panel: #ffffff;
      --outline: #e2e8f0;
      --text: #0f172a;
      --muted: #64748b;
      --accent: #2563eb;
      --accent-soft: rgba(37,99,235,0.12);
    }
    body.theme-dark {
      --bg: #05060b;
      --panel: #111423;
      --outline: #1f243d;
      --text: #f3f4f6;
      --muted: #a3a8c5;
      --accent: #38bdf8;
      --accent-soft: rgba(56,189,248,0.15);
    }
    * { box-sizing: border-box; }
    body {
      margin: 0;
      background: var(--bg);
      color: var(--text);
      min-height: 100vh;
    }
    .hidden { display: none !important; }
    header.topbar {
      display: flex;
      align-items: center;
      gap: 0.75rem;
      padding: 0.6rem 1rem;
      border-bottom: 1px solid var(--outline);
      background: var(--panel);
    }
    header.topbar h1 {
      margin: 0 auto 0 0;
      font-size: 1.1rem;
    }
    .category-bar {
      display: flex;
      flex-wrap: wrap;
      gap: 0.4rem;
      padding: 0.6rem 1rem;
      border-bottom: 1px solid var(--outline);
    }
    button {
      font: inherit;
      color: inherit;
      background: transparent;
      border: 1px solid var(--outline);
      border-radius: 999px;
      padding: 0.25rem 0.9rem;
      cursor: pointer;
    }
    button.active {
      background: var(--accent-soft);
      border-color: var(--accent);
      color: var(--accent);
      font-weight: 600;
    }
    .layout {
      display: grid;
      grid-template-columns: 280px 1fr;
      min-height: calc(100vh - 110px);
    }
    .layout.sidebar-hidden { grid-template-columns: 1fr; }
    aside {
      border-right: 1px solid var(--outline);
      padding: 1rem;
      display: flex;
      flex-direction: column;
      gap: 0.4rem;
    }
    aside h2 {
      margin: 0 0 0.4rem;
      font-size: 0.95rem;
      color: var(--muted);
    }
    aside button {
      text-align: left;
      border-radius: 10px;
    }
    main {
      padding: 1.5rem 2rem;
      max-width: 900px;
      line-height: 1.65;
    }
    main img { max-width: 100%; }
    .empty-state {
      color: var(--muted);
      padding: 3rem 0;
      text-align: center;
    }
    .math.display { overflow-x: auto; }
    __INFBOOK_HIGHLIGHT_CSS__
  </style>
  <script>
    window.MathJax = {
      tex: { inlineMath: [['$', '$'], ['\\\\(', '\\\\)']] },
      startup: { typeset: false },
    };
  </script>
  <script async src="https://cdn.jsdelivr.net/npm/mathjax@3/es5/tex-chtml.js"></script>
</head>
<body>
  <header class="topbar" data-topbar>
    <h1>__INFBOOK_TITLE__</h1>
    <input type="file" data-folder-input webkitdirectory multiple hidden>
    <button type="button" data-folder-button>Open folder</button>
    <button type="button" data-toggle="sidebar" aria-pressed="false">Hide sidebar</button>
    <button type="button" data-toggle="theme" aria-pressed="false">Dark mode</button>
    <button type="button" data-toggle="topbar" aria-pressed="false">Hide top bar</button>
  </header>
  <button type="button" class="hidden" data-topbar-restore>Show top bar</button>
  <nav class="category-bar" data-category-bar></nav>
  <div class="layout" data-layout>
    <aside data-sidebar>
      <h2 data-chapter-heading>Chapters</h2>
      <div data-chapter-list></div>
    </aside>
    <main data-content></main>
  </div>
  <script>
    const elements = {
      topbar: document.querySelector('[data-topbar]'),
      topbarRestore: document.querySelector('[data-topbar-restore]'),
      categoryBar: document.querySelector('[data-category-bar]'),
      layout: document.querySelector('[data-layout]'),
      sidebar: document.querySelector('[data-sidebar]'),
      chapterHeading: document.querySelector('[data-chapter-heading]'),
      chapterList: document.querySelector('[data-chapter-list]'),
      content: document.querySelector('[data-content]'),
      folderInput: document.querySelector('[data-folder-input]'),
      folderButton: document.querySelector('[data-folder-button]'),
    };
    let renderedContent = null;

    function renderButtons(container, buttons, action) {
      container.innerHTML = '';
      buttons.forEach((entry) => {
        const button = document.createElement('button');
        button.type = 'button';
        button.textContent = entry.label;
        button.dataset.action = action;
        button.dataset.key = entry.key;
        if (entry.active) button.classList.add('active');
        container.appendChild(button);
      });
    }

    function typesetMath(node) {
      if (window.MathJax && typeof window.MathJax.typesetPromise === 'function') {
        window.MathJax.typesetPromise([node]).catch((error) => console.warn(error));
      }
    }

    function renderContent(view) {
      const key = view.content !== null ? view.content : `message:${view.message || ''}`;
      if (key === renderedContent) return;
      renderedContent = key;
      elements.content.innerHTML = '';
      if (view.content !== null) {
        const article = document.createElement('article');
        article.innerHTML = view.content;
        elements.content.appendChild(article);
        typesetMath(article);
      } else if (view.message) {
        const empty = document.createElement('div');
        empty.className = 'empty-state';
        empty.textContent = view.message;
        elements.content.appendChild(empty);
      }
    }

    function renderToggle(name, toggle) {
      document.querySelectorAll(`[data-toggle="${name}"]`).forEach((button) => {
        button.textContent = toggle.label;
        button.setAttribute('aria-pressed', toggle.pressed ? 'true' : 'false');
      });
    }

    function render(view) {
      document.body.classList.toggle('theme-dark', view.theme === 'dark');
      elements.topbar.classList.toggle('hidden', view.topbarHidden);
      elements.topbarRestore.classList.toggle('hidden', !view.topbarHidden);
      elements.sidebar.classList.toggle('hidden', view.sidebarHidden);
      elements.layout.classList.toggle('sidebar-hidden', view.sidebarHidden);
      renderButtons(elements.categoryBar, view.categories, 'category');
      renderButtons(elements.chapterList, view.chapters, 'chapter');
      elements.chapterHeading.textContent = view.chapterHeading;
      renderToggle('sidebar', view.toggles.sidebar);
      renderToggle('topbar', view.toggles.topbar);
      renderToggle('theme', view.toggles.theme);
      renderContent(view);
    }

    async function request(url, options) {
      try {
        const response = await fetch(url, options);
        if (!response.ok) {
          throw new Error(`${url} failed with status ${response.status}`);
        }
        return await response.json();
      } catch (error) {
        console.error(error);
        return null;
      }
    }

    async function dispatch(action, key = null, value = null) {
      const view = await request('/api/dispatch', {
        method: 'POST',
        headers: { 'Content-Type': 'application/json' },
        body: JSON.stringify({ action, key, value }),
      });
      if (view) render(view);
    }

    document.addEventListener('click', (event) => {
      const target = event.target.closest('button');
      if (!target) return;
      if (target.dataset.action) {
        dispatch(target.dataset.action, target.dataset.key);
      } else if (target.dataset.toggle) {
        dispatch(target.dataset.toggle);
      } else if (target.hasAttribute('data-topbar-restore')) {
        dispatch('topbar', null, false);
      } else if (target.hasAttribute('data-folder-button')) {
        elements.folderInput.click();
      }
    });

    elements.folderInput.addEventListener('change', async () => {
      const files = Array.from(elements.folderInput.files || []);
      if (!files.length) return;
      const form = new FormData();
      files.forEach((file) => {
        form.append('files', file);
        form.append('paths', file.webkitRelativePath || file.name);
      });
      const payload = await request('/api/local-files', { method: 'POST', body: form });
      elements.folderInput.value = '';
      if (payload) render(payload.view);
    });

    document.addEventListener('DOMContentLoaded', async () => {
      const view = await request('/api/view');
      if (view) {
        render(view);
      } else {
        elements.content.innerHTML = '<div class="empty-state">Content could not be loaded.</div>';
      }
    });
  </script>
</body>
</html>
"""


def _render_index(config: ViewerConfig, highlight_css: str) -> str:
    return (
        INDEX_HTML.replace("__INFBOOK_TITLE__", html.escape(config.title))
        .replace("__INFBOOK_FAVICON__", FAVICON_URL)
        .replace("__INFBOOK_HIGHLIGHT_CSS__", highlight_css)
    )


def create_app(config: ViewerConfig) -> FastAPI:
    root = config.root.expanduser().resolve()
    if not root.exists() or not root.is_dir():
        raise FileNotFoundError(f"Site root not found: {root}")

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="infbook-enhance")

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            executor.shutdown(wait=False)

    app = FastAPI(title="infbook", lifespan=lifespan)
    app.state.config = config
    app.state.root = root
    app.state.executor = executor
    pipeline = default_pipeline(executor, timeout=config.enhancement_timeout)
    source = LocalContentSource(root, config.manifest_path)
    store = PreferenceStore(
        JsonFileStorage(config.state_path or default_state_path()),
        key=config.storage_key,
    )
    navigator = Navigator(source, store, pipeline=pipeline)
    navigator_lock = threading.Lock()
    app.state.navigator = navigator
    app.state.navigator_lock = navigator_lock

    highlight_css = "\n".join(
        enhancer.stylesheet()
        for enhancer in pipeline.enhancers
        if isinstance(enhancer, PygmentsHighlighter)
    )
    index_html = _render_index(config, highlight_css)

    def _reload() -> dict[str, object]:
        with navigator_lock:
            navigator.bootstrap()
            return navigator.view().to_payload()

    app.state.reload = _reload
    _reload()

    def _ingest(files: list[LocalFile]) -> dict[str, object]:
        with navigator_lock:
            count = navigator.ingest_local_files(files)
            return {"ingested": count, "view": navigator.view().to_payload()}

    @app.get("/", response_class=HTMLResponse)
    def index() -> HTMLResponse:
        return HTMLResponse(index_html)

    @app.get("/api/view")
    def api_view() -> JSONResponse:
        with navigator_lock:
            return JSONResponse(navigator.view().to_payload())

    @app.post("/api/dispatch")
    def api_dispatch(payload: dict[str, object] = Body(...)) -> JSONResponse:
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload.")
        action = payload.get("action")
        if not isinstance(action, str) or not action.strip():
            raise HTTPException(status_code=400, detail="action is required.")
        key = payload.get("key")
        if key is not None and not isinstance(key, str):
            raise HTTPException(status_code=400, detail="key must be a string.")
        with navigator_lock:
            try:
                view = navigator.dispatch(action.strip(), key, payload.get("value"))
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            return JSONResponse(view.to_payload())

    @app.post("/api/reload-manifest")
    def api_reload_manifest() -> JSONResponse:
        return JSONResponse(_reload())

    @app.post("/api/local-files")
    async def api_local_files(
        files: list[UploadFile] = File(...),
        paths: list[str] = Form(default=[]),
    ) -> JSONResponse:
        local_files: list[LocalFile] = []
        skipped: list[str] = []
        try:
            for index, upload in enumerate(files):
                relative = paths[index] if index < len(paths) else (upload.filename or "")
                # Folder pickers send every file; only Markdown is read.
                if not is_markdown_name(relative):
                    continue
                raw = await upload.read()
                try:
                    text = raw.decode("utf-8")
                except UnicodeDecodeError:
                    logger.warning("Skipping %s: not UTF-8 text", relative)
                    skipped.append(relative)
                    continue
                local_files.append(LocalFile(relative_path=relative, text=text))
        finally:
            for upload in files:
                await upload.close()
        payload = await run_in_threadpool(_ingest, local_files)
        payload["skipped"] = skipped
        return JSONResponse(payload)

    @app.get(f"/{CONTENT_DIRNAME}/{{path:path}}")
    def content_file(path: str) -> FileResponse:
        try:
            target = source.resolve(f"{CONTENT_DIRNAME}/{path}")
        except ContentUnavailableError as exc:
            raise HTTPException(status_code=404, detail="File not found") from exc
        if not target.is_file():
            raise HTTPException(status_code=404, detail="File not found")
        return FileResponse(target)

    return app


__all__ = ["INDEX_HTML", "ViewerConfig", "create_app"]
