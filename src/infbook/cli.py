from __future__ import annotations

import argparse
import sys
import threading
from importlib import metadata
from pathlib import Path
from typing import Callable

import tomllib
import uvicorn
from rich.console import Console
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers.polling import PollingObserver

from .builder import BuildResult, ManifestBuildError, rebuild_index
from .logging_utils import build_uvicorn_log_config, configure_cli_logging
from .manifest import CONTENT_DIRNAME
from .titles import is_markdown_name
from .web import ViewerConfig, create_app

console = Console()
err_console = Console(stderr=True)


def _project_version() -> str:
    try:
        return metadata.version("infbook")
    except metadata.PackageNotFoundError:
        pass
    # Running from a source checkout: src/infbook/cli.py -> pyproject.toml
    pyproject = Path(__file__).resolve().parents[2] / "pyproject.toml"
    try:
        project = tomllib.loads(pyproject.read_text(encoding="utf-8")).get("project", {})
    except (OSError, tomllib.TOMLDecodeError):
        return "0+unknown"
    return str(project.get("version", "0+unknown"))


__version__ = _project_version()


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"infbook {__version__}",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Markdown book viewer. Use `infbook index` to rebuild content/index.json "
        "and `infbook web` to browse it.",
    )
    _add_version_flag(ap)
    return ap


def build_index_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Regenerate index.json from the Markdown files in a content directory.",
    )
    _add_version_flag(ap)
    ap.add_argument(
        "content_dir",
        nargs="?",
        default=CONTENT_DIRNAME,
        help="Content directory with one subdirectory per category (default: ./content).",
    )
    ap.add_argument("--debug", action="store_true", help="Log every scanned directory.")
    return ap


def build_web_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Serve a content directory as a browser-based book viewer.",
    )
    _add_version_flag(ap)
    ap.add_argument(
        "root",
        nargs="?",
        default=".",
        help="Site root containing content/index.json (default: current directory).",
    )
    ap.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host interface for the web server (default: 127.0.0.1).",
    )
    ap.add_argument(
        "--port",
        type=int,
        default=2047,
        help="Port for the web server (default: 2047).",
    )
    ap.add_argument(
        "--state-file",
        help="JSON file holding viewer preferences (default: $INFBOOK_STATE_FILE or ~/.infbook/state.json).",
    )
    ap.add_argument(
        "--title",
        default="infbook",
        help="Title shown in the browser tab and top bar.",
    )
    ap.add_argument(
        "--enhance-timeout",
        type=float,
        default=5.0,
        help="Seconds to wait for the syntax highlighter before rendering plain code (default: 5).",
    )
    ap.add_argument(
        "--watch",
        action="store_true",
        help="Rebuild content/index.json and reload the viewer when Markdown files change.",
    )
    ap.add_argument("--debug", action="store_true", help="Enable debug logging.")
    return ap


def _print_build_result(result: BuildResult) -> None:
    status = "updated" if result.changed else "unchanged"
    console.print(
        f"[bold]{result.index_path}[/bold] {status}: "
        f"{result.section_count} section(s), {result.chapter_count} chapter(s)"
    )


def _run_index(content_dir: Path) -> int:
    try:
        result = rebuild_index(content_dir)
    except ManifestBuildError as exc:
        err_console.print(f"[red]error:[/red] {exc}")
        return 1
    _print_build_result(result)
    return 0


def index_main(argv: list[str] | None = None) -> int:
    """Entry point for ``infbook-index``: rebuild ./content/index.json."""
    if argv is None:
        argv = sys.argv[1:]
    if argv:
        err_console.print("infbook-index takes no arguments; it always scans ./content.")
        return 2
    configure_cli_logging()
    return _run_index(Path.cwd() / CONTENT_DIRNAME)


class _ContentEventHandler(FileSystemEventHandler):
    """Call ``on_change`` whenever a Markdown file or category directory changes."""

    def __init__(self, on_change: Callable[[], None]) -> None:
        self.on_change = on_change
        self._lock = threading.Lock()

    def _relevant(self, event: FileSystemEvent) -> bool:
        paths = [event.src_path, getattr(event, "dest_path", "") or ""]
        if event.is_directory:
            return event.event_type in {"created", "deleted", "moved"}
        return any(is_markdown_name(str(path)) for path in paths if path)

    def on_any_event(self, event: FileSystemEvent) -> None:  # type: ignore[override]
        if event.event_type in {"opened", "closed", "closed_no_write"}:
            return
        if not self._relevant(event):
            return
        with self._lock:
            self.on_change()


def _start_content_watch(content_dir: Path, on_change: Callable[[], None]) -> PollingObserver:
    observer = PollingObserver()
    observer.schedule(_ContentEventHandler(on_change), str(content_dir), recursive=True)
    observer.start()
    return observer


def _run_web(args: argparse.Namespace) -> int:
    root = Path(args.root).expanduser().resolve()
    if not root.is_dir():
        raise SystemExit(f"Site root not found: {root}")
    state_path = Path(args.state_file).expanduser().resolve() if args.state_file else None
    config = ViewerConfig(
        root=root,
        state_path=state_path,
        enhancement_timeout=args.enhance_timeout,
        title=args.title,
    )
    app = create_app(config)

    observer: PollingObserver | None = None
    content_dir = root / CONTENT_DIRNAME
    if args.watch:
        if not content_dir.is_dir():
            raise SystemExit(f"Content directory not found: {content_dir}")

        def _rebuild() -> None:
            try:
                result = rebuild_index(content_dir)
            except ManifestBuildError as exc:
                err_console.print(f"[red]index rebuild failed:[/red] {exc}")
                return
            if result.changed:
                _print_build_result(result)
            app.state.reload()

        _rebuild()
        observer = _start_content_watch(content_dir, _rebuild)

    console.print(f"Serving infbook from {root}")
    console.print(f"Web URL: {_browse_url(args.host, args.port)}")
    console.print("Press Ctrl+C to stop.\n")
    try:
        uvicorn.run(
            app,
            host=args.host,
            port=args.port,
            log_config=build_uvicorn_log_config(debug=args.debug),
        )
    finally:
        if observer is not None:
            observer.stop()
            observer.join()
    return 0


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] == "index":
        index_args = build_index_parser().parse_args(argv[1:])
        configure_cli_logging(debug=index_args.debug)
        return _run_index(Path(index_args.content_dir).expanduser())
    if argv and argv[0] == "web":
        web_args = build_web_parser().parse_args(argv[1:])
        return _run_web(web_args)

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    if argv[0].startswith("-"):
        parser.parse_args(argv)
        return 0
    parser.error(f"unknown command {argv[0]!r} (choose from 'index', 'web')")
    return 2


def _browse_url(host: str, port: int) -> str:
    """URL to print for the user; wildcard binds are reachable on loopback."""
    shown = "127.0.0.1" if host in {"", "0.0.0.0", "::"} else host
    if ":" in shown:
        shown = f"[{shown}]"
    return f"http://{shown}:{port}/"


if __name__ == "__main__":
    raise SystemExit(main())
