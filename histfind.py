#!/usr/bin/env uv run
# /// script
# requires-python = ">=3.10"
# dependencies = ["rich", "pygments"]
# ///
"""
histfind.py - Incremental fuzzy search over shell history, then run the pick

Usage
-----
    histfind                  # search everything
    histfind git push         # start with "git push" as the query
    histfind --print-only     # print the pick instead of running it

Controls
--------
    type / Backspace / ^U     edit the query (^U clears it)
    ↑/↓, k/j, ^K/^J, ^P/^N    move the selection (--no-vi makes j/k typeable)
    Enter                     run the selected command
    Esc / ^C                  quit without running anything

History source
--------------
--file, then $HISTFILE, then ~/.bash_history, then ~/.zsh_history. The format
(plain, bash timestamped, zsh extended) is detected unless --format or
$HISTFIND_FORMAT says otherwise.

Exit status
-----------
0 after running the pick or cancelling, 1 when the history cannot be read,
the terminal cannot be put in raw mode, or the shell cannot be started.
"""

from __future__ import annotations

import argparse
import logging
import os
import subprocess
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from histerrors import ExecutionFailure, HistfindError, SourceUnavailable
from histparse import CandidateStore, HistoryFormat, read_history_file
from histterm import TerminalSession, open_terminal
from histui import THEME, Controller, Snapshot, State, render_frame

__version__ = "0.1.0"

# ============================================================================
# CONFIGURATION & CONSTANTS
# ============================================================================

console = Console(stderr=True, theme=THEME)
logger = logging.getLogger("histfind")

DEFAULT_HISTORY_FILES = [".bash_history", ".zsh_history"]
DEFAULT_SHELL = "/bin/sh"


class Config:
    """Run configuration: command-line flags first, then the environment."""

    def __init__(self, args: argparse.Namespace, environ: dict[str, str] | None = None):
        self.args = args
        self.environ = os.environ if environ is None else environ

    @property
    def history_file(self) -> Path:
        """→ History file to read; raises SourceUnavailable when none exists"""
        if self.args.file:
            return Path(self.args.file).expanduser()
        if histfile := self.environ.get("HISTFILE"):
            return Path(histfile).expanduser()
        home = Path(self.environ.get("HOME") or Path.home())
        candidates = [home / name for name in DEFAULT_HISTORY_FILES]
        for path in candidates:
            if path.is_file():
                return path
        tried = ", ".join(str(p) for p in candidates)
        raise SourceUnavailable(f"No history file found (tried {tried})")

    @property
    def history_format(self) -> HistoryFormat:
        value = self.args.format or self.environ.get("HISTFIND_FORMAT") or HistoryFormat.AUTO.value
        try:
            return HistoryFormat(value.lower())
        except ValueError:
            logger.warning("Unknown history format %r, falling back to auto-detection", value)
            return HistoryFormat.AUTO

    @property
    def log_file(self) -> Path | None:
        value = self.args.log_file or self.environ.get("HISTFIND_LOG")
        return Path(value).expanduser() if value else None

    @property
    def shell(self) -> str:
        return self.environ.get("SHELL") or DEFAULT_SHELL

    @property
    def initial_query(self) -> str:
        return " ".join(self.args.query)

    @property
    def vi_keys(self) -> bool:
        return self.args.vi

    @property
    def print_only(self) -> bool:
        return self.args.print_only


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="histfind",
        description="Search shell history interactively and run the selected command",
    )
    ap.add_argument("query", nargs="*", help="Initial search query")
    ap.add_argument("--file", "-f", metavar="PATH", help="History file to read")
    ap.add_argument(
        "--format",
        choices=[f.value for f in HistoryFormat],
        help="History file format (default: auto-detect)",
    )
    ap.add_argument(
        "--vi",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Navigate with bare j/k (default); --no-vi types them into the query",
    )
    ap.add_argument(
        "--print-only",
        "-p",
        action="store_true",
        help="Print the selected command to stdout instead of running it",
    )
    ap.add_argument("--log-file", metavar="PATH", help="Write debug logs to PATH")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return ap


# ============================================================================
# LOGGING & OUTPUT
# ============================================================================


def setup_logging(log_file: Path | None) -> None:
    """→ Warnings to stderr via rich; everything to `log_file` when given"""
    handlers: list[logging.Handler] = [
        RichHandler(console=console, level=logging.WARNING, show_time=False, show_path=False)
    ]
    if log_file is not None:
        try:
            log_stream = log_file.open("a", encoding="utf-8")
        except OSError as e:
            _console_print(f"[warning]Cannot open log file '{log_file}': {e.strerror or e}[/warning]")
        else:
            file_console = Console(file=log_stream, width=120, no_color=True)
            handlers.append(RichHandler(console=file_console, level=logging.DEBUG, rich_tracebacks=True))
    logging.basicConfig(
        level=logging.DEBUG if len(handlers) > 1 else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )


def _console_print(string="", *args, **kwargs) -> None:
    """→ Safe console printing with fallback"""
    try:
        console.print(string, *args, **kwargs)
    except Exception:
        kwargs_clean = {k: v for k, v in kwargs.items() if k in ("sep", "end")}
        print(string, *args, file=sys.stderr, **kwargs_clean)


def emit_command(command: str) -> None:
    """→ Writes the command to stdout as the original bytes"""
    sys.stdout.flush()
    sys.stdout.buffer.write(os.fsencode(command) + b"\n")
    sys.stdout.buffer.flush()


# ============================================================================
# INTERACTIVE LOOP & EXECUTION
# ============================================================================


def run_interactive(controller: Controller, session: TerminalSession, initial_query: str = "") -> Snapshot:
    """Drive the controller until it selects or cancels.

    One render, one blocking key read and one transition per iteration. The
    session guard restores the terminal on every way out of the loop.
    """
    snapshot = controller.start(initial_query)
    with session:
        while not snapshot.done:
            width, height = session.size()
            frame = render_frame(snapshot, controller.candidates, width, height)
            session.draw(frame.lines, frame.cursor)
            key = session.read_key()
            snapshot = controller.handle(snapshot, key)
    logger.debug("Session ended in state %s", snapshot.state.value)
    return snapshot


def execute_command(command: str, shell: str = DEFAULT_SHELL) -> int:
    """Run `command` through `shell -c` and return its exit status.

    Only called once the terminal is back in its original mode.
    """
    _console_print(f"[context]$[/context] {escape(command)}", highlight=False)
    try:
        completed = subprocess.run([shell, "-c", command])
    except OSError as e:
        raise ExecutionFailure(f"Could not run command with '{shell}': {e.strerror or e}") from e
    logger.debug("Command exited with status %d", completed.returncode)
    return completed.returncode


def main(argv: list[str] | None = None) -> int:
    """→ Main: load history, run the picker, hand the pick to the shell"""
    config = Config(build_parser().parse_args(argv))
    setup_logging(config.log_file)

    try:
        history_path = config.history_file
        candidates = CandidateStore.from_bytes(read_history_file(history_path), config.history_format)
        logger.debug("Loaded %d unique commands from %s", len(candidates), history_path)
        controller = Controller(candidates, vi_keys=config.vi_keys)
        snapshot = run_interactive(controller, open_terminal(theme=THEME), config.initial_query)
    except HistfindError as e:
        _console_print(f"[error]Error: {escape(str(e))}[/error]")
        return 1

    if snapshot.state is not State.SELECTED:
        return 0

    if config.print_only:
        emit_command(snapshot.chosen)
        return 0

    try:
        execute_command(snapshot.chosen, config.shell)
    except ExecutionFailure as e:
        _console_print(f"[error]Error: {escape(str(e))}[/error]")
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
