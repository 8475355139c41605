"""
histterm.py - Raw terminal session: mode lifecycle, key decoding, drawing

`TerminalSession` is a context manager. Entering it saves the termios state,
switches the tty to raw mode and onto the alternate screen; leaving it puts
everything back. `release()` is idempotent, so it is safe for the normal exit,
an exception unwinding through `__exit__`, and a SIGTERM/SIGHUP (turned into
SystemExit) to all reach it: the terminal is restored exactly once.

Keys
    printable        -> CHAR
    Backspace/^H     -> BACKSPACE
    Enter (CR)       -> ENTER
    Up, ^K, ^P       -> UP
    Down, ^J, ^N     -> DOWN
    ^U               -> CLEAR
    Esc              -> ESCAPE
    ^C, EOF          -> INTERRUPT
"""

from __future__ import annotations

import io
import logging
import os
import select
import shutil
import signal
import sys
import termios
import tty
from dataclasses import dataclass
from enum import Enum
from typing import Callable, TextIO

from rich.console import Console
from rich.text import Text
from rich.theme import Theme

from histerrors import TerminalAcquisitionFailure

logger = logging.getLogger(__name__)

# ============================================================================
# CONSTANTS
# ============================================================================

RESET = "\x1b[0m"
CLEAR_LINE = "\x1b[2K"
CLEAR_SCREEN = "\x1b[2J"
HIDE_CURSOR = "\x1b[?25l"
SHOW_CURSOR = "\x1b[?25h"
ALT_SCREEN_ON = "\x1b[?1049h"
ALT_SCREEN_OFF = "\x1b[?1049l"

# Seconds to wait after ESC before deciding it was a lone Escape key
ESCAPE_TIMEOUT = 0.025
# Seconds between resize checks while waiting for input
POLL_INTERVAL = 0.1

FALLBACK_SIZE = (80, 24)
RELEASE_SIGNALS = (signal.SIGTERM, signal.SIGHUP)


def move_to(row: int, col: int = 1) -> str:
    return f"\x1b[{max(1, row)};{max(1, col)}H"


# ============================================================================
# KEY DECODING
# ============================================================================


class KeyKind(Enum):
    CHAR = "char"
    BACKSPACE = "backspace"
    ENTER = "enter"
    UP = "up"
    DOWN = "down"
    CLEAR = "clear"
    ESCAPE = "escape"
    INTERRUPT = "interrupt"
    RESIZE = "resize"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Key:
    kind: KeyKind
    char: str = ""


CONTROL_KEYS = {
    b"\r": KeyKind.ENTER,
    b"\n": KeyKind.DOWN,  # ^J; raw mode delivers Enter as CR
    b"\x0b": KeyKind.UP,  # ^K
    b"\x0e": KeyKind.DOWN,  # ^N
    b"\x10": KeyKind.UP,  # ^P
    b"\x7f": KeyKind.BACKSPACE,
    b"\x08": KeyKind.BACKSPACE,
    b"\x15": KeyKind.CLEAR,  # ^U
    b"\x03": KeyKind.INTERRUPT,  # ^C
    b"\x1b": KeyKind.ESCAPE,
}

ESCAPE_SEQUENCES = {
    b"\x1b[A": KeyKind.UP,
    b"\x1b[B": KeyKind.DOWN,
    b"\x1bOA": KeyKind.UP,
    b"\x1bOB": KeyKind.DOWN,
}


def decode_key(data: bytes) -> Key:
    """Map the bytes of one key press to a Key."""
    if not data:
        return Key(KeyKind.INTERRUPT)
    if kind := CONTROL_KEYS.get(data):
        return Key(kind)
    if kind := ESCAPE_SEQUENCES.get(data):
        return Key(kind)
    if data[0] == 0x1B:
        return Key(KeyKind.UNKNOWN)
    try:
        char = data.decode("utf-8")
    except UnicodeDecodeError:
        return Key(KeyKind.UNKNOWN)
    if len(char) == 1 and char.isprintable():
        return Key(KeyKind.CHAR, char)
    return Key(KeyKind.UNKNOWN)


def utf8_length(lead: int) -> int:
    """→ Number of bytes in the UTF-8 sequence starting with `lead`"""
    if lead >= 0xF0:
        return 4
    if lead >= 0xE0:
        return 3
    if lead >= 0xC0:
        return 2
    return 1


# ============================================================================
# SESSION
# ============================================================================


class TerminalSession:
    """Exclusive raw-mode access to a terminal for the life of a `with` block."""

    def __init__(
        self,
        fd: int,
        out: TextIO,
        size: Callable[[], tuple[int, int]] | None = None,
        theme: Theme | None = None,
        owned_file: io.IOBase | None = None,
    ):
        self.fd = fd
        self.out = out
        self.theme = theme
        self._size_fn = size
        self._owned_file = owned_file
        self._saved_attrs: list | None = None
        self._saved_handlers: dict[int, object] = {}
        self._active = False
        self._last_size: tuple[int, int] | None = None
        self._renderer: Console | None = None

    @property
    def active(self) -> bool:
        return self._active

    # --- lifecycle -----------------------------------------------------------

    def acquire(self) -> TerminalSession:
        if self._active:
            return self
        try:
            self._saved_attrs = termios.tcgetattr(self.fd)
        except (termios.error, OSError) as e:
            self._close_owned()
            raise TerminalAcquisitionFailure(f"Cannot read terminal attributes: {e}") from e
        try:
            tty.setraw(self.fd)
        except (termios.error, OSError) as e:
            termios.tcsetattr(self.fd, termios.TCSADRAIN, self._saved_attrs)
            self._close_owned()
            raise TerminalAcquisitionFailure(f"Cannot enter raw mode: {e}") from e

        self._active = True
        try:
            self._install_signal_handlers()
            self._write(ALT_SCREEN_ON + CLEAR_SCREEN + move_to(1, 1))
        except BaseException:
            # Not inside `with` yet, so __exit__ will not run
            self.release()
            raise
        logger.debug("Raw mode acquired on fd %d", self.fd)
        return self

    def release(self) -> None:
        """Restore the terminal. Only the first call does anything."""
        if not self._active:
            return
        self._active = False
        try:
            self._write(ALT_SCREEN_OFF + SHOW_CURSOR + RESET)
        finally:
            try:
                termios.tcsetattr(self.fd, termios.TCSADRAIN, self._saved_attrs)
            finally:
                self._restore_signal_handlers()
                self._close_owned()
                logger.debug("Raw mode released on fd %d", self.fd)

    def _close_owned(self) -> None:
        if self._owned_file is not None:
            self._owned_file.close()
            self._owned_file = None

    def __enter__(self) -> TerminalSession:
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def _on_signal(self, signum, frame) -> None:
        raise SystemExit(128 + signum)

    def _install_signal_handlers(self) -> None:
        for sig in RELEASE_SIGNALS:
            try:
                self._saved_handlers[sig] = signal.signal(sig, self._on_signal)
            except ValueError:
                # Not the main thread; the context manager still restores on exit
                logger.debug("Cannot install handler for %s outside the main thread", sig)

    def _restore_signal_handlers(self) -> None:
        for sig, handler in self._saved_handlers.items():
            signal.signal(sig, handler)
        self._saved_handlers.clear()

    # --- input ---------------------------------------------------------------

    def _wait(self, timeout: float) -> bool:
        ready, _, _ = select.select([self.fd], [], [], timeout)
        return bool(ready)

    def _read_escape(self) -> bytes:
        seq = b"\x1b"
        if not self._wait(ESCAPE_TIMEOUT):
            return seq
        introducer = os.read(self.fd, 1)
        seq += introducer
        if introducer not in (b"[", b"O"):
            return seq
        while self._wait(ESCAPE_TIMEOUT):
            byte = os.read(self.fd, 1)
            seq += byte
            # CSI/SS3 sequences end with a byte in 0x40-0x7E
            if not byte or 0x40 <= byte[0] <= 0x7E:
                break
        return seq

    def read_key(self) -> Key:
        """Block until the next key press or a terminal resize."""
        while not self._wait(POLL_INTERVAL):
            if self._last_size is not None and self.size() != self._last_size:
                return Key(KeyKind.RESIZE)

        data = os.read(self.fd, 1)
        if data == b"\x1b":
            data = self._read_escape()
        elif data and data[0] >= 0xC0:
            for _ in range(utf8_length(data[0]) - 1):
                if not self._wait(ESCAPE_TIMEOUT):
                    break
                data += os.read(self.fd, 1)
        return decode_key(data)

    # --- output --------------------------------------------------------------

    def size(self) -> tuple[int, int]:
        """→ (columns, rows) of the terminal"""
        if self._size_fn is not None:
            return self._size_fn()
        try:
            size = os.get_terminal_size(self.fd)
        except OSError:
            size = shutil.get_terminal_size(FALLBACK_SIZE)
        return size.columns, size.lines

    def _renderer_for(self, width: int) -> Console:
        if self._renderer is None or self._renderer.width != width:
            self._renderer = Console(
                file=io.StringIO(),
                force_terminal=True,
                width=width,
                theme=self.theme,
                highlight=False,
                emoji=False,
            )
        return self._renderer

    def to_ansi(self, line: Text, width: int) -> str:
        renderer = self._renderer_for(width)
        with renderer.capture() as capture:
            renderer.print(line, end="", no_wrap=True, overflow="crop", crop=True)
        return capture.get()

    def draw(self, lines: list[Text], cursor: tuple[int, int]) -> None:
        """Repaint the viewport: one Text per row, cursor at (row, col), 1-based."""
        width, height = self.size()
        self._last_size = (width, height)
        parts = [HIDE_CURSOR]
        for row in range(height):
            parts.append(move_to(row + 1, 1) + CLEAR_LINE)
            if row < len(lines):
                parts.append(self.to_ansi(lines[row], width))
        parts.append(RESET + move_to(*cursor) + SHOW_CURSOR)
        self._write("".join(parts))

    def _write(self, text: str) -> None:
        self.out.write(text)
        self.out.flush()


def _is_tty(stream) -> bool:
    try:
        return os.isatty(stream.fileno())
    except (AttributeError, OSError, ValueError):
        return False


def open_terminal(theme: Theme | None = None) -> TerminalSession:
    """Pick the controlling terminal: stdin/stdout when interactive, else /dev/tty.

    Going through /dev/tty keeps the UI usable when stdout is captured, e.g.
    `eval "$(histfind --print-only)"`.
    """
    if _is_tty(sys.stdin) and _is_tty(sys.stdout):
        return TerminalSession(sys.stdin.fileno(), sys.stdout, theme=theme)
    try:
        fd = os.open("/dev/tty", os.O_RDWR | os.O_NOCTTY)
    except OSError as e:
        raise TerminalAcquisitionFailure(f"No usable terminal available: {e.strerror or e}") from e
    # The writer owns the fd; input is read from the same fd with os.read
    tty_out = open(fd, "w", encoding="utf-8", errors="replace", closefd=True)
    return TerminalSession(fd, tty_out, theme=theme, owned_file=tty_out)
