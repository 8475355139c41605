"""
histparse.py - History file parsing and the candidate store

Formats
- plain: one command per line.
- bash:  HISTTIMEFORMAT files, where a "#<epoch>" line stamps the command on
  the next line.
- zsh:   EXTENDED_HISTORY records ": <epoch>:<duration>;command". A command
  line ending in a backslash continues on the next physical line; zsh writes
  multi-line commands this way.

The parser only ever yields commands in file order (oldest first). Ordering
and de-duplication are the CandidateStore's job.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Iterator

from histerrors import SourceUnavailable

logger = logging.getLogger(__name__)

# ============================================================================
# CONSTANTS & PATTERNS
# ============================================================================

ZSH_ENTRY_RE = re.compile(r"^: *(\d+):(\d+);(.*)$", re.DOTALL)
BASH_TIMESTAMP_RE = re.compile(r"^#(\d{9,})\s*$")
CONTINUATION_MARKER = "\\"

# How many non-blank lines format detection looks at
DETECT_SAMPLE_LINES = 50


class HistoryFormat(str, Enum):
    AUTO = "auto"
    PLAIN = "plain"
    BASH = "bash"
    ZSH = "zsh"


# ============================================================================
# DATA STRUCTURES
# ============================================================================


@dataclass(frozen=True)
class HistoryEntry:
    """A single command from the history file."""

    command: str
    timestamp: int | None = None


# ============================================================================
# PARSING
# ============================================================================


def split_lines(data: bytes) -> list[str]:
    """→ Splits raw bytes on \\n / \\r\\n and decodes each line losslessly"""
    return [line.decode("utf-8", errors="surrogateescape") for line in data.splitlines()]


def detect_format(lines: list[str]) -> HistoryFormat:
    """Guess the history format from the first non-blank lines."""
    seen_bash_marker = False
    sampled = 0
    for line in lines:
        if not line.strip():
            continue
        if ZSH_ENTRY_RE.match(line):
            return HistoryFormat.ZSH
        if BASH_TIMESTAMP_RE.match(line):
            seen_bash_marker = True
        sampled += 1
        if sampled >= DETECT_SAMPLE_LINES:
            break
    return HistoryFormat.BASH if seen_bash_marker else HistoryFormat.PLAIN


def parse_plain(lines: list[str]) -> Iterator[HistoryEntry]:
    for line in lines:
        if line.strip():
            yield HistoryEntry(line)


def parse_bash(lines: list[str]) -> Iterator[HistoryEntry]:
    pending_ts: int | None = None
    for line in lines:
        if not line.strip():
            continue
        if m := BASH_TIMESTAMP_RE.match(line):
            if pending_ts is not None:
                logger.debug("Dropping timestamp %s with no command", pending_ts)
            pending_ts = int(m.group(1))
            continue
        yield HistoryEntry(line, pending_ts)
        pending_ts = None


def _strip_marker(line: str) -> tuple[str, bool]:
    """→ Returns (text without continuation marker, whether it continues)"""
    if line.endswith(CONTINUATION_MARKER):
        return line[: -len(CONTINUATION_MARKER)], True
    return line, False


def parse_zsh(lines: list[str]) -> Iterator[HistoryEntry]:
    pieces: list[str] = []
    timestamp: int | None = None
    continuing = False

    def flush() -> HistoryEntry | None:
        command = "\n".join(pieces)
        pieces.clear()
        return HistoryEntry(command, timestamp) if command.strip() else None

    for line in lines:
        if continuing:
            text, continuing = _strip_marker(line)
            pieces.append(text)
            if not continuing and (entry := flush()):
                yield entry
            continue

        if m := ZSH_ENTRY_RE.match(line):
            timestamp = int(m.group(1))
            text = m.group(3)
        elif not line.strip():
            continue
        else:
            # Stray line outside any record, e.g. from a hand-edited file
            timestamp = None
            text = line

        text, continuing = _strip_marker(text)
        pieces.append(text)
        if not continuing and (entry := flush()):
            yield entry

    if continuing:
        logger.debug("Unterminated continuation at end of input; keeping %d line(s)", len(pieces))
        if entry := flush():
            yield entry


PARSERS: dict[HistoryFormat, Callable[[list[str]], Iterator[HistoryEntry]]] = {
    HistoryFormat.PLAIN: parse_plain,
    HistoryFormat.BASH: parse_bash,
    HistoryFormat.ZSH: parse_zsh,
}


def parse_history(data: bytes, fmt: HistoryFormat = HistoryFormat.AUTO) -> list[HistoryEntry]:
    """Parse raw history bytes into entries, oldest first.

    Never raises on malformed input: an unterminated continuation at the end
    of the data becomes a command made of whatever was accumulated.
    """
    lines = split_lines(data)
    if fmt is HistoryFormat.AUTO:
        fmt = detect_format(lines)
        logger.debug("Detected history format: %s", fmt.value)
    return list(PARSERS[fmt](lines))


def read_history_file(path: Path) -> bytes:
    """→ File I/O: Reads the raw history bytes, raising SourceUnavailable"""
    try:
        return path.read_bytes()
    except FileNotFoundError as e:
        raise SourceUnavailable(f"History file not found at '{path}'") from e
    except OSError as e:
        raise SourceUnavailable(f"Error reading history file '{path}': {e.strerror or e}") from e


# ============================================================================
# CANDIDATE STORE
# ============================================================================


def fold_case(text: str) -> str:
    """Lower-case `text` without changing its length, so offsets stay valid."""
    lowered = text.lower()
    if len(lowered) == len(text):
        return lowered
    # A few characters (e.g. "İ") grow when lower-cased; keep offsets aligned
    return "".join(ch if len(ch.lower()) != 1 else ch.lower() for ch in text)


class CandidateStore:
    """De-duplicated history, most recent first.

    Built once at startup and read-only afterwards. Index 0 is the most recent
    command, so a lower index also means "wins a score tie".
    """

    def __init__(self, entries: Iterable[HistoryEntry]):
        ordered = list(entries)
        if ordered and all(e.timestamp is not None for e in ordered):
            ordered.sort(key=lambda e: e.timestamp)

        seen: set[str] = set()
        unique: list[HistoryEntry] = []
        for entry in reversed(ordered):
            if entry.command in seen:
                continue
            seen.add(entry.command)
            unique.append(entry)

        self._entries: tuple[HistoryEntry, ...] = tuple(unique)
        self.commands: tuple[str, ...] = tuple(e.command for e in unique)
        self.lowered: tuple[str, ...] = tuple(fold_case(c) for c in self.commands)

    @classmethod
    def from_bytes(cls, data: bytes, fmt: HistoryFormat = HistoryFormat.AUTO) -> CandidateStore:
        return cls(parse_history(data, fmt))

    @classmethod
    def from_commands(cls, commands: Iterable[str]) -> CandidateStore:
        """Build from plain command strings given oldest first."""
        return cls(HistoryEntry(c) for c in commands)

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: int) -> HistoryEntry:
        return self._entries[index]

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(self._entries)
