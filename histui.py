"""
histui.py - Interactive controller state machine and frame rendering

The controller never touches the terminal. `Controller.handle` takes an
immutable Snapshot plus one Key and returns the next Snapshot; `render_frame`
turns a Snapshot into rows of rich Text. The loop that wires both to a
TerminalSession lives in histfind.py.

    EDITING --Enter (non-empty)--> SELECTED
    EDITING --Esc / ^C-----------> CANCELLED
    EDITING --anything else------> EDITING
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import NamedTuple

from rich.cells import cell_len
from rich.text import Text
from rich.theme import Theme

from histmatch import Match, match
from histparse import CandidateStore
from histterm import Key, KeyKind
from zsh_lexer import highlight_command

# ============================================================================
# CONFIGURATION & CONSTANTS
# ============================================================================

THEME = Theme({
    "title": "bold #C678DD",
    "help": "#5C6370",
    "prompt": "bold #61AFEF",
    "query": "bold #FCFCFA",
    "match": "bold underline #E5C07B",
    "selected": "on #3A3F4C",
    "selected.symbol": "bold #FF4500",
    "status": "dim",
    "context": "#5C6370",
    "info": "#61AFEF",
    "success": "#98C379",
    "warning": "#E5C07B",
    "error": "#E06C75",
})

PROMPT = "> "
HIGHLIGHT_SYMBOL = ">> "
HELP_TEXT = " (Esc to quit, ↑↓ or j/k to navigate, Enter to select)"
NEWLINE_GLYPH = "↵"

# Title, query and status rows around the result list
CHROME_ROWS = 3

VI_NAVIGATION = {"k": KeyKind.UP, "j": KeyKind.DOWN}

# U+FEFF included: pygments drops a leading BOM, which would shift match offsets
_UNPRINTABLE_RE = re.compile(r"[\x00-\x1f\x7f-\x9f\ud800-\udfff\ufeff]")


class State(Enum):
    EDITING = "editing"
    SELECTED = "selected"
    CANCELLED = "cancelled"


# ============================================================================
# STATE MACHINE
# ============================================================================


@dataclass(frozen=True)
class Snapshot:
    """Everything the loop knows between two key presses."""

    query: str
    matches: tuple[Match, ...]
    selected: int | None  # None while there are no matches
    state: State = State.EDITING
    chosen: str | None = None

    @property
    def done(self) -> bool:
        return self.state is not State.EDITING


class Controller:
    """Maps key presses to snapshot transitions over a fixed candidate set."""

    def __init__(self, candidates: CandidateStore, vi_keys: bool = True):
        self.candidates = candidates
        self.vi_keys = vi_keys

    def start(self, query: str = "") -> Snapshot:
        return self._requery(query)

    def _requery(self, query: str) -> Snapshot:
        matches = tuple(match(query, self.candidates))
        return Snapshot(query=query, matches=matches, selected=0 if matches else None)

    def _move(self, snapshot: Snapshot, delta: int) -> Snapshot:
        if snapshot.selected is None:
            return snapshot
        last = len(snapshot.matches) - 1
        return replace(snapshot, selected=max(0, min(last, snapshot.selected + delta)))

    def handle(self, snapshot: Snapshot, key: Key) -> Snapshot:
        if snapshot.done:
            return snapshot

        kind = key.kind
        if self.vi_keys and kind is KeyKind.CHAR and key.char in VI_NAVIGATION:
            kind = VI_NAVIGATION[key.char]

        if kind in (KeyKind.ESCAPE, KeyKind.INTERRUPT):
            return replace(snapshot, state=State.CANCELLED)
        if kind is KeyKind.ENTER:
            if snapshot.selected is None:
                return snapshot
            index = snapshot.matches[snapshot.selected].index
            return replace(snapshot, state=State.SELECTED, chosen=self.candidates.commands[index])
        if kind is KeyKind.UP:
            return self._move(snapshot, -1)
        if kind is KeyKind.DOWN:
            return self._move(snapshot, 1)
        if kind is KeyKind.CHAR:
            return self._requery(snapshot.query + key.char)
        if kind is KeyKind.BACKSPACE and snapshot.query:
            return self._requery(snapshot.query[:-1])
        if kind is KeyKind.CLEAR and snapshot.query:
            return self._requery("")
        return snapshot


# ============================================================================
# RENDERING
# ============================================================================


class Frame(NamedTuple):
    lines: list[Text]
    cursor: tuple[int, int]  # 1-based (row, col)


def displayable(text: str) -> str:
    """→ One printable character per input character, so match offsets stay valid"""

    def _replace(m: re.Match) -> str:
        ch = m.group()
        if ch == "\n":
            return NEWLINE_GLYPH
        if ch == "\t":
            return " "
        return "?"

    return _UNPRINTABLE_RE.sub(_replace, text)


def scroll_offset(selected: int | None, visible_rows: int) -> int:
    """First result shown so that the selection stays inside the window."""
    if selected is None or visible_rows <= 0:
        return 0
    return max(0, selected - visible_rows + 1)


def render_row(command: str, positions: tuple[int, ...], is_selected: bool, width: int) -> Text:
    display = displayable(command)
    body = highlight_command(display)
    for pos in positions:
        body.stylize("match", pos, pos + 1)

    row = Text(HIGHLIGHT_SYMBOL if is_selected else " " * len(HIGHLIGHT_SYMBOL), style="selected.symbol")
    row.append_text(body)
    row.truncate(width, overflow="ellipsis", pad=is_selected)
    if is_selected:
        row.stylize("selected")
    return row


def render_frame(snapshot: Snapshot, candidates: CandidateStore, width: int, height: int) -> Frame:
    """Lay out a full screen for `snapshot`; pure, no terminal access."""
    title = Text.assemble(("histfind", "title"), (HELP_TEXT, "help"))
    title.truncate(width, overflow="ellipsis")

    query_display = displayable(snapshot.query)
    query_line = Text.assemble((PROMPT, "prompt"), (query_display, "query"))
    query_line.truncate(width, overflow="crop")
    cursor = (2, min(width, cell_len(PROMPT) + cell_len(query_display) + 1))

    visible_rows = max(0, height - CHROME_ROWS)
    offset = scroll_offset(snapshot.selected, visible_rows)
    rows = [
        render_row(
            candidates.commands[m.index],
            m.positions,
            offset + i == snapshot.selected,
            width,
        )
        for i, m in enumerate(snapshot.matches[offset : offset + visible_rows])
    ]
    rows.extend(Text() for _ in range(visible_rows - len(rows)))

    status = Text(f"{len(snapshot.matches)} / {len(candidates)} commands", style="status")
    status.align("center", width)

    lines = [title, query_line, *rows, status]
    return Frame(lines[:height], cursor)
