"""Tests for the controller state machine and frame layout."""

import random

import pytest

from histparse import CandidateStore
from histterm import Key, KeyKind
from histui import (
    CHROME_ROWS,
    HIGHLIGHT_SYMBOL,
    Controller,
    State,
    displayable,
    render_frame,
    scroll_offset,
)

UP = Key(KeyKind.UP)
DOWN = Key(KeyKind.DOWN)
ENTER = Key(KeyKind.ENTER)
ESC = Key(KeyKind.ESCAPE)


def char(c):
    return Key(KeyKind.CHAR, c)


def type_text(controller, snapshot, text):
    for c in text:
        snapshot = controller.handle(snapshot, char(c))
    return snapshot


@pytest.fixture
def store():
    # Most recent first: git stash, ls -la, git status
    return CandidateStore.from_commands(["git status", "ls -la", "git stash"])


@pytest.fixture
def controller(store):
    return Controller(store)


class TestController:
    def test_start_selects_first_result(self, controller):
        snap = controller.start()
        assert snap.state is State.EDITING
        assert snap.query == ""
        assert len(snap.matches) == 3
        assert snap.selected == 0

    def test_start_with_initial_query(self, controller):
        snap = controller.start("ls")
        assert [m.index for m in snap.matches] == [1]

    def test_typing_filters(self, controller, store):
        snap = type_text(controller, controller.start(), "gst")
        assert snap.query == "gst"
        assert [store.commands[m.index] for m in snap.matches] == ["git stash", "git status"]

    def test_navigation_is_clamped(self, controller):
        snap = controller.start()
        snap = controller.handle(snap, UP)
        assert snap.selected == 0
        for _ in range(5):
            snap = controller.handle(snap, DOWN)
        assert snap.selected == 2
        snap = controller.handle(snap, UP)
        assert snap.selected == 1

    def test_query_change_resets_selection(self, controller):
        snap = controller.start()
        snap = controller.handle(controller.handle(snap, DOWN), DOWN)
        assert snap.selected == 2
        snap = controller.handle(snap, char("g"))
        assert snap.selected == 0
        assert len(snap.matches) == 2

    def test_no_results(self, controller):
        snap = type_text(controller, controller.start(), "zzz")
        assert snap.matches == ()
        assert snap.selected is None
        assert controller.handle(snap, DOWN) is snap
        after = controller.handle(snap, ENTER)
        assert after.state is State.EDITING
        assert after.chosen is None

    def test_enter_selects_highlighted_command(self, controller):
        snap = controller.handle(controller.start(), DOWN)
        snap = controller.handle(snap, ENTER)
        assert snap.state is State.SELECTED
        assert snap.chosen == "ls -la"
        assert snap.done

    @pytest.mark.parametrize("kind", [KeyKind.ESCAPE, KeyKind.INTERRUPT])
    def test_cancel(self, controller, kind):
        snap = controller.handle(controller.start("git"), Key(kind))
        assert snap.state is State.CANCELLED
        assert snap.chosen is None
        assert snap.done

    @pytest.mark.parametrize("kind", [KeyKind.UNKNOWN, KeyKind.RESIZE])
    def test_ignored_keys(self, controller, kind):
        snap = controller.start("g")
        assert controller.handle(snap, Key(kind)) is snap

    def test_backspace(self, controller):
        snap = type_text(controller, controller.start(), "lsx")
        assert snap.matches == ()
        snap = controller.handle(snap, Key(KeyKind.BACKSPACE))
        assert snap.query == "ls"
        assert len(snap.matches) == 1

    def test_backspace_on_empty_query_is_a_no_op(self, controller):
        snap = controller.start()
        assert controller.handle(snap, Key(KeyKind.BACKSPACE)) is snap

    def test_clear(self, controller):
        snap = controller.handle(controller.start("git"), Key(KeyKind.CLEAR))
        assert snap.query == ""
        assert len(snap.matches) == 3

    def test_j_and_k_are_typed_without_vi_keys(self, store):
        controller = Controller(store, vi_keys=False)
        snap = controller.handle(controller.start(), char("k"))
        assert snap.query == "k"
        snap = controller.handle(snap, char("j"))
        assert snap.query == "kj"

    def test_j_and_k_navigate_by_default(self, controller):
        snap = controller.handle(controller.start(), char("j"))
        assert snap.query == ""
        assert snap.selected == 1
        snap = controller.handle(snap, char("k"))
        assert snap.selected == 0

    def test_terminal_states_absorb_keys(self, controller):
        done = controller.handle(controller.start(), ENTER)
        for key in (char("x"), UP, ESC, ENTER, Key(KeyKind.BACKSPACE)):
            assert controller.handle(done, key) is done

    def test_random_key_sequences_keep_selection_valid(self, controller):
        rng = random.Random(1234)
        keys = [
            char("g"),
            char("s"),
            char("l"),
            char("t"),
            char("z"),
            UP,
            DOWN,
            Key(KeyKind.BACKSPACE),
            Key(KeyKind.CLEAR),
            Key(KeyKind.UNKNOWN),
        ]
        for _ in range(200):
            snap = controller.start()
            for _ in range(30):
                snap = controller.handle(snap, rng.choice(keys))
                if snap.matches:
                    assert 0 <= snap.selected < len(snap.matches)
                else:
                    assert snap.selected is None
            assert snap.state is State.EDITING


class TestScrollOffset:
    def test_no_selection(self):
        assert scroll_offset(None, 5) == 0

    def test_selection_inside_window(self):
        assert scroll_offset(3, 5) == 0

    def test_selection_below_window(self):
        assert scroll_offset(7, 5) == 3

    def test_no_rows(self):
        assert scroll_offset(4, 0) == 0


class TestDisplayable:
    def test_newline_and_tab(self):
        assert displayable("a\nb\tc") == "a↵b c"

    def test_control_characters(self):
        assert displayable("a\x1b[31mb") == "a?[31mb"

    def test_length_is_preserved(self):
        text = "echo \udcff\x07\n"
        assert len(displayable(text)) == len(text)

    def test_byte_order_mark(self):
        assert displayable("\ufeffls") == "?ls"

    def test_byte_order_mark_keeps_match_offsets(self):
        store = CandidateStore.from_commands(["\ufeffls -la"])
        snap = Controller(store).start("la")
        row = render_frame(snap, store, 40, 4).lines[2]
        assert row.plain.startswith(HIGHLIGHT_SYMBOL + "?ls -la")
        underlined = [
            row.plain[span.start : span.end] for span in row.spans if span.style == "match"
        ]
        assert underlined == ["l", "a"]


class TestRenderFrame:
    def test_line_count_matches_height(self, controller, store):
        snap = controller.start()
        for height in (1, 2, 3, 4, 10, 30):
            frame = render_frame(snap, store, 40, height)
            assert len(frame.lines) == height

    def test_layout(self, controller, store):
        snap = controller.start("git")
        frame = render_frame(snap, store, 40, 8)
        plains = [line.plain for line in frame.lines]
        assert plains[0].startswith("histfind")
        assert plains[1] == "> git"
        assert plains[2].startswith(HIGHLIGHT_SYMBOL + "git stash")
        assert plains[3].strip() == "git status"
        assert all(p == "" for p in plains[4:-1])
        assert plains[-1].strip() == "2 / 3 commands"

    def test_lines_fit_width(self, controller, store):
        long_store = CandidateStore.from_commands(["echo " + "x" * 200])
        snap = Controller(long_store).start()
        frame = render_frame(snap, long_store, 30, 6)
        assert all(line.cell_len <= 30 for line in frame.lines)

    def test_cursor_follows_query(self, controller, store):
        frame = render_frame(controller.start("gi"), store, 40, 8)
        assert frame.cursor == (2, 5)

    def test_cursor_clamped_to_width(self, controller, store):
        frame = render_frame(controller.start("git"), store, 3, 8)
        assert frame.cursor == (2, 3)

    def test_scrolls_to_keep_selection_visible(self, controller, store):
        snap = controller.start()
        snap = controller.handle(controller.handle(snap, DOWN), DOWN)
        height = CHROME_ROWS + 2
        frame = render_frame(snap, store, 40, height)
        rows = [line.plain for line in frame.lines[2:-1]]
        assert rows[0].strip() == "ls -la"
        assert rows[1].startswith(HIGHLIGHT_SYMBOL + "git status")

    def test_empty_results(self, controller, store):
        snap = controller.start("zzz")
        frame = render_frame(snap, store, 40, 6)
        assert frame.lines[-1].plain.strip() == "0 / 3 commands"
        assert all(line.plain == "" for line in frame.lines[2:-1])

    def test_multiline_command_rendered_on_one_row(self):
        store = CandidateStore.from_commands(["for f in *; do\n  echo $f\ndone"])
        frame = render_frame(Controller(store).start(), store, 60, 5)
        assert "↵" in frame.lines[2].plain
        assert "\n" not in frame.lines[2].plain
