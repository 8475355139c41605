import io
import os

import pytest

import histterm


class FakeTermios:
    """Stands in for the tty calls so sessions can run over a pipe."""

    def __init__(self):
        self.raw_calls = 0
        self.restored: list = []

    def tcgetattr(self, fd):
        return ["saved-attrs", fd]

    def tcsetattr(self, fd, when, attrs):
        self.restored.append(attrs)

    def setraw(self, fd, when=None):
        self.raw_calls += 1


@pytest.fixture
def fake_termios(monkeypatch):
    fake = FakeTermios()
    monkeypatch.setattr(histterm.termios, "tcgetattr", fake.tcgetattr)
    monkeypatch.setattr(histterm.termios, "tcsetattr", fake.tcsetattr)
    monkeypatch.setattr(histterm.tty, "setraw", fake.setraw)
    return fake


@pytest.fixture
def key_pipe():
    """(read_fd, write_fd); bytes written to write_fd arrive as key presses."""
    read_fd, write_fd = os.pipe()
    yield read_fd, write_fd
    for fd in (read_fd, write_fd):
        try:
            os.close(fd)
        except OSError:
            pass


@pytest.fixture
def make_session(key_pipe, fake_termios):
    def _make(size=(60, 12)):
        out = io.StringIO()
        session = histterm.TerminalSession(key_pipe[0], out, size=lambda: size)
        return session, out

    return _make
