"""
histerrors.py - Error kinds shared by the histfind modules.

Only failures the user has to hear about get a class here. Malformed history
records are repaired inside the parser and never surface as exceptions.
"""

from __future__ import annotations


class HistfindError(Exception):
    """Base class for errors that `histfind.main` reports and exits on."""


class SourceUnavailable(HistfindError):
    """The history file is missing or cannot be read."""


class TerminalAcquisitionFailure(HistfindError):
    """Raw mode could not be entered on the controlling terminal."""


class ExecutionFailure(HistfindError):
    """The chosen command could not be handed to the shell."""
