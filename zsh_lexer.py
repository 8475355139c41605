# ============================================================================
# SHELL COMMAND LEXER & HIGHLIGHTING
# ============================================================================

from __future__ import annotations

import re
from functools import lru_cache

from pygments.lexer import RegexLexer, bygroups, include
from pygments.token import Comment, Error, Keyword, Name, Number, Operator, Punctuation, String, Token, Whitespace
from pygments.token import Text as PlainText
from pygments.token import _TokenType
from rich.style import Style
from rich.syntax import SyntaxTheme
from rich.text import Text

# Token types pygments does not define
Option = Token.Name.Option
Argument = Token.Name.Argument
Expansion = Token.Name.Variable.Expansion
ExpansionFlag = Token.Keyword.ExpansionFlag

# Patterns shared between states
REDIRECTION = r"[0-9]*(?:<<<|<<-?|>>|<&|>&|&>|[<>])"
CONTROL_OPERATOR = r"\|\||&&|\||&"
SIMPLE_VARIABLE = r"\$(?:[A-Za-z_][A-Za-z0-9_]*|[0-9@*#?$!_-])"
IDENTIFIER = r"[A-Za-z_][A-Za-z0-9_]*"
INTEGER = r"\b[0-9]+\b"
RESERVED_WORDS = (
    "if", "then", "elif", "else", "fi", "for", "in", "while", "until",
    "do", "done", "case", "esac", "function", "select", "repeat",
)
COMMAND_PREFIXES = ("sudo", "env", "time", "nohup", "exec", "command", "builtin", "noglob", "xargs")
BUILTINS = (
    "cd", "pwd", "echo", "printf", "export", "unset", "readonly", "source",
    "alias", "exit", "return", "history", "eval", "set", "shift", "test",
)


def _words(words: tuple[str, ...]) -> str:
    return r"\b(?:%s)\b" % "|".join(words)


class ZshLexer(RegexLexer):
    """
    Tokenizes one command line the way it was typed into zsh or bash.

    The lexer must be lossless: concatenating the token values gives back the
    input exactly. Anything no rule claims is emitted as `Error`, one
    character at a time, by RegexLexer itself.
    """

    name = "Shell history entry"
    aliases = ["zsh-history", "bash-history"]
    filenames = [".zsh_history", ".bash_history"]

    flags = re.MULTILINE | re.DOTALL

    tokens = {
        "words": [
            (r"\\.", String.Escape),
            # $(( must win over $(
            (r"\$\(\(", Operator, "arith"),
            (r"\$\(", String.Interpol, "subshell"),
            (r"`", String.Backtick, "backquoted"),
            (r"\$\{", Expansion, "expansion"),
            (SIMPLE_VARIABLE, Name.Variable),
            (r"'[^']*'?", String.Single),
            (r"\$'(?:\\.|[^'\\])*'?", String.Single),
            (r'"', String.Double, "dquoted"),
        ],
        "root": [
            (r"\s+", Whitespace),
            (r"#.*?$", Comment.Single),
            (REDIRECTION, Operator),
            (CONTROL_OPERATOR, Operator),
            (r"[;()\[\]{}!]", Punctuation),
            (_words(RESERVED_WORDS), Keyword.Reserved),
            (_words(COMMAND_PREFIXES), Keyword.Pseudo),
            (r"(%s)(=)" % IDENTIFIER, bygroups(Name.Variable, Operator)),
            (_words(BUILTINS), Name.Builtin, "arguments"),
            include("words"),
            (r"[A-Za-z0-9_./~+:@%-]+", Name.Function, "arguments"),
        ],
        "arguments": [
            (r"\n", Whitespace, "#pop"),
            (r";|" + CONTROL_OPERATOR, Operator, "#pop"),
            (r"\s+#.*?$", Comment.Single),
            (r"\s+", Whitespace),
            (REDIRECTION, Operator),
            (r"(?:--?|\+)[A-Za-z0-9][\w-]*", Option),
            (r"=", Operator),
            (INTEGER, Number.Integer),
            (r"[()]", Punctuation, "#pop"),
            include("words"),
            (r"[^\s=;&|()<>'\"`$\\]+", Argument),
        ],
        "dquoted": [
            (r'"', String.Double, "#pop"),
            (r'\\["$`\\]', String.Escape),
            (r"\$\(", String.Interpol, "subshell"),
            (r"\$\{", Expansion, "expansion"),
            (SIMPLE_VARIABLE, Name.Variable),
            (r'[^"\\$]+|[\\$]', String.Double),
        ],
        "backquoted": [
            (r"`", String.Backtick, "#pop"),
            (r"[^`]+", String.Backtick),
        ],
        "subshell": [
            (r"\)", String.Interpol, "#pop"),
            include("root"),
        ],
        "arith": [
            (r"\)\)", Operator, "#pop"),
            (r"\s+", Whitespace),
            (INTEGER, Number.Integer),
            (IDENTIFIER, Name.Variable),
            (r"[-+*/%&|<>!=^~?:,()]+", Operator),
        ],
        "expansion": [
            (r"\}", Expansion, "#pop"),
            (r"\$\{", Expansion, "#push"),
            (r"\$\(", String.Interpol, "subshell"),
            # zsh parameter flags: ${(f)var}, ${(@s/:/)var}
            (r"(\([^)]*\))(%s)" % IDENTIFIER, bygroups(ExpansionFlag, Name.Variable)),
            (IDENTIFIER, Name.Variable),
            (r"[^}$]+|\$", PlainText),
        ],
    }


class HistoryTheme(SyntaxTheme):
    """One Dark colours for history rows, matching the UI theme."""

    FOREGROUND = "#ABB2BF"
    palette = {
        Keyword.Reserved: "bold #C678DD",
        Keyword.Pseudo: "italic #E06C75",
        ExpansionFlag: "italic #56B6C2",
        Name.Function: "bold #98C379",
        Name.Builtin: "italic #56B6C2",
        Option: "#D19A66",
        Argument: "#ABB2BF",
        Expansion: "#C678DD",
        Name.Variable: "#E5C07B",
        String.Escape: "#56B6C2",
        String.Interpol: "bold #C678DD",
        String: "#98C379",
        Number: "#D19A66",
        Operator: "#E06C75",
        Comment: "italic #5C6370",
    }

    @classmethod
    @lru_cache(maxsize=None)
    def get_style_for_token(cls, t: _TokenType) -> Style:
        # String.Single -> String, Name.Option -> Name -> default
        while t is not None:
            if t in cls.palette:
                return Style.parse(cls.palette[t])
            t = t.parent
        return Style(color=cls.FOREGROUND)

    @classmethod
    def get_background_style(cls) -> Style:
        return Style()


_LEXER = ZshLexer(stripnl=False, ensurenl=False)


@lru_cache(maxsize=1024)
def _tokenize(command: str) -> tuple[tuple[_TokenType, str], ...]:
    return tuple(_LEXER.get_tokens(command))


def highlight_command(command: str) -> Text:
    """→ `command` as highlighted rich Text; same characters, same length"""
    text = Text(no_wrap=True, overflow="ellipsis")
    for token_type, value in _tokenize(command):
        if token_type is Error:
            text.append(value)
        else:
            text.append(value, style=HistoryTheme.get_style_for_token(token_type))
    return text
