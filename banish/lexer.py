"""
Lexical front-end for banish machine sources

Turns machine source text into an ordered token sequence that the parser
consumes with one-token lookahead. Python fragments embedded in the
machine (conditions and rule statements) are tokenized with the same
scanner; the parser later slices their raw text back out of the source
using the byte offsets recorded on each token.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List

from banish.errors import BanishSyntaxError


class TokenKind(Enum):
    NAME = "name"
    NUMBER = "number"
    STRING = "string"
    OP = "op"
    NEWLINE = "newline"
    EOF = "eof"


@dataclass(frozen=True)
class SourceLocation:
    """1-based line and column of a token in the machine source"""
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.line}:{self.column}"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: str
    line: int
    column: int
    start: int  # offset of the first character
    end: int  # offset one past the last character

    @property
    def location(self) -> SourceLocation:
        return SourceLocation(self.line, self.column)

    def is_op(self, *values: str) -> bool:
        return self.kind is TokenKind.OP and self.value in values

    def describe(self) -> str:
        if self.kind is TokenKind.EOF:
            return "end of input"
        if self.kind is TokenKind.NEWLINE:
            return "end of line"
        return f"'{self.value}'"


# Longest operators first so that '**=' wins over '**' and '*'.
OPERATORS = sorted(
    [
        "**=", "//=", ">>=", "<<=", "...",
        "=>", "->", ":=", "==", "!=", "<=", ">=", "**", "//", "<<", ">>",
        "+=", "-=", "*=", "/=", "%=", "&=", "|=", "^=", "@=",
        "+", "-", "*", "/", "%", "@", "&", "|", "^", "~", "<", ">",
        "(", ")", "[", "]", "{", "}", ",", ":", ";", ".", "=", "!", "?",
    ],
    key=len,
    reverse=True,
)

_STRING_PREFIX = r"(?:[rR][bBfF]?|[bBfF][rR]?|[uU])?"
_STRING_BODY = (
    r'"""(?:\\.|[^\\])*?"""'
    r"|'''(?:\\.|[^\\])*?'''"
    r'|"(?:\\.|[^"\\\n])*"'
    r"|'(?:\\.|[^'\\\n])*'"
)

_TOKEN_SPEC = [
    ("STRING", _STRING_PREFIX + "(?:" + _STRING_BODY + ")"),
    (
        "NUMBER",
        r"0[xX][0-9a-fA-F_]+|0[oO][0-7_]+|0[bB][01_]+"
        r"|(?:\d[\d_]*(?:\.[\d_]*)?|\.\d[\d_]*)(?:[eE][+-]?\d[\d_]*)?[jJ]?",
    ),
    ("NAME", r"[^\W\d]\w*"),
    ("OP", "|".join(re.escape(op) for op in OPERATORS)),
    ("CONTINUATION", r"\\\r?\n"),
    ("NEWLINE", r"\r?\n"),
    ("COMMENT", r"#[^\r\n]*"),
    ("SKIP", r"[ \t\f\r]+"),
    ("MISMATCH", r"."),
]

_TOKEN_RE = re.compile(
    "|".join(f"(?P<{name}>{pattern})" for name, pattern in _TOKEN_SPEC),
    re.DOTALL,
)


def tokenize(source: str) -> List[Token]:
    """
    Split machine source into tokens

    Comments, blank space and backslash continuations are dropped.
    Every physical newline produces a NEWLINE token; deciding which of
    them end a statement is left to the parser. The list always ends
    with a single EOF token.

    Raises:
        BanishSyntaxError: on a character that starts no token, including
            an unterminated string literal
    """
    tokens: List[Token] = []
    line = 1
    line_start = 0

    for match in _TOKEN_RE.finditer(source):
        kind = match.lastgroup
        text = match.group()
        column = match.start() - line_start + 1

        if kind == "MISMATCH":
            location = SourceLocation(line, column)
            if text in "\"'":
                raise BanishSyntaxError("Unterminated string literal", location)
            raise BanishSyntaxError(f"Unexpected character '{text}'", location)

        if kind not in ("SKIP", "COMMENT", "CONTINUATION"):
            tokens.append(
                Token(TokenKind[kind], text, line, column, match.start(), match.end())
            )

        # Strings and continuations may span lines
        newlines = text.count("\n")
        if newlines:
            line += newlines
            line_start = match.start() + text.rindex("\n") + 1

    tokens.append(
        Token(TokenKind.EOF, "", line, len(source) - line_start + 1, len(source), len(source))
    )
    return tokens


class TokenStream:
    """Ordered token sequence with peekable lookahead"""

    def __init__(self, tokens: List[Token]):
        if not tokens or tokens[-1].kind is not TokenKind.EOF:
            raise ValueError("Token list must end with an EOF token")
        self._tokens = tokens
        self._pos = 0

    def peek(self, offset: int = 0) -> Token:
        index = min(self._pos + offset, len(self._tokens) - 1)
        return self._tokens[index]

    def next(self) -> Token:
        token = self._tokens[self._pos]
        if token.kind is not TokenKind.EOF:
            self._pos += 1
        return token

    def at_end(self) -> bool:
        return self._tokens[self._pos].kind is TokenKind.EOF
