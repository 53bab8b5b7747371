"""Tokenizer for filter expressions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from build_notifiers.errors import FilterSyntaxError


class TokenKind(Enum):
    """Kinds of lexical tokens."""

    STRING = "string"
    IDENT = "identifier"
    LPAREN = "("
    RPAREN = ")"
    LBRACKET = "["
    RBRACKET = "]"
    DOT = "."
    COMMA = ","
    EQ = "=="
    NE = "!="
    AND = "&&"
    OR = "||"
    NOT = "!"
    IN = "in"
    EOF = "end of input"


@dataclass(frozen=True)
class Token:
    """A lexical token with its offset in the source."""

    kind: TokenKind
    value: str
    position: int


_PUNCTUATION = {
    "==": TokenKind.EQ,
    "!=": TokenKind.NE,
    "&&": TokenKind.AND,
    "||": TokenKind.OR,
    "(": TokenKind.LPAREN,
    ")": TokenKind.RPAREN,
    "[": TokenKind.LBRACKET,
    "]": TokenKind.RBRACKET,
    ".": TokenKind.DOT,
    ",": TokenKind.COMMA,
    "!": TokenKind.NOT,
}

_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "\\": "\\",
    '"': '"',
    "'": "'",
}


def _read_string(source: str, start: int) -> tuple[str, int]:
    """Read a quoted string literal starting at ``start``.

    Returns:
        The decoded string and the offset just past the closing quote.
    """
    quote = source[start]
    chars: list[str] = []
    i = start + 1
    while i < len(source):
        ch = source[i]
        if ch == quote:
            return "".join(chars), i + 1
        if ch == "\\":
            if i + 1 >= len(source):
                break
            escaped = source[i + 1]
            if escaped not in _ESCAPES:
                raise FilterSyntaxError(f"invalid escape sequence \\{escaped}", i)
            chars.append(_ESCAPES[escaped])
            i += 2
            continue
        if ch == "\n":
            raise FilterSyntaxError("newline in string literal", i)
        chars.append(ch)
        i += 1
    raise FilterSyntaxError("unterminated string literal", start)


def tokenize(source: str) -> list[Token]:
    """Split a filter expression into tokens.

    Args:
        source: Filter expression text.

    Returns:
        Tokens, always terminated by an EOF token.

    Raises:
        FilterSyntaxError: On characters that cannot start a token.
    """
    tokens: list[Token] = []
    i = 0
    while i < len(source):
        ch = source[i]

        if ch.isspace():
            i += 1
            continue

        if ch in ("'", '"'):
            value, end = _read_string(source, i)
            tokens.append(Token(TokenKind.STRING, value, i))
            i = end
            continue

        if ch.isalpha() or ch == "_":
            end = i + 1
            while end < len(source) and (source[end].isalnum() or source[end] == "_"):
                end += 1
            word = source[i:end]
            kind = TokenKind.IN if word == "in" else TokenKind.IDENT
            tokens.append(Token(kind, word, i))
            i = end
            continue

        two = source[i : i + 2]
        if two in _PUNCTUATION:
            tokens.append(Token(_PUNCTUATION[two], two, i))
            i += 2
            continue
        if ch in _PUNCTUATION:
            tokens.append(Token(_PUNCTUATION[ch], ch, i))
            i += 1
            continue

        raise FilterSyntaxError(f"unexpected character {ch!r}", i)

    tokens.append(Token(TokenKind.EOF, "", len(source)))
    return tokens
