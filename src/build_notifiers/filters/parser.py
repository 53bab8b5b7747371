"""Recursive descent parser for filter expressions.

Grammar, lowest precedence first::

    expr    := and ( "||" and )*
    and     := rel ( "&&" rel )*
    rel     := unary ( ( "==" | "!=" | "in" ) unary )?
    unary   := "!" unary | postfix
    postfix := primary ( "." IDENT [ "(" args ")" ] | "[" expr "]" )*
    primary := STRING | IDENT | "(" expr ")" | "[" [ expr ( "," expr )* [","] ] "]"
"""

from __future__ import annotations

from dataclasses import dataclass

from build_notifiers.errors import FilterSyntaxError
from build_notifiers.filters.lexer import Token, TokenKind, tokenize


@dataclass(frozen=True)
class Node:
    """Base class for syntax tree nodes."""

    position: int


@dataclass(frozen=True)
class Literal(Node):
    value: str | bool


@dataclass(frozen=True)
class ListLiteral(Node):
    elements: tuple[Node, ...]


@dataclass(frozen=True)
class Name(Node):
    name: str


@dataclass(frozen=True)
class Select(Node):
    operand: Node
    field: str


@dataclass(frozen=True)
class Index(Node):
    operand: Node
    key: Node


@dataclass(frozen=True)
class Call(Node):
    receiver: Node
    method: str
    args: tuple[Node, ...]


@dataclass(frozen=True)
class Unary(Node):
    op: TokenKind
    operand: Node


@dataclass(frozen=True)
class Binary(Node):
    op: TokenKind
    left: Node
    right: Node


class _Parser:
    def __init__(self, tokens: list[Token]) -> None:
        self._tokens = tokens
        self._pos = 0

    @property
    def _current(self) -> Token:
        return self._tokens[self._pos]

    def _advance(self) -> Token:
        token = self._tokens[self._pos]
        if token.kind is not TokenKind.EOF:
            self._pos += 1
        return token

    def _match(self, *kinds: TokenKind) -> Token | None:
        if self._current.kind in kinds:
            return self._advance()
        return None

    def _expect(self, kind: TokenKind) -> Token:
        token = self._current
        if token.kind is not kind:
            raise FilterSyntaxError(
                f"expected {kind.value!r} but found {_describe(token)}", token.position
            )
        return self._advance()

    def parse(self) -> Node:
        node = self._or()
        if self._current.kind is not TokenKind.EOF:
            raise FilterSyntaxError(
                f"unexpected {_describe(self._current)}", self._current.position
            )
        return node

    def _or(self) -> Node:
        node = self._and()
        while op := self._match(TokenKind.OR):
            node = Binary(op.position, op.kind, node, self._and())
        return node

    def _and(self) -> Node:
        node = self._relation()
        while op := self._match(TokenKind.AND):
            node = Binary(op.position, op.kind, node, self._relation())
        return node

    def _relation(self) -> Node:
        node = self._unary()
        if op := self._match(TokenKind.EQ, TokenKind.NE, TokenKind.IN):
            node = Binary(op.position, op.kind, node, self._unary())
            if self._current.kind in (TokenKind.EQ, TokenKind.NE, TokenKind.IN):
                raise FilterSyntaxError(
                    "comparisons cannot be chained, use parentheses",
                    self._current.position,
                )
        return node

    def _unary(self) -> Node:
        if op := self._match(TokenKind.NOT):
            return Unary(op.position, op.kind, self._unary())
        return self._postfix()

    def _postfix(self) -> Node:
        node = self._primary()
        while True:
            if self._match(TokenKind.DOT):
                ident = self._expect(TokenKind.IDENT)
                if self._match(TokenKind.LPAREN):
                    node = Call(ident.position, node, ident.value, self._arguments())
                else:
                    node = Select(ident.position, node, ident.value)
            elif bracket := self._match(TokenKind.LBRACKET):
                key = self._or()
                self._expect(TokenKind.RBRACKET)
                node = Index(bracket.position, node, key)
            else:
                return node

    def _arguments(self) -> tuple[Node, ...]:
        args: list[Node] = []
        if self._match(TokenKind.RPAREN):
            return ()
        while True:
            args.append(self._or())
            if self._match(TokenKind.RPAREN):
                return tuple(args)
            self._expect(TokenKind.COMMA)

    def _primary(self) -> Node:
        token = self._current
        if token.kind is TokenKind.STRING:
            self._advance()
            return Literal(token.position, token.value)
        if token.kind is TokenKind.IDENT:
            self._advance()
            if token.value == "true":
                return Literal(token.position, True)
            if token.value == "false":
                return Literal(token.position, False)
            return Name(token.position, token.value)
        if token.kind is TokenKind.LPAREN:
            self._advance()
            node = self._or()
            self._expect(TokenKind.RPAREN)
            return node
        if token.kind is TokenKind.LBRACKET:
            self._advance()
            elements: list[Node] = []
            while not self._match(TokenKind.RBRACKET):
                elements.append(self._or())
                if not self._match(TokenKind.COMMA):
                    self._expect(TokenKind.RBRACKET)
                    break
            return ListLiteral(token.position, tuple(elements))
        raise FilterSyntaxError(f"unexpected {_describe(token)}", token.position)


def _describe(token: Token) -> str:
    if token.kind is TokenKind.EOF:
        return "end of input"
    return f"{token.kind.value} {token.value!r}"


def parse(source: str) -> Node:
    """Parse a filter expression into a syntax tree.

    Raises:
        FilterSyntaxError: If the expression is malformed.
    """
    return _Parser(tokenize(source)).parse()
