"""
Recursive-descent parser for include expressions.

Precedence, lowest first::

    ||  or
    &&  and
    ==  !=  <  <=  >  >=  in  not in  contains  startsWith  endsWith  matches
    +  -
    *  /  %
    **  ^              (right associative)
    !  not  -  +       (unary)
    a.b  a[i]  f(x)    (postfix)
"""

from dataclasses import dataclass
from typing import Any, Optional

from migration_manager.core.criteria.lexer import Token, TokenKind, tokenize
from migration_manager.core.exceptions import InvalidArgumentError


# ==========================================================================
# AST
# ==========================================================================

class Node:
    """Base class for expression tree nodes."""


@dataclass(frozen=True)
class Literal(Node):
    value: Any


@dataclass(frozen=True)
class ListLiteral(Node):
    items: tuple[Node, ...]


@dataclass(frozen=True)
class Name(Node):
    name: str


@dataclass(frozen=True)
class Member(Node):
    obj: Node
    attr: str


@dataclass(frozen=True)
class Index(Node):
    obj: Node
    index: Node


@dataclass(frozen=True)
class Call(Node):
    func: str
    args: tuple[Node, ...]


@dataclass(frozen=True)
class Unary(Node):
    op: str
    operand: Node


@dataclass(frozen=True)
class Binary(Node):
    op: str
    left: Node
    right: Node


@dataclass(frozen=True)
class Logical(Node):
    op: str
    left: Node
    right: Node


# Spelling aliases normalised by the parser
_LOGICAL_ALIASES = {"||": "or", "or": "or", "&&": "and", "and": "and"}
_UNARY_ALIASES = {"!": "not", "not": "not", "-": "-", "+": "+"}
_COMPARISON_OPS = (
    "==", "!=", "<", "<=", ">", ">=",
    "in", "contains", "startsWith", "endsWith", "matches",
)


# ==========================================================================
# Parser
# ==========================================================================

class Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.pos = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def _peek(self, offset: int = 1) -> Token:
        index = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[index]

    def _advance(self) -> Token:
        token = self.tokens[self.pos]
        if token.kind != TokenKind.EOF:
            self.pos += 1
        return token

    def _expect(self, value: str) -> Token:
        token = self.current
        if not token.is_op(value):
            raise self._error(f"expected '{value}'")
        return self._advance()

    def _error(self, message: str, token: Optional[Token] = None) -> InvalidArgumentError:
        token = token or self.current
        found = "end of expression" if token.kind == TokenKind.EOF else repr(token.value)
        return InvalidArgumentError(
            f"Invalid expression {self.text!r}: {message} at position {token.pos}, found {found}"
        )

    def parse(self) -> Node:
        if self.current.kind == TokenKind.EOF:
            raise InvalidArgumentError("Invalid expression: expression is empty")

        node = self._or()
        if self.current.kind != TokenKind.EOF:
            raise self._error("unexpected token")
        return node

    def _or(self) -> Node:
        node = self._and()
        while self.current.is_op("||", "or"):
            op = _LOGICAL_ALIASES[self._advance().value]
            node = Logical(op, node, self._and())
        return node

    def _and(self) -> Node:
        node = self._comparison()
        while self.current.is_op("&&", "and"):
            op = _LOGICAL_ALIASES[self._advance().value]
            node = Logical(op, node, self._comparison())
        return node

    def _comparison(self) -> Node:
        node = self._additive()
        while True:
            token = self.current
            if token.is_op("not") and self._peek().is_op("in"):
                self._advance()
                self._advance()
                node = Binary("not in", node, self._additive())
            elif token.is_op(*_COMPARISON_OPS):
                self._advance()
                node = Binary(token.value, node, self._additive())
            else:
                return node

    def _additive(self) -> Node:
        node = self._multiplicative()
        while self.current.is_op("+", "-"):
            op = self._advance().value
            node = Binary(op, node, self._multiplicative())
        return node

    def _multiplicative(self) -> Node:
        node = self._power()
        while self.current.is_op("*", "/", "%"):
            op = self._advance().value
            node = Binary(op, node, self._power())
        return node

    def _power(self) -> Node:
        node = self._unary()
        if self.current.is_op("**", "^"):
            self._advance()
            return Binary("**", node, self._power())
        return node

    def _unary(self) -> Node:
        if self.current.is_op("!", "not", "-", "+"):
            op = _UNARY_ALIASES[self._advance().value]
            return Unary(op, self._unary())
        return self._postfix()

    def _postfix(self) -> Node:
        node = self._primary()
        while True:
            if self.current.is_op("."):
                self._advance()
                token = self.current
                # Keywords are valid field names after a dot (e.g. Foo.in)
                if token.kind not in (TokenKind.IDENT, TokenKind.KEYWORD):
                    raise self._error("expected field name after '.'")
                self._advance()
                node = Member(node, token.value)
            elif self.current.is_op("["):
                self._advance()
                index = self._or()
                self._expect("]")
                node = Index(node, index)
            elif self.current.is_op("("):
                if not isinstance(node, Name):
                    raise self._error("only named functions can be called")
                self._advance()
                node = Call(node.name, self._arguments(")"))
            else:
                return node

    def _arguments(self, closing: str) -> tuple[Node, ...]:
        args: list[Node] = []
        if self.current.is_op(closing):
            self._advance()
            return ()

        while True:
            args.append(self._or())
            if self.current.is_op(","):
                self._advance()
                # Trailing comma
                if self.current.is_op(closing):
                    break
                continue
            break

        self._expect(closing)
        return tuple(args)

    def _primary(self) -> Node:
        token = self.current

        if token.kind in (TokenKind.NUMBER, TokenKind.STRING):
            self._advance()
            return Literal(token.value)

        if token.kind == TokenKind.KEYWORD:
            if token.value == "true":
                self._advance()
                return Literal(True)
            if token.value == "false":
                self._advance()
                return Literal(False)
            if token.value == "nil":
                self._advance()
                return Literal(None)
            raise self._error("unexpected keyword")

        if token.kind == TokenKind.IDENT:
            self._advance()
            return Name(token.value)

        if token.is_op("("):
            self._advance()
            node = self._or()
            self._expect(")")
            return node

        if token.is_op("["):
            self._advance()
            return ListLiteral(self._arguments("]"))

        raise self._error("unexpected token")


def parse(text: str) -> Node:
    """Parse an include expression into a tree."""
    return Parser(text).parse()
