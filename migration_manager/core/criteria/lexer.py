"""Tokenizer for batch include expressions."""

import re
from dataclasses import dataclass
from enum import Enum

from migration_manager.core.exceptions import InvalidArgumentError


class TokenKind(str, Enum):
    NUMBER = "number"
    STRING = "string"
    IDENT = "ident"
    KEYWORD = "keyword"
    OPERATOR = "operator"
    PUNCT = "punct"
    EOF = "eof"


KEYWORDS = frozenset({
    "true",
    "false",
    "nil",
    "and",
    "or",
    "not",
    "in",
    "matches",
    "contains",
    "startsWith",
    "endsWith",
})


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: object
    pos: int

    def is_op(self, *ops: str) -> bool:
        return self.kind in (TokenKind.OPERATOR, TokenKind.KEYWORD, TokenKind.PUNCT) and self.value in ops


_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<float>\d+\.\d+(?:[eE][+-]?\d+)?|\d+[eE][+-]?\d+)
    |(?P<int>0[xX][0-9a-fA-F][0-9a-fA-F_]*|\d[\d_]*)
    |(?P<dq>"(?:[^"\\]|\\.)*")
    |(?P<sq>'(?:[^'\\]|\\.)*')
    |(?P<bq>`[^`]*`)
    |(?P<ident>[A-Za-z_$][A-Za-z0-9_$]*)
    |(?P<op>\*\*|&&|\|\||==|!=|<=|>=|[-+*/%^<>!])
    |(?P<punct>[()\[\],.])
    """,
    re.VERBOSE,
)

_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "\\": "\\",
    '"': '"',
    "'": "'",
    "0": "\0",
}
_ESCAPE_RE = re.compile(r"\\(.)")


def _unescape(body: str, pos: int) -> str:
    def replace(match: re.Match) -> str:
        char = match.group(1)
        if char not in _ESCAPES:
            raise InvalidArgumentError(f"Invalid escape sequence '\\{char}' in string at position {pos}")
        return _ESCAPES[char]

    return _ESCAPE_RE.sub(replace, body)


def tokenize(text: str) -> list[Token]:
    """Split an expression into tokens, always ending with an EOF token."""
    tokens: list[Token] = []
    pos = 0
    length = len(text)

    while pos < length:
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise InvalidArgumentError(f"Unexpected character {text[pos]!r} at position {pos}")

        group = match.lastgroup
        raw = match.group()
        if group == "float":
            tokens.append(Token(TokenKind.NUMBER, float(raw), pos))
        elif group == "int":
            digits = raw.replace("_", "")
            base = 16 if digits[:2] in ("0x", "0X") else 10
            tokens.append(Token(TokenKind.NUMBER, int(digits, base), pos))
        elif group in ("dq", "sq"):
            tokens.append(Token(TokenKind.STRING, _unescape(raw[1:-1], pos), pos))
        elif group == "bq":
            tokens.append(Token(TokenKind.STRING, raw[1:-1], pos))
        elif group == "ident":
            kind = TokenKind.KEYWORD if raw in KEYWORDS else TokenKind.IDENT
            tokens.append(Token(kind, raw, pos))
        elif group == "op":
            tokens.append(Token(TokenKind.OPERATOR, raw, pos))
        elif group == "punct":
            tokens.append(Token(TokenKind.PUNCT, raw, pos))

        pos = match.end()

    tokens.append(Token(TokenKind.EOF, None, length))
    return tokens
