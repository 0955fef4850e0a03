"""Regex tokenizer shared by the Stylus Rust and Solidity front ends."""
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
import re

from .ir import SourceLocation


class TokenKind(StrEnum):
    IDENT = "ident"
    NUMBER = "number"
    STRING = "string"
    DOC = "doc"
    PUNCT = "punct"


@dataclass(slots=True, frozen=True)
class Token:
    kind: TokenKind
    text: str
    line: int
    column: int
    offset: int

    @property
    def location(self) -> SourceLocation:
        return SourceLocation(self.line, self.column)

    def is_ident(self, *names: str) -> bool:
        return self.kind is TokenKind.IDENT and (not names or self.text in names)

    def is_punct(self, *symbols: str) -> bool:
        return self.kind is TokenKind.PUNCT and self.text in symbols


_PUNCTUATORS = (
    "<<=", ">>=", "**=", "...", "..=",
    "::", "->", "=>", "==", "!=", "<=", ">=", "&&", "||", "+=", "-=", "*=", "/=", "%=",
    "&=", "|=", "^=", "++", "--", "**", "<<", ">>", "..",
)

_TOKEN_TEMPLATE = r"""
    (?P<ws>\s+)
  | (?P<doc>///(?!/)[^\n]*|/\*\*(?!/)[\s\S]*?\*/)
  | (?P<comment>//[^\n]*|/\*[\s\S]*?(?:\*/|\Z))
  | (?P<string>b?r\#*"[\s\S]*?(?:"\#*|\Z)|b?"(?:\\.|[^"\\])*(?:"|\Z)|QUOTED)
  | (?P<lifetime>'[A-Za-z_]\w*)
  | (?P<number>0[xX][0-9a-fA-F_]+\w*|\d[\d_]*(?:\.\d+)?(?:[eE]\d+)?\w*)
  | (?P<ident>[A-Za-z_$]\w*)
  | (?P<punct>PUNCT|[^\sA-Za-z0-9_])
"""


def _compile(quoted: str) -> re.Pattern[str]:
    pattern = _TOKEN_TEMPLATE.replace("QUOTED", quoted).replace(
        "PUNCT", "|".join(re.escape(p) for p in _PUNCTUATORS)
    )
    return re.compile(pattern, re.VERBOSE | re.MULTILINE)


# Rust: single quotes are char literals or lifetimes. Solidity: ordinary strings.
_RUST_RE = _compile(r"'(?:\\.|[^'\\\n])'")
_SOLIDITY_RE = _compile(r"'(?:\\.|[^'\\\n])*'")


def _clean_doc(raw: str) -> str:
    if raw.startswith("///"):
        return raw[3:].strip()
    body = raw[3:-2]
    lines = [line.strip().lstrip("*").strip() for line in body.splitlines()]
    return "\n".join(line for line in lines if line)


def tokenize(text: str, *, single_quoted_strings: bool = False) -> list[Token]:
    """Tokenize *text*, dropping whitespace and plain comments but keeping doc comments."""
    token_re = _SOLIDITY_RE if single_quoted_strings else _RUST_RE
    tokens: list[Token] = []
    line = 1
    line_start = 0
    for match in token_re.finditer(text):
        group = match.lastgroup
        value = match.group()
        start = match.start()
        column = start - line_start + 1
        if group == "doc":
            tokens.append(Token(TokenKind.DOC, _clean_doc(value), line, column, start))
        elif group == "string":
            tokens.append(Token(TokenKind.STRING, value, line, column, start))
        elif group == "number":
            tokens.append(Token(TokenKind.NUMBER, value, line, column, start))
        elif group in ("ident", "lifetime"):
            tokens.append(Token(TokenKind.IDENT, value, line, column, start))
        elif group == "punct":
            tokens.append(Token(TokenKind.PUNCT, value, line, column, start))
        newlines = value.count("\n")
        if newlines:
            line += newlines
            line_start = start + value.rfind("\n") + 1
    return tokens


def match_forward(tokens: list[Token], start: int, opening: str, closing: str, limit: int | None = None) -> int:
    """Index of the token closing the group opened at *start*, or -1 if unbalanced."""
    end = len(tokens) if limit is None else min(limit, len(tokens))
    depth = 0
    for index in range(start, end):
        token = tokens[index]
        if token.kind is not TokenKind.PUNCT:
            continue
        if token.text == opening:
            depth += 1
        elif token.text == closing:
            depth -= 1
            if depth == 0:
                return index
    return -1


def match_backward(tokens: list[Token], start: int, opening: str, closing: str) -> int:
    """Index of the token opening the group closed at *start*, or -1."""
    depth = 0
    for index in range(start, -1, -1):
        token = tokens[index]
        if token.kind is not TokenKind.PUNCT:
            continue
        if token.text == closing:
            depth += 1
        elif token.text == opening:
            depth -= 1
            if depth == 0:
                return index
    return -1


def join_tokens(tokens: list[Token]) -> str:
    """Render tokens back to compact text for conditions and operands."""
    parts: list[str] = []
    previous: Token | None = None
    for token in tokens:
        if previous is not None and _needs_space(previous, token):
            parts.append(" ")
        parts.append(token.text)
        previous = token
    return "".join(parts)


_TIGHT = frozenset({".", "::", "(", "[", "!", "&"})


def _needs_space(previous: Token, token: Token) -> bool:
    if previous.text in _TIGHT or token.text in (".", "::", "(", ")", "[", "]", ",", ";", "?", ":"):
        return False
    return True
