"""Structural scanner turning a function body's tokens into IR operations.

The scanner walks the tokens between a body's braces once, left to right.
Dialect subclasses (:mod:`.rust`, :mod:`.solidity`) recognise their own
syntax in :meth:`BodyScanner.visit`; the shared machinery here handles
expression boundaries, target origins, arithmetic and data flow into
storage.
"""
from __future__ import annotations

from bisect import bisect_left
from dataclasses import dataclass, field
import re

from .cfg import PendingOp
from .ir import (
    ArithmeticOp,
    BoundKind,
    Branch,
    InternalCall,
    Loop,
    Operation,
    Parameter,
    SourceLocation,
    StorageSlot,
    StorageWrite,
    TargetOrigin,
)
from .lexer import Token, TokenKind, join_tokens, match_backward, match_forward

__all__ = ["BodyScanner", "ScanContext", "ScanResult", "literal_value", "type_bits"]

_BINARY_OPERATORS = frozenset({"+", "-", "*", "/", "%", "**"})
_COMPOUND_OPERATORS = frozenset({"+=", "-=", "*=", "/=", "%=", "**="})

_KEYWORDS = frozenset(
    {
        "return", "in", "let", "mut", "if", "else", "match", "while", "for", "loop", "as",
        "require", "assert", "revert", "emit", "new", "delete", "memory", "storage", "calldata",
        "break", "continue", "unchecked", "unsafe", "move", "ref", "const", "do",
    }
)

# Names that wrap an address expression without changing where it came from.
_WRAPPERS = frozenset(
    {
        "payable", "address", "Address", "from", "into", "clone", "to_owned", "U256", "uint256",
        "uint160", "bytes20", "Some", "Ok", "unwrap", "expect", "as_ref", "borrow",
    }
)

_INTERFACE_NAME = re.compile(r"^I[A-Z]\w*$")

_CALLER_SEQUENCES: tuple[tuple[str, ...], ...] = (
    ("msg", "::", "sender"),
    ("msg", ".", "sender"),
    ("tx", ".", "origin"),
    ("tx", "::", "origin"),
    ("_msgSender", "("),
    ("msg_sender", "("),
    ("self", ".", "vm", "(", ")", ".", "msg_sender"),
)

_GUARD_CALL = re.compile(
    r"^(?:_?has_?[Rr]ole|_?is_?[Oo]wner|_?only_?[A-Za-z]+|_?check_?(?:[Oo]wner|[Rr]ole|[Aa]dmin|[Aa]uth\w*)"
    r"|_?ensure_?[Oo]wner|_?assert_?[Oo]wner|_?require_?(?:[Oo]wner|[Aa]dmin|[Rr]ole|[Aa]uth\w*)"
    r"|_?is_?[Aa]dmin|_?is_?[Aa]uthori[sz]ed|_?is_?[Oo]perator)$"
)

_ALLOW_LIST_SLOT = re.compile(
    r"(?i)(white_?list|allow(ed|_?list)?|authori[sz]ed|admins?|operators?|minters?|roles?|owners|guardians?|trusted)"
)

_REVERT_IDENTS = frozenset({"revert", "panic", "throw", "Err", "unreachable"})

_INDEX_METHODS = frozenset({"get", "getter", "setter", "get_mut", "insert"})

_INT_TYPE = re.compile(r"^(?:Storage)?(?:[uUiI]|[Uu]?[Ii]nt|Uint|Int)(\d+)\b")


def type_bits(declared_type: str) -> int:
    """Bit width of an integer type name; 256 when unknown."""
    text = declared_type.strip()
    if text in ("uint", "int"):
        return 256
    if text in ("usize", "isize"):
        return 32
    match = _INT_TYPE.match(text)
    if match:
        bits = int(match.group(1))
        if 8 <= bits <= 256:
            return bits
    return 256


_NUMBER_LITERAL = re.compile(r"^(0[xX][0-9a-fA-F_]+|\d[\d_]*)(?:_?[a-zA-Z]\w*)?$")
_WRAPPED_LITERAL = re.compile(r"^(?:U\d+|uint\d*|u\d+)(?:::from)?\((.+)\)$")


def literal_value(text: str) -> int | None:
    """Integer value of a literal operand such as ``7``, ``0x10u64`` or ``U256::from(5)``."""
    text = text.strip().replace(" ", "")
    wrapped = _WRAPPED_LITERAL.match(text)
    if wrapped:
        text = wrapped.group(1)
    if text.endswith("::ZERO"):
        return 0
    match = _NUMBER_LITERAL.match(text)
    if not match:
        return None
    digits = match.group(1).replace("_", "")
    return int(digits, 16) if digits[:2].lower() == "0x" else int(digits)


@dataclass(slots=True)
class ScanContext:
    """Contract-level facts a body scan needs."""

    storage: dict[str, StorageSlot]
    functions: frozenset[str]
    parameters: tuple[Parameter, ...] = ()
    checked_arithmetic: bool = False
    interfaces: frozenset[str] = frozenset()


@dataclass(slots=True)
class _ArithRecord:
    anchor: int
    operator: str
    left: str
    right: str
    location: SourceLocation
    checked: bool
    wrapping: bool
    bits: int
    used_as_index: bool
    assigned: str | None


@dataclass(slots=True)
class ScanResult:
    pending: list[PendingOp] = field(default_factory=list)
    internal_calls: list[str] = field(default_factory=list)


class BodyScanner:
    """Base scanner; subclasses implement :meth:`visit` for one dialect."""

    def __init__(self, tokens: list[Token], start: int, end: int, context: ScanContext) -> None:
        self.tokens = tokens
        self.start = start
        self.end = end
        self.ctx = context
        self.params = {parameter.name: parameter for parameter in context.parameters}
        self.locals: dict[str, TargetOrigin] = {}
        self.local_bits: dict[str, int] = {}
        self.result = ScanResult()
        self._arith: list[_ArithRecord] = []
        self._write_statements: list[tuple[int, int]] = []
        self._assignments: list[tuple[str, int, int]] = []
        self._unchecked: list[tuple[int, int]] = []
        self._boundaries = [
            index for index in range(start, end + 1) if tokens[index].is_punct(";", "{", "}")
        ]
        self._enclosing = self._compute_enclosing()

    # -- entry point -----------------------------------------------------

    def scan(self) -> ScanResult:
        index = self.start + 1
        while index < self.end:
            index = max(self.visit(index), index + 1)
        self._finish_arithmetic()
        return self.result

    def visit(self, index: int) -> int:
        """Recognise the construct starting at *index*; return the next index to visit."""
        raise NotImplementedError

    # -- token helpers ---------------------------------------------------

    def tok(self, index: int) -> Token:
        if index < 0 or index >= len(self.tokens):
            return _EOF
        return self.tokens[index]

    def seq(self, index: int, *texts: str) -> bool:
        return all(self.tok(index + offset).text == text for offset, text in enumerate(texts))

    def text(self, start: int, end: int) -> str:
        if end < start:
            return ""
        return join_tokens(self.tokens[start : end + 1])

    def location(self, index: int) -> SourceLocation:
        return self.tokens[index].location

    def stmt_start(self, index: int) -> int:
        position = bisect_left(self._boundaries, index)
        return self._boundaries[position - 1] + 1 if position > 0 else self.start + 1

    def stmt_end(self, index: int) -> int:
        position = bisect_left(self._boundaries, index)
        return self._boundaries[position] if position < len(self._boundaries) else self.end

    def enclosing(self, index: int) -> int:
        return self._enclosing.get(index, -1)

    def _compute_enclosing(self) -> dict[int, int]:
        stack: list[int] = []
        enclosing: dict[int, int] = {}
        for index in range(self.start, self.end + 1):
            token = self.tokens[index]
            if token.is_punct(")", "]") and stack:
                stack.pop()
            enclosing[index] = stack[-1] if stack else -1
            if token.is_punct("(", "["):
                stack.append(index)
            elif token.is_punct("{", "}", ";"):
                stack.clear()
        return enclosing

    def closing(self, index: int) -> int:
        """Matching close for the bracket at *index*, bounded by the body; -1 if unbalanced."""
        pairs = {"(": ")", "[": "]", "{": "}"}
        opening = self.tokens[index].text
        return match_forward(self.tokens, index, opening, pairs[opening], limit=self.end + 1)

    def primary_back(self, index: int) -> int:
        """Start index of the postfix expression ending at token *index*."""
        tokens = self.tokens
        j = index
        while j > self.start:
            token = tokens[j]
            if token.is_punct(")", "]"):
                opening = "(" if token.text == ")" else "["
                k = match_backward(tokens, j, opening, token.text)
                if k <= self.start:
                    return j
                j = k
                previous = tokens[j - 1]
                if previous.is_punct("!") and tokens[j - 2].kind is TokenKind.IDENT:
                    j -= 2
                    continue
                if (previous.kind is TokenKind.IDENT and previous.text not in _KEYWORDS) or previous.is_punct(
                    ")", "]"
                ):
                    j -= 1
                    continue
                return j
            if token.kind in (TokenKind.IDENT, TokenKind.NUMBER, TokenKind.STRING):
                previous = tokens[j - 1]
                if previous.is_punct(".", "::") and j - 2 > self.start:
                    j -= 2
                    continue
                return j
            return j
        return j

    def primary_forward(self, index: int) -> int:
        """End index of the postfix expression starting at token *index*."""
        tokens = self.tokens
        j = index
        while j < self.end and (tokens[j].is_punct("&", "*", "!", "-") or tokens[j].is_ident("mut")):
            j += 1
        token = tokens[j]
        if token.is_punct("(", "["):
            k = self.closing(j)
            if k < 0:
                return index
            j = k
        elif token.kind not in (TokenKind.IDENT, TokenKind.NUMBER, TokenKind.STRING):
            return index
        while j + 1 < self.end:
            following = tokens[j + 1]
            if following.is_punct("(", "["):
                k = self.closing(j + 1)
                if k < 0:
                    break
                j = k
                continue
            if following.is_punct("!") and tokens[j + 2].is_punct("(", "["):
                k = self.closing(j + 2)
                if k < 0:
                    break
                j = k
                continue
            if following.is_punct(".", "::") and tokens[j + 2].kind in (TokenKind.IDENT, TokenKind.NUMBER):
                j += 2
                continue
            if following.is_punct("?"):
                j += 1
                continue
            break
        return j

    def split_args(self, open_index: int) -> list[tuple[int, int]]:
        """Argument token ranges (inclusive) of the group opened at *open_index*."""
        close = self.closing(open_index)
        if close < 0 or close == open_index + 1:
            return []
        ranges: list[tuple[int, int]] = []
        depth = 0
        begin = open_index + 1
        for index in range(open_index + 1, close):
            token = self.tokens[index]
            if token.is_punct("(", "[", "{"):
                depth += 1
            elif token.is_punct(")", "]", "}"):
                depth -= 1
            elif token.is_punct(",") and depth == 0:
                ranges.append((begin, index - 1))
                begin = index + 1
        if begin <= close - 1:
            ranges.append((begin, close - 1))
        return ranges

    def idents(self, start: int, end: int) -> set[str]:
        return {
            self.tokens[index].text
            for index in range(start, end + 1)
            if self.tokens[index].kind is TokenKind.IDENT
        }

    # -- classification --------------------------------------------------

    def is_caller(self, index: int) -> bool:
        return any(self.seq(index, *sequence) for sequence in _CALLER_SEQUENCES)

    def contains_caller(self, start: int, end: int) -> bool:
        return any(self.is_caller(index) for index in range(start, end + 1))

    def storage_ref(self, index: int) -> str | None:
        """Storage slot referenced by the expression starting at *index*, if any."""
        raise NotImplementedError

    def origin(self, start: int, end: int) -> TargetOrigin:
        """Where the value of the expression in [start, end] comes from."""
        j = start
        while j <= end:
            token = self.tokens[j]
            if token.kind in (TokenKind.NUMBER, TokenKind.STRING):
                return TargetOrigin.LITERAL
            if token.kind is TokenKind.IDENT:
                if self.is_caller(j):
                    return TargetOrigin.CALLER
                if self.storage_ref(j) is not None:
                    return TargetOrigin.STORAGE
                name = token.text
                if name in self.locals:
                    return self.locals[name]
                if name in self.params:
                    return TargetOrigin.PARAMETER
                if name in _WRAPPERS or name in self.ctx.interfaces or _INTERFACE_NAME.match(name) or name == "self":
                    j += 1
                    continue
                if name.isupper() and len(name) > 1:
                    return TargetOrigin.LITERAL
                return TargetOrigin.UNKNOWN
            j += 1
        return TargetOrigin.UNKNOWN

    def bound_kind(self, start: int, end: int) -> BoundKind:
        if end < start:
            return BoundKind.UNKNOWN
        saw_local = False
        saw_param = False
        for index in range(start, end + 1):
            token = self.tokens[index]
            if token.kind is not TokenKind.IDENT:
                continue
            if self.storage_ref(index) is not None:
                return BoundKind.STORAGE
            if token.text in self.params:
                saw_param = True
            elif token.text in self.locals:
                saw_local = True
        if saw_param:
            return BoundKind.PARAMETER
        if saw_local:
            return BoundKind.UNKNOWN
        constant = all(
            token.kind in (TokenKind.NUMBER, TokenKind.PUNCT)
            or (token.kind is TokenKind.IDENT and (token.text.isupper() or token.text in _WRAPPERS))
            for token in self.tokens[start : end + 1]
        )
        return BoundKind.CONSTANT if constant else BoundKind.UNKNOWN

    def operand_bits(self, start: int, end: int) -> int | None:
        for index in range(start, end + 1):
            token = self.tokens[index]
            if token.kind is not TokenKind.IDENT:
                continue
            slot = self.storage_ref(index)
            if slot is not None and slot in self.ctx.storage:
                return self.ctx.storage[slot].value_bits
            if token.text in self.params:
                return type_bits(self.params[token.text].declared_type)
            if token.text in self.local_bits:
                return self.local_bits[token.text]
        return None

    def block_reverts(self, open_index: int, close_index: int) -> bool:
        for index in range(open_index + 1, close_index):
            token = self.tokens[index]
            if token.kind is TokenKind.IDENT and token.text in _REVERT_IDENTS:
                return True
        return False

    def is_access_condition(self, start: int, end: int) -> bool:
        """True when the condition authenticates the caller."""
        for index in range(start, end + 1):
            token = self.tokens[index]
            if token.kind is TokenKind.IDENT and _GUARD_CALL.match(token.text) and self.tok(index + 1).is_punct("("):
                return True
            if token.is_punct("==", "!="):
                left = self.primary_back(index - 1)
                if self.is_caller(left) or self.is_caller(index + 1) or self.is_caller(index + 2):
                    return True
            if token.kind is TokenKind.IDENT:
                slot = self.storage_ref(index)
                if slot is not None and _ALLOW_LIST_SLOT.search(slot):
                    close = self.primary_forward(index)
                    if self.contains_caller(index, close):
                        return True
        return False

    # -- emission --------------------------------------------------------

    def emit(self, anchor: int, op: Operation, block_end: int | None = None) -> None:
        self.result.pending.append(PendingOp(anchor, op, block_end))

    def emit_write(self, index: int, slot: str, keyed_by: str | None) -> None:
        statement_start = self.stmt_start(index)
        statement_end = self.stmt_end(index)
        self._write_statements.append((statement_start, statement_end))
        # Writes take effect once the statement's expression has been evaluated.
        self.emit(statement_end, StorageWrite(slot, self.location(statement_start), keyed_by))

    def emit_loop(self, keyword: int, bound_start: int, bound_end: int, body_end: int, bound_kind: BoundKind | None = None) -> None:
        kind = bound_kind if bound_kind is not None else self.bound_kind(bound_start, bound_end)
        self.emit(keyword, Loop(self.text(bound_start, bound_end), kind, self.location(keyword)), body_end)

    def emit_branch(self, keyword: int, cond_start: int, cond_end: int, *, reverts: bool, block_end: int | None = None) -> None:
        branch = Branch(
            self.text(cond_start, cond_end),
            self.location(keyword),
            is_access_check=self.is_access_condition(cond_start, cond_end),
            reverts=reverts,
        )
        self.emit(keyword, branch, block_end)

    def emit_internal_call(self, index: int, name: str) -> None:
        self.emit(index, InternalCall(name, self.location(index)))
        if name not in self.result.internal_calls:
            self.result.internal_calls.append(name)
        if _GUARD_CALL.match(name):
            self.emit(index, Branch(f"{name}()", self.location(index), is_access_check=True, reverts=True))

    def mark_unchecked(self, open_index: int, close_index: int) -> None:
        self._unchecked.append((open_index, close_index))

    def in_unchecked(self, index: int) -> bool:
        return any(start < index < end for start, end in self._unchecked)

    def record_assignment(self, name: str, value_start: int, value_end: int, declared_type: str | None = None) -> None:
        self.locals[name] = self.origin(value_start, value_end)
        if declared_type:
            self.local_bits[name] = type_bits(declared_type)
        else:
            bits = self.operand_bits(value_start, value_end)
            if bits is not None:
                self.local_bits[name] = bits
        self._assignments.append((name, value_start, value_end))

    # -- arithmetic ------------------------------------------------------

    def is_binary_context(self, index: int) -> bool:
        previous = self.tok(index - 1)
        if previous.kind is TokenKind.IDENT:
            return previous.text not in _KEYWORDS
        return previous.kind in (TokenKind.NUMBER, TokenKind.STRING) or previous.is_punct(")", "]", "?")

    def default_checked(self, index: int) -> bool:
        return self.ctx.checked_arithmetic and not self.in_unchecked(index)

    def visit_operator(self, index: int) -> bool:
        """Record arithmetic at *index* if it is a binary or compound operator."""
        token = self.tokens[index]
        if token.kind is not TokenKind.PUNCT:
            return False
        if token.text in _COMPOUND_OPERATORS:
            left_start = self.primary_back(index - 1)
            right_end = self.stmt_end(index) - 1
            self.record_arithmetic(
                index, token.text[:-1], (left_start, index - 1), (index + 1, right_end),
                assigned=self.text(left_start, index - 1),
            )
            return True
        if token.text in _BINARY_OPERATORS and self.is_binary_context(index):
            left_start = self.primary_back(index - 1)
            right_end = self.primary_forward(index + 1)
            self.record_arithmetic(index, token.text, (left_start, index - 1), (index + 1, right_end))
            return True
        return False

    def record_arithmetic(
        self,
        index: int,
        operator: str,
        left: tuple[int, int],
        right: tuple[int, int],
        *,
        checked: bool | None = None,
        wrapping: bool = False,
        assigned: str | None = None,
        right_text: str | None = None,
    ) -> None:
        bits = [b for b in (self.operand_bits(*left), self.operand_bits(*right)) if b is not None]
        enclosing = self.enclosing(index)
        used_as_index = False
        if enclosing >= 0:
            opener = self.tokens[enclosing]
            used_as_index = opener.is_punct("[") or (
                self.tok(enclosing - 1).text in _INDEX_METHODS and self.tok(enclosing - 2).is_punct(".")
            )
        self._arith.append(
            _ArithRecord(
                anchor=index,
                operator=operator,
                left=self.text(*left),
                right=right_text if right_text is not None else self.text(*right),
                location=self.location(index),
                checked=self.default_checked(index) if checked is None else checked,
                wrapping=wrapping,
                bits=max(bits) if bits else 256,
                used_as_index=used_as_index,
                assigned=assigned if assigned is not None else self._assigned_name(index),
            )
        )

    def _assigned_name(self, index: int) -> str | None:
        start = self.stmt_start(index)
        for j in range(start, index):
            token = self.tokens[j]
            if token.is_punct("=") and self.tok(j - 1).kind is TokenKind.IDENT:
                if self.tok(start).is_ident("let"):
                    name_index = start + 2 if self.tok(start + 1).is_ident("mut") else start + 1
                    return self.tok(name_index).text
                return self.tok(j - 1).text
        return None

    def _sink_names(self) -> set[str]:
        sinks: set[str] = set()
        for start, end in self._write_statements:
            sinks |= self.idents(start, end)
        changed = True
        while changed:
            changed = False
            for name, value_start, value_end in self._assignments:
                if name in sinks:
                    extra = self.idents(value_start, value_end) - sinks
                    if extra:
                        sinks |= extra
                        changed = True
        return sinks

    def _finish_arithmetic(self) -> None:
        if not self._arith:
            return
        sinks = self._sink_names()
        for record in self._arith:
            in_write = any(start <= record.anchor <= end for start, end in self._write_statements)
            root = (record.assigned or "").split(".")[0].split("[")[0]
            flows = in_write or (bool(root) and root in sinks)
            self.emit(
                record.anchor,
                ArithmeticOp(
                    record.operator,
                    record.left,
                    record.right,
                    record.location,
                    checked=record.checked,
                    wrapping=record.wrapping,
                    flows_to_storage=flows,
                    used_as_index=record.used_as_index,
                    operand_bits=record.bits,
                ),
            )


_EOF = Token(TokenKind.PUNCT, "", 0, 0, -1)
