"""Front end for Solidity contracts.

Solidity sources are analysed alongside Stylus programs so that mixed
deployments share one report. Only the most-derived contract of a file (and
the bases it inherits from within the same file) is modelled.
"""
from __future__ import annotations

from dataclasses import dataclass
import re

from .body import BodyScanner, ScanContext
from .hostio import SOLIDITY_ENV_MEMBERS
from .ir import (
    BoundKind,
    Branch,
    CallKind,
    Dialect,
    Emit,
    EnvRead,
    ExternalCall,
    MemoryAlloc,
    Modifier,
    ModifierKind,
    Mutability,
    Parameter,
    ResultHandling,
    SourceLocation,
    StorageRead,
    StorageSlot,
    StorageWrite,
    TargetOrigin,
    UnsafeCode,
    Visibility,
)
from .lexer import Token, TokenKind, join_tokens, match_backward, match_forward, tokenize
from .source import REENTRANCY_GUARD_NAME, FunctionHeader, MalformedFunction, SourceFrontEnd, solidity_declaration

_PRAGMA = re.compile(r"pragma\s+solidity\s+([^;]+);")
_VERSION = re.compile(r"(\d+)\.(\d+)")
_INTERFACE_NAME = re.compile(r"^I[A-Z]\w*$")

_MEMBER_KEYWORDS = frozenset(
    {"function", "modifier", "event", "error", "struct", "enum", "constructor", "receive", "fallback", "using", "type"}
)
_VISIBILITIES = {
    "public": Visibility.PUBLIC,
    "external": Visibility.EXTERNAL,
    "internal": Visibility.INTERNAL,
    "private": Visibility.PRIVATE,
}
_MUTABILITIES = {
    "view": Mutability.VIEW,
    "pure": Mutability.PURE,
    "constant": Mutability.VIEW,
    "payable": Mutability.PAYABLE,
}
_DATA_LOCATIONS = frozenset({"memory", "storage", "calldata", "payable", "indexed"})
_LOW_LEVEL = {"call": CallKind.CALL, "delegatecall": CallKind.DELEGATE, "staticcall": CallKind.STATIC}
_BOOL_RETURNING = frozenset({"transfer", "transferFrom", "approve"})
_SAFE_MATH = {"add": "+", "sub": "-", "mul": "*", "div": "/", "mod": "%"}
_GUARD_MODIFIER = re.compile(r"(?i)^(only\w*|auth\w*|restricted|requires?\w*[Rr]ole\w*|isOwner|isAdmin)$")
_REENTRANCY_MODIFIER = re.compile(r"(?i)^(nonReentrant|noReentrancy|lock|mutex|reentrancyGuard)$")
_COMPOUND = frozenset({"+=", "-=", "*=", "/=", "%=", "**="})


@dataclass(slots=True)
class _Container:
    kind: str
    name: str
    open: int
    close: int
    bases: tuple[str, ...]
    abstract: bool = False


def _is_interface_type(name: str, interfaces: frozenset[str]) -> bool:
    return name in interfaces or bool(_INTERFACE_NAME.match(name))


class SolidityBodyScanner(BodyScanner):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._aliases: dict[str, str] = {}
        self._typed: dict[str, str] = {
            parameter.name: parameter.declared_type.split()[0]
            for parameter in self.ctx.parameters
            if parameter.declared_type and _is_interface_type(parameter.declared_type.split()[0], self.ctx.interfaces)
        }
        self._skip: set[int] = set()

    def storage_ref(self, index: int) -> str | None:
        token = self.tok(index)
        if token.kind is not TokenKind.IDENT or self.tok(index - 1).is_punct("."):
            return None
        if token.text in self._aliases:
            return self._aliases[token.text]
        if token.text in self.locals or token.text in self.params:
            return None
        if token.text in self.ctx.storage and not self.tok(index + 1).is_punct("("):
            return token.text
        return None

    def visit(self, index: int) -> int:
        if index in self._skip:
            return index + 1
        token = self.tokens[index]
        if token.kind is TokenKind.PUNCT:
            if token.text in ("++", "--"):
                return self._visit_increment(index)
            if token.text == "=":
                self._visit_assign(index)
                return index + 1
            self.visit_operator(index)
            return index + 1
        if token.kind is not TokenKind.IDENT:
            return index + 1

        name = token.text
        following = self.tok(index + 1)
        handler = _KEYWORD_HANDLERS.get(name)
        if handler is not None and not self.tok(index - 1).is_punct("."):
            result = handler(self, index)
            if result is not None:
                return result
        if following.is_punct(".") and (name, self.tok(index + 2).text) in SOLIDITY_ENV_MEMBERS:
            if name not in self.locals and name not in self.params:
                self.emit(index, EnvRead(SOLIDITY_ENV_MEMBERS[(name, self.tok(index + 2).text)], self.location(index)))
                return index + 3
        if name in ("abi", "string", "bytes") and following.is_punct(".") and self.tok(index + 3).is_punct("("):
            member = self.tok(index + 2).text
            if member.startswith("encode") or member == "concat":
                self.emit(index, MemoryAlloc(f"{name}.{member}", self.location(index), preallocated=True))
                return index + 3
        slot = self.storage_ref(index)
        if slot is not None:
            return self._visit_storage(index, slot)
        if self.tok(index - 1).is_punct(".") and following.is_punct("(", "{"):
            self._visit_member_call(index)
            return index + 1
        if following.is_punct("(") and not self.tok(index - 1).is_punct("."):
            if name == "gasleft":
                self.emit(index, EnvRead("gasleft", self.location(index)))
            elif name == "blockhash":
                self.emit(index, EnvRead("block.blockhash", self.location(index)))
            elif name in self.ctx.functions and not self.tok(index - 1).is_ident("function", "emit", "new"):
                self.emit_internal_call(index, name)
            return index + 1
        if name == "now" and name not in self.locals:
            self.emit(index, EnvRead("block.timestamp", self.location(index)))
        return index + 1

    # -- statements --------------------------------------------------------

    def _statement_end(self, begin: int) -> int:
        if self.tok(begin).is_punct("{"):
            close = self.closing(begin)
            return close if close >= 0 else self.end
        return self.stmt_end(begin)

    def _visit_if(self, index: int) -> int | None:
        if not self.tok(index + 1).is_punct("("):
            return None
        close = self.closing(index + 1)
        if close < 0:
            return None
        block_end = self._statement_end(close + 1)
        if self.tok(close + 1).is_punct("{"):
            reverts = self.block_reverts(close + 1, block_end)
        else:
            reverts = self.block_reverts(close, block_end + 1)
        self.emit_branch(index, index + 2, close - 1, reverts=reverts, block_end=block_end)
        return index + 1

    def _visit_require(self, index: int) -> int | None:
        if not self.tok(index + 1).is_punct("("):
            return None
        args = self.split_args(index + 1)
        if args:
            self.emit_branch(index, args[0][0], args[0][1], reverts=True)
        return index + 1

    def _visit_for(self, index: int) -> int | None:
        if not self.tok(index + 1).is_punct("("):
            return None
        close = self.closing(index + 1)
        if close < 0:
            return None
        separators = []
        depth = 0
        for j in range(index + 2, close):
            token = self.tokens[j]
            if token.is_punct("(", "["):
                depth += 1
            elif token.is_punct(")", "]"):
                depth -= 1
            elif token.is_punct(";") and depth == 0:
                separators.append(j)
        body_end = self._statement_end(close + 1)
        if len(separators) < 2 or separators[1] == separators[0] + 1:
            self.emit_loop(index, index, index - 1, body_end, BoundKind.UNBOUNDED)
            return index + 1
        cond_start, cond_end = separators[0] + 1, separators[1] - 1
        bound_start = cond_start
        for j in range(cond_start, cond_end + 1):
            if self.tokens[j].is_punct("<", "<=", "!="):
                bound_start = j + 1
                break
        self.emit_loop(index, bound_start, cond_end, body_end)
        return index + 1

    def _visit_while(self, index: int) -> int | None:
        if not self.tok(index + 1).is_punct("("):
            return None
        close = self.closing(index + 1)
        if close < 0:
            return None
        body_end = self._statement_end(close + 1)
        if self.seq(index + 1, "(", "true", ")"):
            self.emit_loop(index, index + 2, index + 2, body_end, BoundKind.UNBOUNDED)
        else:
            self.emit_loop(index, index + 2, close - 1, body_end)
        return index + 1

    def _visit_do(self, index: int) -> int | None:
        if not self.tok(index + 1).is_punct("{"):
            return None
        close = self.closing(index + 1)
        if close < 0 or not self.tok(close + 1).is_ident("while") or not self.tok(close + 2).is_punct("("):
            return None
        cond_close = self.closing(close + 2)
        if cond_close < 0:
            return None
        self._skip.add(close + 1)
        if self.seq(close + 2, "(", "true", ")"):
            self.emit_loop(index, close + 3, close + 3, close, BoundKind.UNBOUNDED)
        else:
            self.emit_loop(index, close + 3, cond_close - 1, close)
        return index + 1

    def _visit_unchecked(self, index: int) -> int | None:
        if not self.tok(index + 1).is_punct("{"):
            return None
        close = self.closing(index + 1)
        self.mark_unchecked(index + 1, close if close >= 0 else self.end)
        return index + 1

    def _visit_assembly(self, index: int) -> int | None:
        self.emit(index, UnsafeCode("inline assembly", self.location(index)))
        for j in range(index + 1, min(index + 6, self.end)):
            if self.tokens[j].is_punct("{"):
                close = self.closing(j)
                return close + 1 if close >= 0 else self.end
        return index + 1

    def _visit_selfdestruct(self, index: int) -> int | None:
        if not self.tok(index + 1).is_punct("("):
            return None
        self.emit(index, UnsafeCode("selfdestruct", self.location(index)))
        return index + 1

    def _visit_emit(self, index: int) -> int | None:
        event = self.tok(index + 1)
        if event.kind is not TokenKind.IDENT:
            return None
        j = index + 1
        while self.tok(j + 1).is_punct(".") and self.tok(j + 2).kind is TokenKind.IDENT:
            j += 2
        self.emit(index, Emit(self.tokens[j].text, self.location(index)))
        return j + 1

    def _visit_delete(self, index: int) -> int | None:
        slot = self.storage_ref(index + 1)
        if slot is None:
            return None
        self.emit_write(index, slot, self._first_key(index + 1, self.primary_forward(index + 1)))
        return index + 2

    def _visit_new(self, index: int) -> int | None:
        type_token = self.tok(index + 1)
        if type_token.kind is not TokenKind.IDENT:
            return None
        following = self.tok(index + 2)
        if following.is_punct("[") or type_token.text in ("bytes", "string"):
            self.emit(index, MemoryAlloc(f"new {type_token.text}", self.location(index), preallocated=True))
        elif following.is_punct("(", "{"):
            value = following.is_punct("{") and self._has_value_option(index + 2)
            self.emit(
                index,
                ExternalCall(
                    type_token.text,
                    CallKind.CREATE,
                    self.location(index),
                    target_origin=TargetOrigin.LITERAL,
                    handling=ResultHandling.IMPLICIT,
                    value_transfer=value,
                ),
            )
        return index + 2

    # -- storage and locals --------------------------------------------------

    def _first_key(self, start: int, end: int) -> str | None:
        for j in range(start, end + 1):
            if self.tokens[j].is_punct("["):
                close = self.closing(j)
                if close > j + 1:
                    return self.text(j + 1, close - 1)
                return None
        return None

    def _visit_storage(self, index: int, slot: str) -> int:
        j = index
        while True:
            following = self.tok(j + 1)
            if following.is_punct("["):
                close = self.closing(j + 1)
                if close < 0:
                    break
                j = close
                continue
            if (
                following.is_punct(".")
                and self.tok(j + 2).kind is TokenKind.IDENT
                and not self.tok(j + 3).is_punct("(", "{")
            ):
                j += 2
                continue
            break
        keyed_by = self._first_key(index, j)
        after = self.tok(j + 1)
        location = self.location(index)
        if after.is_punct("="):
            self.emit_write(index, slot, keyed_by)
        elif after.kind is TokenKind.PUNCT and after.text in _COMPOUND:
            self.emit(index, StorageRead(slot, location, keyed_by))
            self.emit_write(index, slot, keyed_by)
        elif after.is_punct("++", "--") or self.tok(index - 1).is_punct("++", "--"):
            pass
        elif after.is_punct(".") and self.tok(j + 2).is_ident("push", "pop") and self.tok(j + 3).is_punct("("):
            self.emit_write(index, slot, keyed_by)
        else:
            self.emit(index, StorageRead(slot, location, keyed_by))
        return index + 1

    def _visit_increment(self, index: int) -> int:
        operator = "+" if self.tokens[index].text == "++" else "-"
        postfix = self.is_binary_context(index)
        if postfix:
            start, end = self.primary_back(index - 1), index - 1
        else:
            start, end = index + 1, self.primary_forward(index + 1)
        if end < start:
            return index + 1
        slot = self.storage_ref(start)
        if slot is not None:
            keyed_by = self._first_key(start, end)
            self.emit(index, StorageRead(slot, self.location(start), keyed_by))
            self.emit_write(index, slot, keyed_by)
        self.record_arithmetic(
            index, operator, (start, end), (index, index), right_text="1", assigned=self.text(start, end)
        )
        return index + 1 if postfix else end + 1

    def _visit_assign(self, index: int) -> None:
        start = self.stmt_start(index)
        end = self.stmt_end(index)
        target_end = index - 1
        target = self.tok(target_end)
        if target.is_punct(")"):
            opening = match_backward(self.tokens, target_end, "(", ")")
            if opening < start:
                return
            for piece_start, piece_end in self._pieces(opening + 1, target_end - 1):
                names = [
                    self.tokens[j]
                    for j in range(piece_start, piece_end + 1)
                    if self.tokens[j].kind is TokenKind.IDENT and self.tokens[j].text not in _DATA_LOCATIONS
                ]
                if names:
                    self.record_assignment(names[-1].text, index + 1, end - 1)
            return
        if target.kind is not TokenKind.IDENT or self.storage_ref(target_end) is not None:
            return
        if self.tok(target_end - 1).is_punct(".", "]") and target_end - 1 > start:
            return
        declaration_start = start
        for j in range(start, target_end):
            if self.tokens[j].is_punct("("):
                declaration_start = j + 1
        if declaration_start < target_end:
            if self.tok(target_end - 1).is_ident("storage"):
                for j in range(index + 1, end):
                    slot = self.storage_ref(j)
                    if slot is not None:
                        self._aliases[target.text] = slot
                        break
            type_name = self.tokens[declaration_start].text
            if _is_interface_type(type_name, self.ctx.interfaces):
                self._typed[target.text] = type_name
            declared = join_tokens(
                [token for token in self.tokens[declaration_start:target_end] if token.text not in _DATA_LOCATIONS]
            )
            if target.text not in self._aliases:
                self.record_assignment(target.text, index + 1, end - 1, declared)
        else:
            self.record_assignment(target.text, index + 1, end - 1)

    def _pieces(self, start: int, end: int) -> list[tuple[int, int]]:
        pieces = []
        begin = start
        for j in range(start, end + 1):
            if self.tokens[j].is_punct(","):
                if begin <= j - 1:
                    pieces.append((begin, j - 1))
                begin = j + 1
        if begin <= end:
            pieces.append((begin, end))
        return pieces

    # -- calls -------------------------------------------------------------

    def _has_value_option(self, brace: int) -> bool:
        close = self.closing(brace)
        return close > brace and any(self.tokens[j].is_ident("value") for j in range(brace + 1, close))

    def _call_arguments(self, index: int) -> tuple[int, bool]:
        """Open paren of the argument list and whether ``{value: ...}`` was given."""
        following = self.tok(index + 1)
        if following.is_punct("{"):
            close = self.closing(index + 1)
            if close < 0 or not self.tok(close + 1).is_punct("("):
                return -1, False
            return close + 1, self._has_value_option(index + 1)
        return index + 1, False

    def _visit_member_call(self, index: int) -> None:
        name = self.tokens[index].text
        open_index, value = self._call_arguments(index)
        if open_index < 0:
            return
        close = self.closing(open_index)
        if close < 0:
            return
        receiver_end = index - 2
        receiver_start = self.primary_back(receiver_end)
        args = self.split_args(open_index)
        location = self.location(index)

        if name in _LOW_LEVEL:
            kind = _LOW_LEVEL[name]
            call = ExternalCall(
                self.text(receiver_start, receiver_end),
                kind,
                location,
                target_origin=self.origin(receiver_start, receiver_end),
                handling=self._handling(index, close, must_check=True),
                value_transfer=value,
                method=name,
            )
            self.emit(index, call)
            return
        if name in ("transfer", "send") and len(args) == 1 and not self._interface_receiver(receiver_start, receiver_end):
            handling = ResultHandling.IMPLICIT if name == "transfer" else self._handling(index, close, must_check=True)
            self.emit(
                index,
                ExternalCall(
                    self.text(receiver_start, receiver_end),
                    CallKind.TRANSFER,
                    location,
                    target_origin=self.origin(receiver_start, receiver_end),
                    handling=handling,
                    value_transfer=True,
                    method=name,
                ),
            )
            return
        target = self._interface_receiver(receiver_start, receiver_end)
        if target is not None:
            self.emit(
                index,
                ExternalCall(
                    self.text(*target),
                    CallKind.STATIC if self._view_like(name) else CallKind.CALL,
                    location,
                    target_origin=self.origin(*target),
                    handling=self._handling(index, close, must_check=name in _BOOL_RETURNING),
                    value_transfer=value,
                    method=name,
                ),
            )
            return
        if name in _SAFE_MATH and len(args) == 1:
            self.record_arithmetic(
                index, _SAFE_MATH[name], (receiver_start, receiver_end), args[0], checked=True
            )

    @staticmethod
    def _view_like(method: str) -> bool:
        return method.startswith(("get", "balanceOf", "allowance", "totalSupply", "decimals", "name", "symbol", "owner"))

    def _interface_receiver(self, start: int, end: int) -> tuple[int, int] | None:
        first = self.tokens[start]
        if first.kind is not TokenKind.IDENT:
            return None
        if _is_interface_type(first.text, self.ctx.interfaces) and self.tok(start + 1).is_punct("("):
            close = self.closing(start + 1)
            if close == end and close > start + 2:
                return (start + 2, close - 1)
            return None
        if start != end:
            return None
        if first.text in self._typed:
            return (start, end)
        slot = self.storage_ref(start)
        if slot is not None:
            declared = self.ctx.storage[slot].declared_type if slot in self.ctx.storage else ""
            if declared and _is_interface_type(declared.split()[0], self.ctx.interfaces):
                return (start, end)
        return None

    def _handling(self, index: int, close: int, *, must_check: bool) -> ResultHandling:
        start = self.stmt_start(index)
        first = self.tok(start)
        if first.is_ident("try"):
            return ResultHandling.ASSERTED
        if first.is_ident("return"):
            return ResultHandling.PROPAGATED
        if first.is_ident("require", "assert", "if"):
            return ResultHandling.ASSERTED
        if self.enclosing(index) >= start:
            return ResultHandling.ASSERTED
        assigned = self._assigned_before(start, index)
        if assigned:
            if any(self._used_later(name, close) for name in assigned):
                return ResultHandling.ASSERTED
            return ResultHandling.IGNORED if must_check else ResultHandling.IMPLICIT
        return ResultHandling.IGNORED if must_check else ResultHandling.IMPLICIT

    def _assigned_before(self, start: int, index: int) -> list[str]:
        for j in range(start, index):
            if self.tokens[j].is_punct("=") and self.enclosing(j) < 0:
                names: list[str] = []
                last: str | None = None
                for token in self.tokens[start:j]:
                    if token.is_punct(",") and last is not None:
                        names.append(last)
                        last = None
                    elif token.kind is TokenKind.IDENT and token.text not in _DATA_LOCATIONS:
                        last = token.text
                if last is not None:
                    names.append(last)
                return names
        return []

    def _used_later(self, name: str, after: int) -> bool:
        return any(self.tokens[j].is_ident(name) for j in range(after + 1, self.end))


_KEYWORD_HANDLERS = {
    "if": SolidityBodyScanner._visit_if,
    "require": SolidityBodyScanner._visit_require,
    "assert": SolidityBodyScanner._visit_require,
    "for": SolidityBodyScanner._visit_for,
    "while": SolidityBodyScanner._visit_while,
    "do": SolidityBodyScanner._visit_do,
    "unchecked": SolidityBodyScanner._visit_unchecked,
    "assembly": SolidityBodyScanner._visit_assembly,
    "selfdestruct": SolidityBodyScanner._visit_selfdestruct,
    "suicide": SolidityBodyScanner._visit_selfdestruct,
    "emit": SolidityBodyScanner._visit_emit,
    "delete": SolidityBodyScanner._visit_delete,
    "new": SolidityBodyScanner._visit_new,
}


class SolidityFrontEnd(SourceFrontEnd):
    dialect = Dialect.SOLIDITY
    header_keywords = frozenset({"function", "constructor", "modifier", "receive", "fallback"})
    scanner_class = SolidityBodyScanner

    def __init__(self, text: str, *, name: str | None = None, size_bytes: int = 0) -> None:
        super().__init__(text, name=name, size_bytes=size_bytes)
        self._containers = self._find_containers()
        self._main = self._main_container()
        self._ranges = self._included_ranges()
        self._storage: list[StorageSlot] | None = None
        self._modifier_kinds: dict[str, ModifierKind] | None = None

    def tokenize(self, text: str) -> list[Token]:
        return tokenize(text, single_quoted_strings=True)

    def recognised(self) -> bool:
        return bool(self._containers) or _PRAGMA.search(self.text) is not None

    def checked_arithmetic(self) -> bool:
        pragma = _PRAGMA.search(self.text)
        if pragma is None:
            return True
        version = _VERSION.search(pragma.group(1))
        if version is None:
            return True
        return (int(version.group(1)), int(version.group(2))) >= (0, 8)

    def has_test_module(self) -> bool:
        if "forge-std/Test.sol" in self.text:
            return True
        return any(container.name.endswith(("Test", "_test")) for container in self._containers)

    def interfaces(self) -> frozenset[str]:
        return frozenset(
            container.name for container in self._containers if container.kind in ("interface", "contract")
        )

    def contract_name(self) -> str | None:
        return self._main.name if self._main is not None else None

    def looks_like_header(self, index: int) -> bool:
        if self.tokens[index].text in ("constructor", "receive", "fallback"):
            return self.tok(index + 1).is_punct("(")
        return super().looks_like_header(index)

    # -- containers ----------------------------------------------------------

    def _find_containers(self) -> list[_Container]:
        containers: list[_Container] = []
        index = 0
        while index < len(self.tokens):
            token = self.tokens[index]
            if (
                token.is_ident("contract", "library", "interface")
                and self.tok(index + 1).kind is TokenKind.IDENT
                and not self.tok(index - 1).is_punct(".")
            ):
                brace = -1
                bases: list[str] = []
                depth = 0
                for j in range(index + 2, len(self.tokens)):
                    current = self.tokens[j]
                    if current.is_punct("{"):
                        brace = j
                        break
                    if current.is_punct(";"):
                        break
                    if current.is_punct("("):
                        depth += 1
                    elif current.is_punct(")"):
                        depth -= 1
                    elif depth == 0 and current.kind is TokenKind.IDENT and (
                        self.tok(j - 1).is_punct(",") or self.tok(j - 1).is_ident("is")
                    ):
                        bases.append(current.text)
                if brace < 0:
                    index += 1
                    continue
                close = match_forward(self.tokens, brace, "{", "}")
                if close < 0:
                    close = len(self.tokens) - 1
                containers.append(
                    _Container(
                        token.text,
                        self.tokens[index + 1].text,
                        brace,
                        close,
                        tuple(bases),
                        abstract=self.tok(index - 1).is_ident("abstract"),
                    )
                )
                index = close + 1
                continue
            index += 1
        return containers

    def _main_container(self) -> _Container | None:
        for predicate in (
            lambda c: c.kind == "contract" and not c.abstract,
            lambda c: c.kind == "contract",
            lambda c: c.kind == "library",
        ):
            matching = [container for container in self._containers if predicate(container)]
            if matching:
                return matching[-1]
        return None

    def _included_ranges(self) -> list[tuple[int, int]]:
        if self._main is None:
            if self._containers:
                return []
            return [(0, len(self.tokens) - 1)]
        by_name = {container.name: container for container in self._containers}
        included: list[_Container] = []
        pending = [self._main]
        while pending:
            container = pending.pop()
            if container in included:
                continue
            included.append(container)
            pending.extend(by_name[base] for base in container.bases if base in by_name)
        included.sort(key=lambda container: container.open)
        return [(container.open, container.close) for container in included]

    def _members(self, open_index: int, close: int) -> list[tuple[int, int, bool]]:
        """Member declarations of a container as (start, end, has_block)."""
        members: list[tuple[int, int, bool]] = []
        index = open_index + 1
        while index < close:
            if self.tokens[index].kind is TokenKind.DOC:
                index += 1
                continue
            depth = 0
            j = index
            has_block = False
            while j < close:
                token = self.tokens[j]
                if token.is_punct("(", "["):
                    depth += 1
                elif token.is_punct(")", "]"):
                    depth -= 1
                elif token.is_punct("{") and depth == 0:
                    block_close = match_forward(self.tokens, j, "{", "}", limit=close)
                    j = block_close if block_close >= 0 else close
                    has_block = True
                    break
                elif token.is_punct(";") and depth == 0:
                    break
                j += 1
            members.append((index, j, has_block))
            index = j + 1
        return members

    def collect_storage(self) -> list[StorageSlot]:
        if self._storage is None:
            self._storage = []
            for open_index, close in self._ranges:
                if self._main is None:
                    break
                for start, end, has_block in self._members(open_index, close):
                    if has_block or self.tokens[start].text in _MEMBER_KEYWORDS or end <= start:
                        continue
                    slot = solidity_declaration(self.tokens, start, end - 1)
                    if slot is not None:
                        self._storage.append(slot)
        return list(self._storage)

    def constant_names(self) -> list[tuple[str, SourceLocation]]:
        names: list[tuple[str, SourceLocation]] = []
        for open_index, close in self._ranges:
            for start, end, has_block in self._members(open_index, close):
                if has_block or self.tokens[start].text in _MEMBER_KEYWORDS:
                    continue
                texts = [token.text for token in self.tokens[start:end]]
                if "constant" not in texts:
                    continue
                stop = texts.index("=") if "=" in texts else len(texts)
                name = next(
                    (token for token in reversed(self.tokens[start : start + stop]) if token.kind is TokenKind.IDENT),
                    None,
                )
                if name is not None and name.text != "constant":
                    names.append((name.text, name.location))
        return names

    def _within(self, index: int) -> bool:
        return any(start <= index <= end for start, end in self._ranges)

    def header_candidates(self) -> list[int]:
        candidates = []
        for index, token in enumerate(self.tokens):
            if not self._within(index):
                continue
            if token.is_ident("function") and self.tok(index + 1).kind is TokenKind.IDENT:
                candidates.append(index)
            elif token.is_ident("constructor", "receive", "fallback") and self.tok(index + 1).is_punct("("):
                if not self.tok(index - 1).is_punct("."):
                    candidates.append(index)
        return candidates

    # -- modifiers -------------------------------------------------------------

    def _classify_modifiers(self) -> dict[str, ModifierKind]:
        kinds: dict[str, ModifierKind] = {}
        storage = {slot.name: slot for slot in self.collect_storage()}
        context = ScanContext(storage=storage, functions=frozenset(), interfaces=self.interfaces())
        for open_index, close in self._ranges:
            for start, end, has_block in self._members(open_index, close):
                if not (has_block and self.tokens[start].is_ident("modifier")):
                    continue
                name = self.tok(start + 1).text
                brace = next((j for j in range(start, end) if self.tokens[j].is_punct("{")), -1)
                if brace < 0:
                    continue
                result = SolidityBodyScanner(self.tokens, brace, end, context).scan()
                operations = [pending.op for pending in result.pending]
                if any(isinstance(op, Branch) and op.is_access_check for op in operations):
                    kinds[name] = ModifierKind.ACCESS_CONTROL
                elif any(isinstance(op, StorageWrite) and REENTRANCY_GUARD_NAME.search(op.slot) for op in operations):
                    kinds[name] = ModifierKind.REENTRANCY_GUARD
        return kinds

    def _modifier_kind(self, name: str) -> ModifierKind:
        if self._modifier_kinds is None:
            self._modifier_kinds = self._classify_modifiers()
        if name in self._modifier_kinds:
            return self._modifier_kinds[name]
        if _REENTRANCY_MODIFIER.match(name):
            return ModifierKind.REENTRANCY_GUARD
        if _GUARD_MODIFIER.match(name):
            return ModifierKind.ACCESS_CONTROL
        return ModifierKind.OTHER

    # -- headers ---------------------------------------------------------------

    def parse_header(self, index: int) -> FunctionHeader | None:
        keyword = self.tokens[index]
        if keyword.text == "function":
            name = self.tokens[index + 1].text
            paren = index + 2
        else:
            name = keyword.text
            paren = index + 1
        if not self.tok(paren).is_punct("("):
            raise MalformedFunction(f"expected parameter list for function '{name}'", keyword.location)
        close = self.find_paren_close(paren, name)

        visibility: Visibility | None = None
        mutability: Mutability | None = None
        invocations: list[str] = []
        j = close + 1
        while True:
            if j >= len(self.tokens):
                raise MalformedFunction(f"truncated input: function '{name}' has no body", self.eof_location())
            token = self.tokens[j]
            if token.is_punct("{"):
                brace = j
                break
            if token.is_punct(";"):
                return None
            if token.is_punct("}") or (token.kind is TokenKind.IDENT and token.text in self.header_keywords):
                raise MalformedFunction(f"missing body for function '{name}'", keyword.location)
            if token.kind is TokenKind.IDENT:
                if token.text in _VISIBILITIES:
                    visibility = _VISIBILITIES[token.text]
                elif token.text in _MUTABILITIES:
                    mutability = _MUTABILITIES[token.text]
                elif token.text not in ("virtual", "override", "returns"):
                    invocations.append(token.text)
                if self.tok(j + 1).is_punct("("):
                    group_close = match_forward(self.tokens, j + 1, "(", ")")
                    if group_close < 0:
                        raise MalformedFunction(f"unclosed group in header of function '{name}'", token.location)
                    j = group_close
            j += 1
        body_close = self.find_body_close(brace, keyword, name)

        if keyword.text in ("receive", "fallback"):
            visibility = visibility or Visibility.EXTERNAL
            if keyword.text == "receive":
                mutability = Mutability.PAYABLE
        modifiers = [Modifier(invocation, self._modifier_kind(invocation)) for invocation in invocations]
        if mutability is Mutability.PAYABLE:
            modifiers.append(Modifier("payable", ModifierKind.PAYABLE))
        doc, _ = self.leading_docs(index)
        return FunctionHeader(
            name=name,
            keyword=index,
            body_open=brace,
            body_close=body_close,
            location=keyword.location,
            visibility=visibility or Visibility.PUBLIC,
            mutability=mutability or Mutability.NONE,
            parameters=tuple(self._parameters(paren, close)),
            modifiers=tuple(modifiers),
            doc=doc,
        )

    def _parameters(self, open_index: int, close: int) -> list[Parameter]:
        parameters = []
        for start, end in self.split_top_level(open_index + 1, close - 1):
            names = [
                j
                for j in range(start, end + 1)
                if self.tokens[j].kind is TokenKind.IDENT and self.tokens[j].text not in _DATA_LOCATIONS
            ]
            if len(names) < 2 or names[-1] != end:
                continue
            declared = [token for token in self.tokens[start:end] if token.text not in _DATA_LOCATIONS]
            parameters.append(Parameter(self.tokens[end].text, join_tokens(declared)))
        return parameters
