"""Front end for Rust contracts written against the Stylus SDK."""
from __future__ import annotations

import re

from .body import BodyScanner, type_bits
from .hostio import RUST_ENV_PATHS, VM_ENV_ACCESSORS
from .ir import (
    BoundKind,
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
    TargetOrigin,
    TypeClass,
    UnsafeCode,
    Visibility,
)
from .lexer import Token, TokenKind, join_tokens, match_forward, tokenize
from .source import FunctionHeader, MalformedFunction, SourceFrontEnd, solidity_declaration

_READ_METHODS = frozenset({"get", "getter", "len", "is_empty", "iter", "contains", "get_ref", "load"})
_WRITE_METHODS = frozenset(
    {"set", "insert", "push", "pop", "setter", "get_mut", "erase", "delete", "remove", "grow", "truncate", "clear", "store"}
)
_KEYED_METHODS = frozenset({"get", "getter", "setter", "get_mut", "insert", "remove", "contains"})

_CALL_FUNCTIONS: dict[str, CallKind] = {
    "call": CallKind.CALL,
    "static_call": CallKind.STATIC,
    "delegate_call": CallKind.DELEGATE,
    "transfer_eth": CallKind.TRANSFER,
}
_RAW_CALL_KINDS: dict[str, CallKind] = {
    "new": CallKind.CALL,
    "new_with_value": CallKind.CALL,
    "new_delegate": CallKind.DELEGATE,
    "new_static": CallKind.STATIC,
}
_ASSERT_MACROS = frozenset({"require", "assert", "assert_eq", "assert_ne", "ensure", "debug_assert"})
_UNWRAPS = frozenset({"unwrap", "expect", "unwrap_or", "unwrap_or_default", "unwrap_or_else"})
_ARITH_METHODS = re.compile(r"^(checked_|wrapping_|overflowing_|saturating_)?(add|sub|mul|div|rem|pow)$")
_ARITH_SYMBOLS = {"add": "+", "sub": "-", "mul": "*", "div": "/", "rem": "%", "pow": "**"}
_GROWABLE = {("Vec", "new"), ("String", "new"), ("HashMap", "new"), ("BTreeMap", "new"), ("VecDeque", "new")}
_PREALLOCATED = {("Vec", "with_capacity"), ("String", "with_capacity"), ("Box", "new"), ("HashMap", "with_capacity")}
_UNSAFE_PATHS = {
    ("Box", "into_raw"): "Box::into_raw",
    ("Box", "from_raw"): "Box::from_raw",
    ("Box", "leak"): "Box::leak",
    ("mem", "forget"): "mem::forget",
    ("mem", "transmute"): "mem::transmute",
    ("mem", "zeroed"): "mem::zeroed",
}
_UNSAFE_IDENTS = {"MaybeUninit": "MaybeUninit", "ManuallyDrop": "ManuallyDrop", "transmute": "transmute"}
_INTERFACE_NAME = re.compile(r"^I[A-Z]\w*$")
_CONTEXT_ARGS = frozenset({"self", "&self", "&mut self", "self.vm()", "&self.vm()", "ctx", "&ctx", "context", "&context"})


def _is_context_arg(text: str) -> bool:
    return text in _CONTEXT_ARGS or text.startswith(("Call::", "&Call::", "Call ::"))


class RustBodyScanner(BodyScanner):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._consumed: set[int] = set()
        self._interface_locals: dict[str, tuple[int, int]] = {}

    def storage_ref(self, index: int) -> str | None:
        if not self.seq(index, "self", "."):
            return None
        name = self.tok(index + 2)
        if name.kind is not TokenKind.IDENT or self.tok(index + 3).is_punct("("):
            return None
        if name.text in self.ctx.storage:
            return name.text
        if self.tok(index + 3).is_punct(".") and self.tok(index + 4).text in (_READ_METHODS | _WRITE_METHODS):
            return name.text
        return None

    def visit(self, index: int) -> int:
        token = self.tokens[index]
        if token.kind is TokenKind.PUNCT:
            if token.text == "*" and self.tok(index + 1).is_ident("mut", "const") and not self.is_binary_context(index):
                self.emit(index, UnsafeCode("raw pointer", self.location(index)))
                return index + 2
            self.visit_operator(index)
            return index + 1
        if token.kind is not TokenKind.IDENT:
            return index + 1

        name = token.text
        following = self.tok(index + 1)
        if name == "self":
            return self._visit_self(index)
        if name == "let":
            self._visit_let(index)
            return index + 1
        if name == "if":
            self._visit_conditional(index)
            return index + 1
        if name == "match":
            self._visit_conditional(index)
            return index + 1
        if name in ("for", "while", "loop"):
            self._visit_loop(index)
            return index + 1
        if name == "unsafe" and following.is_punct("{"):
            self.emit(index, UnsafeCode("unsafe block", self.location(index)))
            return index + 1
        if name in _ASSERT_MACROS and (following.is_punct("(") or (following.is_punct("!") and self.tok(index + 2).is_punct("("))):
            open_index = index + 1 if following.is_punct("(") else index + 2
            args = self.split_args(open_index)
            if args:
                self.emit_branch(index, args[0][0], args[0][1], reverts=True)
            return index + 1
        if name == "vec" and following.is_punct("!") and self.tok(index + 2).is_punct("["):
            self._visit_vec_macro(index)
            return index + 1
        if name in _UNSAFE_IDENTS:
            self.emit(index, UnsafeCode(_UNSAFE_IDENTS[name], self.location(index)))
            return index + 1
        if following.is_punct("::") and self.tok(index + 2).kind is TokenKind.IDENT:
            return self._visit_path(index)
        if following.is_punct("(") and self.tok(index - 1).is_punct("."):
            return self._visit_method(index)
        if name in _CALL_FUNCTIONS and following.is_punct("(") and not self.tok(index - 1).is_ident("fn"):
            if index not in self._consumed:
                self._emit_call_function(index)
            return index + 1
        if name in ("log", "raw_log") and following.is_punct("(") and not self.tok(index - 1).is_punct(".", "::"):
            self._emit_log(index)
            return index + 1
        if name in self.ctx.functions and following.is_punct("(") and not self.tok(index - 1).is_punct(".", "::"):
            if not self.tok(index - 1).is_ident("fn"):
                self.emit_internal_call(index, name)
            return index + 1
        return index + 1

    # -- self.<...> ------------------------------------------------------

    def _visit_self(self, index: int) -> int:
        if not self.seq(index, "self", "."):
            return index + 1
        member = self.tok(index + 2)
        if member.kind is not TokenKind.IDENT:
            return index + 1
        if self.seq(index + 2, "vm", "(", ")", "."):
            accessor = self.tok(index + 6)
            if accessor.text in VM_ENV_ACCESSORS and self.tok(index + 7).is_punct("("):
                self.emit(index, EnvRead(VM_ENV_ACCESSORS[accessor.text], self.location(index)))
                return index + 7
            if accessor.text in ("log", "raw_log") and self.tok(index + 7).is_punct("("):
                self._emit_log(index + 6)
                return index + 7
            return index + 6
        if self.tok(index + 3).is_punct("("):
            if member.text not in ("vm",):
                self.emit_internal_call(index, member.text)
            return index + 3
        slot = self.storage_ref(index)
        if slot is None:
            return index + 3
        if self.tok(index + 3).is_punct(".") and self.tok(index + 5).is_punct("("):
            method = self.tok(index + 4).text
            args = self.split_args(index + 5)
            keyed_by = self.text(*args[0]) if args and method in _KEYED_METHODS else None
            if method in _WRITE_METHODS:
                self.emit_write(index, slot, keyed_by)
            else:
                self.emit(index, StorageRead(slot, self.location(index), keyed_by))
            return index + 5
        if self.tok(index + 3).is_punct("=") or self.tok(index + 3).text in ("+=", "-=", "*=", "/="):
            if self.tok(index + 3).text != "=":
                self.emit(index, StorageRead(slot, self.location(index)))
            self.emit_write(index, slot, None)
            return index + 3
        self.emit(index, StorageRead(slot, self.location(index)))
        return index + 3

    def _visit_let(self, index: int) -> None:
        name_index = index + 2 if self.tok(index + 1).is_ident("mut") else index + 1
        name = self.tok(name_index)
        if name.kind is not TokenKind.IDENT or not self.tok(name_index + 1).is_punct(":", "="):
            return
        end = self.stmt_end(index)
        declared_type = None
        equals = -1
        for j in range(name_index + 1, end):
            if self.tokens[j].is_punct("="):
                equals = j
                break
        if self.tok(name_index + 1).is_punct(":"):
            type_end = equals - 1 if equals > 0 else end - 1
            declared_type = self.text(name_index + 2, type_end)
        value = self.tok(equals + 1)
        if (
            equals > 0
            and (_INTERFACE_NAME.match(value.text) or value.text in self.ctx.interfaces)
            and self.seq(equals + 2, "::", "new", "(")
        ):
            close = self.closing(equals + 4)
            if close > 0:
                self._interface_locals[name.text] = (equals + 5, close - 1)
        if equals > 0:
            self.record_assignment(name.text, equals + 1, end - 1, declared_type)
        else:
            self.locals[name.text] = TargetOrigin.UNKNOWN

    # -- control flow ----------------------------------------------------

    def _block_open(self, index: int) -> int:
        depth = 0
        for j in range(index + 1, self.end):
            token = self.tokens[j]
            if token.is_punct("(", "["):
                depth += 1
            elif token.is_punct(")", "]"):
                depth -= 1
            elif token.is_punct("{") and depth == 0:
                return j
            elif token.is_punct(";") and depth == 0:
                return -1
        return -1

    def _visit_conditional(self, index: int) -> None:
        brace = self._block_open(index)
        if brace < 0:
            return
        close = self.closing(brace)
        if close < 0:
            return
        self.emit_branch(index, index + 1, brace - 1, reverts=self.block_reverts(brace, close), block_end=close)

    def _visit_loop(self, index: int) -> None:
        keyword = self.tokens[index].text
        brace = self._block_open(index)
        if brace < 0:
            return
        close = self.closing(brace)
        if close < 0:
            return
        if keyword == "loop":
            self.emit_loop(index, index, index, close, BoundKind.UNBOUNDED)
            return
        if keyword == "while":
            if self.seq(index + 1, "true", "{"):
                self.emit_loop(index, index + 1, brace - 1, close, BoundKind.UNBOUNDED)
            else:
                self.emit_loop(index, index + 1, brace - 1, close)
            return
        in_index = next((j for j in range(index + 1, brace) if self.tokens[j].is_ident("in")), -1)
        if in_index < 0:
            return
        ranges = [j for j in range(in_index + 1, brace) if self.tokens[j].is_punct("..", "..=")]
        if ranges:
            upper = ranges[-1] + 1
            if upper > brace - 1:
                self.emit_loop(index, in_index + 1, brace - 1, close, BoundKind.UNBOUNDED)
            else:
                self.emit_loop(index, upper, brace - 1, close)
        else:
            self.emit_loop(index, in_index + 1, brace - 1, close)

    # -- paths and calls ---------------------------------------------------

    def _visit_path(self, index: int) -> int:
        head = self.tokens[index].text
        tail = self.tokens[index + 2].text
        location = self.location(index)
        if (head, tail) in RUST_ENV_PATHS and self.tok(index + 3).is_punct("("):
            self.emit(index, EnvRead(RUST_ENV_PATHS[(head, tail)], location))
        elif (head, tail) == ("msg", "send") and self.tok(index + 3).is_punct("("):
            self._emit_call(index, CallKind.TRANSFER, index + 3, value_transfer=True)
        elif head == "evm" and tail in ("log", "raw_log") and self.tok(index + 3).is_punct("("):
            self._emit_log(index + 2)
        elif head == "Self" and tail in self.ctx.functions and self.tok(index + 3).is_punct("("):
            self.emit_internal_call(index, tail)
        elif (head, tail) in _GROWABLE:
            self.emit(index, MemoryAlloc(f"{head}::{tail}", location, preallocated=False))
        elif (head, tail) in _PREALLOCATED:
            self.emit(index, MemoryAlloc(f"{head}::{tail}", location, preallocated=True))
        elif (head, tail) in _UNSAFE_PATHS:
            self.emit(index, UnsafeCode(_UNSAFE_PATHS[(head, tail)], location))
            return index + 3
        elif head == "RawCall" and tail in _RAW_CALL_KINDS:
            self._visit_raw_call(index, _RAW_CALL_KINDS[tail], value_transfer=tail == "new_with_value")
        elif (
            (_INTERFACE_NAME.match(head) or head in self.ctx.interfaces)
            and tail == "new"
            and self.tok(index + 3).is_punct("(")
        ):
            self._visit_interface_call(index)
        return index + 1

    def _visit_raw_call(self, index: int, kind: CallKind, *, value_transfer: bool) -> None:
        end = self.stmt_end(index)
        for j in range(index + 3, end):
            if self.tokens[j].is_ident("call") and self.tok(j - 1).is_punct(".") and self.tok(j + 1).is_punct("("):
                self._consumed.add(j)
                self._emit_call(index, kind, j + 1, value_transfer=value_transfer, method="raw")
                return

    def _visit_interface_call(self, index: int) -> None:
        open_index = index + 3
        close = self.closing(open_index)
        if close < 0 or not self.tok(close + 1).is_punct(".") or not self.tok(close + 3).is_punct("("):
            return
        method = self.tok(close + 2).text
        target = (open_index + 1, close - 1)
        self._emit_call(index, CallKind.CALL, close + 3, target=target, method=method)

    def _visit_method(self, index: int) -> int:
        name = self.tokens[index].text
        receiver = self.tok(index - 2)
        if receiver.text in self._interface_locals and not self.tok(index - 3).is_punct(".", "::"):
            target = self._interface_locals[receiver.text]
            self._emit_call(index - 2, CallKind.CALL, index + 1, target=target, method=name)
            return index + 1
        if name in _CALL_FUNCTIONS and self.seq(index - 4, "vm", "(", ")", "."):
            if index not in self._consumed:
                self._emit_call_function(index)
            return index + 1
        if name in ("clone", "to_vec", "to_owned") and self.tok(index + 2).is_punct(")"):
            self.emit(index, MemoryAlloc(name, self.location(index), preallocated=True))
            return index + 1
        arith = _ARITH_METHODS.match(name)
        if arith:
            args = self.split_args(index + 1)
            if args:
                prefix, base = arith.groups()
                receiver = self.primary_back(index - 2)
                self.record_arithmetic(
                    index,
                    _ARITH_SYMBOLS[base],
                    (receiver, index - 2),
                    args[0],
                    checked=prefix == "checked_",
                    wrapping=prefix in ("wrapping_", "overflowing_", "saturating_"),
                )
        return index + 1

    def _emit_call_function(self, index: int) -> None:
        kind = _CALL_FUNCTIONS[self.tokens[index].text]
        self._emit_call(index, kind, index + 1, value_transfer=kind is CallKind.TRANSFER)

    def _emit_call(
        self,
        index: int,
        kind: CallKind,
        open_index: int,
        *,
        target: tuple[int, int] | None = None,
        value_transfer: bool = False,
        method: str | None = None,
    ) -> None:
        close = self.closing(open_index)
        if close < 0:
            return
        if target is None:
            args = [arg for arg in self.split_args(open_index) if not _is_context_arg(self.text(*arg))]
            target = args[0] if args else None
        target_text = self.text(*target) if target else ""
        origin = self.origin(*target) if target else TargetOrigin.UNKNOWN
        self.emit(
            index,
            ExternalCall(
                target_text,
                kind,
                self.location(index),
                target_origin=origin,
                handling=self._handling(index, close),
                value_transfer=value_transfer,
                method=method,
            ),
        )

    def _handling(self, index: int, close: int) -> ResultHandling:
        after = self.tok(close + 1)
        if after.is_punct("?"):
            return ResultHandling.PROPAGATED
        if after.is_punct("."):
            method = self.tok(close + 2).text
            if method in _UNWRAPS:
                return ResultHandling.UNWRAPPED
            if method in ("is_ok", "is_err"):
                return ResultHandling.ASSERTED
            end = self.stmt_end(close)
            if any(self.tokens[j].is_punct("?") for j in range(close + 1, end)):
                return ResultHandling.PROPAGATED
        start = self.stmt_start(index)
        first = self.tok(start)
        if first.is_ident("return"):
            return ResultHandling.PROPAGATED
        if first.is_ident("if", "match", "while"):
            return ResultHandling.ASSERTED
        if first.is_ident("let"):
            name = self.tok(start + 2) if self.tok(start + 1).is_ident("mut") else self.tok(start + 1)
            if name.text == "_":
                return ResultHandling.IGNORED
            if name.text in ("Ok", "Some", "Err"):
                return ResultHandling.ASSERTED
            if self._used_later(name.text, close):
                return ResultHandling.ASSERTED
            return ResultHandling.IGNORED
        enclosing = self.enclosing(index)
        if enclosing >= start:
            return ResultHandling.ASSERTED
        end = self.stmt_end(close)
        if end == self.end and self.tokens[end].is_punct("}"):
            return ResultHandling.PROPAGATED
        return ResultHandling.IGNORED

    def _used_later(self, name: str, after: int) -> bool:
        return any(self.tokens[j].is_ident(name) for j in range(after + 1, self.end))

    def _emit_log(self, index: int) -> None:
        event = "log"
        for start, end in self.split_args(index + 1):
            first = self.tokens[start]
            if first.kind is TokenKind.IDENT and first.text[:1].isupper():
                event = first.text
                break
        self.emit(index, Emit(event, self.location(index)))

    def _visit_vec_macro(self, index: int) -> None:
        open_index = index + 2
        close = self.closing(open_index)
        if close < 0:
            return
        empty = close == open_index + 1
        sized = any(self.tokens[j].is_punct(";") for j in range(open_index + 1, close))
        self.emit(index, MemoryAlloc("vec!", self.location(index), preallocated=sized or not empty))


_ITEM_SKIP = frozenset({"pub", "crate", "async", "const", "unsafe", "extern", "default", "super", "in"})


class RustFrontEnd(SourceFrontEnd):
    dialect = Dialect.STYLUS_RUST
    header_keywords = frozenset({"fn"})
    scanner_class = RustBodyScanner

    def __init__(self, text: str, *, name: str | None = None, size_bytes: int = 0) -> None:
        super().__init__(text, name=name, size_bytes=size_bytes)
        self._impls: list[tuple[int, int, bool]] = []
        self._excluded: list[tuple[int, int]] = []
        self._storage: list[StorageSlot] = []
        self._interfaces: set[str] = set()
        self._entrypoint: str | None = None
        self._first_impl: str | None = None
        self._tests = False
        self._recognised = False
        self._constants: list[tuple[str, SourceLocation]] = []
        self._prescan()

    def tokenize(self, text: str) -> list[Token]:
        return tokenize(text)

    def recognised(self) -> bool:
        return self._recognised

    def has_test_module(self) -> bool:
        return self._tests

    def interfaces(self) -> frozenset[str]:
        return frozenset(self._interfaces)

    def contract_name(self) -> str | None:
        return self._entrypoint or self._first_impl

    def collect_storage(self) -> list[StorageSlot]:
        return list(self._storage)

    def constant_names(self) -> list[tuple[str, SourceLocation]]:
        return list(self._constants)

    # -- prescan ---------------------------------------------------------

    def _close(self, open_index: int) -> int:
        close = match_forward(self.tokens, open_index, "{", "}")
        return close if close >= 0 else len(self.tokens) - 1

    def _prescan(self) -> None:
        tokens = self.tokens
        index = 0
        while index < len(tokens):
            token = tokens[index]
            if token.is_punct("#") and self.tok(index + 1).is_punct("[") and "test" in self._attribute_text(index):
                self._tests = True
            if token.kind is not TokenKind.IDENT:
                index += 1
                continue
            if token.text in ("sol_storage", "sol_interface") and self.seq_punct(index + 1, "!", "{"):
                close = self._close(index + 2)
                self._recognised = True
                self._excluded.append((index, close))
                if token.text == "sol_storage":
                    self._parse_sol_storage(index + 2, close)
                else:
                    self._parse_sol_interface(index + 2, close)
                index = close + 1
                continue
            if token.text == "impl":
                self._recognised = True
                self._record_impl(index)
            elif token.text == "mod":
                _, attributes = self.leading_docs(index, skip=_ITEM_SKIP)
                if any("cfg" in attribute and "test" in attribute for attribute in attributes) and self.tok(index + 2).is_punct("{"):
                    self._tests = True
                    self._excluded.append((index, self._close(index + 2)))
            elif token.text == "struct" and self.tok(index + 1).kind is TokenKind.IDENT:
                _, attributes = self.leading_docs(index, skip=_ITEM_SKIP)
                if any(_is_storage_attribute(attribute) for attribute in attributes) and self.tok(index + 2).is_punct("{"):
                    self._recognised = True
                    if any("entrypoint" in attribute for attribute in attributes):
                        self._entrypoint = self.tokens[index + 1].text
                    self._parse_storage_struct(index + 2, self._close(index + 2))
            elif token.text in ("const", "static") and self.tok(index + 1).kind is TokenKind.IDENT and self.tok(index + 2).is_punct(":"):
                self._constants.append((self.tokens[index + 1].text, self.tokens[index + 1].location))
            elif token.text == "fn":
                self._recognised = True
            index += 1

    def seq_punct(self, index: int, *symbols: str) -> bool:
        return all(self.tok(index + offset).is_punct(symbol) for offset, symbol in enumerate(symbols))

    def _attribute_text(self, index: int) -> str:
        close = match_forward(self.tokens, index + 1, "[", "]")
        if close < 0:
            return ""
        return join_tokens(self.tokens[index + 2 : close])

    def _record_impl(self, index: int) -> None:
        brace = -1
        type_name = None
        saw_for = False
        for j in range(index + 1, len(self.tokens)):
            token = self.tokens[j]
            if token.is_punct("{"):
                brace = j
                break
            if token.is_punct(";"):
                return
            if token.is_ident("for"):
                saw_for = True
                type_name = None
            elif token.kind is TokenKind.IDENT and token.text != "where" and type_name is None and not self.tok(j - 1).is_punct("<", "::"):
                type_name = token.text
        if brace < 0:
            return
        _, attributes = self.leading_docs(index, skip=_ITEM_SKIP)
        public = any(attribute.split("(")[0].split("::")[-1].strip() in ("public", "external") for attribute in attributes)
        self._impls.append((brace, self._close(brace), public))
        if type_name and self._first_impl is None and (saw_for or not _INTERFACE_NAME.match(type_name)):
            self._first_impl = type_name

    def _parse_sol_storage(self, open_index: int, close: int) -> None:
        index = open_index + 1
        while index < close:
            token = self.tokens[index]
            if token.is_ident("struct") and self.tok(index + 1).kind is TokenKind.IDENT and self.tok(index + 2).is_punct("{"):
                _, attributes = self.leading_docs(index, skip=_ITEM_SKIP)
                if any("entrypoint" in attribute for attribute in attributes):
                    self._entrypoint = self.tokens[index + 1].text
                body_close = self._close(index + 2)
                start = index + 3
                for j in range(index + 3, body_close + 1):
                    if self.tokens[j].is_punct(";") or j == body_close:
                        if j > start:
                            slot = solidity_declaration(self.tokens, start, j - 1)
                            if slot is not None:
                                self._storage.append(slot)
                        start = j + 1
                index = body_close + 1
                continue
            index += 1

    def _parse_sol_interface(self, open_index: int, close: int) -> None:
        for index in range(open_index + 1, close):
            if self.tokens[index].is_ident("interface") and self.tok(index + 1).kind is TokenKind.IDENT:
                self._interfaces.add(self.tokens[index + 1].text)

    def _parse_storage_struct(self, open_index: int, close: int) -> None:
        for start, end in self.split_top_level(open_index + 1, close - 1):
            j = start
            while j <= end:
                token = self.tokens[j]
                if token.is_punct("#") and self.tok(j + 1).is_punct("["):
                    j = match_forward(self.tokens, j + 1, "[", "]") + 1
                elif token.is_ident("pub"):
                    j += 4 if self.tok(j + 1).is_punct("(") else 1
                else:
                    break
            if j + 2 > end or not self.tok(j + 1).is_punct(":"):
                continue
            name = self.tokens[j]
            declared_type = join_tokens(self.tokens[j + 2 : end + 1])
            self._storage.append(_rust_slot(name, declared_type))

    # -- headers ---------------------------------------------------------

    def _excluded_at(self, index: int) -> bool:
        return any(start <= index <= end for start, end in self._excluded)

    def _impl_at(self, index: int) -> tuple[int, int, bool] | None:
        inside = [impl for impl in self._impls if impl[0] < index < impl[1]]
        return max(inside, key=lambda impl: impl[0]) if inside else None

    def header_candidates(self) -> list[int]:
        return [
            index
            for index, token in enumerate(self.tokens)
            if token.is_ident("fn")
            and not self.tok(index + 1).is_punct("(")
            and not self.tok(index - 1).is_punct("&", "<")
            and not self._excluded_at(index)
        ]

    def parse_header(self, index: int) -> FunctionHeader | None:
        keyword = self.tokens[index]
        name_token = self.tok(index + 1)
        if name_token.kind is not TokenKind.IDENT:
            raise MalformedFunction("expected a function name after 'fn'", keyword.location)
        name = name_token.text
        paren = index + 2
        if self.tok(paren).is_punct("<"):
            paren = self._skip_generics(paren, name)
        if not self.tok(paren).is_punct("("):
            raise MalformedFunction(f"expected parameter list for function '{name}'", name_token.location)
        close = self.find_paren_close(paren, name)

        brace = -1
        for j in range(close + 1, len(self.tokens)):
            token = self.tokens[j]
            if token.is_punct("{"):
                brace = j
                break
            if token.is_punct(";"):
                return None
            if token.is_ident("fn") or token.is_punct("}"):
                raise MalformedFunction(f"missing body for function '{name}'", name_token.location)
        if brace < 0:
            raise MalformedFunction(f"truncated input: function '{name}' has no body", self.eof_location())
        body_close = self.find_body_close(brace, keyword, name)

        parameters, receiver = self._parameters(paren, close)
        doc, attributes = self.leading_docs(index, skip=_ITEM_SKIP)
        modifiers: list[Modifier] = []
        for attribute in attributes:
            bare = attribute.split("(")[0].strip()
            if bare == "payable":
                modifiers.append(Modifier("payable", ModifierKind.PAYABLE))
            elif "reentr" in bare.lower():
                modifiers.append(Modifier(bare, ModifierKind.REENTRANCY_GUARD))

        if any(modifier.kind is ModifierKind.PAYABLE for modifier in modifiers):
            mutability = Mutability.PAYABLE
        elif receiver == "&self":
            mutability = Mutability.VIEW
        elif receiver is None:
            mutability = Mutability.PURE
        else:
            mutability = Mutability.NONE

        returns = self.tokens[close + 1 : brace]
        return FunctionHeader(
            name=name,
            keyword=index,
            body_open=brace,
            body_close=body_close,
            location=keyword.location,
            visibility=self._visibility(index),
            mutability=mutability,
            parameters=tuple(parameters),
            modifiers=tuple(modifiers),
            doc=doc,
            returns_result=any(token.is_ident("Result") for token in returns),
        )

    def _skip_generics(self, index: int, name: str) -> int:
        depth = 0
        for j in range(index, len(self.tokens)):
            token = self.tokens[j]
            if token.is_punct("<"):
                depth += 1
            elif token.is_punct(">"):
                depth -= 1
            elif token.is_punct(">>"):
                depth -= 2
            elif token.is_punct("{", ";"):
                break
            if depth <= 0:
                return j + 1
        raise MalformedFunction(f"unclosed generic parameters in function '{name}'", self.tokens[index].location)

    def _visibility(self, index: int) -> Visibility:
        j = index - 1
        while self.tok(j).text in ("async", "const", "unsafe", "extern") or self.tok(j).kind is TokenKind.STRING:
            j -= 1
        if self.tok(j).is_punct(")") and self.tok(j - 3).is_ident("pub"):
            return Visibility.INTERNAL
        if self.tok(j).is_ident("pub"):
            impl = self._impl_at(index)
            return Visibility.EXTERNAL if impl is not None and impl[2] else Visibility.PUBLIC
        return Visibility.PRIVATE

    def _parameters(self, open_index: int, close: int) -> tuple[list[Parameter], str | None]:
        parameters: list[Parameter] = []
        receiver: str | None = None
        for start, end in self.split_top_level(open_index + 1, close - 1):
            texts = [token.text for token in self.tokens[start : end + 1]]
            if "self" in texts and ":" not in texts:
                receiver = "&mut self" if "mut" in texts and "&" in texts else ("&self" if "&" in texts else "self")
                continue
            colon = next((j for j in range(start, end + 1) if self.tokens[j].is_punct(":")), -1)
            if colon < 0:
                continue
            name_tokens = [token for token in self.tokens[start:colon] if token.kind is TokenKind.IDENT and token.text != "mut"]
            if not name_tokens:
                continue
            parameters.append(Parameter(name_tokens[-1].text, join_tokens(self.tokens[colon + 1 : end + 1])))
        return parameters, receiver


def _is_storage_attribute(attribute: str) -> bool:
    bare = attribute.split("(")[0].split("::")[-1].strip()
    return bare in ("storage", "entrypoint", "solidity_storage", "contract")


def _rust_slot(name: Token, declared_type: str) -> StorageSlot:
    compact = declared_type.replace(" ", "")
    head = compact.split("<", 1)[0]
    if head in ("StorageMap", "StorageMapping"):
        inner = compact[len(head) + 1 : -1] if compact.endswith(">") else compact
        value = inner.split(",")[-1] if "," in inner else inner
        return StorageSlot(name.text, TypeClass.MAPPING, declared_type, name.location, value_bits=type_bits(value))
    if head in ("StorageVec", "StorageArray"):
        inner = compact[len(head) + 1 : -1] if compact.endswith(">") else compact
        return StorageSlot(name.text, TypeClass.ARRAY, declared_type, name.location, value_bits=type_bits(inner.split(",")[0]))
    if head in ("StorageUint", "StorageSigned") and compact.endswith(">"):
        width = compact[len(head) + 1 : -1].split(",")[0]
        if width.isdigit():
            return StorageSlot(name.text, TypeClass.VALUE, declared_type, name.location, value_bits=int(width))
    return StorageSlot(name.text, TypeClass.VALUE, declared_type, name.location, value_bits=type_bits(head))
