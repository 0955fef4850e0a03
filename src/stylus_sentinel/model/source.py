"""Shared machinery for the source-language front ends.

A front end finds function headers, parses each one independently and scans
its body. A function whose header or body is malformed is skipped with a
diagnostic and parsing resumes at the next header, so one broken function
never costs the rest of the contract.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
import re
from types import MappingProxyType
from typing import ClassVar

from ..errors import ParseError
from .body import BodyScanner, ScanContext, type_bits
from .cfg import finalize_operations
from .ir import (
    ContractModel,
    Diagnostic,
    Dialect,
    ExternalCall,
    ExternalCallSite,
    Function,
    InternalCall,
    Modifier,
    ModifierKind,
    Mutability,
    Parameter,
    SourceLocation,
    StorageRead,
    StorageSlot,
    StorageWrite,
    TypeClass,
    Visibility,
)
from .lexer import Token, TokenKind, join_tokens

logger = logging.getLogger(__name__)

REENTRANCY_GUARD_NAME = re.compile(r"(?i)(reentr|mutex|^_?locked$|^_?lock$|^_?entered$|_status$)")


class MalformedFunction(Exception):
    """Raised while parsing one function; turned into a diagnostic by the front end."""

    def __init__(self, reason: str, location: SourceLocation) -> None:
        self.reason = reason
        self.location = location
        super().__init__(reason)


@dataclass(slots=True)
class FunctionHeader:
    name: str
    keyword: int
    body_open: int
    body_close: int
    location: SourceLocation
    visibility: Visibility
    mutability: Mutability
    parameters: tuple[Parameter, ...] = ()
    modifiers: tuple[Modifier, ...] = ()
    doc: str = ""
    returns_result: bool = False


class SourceFrontEnd(ABC):
    dialect: ClassVar[Dialect]
    header_keywords: ClassVar[frozenset[str]]
    scanner_class: ClassVar[type[BodyScanner]]

    def __init__(self, text: str, *, name: str | None = None, size_bytes: int = 0) -> None:
        self.text = text
        self.name_hint = name
        self.size_bytes = size_bytes
        self.tokens = self.tokenize(text)
        self.diagnostics: list[Diagnostic] = []

    # -- dialect hooks ---------------------------------------------------

    @abstractmethod
    def tokenize(self, text: str) -> list[Token]: ...

    @abstractmethod
    def collect_storage(self) -> list[StorageSlot]: ...

    @abstractmethod
    def header_candidates(self) -> list[int]: ...

    @abstractmethod
    def parse_header(self, index: int) -> FunctionHeader | None:
        """Parse the header at *index*; None for bodiless declarations."""

    @abstractmethod
    def contract_name(self) -> str | None: ...

    def recognised(self) -> bool:
        """True when the input contains any contract structure at all."""
        return False

    def checked_arithmetic(self) -> bool:
        return False

    def has_test_module(self) -> bool:
        return False

    def constant_names(self) -> list[tuple[str, SourceLocation]]:
        return []

    def interfaces(self) -> frozenset[str]:
        return frozenset()

    def looks_like_header(self, index: int) -> bool:
        following = self.tok(index + 1)
        return following.kind is TokenKind.IDENT and self.tok(index + 2).is_punct("(", "<")

    # -- token helpers ---------------------------------------------------

    def tok(self, index: int) -> Token:
        if 0 <= index < len(self.tokens):
            return self.tokens[index]
        return _EOF

    def eof_location(self) -> SourceLocation:
        if not self.tokens:
            return SourceLocation(1, 1)
        last = self.tokens[-1]
        return SourceLocation(last.line, last.column + len(last.text))

    def find_paren_close(self, open_index: int, function: str) -> int:
        """Close of a parameter list; a body or another header first means it is unclosed."""
        depth = 0
        for index in range(open_index, len(self.tokens)):
            token = self.tokens[index]
            if token.is_punct("(", "["):
                depth += 1
            elif token.is_punct(")", "]"):
                depth -= 1
                if depth == 0:
                    return index
            elif token.is_punct("{", ";", "}") or (
                token.kind is TokenKind.IDENT and token.text in self.header_keywords
            ):
                raise MalformedFunction(
                    f"unclosed parameter list in function '{function}'", self.tokens[open_index].location
                )
        raise MalformedFunction(f"truncated input: parameter list of '{function}' is not closed", self.eof_location())

    def find_body_close(self, open_index: int, keyword: Token, function: str) -> int:
        depth = 0
        for index in range(open_index, len(self.tokens)):
            token = self.tokens[index]
            if token.is_punct("{"):
                depth += 1
            elif token.is_punct("}"):
                depth -= 1
                if depth == 0:
                    return index
            elif (
                token.kind is TokenKind.IDENT
                and token.text in self.header_keywords
                and token.column <= keyword.column
                and self.looks_like_header(index)
            ):
                raise MalformedFunction(f"unterminated body of function '{function}'", keyword.location)
        raise MalformedFunction(f"truncated input: body of '{function}' is not closed", self.eof_location())

    def leading_docs(self, index: int, *, skip: frozenset[str] = frozenset()) -> tuple[str, list[str]]:
        """Doc comments and attributes directly above the item whose first token precedes *index*."""
        docs: list[str] = []
        attributes: list[str] = []
        j = index - 1
        while j >= 0:
            token = self.tokens[j]
            if token.kind is TokenKind.DOC:
                docs.append(token.text)
                j -= 1
            elif token.is_punct("]") and self._attribute_start(j) >= 0:
                start = self._attribute_start(j)
                attributes.append(join_tokens(self.tokens[start + 2 : j]))
                j = start - 1
            elif token.text in skip or (token.is_punct("(", ")") and skip):
                j -= 1
            else:
                break
        docs.reverse()
        attributes.reverse()
        return "\n".join(doc for doc in docs if doc), attributes

    def _attribute_start(self, close_index: int) -> int:
        depth = 0
        for j in range(close_index, -1, -1):
            token = self.tokens[j]
            if token.is_punct("]"):
                depth += 1
            elif token.is_punct("["):
                depth -= 1
                if depth == 0:
                    if j >= 1 and self.tokens[j - 1].is_punct("#"):
                        return j - 1
                    if j >= 2 and self.tokens[j - 1].is_punct("!") and self.tokens[j - 2].is_punct("#"):
                        return j - 2
                    return -1
        return -1

    def split_top_level(self, start: int, end: int, separator: str = ",") -> list[tuple[int, int]]:
        """Split [start, end] on *separator* outside (), [], {} and <>."""
        pieces: list[tuple[int, int]] = []
        depth = 0
        begin = start
        for index in range(start, end + 1):
            token = self.tokens[index]
            if token.kind is TokenKind.PUNCT:
                if token.text in ("(", "[", "{", "<"):
                    depth += 1
                elif token.text in (")", "]", "}", ">"):
                    depth -= 1
                elif token.text == ">>":
                    depth -= 2
                elif token.text == separator and depth == 0:
                    if begin <= index - 1:
                        pieces.append((begin, index - 1))
                    begin = index + 1
        if begin <= end:
            pieces.append((begin, end))
        return pieces

    # -- model assembly --------------------------------------------------

    def build(self) -> ContractModel:
        if not self.tokens:
            raise ParseError("empty input", SourceLocation(1, 1))
        storage = self.collect_storage()
        candidates = self.header_candidates()
        if not candidates and not storage and not self.recognised():
            raise ParseError("no contract definitions found", SourceLocation(1, 1))

        context = ScanContext(
            storage={slot.name: slot for slot in storage},
            functions=frozenset(
                self.tokens[index + 1].text
                for index in candidates
                if self.tok(index + 1).kind is TokenKind.IDENT
            ),
            checked_arithmetic=self.checked_arithmetic(),
            interfaces=self.interfaces(),
        )

        functions: list[Function] = []
        resume_at = -1
        for index in candidates:
            if index <= resume_at:
                continue
            try:
                header = self.parse_header(index)
            except MalformedFunction as exc:
                logger.debug("Recovered from malformed function at %s: %s", exc.location, exc.reason)
                self.diagnostics.append(Diagnostic(exc.location, exc.reason))
                continue
            if header is None:
                continue
            functions.append(self._build_function(header, context))
            resume_at = header.body_close

        if candidates and not functions and self.diagnostics:
            first = self.diagnostics[0]
            raise ParseError(f"no function could be recovered ({first.reason})", first.location)

        return self._assemble(functions, storage)

    def _build_function(self, header: FunctionHeader, context: ScanContext) -> Function:
        scan_context = ScanContext(
            storage=context.storage,
            functions=context.functions,
            parameters=header.parameters,
            checked_arithmetic=context.checked_arithmetic,
            interfaces=context.interfaces,
        )
        scanner = self.scanner_class(self.tokens, header.body_open, header.body_close, scan_context)
        result = scanner.scan()
        operations, edges = finalize_operations(result.pending)

        modifiers = list(header.modifiers)
        if not any(modifier.kind is ModifierKind.REENTRANCY_GUARD for modifier in modifiers):
            guard = _body_guard(operations)
            if guard is not None:
                modifiers.append(Modifier(guard, ModifierKind.REENTRANCY_GUARD))

        return Function(
            name=header.name,
            visibility=header.visibility,
            mutability=header.mutability,
            location=header.location,
            operations=operations,
            modifiers=tuple(modifiers),
            edges=edges,
            parameters=header.parameters,
            doc=header.doc,
            internal_calls=tuple(result.internal_calls),
            returns_result=header.returns_result,
        )

    def _assemble(self, functions: list[Function], storage: list[StorageSlot]) -> ContractModel:
        return assemble_model(
            self.contract_name() or self.name_hint or "Contract",
            self.dialect,
            functions,
            storage,
            diagnostics=self.diagnostics,
            checked_arithmetic=self.checked_arithmetic(),
            has_test_module=self.has_test_module(),
            size_bytes=self.size_bytes,
            constants=self.constant_names(),
        )


def assemble_model(
    name: str,
    dialect: Dialect,
    functions: list[Function],
    storage: list[StorageSlot],
    *,
    diagnostics: list[Diagnostic],
    checked_arithmetic: bool,
    has_test_module: bool = False,
    size_bytes: int = 0,
    constants: list[tuple[str, SourceLocation]] | tuple[()] = (),
) -> ContractModel:
    """Derive slot readers/writers, call sites and the source map, then freeze the model."""
    readers: dict[str, list[str]] = {}
    writers: dict[str, list[str]] = {}
    call_sites: list[ExternalCallSite] = []
    for function in functions:
        for index, op in enumerate(function.operations):
            if isinstance(op, StorageRead):
                _append_unique(readers.setdefault(op.slot, []), function.name)
            elif isinstance(op, StorageWrite):
                _append_unique(writers.setdefault(op.slot, []), function.name)
            elif isinstance(op, ExternalCall):
                call_sites.append(ExternalCallSite(function.name, index, op))

    slots = tuple(
        StorageSlot(
            name=slot.name,
            type_class=slot.type_class,
            declared_type=slot.declared_type,
            location=slot.location,
            readers=tuple(readers.get(slot.name, ())),
            writers=tuple(writers.get(slot.name, ())),
            value_bits=slot.value_bits,
        )
        for slot in storage
    )
    source_map: dict[str, SourceLocation] = {}
    for function in functions:
        source_map.setdefault(f"function:{function.name}", function.location)
    for slot in slots:
        source_map.setdefault(f"slot:{slot.name}", slot.location)
    for constant, location in constants:
        source_map.setdefault(f"constant:{constant}", location)

    return ContractModel(
        name=name,
        dialect=dialect,
        functions=tuple(functions),
        storage=slots,
        call_sites=tuple(call_sites),
        source_map=MappingProxyType(source_map),
        diagnostics=tuple(diagnostics),
        checked_arithmetic=checked_arithmetic,
        has_test_module=has_test_module,
        size_bytes=size_bytes,
        constants=tuple(constant for constant, _ in constants),
    )


def _append_unique(items: list[str], value: str) -> None:
    if value not in items:
        items.append(value)


def _body_guard(operations: tuple) -> str | None:
    for op in operations:
        if isinstance(op, InternalCall) and REENTRANCY_GUARD_NAME.search(op.callee):
            return op.callee
        if isinstance(op, StorageWrite) and REENTRANCY_GUARD_NAME.search(op.slot):
            return op.slot
    return None


_DECLARATION_QUALIFIERS = frozenset(
    {"public", "private", "internal", "external", "override", "virtual", "transient", "constant", "immutable"}
)


def solidity_declaration(tokens: list[Token], start: int, end: int) -> StorageSlot | None:
    """Parse a Solidity-style state variable ``type [qualifiers] name [= value]``."""
    texts = [token.text for token in tokens[start : end + 1]]
    if "constant" in texts or "immutable" in texts:
        return None
    stop = end
    depth = 0
    for index in range(start, end + 1):
        token = tokens[index]
        if token.is_punct("(", "["):
            depth += 1
        elif token.is_punct(")", "]"):
            depth -= 1
        elif token.is_punct("=") and depth == 0:
            stop = index - 1
            break
    name_index = -1
    for index in range(stop, start, -1):
        token = tokens[index]
        if token.kind is TokenKind.IDENT and token.text not in _DECLARATION_QUALIFIERS:
            name_index = index
            break
    if name_index < 0:
        return None
    type_end = name_index
    for index in range(start, name_index):
        if tokens[index].text in _DECLARATION_QUALIFIERS:
            type_end = index
            break
    declared = tokens[start:type_end]
    if not declared:
        return None
    declared_type = join_tokens(declared)
    if declared[0].text == "mapping":
        arrows = [index for index, token in enumerate(declared) if token.is_punct("=>")]
        value = declared[arrows[-1] + 1 :] if arrows else declared
        value_text = join_tokens([token for token in value if not token.is_punct(")")])
        return StorageSlot(name=tokens[name_index].text, type_class=TypeClass.MAPPING,
                           declared_type=declared_type, location=tokens[name_index].location,
                           value_bits=type_bits(value_text))
    if any(token.is_punct("[") for token in declared):
        return StorageSlot(name=tokens[name_index].text, type_class=TypeClass.ARRAY,
                           declared_type=declared_type, location=tokens[name_index].location,
                           value_bits=type_bits(declared[0].text))
    return StorageSlot(name=tokens[name_index].text, type_class=TypeClass.VALUE,
                       declared_type=declared_type, location=tokens[name_index].location,
                       value_bits=type_bits(declared_type))


_EOF = Token(TokenKind.PUNCT, "", 0, 0, -1)
