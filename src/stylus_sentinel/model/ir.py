"""Immutable intermediate representation of a contract.

The IR is built once by :func:`stylus_sentinel.model.build_model` and then
shared read-only between every detector. All containers are tuples and every
dataclass is frozen.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import ClassVar

__all__ = [
    "DYNAMIC_SLOT",
    "AccessPattern",
    "ArithmeticOp",
    "BoundKind",
    "Branch",
    "CallKind",
    "ContractModel",
    "ControlFlowEdge",
    "Diagnostic",
    "Dialect",
    "DialectHint",
    "EdgeKind",
    "Emit",
    "EnvRead",
    "ExternalCall",
    "ExternalCallSite",
    "Function",
    "InternalCall",
    "Loop",
    "MemoryAlloc",
    "Modifier",
    "ModifierKind",
    "Mutability",
    "OpKind",
    "OpaqueOp",
    "Operation",
    "Parameter",
    "ResultHandling",
    "SourceLocation",
    "StorageRead",
    "StorageSlot",
    "StorageWrite",
    "TargetOrigin",
    "TypeClass",
    "UnsafeCode",
    "Visibility",
]

# Slot name used when the storage key is computed at runtime (bytecode).
DYNAMIC_SLOT = "<dynamic>"


class Dialect(StrEnum):
    STYLUS_RUST = "stylus-rust"
    SOLIDITY = "solidity"
    WASM = "wasm"


class DialectHint(StrEnum):
    AUTO = "auto"
    STYLUS_RUST = "stylus-rust"
    SOLIDITY = "solidity"
    WASM = "wasm"


@dataclass(slots=True, frozen=True, order=True)
class SourceLocation:
    """Line/column for source dialects, byte offset for bytecode."""

    line: int = 0
    column: int = 0
    offset: int = -1

    def __str__(self) -> str:
        if self.line > 0:
            return f"{self.line}:{self.column}"
        return f"0x{self.offset:04X}" if self.offset >= 0 else "?"


class OpKind(StrEnum):
    ARITHMETIC = "arithmetic"
    STORAGE_READ = "storage_read"
    STORAGE_WRITE = "storage_write"
    EXTERNAL_CALL = "external_call"
    INTERNAL_CALL = "internal_call"
    MEMORY_ALLOC = "memory_alloc"
    LOOP = "loop"
    BRANCH = "branch"
    ENV_READ = "env_read"
    EMIT = "emit"
    UNSAFE = "unsafe"
    OPAQUE = "opaque"


class CallKind(StrEnum):
    CALL = "call"
    STATIC = "static"
    DELEGATE = "delegate"
    TRANSFER = "transfer"
    CREATE = "create"


class TargetOrigin(StrEnum):
    CALLER = "caller"
    STORAGE = "storage"
    PARAMETER = "parameter"
    LITERAL = "literal"
    UNKNOWN = "unknown"
    # Bytecode call targets are runtime values with no recoverable source.
    OPAQUE = "opaque"


class ResultHandling(StrEnum):
    PROPAGATED = "propagated"
    ASSERTED = "asserted"
    UNWRAPPED = "unwrapped"
    IMPLICIT = "implicit"
    IGNORED = "ignored"


class BoundKind(StrEnum):
    CONSTANT = "constant"
    PARAMETER = "parameter"
    STORAGE = "storage"
    UNBOUNDED = "unbounded"
    UNKNOWN = "unknown"


@dataclass(slots=True, frozen=True)
class ArithmeticOp:
    kind: ClassVar[OpKind] = OpKind.ARITHMETIC

    operator: str
    left: str
    right: str
    location: SourceLocation
    checked: bool = False
    wrapping: bool = False
    flows_to_storage: bool = False
    used_as_index: bool = False
    operand_bits: int = 256
    loop_depth: int = 0


@dataclass(slots=True, frozen=True)
class StorageRead:
    kind: ClassVar[OpKind] = OpKind.STORAGE_READ

    slot: str
    location: SourceLocation
    keyed_by: str | None = None
    loop_depth: int = 0


@dataclass(slots=True, frozen=True)
class StorageWrite:
    kind: ClassVar[OpKind] = OpKind.STORAGE_WRITE

    slot: str
    location: SourceLocation
    keyed_by: str | None = None
    loop_depth: int = 0


@dataclass(slots=True, frozen=True)
class ExternalCall:
    kind: ClassVar[OpKind] = OpKind.EXTERNAL_CALL

    target: str
    call_kind: CallKind
    location: SourceLocation
    target_origin: TargetOrigin = TargetOrigin.UNKNOWN
    handling: ResultHandling = ResultHandling.IGNORED
    value_transfer: bool = False
    method: str | None = None
    loop_depth: int = 0

    @property
    def return_checked(self) -> bool:
        return self.handling is not ResultHandling.IGNORED


@dataclass(slots=True, frozen=True)
class InternalCall:
    kind: ClassVar[OpKind] = OpKind.INTERNAL_CALL

    callee: str
    location: SourceLocation
    loop_depth: int = 0


@dataclass(slots=True, frozen=True)
class MemoryAlloc:
    kind: ClassVar[OpKind] = OpKind.MEMORY_ALLOC

    construct: str
    location: SourceLocation
    preallocated: bool = False
    loop_depth: int = 0


@dataclass(slots=True, frozen=True)
class Loop:
    kind: ClassVar[OpKind] = OpKind.LOOP

    bound: str
    bound_kind: BoundKind
    location: SourceLocation
    # Index of the last operation inside the loop body (the loop itself when empty).
    body_end: int = -1
    loop_depth: int = 0


@dataclass(slots=True, frozen=True)
class Branch:
    kind: ClassVar[OpKind] = OpKind.BRANCH

    condition: str
    location: SourceLocation
    is_access_check: bool = False
    reverts: bool = False
    loop_depth: int = 0


@dataclass(slots=True, frozen=True)
class EnvRead:
    kind: ClassVar[OpKind] = OpKind.ENV_READ

    name: str
    location: SourceLocation
    loop_depth: int = 0


@dataclass(slots=True, frozen=True)
class Emit:
    kind: ClassVar[OpKind] = OpKind.EMIT

    event: str
    location: SourceLocation
    loop_depth: int = 0


@dataclass(slots=True, frozen=True)
class UnsafeCode:
    kind: ClassVar[OpKind] = OpKind.UNSAFE

    construct: str
    location: SourceLocation
    loop_depth: int = 0


@dataclass(slots=True, frozen=True)
class OpaqueOp:
    kind: ClassVar[OpKind] = OpKind.OPAQUE

    name: str
    location: SourceLocation
    loop_depth: int = 0


Operation = (
    ArithmeticOp
    | StorageRead
    | StorageWrite
    | ExternalCall
    | InternalCall
    | MemoryAlloc
    | Loop
    | Branch
    | EnvRead
    | Emit
    | UnsafeCode
    | OpaqueOp
)


class ModifierKind(StrEnum):
    ACCESS_CONTROL = "access_control"
    REENTRANCY_GUARD = "reentrancy_guard"
    PAYABLE = "payable"
    OTHER = "other"


@dataclass(slots=True, frozen=True)
class Modifier:
    name: str
    kind: ModifierKind = ModifierKind.OTHER


class EdgeKind(StrEnum):
    ENTRY = "entry"
    SEQUENTIAL = "sequential"
    BRANCH = "branch"
    LOOP_BACK = "loop_back"
    EXIT = "exit"


@dataclass(slots=True, frozen=True)
class ControlFlowEdge:
    """Edge between operation indices; -1 is the entry, len(operations) the exit."""

    source: int
    target: int
    kind: EdgeKind


class Visibility(StrEnum):
    PUBLIC = "public"
    EXTERNAL = "external"
    INTERNAL = "internal"
    PRIVATE = "private"


class Mutability(StrEnum):
    VIEW = "view"
    PURE = "pure"
    PAYABLE = "payable"
    NONE = "nonpayable"


@dataclass(slots=True, frozen=True)
class Parameter:
    name: str
    declared_type: str


_CONSTRUCTOR_NAMES = frozenset({"constructor", "init", "initialize", "initializer"})


@dataclass(slots=True, frozen=True)
class Function:
    name: str
    visibility: Visibility
    mutability: Mutability
    location: SourceLocation
    operations: tuple[Operation, ...] = ()
    modifiers: tuple[Modifier, ...] = ()
    edges: tuple[ControlFlowEdge, ...] = ()
    parameters: tuple[Parameter, ...] = ()
    # None: documentation cannot be known (bytecode); "": absent.
    doc: str | None = ""
    internal_calls: tuple[str, ...] = ()
    returns_result: bool = False

    @property
    def is_entrypoint(self) -> bool:
        return self.visibility in (Visibility.PUBLIC, Visibility.EXTERNAL)

    @property
    def is_constructor(self) -> bool:
        return self.name.lower() in _CONSTRUCTOR_NAMES

    @property
    def is_state_mutating(self) -> bool:
        return self.mutability not in (Mutability.VIEW, Mutability.PURE)

    def ops_of(self, *types: type) -> list[tuple[int, Operation]]:
        return [(index, op) for index, op in enumerate(self.operations) if isinstance(op, types)]

    def has_modifier(self, kind: ModifierKind) -> bool:
        return any(modifier.kind is kind for modifier in self.modifiers)


class TypeClass(StrEnum):
    VALUE = "value"
    MAPPING = "mapping"
    ARRAY = "array"


class AccessPattern(StrEnum):
    UNUSED = "unused"
    READ_ONLY = "read-only"
    WRITE_ONLY = "write-only"
    READ_WRITE = "read-write"


@dataclass(slots=True, frozen=True)
class StorageSlot:
    name: str
    type_class: TypeClass
    declared_type: str
    location: SourceLocation
    readers: tuple[str, ...] = ()
    writers: tuple[str, ...] = ()
    value_bits: int = 256

    @property
    def access_pattern(self) -> AccessPattern:
        if self.readers and self.writers:
            return AccessPattern.READ_WRITE
        if self.readers:
            return AccessPattern.READ_ONLY
        if self.writers:
            return AccessPattern.WRITE_ONLY
        return AccessPattern.UNUSED


@dataclass(slots=True, frozen=True)
class ExternalCallSite:
    function: str
    index: int
    call: ExternalCall


@dataclass(slots=True, frozen=True)
class Diagnostic:
    """A problem the builder or pipeline recovered from."""

    location: SourceLocation | None
    reason: str
    source: str = "parser"

    def to_dict(self) -> dict[str, object]:
        return {
            "source": self.source,
            "reason": self.reason,
            "location": str(self.location) if self.location is not None else None,
        }


@dataclass(slots=True, frozen=True)
class ContractModel:
    name: str
    dialect: Dialect
    functions: tuple[Function, ...] = ()
    storage: tuple[StorageSlot, ...] = ()
    call_sites: tuple[ExternalCallSite, ...] = ()
    source_map: Mapping[str, SourceLocation] = field(default_factory=lambda: MappingProxyType({}))
    diagnostics: tuple[Diagnostic, ...] = ()
    checked_arithmetic: bool = False
    has_test_module: bool = False
    size_bytes: int = 0
    # Compile-time constants; they occupy no storage.
    constants: tuple[str, ...] = ()

    def function(self, name: str) -> Function | None:
        for function in self.functions:
            if function.name == name:
                return function
        return None

    def slot(self, name: str) -> StorageSlot | None:
        for slot in self.storage:
            if slot.name == name:
                return slot
        return None

    def reachable_callees(self, function: Function, *, limit: int = 16) -> list[Function]:
        """Internal functions reachable from *function*, breadth first, cycle safe."""
        seen = {function.name}
        queue = list(function.internal_calls)
        found: list[Function] = []
        while queue and len(found) < limit:
            name = queue.pop(0)
            if name in seen:
                continue
            seen.add(name)
            callee = self.function(name)
            if callee is None:
                continue
            found.append(callee)
            queue.extend(callee.internal_calls)
        return found
