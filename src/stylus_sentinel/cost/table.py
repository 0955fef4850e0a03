"""Read-only instruction cost table."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import assert_never

from ..errors import ConfigurationError, UnestimatedOperationWarning
from ..model.ir import (
    ArithmeticOp,
    Branch,
    CallKind,
    Emit,
    EnvRead,
    ExternalCall,
    InternalCall,
    Loop,
    MemoryAlloc,
    OpaqueOp,
    OpKind,
    Operation,
    StorageRead,
    StorageWrite,
    UnsafeCode,
)

__all__ = ["DEFAULT_COST_TABLE", "CostEntry", "CostKey", "InstructionCostTable", "cost_key"]


@dataclass(slots=True, frozen=True, order=True)
class CostKey:
    kind: OpKind
    variant: str = ""

    def __str__(self) -> str:
        return f"{self.kind}:{self.variant}" if self.variant else str(self.kind)

    @classmethod
    def parse(cls, text: str) -> CostKey:
        kind, _, variant = text.partition(":")
        try:
            return cls(OpKind(kind.strip()), variant.strip())
        except ValueError as exc:
            raise ConfigurationError(f"Unknown operation kind in cost key '{text}'") from exc


@dataclass(slots=True, frozen=True)
class CostEntry:
    base_cost: int
    environmental_coefficient: float = 1.0


_ARITHMETIC_VARIANTS = {
    "+": "add",
    "-": "sub",
    "*": "mul",
    "/": "div",
    "%": "mod",
    "**": "exp",
}


def cost_key(op: Operation, *, warm: bool = False) -> CostKey:
    """Map an operation to its table key. Pure function of the operation."""
    match op:
        case ArithmeticOp(operator=operator):
            return CostKey(OpKind.ARITHMETIC, _ARITHMETIC_VARIANTS.get(operator, "other"))
        case StorageRead():
            return CostKey(OpKind.STORAGE_READ, "warm" if warm else "cold")
        case StorageWrite():
            return CostKey(OpKind.STORAGE_WRITE)
        case ExternalCall(call_kind=call_kind, value_transfer=value_transfer):
            if value_transfer or call_kind is CallKind.TRANSFER:
                return CostKey(OpKind.EXTERNAL_CALL, "value")
            return CostKey(OpKind.EXTERNAL_CALL, str(call_kind))
        case InternalCall():
            return CostKey(OpKind.INTERNAL_CALL, "jump")
        case MemoryAlloc(preallocated=preallocated):
            return CostKey(OpKind.MEMORY_ALLOC, "preallocated" if preallocated else "growable")
        case Loop():
            return CostKey(OpKind.LOOP)
        case Branch():
            return CostKey(OpKind.BRANCH)
        case EnvRead():
            return CostKey(OpKind.ENV_READ)
        case Emit():
            return CostKey(OpKind.EMIT)
        case UnsafeCode():
            return CostKey(OpKind.UNSAFE)
        case OpaqueOp(name=name):
            return CostKey(OpKind.OPAQUE, name)
        case _:
            assert_never(op)


class InstructionCostTable:
    """Immutable mapping of :class:`CostKey` to :class:`CostEntry`.

    Keys that are missing fail closed: :meth:`lookup` prices them at
    ``default_cost`` and hands back an :class:`UnestimatedOperationWarning`
    so the caller can surface it.
    """

    __slots__ = ("_entries", "default_cost")

    def __init__(self, entries: Mapping[CostKey, CostEntry], default_cost: int = 100) -> None:
        if default_cost < 0:
            raise ConfigurationError("default_cost must be non-negative")
        for key, entry in entries.items():
            if entry.base_cost < 0 or entry.environmental_coefficient < 0:
                raise ConfigurationError(f"Cost entry for '{key}' must be non-negative")
        self._entries: Mapping[CostKey, CostEntry] = MappingProxyType(dict(entries))
        self.default_cost = default_cost

    @property
    def entries(self) -> Mapping[CostKey, CostEntry]:
        return self._entries

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: CostKey) -> CostEntry | None:
        return self._entries.get(key)

    def lookup(self, op: Operation, *, warm: bool = False) -> tuple[CostEntry, UnestimatedOperationWarning | None]:
        key = cost_key(op, warm=warm)
        entry = self._entries.get(key)
        if entry is not None:
            return entry, None
        warning = UnestimatedOperationWarning(str(key), self.default_cost, op.location)
        return CostEntry(self.default_cost), warning

    def with_overrides(
        self,
        overrides: Mapping[CostKey, CostEntry],
        *,
        default_cost: int | None = None,
    ) -> InstructionCostTable:
        """Return a new table; this one is left untouched."""
        merged = dict(self._entries)
        merged.update(overrides)
        return InstructionCostTable(merged, self.default_cost if default_cost is None else default_cost)


_STORAGE = 1.5
_EXTERNAL = 1.2

DEFAULT_COST_TABLE = InstructionCostTable(
    {
        CostKey(OpKind.STORAGE_WRITE): CostEntry(20_000, _STORAGE),
        CostKey(OpKind.STORAGE_READ, "cold"): CostEntry(2_100, _STORAGE),
        CostKey(OpKind.STORAGE_READ, "warm"): CostEntry(100, _STORAGE),
        CostKey(OpKind.EXTERNAL_CALL, "call"): CostEntry(2_600, _EXTERNAL),
        CostKey(OpKind.EXTERNAL_CALL, "static"): CostEntry(2_600, _EXTERNAL),
        CostKey(OpKind.EXTERNAL_CALL, "delegate"): CostEntry(2_600, _EXTERNAL),
        CostKey(OpKind.EXTERNAL_CALL, "value"): CostEntry(9_000, _EXTERNAL),
        CostKey(OpKind.EXTERNAL_CALL, "create"): CostEntry(32_000, _EXTERNAL),
        CostKey(OpKind.INTERNAL_CALL, "jump"): CostEntry(8),
        CostKey(OpKind.ARITHMETIC, "add"): CostEntry(3),
        CostKey(OpKind.ARITHMETIC, "sub"): CostEntry(3),
        CostKey(OpKind.ARITHMETIC, "mul"): CostEntry(5),
        CostKey(OpKind.ARITHMETIC, "div"): CostEntry(5),
        CostKey(OpKind.ARITHMETIC, "mod"): CostEntry(5),
        CostKey(OpKind.ARITHMETIC, "exp"): CostEntry(50),
        CostKey(OpKind.ARITHMETIC, "other"): CostEntry(3),
        CostKey(OpKind.MEMORY_ALLOC, "growable"): CostEntry(200),
        CostKey(OpKind.MEMORY_ALLOC, "preallocated"): CostEntry(100),
        CostKey(OpKind.LOOP): CostEntry(8),
        CostKey(OpKind.BRANCH): CostEntry(10),
        CostKey(OpKind.ENV_READ): CostEntry(2),
        CostKey(OpKind.EMIT): CostEntry(375),
        CostKey(OpKind.UNSAFE): CostEntry(0),
    },
    default_cost=100,
)
