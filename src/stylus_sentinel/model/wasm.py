"""WASM module parser and bytecode front end."""
from __future__ import annotations

from dataclasses import dataclass, field
import logging

from ..errors import ParseError
from .cfg import PendingOp, finalize_operations
from .hostio import HOST_MODULES, HOSTIOS_BY_NAME, HostEffect
from .ir import (
    DYNAMIC_SLOT,
    ArithmeticOp,
    BoundKind,
    Branch,
    ContractModel,
    Diagnostic,
    Dialect,
    Emit,
    EnvRead,
    ExternalCall,
    Function,
    InternalCall,
    Loop,
    MemoryAlloc,
    Mutability,
    OpaqueOp,
    ResultHandling,
    SourceLocation,
    StorageRead,
    StorageWrite,
    TargetOrigin,
    Visibility,
)
from .source import assemble_model
from .wasm_opcodes import (
    ARITHMETIC_OPERATORS,
    BLOCK_OPCODES,
    BLOCK_VALUE_TYPES,
    IMMEDIATES,
    PREFIX_FC_OPERANDS,
    Immediate,
    OpCode,
    opcode_name,
)

logger = logging.getLogger(__name__)

WASM_MAGIC = b"\x00asm"
WASM_VERSION = 1
MAX_NAME_LENGTH = 1024
# Instructions after a msg_sender read within which a branch counts as an access check.
ACCESS_CHECK_WINDOW = 16

SECTION_CUSTOM = 0
SECTION_IMPORT = 2
SECTION_FUNCTION = 3
SECTION_EXPORT = 7
SECTION_CODE = 10
MAX_SECTION_ID = 12

IMPORT_FUNC = 0
IMPORT_TABLE = 1
IMPORT_MEMORY = 2
IMPORT_GLOBAL = 3


@dataclass(slots=True)
class Instruction:
    opcode: int
    offset: int
    immediates: tuple[int, ...] = ()
    size: int = 1


@dataclass(slots=True)
class Import:
    module: str
    name: str


@dataclass(slots=True)
class FunctionBody:
    index: int
    offset: int
    code: bytes


@dataclass(slots=True)
class WasmModule:
    imports: list[Import] = field(default_factory=list)
    declared_functions: int = 0
    exports: dict[int, str] = field(default_factory=dict)
    bodies: list[FunctionBody] = field(default_factory=list)
    names: dict[int, str] = field(default_factory=dict)

    def function_name(self, index: int) -> str:
        return self.names.get(index) or self.exports.get(index) or f"func_{index}"


class _BufferReader:
    def __init__(self, data: bytes, base: int = 0) -> None:
        self._data = data
        self._offset = 0
        self._base = base

    @property
    def offset(self) -> int:
        return self._base + self._offset

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def read_bytes(self, length: int) -> bytes:
        if length < 0:
            raise ValueError("negative length")
        end = self._offset + length
        if end > len(self._data):
            raise ValueError(f"Unexpected end of WASM data at offset {self.offset}")
        value = self._data[self._offset : end]
        self._offset = end
        return value

    def read_u8(self) -> int:
        return self.read_bytes(1)[0]

    def peek_u8(self) -> int:
        if self._offset >= len(self._data):
            raise ValueError(f"Unexpected end of WASM data at offset {self.offset}")
        return self._data[self._offset]

    def read_u32(self) -> int:
        return self._read_leb(32, signed=False)

    def read_s32(self) -> int:
        return self._read_leb(32, signed=True)

    def read_s33(self) -> int:
        return self._read_leb(33, signed=True)

    def read_s64(self) -> int:
        return self._read_leb(64, signed=True)

    def _read_leb(self, bits: int, *, signed: bool) -> int:
        start = self.offset
        result = 0
        shift = 0
        max_bytes = (bits + 6) // 7
        for _ in range(max_bytes):
            byte = self.read_u8()
            result |= (byte & 0x7F) << shift
            shift += 7
            if byte & 0x80 == 0:
                if signed and byte & 0x40:
                    result -= 1 << shift
                return result
        raise ValueError(f"Malformed LEB128 integer at offset {start}")

    def read_name(self) -> str:
        length = self.read_u32()
        if length > MAX_NAME_LENGTH:
            raise ValueError(f"Name exceeds {MAX_NAME_LENGTH} bytes at offset {self.offset}")
        data = self.read_bytes(length)
        try:
            return data.decode("utf-8", errors="strict")
        except UnicodeDecodeError as exc:
            raise ValueError(f"Invalid UTF-8 name at offset {self.offset - length}") from exc


def _skip_limits(reader: _BufferReader) -> None:
    flags = reader.read_u8()
    reader.read_u32()
    if flags & 0x01:
        reader.read_u32()


def _parse_imports(reader: _BufferReader, module: WasmModule) -> None:
    for _ in range(reader.read_u32()):
        module_name = reader.read_name()
        field_name = reader.read_name()
        kind = reader.read_u8()
        if kind == IMPORT_FUNC:
            reader.read_u32()
            module.imports.append(Import(module_name, field_name))
        elif kind == IMPORT_TABLE:
            reader.read_u8()
            _skip_limits(reader)
        elif kind == IMPORT_MEMORY:
            _skip_limits(reader)
        elif kind == IMPORT_GLOBAL:
            reader.read_u8()
            reader.read_u8()
        else:
            raise ValueError(f"Unknown import kind 0x{kind:02X} at offset {reader.offset - 1}")


def _parse_exports(reader: _BufferReader, module: WasmModule) -> None:
    for _ in range(reader.read_u32()):
        name = reader.read_name()
        kind = reader.read_u8()
        index = reader.read_u32()
        if kind == IMPORT_FUNC:
            module.exports.setdefault(index, name)


def _parse_code(reader: _BufferReader, module: WasmModule) -> None:
    first_index = len(module.imports)
    for position in range(reader.read_u32()):
        size = reader.read_u32()
        body_start = reader.offset
        body = _BufferReader(reader.read_bytes(size), body_start)
        for _ in range(body.read_u32()):
            body.read_u32()
            body.read_u8()
        code_offset = body.offset
        module.bodies.append(
            FunctionBody(first_index + position, code_offset, body.read_bytes(body.remaining))
        )


def _parse_names(reader: _BufferReader, module: WasmModule) -> None:
    while reader.remaining:
        subsection = reader.read_u8()
        size = reader.read_u32()
        payload = _BufferReader(reader.read_bytes(size), reader.offset - size)
        if subsection != 1:
            continue
        for _ in range(payload.read_u32()):
            index = payload.read_u32()
            module.names[index] = payload.read_name()


def parse_module(data: bytes) -> WasmModule:
    """Parse the sections of a WASM module needed for analysis."""
    reader = _BufferReader(data)
    if len(data) < 8:
        raise ValueError("Truncated WASM header")
    if reader.read_bytes(4) != WASM_MAGIC:
        raise ValueError("Invalid WASM magic")
    version = int.from_bytes(reader.read_bytes(4), "little")
    if version != WASM_VERSION:
        raise ValueError(f"Unsupported WASM version {version}")

    module = WasmModule()
    while reader.remaining:
        section_offset = reader.offset
        section_id = reader.read_u8()
        if section_id > MAX_SECTION_ID:
            raise ValueError(f"Unknown section id {section_id} at offset {section_offset}")
        size = reader.read_u32()
        if size > reader.remaining:
            raise ValueError(f"Malformed section {section_id} at offset {section_offset}: truncated payload")
        payload_offset = reader.offset
        payload = _BufferReader(reader.read_bytes(size), payload_offset)
        if section_id == SECTION_IMPORT:
            _parse_imports(payload, module)
        elif section_id == SECTION_FUNCTION:
            module.declared_functions = payload.read_u32()
        elif section_id == SECTION_EXPORT:
            _parse_exports(payload, module)
        elif section_id == SECTION_CODE:
            _parse_code(payload, module)
        elif section_id == SECTION_CUSTOM:
            name = payload.read_name()
            if name == "name":
                try:
                    _parse_names(payload, module)
                except ValueError as exc:
                    # Debug names are optional; fall back to func_<index>.
                    logger.debug("Ignoring malformed name section: %s", exc)

    if module.declared_functions != len(module.bodies):
        raise ValueError(
            f"Function and code section counts differ ({module.declared_functions} != {len(module.bodies)})"
        )
    return module


def disassemble(code: bytes, base_offset: int = 0) -> list[Instruction]:
    """Decode a function body's expression into instructions."""
    reader = _BufferReader(code, base_offset)
    instructions: list[Instruction] = []
    while reader.remaining:
        offset = reader.offset
        opcode = reader.read_u8()
        immediate = IMMEDIATES.get(opcode)
        if immediate is None:
            if opcode == OpCode.PREFIX_SIMD:
                raise ValueError(f"Unsupported SIMD instruction at offset {offset}")
            raise ValueError(f"Unknown opcode 0x{opcode:02X} at offset {offset}")
        try:
            operands = _read_immediates(reader, immediate)
        except ValueError as exc:
            raise ValueError(f"Malformed {opcode_name(opcode)} at offset {offset}: {exc}") from exc
        instructions.append(Instruction(opcode, offset, operands, reader.offset - offset))
    return instructions


def _read_immediates(reader: _BufferReader, immediate: Immediate) -> tuple[int, ...]:
    match immediate:
        case Immediate.NONE:
            return ()
        case Immediate.BLOCK_TYPE:
            if reader.peek_u8() in BLOCK_VALUE_TYPES:
                return (reader.read_u8(),)
            return (reader.read_s33(),)
        case Immediate.INDEX:
            return (reader.read_u32(),)
        case Immediate.INDEX_PAIR | Immediate.MEMARG:
            return (reader.read_u32(), reader.read_u32())
        case Immediate.BR_TABLE:
            targets = tuple(reader.read_u32() for _ in range(reader.read_u32()))
            return targets + (reader.read_u32(),)
        case Immediate.I32:
            return (reader.read_s32(),)
        case Immediate.I64:
            return (reader.read_s64(),)
        case Immediate.F32:
            reader.read_bytes(4)
            return ()
        case Immediate.F64:
            reader.read_bytes(8)
            return ()
        case Immediate.SELECT_TYPES:
            return tuple(reader.read_u8() for _ in range(reader.read_u32()))
        case Immediate.BYTE:
            return (reader.read_u8(),)
        case Immediate.PREFIXED:
            sub_opcode = reader.read_u32()
            count = PREFIX_FC_OPERANDS.get(sub_opcode)
            if count is None:
                raise ValueError(f"unknown 0xFC sub-opcode {sub_opcode}")
            return (sub_opcode,) + tuple(reader.read_u32() for _ in range(count))
    raise ValueError(f"unhandled immediate layout {immediate}")


class WasmFrontEnd:
    """Builds a :class:`ContractModel` from a compiled Stylus WASM module."""

    def __init__(self, data: bytes, *, name: str | None = None) -> None:
        self.data = data
        self.name_hint = name
        self.diagnostics: list[Diagnostic] = []

    def build(self) -> ContractModel:
        try:
            module = parse_module(self.data)
        except ValueError as exc:
            raise ParseError(str(exc), SourceLocation(offset=0)) from exc

        functions: list[Function] = []
        for body in module.bodies:
            name = module.function_name(body.index)
            try:
                instructions = disassemble(body.code, body.offset)
            except ValueError as exc:
                logger.debug("Skipping undecodable function %s: %s", name, exc)
                self.diagnostics.append(Diagnostic(SourceLocation(offset=body.offset), f"function '{name}': {exc}"))
                continue
            functions.append(self._build_function(module, body, name, instructions))

        if module.bodies and not functions:
            first = self.diagnostics[0]
            raise ParseError(f"no function could be recovered ({first.reason})", first.location)

        return assemble_model(
            self.name_hint or "module",
            Dialect.WASM,
            functions,
            [],
            diagnostics=self.diagnostics,
            checked_arithmetic=True,
            size_bytes=len(self.data),
        )

    def _build_function(
        self, module: WasmModule, body: FunctionBody, name: str, instructions: list[Instruction]
    ) -> Function:
        block_ends = _block_ends(instructions)
        pending: list[PendingOp] = []
        internal_calls: list[str] = []
        last_sender = -ACCESS_CHECK_WINDOW - 1

        for index, instruction in enumerate(instructions):
            opcode = instruction.opcode
            location = SourceLocation(offset=instruction.offset)
            if opcode == OpCode.CALL:
                target = instruction.immediates[0]
                if target < len(module.imports):
                    imported = module.imports[target]
                    op = self._host_operation(imported, instructions, index, location)
                    if isinstance(op, EnvRead) and op.name == "msg.sender":
                        last_sender = index
                    if op is not None:
                        pending.append(PendingOp(index, op))
                else:
                    callee = module.function_name(target)
                    pending.append(PendingOp(index, InternalCall(callee, location)))
                    if callee not in internal_calls:
                        internal_calls.append(callee)
            elif opcode == OpCode.CALL_INDIRECT:
                pending.append(PendingOp(index, OpaqueOp("call_indirect", location)))
            elif opcode == OpCode.LOOP:
                pending.append(PendingOp(index, Loop("", BoundKind.UNKNOWN, location), block_ends.get(index)))
            elif opcode in (OpCode.IF, OpCode.BR_IF, OpCode.BR_TABLE):
                end = block_ends.get(index) if opcode == OpCode.IF else None
                reverts = end is not None and any(
                    instructions[j].opcode == OpCode.UNREACHABLE for j in range(index + 1, end)
                )
                branch = Branch(
                    opcode_name(opcode),
                    location,
                    is_access_check=index - last_sender <= ACCESS_CHECK_WINDOW,
                    reverts=reverts,
                )
                pending.append(PendingOp(index, branch, end))
            elif opcode in ARITHMETIC_OPERATORS:
                operator, bits = ARITHMETIC_OPERATORS[opcode]
                pending.append(
                    PendingOp(index, ArithmeticOp(operator, "", "", location, checked=True, operand_bits=bits))
                )
            elif opcode == OpCode.MEMORY_GROW:
                pending.append(PendingOp(index, MemoryAlloc("memory.grow", location)))

        operations, edges = finalize_operations(pending)
        exported = body.index in module.exports
        return Function(
            name=name,
            visibility=Visibility.EXTERNAL if exported else Visibility.INTERNAL,
            mutability=Mutability.NONE,
            location=SourceLocation(offset=body.offset),
            operations=operations,
            edges=edges,
            doc=None,
            internal_calls=tuple(internal_calls),
        )

    @staticmethod
    def _host_operation(imported: Import, instructions: list[Instruction], index: int, location: SourceLocation):
        if imported.module not in HOST_MODULES:
            return OpaqueOp(f"{imported.module}::{imported.name}", location)
        hostio = HOSTIOS_BY_NAME.get(imported.name)
        if hostio is None:
            return OpaqueOp(f"{imported.module}::{imported.name}", location)
        match hostio.effect:
            case HostEffect.STORAGE_READ:
                return StorageRead(DYNAMIC_SLOT, location)
            case HostEffect.STORAGE_WRITE:
                return StorageWrite(DYNAMIC_SLOT, location)
            case HostEffect.EXTERNAL_CALL:
                following = instructions[index + 1] if index + 1 < len(instructions) else None
                dropped = following is not None and following.opcode == OpCode.DROP
                return ExternalCall(
                    "<runtime>",
                    hostio.call_kind,
                    location,
                    target_origin=TargetOrigin.OPAQUE,
                    handling=ResultHandling.IGNORED if dropped else ResultHandling.ASSERTED,
                    method=hostio.name,
                )
            case HostEffect.ENV_READ:
                return EnvRead(hostio.env_name, location)
            case HostEffect.EMIT:
                return Emit("log", location)
            case HostEffect.MEMORY_ALLOC:
                return MemoryAlloc(hostio.name, location)
        return None


def _block_ends(instructions: list[Instruction]) -> dict[int, int]:
    """Map each block/loop/if instruction index to the index of its ``end``."""
    stack: list[int] = []
    ends: dict[int, int] = {}
    for index, instruction in enumerate(instructions):
        if instruction.opcode in BLOCK_OPCODES:
            stack.append(index)
        elif instruction.opcode == OpCode.END and stack:
            ends[stack.pop()] = index
    return ends
