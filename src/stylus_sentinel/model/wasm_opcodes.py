"""WebAssembly opcode definitions and immediate layouts.

Covers the MVP instruction set plus the sign-extension, non-trapping
conversion, bulk-memory and reference-types additions that Stylus
toolchains emit. SIMD (0xFD) is not decoded.
"""
from __future__ import annotations

from enum import IntEnum, StrEnum


class OpCode(IntEnum):
    UNREACHABLE = 0x00
    NOP = 0x01
    BLOCK = 0x02
    LOOP = 0x03
    IF = 0x04
    ELSE = 0x05
    END = 0x0B
    BR = 0x0C
    BR_IF = 0x0D
    BR_TABLE = 0x0E
    RETURN = 0x0F
    CALL = 0x10
    CALL_INDIRECT = 0x11
    DROP = 0x1A
    SELECT = 0x1B
    SELECT_T = 0x1C
    LOCAL_GET = 0x20
    LOCAL_SET = 0x21
    LOCAL_TEE = 0x22
    GLOBAL_GET = 0x23
    GLOBAL_SET = 0x24
    TABLE_GET = 0x25
    TABLE_SET = 0x26
    MEMORY_SIZE = 0x3F
    MEMORY_GROW = 0x40
    I32_CONST = 0x41
    I64_CONST = 0x42
    F32_CONST = 0x43
    F64_CONST = 0x44
    I32_ADD = 0x6A
    I32_SUB = 0x6B
    I32_MUL = 0x6C
    I64_ADD = 0x7C
    I64_SUB = 0x7D
    I64_MUL = 0x7E
    REF_NULL = 0xD0
    REF_IS_NULL = 0xD1
    REF_FUNC = 0xD2
    PREFIX_FC = 0xFC
    PREFIX_SIMD = 0xFD


class Immediate(StrEnum):
    NONE = "none"
    BLOCK_TYPE = "block_type"
    INDEX = "index"
    INDEX_PAIR = "index_pair"
    MEMARG = "memarg"
    BR_TABLE = "br_table"
    I32 = "i32"
    I64 = "i64"
    F32 = "f32"
    F64 = "f64"
    SELECT_TYPES = "select_types"
    BYTE = "byte"
    PREFIXED = "prefixed"


def _immediates() -> dict[int, Immediate]:
    table: dict[int, Immediate] = {
        OpCode.UNREACHABLE: Immediate.NONE,
        OpCode.NOP: Immediate.NONE,
        OpCode.BLOCK: Immediate.BLOCK_TYPE,
        OpCode.LOOP: Immediate.BLOCK_TYPE,
        OpCode.IF: Immediate.BLOCK_TYPE,
        OpCode.ELSE: Immediate.NONE,
        OpCode.END: Immediate.NONE,
        OpCode.BR: Immediate.INDEX,
        OpCode.BR_IF: Immediate.INDEX,
        OpCode.BR_TABLE: Immediate.BR_TABLE,
        OpCode.RETURN: Immediate.NONE,
        OpCode.CALL: Immediate.INDEX,
        OpCode.CALL_INDIRECT: Immediate.INDEX_PAIR,
        OpCode.DROP: Immediate.NONE,
        OpCode.SELECT: Immediate.NONE,
        OpCode.SELECT_T: Immediate.SELECT_TYPES,
        OpCode.LOCAL_GET: Immediate.INDEX,
        OpCode.LOCAL_SET: Immediate.INDEX,
        OpCode.LOCAL_TEE: Immediate.INDEX,
        OpCode.GLOBAL_GET: Immediate.INDEX,
        OpCode.GLOBAL_SET: Immediate.INDEX,
        OpCode.TABLE_GET: Immediate.INDEX,
        OpCode.TABLE_SET: Immediate.INDEX,
        OpCode.MEMORY_SIZE: Immediate.BYTE,
        OpCode.MEMORY_GROW: Immediate.BYTE,
        OpCode.I32_CONST: Immediate.I32,
        OpCode.I64_CONST: Immediate.I64,
        OpCode.F32_CONST: Immediate.F32,
        OpCode.F64_CONST: Immediate.F64,
        OpCode.REF_NULL: Immediate.BYTE,
        OpCode.REF_IS_NULL: Immediate.NONE,
        OpCode.REF_FUNC: Immediate.INDEX,
        OpCode.PREFIX_FC: Immediate.PREFIXED,
    }
    # Loads and stores.
    for opcode in range(0x28, 0x3F):
        table[opcode] = Immediate.MEMARG
    # Numeric instructions, including the sign-extension operators.
    for opcode in range(0x45, 0xC5):
        table[opcode] = Immediate.NONE
    return table


IMMEDIATES: dict[int, Immediate] = _immediates()

# Number of u32 immediates following each 0xFC sub-opcode.
PREFIX_FC_OPERANDS: dict[int, int] = {
    0: 0, 1: 0, 2: 0, 3: 0, 4: 0, 5: 0, 6: 0, 7: 0,
    8: 2,   # memory.init
    9: 1,   # data.drop
    10: 2,  # memory.copy
    11: 1,  # memory.fill
    12: 2,  # table.init
    13: 1,  # elem.drop
    14: 2,  # table.copy
    15: 1,  # table.grow
    16: 1,  # table.size
    17: 1,  # table.fill
}

BLOCK_VALUE_TYPES = frozenset({0x40, 0x7F, 0x7E, 0x7D, 0x7C, 0x7B, 0x70, 0x6F})

ARITHMETIC_OPERATORS: dict[int, tuple[str, int]] = {
    OpCode.I32_ADD: ("+", 32),
    OpCode.I32_SUB: ("-", 32),
    OpCode.I32_MUL: ("*", 32),
    OpCode.I64_ADD: ("+", 64),
    OpCode.I64_SUB: ("-", 64),
    OpCode.I64_MUL: ("*", 64),
}

BRANCH_OPCODES = frozenset({OpCode.IF, OpCode.BR_IF, OpCode.BR_TABLE})
BLOCK_OPCODES = frozenset({OpCode.BLOCK, OpCode.LOOP, OpCode.IF})


def opcode_name(opcode: int) -> str:
    try:
        return OpCode(opcode).name.lower()
    except ValueError:
        return f"0x{opcode:02x}"
