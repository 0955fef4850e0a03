"""Tests for the WASM bytecode front end."""
import pytest

from stylus_sentinel.cost import estimate_function
from stylus_sentinel.cost.table import cost_key
from stylus_sentinel.errors import ParseError
from stylus_sentinel.model import (
    DYNAMIC_SLOT,
    Dialect,
    OpaqueOp,
    StorageWrite,
    Visibility,
    build_model,
)
from stylus_sentinel.model.wasm import disassemble, parse_module


def _section(section_id: int, payload: bytes) -> bytes:
    return bytes([section_id, len(payload)]) + payload


def _name(text: str) -> bytes:
    return bytes([len(text)]) + text.encode()


def _module(import_module: str = "vm_hooks", import_name: str = "storage_store_bytes32", extra: bytes = b"") -> bytes:
    # One imported host function (index 0) and one local function "run" (index 1)
    # that calls the import twice.
    types = _section(1, b"\x01\x60\x00\x00")
    imports = _section(2, b"\x01" + _name(import_module) + _name(import_name) + b"\x00\x00")
    functions = _section(3, b"\x01\x00")
    exports = _section(7, b"\x01" + _name("run") + b"\x00\x01")
    body = b"\x00\x10\x00\x10\x00\x0b"
    code = _section(10, b"\x01" + bytes([len(body)]) + body)
    return b"\x00asm\x01\x00\x00\x00" + types + imports + functions + exports + code + extra


def test_host_storage_writes_become_operations():
    model = build_model(_module())

    assert model.dialect is Dialect.WASM
    assert model.name == "module"
    assert model.storage == ()
    [run] = model.functions
    assert run.name == "run"
    assert run.visibility is Visibility.EXTERNAL
    assert run.doc is None
    assert [type(op) for op in run.operations] == [StorageWrite, StorageWrite]
    assert all(op.slot == DYNAMIC_SLOT for op in run.operations)


def test_bytecode_functions_are_priced():
    [run] = build_model(_module()).functions

    assert estimate_function(run).gas == 40_000


def test_name_hint_is_used_for_the_model():
    assert build_model(_module(), name="counter").name == "counter"


def test_unknown_import_is_opaque():
    [run] = build_model(_module("env", "foo")).functions
    [(_, op), _] = run.ops_of(OpaqueOp)

    assert op.name == "env::foo"
    assert str(cost_key(op)) == "opaque:env::foo"


def test_name_section_overrides_export_name():
    subsection = b"\x01\x01" + _name("tick")
    names = _section(0, _name("name") + bytes([1, len(subsection)]) + subsection)

    [function] = build_model(_module(extra=names)).functions

    assert function.name == "tick"


def test_truncated_section_raises_parse_error():
    data = _module()[:-3]

    with pytest.raises(ParseError):
        build_model(data)


def test_bad_version_is_rejected():
    with pytest.raises(ValueError, match="Unsupported WASM version"):
        parse_module(b"\x00asm\x02\x00\x00\x00")


def test_disassemble_reports_offsets():
    instructions = disassemble(b"\x41\x05\x1a\x0b", base_offset=0x20)

    assert [instruction.offset for instruction in instructions] == [0x20, 0x22, 0x23]
    assert instructions[0].immediates == (5,)


def test_unknown_opcode_is_rejected():
    with pytest.raises(ValueError, match="Unknown opcode"):
        disassemble(b"\xff")
