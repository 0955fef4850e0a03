"""Tests for the Stylus Rust front end."""
import pytest

from stylus_sentinel.errors import ParseError
from stylus_sentinel.model import (
    ArithmeticOp,
    BoundKind,
    CallKind,
    Dialect,
    DialectHint,
    EnvRead,
    ExternalCall,
    Loop,
    MemoryAlloc,
    Mutability,
    ResultHandling,
    StorageRead,
    StorageWrite,
    TargetOrigin,
    TypeClass,
    UnsafeCode,
    Visibility,
    build_model,
)


def _counter() -> bytes:
    return b"""
#![cfg_attr(not(feature = "export-abi"), no_main)]
extern crate alloc;

use stylus_sdk::{alloy_primitives::U256, prelude::*};

sol_storage! {
    #[entrypoint]
    pub struct Counter {
        uint256 number;
        address owner;
    }
}

#[public]
impl Counter {
    /// Returns the current count.
    pub fn number(&self) -> U256 {
        self.number.get()
    }

    /// Sets the count.
    pub fn set_number(&mut self, new_number: U256) {
        self.number.set(new_number);
    }

    pub fn increment(&mut self) {
        let number = self.number.get();
        self.number.set(number + U256::from(1));
    }
}
"""


def _bank() -> bytes:
    return b"""
use stylus_sdk::{call::transfer_eth, msg, prelude::*};

sol_storage! {
    #[entrypoint]
    pub struct Bank {
        mapping(address => uint256) balances;
    }
}

#[public]
impl Bank {
    /// Withdraws the caller's balance.
    pub fn withdraw(&mut self) -> Result<(), Vec<u8>> {
        let sender = msg::sender();
        let amount = self.balances.get(sender);
        transfer_eth(sender, amount)?;
        self.balances.insert(sender, U256::ZERO);
        Ok(())
    }
}
"""


def test_counter_storage_and_entrypoint():
    model = build_model(_counter())

    assert model.name == "Counter"
    assert model.dialect is Dialect.STYLUS_RUST
    assert not model.checked_arithmetic
    assert [slot.name for slot in model.storage] == ["number", "owner"]
    assert model.slot("number").type_class is TypeClass.VALUE
    assert model.slot("number").writers == ("set_number", "increment")


def test_counter_function_headers():
    model = build_model(_counter())
    number, set_number, increment = model.functions

    assert number.name == "number"
    assert number.visibility is Visibility.EXTERNAL
    assert number.mutability is Mutability.VIEW
    assert number.doc == "Returns the current count."

    assert set_number.mutability is Mutability.NONE
    assert set_number.doc == "Sets the count."
    assert [parameter.name for parameter in set_number.parameters] == ["new_number"]

    assert increment.doc == ""


def test_increment_arithmetic_flows_to_storage():
    increment = build_model(_counter()).function("increment")
    [(_, op)] = increment.ops_of(ArithmeticOp)

    assert op.operator == "+"
    assert op.left == "number"
    assert op.right == "U256::from(1)"
    assert not op.checked
    assert op.flows_to_storage
    assert op.operand_bits == 256
    assert [type(op) for op in increment.operations] == [StorageRead, ArithmeticOp, StorageWrite]


def test_bank_transfer_propagates_result():
    model = build_model(_bank())
    withdraw = model.function("withdraw")

    assert withdraw.returns_result
    [(call_index, call)] = withdraw.ops_of(ExternalCall)
    assert call.call_kind is CallKind.TRANSFER
    assert call.target == "sender"
    assert call.target_origin is TargetOrigin.CALLER
    assert call.handling is ResultHandling.PROPAGATED
    assert call.value_transfer

    [(write_index, write)] = withdraw.ops_of(StorageWrite)
    assert write.keyed_by == "sender"
    assert call_index < write_index
    assert [op.name for _, op in withdraw.ops_of(EnvRead)] == ["msg.sender"]


def test_storage_struct_attribute_and_loops():
    source = b"""
#[storage]
#[entrypoint]
pub struct Registry {
    members: StorageVec<StorageAddress>,
    total: StorageUint<64, 1>,
}

#[public]
impl Registry {
    pub fn sweep(&mut self) {
        for i in 0..self.members.len() {
            let mut buffer = Vec::new();
            buffer.push(i);
        }
    }

    pub fn fixed(&self) -> u64 {
        let mut acc = 0;
        for i in 0..10 {
            acc = acc + i;
        }
        acc
    }
}
"""
    model = build_model(source)

    assert model.name == "Registry"
    assert model.slot("members").type_class is TypeClass.ARRAY
    assert model.slot("total").value_bits == 64

    sweep = model.function("sweep")
    [(loop_index, loop)] = sweep.ops_of(Loop)
    assert loop.bound_kind is BoundKind.STORAGE
    [(alloc_index, alloc)] = sweep.ops_of(MemoryAlloc)
    assert alloc.construct == "Vec::new"
    assert not alloc.preallocated
    assert alloc.loop_depth == 1
    assert loop_index < alloc_index <= loop.body_end

    [(_, fixed_loop)] = model.function("fixed").ops_of(Loop)
    assert fixed_loop.bound_kind is BoundKind.CONSTANT


def test_unsafe_constructs_are_recorded():
    source = b"""
#[public]
impl Raw {
    pub fn poke(&mut self, value: u8) {
        let ptr = Box::into_raw(Box::new(value));
        unsafe {
            *ptr = 1;
        }
    }
}
"""
    poke = build_model(source).function("poke")

    assert [op.construct for _, op in poke.ops_of(UnsafeCode)] == ["Box::into_raw", "unsafe block"]


def test_visibility_rules():
    source = b"""
#[public]
impl Exposed {
    pub fn open(&self) {}
    fn helper(&self) {}
}

impl Plain {
    pub fn visible(&self) {}
    pub(crate) fn crate_only(&self) {}
}
"""
    model = build_model(source)

    assert model.function("open").visibility is Visibility.EXTERNAL
    assert model.function("helper").visibility is Visibility.PRIVATE
    assert model.function("visible").visibility is Visibility.PUBLIC
    assert model.function("crate_only").visibility is Visibility.INTERNAL


def test_test_module_and_constants():
    source = b"""
const max_items: u32 = 10;

#[public]
impl Store {
    pub fn size(&self) -> u32 {
        max_items
    }
}

#[cfg(test)]
mod tests {
    #[test]
    fn it_works() {}
}
"""
    model = build_model(source)

    assert model.has_test_module
    assert model.constants == ("max_items",)
    assert [function.name for function in model.functions] == ["size"]


def test_unwrapped_and_ignored_call_results():
    source = b"""
#[public]
impl Router {
    pub fn forward(&mut self, target: Address) {
        call(Call::new(), target, &[]).unwrap();
        let _ = static_call(Call::new(), target, &[]);
    }
}
"""
    forward = build_model(source).function("forward")
    handled = [(call.call_kind, call.handling) for _, call in forward.ops_of(ExternalCall)]

    assert handled == [
        (CallKind.CALL, ResultHandling.UNWRAPPED),
        (CallKind.STATIC, ResultHandling.IGNORED),
    ]
    assert all(call.target_origin is TargetOrigin.PARAMETER for _, call in forward.ops_of(ExternalCall))


def test_rust_hint_on_unrecognised_text_raises():
    with pytest.raises(ParseError, match="no contract definitions found"):
        build_model(b"just some words", DialectHint.STYLUS_RUST)
