"""Stylus host I/O registry.

Stylus programs reach the chain through functions imported from the
``vm_hooks`` module. Each entry maps an import name to the operation it
performs; bookkeeping hooks (argument/result plumbing, hashing) map to no
operation at all.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from .ir import CallKind


HOST_MODULES = frozenset({"vm_hooks", "vm_hooks_v1"})


class HostEffect(StrEnum):
    STORAGE_READ = "storage_read"
    STORAGE_WRITE = "storage_write"
    EXTERNAL_CALL = "external_call"
    ENV_READ = "env_read"
    EMIT = "emit"
    MEMORY_ALLOC = "memory_alloc"
    BOOKKEEPING = "bookkeeping"


@dataclass(frozen=True, slots=True)
class HostIO:
    name: str
    effect: HostEffect
    call_kind: CallKind | None = None
    env_name: str | None = None


KNOWN_HOSTIOS: tuple[HostIO, ...] = (
    HostIO(name="storage_load_bytes32", effect=HostEffect.STORAGE_READ),
    HostIO(name="storage_cache_bytes32", effect=HostEffect.STORAGE_WRITE),
    HostIO(name="storage_store_bytes32", effect=HostEffect.STORAGE_WRITE),
    HostIO(name="storage_flush_cache", effect=HostEffect.BOOKKEEPING),
    HostIO(name="call_contract", effect=HostEffect.EXTERNAL_CALL, call_kind=CallKind.CALL),
    HostIO(name="delegate_call_contract", effect=HostEffect.EXTERNAL_CALL, call_kind=CallKind.DELEGATE),
    HostIO(name="static_call_contract", effect=HostEffect.EXTERNAL_CALL, call_kind=CallKind.STATIC),
    HostIO(name="create1", effect=HostEffect.EXTERNAL_CALL, call_kind=CallKind.CREATE),
    HostIO(name="create2", effect=HostEffect.EXTERNAL_CALL, call_kind=CallKind.CREATE),
    HostIO(name="emit_log", effect=HostEffect.EMIT),
    HostIO(name="pay_for_memory_grow", effect=HostEffect.MEMORY_ALLOC),
    HostIO(name="msg_sender", effect=HostEffect.ENV_READ, env_name="msg.sender"),
    HostIO(name="msg_value", effect=HostEffect.ENV_READ, env_name="msg.value"),
    HostIO(name="msg_reentrant", effect=HostEffect.ENV_READ, env_name="msg.reentrant"),
    HostIO(name="tx_origin", effect=HostEffect.ENV_READ, env_name="tx.origin"),
    HostIO(name="tx_gas_price", effect=HostEffect.ENV_READ, env_name="tx.gasprice"),
    HostIO(name="tx_ink_price", effect=HostEffect.ENV_READ, env_name="tx.inkprice"),
    HostIO(name="block_timestamp", effect=HostEffect.ENV_READ, env_name="block.timestamp"),
    HostIO(name="block_number", effect=HostEffect.ENV_READ, env_name="block.number"),
    HostIO(name="block_basefee", effect=HostEffect.ENV_READ, env_name="block.basefee"),
    HostIO(name="block_coinbase", effect=HostEffect.ENV_READ, env_name="block.coinbase"),
    HostIO(name="block_gas_limit", effect=HostEffect.ENV_READ, env_name="block.gaslimit"),
    HostIO(name="chainid", effect=HostEffect.ENV_READ, env_name="block.chainid"),
    HostIO(name="evm_gas_left", effect=HostEffect.ENV_READ, env_name="gasleft"),
    HostIO(name="evm_ink_left", effect=HostEffect.ENV_READ, env_name="inkleft"),
    HostIO(name="contract_address", effect=HostEffect.ENV_READ, env_name="address.this"),
    HostIO(name="account_balance", effect=HostEffect.ENV_READ, env_name="address.balance"),
    HostIO(name="account_code", effect=HostEffect.ENV_READ, env_name="address.code"),
    HostIO(name="account_code_size", effect=HostEffect.ENV_READ, env_name="address.codesize"),
    HostIO(name="account_codehash", effect=HostEffect.ENV_READ, env_name="address.codehash"),
    HostIO(name="read_args", effect=HostEffect.BOOKKEEPING),
    HostIO(name="write_result", effect=HostEffect.BOOKKEEPING),
    HostIO(name="read_return_data", effect=HostEffect.BOOKKEEPING),
    HostIO(name="return_data_size", effect=HostEffect.BOOKKEEPING),
    HostIO(name="native_keccak256", effect=HostEffect.BOOKKEEPING),
    HostIO(name="math_div", effect=HostEffect.BOOKKEEPING),
    HostIO(name="math_mod", effect=HostEffect.BOOKKEEPING),
    HostIO(name="math_pow", effect=HostEffect.BOOKKEEPING),
    HostIO(name="math_add_mod", effect=HostEffect.BOOKKEEPING),
    HostIO(name="math_mul_mod", effect=HostEffect.BOOKKEEPING),
)


HOSTIOS_BY_NAME: dict[str, HostIO] = {entry.name: entry for entry in KNOWN_HOSTIOS}

# Accessors on the SDK's VM handle (``self.vm().block_timestamp()``) that read
# the environment, keyed by method name.
VM_ENV_ACCESSORS: dict[str, str] = {
    entry.name: entry.env_name
    for entry in KNOWN_HOSTIOS
    if entry.effect is HostEffect.ENV_READ and entry.env_name is not None
}
VM_ENV_ACCESSORS.update({"chain_id": "block.chainid", "gas_left": "gasleft"})

# ``module::function()`` environment paths of the Rust SDK.
RUST_ENV_PATHS: dict[tuple[str, str], str] = {
    ("msg", "sender"): "msg.sender",
    ("msg", "value"): "msg.value",
    ("msg", "reentrant"): "msg.reentrant",
    ("tx", "origin"): "tx.origin",
    ("tx", "gas_price"): "tx.gasprice",
    ("block", "timestamp"): "block.timestamp",
    ("block", "number"): "block.number",
    ("block", "basefee"): "block.basefee",
    ("block", "chainid"): "block.chainid",
    ("block", "coinbase"): "block.coinbase",
    ("block", "gas_limit"): "block.gaslimit",
    ("contract", "address"): "address.this",
    ("contract", "balance"): "address.balance",
    ("evm", "gas_left"): "gasleft",
    ("evm", "ink_left"): "inkleft",
}

SOLIDITY_ENV_MEMBERS: dict[tuple[str, str], str] = {
    ("msg", "sender"): "msg.sender",
    ("msg", "value"): "msg.value",
    ("msg", "data"): "msg.data",
    ("msg", "sig"): "msg.sig",
    ("tx", "origin"): "tx.origin",
    ("tx", "gasprice"): "tx.gasprice",
    ("block", "timestamp"): "block.timestamp",
    ("block", "number"): "block.number",
    ("block", "basefee"): "block.basefee",
    ("block", "chainid"): "block.chainid",
    ("block", "coinbase"): "block.coinbase",
    ("block", "difficulty"): "block.difficulty",
    ("block", "prevrandao"): "block.prevrandao",
    ("block", "gaslimit"): "block.gaslimit",
}

TIMING_SOURCES = frozenset({"block.timestamp", "block.number"})
