"""Tests for the instruction cost table and gas estimation."""
import pytest

from stylus_sentinel.cost import (
    DEFAULT_COST_TABLE,
    CostEntry,
    CostKey,
    InstructionCostTable,
    cost_key,
    estimate_costs,
    estimate_function,
)
from stylus_sentinel.errors import ConfigurationError, UnestimatedOperationWarning
from stylus_sentinel.model import (
    ArithmeticOp,
    CallKind,
    ContractModel,
    DYNAMIC_SLOT,
    Dialect,
    ExternalCall,
    Function,
    Loop,
    BoundKind,
    Mutability,
    OpaqueOp,
    OpKind,
    SourceLocation,
    StorageRead,
    StorageWrite,
    Visibility,
)

LOC = SourceLocation(1, 1)


def _function(*operations, name="run", location=LOC) -> Function:
    return Function(name, Visibility.EXTERNAL, Mutability.NONE, location, operations=tuple(operations))


def test_cost_keys_for_operation_variants():
    assert str(cost_key(ArithmeticOp("**", "a", "b", LOC))) == "arithmetic:exp"
    assert str(cost_key(ArithmeticOp("<<", "a", "b", LOC))) == "arithmetic:other"
    assert str(cost_key(StorageRead("x", LOC))) == "storage_read:cold"
    assert str(cost_key(StorageRead("x", LOC), warm=True)) == "storage_read:warm"
    assert str(cost_key(StorageWrite("x", LOC))) == "storage_write"
    assert str(cost_key(ExternalCall("t", CallKind.CALL, LOC, value_transfer=True))) == "external_call:value"
    assert str(cost_key(ExternalCall("t", CallKind.TRANSFER, LOC))) == "external_call:value"
    assert str(cost_key(ExternalCall("t", CallKind.DELEGATE, LOC))) == "external_call:delegate"


def test_cost_key_parse():
    assert CostKey.parse("external_call:static") == CostKey(OpKind.EXTERNAL_CALL, "static")
    assert CostKey.parse("storage_write") == CostKey(OpKind.STORAGE_WRITE)

    with pytest.raises(ConfigurationError, match="Unknown operation kind"):
        CostKey.parse("teleport:fast")


def test_lookup_known_operation_has_no_warning():
    entry, warning = DEFAULT_COST_TABLE.lookup(StorageWrite("x", LOC))

    assert entry == CostEntry(20_000, 1.5)
    assert warning is None


def test_lookup_unknown_operation_uses_default_cost():
    op = OpaqueOp("env::foo", SourceLocation(offset=16))
    entry, warning = DEFAULT_COST_TABLE.lookup(op)

    assert entry.base_cost == 100
    assert isinstance(warning, UnestimatedOperationWarning)
    assert warning.key == "opaque:env::foo"
    assert warning.location == SourceLocation(offset=16)


def test_with_overrides_leaves_original_untouched():
    key = CostKey(OpKind.STORAGE_WRITE)
    updated = DEFAULT_COST_TABLE.with_overrides({key: CostEntry(22_100, 2.0)})

    assert updated.get(key) == CostEntry(22_100, 2.0)
    assert DEFAULT_COST_TABLE.get(key) == CostEntry(20_000, 1.5)
    assert len(updated) == len(DEFAULT_COST_TABLE)


def test_table_is_read_only():
    with pytest.raises(TypeError):
        DEFAULT_COST_TABLE.entries[CostKey(OpKind.LOOP)] = CostEntry(1)


def test_negative_costs_are_rejected():
    with pytest.raises(ConfigurationError, match="non-negative"):
        InstructionCostTable({CostKey(OpKind.LOOP): CostEntry(-1)})
    with pytest.raises(ConfigurationError, match="default_cost"):
        InstructionCostTable({}, default_cost=-5)


def test_repeated_writes_cost_scales_linearly():
    writes = [StorageWrite(name, LOC) for name in ("a", "b", "c")]
    estimate = estimate_function(_function(*writes))

    assert estimate.gas == 60_000
    assert estimate.weighted_gas == 90_000.0
    assert estimate.carbon_kg == pytest.approx(0.018)
    assert estimate.energy_kwh == pytest.approx(0.09)


def test_second_read_of_same_slot_is_warm():
    estimate = estimate_function(_function(StorageRead("x", LOC), StorageRead("x", LOC), StorageRead("y", LOC)))

    assert [cost.key for cost in estimate.operations] == [
        "storage_read:cold",
        "storage_read:warm",
        "storage_read:cold",
    ]
    assert estimate.gas == 2_100 + 100 + 2_100


def test_each_mapping_key_is_its_own_slot():
    estimate = estimate_function(
        _function(
            StorageRead("balances", LOC, keyed_by="a"),
            StorageRead("balances", LOC, keyed_by="b"),
            StorageRead("balances", LOC, keyed_by="a"),
        )
    )

    assert [cost.key for cost in estimate.operations] == [
        "storage_read:cold",
        "storage_read:cold",
        "storage_read:warm",
    ]


def test_runtime_computed_slots_stay_cold():
    estimate = estimate_function(_function(StorageRead(DYNAMIC_SLOT, LOC), StorageRead(DYNAMIC_SLOT, LOC)))

    assert estimate.gas == 2 * 2_100


def test_in_loop_gas_counts_loop_body_once():
    function = _function(
        Loop("n", BoundKind.PARAMETER, LOC, body_end=1),
        StorageWrite("total", LOC, loop_depth=1),
        ArithmeticOp("+", "i", "1", LOC),
    )
    estimate = estimate_function(function)

    assert estimate.gas == 8 + 20_000 + 3
    assert estimate.in_loop_gas == 20_000


def test_unestimated_operations_are_collected():
    estimate = estimate_function(_function(OpaqueOp("env::a", LOC), OpaqueOp("env::b", LOC)))

    assert estimate.gas == 200
    assert [warning.key for warning in estimate.unestimated] == ["opaque:env::a", "opaque:env::b"]


def test_contract_summary_totals_are_deterministic():
    model = ContractModel(
        "Store",
        Dialect.SOLIDITY,
        functions=(_function(StorageWrite("a", LOC), name="a"), _function(StorageRead("a", LOC), name="b")),
    )
    first = estimate_costs(model)
    second = estimate_costs(model)

    assert first == second
    assert first.total_gas == 22_100
    assert first.get("b").gas == 2_100
    assert first.get("missing") is None
    assert first.to_dict()["functions"][0]["function"] == "a"


def test_overloads_resolve_to_their_own_estimate():
    store = _function(StorageWrite("a", LOC), name="set", location=SourceLocation(5, 5))
    announce = _function(ArithmeticOp("+", "x", "1", LOC), name="set", location=SourceLocation(9, 5))
    summary = estimate_costs(ContractModel("Settings", Dialect.SOLIDITY, functions=(store, announce)))

    assert summary.for_function(store).gas == 20_000
    assert summary.for_function(announce).gas == 3
    assert summary.to_dict()["functions"][1]["location"] == "9:5"
