"""Tests for the security, gas and quality detectors."""
import pytest

from stylus_sentinel.cost import DEFAULT_COST_TABLE, CostEntry, CostKey
from stylus_sentinel.detectors import ALL_DETECTORS, DEFAULT_DETECTORS, BaseDetector, Category, Finding, Severity
from stylus_sentinel.detectors.base import DetectionContext, describe_call
from stylus_sentinel.detectors.trust_boundary import allow_list_check
from stylus_sentinel.detectors.unchecked_arithmetic import overflow_feasible
from stylus_sentinel.model import (
    ArithmeticOp,
    BoundKind,
    Branch,
    CallKind,
    ContractModel,
    Dialect,
    Emit,
    EnvRead,
    ExternalCall,
    Function,
    InternalCall,
    Loop,
    MemoryAlloc,
    Modifier,
    ModifierKind,
    Mutability,
    OpaqueOp,
    OpKind,
    ResultHandling,
    SourceLocation,
    StorageRead,
    StorageSlot,
    StorageWrite,
    TargetOrigin,
    TypeClass,
    UnsafeCode,
    Visibility,
)
from stylus_sentinel.scoring import RULE_SEVERITY

LOC = SourceLocation(1, 1)


def _loc(line: int) -> SourceLocation:
    return SourceLocation(line, 5)


def _fn(
    name,
    *operations,
    visibility=Visibility.EXTERNAL,
    mutability=Mutability.NONE,
    modifiers=(),
    doc="Documented.",
    internal_calls=(),
) -> Function:
    return Function(
        name,
        visibility,
        mutability,
        LOC,
        operations=tuple(operations),
        modifiers=tuple(modifiers),
        doc=doc,
        internal_calls=tuple(internal_calls),
    )


def _slot(name, type_class=TypeClass.VALUE) -> StorageSlot:
    return StorageSlot(name, type_class, "uint256", LOC)


def _model(*functions, storage=(), dialect=Dialect.SOLIDITY, **extra) -> ContractModel:
    return ContractModel("Sample", dialect, functions=tuple(functions), storage=tuple(storage), **extra)


def _run(name, model, context=None):
    return ALL_DETECTORS[name]().inspect(model, context)


def _value_call(line=2, **extra) -> ExternalCall:
    extra.setdefault("target_origin", TargetOrigin.CALLER)
    return ExternalCall("msg.sender", CallKind.CALL, _loc(line), value_transfer=True, **extra)


# Registry


def test_registry_has_unique_rules_matching_base_severities():
    assert len(DEFAULT_DETECTORS) == 19
    assert list(ALL_DETECTORS) == [detector.name for detector in DEFAULT_DETECTORS]
    rule_ids = [detector.rule_id for detector in DEFAULT_DETECTORS]
    assert len(set(rule_ids)) == len(rule_ids)
    for detector in DEFAULT_DETECTORS:
        assert RULE_SEVERITY[detector.rule_id] is detector.severity
        assert issubclass(detector, BaseDetector)


def test_detectors_span_all_categories():
    assert {detector.category for detector in DEFAULT_DETECTORS} == set(Category)


def test_finding_rejects_invalid_fields():
    with pytest.raises(ValueError, match="rule_id"):
        Finding("x", " ", Category.SECURITY, Severity.LOW, "t", "d")
    with pytest.raises(TypeError, match="severity"):
        Finding("x", "R", Category.SECURITY, "high", "t", "d")
    with pytest.raises(TypeError, match="category"):
        Finding("x", "R", "security", Severity.HIGH, "t", "d")


def test_dedupe_prefers_full_match_and_merges_tags():
    detector = ALL_DETECTORS["reentrancy"]()
    partial = detector.finding(description="a", location=LOC, function="f", partial=True, tags=("one",))
    full = detector.finding(description="b", location=LOC, function="f", tags=("two",))

    [kept] = detector.dedupe_findings([partial, full])

    assert not kept.partial
    assert kept.description == "b"
    assert kept.tags == ("one", "two")


# Reentrancy


def test_call_before_write_is_reentrancy():
    model = _model(_fn("withdraw", _value_call(), StorageWrite("balances", _loc(3))), storage=[_slot("balances")])

    [finding] = _run("reentrancy", model)

    assert finding.rule_id == "SEC-REENTRANCY"
    assert finding.severity is Severity.CRITICAL
    assert not finding.partial
    assert finding.location == _loc(2)
    assert finding.function == "withdraw"
    assert "balances" in finding.description


def test_call_description_names_target_and_entry_point():
    assert describe_call(_value_call(method="call")) == "call to 'msg.sender'"
    assert describe_call(ExternalCall("vault", CallKind.CALL, LOC, method="deposit")) == "call to 'vault.deposit'"
    assert describe_call(ExternalCall("proxy", CallKind.DELEGATE, LOC)) == "delegate call to 'proxy'"


def test_reentrancy_description_reads_naturally():
    model = _model(_fn("withdraw", _value_call(method="call"), StorageWrite("balances", _loc(3))))

    [finding] = _run("reentrancy", model)

    assert "External call to 'msg.sender' executes before balances is updated." in finding.description
    assert "call call" not in finding.description


def test_write_before_call_is_safe():
    model = _model(_fn("withdraw", StorageWrite("balances", _loc(2)), _value_call(3)))

    assert _run("reentrancy", model) == []


def test_reentrancy_guard_suppresses_finding():
    guard = Modifier("nonReentrant", ModifierKind.REENTRANCY_GUARD)
    model = _model(_fn("withdraw", _value_call(), StorageWrite("balances", _loc(3)), modifiers=[guard]))

    assert _run("reentrancy", model) == []


def test_static_calls_cannot_reenter():
    call = ExternalCall("oracle", CallKind.STATIC, _loc(2), target_origin=TargetOrigin.STORAGE)
    model = _model(_fn("sync", call, StorageWrite("price", _loc(3))))

    assert _run("reentrancy", model) == []


def test_write_in_internal_callee_is_partial():
    withdraw = _fn("withdraw", _value_call(), InternalCall("_update", _loc(3)), internal_calls=["_update"])
    update = _fn("_update", StorageWrite("balances", _loc(9)), visibility=Visibility.INTERNAL)

    [finding] = _run("reentrancy", _model(withdraw, update))

    assert finding.partial
    assert "internal callee(s) _update" in finding.description


def test_solidity_transfer_stipend_is_partial():
    call = ExternalCall("recipient", CallKind.TRANSFER, _loc(2), target_origin=TargetOrigin.PARAMETER)
    model = _model(_fn("pay", call, StorageWrite("paid", _loc(3))))

    [finding] = _run("reentrancy", model)

    assert finding.partial
    assert "2300 gas stipend" in finding.description


# Access control


def test_unguarded_privileged_write_is_full_match():
    model = _model(_fn("setOwner", StorageWrite("owner", _loc(2))), storage=[_slot("owner")])

    [finding] = _run("access_control", model)

    assert finding.rule_id == "SEC-ACCESS-CONTROL"
    assert not finding.partial
    assert "privileged" in finding.description


def test_unguarded_plain_write_is_partial():
    model = _model(_fn("bump", StorageWrite("count", _loc(2))), storage=[_slot("count")])

    [finding] = _run("access_control", model)

    assert finding.partial
    assert "unguarded write to 'count'" in finding.description


def test_guard_modifier_or_callee_check_suppresses_access_control():
    owner_only = Modifier("onlyOwner", ModifierKind.ACCESS_CONTROL)
    by_modifier = _fn("setOwner", StorageWrite("owner", _loc(2)), modifiers=[owner_only])
    by_callee = _fn("setFee", InternalCall("_check", _loc(4)), StorageWrite("fee", _loc(5)), internal_calls=["_check"])
    check = _fn(
        "_check",
        EnvRead("msg.sender", _loc(8)),
        Branch("msg.sender == owner", _loc(8), is_access_check=True, reverts=True),
        visibility=Visibility.INTERNAL,
    )
    model = _model(by_modifier, by_callee, check, storage=[_slot("owner"), _slot("fee")])

    assert _run("access_control", model) == []


def test_mapping_write_keyed_by_caller_is_not_access_control():
    write = StorageWrite("balances", _loc(2), keyed_by="msg.sender")
    model = _model(_fn("deposit", write), storage=[_slot("balances", TypeClass.MAPPING)])

    assert _run("access_control", model) == []


def test_view_and_internal_functions_are_skipped():
    model = _model(
        _fn("peek", StorageWrite("owner", _loc(2)), mutability=Mutability.VIEW),
        _fn("_set", StorageWrite("owner", _loc(3)), visibility=Visibility.INTERNAL),
        storage=[_slot("owner")],
    )

    assert _run("access_control", model) == []


# Unchecked arithmetic


@pytest.mark.parametrize(
    ("operator", "bits", "left", "right", "expected"),
    [
        ("+", 8, None, None, True),
        ("+", 8, None, 0, False),
        ("-", 256, None, 0, False),
        ("-", 64, None, None, True),
        ("*", 8, 16, 16, True),
        ("*", 8, 15, 17, False),
        ("**", 256, None, 1, False),
        ("**", 8, 2, 8, True),
        ("**", 8, 2, 7, False),
        ("+", 8, 300, None, True),
    ],
)
def test_overflow_feasibility(operator, bits, left, right, expected):
    assert overflow_feasible(operator, bits, left, right) is expected


def test_overflowing_value_written_to_storage_is_full_match():
    op = ArithmeticOp("+", "count", "step", _loc(2), flows_to_storage=True)

    [finding] = _run("unchecked_arithmetic", _model(_fn("bump", op)))

    assert finding.rule_id == "SEC-ARITH-OVERFLOW"
    assert not finding.partial
    assert "written to storage" in finding.description
    assert "uint256" in finding.tags


def test_checked_or_literal_safe_arithmetic_is_ignored():
    model = _model(
        _fn(
            "calc",
            ArithmeticOp("+", "a", "b", _loc(2), checked=True),
            ArithmeticOp("+", "a", "b", _loc(3), wrapping=True),
            ArithmeticOp("+", "x", "0", _loc(4)),
            ArithmeticOp("/", "a", "b", _loc(5)),
        )
    )

    assert _run("unchecked_arithmetic", model) == []


def test_arithmetic_without_sink_is_partial():
    [finding] = _run("unchecked_arithmetic", _model(_fn("calc", ArithmeticOp("-", "a", "b", _loc(2), operand_bits=64))))

    assert finding.partial
    assert "underflow" in finding.description


# Trust boundary


def test_delegatecall_to_parameter():
    call = ExternalCall("target", CallKind.DELEGATE, _loc(2), target_origin=TargetOrigin.PARAMETER)

    [finding] = _run("trust_boundary", _model(_fn("forward", call)))

    assert finding.rule_id == "SEC-TRUST-BOUNDARY"
    assert not finding.partial
    assert "SWC-112" in finding.tags


def test_validated_parameter_target_is_trusted():
    model = _model(
        _fn(
            "forward",
            Branch("target == trusted", _loc(2), reverts=True),
            ExternalCall("target", CallKind.CALL, _loc(3), target_origin=TargetOrigin.PARAMETER),
        )
    )

    assert _run("trust_boundary", model) == []


def test_zero_address_check_does_not_validate_target():
    model = _model(
        _fn(
            "forward",
            Branch("target != address(0)", _loc(2), reverts=True),
            ExternalCall("target", CallKind.CALL, _loc(3), target_origin=TargetOrigin.PARAMETER),
        )
    )

    [finding] = _run("trust_boundary", model)

    assert not finding.partial
    assert finding.description.startswith("Call to 'target'")


@pytest.mark.parametrize(
    "condition, expected",
    [
        ("allowed[target]", True),
        ("self.allowed.get(target)", True),
        ("isTrusted(target)", True),
        ("target == trusted", True),
        ("owner() == target", True),
        ("target != address(0)", False),
        ("target == Address::ZERO", False),
        ("target == address(0x0)", False),
        ("target.code.length > 0", False),
        ("other_target == trusted", False),
    ],
)
def test_allow_list_check(condition, expected):
    assert allow_list_check(condition, "target") is expected


def test_caller_literal_transfer_and_opaque_calls_are_trusted():
    model = _model(
        _fn(
            "mixed",
            ExternalCall("msg.sender", CallKind.CALL, _loc(2), target_origin=TargetOrigin.CALLER),
            ExternalCall("0xdead", CallKind.CALL, _loc(3), target_origin=TargetOrigin.LITERAL),
            ExternalCall("to", CallKind.TRANSFER, _loc(4), target_origin=TargetOrigin.PARAMETER),
            ExternalCall("<runtime>", CallKind.CALL, _loc(5), target_origin=TargetOrigin.OPAQUE),
        )
    )

    assert _run("trust_boundary", model) == []


def test_unknown_target_and_opaque_delegate_are_partial():
    model = _model(
        _fn(
            "route",
            ExternalCall("registry.lookup(id)", CallKind.CALL, _loc(2), target_origin=TargetOrigin.UNKNOWN),
            ExternalCall("<runtime>", CallKind.DELEGATE, _loc(3), target_origin=TargetOrigin.OPAQUE),
        )
    )

    unknown, opaque = _run("trust_boundary", model)

    assert unknown.partial
    assert opaque.partial
    assert "runtime-computed" in opaque.description


# Unsafe code and L2 timing


def test_unsafe_constructs_are_reported_individually():
    model = _model(
        _fn("poke", UnsafeCode("unsafe block", _loc(2)), UnsafeCode("Box::into_raw", _loc(3))),
        dialect=Dialect.STYLUS_RUST,
    )

    titles = [finding.title for finding in _run("unsafe_code", model)]

    assert titles == ["Unsafe Code: unsafe block", "Unsafe Code: Box::into_raw"]


def test_timestamp_comparison_is_l2_timing():
    model = _model(
        _fn(
            "claim",
            EnvRead("block.timestamp", _loc(2)),
            Branch("block.timestamp >= deadline", _loc(2), reverts=True),
        )
    )

    [finding] = _run("l2_timing", model)

    assert finding.severity is Severity.MEDIUM
    assert not finding.partial


def test_timestamp_read_without_comparison_is_partial():
    [finding] = _run("l2_timing", _model(_fn("stamp", EnvRead("block.number", _loc(2)))))

    assert finding.partial


# Gas


def test_function_above_gas_threshold():
    writes = [StorageWrite(f"slot{i}", _loc(i + 2)) for i in range(6)]
    model = _model(_fn("heavy", *writes))

    [finding] = _run("gas_threshold", model)

    assert finding.rule_id == "GAS-HIGH-COST"
    assert finding.impact == 20_000
    assert _run("gas_threshold", model, DetectionContext.for_model(model, gas_cost_threshold=200_000)) == []


def test_repeated_storage_reads():
    model = _model(
        _fn(
            "sum",
            StorageRead("total", _loc(2)),
            StorageRead("total", _loc(3)),
            StorageRead("total", _loc(4)),
            StorageRead("other", _loc(5)),
        )
    )

    [finding] = _run("storage_caching", model)

    assert finding.impact == 200
    assert finding.location == _loc(3)


def test_storage_read_inside_loop_is_reported_once():
    model = _model(
        _fn(
            "scan",
            Loop("n", BoundKind.PARAMETER, _loc(2), body_end=1),
            StorageRead("total", _loc(3), loop_depth=1),
        )
    )

    [finding] = _run("storage_caching", model)

    assert finding.impact == 100
    assert "every loop iteration" in finding.description


def test_storage_caching_prices_with_the_run_cost_table():
    model = _model(_fn("sum", StorageRead("total", _loc(2)), StorageRead("total", _loc(3))))
    table = DEFAULT_COST_TABLE.with_overrides({CostKey(OpKind.STORAGE_READ, "warm"): CostEntry(50, 1.5)})

    [finding] = _run("storage_caching", model, DetectionContext.for_model(model, table))

    assert finding.impact == 50
    assert "~50 gas" in finding.description


def test_reads_of_different_mapping_keys_are_not_repeated():
    model = _model(
        _fn("pair", StorageRead("balances", _loc(2), keyed_by="a"), StorageRead("balances", _loc(3), keyed_by="b"))
    )

    assert _run("storage_caching", model) == []


def test_same_external_call_twice_is_redundant():
    def call(line):
        return ExternalCall("oracle", CallKind.STATIC, _loc(line), target_origin=TargetOrigin.STORAGE, method="price")

    model = _model(_fn("quote", call(2), call(3)))

    [finding] = _run("redundant_calls", model)

    assert finding.impact == 2_600
    assert finding.location == _loc(3)
    assert "oracle.price" in finding.description


def test_opaque_calls_are_never_redundant():
    def call(line):
        return ExternalCall("<runtime>", CallKind.CALL, SourceLocation(offset=line), target_origin=TargetOrigin.OPAQUE)

    model = _model(_fn("run", call(2), call(3), doc=None), dialect=Dialect.WASM)

    assert _run("redundant_calls", model) == []


def test_wasm_module_over_size_limit():
    model = _model(_fn("entry"), dialect=Dialect.WASM, size_bytes=24 * 1024 + 100)

    [finding] = _run("code_size", model)

    assert finding.rule_id == "GAS-CODE-SIZE"
    assert finding.category is Category.PERFORMANCE
    assert not finding.partial
    assert finding.impact == 100
    assert "deployment will fail" in finding.description


def test_wasm_module_near_size_limit_is_partial():
    model = _model(_fn("entry"), dialect=Dialect.WASM, size_bytes=9_000)

    assert _run("code_size", model) == []
    [finding] = _run("code_size", model, DetectionContext.for_model(model, code_size_limit=10_000))

    assert finding.partial
    assert "90% of the 10000-byte limit" in finding.description


def test_source_dialects_are_not_size_checked():
    model = _model(_fn("entry"), size_bytes=100_000)

    assert _run("code_size", model) == []


def test_loop_bounds():
    model = _model(
        _fn(
            "sweep",
            Loop("self.members.len()", BoundKind.STORAGE, _loc(2), body_end=1),
            StorageWrite("total", _loc(3), loop_depth=1),
            Loop("n", BoundKind.PARAMETER, _loc(4), body_end=2),
            Loop("10", BoundKind.CONSTANT, _loc(5), body_end=3),
        )
    )

    storage_bound, parameter_bound = _run("unbounded_loops", model)

    assert not storage_bound.partial
    assert storage_bound.impact == 20_000
    assert "20000 gas" in storage_bound.description
    assert parameter_bound.partial


def test_unpriced_operation_is_reported():
    model = _model(_fn("run", OpaqueOp("env::foo", SourceLocation(offset=12)), doc=None), dialect=Dialect.WASM)

    [finding] = _run("unestimated_operations", model)

    assert finding.title == "Unestimated Operation: opaque:env::foo"
    assert finding.impact == 100
    assert finding.location == SourceLocation(offset=12)


def test_growable_allocations():
    model = _model(
        _fn(
            "collect",
            MemoryAlloc("Vec::new", _loc(2), loop_depth=1),
            MemoryAlloc("Vec::new", _loc(3)),
            MemoryAlloc("Vec::with_capacity", _loc(4), preallocated=True),
        ),
        dialect=Dialect.STYLUS_RUST,
    )

    in_loop, outside = _run("unsized_allocation", model)

    assert not in_loop.partial
    assert outside.partial


# Quality


def test_missing_documentation_on_entrypoints_only():
    model = _model(
        _fn("open", doc=""),
        _fn("documented"),
        _fn("_helper", doc="", visibility=Visibility.INTERNAL),
        _fn("run", doc=None),
    )

    [finding] = _run("documentation", model)

    assert finding.function == "open"
    assert finding.severity is Severity.INFO


def test_complexity_above_threshold():
    branches = [Branch(f"c{i}", _loc(i + 2)) for i in range(11)]
    model = _model(_fn("tangled", *branches), _fn("simple", Branch("ok", _loc(20))))

    [finding] = _run("complexity", model)

    assert finding.function == "tangled"
    assert finding.impact == 2


def test_error_handling_by_result_handling():
    model = _model(
        _fn(
            "calls",
            ExternalCall("a", CallKind.CALL, _loc(2), handling=ResultHandling.IGNORED),
            ExternalCall("b", CallKind.CALL, _loc(3), handling=ResultHandling.UNWRAPPED),
            ExternalCall("c", CallKind.CALL, _loc(4), handling=ResultHandling.ASSERTED),
            ExternalCall("d", CallKind.CREATE, _loc(5), handling=ResultHandling.IGNORED),
            ArithmeticOp("+", "x", "y", _loc(6)),
        )
    )

    ignored, unwrapped, arithmetic = _run("error_handling", model)

    assert not ignored.partial
    assert "never checked" in ignored.description
    assert unwrapped.partial
    assert arithmetic.partial
    assert arithmetic.location == _loc(6)


def test_rust_naming_conventions():
    model = _model(
        _fn("setNumber"),
        _fn("set_number"),
        storage=[_slot("Owner"), _slot("total")],
        dialect=Dialect.STYLUS_RUST,
        constants=("max_items", "MAX_ITEMS"),
    )

    titles = sorted(finding.title for finding in _run("naming", model))

    assert titles == ["Naming Convention: Owner", "Naming Convention: max_items", "Naming Convention: setNumber"]


def test_solidity_naming_and_bytecode_is_skipped():
    solidity = _model(_fn("set_number"), _fn("setNumber"), _fn("constructor"), storage=[_slot("Owner")])

    [finding] = _run("naming", solidity)

    assert finding.title == "Naming Convention: set_number"
    assert _run("naming", _model(_fn("Bad_Name", doc=None), dialect=Dialect.WASM)) == []


def test_state_change_without_event():
    model = _model(
        _fn("set", StorageWrite("value", _loc(2))),
        _fn("setAndLog", StorageWrite("value", _loc(5)), Emit("Changed", _loc(6))),
        _fn("setViaHelper", StorageWrite("value", _loc(8)), InternalCall("_log", _loc(9)), internal_calls=["_log"]),
        _fn("_log", Emit("Changed", _loc(12)), visibility=Visibility.INTERNAL),
        _fn("constructor", StorageWrite("value", _loc(15))),
    )

    [finding] = _run("missing_events", model)

    assert finding.function == "set"
    assert finding.rule_id == "QA-MISSING-EVENT"


def test_rust_without_test_module():
    rust = _model(_fn("run"), dialect=Dialect.STYLUS_RUST)

    [finding] = _run("test_coverage", rust)

    assert finding.rule_id == "QA-MISSING-TESTS"
    assert _run("test_coverage", _model(_fn("run"), dialect=Dialect.STYLUS_RUST, has_test_module=True)) == []
    assert _run("test_coverage", _model(_fn("run"))) == []
    assert _run("test_coverage", _model(dialect=Dialect.STYLUS_RUST)) == []
