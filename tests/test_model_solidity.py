"""Tests for the Solidity front end."""
import pytest

from stylus_sentinel.errors import ParseError
from stylus_sentinel.model import (
    ArithmeticOp,
    Branch,
    CallKind,
    Dialect,
    DialectHint,
    Emit,
    ExternalCall,
    ModifierKind,
    Mutability,
    Parameter,
    ResultHandling,
    StorageRead,
    StorageWrite,
    TargetOrigin,
    TypeClass,
    Visibility,
    build_model,
)


def _vault() -> bytes:
    return b"""
pragma solidity ^0.8.20;

contract Vault {
    mapping(address => uint256) balances;

    event Withdrawn(address indexed account, uint256 amount);

    /// @notice Withdraw the caller's balance.
    function withdraw() external {
        uint256 amount = balances[msg.sender];
        (bool ok, ) = msg.sender.call{value: amount}("");
        require(ok);
        balances[msg.sender] = 0;
        emit Withdrawn(msg.sender, amount);
    }

    function balanceOf(address account) external view returns (uint256) {
        return balances[account];
    }
}
"""


def _counter(pragma: str, body: str) -> bytes:
    return f"""
pragma solidity {pragma};

contract Counter {{
    uint256 count;

    function bump(uint256 step) external {{
        {body}
    }}
}}
""".encode()


def test_vault_contract_structure():
    model = build_model(_vault())

    assert model.name == "Vault"
    assert model.dialect is Dialect.SOLIDITY
    assert model.checked_arithmetic
    assert [function.name for function in model.functions] == ["withdraw", "balanceOf"]

    slot = model.slot("balances")
    assert slot.type_class is TypeClass.MAPPING
    assert slot.readers == ("withdraw", "balanceOf")
    assert slot.writers == ("withdraw",)
    assert not model.diagnostics


def test_vault_withdraw_call_precedes_state_update():
    withdraw = build_model(_vault()).function("withdraw")

    assert withdraw.visibility is Visibility.EXTERNAL
    assert withdraw.mutability is Mutability.NONE
    assert withdraw.doc == "@notice Withdraw the caller's balance."

    [(call_index, call)] = withdraw.ops_of(ExternalCall)
    assert call.call_kind is CallKind.CALL
    assert call.target == "msg.sender"
    assert call.target_origin is TargetOrigin.CALLER
    assert call.handling is ResultHandling.ASSERTED
    assert call.value_transfer
    assert call.method == "call"

    [(write_index, write)] = withdraw.ops_of(StorageWrite)
    assert write.slot == "balances"
    assert write.keyed_by == "msg.sender"
    assert call_index < write_index

    [(_, branch)] = withdraw.ops_of(Branch)
    assert branch.condition == "ok"
    assert branch.reverts
    assert not branch.is_access_check
    assert [op.event for _, op in withdraw.ops_of(Emit)] == ["Withdrawn"]


def test_view_function_parameters_and_read():
    balance_of = build_model(_vault()).function("balanceOf")

    assert balance_of.mutability is Mutability.VIEW
    assert balance_of.parameters == (Parameter("account", "address"),)
    assert balance_of.doc == ""
    [(_, read)] = balance_of.ops_of(StorageRead)
    assert read.slot == "balances"
    assert read.keyed_by == "account"


def test_call_sites_are_collected():
    model = build_model(_vault())

    assert len(model.call_sites) == 1
    assert model.call_sites[0].function == "withdraw"


def test_unchecked_block_disables_checked_arithmetic():
    model = build_model(_counter("^0.8.0", "unchecked { count += step; }"))
    [(_, op)] = model.function("bump").ops_of(ArithmeticOp)

    assert op.operator == "+"
    assert op.left == "count"
    assert op.right == "step"
    assert not op.checked
    assert op.flows_to_storage


def test_pre_08_pragma_means_unchecked_arithmetic():
    model = build_model(_counter("^0.7.6", "count += step;"))
    [(_, op)] = model.function("bump").ops_of(ArithmeticOp)

    assert not model.checked_arithmetic
    assert not op.checked


def test_08_pragma_means_checked_arithmetic():
    model = build_model(_counter("^0.8.0", "count += step;"))
    [(_, op)] = model.function("bump").ops_of(ArithmeticOp)

    assert op.checked


def test_modifier_with_caller_check_is_access_control():
    source = b"""
contract Owned {
    address owner;

    modifier onlyOwner() {
        require(msg.sender == owner);
        _;
    }

    function setOwner(address next) external onlyOwner {
        owner = next;
    }
}
"""
    model = build_model(source)
    set_owner = model.function("setOwner")

    assert set_owner.has_modifier(ModifierKind.ACCESS_CONTROL)
    assert [modifier.name for modifier in set_owner.modifiers] == ["onlyOwner"]


def test_reentrancy_guard_modifier_is_recognised_by_name():
    source = _vault().replace(b"function withdraw() external {", b"function withdraw() external nonReentrant {")
    withdraw = build_model(source).function("withdraw")

    assert withdraw.has_modifier(ModifierKind.REENTRANCY_GUARD)


def test_parameter_target_for_delegatecall():
    source = b"""
pragma solidity ^0.8.20;

contract Proxy {
    function forward(address target, bytes calldata data) external {
        (bool ok, ) = target.delegatecall(data);
        require(ok);
    }
}
"""
    forward = build_model(source).function("forward")
    [(_, call)] = forward.ops_of(ExternalCall)

    assert call.call_kind is CallKind.DELEGATE
    assert call.target == "target"
    assert call.target_origin is TargetOrigin.PARAMETER
    assert forward.parameters == (Parameter("target", "address"), Parameter("data", "bytes"))


def test_malformed_function_becomes_diagnostic():
    source = b"""
pragma solidity ^0.8.20;

contract Broken {
    uint256 total;

    function first() external {
        total = 1;
    }

    function second(uint256 x external {
        total = x;
    }
}
"""
    model = build_model(source)

    assert [function.name for function in model.functions] == ["first"]
    assert len(model.diagnostics) == 1
    assert model.diagnostics[0].source == "parser"
    assert "second" in model.diagnostics[0].reason


def test_contract_without_functions_has_storage_only():
    model = build_model(b"pragma solidity ^0.8.20;\ncontract Empty { uint256 x; }\n")

    assert model.functions == ()
    assert [slot.name for slot in model.storage] == ["x"]


def test_constants_are_not_storage():
    source = b"""
contract Token {
    uint256 constant maxSupply = 1000;
    uint256 supply;

    function mint() external {
        supply = maxSupply;
    }
}
"""
    model = build_model(source)

    assert [slot.name for slot in model.storage] == ["supply"]
    assert model.constants == ("maxSupply",)


def test_dialect_hint_overrides_detection():
    model = build_model(_vault(), DialectHint.SOLIDITY)

    assert model.dialect is Dialect.SOLIDITY


def test_build_model_is_deterministic():
    assert build_model(_vault()) == build_model(_vault())


def test_every_function_malformed_raises():
    source = b"contract Bad {\n    function broken(uint256 x {\n    }\n}\n"

    with pytest.raises(ParseError, match="no function could be recovered"):
        build_model(source)
