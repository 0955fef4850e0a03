"""End-to-end tests for the analysis pipeline."""
import threading

import pytest

from stylus_sentinel import AnalysisConfig, ParseError, analyze, analyze_many, analyze_source, build_model
from stylus_sentinel.detectors import BaseDetector, Category, Severity
from stylus_sentinel.detectors.reentrancy import ReentrancyDetector
from stylus_sentinel.errors import ConfigurationError
from stylus_sentinel.scoring import RiskLevel

VAULT = b"""
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

SETTINGS = b"""
pragma solidity ^0.8.20;

contract Settings {
    uint256 a;

    event Touched();

    function set(uint256 v) external {
        a = v;
    }

    function set(uint256 v, uint256 w) external {
        emit Touched();
    }
}
"""

ROUTER = b"""
pragma solidity ^0.8.20;

contract Router {
    mapping(address => bool) allowed;

    function forward(address target, bytes calldata data) external {
        require(CHECK);
        (bool ok, ) = target.call(data);
        require(ok);
    }
}
"""

_RELEASE = threading.Event()


class ExplodingDetector(BaseDetector):
    name = "exploding"
    rule_id = "TEST-EXPLODING"

    def inspect(self, model, context=None):
        raise RuntimeError("boom")


class StuckDetector(BaseDetector):
    name = "stuck"
    rule_id = "TEST-STUCK"

    def inspect(self, model, context=None):
        _RELEASE.wait(5)
        return []


def test_vault_reports_exactly_one_critical_reentrancy():
    report = analyze_source(VAULT)

    critical = [f for f in report.findings if f.severity is Severity.CRITICAL]
    assert [f.rule_id for f in critical] == ["SEC-REENTRANCY"]
    assert critical[0].function == "withdraw"
    assert report.findings[0] is critical[0]
    assert report.risk is RiskLevel.CRITICAL
    assert report.scores.security == 60.0


def test_overloads_are_costed_and_reported_separately():
    model = build_model(SETTINGS)
    store, touch = model.functions

    report = analyze(model, AnalysisConfig(gas_cost_threshold=1_000))

    assert report.cost_summary.for_function(store).gas > 1_000
    assert report.cost_summary.for_function(touch).gas < 1_000
    high_cost = [f for f in report.findings if f.rule_id == "GAS-HIGH-COST"]
    assert [f.function_location for f in high_cost] == [store.location]


@pytest.mark.parametrize(
    "check, reported",
    [
        (b"target != address(0)", True),
        (b"allowed[target]", False),
    ],
)
def test_only_allow_list_checks_validate_call_targets(check, reported):
    report = analyze_source(ROUTER.replace(b"CHECK", check))

    assert ("SEC-TRUST-BOUNDARY" in {f.rule_id for f in report.findings}) is reported


def test_severity_floor_hides_lower_findings():
    report = analyze_source(VAULT, AnalysisConfig(severity_floor=Severity.HIGH))

    assert [f.rule_id for f in report.findings] == ["SEC-REENTRANCY"]
    assert report.suppressed >= 1
    assert report.risk is RiskLevel.CRITICAL


def test_documented_function_scores_higher():
    report = analyze_source(VAULT)
    by_function = {entry.function: entry for entry in report.scores.functions}

    assert by_function["withdraw"].total > by_function["balanceOf"].total
    assert by_function["balanceOf"].documentation == 0.0
    assert any(f.rule_id == "QA-MISSING-DOCS" and f.function == "balanceOf" for f in report.findings)


def test_malformed_function_is_reported_as_diagnostic():
    source = VAULT.replace(b"function balanceOf(address account)", b"function balanceOf(address account")

    report = analyze_source(source)

    assert [d.source for d in report.diagnostics] == ["parser"]
    assert "balanceOf" in report.diagnostics[0].reason
    assert any(f.rule_id == "SEC-REENTRANCY" for f in report.findings)


def test_contract_without_functions_skips_detectors():
    report = analyze_source(b"pragma solidity ^0.8.20;\ncontract Empty { uint256 x; }\n")

    assert report.findings == ()
    assert (report.scores.security, report.scores.performance, report.scores.quality) == (0.0, 0.0, 0.0)
    assert report.risk is RiskLevel.MINIMAL


def test_failing_detector_becomes_diagnostic():
    config = AnalysisConfig(detectors=(ExplodingDetector, ReentrancyDetector))

    report = analyze(build_model(VAULT), config)

    assert [f.rule_id for f in report.findings] == ["SEC-REENTRANCY"]
    [diagnostic] = report.diagnostics
    assert diagnostic.source == "detector:exploding"
    assert diagnostic.reason == "Detector 'exploding' failed: boom"


def test_detector_timeout_keeps_finished_results():
    config = AnalysisConfig(detectors=(StuckDetector, ReentrancyDetector), timeout=0.5)
    try:
        report = analyze(build_model(VAULT), config)
    finally:
        _RELEASE.set()

    assert [f.rule_id for f in report.findings] == ["SEC-REENTRANCY"]
    [diagnostic] = report.diagnostics
    assert diagnostic.source == "detector:stuck"
    assert "did not finish within 0.5s" in diagnostic.reason


def test_category_filter_limits_detectors():
    report = analyze_source(VAULT, AnalysisConfig(enabled_categories=frozenset({Category.QUALITY})))

    assert report.findings
    assert all(f.category is Category.QUALITY for f in report.findings)


def test_invalid_config_is_rejected_before_analysis():
    with pytest.raises(ConfigurationError, match="gas_cost_threshold"):
        analyze(build_model(VAULT), AnalysisConfig(gas_cost_threshold=-1))


def test_json_output_is_byte_identical_across_runs():
    assert analyze_source(VAULT).to_json() == analyze_source(VAULT).to_json()


def test_analyze_many_isolates_parse_errors():
    broken = b"contract Bad {\n    function broken(uint256 x {\n    }\n}\n"

    results = analyze_many({"vault": VAULT, "bad": broken})

    assert [result.name for result in results] == ["vault", "bad"]
    assert results[0].ok
    assert results[0].report.contract == "Vault"
    assert not results[1].ok
    assert isinstance(results[1].error, ParseError)


def test_rust_counter_arithmetic_is_reported():
    source = b"""
sol_storage! {
    #[entrypoint]
    pub struct Counter {
        uint256 number;
    }
}

#[public]
impl Counter {
    /// Adds one to the count.
    pub fn increment(&mut self) {
        let number = self.number.get();
        self.number.set(number + U256::from(1));
    }
}
"""
    report = analyze_source(source)
    rules = {f.rule_id: f for f in report.findings}

    assert rules["SEC-ARITH-OVERFLOW"].severity is Severity.HIGH
    assert rules["SEC-ACCESS-CONTROL"].severity is Severity.MEDIUM
    assert rules["QA-MISSING-TESTS"].severity is Severity.INFO
