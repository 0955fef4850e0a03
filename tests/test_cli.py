"""CLI behavior tests."""
from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from stylus_sentinel import __version__
from stylus_sentinel import cli
from stylus_sentinel.cli import main

VAULT = """
pragma solidity ^0.8.20;

contract Vault {
    mapping(address => uint256) balances;

    /// @notice Withdraw the caller's balance.
    function withdraw() external {
        uint256 amount = balances[msg.sender];
        (bool ok, ) = msg.sender.call{value: amount}("");
        require(ok);
        balances[msg.sender] = 0;
    }

    function balanceOf(address account) external view returns (uint256) {
        return balances[account];
    }
}
"""


@pytest.fixture
def wide_console(monkeypatch):
    monkeypatch.setattr(cli.console, "width", 200)


def _contract(tmp_path, text=VAULT, name="Vault.sol"):
    path = tmp_path / name
    path.write_text(text)
    return str(path)


def test_cli_reports_package_version():
    runner = CliRunner()
    result = runner.invoke(main, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_cli_json_output(tmp_path):
    runner = CliRunner()
    result = runner.invoke(main, ["analyze", _contract(tmp_path), "--format", "json"])

    assert result.exit_code == 0
    report = json.loads(result.stdout)
    assert report["contract"] == "Vault"
    assert report["findings"][0]["rule_id"] == "SEC-REENTRANCY"
    assert report["overall_risk"] == "critical"


def test_cli_severity_floor(tmp_path):
    runner = CliRunner()
    result = runner.invoke(main, ["analyze", _contract(tmp_path), "--format", "json", "--severity-floor", "HIGH"])

    assert result.exit_code == 0
    report = json.loads(result.stdout)
    assert {finding["severity"] for finding in report["findings"]} <= {"critical", "high"}
    assert report["summary"]["suppressed"] >= 1


def test_cli_selected_detectors_only(tmp_path):
    runner = CliRunner()
    result = runner.invoke(main, ["analyze", _contract(tmp_path), "--format", "json", "-d", "documentation"])

    assert result.exit_code == 0
    report = json.loads(result.stdout)
    assert [finding["rule_id"] for finding in report["findings"]] == ["QA-MISSING-DOCS"]


def test_cli_parse_error_exits_1(tmp_path):
    runner = CliRunner()
    result = runner.invoke(main, ["analyze", _contract(tmp_path, "hello world", "notes.txt")])

    assert result.exit_code == 1
    assert "Failed to parse" in result.output


def test_cli_unknown_detector_exits_2(tmp_path):
    runner = CliRunner()
    result = runner.invoke(main, ["analyze", _contract(tmp_path), "--detectors", "reentrancy,nope"])

    assert result.exit_code == 2
    assert "Invalid configuration" in result.output


def test_cli_invalid_config_file_exits_2(tmp_path):
    config = tmp_path / "sentinel.toml"
    config.write_text("gas_cost_threshold = -5\n")

    runner = CliRunner()
    result = runner.invoke(main, ["analyze", _contract(tmp_path), "--config", str(config)])

    assert result.exit_code == 2


def test_cli_fail_on_severity_gate(tmp_path):
    runner = CliRunner()
    result = runner.invoke(main, ["analyze", _contract(tmp_path), "--format", "json", "--fail-on-severity", "high"])

    assert result.exit_code == 3
    assert "at or above high" in result.output


def test_cli_fail_on_severity_passes_when_clean(tmp_path):
    runner = CliRunner()
    result = runner.invoke(
        main,
        ["analyze", _contract(tmp_path), "--format", "json", "-d", "documentation", "--fail-on-severity", "low"],
    )

    assert result.exit_code == 0


def test_cli_table_output(tmp_path, wide_console):
    runner = CliRunner()
    result = runner.invoke(main, ["analyze", _contract(tmp_path)])

    assert result.exit_code == 0
    assert "Contract: Vault" in result.output
    assert "SEC-REENTRANCY" in result.output
    assert "Gas Estimates" in result.output
    assert "Total: 3 findings" in result.output


def test_cli_markdown_report_file(tmp_path):
    output = tmp_path / "report.md"

    runner = CliRunner()
    result = runner.invoke(main, ["analyze", _contract(tmp_path), "--format", "markdown", "-o", str(output)])

    assert result.exit_code == 0
    assert "Report saved to" in result.output
    text = output.read_text()
    assert text.startswith("# Analysis Report: Vault")
    assert "Potential Reentrancy" in text


def test_cli_lists_detectors(wide_console):
    runner = CliRunner()
    result = runner.invoke(main, ["detectors"])

    assert result.exit_code == 0
    for name in ("reentrancy", "trust_boundary", "test_coverage"):
        assert name in result.output
    assert "SEC-REENTRANCY" in result.output
