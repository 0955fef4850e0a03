"""Rule-specific severity classification."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from types import MappingProxyType

from ..detectors.base import Finding, Severity, demote, escalate

__all__ = ["CORRELATED_TAG", "RULE_SEVERITY", "base_severity", "classify"]

CORRELATED_TAG = "correlated"

RULE_SEVERITY: Mapping[str, Severity] = MappingProxyType(
    {
        "SEC-REENTRANCY": Severity.CRITICAL,
        "SEC-ACCESS-CONTROL": Severity.HIGH,
        "SEC-ARITH-OVERFLOW": Severity.HIGH,
        "SEC-TRUST-BOUNDARY": Severity.HIGH,
        "SEC-UNSAFE-CODE": Severity.HIGH,
        "SEC-L2-TIMING": Severity.MEDIUM,
        "GAS-HIGH-COST": Severity.MEDIUM,
        "GAS-REPEATED-STORAGE-READ": Severity.LOW,
        "GAS-REDUNDANT-CALL": Severity.MEDIUM,
        "GAS-UNBOUNDED-LOOP": Severity.HIGH,
        "GAS-UNESTIMATED-OP": Severity.LOW,
        "GAS-UNSIZED-ALLOCATION": Severity.LOW,
        "GAS-CODE-SIZE": Severity.HIGH,
        "QA-MISSING-DOCS": Severity.INFO,
        "QA-COMPLEXITY": Severity.LOW,
        "QA-UNHANDLED-ERROR": Severity.MEDIUM,
        "QA-NAMING": Severity.INFO,
        "QA-MISSING-EVENT": Severity.LOW,
        "QA-MISSING-TESTS": Severity.INFO,
    }
)


def base_severity(finding: Finding) -> Severity:
    """Fixed severity for the finding's rule; unknown rules keep what the detector chose."""
    return RULE_SEVERITY.get(finding.rule_id, finding.severity)


def classify(finding: Finding) -> Finding:
    """Confirm the severity of *finding*.

    The rule's base severity is demoted one level for partial matches and
    raised one level when correlation tagged the finding. The result only
    depends on the rule, the partial flag and the tags, so classifying twice
    gives the same answer.
    """
    severity = base_severity(finding)
    if finding.partial:
        severity = demote(severity)
    if CORRELATED_TAG in finding.tags:
        severity = escalate(severity)
    if severity is finding.severity:
        return finding
    return replace(finding, severity=severity)
