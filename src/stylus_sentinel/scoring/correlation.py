"""Cross-detector correlation, run after every detector has finished."""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace

from ..detectors.base import Finding
from ..model.ir import SourceLocation
from .severity import CORRELATED_TAG

__all__ = ["CORRELATIONS", "correlate"]

# (rules escalated, rule that must be present in the same function, reason)
CORRELATIONS: tuple[tuple[frozenset[str], str, str], ...] = (
    (
        frozenset({"GAS-UNBOUNDED-LOOP", "GAS-HIGH-COST"}),
        "SEC-ACCESS-CONTROL",
        "any caller can trigger this cost",
    ),
    (
        frozenset({"SEC-REENTRANCY"}),
        "SEC-TRUST-BOUNDARY",
        "the re-entered call target is caller controlled",
    ),
)


def _scope(finding: Finding) -> tuple[str, SourceLocation | None]:
    # Overloads share a name; the declaration site tells them apart.
    return (finding.function or "", finding.function_location)


def correlate(findings: Iterable[Finding]) -> list[Finding]:
    """Tag findings whose function also carries a compounding finding.

    Input order is preserved; findings without a function are never tagged.
    """
    findings = list(findings)
    rules_by_function: dict[tuple[str, SourceLocation | None], set[str]] = {}
    for finding in findings:
        if finding.function is not None:
            rules_by_function.setdefault(_scope(finding), set()).add(finding.rule_id)

    correlated: list[Finding] = []
    for finding in findings:
        present = rules_by_function.get(_scope(finding), set()) if finding.function is not None else set()
        reasons = [
            reason
            for escalated, required, reason in CORRELATIONS
            if finding.rule_id in escalated and required in present
        ]
        if not reasons or CORRELATED_TAG in finding.tags:
            correlated.append(finding)
            continue
        correlated.append(
            replace(
                finding,
                description=f"{finding.description} Escalated: {'; '.join(reasons)}.",
                tags=(*finding.tags, CORRELATED_TAG),
            )
        )
    return correlated
