"""Block timing assumptions on Arbitrum."""
from __future__ import annotations

import re

from ..model.hostio import TIMING_SOURCES
from ..model.ir import Branch, ContractModel, EnvRead
from .base import BaseDetector, Category, DetectionContext, Finding, Severity

_TIMING_CONDITION = re.compile(
    r"timestamp|block\s*(?:\.|::)\s*number|block_number|\bnow\b|deadline|expir|cooldown|lock_?time|period|duration",
    re.IGNORECASE,
)


class L2TimingDetector(BaseDetector):
    name = "l2_timing"
    description = "Detects logic that depends on L2 block timestamps or numbers"
    category = Category.SECURITY
    rule_id = "SEC-L2-TIMING"
    severity = Severity.MEDIUM
    title = "L2 Block Timing Dependence"
    remediation = (
        "Arbitrum block numbers track L1 and timestamps are set by the sequencer; allow for "
        "drift of several minutes and never use them as a source of randomness."
    )

    def inspect(self, model: ContractModel, context: DetectionContext | None = None) -> list[Finding]:
        findings: list[Finding] = []
        for function in model.functions:
            reads = [op for _, op in function.ops_of(EnvRead) if op.name in TIMING_SOURCES]
            if not reads:
                continue
            branches = [op for _, op in function.ops_of(Branch) if _TIMING_CONDITION.search(op.condition)]
            sources = ", ".join(dict.fromkeys(op.name for op in reads))
            if branches:
                description = (
                    f"'{function.name}' branches on {sources} ('{branches[0].condition}'). "
                    "L2 block values advance irregularly, so the condition may hold earlier or later than expected."
                )
            else:
                description = f"'{function.name}' reads {sources}; the value is not compared in this function."
            findings.append(
                self.finding(
                    description=description,
                    location=reads[0].location,
                    function=function,
                    partial=not branches,
                    tags=("SWC-116", "l2"),
                )
            )
        return self.dedupe_findings(findings)
