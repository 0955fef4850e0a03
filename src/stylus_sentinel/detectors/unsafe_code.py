"""Unsafe code detector."""
from __future__ import annotations

from ..model.ir import ContractModel, UnsafeCode
from .base import BaseDetector, Category, DetectionContext, Finding, Severity


class UnsafeCodeDetector(BaseDetector):
    name = "unsafe_code"
    description = "Detects unsafe blocks, raw pointers, inline assembly and self-destruction"
    category = Category.SECURITY
    rule_id = "SEC-UNSAFE-CODE"
    severity = Severity.HIGH
    title = "Unsafe Code"
    remediation = "Replace the construct with a safe SDK abstraction or isolate and audit it separately."

    def inspect(self, model: ContractModel, context: DetectionContext | None = None) -> list[Finding]:
        findings: list[Finding] = []
        for function in model.functions:
            for _, op in function.ops_of(UnsafeCode):
                findings.append(
                    self.finding(
                        title=f"Unsafe Code: {op.construct}",
                        description=(
                            f"'{function.name}' uses {op.construct}, which bypasses the memory and "
                            "type-safety guarantees the rest of the contract relies on."
                        ),
                        location=op.location,
                        function=function,
                        tags=("unsafe",),
                    )
                )
        return self.dedupe_findings(findings)
