"""Growable allocations without a capacity hint."""
from __future__ import annotations

from ..model.ir import ContractModel, MemoryAlloc
from .base import BaseDetector, Category, DetectionContext, Finding, Severity


class UnsizedAllocationDetector(BaseDetector):
    name = "unsized_allocation"
    description = "Detects growable allocations without preallocated capacity"
    category = Category.PERFORMANCE
    rule_id = "GAS-UNSIZED-ALLOCATION"
    severity = Severity.LOW
    title = "Unsized Allocation"
    remediation = "Preallocate (Vec::with_capacity, fixed-size arrays) so memory is not regrown repeatedly."

    def inspect(self, model: ContractModel, context: DetectionContext | None = None) -> list[Finding]:
        findings: list[Finding] = []
        for function in model.functions:
            for _, op in function.ops_of(MemoryAlloc):
                if op.preallocated:
                    continue
                where = "inside a loop" if op.loop_depth > 0 else "outside any loop"
                findings.append(
                    self.finding(
                        description=f"'{op.construct}' in '{function.name}' grows without a capacity hint {where}.",
                        location=op.location,
                        function=function,
                        partial=op.loop_depth == 0,
                        tags=("gas", "memory"),
                    )
                )
        return self.dedupe_findings(findings)
