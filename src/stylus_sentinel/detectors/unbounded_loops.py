"""Loops whose iteration count is not bounded by the contract."""
from __future__ import annotations

from ..model.ir import BoundKind, ContractModel, Loop
from .base import BaseDetector, Category, DetectionContext, Finding, Severity

_REASONS = {
    BoundKind.STORAGE: "iterates over a storage-sized collection, so its cost grows with contract state",
    BoundKind.UNBOUNDED: "has no static bound",
    BoundKind.PARAMETER: "is bounded by a caller-supplied argument",
}


class UnboundedLoopsDetector(BaseDetector):
    name = "unbounded_loops"
    description = "Detects loops bounded by storage size or not bounded at all"
    category = Category.PERFORMANCE
    rule_id = "GAS-UNBOUNDED-LOOP"
    severity = Severity.HIGH
    title = "Unbounded Loop"
    remediation = "Cap the iteration count or paginate the work across several transactions."

    def inspect(self, model: ContractModel, context: DetectionContext | None = None) -> list[Finding]:
        context = self.context_for(model, context)
        findings: list[Finding] = []
        for function in model.functions:
            estimate = context.cost_of(function)
            for index, loop in function.ops_of(Loop):
                reason = _REASONS.get(loop.bound_kind)
                if reason is None:
                    continue
                per_iteration = None
                if estimate is not None:
                    body = estimate.operations[index + 1 : max(loop.body_end, index) + 1]
                    per_iteration = sum(cost.gas for cost in body)
                description = f"Loop over '{loop.bound}' in '{function.name}' {reason}."
                if per_iteration:
                    description += f" Each iteration costs ~{per_iteration} gas."
                findings.append(
                    self.finding(
                        description=description,
                        location=loop.location,
                        function=function,
                        impact=per_iteration,
                        partial=loop.bound_kind is BoundKind.PARAMETER,
                        tags=("SWC-128", "dos", "l2-scalability"),
                    )
                )
        return self.dedupe_findings(findings)
