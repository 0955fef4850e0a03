"""Operations the cost table could not price."""
from __future__ import annotations

from ..model.ir import ContractModel
from .base import BaseDetector, Category, DetectionContext, Finding, Severity


class UnestimatedOperationsDetector(BaseDetector):
    name = "unestimated_operations"
    description = "Reports operations priced at the default cost because the table has no entry"
    category = Category.PERFORMANCE
    rule_id = "GAS-UNESTIMATED-OP"
    severity = Severity.LOW
    title = "Unestimated Operation"
    remediation = "Review the operation manually; the gas total for this function is approximate."

    def inspect(self, model: ContractModel, context: DetectionContext | None = None) -> list[Finding]:
        context = self.context_for(model, context)
        findings: list[Finding] = []
        for function in model.functions:
            estimate = context.cost_of(function)
            if estimate is None:
                continue
            for warning in estimate.unestimated:
                findings.append(
                    self.finding(
                        title=f"Unestimated Operation: {warning.key}",
                        description=f"In '{function.name}': {warning}.",
                        location=warning.location,
                        function=function,
                        impact=warning.default_cost,
                        tags=("gas", "estimate"),
                    )
                )
        return self.dedupe_findings(findings)
