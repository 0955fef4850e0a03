"""High gas cost detector."""
from __future__ import annotations

__all__ = ["GasThresholdDetector"]

from ..model.ir import ContractModel
from .base import BaseDetector, Category, DetectionContext, Finding, Severity


class GasThresholdDetector(BaseDetector):
    name = "gas_threshold"
    description = "Detects functions whose estimated gas exceeds the configured threshold"
    category = Category.PERFORMANCE
    rule_id = "GAS-HIGH-COST"
    severity = Severity.MEDIUM
    title = "High Gas Consumption"
    remediation = "Reduce storage writes and external calls, or split the workflow across transactions."

    def inspect(self, model: ContractModel, context: DetectionContext | None = None) -> list[Finding]:
        context = self.context_for(model, context)
        findings: list[Finding] = []
        for function in model.functions:
            estimate = context.cost_of(function)
            if estimate is None or estimate.gas <= context.gas_cost_threshold:
                continue
            excess = estimate.gas - context.gas_cost_threshold
            findings.append(
                self.finding(
                    description=(
                        f"'{function.name}' is estimated at {estimate.gas} gas, {excess} above the "
                        f"threshold of {context.gas_cost_threshold}."
                    ),
                    location=function.location,
                    function=function,
                    impact=excess,
                    tags=("gas",),
                )
            )
        return self.dedupe_findings(findings)
