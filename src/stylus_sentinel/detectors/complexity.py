"""Complexity proxy detector."""
from __future__ import annotations

from ..model.ir import Branch, ContractModel, Function, Loop
from .base import BaseDetector, Category, DetectionContext, Finding, Severity


def complexity(function: Function) -> int:
    """Branches plus loops plus one."""
    return len(function.ops_of(Branch, Loop)) + 1


class ComplexityDetector(BaseDetector):
    name = "complexity"
    description = "Detects functions whose branch/loop count exceeds the complexity threshold"
    category = Category.QUALITY
    rule_id = "QA-COMPLEXITY"
    severity = Severity.LOW
    title = "High Complexity"
    remediation = "Split the function into smaller helpers with a single responsibility each."

    def inspect(self, model: ContractModel, context: DetectionContext | None = None) -> list[Finding]:
        context = self.context_for(model, context)
        findings: list[Finding] = []
        for function in model.functions:
            score = complexity(function)
            if score <= context.complexity_threshold:
                continue
            findings.append(
                self.finding(
                    description=(
                        f"'{function.name}' has complexity {score} (threshold {context.complexity_threshold})."
                    ),
                    location=function.location,
                    function=function,
                    impact=score - context.complexity_threshold,
                    tags=("complexity",),
                )
            )
        return self.dedupe_findings(findings)
