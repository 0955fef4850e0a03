"""Redundant external call detector."""
from __future__ import annotations

from ..model.ir import CallKind, ContractModel, ExternalCall, TargetOrigin
from .base import BaseDetector, Category, DetectionContext, Finding, Severity


class RedundantCallsDetector(BaseDetector):
    name = "redundant_calls"
    description = "Detects the same external call issued more than once in a function"
    category = Category.PERFORMANCE
    rule_id = "GAS-REDUNDANT-CALL"
    severity = Severity.MEDIUM
    title = "Redundant External Call"
    remediation = "Call once and keep the result in memory, or batch the work into a single call."

    def inspect(self, model: ContractModel, context: DetectionContext | None = None) -> list[Finding]:
        context = self.context_for(model, context)
        findings: list[Finding] = []
        for function in model.functions:
            groups: dict[tuple[str, CallKind, str | None], list[tuple[int, ExternalCall]]] = {}
            for index, call in function.ops_of(ExternalCall):
                # Bytecode targets are runtime values; equal text says nothing.
                if call.target_origin is TargetOrigin.OPAQUE:
                    continue
                groups.setdefault((call.target, call.call_kind, call.method), []).append((index, call))

            estimate = context.cost_of(function)
            for (target, kind, method), calls in groups.items():
                if len(calls) < 2:
                    continue
                impact = None
                if estimate is not None:
                    impact = sum(estimate.operations[index].gas for index, _ in calls[1:])
                label = f"{target}.{method}" if method else target
                findings.append(
                    self.finding(
                        description=f"'{function.name}' issues the {kind} call '{label}' {len(calls)} times.",
                        location=calls[1][1].location,
                        function=function,
                        impact=impact,
                        tags=("gas", "external-call"),
                    )
                )
        return self.dedupe_findings(findings)
