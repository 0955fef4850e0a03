"""Reentrancy detector."""
from __future__ import annotations

from ..model.ir import CallKind, ContractModel, Dialect, ExternalCall, InternalCall, ModifierKind, StorageWrite
from .base import BaseDetector, Category, DetectionContext, Finding, Severity, describe_call


class ReentrancyDetector(BaseDetector):
    name = "reentrancy"
    description = "Detects external-call-before-state-update patterns"
    category = Category.SECURITY
    rule_id = "SEC-REENTRANCY"
    severity = Severity.CRITICAL
    title = "Potential Reentrancy"
    remediation = (
        "Apply checks-effects-interactions ordering (update storage before the call) "
        "or protect the function with a reentrancy guard."
    )

    def inspect(self, model: ContractModel, context: DetectionContext | None = None) -> list[Finding]:
        findings: list[Finding] = []
        for function in model.functions:
            if function.has_modifier(ModifierKind.REENTRANCY_GUARD):
                continue
            calls = [(index, op) for index, op in function.ops_of(ExternalCall) if op.call_kind is not CallKind.STATIC]
            if not calls:
                continue
            first_index, first_call = calls[0]

            writes_after = [op for index, op in function.ops_of(StorageWrite) if index > first_index]
            callee_writes: list[str] = []
            if not writes_after:
                for index, op in function.ops_of(InternalCall):
                    if index <= first_index:
                        continue
                    callee = model.function(op.callee)
                    if callee is None:
                        continue
                    reached = [callee, *model.reachable_callees(callee)]
                    if any(candidate.ops_of(StorageWrite) for candidate in reached):
                        callee_writes.append(op.callee)
                if not callee_writes:
                    continue

            signals: list[str] = []
            guard = self.first_access_check(function)
            if guard is not None and guard < first_index:
                signals.append("an access check precedes the call")
            if callee_writes:
                signals.append(f"the state update happens in internal callee(s) {', '.join(sorted(set(callee_writes)))}")
            stipend_only = all(
                op.call_kind is CallKind.TRANSFER for index, op in calls if index <= first_index
            ) and model.dialect is Dialect.SOLIDITY
            if stipend_only:
                signals.append("the call forwards only the 2300 gas stipend")

            written = ", ".join(sorted({op.slot for op in writes_after})) or "state"
            description = (
                f"External {describe_call(first_call)} executes before {written} is updated. "
                "If the callee re-enters, contract state may be manipulated before completion."
            )
            if signals:
                description += " Partial match: " + "; ".join(signals) + "."
            findings.append(
                self.finding(
                    description=description,
                    location=first_call.location,
                    function=function,
                    partial=bool(signals),
                    tags=("SWC-107", "reentrancy"),
                )
            )
        return self.dedupe_findings(findings)
