"""Unhandled results of fallible operations."""
from __future__ import annotations

from ..model.ir import ArithmeticOp, CallKind, ContractModel, ExternalCall, Function, ResultHandling
from .base import BaseDetector, Category, DetectionContext, Finding, Severity, describe_call


def fallible_operations(function: Function) -> tuple[int, int]:
    """(handled, total) over external calls and arithmetic."""
    handled = total = 0
    for op in function.operations:
        match op:
            case ExternalCall(handling=handling):
                total += 1
                handled += handling is not ResultHandling.IGNORED
            case ArithmeticOp(checked=checked, wrapping=wrapping):
                total += 1
                handled += checked or wrapping
            case _:
                pass
    return handled, total


class ErrorHandlingDetector(BaseDetector):
    name = "error_handling"
    description = "Detects fallible operations whose failure is not handled"
    category = Category.QUALITY
    rule_id = "QA-UNHANDLED-ERROR"
    severity = Severity.MEDIUM
    title = "Unhandled Error"
    remediation = "Check the call result (require/?/match) and use checked arithmetic forms."

    def inspect(self, model: ContractModel, context: DetectionContext | None = None) -> list[Finding]:
        findings: list[Finding] = []
        for function in model.functions:
            for _, op in function.ops_of(ExternalCall, ArithmeticOp):
                if isinstance(op, ExternalCall):
                    if op.call_kind is CallKind.CREATE:
                        continue
                    if op.handling is ResultHandling.IGNORED:
                        description = f"The result of the {describe_call(op)} is never checked."
                        partial = False
                    elif op.handling is ResultHandling.UNWRAPPED:
                        description = (
                            f"The result of the {describe_call(op)} is unwrapped; "
                            "a failure aborts with no context."
                        )
                        partial = True
                    else:
                        continue
                    tags = ("SWC-104", "error-handling")
                else:
                    if op.checked or op.wrapping:
                        continue
                    description = f"'{op.left} {op.operator} {op.right}' uses unchecked arithmetic."
                    partial = True
                    tags = ("error-handling", "arithmetic")
                findings.append(
                    self.finding(
                        description=description,
                        location=op.location,
                        function=function,
                        partial=partial,
                        tags=tags,
                    )
                )
        return self.dedupe_findings(findings)
