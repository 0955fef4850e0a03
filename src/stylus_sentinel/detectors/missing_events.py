"""State changes without an event."""
from __future__ import annotations

from ..model.ir import ContractModel, Emit, StorageWrite
from .base import BaseDetector, Category, DetectionContext, Finding, Severity


class MissingEventsDetector(BaseDetector):
    name = "missing_events"
    description = "Detects entrypoints that change storage without emitting an event"
    category = Category.QUALITY
    rule_id = "QA-MISSING-EVENT"
    severity = Severity.LOW
    title = "Missing Event"
    remediation = "Emit an event describing the state change so off-chain indexers can follow it."

    def inspect(self, model: ContractModel, context: DetectionContext | None = None) -> list[Finding]:
        findings: list[Finding] = []
        for function in model.functions:
            if not function.is_entrypoint or function.is_constructor:
                continue
            writes = function.ops_of(StorageWrite)
            if not writes:
                continue
            reached = [function, *model.reachable_callees(function)]
            if any(candidate.ops_of(Emit) for candidate in reached):
                continue
            slots = ", ".join(dict.fromkeys(op.slot for _, op in writes))
            findings.append(
                self.finding(
                    description=f"'{function.name}' writes {slots} but emits no event.",
                    location=writes[0][1].location,
                    function=function,
                    tags=("events",),
                )
            )
        return self.dedupe_findings(findings)
