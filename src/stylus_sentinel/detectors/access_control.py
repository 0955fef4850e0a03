"""Missing access control on state-changing entrypoints."""
from __future__ import annotations

import re

from ..model.ir import DYNAMIC_SLOT, ContractModel, EnvRead, Function, StorageWrite, TypeClass
from .base import BaseDetector, Category, DetectionContext, Finding, Severity

_CALLER_KEY = re.compile(r"\b(?:msg\s*(?:\.|::)\s*sender|msg_sender|_msgSender|tx\s*(?:\.|::)\s*origin)\b")
_PRIVILEGED = re.compile(
    r"(?i)(owner|admin|paused?|implementation|upgrade|fee|oracle|treasury|governance|governor|minter|"
    r"operator|roles?|authority|signer|guardian|beneficiary|white_?list|black_?list|config|price|rate|"
    r"total_?supply|cap|limit|vault|manager|controller)"
)


class AccessControlDetector(BaseDetector):
    name = "access_control"
    description = "Detects state-changing entrypoints without caller authentication"
    category = Category.SECURITY
    rule_id = "SEC-ACCESS-CONTROL"
    severity = Severity.HIGH
    title = "Missing Access Control"
    remediation = (
        "Restrict the function with an owner/role check (modifier or an explicit "
        "comparison against the caller that reverts)."
    )

    def inspect(self, model: ContractModel, context: DetectionContext | None = None) -> list[Finding]:
        guarded_writers = {
            op.slot
            for function in model.functions
            if self.is_guarded(model, function)
            for _, op in function.ops_of(StorageWrite)
        }
        findings: list[Finding] = []
        for function in model.functions:
            if not function.is_entrypoint or not function.is_state_mutating or function.is_constructor:
                continue
            if self.is_guarded(model, function):
                continue
            reads_caller = self._reads_caller(model, function)

            full: list[tuple[StorageWrite, str]] = []
            partial: list[tuple[StorageWrite, str]] = []
            for write in self._writes(model, function):
                verdict = self._classify(model, write, reads_caller, guarded_writers)
                if verdict is None:
                    continue
                is_full, reason = verdict
                (full if is_full else partial).append((write, reason))
            if not full and not partial:
                continue

            chosen = full or partial
            write, reason = chosen[0]
            slots = ", ".join(dict.fromkeys(entry.slot for entry, _ in chosen))
            findings.append(
                self.finding(
                    description=(
                        f"Entrypoint '{function.name}' modifies {slots} without verifying the caller ({reason})."
                    ),
                    location=write.location,
                    function=function,
                    partial=not full,
                    tags=("SWC-105", "access-control"),
                )
            )
        return self.dedupe_findings(findings)

    @staticmethod
    def _writes(model: ContractModel, function: Function) -> list[StorageWrite]:
        writes = [op for _, op in function.ops_of(StorageWrite)]
        for callee in model.reachable_callees(function):
            writes.extend(op for _, op in callee.ops_of(StorageWrite))
        return writes

    @staticmethod
    def _reads_caller(model: ContractModel, function: Function) -> bool:
        for candidate in (function, *model.reachable_callees(function)):
            if any(op.name in ("msg.sender", "tx.origin") for _, op in candidate.ops_of(EnvRead)):
                return True
        return False

    @staticmethod
    def _classify(
        model: ContractModel,
        write: StorageWrite,
        reads_caller: bool,
        guarded_writers: set[str],
    ) -> tuple[bool, str] | None:
        if write.slot == DYNAMIC_SLOT:
            return False, "storage key computed at runtime"
        slot = model.slot(write.slot)
        if slot is None:
            return False, "slot not declared in contract storage"
        if slot.type_class is not TypeClass.VALUE:
            if write.keyed_by is not None and _CALLER_KEY.search(write.keyed_by):
                return None
            if reads_caller:
                return None
            return True, f"{slot.type_class} entry keyed by '{write.keyed_by or '?'}' is not tied to the caller"
        if _PRIVILEGED.search(slot.name):
            return True, f"'{slot.name}' is a privileged setting"
        if slot.name in guarded_writers:
            return True, f"other functions guard writes to '{slot.name}'"
        return False, f"unguarded write to '{slot.name}'"
