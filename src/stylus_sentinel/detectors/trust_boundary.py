"""Calls into externally chosen code without validation."""
from __future__ import annotations

import re

from ..model.ir import Branch, CallKind, ContractModel, ExternalCall, Function, TargetOrigin
from .base import BaseDetector, Category, DetectionContext, Finding, Severity, describe_call

_IDENT = re.compile(r"\b[a-z_][A-Za-z0-9_]*\b")
_NOT_A_VALUE = frozenset({"self", "this", "address", "payable", "msg", "tx", "block", "new", "call", "value"})
_OPERAND = r"(?:0x[0-9a-fA-F]+|[A-Za-z_][\w.:]*(?:\s*\([^()]*\))?)"
_ZERO_ADDRESS = re.compile(
    r"^(?:0x0+|address\s*\(\s*0(?:x0+)?\s*\)|(?:Address|address)\s*::\s*(?:ZERO|default\s*\(\s*\)))$"
)
_ALLOW_LIST_NAME = re.compile(r"(?i)(white_?list|allow|approved|authori[sz]ed|trusted|registered|supported)")


def allow_list_check(condition: str, name: str) -> bool:
    """True when *condition* checks *name* against an allow-list or a fixed address.

    Accepted forms are a lookup keyed by the value (``allowed[target]``,
    ``self.allowed.get(target)``), an allow-list predicate
    (``isTrusted(target)``) and an equality with a stored or literal address
    other than zero. ``target != address(0)`` only rules out one bad value.
    """
    value = re.escape(name)
    if re.search(rf"\[\s*&?{value}\s*\]", condition):
        return True
    if re.search(rf"\.\s*(?:get|getter|contains|contains_key)\s*\(\s*&?{value}\s*\)", condition):
        return True
    for match in re.finditer(rf"(\w+)\s*\(\s*&?{value}\s*[,)]", condition):
        if _ALLOW_LIST_NAME.search(match.group(1)):
            return True
    equalities = re.finditer(
        rf"(?<![\w.]){value}\s*==\s*({_OPERAND})|({_OPERAND})\s*==\s*{value}(?![\w(])",
        condition,
    )
    return any(not _ZERO_ADDRESS.match(match.group(1) or match.group(2)) for match in equalities)


class TrustBoundaryDetector(BaseDetector):
    name = "trust_boundary"
    description = "Detects external calls to caller-controlled or unvalidated targets"
    category = Category.SECURITY
    rule_id = "SEC-TRUST-BOUNDARY"
    severity = Severity.HIGH
    title = "Unvalidated External Call Target"
    remediation = (
        "Validate the target against an allow-list or a trusted address held in storage "
        "before calling it; never delegate-call an address supplied by the caller."
    )

    def inspect(self, model: ContractModel, context: DetectionContext | None = None) -> list[Finding]:
        findings: list[Finding] = []
        for function in model.functions:
            for index, call in function.ops_of(ExternalCall):
                if call.call_kind in (CallKind.CREATE, CallKind.TRANSFER):
                    continue
                verdict = self._verdict(call)
                if verdict is None:
                    continue
                partial, reason = verdict
                if call.target_origin in (TargetOrigin.PARAMETER, TargetOrigin.UNKNOWN) and self._validated(
                    function, index, call
                ):
                    continue
                summary = describe_call(call)
                findings.append(
                    self.finding(
                        description=f"{summary[0].upper()}{summary[1:]}: {reason}.",
                        location=call.location,
                        function=function,
                        partial=partial,
                        tags=("SWC-112", "trust-boundary") if call.call_kind is CallKind.DELEGATE else ("trust-boundary",),
                    )
                )
        return self.dedupe_findings(findings)

    @staticmethod
    def _verdict(call: ExternalCall) -> tuple[bool, str] | None:
        delegate = call.call_kind is CallKind.DELEGATE
        match call.target_origin:
            case TargetOrigin.PARAMETER:
                return False, "the target address is supplied by the caller"
            case TargetOrigin.UNKNOWN:
                return not delegate, "the target address comes from an unvalidated expression"
            case TargetOrigin.STORAGE:
                if delegate:
                    return True, "delegate call to an address held in mutable storage"
                return None
            case TargetOrigin.OPAQUE:
                if delegate:
                    return True, "delegate call to a runtime-computed address"
                return None
            case TargetOrigin.CALLER | TargetOrigin.LITERAL:
                return None
        return None

    @staticmethod
    def _validated(function: Function, call_index: int, call: ExternalCall) -> bool:
        names = {name for name in _IDENT.findall(call.target) if name not in _NOT_A_VALUE}
        if not names:
            return False
        for index, branch in function.ops_of(Branch):
            if index >= call_index:
                break
            if any(allow_list_check(branch.condition, name) for name in names):
                return True
        return False
