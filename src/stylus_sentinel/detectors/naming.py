"""Naming convention detector."""
from __future__ import annotations

import re

from ..model.ir import ContractModel, Dialect
from .base import BaseDetector, Category, DetectionContext, Finding, Severity

_SNAKE_CASE = re.compile(r"^_*[a-z][a-z0-9_]*$")
_MIXED_CASE = re.compile(r"^_*[a-z][A-Za-z0-9]*$")
_UPPER_CASE = re.compile(r"^_*[A-Z][A-Z0-9_]*$")
_SPECIAL_FUNCTIONS = frozenset({"constructor", "receive", "fallback"})


class NamingDetector(BaseDetector):
    name = "naming"
    description = "Detects identifiers that break the dialect's naming conventions"
    category = Category.QUALITY
    rule_id = "QA-NAMING"
    severity = Severity.INFO
    title = "Naming Convention"
    remediation = "Rust: snake_case functions and fields, UPPER_CASE constants. Solidity: mixedCase functions, UPPER_CASE constants."

    def inspect(self, model: ContractModel, context: DetectionContext | None = None) -> list[Finding]:
        if model.dialect is Dialect.STYLUS_RUST:
            function_style, function_label = _SNAKE_CASE, "snake_case"
            slot_style: re.Pattern[str] | None = _SNAKE_CASE
        elif model.dialect is Dialect.SOLIDITY:
            function_style, function_label = _MIXED_CASE, "mixedCase"
            slot_style = None
        else:
            # Bytecode names come from the toolchain.
            return []

        findings: list[Finding] = []
        for function in model.functions:
            if function.name in _SPECIAL_FUNCTIONS or function_style.match(function.name):
                continue
            findings.append(
                self.finding(
                    title=f"Naming Convention: {function.name}",
                    description=f"Function '{function.name}' is not {function_label}.",
                    location=function.location,
                    function=function,
                    tags=("style",),
                )
            )
        if slot_style is not None:
            for slot in model.storage:
                if slot_style.match(slot.name):
                    continue
                findings.append(
                    self.finding(
                        title=f"Naming Convention: {slot.name}",
                        description=f"Storage field '{slot.name}' is not snake_case.",
                        location=slot.location,
                        tags=("style",),
                    )
                )
        for constant in model.constants:
            if _UPPER_CASE.match(constant):
                continue
            findings.append(
                self.finding(
                    title=f"Naming Convention: {constant}",
                    description=f"Constant '{constant}' is not UPPER_CASE.",
                    location=model.source_map.get(f"constant:{constant}"),
                    tags=("style",),
                )
            )
        return self.dedupe_findings(findings)
