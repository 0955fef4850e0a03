"""Deployed program size against the Stylus size limit."""
from __future__ import annotations

from ..model.ir import ContractModel, Dialect
from .base import BaseDetector, Category, DetectionContext, Finding, Severity

__all__ = ["CodeSizeDetector"]

# Share of the limit at which a module is reported as close to it.
_WARNING_RATIO = 0.8


class CodeSizeDetector(BaseDetector):
    name = "code_size"
    description = "Detects WASM modules at or over the deployable program size limit"
    category = Category.PERFORMANCE
    rule_id = "GAS-CODE-SIZE"
    severity = Severity.HIGH
    title = "Program Size Limit"
    remediation = (
        "Build with opt-level \"z\" and LTO, strip debug sections, run wasm-opt, "
        "or move rarely used logic into a separate contract."
    )

    def inspect(self, model: ContractModel, context: DetectionContext | None = None) -> list[Finding]:
        # Source text length says nothing about the compiled program.
        if model.dialect is not Dialect.WASM:
            return []
        limit = self.context_for(model, context).code_size_limit
        size = model.size_bytes
        if size > limit:
            return [
                self.finding(
                    description=f"The module is {size} bytes, {size - limit} over the {limit}-byte limit; deployment will fail.",
                    impact=size - limit,
                    tags=("gas", "size"),
                )
            ]
        if size >= limit * _WARNING_RATIO:
            return [
                self.finding(
                    description=f"The module is {size} bytes, {size * 100 // limit}% of the {limit}-byte limit.",
                    partial=True,
                    tags=("gas", "size"),
                )
            ]
        return []
