"""Missing unit tests in Stylus crates."""
from __future__ import annotations

from ..model.ir import ContractModel, Dialect, SourceLocation
from .base import BaseDetector, Category, DetectionContext, Finding, Severity


class TestCoverageDetector(BaseDetector):
    __test__ = False

    name = "test_coverage"
    description = "Detects Stylus Rust sources without a #[cfg(test)] module"
    category = Category.QUALITY
    rule_id = "QA-MISSING-TESTS"
    severity = Severity.INFO
    title = "Missing Tests"
    remediation = "Add a #[cfg(test)] mod tests exercising the public entrypoints (stylus-sdk test VM or motsu)."

    def inspect(self, model: ContractModel, context: DetectionContext | None = None) -> list[Finding]:
        if model.dialect is not Dialect.STYLUS_RUST or model.has_test_module or not model.functions:
            return []
        return [
            self.finding(
                description=f"'{model.name}' has {len(model.functions)} functions and no test module.",
                location=SourceLocation(1, 1),
            )
        ]
