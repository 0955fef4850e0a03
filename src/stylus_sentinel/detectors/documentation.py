"""Documentation coverage detector."""
from __future__ import annotations

from ..model.ir import ContractModel, Function
from .base import BaseDetector, Category, DetectionContext, Finding, Severity


def requires_documentation(function: Function) -> bool:
    """Entrypoints need docs; bytecode functions (``doc is None``) cannot be judged."""
    return function.is_entrypoint and function.doc is not None


def documentation_coverage(model: ContractModel) -> float | None:
    """Documented share of public/external functions, None when there are none to judge."""
    judged = [function for function in model.functions if requires_documentation(function)]
    if not judged:
        return None
    return sum(1 for function in judged if function.doc) / len(judged)


class DocumentationDetector(BaseDetector):
    name = "documentation"
    description = "Detects public/external functions without documentation"
    category = Category.QUALITY
    rule_id = "QA-MISSING-DOCS"
    severity = Severity.INFO
    title = "Missing Documentation"
    remediation = "Add a doc comment (/// or NatSpec) describing behaviour, parameters and failure modes."

    def inspect(self, model: ContractModel, context: DetectionContext | None = None) -> list[Finding]:
        findings: list[Finding] = []
        for function in model.functions:
            if not requires_documentation(function) or function.doc:
                continue
            findings.append(
                self.finding(
                    description=f"{function.visibility.capitalize()} function '{function.name}' has no documentation.",
                    location=function.location,
                    function=function,
                    tags=("docs",),
                )
            )
        return self.dedupe_findings(findings)
