"""Security, performance and quality scores plus the overall risk level."""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import StrEnum

from ..detectors.base import SEVERITY_RANK, Category, Finding, Severity
from ..detectors.complexity import complexity
from ..detectors.documentation import requires_documentation
from ..detectors.error_handling import fallible_operations
from ..model.ir import ContractModel, Function

__all__ = [
    "PENALTIES",
    "QualityScore",
    "RiskLevel",
    "Scores",
    "category_score",
    "quality_score",
    "risk_level",
    "score",
]

PENALTIES: dict[Severity, int] = {
    Severity.CRITICAL: 40,
    Severity.HIGH: 20,
    Severity.MEDIUM: 8,
    Severity.LOW: 3,
    Severity.INFO: 0,
}

_DOC_WEIGHT = 40.0
_COMPLEXITY_WEIGHT = 30.0
_ERROR_WEIGHT = 30.0
_COMPLEXITY_STEP = 5.0
# Penalty points per function at which the risk level is raised one step.
_DENSITY_ESCALATION = 30.0


class RiskLevel(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    MINIMAL = "minimal"


_RISK_ORDER = (RiskLevel.CRITICAL, RiskLevel.HIGH, RiskLevel.MEDIUM, RiskLevel.LOW, RiskLevel.MINIMAL)
_RISK_BY_SEVERITY = {
    Severity.CRITICAL: RiskLevel.CRITICAL,
    Severity.HIGH: RiskLevel.HIGH,
    Severity.MEDIUM: RiskLevel.MEDIUM,
    Severity.LOW: RiskLevel.LOW,
    Severity.INFO: RiskLevel.MINIMAL,
}


@dataclass(slots=True, frozen=True)
class QualityScore:
    function: str
    documentation: float
    complexity: float
    error_handling: float

    @property
    def total(self) -> float:
        return round(self.documentation + self.complexity + self.error_handling, 2)

    def to_dict(self) -> dict[str, object]:
        return {
            "function": self.function,
            "documentation": self.documentation,
            "complexity": self.complexity,
            "error_handling": self.error_handling,
            "total": self.total,
        }


@dataclass(slots=True, frozen=True)
class Scores:
    security: float
    performance: float
    quality: float
    functions: tuple[QualityScore, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {"security": self.security, "performance": self.performance, "quality": self.quality}


def quality_score(function: Function, complexity_threshold: int = 10) -> QualityScore:
    documented = not requires_documentation(function) or bool(function.doc)
    excess = max(0, complexity(function) - complexity_threshold)
    handled, total = fallible_operations(function)
    return QualityScore(
        function=function.name,
        documentation=_DOC_WEIGHT if documented else 0.0,
        complexity=max(0.0, _COMPLEXITY_WEIGHT - _COMPLEXITY_STEP * excess),
        error_handling=round(_ERROR_WEIGHT * handled / total, 2) if total else _ERROR_WEIGHT,
    )


def category_score(findings: Iterable[Finding], category: Category) -> float:
    penalty = sum(PENALTIES[finding.severity] for finding in findings if finding.category is category)
    return float(max(0, min(100, 100 - penalty)))


def score(model: ContractModel, findings: Sequence[Finding], *, complexity_threshold: int = 10) -> Scores:
    """Deterministic 0-100 scores; a contract without functions scores zero everywhere."""
    if not model.functions:
        return Scores(0.0, 0.0, 0.0)
    per_function = tuple(quality_score(function, complexity_threshold) for function in model.functions)
    return Scores(
        security=category_score(findings, Category.SECURITY),
        performance=category_score(findings, Category.PERFORMANCE),
        quality=round(sum(entry.total for entry in per_function) / len(per_function), 2),
        functions=per_function,
    )


def risk_level(findings: Sequence[Finding], function_count: int) -> RiskLevel:
    if not findings:
        return RiskLevel.MINIMAL
    worst = min((finding.severity for finding in findings), key=SEVERITY_RANK.__getitem__)
    level = _RISK_BY_SEVERITY[worst]
    penalty = sum(PENALTIES[finding.severity] for finding in findings)
    if level is not RiskLevel.MINIMAL and penalty / max(function_count, 1) >= _DENSITY_ESCALATION:
        level = _RISK_ORDER[max(_RISK_ORDER.index(level) - 1, 0)]
    return level
