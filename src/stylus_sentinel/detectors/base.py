"""Base detector definitions."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from enum import StrEnum

from ..cost.estimate import ContractCostSummary, CostEstimate, estimate_costs
from ..cost.table import DEFAULT_COST_TABLE, InstructionCostTable
from ..model.ir import Branch, CallKind, ContractModel, ExternalCall, Function, ModifierKind, SourceLocation

__all__ = [
    "DEFAULT_CODE_SIZE_LIMIT",
    "SEVERITY_RANK",
    "BaseDetector",
    "Category",
    "DetectionContext",
    "Finding",
    "Severity",
    "demote",
    "describe_call",
    "escalate",
]

logger = logging.getLogger(__name__)


class Severity(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


SEVERITY_RANK: dict[Severity, int] = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
    Severity.INFO: 4,
}

_BY_RANK = {rank: severity for severity, rank in SEVERITY_RANK.items()}


def demote(severity: Severity) -> Severity:
    return _BY_RANK[min(SEVERITY_RANK[severity] + 1, SEVERITY_RANK[Severity.INFO])]


def escalate(severity: Severity) -> Severity:
    return _BY_RANK[max(SEVERITY_RANK[severity] - 1, SEVERITY_RANK[Severity.CRITICAL])]


class Category(StrEnum):
    SECURITY = "security"
    PERFORMANCE = "performance"
    QUALITY = "quality"


# Method names that only spell the call mechanism, not the callee's entry point.
_MECHANISMS = frozenset(
    {
        "call",
        "delegatecall",
        "staticcall",
        "transfer",
        "send",
        "raw",
        "static_call",
        "delegate_call",
        "transfer_eth",
        "call_contract",
        "delegate_call_contract",
        "static_call_contract",
    }
)


def describe_call(call: ExternalCall) -> str:
    """Readable call summary, e.g. ``delegate call to 'proxy'`` or ``call to 'vault.deposit'``."""
    kind = "call" if call.call_kind is CallKind.CALL else f"{call.call_kind} call"
    target = call.target
    if call.method and call.method not in _MECHANISMS:
        target = f"{target}.{call.method}"
    return f"{kind} to '{target}'"


# Stylus program size limit in bytes.
DEFAULT_CODE_SIZE_LIMIT = 24 * 1024


@dataclass(slots=True, frozen=True)
class Finding:
    detector: str
    rule_id: str
    category: Category
    severity: Severity
    title: str
    description: str
    location: SourceLocation | None = None
    function: str | None = None
    remediation: str | None = None
    impact: int | None = None
    partial: bool = False
    tags: tuple[str, ...] = field(default_factory=tuple)
    # Declaration site of the function; overloads share a name but not this.
    function_location: SourceLocation | None = None

    def __post_init__(self) -> None:
        if not self.rule_id or not self.rule_id.strip():
            raise ValueError("Finding.rule_id must be non-empty")
        if not isinstance(self.severity, Severity):
            raise TypeError(f"Finding.severity must be a Severity, got {self.severity!r}")
        if not isinstance(self.category, Category):
            raise TypeError(f"Finding.category must be a Category, got {self.category!r}")

    def to_dict(self) -> dict[str, object]:
        return {
            "rule_id": self.rule_id,
            "detector": self.detector,
            "category": str(self.category),
            "severity": str(self.severity),
            "title": self.title,
            "description": self.description,
            "function": self.function,
            "location": str(self.location) if self.location is not None else None,
            "remediation": self.remediation,
            "impact": self.impact,
            "partial": self.partial,
            "tags": list(self.tags),
        }


@dataclass(slots=True, frozen=True)
class DetectionContext:
    """Read-only inputs shared by every detector of one analysis run."""

    costs: ContractCostSummary
    gas_cost_threshold: int = 100_000
    complexity_threshold: int = 10
    code_size_limit: int = DEFAULT_CODE_SIZE_LIMIT
    cost_table: InstructionCostTable = DEFAULT_COST_TABLE

    @classmethod
    def for_model(
        cls,
        model: ContractModel,
        table: InstructionCostTable = DEFAULT_COST_TABLE,
        **thresholds: int,
    ) -> DetectionContext:
        return cls(costs=estimate_costs(model, table), cost_table=table, **thresholds)

    def cost_of(self, function: Function) -> CostEstimate | None:
        return self.costs.for_function(function)


class BaseDetector(ABC):
    name = "base"
    description = "base detector"
    category = Category.SECURITY
    rule_id = "BASE"
    severity = Severity.INFO
    title = ""
    remediation: str | None = None

    @abstractmethod
    def inspect(self, model: ContractModel, context: DetectionContext | None = None) -> list[Finding]: ...

    def finding(
        self,
        *,
        description: str,
        location: SourceLocation | None = None,
        function: Function | str | None = None,
        title: str | None = None,
        severity: Severity | None = None,
        remediation: str | None = None,
        impact: int | None = None,
        partial: bool = False,
        tags: Iterable[str] = (),
    ) -> Finding:
        """Create a Finding carrying this detector's rule, category and base severity.

        Partial matches keep the base severity here; the classifier demotes
        them when the report is assembled.
        """
        function_location = None
        if isinstance(function, Function):
            function_location = function.location
            function = function.name
        return Finding(
            detector=self.name,
            rule_id=self.rule_id,
            category=self.category,
            severity=self.severity if severity is None else severity,
            title=title or self.title,
            description=description,
            location=location,
            function=function,
            remediation=self.remediation if remediation is None else remediation,
            impact=impact,
            partial=partial,
            tags=tuple(tags),
            function_location=function_location,
        )

    @staticmethod
    def context_for(model: ContractModel, context: DetectionContext | None) -> DetectionContext:
        if context is not None:
            return context
        logger.debug("No detection context supplied for %s; estimating costs", model.name)
        return DetectionContext.for_model(model)

    @staticmethod
    def has_access_check(function: Function) -> bool:
        if function.has_modifier(ModifierKind.ACCESS_CONTROL):
            return True
        return any(op.is_access_check for _, op in function.ops_of(Branch))

    @classmethod
    def is_guarded(cls, model: ContractModel, function: Function) -> bool:
        """True when *function* or an internal function it calls checks the caller."""
        if cls.has_access_check(function):
            return True
        return any(cls.has_access_check(callee) for callee in model.reachable_callees(function))

    @staticmethod
    def first_access_check(function: Function) -> int | None:
        """Index of the first access-check branch, -1 for a guard modifier, None if unguarded."""
        if function.has_modifier(ModifierKind.ACCESS_CONTROL):
            return -1
        for index, op in function.ops_of(Branch):
            if op.is_access_check:
                return index
        return None

    @staticmethod
    def dedupe_findings(findings: list[Finding]) -> list[Finding]:
        """Deduplicate findings by (rule, function, location, title), keeping the most severe."""
        unique_by_key: dict[tuple[str, str | None, SourceLocation | None, str], Finding] = {}
        for finding in findings:
            key = (finding.rule_id, finding.function, finding.location, finding.title)
            existing = unique_by_key.get(key)
            if existing is None:
                unique_by_key[key] = finding
                continue

            # Lower SEVERITY_RANK value = more severe; a full match beats a partial one.
            existing_rank = (SEVERITY_RANK[existing.severity], existing.partial)
            incoming_rank = (SEVERITY_RANK[finding.severity], finding.partial)
            chosen = finding if incoming_rank < existing_rank else existing

            merged_tags = tuple(dict.fromkeys((*existing.tags, *finding.tags)))
            if chosen.tags != merged_tags:
                chosen = replace(chosen, tags=merged_tags)
            unique_by_key[key] = chosen

        return list(unique_by_key.values())
