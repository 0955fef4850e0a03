"""Report aggregation - canonical JSON and Markdown output."""
from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from ..cost.estimate import ContractCostSummary
from ..detectors.base import SEVERITY_RANK, Category, Finding, Severity
from ..detectors.documentation import documentation_coverage
from ..model.ir import ContractModel, Diagnostic, Dialect, SourceLocation
from ..scoring.scorer import RiskLevel, Scores, risk_level

__all__ = ["Report", "aggregate", "dedupe", "sort_findings"]

_NOWHERE = SourceLocation(line=1 << 31, column=0, offset=1 << 62)


def _sort_key(finding: Finding) -> tuple[int, bool, SourceLocation, str, str]:
    return (
        SEVERITY_RANK[finding.severity],
        finding.location is None,
        finding.location or _NOWHERE,
        finding.rule_id,
        finding.function or "",
    )


def sort_findings(findings: Iterable[Finding]) -> list[Finding]:
    """Most severe first, then by location (locationless last), rule id and function."""
    return sorted(findings, key=_sort_key)


def dedupe(findings: Iterable[Finding]) -> list[Finding]:
    """Drop exact duplicates (same rule at the same location), keeping the most severe."""
    unique: dict[tuple[object, ...], Finding] = {}
    for finding in findings:
        if finding.location is not None:
            key: tuple[object, ...] = (finding.rule_id, finding.location)
        else:
            key = (finding.rule_id, None, finding.function, finding.title)
        existing = unique.get(key)
        if existing is None or SEVERITY_RANK[finding.severity] < SEVERITY_RANK[existing.severity]:
            unique[key] = finding
    return list(unique.values())


@dataclass(slots=True, frozen=True)
class Report:
    contract: str
    dialect: Dialect
    findings: tuple[Finding, ...]
    diagnostics: tuple[Diagnostic, ...]
    cost_summary: ContractCostSummary
    scores: Scores
    risk: RiskLevel
    severity_floor: Severity = Severity.INFO
    documentation_coverage: float | None = None
    # Findings removed by the severity floor; scores and risk still count them.
    suppressed: int = 0

    @property
    def quality_summary(self) -> dict[str, Any]:
        return {
            "score": self.scores.quality,
            "documentation_coverage": self.documentation_coverage,
            "functions": [entry.to_dict() for entry in self.scores.functions],
        }

    @property
    def counts(self) -> dict[str, int]:
        by_severity = {severity.value: 0 for severity in Severity}
        for finding in self.findings:
            by_severity[finding.severity.value] += 1
        return by_severity

    def category_counts(self) -> dict[str, int]:
        by_category = {category.value: 0 for category in Category}
        for finding in self.findings:
            by_category[finding.category.value] += 1
        return by_category

    def to_dict(self) -> dict[str, Any]:
        """Serialize the report; identical inputs give identical dictionaries."""
        return {
            "contract": self.contract,
            "dialect": self.dialect.value,
            "overall_risk": self.risk.value,
            "severity_floor": self.severity_floor.value,
            "scores": self.scores.to_dict(),
            "summary": {
                "by_severity": self.counts,
                "by_category": self.category_counts(),
                "total": len(self.findings),
                "suppressed": self.suppressed,
            },
            "findings": [finding.to_dict() for finding in self.findings],
            "diagnostics": [diagnostic.to_dict() for diagnostic in self.diagnostics],
            "costs": self.cost_summary.to_dict(),
            "quality": self.quality_summary,
        }

    def to_json(self) -> str:
        """Return the report as canonical, pretty-printed JSON."""
        return json.dumps(self.to_dict(), indent=2, sort_keys=True)

    @staticmethod
    def _markdown_table(headers: list[str], rows: list[list[str]]) -> list[str]:
        sep = "|".join("-" * max(len(h), 3) for h in headers)
        lines = [
            "| " + " | ".join(headers) + " |",
            "|" + sep + "|",
        ]
        for row in rows:
            lines.append("| " + " | ".join(row) + " |")
        return lines

    def to_markdown(self) -> str:
        """Render the report as a Markdown document."""
        d = self.to_dict()
        lines = [
            f"# Analysis Report: {self.contract}",
            f"\nDialect: {self.dialect.value} | Overall risk: **{self.risk.value.capitalize()}**\n",
            "## Scores\n",
        ]
        lines.extend(self._markdown_table(
            ["Security", "Performance", "Quality"],
            [[f"{self.scores.security:g}", f"{self.scores.performance:g}", f"{self.scores.quality:g}"]],
        ))
        lines.append("\n## Summary\n")
        lines.extend(self._markdown_table(
            ["Severity", "Count"],
            [[sev.value.capitalize(), str(d["summary"]["by_severity"][sev.value])] for sev in Severity],
        ))
        lines.append(f"\n**Total findings: {d['summary']['total']}**\n")
        if self.cost_summary.estimates:
            lines.append("## Gas Estimates\n")
            lines.extend(self._markdown_table(
                ["Function", "Gas", "In loops", "CO2e (kg)"],
                [
                    [e.function, str(e.gas), str(e.in_loop_gas), f"{e.carbon_kg:.6f}"]
                    for e in self.cost_summary.estimates
                ],
            ))
            lines.append("")
        lines.append("## Findings\n")
        for i, f in enumerate(d["findings"], 1):
            lines.append(f"### {i}. {f['title']}")
            lines.append(f"\n- **Rule:** {f['rule_id']}")
            lines.append(f"- **Severity:** {f['severity'].capitalize()}")
            if f["function"]:
                lines.append(f"- **Function:** {f['function']}")
            if f["location"]:
                lines.append(f"- **Location:** {f['location']}")
            lines.append(f"- **Description:** {f['description']}")
            if f["remediation"]:
                lines.append(f"- **Remediation:** {f['remediation']}")
            if f["tags"]:
                lines.append(f"- **Tags:** {', '.join(f['tags'])}")
            lines.append("")
        if self.diagnostics:
            lines.append("## Diagnostics\n")
            for diagnostic in d["diagnostics"]:
                where = f" at {diagnostic['location']}" if diagnostic["location"] else ""
                lines.append(f"- [{diagnostic['source']}] {diagnostic['reason']}{where}")
            lines.append("")
        return "\n".join(lines)


def aggregate(
    model: ContractModel,
    findings: Sequence[Finding],
    costs: ContractCostSummary,
    scores: Scores,
    *,
    severity_floor: Severity = Severity.INFO,
    diagnostics: Sequence[Diagnostic] = (),
) -> Report:
    """Deduplicate, order and filter classified findings into a :class:`Report`.

    Risk is derived from every finding; the severity floor only controls
    which findings are listed.
    """
    ordered = sort_findings(dedupe(findings))
    floor_rank = SEVERITY_RANK[severity_floor]
    kept = tuple(finding for finding in ordered if SEVERITY_RANK[finding.severity] <= floor_rank)
    return Report(
        contract=model.name,
        dialect=model.dialect,
        findings=kept,
        diagnostics=(*model.diagnostics, *diagnostics),
        cost_summary=costs,
        scores=scores,
        risk=risk_level(ordered, len(model.functions)),
        severity_floor=severity_floor,
        documentation_coverage=documentation_coverage(model),
        suppressed=len(ordered) - len(kept),
    )
