"""Repeated storage reads that could be cached in memory."""
from __future__ import annotations

from ..cost.table import CostKey
from ..model.ir import DYNAMIC_SLOT, ContractModel, OpKind, StorageRead
from .base import BaseDetector, Category, DetectionContext, Finding, Severity

__all__ = ["StorageCachingDetector"]

_WARM_READ = CostKey(OpKind.STORAGE_READ, "warm")


class StorageCachingDetector(BaseDetector):
    name = "storage_caching"
    description = "Detects storage slots read repeatedly within one function"
    category = Category.PERFORMANCE
    rule_id = "GAS-REPEATED-STORAGE-READ"
    severity = Severity.LOW
    title = "Repeated Storage Read"
    remediation = "Read the slot once into a local variable and reuse it."

    def inspect(self, model: ContractModel, context: DetectionContext | None = None) -> list[Finding]:
        table = self.context_for(model, context).cost_table
        warm = table.get(_WARM_READ)
        warm_cost = warm.base_cost if warm is not None else table.default_cost
        findings: list[Finding] = []
        for function in model.functions:
            reads: dict[tuple[str, str | None], list[StorageRead]] = {}
            for _, op in function.ops_of(StorageRead):
                if op.slot == DYNAMIC_SLOT:
                    continue
                reads.setdefault((op.slot, op.keyed_by), []).append(op)
            for (slot, key), ops in reads.items():
                in_loop = any(op.loop_depth > 0 for op in ops)
                if len(ops) < 2 and not in_loop:
                    continue
                label = f"{slot}[{key}]" if key else slot
                if len(ops) > 1:
                    saved = (len(ops) - 1) * warm_cost
                    detail = f"is read {len(ops)} times"
                else:
                    saved = warm_cost
                    detail = "is read on every loop iteration"
                findings.append(
                    self.finding(
                        description=f"Storage '{label}' {detail} in '{function.name}'; caching saves ~{saved} gas.",
                        location=ops[1].location if len(ops) > 1 else ops[0].location,
                        function=function,
                        impact=saved,
                        tags=("gas", "storage"),
                    )
                )
        return self.dedupe_findings(findings)

