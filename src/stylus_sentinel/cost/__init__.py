"""Instruction cost table and gas estimation."""

from .estimate import ContractCostSummary, CostEstimate, OperationCost, estimate_costs, estimate_function
from .table import DEFAULT_COST_TABLE, CostEntry, CostKey, InstructionCostTable, cost_key

__all__ = [
    "DEFAULT_COST_TABLE",
    "ContractCostSummary",
    "CostEntry",
    "CostEstimate",
    "CostKey",
    "InstructionCostTable",
    "OperationCost",
    "cost_key",
    "estimate_costs",
    "estimate_function",
]
