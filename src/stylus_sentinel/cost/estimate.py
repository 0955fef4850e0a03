"""Per-function gas and environmental-impact estimation."""
from __future__ import annotations

from dataclasses import dataclass, field

from ..errors import UnestimatedOperationWarning
from ..model.ir import DYNAMIC_SLOT, ContractModel, Function, SourceLocation, StorageRead
from .table import DEFAULT_COST_TABLE, InstructionCostTable, cost_key

__all__ = [
    "DEFAULT_CARBON_PER_GAS",
    "DEFAULT_ENERGY_PER_GAS",
    "ContractCostSummary",
    "CostEstimate",
    "OperationCost",
    "estimate_costs",
    "estimate_function",
]

# kg CO2e and kWh per weighted gas unit.
DEFAULT_CARBON_PER_GAS = 2e-7
DEFAULT_ENERGY_PER_GAS = 1e-6

_PRECISION = 9


@dataclass(slots=True, frozen=True)
class OperationCost:
    index: int
    key: str
    gas: int
    weighted_gas: float
    location: SourceLocation
    loop_depth: int = 0


@dataclass(slots=True, frozen=True)
class CostEstimate:
    function: str
    gas: int
    weighted_gas: float
    carbon_kg: float
    energy_kwh: float
    in_loop_gas: int = 0
    operations: tuple[OperationCost, ...] = ()
    unestimated: tuple[UnestimatedOperationWarning, ...] = field(default=(), compare=False)
    # Declaration site; tells overloads with the same name apart.
    location: SourceLocation | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "function": self.function,
            "location": str(self.location) if self.location is not None else None,
            "gas": self.gas,
            "weighted_gas": self.weighted_gas,
            "carbon_kg": self.carbon_kg,
            "energy_kwh": self.energy_kwh,
            "in_loop_gas": self.in_loop_gas,
            "unestimated": [warning.key for warning in self.unestimated],
        }


@dataclass(slots=True, frozen=True)
class ContractCostSummary:
    estimates: tuple[CostEstimate, ...] = ()
    carbon_per_gas: float = DEFAULT_CARBON_PER_GAS
    energy_per_gas: float = DEFAULT_ENERGY_PER_GAS

    @property
    def total_gas(self) -> int:
        return sum(estimate.gas for estimate in self.estimates)

    @property
    def total_weighted_gas(self) -> float:
        return round(sum(estimate.weighted_gas for estimate in self.estimates), _PRECISION)

    @property
    def total_carbon_kg(self) -> float:
        return round(self.total_weighted_gas * self.carbon_per_gas, _PRECISION)

    @property
    def total_energy_kwh(self) -> float:
        return round(self.total_weighted_gas * self.energy_per_gas, _PRECISION)

    def get(self, function: str) -> CostEstimate | None:
        """First estimate named *function*; use :meth:`for_function` to resolve overloads."""
        for estimate in self.estimates:
            if estimate.function == function:
                return estimate
        return None

    def for_function(self, function: Function) -> CostEstimate | None:
        for estimate in self.estimates:
            if estimate.function == function.name and estimate.location == function.location:
                return estimate
        return None

    def to_dict(self) -> dict[str, object]:
        return {
            "total_gas": self.total_gas,
            "total_weighted_gas": self.total_weighted_gas,
            "total_carbon_kg": self.total_carbon_kg,
            "total_energy_kwh": self.total_energy_kwh,
            "functions": [estimate.to_dict() for estimate in self.estimates],
        }


def estimate_function(
    function: Function,
    table: InstructionCostTable = DEFAULT_COST_TABLE,
    *,
    carbon_per_gas: float = DEFAULT_CARBON_PER_GAS,
    energy_per_gas: float = DEFAULT_ENERGY_PER_GAS,
) -> CostEstimate:
    """Price every operation of *function* once, in program order.

    The first read of a slot (a mapping slot is the mapping plus its key) is
    cold and later reads of the same slot are warm. Loop bodies are counted
    once; ``in_loop_gas`` reports the share of the total that repeats per
    iteration.
    """
    seen_slots: set[tuple[str, str | None]] = set()
    costs: list[OperationCost] = []
    warnings: list[UnestimatedOperationWarning] = []
    for index, op in enumerate(function.operations):
        warm = False
        if isinstance(op, StorageRead):
            # A runtime-computed key is never known to be warm.
            slot = (op.slot, op.keyed_by)
            warm = op.slot != DYNAMIC_SLOT and slot in seen_slots
            seen_slots.add(slot)
        entry, warning = table.lookup(op, warm=warm)
        if warning is not None:
            warnings.append(warning)
        costs.append(
            OperationCost(
                index=index,
                key=str(cost_key(op, warm=warm)),
                gas=entry.base_cost,
                weighted_gas=entry.base_cost * entry.environmental_coefficient,
                location=op.location,
                loop_depth=op.loop_depth,
            )
        )

    gas = sum(cost.gas for cost in costs)
    weighted = round(sum(cost.weighted_gas for cost in costs), _PRECISION)
    return CostEstimate(
        function=function.name,
        gas=gas,
        weighted_gas=weighted,
        carbon_kg=round(weighted * carbon_per_gas, _PRECISION),
        energy_kwh=round(weighted * energy_per_gas, _PRECISION),
        in_loop_gas=sum(cost.gas for cost in costs if cost.loop_depth > 0),
        operations=tuple(costs),
        unestimated=tuple(warnings),
        location=function.location,
    )


def estimate_costs(
    model: ContractModel,
    table: InstructionCostTable = DEFAULT_COST_TABLE,
    *,
    carbon_per_gas: float = DEFAULT_CARBON_PER_GAS,
    energy_per_gas: float = DEFAULT_ENERGY_PER_GAS,
) -> ContractCostSummary:
    estimates = tuple(
        estimate_function(function, table, carbon_per_gas=carbon_per_gas, energy_per_gas=energy_per_gas)
        for function in model.functions
    )
    return ContractCostSummary(estimates, carbon_per_gas=carbon_per_gas, energy_per_gas=energy_per_gas)
