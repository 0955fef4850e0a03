"""Analysis configuration.

Values are resolved with the precedence environment > file > defaults. A file
is either a standalone TOML document or a ``pyproject.toml`` whose
``[tool.stylus-sentinel]`` table holds the same keys::

    [tool.stylus-sentinel]
    enabled_categories = ["security", "performance"]
    gas_cost_threshold = 250000
    severity_floor = "low"
    timeout = 10
    detectors = ["reentrancy", "gas_threshold"]

    [tool.stylus-sentinel.cost_overrides]
    "storage_write" = 22100
    "external_call:call" = { base_cost = 2600, coefficient = 1.5 }
"""
from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .cost.estimate import DEFAULT_CARBON_PER_GAS, DEFAULT_ENERGY_PER_GAS
from .cost.table import DEFAULT_COST_TABLE, CostEntry, CostKey, InstructionCostTable
from .detectors import ALL_DETECTORS, DEFAULT_CODE_SIZE_LIMIT, DEFAULT_DETECTORS, BaseDetector, Category, Severity
from .errors import ConfigurationError

__all__ = ["ENV_PREFIX", "AnalysisConfig", "config_from_mapping", "load_config"]

logger = logging.getLogger(__name__)

ENV_PREFIX = "STYLUS_SENTINEL_"
_TOOL_TABLE = "stylus-sentinel"


@dataclass(slots=True, frozen=True)
class AnalysisConfig:
    enabled_categories: frozenset[Category] = frozenset(Category)
    gas_cost_threshold: int = 100_000
    severity_floor: Severity = Severity.INFO
    # Seconds for the whole detector run; None waits indefinitely.
    timeout: float | None = 30.0
    detectors: tuple[type[BaseDetector], ...] = DEFAULT_DETECTORS
    cost_table: InstructionCostTable = field(default=DEFAULT_COST_TABLE, compare=False)
    complexity_threshold: int = 10
    carbon_per_gas: float = DEFAULT_CARBON_PER_GAS
    energy_per_gas: float = DEFAULT_ENERGY_PER_GAS
    max_workers: int = 4
    # Bytes; applies to WASM modules.
    code_size_limit: int = DEFAULT_CODE_SIZE_LIMIT

    def validate(self) -> AnalysisConfig:
        """Raise :class:`ConfigurationError` for any invalid value; return self otherwise."""
        for name in ("gas_cost_threshold", "complexity_threshold", "code_size_limit"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(f"{name} must be an integer, got {value!r}")
            if value < 0:
                raise ConfigurationError(f"{name} must be non-negative, got {value}")
        if not isinstance(self.severity_floor, Severity):
            raise ConfigurationError(f"severity_floor must be a Severity, got {self.severity_floor!r}")
        if self.timeout is not None:
            if isinstance(self.timeout, bool) or not isinstance(self.timeout, (int, float)) or self.timeout <= 0:
                raise ConfigurationError(f"timeout must be a positive number of seconds, got {self.timeout!r}")
        unknown = [category for category in self.enabled_categories if not isinstance(category, Category)]
        if unknown:
            raise ConfigurationError(f"Unknown categories: {', '.join(map(str, unknown))}")
        if not self.enabled_categories:
            raise ConfigurationError("enabled_categories must not be empty")
        if not self.detectors:
            raise ConfigurationError("At least one detector is required")
        for detector in self.detectors:
            if not (isinstance(detector, type) and issubclass(detector, BaseDetector)):
                raise ConfigurationError(f"Not a detector class: {detector!r}")
        if self.code_size_limit == 0:
            raise ConfigurationError("code_size_limit must be positive")
        if isinstance(self.max_workers, bool) or not isinstance(self.max_workers, int) or self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be a positive integer, got {self.max_workers!r}")
        for name in ("carbon_per_gas", "energy_per_gas"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or value < 0:
                raise ConfigurationError(f"{name} must be a non-negative number, got {value!r}")
        return self

    def active_detectors(self) -> tuple[type[BaseDetector], ...]:
        return tuple(detector for detector in self.detectors if detector.category in self.enabled_categories)


def _severity(value: Any) -> Severity:
    try:
        return Severity(str(value).strip().lower())
    except ValueError as exc:
        raise ConfigurationError(f"Unknown severity '{value}'") from exc


def _categories(value: Any) -> frozenset[Category]:
    if isinstance(value, str):
        value = [part for part in value.split(",") if part.strip()]
    try:
        return frozenset(Category(str(item).strip().lower()) for item in value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid enabled_categories {value!r}") from exc


def _detectors(value: Any) -> tuple[type[BaseDetector], ...]:
    if isinstance(value, str):
        value = [part.strip() for part in value.split(",") if part.strip()]
    unknown = [name for name in value if name not in ALL_DETECTORS]
    if unknown:
        raise ConfigurationError(
            f"Unknown detector(s): {', '.join(unknown)}. Available: {', '.join(ALL_DETECTORS)}"
        )
    return tuple(ALL_DETECTORS[name] for name in value)


def _timeout(value: Any) -> float | None:
    if isinstance(value, str):
        if value.strip().lower() in ("none", "off", ""):
            return None
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid timeout '{value}'") from exc
    return value


def _integer(name: str, value: Any) -> int:
    if isinstance(value, str):
        try:
            return int(value.replace("_", ""))
        except ValueError as exc:
            raise ConfigurationError(f"{name} must be an integer, got '{value}'") from exc
    return value


def _number(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from exc


def _cost_table(overrides: Mapping[str, Any], default_cost: int | None) -> InstructionCostTable:
    entries: dict[CostKey, CostEntry] = {}
    for text, value in overrides.items():
        key = CostKey.parse(text)
        current = DEFAULT_COST_TABLE.get(key)
        coefficient = current.environmental_coefficient if current is not None else 1.0
        if isinstance(value, Mapping):
            extra = set(value) - {"base_cost", "coefficient"}
            if extra:
                raise ConfigurationError(f"Unknown cost override field(s) for '{text}': {', '.join(sorted(extra))}")
            base = value.get("base_cost", current.base_cost if current is not None else None)
            coefficient = value.get("coefficient", coefficient)
        else:
            base = value
        if isinstance(base, bool) or not isinstance(base, int):
            raise ConfigurationError(f"Cost override for '{text}' needs an integer base_cost")
        entries[key] = CostEntry(base, float(coefficient))
    return DEFAULT_COST_TABLE.with_overrides(entries, default_cost=default_cost)


_CONVERTERS = {
    "enabled_categories": _categories,
    "gas_cost_threshold": lambda value: _integer("gas_cost_threshold", value),
    "severity_floor": _severity,
    "timeout": _timeout,
    "detectors": _detectors,
    "complexity_threshold": lambda value: _integer("complexity_threshold", value),
    "carbon_per_gas": lambda value: _number("carbon_per_gas", value),
    "energy_per_gas": lambda value: _number("energy_per_gas", value),
    "max_workers": lambda value: _integer("max_workers", value),
    "code_size_limit": lambda value: _integer("code_size_limit", value),
}
_FILE_ONLY_KEYS = frozenset({"cost_overrides", "default_cost"})
_ENV_KEYS = ("gas_cost_threshold", "severity_floor", "timeout", "code_size_limit")


def _read_table(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Configuration file not found: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Invalid TOML in {path}: {exc}") from exc
    tool = data.get("tool", {}).get(_TOOL_TABLE)
    if tool is not None:
        return dict(tool)
    if path.name == "pyproject.toml":
        logger.debug("%s has no [tool.%s] table; using defaults", path, _TOOL_TABLE)
        return {}
    return data


def config_from_mapping(values: Mapping[str, Any], base: AnalysisConfig | None = None) -> AnalysisConfig:
    """Apply *values* on top of *base* (defaults when None)."""
    known = set(_CONVERTERS) | _FILE_ONLY_KEYS
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigurationError(f"Unknown configuration key(s): {', '.join(unknown)}")
    changes: dict[str, Any] = {}
    for key, value in values.items():
        if key in _CONVERTERS:
            changes[key] = _CONVERTERS[key](value)
    if "cost_overrides" in values or "default_cost" in values:
        overrides = values.get("cost_overrides", {})
        if not isinstance(overrides, Mapping):
            raise ConfigurationError("cost_overrides must be a table")
        changes["cost_table"] = _cost_table(overrides, values.get("default_cost"))
    return replace(base or AnalysisConfig(), **changes)


def load_config(path: str | Path | None = None, *, environ: Mapping[str, str] | None = None) -> AnalysisConfig:
    """Load and validate configuration from *path* (optional) and the environment."""
    values: dict[str, Any] = {}
    if path is not None:
        values.update(_read_table(Path(path)))
        logger.debug("Loaded configuration from %s", path)

    environ = os.environ if environ is None else environ
    for key in _ENV_KEYS:
        variable = f"{ENV_PREFIX}{key.upper()}"
        if variable in environ:
            logger.debug("Applying environment override: %s=%s", variable, environ[variable])
            values[key] = environ[variable]

    return config_from_mapping(values).validate()

