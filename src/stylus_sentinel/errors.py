"""Exception hierarchy shared by the model builder, cost table and pipeline."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .model.ir import SourceLocation

__all__ = [
    "ConfigurationError",
    "DetectorTimeout",
    "ParseError",
    "SentinelError",
    "UnestimatedOperationWarning",
]


class SentinelError(Exception):
    """Base class for every error raised by stylus-sentinel."""


class ParseError(SentinelError):
    """The input could not be turned into a contract model at all."""

    def __init__(self, reason: str, location: SourceLocation | None = None) -> None:
        self.reason = reason
        self.location = location
        where = f" at {location}" if location is not None else ""
        super().__init__(f"{reason}{where}")


class ConfigurationError(SentinelError, ValueError):
    """Invalid analysis configuration, rejected before any work starts."""


class DetectorTimeout(SentinelError):
    """A detector did not finish inside the analysis time budget."""

    def __init__(self, detector: str, timeout: float) -> None:
        self.detector = detector
        self.timeout = timeout
        super().__init__(f"Detector '{detector}' did not finish within {timeout:g}s")


class UnestimatedOperationWarning(UserWarning):
    """An operation had no cost table entry and was priced at the default cost.

    Carried as data on cost estimates and surfaced as a low-severity finding;
    never raised.
    """

    def __init__(self, key: str, default_cost: int, location: SourceLocation | None = None) -> None:
        self.key = key
        self.default_cost = default_cost
        self.location = location
        super().__init__(f"No cost entry for '{key}'; priced at default cost {default_cost}")
