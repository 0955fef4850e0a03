"""Static analysis for Arbitrum Stylus and Solidity contracts."""

from __future__ import annotations

__version__ = "0.4.0"

from .config import AnalysisConfig, load_config
from .detectors import Category, Finding, Severity
from .engine import analyze, analyze_many, analyze_source
from .errors import ConfigurationError, DetectorTimeout, ParseError, SentinelError
from .model import ContractModel, DialectHint, build_model
from .report import Report

__all__ = [
    "AnalysisConfig",
    "Category",
    "ConfigurationError",
    "ContractModel",
    "DetectorTimeout",
    "DialectHint",
    "Finding",
    "ParseError",
    "Report",
    "SentinelError",
    "Severity",
    "__version__",
    "analyze",
    "analyze_many",
    "analyze_source",
    "build_model",
    "load_config",
]
