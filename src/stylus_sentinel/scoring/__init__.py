"""Severity classification, correlation and scoring."""

from .correlation import correlate
from .scorer import PENALTIES, QualityScore, RiskLevel, Scores, quality_score, risk_level, score
from .severity import CORRELATED_TAG, RULE_SEVERITY, classify

__all__ = [
    "CORRELATED_TAG",
    "PENALTIES",
    "RULE_SEVERITY",
    "QualityScore",
    "RiskLevel",
    "Scores",
    "classify",
    "correlate",
    "quality_score",
    "risk_level",
    "score",
]
